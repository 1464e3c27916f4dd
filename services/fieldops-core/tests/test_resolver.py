from fieldops.agents.resolver import resolve
from fieldops.schemas.intents import ActionKind, Intent, Priority


def test_navigate_priority_follows_intent_priority():
    critical = resolve(Intent(label="navigate_to", priority=Priority.CRITICAL, entities={"destination": "HQ"}))
    routine = resolve(Intent(label="navigate_to", priority=Priority.MEDIUM), "navigate to the courthouse")

    assert critical.kind == ActionKind.NAVIGATE
    assert critical.params == {"destination": "HQ", "priority": "emergency"}
    assert routine.params == {"destination": "navigate to the courthouse", "priority": "routine"}


def test_backup_maps_to_dispatch_notify():
    action = resolve(Intent(label="request_backup", entities={"urgency": "emergency"}))
    assert action.kind == ActionKind.DISPATCH_NOTIFY
    assert action.params == {"type": "backup_request", "urgency": "emergency"}


def test_disclosure_defaults_to_english():
    action = resolve(Intent(label="miranda_rights"))
    assert action.kind == ActionKind.SCRIPTED_DISCLOSURE
    assert action.params == {"language": "english"}


def test_compliance_intents_carry_label_and_timestamp():
    for label in ("arriving_scene", "scene_secure", "arrest_made"):
        action = resolve(Intent(label=label))
        assert action.kind == ActionKind.COMPLIANCE_CHECK
        assert action.params["action"] == label
        assert action.params["timestamp"] > 0


def test_statute_lookup_uses_query_entity_or_content():
    assert resolve(Intent(label="statute_lookup", entities={"query": "14:30"})).params == {"query": "14:30"}
    assert resolve(Intent(label="statute_lookup"), "check statute 14:34").params == {
        "query": "check statute 14:34"
    }


def test_tool_use_accepts_either_tool_id_spelling():
    snake = resolve(Intent(label="tool_use", entities={"tool_id": "fetch_weather", "params": {"city": "Metairie"}}))
    camel = resolve(Intent(label="tool_use", entities={"toolId": "fetch_weather"}))
    missing = resolve(Intent(label="tool_use"))

    assert snake.kind == ActionKind.TOOL_INVOKE
    assert snake.params == {"tool_id": "fetch_weather", "params": {"city": "Metairie"}}
    assert camel.params["tool_id"] == "fetch_weather"
    assert missing.params == {"tool_id": None, "params": {}}


def test_everything_else_is_freeform():
    action = resolve(Intent(label="general_query", priority=Priority.LOW))
    assert action.kind == ActionKind.FREEFORM_REPLY
    assert action.params == {"intent": "general_query", "priority": "low"}
