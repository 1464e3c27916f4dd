import pytest

from conftest import FakeClassificationBackend
from fieldops.agents import classifier as classifier_module
from fieldops.agents.classifier import IntentClassifier, LLMClassificationBackend, heuristic_intent
from fieldops.errors import CollaboratorUnavailable
from fieldops.llm_client import LLMEndpoint
from fieldops.schemas.intents import Intent, Priority, SceneContext


@pytest.mark.parametrize(
    "text,label,priority,confidence",
    [
        ("Need backup at Main and 5th", "request_backup", Priority.CRITICAL, 0.8),
        ("read him his miranda rights", "miranda_rights", Priority.CRITICAL, 0.9),
        ("navigate to 500 Florida St", "navigate_to", Priority.MEDIUM, 0.8),
        ("Arriving on scene now", "arriving_scene", Priority.HIGH, 0.8),
        ("what is the weather", "general_query", Priority.LOW, 0.5),
    ],
)
def test_heuristic_rules(text, label, priority, confidence):
    intent = heuristic_intent(text)
    assert intent.label == label
    assert intent.priority == priority
    assert intent.confidence == confidence


def test_heuristic_first_match_wins():
    # "help" is checked before "route"
    assert heuristic_intent("help me find a route").label == "request_backup"


def test_heuristic_entities():
    assert heuristic_intent("URGENT backup needed").entities == {"urgency": "emergency"}
    assert heuristic_intent("priority assistance").entities == {"urgency": "priority"}
    assert heuristic_intent("send backup").entities == {"urgency": "routine"}
    assert heuristic_intent("miranda in spanish").entities == {"language": "spanish"}
    assert heuristic_intent("Route to Baton Rouge General").entities == {
        "destination": "Route to Baton Rouge General"
    }


def test_heuristic_is_deterministic():
    assert heuristic_intent("arriving at location") == heuristic_intent("arriving at location")


def test_statute_text_falls_to_general_query_under_heuristic():
    assert heuristic_intent("check statute 14:30").label == "general_query"


@pytest.mark.asyncio
async def test_classifier_uses_backend_when_initialized():
    backend = FakeClassificationBackend(intent=Intent(label="statute_lookup", confidence=0.95))
    classifier = IntentClassifier(backend, timeout_seconds=1.0)
    await classifier.initialize()

    intent, source = await classifier.classify("check statute 14:30", SceneContext(), [])

    assert classifier.initialized
    assert source == "backend"
    assert intent.label == "statute_lookup"


@pytest.mark.asyncio
async def test_classifier_falls_back_when_backend_fails():
    backend = FakeClassificationBackend(error=CollaboratorUnavailable("down"))
    classifier = IntentClassifier(backend, timeout_seconds=1.0)
    await classifier.initialize()

    intent, source = await classifier.classify("send backup", SceneContext(), [])

    assert source == "heuristic"
    assert intent.label == "request_backup"


@pytest.mark.asyncio
async def test_failed_initialize_leaves_fallback_mode():
    backend = FakeClassificationBackend(
        intent=Intent(label="statute_lookup"), init_error=CollaboratorUnavailable("no answer")
    )
    classifier = IntentClassifier(backend, timeout_seconds=1.0)
    await classifier.initialize()

    intent, source = await classifier.classify("navigate home", SceneContext(), [])

    assert not classifier.initialized
    assert source == "heuristic"
    assert intent.label == "navigate_to"
    assert backend.calls == []


@pytest.mark.asyncio
async def test_llm_backend_coerces_priority_and_clamps_confidence(monkeypatch):
    async def fake_call_llm_json(endpoint, system_prompt, messages, max_tokens):
        assert "traffic_stop" in system_prompt
        return {"intent": "traffic_stop", "confidence": 3, "priority": "urgent", "entities": {"plate": "ABC123"}}

    monkeypatch.setattr(classifier_module, "call_llm_json", fake_call_llm_json)
    backend = LLMClassificationBackend(LLMEndpoint("classifier", "http://llm", "m"))

    intent = await backend.classify("pulled over a sedan", SceneContext(), [])

    assert intent.label == "traffic_stop"
    assert intent.confidence == 1.0
    assert intent.priority == Priority.MEDIUM
    assert intent.entities == {"plate": "ABC123"}


@pytest.mark.asyncio
async def test_llm_backend_rejects_unknown_label(monkeypatch):
    async def fake_call_llm_json(endpoint, system_prompt, messages, max_tokens):
        return {"intent": "make_coffee", "confidence": 0.9}

    monkeypatch.setattr(classifier_module, "call_llm_json", fake_call_llm_json)
    backend = LLMClassificationBackend(LLMEndpoint("classifier", "http://llm", "m"))

    with pytest.raises(CollaboratorUnavailable):
        await backend.classify("coffee please", SceneContext(), [])


@pytest.mark.asyncio
@pytest.mark.parametrize("followups", ["request_backup", 42, {"a": "b"}, None])
async def test_llm_backend_ignores_non_list_followups(monkeypatch, followups):
    async def fake_call_llm_json(endpoint, system_prompt, messages, max_tokens):
        return {"intent": "request_backup", "priority": "high", "suggested_actions": followups}

    monkeypatch.setattr(classifier_module, "call_llm_json", fake_call_llm_json)
    backend = LLMClassificationBackend(LLMEndpoint("classifier", "http://llm", "m"))

    intent = await backend.classify("need backup", SceneContext(), [])

    assert intent.label == "request_backup"
    assert intent.suggested_followups == []


@pytest.mark.asyncio
async def test_llm_backend_keeps_list_followups(monkeypatch):
    async def fake_call_llm_json(endpoint, system_prompt, messages, max_tokens):
        return {"intent": "request_backup", "suggestedActions": ["notify_dispatch", "", "share_location"]}

    monkeypatch.setattr(classifier_module, "call_llm_json", fake_call_llm_json)
    backend = LLMClassificationBackend(LLMEndpoint("classifier", "http://llm", "m"))

    intent = await backend.classify("need backup", SceneContext(), [])

    assert intent.suggested_followups == ["notify_dispatch", "share_location"]
