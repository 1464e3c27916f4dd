from typing import Any, Callable

from fieldops.schemas.intents import ActionDescriptor, ActionKind, Intent, Priority
from fieldops.utils import now_ms

COMPLIANCE_INTENTS = ("arriving_scene", "scene_secure", "arrest_made")


def _navigate(intent: Intent, content: str) -> ActionDescriptor:
    return ActionDescriptor(
        kind=ActionKind.NAVIGATE,
        params={
            "destination": intent.entities.get("destination") or content,
            "priority": "emergency" if intent.priority == Priority.CRITICAL else "routine",
        },
    )


def _dispatch(intent: Intent, content: str) -> ActionDescriptor:
    return ActionDescriptor(
        kind=ActionKind.DISPATCH_NOTIFY,
        params={"type": "backup_request", "urgency": intent.entities.get("urgency") or "routine"},
    )


def _disclosure(intent: Intent, content: str) -> ActionDescriptor:
    return ActionDescriptor(
        kind=ActionKind.SCRIPTED_DISCLOSURE,
        params={"language": intent.entities.get("language") or "english"},
    )


def _compliance(intent: Intent, content: str) -> ActionDescriptor:
    return ActionDescriptor(
        kind=ActionKind.COMPLIANCE_CHECK,
        params={"action": intent.label, "timestamp": now_ms()},
    )


def _reference(intent: Intent, content: str) -> ActionDescriptor:
    return ActionDescriptor(
        kind=ActionKind.REFERENCE_LOOKUP,
        params={"query": intent.entities.get("query") or content},
    )


def _tool(intent: Intent, content: str) -> ActionDescriptor:
    entities = intent.entities
    params = entities.get("params")
    return ActionDescriptor(
        kind=ActionKind.TOOL_INVOKE,
        params={
            "tool_id": entities.get("tool_id") or entities.get("toolId"),
            "params": params if isinstance(params, dict) else {},
        },
    )


RESOLUTION_TABLE: dict[str, Callable[[Intent, str], ActionDescriptor]] = {
    "navigate_to": _navigate,
    "request_backup": _dispatch,
    "miranda_rights": _disclosure,
    "statute_lookup": _reference,
    "tool_use": _tool,
    **{label: _compliance for label in COMPLIANCE_INTENTS},
}


def resolve(intent: Intent, content: str = "") -> ActionDescriptor:
    """Map an intent to exactly one action descriptor. No side effects."""
    builder = RESOLUTION_TABLE.get(intent.label)
    if builder is not None:
        return builder(intent, content)
    params: dict[str, Any] = {"intent": intent.label, "priority": intent.priority.value}
    return ActionDescriptor(kind=ActionKind.FREEFORM_REPLY, params=params)
