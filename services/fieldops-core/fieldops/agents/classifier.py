import asyncio
import json
from typing import Any, Protocol

import structlog

from fieldops.errors import CollaboratorUnavailable
from fieldops.llm_client import LLMEndpoint, call_llm_json
from fieldops.schemas.events import ConversationEntry
from fieldops.schemas.intents import Intent, Priority, SceneContext

logger = structlog.get_logger("intent_classifier")

INTENT_LABELS = (
    "navigate_to",
    "find_location",
    "arriving_scene",
    "request_backup",
    "scene_secure",
    "suspect_contact",
    "miranda_rights",
    "arrest_made",
    "collect_evidence",
    "start_report",
    "threat_detected",
    "officer_safety",
    "traffic_stop",
    "pursuit",
    "statute_lookup",
    "dispatch_check",
    "tool_use",
    "general_query",
)

PRIORITY_VALUES = {p.value for p in Priority}


class ClassificationBackend(Protocol):
    async def initialize(self) -> None: ...

    async def classify(
        self, text: str, scene: SceneContext, history: list[ConversationEntry]
    ) -> Intent: ...


def _system_prompt(scene: SceneContext) -> str:
    return (
        "You are an intent recognition system for law enforcement officers. "
        "Return only a single JSON object with keys intent, confidence, entities, "
        "suggested_actions and priority. Do not include reasoning, code fences, or any other text. "
        f"Intent must be one of: {', '.join(INTENT_LABELS)}. "
        "Confidence is a number between 0 and 1. Priority must be one of: low, medium, high, critical. "
        f"Current scene context: {json.dumps(scene.model_dump(mode='json'))}. "
        "Consider the urgency and safety implications of the officer's request."
    )


def _parse_llm_output(payload: Any) -> Intent | None:
    if not isinstance(payload, dict):
        return None
    label = payload.get("intent")
    if label not in INTENT_LABELS:
        return None
    priority = payload.get("priority")
    if priority not in PRIORITY_VALUES:
        priority = Priority.MEDIUM.value
    try:
        confidence = float(payload.get("confidence", 0.5))
    except (TypeError, ValueError):
        confidence = 0.5
    entities = payload.get("entities")
    followups = payload.get("suggested_actions") or payload.get("suggestedActions")
    if not isinstance(followups, list):
        followups = []
    return Intent(
        label=label,
        confidence=confidence,
        entities=entities if isinstance(entities, dict) else {},
        suggested_followups=[str(item) for item in followups if item],
        priority=Priority(priority),
    )


class LLMClassificationBackend:
    def __init__(self, endpoint: LLMEndpoint) -> None:
        self._endpoint = endpoint

    async def initialize(self) -> None:
        payload = await call_llm_json(
            self._endpoint,
            'Reply with the JSON object {"status": "ok"}.',
            [{"role": "user", "content": "ping"}],
            max_tokens=16,
        )
        if not payload:
            raise CollaboratorUnavailable(f"classifier endpoint {self._endpoint.name} did not answer")

    async def classify(
        self, text: str, scene: SceneContext, history: list[ConversationEntry]
    ) -> Intent:
        messages = [{"role": entry.role.value, "content": entry.content} for entry in history]
        messages.append({"role": "user", "content": f'Officer input: "{text}"'})
        payload = await call_llm_json(self._endpoint, _system_prompt(scene), messages, max_tokens=256)
        intent = _parse_llm_output(payload)
        if intent is None:
            raise CollaboratorUnavailable("classifier returned no usable intent")
        return intent


def _contains(text: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in text for keyword in keywords)


def _extract_urgency(lower: str) -> str:
    if "emergency" in lower or "urgent" in lower:
        return "emergency"
    if "priority" in lower:
        return "priority"
    return "routine"


def heuristic_intent(text: str) -> Intent:
    """Keyword classifier used whenever the backend is missing or failing.

    Rules are checked in order and the first match wins.
    """
    lower = text.lower()
    if _contains(lower, ("backup", "assistance", "help")):
        return Intent(
            label="request_backup",
            confidence=0.8,
            entities={"urgency": _extract_urgency(lower)},
            suggested_followups=["send_backup_request", "notify_supervisor"],
            priority=Priority.CRITICAL,
        )
    if _contains(lower, ("miranda", "rights")):
        return Intent(
            label="miranda_rights",
            confidence=0.9,
            entities={"language": "spanish" if "spanish" in lower else "english"},
            suggested_followups=["deliver_miranda", "log_compliance", "activate_recording"],
            priority=Priority.CRITICAL,
        )
    if _contains(lower, ("navigate", "route", "directions")):
        return Intent(
            label="navigate_to",
            confidence=0.8,
            entities={"destination": text},
            suggested_followups=["start_navigation", "update_dispatch"],
            priority=Priority.MEDIUM,
        )
    if _contains(lower, ("arriving", "on scene", "at location")):
        return Intent(
            label="arriving_scene",
            confidence=0.8,
            entities={},
            suggested_followups=["notify_dispatch", "activate_camera", "assess_scene"],
            priority=Priority.HIGH,
        )
    return Intent(
        label="general_query",
        confidence=0.5,
        entities={},
        suggested_followups=["general_assistance"],
        priority=Priority.LOW,
    )


class IntentClassifier:
    def __init__(
        self,
        backend: ClassificationBackend | None = None,
        timeout_seconds: float = 8.0,
    ) -> None:
        self._backend = backend
        self._timeout_seconds = timeout_seconds
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        if self._backend is None or self._initialized:
            return
        try:
            await asyncio.wait_for(self._backend.initialize(), self._timeout_seconds)
        except Exception as exc:
            logger.warning("classifier_fallback_mode", error=str(exc))
            return
        self._initialized = True
        logger.info("classifier_initialized")

    async def classify(
        self, text: str, scene: SceneContext, history: list[ConversationEntry]
    ) -> tuple[Intent, str]:
        """Return the intent plus the source that produced it (backend or heuristic)."""
        if self._backend is not None and self._initialized:
            try:
                intent = await asyncio.wait_for(
                    self._backend.classify(text, scene, history), self._timeout_seconds
                )
                return intent, "backend"
            except Exception as exc:
                logger.warning("classifier_backend_failed", error=str(exc) or exc.__class__.__name__)
        return heuristic_intent(text), "heuristic"
