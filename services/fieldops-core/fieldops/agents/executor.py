import asyncio
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import structlog

from fieldops.agents.backends import BackendSelector
from fieldops.agents.reference import NOT_FOUND_TEXT, ReferenceLibrary
from fieldops.agents.tools import ToolRegistry
from fieldops.audit import AuditSink
from fieldops.collaborators.knowledge import KnowledgeClient
from fieldops.collaborators.location import Location, LocationProvider
from fieldops.collaborators.routing import RoutingClient
from fieldops.errors import ConfigurationError, StorageUnavailable, ValidationError
from fieldops.memory.scene_tracker import scene_hints
from fieldops.memory.session_store import SessionStore
from fieldops.observability import record_handler_timing
from fieldops.schemas.events import NormalizedResponse, ResponseKind
from fieldops.schemas.intents import (
    ActionDescriptor,
    ActionKind,
    Intent,
    SceneContext,
    SessionKey,
    ThreatLevel,
)
from fieldops.utils import now_ms

logger = structlog.get_logger("executor")

APOLOGY_TEXT = (
    "I apologize, but I'm having trouble processing your request right now. "
    "Please try again in a moment."
)
TOOL_ERROR_TEXT = "Sorry, I encountered an error executing the tool."

RIGHTS_ADVISORY = (
    "You have the right to remain silent. Anything you say can and will be used against you "
    "in a court of law. You have the right to an attorney. If you cannot afford an attorney, "
    "one will be provided for you. Do you understand these rights?"
)
DISCLOSURE_LANGUAGE = "english"

DISPATCH_TEMPLATES = {
    "backup_request": "Backup requested ({urgency}). Dispatch has your position at {lat:.4f}, {lon:.4f}.",
    "arrival_notification": "Dispatch notified: on scene at {lat:.4f}, {lon:.4f}.",
    "status_update": "Status update sent to dispatch: {status}.",
    "generic": "Dispatch has been notified. Your position: {lat:.4f}, {lon:.4f}.",
}

COMPLIANCE_TEMPLATES = {
    "arriving_scene": "Arrival on scene logged at {time}.",
    "scene_secure": "Scene secure logged at {time}. Alerts stood down.",
    "arrest_made": "Arrest logged at {time}. Rights advisory is required before custodial questioning.",
}

FEEDBACK_PATTERN = re.compile(r"^\s*rate\s+(-?\d+)\s*$", re.IGNORECASE)


@dataclass
class ExecutionContext:
    key: SessionKey
    content: str
    intent: Intent
    scene: SceneContext


Handler = Callable[[ActionDescriptor, ExecutionContext], Awaitable[NormalizedResponse]]


def match_feedback(content: str) -> str | None:
    """Raw rating string when the input is a feedback command, else None."""
    match = FEEDBACK_PATTERN.match(content)
    return match.group(1) if match else None


def _respond(
    key: SessionKey,
    content: str,
    kind: ResponseKind = ResponseKind.TEXT,
    **metadata: Any,
) -> NormalizedResponse:
    return NormalizedResponse(
        tenant_id=key.tenant_id,
        user_id=key.user_id,
        response_kind=kind,
        content=content,
        metadata=metadata or None,
    )


def apology(key: SessionKey, error: Any = True, **metadata: Any) -> NormalizedResponse:
    return _respond(key, APOLOGY_TEXT, error=error, **metadata)


def _clock(timestamp_ms: int | None) -> str:
    moment = datetime.fromtimestamp((timestamp_ms or now_ms()) / 1000, tz=timezone.utc)
    return moment.strftime("%H:%M:%S UTC")


class ActionExecutor:
    """
    Runs one action descriptor and always returns one NormalizedResponse.

    Every handler converts its own failures into a user-facing response;
    `execute` adds a last catch so a handler bug still yields an apology.
    """

    def __init__(
        self,
        session_store: SessionStore,
        tools: ToolRegistry,
        references: ReferenceLibrary,
        selector: BackendSelector,
        routing: RoutingClient,
        location: LocationProvider,
        knowledge: KnowledgeClient,
        audit: AuditSink,
        default_location: Location,
        timeout_seconds: float = 8.0,
        history_window: int = 5,
    ) -> None:
        self.session_store = session_store
        self.tools = tools
        self.references = references
        self.selector = selector
        self.routing = routing
        self.location = location
        self.knowledge = knowledge
        self.audit = audit
        self.default_location = default_location
        self.timeout_seconds = timeout_seconds
        self.history_window = history_window
        self._handlers: dict[ActionKind, Handler] = {}
        self._register_default_handlers()

    def _register_default_handlers(self) -> None:
        self._handlers[ActionKind.NAVIGATE] = self._navigate
        self._handlers[ActionKind.DISPATCH_NOTIFY] = self._dispatch_notify
        self._handlers[ActionKind.COMPLIANCE_CHECK] = self._compliance_check
        self._handlers[ActionKind.REFERENCE_LOOKUP] = self._reference_lookup
        self._handlers[ActionKind.SCRIPTED_DISCLOSURE] = self._scripted_disclosure
        self._handlers[ActionKind.TOOL_INVOKE] = self._tool_invoke
        self._handlers[ActionKind.FREEFORM_REPLY] = self._freeform_reply

    def register_handler(self, kind: ActionKind, handler: Handler) -> None:
        self._handlers[kind] = handler

    async def execute(self, action: ActionDescriptor, ctx: ExecutionContext) -> NormalizedResponse:
        handler = self._handlers.get(action.kind, self._freeform_reply)
        start = time.perf_counter()
        try:
            return await handler(action, ctx)
        except Exception as exc:
            logger.exception("handler_failed", action=action.kind.value, error=str(exc))
            return apology(ctx.key, action=action.kind.value)
        finally:
            record_handler_timing(action.kind.value, time.perf_counter() - start)

    async def _call(self, awaitable: Awaitable[Any]) -> Any:
        return await asyncio.wait_for(awaitable, self.timeout_seconds)

    async def _log_action(self, key: SessionKey, action_type: str, details: dict[str, Any]) -> None:
        try:
            await self.session_store.append_action(key, action_type, details)
        except StorageUnavailable as exc:
            logger.warning("session_mirror_unavailable", operation="append_action", error=str(exc))

    # ---------- handlers ----------

    async def _navigate(self, action: ActionDescriptor, ctx: ExecutionContext) -> NormalizedResponse:
        destination = str(action.params.get("destination") or ctx.content)
        priority = action.params.get("priority", "routine")
        if not self.routing.is_available():
            return _respond(
                ctx.key,
                f"Navigation is unavailable right now, so I can't route you to {destination}.",
                succeeded=False,
            )
        try:
            route = await self._call(self.routing.get_route(destination, priority))
        except Exception as exc:
            logger.warning("routing_failed", destination=destination, error=str(exc) or exc.__class__.__name__)
            return _respond(
                ctx.key,
                f"I couldn't get a route to {destination} right now. Use onboard navigation and try again shortly.",
                succeeded=False,
            )
        if route is None:
            return _respond(ctx.key, f"I couldn't find a route to {destination}.", succeeded=False)

        minutes = max(1, round(route.duration_seconds / 60))
        content = (
            f"Route to {destination}: {route.distance_meters / 1000:.1f} km, about {minutes} min "
            f"(ETA {route.eta:%H:%M} UTC)."
        )
        if route.traffic:
            content += f" Traffic is {route.traffic}."
        await self._log_action(ctx.key, "NavigationStarted", {"destination": destination, "priority": priority})
        return _respond(
            ctx.key,
            content,
            ResponseKind.NAVIGATION,
            destination=destination,
            priority=priority,
            distance_meters=route.distance_meters,
            duration_seconds=route.duration_seconds,
            eta=route.eta.isoformat(),
            traffic=route.traffic,
            succeeded=True,
        )

    async def _dispatch_notify(self, action: ActionDescriptor, ctx: ExecutionContext) -> NormalizedResponse:
        notification_type = action.params.get("type") or "generic"
        urgency = action.params.get("urgency") or "routine"
        location_source = "provider"
        try:
            location = await self._call(self.location.get_current_location(ctx.key.user_id))
        except Exception as exc:
            logger.warning("location_lookup_failed", error=str(exc) or exc.__class__.__name__)
            location = None
        if location is None:
            location, location_source = self.default_location, "default"

        template = DISPATCH_TEMPLATES.get(notification_type, DISPATCH_TEMPLATES["generic"])
        content = template.format(
            urgency=urgency,
            lat=location.lat,
            lon=location.lon,
            status=action.params.get("status") or ctx.content,
        )
        details = {
            "type": notification_type,
            "urgency": urgency,
            "location": location.model_dump(),
            "location_source": location_source,
        }
        await self._log_action(ctx.key, "DispatchNotified", details)
        self.audit.analytics("DispatchNotified", details, ctx.key.user_id, ctx.key.tenant_id)
        return _respond(ctx.key, content, ResponseKind.ACTION, succeeded=True, **details)

    async def _compliance_check(self, action: ActionDescriptor, ctx: ExecutionContext) -> NormalizedResponse:
        action_name = str(action.params.get("action") or ctx.intent.label)
        timestamp = action.params.get("timestamp") or now_ms()
        template = COMPLIANCE_TEMPLATES.get(action_name, "{action} logged at {time}.")
        content = template.format(action=action_name.replace("_", " ").capitalize(), time=_clock(timestamp))
        # the action occurred; its preconditions were not checked here
        entry = {
            "action": action_name,
            "timestamp": timestamp,
            "compliance_status": "compliant",
            "precondition_verified": False,
        }
        await self._log_action(ctx.key, "ComplianceLogged", entry)
        self.audit.compliance(action_name, entry, ctx.key.user_id, ctx.key.tenant_id)
        return _respond(ctx.key, content, ResponseKind.ACTION, succeeded=True, **entry)

    async def _reference_lookup(self, action: ActionDescriptor, ctx: ExecutionContext) -> NormalizedResponse:
        query = str(action.params.get("query") or ctx.content)
        record = self.references.lookup(query)
        if record is None:
            return _respond(ctx.key, NOT_FOUND_TEXT, succeeded=False)
        return _respond(ctx.key, record.render(), code=record.code, title=record.title, succeeded=True)

    async def _scripted_disclosure(self, action: ActionDescriptor, ctx: ExecutionContext) -> NormalizedResponse:
        language = str(action.params.get("language") or DISCLOSURE_LANGUAGE).lower()
        translation_available = language == DISCLOSURE_LANGUAGE
        if not translation_available:
            logger.warning("disclosure_translation_unavailable", requested_language=language)
        delivered = {
            "requested_language": language,
            "delivered_language": DISCLOSURE_LANGUAGE,
            "translation_available": translation_available,
            "text": RIGHTS_ADVISORY,
        }
        await self._log_action(ctx.key, "MirandaRightsDelivered", delivered)
        self.audit.compliance("MirandaRightsDelivered", delivered, ctx.key.user_id, ctx.key.tenant_id)
        return _respond(
            ctx.key,
            RIGHTS_ADVISORY,
            workflow="miranda",
            language=language,
            delivered_language=DISCLOSURE_LANGUAGE,
            translation_available=translation_available,
            timestamp=now_ms(),
            succeeded=True,
        )

    async def _tool_invoke(self, action: ActionDescriptor, ctx: ExecutionContext) -> NormalizedResponse:
        tool_id = action.params.get("tool_id")
        params = action.params.get("params") or {}
        try:
            result = await self._call(self.tools.invoke(tool_id, params))
        except ValidationError as exc:
            logger.warning("tool_rejected", tool_id=tool_id, error=str(exc))
            return _respond(ctx.key, str(exc), tool_id=tool_id, error="validation", succeeded=False)
        except Exception as exc:
            logger.warning("tool_failed", tool_id=tool_id, error=str(exc) or exc.__class__.__name__)
            return _respond(ctx.key, TOOL_ERROR_TEXT, tool_id=tool_id, error="execution", succeeded=False)
        await self._log_action(ctx.key, "ToolInvocationSuccess", {"tool_id": tool_id})
        return _respond(ctx.key, str(result), tool_id=tool_id, succeeded=True)

    async def _freeform_reply(self, action: ActionDescriptor, ctx: ExecutionContext) -> NormalizedResponse:
        history = await self.session_store.get_history(ctx.key, limit=self.history_window)
        messages = [{"role": entry.role.value, "content": entry.content} for entry in history]
        try:
            snippets = await self._call(self.knowledge.retrieve(ctx.content))
        except Exception as exc:
            logger.warning("knowledge_unavailable", error=str(exc) or exc.__class__.__name__)
            snippets = []

        backend = self.selector.select(ctx.intent)
        try:
            reply = await self._call(
                backend.generate_reply(ctx.key.user_id, messages, snippets, scene_directive(ctx.scene))
            )
        except ConfigurationError as exc:
            logger.warning("reply_backend_unconfigured", backend=backend.name, error=str(exc))
            return apology(ctx.key, backend=backend.name)
        except Exception as exc:
            logger.warning("reply_backend_failed", backend=backend.name, error=str(exc) or exc.__class__.__name__)
            return apology(ctx.key, backend=backend.name)
        return _respond(ctx.key, reply, backend=backend.name, snippets=len(snippets), succeeded=True)

    # ---------- feedback ----------

    async def handle_feedback(self, key: SessionKey, raw_rating: str) -> NormalizedResponse:
        rating = int(raw_rating)
        if not 1 <= rating <= 5:
            return _respond(
                key,
                "Ratings must be a whole number from 1 to 5, for example 'rate 4'.",
                feedback=True,
                error="validation",
            )
        await self._log_action(key, "FeedbackReceived", {"rating": rating})
        self.audit.analytics("FeedbackReceived", {"rating": rating}, key.user_id, key.tenant_id)
        return _respond(
            key,
            f"Thanks for the feedback. You rated this response {rating} out of 5.",
            feedback=True,
            rating=rating,
        )


def scene_directive(scene: SceneContext) -> str:
    parts = [
        f"Current scene: {scene.scenario_type}, threat level {scene.threat_level.value}, {scene.time_of_day}."
    ]
    if scene.weapons_present:
        parts.append("Weapons are reported on scene.")
    if scene.suspect_count:
        parts.append(f"Suspects on scene: {scene.suspect_count}.")
    if scene.threat_level in (ThreatLevel.HIGH, ThreatLevel.CRITICAL):
        parts.append("Keep the reply short and put officer safety first.")
    hints = scene_hints(scene)
    if hints:
        parts.append(f"Relevant next steps: {', '.join(dict.fromkeys(hints))}.")
    return " ".join(parts)
