import asyncio
import time
from typing import Any

import structlog
from langsmith import traceable
from sqlalchemy.engine import Engine
from structlog.contextvars import bound_contextvars

from fieldops.agents.backends import BackendSelector
from fieldops.agents.classifier import IntentClassifier, LLMClassificationBackend
from fieldops.agents.executor import ActionExecutor, ExecutionContext, apology, match_feedback
from fieldops.agents.langgraph_flow import build_graph
from fieldops.agents.reference import ReferenceLibrary
from fieldops.agents.resolver import resolve
from fieldops.agents.tools import ToolRegistry, register_builtin_tools
from fieldops.audit import AuditSink
from fieldops.broadcaster import Listener, ResponseBroadcaster
from fieldops.collaborators.knowledge import KnowledgeClient
from fieldops.collaborators.location import Location, LocationProvider
from fieldops.collaborators.routing import RoutingClient
from fieldops.config import Settings
from fieldops.errors import InternalError, StorageUnavailable
from fieldops.llm_client import classifier_endpoint
from fieldops.memory.scene_tracker import SceneContextTracker
from fieldops.memory.session_store import SessionStore
from fieldops.memory.workflow_store import WorkflowStore, workflow_transition
from fieldops.observability import record_input_processed
from fieldops.schemas.events import InputEvent, InputKind, NormalizedResponse, Role
from fieldops.schemas.intents import SceneContext, SessionKey, SuggestedAction, WorkflowState
from fieldops.state import PipelineState

logger = structlog.get_logger("orchestrator")


class Orchestrator:
    """
    Public surface of the engine.

    Each input runs through the pipeline graph in its own task. Whatever
    happens inside the graph, exactly one response is published per input;
    the workflow transition is applied after publishing.
    """

    def __init__(
        self,
        session_store: SessionStore,
        workflow_store: WorkflowStore,
        scene_tracker: SceneContextTracker,
        classifier: IntentClassifier,
        executor: ActionExecutor,
        broadcaster: ResponseBroadcaster,
        audit: AuditSink,
        history_window: int = 5,
    ) -> None:
        self.session_store = session_store
        self.workflow_store = workflow_store
        self.scene_tracker = scene_tracker
        self.classifier = classifier
        self.executor = executor
        self.broadcaster = broadcaster
        self.audit = audit
        self.history_window = history_window
        self._tasks: set[asyncio.Task] = set()
        self._graph = build_graph(
            intake=self._intake,
            feedback=self._feedback,
            classify=self._classify,
            update_scene=self._update_scene,
            resolve=self._resolve,
            execute=self._execute,
        ).compile()

    @classmethod
    def from_settings(cls, settings: Settings, engine: Engine) -> "Orchestrator":
        session_store = SessionStore(settings.redis_url, settings.session_ttl_seconds)
        audit = AuditSink(engine if settings.audit_to_database else None)
        tools = ToolRegistry()
        register_builtin_tools(tools)
        backend = LLMClassificationBackend(classifier_endpoint()) if settings.classifier_enabled else None
        executor = ActionExecutor(
            session_store=session_store,
            tools=tools,
            references=ReferenceLibrary.from_file(settings.reference_data_path),
            selector=BackendSelector.from_settings(settings),
            routing=RoutingClient(settings.routing_base_url, settings.routing_api_key),
            location=LocationProvider(settings.location_base_url),
            knowledge=KnowledgeClient(settings.knowledge_base_url),
            audit=audit,
            default_location=Location(lat=settings.default_location_lat, lon=settings.default_location_lon),
            timeout_seconds=settings.collaborator_timeout_seconds,
            history_window=settings.history_window,
        )
        return cls(
            session_store=session_store,
            workflow_store=WorkflowStore(engine),
            scene_tracker=SceneContextTracker(),
            classifier=IntentClassifier(backend, settings.collaborator_timeout_seconds),
            executor=executor,
            broadcaster=ResponseBroadcaster(),
            audit=audit,
            history_window=settings.history_window,
        )

    async def startup(self) -> None:
        try:
            await self.session_store.connect()
        except Exception as exc:
            logger.warning("session_mirror_unavailable", operation="connect", error=str(exc))
        await self.classifier.initialize()
        self.audit.system(
            "engine_started",
            {"classifier_initialized": self.classifier.initialized, "tools": len(self.executor.tools.list_tools())},
        )

    async def shutdown(self) -> None:
        # accepted inputs always run to completion
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.session_store.close()
        await self.executor.tools.close()
        await self.executor.routing.close()
        await self.executor.location.close()
        await self.executor.knowledge.close()
        self.audit.system("engine_stopped", {})

    # ---------- public surface ----------

    def receive_input(self, event: InputEvent) -> asyncio.Task:
        """Schedule processing and return immediately; the result goes to subscribers."""
        task = asyncio.create_task(self.process_input(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @traceable(name="process_input", run_type="chain")
    async def process_input(self, event: InputEvent) -> NormalizedResponse:
        key = SessionKey(event.tenant_id, event.user_id)
        with bound_contextvars(tenant_id=key.tenant_id, user_id=key.user_id):
            start = time.perf_counter()
            result: PipelineState = {}
            try:
                result = await self._graph.ainvoke({"event": event, "key": key})
                response = result["response"]
            except Exception as exc:
                error = InternalError(f"pipeline failed: {exc}")
                logger.exception("input_failed", error=str(error))
                response = apology(key, error=error.__class__.__name__)

            await self.broadcaster.publish(response)

            is_feedback = result.get("feedback_rating") is not None
            if not is_feedback:
                await self._apply_workflow_transition(key, event, result, response)

            action = result.get("action")
            label = "feedback" if is_feedback else (action.kind.value if action else "none")
            outcome = "error" if (response.metadata or {}).get("error") else "ok"
            record_input_processed(label, outcome)
            logger.info(
                "input_processed",
                action=label,
                outcome=outcome,
                response_kind=response.response_kind.value,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            return response

    def subscribe(self, tenant_id: str, user_id: str, listener: Listener) -> None:
        self.broadcaster.subscribe(SessionKey(tenant_id, user_id), listener)

    def unsubscribe(self, tenant_id: str, user_id: str, listener: Listener) -> None:
        self.broadcaster.unsubscribe(SessionKey(tenant_id, user_id), listener)

    async def get_workflow_state(self, tenant_id: str, user_id: str) -> WorkflowState | None:
        return await self.workflow_store.get_current(SessionKey(tenant_id, user_id))

    async def get_workflow_suggestions(self, tenant_id: str, user_id: str) -> list[SuggestedAction]:
        return await self.workflow_store.suggest_next_actions(SessionKey(tenant_id, user_id))

    async def reset_workflow(self, tenant_id: str, user_id: str) -> None:
        await self.workflow_store.reset(SessionKey(tenant_id, user_id))

    def get_scene(self, tenant_id: str, user_id: str) -> SceneContext:
        return self.scene_tracker.get(SessionKey(tenant_id, user_id))

    async def reset_session(self, tenant_id: str, user_id: str) -> None:
        key = SessionKey(tenant_id, user_id)
        self.scene_tracker.reset(key)
        try:
            await self.session_store.reset(key)
        except StorageUnavailable as exc:
            logger.warning("session_mirror_unavailable", operation="reset", error=str(exc))

    # ---------- pipeline nodes ----------

    async def _intake(self, state: PipelineState) -> dict[str, Any]:
        event, key = state["event"], state["key"]
        logger.info("input_received", input_kind=event.input_kind.value, length=len(event.content))
        rating = match_feedback(event.content)
        if rating is not None:
            return {"feedback_rating": rating}

        history = await self.session_store.get_history(key, limit=self.history_window)
        role = Role.SYSTEM if event.input_kind == InputKind.UI else Role.USER
        try:
            await self.session_store.append_message(key, role, event.content)
        except StorageUnavailable as exc:
            logger.warning("session_mirror_unavailable", operation="append_message", error=str(exc))
        return {"feedback_rating": None, "history": history, "scene": self.scene_tracker.get(key)}

    async def _feedback(self, state: PipelineState) -> dict[str, Any]:
        return {"response": await self.executor.handle_feedback(state["key"], state["feedback_rating"])}

    async def _classify(self, state: PipelineState) -> dict[str, Any]:
        key = state["key"]
        intent, source = await self.classifier.classify(state["event"].content, state["scene"], state["history"])
        logger.info(
            "input_classified",
            intent=intent.label,
            confidence=intent.confidence,
            priority=intent.priority.value,
            source=source,
        )
        try:
            await self.session_store.merge_situational_data(
                key,
                {"last_intent": intent.label, "intent_priority": intent.priority.value, "classifier_source": source},
            )
        except StorageUnavailable as exc:
            logger.warning("session_mirror_unavailable", operation="merge_situational_data", error=str(exc))
        return {"intent": intent, "classifier_source": source}

    async def _update_scene(self, state: PipelineState) -> dict[str, Any]:
        return {"scene": self.scene_tracker.apply_intent(state["key"], state["intent"])}

    async def _resolve(self, state: PipelineState) -> dict[str, Any]:
        action = resolve(state["intent"], state["event"].content)
        logger.info("action_resolved", action=action.kind.value)
        return {"action": action}

    async def _execute(self, state: PipelineState) -> dict[str, Any]:
        ctx = ExecutionContext(
            key=state["key"],
            content=state["event"].content,
            intent=state["intent"],
            scene=state["scene"],
        )
        return {"response": await self.executor.execute(state["action"], ctx)}

    async def _apply_workflow_transition(
        self,
        key: SessionKey,
        event: InputEvent,
        result: PipelineState,
        response: NormalizedResponse,
    ) -> None:
        intent = result.get("intent")
        action = result.get("action")
        metadata = response.metadata or {}
        partial = workflow_transition(
            event.content,
            intent.label if intent else None,
            action.kind.value if action else None,
            action.params if action else None,
            succeeded=metadata.get("succeeded", not metadata.get("error")),
        )
        try:
            await self.workflow_store.update(key, partial)
        except Exception as exc:
            logger.exception("workflow_update_failed", error=str(exc))
