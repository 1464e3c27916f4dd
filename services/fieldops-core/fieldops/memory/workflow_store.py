import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import structlog
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from fieldops.models import WorkflowStateRecord
from fieldops.schemas.intents import SessionKey, SuggestedAction, WorkflowState
from fieldops.utils import now_ms, utcnow

logger = structlog.get_logger("workflow_store")

_COLUMNS = {"current_step", "last_action", "situation"}

DEFAULT_SUGGESTIONS = [
    SuggestedAction(label="Search Statutes", action_type="search_statutes_ui"),
    SuggestedAction(
        label="Check Weather",
        action_type="tool_use",
        params={"tool_id": "fetch_weather", "city": "Current Location"},
    ),
]

SUGGESTIONS_BY_STEP: dict[str, list[SuggestedAction]] = {
    "suspect_detained": [
        SuggestedAction(label="Deliver Miranda Rights", action_type="miranda"),
    ],
    "miranda_delivered": [
        SuggestedAction(
            label="Start Arrest Report", action_type="tool_use", params={"tool_id": "start_arrest_report"}
        ),
        SuggestedAction(
            label="Request Transport", action_type="tool_use", params={"tool_id": "request_transport"}
        ),
    ],
    "report_started": [
        SuggestedAction(
            label="Add Narrative to Report",
            action_type="tool_use",
            params={"tool_id": "add_report_narrative"},
        ),
        SuggestedAction(label="Complete Report", action_type="tool_use", params={"tool_id": "complete_report"}),
    ],
}


class WorkflowStore:
    """
    Durable "where is this officer in the procedure" record, one row per key.

    Writes commit before `update` returns. Updates for the same key are
    serialized through a per-key asyncio lock; reads never take the lock.
    A key's lock is dropped once no update or reset for it is in flight.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        # key -> (lock, number of coroutines holding or awaiting it)
        self._locks: dict[SessionKey, tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def _lock(self, key: SessionKey) -> AsyncIterator[None]:
        lock, users = self._locks.get(key) or (asyncio.Lock(), 0)
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users == 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    def _load(self, session: Session, key: SessionKey) -> WorkflowStateRecord | None:
        return session.exec(
            select(WorkflowStateRecord).where(
                WorkflowStateRecord.tenant_id == key.tenant_id,
                WorkflowStateRecord.user_id == key.user_id,
            )
        ).first()

    async def get_current(self, key: SessionKey) -> WorkflowState | None:
        with Session(self._engine) as session:
            record = self._load(session, key)
            return _to_state(record) if record else None

    async def update(self, key: SessionKey, partial: dict[str, Any]) -> WorkflowState:
        async with self._lock(key):
            with Session(self._engine) as session:
                record = self._load(session, key)
                if record is None:
                    record = WorkflowStateRecord(tenant_id=key.tenant_id, user_id=key.user_id)
                extra = dict(record.extra or {})
                for field, value in partial.items():
                    if field in _COLUMNS:
                        setattr(record, field, value)
                    elif field != "timestamp":
                        extra[field] = value
                record.extra = extra
                record.timestamp = now_ms()
                record.updated_at = utcnow()
                session.add(record)
                session.commit()
                session.refresh(record)
                state = _to_state(record)
        logger.info(
            "workflow_updated",
            tenant_id=key.tenant_id,
            user_id=key.user_id,
            current_step=state.current_step,
            last_action=state.last_action,
        )
        return state

    async def suggest_next_actions(self, key: SessionKey) -> list[SuggestedAction]:
        state = await self.get_current(key)
        if state is None:
            return list(DEFAULT_SUGGESTIONS)
        return list(SUGGESTIONS_BY_STEP.get(state.current_step, DEFAULT_SUGGESTIONS))

    async def reset(self, key: SessionKey) -> None:
        async with self._lock(key):
            with Session(self._engine) as session:
                record = self._load(session, key)
                if record is not None:
                    session.delete(record)
                    session.commit()
        logger.info("workflow_reset", tenant_id=key.tenant_id, user_id=key.user_id)


def _to_state(record: WorkflowStateRecord) -> WorkflowState:
    return WorkflowState(
        current_step=record.current_step,
        last_action=record.last_action,
        situation=record.situation,
        timestamp=record.timestamp,
        extra=dict(record.extra or {}),
    )


def workflow_transition(
    content: str,
    intent_label: str | None,
    action_kind: str | None,
    params: dict[str, Any] | None = None,
    succeeded: bool = True,
) -> dict[str, Any]:
    """Map one handled input onto a workflow partial update."""
    params = params or {}
    lower = content.lower()
    update: dict[str, Any] = {"last_action": action_kind or intent_label or "input"}

    if action_kind == "scripted_disclosure" and succeeded:
        language = params.get("language", "english")
        update.update(current_step="miranda_delivered", situation=f"Miranda delivered in {language}.")
    elif action_kind == "tool_invoke" and succeeded:
        tool_id = params.get("tool_id")
        if tool_id == "start_arrest_report":
            update.update(current_step="report_started", situation="Arrest report initiated.")
        elif tool_id == "complete_report":
            update.update(current_step="report_completed", situation="Report marked as complete.")
    elif intent_label == "arrest_made" or "detained" in lower or "cuffed" in lower:
        update.update(current_step="suspect_detained", situation="Suspect likely detained based on input.")
    return update
