from typing import Any

import structlog
from sqlalchemy.engine import Engine
from sqlmodel import Session

from fieldops.models import AuditLog

logger = structlog.get_logger("audit")

COMPLIANCE = "compliance"
ANALYTICS = "analytics"
SYSTEM = "system"


class AuditSink:
    """Fire-and-forget audit trail; a failed write never reaches the caller."""

    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine

    def log(
        self,
        category: str,
        event_type: str,
        payload: dict[str, Any] | None = None,
        user_id: str | None = None,
        tenant_id: str | None = None,
    ) -> None:
        payload = payload or {}
        logger.info(
            "audit_event",
            category=category,
            event_type=event_type,
            user_id=user_id,
            tenant_id=tenant_id,
            payload=payload,
        )
        if self._engine is None:
            return
        try:
            with Session(self._engine) as session:
                session.add(
                    AuditLog(
                        category=category,
                        event_type=event_type,
                        tenant_id=tenant_id,
                        user_id=user_id,
                        payload=payload,
                    )
                )
                session.commit()
        except Exception as exc:
            logger.warning("audit_write_failed", event_type=event_type, error=str(exc))

    def compliance(self, event_type: str, payload: dict[str, Any], user_id: str, tenant_id: str) -> None:
        self.log(COMPLIANCE, event_type, payload, user_id, tenant_id)

    def analytics(self, event_type: str, payload: dict[str, Any], user_id: str, tenant_id: str) -> None:
        self.log(ANALYTICS, event_type, payload, user_id, tenant_id)

    def system(self, event_type: str, payload: dict[str, Any], tenant_id: str | None = None) -> None:
        self.log(SYSTEM, event_type, payload, None, tenant_id)
