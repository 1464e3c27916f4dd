from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from fieldops.utils import utcnow


class WorkflowStateRecord(SQLModel, table=True):
    __tablename__ = "workflow_states"
    __table_args__ = (UniqueConstraint("tenant_id", "user_id", name="uq_workflow_tenant_user"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    user_id: str = Field(index=True)
    current_step: str = "initial"
    last_action: str = ""
    situation: str = ""
    timestamp: int = 0
    extra: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    updated_at: datetime = Field(default_factory=utcnow)


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    category: str = Field(index=True)  # compliance | analytics | system
    event_type: str = Field(index=True)
    tenant_id: Optional[str] = Field(default=None, index=True)
    user_id: Optional[str] = Field(default=None, index=True)
    payload: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow)
