from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, Field, field_validator


class SessionKey(NamedTuple):
    tenant_id: str
    user_id: str

    def __str__(self) -> str:
        return f"{self.tenant_id}:{self.user_id}"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ThreatLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ActionKind(str, Enum):
    NAVIGATE = "navigate"
    DISPATCH_NOTIFY = "dispatch_notify"
    COMPLIANCE_CHECK = "compliance_check"
    REFERENCE_LOOKUP = "reference_lookup"
    SCRIPTED_DISCLOSURE = "scripted_disclosure"
    TOOL_INVOKE = "tool_invoke"
    FREEFORM_REPLY = "freeform_reply"


class Intent(BaseModel):
    label: str
    confidence: float = 0.5
    entities: dict[str, Any] = Field(default_factory=dict)
    suggested_followups: list[str] = Field(default_factory=list)
    priority: Priority = Priority.LOW

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return min(1.0, max(0.0, value))


class SceneContext(BaseModel):
    scenario_type: str = "patrol"
    threat_level: ThreatLevel = ThreatLevel.LOW
    time_of_day: str = "day"
    weapons_present: bool | None = None
    suspect_count: int | None = None


class ActionDescriptor(BaseModel):
    kind: ActionKind
    params: dict[str, Any] = Field(default_factory=dict)


class SuggestedAction(BaseModel):
    label: str
    action_type: str
    params: dict[str, Any] | None = None


class WorkflowState(BaseModel):
    current_step: str = "initial"
    last_action: str = ""
    situation: str = ""
    timestamp: int = 0
    extra: dict[str, Any] = Field(default_factory=dict)
