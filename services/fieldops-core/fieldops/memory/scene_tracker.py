from typing import Any

import structlog

from fieldops.schemas.intents import Intent, SceneContext, SessionKey, ThreatLevel
from fieldops.utils import time_of_day

logger = structlog.get_logger("scene_tracker")


class SceneContextTracker:
    """Ephemeral per-user operational snapshot. Lost on restart."""

    def __init__(self) -> None:
        self._scenes: dict[SessionKey, SceneContext] = {}

    def get(self, key: SessionKey) -> SceneContext:
        scene = self._scenes.get(key)
        if scene is None:
            scene = self._scenes[key] = SceneContext(time_of_day=time_of_day())
        return scene

    def update(self, key: SessionKey, partial: dict[str, Any]) -> SceneContext:
        # field-level merge: only the fields named in the partial change
        current = self.get(key)
        scene = SceneContext.model_validate({**current.model_dump(), **partial})
        self._scenes[key] = scene
        return scene

    def apply_intent(self, key: SessionKey, intent: Intent) -> SceneContext:
        partial = scene_update_for(intent)
        if not partial:
            return self.get(key)
        logger.info("scene_updated", intent=intent.label, **{k: str(v) for k, v in partial.items()})
        return self.update(key, partial)

    def reset(self, key: SessionKey) -> None:
        self._scenes.pop(key, None)


def _suspect_count(raw: Any) -> int:
    # entities come from the LLM and may hold "two" or "2 suspects"
    try:
        count = int(raw)
    except (TypeError, ValueError):
        return 1
    return count if count > 0 else 1


def scene_update_for(intent: Intent) -> dict[str, Any]:
    entities = intent.entities or {}
    if intent.label == "threat_detected":
        return {"threat_level": ThreatLevel.CRITICAL, "weapons_present": True}
    if intent.label == "traffic_stop":
        return {"scenario_type": "traffic_stop"}
    if intent.label == "arriving_scene" and entities.get("scene_type"):
        return {"scenario_type": str(entities["scene_type"])}
    if intent.label == "arrest_made":
        return {"scenario_type": "arrest", "suspect_count": _suspect_count(entities.get("suspect_count"))}
    if intent.label == "scene_secure":
        return {"threat_level": ThreatLevel.LOW}
    return {}


def scene_hints(scene: SceneContext) -> list[str]:
    hints: list[str] = []
    if scene.scenario_type == "traffic_stop":
        hints += ["run_license_plate", "check_insurance", "activate_camera"]
    elif scene.scenario_type == "domestic_disturbance":
        hints += ["assess_threat_level", "separate_parties", "check_restraining_orders"]
    elif scene.scenario_type == "foot_pursuit":
        hints += ["request_backup", "coordinate_perimeter", "notify_air_support"]
    elif scene.scenario_type == "arrest":
        hints += ["deliver_miranda", "start_arrest_report", "search_incident_to_arrest"]

    if scene.threat_level in (ThreatLevel.HIGH, ThreatLevel.CRITICAL):
        hints += ["request_backup", "notify_supervisor", "activate_emergency_alert"]
    if scene.time_of_day == "night":
        hints += ["use_spotlight", "extra_caution", "coordinate_units"]
    return hints
