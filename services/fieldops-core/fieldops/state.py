from typing import TypedDict

from fieldops.schemas.events import ConversationEntry, InputEvent, NormalizedResponse
from fieldops.schemas.intents import ActionDescriptor, Intent, SceneContext, SessionKey


class PipelineState(TypedDict, total=False):
    event: InputEvent
    key: SessionKey
    feedback_rating: str | None
    history: list[ConversationEntry]
    scene: SceneContext
    intent: Intent
    classifier_source: str
    action: ActionDescriptor
    response: NormalizedResponse
