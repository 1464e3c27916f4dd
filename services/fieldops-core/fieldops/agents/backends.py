from dataclasses import dataclass
from typing import Callable

import structlog

from fieldops.config import Settings
from fieldops.errors import CollaboratorUnavailable, ConfigurationError
from fieldops.llm_client import LLMEndpoint, call_llm_text
from fieldops.schemas.intents import Intent, Priority

logger = structlog.get_logger("backends")

PERSONA = (
    "You are a voice-activated field assistant for solo patrol officers. "
    "Your goal is officer safety and efficiency: anticipate needs, automate routine steps "
    "and support the officer during high-pressure situations. "
    "Respond in a professional, concise, authoritative tone, one or two sentences."
)

LEGAL_TOPIC_MARKERS = ("legal", "law", "statute", "compliance", "miranda", "rights", "disclosure")


class ReplyBackend:
    def __init__(self, endpoint: LLMEndpoint) -> None:
        self.endpoint = endpoint

    @property
    def name(self) -> str:
        return self.endpoint.name

    @property
    def configured(self) -> bool:
        return self.endpoint.configured

    async def generate_reply(
        self,
        user_id: str,
        history: list[dict[str, str]],
        snippets: list[str],
        directive: str = "",
    ) -> str:
        if not self.configured:
            raise ConfigurationError(f"backend {self.name} has no credentials")
        system_prompt = PERSONA
        if directive:
            system_prompt = f"{system_prompt}\n{directive}"
        if snippets:
            system_prompt = f"{system_prompt}\nUse the following information to answer:\n" + "\n".join(snippets)
        reply = await call_llm_text(self.endpoint, system_prompt, history)
        if not reply:
            raise CollaboratorUnavailable(f"backend {self.name} returned no reply")
        return reply


def is_legal_topic(label: str) -> bool:
    lower = label.lower()
    return any(marker in lower for marker in LEGAL_TOPIC_MARKERS)


@dataclass
class SelectionRule:
    name: str
    predicate: Callable[[Intent], bool]
    backend: ReplyBackend


class BackendSelector:
    """
    Ordered (predicate, backend) rules; the first rule whose predicate holds
    and whose backend has credentials wins. When none applies, the default
    backend is returned even if it is unconfigured, and calling it raises
    ConfigurationError.
    """

    def __init__(self, rules: list[SelectionRule], default: ReplyBackend) -> None:
        self.rules = list(rules)
        self.default = default

    def select(self, intent: Intent) -> ReplyBackend:
        for rule in self.rules:
            if rule.predicate(intent) and rule.backend.configured:
                return rule.backend
        return self.default

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackendSelector":
        fast = ReplyBackend(
            LLMEndpoint("fast", settings.fast_llm_base_url, settings.fast_llm_model, settings.fast_llm_api_key)
        )
        legal = ReplyBackend(
            LLMEndpoint("legal", settings.legal_llm_base_url, settings.legal_llm_model, settings.legal_llm_api_key)
        )
        general = ReplyBackend(
            LLMEndpoint(
                "general", settings.general_llm_base_url, settings.general_llm_model, settings.general_llm_api_key
            )
        )
        default = ReplyBackend(
            LLMEndpoint(
                "default", settings.default_llm_base_url, settings.default_llm_model, settings.default_llm_api_key
            )
        )
        rules = [
            SelectionRule("critical", lambda intent: intent.priority == Priority.CRITICAL, fast),
            SelectionRule("legal", lambda intent: is_legal_topic(intent.label), legal),
            SelectionRule("general", lambda intent: True, general),
        ]
        configured = [rule.backend.name for rule in rules if rule.backend.configured]
        logger.info("reply_backends_loaded", configured=configured, default_configured=default.configured)
        return cls(rules, default)
