import inspect
from typing import Any, Awaitable, Callable, Union

import structlog

from fieldops.schemas.events import NormalizedResponse
from fieldops.schemas.intents import SessionKey

logger = structlog.get_logger("broadcaster")

Listener = Callable[[NormalizedResponse], Union[None, Awaitable[Any]]]


class ResponseBroadcaster:
    """
    Per-user fan-out of normalized responses.

    Delivery is in-line and in subscription order over the listeners
    subscribed at publish time. Nothing is buffered: a listener that
    subscribes later never sees earlier responses. A listener that raises is
    logged and skipped; the remaining listeners still receive the response.
    """

    def __init__(self) -> None:
        self._listeners: dict[SessionKey, list[Listener]] = {}

    def subscribe(self, key: SessionKey, listener: Listener) -> None:
        self._listeners.setdefault(key, []).append(listener)
        logger.info("listener_subscribed", tenant_id=key.tenant_id, user_id=key.user_id)

    def unsubscribe(self, key: SessionKey, listener: Listener) -> None:
        listeners = self._listeners.get(key)
        if not listeners:
            return
        remaining = [item for item in listeners if item is not listener]
        if remaining:
            self._listeners[key] = remaining
        else:
            self._listeners.pop(key, None)
        logger.info("listener_unsubscribed", tenant_id=key.tenant_id, user_id=key.user_id)

    def subscriber_count(self, key: SessionKey) -> int:
        return len(self._listeners.get(key, []))

    async def publish(self, response: NormalizedResponse) -> int:
        """Deliver to the current listeners; returns how many accepted it."""
        key = SessionKey(response.tenant_id, response.user_id)
        delivered = 0
        for listener in list(self._listeners.get(key, [])):
            try:
                result = listener(response)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as exc:
                logger.exception(
                    "listener_failed",
                    tenant_id=key.tenant_id,
                    user_id=key.user_id,
                    error=str(exc),
                )
        if not delivered:
            logger.info("response_undelivered", tenant_id=key.tenant_id, user_id=key.user_id)
        return delivered
