import json
from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field
from redis.asyncio import Redis
from redis.exceptions import RedisError

from fieldops.errors import StorageUnavailable
from fieldops.schemas.events import ActionLogEntry, ConversationEntry, Role
from fieldops.schemas.intents import SessionKey
from fieldops.utils import utcnow

logger = structlog.get_logger("session_store")


class SessionRecord(BaseModel):
    key: SessionKey
    conversation_history: list[ConversationEntry] = Field(default_factory=list)
    action_log: list[ActionLogEntry] = Field(default_factory=list)
    situational_data: dict[str, Any] = Field(default_factory=dict)
    last_updated: datetime = Field(default_factory=utcnow)


class SessionStore:
    """
    Per (tenant, user) conversation history, action log and situational data.

    The in-process record is authoritative for the running service. When a
    Redis URL is configured and `connect()` has been called, every mutation
    is mirrored to Redis as well; a mirror failure raises StorageUnavailable
    only after the in-process mutation is done, so callers can log and move on.
    """

    def __init__(self, redis_url: str | None = None, ttl_seconds: int = 86400) -> None:
        self._redis_url = redis_url
        self._ttl_seconds = ttl_seconds
        self._redis: Redis | None = None
        self._records: dict[SessionKey, SessionRecord] = {}

    async def connect(self) -> None:
        if not self._redis_url:
            return
        self._redis = Redis.from_url(self._redis_url, decode_responses=True)
        await self._redis.ping()

    async def close(self) -> None:
        if self._redis:
            await self._redis.close()

    def _history_key(self, key: SessionKey) -> str:
        return f"chat_history:{key.tenant_id}:{key.user_id}"

    def _actions_key(self, key: SessionKey) -> str:
        return f"action_log:{key.tenant_id}:{key.user_id}"

    def _situation_key(self, key: SessionKey) -> str:
        return f"situational_data:{key.tenant_id}:{key.user_id}"

    def _record(self, key: SessionKey) -> SessionRecord:
        # no await between lookup and insert, so lazy creation cannot race
        record = self._records.get(key)
        if record is None:
            record = self._records[key] = SessionRecord(key=key)
        return record

    async def get(self, key: SessionKey) -> SessionRecord:
        return self._record(key)

    async def get_history(self, key: SessionKey, limit: int | None = None) -> list[ConversationEntry]:
        history = self._record(key).conversation_history
        if limit is None:
            return list(history)
        return list(history[-limit:]) if limit > 0 else []

    async def append_message(self, key: SessionKey, role: Role | str, content: str) -> None:
        record = self._record(key)
        entry = ConversationEntry(role=Role(role), content=content)
        record.conversation_history.append(entry)
        record.last_updated = entry.timestamp
        await self._mirror_push(self._history_key(key), entry.model_dump(mode="json"))

    async def append_action(
        self, key: SessionKey, action_type: str, details: dict[str, Any] | None = None
    ) -> None:
        record = self._record(key)
        entry = ActionLogEntry(type=action_type, details=details)
        record.action_log.append(entry)
        record.last_updated = entry.timestamp
        await self._mirror_push(self._actions_key(key), entry.model_dump(mode="json"))

    async def merge_situational_data(self, key: SessionKey, partial: dict[str, Any]) -> None:
        if not partial:
            return
        record = self._record(key)
        record.situational_data.update(partial)
        record.last_updated = utcnow()
        if not self._redis:
            return
        redis_key = self._situation_key(key)
        mapping = {field: json.dumps(value, default=str) for field, value in partial.items()}
        try:
            await self._redis.hset(redis_key, mapping=mapping)
            await self._redis.expire(redis_key, self._ttl_seconds)
        except RedisError as exc:
            raise StorageUnavailable(f"session mirror write failed: {exc}") from exc

    async def reset(self, key: SessionKey) -> None:
        self._records.pop(key, None)
        if not self._redis:
            return
        try:
            await self._redis.delete(
                self._history_key(key), self._actions_key(key), self._situation_key(key)
            )
        except RedisError as exc:
            raise StorageUnavailable(f"session mirror reset failed: {exc}") from exc
        logger.info("session_reset", tenant_id=key.tenant_id, user_id=key.user_id)

    async def _mirror_push(self, redis_key: str, item: dict[str, Any]) -> None:
        if not self._redis:
            return
        try:
            await self._redis.rpush(redis_key, json.dumps(item))
            await self._redis.expire(redis_key, self._ttl_seconds)
        except RedisError as exc:
            raise StorageUnavailable(f"session mirror write failed: {exc}") from exc
