from __future__ import annotations

import json
from typing import Any, Protocol

import redis.asyncio as redis

from src.core.config import settings
from src.core.security.crypto import EncryptionError, SecurityCipher


class SessionStorage(Protocol):
    async def load(self) -> dict[str, Any] | None: ...

    async def save(self, payload: dict[str, Any]) -> None: ...

    async def clear(self) -> None: ...


class MemorySessionStorage:
    def __init__(self, payload: dict[str, Any] | None = None) -> None:
        self._payload = payload

    async def load(self) -> dict[str, Any] | None:
        return self._payload

    async def save(self, payload: dict[str, Any]) -> None:
        self._payload = dict(payload)

    async def clear(self) -> None:
        self._payload = None


class RedisSessionStorage:
    """Persists the auth session (refresh token included) encrypted at rest."""

    def __init__(
        self,
        cipher: SecurityCipher,
        *,
        key: str | None = None,
        redis_url: str | None = None,
    ) -> None:
        self._cipher = cipher
        self._key = key or settings.session_storage_key
        self._redis_url = redis_url or settings.redis_url

    def _client(self) -> redis.Redis:
        return redis.from_url(self._redis_url, decode_responses=True)

    async def load(self) -> dict[str, Any] | None:
        client = self._client()
        try:
            token = await client.get(self._key)
            if not token:
                return None
            try:
                return json.loads(self._cipher.decrypt(token))
            except EncryptionError:
                # key rotated or value tampered with; treat as signed out
                await client.delete(self._key)
                return None
        finally:
            await client.aclose()

    async def save(self, payload: dict[str, Any]) -> None:
        client = self._client()
        try:
            await client.set(self._key, self._cipher.encrypt(json.dumps(payload)))
        finally:
            await client.aclose()

    async def clear(self) -> None:
        client = self._client()
        try:
            await client.delete(self._key)
        finally:
            await client.aclose()
