from __future__ import annotations

import hashlib
import json
from typing import Any

import redis.asyncio as redis

from src.core.config import settings
from src.core.errors import ConflictError, ValidationError

_PENDING = "pending"


def _redis_key(scope: str, key: str) -> str:
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:48]
    return f"idempotency:{scope}:{digest}"


class IdempotencyStore:
    """Single-winner claim on a client-supplied key, with replay of the stored outcome."""

    def __init__(self, scope: str, *, ttl_seconds: int | None = None) -> None:
        self.scope = scope
        self.ttl_seconds = ttl_seconds or settings.provisioning_idempotency_ttl_seconds

    def _client(self) -> redis.Redis:
        return redis.from_url(settings.redis_url, decode_responses=True)

    async def begin(self, key: str) -> dict[str, Any] | None:
        """Claim ``key``.

        Returns ``None`` when this caller won the claim and should do the work,
        or the stored outcome of an earlier completed attempt. Raises
        ``ConflictError`` while another attempt with the same key is running.
        """
        key = key.strip()
        if not key or len(key) > 255:
            raise ValidationError("Invalid idempotency key", field="Idempotency-Key")

        redis_key = _redis_key(self.scope, key)
        client = self._client()
        try:
            acquired = await client.set(redis_key, _PENDING, nx=True, ex=self.ttl_seconds)
            if acquired:
                return None
            existing = await client.get(redis_key)
        finally:
            await client.aclose()

        if existing is None:
            # expired between SET and GET; let the caller retry cleanly
            raise ConflictError("provisioning already in progress")
        if existing == _PENDING:
            raise ConflictError("provisioning already in progress")
        return json.loads(existing)

    async def complete(self, key: str, outcome: dict[str, Any]) -> None:
        client = self._client()
        try:
            await client.set(
                _redis_key(self.scope, key.strip()),
                json.dumps(outcome),
                ex=self.ttl_seconds,
            )
        finally:
            await client.aclose()

    async def release(self, key: str) -> None:
        client = self._client()
        try:
            await client.delete(_redis_key(self.scope, key.strip()))
        finally:
            await client.aclose()
