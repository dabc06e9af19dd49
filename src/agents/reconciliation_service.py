"""Removes identities left behind by provisioning runs that never finished.

A crash between "create identity" and "create profile" leaves an identity with
no profile in any school. Such identities are deleted once they are older than
the grace period, so an in-flight signup is never raced.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Protocol
from uuid import UUID

from fastapi import FastAPI

from src.agents.health import AgentHealth
from src.core.config import settings
from src.core.db import AsyncSessionLocal
from src.core.identity import AuthUser, IdentityAdminClient
from src.core.provisioning import SqlProvisioningStore

logger = logging.getLogger(__name__)


class IdentityDirectory(Protocol):
    async def all_users(self) -> list[AuthUser]: ...

    async def delete_user(self, user_id: UUID) -> None: ...


class ProfileIndex(Protocol):
    async def identities_with_profiles(self, identity_ids: Iterable[UUID]) -> set[UUID]: ...


class ReconciliationAgent:
    def __init__(
        self,
        identities: IdentityDirectory | None = None,
        profiles: ProfileIndex | None = None,
        *,
        grace_period_seconds: int | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.health = AgentHealth(name="reconciliation-agent", ready=True)
        self._identities = identities
        self._profiles = profiles or SqlProvisioningStore(AsyncSessionLocal)
        self._grace = timedelta(
            seconds=grace_period_seconds
            if grace_period_seconds is not None
            else settings.reconciliation_grace_period_seconds
        )
        self._now = now
        self._stop_event = asyncio.Event()

    async def stop(self) -> None:
        self._stop_event.set()

    async def run(self) -> None:
        retry_delay = 1
        while not self._stop_event.is_set():
            self.health.mark_run()
            try:
                await self.sweep()
                self.health.mark_success()
                retry_delay = 1
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=settings.reconciliation_interval_seconds
                )
            except asyncio.TimeoutError:
                continue
            except Exception as exc:  # pragma: no cover - operational path
                self.health.mark_error(exc)
                logger.exception("Reconciliation cycle failed")
                await asyncio.sleep(retry_delay)
                retry_delay = min(retry_delay * 2, settings.reconciliation_max_retry_delay_seconds)

    async def sweep(self) -> list[UUID]:
        """Delete orphaned identities; returns the ids that were removed."""
        identities = self._identities or IdentityAdminClient()
        users = await identities.all_users()
        with_profiles = await self._profiles.identities_with_profiles(user.id for user in users)

        cutoff = self._now() - self._grace
        orphans = [
            user
            for user in users
            if user.id not in with_profiles
            and user.created_at is not None
            and user.created_at <= cutoff
        ]

        removed: list[UUID] = []
        for user in orphans:
            if self._stop_event.is_set():
                break
            try:
                await identities.delete_user(user.id)
                removed.append(user.id)
                logger.info("Removed orphaned identity=%s created_at=%s", user.id, user.created_at)
            except Exception:
                logger.exception("Failed to remove orphaned identity=%s", user.id)

        self.health.metrics["identities_seen"] = len(users)
        self.health.metrics["orphans_found"] = len(orphans)
        self.health.increment("orphans_removed", len(removed))
        return removed


reconciliation_agent = ReconciliationAgent()
app = FastAPI(title="Schoolhouse Reconciliation Agent")


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO)
    app.state.task = asyncio.create_task(reconciliation_agent.run())


@app.on_event("shutdown")
async def shutdown_event() -> None:
    await reconciliation_agent.stop()
    task: asyncio.Task[None] = app.state.task
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


@app.get("/health", tags=["system"])
async def health() -> dict[str, object]:
    return reconciliation_agent.health.payload()


@app.get("/ready", tags=["system"])
async def ready() -> dict[str, bool]:
    return {"ready": reconciliation_agent.health.ready}
