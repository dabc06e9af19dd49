"""Ordered multi-step workflows with compensating actions.

Steps run in order. A step's return value is recorded under its name so later
steps (and compensations) can use it. When a required step fails, every step
that already completed is compensated in reverse order and a
``DependencyFailure`` is raised. Best-effort steps only log their failure.

Errors the caller is meant to see unchanged (``ConflictError``,
``ValidationError``, ``TransientError``) still trigger compensation but are
re-raised as they are. Cancellation (a caller's ``asyncio.wait_for`` expiring)
compensates too, then propagates.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from src.core.errors import (
    ConflictError,
    DependencyFailure,
    TransientError,
    ValidationError,
)

logger = logging.getLogger(__name__)

SagaResults = dict[str, Any]
StepAction = Callable[[SagaResults], Awaitable[Any]]
Compensation = Callable[[SagaResults], Awaitable[None]]

_PASSTHROUGH_ERRORS = (ConflictError, ValidationError, TransientError)


@dataclass(slots=True)
class SagaStep:
    name: str
    action: StepAction
    compensate: Compensation | None = None
    best_effort: bool = False
    failure_message: str | None = None


@dataclass(slots=True)
class Saga:
    name: str
    steps: list[SagaStep] = field(default_factory=list)

    def step(
        self,
        name: str,
        action: StepAction,
        *,
        compensate: Compensation | None = None,
        failure_message: str | None = None,
    ) -> Saga:
        self.steps.append(
            SagaStep(name=name, action=action, compensate=compensate, failure_message=failure_message)
        )
        return self

    def best_effort(self, name: str, action: StepAction) -> Saga:
        self.steps.append(SagaStep(name=name, action=action, best_effort=True))
        return self

    async def run(self) -> SagaResults:
        results: SagaResults = {}
        completed: list[SagaStep] = []

        for step in self.steps:
            try:
                results[step.name] = await step.action(results)
            except asyncio.CancelledError:
                # a caller's timeout must not strand completed steps
                logger.warning("%s: cancelled during step %s; compensating", self.name, step.name)
                await asyncio.shield(self._compensate(completed, results))
                raise
            except Exception as exc:
                if step.best_effort:
                    logger.exception("%s: best-effort step %s failed", self.name, step.name)
                    results[step.name] = None
                    continue

                logger.error("%s: step %s failed: %r", self.name, step.name, exc)
                await self._compensate(completed, results)
                if isinstance(exc, _PASSTHROUGH_ERRORS):
                    raise
                raise DependencyFailure(step.failure_message, step=step.name, cause=exc) from exc

            completed.append(step)

        return results

    async def _compensate(self, completed: list[SagaStep], results: SagaResults) -> None:
        for step in reversed(completed):
            if step.compensate is None:
                continue
            try:
                await step.compensate(results)
                logger.info("%s: compensated step %s", self.name, step.name)
            except Exception:
                # keep unwinding; leftovers are picked up by reconciliation
                logger.exception("%s: compensation for step %s failed", self.name, step.name)
