"""Compensating unit of work for multi-entity updates.

Each completed sub-step registers an undo action. If a later step fails, the
undo actions run in reverse order and the original error is re-raised;
unexpected collaborator exceptions are re-raised as ``DependencyError``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from types import TracebackType

from camp_transfers.errors import DependencyError, TransferError

logger = logging.getLogger(__name__)

Compensation = Callable[[], Awaitable[object]]


class UnitOfWork:
    def __init__(self, operation: str) -> None:
        self.operation = operation
        self._compensations: list[tuple[str, Compensation]] = []

    def on_rollback(self, step: str, compensation: Compensation) -> None:
        self._compensations.append((step, compensation))

    async def __aenter__(self) -> UnitOfWork:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        if exc is None:
            self._compensations.clear()
            return False
        if not isinstance(exc, Exception):
            # Cancellation and interpreter exits still roll back.
            await self.rollback()
            return False

        failed_steps = await self.rollback()
        if isinstance(exc, TransferError) and not failed_steps:
            return False

        details: dict[str, object] = {"operation": self.operation, "cause": repr(exc)}
        if failed_steps:
            details["failed_compensations"] = failed_steps
        if isinstance(exc, TransferError):
            details["cause_code"] = exc.code
        raise DependencyError(f"{self.operation} failed: {exc}", **details) from exc

    async def rollback(self) -> list[str]:
        """Run compensations newest first; return the steps that could not be undone."""
        failed: list[str] = []
        if self._compensations:
            logger.warning(
                "Rolling back %s (%d step(s))", self.operation, len(self._compensations)
            )
        while self._compensations:
            step, compensation = self._compensations.pop()
            try:
                await compensation()
            except Exception:
                logger.exception("Compensation for %s/%s failed", self.operation, step)
                failed.append(step)
        return failed
