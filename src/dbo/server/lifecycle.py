"""Shutdown coordination for ``dbo serve``.

Handlers check ``is_shutting_down`` before starting a backup. The shutdown
hook uses the deadline to bound how long it waits for running backups to
stop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ShutdownState:
    """When shutdown began and when waiting for backups gives up."""

    initiated: datetime | None = None
    timeout_deadline: datetime | None = None

    # Backups that were still running when shutdown began
    backups_interrupted: int = 0

    @property
    def is_shutting_down(self) -> bool:
        return self.initiated is not None

    @property
    def remaining_seconds(self) -> float | None:
        """Seconds left before the deadline, or None before shutdown."""
        if self.timeout_deadline is None:
            return None
        return max((self.timeout_deadline - _utcnow()).total_seconds(), 0.0)

    @property
    def is_timed_out(self) -> bool:
        return self.remaining_seconds == 0.0


@dataclass
class ServiceLifecycle:
    """Uptime and shutdown state of the running service."""

    shutdown_timeout: float = 30.0
    start_time: datetime = field(default_factory=_utcnow)
    shutdown_state: ShutdownState = field(default_factory=ShutdownState)

    @property
    def uptime_seconds(self) -> float:
        return (_utcnow() - self.start_time).total_seconds()

    @property
    def is_shutting_down(self) -> bool:
        return self.shutdown_state.is_shutting_down

    def initiate_shutdown(self) -> None:
        """Stop accepting backups; later calls keep the first deadline."""
        state = self.shutdown_state
        if state.initiated is not None:
            return
        state.initiated = _utcnow()
        state.timeout_deadline = state.initiated + timedelta(
            seconds=self.shutdown_timeout
        )
        logger.info(
            "Refusing new backups, shutdown deadline in %.1fs", self.shutdown_timeout
        )
