from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class WorkItem:
    symbol: str
    name: str  # best-known display name at enqueue time


class RefreshState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"


@dataclass(frozen=True)
class JobStatus:
    """Point-in-time copy of the batch job counters."""

    state: RefreshState
    total: int
    completed: int
    failed: int
    started_at_ms: Optional[int]
    finished_at_ms: Optional[int]
    target_date: Optional[date]

    @property
    def running(self) -> bool:
        return self.state is RefreshState.RUNNING

    @property
    def processed(self) -> int:
        return self.completed + self.failed


class TriggerOutcome(str, Enum):
    STARTED = "STARTED"
    ALREADY_RUNNING = "ALREADY_RUNNING"
    NOTHING_DUE = "NOTHING_DUE"


@dataclass(frozen=True)
class TriggerResult:
    outcome: TriggerOutcome
    status: JobStatus
