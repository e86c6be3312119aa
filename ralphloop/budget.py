"""
RALPH Context Budget Tracker

Keeps a cheap, monotonic estimate of how much context the observing
agent has consumed, fed by every resource read. Reads are never blocked;
the status only tells the controller when to rotate.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from loguru import logger
from pydantic import BaseModel, Field

from ralphloop.config_loader import ContextConfig
from ralphloop.state import utc_now
from ralphloop.workspace.journal import Journal

# Maps an observed byte length to estimated tokens. Swap in a real
# tokenizer-backed estimator without touching the controller.
TokenEstimator = Callable[[int], int]


def byte_heuristic(byte_length: int) -> int:
    """~4 bytes per token."""
    return max(byte_length, 0) // 4


class BudgetStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def label(self) -> str:
        return {
            BudgetStatus.HEALTHY: "🟢 Healthy",
            BudgetStatus.WARNING: "🟡 Warning - Approaching limit",
            BudgetStatus.CRITICAL: "🔴 Critical - Start fresh!",
        }[self]

    @property
    def rank(self) -> int:
        return [BudgetStatus.HEALTHY, BudgetStatus.WARNING, BudgetStatus.CRITICAL].index(self)


class ContextAccess(BaseModel):
    """One resource read, as logged in `context.jsonl`."""
    session_id: str
    resource_id: str
    estimated_tokens: int = Field(ge=0)
    timestamp: str = Field(default_factory=utc_now)


@dataclass
class BudgetSnapshot:
    allocated_tokens: int
    warn_threshold: int
    critical_threshold: int
    capacity: int
    status: BudgetStatus
    access_count: int = 0

    @property
    def at_least_warning(self) -> bool:
        return self.status.rank >= BudgetStatus.WARNING.rank

    def summary(self) -> dict:
        return {
            "allocated_tokens": self.allocated_tokens,
            "capacity": self.capacity,
            "warn_threshold": self.warn_threshold,
            "critical_threshold": self.critical_threshold,
            "status": self.status.value,
            "access_count": self.access_count,
        }


@dataclass
class AccessResult:
    entry: ContextAccess
    snapshot: BudgetSnapshot

    @property
    def wrap_up(self) -> bool:
        """Tell the agent to wrap up; the read itself is still allowed."""
        return self.snapshot.status is BudgetStatus.CRITICAL


class ContextBudgetTracker:
    """
    Budget state is derived from the append-only access journal: the
    allocated total is the sum of this session's entries, so it can only
    grow until a rotation starts a new session.
    """

    def __init__(
        self,
        journal: Journal[ContextAccess],
        session_id: str,
        config: ContextConfig | None = None,
        estimator: TokenEstimator = byte_heuristic,
    ):
        self.journal = journal
        self.session_id = session_id
        self.config = config or ContextConfig()
        self.estimator = estimator

    def classify(self, allocated: int) -> BudgetStatus:
        if allocated >= self.config.critical_threshold:
            return BudgetStatus.CRITICAL
        if allocated >= self.config.warn_threshold:
            return BudgetStatus.WARNING
        return BudgetStatus.HEALTHY

    def accesses(self) -> list[ContextAccess]:
        return [e for e in self.journal.read() if e.session_id == self.session_id]

    def snapshot(self) -> BudgetSnapshot:
        entries = self.accesses()
        allocated = sum(e.estimated_tokens for e in entries)
        return BudgetSnapshot(
            allocated_tokens=allocated,
            warn_threshold=self.config.warn_threshold,
            critical_threshold=self.config.critical_threshold,
            capacity=self.config.capacity,
            status=self.classify(allocated),
            access_count=len(entries),
        )

    def estimate(self, resource_id: str, content: str | None = None, size: int | None = None) -> int:
        if content:
            return self.estimator(len(content.encode("utf-8")))
        if size is not None:
            return self.estimator(size)
        path = Path(resource_id)
        if path.is_file():
            try:
                return self.estimator(path.stat().st_size)
            except OSError as e:
                logger.debug(f"[BUDGET] Could not stat {path}: {e}")
        return self.config.default_read_estimate

    def record_read(
        self,
        resource_id: str,
        content: str | None = None,
        size: int | None = None,
    ) -> AccessResult:
        entry = ContextAccess(
            session_id=self.session_id,
            resource_id=resource_id,
            estimated_tokens=self.estimate(resource_id, content, size),
        )
        self.journal.append(entry)
        snapshot = self.snapshot()

        if snapshot.status is BudgetStatus.CRITICAL:
            logger.warning(
                f"[BUDGET] Critical: {snapshot.allocated_tokens:,} / {snapshot.capacity:,} tokens"
            )
        else:
            logger.debug(
                f"[BUDGET] +{entry.estimated_tokens} for {resource_id} "
                f"→ {snapshot.allocated_tokens:,} ({snapshot.status.value})"
            )
        return AccessResult(entry=entry, snapshot=snapshot)
