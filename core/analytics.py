"""Per-identity outcomes and cycle-level aggregation.

:class:`OperationResult` records one operation invocation,
:class:`IdentityOutcome` freezes everything that happened to one identity
during one cycle, and :class:`CycleReport` accumulates outcomes in
processing order together with aggregate counters.  Reports live for a
single cycle and are never persisted.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from core.retry import OperationStatus


@dataclass(frozen=True)
class OperationResult:
    """Outcome of one named operation.

    Attributes:
        name: Operation name as given in the plan (``"transfer_3"``).
        category: Aggregation bucket (``"transfer"``).
        status: :class:`OperationStatus` of the invocation.
        error: Message of the terminal error for ``FAILED`` results.
    """

    name: str
    category: str
    status: OperationStatus
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is OperationStatus.SUCCESS


@dataclass(frozen=True)
class IdentityOutcome:
    """Everything recorded for one identity in one cycle.

    An outcome with ``error`` set marks an identity that failed as a
    whole (connection setup or an unexpected sequencing error); such an
    outcome carries no ``results``.
    """

    address: str
    results: Tuple[OperationResult, ...] = ()
    error: Optional[str] = None
    proxy: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def total_ops(self) -> int:
        return len(self.results)

    @property
    def successful_ops(self) -> int:
        return sum(1 for r in self.results if r.succeeded)

    @property
    def succeeded(self) -> bool:
        """Identity-level success used for proxy feedback.

        False when the identity failed outright or when every
        operation ended in an exhausted retry (a sign the route
        itself is broken).  Declines do not count against the proxy.
        """
        if self.failed:
            return False
        if not self.results:
            return True
        return any(r.status is not OperationStatus.FAILED for r in self.results)

    def category_attempts(self) -> Dict[str, int]:
        counts: Dict[str, int] = OrderedDict()
        for r in self.results:
            counts[r.category] = counts.get(r.category, 0) + 1
        return counts

    def category_successes(self) -> Dict[str, int]:
        counts: Dict[str, int] = OrderedDict()
        for r in self.results:
            counts.setdefault(r.category, 0)
            if r.succeeded:
                counts[r.category] += 1
        return counts

    def summary(self) -> Dict[str, Union[bool, int]]:
        """Map each category to a bool (single op) or a success count."""
        attempts = self.category_attempts()
        successes = self.category_successes()
        return OrderedDict(
            (cat, successes[cat] > 0 if attempts[cat] == 1 else successes[cat])
            for cat in attempts
        )


@dataclass
class CycleReport:
    """Ordered identity outcomes plus aggregate counters for one cycle."""

    cycle_number: int = 1
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    outcomes: List[IdentityOutcome] = field(default_factory=list)
    total_ops: int = 0
    successful_ops: int = 0
    category_totals: Dict[str, int] = field(default_factory=OrderedDict)
    category_successes: Dict[str, int] = field(default_factory=OrderedDict)

    def record(self, outcome: IdentityOutcome) -> None:
        """Append *outcome* and fold it into the counters."""
        if self.finished_at is not None:
            raise RuntimeError("Cannot record into a finalized cycle report")
        self.outcomes.append(outcome)
        self.total_ops += outcome.total_ops
        self.successful_ops += outcome.successful_ops
        for cat, n in outcome.category_attempts().items():
            self.category_totals[cat] = self.category_totals.get(cat, 0) + n
        for cat, n in outcome.category_successes().items():
            self.category_successes[cat] = (
                self.category_successes.get(cat, 0) + n
            )

    def finalize(self, now: Optional[float] = None) -> "CycleReport":
        if self.finished_at is None:
            self.finished_at = time.time() if now is None else now
        return self

    @property
    def identities_processed(self) -> int:
        return len(self.outcomes)

    @property
    def identities_failed(self) -> int:
        return sum(1 for o in self.outcomes if o.failed)

    @property
    def success_rate(self) -> float:
        """Successful operations as a percentage (0 when nothing ran)."""
        if self.total_ops == 0:
            return 0.0
        return (self.successful_ops / self.total_ops) * 100

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at
