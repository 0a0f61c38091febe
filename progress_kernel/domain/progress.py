"""
Progress -- pure completion arithmetic.

Responsibility:
    Turns stage facts into a ProgressSnapshot for one contract service and
    folds snapshots into contract, client and service roll-ups.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called by
    ProgressSelector after it has fetched rows in a single batch.

Invariants enforced:
    - Percentages are integers in [0, 100], rounded half-up.
    - Division by zero yields 0, never an exception.
    - Not-applicable and retired stages are excluded from numerator AND
      denominator.
    - A contract service without applicable stages counts as one synthetic
      unit, completed iff its status is COMPLETED.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from progress_kernel.domain.statuses import ContractServiceStatus, StageInstanceStatus

_ONE = Decimal("1")
_HUNDRED = Decimal("100")


def percentage_of(completed: int, total: int) -> int:
    """Return ``completed / total * 100`` rounded half-up; 0 when total is 0."""
    if total <= 0:
        return 0
    ratio = Decimal(completed) * _HUNDRED / Decimal(total)
    return int(ratio.quantize(_ONE, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class StageFact:
    """The three facts about a stage instance that progress depends on."""

    status: str
    is_not_applicable: bool = False
    is_retired: bool = False

    @property
    def is_applicable(self) -> bool:
        return not (self.is_not_applicable or self.is_retired)

    @property
    def is_completed(self) -> bool:
        return self.status == StageInstanceStatus.COMPLETED


@dataclass(frozen=True)
class ProgressSnapshot:
    """Completed / total units and the derived integer percentage."""

    total: int
    completed: int
    percentage: int
    is_synthetic: bool = False

    def __post_init__(self) -> None:
        if self.total < 0 or self.completed < 0:
            raise ValueError("Progress counts must be non-negative")
        if self.completed > self.total:
            raise ValueError(
                f"Completed units ({self.completed}) exceed total ({self.total})"
            )

    @classmethod
    def of(cls, completed: int, total: int, is_synthetic: bool = False) -> ProgressSnapshot:
        return cls(
            total=total,
            completed=completed,
            percentage=percentage_of(completed, total),
            is_synthetic=is_synthetic,
        )

    @classmethod
    def empty(cls) -> ProgressSnapshot:
        return cls(total=0, completed=0, percentage=0)

    @property
    def is_complete(self) -> bool:
        return self.total > 0 and self.completed == self.total

    def as_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "completed": self.completed,
            "percentage": self.percentage,
        }


def contract_service_progress(
    stages: Iterable[StageFact],
    service_status: str,
) -> ProgressSnapshot:
    """
    Compute progress for one contract service.

    Args:
        stages: Every stage instance of the contract service.
        service_status: Current ContractService.status, used only for the
            stage-less fallback.
    """
    total = 0
    completed = 0
    for stage in stages:
        if not stage.is_applicable:
            continue
        total += 1
        if stage.is_completed:
            completed += 1

    if total == 0:
        done = 1 if service_status == ContractServiceStatus.COMPLETED else 0
        return ProgressSnapshot.of(done, 1, is_synthetic=True)

    return ProgressSnapshot.of(completed, total)


def aggregate(snapshots: Iterable[ProgressSnapshot]) -> ProgressSnapshot:
    """Sum units across snapshots and derive the percentage the same way."""
    total = 0
    completed = 0
    for snap in snapshots:
        total += snap.total
        completed += snap.completed
    return ProgressSnapshot.of(completed, total)
