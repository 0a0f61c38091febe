"""
Transitions -- the contract service status state machine.

Responsibility:
    Decides, from the current status and a freshly computed percentage,
    which automatic transition (if any) applies.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  StatusPropagator
    applies the decision and publishes the matching status event.

Rules:
    - 0 < p < 100 and NOT_STARTED          -> IN_PROGRESS (auto_started)
    - p == 100 and not already COMPLETED   -> COMPLETED   (auto_completed)
    - CANCELLED / SUSPENDED                -> never changed automatically
    - COMPLETED with p < 100               -> stays COMPLETED (ratchet)
    - SCHEDULED with 0 < p < 100           -> unchanged; only NOT_STARTED
                                              is promoted to IN_PROGRESS
"""

from __future__ import annotations

from dataclasses import dataclass

from progress_kernel.domain.statuses import HOLD_STATES, ContractServiceStatus


@dataclass(frozen=True)
class TransitionDecision:
    """Outcome of evaluating the state machine once."""

    previous_status: ContractServiceStatus
    new_status: ContractServiceStatus
    auto_started: bool = False
    auto_completed: bool = False

    @property
    def changed(self) -> bool:
        return self.previous_status != self.new_status


def decide_transition(
    current: ContractServiceStatus | str,
    percentage: int,
) -> TransitionDecision:
    """
    Evaluate the automatic transition for a contract service.

    Raises:
        ValueError: If percentage is outside [0, 100] or current is unknown.
    """
    if not 0 <= percentage <= 100:
        raise ValueError(f"Percentage out of range: {percentage}")

    status = ContractServiceStatus(current)
    unchanged = TransitionDecision(previous_status=status, new_status=status)

    if status in HOLD_STATES:
        return unchanged

    if percentage == 100:
        if status == ContractServiceStatus.COMPLETED:
            return unchanged
        return TransitionDecision(
            previous_status=status,
            new_status=ContractServiceStatus.COMPLETED,
            auto_completed=True,
        )

    if percentage > 0 and status == ContractServiceStatus.NOT_STARTED:
        return TransitionDecision(
            previous_status=status,
            new_status=ContractServiceStatus.IN_PROGRESS,
            auto_started=True,
        )

    return unchanged
