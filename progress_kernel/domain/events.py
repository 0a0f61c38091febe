"""
Status events -- facts published when a contract service changes status
automatically.

Responsibility:
    Immutable event records emitted by StatusPropagator and consumed by
    handlers registered on the StatusEventDispatcher (the routine mirror
    is the first one).

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Events carry ids and values only,
    never ORM objects, so handlers re-read what they need through their
    own session access.

Invariants enforced:
    - An event is published only for an actual transition; a propagation
      that leaves the status unchanged publishes nothing.
    - Handlers run synchronously inside the publishing transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar, Protocol
from uuid import UUID

from progress_kernel.domain.progress import ProgressSnapshot
from progress_kernel.domain.transitions import TransitionDecision


@dataclass(frozen=True)
class StatusEvent:
    """Base record for automatic contract service transitions."""

    event_type: ClassVar[str] = "contract_service.status_changed"

    contract_service_id: UUID
    service_id: UUID
    previous_status: str
    new_status: str
    progress: ProgressSnapshot
    occurred_at: datetime
    actor_id: UUID | None


@dataclass(frozen=True)
class ContractServiceStarted(StatusEvent):
    """Contract service left NOT_STARTED because a stage was completed."""

    event_type: ClassVar[str] = "contract_service.started"


@dataclass(frozen=True)
class ContractServiceCompleted(StatusEvent):
    """Every applicable stage of the contract service is completed."""

    event_type: ClassVar[str] = "contract_service.completed"


class StatusEventSink(Protocol):
    """Anything that accepts status events (the dispatcher in production)."""

    def publish(self, event: StatusEvent) -> None:
        ...


def event_for(
    decision: TransitionDecision,
    *,
    contract_service_id: UUID,
    service_id: UUID,
    progress: ProgressSnapshot,
    occurred_at: datetime,
    actor_id: UUID | None,
) -> StatusEvent | None:
    """Build the event matching a transition decision, or None if unchanged."""
    if decision.auto_completed:
        event_cls: type[StatusEvent] = ContractServiceCompleted
    elif decision.auto_started:
        event_cls = ContractServiceStarted
    else:
        return None

    return event_cls(
        contract_service_id=contract_service_id,
        service_id=service_id,
        previous_status=decision.previous_status.value,
        new_status=decision.new_status.value,
        progress=progress,
        occurred_at=occurred_at,
        actor_id=actor_id,
    )
