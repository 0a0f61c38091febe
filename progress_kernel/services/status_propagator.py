"""
StatusPropagator -- push stage progress up into contract service status.

Responsibility:
    After a stage write, recomputes the contract service's progress,
    applies the automatic transition decided by
    ``progress_kernel.domain.transitions`` and publishes the matching
    status event.

Architecture position:
    Kernel > Services -- imperative shell around the pure state machine.
    Called by StageInstanceService once per affected contract service.

Invariants enforced:
    - One-way ratchet: completion is sticky; nothing here demotes a
      completed contract service.
    - Hold states (cancelled, suspended) are never overridden.
    - Events are published only for real transitions and handlers run
      synchronously in the caller's transaction; a handler failure aborts
      the whole unit of work.

Failure modes:
    - ContractServiceNotFoundError if the contract service does not exist.
    - Any exception raised by an event handler propagates unchanged.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from progress_kernel.domain.clock import Clock, SystemClock
from progress_kernel.domain.dtos import PropagationOutcome
from progress_kernel.domain.events import StatusEventSink, event_for
from progress_kernel.domain.transitions import decide_transition
from progress_kernel.exceptions import ContractServiceNotFoundError
from progress_kernel.logging_config import get_logger
from progress_kernel.models.contract import ContractService
from progress_kernel.selectors.progress_selector import ProgressSelector
from progress_kernel.services.base import BaseService

logger = get_logger("services.status_propagator")


class StatusPropagator(BaseService):
    """Applies automatic status transitions to contract services."""

    def __init__(
        self,
        session: Session,
        sink: StatusEventSink | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._sink = sink
        self._clock = clock or SystemClock()
        # Runs inside write transactions, so no read retry here.
        self._progress = ProgressSelector(session)

    def propagate(
        self,
        contract_service_id: UUID,
        actor_id: UUID | None = None,
    ) -> PropagationOutcome:
        """
        Recompute progress and apply the automatic transition.

        Postconditions:
            - ContractService.status reflects the decision (flushed).
            - At most one status event was published.
        """
        contract_service = self.session.execute(
            select(ContractService)
            .where(ContractService.id == contract_service_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if contract_service is None:
            raise ContractServiceNotFoundError(str(contract_service_id))

        progress = self._progress.compute_for_contract_service(contract_service_id)
        decision = decide_transition(contract_service.status, progress.percentage)

        if decision.changed:
            contract_service.status = decision.new_status.value
            contract_service.updated_by_id = actor_id
            self.session.flush()
            logger.info(
                "contract_service_auto_completed"
                if decision.auto_completed
                else "contract_service_auto_started",
                extra={
                    "contract_service_id": str(contract_service_id),
                    "previous_status": decision.previous_status.value,
                    "new_status": decision.new_status.value,
                    "percentage": progress.percentage,
                },
            )

        event = event_for(
            decision,
            contract_service_id=contract_service_id,
            service_id=contract_service.service_id,
            progress=progress,
            occurred_at=self._clock.now(),
            actor_id=actor_id,
        )
        if event is not None and self._sink is not None:
            self._sink.publish(event)

        return PropagationOutcome(
            contract_service_id=contract_service_id,
            progress=progress,
            previous_status=decision.previous_status.value,
            new_status=decision.new_status.value,
            auto_started=decision.auto_started,
            auto_completed=decision.auto_completed,
        )
