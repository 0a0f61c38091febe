"""
ContractServiceService -- lifecycle of services purchased in a contract.

Responsibility:
    Instantiates a contract service together with its routine record and
    its stage instances, applies explicit human status edits (hold states
    included), and deletes contract services on request.

Architecture position:
    Kernel > Services -- imperative shell.
    Depends on StageSyncService; called by ProgressEngine.

Invariants enforced:
    - A new contract service gets one instance per active definition of
      its service in the same transaction.
    - A new contract service gets one routine whose status mirrors the
      initial contract service status.
    - Contract services are only deleted explicitly; the delete cascades
      to stage instances and routines.

Failure modes:
    - ContractNotFoundError, ServiceNotFoundError, ContractServiceNotFoundError.
    - InvalidContractServiceStatusError for unknown statuses.
"""

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from progress_kernel.domain.dtos import ContractServiceInfo, SyncReport
from progress_kernel.domain.statuses import (
    ContractServiceStatus,
    RoutineStatus,
    allowed_values,
)
from progress_kernel.exceptions import (
    ContractNotFoundError,
    ContractServiceNotFoundError,
    InvalidContractServiceStatusError,
    ServiceNotFoundError,
)
from progress_kernel.logging_config import get_logger
from progress_kernel.models.catalog import Service
from progress_kernel.models.contract import Contract, ContractService
from progress_kernel.models.routine import ServiceRoutine
from progress_kernel.services.base import BaseService
from progress_kernel.services.stage_sync_service import StageSyncService

logger = get_logger("services.contract_service")

# Routine mirror of a contract service status; hold states map to not_started.
_ROUTINE_STATUS = {
    ContractServiceStatus.IN_PROGRESS: RoutineStatus.IN_PROGRESS,
    ContractServiceStatus.COMPLETED: RoutineStatus.COMPLETED,
}


def parse_contract_service_status(value: Any) -> ContractServiceStatus:
    try:
        return ContractServiceStatus(value)
    except ValueError:
        raise InvalidContractServiceStatusError(
            value, allowed_values(ContractServiceStatus)
        ) from None


class ContractServiceService(BaseService):
    """Create, edit and delete contract services."""

    def __init__(self, session: Session, sync: StageSyncService):
        super().__init__(session)
        self._sync = sync

    def instantiate(
        self,
        contract_id: UUID,
        service_id: UUID,
        actor_id: UUID,
        status: ContractServiceStatus | str = ContractServiceStatus.NOT_STARTED,
        scheduled_start_date: date | None = None,
    ) -> tuple[ContractServiceInfo, SyncReport]:
        """
        Add a purchased service to a contract and create its stages.

        Raises:
            ContractNotFoundError: If the contract does not exist.
            ServiceNotFoundError: If the service does not exist.
            InvalidContractServiceStatusError: If status is unknown.
        """
        initial = parse_contract_service_status(status)
        if self.session.get(Contract, contract_id) is None:
            raise ContractNotFoundError(str(contract_id))
        if self.session.get(Service, service_id) is None:
            raise ServiceNotFoundError(str(service_id))

        contract_service = ContractService(
            contract_id=contract_id,
            service_id=service_id,
            status=initial.value,
            scheduled_start_date=scheduled_start_date,
            created_by_id=actor_id,
        )
        self.session.add(contract_service)
        self.session.flush()

        self.session.add(
            ServiceRoutine(
                contract_service_id=contract_service.id,
                status=_ROUTINE_STATUS.get(initial, RoutineStatus.NOT_STARTED).value,
                created_by_id=actor_id,
            )
        )
        self.session.flush()

        report = self._sync.reconcile_contract_service(contract_service.id, actor_id)
        logger.info(
            "contract_service_instantiated",
            extra={
                "contract_service_id": str(contract_service.id),
                "contract_id": str(contract_id),
                "service_id": str(service_id),
                "stages_created": report.created,
            },
        )
        return ContractServiceInfo.from_model(contract_service), report

    def set_status(
        self,
        contract_service_id: UUID,
        status: ContractServiceStatus | str,
        actor_id: UUID,
    ) -> ContractServiceInfo:
        """
        Explicit human status edit.

        This is the only way into or out of a hold state.  It publishes
        no status event; routines follow automatic transitions only.
        """
        new_status = parse_contract_service_status(status)
        if not self._lock_contract_services([contract_service_id]):
            raise ContractServiceNotFoundError(str(contract_service_id))

        contract_service = self._get(contract_service_id)
        previous = contract_service.status
        contract_service.status = new_status.value
        contract_service.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "contract_service_status_set",
            extra={
                "contract_service_id": str(contract_service_id),
                "previous_status": previous,
                "new_status": new_status.value,
            },
        )
        return ContractServiceInfo.from_model(contract_service)

    def get(self, contract_service_id: UUID) -> ContractServiceInfo:
        return ContractServiceInfo.from_model(self._get(contract_service_id))

    def delete(self, contract_service_id: UUID) -> None:
        """Delete a contract service with its stage instances and routines."""
        contract_service = self._get(contract_service_id)
        self.session.delete(contract_service)
        self.session.flush()
        logger.warning(
            "contract_service_deleted",
            extra={"contract_service_id": str(contract_service_id)},
        )

    def _get(self, contract_service_id: UUID) -> ContractService:
        contract_service = self.session.execute(
            select(ContractService)
            .where(ContractService.id == contract_service_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if contract_service is None:
            raise ContractServiceNotFoundError(str(contract_service_id))
        return contract_service
