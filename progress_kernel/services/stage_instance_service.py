"""
StageInstanceService -- user-facing writes on per-contract stages.

Responsibility:
    Lists a contract service's stage instances and applies completion and
    not-applicable toggles, single or batched, then triggers status
    propagation for every affected contract service.

Architecture position:
    Kernel > Services -- imperative shell.
    Depends on StatusPropagator; called by ProgressEngine.

Invariants enforced:
    - Validation before mutation: every id and status of a batch is
      checked before the first row is touched, so a bad item leaves the
      whole batch unapplied.
    - Per-contract-service serialization: parent ContractService rows are
      locked FOR UPDATE, in ascending id order, before instances are read.
    - completed_at / completed_by_id are stamped on completion and cleared
      when the stage returns to pending.
    - Propagation runs exactly once per distinct contract service.

Failure modes:
    - StageInstanceNotFoundError, ContractServiceNotFoundError.
    - InvalidStageStatusError for anything but pending / completed.
    - EmptyBatchError for a batch with no items.
"""

from collections.abc import Mapping, Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, contains_eager

from progress_kernel.domain.clock import Clock, SystemClock
from progress_kernel.domain.dtos import (
    BatchStageWriteResult,
    StageInstanceInfo,
    StageWriteResult,
)
from progress_kernel.domain.statuses import StageInstanceStatus, allowed_values
from progress_kernel.exceptions import (
    ContractServiceNotFoundError,
    EmptyBatchError,
    InvalidStageStatusError,
    StageInstanceNotFoundError,
)
from progress_kernel.logging_config import get_logger
from progress_kernel.models.catalog import ServiceStageDefinition
from progress_kernel.models.contract import ContractService
from progress_kernel.models.stage_instance import ContractServiceStageInstance
from progress_kernel.services.base import BaseService, coerce_uuid
from progress_kernel.services.status_propagator import StatusPropagator

logger = get_logger("services.stage_instance")


def parse_stage_status(value: Any) -> StageInstanceStatus:
    """Validate a raw stage status."""
    try:
        return StageInstanceStatus(value)
    except ValueError:
        raise InvalidStageStatusError(value, allowed_values(StageInstanceStatus)) from None


class StageInstanceService(BaseService):
    """
    Per-contract stage writes.

    Usage:
        service = StageInstanceService(session, propagator, clock)
        result = service.set_status(instance_id, "completed", actor_id)
        result.progress.percentage, result.auto_completed
    """

    def __init__(
        self,
        session: Session,
        propagator: StatusPropagator,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._propagator = propagator
        self._clock = clock or SystemClock()

    def find_by_contract_service(
        self,
        contract_service_id: UUID,
        include_retired: bool = False,
    ) -> list[StageInstanceInfo]:
        """
        Stage instances of a contract service in definition order.

        Instances of soft-deleted definitions are hidden unless
        include_retired is set.
        """
        exists = self.session.execute(
            select(ContractService.id).where(ContractService.id == contract_service_id)
        ).scalar_one_or_none()
        if exists is None:
            raise ContractServiceNotFoundError(str(contract_service_id))

        query = (
            select(ContractServiceStageInstance)
            .join(ContractServiceStageInstance.definition)
            .options(contains_eager(ContractServiceStageInstance.definition))
            .where(ContractServiceStageInstance.contract_service_id == contract_service_id)
            .order_by(ServiceStageDefinition.sort_order, ServiceStageDefinition.name)
        )
        if not include_retired:
            query = query.where(ServiceStageDefinition.is_active.is_(True))

        instances = self.session.execute(query).scalars().all()
        return [StageInstanceInfo.from_model(i) for i in instances]

    def set_status(
        self,
        instance_id: UUID,
        status: StageInstanceStatus | str,
        actor_id: UUID,
    ) -> StageWriteResult:
        """Mark one stage pending or completed and propagate."""
        instance_id = coerce_uuid(instance_id, StageInstanceNotFoundError)
        new_status = parse_stage_status(status)
        contract_service_id = self._contract_service_of(instance_id)

        self._lock_contract_services([contract_service_id])
        instance = self._load_instances([instance_id])[instance_id]
        self._apply_status(instance, new_status, actor_id)
        self.session.flush()

        logger.info(
            "stage_status_set",
            extra={
                "instance_id": str(instance_id),
                "contract_service_id": str(contract_service_id),
                "status": new_status.value,
            },
        )
        outcome = self._propagator.propagate(contract_service_id, actor_id)
        return StageWriteResult(
            instance=StageInstanceInfo.from_model(instance),
            outcome=outcome,
        )

    def set_statuses(
        self,
        updates: Sequence[Mapping[str, Any]],
        actor_id: UUID,
    ) -> BatchStageWriteResult:
        """
        Apply several status changes atomically.

        Args:
            updates: Items of the form ``{"id": <instance id>, "status": <status>}``.

        Raises:
            EmptyBatchError: If updates is empty.
            StageInstanceNotFoundError: If any id is unknown (nothing written).
            InvalidStageStatusError: If any status is invalid (nothing written).
        """
        if not updates:
            raise EmptyBatchError()

        parsed: list[tuple[UUID, StageInstanceStatus]] = []
        for item in updates:
            parsed.append(
                (
                    coerce_uuid(item.get("id"), StageInstanceNotFoundError),
                    parse_stage_status(item.get("status")),
                )
            )

        ids = list(dict.fromkeys(instance_id for instance_id, _ in parsed))
        owners = dict(
            self.session.execute(
                select(
                    ContractServiceStageInstance.id,
                    ContractServiceStageInstance.contract_service_id,
                ).where(ContractServiceStageInstance.id.in_(ids))
            ).all()
        )
        for instance_id in ids:
            if instance_id not in owners:
                raise StageInstanceNotFoundError(str(instance_id))

        affected = self._lock_contract_services(owners.values())
        instances = self._load_instances(ids)
        for instance_id, new_status in parsed:
            self._apply_status(instances[instance_id], new_status, actor_id)
        self.session.flush()

        logger.info(
            "stage_statuses_set",
            extra={"instances": len(ids), "contract_services": len(affected)},
        )
        outcomes = tuple(
            self._propagator.propagate(contract_service_id, actor_id)
            for contract_service_id in affected
        )
        return BatchStageWriteResult(
            instances=tuple(StageInstanceInfo.from_model(instances[i]) for i in ids),
            outcomes=outcomes,
        )

    def set_not_applicable(
        self,
        instance_id: UUID,
        flag: bool,
        actor_id: UUID,
    ) -> StageWriteResult:
        """Toggle the not-applicable override and propagate."""
        instance_id = coerce_uuid(instance_id, StageInstanceNotFoundError)
        contract_service_id = self._contract_service_of(instance_id)

        self._lock_contract_services([contract_service_id])
        instance = self._load_instances([instance_id])[instance_id]
        instance.is_not_applicable = bool(flag)
        instance.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "stage_not_applicable_set",
            extra={
                "instance_id": str(instance_id),
                "contract_service_id": str(contract_service_id),
                "is_not_applicable": bool(flag),
            },
        )
        outcome = self._propagator.propagate(contract_service_id, actor_id)
        return StageWriteResult(
            instance=StageInstanceInfo.from_model(instance),
            outcome=outcome,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _contract_service_of(self, instance_id: UUID) -> UUID:
        contract_service_id = self.session.execute(
            select(ContractServiceStageInstance.contract_service_id).where(
                ContractServiceStageInstance.id == instance_id
            )
        ).scalar_one_or_none()
        if contract_service_id is None:
            raise StageInstanceNotFoundError(str(instance_id))
        return contract_service_id

    def _load_instances(
        self,
        instance_ids: Sequence[UUID],
    ) -> dict[UUID, ContractServiceStageInstance]:
        instances = self.session.execute(
            select(ContractServiceStageInstance)
            .where(ContractServiceStageInstance.id.in_(instance_ids))
            .execution_options(populate_existing=True)
        ).scalars().all()
        return {i.id: i for i in instances}

    def _apply_status(
        self,
        instance: ContractServiceStageInstance,
        new_status: StageInstanceStatus,
        actor_id: UUID,
    ) -> None:
        if instance.status == new_status:
            return
        instance.status = new_status.value
        instance.updated_by_id = actor_id
        if new_status == StageInstanceStatus.COMPLETED:
            instance.completed_at = self._clock.now()
            instance.completed_by_id = actor_id
        else:
            instance.completed_at = None
            instance.completed_by_id = None
