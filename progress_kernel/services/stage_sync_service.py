"""
StageSyncService -- reconcile template stages into per-contract stages.

Responsibility:
    Makes the stage instance set of every contract service match the
    active stage definitions of its service: missing instances are
    created, instances of hard-deleted definitions are removed.  The only
    component that bridges definitions and instances.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by StageDefinitionService after every template mutation, by
    ContractServiceService on instantiation, and by the sync-all script.

Invariants enforced:
    - Exactly one instance per (contract service, active definition):
      the Service row is locked FOR UPDATE for the run and the unique
      constraint uq_stage_instance_definition rejects duplicates from any
      writer that bypasses the lock.
    - Existing instances are never modified: status, completion stamps and
      the not-applicable flag are owned by users.
    - Instances of soft-deleted definitions are kept (retired), not removed.
    - Each contract service is reconciled inside its own SAVEPOINT, so a
      failure on one leaves the others' work intact.
    - Idempotent: a second run reports created=0, removed=0.

Failure modes:
    - ServiceNotFoundError / ContractServiceNotFoundError for unknown ids.
    - A contract service deleted mid-run is recorded in
      ``SyncReport.conflicts`` and skipped, never raised.
    - IntegrityError on a concurrent duplicate insert: the savepoint is
      rolled back and the contract service is re-read and retried once.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from progress_kernel.domain.dtos import SyncReport
from progress_kernel.domain.statuses import StageInstanceStatus
from progress_kernel.exceptions import (
    ContractServiceNotFoundError,
    ProgressKernelError,
    ServiceNotFoundError,
    SyncConflictError,
)
from progress_kernel.logging_config import LogContext, get_logger
from progress_kernel.models.catalog import Service, ServiceStageDefinition
from progress_kernel.models.contract import ContractService
from progress_kernel.models.stage_instance import ContractServiceStageInstance
from progress_kernel.services.base import BaseService

logger = get_logger("services.stage_sync")


class StageSyncService(BaseService):
    """
    Sync engine for stage instances.

    Usage:
        sync = StageSyncService(session)
        report = sync.reconcile(service_id, actor_id)
        assert report.as_dict() == {"created": 3, "removed": 0}
    """

    def reconcile(self, service_id: UUID, actor_id: UUID) -> SyncReport:
        """
        Reconcile every contract service of a service.

        Preconditions:
            - The caller is within an active database transaction.

        Postconditions:
            - Every contract service of the service that still exists has
              one instance per active definition.

        Raises:
            ServiceNotFoundError: If the service does not exist.
        """
        self._lock_service(service_id)
        definition_ids = self._active_definition_ids(service_id)

        contract_service_ids = self._contract_service_ids(service_id)
        existing = self._existing_pairs(contract_service_ids)

        created = 0
        conflicts: list[UUID] = []
        with LogContext.bind(service_id=str(service_id)):
            for contract_service_id in contract_service_ids:
                have = existing.get(contract_service_id, set())
                if all(d in have for d in definition_ids):
                    continue
                count = self._sync_contract_service(
                    service_id, contract_service_id, definition_ids, actor_id
                )
                if count is None:
                    conflicts.append(contract_service_id)
                else:
                    created += count

            removed = self._remove_dangling(contract_service_ids)

            report = SyncReport(
                created=created,
                removed=removed,
                contract_services=len(contract_service_ids),
                conflicts=tuple(conflicts),
            )
            logger.info(
                "stage_sync_completed",
                extra={
                    "stages_created": report.created,
                    "removed": report.removed,
                    "contract_services": report.contract_services,
                    "conflicts": len(report.conflicts),
                },
            )
        return report

    def reconcile_contract_service(
        self,
        contract_service_id: UUID,
        actor_id: UUID,
    ) -> SyncReport:
        """
        Reconcile a single contract service (used right after instantiation).

        Raises:
            ContractServiceNotFoundError: If the contract service does not exist.
        """
        service_id = self.session.execute(
            select(ContractService.service_id).where(
                ContractService.id == contract_service_id
            )
        ).scalar_one_or_none()
        if service_id is None:
            raise ContractServiceNotFoundError(str(contract_service_id))

        self._lock_service(service_id)
        definition_ids = self._active_definition_ids(service_id)
        count = self._sync_contract_service(
            service_id, contract_service_id, definition_ids, actor_id
        )
        if count is None:
            raise ContractServiceNotFoundError(str(contract_service_id))

        logger.info(
            "contract_service_stages_synced",
            extra={
                "contract_service_id": str(contract_service_id),
                "stages_created": count,
            },
        )
        return SyncReport(created=count, contract_services=1)

    def remove_orphans(self, stage_definition_id: UUID) -> int:
        """
        Delete every instance that references a definition.

        Must run before the definition row itself is deleted (the foreign
        key on instances has no cascade).  Returns the number removed.
        """
        result = self.session.execute(
            delete(ContractServiceStageInstance)
            .where(ContractServiceStageInstance.stage_definition_id == stage_definition_id)
            .execution_options(synchronize_session="fetch")
        )
        removed = result.rowcount or 0
        logger.info(
            "stage_orphans_removed",
            extra={
                "stage_definition_id": str(stage_definition_id),
                "removed": removed,
            },
        )
        return removed

    def reconcile_all(self, actor_id: UUID) -> SyncReport:
        """
        Reconcile every service that has at least one contract service.

        Each service runs in its own SAVEPOINT.  A service whose reconcile
        fails is rolled back, logged and listed in
        ``SyncReport.failed_services``; the run continues.
        """
        service_ids = list(
            self.session.execute(
                select(ContractService.service_id)
                .distinct()
                .order_by(ContractService.service_id)
            ).scalars()
        )

        report = SyncReport()
        for service_id in service_ids:
            savepoint = self.session.begin_nested()
            try:
                report = report.merge(self.reconcile(service_id, actor_id))
            except (SQLAlchemyError, ProgressKernelError) as exc:
                savepoint.rollback()
                logger.error(
                    "stage_sync_service_failed",
                    extra={"service_id": str(service_id), "error": str(exc)},
                )
                report = report.merge(SyncReport(failed_services=(service_id,)))
                continue
            savepoint.commit()

        logger.info(
            "stage_sync_all_completed",
            extra={
                "services": len(service_ids),
                "stages_created": report.created,
                "removed": report.removed,
                "failed_services": len(report.failed_services),
            },
        )
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_service(self, service_id: UUID) -> None:
        locked = self.session.execute(
            select(Service.id).where(Service.id == service_id).with_for_update()
        ).scalar_one_or_none()
        if locked is None:
            raise ServiceNotFoundError(str(service_id))

    def _active_definition_ids(self, service_id: UUID) -> list[UUID]:
        return list(
            self.session.execute(
                select(ServiceStageDefinition.id)
                .where(
                    ServiceStageDefinition.service_id == service_id,
                    ServiceStageDefinition.is_active.is_(True),
                )
                .order_by(ServiceStageDefinition.sort_order, ServiceStageDefinition.id)
            ).scalars()
        )

    def _contract_service_ids(self, service_id: UUID) -> list[UUID]:
        return list(
            self.session.execute(
                select(ContractService.id)
                .where(ContractService.service_id == service_id)
                .order_by(ContractService.id)
            ).scalars()
        )

    def _existing_pairs(self, contract_service_ids: Sequence[UUID]) -> dict[UUID, set[UUID]]:
        if not contract_service_ids:
            return {}
        pairs: dict[UUID, set[UUID]] = {}
        rows = self.session.execute(
            select(
                ContractServiceStageInstance.contract_service_id,
                ContractServiceStageInstance.stage_definition_id,
            ).where(
                ContractServiceStageInstance.contract_service_id.in_(contract_service_ids)
            )
        )
        for contract_service_id, definition_id in rows:
            pairs.setdefault(contract_service_id, set()).add(definition_id)
        return pairs

    def _sync_contract_service(
        self,
        service_id: UUID,
        contract_service_id: UUID,
        definition_ids: Sequence[UUID],
        actor_id: UUID,
    ) -> int | None:
        """
        Create the missing instances of one contract service atomically.

        Returns the number created, or None if the contract service no
        longer exists (a sync conflict).
        """
        for attempt in (1, 2):
            savepoint = self.session.begin_nested()
            try:
                created = self._create_missing(contract_service_id, definition_ids, actor_id)
            except IntegrityError:
                # Another writer inserted the same pair; re-read under the lock.
                savepoint.rollback()
                if attempt == 2:
                    raise
                logger.debug(
                    "stage_sync_race_retry",
                    extra={"contract_service_id": str(contract_service_id)},
                )
                continue

            if created is None:
                savepoint.rollback()
                conflict = SyncConflictError(str(service_id), str(contract_service_id))
                logger.warning(
                    "stage_sync_conflict",
                    extra={
                        "code": conflict.code,
                        "contract_service_id": str(contract_service_id),
                    },
                )
                return None

            savepoint.commit()
            return created
        return None

    def _create_missing(
        self,
        contract_service_id: UUID,
        definition_ids: Sequence[UUID],
        actor_id: UUID,
    ) -> int | None:
        locked = self._lock_contract_services([contract_service_id])
        if not locked:
            return None

        have = set(
            self.session.execute(
                select(ContractServiceStageInstance.stage_definition_id).where(
                    ContractServiceStageInstance.contract_service_id == contract_service_id
                )
            ).scalars()
        )
        missing = [d for d in definition_ids if d not in have]
        for definition_id in missing:
            self.session.add(
                ContractServiceStageInstance(
                    contract_service_id=contract_service_id,
                    stage_definition_id=definition_id,
                    status=StageInstanceStatus.PENDING.value,
                    is_not_applicable=False,
                    created_by_id=actor_id,
                )
            )
        if missing:
            self.session.flush()
        return len(missing)

    def _remove_dangling(self, contract_service_ids: Sequence[UUID]) -> int:
        """
        Remove instances whose definition row no longer exists.

        With foreign keys enforced this finds nothing, because hard delete
        runs remove_orphans first; it covers rows written while
        enforcement was off.
        """
        if not contract_service_ids:
            return 0
        dangling = list(
            self.session.execute(
                select(ContractServiceStageInstance.id)
                .outerjoin(
                    ServiceStageDefinition,
                    ServiceStageDefinition.id
                    == ContractServiceStageInstance.stage_definition_id,
                )
                .where(
                    ContractServiceStageInstance.contract_service_id.in_(contract_service_ids),
                    ServiceStageDefinition.id.is_(None),
                )
            ).scalars()
        )
        if not dangling:
            return 0
        self.session.execute(
            delete(ContractServiceStageInstance)
            .where(ContractServiceStageInstance.id.in_(dangling))
            .execution_options(synchronize_session="fetch")
        )
        return len(dangling)
