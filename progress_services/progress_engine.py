"""
progress_services.progress_engine -- request-scoped facade over the kernel.

Responsibility:
    Public entrypoint for catalog authoring, stage writes, contract
    service lifecycle and progress reporting.  Every call is one unit of
    work: open a session, run the kernel operation, commit, close; roll
    back on any exception.

Architecture position:
    Services -- top of the orchestration layer.  Reads configuration via
    ``progress_config.get_active_config()`` (or an explicit EngineConfig)
    and wires kernel services through ProgressOrchestrator.

Invariants enforced:
    - Atomicity: a failed call leaves nothing written, including routine
      mirror updates made by event handlers.
    - Callers only ever see ProgressKernelError subclasses: SQLAlchemy
      failures are translated (ProgressUpdateError on writes,
      TransientStoreError on reads, OptimisticLockError on stale rows).
    - Reads retry transient failures per RetryPolicy; writes never retry.

Usage:
    engine = ProgressEngine(get_session_factory())
    result = engine.set_stage_status(instance_id, "completed", actor_id)
    result.progress.percentage, result.auto_completed
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import date
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from progress_config import EngineConfig, get_active_config
from progress_config.bridges import build_stage_templates
from progress_kernel.domain.clock import Clock, SystemClock
from progress_kernel.domain.dtos import (
    BatchStageWriteResult,
    ClientProgress,
    ContractProgress,
    ContractServiceInfo,
    ServiceProgress,
    StageDefinitionInfo,
    StageInstanceInfo,
    StageWriteResult,
    SyncReport,
)
from progress_kernel.domain.progress import ProgressSnapshot
from progress_kernel.domain.statuses import ContractServiceStatus
from progress_kernel.exceptions import ProgressKernelError, TransientStoreError
from progress_kernel.logging_config import LogContext, get_logger
from progress_kernel.utils.store_errors import translate_write_error
from progress_services.orchestrator import ProgressOrchestrator

logger = get_logger("services.progress_engine")


class ProgressEngine:
    """Hierarchical progress and status propagation engine."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: EngineConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._default_stages = build_stage_templates(self._config)

    # ------------------------------------------------------------------
    # Units of work
    # ------------------------------------------------------------------

    def _orchestrator(self, session: Session) -> ProgressOrchestrator:
        return ProgressOrchestrator(
            session,
            clock=self._clock,
            default_stages=self._default_stages,
            read_attempts=self._config.retry.read_attempts,
            backoff_seconds=self._config.retry.backoff_seconds,
            publish_events=self._config.propagation.publish_events,
            sync_routines=self._config.propagation.sync_routines,
        )

    @contextmanager
    def _write(self, operation: str, actor_id: UUID) -> Iterator[ProgressOrchestrator]:
        session = self._session_factory()
        with LogContext.bind(correlation_id=str(uuid4()), actor_id=str(actor_id)):
            try:
                yield self._orchestrator(session)
                session.commit()
            except ProgressKernelError:
                session.rollback()
                logger.warning("unit_of_work_rolled_back", extra={"operation": operation})
                raise
            except SQLAlchemyError as exc:
                session.rollback()
                error = translate_write_error(exc, operation)
                logger.error(
                    "unit_of_work_failed",
                    extra={"operation": operation, "code": error.code},
                )
                raise error from exc
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    @contextmanager
    def _read(self, operation: str) -> Iterator[ProgressOrchestrator]:
        session = self._session_factory()
        with LogContext.bind(correlation_id=str(uuid4())):
            try:
                yield self._orchestrator(session)
                session.rollback()
            except SQLAlchemyError as exc:
                session.rollback()
                raise TransientStoreError(operation, str(exc)) from exc
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    # ------------------------------------------------------------------
    # Catalog API
    # ------------------------------------------------------------------

    def create_stage(
        self,
        service_id: UUID,
        name: str,
        sort_order: int,
        actor_id: UUID,
        is_required: bool = True,
        description: str | None = None,
        category: str | None = None,
    ) -> tuple[StageDefinitionInfo, SyncReport]:
        with self._write("create_stage", actor_id) as orch:
            return orch.stage_definitions.create(
                service_id,
                name,
                sort_order,
                actor_id,
                is_required=is_required,
                description=description,
                category=category,
            )

    def update_stage(
        self,
        definition_id: UUID,
        patch: Mapping[str, Any],
        actor_id: UUID,
    ) -> tuple[StageDefinitionInfo, SyncReport]:
        with self._write("update_stage", actor_id) as orch:
            return orch.stage_definitions.update(definition_id, patch, actor_id)

    def soft_delete_stage(self, definition_id: UUID, actor_id: UUID) -> SyncReport:
        with self._write("soft_delete_stage", actor_id) as orch:
            return orch.stage_definitions.soft_delete(definition_id, actor_id)

    def hard_delete_stage(
        self,
        definition_id: UUID,
        actor_id: UUID,
        is_admin: bool = False,
    ) -> SyncReport:
        with self._write("hard_delete_stage", actor_id) as orch:
            return orch.stage_definitions.hard_delete(definition_id, actor_id, is_admin)

    def reorder_stages(
        self,
        service_id: UUID,
        items: Sequence[Mapping[str, Any]],
        actor_id: UUID,
    ) -> tuple[list[StageDefinitionInfo], SyncReport]:
        with self._write("reorder_stages", actor_id) as orch:
            return orch.stage_definitions.reorder(service_id, items, actor_id)

    def create_default_stages(
        self,
        service_id: UUID,
        actor_id: UUID,
    ) -> tuple[list[StageDefinitionInfo], SyncReport]:
        with self._write("create_default_stages", actor_id) as orch:
            return orch.stage_definitions.create_default_stages(service_id, actor_id)

    def list_stages(
        self,
        service_id: UUID,
        include_inactive: bool = False,
    ) -> list[StageDefinitionInfo]:
        with self._read("list_stages") as orch:
            return orch.stage_definitions.list_by_service(service_id, include_inactive)

    def sync_service(self, service_id: UUID, actor_id: UUID) -> SyncReport:
        with self._write("sync_service", actor_id) as orch:
            return orch.sync.reconcile(service_id, actor_id)

    def sync_all(self, actor_id: UUID) -> SyncReport:
        with self._write("sync_all", actor_id) as orch:
            return orch.sync.reconcile_all(actor_id)

    # ------------------------------------------------------------------
    # Contract service API
    # ------------------------------------------------------------------

    def instantiate_contract_service(
        self,
        contract_id: UUID,
        service_id: UUID,
        actor_id: UUID,
        status: ContractServiceStatus | str = ContractServiceStatus.NOT_STARTED,
        scheduled_start_date: date | None = None,
    ) -> tuple[ContractServiceInfo, SyncReport]:
        with self._write("instantiate_contract_service", actor_id) as orch:
            return orch.contract_services.instantiate(
                contract_id,
                service_id,
                actor_id,
                status=status,
                scheduled_start_date=scheduled_start_date,
            )

    def set_contract_service_status(
        self,
        contract_service_id: UUID,
        status: ContractServiceStatus | str,
        actor_id: UUID,
    ) -> ContractServiceInfo:
        with self._write("set_contract_service_status", actor_id) as orch:
            return orch.contract_services.set_status(contract_service_id, status, actor_id)

    def delete_contract_service(self, contract_service_id: UUID, actor_id: UUID) -> None:
        with self._write("delete_contract_service", actor_id) as orch:
            orch.contract_services.delete(contract_service_id)

    def list_stage_instances(
        self,
        contract_service_id: UUID,
        include_retired: bool = False,
    ) -> list[StageInstanceInfo]:
        with self._read("list_stage_instances") as orch:
            return orch.stage_instances.find_by_contract_service(
                contract_service_id, include_retired
            )

    def set_stage_status(
        self,
        instance_id: UUID,
        status: str,
        actor_id: UUID,
    ) -> StageWriteResult:
        with self._write("set_stage_status", actor_id) as orch:
            return orch.stage_instances.set_status(instance_id, status, actor_id)

    def set_stage_statuses(
        self,
        updates: Sequence[Mapping[str, Any]],
        actor_id: UUID,
    ) -> BatchStageWriteResult:
        with self._write("set_stage_statuses", actor_id) as orch:
            return orch.stage_instances.set_statuses(updates, actor_id)

    def set_stage_not_applicable(
        self,
        instance_id: UUID,
        flag: bool,
        actor_id: UUID,
    ) -> StageWriteResult:
        with self._write("set_stage_not_applicable", actor_id) as orch:
            return orch.stage_instances.set_not_applicable(instance_id, flag, actor_id)

    # ------------------------------------------------------------------
    # Reporting API
    # ------------------------------------------------------------------

    def contract_service_progress(self, contract_service_id: UUID) -> ProgressSnapshot:
        with self._read("contract_service_progress") as orch:
            return orch.progress.compute_for_contract_service(contract_service_id)

    def contract_progress(self, contract_id: UUID) -> ContractProgress:
        with self._read("contract_progress") as orch:
            return orch.progress.compute_for_contract(contract_id)

    def client_progress(self, client_id: UUID) -> ClientProgress:
        with self._read("client_progress") as orch:
            return orch.progress.compute_for_client(client_id)

    def service_progress(self, service_id: UUID) -> ServiceProgress:
        with self._read("service_progress") as orch:
            return orch.progress.compute_for_service(service_id)

    def rank_contracts(self) -> list[ContractProgress]:
        with self._read("rank_contracts") as orch:
            return orch.progress.list_contract_progress()

    def rank_clients(self) -> list[ClientProgress]:
        with self._read("rank_clients") as orch:
            return orch.progress.list_client_progress()
