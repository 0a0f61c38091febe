"""
StageDefinitionService -- authoring of a service's template checklist.

Responsibility:
    Create, edit, reorder, retire and permanently delete the stage
    definitions of a catalog service.  Every mutation is followed by a
    reconcile so contract services pick up the change in the same
    transaction.

Architecture position:
    Kernel > Services -- imperative shell.
    Depends on StageSyncService and StatusPropagator; called by ProgressEngine.

Invariants enforced:
    - Names are non-empty after trimming and at most 255 characters.
    - sort_order is a positive integer.
    - Soft delete keeps the row and its instances; instances become
      retired and drop out of progress until the definition is reactivated.
    - Hard delete is admin only and removes the definition's instances
      before the definition row.
    - Retiring, reviving or deleting a definition re-runs status
      propagation for every contract service of the service, so a
      contract service whose last open stage disappears is completed.

Failure modes:
    - ServiceNotFoundError, StageDefinitionNotFoundError.
    - InvalidStageDefinitionError for bad fields or unknown patch keys.
    - StageDeletionNotAllowedError for non-admin hard deletes.
    - DefaultStagesExistError when seeding a service that already has stages.
"""

from collections.abc import Mapping, Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from progress_kernel.domain.dtos import StageDefinitionInfo, StageTemplate, SyncReport
from progress_kernel.exceptions import (
    DefaultStagesExistError,
    EmptyBatchError,
    InvalidStageDefinitionError,
    ServiceNotFoundError,
    StageDefinitionNotFoundError,
    StageDeletionNotAllowedError,
)
from progress_kernel.logging_config import get_logger
from progress_kernel.models.catalog import Service, ServiceStageDefinition
from progress_kernel.models.contract import ContractService
from progress_kernel.services.base import BaseService, coerce_uuid
from progress_kernel.services.stage_sync_service import StageSyncService
from progress_kernel.services.status_propagator import StatusPropagator

logger = get_logger("services.stage_definition")

MAX_NAME_LENGTH = 255

EDITABLE_FIELDS = frozenset(
    {"name", "description", "category", "sort_order", "is_required", "is_active"}
)


def _clean_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidStageDefinitionError("name", "must be a non-empty string")
    cleaned = name.strip()
    if len(cleaned) > MAX_NAME_LENGTH:
        raise InvalidStageDefinitionError(
            "name", f"must be at most {MAX_NAME_LENGTH} characters"
        )
    return cleaned


def _check_sort_order(sort_order: Any) -> int:
    if isinstance(sort_order, bool) or not isinstance(sort_order, int) or sort_order < 1:
        raise InvalidStageDefinitionError("sort_order", "must be a positive integer")
    return sort_order


def _check_flag(field: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise InvalidStageDefinitionError(field, "must be a boolean")
    return value


def _check_optional_text(field: str, value: Any) -> str | None:
    if value is not None and not isinstance(value, str):
        raise InvalidStageDefinitionError(field, "must be a string or null")
    return value


class StageDefinitionService(BaseService):
    """
    Template stage store.

    Usage:
        definitions = StageDefinitionService(session, sync, propagator)
        info, report = definitions.create(service_id, "Kickoff", 1, actor_id)
    """

    def __init__(
        self,
        session: Session,
        sync: StageSyncService,
        propagator: StatusPropagator | None = None,
        default_stages: Sequence[StageTemplate] = (),
    ):
        super().__init__(session)
        self._sync = sync
        self._propagator = propagator
        self._default_stages = tuple(default_stages)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, definition_id: UUID) -> StageDefinitionInfo:
        return StageDefinitionInfo.from_model(self._get_definition(definition_id))

    def list_by_service(
        self,
        service_id: UUID,
        include_inactive: bool = False,
    ) -> list[StageDefinitionInfo]:
        """Definitions of a service ordered by sort_order."""
        self._require_service(service_id)
        query = (
            select(ServiceStageDefinition)
            .where(ServiceStageDefinition.service_id == service_id)
            .order_by(ServiceStageDefinition.sort_order, ServiceStageDefinition.name)
        )
        if not include_inactive:
            query = query.where(ServiceStageDefinition.is_active.is_(True))
        return [
            StageDefinitionInfo.from_model(d)
            for d in self.session.execute(query).scalars()
        ]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(
        self,
        service_id: UUID,
        name: str,
        sort_order: int,
        actor_id: UUID,
        is_required: bool = True,
        description: str | None = None,
        category: str | None = None,
    ) -> tuple[StageDefinitionInfo, SyncReport]:
        """
        Add a stage to a service's template and sync it to every contract.

        Raises:
            ServiceNotFoundError: If the service does not exist.
            InvalidStageDefinitionError: If a field fails validation.
        """
        cleaned = _clean_name(name)
        _check_sort_order(sort_order)
        _check_flag("is_required", is_required)
        _check_optional_text("description", description)
        _check_optional_text("category", category)
        self._require_service(service_id)

        definition = ServiceStageDefinition(
            service_id=service_id,
            name=cleaned,
            sort_order=sort_order,
            is_required=is_required,
            is_active=True,
            description=description,
            category=category,
            created_by_id=actor_id,
        )
        self.session.add(definition)
        self.session.flush()

        logger.info(
            "stage_definition_created",
            extra={
                "stage_definition_id": str(definition.id),
                "service_id": str(service_id),
                "sort_order": sort_order,
            },
        )
        report = self._sync.reconcile(service_id, actor_id)
        return StageDefinitionInfo.from_model(definition), report

    def update(
        self,
        definition_id: UUID,
        patch: Mapping[str, Any],
        actor_id: UUID,
    ) -> tuple[StageDefinitionInfo, SyncReport]:
        """
        Apply a partial update.

        Setting is_active to True on a retired definition revives its
        existing instances and creates any that are missing.
        """
        unknown = sorted(set(patch) - EDITABLE_FIELDS)
        if unknown:
            raise InvalidStageDefinitionError(unknown[0], "is not an editable field")

        changes: dict[str, Any] = {}
        for field, value in patch.items():
            if field == "name":
                changes[field] = _clean_name(value)
            elif field == "sort_order":
                changes[field] = _check_sort_order(value)
            elif field in ("is_required", "is_active"):
                changes[field] = _check_flag(field, value)
            else:
                changes[field] = _check_optional_text(field, value)

        definition = self._get_definition(definition_id)
        for field, value in changes.items():
            setattr(definition, field, value)
        definition.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "stage_definition_updated",
            extra={
                "stage_definition_id": str(definition_id),
                "fields": sorted(changes),
            },
        )
        report = self._sync.reconcile(definition.service_id, actor_id)
        if "is_active" in changes:
            report = self._propagate_service(definition.service_id, actor_id, report)
        return StageDefinitionInfo.from_model(definition), report

    def soft_delete(self, definition_id: UUID, actor_id: UUID) -> SyncReport:
        """Retire a definition; its instances are kept but stop counting."""
        definition = self._get_definition(definition_id)
        definition.is_active = False
        definition.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "stage_definition_retired",
            extra={"stage_definition_id": str(definition_id)},
        )
        report = self._sync.reconcile(definition.service_id, actor_id)
        return self._propagate_service(definition.service_id, actor_id, report)

    def hard_delete(
        self,
        definition_id: UUID,
        actor_id: UUID,
        is_admin: bool = False,
    ) -> SyncReport:
        """
        Permanently delete a definition and every instance of it.

        Raises:
            StageDeletionNotAllowedError: If the caller is not an admin.
        """
        if not is_admin:
            raise StageDeletionNotAllowedError(str(definition_id))

        definition = self._get_definition(definition_id)
        service_id = definition.service_id

        removed = self._sync.remove_orphans(definition_id)
        self.session.delete(definition)
        self.session.flush()

        logger.warning(
            "stage_definition_deleted",
            extra={
                "stage_definition_id": str(definition_id),
                "service_id": str(service_id),
                "removed": removed,
            },
        )
        report = self._sync.reconcile(service_id, actor_id).merge(SyncReport(removed=removed))
        return self._propagate_service(service_id, actor_id, report)

    def reorder(
        self,
        service_id: UUID,
        items: Sequence[Mapping[str, Any]],
        actor_id: UUID,
    ) -> tuple[list[StageDefinitionInfo], SyncReport]:
        """
        Set sort_order on several definitions of one service at once.

        Args:
            items: ``{"id": <definition id>, "sort_order": <int>}`` entries.
        """
        if not items:
            raise EmptyBatchError()
        self._require_service(service_id)

        wanted: dict[UUID, int] = {}
        for item in items:
            definition_id = coerce_uuid(item.get("id"), StageDefinitionNotFoundError)
            wanted[definition_id] = _check_sort_order(item.get("sort_order"))

        definitions = {
            d.id: d
            for d in self.session.execute(
                select(ServiceStageDefinition).where(
                    ServiceStageDefinition.service_id == service_id,
                    ServiceStageDefinition.id.in_(list(wanted)),
                )
            ).scalars()
        }
        for definition_id in wanted:
            if definition_id not in definitions:
                raise StageDefinitionNotFoundError(str(definition_id))

        for definition_id, sort_order in wanted.items():
            definitions[definition_id].sort_order = sort_order
            definitions[definition_id].updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "stage_definitions_reordered",
            extra={"service_id": str(service_id), "count": len(wanted)},
        )
        report = self._sync.reconcile(service_id, actor_id)
        return self.list_by_service(service_id), report

    def create_default_stages(
        self,
        service_id: UUID,
        actor_id: UUID,
    ) -> tuple[list[StageDefinitionInfo], SyncReport]:
        """
        Seed a service with the configured default checklist.

        Raises:
            DefaultStagesExistError: If the service already has active stages.
        """
        self._require_service(service_id)
        existing = self.session.execute(
            select(func.count(ServiceStageDefinition.id)).where(
                ServiceStageDefinition.service_id == service_id,
                ServiceStageDefinition.is_active.is_(True),
            )
        ).scalar_one()
        if existing:
            raise DefaultStagesExistError(str(service_id), existing)

        for position, template in enumerate(self._default_stages, start=1):
            self.session.add(
                ServiceStageDefinition(
                    service_id=service_id,
                    name=_clean_name(template.name),
                    description=template.description,
                    category=template.category,
                    sort_order=position,
                    is_required=template.is_required,
                    is_active=True,
                    created_by_id=actor_id,
                )
            )
        self.session.flush()

        logger.info(
            "default_stages_created",
            extra={"service_id": str(service_id), "count": len(self._default_stages)},
        )
        report = self._sync.reconcile(service_id, actor_id)
        return self.list_by_service(service_id), report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_service(self, service_id: UUID) -> None:
        exists = self.session.execute(
            select(Service.id).where(Service.id == service_id)
        ).scalar_one_or_none()
        if exists is None:
            raise ServiceNotFoundError(str(service_id))

    def _get_definition(self, definition_id: UUID) -> ServiceStageDefinition:
        definition = self.session.get(ServiceStageDefinition, definition_id)
        if definition is None:
            raise StageDefinitionNotFoundError(str(definition_id))
        return definition

    def _propagate_service(
        self,
        service_id: UUID,
        actor_id: UUID,
        report: SyncReport,
    ) -> SyncReport:
        """Re-derive the status of every contract service of a service."""
        if self._propagator is None:
            return report
        contract_service_ids = self.session.execute(
            select(ContractService.id).where(ContractService.service_id == service_id)
        ).scalars().all()
        transitions = []
        for contract_service_id in self._lock_contract_services(contract_service_ids):
            outcome = self._propagator.propagate(contract_service_id, actor_id)
            if outcome.changed:
                transitions.append(outcome)
        return report.merge(SyncReport(transitions=tuple(transitions)))
