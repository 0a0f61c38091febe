"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures returned across the kernel
    boundary: definition and instance views, sync reports, write results
    carrying the propagation outcome, and the progress roll-ups for
    contracts, clients and services.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers (never from domain logic).

Invariants enforced:
    - Services and selectors return DTOs, never ORM entities.
    - SyncReport counts are non-negative and merge additively.

Data flow:
    ORM rows -> *Info DTOs -> StageWriteResult / BatchStageWriteResult
    ORM rows -> StageFact -> ProgressSnapshot -> Contract/Client/ServiceProgress
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from progress_kernel.domain.progress import ProgressSnapshot
from progress_kernel.domain.statuses import status_value

if TYPE_CHECKING:
    from progress_kernel.models.catalog import (
        ServiceStageDefinition as ServiceStageDefinitionModel,
    )
    from progress_kernel.models.contract import (
        ContractService as ContractServiceModel,
    )
    from progress_kernel.models.stage_instance import (
        ContractServiceStageInstance as StageInstanceModel,
    )


@dataclass(frozen=True)
class StageDefinitionInfo:
    """Read view of a template stage."""

    id: UUID
    service_id: UUID
    name: str
    sort_order: int
    is_required: bool
    is_active: bool
    description: str | None = None
    category: str | None = None

    @classmethod
    def from_model(cls, model: ServiceStageDefinitionModel) -> StageDefinitionInfo:
        return cls(
            id=model.id,
            service_id=model.service_id,
            name=model.name,
            sort_order=model.sort_order,
            is_required=model.is_required,
            is_active=model.is_active,
            description=model.description,
            category=model.category,
        )


@dataclass(frozen=True)
class StageInstanceInfo:
    """
    Read view of a per-contract stage.

    name and sort_order come from the definition; is_retired is True when
    the definition has been soft-deleted.
    """

    id: UUID
    contract_service_id: UUID
    stage_definition_id: UUID
    name: str
    sort_order: int
    status: str
    is_not_applicable: bool
    is_retired: bool = False
    completed_at: datetime | None = None
    completed_by_id: UUID | None = None

    @classmethod
    def from_model(cls, model: StageInstanceModel) -> StageInstanceInfo:
        definition = model.definition
        return cls(
            id=model.id,
            contract_service_id=model.contract_service_id,
            stage_definition_id=model.stage_definition_id,
            name=definition.name,
            sort_order=definition.sort_order,
            status=status_value(model.status),
            is_not_applicable=model.is_not_applicable,
            is_retired=not definition.is_active,
            completed_at=model.completed_at,
            completed_by_id=model.completed_by_id,
        )


@dataclass(frozen=True)
class ContractServiceInfo:
    """Read view of a service purchased within a contract."""

    id: UUID
    contract_id: UUID
    service_id: UUID
    status: str
    scheduled_start_date: date | None = None

    @classmethod
    def from_model(cls, model: ContractServiceModel) -> ContractServiceInfo:
        return cls(
            id=model.id,
            contract_id=model.contract_id,
            service_id=model.service_id,
            status=status_value(model.status),
            scheduled_start_date=model.scheduled_start_date,
        )


@dataclass(frozen=True)
class SyncReport:
    """
    Result of reconciling stage definitions into stage instances.

    conflicts lists contract services that vanished mid-run and were
    skipped; failed_services lists services whose reconcile raised during
    a reconcile_all run.  transitions holds the automatic status changes
    caused by a definition change (a retired or deleted stage can lift a
    contract service to 100%).
    """

    created: int = 0
    removed: int = 0
    contract_services: int = 0
    conflicts: tuple[UUID, ...] = ()
    failed_services: tuple[UUID, ...] = ()
    transitions: tuple[PropagationOutcome, ...] = ()

    def __post_init__(self) -> None:
        if self.created < 0 or self.removed < 0 or self.contract_services < 0:
            raise ValueError("SyncReport counts must be non-negative")

    @property
    def is_noop(self) -> bool:
        return self.created == 0 and self.removed == 0

    @property
    def auto_completed_services(self) -> tuple[UUID, ...]:
        return tuple(o.contract_service_id for o in self.transitions if o.auto_completed)

    @property
    def auto_started_services(self) -> tuple[UUID, ...]:
        return tuple(o.contract_service_id for o in self.transitions if o.auto_started)

    def merge(self, other: SyncReport) -> SyncReport:
        return SyncReport(
            created=self.created + other.created,
            removed=self.removed + other.removed,
            contract_services=self.contract_services + other.contract_services,
            conflicts=self.conflicts + other.conflicts,
            failed_services=self.failed_services + other.failed_services,
            transitions=self.transitions + other.transitions,
        )

    def as_dict(self) -> dict[str, int]:
        """The ``{created, removed}`` shape returned to catalog callers."""
        return {"created": self.created, "removed": self.removed}


@dataclass(frozen=True)
class PropagationOutcome:
    """What the status propagator observed and did for one contract service."""

    contract_service_id: UUID
    progress: ProgressSnapshot
    previous_status: str
    new_status: str
    auto_started: bool = False
    auto_completed: bool = False

    @property
    def changed(self) -> bool:
        return self.previous_status != self.new_status


@dataclass(frozen=True)
class StageWriteResult:
    """Result of a single stage instance write."""

    instance: StageInstanceInfo
    outcome: PropagationOutcome

    @property
    def progress(self) -> ProgressSnapshot:
        return self.outcome.progress

    @property
    def auto_completed(self) -> bool:
        return self.outcome.auto_completed

    @property
    def auto_started(self) -> bool:
        return self.outcome.auto_started

    def as_dict(self) -> dict[str, Any]:
        return {
            "instance_id": str(self.instance.id),
            "status": self.instance.status,
            "is_not_applicable": self.instance.is_not_applicable,
            "progress": self.progress.as_dict(),
            "service_status": self.outcome.new_status,
            "auto_completed": self.auto_completed,
            "auto_started": self.auto_started,
        }


@dataclass(frozen=True)
class BatchStageWriteResult:
    """Result of an atomic multi-instance write; one outcome per contract service."""

    instances: tuple[StageInstanceInfo, ...]
    outcomes: tuple[PropagationOutcome, ...]

    @property
    def progress_by_service(self) -> dict[UUID, ProgressSnapshot]:
        return {o.contract_service_id: o.progress for o in self.outcomes}

    @property
    def auto_completed_services(self) -> tuple[UUID, ...]:
        return tuple(o.contract_service_id for o in self.outcomes if o.auto_completed)

    @property
    def auto_started_services(self) -> tuple[UUID, ...]:
        return tuple(o.contract_service_id for o in self.outcomes if o.auto_started)

    @property
    def auto_completed(self) -> bool:
        return bool(self.auto_completed_services)

    @property
    def auto_started(self) -> bool:
        return bool(self.auto_started_services)


@dataclass(frozen=True)
class ContractServiceProgress:
    """Progress line for one contract service inside a contract roll-up."""

    contract_service_id: UUID
    service_id: UUID
    service_name: str
    status: str
    progress: ProgressSnapshot


@dataclass(frozen=True)
class ContractProgress:
    """Progress of a contract summed over its contract services."""

    contract_id: UUID
    client_id: UUID
    contract_number: str
    status: str
    progress: ProgressSnapshot
    services: tuple[ContractServiceProgress, ...] = field(default_factory=tuple)

    @property
    def percentage(self) -> int:
        return self.progress.percentage


@dataclass(frozen=True)
class ClientProgress:
    """Progress of a client summed over its active contracts."""

    client_id: UUID
    name: str
    progress: ProgressSnapshot
    active_contracts: int
    total_contracts: int

    @property
    def percentage(self) -> int:
        return self.progress.percentage


@dataclass(frozen=True)
class ServiceProgress:
    """Catalog-level progress of a service across every contract selling it."""

    service_id: UUID
    name: str
    progress: ProgressSnapshot
    contract_services: int

    @property
    def percentage(self) -> int:
        return self.progress.percentage


@dataclass(frozen=True)
class StageTemplate:
    """A stage created by ``create_default_stages``; order is list position."""

    name: str
    description: str | None = None
    category: str | None = None
    is_required: bool = True
