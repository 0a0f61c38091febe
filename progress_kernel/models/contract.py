"""
Module: progress_kernel.models.contract
Responsibility: ORM persistence for clients, contracts and the services
    purchased inside each contract (contract services).
Architecture position: Kernel > Models.  May import from db/ and domain/statuses.py only.

Invariants enforced:
    - ContractService.status is a cached value derived from stage progress,
      written only by the status propagator or by an explicit human edit.
    - Hold states (cancelled, suspended) are human-set and are never
      overridden by propagation.
    - Contract services are never deleted automatically; deleting one
      cascades to its stage instances and routines.

Failure modes:
    - IntegrityError when a contract service references a missing
      contract or service.
"""

from datetime import date
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from progress_kernel.db.base import TrackedBase
from progress_kernel.domain.statuses import (
    HOLD_STATES,
    ContractServiceStatus,
    ContractStatus,
)

if TYPE_CHECKING:
    from progress_kernel.models.catalog import Service
    from progress_kernel.models.routine import ServiceRoutine
    from progress_kernel.models.stage_instance import ContractServiceStageInstance


class Client(TrackedBase):
    """Customer that owns contracts."""

    __tablename__ = "clients"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    contracts: Mapped[list["Contract"]] = relationship(back_populates="client")

    def __repr__(self) -> str:
        return f"<Client {self.name}>"


class Contract(TrackedBase):
    """A signed contract grouping one or more purchased services."""

    __tablename__ = "contracts"

    __table_args__ = (
        Index("idx_contract_client", "client_id"),
        Index("idx_contract_status", "status"),
    )

    client_id: Mapped[UUID] = mapped_column(
        ForeignKey("clients.id"),
        nullable=False,
    )

    contract_number: Mapped[str] = mapped_column(String(50), nullable=False)

    status: Mapped[ContractStatus] = mapped_column(
        String(20),
        nullable=False,
        default=ContractStatus.ACTIVE.value,
    )

    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    client: Mapped["Client"] = relationship(back_populates="contracts")

    contract_services: Mapped[list["ContractService"]] = relationship(
        back_populates="contract",
    )

    @property
    def is_active(self) -> bool:
        return self.status == ContractStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<Contract {self.contract_number} ({self.status})>"


class ContractService(TrackedBase):
    """
    A Service as purchased within one Contract.

    Contract:
        Created once per purchased service when the contract is created.
        Holds the per-contract stage instances and the routine records
        that mirror its status.

    Guarantees:
        - status is one of ContractServiceStatus values.
        - Deleting the row deletes its instances and routines (cascade).

    Non-goals:
        - Does not compute its own progress (see ProgressSelector).
    """

    __tablename__ = "contract_services"

    __table_args__ = (
        Index("idx_contract_service_contract", "contract_id"),
        Index("idx_contract_service_service", "service_id"),
    )

    contract_id: Mapped[UUID] = mapped_column(
        ForeignKey("contracts.id"),
        nullable=False,
    )

    service_id: Mapped[UUID] = mapped_column(
        ForeignKey("services.id"),
        nullable=False,
    )

    status: Mapped[ContractServiceStatus] = mapped_column(
        String(20),
        nullable=False,
        default=ContractServiceStatus.NOT_STARTED.value,
    )

    scheduled_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    contract: Mapped["Contract"] = relationship(back_populates="contract_services")

    service: Mapped["Service"] = relationship()

    stage_instances: Mapped[list["ContractServiceStageInstance"]] = relationship(
        back_populates="contract_service",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    routines: Mapped[list["ServiceRoutine"]] = relationship(
        back_populates="contract_service",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def status_enum(self) -> ContractServiceStatus:
        return ContractServiceStatus(self.status)

    @property
    def is_on_hold(self) -> bool:
        """True if a person has put this service in a hold state."""
        return self.status_enum in HOLD_STATES

    def __repr__(self) -> str:
        return f"<ContractService {self.id} ({self.status})>"
