"""
Module: progress_kernel.models.routine
Responsibility: Scheduling/reporting record tied to a contract service.
    Routines mirror the contract service status for calendar and report
    consumers; they never drive a decision.
Architecture position: Kernel > Models.  May import from db/ and domain/statuses.py only.
"""

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from progress_kernel.db.base import TrackedBase
from progress_kernel.domain.statuses import RoutineStatus

if TYPE_CHECKING:
    from progress_kernel.models.contract import ContractService


class ServiceRoutine(TrackedBase):
    """Routine record mirroring a contract service's status."""

    __tablename__ = "service_routines"

    __table_args__ = (
        Index("idx_routine_contract_service", "contract_service_id"),
    )

    contract_service_id: Mapped[UUID] = mapped_column(
        ForeignKey("contract_services.id", ondelete="CASCADE"),
        nullable=False,
    )

    status: Mapped[RoutineStatus] = mapped_column(
        String(20),
        nullable=False,
        default=RoutineStatus.NOT_STARTED.value,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    contract_service: Mapped["ContractService"] = relationship(
        back_populates="routines",
    )

    def __repr__(self) -> str:
        return f"<ServiceRoutine {self.id} ({self.status})>"
