"""
Module: progress_kernel.models.stage_instance
Responsibility: ORM persistence for the per-contract copy of a template
    stage.  Each instance carries its own completion state and a
    not-applicable override.
Architecture position: Kernel > Models.  May import from db/ and domain/statuses.py only.

Invariants enforced:
    - At most one instance per (contract_service_id, stage_definition_id)
      (uq_stage_instance_definition).  Together with the sync engine this
      yields exactly one instance per active definition.
    - Instances marked not-applicable are kept; they are only excluded
      from progress arithmetic.
    - stage_definition_id is a matching key, not ownership: the instance
      lives and dies with its contract service (ON DELETE CASCADE), while
      the definition FK has no cascade so hard deletes must clean up
      instances explicitly first.

Failure modes:
    - IntegrityError on a duplicate (contract_service, definition) pair,
      which the sync engine treats as "already created by someone else".
"""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from progress_kernel.db.base import TrackedBase, UUIDString
from progress_kernel.domain.statuses import StageInstanceStatus

if TYPE_CHECKING:
    from progress_kernel.models.catalog import ServiceStageDefinition
    from progress_kernel.models.contract import ContractService


class ContractServiceStageInstance(TrackedBase):
    """
    Per-contract copy of a ServiceStageDefinition.

    Contract:
        Created by the sync engine (status=pending, is_not_applicable=False).
        Mutated by users toggling completion or applicability.  Removed
        only by orphan cleanup after a definition is hard-deleted, or with
        its contract service.

    Guarantees:
        - completed_at / completed_by_id are set iff status is COMPLETED.
    """

    __tablename__ = "contract_service_stage_instances"

    __table_args__ = (
        UniqueConstraint(
            "contract_service_id",
            "stage_definition_id",
            name="uq_stage_instance_definition",
        ),
        Index("idx_stage_instance_contract_service", "contract_service_id"),
        Index("idx_stage_instance_definition", "stage_definition_id"),
    )

    contract_service_id: Mapped[UUID] = mapped_column(
        ForeignKey("contract_services.id", ondelete="CASCADE"),
        nullable=False,
    )

    stage_definition_id: Mapped[UUID] = mapped_column(
        ForeignKey("service_stage_definitions.id"),
        nullable=False,
    )

    status: Mapped[StageInstanceStatus] = mapped_column(
        String(20),
        nullable=False,
        default=StageInstanceStatus.PENDING.value,
    )

    is_not_applicable: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    completed_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    contract_service: Mapped["ContractService"] = relationship(
        back_populates="stage_instances",
    )

    definition: Mapped["ServiceStageDefinition"] = relationship()

    @property
    def is_completed(self) -> bool:
        return self.status == StageInstanceStatus.COMPLETED

    def __repr__(self) -> str:
        return f"<ContractServiceStageInstance {self.id} ({self.status})>"
