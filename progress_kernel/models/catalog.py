"""
Module: progress_kernel.models.catalog
Responsibility: ORM persistence for the service catalog and its ordered
    template checklist (stage definitions).
Architecture position: Kernel > Models.  May import from db/ and domain/statuses.py only.
    MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - A stage definition belongs to exactly one Service (service_id NOT NULL).
    - sort_order defines display and execution order within the service.
    - Soft delete is is_active=False; the row (and every instance that
      references it) is kept.  Only hard delete removes the row, and the
      stage_definition_id foreign key on instances forces orphan cleanup
      to run first.

Failure modes:
    - IntegrityError on hard delete while instances still reference the row.
"""

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from progress_kernel.db.base import TrackedBase


class Service(TrackedBase):
    """
    Catalog service that can be sold inside contracts.

    Owns the template checklist; the engine never edits services
    themselves, only their stage definitions.
    """

    __tablename__ = "services"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    stage_definitions: Mapped[list["ServiceStageDefinition"]] = relationship(
        back_populates="service",
        order_by="ServiceStageDefinition.sort_order",
    )

    def __repr__(self) -> str:
        return f"<Service {self.name}>"


class ServiceStageDefinition(TrackedBase):
    """
    Template stage of a Service.

    Contract:
        Edited by catalog maintainers.  Never referenced for ownership by
        contract data; stage instances only point back to it so the sync
        engine can match template rows to per-contract rows.

    Guarantees:
        - name is non-empty (validated by the service layer).
        - sort_order >= 1 (validated by the service layer).
        - is_active=False means retired: excluded from sync and progress.
    """

    __tablename__ = "service_stage_definitions"

    __table_args__ = (
        Index("idx_stage_definition_service", "service_id"),
        Index("idx_stage_definition_service_active", "service_id", "is_active"),
    )

    service_id: Mapped[UUID] = mapped_column(
        ForeignKey("services.id"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    sort_order: Mapped[int] = mapped_column(nullable=False, default=1)

    is_required: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    service: Mapped["Service"] = relationship(back_populates="stage_definitions")

    def __repr__(self) -> str:
        return f"<ServiceStageDefinition {self.sort_order}: {self.name}>"
