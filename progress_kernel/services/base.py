"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  All concrete services inherit
    from BaseService, receiving a SQLAlchemy ``Session`` that they use
    via ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback it.  Savepoints opened
      with ``session.begin_nested()`` are the only scoped rollbacks a
      service may perform.  The caller (ProgressEngine, a script, or the
      test harness) owns commit/rollback.

Failure modes:
    - If a subclass calls ``session.commit()``, a batch stage write can
      be left half applied.
"""

from abc import ABC
from collections.abc import Iterable
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from progress_kernel.exceptions import NotFoundError
from progress_kernel.models.contract import ContractService


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT provide query-only (read) methods -- those belong
          in ``progress_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session

    def _lock_contract_services(self, contract_service_ids: Iterable[UUID]) -> list[UUID]:
        """
        Take row locks on contract services in ascending id order.

        Every writer locks in the same order, so two batches touching
        overlapping contract services cannot deadlock.  Returns the ids
        that still exist.
        """
        ids = sorted(set(contract_service_ids), key=str)
        if not ids:
            return []
        return list(
            self.session.execute(
                select(ContractService.id)
                .where(ContractService.id.in_(ids))
                .order_by(ContractService.id)
                .with_for_update()
            ).scalars()
        )


def coerce_uuid(value: Any, not_found: type[NotFoundError]) -> UUID:
    """Parse an id from caller input; malformed ids are reported as not found."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise not_found(str(value)) from None
