"""
Module: progress_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.  Selectors
    form the "Q" side of the kernel, providing structured read access to
    progress data without mutation capability.
Architecture position: Kernel > Selectors.  May import from db/, models/,
    domain/ and utils/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: Selectors accept a Session from the caller but MUST NOT
      call session.add(), session.delete(), session.commit(), or session.flush().
    - DTO return convention: Selectors return frozen dataclasses or computed results,
      NOT raw ORM model instances.
    - Session ownership: Selectors do NOT create or manage their own sessions;
      the caller owns the session and its transaction scope.

Failure modes:
    - TransientStoreError once the configured read attempts are exhausted.
"""

from abc import ABC
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.orm import Session

from progress_kernel.utils.store_errors import retry_read

T = TypeVar("T")


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs or computed results.  They MUST NOT mutate any data.

    Guarantees:
        - session is stored as a public attribute for subclass query use.
        - With read_attempts > 1 a transient failure rolls the session back
          and re-runs the whole read, so only pure reads may opt in.
    """

    def __init__(
        self,
        session: Session,
        read_attempts: int = 1,
        backoff_seconds: float = 0.0,
    ):
        self.session = session
        self.read_attempts = read_attempts
        self.backoff_seconds = backoff_seconds

    def _read(self, operation: str, fn: Callable[[], T]) -> T:
        return retry_read(
            fn,
            operation=operation,
            attempts=self.read_attempts,
            backoff_seconds=self.backoff_seconds,
            reset=self.session.rollback,
        )
