"""
Store error policy -- classify and translate persistence failures.

Reads are retried on transient infrastructure errors (dropped connection,
lock timeout, pool exhaustion); writes never are.  Every SQLAlchemy
failure on the write path is surfaced as a kernel exception so callers
only ever catch ProgressKernelError subclasses.
"""

import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy import exc as sa_exc
from sqlalchemy.orm.exc import StaleDataError

from progress_kernel.exceptions import (
    OptimisticLockError,
    ProgressKernelError,
    ProgressUpdateError,
    TransientStoreError,
)
from progress_kernel.logging_config import get_logger

logger = get_logger("utils.store_errors")

T = TypeVar("T")


def is_transient(error: BaseException) -> bool:
    """True if retrying the same statement on a fresh transaction may succeed."""
    if isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated:
        return True
    return isinstance(
        error,
        (
            sa_exc.OperationalError,
            sa_exc.DisconnectionError,
            sa_exc.TimeoutError,
        ),
    )


def _detail(error: BaseException) -> str:
    orig = getattr(error, "orig", None)
    return str(orig if orig is not None else error).strip()


def retry_read(
    fn: Callable[[], T],
    *,
    operation: str,
    attempts: int = 2,
    backoff_seconds: float = 0.05,
    reset: Callable[[], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run a read, retrying transient failures with linear backoff.

    Args:
        fn: Zero-argument callable performing the read.
        operation: Name used in logs and in the raised error.
        attempts: Total attempts including the first (>= 1).
        backoff_seconds: Delay before retry n is ``backoff_seconds * n``.
        reset: Called before each retry, typically ``session.rollback``.
        sleep: Injectable for tests.

    Raises:
        TransientStoreError: If every attempt failed transiently.
        SQLAlchemyError: Non-transient failures propagate unchanged.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except sa_exc.SQLAlchemyError as error:
            if not is_transient(error):
                raise
            if attempt >= attempts:
                logger.error(
                    "store_read_failed",
                    extra={"operation": operation, "attempts": attempt},
                )
                raise TransientStoreError(operation, _detail(error)) from error
            logger.warning(
                "store_read_retry",
                extra={"operation": operation, "attempt": attempt},
            )
            if reset is not None:
                reset()
            sleep(backoff_seconds * attempt)
    raise AssertionError("unreachable")


def translate_write_error(
    error: BaseException,
    operation: str,
    entity_type: str = "row",
    entity_id: str | None = None,
) -> ProgressKernelError:
    """Map a write-path persistence failure onto the kernel error taxonomy."""
    if isinstance(error, ProgressKernelError):
        return error
    if isinstance(error, StaleDataError):
        return OptimisticLockError(entity_type, entity_id or operation)
    return ProgressUpdateError(
        operation,
        _detail(error),
        transient=is_transient(error),
    )
