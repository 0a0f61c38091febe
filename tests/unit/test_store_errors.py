"""Tests for the store error policy (progress_kernel/utils/store_errors.py)."""

import pytest
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm.exc import StaleDataError

from progress_kernel.exceptions import (
    InvalidStageStatusError,
    OptimisticLockError,
    ProgressUpdateError,
    TransientStoreError,
)
from progress_kernel.utils.store_errors import (
    is_transient,
    retry_read,
    translate_write_error,
)


def _operational(msg="connection reset"):
    return sa_exc.OperationalError("SELECT 1", {}, Exception(msg))


def _integrity():
    return sa_exc.IntegrityError("INSERT ...", {}, Exception("duplicate key"))


class TestIsTransient:
    def test_operational_error(self):
        assert is_transient(_operational())

    def test_invalidated_connection(self):
        error = sa_exc.DBAPIError("SELECT 1", {}, Exception("gone"), connection_invalidated=True)
        assert is_transient(error)

    def test_pool_timeout(self):
        assert is_transient(sa_exc.TimeoutError("QueuePool limit reached"))

    def test_integrity_error_is_not_transient(self):
        assert not is_transient(_integrity())

    def test_plain_exception(self):
        assert not is_transient(ValueError("x"))


class TestRetryRead:
    def test_returns_first_success(self):
        assert retry_read(lambda: 42, operation="read") == 42

    def test_retries_transient_failure(self):
        attempts = []
        resets = []
        sleeps = []

        def fn():
            attempts.append(1)
            if len(attempts) == 1:
                raise _operational()
            return "ok"

        result = retry_read(
            fn,
            operation="read",
            attempts=3,
            backoff_seconds=0.1,
            reset=lambda: resets.append(1),
            sleep=sleeps.append,
        )

        assert result == "ok"
        assert len(attempts) == 2
        assert len(resets) == 1
        assert sleeps == [0.1]

    def test_backoff_grows_linearly(self):
        sleeps = []

        def fn():
            raise _operational()

        with pytest.raises(TransientStoreError):
            retry_read(fn, operation="read", attempts=3, backoff_seconds=0.1, sleep=sleeps.append)

        assert sleeps == pytest.approx([0.1, 0.2])

    def test_exhausted_attempts_raise_transient_store_error(self):
        def fn():
            raise _operational("server closed the connection")

        with pytest.raises(TransientStoreError) as exc_info:
            retry_read(fn, operation="compute", attempts=2, sleep=lambda s: None)

        assert exc_info.value.operation == "compute"
        assert "server closed the connection" in exc_info.value.detail
        assert isinstance(exc_info.value.__cause__, sa_exc.OperationalError)

    def test_non_transient_error_not_retried(self):
        calls = []

        def fn():
            calls.append(1)
            raise _integrity()

        with pytest.raises(sa_exc.IntegrityError):
            retry_read(fn, operation="read", attempts=5, sleep=lambda s: None)

        assert len(calls) == 1

    def test_kernel_errors_pass_through(self):
        def fn():
            raise InvalidStageStatusError("done", ("pending", "completed"))

        with pytest.raises(InvalidStageStatusError):
            retry_read(fn, operation="read", attempts=3, sleep=lambda s: None)

    def test_single_attempt_never_sleeps(self):
        sleeps = []
        with pytest.raises(TransientStoreError):
            retry_read(
                lambda: (_ for _ in ()).throw(_operational()),
                operation="read",
                attempts=1,
                sleep=sleeps.append,
            )
        assert sleeps == []


class TestTranslateWriteError:
    def test_stale_data_is_optimistic_lock(self):
        error = translate_write_error(StaleDataError("row changed"), "set_stage_status")
        assert isinstance(error, OptimisticLockError)
        assert error.code == "OPTIMISTIC_LOCK_CONFLICT"

    def test_operational_error_is_transient_update_failure(self):
        error = translate_write_error(_operational(), "set_stage_status")
        assert isinstance(error, ProgressUpdateError)
        assert error.transient
        assert error.operation == "set_stage_status"

    def test_integrity_error_is_permanent_update_failure(self):
        error = translate_write_error(_integrity(), "create_stage")
        assert isinstance(error, ProgressUpdateError)
        assert not error.transient
        assert "duplicate key" in error.detail

    def test_kernel_error_returned_unchanged(self):
        original = InvalidStageStatusError("done", ("pending", "completed"))
        assert translate_write_error(original, "set_stage_status") is original
