"""Utility modules for the progress kernel."""

from progress_kernel.utils.store_errors import (
    is_transient,
    retry_read,
    translate_write_error,
)

__all__ = [
    "is_transient",
    "retry_read",
    "translate_write_error",
]
