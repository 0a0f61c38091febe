"""Read-only selectors for the progress kernel."""

from progress_kernel.selectors.base import BaseSelector
from progress_kernel.selectors.progress_selector import ProgressSelector

__all__ = [
    "BaseSelector",
    "ProgressSelector",
]
