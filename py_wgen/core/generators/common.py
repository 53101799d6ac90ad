"""
Helpers shared by the generator algorithms.

Height maps are (height, width) float32 NumPy arrays. Generators mutate
them in place and report progress through an optional progress sink.
"""

import threading
from typing import Callable, Optional, Tuple

import numpy as np

from ..errors import StepCancelled

# A progress sink receives the completed fraction of the current step
ProgressSink = Callable[[float], None]


class CancelToken:
    """Cooperative cancellation flag checked by long running generators."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        """Raise StepCancelled if cancellation was requested."""
        if self._event.is_set():
            raise StepCancelled("step cancelled")


def check_cancel(cancel: Optional[CancelToken]) -> None:
    if cancel is not None:
        cancel.check()


def report(progress: Optional[ProgressSink], fraction: float) -> None:
    if progress is not None:
        progress(fraction)


def get_min_max(hmap: np.ndarray) -> Tuple[float, float]:
    """Return the (min, max) of a height map."""
    return float(hmap.min()), float(hmap.max())


def normalize(hmap: np.ndarray, target_min: float, target_max: float) -> None:
    """
    Linearly rescale a height map in place to [target_min, target_max].

    A constant map has no range to rescale: every cell is set to target_min.
    """
    lo, hi = get_min_max(hmap)
    coef = 0.0 if lo == hi else (target_max - target_min) / (hi - lo)
    hmap[...] = target_min + (hmap - lo) * coef


def new_map(size: Tuple[int, int]) -> np.ndarray:
    """Zero-filled height map for a (width, height) world size."""
    return np.zeros((size[1], size[0]), dtype=np.float32)
