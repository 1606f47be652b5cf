"""Miscellaneous common functions for tsexplore

"""
import multiprocessing
import os
import warnings
from pathlib import Path
from typing import Callable, Optional

import numpy as np
import tqdm

EXTENSION_TO_TYPE = {
    "hdf5":"hdf5",
    "hdf":"hdf5",
    "h5":"hdf5",
}

ProgressCallback = Callable[[float, str], None]
"""progress(fraction, detail): fraction is the overall completion in [0, 1]"""

_MP_CONTEXT = None


def get_file_type(filename):
    out = None
    file_extension = Path(filename).suffix[1:].lower()
    if file_extension in EXTENSION_TO_TYPE:
        out = EXTENSION_TO_TYPE[file_extension]
    return out


def decode_strings(values) -> list:
    """Decode an array of hdf5 strings, which may come back as bytes or str.

    Args:
        values: iterable of bytes or str

    Returns:
        list of str
    """
    return [x.decode("utf-8") if isinstance(x, bytes) else str(x) for x in values]


def report_progress(progress: Optional[ProgressCallback], fraction: float, detail: str = ""):
    if progress is not None:
        progress(fraction, detail)


class TqdmProgress():
    """Adapts a tqdm bar to the progress(fraction, detail) callback signature.

    Usable as a context manager, so the bar is closed when the work is done.
    """
    _RESOLUTION = 1000

    def __init__(self, desc: str):
        self.bar = tqdm.tqdm(total=self._RESOLUTION, desc=desc, leave=True, dynamic_ncols=True)

    def __call__(self, fraction: float, detail: str = ""):
        target = int(round(min(max(fraction, 0.0), 1.0) * self._RESOLUTION))
        if detail:
            self.bar.set_postfix_str(detail, refresh=False)
        if target > self.bar.n:
            self.bar.update(target - self.bar.n)

    def close(self):
        self.bar.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()


def get_multiprocessing_context():
    """Return a cached multiprocessing context that avoids unsafe fork start."""

    global _MP_CONTEXT
    if _MP_CONTEXT is not None:
        return _MP_CONTEXT

    # forked children would inherit open hdf5 handles
    preferred_method = os.environ.get("TSEXPLORE_MP_START_METHOD", "spawn")
    try:
        ctx = multiprocessing.get_context(preferred_method)
    except ValueError:
        warnings.warn(
            f"Requested multiprocessing start method '{preferred_method}' is unavailable; "
            "falling back to Python's default start method.",
            RuntimeWarning,
            stacklevel=2,
        )
        ctx = multiprocessing.get_context()

    _MP_CONTEXT = ctx
    return ctx


def make_pool(*args, **kwargs):
    """Create a multiprocessing Pool using the safe start method."""

    return get_multiprocessing_context().Pool(*args, **kwargs)


def replace_nonfinite(array: np.ndarray, value=0.0) -> np.ndarray:
    """Replace NaN and +/-inf in place, returns the same array."""
    array[~np.isfinite(array)] = value
    return array


def scaled_progress(progress: Optional[ProgressCallback], start: float, end: float) -> Optional[ProgressCallback]:
    """Map the [0, 1] progress of a sub-task onto [start, end] of the parent task."""
    if progress is None:
        return None
    return lambda fraction, detail="": progress(start + (end - start) * fraction, detail)
