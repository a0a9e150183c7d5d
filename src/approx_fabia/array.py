"""
Array validation for in-place factor analysis.

The EM driver mutates caller-owned matrices, so the arrays it receives must be
real NumPy arrays of a floating dtype, writeable where they are outputs, and of
consistent shape. Memory order is free: C- and Fortran-ordered arrays (and any
other strided view) are indexed the same way, so the layout is a property of
the array rather than of the index arithmetic.
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np


def as_float_array(arr, dtype=None, order: str = "K") -> np.ndarray:
    """
    Convert array-like input to a floating NumPy array.

    Args:
        arr: Array-like input
        dtype: Target floating dtype (default: keep floating input, else float64)
        order: Memory order passed to ``np.asarray``

    Returns:
        Floating-point NumPy array (a copy only when conversion is needed)
    """
    if dtype is None:
        dtype = arr.dtype if isinstance(arr, np.ndarray) and np.issubdtype(arr.dtype, np.floating) else np.float64
    return np.asarray(arr, dtype=dtype, order=order)


def _check(arr, name: str, ndim: int, writeable: bool) -> np.ndarray:
    if not isinstance(arr, np.ndarray):
        raise TypeError(f"{name} must be a numpy.ndarray, got {type(arr).__name__}")
    if arr.ndim != ndim:
        raise ValueError(f"{name} must be {ndim}-dimensional, got shape {arr.shape}")
    if not np.issubdtype(arr.dtype, np.floating):
        raise TypeError(f"{name} must have a floating dtype, got {arr.dtype}")
    if writeable and not arr.flags.writeable:
        raise ValueError(f"{name} is updated in place and must be writeable")
    return arr


def ensure_matrix(arr, shape: Tuple[Optional[int], Optional[int]], name: str,
                  writeable: bool = True) -> np.ndarray:
    """
    Validate a 2-D floating array against an expected shape.

    ``None`` entries in ``shape`` match any size.
    """
    arr = _check(arr, name, 2, writeable)
    for axis, expected in enumerate(shape):
        if expected is not None and arr.shape[axis] != expected:
            raise ValueError(f"{name} has shape {arr.shape}, expected {tuple(shape)}")
    return arr


def ensure_vector(arr, size: Optional[int], name: str, writeable: bool = True) -> np.ndarray:
    """Validate a 1-D floating array of the given length."""
    arr = _check(arr, name, 1, writeable)
    if size is not None and arr.shape[0] != size:
        raise ValueError(f"{name} has length {arr.shape[0]}, expected {size}")
    return arr


def read_only_view(arr: np.ndarray) -> np.ndarray:
    """Non-writeable view sharing memory with ``arr``."""
    view = arr.view()
    view.flags.writeable = False
    return view
