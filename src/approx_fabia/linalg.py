"""
Dense linear algebra used by the EM engine.

Thin wrappers over the LAPACK and BLAS routines exposed by SciPy:

- ``?potrf``: Cholesky factorization of a symmetric positive-definite matrix
- ``?potri``: inverse from the Cholesky factor (fills one triangle only)
- ``?gemm``: general matrix-matrix multiply
- ``?ger``: rank-1 update A += alpha * x y^T

The routine prefix (s/d) follows the dtype of the operands, so float32 input
stays in single precision throughout.

LAPACK signals a non positive-definite input through a non-zero ``info``
status. That status is raised as ``DegenerateMatrixError`` so callers can react
(e.g. retry with a larger regularization) instead of continuing with garbage.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
from scipy.linalg import get_blas_funcs, get_lapack_funcs


class DegenerateMatrixError(ArithmeticError):
    """Raised when a matrix expected to be positive-definite is not."""

    def __init__(self, message: str, info: int = 0):
        super().__init__(message)
        self.info = int(info)


def cholesky_factor_lower(a: np.ndarray) -> np.ndarray:
    """
    Lower Cholesky factor C of a, with a = C C^T.

    Args:
        a: Symmetric positive-definite matrix (k, k). Only its lower
            triangle is read.

    Returns:
        Lower-triangular factor; the strict upper triangle is zero.

    Raises:
        DegenerateMatrixError: If ``a`` is not positive-definite.
    """
    potrf, = get_lapack_funcs(("potrf",), (a,))
    c, info = potrf(a, lower=True, clean=True, overwrite_a=False)
    if info != 0:
        raise DegenerateMatrixError(
            f"Cholesky factorization failed (info={info}); matrix is not positive-definite", info)
    return c


def cholesky_invert_from_factor(c: np.ndarray) -> np.ndarray:
    """
    Inverse of C C^T given its lower Cholesky factor C.

    Only the lower triangle of the result is meaningful; use ``invert_spd``
    when the full symmetric inverse is needed.
    """
    potri, = get_lapack_funcs(("potri",), (c,))
    inv, info = potri(c, lower=True)
    if info != 0:
        raise DegenerateMatrixError(
            f"Inversion from Cholesky factor failed (info={info}); factor is singular", info)
    return inv


def invert_spd(a: np.ndarray) -> np.ndarray:
    """
    Inverse of a symmetric positive-definite matrix via Cholesky.

    Both triangles of the result are populated by mirroring the lower
    triangle that LAPACK computes into the upper one.

    Raises:
        DegenerateMatrixError: If ``a`` is not positive-definite or the
            inverse is not finite.
    """
    inv = cholesky_invert_from_factor(cholesky_factor_lower(a))
    upper = np.triu_indices(inv.shape[0], 1)
    inv[upper] = inv.T[upper]
    if not np.all(np.isfinite(inv)):
        raise DegenerateMatrixError("Cholesky inverse is not finite")
    return inv


def gemm(a: np.ndarray, b: np.ndarray, alpha: float = 1.0, beta: float = 0.0,
         c: Optional[np.ndarray] = None, trans_a: bool = False,
         trans_b: bool = False) -> np.ndarray:
    """alpha * op(a) @ op(b) + beta * c."""
    f, = get_blas_funcs(("gemm",), (a, b))
    if c is None:
        return f(alpha, a, b, trans_a=int(trans_a), trans_b=int(trans_b))
    return f(alpha, a, b, beta=beta, c=c, trans_a=int(trans_a), trans_b=int(trans_b))


def rank1_update(a: np.ndarray, x: np.ndarray, y: np.ndarray, alpha: float = 1.0) -> np.ndarray:
    """
    In-place rank-1 update a += alpha * outer(x, y).

    BLAS updates ``a`` without a copy when it is Fortran-contiguous and of the
    routine's dtype; otherwise the result is written back into ``a``.
    """
    ger, = get_blas_funcs(("ger",), (a,))
    res = ger(alpha, x, y, a=a, overwrite_a=True)
    if res is not a:
        a[...] = res
    return a
