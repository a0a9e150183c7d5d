"""
M-step kernels of the approximate FABIA update.

Each kernel works in place on the caller's arrays and enforces the parameter
floors at its write site.
"""

from __future__ import annotations

import numpy as np

from .posterior import MACHINE_EPS


def sparsify_loadings(L: np.ndarray, Psi: np.ndarray, alpha: float, spl: float,
                      non_negative: bool = False) -> np.ndarray:
    """
    Soft-threshold the loadings under the Laplace prior.

    For every entry s = L[i, j] the threshold is

        t = |Ψ_i · alpha · (MACHINE_EPS + |s|)^(-spl)|

    and s is shrunk towards zero by t, or set to zero when |s| <= t.
    With ``spl = 0`` this is the plain soft-thresholding operator
    sign(s) · max(|s| - Ψ_i·alpha, 0).

    Args:
        L: Loadings (n, k), updated in place
        Psi: Noise variances (n,)
        alpha: Laplace prior strength
        spl: Extra sparseness exponent for the loadings
        non_negative: Zero every entry that is not strictly positive

    Returns:
        ``L``
    """
    mag = np.abs(L)
    t = np.abs(Psi[:, None] * alpha * (MACHINE_EPS + mag) ** -spl)
    keep = mag > t
    if non_negative:
        keep &= L > 0
    L[...] = np.where(keep, L - np.sign(L) * t, 0.0)
    return L


def update_noise(Psi: np.ndarray, L: np.ndarray, sum1: np.ndarray, xx: np.ndarray,
                 n_samples: int, eps: float) -> float:
    """
    Re-estimate the noise variances: Ψ_i = max(eps, xx_i - Σ_j L_ij sum1_ij / l).

    Returns:
        max_i |Σ_j L_ij sum1_ij|, the size of the explained second moment.
        A value below ``eps`` means the model has collapsed.
    """
    s = np.einsum("ij,ij->i", L, sum1)
    np.maximum(eps, xx - s / n_samples, out=Psi)
    return float(np.max(np.abs(s))) if s.size else 0.0


def rescale_loadings(L: np.ndarray, lapla: np.ndarray, spz: float, lap: float) -> np.ndarray:
    """
    Rescale every loading column to unit root-mean-square norm.

    The sparsity parameters of the factor are multiplied by (s²)^(-spz),
    s being the column's scale factor, to keep Z and lapla consistent with
    the rescaled L. The ``lap`` floor is re-applied afterwards.

    Returns:
        Per-factor scale factors (k,)
    """
    rms = np.sqrt(np.mean(L * L, axis=0))
    s = 1.0 / (rms + MACHINE_EPS)
    L *= s
    lapla *= ((s * s) ** -spz)[:, None]
    np.maximum(lapla, lap, out=lapla)
    return s


def reinitialize_dead_factors(L: np.ndarray, lapla: np.ndarray, rng: np.random.Generator,
                              lap: float = 0.0) -> int:
    """
    Restart every factor whose loading column is identically zero.

    The column is redrawn from a standard normal distribution and the
    factor's sparsity parameters are reset to 1 (or ``lap`` if larger) for
    all samples.

    Returns:
        Number of reinitialized factors
    """
    dead = np.flatnonzero(~np.any(L != 0, axis=0))
    if dead.size == 0:
        return 0
    L[:, dead] = rng.standard_normal((L.shape[0], dead.size))
    lapla[dead, :] = max(1.0, lap)
    return int(dead.size)
