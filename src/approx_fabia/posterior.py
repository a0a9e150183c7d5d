"""
Posterior estimate of the latent factors for a single sample.

Under the Laplace-prior variational approximation the posterior precision of
factor j for sample x is approximated by its diagonal,

    Λ_j = (Lᵀ Ψ⁻¹ L)_jj + λ_j

where λ (``lapla``) is the sample's variational sparsity vector. The posterior
mean is then

    E[z_j | x] = Λ_j⁻¹ Σ_i (L_ij / Ψ_i) x_i

When sufficient statistics are requested the sample also contributes

    sum1 += x E[z]ᵀ                 (n, k)
    sum2 += E[z] E[z]ᵀ + diag(Λ⁻¹)  (k, k)

and its sparsity vector is refreshed from the second moment,
λ_j = max(lap, (E[z_j²])^(-spz)).

Each call touches only its own sample's ``z``/``lapla`` slices and the
accumulators it is handed, so calls for different samples can run
concurrently as long as they use disjoint accumulators.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from .linalg import rank1_update

# Numerical floor for the precision and sparsity updates; independent of the
# caller-supplied eps.
MACHINE_EPS = 1e-7


def estimate_factor_posterior(
    x: np.ndarray,
    z: np.ndarray,
    lapla: np.ndarray,
    lpsi: np.ndarray,
    lpsil: np.ndarray,
    workspace,
    sum1: Optional[np.ndarray] = None,
    sum2: Optional[np.ndarray] = None,
    spz: float = 0.5,
    lap: float = 1.0,
) -> np.ndarray:
    """
    Update E[z|x] for one sample, optionally accumulating statistics.

    Args:
        x: Observation vector (n,)
        z: Factor estimate for this sample (k,), overwritten in place
        lapla: Variational sparsity vector for this sample (k,); updated in
            place when statistics are accumulated
        lpsi: L scaled by inverse noise, ``L / Psi[:, None]`` (n, k)
        lpsil: Diagonal of Lᵀ Ψ⁻¹ L (k,)
        workspace: Object with scratch arrays ``ilpsil`` (k,) and
            ``ilpsilx`` (n, k); their contents are overwritten. On return
            ``ilpsilx`` holds ``lpsi * ilpsil`` and ``ilpsil`` the inverse
            precision (plus E[z]² when accumulating).
        sum1: Accumulator for x E[z]ᵀ (n, k), or None
        sum2: Accumulator for E[zzᵀ] (k, k), or None
        spz: Extra sparseness exponent for the sparsity update
        lap: Floor for the sparsity parameter

    Returns:
        ``z`` (the same array, updated)
    """
    ilpsil = workspace.ilpsil
    ilpsilx = workspace.ilpsilx

    np.add(lpsil, lapla, out=ilpsil)
    ilpsil += MACHINE_EPS
    np.reciprocal(ilpsil, out=ilpsil)

    np.multiply(lpsi, ilpsil, out=ilpsilx)
    z[:] = x @ ilpsilx

    if sum1 is None or sum2 is None:
        return z

    rank1_update(sum1, x, z)
    sum2 += np.outer(z, z)
    sum2[np.diag_indices_from(sum2)] += ilpsil
    ilpsil += z * z

    lapla[:] = np.maximum(lap, (MACHINE_EPS + ilpsil) ** -spz)
    return z
