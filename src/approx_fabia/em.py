"""
Approximate FABIA: sparse factor analysis for biclustering by variational EM.

Model
-----
    x = L z + ε,    ε ~ N(0, Ψ),    z_j ~ Laplace(0, 1)

with n variables, l samples and k factors. The Laplace prior on the factors is
handled through a per-(factor, sample) variational parameter λ (``lapla``)
and a Laplace prior on the loadings through soft-thresholding.

One EM cycle:

1. Transform: LΨ = Ψ⁻¹ L and the diagonal of Lᵀ Ψ⁻¹ L
2. E-step over all samples, data-parallel, accumulating
   sum1 = Σ x E[z]ᵀ and sum2 = Σ E[zzᵀ] + eps·I in per-worker accumulators
3. Reduction of the per-worker accumulators
4. M-step: L = sum1 · sum2⁻¹ (Cholesky inverse), then sparsification
5. Noise update Ψ = max(eps, diag(XXᵀ)/l - diag(L sum1ᵀ)/l)
6. Optional rescaling of L to unit RMS columns, and restart of dead factors

References:
    Hochreiter et al. (2010). FABIA: factor analysis for bicluster
    acquisition. Bioinformatics 26(12).
"""

from __future__ import annotations

import time
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, Iterator, Optional, Union

import numpy as np

from .array import ensure_matrix, ensure_vector, read_only_view
from .experimental_logging import log
from .linalg import DegenerateMatrixError, gemm, invert_spd
from .mstep import reinitialize_dead_factors, rescale_loadings, sparsify_loadings, update_noise
from .posterior import estimate_factor_posterior
from .progress import JsonProgressReporter, ProgressReporter
from .workspace import Allocator, ScratchArena, WorkerAccumulator


class FabiaOutcome(Enum):
    """How a run ended."""
    SUCCESS = "success"                      # cycle budget exhausted
    EARLY_CONVERGED = "early_converged"      # update fell below eps
    OUT_OF_MEMORY = "out_of_memory"          # scratch allocation failed
    DEGENERATE_MATRIX = "degenerate_matrix"  # sum2 not positive-definite


@dataclass
class PhaseTimings:
    """Wall-clock seconds spent in each phase of a run."""
    loop: float = 0.0
    chol: float = 0.0
    rest: float = 0.0
    total: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        """Seconds per phase plus each phase's share of the total (``*_frac``)."""
        seconds = asdict(self)
        tot = self.total if self.total > 0 else 1.0
        seconds.update({f"{name}_frac": val / tot for name, val in asdict(self).items()})
        return seconds

    def summary(self) -> str:
        tot = self.total if self.total > 0 else 1.0
        rows = [("loop", self.loop), ("Chol", self.chol), ("Rest", self.rest)]
        lines = [f"{name + ':':<7} {val:5.2f} ({val / tot:.3f})" for name, val in rows]
        lines.append("-" * 21)
        lines.append(f"{'Total:':<7} {self.total:5.2f} ({self.total / tot:.3f})")
        return "\n".join(lines)


@dataclass
class FabiaResult:
    """
    Outcome of ``run_approximate_factor_analysis``.

    Attributes
    ----------
    outcome : FabiaOutcome
        Why the run stopped
    n_iter : int
        Number of completed EM cycles
    n_reset : int
        Total number of dead factors reinitialized over the run
    last_update : float
        Size of the last noise update (max_i |Σ_j L_ij sum1_ij|)
    timings : PhaseTimings
        Time spent in the E-step loop, the inversion and the rest
    """
    outcome: FabiaOutcome
    n_iter: int = 0
    n_reset: int = 0
    last_update: float = 0.0
    timings: PhaseTimings = field(default_factory=PhaseTimings)

    @property
    def ok(self) -> bool:
        return self.outcome in (FabiaOutcome.SUCCESS, FabiaOutcome.EARLY_CONVERGED)


def transform_loadings(L: np.ndarray, Psi: np.ndarray, lpsi: np.ndarray,
                       lpsil: np.ndarray) -> None:
    """lpsi = L / Psi[:, None] and lpsil = diag(Lᵀ Ψ⁻¹ L), written in place."""
    np.divide(L, Psi[:, None], out=lpsi)
    lpsil[:] = np.einsum("ij,ij->j", L, lpsi)


def _estimate_block(X, Z, lapla, lpsi, lpsil, acc: WorkerAccumulator, samples,
                    accumulate: bool, spz: float, lap: float) -> None:
    sum1 = acc.sum1 if accumulate else None
    sum2 = acc.sum2 if accumulate else None
    for j in samples:
        estimate_factor_posterior(X[:, j], Z[:, j], lapla[:, j], lpsi, lpsil, acc,
                                  sum1=sum1, sum2=sum2, spz=spz, lap=lap)


def expectation_step(X: np.ndarray, Z: np.ndarray, lapla: np.ndarray, arena: ScratchArena,
                     executor: Optional[Executor] = None, accumulate: bool = True,
                     spz: float = 0.5, lap: float = 1.0) -> None:
    """
    Run the posterior estimator over all samples.

    Samples are split into one contiguous block per worker accumulator of
    ``arena``; each block is processed by exactly one task. With an
    ``executor`` the blocks run concurrently and this call returns once all of
    them have finished (exceptions from a worker are re-raised here).
    ``arena.lpsi``/``arena.lpsil`` must hold the current transformed loadings.

    Args:
        X: Observations (n, l)
        Z: Factor estimates (k, l), overwritten
        lapla: Sparsity parameters (k, l), updated when accumulating
        arena: Scratch arena holding the worker accumulators
        executor: Pool to run the blocks on, or None to run them inline
        accumulate: Accumulate sum1/sum2 and update lapla
        spz: Extra sparseness exponent for the factors
        lap: Floor for the sparsity parameters
    """
    args = (X, Z, lapla, arena.lpsi, arena.lpsil)
    tasks = arena.pairs(X.shape[1])
    if executor is None:
        for acc, samples in tasks:
            _estimate_block(*args, acc, samples, accumulate, spz, lap)
        return
    futures = [executor.submit(_estimate_block, *args, acc, samples, accumulate, spz, lap)
               for acc, samples in tasks]
    for future in futures:
        future.result()


@contextmanager
def _worker_pool(n_workers: int) -> Iterator[Optional[Executor]]:
    if n_workers <= 1:
        yield None
        return
    with ThreadPoolExecutor(max_workers=n_workers) as executor:
        yield executor


def run_approximate_factor_analysis(
    X: np.ndarray,
    Psi: np.ndarray,
    L: np.ndarray,
    Z: np.ndarray,
    lapla: np.ndarray,
    *,
    cycles: int = 500,
    alpha: float = 0.1,
    eps: float = 1e-3,
    spl: float = 0.0,
    spz: float = 0.5,
    scale: bool = False,
    lap: float = 1.0,
    verbose: int = 0,
    n_workers: int = 1,
    non_negative: bool = False,
    reporter: Optional[ProgressReporter] = None,
    rng: Union[None, int, np.random.Generator] = None,
    allocator: Optional[Allocator] = None,
) -> FabiaResult:
    """
    Fit the approximate FABIA model, updating L, Z, Psi and lapla in place.

    Args:
        X: Observations (n, l), samples in columns; read only
        Psi: Noise variances (n,), initial values; floored at ``eps``
        L: Loadings (n, k), initial values
        Z: Factor estimates (k, l); recomputed from the final L/Psi, or
            zeroed when no cycle produced a noise update of at least ``eps``
        lapla: Variational sparsity parameters (k, l), initial values;
            floored at ``lap``
        cycles: Number of EM cycles
        alpha: Strength of the Laplace prior on the loadings
        eps: Regularization added to sum2 and floor for Psi
        spl: Extra sparseness exponent for the loadings
        spz: Extra sparseness exponent for the factors
        scale: Rescale loading columns to unit RMS after every cycle
        lap: Floor for lapla (raised to ``eps`` if smaller)
        verbose: Report progress every ``verbose`` cycles (0 = never)
        n_workers: Number of worker threads for the E-step
        non_negative: Restrict loadings to non-negative values
        reporter: Progress reporter; defaults to ``JsonProgressReporter``
            when ``verbose`` is set. An explicit reporter with
            ``verbose=0`` is called every cycle.
        rng: Seed or generator for reinitializing dead factors
        allocator: Scratch buffer allocator (see ``ScratchArena``)

    Returns:
        FabiaResult describing how the run ended

    Raises:
        ValueError, TypeError: On inconsistent shapes or invalid parameters
    """
    X = ensure_matrix(X, (None, None), "X", writeable=False)
    n, l = X.shape
    L = ensure_matrix(L, (n, None), "L")
    k = L.shape[1]
    Z = ensure_matrix(Z, (k, l), "Z")
    lapla = ensure_matrix(lapla, (k, l), "lapla")
    Psi = ensure_vector(Psi, n, "Psi")
    if n == 0 or k == 0 or l == 0:
        raise ValueError(f"n, k and l must be positive, got n={n}, k={k}, l={l}")
    if not eps > 0:
        raise ValueError(f"eps must be positive, got {eps}")
    if cycles < 0:
        raise ValueError(f"cycles must be non-negative, got {cycles}")
    if n_workers < 1:
        raise ValueError(f"n_workers must be at least 1, got {n_workers}")

    lap = max(lap, eps)
    rng = np.random.default_rng(rng)
    report_every = verbose or (1 if reporter is not None else 0)
    if report_every and reporter is None:
        reporter = JsonProgressReporter()

    timings = PhaseTimings()
    t0 = time.perf_counter()

    try:
        arena = ScratchArena(n, k, n_workers, X.dtype, allocator)
    except MemoryError:
        log("out_of_memory", n=n, k=k, l=l, n_workers=n_workers)
        L.fill(0.0)
        Z.fill(0.0)
        return FabiaResult(FabiaOutcome.OUT_OF_MEMORY, timings=timings)

    np.maximum(Psi, eps, out=Psi)
    np.maximum(lapla, lap, out=lapla)

    log("fabia_start", n=n, k=k, l=l, cycles=cycles, alpha=alpha, eps=eps, spl=spl,
        spz=spz, scale=bool(scale), lap=lap, n_workers=n_workers)

    outcome = FabiaOutcome.SUCCESS
    n_iter = n_reset = 0
    last_update = 0.0

    with arena, _worker_pool(n_workers) as executor:
        arena.xx[:] = np.einsum("ij,ij->i", X, X) / l

        for iteration in range(1, cycles + 1):
            tic = time.perf_counter()
            transform_loadings(L, Psi, arena.lpsi, arena.lpsil)
            arena.zero(eps)
            expectation_step(X, Z, lapla, arena, executor, accumulate=True, spz=spz, lap=lap)
            total = arena.reduce()
            timings.loop += time.perf_counter() - tic

            tic = time.perf_counter()
            try:
                inv_sum2 = invert_spd(total.sum2)
            except DegenerateMatrixError as err:
                timings.chol += time.perf_counter() - tic
                log("degenerate_matrix", iteration=iteration, info=err.info, eps=eps)
                outcome = FabiaOutcome.DEGENERATE_MATRIX
                break
            timings.chol += time.perf_counter() - tic

            tic = time.perf_counter()
            L[...] = gemm(total.sum1, inv_sum2)
            sparsify_loadings(L, Psi, alpha, spl, non_negative)
            last_update = update_noise(Psi, L, total.sum1, arena.xx, l, eps)
            n_iter = iteration

            if last_update < eps:
                Psi.fill(eps)
                lapla.fill(lap)
                log("early_convergence", iteration=iteration, last_update=last_update, eps=eps)
                outcome = FabiaOutcome.EARLY_CONVERGED
                timings.rest += time.perf_counter() - tic
                break

            if scale:
                rescale_loadings(L, lapla, spz, lap)

            n_dead = reinitialize_dead_factors(L, lapla, rng, lap)
            if n_dead:
                n_reset += n_dead
                log("factors_reset", iteration=iteration, n_reset=n_dead)

            if report_every and iteration % report_every == 0:
                reporter.update(iteration, time.perf_counter() - t0,
                                read_only_view(L), read_only_view(Z),
                                read_only_view(Psi), read_only_view(lapla))
            timings.rest += time.perf_counter() - tic

        # no accepted noise update (no cycle ran, or the last one collapsed)
        if last_update < eps:
            Z.fill(0.0)
        else:
            transform_loadings(L, Psi, arena.lpsi, arena.lpsil)
            expectation_step(X, Z, lapla, arena, executor, accumulate=False, spz=spz, lap=lap)

    timings.total = time.perf_counter() - t0
    log("phase_timings", summary=timings.summary(), **timings.as_dict())
    log("fabia_done", outcome=outcome.value, n_iter=n_iter, n_reset=n_reset,
        last_update=last_update)
    return FabiaResult(outcome, n_iter=n_iter, n_reset=n_reset,
                       last_update=last_update, timings=timings)
