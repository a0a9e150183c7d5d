from __future__ import annotations

import warnings
from typing import Dict, List, Optional

import numpy as np
from sklearn.base import BaseEstimator, TransformerMixin

from .array import as_float_array
from .config import FabiaConfig
from .em import FabiaOutcome, expectation_step, run_approximate_factor_analysis, transform_loadings
from .workspace import ScratchArena


def extract_biclusters(L: np.ndarray, Z: np.ndarray, thres_l: float = 0.1,
                       thres_z: float = 0.5) -> List[Dict[str, object]]:
    """
    Read biclusters off a fitted model.

    Factor j defines the bicluster of the variables with |L[:, j]| > thres_l
    and the samples with |Z[j, :]| > thres_z.
    """
    out = []
    for j in range(L.shape[1]):
        out.append({
            "factor": j,
            "variables": np.flatnonzero(np.abs(L[:, j]) > thres_l).tolist(),
            "samples": np.flatnonzero(np.abs(Z[j, :]) > thres_z).tolist(),
        })
    return out


class FabiaEstimator(BaseEstimator, TransformerMixin):
    """
    scikit-learn wrapper around ``run_approximate_factor_analysis``.

    Follows the scikit-learn convention of X being (n_samples, n_variables);
    the model itself works on the transpose.
    """

    def __init__(self, n_factors=5, cycles=500, alpha=0.1, eps=1e-3, spl=0.0, spz=0.5,
                 scale=False, lap=1.0, non_negative=False, center=True, n_workers=1,
                 verbose=0, dtype="float32", seed=0, reporter=None):
        self.n_factors = n_factors
        self.cycles = cycles
        self.alpha = alpha
        self.eps = eps
        self.spl = spl
        self.spz = spz
        self.scale = scale
        self.lap = lap
        self.non_negative = non_negative
        self.center = center
        self.n_workers = n_workers
        self.verbose = verbose
        self.dtype = dtype
        self.seed = seed
        self.reporter = reporter

    @classmethod
    def from_config(cls, cfg: FabiaConfig, reporter=None) -> "FabiaEstimator":
        return cls(reporter=reporter, **cfg.model_dump())

    def _config(self) -> FabiaConfig:
        params = self.get_params(deep=False)
        params.pop("reporter")
        return FabiaConfig(**params)

    def _columns(self, X, fitting: bool) -> np.ndarray:
        data = np.array(as_float_array(X, dtype=self.dtype), ndmin=2).T
        if fitting:
            self.mean_ = data.mean(axis=1) if self.center else np.zeros(data.shape[0], dtype=data.dtype)
        return data - self.mean_[:, None]

    def fit(self, X, y=None):
        cfg = self._config()
        data = self._columns(X, fitting=True)
        n, l = data.shape
        k = cfg.n_factors
        rng = np.random.default_rng(cfg.seed)

        L = rng.standard_normal((n, k)).astype(data.dtype)
        Psi = np.maximum(cfg.eps, np.mean(data * data, axis=1)).astype(data.dtype)
        Z = np.zeros((k, l), dtype=data.dtype)
        lapla = np.ones((k, l), dtype=data.dtype)

        result = run_approximate_factor_analysis(data, Psi, L, Z, lapla, rng=rng,
                                                 reporter=self.reporter, **cfg.em_kwargs())
        if result.outcome is FabiaOutcome.OUT_OF_MEMORY:
            raise MemoryError(f"Not enough memory for a {n}x{l} problem with {k} factors")
        if result.outcome is FabiaOutcome.DEGENERATE_MATRIX:
            warnings.warn(f"sum2 became singular after {result.n_iter} cycles; "
                          f"consider a larger eps (currently {cfg.eps})", RuntimeWarning)

        self.loadings_ = L
        self.factors_ = Z
        self.noise_variance_ = Psi
        self.lapla_ = lapla
        self.n_iter_ = result.n_iter
        self.n_reset_ = result.n_reset
        self.outcome_ = result.outcome
        self.result_ = result
        return self

    def transform(self, X):
        """
        Posterior factor estimates for new samples (n_samples, n_factors).

        Each sample gets a single posterior pass starting from unit sparsity
        parameters.
        """
        data = self._columns(X, fitting=False)
        n, m = data.shape
        k = self.loadings_.shape[1]
        lap = max(self.lap, self.eps)
        Z = np.zeros((k, m), dtype=data.dtype)
        lapla = np.full((k, m), max(1.0, lap), dtype=data.dtype)
        with ScratchArena(n, k, 1, data.dtype) as arena:
            transform_loadings(self.loadings_, self.noise_variance_, arena.lpsi, arena.lpsil)
            expectation_step(data, Z, lapla, arena, accumulate=False, spz=self.spz, lap=lap)
        return Z.T

    def inverse_transform(self, Z):
        Z = as_float_array(Z, dtype=self.dtype)
        return Z @ self.loadings_.T + self.mean_

    def biclusters(self, thres_l: float = 0.1, thres_z: float = 0.5) -> List[Dict[str, object]]:
        return extract_biclusters(self.loadings_, self.factors_, thres_l, thres_z)
