"""
Per-run scratch memory for the EM engine.

All scratch buffers of a run are allocated once by ``ScratchArena`` and
released when the arena is closed, on every exit path. The E-step works on one
``WorkerAccumulator`` per worker: each accumulator is owned by exactly one
parallel task at a time and folded back into worker 0's accumulator by the
driver once every task has finished, so no accumulator is ever shared or
locked.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

Allocator = Callable[[Tuple[int, ...], np.dtype], np.ndarray]


def fortran_zeros(shape: Tuple[int, ...], dtype) -> np.ndarray:
    """Default allocator: zeroed Fortran-ordered buffer (BLAS-friendly)."""
    return np.zeros(shape, dtype=dtype, order="F")


@dataclass
class WorkerAccumulator:
    """
    Private partial statistics and posterior workspace of one worker.

    Attributes
    ----------
    sum1 : ndarray (n, k)
        Partial sum of x E[z]ᵀ over the worker's samples
    sum2 : ndarray (k, k)
        Partial sum of E[zzᵀ] over the worker's samples
    ilpsil : ndarray (k,)
        Inverse posterior precision of the current sample
    ilpsilx : ndarray (n, k)
        Transformed loadings scaled by ``ilpsil`` for the current sample
    """
    sum1: np.ndarray
    sum2: np.ndarray
    ilpsil: np.ndarray
    ilpsilx: np.ndarray


class ScratchArena:
    """
    Scoped owner of every scratch buffer used by one EM run.

    Parameters
    ----------
    n, k : int
        Number of variables and factors
    n_workers : int
        Number of per-worker accumulators
    dtype : numpy dtype
        Working precision
    allocator : callable, optional
        ``allocator(shape, dtype) -> ndarray`` returning a zeroed buffer.
        May raise ``MemoryError``; defaults to ``fortran_zeros``.

    Use as a context manager; buffers are dropped on exit::

        with ScratchArena(n, k, 4, np.float32) as arena:
            ...
    """

    def __init__(self, n: int, k: int, n_workers: int, dtype=np.float32,
                 allocator: Optional[Allocator] = None):
        self.n = n
        self.k = k
        self.n_workers = n_workers
        self.dtype = np.dtype(dtype)
        self._allocator = allocator or fortran_zeros

        self.xx: Optional[np.ndarray] = None
        self.lpsi: Optional[np.ndarray] = None
        self.lpsil: Optional[np.ndarray] = None
        self.workers: List[WorkerAccumulator] = []

        try:
            self._allocate()
        except MemoryError:
            self.release()
            raise

    def _alloc(self, *shape: int) -> np.ndarray:
        return self._allocator(tuple(shape), self.dtype)

    def _allocate(self):
        n, k = self.n, self.k
        sum1 = [self._alloc(n, k) for _ in range(self.n_workers)]
        sum2 = [self._alloc(k, k) for _ in range(self.n_workers)]
        self.xx = self._alloc(n)
        # transpose of a (k, n) buffer: each variable's factor weights are
        # contiguous for the per-sample inner loop
        self.lpsi = self._alloc(k, n).T
        self.lpsil = self._alloc(k)
        ilpsil = [self._alloc(k) for _ in range(self.n_workers)]
        ilpsilx = [self._alloc(k, n).T for _ in range(self.n_workers)]
        self.workers = [
            WorkerAccumulator(sum1=s1, sum2=s2, ilpsil=il, ilpsilx=ilx)
            for s1, s2, il, ilx in zip(sum1, sum2, ilpsil, ilpsilx)
        ]

    @property
    def released(self) -> bool:
        return self.lpsi is None

    def release(self):
        """Drop every buffer reference held by the arena."""
        self.workers = []
        self.xx = None
        self.lpsi = None
        self.lpsil = None

    def __enter__(self) -> "ScratchArena":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

    def zero(self, eps: float):
        """
        Clear all accumulators and seed the regularizer.

        Only worker 0's ``sum2`` diagonal receives ``eps``; the other workers
        start from zero, so after ``reduce`` the diagonal carries ``eps``
        exactly once regardless of the number of workers.
        """
        for acc in self.workers:
            acc.sum1.fill(0.0)
            acc.sum2.fill(0.0)
        np.fill_diagonal(self.workers[0].sum2, eps)

    def reduce(self) -> WorkerAccumulator:
        """Fold every worker's ``sum1``/``sum2`` into worker 0 and return it."""
        total = self.workers[0]
        for acc in self.workers[1:]:
            total.sum1 += acc.sum1
            total.sum2 += acc.sum2
        return total

    def partitions(self, n_samples: int) -> List[np.ndarray]:
        """Contiguous blocks of sample indices, one per worker."""
        return np.array_split(np.arange(n_samples), self.n_workers)

    def pairs(self, n_samples: int) -> Sequence[Tuple[WorkerAccumulator, np.ndarray]]:
        """(accumulator, sample block) assignments for one parallel phase."""
        return list(zip(self.workers, self.partitions(n_samples)))
