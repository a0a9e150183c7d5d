"""
Progress reporting for factor analysis runs.

The EM driver calls ``reporter.update(...)`` every few cycles with read-only
views of the current parameters. Reporters observe; they never modify the
arrays they are handed.

- ``JsonProgressReporter``: one structured JSON log record per call
- ``DashboardReporter``: TensorBoard scalars/histograms and a CSV metrics file
"""

import time
import numpy as np
from typing import Dict, Optional, Protocol
from pathlib import Path

from .experimental_logging import log


class ProgressReporter(Protocol):
    """Read-only observer of an EM run. k, n and l are the arrays' shapes."""

    def update(self, iteration: int, elapsed: float, L: np.ndarray, Z: np.ndarray,
               Psi: np.ndarray, lapla: np.ndarray) -> None:
        ...


def summarize(L: np.ndarray, Z: np.ndarray, Psi: np.ndarray, lapla: np.ndarray,
              threshold: float = 1e-6) -> Dict[str, float]:
    """Scalar summary of the current model state."""
    return {
        "mean_abs_loading": float(np.mean(np.abs(L))),
        "loading_density": float(np.mean(np.abs(L) > threshold)),
        "code_density": float(np.mean(np.abs(Z) > threshold)),
        "mean_psi": float(np.mean(Psi)),
        "mean_lapla": float(np.mean(lapla)),
    }


class JsonProgressReporter:
    """Logs a ``progress`` event with dimensions and summary statistics."""

    def update(self, iteration, elapsed, L, Z, Psi, lapla):
        n, k = L.shape
        log("progress", iteration=iteration, elapsed=elapsed, n=n, k=k, l=Z.shape[1],
            **summarize(L, Z, Psi, lapla))



class DashboardReporter:
    """
    Dashboard logging of a FABIA run.

    Every reported cycle writes the ``summarize`` scalars plus the elapsed
    time as ``fabia/<metric>`` TensorBoard scalars and as ``time,step,metric,value``
    rows of a CSV file. TensorBoard additionally gets histograms of the
    non-zero loadings and of the factor estimates.

    Args:
        tensorboard_dir: TensorBoard log directory (requires torch); None disables it
        csv_path: CSV metrics file, truncated on open; None disables it
    """

    def __init__(self, tensorboard_dir: Optional[str] = None, csv_path: Optional[str] = None):
        self.writer = None
        if tensorboard_dir:
            # optional dependency, only needed when a directory is configured
            from torch.utils.tensorboard import SummaryWriter
            self.writer = SummaryWriter(tensorboard_dir)

        self.csv_path = Path(csv_path) if csv_path else None
        if self.csv_path is not None:
            self.csv_path.parent.mkdir(parents=True, exist_ok=True)
            self.csv_path.write_text("time,step,metric,value\n", encoding="utf-8")

    def update(self, iteration, elapsed, L, Z, Psi, lapla):
        metrics = summarize(L, Z, Psi, lapla)
        metrics["elapsed"] = float(elapsed)

        if self.csv_path is not None:
            now = time.time()
            with open(self.csv_path, "a", encoding="utf-8") as f:
                for metric, value in metrics.items():
                    f.write(f"{now},{iteration},{metric},{value}\n")

        if self.writer is None:
            return
        for metric, value in metrics.items():
            self.writer.add_scalar(f"fabia/{metric}", value, iteration)
        nonzero = L[np.abs(L) > 1e-6]
        if nonzero.size:
            self.writer.add_histogram("loadings/nonzero", nonzero, iteration)
        self.writer.add_histogram("factors/values", np.asarray(Z).ravel(), iteration)

    def close(self):
        if self.writer is not None:
            self.writer.close()
            self.writer = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
