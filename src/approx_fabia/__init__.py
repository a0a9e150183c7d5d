from .__about__ import __version__

from .em import (
    run_approximate_factor_analysis, expectation_step, transform_loadings,
    FabiaOutcome, FabiaResult, PhaseTimings
)
from .posterior import estimate_factor_posterior, MACHINE_EPS
from .mstep import (
    sparsify_loadings, update_noise, rescale_loadings, reinitialize_dead_factors
)
from .workspace import ScratchArena, WorkerAccumulator
from .linalg import DegenerateMatrixError, invert_spd
from .progress import ProgressReporter, JsonProgressReporter, DashboardReporter
from .config import FabiaConfig
from .sklearn_estimator import FabiaEstimator, extract_biclusters

__all__ = [
    "__version__",

    # EM driver
    "run_approximate_factor_analysis", "expectation_step", "transform_loadings",
    "FabiaOutcome", "FabiaResult", "PhaseTimings",

    # Kernels
    "estimate_factor_posterior", "MACHINE_EPS",
    "sparsify_loadings", "update_noise", "rescale_loadings", "reinitialize_dead_factors",
    "ScratchArena", "WorkerAccumulator",
    "DegenerateMatrixError", "invert_spd",

    # Reporting and configuration
    "ProgressReporter", "JsonProgressReporter", "DashboardReporter",
    "FabiaConfig",

    # scikit-learn interface
    "FabiaEstimator", "extract_biclusters",
]
