from __future__ import annotations
from pydantic import BaseModel, Field, NonNegativeInt, PositiveInt
from typing import Any, Dict, Optional


class FabiaConfig(BaseModel):
    n_factors: PositiveInt = 5
    cycles: NonNegativeInt = 500
    alpha: float = Field(0.1, ge=0.0)
    eps: float = Field(1e-3, gt=0.0)
    spl: float = Field(0.0, ge=0.0)
    spz: float = Field(0.5, ge=0.0)
    scale: bool = False
    lap: float = Field(1.0, gt=0.0)
    non_negative: bool = False
    center: bool = True
    n_workers: PositiveInt = 1
    verbose: NonNegativeInt = 0
    dtype: str = Field("float32", pattern="^(float32|float64)$")
    seed: int = 0

    def em_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``run_approximate_factor_analysis``."""
        return {
            "cycles": self.cycles,
            "alpha": self.alpha,
            "eps": self.eps,
            "spl": self.spl,
            "spz": self.spz,
            "scale": self.scale,
            "lap": self.lap,
            "verbose": self.verbose,
            "n_workers": self.n_workers,
            "non_negative": self.non_negative,
        }


SCHEMA_VERSION = 1

def make_metadata(cfg: FabiaConfig, L_shape, Z_shape, extra: Optional[dict] = None):
    meta = {
        "schema_version": SCHEMA_VERSION,
        "n_factors": cfg.n_factors,
        "cycles": cfg.cycles,
        "alpha": cfg.alpha,
        "eps": cfg.eps,
        "spl": cfg.spl,
        "spz": cfg.spz,
        "scale": cfg.scale,
        "lap": cfg.lap,
        "non_negative": cfg.non_negative,
        "center": cfg.center,
        "n_workers": cfg.n_workers,
        "dtype": cfg.dtype,
        "seed": cfg.seed,
        "shapes": {"L": list(L_shape), "Z": list(Z_shape)},
    }
    if extra: meta.update(extra)
    return meta
