from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

from nhpp.likelihood import DEFAULT_PENALTY


def _default_stage_options():
    return {
        "Nelder-Mead": {"maxiter": 5000, "maxfev": 5000},
        "BFGS": {"maxiter": 1000, "gtol": 1e-3},
    }


@dataclass(frozen=True)
class FitConfig:
    minimum_rate: float = 0.0
    enforce_nonnegative_theta: bool = False
    # None: 按参数个数自动选择（见 optimize.default_methods）
    methods: Optional[Tuple[str, ...]] = None
    passes: int = 1
    stage_options: Dict[str, dict] = field(default_factory=_default_stage_options)
    penalty: float = DEFAULT_PENALTY
    integration: str = "gauss"
    quad_order: int = 8
    max_step: Optional[float] = 1.0 / 52
    hessian_step: float = 1e-3
    compute_standard_errors: bool = True

    def __post_init__(self):
        if self.passes < 1:
            raise ValueError("passes must be at least 1.")
        if self.integration not in ("gauss", "quad"):
            raise ValueError(f"Unknown integration method '{self.integration}'.")
        if self.methods is not None:
            object.__setattr__(self, "methods", tuple(self.methods))
        if self.penalty <= 0:
            raise ValueError("penalty must be positive.")

    def options_for(self, method):
        return dict(self.stage_options.get(method, {}))

    def with_stage_options(self, method, **options):
        merged = {k: dict(v) for k, v in self.stage_options.items()}
        merged.setdefault(method, {}).update(options)
        return replace(self, stage_options=merged)

    def replace(self, **changes):
        return replace(self, **changes)
