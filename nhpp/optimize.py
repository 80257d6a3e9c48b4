import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Tuple

import numpy as np
from scipy.optimize import minimize

from nhpp.likelihood import DEFAULT_PENALTY

logger = logging.getLogger(__name__)


class ConvergenceCode(IntEnum):
    SUCCESS = 0
    MAX_ITERATIONS = 1
    PRECISION_LOSS = 2
    NUMERICAL_FAILURE = 3


def default_methods(npar):
    # 单参数模型只用一次 BFGS
    if npar == 1:
        return ("BFGS",)
    return ("Nelder-Mead", "Nelder-Mead", "BFGS")


def convergence_code(method, res):
    if not np.isfinite(res.fun):
        return ConvergenceCode.NUMERICAL_FAILURE
    if res.success:
        return ConvergenceCode.SUCCESS
    if method == "Nelder-Mead":
        # scipy: 1 = maxfev, 2 = maxiter
        return ConvergenceCode.MAX_ITERATIONS if res.status in (1, 2) else ConvergenceCode.NUMERICAL_FAILURE
    if res.status == 1:
        return ConvergenceCode.MAX_ITERATIONS
    if res.status == 2:
        return ConvergenceCode.PRECISION_LOSS
    return ConvergenceCode.NUMERICAL_FAILURE


@dataclass(frozen=True)
class StageResult:
    method: str
    pass_index: int
    theta: np.ndarray
    value: float
    convergence: ConvergenceCode
    nfev: int
    message: str


@dataclass(frozen=True)
class OptimizationResult:
    theta: np.ndarray
    value: float
    convergence: ConvergenceCode
    trace: Tuple[StageResult, ...]

    @property
    def converged(self):
        return self.convergence == ConvergenceCode.SUCCESS


def staged_minimize(objective, theta0, scale=None, methods=None, passes=1, stage_options=None,
                    enforce_nonnegative=False, penalty=DEFAULT_PENALTY, log_indices=()):
    """
    依次运行 methods 中的优化器，每一阶段从上一阶段的结果出发；整个序列重复 passes 次。
    优化在 θ/scale 上进行；log_indices 中的参数必须为正，改在 log(θ/scale) 上优化，
    迭代点在这些位置上始终为正。任何阶段未收敛都会反映在返回的 convergence 中。
    """
    theta0 = np.asarray(theta0, dtype=float).ravel()
    scale = np.ones_like(theta0) if scale is None else np.asarray(scale, dtype=float).ravel()
    if len(scale) != len(theta0):
        raise ValueError("scale must have the same length as theta0.")
    if methods is None:
        methods = default_methods(len(theta0))
    if passes < 1:
        raise ValueError("passes must be at least 1.")
    stage_options = stage_options or {}
    logs = np.zeros(len(theta0), dtype=bool)
    logs[list(log_indices)] = True
    if np.any(theta0[logs] <= 0):
        raise ValueError(f"theta0 must be positive at positions {sorted(log_indices)}.")

    def to_theta(x):
        with np.errstate(over="ignore"):
            return np.where(logs, np.exp(np.where(logs, x, 0.0)), x) * scale

    def scaled(x):
        theta = to_theta(x)
        if enforce_nonnegative and np.any(theta < 0):
            return penalty
        value = objective(theta)
        return value if np.isfinite(value) else penalty

    x = np.where(logs, np.log(np.where(logs, theta0, 1.0) / scale), theta0 / scale)
    trace: List[StageResult] = []
    for p in range(passes):
        for method in methods:
            res = minimize(scaled, x, method=method, options=dict(stage_options.get(method, {})))
            code = convergence_code(method, res)
            stage = StageResult(method, p, to_theta(res.x), float(res.fun), code, int(res.nfev), str(res.message))
            trace.append(stage)
            logger.debug("pass %d %s: value=%.6g code=%s nfev=%d", p, method, stage.value, code.name, stage.nfev)
            x = res.x

    theta = to_theta(x)
    value = float(scaled(x))
    failures = [s.convergence for s in trace if s.convergence != ConvergenceCode.SUCCESS]
    if trace[-1].convergence != ConvergenceCode.SUCCESS:
        code = trace[-1].convergence
    elif failures:
        code = failures[0]
    else:
        code = ConvergenceCode.SUCCESS
    if value >= penalty:
        code = ConvergenceCode.NUMERICAL_FAILURE
    return OptimizationResult(theta, value, code, tuple(trace))
