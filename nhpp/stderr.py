from dataclasses import dataclass
from typing import Optional

import numdifftools as nd
import numpy as np

from nhpp.likelihood import DEFAULT_PENALTY


@dataclass(frozen=True)
class StandardErrors:
    values: Optional[np.ndarray]
    valid: bool
    message: str = ""
    hessian: Optional[np.ndarray] = None
    covariance: Optional[np.ndarray] = None

    @classmethod
    def invalid(cls, message, hessian=None):
        return cls(values=None, valid=False, message=message, hessian=hessian)


def numerical_hessian(f, theta, step):
    """Hessian of f at theta; step gives the base difference step for each parameter."""
    theta = np.asarray(theta, dtype=float).ravel()
    H = nd.Hessian(f, step=np.asarray(step, dtype=float).ravel())(theta)
    return np.atleast_2d(np.asarray(H, dtype=float)).reshape(len(theta), len(theta))


def standard_errors(negloglik, theta, scale=None, rel_step=1e-3, penalty=DEFAULT_PENALTY):
    """
    由负对数似然在 θ̂ 处的 Hessian（观测信息矩阵）求渐近标准误。
    Hessian 不正定或求逆失败时返回 valid=False，而不是传播 NaN。
    """
    theta = np.asarray(theta, dtype=float)
    scale = np.ones_like(theta) if scale is None else np.asarray(scale, dtype=float)
    step = rel_step * scale

    hit_penalty = []

    def tracked(x):
        value = negloglik(x)
        if not np.isfinite(value) or value >= penalty:
            hit_penalty.append(x)
        return value

    H = numerical_hessian(tracked, theta, step)
    if hit_penalty:
        return StandardErrors.invalid("Hessian evaluation reached infeasible parameters", H)
    if not np.all(np.isfinite(H)):
        return StandardErrors.invalid("Hessian is not finite", H)
    try:
        np.linalg.cholesky(H)
        cov = np.linalg.inv(H)
    except np.linalg.LinAlgError:
        return StandardErrors.invalid("Hessian is not positive definite", H)
    var = np.diag(cov)
    if np.any(~np.isfinite(var)) or np.any(var <= 0):
        return StandardErrors.invalid("covariance has non-positive variances", H)
    return StandardErrors(values=np.sqrt(var), valid=True, hessian=H, covariance=cov)
