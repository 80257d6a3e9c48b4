import logging
from dataclasses import dataclass
from functools import partial
from typing import Optional, Tuple

import numpy as np

from nhpp.config import FitConfig
from nhpp.errors import BadStartParameters
from nhpp.likelihood import NHPPLikelihood
from nhpp.optimize import ConvergenceCode, default_methods, staged_minimize
from nhpp.rates import CompositeRateModel
from nhpp.stderr import StandardErrors, standard_errors

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FitResult:
    model: Optional[CompositeRateModel]
    theta: Optional[np.ndarray]
    nll: float
    convergence: ConvergenceCode
    standard_errors: Optional[StandardErrors] = None
    trace: Tuple = ()
    label: str = ""
    index: Optional[int] = None
    n_events: int = 0
    message: str = ""

    @classmethod
    def failed(cls, label, message, model=None, index=None, n_events=0):
        return cls(model=model, theta=None, nll=float("nan"),
                   convergence=ConvergenceCode.NUMERICAL_FAILURE,
                   standard_errors=None, label=label, index=index,
                   n_events=n_events, message=message)

    @property
    def converged(self):
        return self.convergence == ConvergenceCode.SUCCESS

    @property
    def npar(self):
        return self.model.npar if self.model is not None else 0

    @property
    def se(self):
        if self.standard_errors is None or not self.standard_errors.valid:
            return None
        return self.standard_errors.values

    @property
    def aic(self):
        return 2.0 * self.nll + 2.0 * self.npar

    @property
    def bic(self):
        return 2.0 * self.nll + self.npar * np.log(self.n_events) if self.n_events else float("nan")

    def params(self):
        if self.theta is None:
            return {}
        return self.model.split(self.theta)

    def rate_function(self):
        """λ(t, tlast) at the fitted parameters."""
        if self.theta is None:
            raise ValueError(f"Fit '{self.label}' has no parameter estimates: {self.message}")
        return partial(self.model.rate, np.array(self.theta))


def check_start(model, theta0, config, likelihood=None):
    theta0 = model.start if theta0 is None else np.asarray(theta0, dtype=float).ravel()
    if len(theta0) != model.npar:
        raise BadStartParameters(f"'{model.name}' takes {model.npar} parameters, got {len(theta0)}.")
    if not np.all(np.isfinite(theta0)):
        raise BadStartParameters(f"Start parameters must be finite: {theta0}")
    bad = [i for i in model.positive_indices if theta0[i] <= 0]
    if bad:
        raise BadStartParameters(f"Start parameters at positions {bad} of '{model.name}' must be positive: {theta0}")
    if config.enforce_nonnegative_theta and np.any(theta0 < 0):
        raise BadStartParameters(f"Start parameters must be non-negative: {theta0}")
    if likelihood is not None and likelihood(theta0) >= config.penalty:
        raise BadStartParameters(f"Start parameters give an infeasible rate for '{model.name}': {theta0}")
    return theta0


def fit_model(model, events, config=None, theta0=None, label=None, index=None):
    """
    对单个组合模型做极大似然拟合：分阶段优化 + 基于 Hessian 的标准误。
    θ0 不合法时直接抛出 BadStartParameters，不调用优化器。
    """
    config = config or FitConfig()
    label = label or model.name
    if model.npar == 0:
        raise ValueError(f"Rate model '{model.name}' has no free parameters.")

    lik = NHPPLikelihood(model, events, minimum_rate=config.minimum_rate, penalty=config.penalty,
                         integration=config.integration, quad_order=config.quad_order,
                         max_step=config.max_step)
    theta0 = check_start(model, theta0, config, lik)

    methods = config.methods or default_methods(model.npar)
    opt = staged_minimize(lik, theta0, scale=model.scale, methods=methods, passes=config.passes,
                          stage_options={m: config.options_for(m) for m in methods},
                          enforce_nonnegative=config.enforce_nonnegative_theta,
                          penalty=config.penalty, log_indices=model.positive_indices)

    se = None
    if config.compute_standard_errors:
        if opt.convergence == ConvergenceCode.NUMERICAL_FAILURE:
            se = StandardErrors.invalid("fit ended at infeasible parameters")
        else:
            se = standard_errors(lik, opt.theta, scale=model.scale, rel_step=config.hessian_step,
                                 penalty=config.penalty)
        if not se.valid:
            logger.info("%s: standard errors unavailable (%s)", label, se.message)

    message = opt.trace[-1].message if opt.converged else f"{opt.convergence.name}: {opt.trace[-1].message}"
    return FitResult(model=model, theta=opt.theta, nll=opt.value, convergence=opt.convergence,
                     standard_errors=se, trace=opt.trace, label=label, index=index,
                     n_events=events.n, message=message)
