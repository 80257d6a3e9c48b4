import numpy as np
from scipy.stats import kstest

from nhpp.config import FitConfig
from nhpp.likelihood import NHPPLikelihood


def aic(nll, k):
    return float(2.0 * nll + 2.0 * k)


def bic(nll, k, n):
    return float(2.0 * nll + k * np.log(n))


def rescaled_intervals(fit, events, config=None):
    """
    时间重标定：每个事件之前的可发生区间上的积分强度 Λ_i。
    模型正确时 Λ_i 独立同分布于 Exp(1)。
    """
    if fit.theta is None:
        raise ValueError(f"Fit '{fit.label}' has no parameter estimates.")
    config = config or FitConfig()
    lik = NHPPLikelihood(fit.model, events, minimum_rate=config.minimum_rate, penalty=config.penalty,
                         integration=config.integration, quad_order=config.quad_order,
                         max_step=config.max_step)
    return lik.gap_integrals(fit.theta)[:-1]


def ks_on_u_values(u_values):
    """
    对 U 序列做 K-S 拟合优度检验：
    原假设 H0: U ~ Uniform(0, 1)
    返回 dict: {"stat": D统计量, "pvalue": p值}
    """
    u = np.asarray(u_values, dtype=float)
    # 避免取到 0 或 1，影响数值稳定性
    u = np.clip(u, 1e-8, 1 - 1e-8)

    stat, pvalue = kstest(u, "uniform")
    return {"stat": float(stat), "pvalue": float(pvalue)}


def time_rescaling_ks(fit, events, config=None):
    lam = rescaled_intervals(fit, events, config)
    return ks_on_u_values(1.0 - np.exp(-lam))
