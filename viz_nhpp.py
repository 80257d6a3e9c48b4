# viz_nhpp.py
# 模型搜索结果表与诊断图

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from metrics import aic, bic, rescaled_intervals


# ========== 结果表 ==========

def build_results_table(results):
    """每个组合一行；dAIC 相对于收敛模型中的最小 AIC。"""
    rows = []
    for fit in results:
        ok = fit.theta is not None
        rows.append({
            "model": fit.label,
            "npar": fit.npar,
            "NLL": fit.nll,
            "AIC": aic(fit.nll, fit.npar) if ok else np.nan,
            "BIC": bic(fit.nll, fit.npar, fit.n_events) if ok and fit.n_events else np.nan,
            "converged": fit.converged,
            "convergence": int(fit.convergence),
            "se_valid": fit.se is not None,
            "message": fit.message,
        })
    df = pd.DataFrame(rows)
    ref = df.loc[df["converged"], "AIC"].min()
    df["dAIC"] = df["AIC"] - ref
    return df.set_index("model")


def plot_model_aic(table):
    df = table.dropna(subset=["dAIC"]).sort_values("dAIC")
    fig, ax = plt.subplots(figsize=(6, max(2.0, 0.35 * len(df) + 1)))
    colors = ["C0" if c else "C3" for c in df["converged"]]
    ax.barh(df.index, df["dAIC"], color=colors)
    ax.invert_yaxis()
    ax.set_xlabel("AIC - min(AIC)")
    ax.set_title("Model search")
    ax.grid(alpha=0.3, linestyle="--", linewidth=0.5)
    fig.tight_layout()
    return fig


# ========== 季节强度 ==========

def plot_seasonal_intensity(fit, events, bins=12):
    """
    按年内相位统计的经验事件率 vs 模型背景强度（不含聚集项）的多年平均。
    """
    rate = fit.rate_function()
    first, last = int(np.floor(events.start_time)), int(np.floor(events.end_time))
    years = np.arange(first, last + 1)
    n_years = max(events.end_time - events.start_time, 1e-12)

    phase = np.linspace(0.0, 1.0, 201)
    grid = years[:, None] + phase[None, :]
    lam = rate(grid, np.full(grid.shape, -np.inf)).mean(axis=0)

    edges = np.linspace(0.0, 1.0, bins + 1)
    counts, _ = np.histogram(np.mod(events.times, 1.0), bins=edges)
    empirical = counts / (n_years * np.diff(edges))

    fig, ax = plt.subplots(figsize=(6, 4))
    ax.bar(edges[:-1], empirical, width=np.diff(edges), align="edge", alpha=0.4, label="Observed")
    ax.plot(phase, lam, label=fit.label)
    ax.set_xlabel("Fraction of year")
    ax.set_ylabel("Events per year")
    ax.set_title("Seasonal intensity")
    ax.grid(alpha=0.3, linestyle="--", linewidth=0.5)
    ax.legend()
    fig.tight_layout()
    return fig


# ========== 累计事件数 ==========

def plot_cum_events(fit, events):
    expected = np.cumsum(rescaled_intervals(fit, events))
    k_idx = np.arange(1, events.n + 1, dtype=float)

    fig, ax = plt.subplots(figsize=(6, 4))
    ax.step(events.times, k_idx, where="post", label="Observed", linewidth=2)
    ax.plot(events.times, expected, label=fit.label)
    ax.set_xlabel("Time (years)")
    ax.set_ylabel("Cumulative events")
    ax.grid(alpha=0.3, linestyle="--", linewidth=0.5)
    ax.legend()
    fig.tight_layout()
    return fig
