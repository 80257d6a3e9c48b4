"""
Model search over the annual x seasonal x cluster grid.

Each combination is fitted independently. With warm starts enabled, the fits
sharing an annual/seasonal prefix run in order within one task, and a
clustering variant starts from the preceding no-cluster fit.
"""

import itertools
import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd

from nhpp.config import FitConfig
from nhpp.errors import BadStartParameters, MissingPrerequisiteData
from nhpp.fit import FitResult, fit_model
from nhpp.likelihood import EventData
from nhpp.rates import build_rate_model

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelCombination:
    index: int
    annual: str
    seasonal: str
    cluster: str

    @property
    def label(self):
        return f"{self.annual}+{self.seasonal}+{self.cluster}"


def model_grid(annual_names, seasonal_names, cluster_names):
    return [ModelCombination(i, a, s, c) for i, (a, s, c) in
            enumerate(itertools.product(annual_names, seasonal_names, cluster_names))]


@dataclass(frozen=True)
class WarmStart:
    """Fitted annual+seasonal parameters from a no-cluster fit."""
    theta: np.ndarray
    source: str

    def start_for(self, model):
        cluster = model.templates[-1]
        if len(self.theta) != model.npar - cluster.npar:
            raise ValueError(f"Warm start from '{self.source}' does not match '{model.name}'.")
        return np.concatenate([self.theta, np.asarray(cluster.start, dtype=float)])


def fit_combination(combo, events, config, covariate=None, warm_start=None):
    """拟合一个组合；任何失败都记录为失败的 FitResult，不向外抛出。"""
    try:
        model = build_rate_model(combo.annual, combo.seasonal, combo.cluster, covariate=covariate)
    except Exception as exc:
        logger.warning("%s: cannot build rate model: %s", combo.label, exc)
        return FitResult.failed(combo.label, f"{type(exc).__name__}: {exc}", index=combo.index, n_events=events.n)

    theta0 = None
    try:
        if warm_start is not None and model.templates[-1].npar > 0:
            theta0 = warm_start.start_for(model)
        try:
            result = fit_model(model, events, config, theta0=theta0, label=combo.label, index=combo.index)
        except BadStartParameters as exc:
            if theta0 is None:
                raise
            logger.info("%s: warm start rejected (%s), using default start", combo.label, exc)
            result = fit_model(model, events, config, label=combo.label, index=combo.index)
    except Exception as exc:
        logger.warning("%s: fit failed: %s", combo.label, exc)
        return FitResult.failed(combo.label, f"{type(exc).__name__}: {exc}", model=model,
                                index=combo.index, n_events=events.n)

    logger.info("%s: nll=%.4f convergence=%s", combo.label, result.nll, result.convergence.name)
    return result


def _fit_group(combos, events, config, covariate, warm_start):
    results = []
    warm = None
    for combo in combos:
        res = fit_combination(combo, events, config, covariate, warm)
        if warm_start and res.theta is not None and res.model.templates[-1].npar == 0:
            warm = WarmStart(np.array(res.theta), res.label)
        results.append(res)
    return results


def _groups(combos, warm_start):
    if not warm_start:
        return [[c] for c in combos]
    grouped = {}
    for c in combos:
        grouped.setdefault((c.annual, c.seasonal), []).append(c)
    return list(grouped.values())


@dataclass(frozen=True)
class SearchResults:
    fits: Tuple[FitResult, ...]
    combinations: Tuple[ModelCombination, ...]

    def __len__(self):
        return len(self.fits)

    def __iter__(self):
        return iter(self.fits)

    def __getitem__(self, key):
        if isinstance(key, str):
            for fit in self.fits:
                if fit.label == key:
                    return fit
            raise KeyError(key)
        return self.fits[key]

    def to_frame(self):
        rows = []
        for combo, fit in zip(self.combinations, self.fits):
            rows.append({
                "index": combo.index,
                "model": combo.label,
                "annual": combo.annual,
                "seasonal": combo.seasonal,
                "cluster": combo.cluster,
                "npar": fit.npar,
                "nll": fit.nll,
                "aic": fit.aic,
                "bic": fit.bic,
                "convergence": int(fit.convergence),
                "converged": fit.converged,
                "se_valid": fit.se is not None,
                "theta": None if fit.theta is None else list(fit.theta),
                "se": None if fit.se is None else list(fit.se),
                "message": fit.message,
            })
        return pd.DataFrame(rows).set_index("index")

    def best(self, by="aic", converged_only=True):
        candidates = [f for f in self.fits if f.theta is not None and (f.converged or not converged_only)]
        if not candidates:
            return None
        return min(candidates, key=lambda f: getattr(f, by))


def model_search(events, annual_names, seasonal_names, cluster_names, config=None,
                 covariate=None, warm_start=False, n_jobs=1) -> SearchResults:
    """
    遍历 annual × seasonal × cluster 的全部组合并逐一拟合。
    n_jobs > 1（或 None，使用全部 CPU）时用进程池并行；开启 warm_start 时同一 annual/seasonal 前缀的组合在同一任务内顺序拟合。
    """
    if events is None:
        raise MissingPrerequisiteData("No event dataset supplied to the model search.")
    if n_jobs is not None and n_jobs < 1:
        raise ValueError(f"n_jobs must be None or a positive integer, got {n_jobs}.")
    if not isinstance(events, EventData):
        events = EventData(events)
    config = config or FitConfig()

    combos = model_grid(annual_names, seasonal_names, cluster_names)
    groups = _groups(combos, warm_start)
    logger.info("model search: %d combinations in %d tasks", len(combos), len(groups))

    results = []
    if n_jobs == 1 or len(groups) == 1:
        for g in groups:
            results.extend(_fit_group(g, events, config, covariate, warm_start))
    else:
        with ProcessPoolExecutor(max_workers=n_jobs) as pool:
            futures = {pool.submit(_fit_group, g, events, config, covariate, warm_start): g for g in groups}
            for fut in as_completed(futures):
                try:
                    results.extend(fut.result())
                except Exception as exc:
                    group = futures[fut]
                    logger.warning("task %s failed in worker: %s", group[0].label, exc)
                    results.extend(FitResult.failed(c.label, f"{type(exc).__name__}: {exc}", index=c.index,
                                                    n_events=events.n) for c in group)

    results.sort(key=lambda r: r.index)
    return SearchResults(tuple(results), tuple(combos))
