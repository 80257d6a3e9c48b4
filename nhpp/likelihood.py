import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.integrate import quad

from nhpp.errors import InfeasibleParameter, MissingPrerequisiteData

logger = logging.getLogger(__name__)

DEFAULT_PENALTY = 1e20


@dataclass(frozen=True, eq=False)
class EventData:
    """
    有序的风暴事件序列。
    times: 事件开始时刻（年，严格递增）
    durations: 持续时间（年，已包含事件间的最小间隔），在此期间不可能发生新事件
    start_time / end_time: 观测窗口，默认为第一个 / 最后一个事件时刻
    """
    times: np.ndarray
    durations: Optional[np.ndarray] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    def __post_init__(self):
        times = np.array(self.times, dtype=float).ravel()
        if len(times) == 0:
            raise MissingPrerequisiteData("Event dataset is empty.")
        if not np.all(np.isfinite(times)):
            raise ValueError("Event times must be finite.")
        if np.any(np.diff(times) <= 0):
            raise ValueError("Event times must be strictly increasing.")

        if self.durations is None:
            durations = np.zeros_like(times)
        else:
            durations = np.array(self.durations, dtype=float).ravel()
        if len(durations) != len(times):
            raise ValueError("durations must have one entry per event.")
        if np.any(~np.isfinite(durations)) or np.any(durations < 0):
            raise ValueError("durations must be finite and non-negative.")

        start = float(times[0]) if self.start_time is None else float(self.start_time)
        end = float(times[-1]) if self.end_time is None else float(self.end_time)
        if start > times[0]:
            raise ValueError("start_time is after the first event.")
        if end < times[-1]:
            raise ValueError("end_time is before the last event.")

        times.flags.writeable = False
        durations.flags.writeable = False
        object.__setattr__(self, "times", times)
        object.__setattr__(self, "durations", durations)
        object.__setattr__(self, "start_time", start)
        object.__setattr__(self, "end_time", end)

    @property
    def n(self):
        return len(self.times)

    @property
    def previous_times(self):
        return np.concatenate([[-np.inf], self.times[:-1]])

    def gaps(self):
        """
        可能发生新事件的区间 [a_i, b_i) 及其对应的 tlast。
        共 n+1 段：窗口起点到第一个事件、每个事件死区结束到下一个事件、最后一个死区结束到窗口终点。
        死区可能相互重叠（一个长死区覆盖后面的事件），所以起点取此前所有死区终点的最大值。
        """
        a = np.concatenate([[self.start_time], np.maximum.accumulate(self.times + self.durations)])
        b = np.concatenate([self.times, [self.end_time]])
        tlast = np.concatenate([[-np.inf], self.times])
        return a, np.maximum(a, b), tlast

    @property
    def live_time(self):
        a, b, _ = self.gaps()
        return float(np.sum(b - a))

    def with_window(self, start_time=None, end_time=None):
        return EventData(self.times, self.durations,
                         self.start_time if start_time is None else start_time,
                         self.end_time if end_time is None else end_time)


def gauss_legendre_grid(a, b, tlast, order=8, max_step=None):
    """Quadrature nodes covering each [a_i, b_i); returns (points, weights, tlast, gap index)."""
    a, b, tlast = (np.asarray(v, dtype=float) for v in (a, b, tlast))
    length = b - a
    keep = np.flatnonzero(length > 0)
    length = length[keep]
    if max_step is None:
        m = np.ones(len(keep), dtype=int)
    else:
        m = np.maximum(1, np.ceil(length / max_step)).astype(int)

    h = np.repeat(length / m, m)
    piece = np.arange(m.sum()) - np.repeat(np.cumsum(m) - m, m)
    lo = np.repeat(a[keep], m) + piece * h
    half = h / 2

    x, w = np.polynomial.legendre.leggauss(order)
    points = (lo + half)[:, None] + half[:, None] * x[None, :]
    weights = half[:, None] * w[None, :]
    tl = np.repeat(tlast[keep], m)[:, None] * np.ones_like(x)[None, :]
    gap = np.repeat(keep, m)[:, None] * np.ones(order, dtype=int)[None, :]
    return points.ravel(), weights.ravel(), tl.ravel(), gap.ravel()


class NHPPLikelihood:
    """
    NHPP 对数似然：
        logL(θ) = Σ log λ(θ, t_i, t_{i-1}) - ∫ λ(θ, s, tlast(s)) ds
    积分区域扣除每个事件之后的死区 [t_i, t_i + d_i)。
    求积网格只在构造时生成一次，之后只读，可被多个优化器并发调用。
    """

    def __init__(self, model, events, minimum_rate=0.0, penalty=DEFAULT_PENALTY,
                 integration="gauss", quad_order=8, max_step=1.0 / 52):
        if integration not in ("gauss", "quad"):
            raise ValueError(f"Unknown integration method '{integration}'.")
        self.model = model
        self.events = events
        self.minimum_rate = float(minimum_rate)
        self.penalty = float(penalty)
        self.integration = integration

        self._tprev = events.previous_times
        self._gaps = events.gaps()
        if integration == "gauss":
            self._grid = gauss_legendre_grid(*self._gaps, order=quad_order, max_step=max_step)

    def _check_theta(self, theta):
        theta = np.asarray(theta, dtype=float).ravel()
        if len(theta) != self.model.npar:
            raise ValueError(f"Expected {self.model.npar} parameters for '{self.model.name}', got {len(theta)}.")
        return theta

    def _rate(self, theta, t, tlast):
        lam = self.model.rate(theta, t, tlast)
        if not np.all(np.isfinite(lam)):
            raise InfeasibleParameter("rate is not finite")
        if np.any(lam < self.minimum_rate):
            raise InfeasibleParameter(f"rate below minimum_rate={self.minimum_rate}")
        return lam

    def rate_at_events(self, theta):
        theta = self._check_theta(theta)
        with np.errstate(all="ignore"):
            lam = self._rate(theta, self.events.times, self._tprev)
        if np.any(lam <= 0):
            raise InfeasibleParameter("rate is not positive at an event time")
        return lam

    def gap_integrals(self, theta):
        """∫λ over each live interval; entry i covers the interval ending at event i+1 (the last one at end_time)."""
        theta = self._check_theta(theta)
        a, b, tlast = self._gaps
        out = np.zeros(len(a))
        with np.errstate(all="ignore"):
            if self.integration == "gauss":
                points, weights, tl, gap = self._grid
                lam = self._rate(theta, points, tl)
                out += np.bincount(gap, weights=weights * lam, minlength=len(a))
            else:
                for i in np.flatnonzero(b > a):
                    out[i] = quad(self._scalar_rate, a[i], b[i], args=(theta, tlast[i]), limit=200)[0]
        return out

    def _scalar_rate(self, s, theta, tlast):
        return float(self._rate(theta, np.array([s]), np.array([tlast]))[0])

    def integrated_rate(self, theta):
        return float(np.sum(self.gap_integrals(theta)))

    def loglik(self, theta):
        """Raises InfeasibleParameter where λ is invalid; see negloglik for the penalised form."""
        lam = self.rate_at_events(theta)
        value = float(np.sum(np.log(lam)) - self.integrated_rate(theta))
        if not np.isfinite(value):
            raise InfeasibleParameter("log-likelihood is not finite")
        return value

    def negloglik(self, theta):
        try:
            value = -self.loglik(theta)
        except InfeasibleParameter as exc:
            logger.debug("infeasible theta %s: %s", np.asarray(theta), exc)
            return self.penalty
        return min(value, self.penalty)

    def __call__(self, theta):
        return self.negloglik(theta)
