from functools import partial

import numpy as np

from nhpp.likelihood import EventData


def _duration_sampler(durations):
    if callable(durations):
        return durations
    value = float(durations)
    if value < 0:
        raise ValueError("durations must be non-negative.")
    return lambda rng: value


def simulate_event_times(rate, start_time, end_time, rate_max, durations=0.0, rng=None):
    """
    Thinning 法模拟带死区的事件序列。
    rate(t, tlast) 为强度函数；rate_max 必须是它在窗口内的上界。
    durations 为常数或 callable(rng)，每个接受的事件之后 duration 内不再产生事件。
    """
    if rate_max <= 0:
        raise ValueError("rate_max must be positive.")
    rng = np.random.default_rng(rng)
    draw = _duration_sampler(durations)

    times, durs = [], []
    t, tlast = float(start_time), -np.inf
    while True:
        t += rng.exponential(1.0 / rate_max)
        if t >= end_time:
            break
        lam = float(np.asarray(rate(np.array([t]), np.array([tlast]))).ravel()[0])
        if not np.isfinite(lam) or lam < 0:
            raise ValueError(f"rate is invalid at t={t}: {lam}")
        if lam > rate_max * (1 + 1e-9):
            raise ValueError(f"rate {lam} exceeds rate_max={rate_max} at t={t}")
        if rng.uniform() * rate_max < lam:
            d = float(draw(rng))
            times.append(t)
            durs.append(d)
            tlast = t
            t += d
    return np.array(times), np.array(durs)


def simulate_events(model, theta, start_time, end_time, rate_max, durations=0.0, rng=None):
    rate = partial(model.rate, np.asarray(theta, dtype=float))
    times, durs = simulate_event_times(rate, start_time, end_time, rate_max, durations, rng)
    return EventData(times, durs, start_time=start_time, end_time=end_time)
