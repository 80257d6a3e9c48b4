import numpy as np
from scipy.integrate import cumulative_trapezoid

from nhpp.likelihood import EventData
from nhpp.simulate import simulate_event_times


def quantile_events(model, theta, start, end, seed=1, step=1e-4):
    """
    Stratified synthetic events: the k-th event sits at a uniform random point
    of the k-th unit of the cumulative background intensity.
    """
    rng = np.random.default_rng(seed)
    grid = np.linspace(start, end, int(round((end - start) / step)) + 1)
    cum = cumulative_trapezoid(model.rate(theta, grid, -np.inf), grid, initial=0.0)
    k = np.arange(int(np.floor(cum[-1])))
    times = np.interp(k + rng.uniform(size=len(k)), cum, grid)
    return EventData(times, start_time=start, end_time=end)


def poisson_events(rate, start, end, seed=0, duration=0.0):
    """
    Homogeneous Poisson events. With a dead time each event blocks the next
    `duration`, so those catalogues are drawn with the thinning simulator.
    """
    if duration > 0:
        times, durs = simulate_event_times(lambda t, tlast: np.full(np.shape(t), rate),
                                           start, end, rate, duration, rng=seed)
        return EventData(times, durs, start_time=start, end_time=end)
    rng = np.random.default_rng(seed)
    n = rng.poisson(rate * (end - start))
    times = np.sort(rng.uniform(start, end, n))
    return EventData(times, start_time=start, end_time=end)
