"""
NHPP log-likelihood with dead time.
"""

import warnings

import numpy as np
import pytest

from nhpp.errors import InfeasibleParameter, MissingPrerequisiteData
from nhpp.likelihood import DEFAULT_PENALTY, EventData, NHPPLikelihood, gauss_legendre_grid
from nhpp.rates import build_rate_model


CONSTANT = build_rate_model("constant", "constant", "constant")
SEASONAL = build_rate_model("constant", "single_freq", "constant")
CLUSTER = build_rate_model("constant", "constant", "exponential")
FULL = build_rate_model("constant", "single_freq", "exponential")


def small_events():
    return EventData([1.0, 2.0, 4.0], [0.5, 0.5, 0.5], start_time=0.0, end_time=5.0)


# =====================================================================
#  EventData
# =====================================================================

def test_gaps_exclude_dead_time():
    a, b, tlast = small_events().gaps()
    np.testing.assert_allclose(a, [0.0, 1.5, 2.5, 4.5])
    np.testing.assert_allclose(b, [1.0, 2.0, 4.0, 5.0])
    np.testing.assert_array_equal(tlast, [-np.inf, 1.0, 2.0, 4.0])
    assert small_events().live_time == pytest.approx(3.5)


def test_overlapping_dead_time_collapses_to_zero():
    ev = EventData([1.0, 1.2], [0.5, 0.0], start_time=1.0, end_time=1.2)
    a, b, _ = ev.gaps()
    np.testing.assert_allclose(b - a, [0.0, 0.0, 0.0])
    assert ev.live_time == 0.0


def test_long_dead_time_covers_later_events():
    # 第一个事件的死区 [1, 6) 覆盖了 t=2 的事件及其死区
    ev = EventData([1.0, 2.0, 8.0], [5.0, 0.1, 0.0], start_time=0.0, end_time=10.0)
    a, b, _ = ev.gaps()
    np.testing.assert_allclose(a, [0.0, 6.0, 6.0, 8.0])
    np.testing.assert_allclose(b - a, [1.0, 0.0, 2.0, 2.0])
    assert ev.live_time == pytest.approx(5.0)
    for integration in ("gauss", "quad"):
        lik = NHPPLikelihood(CONSTANT, ev, integration=integration)
        assert lik.integrated_rate([1.0]) == pytest.approx(5.0)


def test_default_window_spans_events():
    ev = EventData([3.0, 4.0, 7.5])
    assert ev.start_time == 3.0
    assert ev.end_time == 7.5
    np.testing.assert_array_equal(ev.durations, [0.0, 0.0, 0.0])
    np.testing.assert_array_equal(ev.previous_times, [-np.inf, 3.0, 4.0])


def test_event_validation():
    with pytest.raises(MissingPrerequisiteData):
        EventData([])
    with pytest.raises(ValueError):
        EventData([1.0, 1.0, 2.0])
    with pytest.raises(ValueError):
        EventData([1.0, 2.0], [0.1, -0.1])
    with pytest.raises(ValueError):
        EventData([1.0, 2.0], start_time=1.5)
    with pytest.raises(ValueError):
        EventData([1.0, 2.0], end_time=1.5)


def test_events_are_read_only():
    ev = small_events()
    with pytest.raises(ValueError):
        ev.times[0] = 10.0


# =====================================================================
#  Integration
# =====================================================================

def test_gauss_grid_integrates_polynomials_exactly():
    points, weights, tl, gap = gauss_legendre_grid([0.0, 2.0], [1.0, 5.0], [-np.inf, 1.0], order=4, max_step=0.7)
    np.testing.assert_allclose(np.bincount(gap, weights=weights * points ** 3), [0.25, (625 - 16) / 4])
    assert set(np.unique(tl)) == {-np.inf, 1.0}


def test_constant_rate_nll_closed_form():
    ev = small_events()
    lik = NHPPLikelihood(CONSTANT, ev)
    theta = 4.0
    expected = -3 * np.log(theta) + theta * 3.5
    assert lik.negloglik([theta]) == pytest.approx(expected, rel=1e-12)


def test_cluster_integral_restarts_after_dead_time():
    """
    One event at t=1 with 0.5 years of dead time; the cluster term inside
    the integral must use tlast=1 and start at t=1.5.
    """
    ev = EventData([1.0], [0.5], start_time=1.0, end_time=2.0)
    theta = [2.0, 3.0, 4.0]
    expected = 2.0 * 0.5 + 3.0 / 4.0 * (np.exp(-0.5 * 4.0) - np.exp(-1.0 * 4.0))
    gauss = NHPPLikelihood(CLUSTER, ev).integrated_rate(theta)
    adaptive = NHPPLikelihood(CLUSTER, ev, integration="quad").integrated_rate(theta)
    assert gauss == pytest.approx(expected, rel=1e-10)
    assert adaptive == pytest.approx(expected, rel=1e-8)


def test_gauss_and_quad_agree_for_seasonal_model():
    rng = np.random.default_rng(7)
    times = np.sort(rng.uniform(0, 3, 60))
    ev = EventData(times, np.full(60, 0.01), start_time=0.0, end_time=3.0)
    theta = [30.0, 5.0, 0.1, 10.0, 50.0]
    g = NHPPLikelihood(FULL, ev).negloglik(theta)
    q = NHPPLikelihood(FULL, ev, integration="quad").negloglik(theta)
    assert g == pytest.approx(q, rel=1e-7)


def test_rate_at_events_uses_previous_event():
    ev = EventData([1.0, 1.2], start_time=0.0, end_time=2.0)
    lam = NHPPLikelihood(CLUSTER, ev).rate_at_events([2.0, 3.0, 4.0])
    np.testing.assert_allclose(lam, [2.0, 2.0 + 3.0 * np.exp(-0.8)])


def test_integral_monotone_in_window_length():
    base = EventData([0.3, 0.9, 1.4, 2.2], [0.05] * 4, start_time=0.0, end_time=2.2)
    theta = [30.0, 5.0, 0.1, 10.0, 50.0]
    values = [NHPPLikelihood(FULL, base.with_window(end_time=end)).integrated_rate(theta)
              for end in np.linspace(2.2, 6.0, 12)]
    assert np.all(np.diff(values) >= 0)


# =====================================================================
#  Infeasible parameters
# =====================================================================

def test_negative_rate_gives_penalty_not_nan():
    lik = NHPPLikelihood(CONSTANT, small_events())
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        assert lik.negloglik([-1.0]) == DEFAULT_PENALTY
        assert lik.negloglik([0.0]) == DEFAULT_PENALTY


def test_rate_negative_between_events_gives_penalty():
    # 振幅大于常数项时 λ 在年内某些时刻为负
    ev = EventData([0.3, 0.35], start_time=0.0, end_time=1.0)
    lik = NHPPLikelihood(SEASONAL, ev)
    assert lik.negloglik([1.0, 5.0, 0.0]) == DEFAULT_PENALTY
    assert np.isfinite(lik.negloglik([10.0, 5.0, 0.0]))
    assert lik.negloglik([10.0, 5.0, 0.0]) < DEFAULT_PENALTY


def test_minimum_rate_floor():
    lik = NHPPLikelihood(CONSTANT, small_events(), minimum_rate=1.0)
    assert lik.negloglik([0.5]) == DEFAULT_PENALTY
    assert lik.negloglik([1.5]) < DEFAULT_PENALTY


def test_custom_penalty_value():
    lik = NHPPLikelihood(CONSTANT, small_events(), penalty=1e6)
    assert lik([-3.0]) == 1e6


def test_loglik_raises_infeasible():
    lik = NHPPLikelihood(CONSTANT, small_events())
    with pytest.raises(InfeasibleParameter):
        lik.loglik([-1.0])


def test_huge_cluster_term_is_capped_at_penalty():
    ev = EventData([1.0, 1.1], start_time=0.0, end_time=2.0)
    lik = NHPPLikelihood(CLUSTER, ev)
    assert lik.negloglik([1.0, 1e308, 1e-3]) == DEFAULT_PENALTY


def test_wrong_theta_length():
    lik = NHPPLikelihood(CONSTANT, small_events())
    with pytest.raises(ValueError):
        lik.negloglik([1.0, 2.0])


def test_unknown_integration_method():
    with pytest.raises(ValueError):
        NHPPLikelihood(CONSTANT, small_events(), integration="trapezoid")
