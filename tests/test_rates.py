"""
Rate equation templates and composite models.
"""

import itertools

import numpy as np
import pytest

from nhpp.covariates import CyclicCovariate
from nhpp.errors import MissingPrerequisiteData, RateModelError
from nhpp.rates import (CompositeRateModel, RateTemplate, build_rate_model, get_template,
                        register_template, template_names)


SOI = CyclicCovariate(np.arange(1985, 2016), np.linspace(-1.0, 1.0, 31))


def test_parameter_count_invariant_over_whole_grid():
    for a, s, c in itertools.product(template_names("annual"), template_names("seasonal"),
                                     template_names("cluster")):
        model = build_rate_model(a, s, c, covariate=SOI)
        expected = (get_template("annual", a).npar + get_template("seasonal", s).npar
                    + get_template("cluster", c).npar)
        assert model.npar == expected, model.name
        assert len(model.start) == expected
        assert len(model.scale) == expected
        assert sum(sl.stop - sl.start for sl in model.slices()) == expected


def test_offsets_follow_annual_seasonal_cluster_order():
    model = build_rate_model("linear", "single_freq", "exponential")
    assert model.offsets == (0, 2, 4)
    assert model.npar == 6
    np.testing.assert_array_equal(model.start, [30.0, 0.0, 5.0, 0.1, 10.0, 50.0])
    assert model.positive_indices == (5,)
    assert model.name == "linear+single_freq+exponential"
    assert build_rate_model("constant", "single_freq", "exponential").positive_indices == (0, 4)


def test_zero_parameter_terms_contribute_nothing():
    model = build_rate_model("constant", "constant", "constant")
    assert model.npar == 1
    t = np.linspace(0, 3, 7)
    np.testing.assert_array_equal(model.rate([12.5], t, t - 0.1), np.full(7, 12.5))


def test_seasonal_term_uses_its_own_offset():
    model = build_rate_model("constant", "single_freq", "constant")
    theta = [30.0, 5.0, 0.1]
    t = np.array([0.35, 0.85])
    expected = 30.0 + 5.0 * np.sin(2 * np.pi * (t - 0.1))
    np.testing.assert_allclose(model.rate(theta, t, -np.inf), expected, rtol=1e-14)


def test_cluster_term_depends_on_previous_event():
    model = build_rate_model("constant", "constant", "exponential")
    theta = [2.0, 3.0, 4.0]
    lam = model.rate(theta, np.array([1.0, 1.5, 1.5]), np.array([-np.inf, 1.5, 1.0]))
    np.testing.assert_allclose(lam, [2.0, 5.0, 2.0 + 3.0 * np.exp(-2.0)], rtol=1e-14)


def test_cluster_decay_uses_absolute_rate():
    model = build_rate_model("constant", "constant", "exponential")
    a = model.rate([1.0, 1.0, 5.0], 2.0, 1.0)
    b = model.rate([1.0, 1.0, -5.0], 2.0, 1.0)
    assert a == b


def test_soi_template_reads_covariate():
    model = build_rate_model("soi", "constant", "constant", covariate=SOI)
    lam = model.rate([30.0, 2.0], np.array([1985.5, 2015.2]), -np.inf)
    np.testing.assert_allclose(lam, [28.0, 32.0])


def test_soi_without_covariate_is_missing_data():
    with pytest.raises(MissingPrerequisiteData):
        build_rate_model("soi", "constant", "constant")


def test_unknown_template_name():
    with pytest.raises(RateModelError) as info:
        build_rate_model("constant", "weekly", "constant")
    assert "weekly" in str(info.value)
    assert isinstance(info.value, KeyError)


def test_templates_are_registered_once():
    with pytest.raises(ValueError):
        register_template(RateTemplate("constant", "annual", 1, (1.0,), (1.0,), lambda *a: 0.0))


def test_template_validates_start_and_scale_lengths():
    with pytest.raises(ValueError):
        RateTemplate("bad", "annual", 2, (1.0,), (1.0, 1.0), lambda *a: 0.0)


def test_split_returns_per_term_slices():
    model = build_rate_model("constant", "single_freq", "exponential")
    parts = model.split([30.0, 5.0, 0.1, 10.0, 50.0])
    np.testing.assert_array_equal(parts["annual"], [30.0])
    np.testing.assert_array_equal(parts["seasonal"], [5.0, 0.1])
    np.testing.assert_array_equal(parts["cluster"], [10.0, 50.0])


def test_annual_only_model_from_single_template():
    model = CompositeRateModel((get_template("annual", "constant"),))
    assert model.npar == 1
    assert model.offsets == (0,)
