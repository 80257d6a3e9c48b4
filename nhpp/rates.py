"""
Rate equation templates and the composite intensity λ(θ, t, tlast).

Each template contributes one additive term. A composite model is exactly one
annual + one seasonal + one cluster template; the parameter offsets of every
term are fixed when the model is built.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

import numpy as np

from nhpp.errors import MissingPrerequisiteData, RateModelError

KINDS = ("annual", "seasonal", "cluster")


@dataclass(frozen=True)
class RateTemplate:
    name: str
    kind: str
    npar: int
    start: Tuple[float, ...]
    scale: Tuple[float, ...]
    func: Callable
    positive: Tuple[int, ...] = ()
    needs_covariate: bool = False
    description: str = ""

    def __post_init__(self):
        if self.kind not in KINDS:
            raise ValueError(f"Unknown template kind '{self.kind}'.")
        if len(self.start) != self.npar or len(self.scale) != self.npar:
            raise ValueError(f"Template '{self.name}': start/scale must have {self.npar} entries.")
        if any(s <= 0 for s in self.scale):
            raise ValueError(f"Template '{self.name}': scale entries must be positive.")
        if any(i < 0 or i >= self.npar for i in self.positive):
            raise ValueError(f"Template '{self.name}': positive index out of range.")

    def __call__(self, par, t, tlast, covariate=None):
        return self.func(par, t, tlast, covariate)


# ---------- 各分量的表达式 ----------

def _zero(par, t, tlast, covariate):
    return np.zeros(np.shape(t))


def _annual_constant(par, t, tlast, covariate):
    return np.full(np.shape(t), par[0])


def _annual_linear(par, t, tlast, covariate):
    return par[0] + par[1] * t


def _annual_soi(par, t, tlast, covariate):
    return par[0] + par[1] * covariate(t)


def _seasonal_single(par, t, tlast, covariate):
    return par[0] * np.sin(2 * np.pi * (t - par[1]))


def _seasonal_double(par, t, tlast, covariate):
    return (par[0] * np.sin(2 * np.pi * (t - par[1]))
            + par[2] * np.sin(4 * np.pi * (t - par[3])))


def _cluster_exponential(par, t, tlast, covariate):
    # 第一个事件之前 tlast = -inf，没有聚集项
    has_prev = np.isfinite(tlast)
    dt = t - np.where(has_prev, tlast, t)
    return np.where(has_prev, par[0] * np.exp(-abs(par[1]) * dt), 0.0)


_REGISTRY = {kind: {} for kind in KINDS}


def register_template(template):
    table = _REGISTRY[template.kind]
    if template.name in table:
        raise ValueError(f"{template.kind} template '{template.name}' is already registered.")
    table[template.name] = template
    return template


def get_template(kind, name):
    if kind not in _REGISTRY:
        raise RateModelError(f"Unknown template kind '{kind}', expected one of {KINDS}.")
    try:
        return _REGISTRY[kind][name]
    except KeyError:
        raise RateModelError(f"Unknown {kind} rate model '{name}', "
                             f"available: {template_names(kind)}") from None


def template_names(kind):
    return list(_REGISTRY[kind])


register_template(RateTemplate(
    "constant", "annual", 1, (30.0,), (10.0,), _annual_constant, positive=(0,),
    description="constant annual rate"))
register_template(RateTemplate(
    "linear", "annual", 2, (30.0, 0.0), (10.0, 0.1), _annual_linear,
    description="annual rate with a linear trend in time"))
register_template(RateTemplate(
    "soi", "annual", 2, (30.0, 0.0), (10.0, 1.0), _annual_soi, needs_covariate=True,
    description="annual rate linear in an annual climate index"))
register_template(RateTemplate(
    "constant", "seasonal", 0, (), (), _zero, description="no seasonal term"))
register_template(RateTemplate(
    "single_freq", "seasonal", 2, (5.0, 0.1), (1.0, 0.1), _seasonal_single,
    description="one sinusoid per year"))
register_template(RateTemplate(
    "double_freq", "seasonal", 4, (5.0, 0.1, 1.0, 0.1), (1.0, 0.1, 1.0, 0.1), _seasonal_double,
    description="sinusoids with one and two cycles per year"))
register_template(RateTemplate(
    "constant", "cluster", 0, (), (), _zero, description="no clustering"))
register_template(RateTemplate(
    "exponential", "cluster", 2, (10.0, 50.0), (1.0, 10.0), _cluster_exponential, positive=(1,),
    description="exponentially decaying boost after each event"))


@dataclass(frozen=True)
class CompositeRateModel:
    templates: Tuple[RateTemplate, ...]
    covariate: Optional[Callable] = None
    offsets: Tuple[int, ...] = field(init=False)

    def __post_init__(self):
        templates = tuple(self.templates)
        if not templates:
            raise ValueError("A rate model needs at least one template.")
        offsets, k = [], 0
        for tpl in templates:
            if tpl.needs_covariate and self.covariate is None:
                raise MissingPrerequisiteData(
                    f"{tpl.kind} rate model '{tpl.name}' needs a covariate lookup.")
            offsets.append(k)
            k += tpl.npar
        object.__setattr__(self, "templates", templates)
        object.__setattr__(self, "offsets", tuple(offsets))

    @property
    def npar(self):
        return sum(tpl.npar for tpl in self.templates)

    @property
    def name(self):
        return "+".join(tpl.name for tpl in self.templates)

    @property
    def start(self):
        return np.array([v for tpl in self.templates for v in tpl.start], dtype=float)

    @property
    def scale(self):
        return np.array([v for tpl in self.templates for v in tpl.scale], dtype=float)

    @property
    def positive_indices(self):
        return tuple(off + i for tpl, off in zip(self.templates, self.offsets) for i in tpl.positive)

    def slices(self):
        return [slice(off, off + tpl.npar) for tpl, off in zip(self.templates, self.offsets)]

    def split(self, theta):
        theta = np.asarray(theta, dtype=float)
        out = {}
        for tpl, s in zip(self.templates, self.slices()):
            key = tpl.kind if tpl.kind not in out else f"{tpl.kind}_{len(out)}"
            out[key] = theta[s]
        return out

    def rate(self, theta, t, tlast):
        theta = np.asarray(theta, dtype=float)
        t = np.asarray(t, dtype=float)
        tlast = np.broadcast_to(np.asarray(tlast, dtype=float), t.shape)
        total = np.zeros(t.shape)
        for tpl, s in zip(self.templates, self.slices()):
            total = total + tpl(theta[s], t, tlast, self.covariate)
        return total

    def __call__(self, theta, t, tlast):
        return self.rate(theta, t, tlast)


def build_rate_model(annual, seasonal="constant", cluster="constant", covariate=None):
    templates = (
        get_template("annual", annual),
        get_template("seasonal", seasonal),
        get_template("cluster", cluster),
    )
    return CompositeRateModel(templates, covariate=covariate)
