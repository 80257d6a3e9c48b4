import numpy as np


class AnnualCovariate:
    """
    按日历年查表的协变量（例如年度 SOI 指数）。
    t 为小数年，取 floor(t) 作为年份；超出历史记录的年份如何处理由子类决定。
    """

    def __init__(self, years, values):
        years = np.asarray(years, dtype=int)
        values = np.asarray(values, dtype=float)
        if years.ndim != 1 or len(years) == 0 or len(years) != len(values):
            raise ValueError("years and values must be non-empty 1D arrays of equal length.")
        order = np.argsort(years)
        years, values = years[order], values[order]
        if np.any(np.diff(years) != 1):
            raise ValueError("Covariate years must be contiguous.")
        if not np.all(np.isfinite(values)):
            raise ValueError("Covariate values must be finite.")
        self.years = years
        self.values = values

    @property
    def first_year(self):
        return int(self.years[0])

    def _index(self, year):
        raise NotImplementedError

    def __call__(self, t):
        year = np.floor(np.asarray(t, dtype=float)).astype(int)
        return self.values[self._index(year)]

    def __repr__(self):
        return f"{type(self).__name__}({self.first_year}-{int(self.years[-1])})"


class CyclicCovariate(AnnualCovariate):
    """把任意年份以 floor-modulo 方式映射回历史序列，循环重复。"""

    def _index(self, year):
        return np.mod(year - self.first_year, len(self.years))


class HoldLastCovariate(AnnualCovariate):
    """历史范围之外保持首/末年的值。"""

    def _index(self, year):
        return np.clip(year - self.first_year, 0, len(self.years) - 1)


COVARIATE_STRATEGIES = {
    "cyclic": CyclicCovariate,
    "hold": HoldLastCovariate,
}


def make_covariate(years, values, how="cyclic"):
    try:
        cls = COVARIATE_STRATEGIES[how]
    except KeyError:
        raise ValueError(f"Unknown covariate extrapolation '{how}', "
                         f"expected one of {sorted(COVARIATE_STRATEGIES)}") from None
    return cls(years, values)
