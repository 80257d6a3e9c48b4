class NHPPError(Exception):
    """Base class for storm-timing model errors."""


class InfeasibleParameter(NHPPError):
    """λ(θ, t, tlast) is negative, below the rate floor, or undefined."""


class BadStartParameters(NHPPError, ValueError):
    pass


class MissingPrerequisiteData(NHPPError, FileNotFoundError):
    pass


class RateModelError(NHPPError, KeyError):
    def __str__(self):
        # KeyError 默认会给消息加引号
        return str(self.args[0]) if self.args else ""
