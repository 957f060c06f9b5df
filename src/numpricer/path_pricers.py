# path_pricers.py
# Discounted payoffs of single sample paths.
#
# A path pricer is a pure function Path -> float.  ``price_values`` is the
# vectorised form used by the Monte Carlo model: it takes the ``(n, size)``
# array of path values produced by a generator and returns one discounted
# payoff per row.

from __future__ import annotations
from enum import Enum

import numpy as np

from .core import PayoffLike, payoff_values
from .errors import ConfigurationError
from .paths import Path

__all__ = [
    "PathPricer",
    "EuropeanPathPricer",
    "ArithmeticAsianPathPricer",
    "BarrierType",
    "BarrierPathPricer",
]


class PathPricer:
    """Base class; subclasses implement :meth:`price_values`."""

    def __init__(self, payoff: PayoffLike, discount: float):
        if not discount > 0:
            raise ConfigurationError(f"discount factor must be positive, got {discount}")
        self.payoff = payoff
        self.discount = float(discount)

    def price_values(self, times: np.ndarray, values: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def value(self, path: Path) -> float:
        """Discounted payoff of a single path."""
        values = np.asarray(path.values, dtype=float)[np.newaxis, :]
        return float(self.price_values(path.times, values)[0])

    __call__ = value


class EuropeanPathPricer(PathPricer):
    """``discount * payoff(S_T)``."""

    def price_values(self, times, values):
        return self.discount * payoff_values(self.payoff, values[:, -1])


class ArithmeticAsianPathPricer(PathPricer):
    """Payoff on the arithmetic average of the monitored fixings.

    The t=0 value is excluded from the average unless ``include_start``.
    """

    def __init__(self, payoff: PayoffLike, discount: float, *, include_start: bool = False):
        super().__init__(payoff, discount)
        self.include_start = include_start

    def price_values(self, times, values):
        fixings = values if self.include_start else values[:, 1:]
        return self.discount * payoff_values(self.payoff, fixings.mean(axis=1))


# ---------------------------------------------------------------------------
# Barrier options (discrete monitoring on every path point)
# ---------------------------------------------------------------------------
class BarrierType(str, Enum):
    UP_AND_OUT = "up-and-out"
    UP_AND_IN = "up-and-in"
    DOWN_AND_OUT = "down-and-out"
    DOWN_AND_IN = "down-and-in"


class BarrierPathPricer(PathPricer):
    """Knock-in / knock-out payoff; ``rebate`` is paid at expiry if the
    option is knocked out (or never knocked in)."""

    def __init__(self, payoff: PayoffLike, discount: float, barrier: float,
                 barrier_type: BarrierType | str, rebate: float = 0.0):
        super().__init__(payoff, discount)
        try:
            self.barrier_type = BarrierType(barrier_type)
        except ValueError:
            valid = [b.value for b in BarrierType]
            raise ConfigurationError(
                f"barrier_type must be one of {valid}, got {barrier_type!r}"
            ) from None
        self.barrier = float(barrier)
        self.rebate = float(rebate)

    def price_values(self, times, values):
        if self.barrier_type.value.startswith("up"):
            crossed = np.any(values >= self.barrier, axis=1)
        else:
            crossed = np.any(values <= self.barrier, axis=1)
        vanilla = payoff_values(self.payoff, values[:, -1])
        if self.barrier_type.value.endswith("out"):
            payoff = np.where(crossed, self.rebate, vanilla)
        else:
            payoff = np.where(crossed, vanilla, self.rebate)
        return self.discount * payoff
