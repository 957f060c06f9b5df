from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Union

import numpy as np

from .errors import ConfigurationError
from .processes import BlackScholesProcess

CALL = "call"
PUT  = "put"


# ---------------------------------------------------------------------------
# Convenience container: flat Black-Scholes market + vanilla contract
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class OptionSpec:
    """Single-option container bundling contract + flat market data.

    Handy for tests, scripts and the CLI; the numerical methods themselves
    only see a process, a payoff and a time grid.
    """
    S0: float
    K: float
    T: float          # years
    r: float          # continuous risk-free
    sigma: float
    q: float = 0.0    # continuous dividend yield

    def __post_init__(self):
        if self.S0 <= 0:
            raise ConfigurationError(f"S0 must be positive, got {self.S0}")
        if self.K <= 0:
            raise ConfigurationError(f"K must be positive, got {self.K}")
        if self.T <= 0:
            raise ConfigurationError(f"T must be positive, got {self.T}")
        if self.sigma <= 0:
            raise ConfigurationError(f"sigma must be positive, got {self.sigma}")

    def process(self) -> BlackScholesProcess:
        return BlackScholesProcess(self.S0, self.r, self.sigma, self.q)

    def payoff(self, kind: str = CALL) -> "PlainVanillaPayoff":
        return PlainVanillaPayoff(self.K, kind)


# ---------------------------------------------------------------------------
# Payoffs
# ---------------------------------------------------------------------------
class Payoff:
    """Maps an underlying value to an amount.

    ``evaluate`` must accept a float or a NumPy array of spots; the lattice
    and finite-difference code evaluate whole layers at once.
    """

    def evaluate(self, spot):
        raise NotImplementedError

    def __call__(self, spot):
        return self.evaluate(spot)


def _check_kind(kind: str) -> None:
    if kind not in (CALL, PUT):
        raise ConfigurationError(f"kind must be 'call' or 'put', got {kind!r}")


def _as_result(values: np.ndarray):
    return float(values) if values.ndim == 0 else values


@dataclass(frozen=True)
class PlainVanillaPayoff(Payoff):
    strike: float
    kind: str = CALL

    def __post_init__(self):
        _check_kind(self.kind)
        if self.strike < 0:
            raise ConfigurationError(f"strike must be non-negative, got {self.strike}")

    def evaluate(self, spot):
        s = np.asarray(spot, dtype=float)
        if self.kind == CALL:
            return _as_result(np.maximum(s - self.strike, 0.0))
        return _as_result(np.maximum(self.strike - s, 0.0))


@dataclass(frozen=True)
class CashOrNothingPayoff(Payoff):
    """Digital payoff: ``cash`` if the option finishes in the money."""
    strike: float
    cash: float = 1.0
    kind: str = CALL

    def __post_init__(self):
        _check_kind(self.kind)

    def evaluate(self, spot):
        s = np.asarray(spot, dtype=float)
        if self.kind == CALL:
            itm = s > self.strike
        else:
            itm = s < self.strike
        return _as_result(np.where(itm, self.cash, 0.0))


PayoffLike = Union[Payoff, Callable[[np.ndarray], np.ndarray]]


def payoff_values(payoff: PayoffLike, spots: np.ndarray) -> np.ndarray:
    """Evaluate *payoff* on an array of spots, returning a float array."""
    fn = payoff.evaluate if hasattr(payoff, "evaluate") else payoff
    spots = np.asarray(spots, dtype=float)
    values = np.asarray(fn(spots), dtype=float)
    return np.broadcast_to(values, spots.shape).copy()
