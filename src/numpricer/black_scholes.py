"""Closed-form Black-Scholes-Merton prices.

These are the references the lattice, finite-difference and Monte Carlo
results are validated against.  Everything is written in terms of the
forward ``F = S0 e^{(r-q)T}``, the discount factor ``D = e^{-rT}`` and the
terminal standard deviation ``s = sigma sqrt(T)`` (Black's formula).
"""

from __future__ import annotations

from dataclasses import dataclass
from math import exp, log, sqrt
from statistics import NormalDist

from .core import OptionSpec, CALL, PUT
from .errors import ConfigurationError

__all__ = ["BlackTerms", "black_terms", "price", "digital_price", "greeks"]

_nd = NormalDist()


@dataclass(frozen=True)
class BlackTerms:
    forward: float
    discount: float
    stddev: float
    d1: float
    d2: float


def black_terms(opt: OptionSpec) -> BlackTerms:
    if opt.T <= 0 or opt.sigma <= 0:
        raise ConfigurationError("T and sigma must be positive.")
    forward = opt.S0 * exp((opt.r - opt.q) * opt.T)
    stddev = opt.sigma * sqrt(opt.T)
    d1 = log(forward / opt.K) / stddev + 0.5 * stddev
    return BlackTerms(forward, exp(-opt.r * opt.T), stddev, d1, d1 - stddev)


def _sign(kind: str) -> float:
    if kind == CALL:
        return 1.0
    if kind == PUT:
        return -1.0
    raise ConfigurationError(f"kind must be 'call' or 'put', got {kind!r}")


def price(opt: OptionSpec, kind: str = CALL) -> float:
    """European vanilla price ``D * w * (F N(w d1) - K N(w d2))``."""
    w = _sign(kind)
    b = black_terms(opt)
    return b.discount * w * (b.forward * _nd.cdf(w * b.d1) - opt.K * _nd.cdf(w * b.d2))


def digital_price(opt: OptionSpec, kind: str = CALL, cash: float = 1.0) -> float:
    """Cash-or-nothing price ``cash * D * N(w d2)``."""
    w = _sign(kind)
    b = black_terms(opt)
    return cash * b.discount * _nd.cdf(w * b.d2)


def greeks(opt: OptionSpec, kind: str = CALL) -> dict[str, float]:
    """Spot delta / gamma and calendar theta (per year)."""
    w = _sign(kind)
    b = black_terms(opt)
    disc_q = exp(-opt.q * opt.T)
    pdf_d1 = _nd.pdf(b.d1)

    delta = w * disc_q * _nd.cdf(w * b.d1)
    gamma = disc_q * pdf_d1 / (opt.S0 * b.stddev)
    theta = (-0.5 * opt.S0 * disc_q * pdf_d1 * opt.sigma / sqrt(opt.T)
             - w * opt.r * opt.K * b.discount * _nd.cdf(w * b.d2)
             + w * opt.q * opt.S0 * disc_q * _nd.cdf(w * b.d1))
    return {"delta": delta, "gamma": gamma, "theta": theta}
