"""Recombining binomial trees.

Node ``(i, j)`` is the state after ``j`` up-moves and ``i - j`` down-moves,
so layer ``i`` holds ``i + 1`` nodes stored as one NumPy array.  Up/down
factors and probabilities are constant across the tree, which is why a
uniform time grid is required.
"""

from __future__ import annotations

import logging
from enum import Enum
from math import exp, log, sqrt

import numpy as np

from .errors import ArbitrageViolation, ConfigurationError, PROBABILITY_TOLERANCE
from .processes import StochasticProcess1D, discount_rate
from .time_grid import TimeGrid

logger = logging.getLogger(__name__)

__all__ = ["BinomialVariant", "BinomialTree", "check_probabilities"]


class BinomialVariant(str, Enum):
    CRR = "crr"
    JARROW_RUDD = "jarrow_rudd"
    ADDITIVE_EQP = "additive_eqp"
    TRIGEORGIS = "trigeorgis"
    TIAN = "tian"
    LEISEN_REIMER = "leisen_reimer"
    JOSHI4 = "joshi4"

    @property
    def needs_strike(self) -> bool:
        return self in (BinomialVariant.LEISEN_REIMER, BinomialVariant.JOSHI4)


def check_probabilities(p, label: str):
    """Return ``p`` clipped to [0, 1].

    Values outside the interval by at most ``PROBABILITY_TOLERANCE`` are
    clamped (with a warning log); anything further out, or not finite,
    raises :class:`ArbitrageViolation`.
    """
    arr = np.asarray(p, dtype=float)
    if not np.all(np.isfinite(arr)):
        raise ArbitrageViolation(f"{label}: non-finite transition probability")
    lo, hi = float(arr.min()), float(arr.max())
    if lo < -PROBABILITY_TOLERANCE or hi > 1.0 + PROBABILITY_TOLERANCE:
        bad = lo if lo < -PROBABILITY_TOLERANCE else hi
        raise ArbitrageViolation(
            f"{label}: transition probability {bad!r} outside [0, 1] (try more steps)",
            probability=bad,
        )
    if lo < 0.0 or hi > 1.0:
        logger.warning("%s: clamping probability drift (min=%r, max=%r)", label, lo, hi)
        arr = np.clip(arr, 0.0, 1.0)
    return float(arr) if arr.ndim == 0 else arr


# ---------------------------------------------------------------------------
# Strike-dependent inversions (Leisen-Reimer, Joshi)
# ---------------------------------------------------------------------------
def _peizer_pratt_2(z: float, n: int) -> float:
    r = z / (n + 1.0 / 3.0 + 0.1 / (n + 1.0))
    return 0.5 + np.sign(z) * 0.5 * sqrt(1.0 - exp(-r * r * (n + 1.0 / 6.0)))


def _joshi4_up_probability(k: float, dj: float) -> float:
    a = dj / sqrt(8.0)
    a2 = a * a
    a3 = a * a2
    a5 = a3 * a2
    a7 = a5 * a2
    beta = -0.375 * a - a3
    gamma = (5.0 / 6.0) * a5 + (13.0 / 12.0) * a3 + (25.0 / 128.0) * a
    delta = -0.1025 * a - 0.9285 * a3 - 1.43 * a5 - 0.5 * a7
    rk = sqrt(k)
    return 0.5 + a / rk + beta / (k * rk) + gamma / (k * k * rk) + delta / (k * k * k * rk)


class BinomialTree:
    """Two-branch recombining lattice for a 1-D process.

    Parameters
    ----------
    process : StochasticProcess1D
        Supplies ``x0`` and the one-step moments at ``x0``.
    time_grid : TimeGrid
        Must be uniform.  Leisen-Reimer and Joshi4 bump an even step count
        to the next odd one.
    variant : BinomialVariant or str
        Up/down/probability parametrisation, CRR by default.
    strike : float, optional
        Required by the strike-centred variants.
    rate : float, optional
        Discount rate; defaults to ``process.risk_free_rate``.
    """

    branches = 2

    def __init__(self, process: StochasticProcess1D, time_grid: TimeGrid,
                 variant: BinomialVariant | str = BinomialVariant.CRR, *,
                 strike: float | None = None, rate: float | None = None):
        try:
            variant = BinomialVariant(variant)
        except ValueError:
            raise ConfigurationError(f"unknown binomial variant {variant!r}") from None
        if not time_grid.is_uniform():
            raise ConfigurationError("binomial trees need a uniform time grid")
        if variant.needs_strike:
            if strike is None or strike <= 0:
                raise ConfigurationError(f"{variant.value} tree needs a positive strike")
            if time_grid.steps % 2 == 0:
                time_grid = TimeGrid(time_grid.end, time_grid.steps + 1)

        self.process = process
        self.variant = variant
        self.time_grid = time_grid
        self.x0 = float(process.x0)
        self.dt = float(time_grid.dt[0])
        r = discount_rate(process, rate)
        self._discounts = np.exp(-r * time_grid.dt)

        up, down, pu = self._parameters(strike)
        if not (up > down > 0.0):
            raise ArbitrageViolation(
                f"{variant.value}: degenerate up/down factors u={up!r}, d={down!r}"
            )
        pu = check_probabilities(pu, variant.value)
        self.up, self.down = float(up), float(down)
        self.pu, self.pd = pu, 1.0 - pu
        self._log_up, self._log_down = log(self.up), log(self.down)

        logger.debug("binomial %s tree: steps=%d dt=%.6g u=%.8g d=%.8g pu=%.8g",
                     variant.value, self.steps, self.dt, self.up, self.down, self.pu)

    # -- parametrisation -----------------------------------------------------

    def _parameters(self, strike):
        x0, dt, steps = self.x0, self.dt, self.steps
        growth = float(self.process.expectation_1d(0.0, x0, dt)) / x0
        v2 = float(self.process.variance_1d(0.0, x0, dt)) / (x0 * x0)
        if not v2 > 0.0:
            raise ConfigurationError("process has zero variance over a step")
        # log drift per step
        dps = log(growth) - 0.5 * v2
        v = self.variant

        if v is BinomialVariant.CRR:
            up = exp(sqrt(v2))
            down = 1.0 / up
            return up, down, (growth - down) / (up - down)
        if v is BinomialVariant.JARROW_RUDD:
            return exp(dps + sqrt(v2)), exp(dps - sqrt(v2)), 0.5
        if v is BinomialVariant.ADDITIVE_EQP:
            dx = -0.5 * dps + 0.5 * sqrt(4.0 * v2 - 3.0 * dps * dps)
            return exp(dps + dx), exp(dps - dx), 0.5
        if v is BinomialVariant.TRIGEORGIS:
            dx = sqrt(v2 + dps * dps)
            return exp(dx), exp(-dx), 0.5 + 0.5 * dps / dx
        if v is BinomialVariant.TIAN:
            q = exp(v2)
            root = sqrt(q * q + 2.0 * q - 3.0)
            up = 0.5 * growth * q * (q + 1.0 + root)
            down = 0.5 * growth * q * (q + 1.0 - root)
            return up, down, (growth - down) / (up - down)

        # Leisen-Reimer / Joshi4 centre the tree on the strike
        total_var = v2 * steps
        d2 = (log(x0 / strike) + dps * steps) / sqrt(total_var)
        if v is BinomialVariant.LEISEN_REIMER:
            pu = _peizer_pratt_2(d2, steps)
            pdash = _peizer_pratt_2(d2 + sqrt(total_var), steps)
        else:
            k = (steps - 1) / 2.0
            pu = _joshi4_up_probability(k, d2)
            pdash = _joshi4_up_probability(k, d2 + sqrt(total_var))
        up = growth * pdash / pu
        down = (growth - pu * up) / (1.0 - pu)
        return up, down, pu

    # -- lattice interface ----------------------------------------------------

    @property
    def steps(self) -> int:
        return self.time_grid.steps

    def size(self, i: int) -> int:
        return i + 1

    def underlying(self, i: int) -> np.ndarray:
        """Underlying values of every node in layer ``i``."""
        j = np.arange(i + 1)
        return self.x0 * np.exp(j * self._log_up + (i - j) * self._log_down)

    def descendant(self, i: int, index: int, branch: int) -> int:
        """Index in layer ``i + 1`` reached from ``(i, index)``; branch 0 is down."""
        return index + branch

    def probability(self, i: int, index: int, branch: int) -> float:
        return self.pu if branch == 1 else self.pd

    def discount(self, i: int) -> float:
        """Discount factor over step ``i -> i + 1``."""
        return float(self._discounts[i])

    def expected_values(self, i: int, values: np.ndarray) -> np.ndarray:
        """Undiscounted expectation at layer ``i`` of layer ``i + 1`` values."""
        return self.pu * values[1:] + self.pd * values[:-1]

    def __repr__(self):
        return f"BinomialTree(variant={self.variant.value!r}, steps={self.steps})"
