"""Recombining trinomial tree with moment-matched branching.

Layer ``i`` holds the states ``y_j = j * dx[i]`` for ``j_min[i] <= j <= j_max[i]``,
where ``y`` is the log-deviation from ``x0`` (GBM-like processes) or the
additive deviation (``log_space=False``, e.g. Ornstein-Uhlenbeck).  Each node
branches to three consecutive nodes of the next layer centred on the one
closest to its conditional mean.

Only the layer bounds are kept after construction; branchings are
recomputed per layer during induction so memory stays linear in the number
of steps.
"""

from __future__ import annotations

import logging
from math import sqrt

import numpy as np

from .binomial import check_probabilities
from .errors import ArbitrageViolation, ConfigurationError, PROBABILITY_TOLERANCE
from .processes import StochasticProcess1D, discount_rate
from .time_grid import TimeGrid

logger = logging.getLogger(__name__)

__all__ = ["TrinomialTree"]

_SQRT3 = sqrt(3.0)


class TrinomialTree:
    """Three-branch lattice on an arbitrary (possibly non-uniform) time grid.

    Parameters
    ----------
    process : StochasticProcess1D
    time_grid : TimeGrid
    log_space : bool
        Build the lattice on ``ln(x / x0)`` (default) or on ``x - x0``.
    rate : float, optional
        Discount rate; defaults to ``process.risk_free_rate``.
    """

    branches = 3

    def __init__(self, process: StochasticProcess1D, time_grid: TimeGrid,
                 *, log_space: bool = True, rate: float | None = None):
        x0 = float(process.x0)
        if log_space and x0 <= 0:
            raise ConfigurationError("log-space trinomial tree needs a positive x0")
        self.process = process
        self.time_grid = time_grid
        self.log_space = log_space
        self.x0 = x0
        r = discount_rate(process, rate)
        self._discounts = np.exp(-r * time_grid.dt)

        n = time_grid.steps
        dx = np.zeros(n + 1)
        for i in range(n):
            t, dt = float(time_grid[i]), float(time_grid.dt[i])
            _, v2 = self._moments(t, np.zeros(1), dt)
            if not v2[0] > 0.0:
                raise ConfigurationError(f"process has zero variance over step {i}")
            dx[i + 1] = sqrt(3.0 * v2[0])
        self.dx = dx

        j_min = np.zeros(n + 1, dtype=np.int64)
        j_max = np.zeros(n + 1, dtype=np.int64)
        for i in range(n):
            k, _ = self._branching(i, j_min[i], j_max[i])
            j_min[i + 1] = k.min() - 1
            j_max[i + 1] = k.max() + 1
        self._j_min, self._j_max = j_min, j_max

        logger.debug("trinomial tree: steps=%d, terminal nodes=%d, log_space=%s",
                     n, self.size(n), log_space)

    # -- branching --------------------------------------------------------------

    def _moments(self, t: float, y: np.ndarray, dt: float):
        """Conditional mean and variance of the next state, in tree coordinates."""
        p = self.process
        if self.log_space:
            s = self.x0 * np.exp(y)
            growth = p.expectation_1d(t, s, dt) / s
            v2 = p.variance_1d(t, s, dt) / (s * s)
            return y + np.log(growth) - 0.5 * v2, np.asarray(v2, dtype=float)
        x = self.x0 + y
        m = p.expectation_1d(t, x, dt) - self.x0
        v2 = np.broadcast_to(np.asarray(p.variance_1d(t, x, dt), dtype=float), y.shape)
        return np.asarray(m, dtype=float), v2

    def _branching(self, i: int, j_min: int, j_max: int):
        """Centre indices and (down, mid, up) probabilities for layer ``i``."""
        t, dt = float(self.time_grid[i]), float(self.time_grid.dt[i])
        y = np.arange(j_min, j_max + 1) * self.dx[i]
        m, v2 = self._moments(t, y, dt)
        dx_next = self.dx[i + 1]

        k = np.floor(m / dx_next + 0.5).astype(np.int64)
        e = m - k * dx_next
        e2 = e * e / v2
        e3 = _SQRT3 * e / np.sqrt(v2)
        probs = np.vstack([(1.0 + e2 - e3) / 6.0,
                           (2.0 - e2) / 3.0,
                           (1.0 + e2 + e3) / 6.0])

        label = f"trinomial layer {i}"
        probs = check_probabilities(probs, label)
        drift = np.abs(probs.sum(axis=0) - 1.0).max()
        if drift > PROBABILITY_TOLERANCE:
            raise ArbitrageViolation(f"{label}: probabilities sum to 1 +/- {drift!r}")
        return k, probs

    # -- lattice interface --------------------------------------------------------

    @property
    def steps(self) -> int:
        return self.time_grid.steps

    def size(self, i: int) -> int:
        return int(self._j_max[i] - self._j_min[i] + 1)

    def underlying(self, i: int) -> np.ndarray:
        y = np.arange(self._j_min[i], self._j_max[i] + 1) * self.dx[i]
        if self.log_space:
            return self.x0 * np.exp(y)
        return self.x0 + y

    def descendant(self, i: int, index: int, branch: int) -> int:
        k, _ = self._branching(i, self._j_min[i], self._j_max[i])
        return int(k[index] - self._j_min[i + 1] - 1 + branch)

    def probability(self, i: int, index: int, branch: int) -> float:
        _, probs = self._branching(i, self._j_min[i], self._j_max[i])
        return float(probs[branch, index])

    def discount(self, i: int) -> float:
        return float(self._discounts[i])

    def expected_values(self, i: int, values: np.ndarray) -> np.ndarray:
        k, probs = self._branching(i, self._j_min[i], self._j_max[i])
        base = k - self._j_min[i + 1] - 1
        return (probs[0] * values[base]
                + probs[1] * values[base + 1]
                + probs[2] * values[base + 2])

    def __repr__(self):
        return f"TrinomialTree(steps={self.steps}, log_space={self.log_space})"
