"""Sample paths of a 1-D process on a time grid."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .errors import ConfigurationError
from .processes import StochasticProcess1D
from .random_numbers import BrownianBridge, PseudoRandomGaussianSequence
from .time_grid import TimeGrid

logger = logging.getLogger(__name__)

__all__ = ["Path", "PathGenerator", "AntitheticPathGenerator"]


@dataclass(frozen=True, eq=False)
class Path:
    """One realisation: ``values[i]`` is the state at ``times[i]``."""
    times: np.ndarray
    values: np.ndarray

    def __len__(self) -> int:
        return len(self.values)

    def __getitem__(self, i):
        return self.values[i]

    @property
    def front(self) -> float:
        return float(self.values[0])

    @property
    def back(self) -> float:
        return float(self.values[-1])


class PathGenerator:
    """Evolves ``x_{i+1} = process.evolve_1d(t_i, x_i, dt_i, Z_i)``.

    Parameters
    ----------
    process : StochasticProcess1D
    time_grid : TimeGrid
    sequence : object, optional
        Gaussian stream with ``dimension == time_grid.steps`` and
        ``next_block(n)``; a seeded :class:`PseudoRandomGaussianSequence`
        by default.
    seed : int or SeedSequence, optional
        Seed of the default sequence.
    brownian_bridge : bool
        Reorder deviates through a :class:`BrownianBridge`.
    """

    antithetic = False

    def __init__(self, process: StochasticProcess1D, time_grid: TimeGrid,
                 sequence=None, *, seed=None, brownian_bridge: bool = False):
        steps = time_grid.steps
        if sequence is None:
            sequence = PseudoRandomGaussianSequence(steps, seed)
        elif sequence.dimension != steps:
            raise ConfigurationError(
                f"sequence dimension {sequence.dimension} does not match {steps} time steps"
            )
        self.process = process
        self.time_grid = time_grid
        self.sequence = sequence
        self.bridge = BrownianBridge(time_grid) if brownian_bridge else None

    @property
    def dimension(self) -> int:
        return self.time_grid.steps

    def _deviates(self, n: int) -> np.ndarray:
        z = self.sequence.next_block(n)
        return self.bridge.transform(z) if self.bridge is not None else z

    def _evolve(self, z: np.ndarray) -> np.ndarray:
        grid = self.time_grid
        out = np.empty((z.shape[0], grid.size))
        x = np.full(z.shape[0], float(self.process.x0))
        out[:, 0] = x
        for i in range(grid.steps):
            x = self.process.evolve_1d(float(grid[i]), x, float(grid.dt[i]), z[:, i])
            out[:, i + 1] = x
        return out

    def next_values(self, n: int) -> np.ndarray:
        """Values of the next ``n`` paths as an ``(n, grid.size)`` array."""
        return self._evolve(self._deviates(n))

    def next(self) -> Path:
        return Path(self.time_grid.times, self.next_values(1)[0])


class AntitheticPathGenerator(PathGenerator):
    """Yields a path driven by fresh deviates, then its mirror driven by ``-Z``.

    Paths ``k`` and ``k + 1`` (``k`` even) form an antithetic pair.
    """

    antithetic = True

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._pending = None

    def next_values(self, n: int) -> np.ndarray:
        rows = []
        if n > 0 and self._pending is not None:
            rows.append(-self._pending[np.newaxis, :])
            self._pending = None
            n -= 1
        pairs = (n + 1) // 2
        if pairs:
            z = self._deviates(pairs)
            both = np.empty((2 * pairs, z.shape[1]))
            both[0::2] = z
            both[1::2] = -z
            if n % 2:
                self._pending = z[-1]
            rows.append(both[:n])
        if not rows:
            return np.empty((0, self.time_grid.size))
        return self._evolve(np.vstack(rows))

    @property
    def pair_aligned(self) -> bool:
        """True when the next path starts a fresh antithetic pair."""
        return self._pending is None

    def next_pairs(self, n: int) -> np.ndarray:
        """Values of ``n`` whole antithetic pairs as a ``(2n, grid.size)`` array.

        Rows ``2k`` and ``2k + 1`` are driven by ``Z`` and ``-Z``.  Raises
        :class:`ConfigurationError` while the mirror of an earlier path is
        still owed, since the pairs would then straddle two deviate draws.
        """
        if self._pending is not None:
            raise ConfigurationError(
                "antithetic generator has an unpaired path pending; draw its mirror first"
            )
        return self.next_values(2 * n)
