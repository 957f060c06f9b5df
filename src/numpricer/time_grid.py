"""Discretisation times shared by the lattice, PDE and Monte Carlo methods.

A grid always starts at 0, ends at the horizon and is strictly increasing.
Mandatory times (dividend or exercise dates already converted to year
fractions by the caller) are kept exactly.
"""

from __future__ import annotations

import math
from typing import Iterable, Iterator

import numpy as np

from .errors import ConfigurationError, TIME_EPSILON

__all__ = ["TimeGrid"]


def _check_steps(steps) -> int:
    if isinstance(steps, bool) or int(steps) != steps or steps < 0:
        raise ConfigurationError(f"steps must be a non-negative integer, got {steps!r}")
    return int(steps)


class TimeGrid:
    """Ordered discretisation times ``0 = t_0 < t_1 < ... < t_n = T``.

    Parameters
    ----------
    end : float
        Horizon ``T`` in years, must be positive.
    steps : int
        Number of equal intervals, must be at least 1.

    Use :meth:`from_times` to build a grid around mandatory times.
    """

    def __init__(self, end: float, steps: int):
        steps = _check_steps(steps)
        if not end > 0:
            raise ConfigurationError(f"time grid horizon must be positive, got {end}")
        if steps == 0:
            raise ConfigurationError("time grid needs at least one step")
        times = np.linspace(0.0, float(end), steps + 1)
        self._set(times, (float(end),))

    @classmethod
    def from_times(cls, mandatory: Iterable[float], steps: int = 0) -> "TimeGrid":
        """Grid containing 0 and every mandatory time.

        When ``steps`` is larger than the number of mandatory intervals,
        each interval is split evenly so that no step exceeds ``T / steps``.
        Times closer than ``TIME_EPSILON`` are merged.
        """
        steps = _check_steps(steps)
        points = sorted(float(t) for t in mandatory)
        if not points:
            raise ConfigurationError("at least one mandatory time is required")
        if points[0] < -TIME_EPSILON:
            raise ConfigurationError(f"mandatory times must be non-negative, got {points[0]}")

        anchors = [0.0]
        for t in points:
            if t - anchors[-1] > TIME_EPSILON:
                anchors.append(t)
        end = anchors[-1]
        if end <= 0.0:
            raise ConfigurationError("time grid horizon must be positive")

        if steps <= len(anchors) - 1:
            times = np.asarray(anchors)
        else:
            dt_max = end / steps
            times = [0.0]
            for begin, stop in zip(anchors[:-1], anchors[1:]):
                n = max(1, math.ceil((stop - begin) / dt_max - 1e-9))
                times.extend(begin + (stop - begin) * np.arange(1, n) / n)
                times.append(stop)
            times = np.asarray(times)

        grid = cls.__new__(cls)
        grid._set(times, tuple(anchors[1:]))
        return grid

    def _set(self, times: np.ndarray, mandatory: tuple) -> None:
        dt = np.diff(times)
        if np.any(dt <= 0.0):
            raise ConfigurationError("time grid must be strictly increasing")
        times.setflags(write=False)
        dt.setflags(write=False)
        self._times = times
        self._dt = dt
        self._mandatory = mandatory

    # -- accessors ---------------------------------------------------------

    @property
    def times(self) -> np.ndarray:
        return self._times

    @property
    def dt(self) -> np.ndarray:
        """Step sizes, ``dt[i] = t[i+1] - t[i]``."""
        return self._dt

    @property
    def mandatory_times(self) -> tuple:
        return self._mandatory

    @property
    def size(self) -> int:
        return len(self._times)

    @property
    def steps(self) -> int:
        return len(self._times) - 1

    @property
    def end(self) -> float:
        return float(self._times[-1])

    def __len__(self) -> int:
        return len(self._times)

    def __getitem__(self, i):
        return self._times[i]

    def __iter__(self) -> Iterator[float]:
        return iter(self._times.tolist())

    def __repr__(self) -> str:
        return f"TimeGrid(end={self.end}, steps={self.steps})"

    def is_uniform(self, rtol: float = 1e-9) -> bool:
        return bool(np.allclose(self._dt, self._dt[0], rtol=rtol, atol=TIME_EPSILON))

    def index(self, t: float) -> int:
        """Index of grid time ``t``; ``t`` must be on the grid."""
        i = self.closest_index(t)
        if abs(self._times[i] - t) > TIME_EPSILON * max(1.0, abs(t)):
            raise ConfigurationError(
                f"time {t} is not on the grid (closest is {self._times[i]})"
            )
        return i

    def closest_index(self, t: float) -> int:
        j = int(np.searchsorted(self._times, t))
        if j == 0:
            return 0
        if j >= len(self._times):
            return len(self._times) - 1
        return j if self._times[j] - t < t - self._times[j - 1] else j - 1

    def closest_time(self, t: float) -> float:
        return float(self._times[self.closest_index(t)])
