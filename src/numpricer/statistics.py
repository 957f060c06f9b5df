"""Running sample statistics for Monte Carlo estimates."""

from __future__ import annotations

import math

import numpy as np

__all__ = ["IncrementalStatistics"]


class IncrementalStatistics:
    """Count, mean and sum of squared deviations updated one sample at a time.

    Single samples use Welford's update; blocks and partial accumulators are
    combined with the pairwise formula of Chan, Golub & LeVeque, so merging
    per-worker accumulators gives the same moments as one long run (up to
    rounding).
    """

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self._n = 0
        self._mean = 0.0
        self._m2 = 0.0
        self._min = math.inf
        self._max = -math.inf

    # -- updates -------------------------------------------------------------

    def add(self, x: float) -> None:
        x = float(x)
        self._n += 1
        delta = x - self._mean
        self._mean += delta / self._n
        self._m2 += delta * (x - self._mean)
        self._min = min(self._min, x)
        self._max = max(self._max, x)

    def _combine(self, n: int, mean: float, m2: float, lo: float, hi: float) -> None:
        if n == 0:
            return
        total = self._n + n
        delta = mean - self._mean
        self._mean += delta * n / total
        self._m2 += m2 + delta * delta * self._n * n / total
        self._n = total
        self._min = min(self._min, lo)
        self._max = max(self._max, hi)

    def add_many(self, values) -> None:
        """Add a block of samples (vectorised)."""
        x = np.asarray(values, dtype=float).ravel()
        if x.size == 0:
            return
        mean = float(x.mean())
        m2 = float(((x - mean) ** 2).sum())
        self._combine(x.size, mean, m2, float(x.min()), float(x.max()))

    def merge(self, other: "IncrementalStatistics") -> "IncrementalStatistics":
        """Fold ``other`` into this accumulator and return ``self``."""
        self._combine(other._n, other._mean, other._m2, other._min, other._max)
        return self

    # -- inspectors ----------------------------------------------------------

    @property
    def samples(self) -> int:
        return self._n

    @property
    def mean(self) -> float:
        return self._mean if self._n else math.nan

    @property
    def variance(self) -> float:
        """Unbiased sample variance."""
        if self._n < 2:
            return math.nan
        return max(self._m2, 0.0) / (self._n - 1)

    @property
    def std_dev(self) -> float:
        return math.sqrt(self.variance)

    @property
    def error_estimate(self) -> float:
        """Standard error of the mean."""
        return self.std_dev / math.sqrt(self._n) if self._n >= 2 else math.nan

    @property
    def min(self) -> float:
        return self._min

    @property
    def max(self) -> float:
        return self._max

    def __repr__(self):
        return (f"IncrementalStatistics(samples={self._n}, mean={self.mean!r}, "
                f"error={self.error_estimate!r})")
