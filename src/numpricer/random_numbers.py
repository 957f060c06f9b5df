"""Gaussian deviate streams for path generation.

A sequence hands out one vector of ``dimension`` standard normals per path
(``next``) or a ``(n, dimension)`` block of consecutive vectors
(``next_block``); both draw from the same underlying stream, so mixing them
does not change the numbers a path receives.
"""

from __future__ import annotations

import numpy as np
from scipy.special import ndtri
from scipy.stats import qmc

from .errors import ConfigurationError

__all__ = [
    "PseudoRandomGaussianSequence",
    "SobolGaussianSequence",
    "BrownianBridge",
]


def _check_dimension(dimension) -> int:
    if int(dimension) != dimension or dimension < 1:
        raise ConfigurationError(f"dimension must be a positive integer, got {dimension!r}")
    return int(dimension)


class PseudoRandomGaussianSequence:
    """PCG64 normals from :func:`numpy.random.default_rng`.

    ``seed`` may be an int, a :class:`numpy.random.SeedSequence` or None.
    """

    def __init__(self, dimension: int, seed=None):
        self.dimension = _check_dimension(dimension)
        self._rng = np.random.default_rng(seed)

    def next(self) -> np.ndarray:
        return self._rng.standard_normal(self.dimension)

    def next_block(self, n: int) -> np.ndarray:
        return self._rng.standard_normal((n, self.dimension))


class SobolGaussianSequence:
    """Scrambled Sobol points mapped through the inverse normal CDF.

    Points are drawn from :class:`scipy.stats.qmc.Sobol` in doubling batches
    so that the total number generated stays a power of two.
    """

    def __init__(self, dimension: int, seed=None):
        self.dimension = _check_dimension(dimension)
        self._sobol = qmc.Sobol(d=self.dimension, scramble=True,
                                seed=np.random.default_rng(seed))
        self._buffer = np.empty((0, self.dimension))

    def _refill(self, needed: int) -> None:
        while len(self._buffer) < needed:
            m = max(1, self._sobol.num_generated)
            self._buffer = np.vstack([self._buffer, self._sobol.random(m)])

    def next_block(self, n: int) -> np.ndarray:
        self._refill(n)
        u, self._buffer = self._buffer[:n], self._buffer[n:]
        return ndtri(u)

    def next(self) -> np.ndarray:
        return self.next_block(1)[0]


class BrownianBridge:
    """Builds Brownian increments from deviates in bridge order.

    The first deviate fixes the terminal value, the following ones fill in
    midpoints conditionally, which concentrates the variance of a
    quasi-random path in its lowest dimensions.

    Parameters
    ----------
    times : array-like or TimeGrid
        Increasing positive times ``t_1 < ... < t_n``; a leading 0 is dropped.
    """

    def __init__(self, times):
        t = np.asarray(getattr(times, "times", times), dtype=float)
        if t.size and t[0] == 0.0:
            t = t[1:]
        if t.size == 0 or np.any(np.diff(t) <= 0) or t[0] <= 0:
            raise ConfigurationError("bridge times must be positive and strictly increasing")
        self.times = t
        n = t.size
        self.size = n
        self._sqrt_dt = np.sqrt(np.diff(np.concatenate([[0.0], t])))

        bridge = np.zeros(n, dtype=int)
        left = np.zeros(n, dtype=int)
        right = np.zeros(n, dtype=int)
        lw = np.zeros(n)
        rw = np.zeros(n)
        sd = np.zeros(n)
        filled = np.zeros(n, dtype=int)

        filled[-1] = 1
        bridge[0] = n - 1
        sd[0] = np.sqrt(t[-1])
        j = 0
        for i in range(1, n):
            while filled[j]:
                j += 1
            k = j
            while not filled[k]:
                k += 1
            l = j + ((k - 1 - j) >> 1)
            filled[l] = i
            bridge[i], left[i], right[i] = l, j, k
            t_left = t[j - 1] if j else 0.0
            span = t[k] - t_left
            lw[i] = (t[k] - t[l]) / span
            rw[i] = (t[l] - t_left) / span
            sd[i] = np.sqrt((t[l] - t_left) * (t[k] - t[l]) / span)
            j = k + 1
            if j >= n:
                j = 0

        self._bridge, self._left, self._right = bridge, left, right
        self._lw, self._rw, self._sd = lw, rw, sd

    def transform(self, z) -> np.ndarray:
        """Map deviates (last axis of length ``size``) to standardised increments."""
        z = np.asarray(z, dtype=float)
        if z.shape[-1] != self.size:
            raise ConfigurationError(f"expected {self.size} deviates, got {z.shape[-1]}")
        w = np.empty_like(z)
        w[..., -1] = self._sd[0] * z[..., 0]
        for i in range(1, self.size):
            l, j, k = self._bridge[i], self._left[i], self._right[i]
            w[..., l] = self._rw[i] * w[..., k] + self._sd[i] * z[..., i]
            if j:
                w[..., l] += self._lw[i] * w[..., j - 1]
        increments = np.diff(w, axis=-1, prepend=0.0)
        return increments / self._sqrt_dt
