# numpricer/monte_carlo.py

from __future__ import annotations
import logging
import math
import warnings
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .core import PayoffLike, PlainVanillaPayoff, CALL
from .errors import ConfigurationError, ConvergenceWarning
from .path_pricers import EuropeanPathPricer, PathPricer
from .paths import AntitheticPathGenerator, PathGenerator
from .processes import StochasticProcess1D, discount_rate
from .random_numbers import PseudoRandomGaussianSequence, SobolGaussianSequence
from .statistics import IncrementalStatistics
from .time_grid import TimeGrid

logger = logging.getLogger(__name__)

__all__ = [
    "McResult",
    "MonteCarloModel",
    "value_with_tolerance",
    "simulate_parallel",
    "mc_price",
]

# paths generated and priced per vectorised block
BLOCK_SIZE = 10_000


@dataclass(frozen=True)
class McResult:
    price: float
    error_estimate: float
    samples: int
    converged: bool = True


class MonteCarloModel:
    """Path generator + path pricer + sample accumulator.

    With an antithetic generator one sample is the average of a path and
    its mirror, drawn as whole pairs, so ``add_samples(n)`` consumes ``2n``
    paths and fails while the generator still owes a mirror path.

    A control variate replaces each path price ``X`` by
    ``X - c * (Y - E[Y])`` where ``Y`` is the control pricer's value on the
    same path, ``E[Y]`` is ``control_variate_value`` and ``c`` defaults to 1.
    """

    def __init__(self, path_generator: PathGenerator, path_pricer: PathPricer, *,
                 control_variate_pricer: Optional[PathPricer] = None,
                 control_variate_value: Optional[float] = None,
                 control_variate_coefficient: float = 1.0,
                 statistics: Optional[IncrementalStatistics] = None):
        if (control_variate_pricer is None) != (control_variate_value is None):
            raise ConfigurationError(
                "control variate needs both a pricer and its known value"
            )
        self.path_generator = path_generator
        self.path_pricer = path_pricer
        self.control_variate_pricer = control_variate_pricer
        self.control_variate_value = control_variate_value
        self.control_variate_coefficient = float(control_variate_coefficient)
        self._stats = statistics if statistics is not None else IncrementalStatistics()

    @property
    def sample_accumulator(self) -> IncrementalStatistics:
        return self._stats

    def _sample_values(self, n: int) -> np.ndarray:
        gen = self.path_generator
        values = gen.next_pairs(n) if gen.antithetic else gen.next_values(n)
        times = gen.time_grid.times
        x = self.path_pricer.price_values(times, values)
        if self.control_variate_pricer is not None:
            y = self.control_variate_pricer.price_values(times, values)
            x = x - self.control_variate_coefficient * (y - self.control_variate_value)
        if gen.antithetic:
            x = x.reshape(n, 2).mean(axis=1)
        return x

    def add_samples(self, n: int, block_size: int = BLOCK_SIZE) -> None:
        """Simulate ``n`` more samples; ``n = 0`` is a no-op."""
        if int(n) != n or n < 0:
            raise ConfigurationError(f"sample count must be a non-negative integer, got {n!r}")
        remaining = int(n)
        while remaining > 0:
            m = min(block_size, remaining)
            self._stats.add_many(self._sample_values(m))
            remaining -= m

    def results(self) -> tuple[float, float]:
        """``(price, error_estimate)``."""
        return self._stats.mean, self._stats.error_estimate

    def result(self, converged: bool = True) -> McResult:
        return McResult(self._stats.mean, self._stats.error_estimate,
                        self._stats.samples, converged)


def value_with_tolerance(model: MonteCarloModel, tolerance: float, *,
                         min_samples: int = 1023, max_samples: int = 10_000_000) -> McResult:
    """Add samples until the error estimate is below ``tolerance``.

    Each round extrapolates the required count from the current error
    (``n * (err / tol)^2``, aiming 20% short) and never adds fewer than
    ``min_samples``.  When ``max_samples`` is reached first a
    :class:`ConvergenceWarning` is issued and ``converged`` is False.
    """
    if not tolerance > 0:
        raise ConfigurationError(f"tolerance must be positive, got {tolerance}")
    if min_samples < 2 or max_samples < min_samples:
        raise ConfigurationError("need 2 <= min_samples <= max_samples")

    stats = model.sample_accumulator
    if stats.samples < min_samples:
        model.add_samples(min_samples - stats.samples)

    error = stats.error_estimate
    while error > tolerance:
        n = stats.samples
        order = error * error / (tolerance * tolerance)
        next_batch = max(int(n * order * 0.8 - n), min_samples)
        next_batch = min(next_batch, max_samples - n)
        if next_batch <= 0:
            warnings.warn(
                f"Monte Carlo error {error:.3g} above tolerance {tolerance:.3g} "
                f"after {n} samples",
                ConvergenceWarning,
                stacklevel=2,
            )
            return model.result(converged=False)
        model.add_samples(next_batch)
        error = stats.error_estimate
    return model.result()


# ---------------------------------------------------------------------------
# Batched / parallel simulation
# ---------------------------------------------------------------------------
def _make_generator(process, time_grid, seed, antithetic, sequence, brownian_bridge):
    if sequence == "pseudo":
        seq = PseudoRandomGaussianSequence(time_grid.steps, seed)
    elif sequence == "sobol":
        seq = SobolGaussianSequence(time_grid.steps, seed)
    else:
        raise ConfigurationError(f"sequence must be 'pseudo' or 'sobol', got {sequence!r}")
    cls = AntitheticPathGenerator if antithetic else PathGenerator
    return cls(process, time_grid, seq, brownian_bridge=brownian_bridge)


def _run_batch(n, seed, process, time_grid, path_pricer, antithetic, sequence,
               brownian_bridge, cv_pricer, cv_value, cv_coefficient):
    """One independent batch; module-level so it pickles into worker processes."""
    gen = _make_generator(process, time_grid, seed, antithetic, sequence, brownian_bridge)
    model = MonteCarloModel(gen, path_pricer,
                            control_variate_pricer=cv_pricer,
                            control_variate_value=cv_value,
                            control_variate_coefficient=cv_coefficient)
    model.add_samples(n)
    return model.sample_accumulator


def simulate_parallel(process: StochasticProcess1D, path_pricer: PathPricer,
                      time_grid: TimeGrid, samples: int, *,
                      seed: int | None = None, antithetic: bool = False,
                      batch_size: int = 50_000, workers: int = 1,
                      sequence: str = "pseudo", brownian_bridge: bool = False,
                      control_variate_pricer: Optional[PathPricer] = None,
                      control_variate_value: Optional[float] = None,
                      control_variate_coefficient: float = 1.0) -> McResult:
    """Simulate ``samples`` samples in fixed batches, optionally on a process pool.

    Batch ``i`` always draws from the ``i``-th child of
    ``SeedSequence(seed)`` and accumulators are merged in batch order, so
    the result is the same for any ``workers``.

    Notes
    -----
    Everything passed in must be picklable when ``workers > 1``.  In
    Jupyter, prefer ``workers=1``.
    """
    if int(samples) != samples or samples < 0:
        raise ConfigurationError(f"samples must be a non-negative integer, got {samples!r}")
    if batch_size < 1:
        raise ConfigurationError("batch_size must be positive")

    batches = []
    remaining = int(samples)
    while remaining > 0:
        m = min(batch_size, remaining)
        batches.append(m)
        remaining -= m
    seeds = np.random.SeedSequence(seed).spawn(len(batches))
    logger.debug("monte carlo plan: %d samples in %d batches, %d worker(s)",
                 samples, len(batches), workers)

    args = [(m, ss, process, time_grid, path_pricer, antithetic, sequence,
             brownian_bridge, control_variate_pricer, control_variate_value,
             control_variate_coefficient) for m, ss in zip(batches, seeds)]
    if workers <= 1 or len(batches) <= 1:
        partials = [_run_batch(*a) for a in args]
    else:
        with ProcessPoolExecutor(max_workers=workers) as ex:
            partials = list(ex.map(_run_batch, *zip(*args)))

    total = IncrementalStatistics()
    for part in partials:
        total.merge(part)
    logger.info("monte carlo: %d samples, price=%.6g +/- %.2g",
                total.samples, total.mean, total.error_estimate)
    return McResult(total.mean, total.error_estimate, total.samples)


def mc_price(process: StochasticProcess1D, payoff: PayoffLike, time_grid, *,
             samples: int = 100_000, seed: int | None = None, antithetic: bool = True,
             rate: float | None = None, steps: int = 1,
             control_variate: bool = False, workers: int = 1,
             batch_size: int = 50_000, sequence: str = "pseudo",
             brownian_bridge: bool = False) -> McResult:
    """European Monte Carlo price of ``payoff(S_T)``.

    Parameters
    ----------
    time_grid : TimeGrid or float
        Simulation grid, or a maturity discretised into ``steps`` steps.
    control_variate : bool
        Use the discounted terminal value ``D * S_T`` as control, with
        known mean ``D * E[S_T]`` (positive processes only).

    Returns
    -------
    McResult
    """
    grid = time_grid if isinstance(time_grid, TimeGrid) else TimeGrid(float(time_grid), steps)
    df = math.exp(-discount_rate(process, rate) * grid.end)
    pricer = EuropeanPathPricer(payoff, df)
    cv_pricer = cv_value = None
    if control_variate:
        # max(S - 0, 0) = S for a positive underlying
        cv_pricer = EuropeanPathPricer(PlainVanillaPayoff(0.0, CALL), df)
        cv_value = df * float(process.expectation_1d(0.0, process.x0, grid.end))
    return simulate_parallel(
        process, pricer, grid, samples, seed=seed, antithetic=antithetic,
        batch_size=batch_size, workers=workers, sequence=sequence,
        brownian_bridge=brownian_bridge, control_variate_pricer=cv_pricer,
        control_variate_value=cv_value,
    )
