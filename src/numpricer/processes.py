# processes.py
# One-dimensional stochastic processes consumed by the numerical methods.
#
# A process dX = mu(t, X) dt + sigma(t, X) dW is described by its drift,
# diffusion, and the conditional moments / evolution over a finite step.
# Every method must accept either floats or NumPy arrays for ``x`` so that
# lattice layers and finite-difference meshes are evaluated in one call.

from __future__ import annotations
import numpy as np

from .errors import ConfigurationError


__all__ = [
    "StochasticProcess1D",
    "BlackScholesProcess",
    "OrnsteinUhlenbeckProcess",
    "discount_rate",
]


class StochasticProcess1D:
    """Base class for ``dX = mu(t, X) dt + sigma(t, X) dW``.

    Subclasses provide ``x0``, ``drift_1d`` and ``diffusion_1d``; the
    remaining methods default to a first-order Euler discretisation and may
    be overridden with exact expressions.
    """

    x0: float

    def drift_1d(self, t: float, x):
        raise NotImplementedError

    def diffusion_1d(self, t: float, x):
        raise NotImplementedError

    def expectation_1d(self, t: float, x, dt: float):
        """E[X(t+dt) | X(t) = x]."""
        return x + self.drift_1d(t, x) * dt

    def std_deviation_1d(self, t: float, x, dt: float):
        return self.diffusion_1d(t, x) * np.sqrt(dt)

    def variance_1d(self, t: float, x, dt: float):
        s = self.diffusion_1d(t, x)
        return s * s * dt

    def evolve_1d(self, t: float, x, dt: float, dw):
        """Advance ``x`` over ``dt`` given a standard normal draw ``dw``."""
        return self.expectation_1d(t, x, dt) + self.std_deviation_1d(t, x, dt) * dw


# -----------------------------
# 1) Geometric Brownian Motion
# -----------------------------
class BlackScholesProcess(StochasticProcess1D):
    """
    Black-Scholes-Merton dynamics under Q with flat rates and volatility:
        dS = (r - q) S dt + sigma S dW
    Evolution uses the exact log-normal step
        S_{t+dt} = S_t * exp((r - q - 0.5*sigma^2) dt + sigma * sqrt(dt) * Z)
    """

    def __init__(self, x0: float, r: float, sigma: float, q: float = 0.0):
        if x0 <= 0:
            raise ConfigurationError(f"x0 must be positive, got {x0}")
        if sigma <= 0:
            raise ConfigurationError(f"sigma must be positive, got {sigma}")
        self.x0 = float(x0)
        self.r = float(r)
        self.sigma = float(sigma)
        self.q = float(q)

    @property
    def risk_free_rate(self) -> float:
        return self.r

    def __repr__(self):
        return (f"BlackScholesProcess(x0={self.x0}, r={self.r}, "
                f"sigma={self.sigma}, q={self.q})")

    def drift_1d(self, t, x):
        return (self.r - self.q) * x

    def diffusion_1d(self, t, x):
        return self.sigma * x

    def expectation_1d(self, t, x, dt):
        return x * np.exp((self.r - self.q) * dt)

    def std_deviation_1d(self, t, x, dt):
        return self.sigma * x * np.sqrt(dt)

    def variance_1d(self, t, x, dt):
        return (self.sigma * x) ** 2 * dt

    def evolve_1d(self, t, x, dt, dw):
        sig = self.sigma
        return x * np.exp((self.r - self.q - 0.5 * sig * sig) * dt + sig * np.sqrt(dt) * dw)


# -------------------------------------------
# 2) Ornstein-Uhlenbeck (additive, mean-reverting)
# -------------------------------------------
class OrnsteinUhlenbeckProcess(StochasticProcess1D):
    """
    dX = a (level - X) dt + sigma dW

    The diffusion does not depend on X, so the process can be put on an
    additive trinomial lattice.  Conditional moments are exact.
    """

    def __init__(self, speed: float, volatility: float, x0: float = 0.0, level: float = 0.0):
        if speed < 0:
            raise ConfigurationError(f"speed must be non-negative, got {speed}")
        if volatility <= 0:
            raise ConfigurationError(f"volatility must be positive, got {volatility}")
        self.speed = float(speed)
        self.volatility = float(volatility)
        self.x0 = float(x0)
        self.level = float(level)

    def drift_1d(self, t, x):
        return self.speed * (self.level - x)

    def diffusion_1d(self, t, x):
        return self.volatility + 0.0 * np.asarray(x, dtype=float)

    def expectation_1d(self, t, x, dt):
        return self.level + (x - self.level) * np.exp(-self.speed * dt)

    def variance_1d(self, t, x, dt):
        a, v = self.speed, self.volatility
        if a < 1e-8:
            var = v * v * dt
        else:
            var = 0.5 * v * v / a * (1.0 - np.exp(-2.0 * a * dt))
        return var + 0.0 * np.asarray(x, dtype=float)

    def std_deviation_1d(self, t, x, dt):
        return np.sqrt(self.variance_1d(t, x, dt))


def discount_rate(process: StochasticProcess1D, rate: float | None = None) -> float:
    """Explicit ``rate`` if given, otherwise the process's own risk-free rate."""
    if rate is not None:
        return float(rate)
    r = getattr(process, "risk_free_rate", None)
    if r is None:
        raise ConfigurationError(
            f"{type(process).__name__} carries no risk-free rate; pass rate= explicitly"
        )
    return float(r)
