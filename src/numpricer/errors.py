"""Error taxonomy shared by the lattice, finite-difference and Monte Carlo code.

Validation errors are raised before any computation starts.  Floating drift
smaller than the tolerances below is clamped silently; anything larger is
reported through one of these exceptions.
"""

from __future__ import annotations

__all__ = [
    "PricingError",
    "ConfigurationError",
    "ArbitrageViolation",
    "InstabilityRisk",
    "SingularOperator",
    "ConvergenceWarning",
    "PROBABILITY_TOLERANCE",
    "TIME_EPSILON",
    "PIVOT_EPSILON",
]

# Transition probabilities may leave [0, 1] by this much before it is an error.
PROBABILITY_TOLERANCE = 1e-10

# Two grid times closer than this are the same time.
TIME_EPSILON = 1e-12

# Smallest usable Thomas-algorithm pivot.
PIVOT_EPSILON = 1e-300


class PricingError(Exception):
    """Base class for all numerical pricing failures."""


class ConfigurationError(PricingError, ValueError):
    """Invalid grid, step or model parameters."""


class ArbitrageViolation(PricingError, ValueError):
    """A lattice transition probability falls outside [0, 1]."""

    def __init__(self, message: str, probability: float | None = None):
        super().__init__(message)
        self.probability = probability


class InstabilityRisk(PricingError):
    """The explicit scheme would violate its CFL-type stability condition."""

    def __init__(self, message: str, dt: float | None = None, dt_max: float | None = None):
        super().__init__(message)
        self.dt = dt
        self.dt_max = dt_max


class SingularOperator(PricingError, ArithmeticError):
    """A tridiagonal system could not be solved (vanishing pivot)."""

    def __init__(self, message: str, row: int | None = None):
        super().__init__(message)
        self.row = row


class ConvergenceWarning(UserWarning):
    """Monte Carlo error estimate still above tolerance at the sample cap."""
