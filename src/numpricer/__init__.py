# numpricer: lattice, finite-difference and Monte Carlo option pricing
# Public API

# Contracts, processes, reference prices
from .core import (
    OptionSpec, CALL, PUT, Payoff, PlainVanillaPayoff, CashOrNothingPayoff,
)
from .processes import StochasticProcess1D, BlackScholesProcess, OrnsteinUhlenbeckProcess
from .black_scholes import price as bs_price, greeks as bs_greeks, digital_price as bs_digital_price
from .errors import (
    PricingError, ConfigurationError, ArbitrageViolation, InstabilityRisk,
    SingularOperator, ConvergenceWarning,
)
from .time_grid import TimeGrid

# Lattices
from .binomial import BinomialTree, BinomialVariant
from .trinomial import TrinomialTree
from .lattice import (
    LatticeKind, rollback, price_european, price_american,
    price_european_trinomial, price_american_trinomial, tree_greeks,
)

# PDE (Finite Difference)
from .pde import (
    FdmScheme, BoundaryCondition, TridiagonalOperator, GridSpec, Fdm1dSolver,
    fd_price, fd_greeks,
)

# Monte Carlo
from .random_numbers import PseudoRandomGaussianSequence, SobolGaussianSequence, BrownianBridge
from .statistics import IncrementalStatistics
from .paths import Path, PathGenerator, AntitheticPathGenerator
from .path_pricers import (
    PathPricer, EuropeanPathPricer, ArithmeticAsianPathPricer,
    BarrierType, BarrierPathPricer,
)
from .monte_carlo import (
    McResult, MonteCarloModel, value_with_tolerance, simulate_parallel, mc_price,
)

# Model validation
from .validation import cross_validate, convergence_analysis

__all__ = [
    # Contracts & processes
    "OptionSpec", "CALL", "PUT",
    "Payoff", "PlainVanillaPayoff", "CashOrNothingPayoff",
    "StochasticProcess1D", "BlackScholesProcess", "OrnsteinUhlenbeckProcess",
    "bs_price", "bs_greeks", "bs_digital_price",
    # Errors
    "PricingError", "ConfigurationError", "ArbitrageViolation",
    "InstabilityRisk", "SingularOperator", "ConvergenceWarning",
    "TimeGrid",
    # Lattices
    "BinomialTree", "BinomialVariant", "TrinomialTree",
    "LatticeKind", "rollback", "price_european", "price_american",
    "price_european_trinomial", "price_american_trinomial", "tree_greeks",
    # PDE
    "FdmScheme", "BoundaryCondition", "TridiagonalOperator", "GridSpec",
    "Fdm1dSolver", "fd_price", "fd_greeks",
    # Monte Carlo
    "PseudoRandomGaussianSequence", "SobolGaussianSequence", "BrownianBridge",
    "IncrementalStatistics", "Path", "PathGenerator", "AntitheticPathGenerator",
    "PathPricer", "EuropeanPathPricer", "ArithmeticAsianPathPricer",
    "BarrierType", "BarrierPathPricer",
    "McResult", "MonteCarloModel", "value_with_tolerance",
    "simulate_parallel", "mc_price",
    # Validation
    "cross_validate", "convergence_analysis",
]

__version__ = "0.1.0"
