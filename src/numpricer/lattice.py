"""Backward induction on binomial / trinomial lattices.

A tree exposes ``steps``, ``underlying(i)`` (whole layer), ``discount(i)``
and ``expected_values(i, next_layer)``; the functions here only roll value
vectors back through it.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional, Union

import numpy as np

from .binomial import BinomialTree, BinomialVariant
from .core import PayoffLike, payoff_values
from .errors import ConfigurationError
from .processes import StochasticProcess1D
from .time_grid import TimeGrid
from .trinomial import TrinomialTree

logger = logging.getLogger(__name__)

__all__ = [
    "LatticeKind",
    "build_tree",
    "rollback",
    "backward_induction",
    "price_european",
    "price_american",
    "price_european_trinomial",
    "price_american_trinomial",
    "tree_greeks",
]

Tree = Union[BinomialTree, TrinomialTree]


class LatticeKind(str, Enum):
    BINOMIAL = "binomial"
    TRINOMIAL = "trinomial"


def rollback(tree: Tree, values: np.ndarray, from_layer: int, to_layer: int = 0,
             exercise: Optional[Callable[[np.ndarray], np.ndarray]] = None) -> np.ndarray:
    """Roll ``values`` (defined on layer ``from_layer``) back to ``to_layer``.

    ``exercise`` maps a layer's underlyings to immediate-exercise values; when
    given, each rolled-back layer is floored by it (American exercise).
    """
    if not 0 <= to_layer <= from_layer <= tree.steps:
        raise ConfigurationError(f"cannot roll back from layer {from_layer} to {to_layer}")
    v = np.asarray(values, dtype=float)
    if v.shape != (tree.size(from_layer),):
        raise ConfigurationError(
            f"layer {from_layer} has {tree.size(from_layer)} nodes, got {v.shape}"
        )
    for i in range(from_layer - 1, to_layer - 1, -1):
        v = tree.discount(i) * tree.expected_values(i, v)
        if exercise is not None:
            v = np.maximum(v, exercise(tree.underlying(i)))
    return v


def backward_induction(tree: Tree, payoff: PayoffLike, *, american: bool = False,
                       to_layer: int = 0) -> np.ndarray:
    """Values on ``to_layer`` of a claim paying ``payoff`` at the last layer."""
    n = tree.steps
    terminal = payoff_values(payoff, tree.underlying(n))
    exercise = (lambda s: payoff_values(payoff, s)) if american else None
    return rollback(tree, terminal, n, to_layer, exercise)


# ---------------------------------------------------------------------------
# Tree construction from (process, grid-or-horizon, steps)
# ---------------------------------------------------------------------------
def _resolve_grid(time_grid, steps) -> TimeGrid:
    if isinstance(time_grid, TimeGrid):
        if steps is None or steps <= time_grid.steps:
            return time_grid
        if time_grid.is_uniform() and not time_grid.mandatory_times[:-1]:
            return TimeGrid(time_grid.end, steps)
        return TimeGrid.from_times(time_grid.times[1:], steps)
    if steps is None:
        raise ConfigurationError("steps is required when time_grid is a horizon")
    return TimeGrid(float(time_grid), steps)


def build_tree(process: StochasticProcess1D, time_grid, steps=None, *,
               lattice: LatticeKind | str = LatticeKind.BINOMIAL,
               variant: BinomialVariant | str = BinomialVariant.CRR,
               strike: float | None = None, rate: float | None = None,
               log_space: bool = True) -> Tree:
    """Build a lattice.

    ``time_grid`` is a :class:`TimeGrid` or a horizon in years.  For a
    horizon ``steps`` is the step count; for a grid it is a minimum (the grid
    is refined when it has fewer steps).
    """
    try:
        lattice = LatticeKind(lattice)
    except ValueError:
        raise ConfigurationError(f"unknown lattice kind {lattice!r}") from None
    grid = _resolve_grid(time_grid, steps)
    if lattice is LatticeKind.BINOMIAL:
        return BinomialTree(process, grid, variant, strike=strike, rate=rate)
    return TrinomialTree(process, grid, log_space=log_space, rate=rate)


def _price(process, payoff, time_grid, steps, american, **kw) -> float:
    strike = kw.pop("strike", None)
    if strike is None:
        strike = getattr(payoff, "strike", None)
    tree = build_tree(process, time_grid, steps, strike=strike, **kw)
    value = backward_induction(tree, payoff, american=american)
    logger.debug("%r priced %s: %.10g", tree, "american" if american else "european", value[0])
    return float(value[0])


def price_european(process: StochasticProcess1D, payoff: PayoffLike, time_grid,
                   steps: int | None = None, **kw) -> float:
    """European price by backward induction.

    Parameters
    ----------
    process : StochasticProcess1D
    payoff : Payoff or callable
        Evaluated on whole layers of underlyings.
    time_grid : TimeGrid or float
    steps : int, optional
    lattice : {"binomial", "trinomial"}
    variant : BinomialVariant or str
        Binomial parametrisation (ignored for trinomial).
    rate : float, optional
        Discount rate, defaults to ``process.risk_free_rate``.

    Returns
    -------
    float
        Present value at the root node.
    """
    return _price(process, payoff, time_grid, steps, False, **kw)


def price_american(process: StochasticProcess1D, payoff: PayoffLike, time_grid,
                   steps: int | None = None, **kw) -> float:
    """American price: continuation is floored by exercise at every node."""
    return _price(process, payoff, time_grid, steps, True, **kw)


def price_european_trinomial(process, payoff, time_grid, steps=None, **kw) -> float:
    return price_european(process, payoff, time_grid, steps,
                          lattice=LatticeKind.TRINOMIAL, **kw)


def price_american_trinomial(process, payoff, time_grid, steps=None, **kw) -> float:
    return price_american(process, payoff, time_grid, steps,
                          lattice=LatticeKind.TRINOMIAL, **kw)


def tree_greeks(process: StochasticProcess1D, payoff: PayoffLike, time_grid,
                steps: int | None = None, *, american: bool = False,
                variant: BinomialVariant | str = BinomialVariant.CRR,
                rate: float | None = None) -> dict[str, float]:
    """Price, delta, gamma and theta read off layers 0-2 of a binomial tree.

    Theta uses the middle node of layer 2, which sits at ``x0`` for
    recombining variants with ``u * d = 1`` (CRR, Trigeorgis); for the
    others it is a close approximation.
    """
    tree = build_tree(process, time_grid, steps, variant=variant,
                      strike=getattr(payoff, "strike", None), rate=rate)
    if tree.steps < 2:
        raise ConfigurationError("tree greeks need at least two steps")
    exercise = (lambda s: payoff_values(payoff, s)) if american else None

    v2 = backward_induction(tree, payoff, american=american, to_layer=2)
    v1 = rollback(tree, v2, 2, 1, exercise)
    v0 = rollback(tree, v1, 1, 0, exercise)
    s1, s2 = tree.underlying(1), tree.underlying(2)

    delta = (v1[1] - v1[0]) / (s1[1] - s1[0])
    d_up = (v2[2] - v2[1]) / (s2[2] - s2[1])
    d_dn = (v2[1] - v2[0]) / (s2[1] - s2[0])
    gamma = (d_up - d_dn) / (0.5 * (s2[2] - s2[0]))
    theta = (v2[1] - v0[0]) / (2.0 * tree.dt)
    return {"price": float(v0[0]), "delta": float(delta),
            "gamma": float(gamma), "theta": float(theta)}
