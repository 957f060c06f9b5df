"""Cross-method benchmarking and convergence analysis.

Prices one vanilla contract with the lattice, finite-difference and Monte
Carlo engines and compares each against the closed-form Black-Scholes value.
"""

from __future__ import annotations

import numpy as np
from typing import Optional

from .core import OptionSpec, CALL

__all__ = [
    "METHODS",
    "price_with",
    "cross_validate",
    "convergence_analysis",
]

METHODS = ("bs", "tree", "trinomial", "fdm", "mc")


def price_with(opt: OptionSpec, kind: str, method: str, resolution: int, *,
               american: bool = False, seed: int = 42):
    """Price ``opt`` with one method at the given resolution.

    ``resolution`` is the step count for trees, the number of grid points
    and time steps for FDM, and the number of samples for Monte Carlo.
    Monte Carlo returns ``(price, stderr)``; the others a float.
    """
    process = opt.process()
    payoff = opt.payoff(kind)
    if method == "bs":
        if american:
            raise ValueError("closed form is European only")
        from .black_scholes import price as bs_price
        return bs_price(opt, kind)
    if method in ("tree", "trinomial"):
        from .lattice import price_american, price_european
        fn = price_american if american else price_european
        lattice = "binomial" if method == "tree" else "trinomial"
        return fn(process, payoff, opt.T, resolution, lattice=lattice)
    if method == "fdm":
        from .pde import fd_price
        return fd_price(process, payoff, opt.T, points=resolution, steps=resolution,
                        american=american)
    if method == "mc":
        if american:
            raise ValueError("Monte Carlo engine is European only")
        from .monte_carlo import mc_price
        res = mc_price(process, payoff, opt.T, samples=resolution, seed=seed)
        return res.price, res.error_estimate
    raise ValueError(f"Unknown method: {method}")


# ---------------------------------------------------------------------------
# Cross-model benchmarking
# ---------------------------------------------------------------------------

def cross_validate(
    opt: OptionSpec,
    kind: str = CALL,
    *,
    methods: Optional[list[str]] = None,
    mc_samples: int = 100_000,
    mc_seed: int = 42,
    tree_steps: int = 500,
    fd_points: int = 200,
) -> dict:
    """Cross-validate a European price across methods.

    Parameters
    ----------
    opt : OptionSpec
    kind : str
    methods : list of str, optional
        Subset of ``{"bs", "tree", "trinomial", "fdm", "mc"}``.  Default: all.

    Returns
    -------
    dict
        One entry per method (``"mc"`` is ``(price, stderr)``) plus
        ``"max_discrepancy"`` versus the closed form.
    """
    if methods is None:
        methods = list(METHODS)
    resolution = {"bs": 0, "tree": tree_steps, "trinomial": tree_steps,
                  "fdm": fd_points, "mc": mc_samples}

    results: dict = {}
    for m in methods:
        if m not in resolution:
            raise ValueError(f"Unknown method: {m}")
        results[m] = price_with(opt, kind, m, resolution[m], seed=mc_seed)

    ref = results.get("bs")
    if ref is not None:
        discs = []
        for k, v in results.items():
            if k == "bs":
                continue
            p = v[0] if isinstance(v, tuple) else v
            discs.append(abs(p - ref))
        results["max_discrepancy"] = max(discs) if discs else 0.0
    else:
        results["max_discrepancy"] = float("nan")

    return results


# ---------------------------------------------------------------------------
# Convergence analysis
# ---------------------------------------------------------------------------

def convergence_analysis(
    opt: OptionSpec,
    kind: str,
    method: str,
    param_values: list | np.ndarray,
    *,
    reference: Optional[float] = None,
) -> dict:
    """Error of ``method`` against ``reference`` as its resolution grows.

    Returns
    -------
    dict
        ``"params"``, ``"prices"``, ``"errors"``, ``"order"`` (estimated
        from a log-log fit, ``error ~ C / n^order``).
    """
    param_values = [int(v) for v in param_values]

    if reference is None:
        from .black_scholes import price as bs_price
        reference = bs_price(opt, kind)

    prices = []
    for val in param_values:
        p = price_with(opt, kind, method, val)
        prices.append(float(p[0] if isinstance(p, tuple) else p))

    errors = [abs(p - reference) for p in prices]

    order = float("nan")
    valid = [(v, e) for v, e in zip(param_values, errors) if e > 0]
    if len(valid) >= 2:
        log_v = np.log([v for v, _ in valid])
        log_e = np.log([e for _, e in valid])
        coeffs = np.polyfit(log_v, log_e, 1)
        order = -float(coeffs[0])

    return {
        "params": param_values,
        "prices": prices,
        "errors": errors,
        "order": order,
    }
