import argparse
import logging

from .core import OptionSpec, CALL, PUT
from .lattice import price_american, price_european
from .monte_carlo import mc_price
from .pde import fd_price
from .errors import PricingError
from .validation import cross_validate


def _kind(s: str):
    s = s.lower()
    if s in {"call", "c"}:
        return CALL
    if s in {"put", "p"}:
        return PUT
    raise argparse.ArgumentTypeError("kind must be 'call' or 'put'")


def add_common(parser: argparse.ArgumentParser):
    parser.add_argument("--S0", type=float, required=True)
    parser.add_argument("--K", type=float, required=True)
    parser.add_argument("--T", type=float, required=True, help="years")
    parser.add_argument("--r", type=float, required=True, help="cont. risk-free")
    parser.add_argument("--sigma", type=float, required=True)
    parser.add_argument("--q", type=float, default=0.0, help="cont. dividend yield")
    parser.add_argument("--kind", type=_kind, default=CALL, help="call|put")


def _option(args) -> OptionSpec:
    return OptionSpec(args.S0, args.K, args.T, args.r, args.sigma, args.q)


def cmd_tree(args):
    opt = _option(args)
    fn = price_american if args.american else price_european
    px = fn(opt.process(), opt.payoff(args.kind), opt.T, args.steps,
            lattice=args.lattice, variant=args.variant)
    print(f"{px:.10f}")


def cmd_fd(args):
    opt = _option(args)
    px = fd_price(opt.process(), opt.payoff(args.kind), opt.T,
                  points=args.points, steps=args.steps, scheme=args.scheme,
                  american=args.american, damping_steps=args.damping_steps)
    print(f"{px:.10f}")


def cmd_mc(args):
    opt = _option(args)
    res = mc_price(opt.process(), opt.payoff(args.kind), opt.T,
                   samples=args.samples, seed=args.seed, steps=args.steps,
                   antithetic=not args.no_antithetic, control_variate=args.cv,
                   workers=args.workers)
    print(f"{res.price:.10f}  (stderr {res.error_estimate:.10f})")


def cmd_compare(args):
    opt = _option(args)
    res = cross_validate(opt, args.kind, mc_samples=args.samples, mc_seed=args.seed,
                         tree_steps=args.steps, fd_points=args.points)
    for name, value in res.items():
        if isinstance(value, tuple):
            print(f"{name:>16}  {value[0]:.10f}  (stderr {value[1]:.10f})")
        else:
            print(f"{name:>16}  {value:.10f}")


def main(argv=None):
    p = argparse.ArgumentParser(prog="numpricer", description="Numerical options pricing CLI")
    p.add_argument("--log-level", default="WARNING",
                   choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = p.add_subparsers(dest="cmd", required=True)

    # Lattice
    p_tree = sub.add_parser("tree", help="binomial / trinomial lattice price")
    add_common(p_tree)
    p_tree.add_argument("--steps", type=int, default=500)
    p_tree.add_argument("--lattice", choices=["binomial", "trinomial"], default="binomial")
    p_tree.add_argument("--variant", default="crr",
                        choices=["crr", "jarrow_rudd", "additive_eqp", "trigeorgis",
                                 "tian", "leisen_reimer", "joshi4"])
    p_tree.add_argument("--american", action="store_true")
    p_tree.set_defaults(func=cmd_tree)

    # Finite differences
    p_fd = sub.add_parser("fd", help="finite-difference price")
    add_common(p_fd)
    p_fd.add_argument("--points", type=int, default=200)
    p_fd.add_argument("--steps", type=int, default=200)
    p_fd.add_argument("--scheme", default="crank_nicolson",
                      choices=["explicit", "implicit", "crank_nicolson"])
    p_fd.add_argument("--damping-steps", dest="damping_steps", type=int, default=0)
    p_fd.add_argument("--american", action="store_true")
    p_fd.set_defaults(func=cmd_fd)

    # Monte Carlo
    p_mc = sub.add_parser("mc", help="Monte Carlo price")
    add_common(p_mc)
    p_mc.add_argument("--samples", type=int, default=100_000)
    p_mc.add_argument("--steps", type=int, default=1)
    p_mc.add_argument("--seed", type=int, default=None)
    p_mc.add_argument("--workers", type=int, default=1)
    p_mc.add_argument("--no-antithetic", action="store_true")
    p_mc.add_argument("--cv", action="store_true", help="terminal-spot control variate")
    p_mc.set_defaults(func=cmd_mc)

    # All methods side by side
    p_cmp = sub.add_parser("compare", help="price with every method")
    add_common(p_cmp)
    p_cmp.add_argument("--steps", type=int, default=500)
    p_cmp.add_argument("--points", type=int, default=200)
    p_cmp.add_argument("--samples", type=int, default=100_000)
    p_cmp.add_argument("--seed", type=int, default=42)
    p_cmp.set_defaults(func=cmd_compare)

    args = p.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        args.func(args)
    except PricingError as exc:
        p.exit(2, f"numpricer: error: {exc}\n")


if __name__ == "__main__":
    main()
