"""Monte Carlo engine against closed-form Black-Scholes prices."""

import math
import warnings

import numpy as np
import pytest
from numpricer import OptionSpec, CALL, PUT, bs_price, bs_digital_price, CashOrNothingPayoff
from numpricer.monte_carlo import (
    MonteCarloModel, McResult, value_with_tolerance, simulate_parallel, mc_price,
)
from numpricer.path_pricers import (
    EuropeanPathPricer, ArithmeticAsianPathPricer, BarrierPathPricer,
)
from numpricer.paths import PathGenerator, AntitheticPathGenerator
from numpricer.errors import ConfigurationError, ConvergenceWarning
from numpricer.time_grid import TimeGrid

OPT = OptionSpec(S0=100, K=100, T=1.0, r=0.05, sigma=0.2)
PROCESS = OPT.process()
DF = math.exp(-OPT.r * OPT.T)
GRID = TimeGrid(1.0, 1)


def _model(seed, antithetic=False, **kw):
    cls = AntitheticPathGenerator if antithetic else PathGenerator
    gen = cls(PROCESS, GRID, seed=seed)
    return MonteCarloModel(gen, EuropeanPathPricer(OPT.payoff(CALL), DF), **kw)


class TestMcPrice:
    def test_european_call_within_three_se(self):
        res = mc_price(PROCESS, OPT.payoff(CALL), OPT.T, samples=200_000, seed=42)
        assert isinstance(res, McResult)
        assert res.samples == 200_000
        assert abs(res.price - bs_price(OPT, CALL)) < 3 * res.error_estimate

    def test_put(self):
        res = mc_price(PROCESS, OPT.payoff(PUT), OPT.T, samples=200_000, seed=7)
        assert abs(res.price - bs_price(OPT, PUT)) < 3 * res.error_estimate

    def test_coverage_with_a_million_paired_paths(self):
        ref = bs_price(OPT, CALL)
        hits = 0
        for seed in range(50):
            res = mc_price(PROCESS, OPT.payoff(CALL), OPT.T, samples=500_000, seed=seed,
                           antithetic=True, batch_size=500_000)
            assert res.samples == 500_000
            hits += abs(res.price - ref) < 3 * res.error_estimate
        assert hits >= 49

    def test_coverage_over_seeds(self):
        ref = bs_price(OPT, CALL)
        hits = 0
        for seed in range(20):
            res = mc_price(PROCESS, OPT.payoff(CALL), OPT.T, samples=20_000,
                           seed=seed, antithetic=False)
            hits += abs(res.price - ref) < 3 * res.error_estimate
        assert hits >= 18

    def test_same_seed_same_result(self):
        a = mc_price(PROCESS, OPT.payoff(CALL), OPT.T, samples=10_000, seed=3)
        b = mc_price(PROCESS, OPT.payoff(CALL), OPT.T, samples=10_000, seed=3)
        assert a == b

    def test_digital(self):
        payoff = CashOrNothingPayoff(OPT.K, 1.0, CALL)
        res = mc_price(PROCESS, payoff, OPT.T, samples=200_000, seed=5)
        assert abs(res.price - bs_digital_price(OPT, CALL)) < 3 * res.error_estimate

    def test_control_variate_reduces_error(self):
        plain = mc_price(PROCESS, OPT.payoff(CALL), OPT.T, samples=50_000, seed=1,
                         antithetic=False)
        cv = mc_price(PROCESS, OPT.payoff(CALL), OPT.T, samples=50_000, seed=1,
                      antithetic=False, control_variate=True)
        assert cv.error_estimate < plain.error_estimate
        assert abs(cv.price - bs_price(OPT, CALL)) < 3 * cv.error_estimate

    def test_sobol_with_brownian_bridge(self):
        res = mc_price(PROCESS, OPT.payoff(CALL), OPT.T, samples=2 ** 15, seed=17,
                       antithetic=False, steps=8, sequence="sobol", brownian_bridge=True)
        assert abs(res.price - bs_price(OPT, CALL)) < 0.05

    def test_unknown_sequence(self):
        with pytest.raises(ConfigurationError):
            mc_price(PROCESS, OPT.payoff(CALL), OPT.T, samples=10, sequence="halton")


class TestMonteCarloModel:
    def test_zero_samples_is_noop(self):
        model = _model(0)
        model.add_samples(0)
        assert model.sample_accumulator.samples == 0
        model.add_samples(10)
        before = model.results()
        model.add_samples(0)
        assert model.results() == before

    def test_negative_samples(self):
        with pytest.raises(ConfigurationError):
            _model(0).add_samples(-1)

    def test_antithetic_sample_is_pair_average(self):
        model = _model(11, antithetic=True)
        model.add_samples(5)
        values = AntitheticPathGenerator(PROCESS, GRID, seed=11).next_values(10)
        pricer = EuropeanPathPricer(OPT.payoff(CALL), DF)
        pairs = pricer.price_values(GRID.times, values).reshape(5, 2).mean(axis=1)
        assert model.sample_accumulator.samples == 5
        assert model.results()[0] == pytest.approx(pairs.mean())

    def test_pairs_are_mirrored_draws(self):
        gen = AntitheticPathGenerator(PROCESS, GRID, seed=13)
        log_spot = EuropeanPathPricer(np.log, 1.0)
        model = MonteCarloModel(gen, log_spot)
        model.add_samples(3)
        # ln S_T over a Z/-Z pair averages to the drift exactly
        expected = math.log(OPT.S0) + (OPT.r - 0.5 * OPT.sigma ** 2) * OPT.T
        assert model.sample_accumulator.min == pytest.approx(expected, abs=1e-12)
        assert model.sample_accumulator.max == pytest.approx(expected, abs=1e-12)

    def test_unpaired_pending_path_is_rejected(self):
        gen = AntitheticPathGenerator(PROCESS, GRID, seed=13)
        model = MonteCarloModel(gen, EuropeanPathPricer(np.log, 1.0))
        gen.next()
        assert not gen.pair_aligned
        with pytest.raises(ConfigurationError):
            model.add_samples(1)
        assert model.sample_accumulator.samples == 0
        gen.next()
        assert gen.pair_aligned
        model.add_samples(2)
        expected = math.log(OPT.S0) + (OPT.r - 0.5 * OPT.sigma ** 2) * OPT.T
        assert model.results()[0] == pytest.approx(expected, abs=1e-12)

    def test_next_pairs_shape(self):
        gen = AntitheticPathGenerator(PROCESS, TimeGrid(1.0, 3), seed=2)
        values = gen.next_pairs(4)
        assert values.shape == (8, 4)
        assert gen.pair_aligned

    def test_blocks_do_not_change_result(self):
        a, b = _model(4), _model(4)
        a.add_samples(1000, block_size=1000)
        b.add_samples(1000, block_size=64)
        assert a.results()[0] == pytest.approx(b.results()[0], rel=1e-12)

    def test_control_variate_needs_value(self):
        with pytest.raises(ConfigurationError):
            _model(0, control_variate_pricer=EuropeanPathPricer(OPT.payoff(CALL), DF))


class TestValueWithTolerance:
    def test_reaches_tolerance(self):
        res = value_with_tolerance(_model(21), 0.1)
        assert res.converged
        assert res.error_estimate <= 0.1

    def test_warns_at_sample_cap(self):
        with pytest.warns(ConvergenceWarning):
            res = value_with_tolerance(_model(2), 1e-4, max_samples=2000)
        assert not res.converged
        assert res.samples == 2000

    def test_bad_tolerance(self):
        with pytest.raises(ConfigurationError):
            value_with_tolerance(_model(0), 0.0)


class TestParallel:
    def test_result_independent_of_workers(self):
        pricer = EuropeanPathPricer(OPT.payoff(CALL), DF)
        serial = simulate_parallel(PROCESS, pricer, GRID, 20_000, seed=9,
                                   batch_size=5_000, workers=1)
        pooled = simulate_parallel(PROCESS, pricer, GRID, 20_000, seed=9,
                                   batch_size=5_000, workers=2)
        assert serial.samples == pooled.samples == 20_000
        assert pooled.price == pytest.approx(serial.price, rel=1e-12)
        assert pooled.error_estimate == pytest.approx(serial.error_estimate, rel=1e-12)

    def test_zero_samples(self):
        pricer = EuropeanPathPricer(OPT.payoff(CALL), DF)
        res = simulate_parallel(PROCESS, pricer, GRID, 0, seed=1)
        assert res.samples == 0
        assert math.isnan(res.price)


class TestPathPricers:
    def test_asian_below_european(self):
        grid = TimeGrid(1.0, 12)
        values = PathGenerator(PROCESS, grid, seed=6).next_values(50_000)
        european = EuropeanPathPricer(OPT.payoff(CALL), DF).price_values(grid.times, values)
        asian = ArithmeticAsianPathPricer(OPT.payoff(CALL), DF).price_values(grid.times, values)
        assert asian.mean() < european.mean()

    def test_in_out_parity(self):
        grid = TimeGrid(1.0, 50)
        values = PathGenerator(PROCESS, grid, seed=12).next_values(5_000)
        payoff = OPT.payoff(CALL)
        vanilla = EuropeanPathPricer(payoff, DF).price_values(grid.times, values)
        for up in (True, False):
            barrier = 120.0 if up else 85.0
            prefix = "up" if up else "down"
            knock_out = BarrierPathPricer(payoff, DF, barrier, f"{prefix}-and-out")
            knock_in = BarrierPathPricer(payoff, DF, barrier, f"{prefix}-and-in")
            total = knock_out.price_values(grid.times, values) + knock_in.price_values(grid.times, values)
            np.testing.assert_allclose(total, vanilla)

    def test_rebate_paid_when_knocked_out(self):
        pricer = BarrierPathPricer(OPT.payoff(CALL), 1.0, 110.0, "up-and-out", rebate=2.0)
        values = np.array([[100.0, 115.0, 120.0], [100.0, 105.0, 108.0]])
        np.testing.assert_allclose(pricer.price_values(None, values), [2.0, 8.0])

    def test_single_path_call(self):
        path = PathGenerator(PROCESS, GRID, seed=1).next()
        pricer = EuropeanPathPricer(OPT.payoff(CALL), DF)
        assert pricer(path) == pytest.approx(DF * max(path.back - OPT.K, 0.0))
        assert pricer.value(path) == pricer(path)

    def test_bad_barrier_type(self):
        with pytest.raises(ConfigurationError):
            BarrierPathPricer(OPT.payoff(CALL), DF, 120.0, "sideways")
