"""Tests for the finite-difference PDE solver."""

import math

import numpy as np
import pytest
from numpricer import OptionSpec, CALL, PUT, bs_price, bs_greeks
from numpricer.pde import (
    FdmScheme, TridiagonalOperator, GridSpec, Fdm1dSolver, fd_price, fd_greeks,
)
from numpricer.errors import ConfigurationError, InstabilityRisk, SingularOperator
from numpricer.time_grid import TimeGrid

OPT = OptionSpec(S0=100, K=100, T=1.0, r=0.05, sigma=0.2)
PROCESS = OPT.process()
N_S, N_t = 200, 200
AMERICAN_PUT = 6.0904


class TestTridiagonal:
    def test_solve_known_system(self):
        op = TridiagonalOperator([0.0, 1.0, 1.0], [4.0, 4.0, 4.0], [1.0, 1.0, 0.0])
        np.testing.assert_allclose(op.apply([1.0, 2.0, 3.0]), [6.0, 12.0, 14.0])
        np.testing.assert_allclose(op.solve([6.0, 12.0, 14.0]), [1.0, 2.0, 3.0], atol=1e-12)

    def test_identity(self):
        rhs = np.array([3.0, -1.0, 2.5, 7.0])
        np.testing.assert_allclose(TridiagonalOperator.identity(4).solve(rhs), rhs)

    def test_arithmetic(self):
        eye = TridiagonalOperator.identity(3)
        op = 2.0 * eye - eye
        np.testing.assert_allclose(op.diag, [1.0, 1.0, 1.0])
        assert (eye + eye).size == 3

    def test_singular(self):
        op = TridiagonalOperator(np.zeros(3), np.zeros(3), np.zeros(3))
        with pytest.raises(SingularOperator) as err:
            op.solve(np.ones(3))
        assert err.value.row == 0

    def test_size_mismatch(self):
        with pytest.raises(ConfigurationError):
            TridiagonalOperator.identity(3).apply(np.ones(4))
        with pytest.raises(ConfigurationError):
            TridiagonalOperator(np.zeros(2), np.ones(3), np.zeros(3))


class TestFDEuropean:
    def test_crank_nicolson_call_vs_bs(self):
        fd = fd_price(PROCESS, OPT.payoff(CALL), 1.0, points=N_S, steps=N_t)
        bs = bs_price(OPT, CALL)
        assert abs(fd - bs) < 1e-3, f"FD={fd:.6f} BS={bs:.6f}"

    def test_crank_nicolson_put_vs_bs(self):
        fd = fd_price(PROCESS, OPT.payoff(PUT), 1.0, points=N_S, steps=N_t)
        assert abs(fd - bs_price(OPT, PUT)) < 2e-3

    def test_damped_crank_nicolson(self):
        fd = fd_price(PROCESS, OPT.payoff(CALL), 1.0, points=N_S, steps=N_t, damping_steps=2)
        assert abs(fd - bs_price(OPT, CALL)) < 1e-3

    def test_implicit(self):
        fd = fd_price(PROCESS, OPT.payoff(CALL), 1.0, points=N_S, steps=N_t, scheme="implicit")
        assert abs(fd - bs_price(OPT, CALL)) < 2e-2

    def test_explicit_within_stability_limit(self):
        fd = fd_price(PROCESS, OPT.payoff(CALL), 1.0, points=101, steps=200, scheme="explicit")
        assert abs(fd - bs_price(OPT, CALL)) < 2e-2

    def test_put_call_parity(self):
        c = fd_price(PROCESS, OPT.payoff(CALL), 1.0)
        p = fd_price(PROCESS, OPT.payoff(PUT), 1.0)
        parity = OPT.S0 - OPT.K * math.exp(-OPT.r * OPT.T)
        assert abs((c - p) - parity) < 2e-3

    def test_spot_grid(self):
        fd = fd_price(PROCESS, OPT.payoff(CALL), 1.0, log_transform=False)
        assert abs(fd - bs_price(OPT, CALL)) < 1e-2


class TestStability:
    def test_explicit_violation_raises_before_stepping(self):
        solver = Fdm1dSolver(PROCESS, GridSpec(1.0, points=N_S), "explicit")
        with pytest.raises(InstabilityRisk) as err:
            solver.solve_backward(OPT.payoff(CALL), N_t)
        assert err.value.dt > err.value.dt_max

    def test_single_step_checked(self):
        solver = Fdm1dSolver(PROCESS, GridSpec(1.0, points=N_S), FdmScheme.EXPLICIT)
        with pytest.raises(InstabilityRisk):
            solver.step(OPT.payoff(CALL)(solver.spots), 0.9, 0.1)

    def test_implicit_is_never_rejected(self):
        solver = Fdm1dSolver(PROCESS, GridSpec(1.0, points=N_S), "implicit")
        solver.check_stability(0.5)


class TestFDAmerican:
    def test_put_geq_european(self):
        eu = fd_price(PROCESS, OPT.payoff(PUT), 1.0)
        am = fd_price(PROCESS, OPT.payoff(PUT), 1.0, american=True)
        assert am >= eu

    def test_put_reference_value(self):
        am = fd_price(PROCESS, OPT.payoff(PUT), 1.0, american=True)
        assert abs(am - AMERICAN_PUT) < 2e-2

    def test_put_geq_intrinsic_everywhere(self):
        solver = Fdm1dSolver(PROCESS, GridSpec(1.0))
        payoff = OPT.payoff(PUT)
        values = solver.solve_backward(payoff, N_t, exercise=payoff)
        assert np.all(values >= payoff(solver.spots) - 1e-12)


class TestSolver:
    def test_centre_on_node(self):
        solver = Fdm1dSolver(PROCESS, GridSpec(1.0))
        assert solver.spots[solver.center_index] == pytest.approx(100.0, rel=1e-12)
        assert len(solver.mesh) == 200

    def test_value_at_matches_node(self):
        solver = Fdm1dSolver(PROCESS, GridSpec(1.0))
        values = solver.solve_backward(OPT.payoff(CALL), N_t)
        assert solver.value_at(values, 100.0) == pytest.approx(values[solver.center_index])
        assert solver.value_at(values, 101.3) > solver.value_at(values, 100.0)

    def test_value_at_off_mesh(self):
        solver = Fdm1dSolver(PROCESS, GridSpec(1.0))
        with pytest.raises(ConfigurationError):
            solver.value_at(np.zeros(200), 1e4)

    def test_terminal_vector(self):
        solver = Fdm1dSolver(PROCESS, GridSpec(1.0))
        payoff = OPT.payoff(CALL)
        a = solver.solve_backward(payoff(solver.spots), N_t)
        b = solver.solve_backward(payoff, N_t)
        np.testing.assert_allclose(a, b)
        with pytest.raises(ConfigurationError):
            solver.solve_backward(np.zeros(10), N_t)

    def test_time_grid_must_reach_maturity(self):
        solver = Fdm1dSolver(PROCESS, GridSpec(1.0))
        with pytest.raises(ConfigurationError):
            solver.solve_backward(OPT.payoff(CALL), time_grid=TimeGrid(0.5, 10))

    def test_dirichlet_boundary(self):
        k, r = OPT.K, OPT.r
        solver = Fdm1dSolver(
            PROCESS, GridSpec(1.0), boundary="dirichlet",
            boundary_values=lambda s, tau: max(s - k * math.exp(-r * tau), 0.0),
        )
        values = solver.solve_backward(OPT.payoff(CALL), N_t, cell_averaging=True)
        assert abs(values[solver.center_index] - bs_price(OPT, CALL)) < 2e-3

    def test_dirichlet_needs_values(self):
        with pytest.raises(ConfigurationError):
            Fdm1dSolver(PROCESS, GridSpec(1.0), boundary="dirichlet")

    def test_bad_scheme(self):
        with pytest.raises(ConfigurationError):
            Fdm1dSolver(PROCESS, GridSpec(1.0), "leapfrog")

    def test_grid_spec_validation(self):
        with pytest.raises(ConfigurationError):
            GridSpec(1.0, points=3)
        with pytest.raises(ConfigurationError):
            GridSpec(0.0)


class TestFDGreeks:
    def test_against_closed_form(self):
        g = fd_greeks(PROCESS, OPT.payoff(CALL), 1.0)
        ref = bs_greeks(OPT, CALL)
        assert abs(g["delta"] - ref["delta"]) < 2e-3
        assert abs(g["gamma"] - ref["gamma"]) < 5e-4
        assert abs(g["theta"] - ref["theta"]) < 5e-2


class TestCellAveraging:
    def test_average_at_strike_node(self):
        solver = Fdm1dSolver(PROCESS, GridSpec(1.0))
        dx, k = solver.dx, OPT.K
        averages = solver.cell_averages(OPT.payoff(CALL))
        # (1/dx) * integral of K(e^u - 1) over [0, dx/2]
        expected = k * (math.expm1(0.5 * dx) - 0.5 * dx) / dx
        assert averages[solver.center_index] == pytest.approx(expected, rel=1e-6)

    def test_smooth_region_matches_exact_integral(self):
        solver = Fdm1dSolver(PROCESS, GridSpec(1.0))
        dx = solver.dx
        averages = solver.cell_averages(OPT.payoff(CALL))
        top = solver.spots[-1]
        expected = top * math.sinh(0.5 * dx) / (0.5 * dx) - OPT.K
        assert averages[-1] == pytest.approx(expected, rel=1e-9)
        assert np.all(averages[:solver.center_index - 1] == 0.0)

    def test_plain_nodes_understate_the_kink(self):
        plain = fd_price(PROCESS, OPT.payoff(CALL), 1.0, cell_averaging=False)
        averaged = fd_price(PROCESS, OPT.payoff(CALL), 1.0)
        bs = bs_price(OPT, CALL)
        assert plain < averaged
        assert abs(averaged - bs) < abs(plain - bs)

    def test_default_grid_put_within_tolerance(self):
        for std_devs in (3.0, 4.0):
            fd = fd_price(PROCESS, OPT.payoff(PUT), 1.0, std_devs=std_devs)
            assert abs(fd - bs_price(OPT, PUT)) < 1e-3

    def test_vector_terminal_condition_untouched(self):
        solver = Fdm1dSolver(PROCESS, GridSpec(1.0))
        payoff = OPT.payoff(CALL)
        a = solver.solve_backward(payoff(solver.spots), N_t, cell_averaging=True)
        b = solver.solve_backward(payoff, N_t)
        np.testing.assert_allclose(a, b)

    def test_subintervals_validated(self):
        solver = Fdm1dSolver(PROCESS, GridSpec(1.0))
        with pytest.raises(ConfigurationError):
            solver.cell_averages(OPT.payoff(CALL), subintervals=6)
