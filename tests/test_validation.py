import pytest
from numpricer import OptionSpec, CALL, PUT, bs_price
from numpricer.validation import cross_validate, convergence_analysis, price_with

OPT = OptionSpec(S0=100, K=100, T=1.0, r=0.05, sigma=0.2)


def test_cross_validate_all_methods():
    res = cross_validate(OPT, CALL, mc_samples=50_000, tree_steps=300, fd_points=150)
    for m in ("bs", "tree", "trinomial", "fdm", "mc"):
        assert m in res
    price, stderr = res["mc"]
    assert stderr > 0
    assert res["max_discrepancy"] < 0.15


def test_cross_validate_without_reference():
    res = cross_validate(OPT, PUT, methods=["tree", "fdm"], tree_steps=100, fd_points=100)
    assert set(res) == {"tree", "fdm", "max_discrepancy"}
    assert res["max_discrepancy"] != res["max_discrepancy"]


def test_unknown_method():
    with pytest.raises(ValueError):
        cross_validate(OPT, CALL, methods=["bogus"])
    with pytest.raises(ValueError):
        price_with(OPT, CALL, "bogus", 10)


def test_closed_form_is_european_only():
    with pytest.raises(ValueError):
        price_with(OPT, PUT, "bs", 0, american=True)


def test_american_tree_above_european():
    eu = price_with(OPT, PUT, "tree", 300)
    am = price_with(OPT, PUT, "tree", 300, american=True)
    assert am > eu


@pytest.mark.parametrize("method,params", [
    ("tree", [50, 100, 200, 400]),
    ("fdm", [50, 100, 200]),
])
def test_convergence_errors_shrink(method, params):
    res = convergence_analysis(OPT, CALL, method, params)
    assert res["params"] == params
    assert res["errors"][-1] < res["errors"][0]
    assert res["order"] > 0


def test_convergence_with_explicit_reference():
    ref = bs_price(OPT, CALL)
    res = convergence_analysis(OPT, CALL, "trinomial", [100, 400], reference=ref)
    assert len(res["prices"]) == 2
    assert all(abs(p - ref) < 0.05 for p in res["prices"])
