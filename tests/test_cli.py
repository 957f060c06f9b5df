import pytest
from numpricer.cli import main


COMMON = ["--S0", "100", "--K", "100", "--T", "1", "--r", "0.05", "--sigma", "0.2"]


def _price(out: str) -> float:
    return float(out.split()[0])


def test_tree(capsys):
    main(["tree", *COMMON, "--steps", "500"])
    assert abs(_price(capsys.readouterr().out) - 10.4506) < 1e-2


def test_tree_american_put(capsys):
    main(["tree", *COMMON, "--kind", "put", "--american", "--variant", "leisen_reimer",
          "--steps", "301"])
    assert abs(_price(capsys.readouterr().out) - 6.0904) < 1e-2


def test_fd(capsys):
    main(["fd", *COMMON])
    assert abs(_price(capsys.readouterr().out) - 10.4506) < 2e-3


def test_mc(capsys):
    main(["mc", *COMMON, "--samples", "50000", "--seed", "1"])
    out = capsys.readouterr().out
    assert "stderr" in out
    assert abs(_price(out) - 10.4506) < 0.3


def test_compare(capsys):
    main(["compare", *COMMON, "--samples", "20000", "--steps", "200", "--points", "100"])
    out = capsys.readouterr().out
    for name in ("bs", "tree", "trinomial", "fdm", "mc", "max_discrepancy"):
        assert name in out


def test_pricing_error_exits_with_code_2(capsys):
    with pytest.raises(SystemExit) as err:
        main(["tree", "--S0", "100", "--K", "100", "--T", "1", "--r", "0.05", "--sigma", "-0.2"])
    assert err.value.code == 2
    assert "sigma" in capsys.readouterr().err


def test_bad_kind():
    with pytest.raises(SystemExit):
        main(["tree", *COMMON, "--kind", "straddle"])
