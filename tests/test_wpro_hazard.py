import numpy as np
import pytest

import wpro_hazard as hz

METHODS = [
    ("quad", {}),
    ("mc", dict(n_draws=200_000, seed=1)),
    ("onset", {}),
]


@pytest.mark.parametrize("method,kw", METHODS)
def test_hazard_survival_invariants(method, kw):
    h, s = hz.build_hazard(0.02, 75, method=method, **kw)

    assert len(h) == len(s) == 75
    assert ((h >= 0) & (h <= 1)).all()
    assert s[0] == 1
    assert (np.diff(s) <= 0).all()
    assert (s * h >= 0).all()


def test_gamma_alt():
    g = hz.gamma_alt(5.1, 0.86)
    assert g.mean() == pytest.approx(5.1)
    assert g.std() / g.mean() == pytest.approx(0.86)


def test_survival_recursion():
    s = hz.survival([0.5, 0.5, 0.5])
    np.testing.assert_allclose(s, [1, 0.5, 0.25])


def test_mixing_telescopes_to_cdf():
    "Sum of s * h over days 1..n is the death probability by n + .5"
    ifr, n = 0.3, 60
    h, s = hz.build_hazard(ifr, n)
    f = hz.mixing_function(h, s)
    cdf = hz.quad_cdf(*hz.INF2ONSET, *hz.ONSET2DEATH)
    assert f.sum() == pytest.approx(ifr * cdf(n + 0.5)[0], rel=1e-6)


def test_first_day_hazard():
    ifr = 0.5
    h, _ = hz.build_hazard(ifr, 10)
    cdf = hz.quad_cdf(*hz.INF2ONSET, *hz.ONSET2DEATH)
    assert h[0] == pytest.approx(ifr * cdf(1.5)[0])
    expected = ifr * (cdf(2.5)[0] - cdf(1.5)[0]) / (1 - ifr * cdf(1.5)[0])
    assert h[1] == pytest.approx(expected)


def test_mc_close_to_quad():
    cdf_q = hz.quad_cdf(*hz.INF2ONSET, *hz.ONSET2DEATH)
    cdf_mc = hz.mc_cdf(*hz.INF2ONSET, *hz.ONSET2DEATH, n_draws=500_000, seed=0)
    us = np.array([5.0, 15.0, 23.9, 40.0])
    np.testing.assert_allclose(cdf_mc(us), cdf_q(us), atol=0.01)


def test_onset_hazard():
    ifr = 0.1
    h, _ = hz.build_hazard(ifr, 5, method="onset")
    g = hz.gamma_alt(*hz.ONSET2DEATH)
    assert h[0] == pytest.approx(ifr * g.cdf(1))
    assert h[3] == pytest.approx(
        (ifr * g.cdf(4) - ifr * g.cdf(3)) / (1 - ifr * g.cdf(3))
    )


def test_zero_ifr():
    h, s = hz.build_hazard(0.0, 20)
    assert (h == 0).all()
    assert (s == 1).all()


def test_unknown_method():
    with pytest.raises(ValueError):
        hz.build_hazard(0.01, 10, method="nope")


def test_serial_interval():
    si = hz.discretize_serial_interval(100)
    assert len(si) == 100
    assert (si >= 0).all()
    assert si.sum() == pytest.approx(1, abs=1e-4)
    assert si.argmax() in (3, 4)
