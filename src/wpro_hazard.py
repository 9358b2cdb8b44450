"""
Discretised infection-to-death hazard and survival curves.

Time from infection to death is the sum of two gamma delays:
infection to onset (mean 5.1, cv 0.86) and onset to death
(mean 18.8, cv 0.45). Scaling that CDF by the IFR gives the
probability that an infected person has died by time u. It is then
discretised to days 1..N2.
"""
import numpy as np
from scipy import integrate, stats

INF2ONSET = (5.1, 0.86)
ONSET2DEATH = (18.8, 0.45)
SERIAL_INTERVAL = (6.5, 0.62)
N_DRAWS = 5_000_000


def gamma_alt(mean, cv):
    "Gamma parameterised by mean and coefficient of variation."
    shape = 1 / cv ** 2
    return stats.gamma(a=shape, scale=mean / shape)


def quad_cdf(mean1, cv1, mean2, cv2):
    """
    CDF of x1 + x2 by numerical convolution:
    F(u) = int_0^u f1(t) F2(u - t) dt
    """
    g1 = gamma_alt(mean1, cv1)
    g2 = gamma_alt(mean2, cv2)

    def cdf(u):
        u = np.atleast_1d(np.asarray(u, dtype=float))
        res = np.zeros(len(u))
        for i, ui in enumerate(u):
            if ui > 0:
                res[i], _ = integrate.quad(
                    lambda t: g1.pdf(t) * g2.cdf(ui - t), 0, ui, limit=200
                )
        return res

    return cdf


def mc_cdf(mean1, cv1, mean2, cv2, n_draws=N_DRAWS, seed=None):
    "Empirical CDF of `n_draws` simulated x1 + x2."
    rng = np.random.default_rng(seed)
    s1, s2 = 1 / cv1 ** 2, 1 / cv2 ** 2
    x = rng.gamma(s1, mean1 / s1, n_draws) + rng.gamma(s2, mean2 / s2, n_draws)
    x.sort()

    def cdf(u):
        u = np.atleast_1d(np.asarray(u, dtype=float))
        return np.searchsorted(x, u, side="right") / n_draws

    return cdf


def conditional_hazard(upper, lower):
    """
    P(die in (lower, upper] | alive at lower), given cumulative
    death probabilities at both ends.
    """
    denom = 1 - lower
    h = np.divide(
        upper - lower, denom, out=np.zeros_like(upper), where=denom > 0
    )
    return np.clip(h, 0, 1)


def survival(h):
    """
    s[0] = 1; s[i] = s[i-1] * (1 - h[i-1])
    """
    h = np.asarray(h, dtype=float)
    if not len(h):
        return h.copy()
    return np.concatenate([[1.0], np.cumprod(1 - h)[:-1]])


def mixing_function(h, s):
    "Probability of death on each day since infection."
    return np.asarray(s) * np.asarray(h)


def build_hazard(
    ifr,
    horizon,
    mean1=INF2ONSET[0],
    cv1=INF2ONSET[1],
    mean2=ONSET2DEATH[0],
    cv2=ONSET2DEATH[1],
    method="quad",
    n_draws=N_DRAWS,
    seed=None,
):
    """
    Return (hazard, survival), both of length `horizon`.

    method:
      quad: exact convolution of the two gamma delays
      mc: Monte Carlo ECDF of the summed delays
      onset: single onset-to-death gamma, the quick approximation
    For day d = 1..horizon,
      h[1] = C(1.5) - C(0)
      h[d] = (C(d + .5) - C(d - .5)) / (1 - C(d - .5))
    with C = ifr * F.
    """
    days = np.arange(1, horizon + 1, dtype=float)
    if method == "onset":
        g = gamma_alt(mean2, cv2)
        upper = ifr * g.cdf(days)
        lower = ifr * g.cdf(days - 1)
    else:
        if method == "quad":
            cdf = quad_cdf(mean1, cv1, mean2, cv2)
        elif method == "mc":
            cdf = mc_cdf(mean1, cv1, mean2, cv2, n_draws=n_draws, seed=seed)
        else:
            raise ValueError(f"Unknown hazard method {method!r}")
        upper = ifr * cdf(days + 0.5)
        lower = ifr * cdf(np.concatenate([[0.0], days[1:] - 0.5]))

    h = conditional_hazard(upper, lower)
    return h, survival(h)


def discretize_serial_interval(horizon, mean=SERIAL_INTERVAL[0], cv=SERIAL_INTERVAL[1]):
    """
    Daily serial interval weights, discretised like the hazard:
    SI[1] = F(1.5) - F(0), SI[d] = F(d + .5) - F(d - .5).
    """
    g = gamma_alt(mean, cv)
    days = np.arange(1, horizon + 1, dtype=float)
    lower = g.cdf(np.concatenate([[0.0], days[1:] - 0.5]))
    return g.cdf(days + 0.5) - lower
