from dataclasses import dataclass
from enum import Enum

import numpy as np
import stan

from model_transformations import N0
from wpro_errors import SolverError

EXTRACT_PARS = ["prediction", "E_deaths", "E_deaths0", "Rt", "alpha", "mu"]


class RunMode(Enum):
    debug = "debug"
    standard = "standard"
    full = "full"


@dataclass(frozen=True)
class SamplerProfile:
    iter: int
    warmup: int
    chains: int
    thin: int = 1
    # None -> Stan's defaults
    adapt_delta: float = None
    max_treedepth: int = None

    def sample_kw(self):
        kw = dict(
            num_chains=self.chains,
            num_samples=self.iter - self.warmup,
            num_warmup=self.warmup,
            num_thin=self.thin,
        )
        if self.adapt_delta is not None:
            kw["delta"] = self.adapt_delta
        if self.max_treedepth is not None:
            kw["max_depth"] = self.max_treedepth
        return kw


PROFILES = {
    RunMode.debug: SamplerProfile(iter=40, warmup=20, chains=2),
    RunMode.standard: SamplerProfile(
        iter=200, warmup=100, chains=4, thin=4, adapt_delta=0.90, max_treedepth=10
    ),
    RunMode.full: SamplerProfile(
        iter=4000, warmup=2000, chains=8, thin=4, adapt_delta=0.95, max_treedepth=12
    ),
}


class Base:
    stan_code = """
    /*
    Renewal model: infections follow the serial interval weighted sum
    of past infections times Rt, with Rt scaled down by each active
    NPI. Expected deaths are infections convolved with the
    infection-to-death distribution f.
    M: # countries
    N0: # days of imputed infections at the start
    N: # observed days per country
    N2: # observed + forecast days
    cases, deaths: -1 on forecast days
    */
    data {
        int<lower=1> M;
        int<lower=1> N0;
        array[M] int<lower=1> N;
        int<lower=1> N2;
        int<lower=1> p;
        vector[N2] x1;
        vector[N2] x2;
        array[N2, M] int cases;
        array[N2, M] int deaths;
        matrix[N2, M] f;
        matrix[N2, M] covariate1;
        matrix[N2, M] covariate2;
        matrix[N2, M] covariate3;
        matrix[N2, M] covariate4;
        matrix[N2, M] covariate5;
        matrix[N2, M] covariate6;
        array[M] int EpidemicStart;
        array[N2] real SI;
    }

    parameters {
        array[M] real<lower=0> mu;
        array[6] real<lower=0> alpha;
        real<lower=0> kappa;
        array[M] real<lower=0> y;
        real<lower=0> phi;
        real<lower=0> tau;
    }

    transformed parameters {
        real convolution;
        matrix[N2, M] prediction = rep_matrix(0, N2, M);
        matrix[N2, M] E_deaths = rep_matrix(0, N2, M);
        matrix[N2, M] Rt = rep_matrix(0, N2, M);
        for (m in 1:M) {
            prediction[1:N0, m] = rep_vector(y[m], N0);
            Rt[, m] = mu[m] * exp(
                covariate1[, m] * (-alpha[1]) + covariate2[, m] * (-alpha[2])
                + covariate3[, m] * (-alpha[3]) + covariate4[, m] * (-alpha[4])
                + covariate5[, m] * (-alpha[5]) + covariate6[, m] * (-alpha[6])
            );
            for (i in (N0 + 1):N2) {
                convolution = 0;
                for (j in 1:(i - 1)) {
                    convolution += prediction[j, m] * SI[i - j];
                }
                prediction[i, m] = Rt[i, m] * convolution;
            }

            E_deaths[1, m] = 1e-9;
            for (i in 2:N2) {
                E_deaths[i, m] = 0;
                for (j in 1:(i - 1)) {
                    E_deaths[i, m] += prediction[j, m] * f[i - j, m];
                }
            }
        }
    }

    model {
        tau ~ exponential(0.03);
        for (m in 1:M) {
            y[m] ~ exponential(1.0 / tau);
        }
        phi ~ normal(0, 5);
        kappa ~ normal(0, 0.5);
        mu ~ normal(2.4, kappa);
        alpha ~ gamma(0.5, 1);
        for (m in 1:M) {
            for (i in EpidemicStart[m]:N[m]) {
                deaths[i, m] ~ neg_binomial_2(E_deaths[i, m], phi);
            }
        }
    }

    generated quantities {
        // Counterfactual: no interventions, Rt = mu
        real convolution0;
        matrix[N2, M] prediction0 = rep_matrix(0, N2, M);
        matrix[N2, M] E_deaths0 = rep_matrix(0, N2, M);
        for (m in 1:M) {
            prediction0[1:N0, m] = rep_vector(y[m], N0);
            for (i in (N0 + 1):N2) {
                convolution0 = 0;
                for (j in 1:(i - 1)) {
                    convolution0 += prediction0[j, m] * SI[i - j];
                }
                prediction0[i, m] = mu[m] * convolution0;
            }

            E_deaths0[1, m] = 1e-9;
            for (i in 2:N2) {
                E_deaths0[i, m] = 0;
                for (j in 1:(i - 1)) {
                    E_deaths0[i, m] += prediction0[j, m] * f[i - j, m];
                }
            }
        }
    }
    """

    def mk_data(bundle):
        covs = list(bundle.covariates.values())
        data = dict(
            M=bundle.n_countries,
            N0=N0,
            N=bundle.lengths,
            N2=bundle.horizon,
            p=len(covs),
            x1=bundle.x1,
            x2=bundle.x2,
            cases=bundle.cases,
            deaths=bundle.deaths,
            f=bundle.f,
            EpidemicStart=bundle.epidemic_start,
            SI=bundle.serial_interval,
            **{f"covariate{i}": cov for i, cov in enumerate(covs, 1)},
        )
        return data


MODELS = {"base": Base}


def json_ready(data):
    "numpy -> plain python, which is what Stan's data reader wants."
    res = {}
    for k, v in data.items():
        if isinstance(v, np.ndarray):
            v = v.tolist()
        elif isinstance(v, np.generic):
            v = v.item()
        res[k] = v
    return res


def sample_posterior(model, data, profile, seed=None):
    """
    Compile `model.stan_code` and sample. Any failure from Stan is
    raised as SolverError; there are no retries.
    """
    kw = profile.sample_kw()
    print(f"Sampling {model.__name__}: {kw}")
    try:
        posterior = stan.build(model.stan_code, data=json_ready(data), random_seed=seed)
        fit = posterior.sample(**kw)
    except (RuntimeError, ValueError) as e:
        raise SolverError(f"Stan failed for model {model.__name__}: {e}") from e
    print_diagnostics(fit)
    return fit


def print_diagnostics(fit):
    draws = fit.to_frame()
    if "divergent__" in draws:
        n_divergent = int(draws["divergent__"].sum())
        print(f"Number of divergent transitions: {n_divergent}")


def extract_samples(fit, pars=EXTRACT_PARS):
    """
    Posterior arrays with draws on the first axis, e.g.
    `prediction` -> (draws, N2, M).
    """
    return {
        p: np.moveaxis(np.asarray(fit[p]), -1, 0) for p in pars if p in fit
    }
