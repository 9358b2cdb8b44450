from collections import OrderedDict
from dataclasses import dataclass
from types import MappingProxyType

import numpy as np
import pandas as pd

import wpro_hazard as hz
from wpro_errors import SchemaError
from wpro_utils import repad

INTERVENTIONS = [
    "schools_universities",
    "travel_restrictions",
    "public_events",
    "sport",
    "lockdown",
    "social_distancing_encouraged",
    "self_isolating_if_ill",
]
ANY_INTERVENTION = [
    "schools_universities",
    "public_events",
    "lockdown",
    "social_distancing_encouraged",
    "self_isolating_if_ill",
]
N_COVARIATES = 6
# Days of imputed infections at the start of each series
N0 = 6


@dataclass(frozen=True)
class TensorBundle:
    countries: tuple
    horizon: int
    lengths: np.ndarray
    epidemic_start: np.ndarray
    covariates: MappingProxyType
    f: np.ndarray
    cases: np.ndarray
    deaths: np.ndarray
    serial_interval: np.ndarray
    x1: np.ndarray
    x2: np.ndarray

    @property
    def n_countries(self):
        return len(self.countries)


####################
# Covariate policy #
####################
def any_intervention_policy(covariates):
    """
    Stan model takes 6 covariates. Drop travel restrictions and sport,
    and add 'any intervention': on once any of school closure, public
    events, lockdown, social distancing or self isolation is on.
    """
    any_int = np.stack([covariates[c] for c in ANY_INTERVENTION]).max(axis=0)
    return OrderedDict(
        [
            ("schools_universities", covariates["schools_universities"].copy()),
            ("self_isolating_if_ill", covariates["self_isolating_if_ill"].copy()),
            ("public_events", covariates["public_events"].copy()),
            ("any_intervention", (any_int >= 1).astype(int)),
            ("lockdown", covariates["lockdown"].copy()),
            (
                "social_distancing_encouraged",
                covariates["social_distancing_encouraged"].copy(),
            ),
        ]
    )


def npi_off(covariates):
    "All covariates zeroed: NPIs have no effect (counterfactual runs)."
    on = any_intervention_policy(covariates)
    return OrderedDict([(k, np.zeros_like(v)) for k, v in on.items()])


POLICIES = {"any_intervention": any_intervention_policy, "off": npi_off}


def apply_policy(covariates, npi_on, policy=None):
    """
    Map the 7 raw intervention matrices (N2 x M) to the 6 the model
    takes. `policy` overrides the default picked by `npi_on`; either
    a callable or a key into POLICIES.
    """
    if policy is None:
        policy = "any_intervention" if npi_on else "off"
    if isinstance(policy, str):
        policy = POLICIES[policy]
    res = policy(covariates)
    if len(res) != N_COVARIATES:
        raise SchemaError(
            f"Covariate policy returned {len(res)} covariates, "
            f"model takes {N_COVARIATES}"
        )
    return res


############
# Assemble #
############
def global_horizon(aligned, min_horizon):
    return max([min_horizon] + [a.observed_length for a in aligned])


def duplicate_single_country(aligned):
    """
    The hierarchical Stan model needs at least two countries. If
    exactly one is configured, return two identical copies of it;
    otherwise return `aligned` unchanged.
    """
    aligned = list(aligned)
    if len(aligned) == 1:
        [a] = aligned
        print(f"Only one country ({a.country}), duplicating it")
        return [a, a]
    return aligned


def poly_basis(n, degree=2):
    """
    Orthonormal polynomial basis of 1..n, same as R's `poly(1:n, degree)`.
    Returns an (n, degree) array.
    """
    x = np.arange(1, n + 1, dtype=float)
    x = x - x.mean()
    X = np.vander(x, degree + 1, increasing=True)
    q, r = np.linalg.qr(X)
    q = q * np.sign(np.diag(r))
    return q[:, 1:]


def read_only(arr):
    "Copy of `arr` that raises on assignment."
    arr = np.array(arr)
    arr.setflags(write=False)
    return arr


def stack_cols(arrs):
    return np.column_stack([np.asarray(a) for a in arrs])


def stack_covariates(aligned):
    return OrderedDict(
        [(c, stack_cols([a.covariates[c].values for a in aligned])) for c in INTERVENTIONS]
    )


def fit_length(xs, horizon, what):
    xs = np.asarray(xs, dtype=float)
    if len(xs) < horizon:
        raise SchemaError(f"{what} has {len(xs)} days, horizon is {horizon}")
    return xs[:horizon]


def assemble(
    aligned, hazards, serial_interval, min_horizon=75, npi_on=True, policy=None
):
    """
    Stack per-country series into the N2 x M matrices Stan expects.

    `hazards` holds one (hazard, survival) pair per aligned series,
    each at least as long as the resolved horizon.
    """
    aligned = list(aligned)
    hazards = list(hazards)
    if len(aligned) != len(hazards):
        raise SchemaError(
            f"{len(aligned)} aligned series but {len(hazards)} hazard curves"
        )
    N2 = global_horizon(aligned, min_horizon)
    aligned = [repad(a, N2) for a in aligned]

    f = stack_cols(
        [
            hz.mixing_function(
                fit_length(h, N2, f"{a.country} hazard"),
                fit_length(s, N2, f"{a.country} survival"),
            )
            for a, (h, s) in zip(aligned, hazards)
        ]
    )
    x = poly_basis(N2, 2)
    covs = apply_policy(stack_covariates(aligned), npi_on, policy=policy)
    return TensorBundle(
        countries=tuple(a.country for a in aligned),
        horizon=N2,
        lengths=read_only([a.observed_length for a in aligned]),
        epidemic_start=read_only([a.epidemic_start for a in aligned]),
        covariates=MappingProxyType(
            OrderedDict((k, read_only(v)) for k, v in covs.items())
        ),
        f=read_only(f),
        cases=read_only(stack_cols([a.cases for a in aligned])),
        deaths=read_only(stack_cols([a.deaths for a in aligned])),
        serial_interval=read_only(
            fit_length(serial_interval, N2, "Serial interval")
        ),
        x1=read_only(x[:, 0]),
        x2=read_only(x[:, 1]),
    )


def covariate_frame(bundle, aligned, i):
    """
    Observed days of country `i` with the 6 policy covariates, for
    checking NPI dates.
    """
    n = bundle.lengths[i]
    return pd.DataFrame(
        dict(
            date=aligned.dates.values,
            **{k: v[:n, i] for k, v in bundle.covariates.items()},
        )
    )
