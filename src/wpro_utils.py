from dataclasses import dataclass

import numpy as np
import pandas as pd

from wpro_errors import AlignmentError

DEATH_THRESHOLD = 10
# Local transmission assumed to start this many days before the
# death threshold is reached
SEEDING_DAYS = 30
SENTINEL = -1


@dataclass(frozen=True)
class AlignedSeries:
    country: str
    dates: pd.Series
    first_case: int
    epidemic_start: int
    observed_length: int
    horizon: int
    cases: np.ndarray
    deaths: np.ndarray
    covariates: pd.DataFrame

    @property
    def forecast(self):
        return self.horizon - self.observed_length

    @property
    def reported_cases(self):
        return self.cases[: self.observed_length]

    @property
    def reported_deaths(self):
        return self.deaths[: self.observed_length]


def consecutive_dates(ds):
    """Return True if all dates in `ds` are ordered
    and consecutive.
    """
    diff = ds - ds.shift(1)
    return diff.dt.days.fillna(1).eq(1).all()


def first_index(bm):
    "Position of the first True in `bm`, or None."
    bm = np.asarray(bm, dtype=bool)
    if not bm.any():
        return None
    return int(bm.argmax())


def npi_indicators(dates, interventions):
    """
    0/1 column per intervention: 1 on and after its start date.
    """
    dates = pd.Series(pd.to_datetime(dates)).reset_index(drop=1)
    return pd.DataFrame(
        {
            name: dates.ge(pd.Timestamp(start)).astype(int)
            for name, start in dict(interventions).items()
        }
    )


def pad(xs, n):
    return np.concatenate([np.asarray(xs, dtype=int), np.full(n, SENTINEL)])


def extend_flat(df, n):
    "Repeat the last row of `df` `n` more times."
    if n == 0:
        return df.reset_index(drop=1)
    return pd.concat([df, df.iloc[[-1] * n]], ignore_index=True)


def _mk_aligned(country, obs, covs, first_case, epidemic_start, horizon):
    n = len(obs)
    forecast = horizon - n
    return AlignedSeries(
        country=country,
        dates=obs.date.reset_index(drop=1),
        first_case=first_case,
        epidemic_start=epidemic_start,
        observed_length=n,
        horizon=horizon,
        cases=pad(obs.cases, forecast),
        deaths=pad(obs.deaths, forecast),
        covariates=extend_flat(covs, forecast),
    )


def clean_counts(df, country):
    neg = df.query("cases < 0 | deaths < 0")
    if len(neg):
        print(f"{country}: {len(neg)} days with negative counts set to 0")
    return df.assign(
        cases=lambda x: x.cases.clip(lower=0).astype(int),
        deaths=lambda x: x.deaths.clip(lower=0).astype(int),
    )


def align_country(country, records, interventions, horizon):
    """
    Trim `records` (date, cases, deaths) to start 30 days before
    cumulative deaths reach 10, and pad to `horizon` days.

    Case and death arrays are padded with -1 over the forecast days;
    covariates hold their last observed value. If the trimmed
    series is longer than `horizon`, the horizon is raised to fit.
    """
    df = (
        records.assign(date=lambda x: pd.to_datetime(x.date))
        .sort_values("date", ascending=True)
        .reset_index(drop=1)
        .pipe(clean_counts, country)
    )
    if not consecutive_dates(df.date):
        print(f"{country}: dates are not consecutive")

    first_case = first_index(df.cases > 0)
    if first_case is None:
        raise AlignmentError(f"{country}: no day with reported cases > 0")
    death10 = first_index(df.deaths.cumsum() >= DEATH_THRESHOLD)
    if death10 is None:
        raise AlignmentError(
            f"{country}: cumulative deaths never reach {DEATH_THRESHOLD} "
            f"(total {df.deaths.sum()})"
        )
    seeding = death10 - SEEDING_DAYS
    epidemic_start = death10 - seeding + 1
    if seeding == -1:
        # Threshold on day 30: keep the whole series, epidemic start unchanged
        seeding = 0
    if seeding < 0:
        raise AlignmentError(
            f"{country}: {DEATH_THRESHOLD} deaths reached on day {death10 + 1}, "
            f"need at least {SEEDING_DAYS} days of records before it"
        )
    print(
        f"First non-zero cases is on day {first_case + 1}, and 30 days "
        f"before {DEATH_THRESHOLD} deaths is day {seeding + 1}"
    )

    obs = df.iloc[seeding:].reset_index(drop=1)
    n = len(obs)
    print(f"{country} has {n} days of data")
    if n > horizon:
        print(f"{country}: {n} days > horizon {horizon}, increasing horizon")
        horizon = n

    covs = npi_indicators(obs.date, interventions)
    return _mk_aligned(
        country, obs, covs, first_case, epidemic_start, horizon
    )


def repad(aligned, horizon):
    """
    Re-pad an aligned series out to a longer `horizon`.
    """
    if horizon < aligned.observed_length:
        raise ValueError(
            f"{aligned.country}: horizon {horizon} shorter than "
            f"{aligned.observed_length} observed days"
        )
    if horizon == aligned.horizon:
        return aligned
    n = aligned.observed_length
    obs = pd.DataFrame(
        dict(
            date=aligned.dates,
            cases=aligned.reported_cases,
            deaths=aligned.reported_deaths,
        )
    )
    covs = aligned.covariates.iloc[:n]
    return _mk_aligned(
        aligned.country,
        obs,
        covs,
        aligned.first_case,
        aligned.epidemic_start,
        horizon,
    )
