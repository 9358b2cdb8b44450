import numpy as np
import pandas as pd
import pytest

import model_transformations as mtx

START = pd.Timestamp("2020-01-01")


def _records(n_days=40, first_case_day=5, death10_day=35, start=START):
    """
    Daily records where day `first_case_day` (1-based) has the first
    case and cumulative deaths hit 10 on day `death10_day`.
    """
    days = np.arange(1, n_days + 1)
    cases = np.where(days >= first_case_day, 3, 0)
    deaths = np.zeros(n_days, dtype=int)
    if death10_day is not None and death10_day <= n_days:
        deaths[death10_day - 1] = 10
        deaths[death10_day:] = 1
    return pd.DataFrame(
        dict(date=pd.date_range(start, periods=n_days), cases=cases, deaths=deaths)
    )


def _interventions(**days):
    "Intervention -> start date; default far off, `days` are offsets from START."
    res = {c: pd.Timestamp("2020-12-31") for c in mtx.INTERVENTIONS}
    for c, d in days.items():
        res[c] = START + pd.Timedelta(days=d)
    return pd.Series(res)


@pytest.fixture
def mk_records():
    return _records


@pytest.fixture
def mk_interventions():
    return _interventions


@pytest.fixture
def write_data_dir():
    """
    Write the 4 input tables the pipeline reads for `countries`, a
    dict of country -> n_days.
    """

    def write(d, countries, ifr=0.01, with_si=True):
        d.mkdir(parents=True, exist_ok=True)
        recs = pd.concat(
            [
                _records(n_days=n).assign(countriesAndTerritories=c)
                for c, n in countries.items()
            ],
            ignore_index=True,
        )
        (
            recs.assign(dateRep=lambda x: x.date.dt.strftime("%d/%m/%Y"))
            .drop(["date"], axis=1)
            .to_csv(d / "COVID-19-up-to-date.csv", index=False)
        )
        pd.DataFrame(
            dict(
                country=list(countries),
                weighted_fatality_noNCD=ifr,
                weighted_fatality_NCD=ifr * 1.5,
            )
        ).to_csv(d / "weighted_fatality.csv", index=False)

        npi = {c: "" for c in mtx.INTERVENTIONS}
        npi.update(
            schools_universities="10/01/2020",
            public_events="25/01/2020",
            lockdown="20/01/2020",
        )
        pd.DataFrame([dict(Country=c, **npi) for c in countries]).to_csv(
            d / "interventions.csv", index=False
        )
        if with_si:
            pd.DataFrame(
                dict(X=np.arange(1, 201), fit=np.full(200, 1 / 200))
            ).to_csv(d / "serial_interval.csv", index=False)
        return d

    return write
