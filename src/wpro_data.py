import datetime as dt
import re
from pathlib import Path

import pandas as pd
import requests
import simplejson

from model_transformations import INTERVENTIONS
from wpro_errors import ConfigurationError

ECDC_URL = "https://opendata.ecdc.europa.eu/covid19/casedistribution/json/"
DATE_FMT = "%d/%m/%Y"
FAR_FUTURE = "31/12/2020"

CASE_COLS = {
    "daterep": "date",
    "countriesandterritories": "country",
    "cases": "cases",
    "deaths": "deaths",
}


# Utils
def simple_col(c):
    "'Countries.and.territories' -> 'countriesandterritories'"
    return re.sub(r"[^a-z0-9]", "", c.lower())


#########
# ECDC  #
#########
def pull_ecdc(url=ECDC_URL):
    """
    Daily case/death records for every country, from the ECDC
    case distribution feed.
    """
    r = requests.get(url, timeout=120)
    r.raise_for_status()
    return pd.DataFrame(simplejson.loads(r.content)["records"])


def save_ecdc(df, data_dir, date=None):
    date = date or dt.date.today()
    fn = Path(data_dir) / f"ecdc-{date}.csv"
    if fn.exists():
        print(f"File for {date} already exists!")
        return fn
    fn.parent.mkdir(parents=True, exist_ok=True)
    print("New data!")
    df.to_csv(fn, index=False)
    return fn


def pull_and_save_ecdc(data_dir, url=ECDC_URL):
    df = pull_ecdc(url)
    return save_ecdc(df, data_dir)


def proc_cases(df):
    """
    Normalise an ECDC table to columns date, country, cases, deaths.
    Accepts both the old (`DateRep`, `Countries.and.territories`)
    and new (`dateRep`, `countriesAndTerritories`) column names.
    """
    df = df.rename(columns=simple_col).rename(columns=CASE_COLS)
    missing = [c for c in CASE_COLS.values() if c not in df]
    if missing:
        raise ConfigurationError(f"Case table is missing columns {missing}")
    return (
        df[list(CASE_COLS.values())]
        .assign(
            date=lambda x: pd.to_datetime(x.date, format=DATE_FMT),
            cases=lambda x: x.cases.fillna(0).astype(int),
            deaths=lambda x: x.deaths.fillna(0).astype(int),
        )
        .sort_values(["country", "date"], ascending=True)
        .reset_index(drop=1)
    )


def load_cases(path):
    return proc_cases(pd.read_csv(path))


def country_records(cases, country):
    res = (
        cases.query("country == @country")[["date", "cases", "deaths"]]
        .reset_index(drop=1)
    )
    if not len(res):
        raise ConfigurationError(f"{country}: no rows in case/death table")
    return res


#######
# IFR #
#######
def load_ifr(path, include_ncd=False):
    """
    Weighted IFR by country (first column). `include_ncd` picks the
    estimate adjusted for non-communicable disease prevalence.
    """
    col = "weighted_fatality_NCD" if include_ncd else "weighted_fatality_noNCD"
    df = pd.read_csv(path)
    if col not in df:
        raise ConfigurationError(f"IFR table {path} has no column {col}")
    ifr = pd.Series(df[col].values, index=df.iloc[:, 0].astype(str), name="ifr")
    bad = ifr[~ifr.between(0, 1)]
    if len(bad):
        raise ConfigurationError(
            f"IFR outside [0, 1] for {bad.index.tolist()}: {bad.tolist()}"
        )
    return ifr


def ifr_for(ifr, country):
    if country not in ifr.index:
        raise ConfigurationError(f"{country}: no IFR entry")
    return float(ifr[ifr.index == country].iloc[0])


#################
# Interventions #
#################
def clamp_to_lockdown(df):
    """
    Interventions starting after lockdown are set to the
    lockdown date.
    """
    clamp = {
        c: lambda x, c=c: x[c].where(x[c] <= x.lockdown, x.lockdown)
        for c in INTERVENTIONS
        if c != "lockdown"
    }
    return df.assign(**clamp)


def load_interventions(path, far_future=FAR_FUTURE):
    """
    Intervention start dates, one row per country. Missing dates are
    put at `far_future` before clamping to lockdown.
    """
    df = pd.read_csv(path, dtype=str).iloc[:, :8]
    df = df.rename(columns={df.columns[0]: "Country"})
    missing = [c for c in INTERVENTIONS if c not in df]
    if missing:
        raise ConfigurationError(f"Intervention table is missing {missing}")

    df = df.assign(
        **{
            c: lambda x, c=c: pd.to_datetime(
                x[c].fillna(far_future), format=DATE_FMT, errors="coerce"
            )
            for c in INTERVENTIONS
        }
    )
    bad = df[df[INTERVENTIONS].isnull().any(axis=1)]
    if len(bad):
        raise ConfigurationError(
            f"Malformed intervention dates for {bad.Country.tolist()}"
        )
    return clamp_to_lockdown(df).set_index("Country")[INTERVENTIONS]


def interventions_for(df, country):
    if country not in df.index:
        raise ConfigurationError(f"{country}: no intervention dates")
    return df.loc[df.index == country].iloc[0]


###################
# Serial interval #
###################
def load_serial_interval(path):
    return pd.read_csv(path)["fit"].values
