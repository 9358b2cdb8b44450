import pandas as pd
import pytest
import simplejson

import model_transformations as mtx
import wpro_data as wd
from wpro_errors import ConfigurationError


def write_npis(path, rows):
    pd.DataFrame(rows).to_csv(path, index=False)
    return path


def npi_row(country, **dates):
    row = dict(Country=country, **{c: "" for c in mtx.INTERVENTIONS})
    row.update(dates)
    return row


def test_interventions_clamped_to_lockdown(tmp_path):
    fn = write_npis(
        tmp_path / "interventions.csv",
        [
            npi_row(
                "A",
                schools_universities="01/04/2020",
                travel_restrictions="01/03/2020",
                lockdown="15/03/2020",
            )
        ],
    )
    df = wd.load_interventions(fn)
    a = wd.interventions_for(df, "A")

    assert list(df.columns) == mtx.INTERVENTIONS
    assert a.lockdown == pd.Timestamp("2020-03-15")
    assert a.schools_universities == pd.Timestamp("2020-03-15")
    assert a.travel_restrictions == pd.Timestamp("2020-03-01")
    # missing -> far future -> clamped to lockdown
    assert a.sport == pd.Timestamp("2020-03-15")
    for c in mtx.INTERVENTIONS:
        assert a[c] <= a.lockdown


def test_interventions_missing_lockdown(tmp_path):
    fn = write_npis(
        tmp_path / "interventions.csv",
        [npi_row("A", public_events="10/03/2020")],
    )
    a = wd.interventions_for(wd.load_interventions(fn), "A")
    assert a.lockdown == pd.Timestamp("2020-12-31")
    assert a.public_events == pd.Timestamp("2020-03-10")


def test_interventions_malformed(tmp_path):
    fn = write_npis(
        tmp_path / "interventions.csv",
        [npi_row("A", lockdown="2020-03-15"), npi_row("B")],
    )
    with pytest.raises(ConfigurationError, match=r"\['A'\]"):
        wd.load_interventions(fn)


def test_interventions_unknown_country(tmp_path):
    fn = write_npis(tmp_path / "interventions.csv", [npi_row("A")])
    with pytest.raises(ConfigurationError, match="Laos: no intervention"):
        wd.interventions_for(wd.load_interventions(fn), "Laos")


def test_load_ifr(tmp_path):
    fn = tmp_path / "weighted_fatality.csv"
    pd.DataFrame(
        {
            "Unnamed": ["A", "B"],
            "weighted_fatality_noNCD": [0.01, 0.02],
            "weighted_fatality_NCD": [0.015, 0.03],
        }
    ).to_csv(fn, index=False)

    assert wd.ifr_for(wd.load_ifr(fn), "B") == pytest.approx(0.02)
    assert wd.ifr_for(wd.load_ifr(fn, include_ncd=True), "B") == pytest.approx(0.03)
    with pytest.raises(ConfigurationError, match="C: no IFR"):
        wd.ifr_for(wd.load_ifr(fn), "C")


def test_load_ifr_out_of_range(tmp_path):
    fn = tmp_path / "weighted_fatality.csv"
    pd.DataFrame(
        {
            "country": ["A", "B"],
            "weighted_fatality_noNCD": [0.01, 1.2],
            "weighted_fatality_NCD": [0.01, 0.5],
        }
    ).to_csv(fn, index=False)
    with pytest.raises(ConfigurationError, match="outside"):
        wd.load_ifr(fn)


def test_load_cases_old_columns(tmp_path):
    fn = tmp_path / "cases.csv"
    pd.DataFrame(
        {
            "DateRep": ["02/03/2020", "01/03/2020", "01/03/2020"],
            "Cases": [5, 3, 1],
            "Deaths": [1, 0, 0],
            "Countries.and.territories": ["A", "A", "B"],
            "GeoId": ["AA", "AA", "BB"],
        }
    ).to_csv(fn, index=False)
    df = wd.load_cases(fn)

    assert list(df.columns) == ["date", "country", "cases", "deaths"]
    a = wd.country_records(df, "A")
    assert a.date.tolist() == [pd.Timestamp("2020-03-01"), pd.Timestamp("2020-03-02")]
    assert a.cases.tolist() == [3, 5]
    with pytest.raises(ConfigurationError, match="C: no rows"):
        wd.country_records(df, "C")


def test_load_cases_missing_column(tmp_path):
    fn = tmp_path / "cases.csv"
    pd.DataFrame({"dateRep": ["01/03/2020"], "cases": [1]}).to_csv(fn, index=False)
    with pytest.raises(ConfigurationError, match="missing"):
        wd.load_cases(fn)


class FakeResponse:
    def __init__(self, payload):
        self.content = simplejson.dumps(payload).encode()

    def raise_for_status(self):
        pass


def test_pull_and_save_ecdc(tmp_path, monkeypatch):
    records = [
        dict(dateRep="01/03/2020", cases=1, deaths=0, countriesAndTerritories="A"),
        dict(dateRep="02/03/2020", cases=2, deaths=0, countriesAndTerritories="A"),
    ]
    urls = []

    def fake_get(url, timeout=None):
        urls.append(url)
        return FakeResponse(dict(records=records))

    monkeypatch.setattr(wd.requests, "get", fake_get)
    fn = wd.pull_and_save_ecdc(tmp_path)

    assert urls == [wd.ECDC_URL]
    assert fn.name.startswith("ecdc-")
    assert wd.load_cases(fn).cases.tolist() == [1, 2]

    # same day: existing file is kept
    fn.write_text("sentinel")
    assert wd.pull_and_save_ecdc(tmp_path) == fn
    assert fn.read_text() == "sentinel"
