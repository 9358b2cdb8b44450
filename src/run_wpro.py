"""
Fit the renewal model to Western Pacific (WPRO) countries.

Load data -> align each country -> build hazards -> assemble ->
sample with Stan -> save posterior draws and per-country summaries.

    run-wpro base --countries Philippines Malaysia --mode debug
"""
import argparse
import os
from dataclasses import dataclass, replace
from pathlib import Path

import numpy as np
import pandas as pd
from joblib import Memory, dump

import model_transformations as mtx
import wpro_data as wd
import wpro_hazard as hz
import wpro_utils as wu
from models import stan_mods as sm
from wpro_errors import ConfigurationError

COUNTRIES = ("Philippines", "Malaysia")
SUMMARY_PARS = {
    "prediction": "predicted_cases",
    "E_deaths": "estimated_deaths",
    "E_deaths0": "estimated_deaths_cf",
    "Rt": "rt",
}


@dataclass(frozen=True)
class RunContext:
    countries: tuple = COUNTRIES
    model: str = "base"
    mode: sm.RunMode = sm.RunMode.standard
    npi_on: bool = False
    include_ncd: bool = False
    min_horizon: int = 75
    hazard_method: str = "quad"
    far_future: str = wd.FAR_FUTURE
    data_dir: Path = Path("data_wpro")
    cases_file: str = "COVID-19-up-to-date.csv"
    results_dir: Path = Path("results")
    figures_dir: Path = Path("figures")
    cache_dir: Path = None
    seed: int = None
    check_dates: bool = None
    profile: sm.SamplerProfile = None

    @property
    def sampler_profile(self):
        return self.profile or sm.PROFILES[self.mode]

    @property
    def write_check_dates(self):
        if self.check_dates is None:
            return self.mode == sm.RunMode.debug
        return self.check_dates


########
# Load #
########
def load_inputs(ctx):
    d = Path(ctx.data_dir)
    cases = wd.load_cases(d / ctx.cases_file)
    ifr = wd.load_ifr(d / "weighted_fatality.csv", include_ncd=ctx.include_ncd)
    npis = wd.load_interventions(d / "interventions.csv", far_future=ctx.far_future)
    si_file = d / "serial_interval.csv"
    si = wd.load_serial_interval(si_file) if si_file.exists() else None
    return cases, ifr, npis, si


def hazard_fn(ctx):
    if ctx.cache_dir is None:
        return hz.build_hazard
    mem = Memory(location=str(ctx.cache_dir), verbose=0)
    return mem.cache(hz.build_hazard)


###########
# Prepare #
###########
def prepare(ctx):
    """
    Returns the assembled TensorBundle and the aligned series it
    was built from (one per panel unit).
    """
    cases, ifr, npis, si = load_inputs(ctx)

    # Config errors surface before any alignment work
    ifrs = {c: wd.ifr_for(ifr, c) for c in ctx.countries}
    timelines = {c: wd.interventions_for(npis, c) for c in ctx.countries}

    aligned = [
        wu.align_country(
            c, wd.country_records(cases, c), timelines[c], ctx.min_horizon
        )
        for c in ctx.countries
    ]
    aligned = mtx.duplicate_single_country(aligned)
    N2 = mtx.global_horizon(aligned, ctx.min_horizon)
    aligned = [wu.repad(a, N2) for a in aligned]

    build = hazard_fn(ctx)
    country2hazard = {
        c: build(ifrs[c], N2, method=ctx.hazard_method, seed=ctx.seed)
        for c in dict.fromkeys(a.country for a in aligned)
    }
    if si is None:
        print("No serial interval table, using discretised gamma")
        si = hz.discretize_serial_interval(N2)

    bundle = mtx.assemble(
        aligned,
        [country2hazard[a.country] for a in aligned],
        si,
        min_horizon=N2,
        npi_on=ctx.npi_on,
    )
    return bundle, aligned


########
# Save #
########
def result_path(ctx, jobid):
    return Path(ctx.results_dir) / f"{ctx.model}-{jobid}-stanfit.joblib"


def job_id(ctx):
    """
    PBS job id if running under PBS, else a random id not yet used
    in `ctx.results_dir`. Independent of the sampler seed.
    """
    jobid = os.environ.get("PBS_JOBID", "")
    if jobid:
        return jobid
    rng = np.random.default_rng()
    while True:
        jobid = str(abs(round(rng.normal() * 1_000_000)))
        if not result_path(ctx, jobid).exists():
            return jobid


def summarise(draws, pref):
    return {
        f"{pref}_mean": draws.mean(axis=0),
        f"{pref}_lo": np.quantile(draws, 0.025, axis=0),
        f"{pref}_hi": np.quantile(draws, 0.975, axis=0),
    }


def country_summary(out, aligned, i):
    """
    Observed days of panel unit `i`: reported counts plus posterior
    mean and 95% interval of each extracted quantity.
    """
    n = aligned.observed_length
    summ = {}
    for par, pref in SUMMARY_PARS.items():
        if par in out:
            summ.update(summarise(out[par][:, :n, i], pref))
    return pd.DataFrame(
        dict(
            date=aligned.dates.values,
            reported_cases=aligned.reported_cases,
            reported_deaths=aligned.reported_deaths,
            **summ,
        )
    )


def save_results(ctx, jobid, out, bundle, aligned, data):
    fn = result_path(ctx, jobid)
    fn.parent.mkdir(parents=True, exist_ok=True)
    res = dict(
        out=out,
        prediction=out.get("prediction"),
        estimated_deaths=out.get("E_deaths"),
        estimated_deaths_cf=out.get("E_deaths0"),
        countries=list(bundle.countries),
        dates={a.country: a.dates for a in aligned},
        reported_cases={a.country: a.reported_cases for a in aligned},
        deaths_by_country={a.country: a.reported_deaths for a in aligned},
        covariates=dict(bundle.covariates),
        stan_data=data,
    )
    dump(res, fn)
    print(f"Saved {fn}")
    return fn


def write_summaries(ctx, jobid, out, aligned):
    figures = Path(ctx.figures_dir)
    figures.mkdir(parents=True, exist_ok=True)
    fns = []
    for country, i in unique_units(aligned).items():
        fn = figures / f"SummaryResults-{jobid}-{country}.csv"
        country_summary(out, aligned[i], i).to_csv(fn, index=False)
        fns.append(fn)
    return fns


def write_check_dates(ctx, bundle, aligned):
    results = Path(ctx.results_dir)
    results.mkdir(parents=True, exist_ok=True)
    for country, i in unique_units(aligned).items():
        fn = results / f"{country}-check-dates.csv"
        mtx.covariate_frame(bundle, aligned[i], i).to_csv(fn, index=False)


def unique_units(aligned):
    "country -> index of its first panel unit"
    res = {}
    for i, a in enumerate(aligned):
        res.setdefault(a.country, i)
    return res


#######
# Run #
#######
def get_model(name):
    if name not in sm.MODELS:
        raise ConfigurationError(
            f"Unknown model {name!r}, choose from {sorted(sm.MODELS)}"
        )
    return sm.MODELS[name]


def run(ctx, sample=sm.sample_posterior):
    """
    Full pipeline. `sample(model, data, profile, seed)` returns a fit
    indexable by parameter name. Returns path of the saved results.
    """
    print(f"Running {ctx.model}")
    model = get_model(ctx.model)
    bundle, aligned = prepare(ctx)
    data = model.mk_data(bundle)
    if ctx.write_check_dates:
        write_check_dates(ctx, bundle, aligned)

    fit = sample(model, data, ctx.sampler_profile, seed=ctx.seed)
    out = sm.extract_samples(fit)

    jobid = job_id(ctx)
    print(f"Jobid = {jobid}")
    fn = save_results(ctx, jobid, out, bundle, aligned, data)
    write_summaries(ctx, jobid, out, aligned)
    return fn


#######
# CLI #
#######
def mk_parser():
    p = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    p.add_argument("model", nargs="?", default="base", help="Stan model name")
    p.add_argument("--countries", nargs="+", default=list(COUNTRIES))
    p.add_argument(
        "--mode",
        choices=[m.value for m in sm.RunMode],
        default=sm.RunMode.standard.value,
        help="Sampler tuning profile",
    )
    p.add_argument("--npi-on", action="store_true", help="Let NPIs affect Rt")
    p.add_argument(
        "--include-ncd", action="store_true", help="Use NCD-adjusted IFR"
    )
    p.add_argument("--horizon", type=int, default=75, help="Minimum # days (N2)")
    p.add_argument(
        "--hazard-method", choices=["quad", "mc", "onset"], default="quad"
    )
    p.add_argument("--data-dir", type=Path, default=Path("data_wpro"))
    p.add_argument("--cases-file", default="COVID-19-up-to-date.csv")
    p.add_argument("--results-dir", type=Path, default=Path("results"))
    p.add_argument("--figures-dir", type=Path, default=Path("figures"))
    p.add_argument("--cache-dir", type=Path, default=None)
    p.add_argument("--seed", type=int, default=None)
    p.add_argument(
        "--check-dates",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Write per-country NPI check files (default: on in debug mode)",
    )
    p.add_argument("--pull", action="store_true", help="Download ECDC data first")

    samp = p.add_argument_group("sampler overrides")
    samp.add_argument("--iter", type=int)
    samp.add_argument("--warmup", type=int)
    samp.add_argument("--chains", type=int)
    samp.add_argument("--thin", type=int)
    samp.add_argument("--adapt-delta", type=float)
    samp.add_argument("--max-treedepth", type=int)
    return p


def ctx_from_args(args):
    mode = sm.RunMode(args.mode)
    overrides = {
        k: getattr(args, k)
        for k in ["iter", "warmup", "chains", "thin", "adapt_delta", "max_treedepth"]
        if getattr(args, k) is not None
    }
    return RunContext(
        countries=tuple(args.countries),
        model=args.model,
        mode=mode,
        npi_on=args.npi_on,
        include_ncd=args.include_ncd,
        min_horizon=args.horizon,
        hazard_method=args.hazard_method,
        data_dir=args.data_dir,
        cases_file=args.cases_file,
        results_dir=args.results_dir,
        figures_dir=args.figures_dir,
        cache_dir=args.cache_dir,
        seed=args.seed,
        check_dates=args.check_dates,
        profile=replace(sm.PROFILES[mode], **overrides),
    )


def main(argv=None):
    args = mk_parser().parse_args(argv)
    ctx = ctx_from_args(args)
    if args.pull:
        fn = wd.pull_and_save_ecdc(ctx.data_dir)
        ctx = replace(ctx, cases_file=fn.name)
    run(ctx)


if __name__ == "__main__":
    main()
