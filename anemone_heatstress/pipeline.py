# pipeline.py
# -----------------------------------------------------------------------------
# One linear pass per dataset:
#   load CSV → clean/reshape → summarise → plot → model → narrative
# Each analyze_* returns a "package" dict (tables, figures, narrative, notes)
# consumed by the report writer, the CLI and the Streamlit dashboard.
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

import pandas as pd

from .cleaning import summarize
from .config import AnalysisConfig, DatasetSpec
from .datasets import REGISTRY, retraction
from .errors import DataFormatError
from .models import (
    apply_transform,
    compact_letter_display,
    fed_logistic,
    fit_cumulative_link,
    fit_distributions,
    levene_test,
    mixed_anova_timecourse,
    mixed_model,
    normality_by_group,
    per_timepoint_rank_tests,
    per_timepoint_tests,
    select_family,
    select_transformation,
    tukey_groups,
    twoway_anova,
    variance_overview,
)
from .models.anova import cell_means
from .plotting import (
    plot_cell_bars,
    plot_coefficients,
    plot_distribution,
    plot_residual_diagnostics,
    plot_score_proportions,
    plot_timecourse,
)
from .report import format_narrative, format_ordinal_narrative

logger = logging.getLogger(__name__)


def load_csv(path) -> pd.DataFrame:
    return pd.read_csv(path)


def _attempt(pkg: dict, label: str, fn: Callable, *args, **kwargs):
    """Run one analysis step; a failure is logged and noted, and the package goes on."""
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        msg = f"{label}: {type(e).__name__}: {e}"
        logger.warning("%s: %s", pkg["dataset"], msg)
        pkg["notes"].append(msg)
        return None


def new_package(spec: DatasetSpec, clean: pd.DataFrame) -> dict:
    return {
        "dataset": spec.name,
        "title": spec.title,
        "clean": clean,
        "tables": {"clean": clean},
        "figures": {},
        "narrative": "",
        "notes": [],
        "transform": "none",
    }


def modelling_frame(clean: pd.DataFrame, spec: DatasetSpec) -> pd.DataFrame:
    dat = clean.dropna(subset=[spec.response]).copy()
    if spec.drop_baseline:
        # each anemone's own first day is its baseline, not only the global day 0
        first_day = dat.groupby("Anemone", observed=True)["Day"].transform("min")
        dat = dat[dat["Day"] > first_day].copy()
    dat["Timepoint"] = dat["Timepoint"].cat.remove_unused_categories()
    return dat


def _with_wald_ci(coefs: pd.DataFrame) -> pd.DataFrame:
    out = coefs.copy()
    out["ci_low"] = out["estimate"] - 1.96 * out["std_error"]
    out["ci_high"] = out["estimate"] + 1.96 * out["std_error"]
    return out


def analyze_continuous(clean: pd.DataFrame, spec: DatasetSpec, cfg: AnalysisConfig,
                       summary: Optional[pd.DataFrame] = None) -> dict:
    """
    Full stack for a continuous response: descriptives + figures, transform
    selection, two-way ANOVA with effect sizes, Tukey + CLD, diagnostics,
    per-timepoint tests, repeated-measures models, distribution ranking and
    location/scale regression.
    """
    value = spec.response
    pkg = new_package(spec, clean)
    desc = summarize(clean, value)
    pkg["tables"]["summary"] = summary if summary is not None else desc
    pkg["figures"]["timecourse"] = plot_timecourse(desc, spec.ylabel, cfg.treatments)[0]
    pkg["figures"]["distribution"] = plot_distribution(clean, value, spec.ylabel, cfg.treatments)[0]

    dat = modelling_frame(clean, spec)
    if dat.empty or dat["Treatment"].nunique() < 2:
        pkg["notes"].append("not enough timepoints or treatments to fit models")
        pkg["narrative"] = format_narrative(spec.title, desc, None, None, alpha=cfg.alpha)
        return pkg

    # transformation chosen on residual normality + variance homogeneity
    transform = "none"
    picked = _attempt(pkg, "transformation", select_transformation, dat, value,
                      alpha=cfg.alpha, candidates=spec.transforms or ("none",))
    if picked is not None:
        transform, ttable = picked
        pkg["tables"]["transformations"] = ttable
        lmbda = None
        if transform == "boxcox":
            lmbda = float(ttable.loc[ttable["transform"] == "boxcox", "lmbda"].iloc[0])
        dat[f"{value}_t"] = apply_transform(dat[value], transform, lmbda)[0]
    else:
        dat[f"{value}_t"] = dat[value]
    y = f"{value}_t"
    pkg["transform"] = transform

    fitted = _attempt(pkg, "two-way ANOVA", twoway_anova, dat, y)
    aov_es = None
    if fitted is not None:
        aov_es, ols = fitted
        pkg["tables"]["anova"] = aov_es
        pkg["figures"]["residuals"] = plot_residual_diagnostics(
            ols.resid, ols.fittedvalues, title=f"{spec.title} ({transform})")[0]

    pkg["tables"]["normality"] = normality_by_group(dat, y)
    variances = variance_overview(dat, y)
    W, p_lev = levene_test(dat, y)
    variances["levene_W"] = W
    variances["levene_p"] = p_lev
    pkg["tables"]["variances"] = variances

    tukey_df = _attempt(pkg, "Tukey HSD", tukey_groups, dat, y, alpha=cfg.alpha)
    cld = {}
    if tukey_df is not None:
        pkg["tables"]["tukey"] = tukey_df
        cld = compact_letter_display(tukey_df, cell_means(dat, y))
        pkg["tables"]["cld"] = pd.DataFrame(sorted(cld.items()), columns=["cell", "letters"])
    model_desc = summarize(dat, value)
    pkg["figures"]["cells"] = plot_cell_bars(model_desc, spec.ylabel, cfg.treatments, cld)[0]

    pkg["tables"]["per_timepoint"] = _attempt(pkg, "per-timepoint tests", per_timepoint_tests, dat, y)

    if spec.repeated:
        mixed = _attempt(pkg, "mixed ANOVA", mixed_anova_timecourse, dat, y)
        if mixed is not None:
            aov_rm, info = mixed
            pkg["tables"]["mixed_anova"] = aov_rm
            pkg["tables"]["mixed_anova_coverage"] = info["coverage_table"]
            pkg["tables"]["mixedlm_wald"] = info["fallback"]
            if info["reason"]:
                pkg["notes"].append(f"mixed ANOVA: {info['reason']}")
        lmm = _attempt(pkg, "mixed model", mixed_model, dat, y)
        if lmm is not None:
            table, reason = lmm
            pkg["tables"]["mixed_model"] = table
            if reason:
                pkg["notes"].append(f"mixed model: {reason}")

    if spec.families:
        pkg["tables"]["distributions"] = _attempt(pkg, "distribution fits", fit_distributions,
                                                  dat[value], spec.families)
        selected = _attempt(pkg, "location/scale models", select_family, dat, value, spec.families)
        if selected is not None:
            best, comparison, failures = selected
            pkg["tables"]["family_comparison"] = comparison
            for fam, reason in failures.items():
                pkg["notes"].append(f"{fam} location/scale fit: {reason}")
            if best is not None:
                coefs = _with_wald_ci(best.coefficients)
                pkg["tables"]["location_scale"] = coefs
                pkg["best_family"] = best.family
                pkg["figures"]["coefficients"] = plot_coefficients(
                    coefs[coefs["parameter"] == coefs["parameter"].iloc[0]],
                    title=f"{spec.title}: {best.family} location model")[0]

    pkg["narrative"] = format_narrative(spec.title, desc, aov_es, tukey_df, transform, cfg.alpha)
    return pkg


def analyze_pam(clean: pd.DataFrame, cfg: AnalysisConfig) -> dict:
    mod = REGISTRY["pam"]
    return analyze_continuous(clean, mod.SPEC, cfg, mod.summary(clean))


def analyze_diameter(clean: pd.DataFrame, cfg: AnalysisConfig) -> dict:
    mod = REGISTRY["diameter"]
    pkg = analyze_continuous(clean, mod.SPEC, cfg, mod.summary(clean))
    absolute = summarize(clean, "Diameter")
    pkg["figures"]["timecourse_absolute"] = plot_timecourse(absolute, "Body-column diameter (mm)",
                                                            cfg.treatments)[0]
    return pkg


def analyze_feeding(clean: pd.DataFrame, cfg: AnalysisConfig) -> dict:
    mod = REGISTRY["feeding"]
    pkg = analyze_continuous(clean, mod.SPEC, cfg, mod.summary(clean))
    fitted = _attempt(pkg, "feeding logistic model", fed_logistic, clean)
    if fitted is not None:
        table, reason = fitted
        pkg["tables"]["fed_logistic"] = table
        if reason:
            pkg["notes"].append(f"feeding logistic model: {reason}")
    prop = pkg["tables"]["summary"]
    if "prop_fed" in prop.columns and len(prop):
        lines = [f"• Proportion fed ranged {prop['prop_fed'].min():.0%}–{prop['prop_fed'].max():.0%} "
                 f"across treatment × timepoint cells."]
        pkg["narrative"] = "\n".join([pkg["narrative"], *lines])
    return pkg


def analyze_symbionts(clean: pd.DataFrame, cfg: AnalysisConfig) -> dict:
    mod = REGISTRY["symbionts"]
    return analyze_continuous(clean, mod.SPEC, cfg, mod.summary(clean))


def analyze_retraction(clean: pd.DataFrame, cfg: AnalysisConfig) -> dict:
    """Ordinal behaviour scores: proportions, rank tests, cumulative-link posterior."""
    spec = retraction.SPEC
    pkg = new_package(spec, clean)
    desc = retraction.summary(clean)
    props = retraction.proportions(clean)
    pkg["tables"]["summary"] = desc
    pkg["tables"]["proportions"] = props
    pkg["figures"]["proportions"] = plot_score_proportions(props, cfg.retraction_levels,
                                                           cfg.treatments)[0]
    pkg["figures"]["timecourse"] = plot_timecourse(desc, "Mean retraction score", cfg.treatments)[0]

    ranks = _attempt(pkg, "rank tests", per_timepoint_rank_tests, clean, "Score", cfg.control)
    pkg["tables"]["per_timepoint"] = ranks

    fit = _attempt(pkg, "cumulative-link model", fit_cumulative_link, clean,
                   prior_scale=cfg.prior_scale, draws=cfg.posterior_draws, seed=cfg.seed)
    coefs = None
    random_effects = None
    if fit is not None:
        random_effects = fit.random_effects
        coefs = fit.coefficients
        pkg["tables"]["posterior"] = coefs
        pkg["tables"]["cutpoints"] = fit.cutpoints
        pkg["tables"]["ordinal_mle"] = fit.mle
        if fit.random_effects is not None:
            pkg["tables"]["ordinal_random_effects"] = fit.random_effects
        pkg["figures"]["coefficients"] = plot_coefficients(
            coefs, estimate="Estimate", low="l-95% CI", high="u-95% CI",
            title="Retraction: cumulative-logit posterior")[0]

    pkg["narrative"] = format_ordinal_narrative(spec.title, coefs, ranks, cfg.alpha,
                                                random_effects=random_effects)
    return pkg


ANALYZERS: Dict[str, Callable[[pd.DataFrame, AnalysisConfig], dict]] = {
    "pam": analyze_pam,
    "diameter": analyze_diameter,
    "feeding": analyze_feeding,
    "retraction": analyze_retraction,
    "symbionts": analyze_symbionts,
}


def analyze(name: str, raw: pd.DataFrame, cfg: AnalysisConfig) -> dict:
    """Clean one raw table and run its analysis."""
    clean = REGISTRY[name].clean(raw, cfg)
    logger.info("%s: %d clean row(s), %d anemone(s), %d timepoint(s)", name, len(clean),
                clean["Anemone"].nunique(), clean["Timepoint"].nunique())
    return ANALYZERS[name](clean, cfg)


def run(cfg: AnalysisConfig) -> Dict[str, dict]:
    """
    Analyse every configured dataset whose file exists. Missing files are
    skipped; malformed tables are reported with their error and skipped.
    """
    results: Dict[str, dict] = {}
    for name in cfg.only:
        path = cfg.path_for(name)
        title = REGISTRY[name].SPEC.title
        if not path.exists():
            logger.warning("%s: %s not found, skipping", name, path)
            results[name] = {"dataset": name, "title": title, "error": f"file not found: {path}"}
            continue
        logger.info("%s: loading %s", name, path)
        try:
            raw = load_csv(path)
        except (pd.errors.EmptyDataError, pd.errors.ParserError, UnicodeDecodeError) as e:
            logger.error("%s: cannot read %s: %s", name, path, e)
            results[name] = {"dataset": name, "title": title,
                             "error": f"unreadable file {path}: {type(e).__name__}: {e}"}
            continue
        try:
            results[name] = analyze(name, raw, cfg)
        except DataFormatError as e:
            logger.error("%s", e)
            results[name] = {"dataset": name, "title": title, "error": str(e)}
    return results


def succeeded(results: Dict[str, dict]) -> Dict[str, dict]:
    return {k: v for k, v in results.items() if not v.get("error")}


__all__ = ["ANALYZERS", "analyze", "load_csv", "run", "succeeded"]
