# anova.py
# -----------------------------------------------------------------------------
# Treatment × Timepoint ANOVA family:
#   • two-way Type II ANOVA + eta², partial eta², omega²
#   • Tukey HSD across Treatment × Timepoint cells + compact letter display
#   • per-timepoint Treatment ANOVAs with Holm-adjusted p
#   • mixed ANOVA (within = Timepoint, between = Treatment, subject = Anemone)
#     via pingouin, with a MixedLM random-intercept fallback
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import pingouin as pg
import statsmodels.formula.api as smf
from statsmodels.stats.anova import anova_lm
from statsmodels.stats.multicomp import pairwise_tukeyhsd
from statsmodels.stats.multitest import multipletests

logger = logging.getLogger(__name__)

EFFECT_LABELS = {
    "C(Treatment)": "Treatment",
    "C(Timepoint)": "Time",
    "C(Treatment):C(Timepoint)": "Treatment × Time",
}


def add_effect_sizes(aov: pd.DataFrame) -> pd.DataFrame:
    """Add eta², partial eta², and omega² to ANOVA (Type II)."""
    aov = aov.copy()
    if "sum_sq" not in aov.columns or "Residual" not in aov.index:
        return aov
    ss_total = aov["sum_sq"].sum()
    ss_error = aov.loc["Residual", "sum_sq"]
    df_error = aov.loc["Residual", "df"]
    ms_error = ss_error / df_error if df_error else np.nan
    effects = [ix for ix in aov.index if ix != "Residual"]
    aov.loc[effects, "eta2"] = aov.loc[effects, "sum_sq"] / ss_total
    aov.loc[effects, "partial_eta2"] = aov.loc[effects, "sum_sq"] / (aov.loc[effects, "sum_sq"] + ss_error)
    aov.loc[effects, "omega2"] = ((aov.loc[effects, "sum_sq"] - aov.loc[effects, "df"] * ms_error) /
                                  (ss_total + ms_error)).clip(lower=0)
    return aov


def observed_levels(df: pd.DataFrame, value: str) -> pd.DataFrame:
    """Rows with a response, with factor levels trimmed to those still present."""
    dat = df.dropna(subset=[value]).copy()
    for col in ("Treatment", "Timepoint"):
        if isinstance(dat[col].dtype, pd.CategoricalDtype):
            dat[col] = dat[col].cat.remove_unused_categories()
    return dat


def twoway_anova(df: pd.DataFrame, value: str):
    """
    Between-subjects Treatment × Timepoint ANOVA (Type II) with effect sizes.
    Returns (table, fitted OLS model); the model feeds residual diagnostics.
    """
    dat = observed_levels(df, value)
    model = smf.ols(f"{value} ~ C(Treatment) * C(Timepoint)", data=dat).fit()
    aov = anova_lm(model, typ=2)
    return add_effect_sizes(aov), model


def cell_labels(df: pd.DataFrame) -> pd.Series:
    return df["Treatment"].astype(str) + ":" + df["Timepoint"].astype(str)


def tukey_groups(df: pd.DataFrame, value: str, alpha: float = 0.05) -> pd.DataFrame:
    """Tukey HSD across all Treatment × Timepoint cells, as a tidy table."""
    dat = observed_levels(df, value)
    tukey_res = pairwise_tukeyhsd(endog=dat[value], groups=cell_labels(dat), alpha=alpha)
    tukey_df = pd.DataFrame(
        tukey_res.summary().data[1:], columns=tukey_res.summary().data[0]
    )
    tukey_df.columns = [c.lower().replace(" ", "_") for c in tukey_df.columns]
    for col in ("meandiff", "p-adj", "lower", "upper"):
        tukey_df[col] = pd.to_numeric(tukey_df[col], errors="coerce")
    tukey_df["reject"] = tukey_df["reject"].astype(str).str.lower().eq("true")
    return tukey_df


def compact_letter_display(tukey_df: pd.DataFrame, means: pd.Series) -> Dict[str, str]:
    """
    Insert-and-absorb CLD (Piepho 2004): two groups share a letter exactly
    when Tukey did not separate them.
    `tukey_df` expects columns: group1, group2, reject (bool).

    Start with one letter covering every group. For each significant pair,
    every letter holding both is split into two copies, each missing one of
    the pair; letters contained in another letter are then absorbed.
    Letters are ordered by the highest mean they cover, so the top group is "a".
    """
    groups = list(means.sort_values(ascending=False).index)
    rank = {g: i for i, g in enumerate(groups)}
    sig = [(r["group1"], r["group2"]) for _, r in tukey_df.iterrows()
           if r["reject"] and r["group1"] in rank and r["group2"] in rank]

    letter_sets: List[frozenset] = [frozenset(groups)]
    for a, b in sig:
        split: List[frozenset] = []
        for s in letter_sets:
            if a in s and b in s:
                split.extend([s - {a}, s - {b}])
            else:
                split.append(s)
        # absorb: drop empty and duplicate sets, and sets inside a larger one
        unique = list(dict.fromkeys(s for s in split if s))
        letter_sets = [s for s in unique if not any(s < t for t in unique)]

    letter_sets.sort(key=lambda s: sorted(rank[g] for g in s))
    alphabet = list("abcdefghijklmnopqrstuvwxyz")
    cld: Dict[str, str] = {g: "" for g in groups}
    for i, s in enumerate(letter_sets):
        lab = alphabet[i] if i < len(alphabet) else f"l{i + 1}"
        for g in sorted(s, key=rank.get):
            cld[g] += lab
    return cld


def cell_means(df: pd.DataFrame, value: str) -> pd.Series:
    dat = df.dropna(subset=[value])
    return dat.groupby(cell_labels(dat))[value].mean()


def per_timepoint_tests(df: pd.DataFrame, value: str) -> pd.DataFrame:
    """
    One-way Treatment ANOVA at each Timepoint; Holm adjustment across timepoints.
    """
    rows = []
    for tp, dsub in df.dropna(subset=[value]).groupby("Timepoint", observed=True):
        if dsub["Treatment"].nunique() < 2 or len(dsub) <= dsub["Treatment"].nunique():
            rows.append(dict(Timepoint=str(tp), Day=int(dsub["Day"].iloc[0]), F=np.nan, p=np.nan,
                             partial_eta2=np.nan))
            continue
        model = smf.ols(f"{value} ~ C(Treatment)", data=observed_levels(dsub, value)).fit()
        aov = anova_lm(model, typ=2)
        ss_eff = aov.loc["C(Treatment)", "sum_sq"]
        ss_res = aov.loc["Residual", "sum_sq"]
        rows.append(dict(
            Timepoint=str(tp),
            Day=int(dsub["Day"].iloc[0]),
            F=float(aov.loc["C(Treatment)", "F"]),
            p=float(aov.loc["C(Treatment)", "PR(>F)"]),
            partial_eta2=float(ss_eff / (ss_eff + ss_res)) if (ss_eff + ss_res) > 0 else np.nan,
        ))
    out = pd.DataFrame(rows)
    out["p_holm"] = np.nan
    ok = out["p"].notna() if not out.empty else pd.Series(dtype=bool)
    if ok.any():
        out.loc[ok, "p_holm"] = multipletests(out.loc[ok, "p"], method="holm")[1]
    return out


def _coverage(df: pd.DataFrame, subj_col: str, time_col: str) -> pd.DataFrame:
    return (df.groupby([subj_col, time_col], observed=True).size()
              .unstack(time_col)
              .fillna(0)
              .astype(int))


def mixed_anova_timecourse(
    df: pd.DataFrame,
    value: str,
    subj_col: str = "Anemone",
    require_complete: bool = True,
) -> Tuple[Optional[pd.DataFrame], dict]:
    """
    Pingouin mixed ANOVA: within=Timepoint, between=Treatment, subject=Anemone.
    Returns (anova_table, info), where info carries coverage diagnostics and,
    when pingouin fails, the reason plus MixedLM Wald tests per term.
    """
    info = {"reason": None, "n_subjects": None, "times": None,
            "coverage_table": None, "fallback": None}

    dat = df[[subj_col, "Treatment", "Timepoint", value]].dropna().copy()
    dat[subj_col] = dat[subj_col].astype(str)
    dat["Treatment"] = dat["Treatment"].astype(str)
    dat["Timepoint"] = dat["Timepoint"].astype(str)

    cov = _coverage(dat, subj_col, "Timepoint")
    info["coverage_table"] = cov.copy()

    # keep time levels seen for every subject, then subjects complete on them
    if require_complete:
        common = [t for t, ok in (cov.gt(0).sum(axis=0) == cov.shape[0]).items() if ok]
        if len(common) < 2:
            # fall back to the levels covered by most subjects
            share = cov.gt(0).mean(axis=0)
            common = [t for t, s in share.items() if s >= 0.8]
        dat = dat[dat["Timepoint"].isin(common)]
        cov = _coverage(dat, subj_col, "Timepoint")
        complete = cov.index[(cov.min(axis=1) >= 1)] if len(cov.columns) else []
        dat = dat[dat[subj_col].isin(complete)]

    info["n_subjects"] = dat[subj_col].nunique()
    info["times"] = sorted(dat["Timepoint"].unique().tolist(), key=lambda s: int(s[1:]))

    if info["n_subjects"] < 4 or len(info["times"]) < 2:
        info["reason"] = "Too few subjects or time levels after keeping complete subjects."
        logger.warning("%s: mixed ANOVA skipped: %s", value, info["reason"])
        return None, info

    try:
        aov = pg.mixed_anova(dv=value, within="Timepoint", between="Treatment",
                             subject=subj_col, data=dat)
        aov = aov.rename(columns={"Source": "Effect"}).set_index("Effect")
        return aov, info
    except Exception as e:
        info["reason"] = f"pingouin failed: {type(e).__name__}: {e}"
        logger.warning("%s: %s; falling back to MixedLM", value, info["reason"])

    wald, reason = mixedlm_wald(dat, value, subj_col)
    info["fallback"] = wald
    if reason:
        info["reason"] = f"{info['reason']} | {reason}"
    return None, info


def mixedlm_wald(dat: pd.DataFrame, value: str, subj_col: str = "Anemone"):
    """Random intercept per subject; Wald test for each fixed-effect term."""
    try:
        md = smf.mixedlm(f"{value} ~ C(Treatment) * C(Timepoint)", data=dat, groups=dat[subj_col])
        mres = md.fit(method="lbfgs", reml=False)
    except Exception as e:
        logger.warning("%s: MixedLM fallback failed: %s", value, e)
        return None, f"MixedLM fallback failed: {type(e).__name__}: {e}"

    names = list(mres.fe_params.index)
    terms = {
        "C(Treatment)": [n for n in names if n.startswith("C(Treatment)[T.") and ":" not in n],
        "C(Timepoint)": [n for n in names if n.startswith("C(Timepoint)[T.") and ":" not in n],
        "C(Treatment):C(Timepoint)": [n for n in names if "C(Treatment)[T." in n and "C(Timepoint)[T." in n],
    }
    all_names = list(mres.params.index)
    rows = []
    for eff, coeffs in terms.items():
        if not coeffs:
            continue
        L = np.zeros((len(coeffs), len(all_names)))
        for i, cname in enumerate(coeffs):
            L[i, all_names.index(cname)] = 1.0
        wtest = mres.wald_test(L, scalar=True)
        rows.append(dict(Effect=eff, W=float(np.squeeze(wtest.statistic)), df=int(L.shape[0]),
                         p=float(wtest.pvalue)))
    return pd.DataFrame(rows).set_index("Effect"), None


def mixed_model(df: pd.DataFrame, value: str, subj_col: str = "Anemone"):
    """
    Linear mixed model value ~ Treatment * Timepoint + (1 | Anemone).
    Returns (coefficient table, reason); the table is None when the fit fails.
    """
    dat = observed_levels(df, value)
    if dat[subj_col].nunique() < 3:
        return None, "fewer than three anemones"
    try:
        mres = smf.mixedlm(f"{value} ~ C(Treatment) * C(Timepoint)",
                           data=dat, groups=dat[subj_col]).fit(reml=True)
    except Exception as e:
        logger.warning("%s: MixedLM failed: %s", value, e)
        return None, f"{type(e).__name__}: {e}"
    ci = mres.conf_int()
    table = pd.DataFrame({
        "term": mres.params.index,
        "estimate": mres.params.values,
        "std_error": mres.bse.values,
        "z": mres.tvalues.values,
        "p": mres.pvalues.values,
        "ci_low": ci.iloc[:, 0].values,
        "ci_high": ci.iloc[:, 1].values,
    })
    return table, None
