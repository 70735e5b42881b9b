# assumptions.py
# -----------------------------------------------------------------------------
# ANOVA assumption checks and the transformation that best fixes them.
#   • Shapiro–Wilk per group, group variances, Brown–Forsythe Levene
#   • candidate transforms: none / log / sqrt / logit / boxcox
#   • select_transformation(): first candidate passing both checks, else the
#     one whose residuals look most normal
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import scipy.stats as stats
import statsmodels.formula.api as smf

logger = logging.getLogger(__name__)

DEFAULT_RHS = "C(Treatment) * C(Timepoint)"
GROUP_COLS = ("Treatment", "Timepoint")


def shapiro_safe(x) -> Tuple[float, float]:
    x = np.asarray(pd.to_numeric(pd.Series(x), errors="coerce").dropna(), dtype=float)
    if len(x) < 3 or len(x) > 5000 or np.ptp(x) == 0:
        return (np.nan, np.nan)
    W, p = stats.shapiro(x)
    return float(W), float(p)


def normality_by_group(df: pd.DataFrame, value: str, group_cols: Sequence[str] = GROUP_COLS) -> pd.DataFrame:
    rows = []
    for keys, sub in df.groupby(list(group_cols), observed=True):
        keys = keys if isinstance(keys, tuple) else (keys,)
        x = pd.to_numeric(sub[value], errors="coerce").dropna()
        W, p = shapiro_safe(x)
        row = dict(zip(group_cols, keys))
        row.update(n=len(x), mean=x.mean(), sd=x.std(ddof=1), W=W, p=p)
        rows.append(row)
    return pd.DataFrame(rows)


def variance_overview(df: pd.DataFrame, value: str, group_cols: Sequence[str] = GROUP_COLS) -> pd.DataFrame:
    v = (df.groupby(list(group_cols), observed=True)[value]
         .agg(var="var", sd=lambda s: s.std(ddof=1), n="count")
         .reset_index())
    vmin, vmax = v["var"].min(), v["var"].max()
    v["var_ratio_max_min"] = vmax / vmin if vmin and np.isfinite(vmin) and vmin > 0 else np.nan
    return v


def levene_test(df: pd.DataFrame, value: str, group_cols: Sequence[str] = GROUP_COLS) -> Tuple[float, float]:
    groups = [g[value].dropna().to_numpy() for _, g in df.groupby(list(group_cols), observed=True)]
    groups = [g for g in groups if len(g) >= 2]
    if len(groups) < 2:
        return (np.nan, np.nan)
    W, p = stats.levene(*groups, center="median")
    return float(W), float(p)


def transform_applicable(y: pd.Series, name: str) -> bool:
    y = y.dropna()
    if name in ("none",):
        return True
    if name == "sqrt":
        return bool((y >= 0).all())
    if name in ("log", "boxcox"):
        return bool((y > 0).all())
    if name == "logit":
        return bool(((y > 0) & (y < 1)).all())
    raise ValueError(f"unknown transformation: {name}")


def apply_transform(y: pd.Series, name: str, lmbda: Optional[float] = None) -> Tuple[pd.Series, Optional[float]]:
    """
    Transform a response. Returns the transformed series and the Box–Cox λ
    (estimated by maximum likelihood when not given; None for other transforms).
    """
    y = pd.to_numeric(y, errors="coerce").astype(float)
    if name == "none":
        return y, None
    if name == "log":
        return np.log(y), None
    if name == "sqrt":
        return np.sqrt(y), None
    if name == "logit":
        return np.log(y / (1 - y)), None
    if name == "boxcox":
        mask = y.notna()
        out = pd.Series(np.nan, index=y.index)
        if lmbda is None:
            vals, lmbda = stats.boxcox(y[mask].to_numpy())
        else:
            vals = stats.boxcox(y[mask].to_numpy(), lmbda=lmbda)
        out[mask] = vals
        return out, float(lmbda)
    raise ValueError(f"unknown transformation: {name}")


def select_transformation(
    df: pd.DataFrame,
    value: str,
    rhs: str = DEFAULT_RHS,
    alpha: float = 0.05,
    candidates: Sequence[str] = ("none", "log", "sqrt", "boxcox"),
) -> Tuple[str, pd.DataFrame]:
    """
    Try each transformation on `value`, fit `y ~ rhs` by OLS and check the
    residuals (Shapiro–Wilk) and group variances (Levene).

    Returns the chosen transform name and one row per candidate tried.
    """
    rows = []
    for name in candidates:
        if not transform_applicable(df[value], name):
            continue
        y, lmbda = apply_transform(df[value], name)
        dat = df.assign(_y=y).dropna(subset=["_y"])
        model = smf.ols(f"_y ~ {rhs}", data=dat).fit()
        W, p_norm = shapiro_safe(model.resid)
        _, p_lev = levene_test(dat, "_y")
        rows.append(dict(transform=name, lmbda=lmbda, shapiro_W=W, shapiro_p=p_norm,
                         levene_p=p_lev, aic=model.aic))
    table = pd.DataFrame(rows)
    if table.empty:
        return "none", table

    ok = table[(table["shapiro_p"].fillna(1) > alpha) & (table["levene_p"].fillna(1) > alpha)]
    if not ok.empty:
        choice = ok.iloc[0]["transform"]
    else:
        choice = table.loc[table["shapiro_p"].fillna(-1).idxmax(), "transform"]
    table["selected"] = table["transform"] == choice
    logger.debug("%s: transformation %r selected from %s", value, choice, list(table["transform"]))
    return choice, table
