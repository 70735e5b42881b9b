"""Binary outcomes: did the anemone ingest the food item at all."""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
import statsmodels.api as sm
import statsmodels.formula.api as smf

logger = logging.getLogger(__name__)


def fed_logistic(df: pd.DataFrame, outcome: str = "Fed", rhs: str = "C(Treatment) * C(Timepoint)"):
    """
    Binomial GLM (logit link) of the feeding outcome.

    Returns (coefficient table, reason). Cells where every trial had the same
    outcome separate the likelihood, so the model is skipped with a reason.
    """
    dat = df.dropna(subset=[outcome]).copy()
    dat["_y"] = dat[outcome].astype(int)
    for col in ("Treatment", "Timepoint"):
        dat[col] = dat[col].cat.remove_unused_categories()

    rates = dat.groupby(["Treatment", "Timepoint"], observed=True)["_y"].mean()
    if rates.isin([0.0, 1.0]).any() and "C(Timepoint)" in rhs:
        # separation in some cells: drop the time interaction and retry once
        rhs = "C(Treatment)"
        rates = dat.groupby("Treatment", observed=True)["_y"].mean()
    if rates.isin([0.0, 1.0]).any():
        reason = "complete separation: some groups fed in all or no trials"
        logger.info("%s: logistic model skipped (%s)", outcome, reason)
        return None, reason

    res = smf.glm(f"_y ~ {rhs}", data=dat, family=sm.families.Binomial()).fit()
    ci = res.conf_int()
    table = pd.DataFrame({
        "term": res.params.index,
        "estimate": res.params.values,
        "std_error": res.bse.values,
        "z": res.tvalues.values,
        "p": res.pvalues.values,
        "odds_ratio": np.exp(res.params.values),
        "or_low": np.exp(ci.iloc[:, 0].values),
        "or_high": np.exp(ci.iloc[:, 1].values),
    })
    return table, None
