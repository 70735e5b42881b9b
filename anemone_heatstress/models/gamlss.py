# gamlss.py
# -----------------------------------------------------------------------------
# Distributional regression in the GAMLSS spirit: a response distribution is
# chosen per variable, and both its location (mu) and its scale (sigma/phi)
# get their own linear predictor.
#   • fit_distributions(): marginal family ranking by AIC (fitDist-like)
#   • fit_beta_regression(): beta mean (logit) + precision (log) submodels
#   • fit_location_scale(): double GLM for normal / lognormal / gamma
#   • select_family(): regression fits per family, ranked by AIC
# Smooth time effects use a B-spline of Day when enough days were sampled.
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import patsy
import scipy.stats as stats
import statsmodels.api as sm
import statsmodels.formula.api as smf
from statsmodels.othermod.betareg import BetaModel

logger = logging.getLogger(__name__)

MARGINAL_FAMILIES = {
    "normal": (stats.norm, {}),
    "lognormal": (stats.lognorm, {"floc": 0}),
    "gamma": (stats.gamma, {"floc": 0}),
    "weibull": (stats.weibull_min, {"floc": 0}),
    "beta": (stats.beta, {"floc": 0, "fscale": 1}),
}

REGRESSION_FAMILIES = ("normal", "lognormal", "gamma", "beta")


def family_supports(y: np.ndarray, family: str) -> bool:
    if family == "normal":
        return True
    if family in ("lognormal", "gamma", "weibull"):
        return bool(np.all(y > 0))
    if family == "beta":
        return bool(np.all((y > 0) & (y < 1)))
    raise ValueError(f"unknown family: {family}")


def fit_distributions(y, candidates: Sequence[str] = ("normal", "lognormal", "gamma", "weibull")) -> pd.DataFrame:
    """
    Maximum-likelihood fit of each candidate family to the marginal response,
    ranked by AIC (lower is better).
    """
    y = np.asarray(pd.Series(y).dropna(), dtype=float)
    n = len(y)
    rows = []
    for fam in candidates:
        if fam not in MARGINAL_FAMILIES or not family_supports(y, fam):
            continue
        dist, fixed = MARGINAL_FAMILIES[fam]
        params = dist.fit(y, **fixed)
        ll = float(np.sum(dist.logpdf(y, *params)))
        k = len(params) - len(fixed)
        rows.append(dict(family=fam, k=k, loglik=ll, aic=2 * k - 2 * ll,
                         bic=k * np.log(n) - 2 * ll,
                         params=", ".join(f"{p:.4g}" for p in params)))
    out = pd.DataFrame(rows)
    if out.empty:
        return out
    out = out[np.isfinite(out["aic"])].sort_values("aic").reset_index(drop=True)
    out["delta_aic"] = out["aic"] - out["aic"].min()
    return out


def time_term(df: pd.DataFrame, min_days: int = 4) -> str:
    """Smooth B-spline in Day when at least `min_days` days were sampled."""
    return "bs(Day, df=3)" if df["Day"].nunique() >= min_days else "C(Timepoint)"


@dataclass
class LocationScaleFit:
    family: str
    coefficients: pd.DataFrame
    loglik: float
    aic: float
    n_obs: int
    iterations: int = 1
    converged: bool = True


def _coef_rows(parameter: str, names, est, se) -> pd.DataFrame:
    est = np.asarray(est, dtype=float)
    se = np.asarray(se, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        z = est / se
    p = 2 * stats.norm.sf(np.abs(z))
    return pd.DataFrame({"parameter": parameter, "term": list(names), "estimate": est,
                         "std_error": se, "z": z, "p": p})


def fit_beta_regression(df: pd.DataFrame, value: str, mu_rhs: Optional[str] = None,
                        phi_rhs: str = "C(Treatment)") -> LocationScaleFit:
    """
    Beta regression for (0, 1) responses such as Fv/Fm: logit-link mean
    submodel and log-link precision submodel.
    """
    dat = df.dropna(subset=[value]).reset_index(drop=True)
    mu_rhs = mu_rhs or f"C(Treatment) * {time_term(dat)}"
    Z = patsy.dmatrix(phi_rhs, dat, return_type="dataframe")
    mod = BetaModel.from_formula(f"{value} ~ {mu_rhs}", dat, exog_precision=Z)
    res = mod.fit(disp=False)

    k_mean = mod.exog.shape[1]
    params = np.asarray(res.params)
    bse = np.asarray(res.bse)
    mean_names = list(mod.exog_names)[:k_mean]
    coefs = pd.concat([
        _coef_rows("mu", mean_names, params[:k_mean], bse[:k_mean]),
        _coef_rows("phi", list(Z.columns), params[k_mean:], bse[k_mean:]),
    ], ignore_index=True)
    llf = float(res.llf)
    converged = bool(res.mle_retvals.get("converged", True)) if hasattr(res, "mle_retvals") else True
    return LocationScaleFit("beta", coefs, llf, 2 * len(params) - 2 * llf, len(dat),
                            converged=converged)


def _unit_deviance(family: str, y: np.ndarray, mu: np.ndarray) -> np.ndarray:
    if family == "gamma":
        return 2 * ((y - mu) / mu - np.log(y / mu))
    return (y - mu) ** 2


def _loglik(family: str, y: np.ndarray, mu: np.ndarray, phi: np.ndarray) -> float:
    if family == "normal":
        return float(np.sum(stats.norm.logpdf(y, loc=mu, scale=np.sqrt(phi))))
    if family == "lognormal":
        # mu, phi live on the log scale; the Jacobian keeps AIC comparable
        return float(np.sum(stats.norm.logpdf(np.log(y), loc=mu, scale=np.sqrt(phi))) - np.sum(np.log(y)))
    if family == "gamma":
        return float(np.sum(stats.gamma.logpdf(y, a=1.0 / phi, scale=mu * phi)))
    raise ValueError(f"unknown family: {family}")


def fit_location_scale(
    df: pd.DataFrame,
    value: str,
    family: str = "normal",
    mu_rhs: Optional[str] = None,
    sigma_rhs: str = "C(Treatment)",
    max_iter: int = 50,
    tol: float = 1e-6,
) -> LocationScaleFit:
    """
    Double GLM: the mean model is refitted with weights 1/phi, and log(phi) is
    modelled by a Gamma GLM on the unit deviances (dispersion fixed at 2),
    alternating until both coefficient vectors settle.

    family: "normal" (identity mean), "lognormal" (normal on log y),
    "gamma" (log mean).
    """
    if family not in ("normal", "lognormal", "gamma"):
        raise ValueError(f"unsupported location/scale family: {family}")
    dat = df.dropna(subset=[value]).reset_index(drop=True).copy()
    y = dat[value].to_numpy(dtype=float)
    if family in ("lognormal", "gamma") and not np.all(y > 0):
        raise ValueError(f"{family} family needs a strictly positive response")
    mu_rhs = mu_rhs or f"C(Treatment) * {time_term(dat)}"

    if family == "gamma":
        glm_family = sm.families.Gamma(link=sm.families.links.Log())
        dat["_resp"] = y
    else:
        glm_family = sm.families.Gaussian()
        dat["_resp"] = np.log(y) if family == "lognormal" else y
    resp = dat["_resp"].to_numpy()

    w = np.ones(len(dat))
    prev = None
    converged = False
    it = 0
    for it in range(1, max_iter + 1):
        mres = smf.glm(f"_resp ~ {mu_rhs}", data=dat, family=glm_family, var_weights=w).fit()
        mu = np.asarray(mres.fittedvalues, dtype=float)
        dat["_d"] = np.clip(_unit_deviance("gamma" if family == "gamma" else "normal", resp, mu), 1e-10, None)
        dres = smf.glm(f"_d ~ {sigma_rhs}", data=dat,
                       family=sm.families.Gamma(link=sm.families.links.Log())).fit(scale=2.0)
        phi = np.asarray(dres.fittedvalues, dtype=float)
        w = 1.0 / phi
        current = np.concatenate([np.asarray(mres.params), np.asarray(dres.params)])
        if prev is not None and np.max(np.abs(current - prev)) < tol:
            converged = True
            break
        prev = current
    if not converged:
        logger.warning("%s (%s): double GLM stopped after %d iterations without converging",
                       value, family, it)

    coefs = pd.concat([
        _coef_rows("mu", mres.params.index, mres.params, mres.bse),
        _coef_rows("sigma", dres.params.index, dres.params, dres.bse),
    ], ignore_index=True)
    llf = _loglik(family, y, mu, phi)
    k = len(mres.params) + len(dres.params)
    return LocationScaleFit(family, coefs, llf, 2 * k - 2 * llf, len(dat),
                            iterations=it, converged=converged)


def select_family(
    df: pd.DataFrame,
    value: str,
    families: Sequence[str],
    mu_rhs: Optional[str] = None,
    sigma_rhs: str = "C(Treatment)",
) -> Tuple[Optional[LocationScaleFit], pd.DataFrame, Dict[str, str]]:
    """
    Fit the distributional regression for every applicable family and rank by
    AIC. Returns (best fit, comparison table, {family: failure reason}).
    """
    y = df[value].dropna().to_numpy(dtype=float)
    fits: Dict[str, LocationScaleFit] = {}
    failures: Dict[str, str] = {}
    for fam in families:
        if fam not in REGRESSION_FAMILIES or not family_supports(y, fam):
            continue
        try:
            if fam == "beta":
                fits[fam] = fit_beta_regression(df, value, mu_rhs, sigma_rhs)
            else:
                fits[fam] = fit_location_scale(df, value, fam, mu_rhs, sigma_rhs)
        except Exception as e:
            failures[fam] = f"{type(e).__name__}: {e}"
            logger.warning("%s: %s location/scale fit failed: %s", value, fam, e)

    rows = [dict(family=f.family, loglik=f.loglik, aic=f.aic, n=f.n_obs,
                 iterations=f.iterations, converged=f.converged) for f in fits.values()]
    table = pd.DataFrame(rows)
    if table.empty:
        return None, table, failures
    table = table.sort_values("aic").reset_index(drop=True)
    table["delta_aic"] = table["aic"] - table["aic"].min()
    return fits[table.loc[0, "family"]], table, failures
