# cleaning.py
# -----------------------------------------------------------------------------
# Shared cleaning/reshaping idiom used by all five tables:
#   • map raw headers onto canonical names
#   • drop excluded rows / anemones
#   • coerce dates → Day + ordered Timepoint, treatment → ordered factor
#   • numeric coercion, replicate collapsing, baseline ratios
#   • grouped descriptives (mean, SD, n, SEM, 95% CI)
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.stats import t as tdist

from .config import ID_COLUMNS, AnalysisConfig, DatasetSpec
from .errors import DataFormatError

logger = logging.getLogger(__name__)

TRUTHY = {"y", "yes", "true", "t", "1", "1.0", "x"}

TREATMENT_SYNONYMS: Dict[str, List[str]] = {
    "control": ["ambient", "amb", "ctrl", "con", "c"],
    "heat": ["heated", "hot", "stress", "heat stress", "elevated", "h"],
}


def _normalize_header(name) -> str:
    cl = str(name).strip().lower()
    return re.sub(r"\s+", " ", cl)


def canonicalize_columns(df: pd.DataFrame, aliases: Dict[str, str]) -> pd.DataFrame:
    """
    Rename raw headers to canonical names.

    Headers are compared lower-cased with collapsed whitespace, first as-is and
    then with units in () or [] stripped ("Diameter (mm)" → "diameter").
    A canonical name is only assigned once: headers already spelled canonically
    keep it, and later aliases of a taken name keep their raw header.
    """
    canonical = set(aliases.values())
    colmap = {}
    taken = {c for c in df.columns if c in canonical}
    for c in df.columns:
        if c in canonical:
            continue
        cl = _normalize_header(c)
        cl_stripped = re.sub(r"\(.*?\)|\[.*?\]", "", cl).strip()
        target = aliases.get(cl) or aliases.get(cl_stripped)
        if target and target not in taken:
            colmap[c] = target
            taken.add(target)
        elif target:
            logger.debug("column %r maps to %r which is already taken", c, target)
    return df.rename(columns=colmap)


def require_columns(df: pd.DataFrame, cols: Iterable[str], dataset: str) -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise DataFormatError(
            dataset,
            f"missing required column(s): {', '.join(missing)} (found: {', '.join(map(str, df.columns))})",
        )


def is_truthy(value) -> bool:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return False
    return str(value).strip().lower() in TRUTHY


def drop_excluded(df: pd.DataFrame, excluded_anemones: Sequence[str] = (), dataset: str = "") -> pd.DataFrame:
    """Remove rows flagged in an Exclude column and anemones listed in the config."""
    n0 = len(df)
    out = df
    if "Exclude" in out.columns:
        out = out[~out["Exclude"].map(is_truthy)]
    if excluded_anemones:
        out = out[~out["Anemone"].astype(str).isin([str(a) for a in excluded_anemones])]
    dropped = n0 - len(out)
    if dropped:
        logger.info("%s: dropped %d excluded row(s)", dataset, dropped)
    return out.drop(columns=["Exclude"], errors="ignore").copy()


def timepoint_labels(days: Iterable[int]) -> List[str]:
    return [f"D{int(d)}" for d in sorted(set(days))]


def coerce_dates(df: pd.DataFrame, start: Optional[str] = None, dataset: str = "") -> pd.DataFrame:
    """
    Parse Date and derive Day (days since start) and an ordered Timepoint factor.
    """
    out = df.copy()
    out["Date"] = pd.to_datetime(out["Date"], errors="coerce").dt.normalize()
    if out["Date"].isna().all():
        raise DataFormatError(dataset, "no parseable dates in the Date column")
    bad = out["Date"].isna().sum()
    if bad:
        logger.warning("%s: dropped %d row(s) with unparseable dates", dataset, bad)
        out = out.dropna(subset=["Date"])

    t0 = pd.Timestamp(start).normalize() if start else out["Date"].min()
    out["Day"] = (out["Date"] - t0).dt.days.astype(int)
    early = (out["Day"] < 0).sum()
    if early:
        logger.warning("%s: dropped %d row(s) dated before the experiment start %s",
                       dataset, early, t0.date())
        out = out[out["Day"] >= 0].copy()

    labels = timepoint_labels(out["Day"])
    out["Timepoint"] = pd.Categorical(
        [f"D{d}" for d in out["Day"]], categories=labels, ordered=True
    )
    return out


def set_ordered(values: pd.Series, levels: Sequence[str]) -> pd.Series:
    """Relevel as an ordered categorical; values outside `levels` become NaN."""
    return pd.Series(
        pd.Categorical(values, categories=list(levels), ordered=True),
        index=values.index,
        name=values.name,
    )


def normalize_treatment(raw, levels: Sequence[str]) -> Optional[str]:
    if raw is None or (isinstance(raw, float) and np.isnan(raw)):
        return None
    key = _normalize_header(raw)
    for level in levels:
        lk = level.lower()
        if key == lk or key in TREATMENT_SYNONYMS.get(lk, []):
            return level
    return None


def coerce_treatment(df: pd.DataFrame, levels: Sequence[str], dataset: str = "") -> pd.DataFrame:
    out = df.copy()
    mapped = out["Treatment"].map(lambda v: normalize_treatment(v, levels))
    unknown = out.loc[mapped.isna(), "Treatment"].dropna().unique().tolist()
    if unknown:
        logger.warning("%s: dropped rows with unrecognised treatment(s): %s", dataset, unknown)
    out["Treatment"] = set_ordered(mapped, levels)
    return out.dropna(subset=["Treatment"])


def coerce_numeric(df: pd.DataFrame, cols: Iterable[str]) -> pd.DataFrame:
    out = df.copy()
    for c in cols:
        if c in out.columns:
            out[c] = pd.to_numeric(out[c], errors="coerce")
    return out


def clean_common(raw: pd.DataFrame, spec: DatasetSpec, cfg: AnalysisConfig) -> pd.DataFrame:
    """Steps shared by every dataset, up to (not including) the response columns."""
    df = canonicalize_columns(raw, spec.all_aliases())
    require_columns(df, ["Date", "Anemone", "Treatment", *spec.required], spec.name)
    df["Anemone"] = df["Anemone"].astype(str).str.strip()
    df = drop_excluded(df, cfg.excluded_anemones, spec.name)
    if "Tank" in df.columns:
        df["Tank"] = df["Tank"].astype(str).str.strip().replace({"nan": "NA", "": "NA"})
    else:
        df["Tank"] = "NA"
    df = coerce_dates(df, cfg.start_date, spec.name)
    df = coerce_treatment(df, cfg.treatments, spec.name)
    return df


def finalize(df: pd.DataFrame, spec: DatasetSpec, extra: Sequence[str]) -> pd.DataFrame:
    """Order columns, sort rows, refresh Timepoint levels; empty results are an error."""
    if df.empty:
        raise DataFormatError(spec.name, "no valid rows left after cleaning")
    cols = list(ID_COLUMNS)
    cols += [c for c in extra if c in df.columns and c not in cols]
    out = df[cols].sort_values(["Treatment", "Anemone", "Day"]).reset_index(drop=True)
    out["Day"] = out["Day"].astype(int)
    out["Timepoint"] = pd.Categorical(
        [f"D{d}" for d in out["Day"]], categories=timepoint_labels(out["Day"]), ordered=True
    )
    return out


def collapse_replicates(df: pd.DataFrame, value_cols: Sequence[str],
                        keys: Sequence[str] = ID_COLUMNS
                        ) -> pd.DataFrame:
    """Average technical replicates (several readings per anemone per day)."""
    keys = [k for k in keys if k in df.columns]
    n0 = len(df)
    out = df.groupby(keys, as_index=False, observed=True)[list(value_cols)].mean()
    if len(out) < n0:
        logger.debug("collapsed %d readings into %d anemone-days", n0, len(out))
    return out


def with_baseline_ratio(df: pd.DataFrame, value: str, out_col: str,
                        subject: str = "Anemone") -> pd.DataFrame:
    """value / value on the subject's first sampling day."""
    out = df.sort_values([subject, "Day"]).copy()
    baseline = out.groupby(subject)[value].transform("first")
    out[out_col] = out[value] / baseline
    return out


def summarize(df: pd.DataFrame, value: str,
              by: Sequence[str] = ("Treatment", "Day", "Timepoint")) -> pd.DataFrame:
    """
    Mean, SD, n, SEM and 95% CI half-width per group.
    """
    desc = (
        df.dropna(subset=[value])
        .groupby(list(by), observed=True)[value]
        .agg(mean="mean", sd="std", n="count")
        .reset_index()
    )
    desc["sem"] = desc["sd"] / np.sqrt(desc["n"])
    # 95% CI using t critical per group
    crit = desc["n"].apply(lambda k: tdist.ppf(0.975, max(k - 1, 1)))
    desc["ci95"] = crit * desc["sem"]
    return desc
