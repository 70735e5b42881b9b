"""Tentacle retraction behaviour scored on an ordinal scale."""

from __future__ import annotations

import logging
import re
from typing import Sequence

import numpy as np
import pandas as pd

from ..cleaning import clean_common, finalize, set_ordered, summarize
from ..config import AnalysisConfig, DatasetSpec

logger = logging.getLogger(__name__)

NEGATION = re.compile(r"^(not|no|non)\b")

SPEC = DatasetSpec(
    name="retraction",
    title="Tentacle retraction",
    response="Score",
    ylabel="Retraction score",
    aliases={
        "retraction": "Retraction",
        "retraction score": "Retraction",
        "tentacle retraction": "Retraction",
        "score": "Retraction",
        "behavior": "Retraction",
        "behaviour": "Retraction",
    },
    required=("Retraction",),
    transforms=(),
    families=(),
)


def score_of(value, levels: Sequence[str]):
    """
    Integer score for a raw value: either the integer itself or the level's position.

    Labels match a level they start with, else a level they contain; either
    way the match must be unique. Negated labels ("not retracted") and
    non-integral numbers are not scored.
    """
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return np.nan
    text = str(value).strip().lower()
    try:
        number = float(text)
    except ValueError:
        pass
    else:
        if not number.is_integer() or not 0 <= number < len(levels):
            return np.nan
        return int(number)

    if NEGATION.match(text):
        return np.nan
    matches = [i for i, lev in enumerate(levels) if text.startswith(lev.lower())]
    if not matches:
        matches = [i for i, lev in enumerate(levels) if lev.lower() in text]
    return matches[0] if len(matches) == 1 else np.nan


def clean(raw: pd.DataFrame, cfg: AnalysisConfig) -> pd.DataFrame:
    levels = cfg.retraction_levels
    df = clean_common(raw, SPEC, cfg)
    df["Score"] = df["Retraction"].map(lambda v: score_of(v, levels))
    bad = df["Score"].isna() & df["Retraction"].notna()
    if bad.any():
        logger.warning("retraction: dropped %d row(s) with unknown scores: %s",
                       int(bad.sum()), sorted(df.loc[bad, "Retraction"].astype(str).unique()))
    df = df.dropna(subset=["Score"]).copy()
    df["Score"] = df["Score"].astype(int)
    df["Retraction"] = set_ordered(df["Score"].map(lambda k: levels[k]), levels)
    return finalize(df, SPEC, ["Retraction", "Score"])


def proportions(df: pd.DataFrame) -> pd.DataFrame:
    """Counts and proportions of each retraction level per Treatment × Timepoint."""
    counts = (
        df.groupby(["Treatment", "Timepoint", "Retraction"], observed=False)
        .size()
        .rename("count")
        .reset_index()
    )
    # keep every score level, but only for cells that were actually sampled
    sampled = df[["Treatment", "Timepoint"]].drop_duplicates()
    counts = counts.merge(sampled, on=["Treatment", "Timepoint"], how="inner")
    day_of = dict(zip(df["Timepoint"].astype(str), df["Day"]))
    counts.insert(1, "Day", counts["Timepoint"].astype(str).map(day_of).astype(int))
    totals = counts.groupby(["Treatment", "Timepoint"], observed=True)["count"].transform("sum")
    counts["prop"] = counts["count"] / totals
    return counts.sort_values(["Treatment", "Day", "Retraction"]).reset_index(drop=True)


def summary(df: pd.DataFrame) -> pd.DataFrame:
    return summarize(df, "Score")
