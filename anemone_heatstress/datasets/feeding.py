"""Feeding time: seconds from food contact to complete ingestion."""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from ..cleaning import clean_common, coerce_numeric, finalize, is_truthy, summarize
from ..config import AnalysisConfig, DatasetSpec
from ..errors import DataFormatError

logger = logging.getLogger(__name__)

SPEC = DatasetSpec(
    name="feeding",
    title="Feeding time",
    response="FeedingTime",
    ylabel="Feeding time (s)",
    aliases={
        "feeding time": "FeedingTime",
        "feeding_time": "FeedingTime",
        "feedingtime": "FeedingTime",
        "time to ingest": "FeedingTime",
        "duration": "FeedingTime",
        "start": "Start",
        "start time": "Start",
        "end": "End",
        "end time": "End",
        "stop": "End",
        "ate": "Fed",
        "fed": "Fed",
        "ingested": "Fed",
    },
    families=("lognormal", "gamma", "weibull", "normal"),
)


def clock_seconds(values: pd.Series) -> pd.Series:
    """'HH:MM' or 'HH:MM:SS' clock strings → seconds after midnight (NaN if unparseable)."""
    text = values.astype(str).str.strip()
    text = text.where(text.str.count(":") != 1, text + ":00")
    td = pd.to_timedelta(text, errors="coerce")
    return td.dt.total_seconds()


def clean(raw: pd.DataFrame, cfg: AnalysisConfig) -> pd.DataFrame:
    df = clean_common(raw, SPEC, cfg)

    if "FeedingTime" in df.columns:
        df = coerce_numeric(df, ["FeedingTime"])
        seconds = df["FeedingTime"]
    elif "Start" in df.columns:
        start = clock_seconds(df["Start"])
        end = clock_seconds(df["End"]) if "End" in df.columns else pd.Series(np.nan, index=df.index)
        seconds = end - start
    else:
        raise DataFormatError(SPEC.name, "need a FeedingTime column or Start/End clock times")

    negative = seconds < 0
    df = df[~negative].copy()
    seconds = seconds[~negative]
    if negative.any():
        logger.warning("feeding: dropped %d trial(s) with End before Start", int(negative.sum()))

    fed = seconds.notna() & (seconds <= cfg.feeding_cutoff_s)
    if "Fed" in df.columns:
        flagged = df["Fed"].map(is_truthy) | df["Fed"].isna()
        fed &= flagged
    df["Fed"] = fed.astype(bool)
    df["FeedingTime"] = seconds.where(df["Fed"])
    logger.info("feeding: %d of %d trial(s) ended in ingestion", int(df["Fed"].sum()), len(df))
    return finalize(df, SPEC, ["FeedingTime", "Fed"])


def summary(df: pd.DataFrame) -> pd.DataFrame:
    desc = summarize(df, "FeedingTime")
    fed = (
        df.groupby(["Treatment", "Day", "Timepoint"], observed=True)["Fed"]
        .agg(trials="count", fed="sum")
        .reset_index()
    )
    fed["prop_fed"] = fed["fed"] / fed["trials"]
    return fed.merge(desc, on=["Treatment", "Day", "Timepoint"], how="left")
