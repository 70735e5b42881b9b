"""Body-column diameter, absolute and relative to each anemone's first measurement."""

from __future__ import annotations

import logging
import re

import pandas as pd

from ..cleaning import clean_common, coerce_numeric, finalize, summarize, with_baseline_ratio
from ..config import AnalysisConfig, DatasetSpec
from ..errors import DataFormatError

logger = logging.getLogger(__name__)

SPEC = DatasetSpec(
    name="diameter",
    title="Body-column diameter",
    response="RelativeDiameter",
    ylabel="Diameter relative to day-0",
    aliases={
        "diameter": "Diameter_1",
        "column diameter": "Diameter_1",
        "body column diameter": "Diameter_1",
    },
    drop_baseline=True,
    families=("normal", "lognormal", "gamma", "weibull"),
)

_REPLICATE = re.compile(r"^(?:body[ _]?column[ _]?)?diameter[ _]?(\d+)", re.IGNORECASE)


def replicate_columns(df: pd.DataFrame):
    cols = []
    for c in df.columns:
        m = _REPLICATE.match(str(c).strip())
        if m:
            cols.append((int(m.group(1)), c))
    named = [c for _, c in sorted(cols)]
    if "Diameter_1" in df.columns and "Diameter_1" not in named:
        named.insert(0, "Diameter_1")
    return named


def clean(raw: pd.DataFrame, cfg: AnalysisConfig) -> pd.DataFrame:
    df = clean_common(raw, SPEC, cfg)
    reps = replicate_columns(df)
    if not reps:
        raise DataFormatError(SPEC.name, "no diameter column found")
    df = coerce_numeric(df, reps)
    block = df[reps].where(df[reps] > 0)
    df["Diameter"] = block.mean(axis=1, skipna=True)

    n0 = len(df)
    df = df.dropna(subset=["Diameter"])
    if n0 - len(df):
        logger.info("diameter: dropped %d row(s) without a positive diameter", n0 - len(df))

    df = with_baseline_ratio(df, "Diameter", "RelativeDiameter")
    return finalize(df, SPEC, ["Diameter", "RelativeDiameter"])


def summary(df: pd.DataFrame) -> pd.DataFrame:
    absolute = summarize(df, "Diameter").assign(measure="Diameter")
    relative = summarize(df, "RelativeDiameter").assign(measure="RelativeDiameter")
    return pd.concat([absolute, relative], ignore_index=True)
