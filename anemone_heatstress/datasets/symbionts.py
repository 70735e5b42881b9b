"""Algal symbiont densities from hemocytometer counts of tissue homogenate."""

from __future__ import annotations

import logging
import re

import numpy as np
import pandas as pd

from ..cleaning import clean_common, coerce_numeric, finalize, summarize
from ..config import AnalysisConfig, DatasetSpec
from ..errors import DataFormatError

logger = logging.getLogger(__name__)

# one large hemocytometer square holds 1 mm x 1 mm x 0.1 mm = 1e-4 mL
CELLS_PER_ML_FACTOR = 1e4

SPEC = DatasetSpec(
    name="symbionts",
    title="Symbiont cell density",
    response="CellDensity",
    ylabel="Symbiont density (cells per unit biomass)",
    aliases={
        "count": "Count_1",
        "cell count": "Count_1",
        "volume": "Volume",
        "homogenate volume": "Volume",
        "vol": "Volume",
        "dilution": "Dilution",
        "dilution factor": "Dilution",
        "protein": "Protein",
        "protein mg": "Protein",
        "weight": "Weight",
        "wet weight": "Weight",
        "mass": "Weight",
    },
    required=("Volume",),
    repeated=False,
    transforms=("none", "log", "sqrt", "boxcox"),
    families=("lognormal", "gamma", "weibull", "normal"),
)

_COUNT = re.compile(r"^(?:cell[ _]?)?count[ _]?(\d+)\b", re.IGNORECASE)


def count_columns(df: pd.DataFrame):
    found = []
    for c in df.columns:
        m = _COUNT.match(str(c).strip())
        if m:
            found.append((int(m.group(1)), c))
    return [c for _, c in sorted(found)]


def clean(raw: pd.DataFrame, cfg: AnalysisConfig) -> pd.DataFrame:
    df = clean_common(raw, SPEC, cfg)
    counts = count_columns(df)
    if not counts:
        raise DataFormatError(SPEC.name, "no hemocytometer count columns (Count_1, Count_2, ...)")
    df = coerce_numeric(df, [*counts, "Volume", "Dilution", "Protein", "Weight"])

    block = df[counts].where(df[counts] >= 0)
    df["MeanCount"] = block.mean(axis=1, skipna=True)
    dilution = df["Dilution"].fillna(1.0) if "Dilution" in df.columns else 1.0
    df["CellsPerML"] = df["MeanCount"] * CELLS_PER_ML_FACTOR * dilution
    df["TotalCells"] = df["CellsPerML"] * df["Volume"].where(df["Volume"] > 0)

    normaliser = None
    for col in ("Protein", "Weight"):
        if col in df.columns and df[col].gt(0).any():
            normaliser = col
            break
    if normaliser:
        df["CellDensity"] = df["TotalCells"] / df[normaliser].where(df[normaliser] > 0)
        logger.info("symbionts: densities normalised by %s", normaliser)
    else:
        df["CellDensity"] = df["TotalCells"]

    n0 = len(df)
    df["CellDensity"] = df["CellDensity"].replace([np.inf, -np.inf], np.nan)
    df = df.dropna(subset=["CellDensity"])
    if n0 - len(df):
        logger.info("symbionts: dropped %d sample(s) without valid counts, volume or normaliser", n0 - len(df))
    return finalize(df, SPEC, ["MeanCount", "CellsPerML", "TotalCells", "CellDensity"])


def summary(df: pd.DataFrame) -> pd.DataFrame:
    return summarize(df, "CellDensity")
