"""Photosynthetic efficiency (PAM fluorometry, maximum quantum yield Fv/Fm)."""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from ..cleaning import clean_common, coerce_numeric, collapse_replicates, finalize, summarize
from ..config import AnalysisConfig, DatasetSpec
from ..errors import DataFormatError

logger = logging.getLogger(__name__)

SPEC = DatasetSpec(
    name="pam",
    title="Photosynthetic efficiency (Fv/Fm)",
    response="FvFm",
    ylabel="Maximum quantum yield (Fv/Fm)",
    aliases={
        "fvfm": "FvFm",
        "fv/fm": "FvFm",
        "fv_fm": "FvFm",
        "yield": "FvFm",
        "y(ii)": "FvFm",
        "qy": "FvFm",
        "f0": "F0",
        "fo": "F0",
        "fm": "Fm",
    },
    transforms=("none", "logit", "sqrt", "log"),
    families=("beta", "normal"),
)


def clean(raw: pd.DataFrame, cfg: AnalysisConfig) -> pd.DataFrame:
    df = clean_common(raw, SPEC, cfg)
    df = coerce_numeric(df, ["FvFm", "F0", "Fm"])

    if "FvFm" not in df.columns:
        if {"F0", "Fm"}.issubset(df.columns):
            df["FvFm"] = (df["Fm"] - df["F0"]) / df["Fm"]
        else:
            raise DataFormatError(SPEC.name, "need an Fv/Fm column or both F0 and Fm")

    n0 = len(df)
    valid = df["FvFm"].gt(0) & df["FvFm"].lt(1)
    if cfg.min_f0 and "F0" in df.columns:
        valid &= df["F0"].fillna(np.inf) >= cfg.min_f0
    df = df[valid]
    if n0 - len(df):
        logger.info("pam: dropped %d reading(s) outside (0, 1) or below the F0 floor", n0 - len(df))

    df = collapse_replicates(df, ["FvFm"])
    return finalize(df, SPEC, ["FvFm"])


def summary(df: pd.DataFrame) -> pd.DataFrame:
    return summarize(df, "FvFm")
