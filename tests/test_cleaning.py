import numpy as np
import pandas as pd
import pytest

from anemone_heatstress.cleaning import (
    canonicalize_columns,
    coerce_dates,
    coerce_treatment,
    collapse_replicates,
    drop_excluded,
    normalize_treatment,
    require_columns,
    summarize,
    with_baseline_ratio,
)
from anemone_heatstress.config import COMMON_ALIASES
from anemone_heatstress.errors import DataFormatError


def test_canonicalize_strips_units_and_case():
    raw = pd.DataFrame(columns=["  Sampling Date ", "Anemone ID", "Treatment (°C)", "Other"])
    out = canonicalize_columns(raw, COMMON_ALIASES)
    assert list(out.columns) == ["Date", "Anemone", "Treatment", "Other"]


def test_canonicalize_assigns_each_name_once():
    raw = pd.DataFrame(columns=["id", "Anemone"])
    out = canonicalize_columns(raw, COMMON_ALIASES)
    assert list(out.columns).count("Anemone") == 1


def test_require_columns_names_the_dataset():
    with pytest.raises(DataFormatError, match="pam: missing required column") as exc:
        require_columns(pd.DataFrame(columns=["Date"]), ["Date", "Anemone"], "pam")
    assert exc.value.dataset == "pam"


def test_coerce_dates_day_and_ordered_timepoint():
    df = pd.DataFrame({"Date": ["2024-05-11", "2024-05-01", "2024-05-04", "not a date"]})
    out = coerce_dates(df)
    assert sorted(out["Day"]) == [0, 3, 10]
    assert list(out["Timepoint"].cat.categories) == ["D0", "D3", "D10"]
    assert out["Timepoint"].cat.ordered


def test_coerce_dates_with_start_drops_earlier_rows():
    df = pd.DataFrame({"Date": ["2024-04-28", "2024-05-01", "2024-05-02"]})
    out = coerce_dates(df, start="2024-05-01")
    assert list(out["Day"]) == [0, 1]


def test_coerce_dates_all_unparseable():
    with pytest.raises(DataFormatError):
        coerce_dates(pd.DataFrame({"Date": ["x", "y"]}), dataset="pam")


def test_treatment_synonyms_and_unknowns():
    assert normalize_treatment(" Ambient ", ["Control", "Heat"]) == "Control"
    assert normalize_treatment("HEATED", ["Control", "Heat"]) == "Heat"
    df = pd.DataFrame({"Treatment": ["ctrl", "heat", "cold", None]})
    out = coerce_treatment(df, ["Control", "Heat"])
    assert list(out["Treatment"].astype(str)) == ["Control", "Heat"]
    assert list(out["Treatment"].cat.categories) == ["Control", "Heat"]


def test_drop_excluded_flags_and_ids():
    df = pd.DataFrame({"Anemone": ["1", "2", "3"], "Exclude": ["", "yes", np.nan]})
    out = drop_excluded(df, excluded_anemones=["3"])
    assert list(out["Anemone"]) == ["1"]
    assert "Exclude" not in out.columns


def test_collapse_replicates_averages_readings():
    df = pd.DataFrame({"Anemone": ["a", "a", "b"], "Day": [0, 0, 0], "v": [1.0, 3.0, 5.0]})
    out = collapse_replicates(df, ["v"], keys=["Anemone", "Day"])
    assert out.set_index("Anemone")["v"].to_dict() == {"a": 2.0, "b": 5.0}


def test_baseline_ratio_uses_first_day():
    df = pd.DataFrame({"Anemone": ["a"] * 3, "Day": [7, 0, 3], "v": [8.0, 10.0, 9.0]})
    out = with_baseline_ratio(df, "v", "rel")
    assert list(out["rel"]) == pytest.approx([1.0, 0.9, 0.8])


def test_summarize_mean_sem_ci():
    df = pd.DataFrame({
        "Treatment": ["Control"] * 4,
        "Day": [0] * 4,
        "Timepoint": ["D0"] * 4,
        "v": [1.0, 2.0, 3.0, 4.0],
    })
    desc = summarize(df, "v")
    row = desc.iloc[0]
    assert row["mean"] == 2.5
    assert row["n"] == 4
    assert row["sem"] == pytest.approx(np.std([1, 2, 3, 4], ddof=1) / 2)
    assert row["ci95"] == pytest.approx(3.182446 * row["sem"], rel=1e-4)
