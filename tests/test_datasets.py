import numpy as np
import pandas as pd
import pytest

from anemone_heatstress.datasets import REGISTRY, diameter, feeding, pam, retraction, symbionts
from anemone_heatstress.datasets.feeding import clock_seconds
from anemone_heatstress.datasets.retraction import score_of
from anemone_heatstress.datasets.symbionts import CELLS_PER_ML_FACTOR, count_columns
from anemone_heatstress.errors import DataFormatError


def test_registry_modules_expose_clean_and_summary():
    for name, mod in REGISTRY.items():
        assert mod.SPEC.name == name
        assert callable(mod.clean) and callable(mod.summary)


def test_pam_collapses_replicates(pam_raw, cfg):
    clean = pam.clean(pam_raw, cfg)
    assert len(clean) == 12 * 4
    assert clean["FvFm"].between(0, 1, inclusive="neither").all()
    assert list(clean["Timepoint"].cat.categories) == ["D0", "D3", "D7", "D10"]
    assert list(clean["Treatment"].cat.categories) == ["Control", "Heat"]
    first = pam_raw[(pam_raw["Anemone ID"] == "A01") & (pam_raw["Date"] == "2024-05-01")]
    got = clean.loc[(clean["Anemone"] == "A01") & (clean["Day"] == 0), "FvFm"].iloc[0]
    assert got == pytest.approx(first["Fv/Fm"].mean())


def test_pam_from_f0_fm_with_floor(cfg):
    raw = pd.DataFrame({
        "Date": ["2024-05-01"] * 4,
        "Anemone": ["a", "b", "c", "d"],
        "Treatment": ["Control", "Control", "Heat", "Heat"],
        "F0": [100, 20, 150, 300],
        "Fm": [250, 60, 300, 250],
    })
    clean = pam.clean(raw, cfg.with_overrides(min_f0=50))
    # b is below the F0 floor, d has Fm < F0
    assert list(clean["Anemone"]) == ["a", "c"]
    assert list(clean["FvFm"]) == pytest.approx([0.6, 0.5])


def test_pam_without_yield_columns(cfg):
    raw = pd.DataFrame({"Date": ["2024-05-01"], "Anemone": ["a"], "Treatment": ["Heat"], "F0": [1]})
    with pytest.raises(DataFormatError, match="Fv/Fm"):
        pam.clean(raw, cfg)


def test_diameter_relative_to_first_day(diameter_raw, cfg):
    clean = diameter.clean(diameter_raw, cfg)
    day0 = clean[clean["Day"] == 0]
    assert np.allclose(day0["RelativeDiameter"], 1.0)
    first = diameter_raw.iloc[0]
    row = clean[(clean["Anemone"] == first["Anemone"]) & (clean["Day"] == 0)].iloc[0]
    assert row["Diameter"] == pytest.approx((first["Diameter 1 (mm)"] + first["Diameter 2 (mm)"]) / 2)
    s = diameter.summary(clean)
    assert set(s["measure"]) == {"Diameter", "RelativeDiameter"}


def test_clock_seconds():
    out = clock_seconds(pd.Series(["10:05", "10:05:30", "later"]))
    assert out.iloc[0] == 10 * 3600 + 5 * 60
    assert out.iloc[1] == 10 * 3600 + 5 * 60 + 30
    assert np.isnan(out.iloc[2])


def test_feeding_cutoff_marks_unfed(feeding_raw, cfg):
    clean = feeding.clean(feeding_raw, cfg)
    assert len(clean) == 48
    assert (~clean["Fed"]).sum() == 3
    assert clean.loc[~clean["Fed"], "FeedingTime"].isna().all()
    assert (clean["Tank"] == "NA").all()
    s = feeding.summary(clean)
    assert {"trials", "fed", "prop_fed", "mean", "sem"}.issubset(s.columns)
    assert s["trials"].sum() == 48


def test_feeding_from_start_end(cfg):
    raw = pd.DataFrame({
        "Date": ["2024-05-01"] * 4,
        "Anemone": ["a", "b", "c", "d"],
        "Treatment": ["Control", "Control", "Heat", "Heat"],
        "Start": ["10:00", "10:00", "10:00:00", "10:10"],
        "End": ["10:03", None, "10:20", "10:05"],
    })
    clean = feeding.clean(raw, cfg).set_index("Anemone")
    assert "d" not in clean.index
    assert clean.loc["a", "FeedingTime"] == 180
    assert not clean.loc["b", "Fed"]
    assert not clean.loc["c", "Fed"]


@pytest.mark.parametrize("value, expected", [
    ("Extended", 0),
    ("partially retracted", 1),
    ("mostly retracted", 2),
    ("fully retracted", 3),
    (2, 2),
    ("3.0", 3),
    (7, None),
    ("sideways", None),
    ("1.5", None),
    (2.5, None),
    (-1, None),
    ("not retracted", None),
    ("non-retracted", None),
    ("partial or mostly", None),
])
def test_score_of(value, expected):
    levels = ["extended", "partial", "mostly", "retracted"]
    got = score_of(value, levels)
    if expected is None:
        assert np.isnan(got)
    else:
        assert got == expected


def test_retraction_ordered_levels_and_proportions(retraction_raw, cfg):
    clean = retraction.clean(retraction_raw, cfg)
    assert clean["Retraction"].cat.ordered
    assert list(clean["Retraction"].cat.categories) == cfg.retraction_levels
    assert (clean["Score"] == clean["Retraction"].cat.codes).all()
    props = retraction.proportions(clean)
    totals = props.groupby(["Treatment", "Timepoint"], observed=True)["prop"].sum()
    assert np.allclose(totals, 1.0)
    # every level is listed for every sampled cell, including zero counts
    assert len(props) == 2 * 4 * 4


def test_symbiont_density(symbionts_raw, cfg):
    assert count_columns(symbionts_raw) == ["Count 1", "Count 2", "Count 3", "Count 4"]
    clean = symbionts.clean(symbionts_raw, cfg)
    r = symbionts_raw.iloc[0]
    mean = r[["Count 1", "Count 2", "Count 3", "Count 4"]].astype(float).mean()
    expected = mean * CELLS_PER_ML_FACTOR * 2 * 1.0 / r["Protein (mg)"]
    got = clean[(clean["Anemone"] == r["Anemone"]) & (clean["Day"] == 0)]["CellDensity"].iloc[0]
    assert got == pytest.approx(expected)
    assert list(clean["Timepoint"].cat.categories) == ["D0", "D10"]


def test_symbionts_need_counts(cfg):
    raw = pd.DataFrame({"Date": ["2024-05-01"], "Anemone": ["a"], "Treatment": ["Heat"], "Volume": [1]})
    with pytest.raises(DataFormatError, match="count"):
        symbionts.clean(raw, cfg)


def test_missing_required_column(cfg):
    raw = pd.DataFrame({"Date": ["2024-05-01"], "Anemone": ["a"], "Treatment": ["Heat"]})
    with pytest.raises(DataFormatError, match="Retraction"):
        retraction.clean(raw, cfg)


def test_unrecognised_treatments_leave_nothing(pam_raw, cfg):
    cfg = cfg.with_overrides(treatments=["Ambient", "Warm"])
    with pytest.raises(DataFormatError, match="no valid rows"):
        pam.clean(pam_raw, cfg)
