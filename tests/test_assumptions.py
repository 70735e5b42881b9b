import numpy as np
import pandas as pd
import pytest

from anemone_heatstress.models.assumptions import (
    apply_transform,
    levene_test,
    normality_by_group,
    select_transformation,
    shapiro_safe,
    transform_applicable,
    variance_overview,
)


@pytest.fixture
def skewed(rng):
    rows = []
    for trt, shift in (("Control", 0.0), ("Heat", 0.8)):
        for tp in ("D0", "D7"):
            for y in np.exp(rng.normal(2.0 + shift, 0.9, 15)):
                rows.append(dict(Treatment=trt, Timepoint=tp, y=y))
    df = pd.DataFrame(rows)
    df["Timepoint"] = pd.Categorical(df["Timepoint"], categories=["D0", "D7"], ordered=True)
    return df


def test_shapiro_safe_short_or_constant():
    assert np.isnan(shapiro_safe([1, 2])[1])
    assert np.isnan(shapiro_safe([3, 3, 3, 3])[1])


def test_transform_applicable():
    y = pd.Series([0.0, 0.5, 1.0])
    assert transform_applicable(y, "sqrt")
    assert not transform_applicable(y, "log")
    assert not transform_applicable(y, "logit")
    with pytest.raises(ValueError):
        transform_applicable(y, "cube")


def test_apply_transform_values():
    y = pd.Series([0.25, 0.5])
    assert list(apply_transform(y, "logit")[0]) == pytest.approx([np.log(1 / 3), 0.0])
    out, lmbda = apply_transform(pd.Series([1.0, 2.0, 4.0, 8.0]), "boxcox", lmbda=0.0)
    assert lmbda == 0.0
    assert list(out) == pytest.approx(np.log([1, 2, 4, 8]))


def test_boxcox_estimates_lambda_and_keeps_missing(rng):
    y = pd.Series(np.r_[np.exp(rng.normal(0, 1, 30)), np.nan])
    out, lmbda = apply_transform(y, "boxcox")
    assert lmbda is not None
    assert np.isnan(out.iloc[-1])
    assert out.notna().sum() == 30


def test_group_checks(skewed):
    norm = normality_by_group(skewed, "y")
    assert len(norm) == 4
    assert {"W", "p", "n"}.issubset(norm.columns)
    var = variance_overview(skewed, "y")
    assert (var["var_ratio_max_min"] >= 1).all()
    W, p = levene_test(skewed, "y")
    assert 0 <= p <= 1


def test_select_transformation_table(skewed):
    choice, table = select_transformation(skewed, "y", candidates=("none", "log", "sqrt", "boxcox"))
    assert list(table["transform"]) == ["none", "log", "sqrt", "boxcox"]
    assert table["selected"].sum() == 1
    assert table.loc[table["selected"], "transform"].iloc[0] == choice
    assert table.loc[table["transform"] == "boxcox", "lmbda"].notna().all()


def test_select_transformation_skips_inapplicable(skewed):
    df = skewed.copy()
    df.loc[0, "y"] = 0.0
    _, table = select_transformation(df, "y", candidates=("none", "log", "sqrt"))
    assert "log" not in set(table["transform"])
