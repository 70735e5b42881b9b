import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from anemone_heatstress.config import AnalysisConfig

START = pd.Timestamp("2024-05-01")
DAYS = [0, 3, 7, 10]
ANEMONES = [f"A{i:02d}" for i in range(1, 13)]


def design(days=DAYS):
    """Six control and six heated anemones in four tanks, sampled on every day."""
    rows = []
    for i, a in enumerate(ANEMONES):
        trt = "Control" if i < 6 else "Heat"
        tank = f"T{i // 3 + 1}"
        for d in days:
            rows.append(dict(Date=(START + pd.Timedelta(days=d)).strftime("%Y-%m-%d"),
                             Anemone=a, Tank=tank, Treatment=trt, Day=d))
    return pd.DataFrame(rows)


@pytest.fixture(autouse=True)
def _close_figures():
    yield
    plt.close("all")


@pytest.fixture
def rng():
    return np.random.default_rng(20240501)


@pytest.fixture
def cfg(tmp_path):
    return AnalysisConfig(data_dir=tmp_path / "data", out_dir=tmp_path / "out", posterior_draws=400)


@pytest.fixture
def pam_raw(rng):
    base = design()
    reps = []
    for rep in (1, 2):
        d = base.copy()
        heat = (d["Treatment"] == "Heat").to_numpy()
        mean = 0.62 - np.where(heat, 0.015 * d["Day"], 0.0)
        d["Fv/Fm"] = np.clip(mean + rng.normal(0, 0.02, len(d)), 0.05, 0.95).round(3)
        reps.append(d)
    out = pd.concat(reps, ignore_index=True).drop(columns="Day")
    return out.rename(columns={"Anemone": "Anemone ID"})


@pytest.fixture
def diameter_raw(rng):
    d = design()
    heat = (d["Treatment"] == "Heat").to_numpy()
    size = pd.Series(rng.normal(12, 1.5, len(ANEMONES)), index=ANEMONES)
    mean = d["Anemone"].map(size).to_numpy() * (1 - np.where(heat, 0.02, 0.002) * d["Day"].to_numpy())
    d["Diameter 1 (mm)"] = (mean + rng.normal(0, 0.3, len(d))).round(2)
    d["Diameter 2 (mm)"] = (mean + rng.normal(0, 0.3, len(d))).round(2)
    return d.drop(columns="Day")


@pytest.fixture
def feeding_raw(rng):
    d = design()
    heat = (d["Treatment"] == "Heat").to_numpy()
    mu = np.log(180) + np.where(heat, 0.05 * d["Day"].to_numpy(), 0.0)
    d["Feeding time (s)"] = np.exp(mu + rng.normal(0, 0.35, len(d))).round(0)
    # a few trials never finished within the observation window
    d.loc[[5, 30, 45], "Feeding time (s)"] = 1200
    return d.drop(columns=["Day", "Tank"])


@pytest.fixture
def retraction_raw(rng):
    levels = ["extended", "partial", "mostly", "retracted"]
    d = design()
    heat = (d["Treatment"] == "Heat").to_numpy()
    latent = np.where(heat, 0.25 * d["Day"].to_numpy(), 0.0) + rng.logistic(0, 1, len(d))
    score = np.digitize(latent, [0.5, 2.0, 3.5])
    d["Retraction"] = [levels[k] for k in score]
    return d.drop(columns="Day")


@pytest.fixture
def symbionts_raw(rng):
    d = design(days=[0, 10])
    heat = (d["Treatment"] == "Heat").to_numpy()
    lam = np.where(heat & (d["Day"] == 10).to_numpy(), 25, 55)
    for k in range(1, 5):
        d[f"Count {k}"] = rng.poisson(lam)
    d["Volume (mL)"] = 1.0
    d["Dilution"] = 2
    d["Protein (mg)"] = rng.uniform(0.4, 0.6, len(d)).round(3)
    return d.drop(columns="Day")


@pytest.fixture
def raw_tables(pam_raw, diameter_raw, feeding_raw, retraction_raw, symbionts_raw):
    return {
        "pam": pam_raw,
        "diameter": diameter_raw,
        "feeding": feeding_raw,
        "retraction": retraction_raw,
        "symbionts": symbionts_raw,
    }


@pytest.fixture
def data_dir(cfg, raw_tables):
    cfg.data_dir.mkdir(parents=True)
    for name, df in raw_tables.items():
        df.to_csv(cfg.path_for(name), index=False)
    return cfg.data_dir
