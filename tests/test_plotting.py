import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from anemone_heatstress.cleaning import summarize
from anemone_heatstress.datasets import pam, retraction
from anemone_heatstress.plotting import (
    _marker_jitter_positions,
    fig_bytes,
    plot_cell_bars,
    plot_coefficients,
    plot_distribution,
    plot_residual_diagnostics,
    plot_score_proportions,
    plot_timecourse,
    save_figure,
)

TREATMENTS = ["Control", "Heat"]


def test_jitter_is_symmetric():
    t = np.array([0.0, 5.0, 10.0])
    left = _marker_jitter_positions(t, 0, 2)
    right = _marker_jitter_positions(t, 1, 2)
    assert np.allclose((left + right) / 2, t)
    assert np.array_equal(_marker_jitter_positions(t, 0, 1), t)


def test_timecourse_and_distribution(pam_raw, cfg):
    clean = pam.clean(pam_raw, cfg)
    fig, ax = plot_timecourse(summarize(clean, "FvFm"), "Fv/Fm", TREATMENTS)
    assert isinstance(fig, plt.Figure)
    assert [t.get_text() for t in ax.get_legend().get_texts()] == TREATMENTS
    assert ax.get_ylabel() == "Fv/Fm"

    fig, ax = plot_distribution(clean, "FvFm", "Fv/Fm", TREATMENTS)
    assert [t.get_text() for t in ax.get_xticklabels()] == ["D0", "D3", "D7", "D10"]


def test_cell_bars_with_letters(pam_raw, cfg):
    clean = pam.clean(pam_raw, cfg)
    letters = {"Control:D0": "a", "Heat:D10": "b"}
    fig, ax = plot_cell_bars(summarize(clean, "FvFm"), "Fv/Fm", TREATMENTS, letters)
    texts = [t.get_text() for t in ax.texts]
    assert sorted(texts) == ["a", "b"]


def test_score_proportions(retraction_raw, cfg):
    clean = retraction.clean(retraction_raw, cfg)
    fig, ax = plot_score_proportions(retraction.proportions(clean), cfg.retraction_levels, TREATMENTS)
    assert len(ax.get_xticks()) == 8
    assert ax.get_ylim() == (0.0, 1.0)


def test_diagnostics_and_forest(tmp_path, rng):
    resid = rng.normal(size=40)
    fig, axes = plot_residual_diagnostics(resid, rng.normal(size=40), title="check")
    assert len(axes) == 2
    table = pd.DataFrame({"term": ["a", "b"], "estimate": [0.5, -1.0],
                          "ci_low": [0.1, -2.0], "ci_high": [0.9, 0.0]})
    fig2, ax = plot_coefficients(table, title="forest")
    assert sorted(t.get_text() for t in ax.get_yticklabels()) == ["a", "b"]
    assert fig_bytes(fig2)[:8] == b"\x89PNG\r\n\x1a\n"
    path = save_figure(fig, tmp_path / "figs" / "diag.png")
    assert path.exists() and path.stat().st_size > 0
