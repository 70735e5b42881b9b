# plotting.py
# -----------------------------------------------------------------------------
# Publication-style figures (black/grey only):
#   • time course: mean ± SEM per treatment across days
#   • distributions: box + raw points per timepoint, split by treatment
#   • cell bars with compact-letter labels from Tukey
#   • stacked proportions of retraction scores
#   • residual diagnostics (QQ, residual vs fitted) and coefficient forests
# -----------------------------------------------------------------------------

from __future__ import annotations

import io
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
import statsmodels.api as sm
from matplotlib.ticker import MultipleLocator

# marker fill encodes treatment: open = first (control) level, filled after
TREATMENT_FILL = [("white", "black"), ("black", "black"), ("0.55", "black"), ("0.8", "black")]
TREATMENT_MARKER = ["o", "s", "^", "D"]
GREYS = ["white", "0.85", "0.65", "0.45", "0.25", "black"]


def set_pub_fonts(base=10):
    """Classic, legible typography."""
    plt.rcParams.update({
        "font.size": base,
        "axes.titlesize": base + 2,
        "axes.labelsize": base + 1,
        "xtick.labelsize": base,
        "ytick.labelsize": base,
        "legend.fontsize": base - 1,
        "savefig.dpi": 300,
        "mathtext.fontset": "stix",
        "font.sans-serif": ["Arial", "Helvetica", "DejaVu Sans"],
        "axes.titlepad": 8,
    })


def style_axes(ax, y_major: Optional[float] = None) -> None:
    for spine in ("top", "right"):
        ax.spines[spine].set_visible(False)
    ax.spines["left"].set_linewidth(1.2)
    ax.spines["bottom"].set_linewidth(1.2)
    ax.tick_params(direction="out", length=4, width=1.0)
    if y_major:
        ax.yaxis.set_major_locator(MultipleLocator(y_major))


def fig_bytes(fig) -> bytes:
    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=300, bbox_inches="tight")
    buf.seek(0)
    return buf.getvalue()


def save_figure(fig, path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, format="png", dpi=300, bbox_inches="tight")
    plt.close(fig)
    return path


def _treatment_style(i: int):
    mfc, mec = TREATMENT_FILL[i % len(TREATMENT_FILL)]
    return TREATMENT_MARKER[i % len(TREATMENT_MARKER)], mfc, mec


def _marker_jitter_positions(t: np.ndarray, idx: int, total: int) -> np.ndarray:
    """Small x-offsets to reduce overlap on markers/errorbars."""
    if t.size < 2:
        step = 1.0
    else:
        diffs = np.diff(np.unique(t))
        step = np.median(diffs) if diffs.size else 1.0
    # symmetric offsets across groups, <= ~8% of step
    spread = 0.08 * step
    if total == 1:
        return t
    offs = np.linspace(-spread, spread, total)
    return t + offs[idx]


def plot_timecourse(summary: pd.DataFrame, ylabel: str,
                    treatments: Sequence[str]) -> Tuple[plt.Figure, plt.Axes]:
    """
    Mean ± SEM per treatment across Day: thin black lines, small caps,
    open/filled markers by treatment. Expects columns Treatment, Day, mean, sem.
    """
    set_pub_fonts(base=10)
    s = summary.copy()
    s["Day"] = pd.to_numeric(s["Day"], errors="coerce")
    s = s.dropna(subset=["Day", "mean"]).sort_values(["Treatment", "Day"])
    present = [t for t in treatments if t in s["Treatment"].astype(str).unique().tolist()]

    fig, ax = plt.subplots(figsize=(6.4, 4.0), dpi=150)
    for gi, trt in enumerate(present):
        sub = s.loc[s["Treatment"].astype(str) == trt]
        t = sub["Day"].to_numpy(dtype=float)
        m = sub["mean"].to_numpy(dtype=float)
        se = sub["sem"].fillna(0).to_numpy(dtype=float)
        tj = _marker_jitter_positions(t, gi, len(present))
        marker, mfc, mec = _treatment_style(gi)
        ax.errorbar(tj, m, yerr=se, fmt="none", ecolor="black",
                    elinewidth=0.9, capsize=1.8, capthick=0.9, zorder=2)
        ax.plot(tj, m, ls="-" if gi == 0 else (0, (4, 2)), color="black", lw=0.9, zorder=3)
        ax.plot(tj, m, ls="none", marker=marker, mfc=mfc, mec=mec, ms=5.0, mew=0.9,
                zorder=4, label=trt)

    style_axes(ax)
    ax.yaxis.grid(True, linewidth=0.4, color="0.9")
    ax.set_xlabel("Day")
    ax.set_ylabel(ylabel)
    days = np.sort(s["Day"].unique())
    if days.size:
        ax.set_xticks(days)
    ax.legend(frameon=False, loc="best", handletextpad=0.5)
    fig.tight_layout()
    return fig, ax


def plot_distribution(df: pd.DataFrame, value: str, ylabel: str,
                      treatments: Sequence[str]) -> Tuple[plt.Figure, plt.Axes]:
    """Box plot per Timepoint split by Treatment, raw observations overlaid."""
    set_pub_fonts(base=10)
    dat = df.dropna(subset=[value]).copy()
    dat["Treatment"] = dat["Treatment"].astype(str)
    order = [str(c) for c in dat["Timepoint"].cat.remove_unused_categories().cat.categories]
    dat["Timepoint"] = dat["Timepoint"].astype(str)
    hue_order = [t for t in treatments if t in dat["Treatment"].unique()]
    palette = {t: GREYS[i * 2 % len(GREYS)] for i, t in enumerate(hue_order)}

    fig, ax = plt.subplots(figsize=(7.0, 4.0), dpi=150)
    sns.boxplot(data=dat, x="Timepoint", y=value, hue="Treatment", order=order,
                hue_order=hue_order, palette=palette, showfliers=False, linewidth=1.0, ax=ax)
    sns.stripplot(data=dat, x="Timepoint", y=value, hue="Treatment", order=order,
                  hue_order=hue_order, dodge=True, color="black", size=3, alpha=0.6,
                  legend=False, ax=ax)
    style_axes(ax)
    ax.set_xlabel("Timepoint")
    ax.set_ylabel(ylabel)
    ax.legend(frameon=False, title=None, loc="best")
    fig.tight_layout()
    return fig, ax


def plot_cell_bars(summary: pd.DataFrame, ylabel: str, treatments: Sequence[str],
                   cld_letters: Optional[Dict[str, str]] = None) -> Tuple[plt.Figure, plt.Axes]:
    """
    Grouped grey bars (mean ± SEM) per Timepoint and Treatment, with Tukey
    compact letters above each bar. Letter keys are "Treatment:Timepoint".
    """
    set_pub_fonts(base=10)
    s = summary.copy()
    s["Treatment"] = s["Treatment"].astype(str)
    s["Timepoint"] = s["Timepoint"].astype(str)
    tps = list(dict.fromkeys(s.sort_values("Day")["Timepoint"]))
    present = [t for t in treatments if t in s["Treatment"].unique()]
    width = 0.8 / max(len(present), 1)

    fig, ax = plt.subplots(figsize=(7.0, 3.8), dpi=150)
    x = np.arange(len(tps))
    top = (s["mean"] + s["sem"].fillna(0)).max()
    ypad = 0.04 * top if np.isfinite(top) and top > 0 else 0.1
    for i, trt in enumerate(present):
        sub = s[s["Treatment"] == trt].set_index("Timepoint").reindex(tps)
        xi = x - 0.4 + width * (i + 0.5)
        ax.bar(xi, sub["mean"], yerr=sub["sem"], capsize=3, width=width * 0.9,
               color=GREYS[i * 2 % len(GREYS)], edgecolor="black", linewidth=1.0, label=trt)
        if cld_letters:
            for xx, tp, m, se in zip(xi, tps, sub["mean"], sub["sem"].fillna(0)):
                lab = cld_letters.get(f"{trt}:{tp}", "")
                if lab and np.isfinite(m):
                    ax.text(xx, m + se + ypad, lab, ha="center", va="bottom", fontsize=9)
    ax.set_xticks(x, tps)
    ax.set_xlabel("Timepoint")
    ax.set_ylabel(ylabel)
    style_axes(ax)
    ax.legend(frameon=False, loc="best")
    fig.tight_layout()
    return fig, ax


def plot_score_proportions(props: pd.DataFrame, levels: Sequence[str],
                           treatments: Sequence[str]) -> Tuple[plt.Figure, plt.Axes]:
    """Stacked proportion bars of each score level, one bar per Treatment × Timepoint."""
    set_pub_fonts(base=10)
    p = props.copy()
    p["Treatment"] = p["Treatment"].astype(str)
    p["Timepoint"] = p["Timepoint"].astype(str)
    p["Retraction"] = p["Retraction"].astype(str)
    wide = p.pivot_table(index=["Day", "Timepoint", "Treatment"], columns="Retraction",
                         values="prop", aggfunc="sum", fill_value=0.0)
    wide = wide.reindex(columns=[str(lv) for lv in levels], fill_value=0.0)
    order = sorted(wide.index, key=lambda k: (k[0], list(treatments).index(k[2])
                                              if k[2] in treatments else 99))
    wide = wide.loc[order]

    shades = np.linspace(0.95, 0.1, len(levels))
    fig, ax = plt.subplots(figsize=(max(6.0, 0.45 * len(wide) + 2), 4.0), dpi=150)
    x = np.arange(len(wide))
    bottom = np.zeros(len(wide))
    for lv, shade in zip(wide.columns, shades):
        ax.bar(x, wide[lv].to_numpy(), bottom=bottom, color=str(round(shade, 2)),
               edgecolor="black", linewidth=0.6, width=0.75, label=lv)
        bottom += wide[lv].to_numpy()
    ax.set_xticks(x, [f"{tp}\n{trt}" for _, tp, trt in wide.index], fontsize=8)
    ax.set_ylim(0, 1.0)
    ax.set_ylabel("Proportion of anemones")
    style_axes(ax)
    ax.legend(frameon=False, title="Retraction", bbox_to_anchor=(1.01, 1), loc="upper left")
    fig.tight_layout()
    return fig, ax


def plot_residual_diagnostics(resid, fitted, title: str = "") -> Tuple[plt.Figure, np.ndarray]:
    """Residual QQ plot next to residuals vs fitted values."""
    set_pub_fonts(base=9)
    resid = np.asarray(resid, dtype=float)
    fitted = np.asarray(fitted, dtype=float)
    fig, axes = plt.subplots(1, 2, figsize=(7.4, 3.4), dpi=150)
    sm.ProbPlot(resid).qqplot(line="s", ax=axes[0], markerfacecolor="white",
                              markeredgecolor="black", markersize=4)
    axes[0].set_title("Normal QQ")
    axes[1].scatter(fitted, resid, s=12, facecolors="white", edgecolors="black", linewidths=0.8)
    axes[1].axhline(0, color="black", lw=0.8, ls=(0, (4, 3)))
    axes[1].set_xlabel("Fitted")
    axes[1].set_ylabel("Residual")
    axes[1].set_title("Residuals vs fitted")
    for ax in axes:
        style_axes(ax)
    if title:
        fig.suptitle(title)
    fig.tight_layout()
    return fig, axes


def plot_coefficients(table: pd.DataFrame, estimate: str = "estimate",
                      low: str = "ci_low", high: str = "ci_high",
                      title: str = "") -> Tuple[plt.Figure, plt.Axes]:
    """Forest plot of coefficient estimates with interval bars."""
    set_pub_fonts(base=9)
    t = table.reset_index(drop=True)
    y = np.arange(len(t))[::-1]
    fig, ax = plt.subplots(figsize=(6.4, max(2.4, 0.35 * len(t) + 1.2)), dpi=150)
    ax.hlines(y, t[low], t[high], color="black", lw=1.2)
    ax.plot(t[estimate], y, "o", mfc="white", mec="black", ms=5)
    ax.axvline(0, color="0.5", lw=0.8, ls=(0, (4, 3)))
    ax.set_yticks(y, t["term"].astype(str).tolist())
    ax.set_xlabel("Estimate")
    style_axes(ax)
    if title:
        ax.set_title(title)
    fig.tight_layout()
    return fig, ax

