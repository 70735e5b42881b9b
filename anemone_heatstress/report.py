# report.py
# -----------------------------------------------------------------------------
# Plain-text insights per dataset and on-disk export of every table/figure.
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from .models.anova import EFFECT_LABELS
from .plotting import save_figure

logger = logging.getLogger(__name__)


def format_pvalue(p: float) -> str:
    if p is None or (isinstance(p, float) and (np.isnan(p) or np.isinf(p))):
        return "NA"
    if p < 0.001:
        return "<0.001"
    return f"{p:.3f}"


def format_narrative(title: str, desc: pd.DataFrame, aov_es: Optional[pd.DataFrame],
                     tukey_df: Optional[pd.DataFrame], transform: str = "none",
                     alpha: float = 0.05) -> str:
    lines = [f"{title}"]
    if transform != "none":
        lines.append(f"• Response analysed on the {transform} scale (chosen from residual normality "
                     f"and variance homogeneity).")
    if aov_es is not None:
        for eff, label in EFFECT_LABELS.items():
            if eff in aov_es.index:
                F = aov_es.loc[eff, "F"]
                p = aov_es.loc[eff, "PR(>F)"]
                pet = aov_es.loc[eff].get("partial_eta2", np.nan)
                sig = "significant" if p < alpha else "not significant"
                lines.append(f"• {label} effect: F={F:.2f}, p={format_pvalue(p)}, "
                             f"partial η²={pet:.3f} → {sig}.")
    if desc is not None and not desc.empty:
        top = desc.sort_values("mean", ascending=False)
        hi = top.iloc[0]
        lo = top.iloc[-1]
        lines.append(f"• Highest mean: {hi['Treatment']} at {hi['Timepoint']} "
                     f"({hi['mean']:.3g} ± {hi['sem']:.2g}); lowest: {lo['Treatment']} at "
                     f"{lo['Timepoint']} ({lo['mean']:.3g} ± {lo['sem']:.2g}).")
    if tukey_df is not None and not tukey_df.empty:
        sig = tukey_df[tukey_df["reject"]].sort_values("p-adj")
        if not sig.empty:
            first = sig.iloc[0]
            direction = "<" if first["meandiff"] > 0 else ">"
            lines.append(f"• Strongest pairwise separation (Tukey): {first['group1']} {direction} "
                         f"{first['group2']} (p_adj={format_pvalue(first['p-adj'])}).")
        else:
            lines.append(f"• Tukey: no pairwise differences reached p<{alpha} after correction.")
    return "\n".join(lines)


def format_ordinal_narrative(title: str, coefs: Optional[pd.DataFrame],
                             rank_tests: Optional[pd.DataFrame], alpha: float = 0.05,
                             random_effects: Optional[pd.DataFrame] = None) -> str:
    lines = [f"{title}"]
    if coefs is not None:
        for _, r in coefs.iterrows():
            credible = (r["l-95% CI"] > 0) or (r["u-95% CI"] < 0)
            lines.append(f"• {r['term']}: {r['Estimate']:.2f} [{r['l-95% CI']:.2f}, {r['u-95% CI']:.2f}], "
                         f"P(>0)={r['P(>0)']:.2f}" + (" → 95% interval excludes 0." if credible else "."))
    if random_effects is not None:
        for _, r in random_effects.iterrows():
            lines.append(f"• Between-{r['group'].lower()} {r['term']}: {r['Estimate']:.2f} "
                         f"[{r['l-95% CI']:.2f}, {r['u-95% CI']:.2f}] over {int(r['n_groups'])} groups.")
    if rank_tests is not None and not rank_tests.empty:
        sig = rank_tests[rank_tests["p_holm"] < alpha]
        if sig.empty:
            lines.append("• No timepoint differed between treatments after Holm correction.")
        else:
            tps = ", ".join(sig["Timepoint"].astype(str))
            lines.append(f"• Treatments differed (Mann–Whitney, Holm) at: {tps}.")
    return "\n".join(lines)


def write_package(pkg: dict, out_dir) -> List[Path]:
    """Write every table (CSV), figure (PNG) and the narrative (TXT) of one dataset."""
    root = Path(out_dir) / pkg["dataset"]
    root.mkdir(parents=True, exist_ok=True)
    written = []
    for name, table in pkg.get("tables", {}).items():
        if table is None:
            continue
        path = root / f"{name}.csv"
        keep_index = not isinstance(table.index, pd.RangeIndex)
        table.to_csv(path, index=keep_index)
        written.append(path)
    for name, fig in pkg.get("figures", {}).items():
        if fig is None:
            continue
        written.append(save_figure(fig, root / f"{name}.png"))
    narrative = pkg.get("narrative")
    if narrative:
        path = root / "insights.txt"
        path.write_text(narrative + "\n", encoding="utf-8")
        written.append(path)
    notes = pkg.get("notes")
    if notes:
        path = root / "notes.txt"
        path.write_text("\n".join(notes) + "\n", encoding="utf-8")
        written.append(path)
    logger.info("%s: wrote %d file(s) to %s", pkg["dataset"], len(written), root)
    return written


def write_index(results: Dict[str, dict], written: Dict[str, List[Path]], out_dir) -> Path:
    out_dir = Path(out_dir)
    lines = ["# Heat-stress analysis report", ""]
    for name, pkg in results.items():
        lines.append(f"## {pkg.get('title', name)}")
        lines.append("")
        if pkg.get("error"):
            lines.append(f"Not analysed: {pkg['error']}")
            lines.append("")
            continue
        if pkg.get("narrative"):
            lines.append("```")
            lines.append(pkg["narrative"])
            lines.append("```")
            lines.append("")
        for path in written.get(name, []):
            rel = path.relative_to(out_dir).as_posix()
            if path.suffix == ".png":
                lines.append(f"![{path.stem}]({rel})")
            else:
                lines.append(f"- [{path.name}]({rel})")
        lines.append("")
    index = out_dir / "report.md"
    index.write_text("\n".join(lines), encoding="utf-8")
    return index
