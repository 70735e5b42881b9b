# app.py
# -----------------------------------------------------------------------------
# Anemone Heat-Stress Lab (Streamlit)
# -----------------------------------------------------------------------------
# What you get:
#   • Upload the five CSVs (PAM, diameter, feeding, retraction, symbionts) or
#     point at a data folder holding pam.csv, diameter.csv, ...
#   • Cleaned long tables with Day / Timepoint / Treatment factors.
#   • Time-course (mean±SEM) and distribution figures, black/grey only.
#   • Transformation choice, two-way ANOVA + effect sizes, Tukey + CLD,
#     mixed ANOVA (pingouin, MixedLM fallback), location/scale models.
#   • Cumulative-link posterior for the retraction scores.
#   • One-click downloads (CSV tables + PNG figures + insights).
#
# Run:  streamlit run app.py
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict

import pandas as pd
import streamlit as st

from anemone_heatstress.config import DATASETS, AnalysisConfig
from anemone_heatstress.datasets import REGISTRY
from anemone_heatstress.errors import DataFormatError
from anemone_heatstress.pipeline import analyze
from anemone_heatstress.plotting import fig_bytes

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

# ------------------------------- UI CONFIG -----------------------------------

st.set_page_config(page_title="Anemone Heat-Stress Lab", layout="wide")
st.markdown(
    "<style>div.block-container{padding-top:1rem;padding-bottom:2rem;}</style>",
    unsafe_allow_html=True,
)

# tables shown first in each tab, in this order; the rest go in an expander
MAIN_TABLES = ["summary", "anova", "tukey", "cld", "mixed_anova", "posterior", "proportions"]


@st.cache_data(show_spinner=False)
def load_csv(file) -> pd.DataFrame:
    return pd.read_csv(file)


def collect_inputs(uploads: Dict[str, object], folder: str) -> Dict[str, pd.DataFrame]:
    """Uploaded files win over files found in the folder."""
    raw = {}
    for name in DATASETS:
        source = None
        if uploads.get(name) is not None:
            source = uploads[name]
        elif folder:
            path = Path(folder) / AnalysisConfig().files[name]
            if path.exists():
                source = str(path)
        if source is None:
            continue
        try:
            raw[name] = load_csv(source)
        except (pd.errors.EmptyDataError, pd.errors.ParserError, UnicodeDecodeError) as e:
            st.warning(f"{name}: cannot read the file ({type(e).__name__}: {e})")
    return raw


def show_downloads(name: str, pkg: dict) -> None:
    st.markdown("**Downloads**")
    items = [(k, t) for k, t in pkg["tables"].items() if t is not None]
    cols = st.columns(4)
    for i, (key, table) in enumerate(items):
        keep_index = not isinstance(table.index, pd.RangeIndex)
        with cols[i % 4]:
            st.download_button(f"{key} (CSV)", table.to_csv(index=keep_index).encode(),
                               f"{name}_{key}.csv", "text/csv", key=f"dl_{name}_{key}")
    cols = st.columns(4)
    for i, (key, fig) in enumerate(pkg["figures"].items()):
        with cols[i % 4]:
            st.download_button(f"{key} (PNG)", fig_bytes(fig), f"{name}_{key}.png", "image/png",
                               key=f"png_{name}_{key}")
    st.download_button("Insights (TXT)", pkg["narrative"].encode("utf-8"), f"{name}_insights.txt",
                       "text/plain", key=f"txt_{name}")


def show_package(name: str, pkg: dict) -> None:
    col_plot, col_stats = st.columns([2, 1.2], gap="large")
    with col_plot:
        for key, fig in pkg["figures"].items():
            st.markdown(f"**{key.replace('_', ' ').capitalize()}**")
            st.pyplot(fig, use_container_width=True)
    with col_stats:
        if pkg.get("transform", "none") != "none":
            st.info(f"Models fitted on the {pkg['transform']} scale.")
        for key in MAIN_TABLES:
            table = pkg["tables"].get(key)
            if table is not None:
                st.markdown(f"**{key.replace('_', ' ').capitalize()}**")
                st.dataframe(table, use_container_width=True)
        st.markdown("**Insights**")
        st.text(pkg["narrative"])
        for note in pkg["notes"]:
            st.warning(note)

    with st.expander("All tables", expanded=False):
        for key, table in pkg["tables"].items():
            if table is None or key in MAIN_TABLES:
                continue
            st.markdown(f"**{key.replace('_', ' ').capitalize()}**")
            st.dataframe(table, use_container_width=True)
    show_downloads(name, pkg)


# ------------------------------- UI LAYOUT -----------------------------------

st.title("Anemone Heat-Stress Lab")
st.caption("Upload the measurement tables and get figures, models and a plain-text summary per dataset.")

with st.sidebar:
    st.header("1) Data")
    uploads = {name: st.file_uploader(f"{REGISTRY[name].SPEC.title}", type=["csv"], key=f"up_{name}")
               for name in DATASETS}
    folder = st.text_input("…or a data folder", value="", help="Folder with pam.csv, diameter.csv, ...")

    st.header("2) Settings")
    treatments_txt = st.text_input("Treatment order (control first)", value="Control, Heat")
    start = st.date_input("Experiment start (day 0)", value=None)
    exclude_txt = st.text_input("Exclude anemones (comma-separated)", value="")
    alpha = st.number_input("Alpha", value=0.05, min_value=0.001, max_value=0.2, step=0.01)
    min_f0 = st.number_input("PAM: minimum F0", value=0.0, min_value=0.0, step=10.0)
    cutoff = st.number_input("Feeding: cutoff (s)", value=900, min_value=1, step=60)
    draws = st.number_input("Posterior draws", value=4000, min_value=500, step=500)
    seed = st.number_input("Seed", value=42, step=1)

raw = collect_inputs(uploads, folder)
if not raw:
    st.info("No tables yet. Upload at least one CSV or give a data folder.")
    st.stop()

try:
    cfg = AnalysisConfig(
        alpha=float(alpha),
        treatments=[t.strip() for t in treatments_txt.split(",") if t.strip()],
        start_date=start.isoformat() if start else None,
        excluded_anemones=[a.strip() for a in exclude_txt.split(",") if a.strip()],
        min_f0=float(min_f0),
        feeding_cutoff_s=float(cutoff),
        posterior_draws=int(draws),
        seed=int(seed),
    )
except ValueError as e:
    st.error(f"Settings: {e}")
    st.stop()

names = [n for n in DATASETS if n in raw]
tabs = st.tabs([REGISTRY[n].SPEC.title for n in names])
for name, tab in zip(names, tabs):
    with tab:
        try:
            with st.spinner(f"Analysing {name}…"):
                pkg = analyze(name, raw[name], cfg)
        except DataFormatError as e:
            st.error(str(e))
            continue
        show_package(name, pkg)
