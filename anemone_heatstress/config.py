# config.py
# -----------------------------------------------------------------------------
# Run configuration for the heat-stress analysis.
#   • AnalysisConfig: folders, alpha, treatment order, exclusions, model knobs.
#   • DatasetSpec: per-table column mapping (raw header aliases → canonical).
# Values come from defaults, an optional JSON file, then CLI flags.
# -----------------------------------------------------------------------------

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

DATASETS: Tuple[str, ...] = ("pam", "diameter", "feeding", "retraction", "symbionts")

DEFAULT_FILES: Dict[str, str] = {
    "pam": "pam.csv",
    "diameter": "diameter.csv",
    "feeding": "feeding.csv",
    "retraction": "retraction.csv",
    "symbionts": "symbionts.csv",
}

RETRACTION_LEVELS: List[str] = ["extended", "partial", "mostly", "retracted"]

# Columns every dataset carries after cleaning.
ID_COLUMNS: Tuple[str, ...] = ("Date", "Day", "Timepoint", "Anemone", "Tank", "Treatment")

COMMON_ALIASES: Dict[str, str] = {
    "date": "Date",
    "sampling date": "Date",
    "anemone": "Anemone",
    "anemone id": "Anemone",
    "anemone_id": "Anemone",
    "id": "Anemone",
    "individual": "Anemone",
    "tank": "Tank",
    "tank id": "Tank",
    "treatment": "Treatment",
    "trt": "Treatment",
    "group": "Treatment",
    "exclude": "Exclude",
    "excluded": "Exclude",
    "notes": "Notes",
}


@dataclass
class DatasetSpec:
    """Column mapping and model settings for one of the five tables."""

    name: str
    title: str
    response: str
    ylabel: str
    aliases: Dict[str, str] = field(default_factory=dict)
    required: Sequence[str] = ()
    repeated: bool = True
    # baseline-normalised responses are constant on the first day; model later days only
    drop_baseline: bool = False
    transforms: Sequence[str] = ("none", "log", "sqrt", "boxcox")
    families: Sequence[str] = ("normal", "lognormal", "gamma", "weibull")

    def all_aliases(self) -> Dict[str, str]:
        merged = dict(COMMON_ALIASES)
        merged.update(self.aliases)
        return merged


@dataclass
class AnalysisConfig:
    data_dir: Path = Path("data")
    out_dir: Path = Path("outputs")
    alpha: float = 0.05
    treatments: List[str] = field(default_factory=lambda: ["Control", "Heat"])
    start_date: Optional[str] = None
    excluded_anemones: List[str] = field(default_factory=list)
    min_f0: float = 0.0
    feeding_cutoff_s: float = 900.0
    retraction_levels: List[str] = field(default_factory=lambda: list(RETRACTION_LEVELS))
    prior_scale: float = 2.5
    posterior_draws: int = 4000
    seed: int = 42
    files: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_FILES))
    only: List[str] = field(default_factory=lambda: list(DATASETS))

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)
        self.out_dir = Path(self.out_dir)
        if not 0 < self.alpha < 1:
            raise ValueError(f"alpha must be in (0, 1), got {self.alpha}")
        if len(self.treatments) < 2:
            raise ValueError("at least two treatment levels are required")
        unknown = [d for d in self.only if d not in DATASETS]
        if unknown:
            raise ValueError(f"unknown dataset(s): {', '.join(unknown)}")
        files = dict(DEFAULT_FILES)
        files.update(self.files)
        self.files = files
        self.excluded_anemones = [str(a) for a in self.excluded_anemones]

    @property
    def control(self) -> str:
        return self.treatments[0]

    def path_for(self, dataset: str) -> Path:
        return self.data_dir / self.files[dataset]

    @classmethod
    def from_json(cls, path, **overrides) -> "AnalysisConfig":
        """Load a JSON file of field overrides; keyword overrides win over the file."""
        with open(path, encoding="utf-8") as fh:
            payload = json.load(fh)
        if not isinstance(payload, dict):
            raise ValueError(f"{path}: expected a JSON object")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise ValueError(f"{path}: unknown config key(s): {', '.join(unknown)}")
        payload.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**payload)

    def with_overrides(self, **overrides) -> "AnalysisConfig":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
