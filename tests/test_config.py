import json
from pathlib import Path

import pytest

from anemone_heatstress.config import DATASETS, DEFAULT_FILES, AnalysisConfig


def test_defaults():
    cfg = AnalysisConfig()
    assert cfg.alpha == 0.05
    assert cfg.treatments == ["Control", "Heat"]
    assert cfg.control == "Control"
    assert cfg.only == list(DATASETS)
    assert cfg.path_for("pam") == Path("data") / DEFAULT_FILES["pam"]


def test_partial_file_mapping_keeps_defaults():
    cfg = AnalysisConfig(files={"pam": "fluorometry.csv"})
    assert cfg.files["pam"] == "fluorometry.csv"
    assert cfg.files["symbionts"] == "symbionts.csv"


@pytest.mark.parametrize("kwargs", [
    dict(alpha=0),
    dict(alpha=1.5),
    dict(treatments=["Heat"]),
    dict(only=["pam", "photosynthesis"]),
])
def test_invalid_values_raise(kwargs):
    with pytest.raises(ValueError):
        AnalysisConfig(**kwargs)


def test_from_json_with_overrides(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"alpha": 0.01, "excluded_anemones": [7, "A03"], "seed": 1}))
    cfg = AnalysisConfig.from_json(path, seed=99, start_date=None)
    assert cfg.alpha == 0.01
    assert cfg.excluded_anemones == ["7", "A03"]
    assert cfg.seed == 99
    assert cfg.start_date is None


def test_from_json_rejects_unknown_keys(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"alpha": 0.01, "colour": "red"}))
    with pytest.raises(ValueError, match="colour"):
        AnalysisConfig.from_json(path)


def test_with_overrides_ignores_none():
    cfg = AnalysisConfig().with_overrides(alpha=0.1, seed=None, only=["pam"])
    assert cfg.alpha == 0.1
    assert cfg.seed == 42
    assert cfg.only == ["pam"]
