import json

import pytest

from anemone_heatstress.cli import build_parser, config_from_args, main


def test_parser_overrides(tmp_path):
    args = build_parser().parse_args([
        "--data-dir", str(tmp_path), "--alpha", "0.01", "--exclude", "A01", "A02",
        "--only", "pam", "retraction", "--start-date", "2024-05-01",
    ])
    cfg = config_from_args(args)
    assert cfg.data_dir == tmp_path
    assert cfg.alpha == 0.01
    assert cfg.excluded_anemones == ["A01", "A02"]
    assert cfg.only == ["pam", "retraction"]
    assert cfg.start_date == "2024-05-01"
    assert cfg.seed == 42


def test_unknown_dataset_is_a_usage_error():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--only", "photosynthesis"])


def test_config_file_with_flag_override(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"alpha": 0.01, "seed": 5}))
    args = build_parser().parse_args(["--config", str(path), "--seed", "9"])
    cfg = config_from_args(args)
    assert cfg.alpha == 0.01
    assert cfg.seed == 9


def test_main_writes_report(data_dir, cfg):
    code = main(["--data-dir", str(data_dir), "--out-dir", str(cfg.out_dir),
                 "--only", "pam", "symbionts", "-q"])
    assert code == 0
    assert (cfg.out_dir / "report.md").exists()
    assert (cfg.out_dir / "pam" / "insights.txt").exists()
    assert (cfg.out_dir / "symbionts" / "summary.csv").exists()
    info = json.loads((cfg.out_dir / "run_info.json").read_text())
    assert set(info["datasets"]) == {"pam", "symbionts"}
    assert info["params"]["alpha"] == 0.05


def test_main_nothing_to_analyse(tmp_path):
    assert main(["--data-dir", str(tmp_path / "empty"), "--out-dir", str(tmp_path / "out"), "-q"]) == 1
    assert not (tmp_path / "out").exists()


def test_main_bad_configuration(tmp_path):
    assert main(["--data-dir", str(tmp_path), "--alpha", "2", "-q"]) == 2
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"colour": "red"}))
    assert main(["--config", str(path), "-q"]) == 2
    assert main(["--config", str(tmp_path / "missing.json"), "-q"]) == 2
