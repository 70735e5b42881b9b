# cli.py
# -----------------------------------------------------------------------------
# Command-line runner: analyse every CSV in a data folder and write tables,
# figures, insights and a markdown index to the output folder.
#
#   anemone-heatstress --data-dir data --out-dir outputs
#   python -m anemone_heatstress --only pam retraction -v
#
# Exit codes: 0 ok, 1 nothing could be analysed, 2 bad configuration.
# -----------------------------------------------------------------------------

from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import DATASETS, AnalysisConfig
from .pipeline import run, succeeded
from .report import write_index, write_package

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="anemone-heatstress",
        description="Statistical analysis of the anemone heat-stress experiment.",
    )
    ap.add_argument("--data-dir", type=str, default=None,
                    help="Folder holding pam.csv, diameter.csv, feeding.csv, retraction.csv, symbionts.csv.")
    ap.add_argument("--out-dir", type=str, default=None, help="Output directory (default: outputs).")
    ap.add_argument("--config", type=str, default=None, help="JSON file with AnalysisConfig fields.")
    ap.add_argument("--alpha", type=float, default=None, help="Significance level (default 0.05).")
    ap.add_argument("--start-date", type=str, default=None,
                    help="Experiment day 0 (YYYY-MM-DD); defaults to the earliest date in each table.")
    ap.add_argument("--exclude", nargs="+", default=None, metavar="ANEMONE",
                    help="Anemone IDs to drop from every dataset.")
    ap.add_argument("--only", nargs="+", default=None, choices=DATASETS, metavar="DATASET",
                    help=f"Analyse a subset of: {', '.join(DATASETS)}.")
    ap.add_argument("--seed", type=int, default=None, help="Seed for posterior draws (default 42).")
    verbosity = ap.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Warnings and errors only.")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap


def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(levelname)s - %(message)s", force=True)


def config_from_args(args: argparse.Namespace) -> AnalysisConfig:
    overrides = dict(
        data_dir=args.data_dir,
        out_dir=args.out_dir,
        alpha=args.alpha,
        start_date=args.start_date,
        excluded_anemones=args.exclude,
        only=args.only,
        seed=args.seed,
    )
    if args.config:
        return AnalysisConfig.from_json(args.config, **overrides)
    return AnalysisConfig().with_overrides(**overrides)


def write_run_info(cfg: AnalysisConfig, results: dict, out_dir: Path) -> Path:
    info = {
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "params": {
            "data_dir": str(cfg.data_dir),
            "alpha": cfg.alpha,
            "treatments": cfg.treatments,
            "start_date": cfg.start_date,
            "excluded_anemones": cfg.excluded_anemones,
            "min_f0": cfg.min_f0,
            "feeding_cutoff_s": cfg.feeding_cutoff_s,
            "prior_scale": cfg.prior_scale,
            "posterior_draws": cfg.posterior_draws,
            "seed": cfg.seed,
        },
        "datasets": {
            name: {"error": pkg.get("error"), "notes": pkg.get("notes", [])}
            for name, pkg in results.items()
        },
    }
    path = out_dir / "run_info.json"
    path.write_text(json.dumps(info, indent=2), encoding="utf-8")
    return path


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose, args.quiet)

    try:
        cfg = config_from_args(args)
    except (OSError, ValueError, TypeError) as e:
        logger.error("configuration error: %s", e)
        return 2

    logger.info("data = %s", cfg.data_dir.resolve())
    logger.info("out  = %s", cfg.out_dir.resolve())
    results = run(cfg)
    done = succeeded(results)
    if not done:
        logger.error("no dataset could be analysed in %s", cfg.data_dir)
        return 1

    cfg.out_dir.mkdir(parents=True, exist_ok=True)
    written = {name: write_package(pkg, cfg.out_dir) for name, pkg in done.items()}
    index = write_index(results, written, cfg.out_dir)
    write_run_info(cfg, results, cfg.out_dir)
    logger.info("analysed %d of %d dataset(s); report at %s", len(done), len(results), index)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
