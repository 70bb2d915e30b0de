#!/usr/bin/env python3
"""
IntegratedLearner command-line entry point.

Reads the input tables, runs the fit and writes:
  <out>/tables/metrics.csv               per split x model metric set
  <out>/tables/weights.csv               meta-combiner weights per layer
  <out>/tables/oof_predictions.csv       OOF predictions (layers, stacked, concat)
  <out>/tables/fold_assignment.csv       sample -> subject -> fold
  <out>/tables/validation_predictions.csv  (when validation data is given)
  <out>/tables/summary.json              run digest
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional, Sequence

from .config import resolve_config
from .data_loading import load_inputs
from .pipeline import fit_integrated_learner
from .results import IntegratedLearnerResult
from .utils import write_summary


def write_tables(result: IntegratedLearnerResult, out_dir) -> Path:
    """Write the result tables under ``<out_dir>/tables`` and return that path."""
    tab = Path(out_dir) / "tables"
    tab.mkdir(parents=True, exist_ok=True)

    result.metrics_frame().to_csv(tab / "metrics.csv", index=False)
    result.weights_frame().to_csv(tab / "weights.csv", index_label="layer")
    result.predictions("train").to_csv(tab / "oof_predictions.csv",
                                       index_label="sample_id")
    result.folds.to_frame().to_csv(tab / "fold_assignment.csv", index=False)
    if result.valid is not None:
        result.predictions("valid").to_csv(tab / "validation_predictions.csv",
                                           index_label="sample_id")
    write_summary(tab / "summary.json", result.summary())
    return tab


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="integrated-learner",
        description="Late-fusion stacking of per-layer models over multi-omics data.")
    p.add_argument("--features", required=True,
                   help="features x samples table (CSV, or TSV for .tsv/.txt)")
    p.add_argument("--sample-metadata", required=True,
                   help="sample table with subject id and outcome columns")
    p.add_argument("--feature-metadata", required=True,
                   help="feature table with the layer column")
    p.add_argument("--valid-features", default=None)
    p.add_argument("--valid-sample-metadata", default=None)
    p.add_argument("--config", default=None, help="YAML file of config overrides")
    p.add_argument("--out", default="results", help="output directory")
    p.add_argument("--family", choices=("binomial", "gaussian"), default=None)
    p.add_argument("--folds", default=None,
                   help="number of folds, or 'loso' for leave-one-subject-out")
    p.add_argument("--base-learner", default=None)
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--n-jobs", type=int, default=None)
    p.add_argument("--concat", action="store_true",
                   help="also fit the concatenation baseline")
    p.add_argument("-v", "--verbose", action="store_true")
    return p


def _cli_overrides(args) -> dict:
    overrides = {}
    if args.family is not None:
        overrides["family"] = args.family
    if args.folds is not None:
        overrides["n_folds"] = args.folds if args.folds == "loso" else int(args.folds)
    if args.base_learner is not None:
        overrides["base_learner"] = args.base_learner
    if args.seed is not None:
        overrides["seed"] = args.seed
    if args.n_jobs is not None:
        overrides["n_jobs"] = args.n_jobs
    if args.concat:
        overrides["run_concat"] = True
    if args.verbose:
        overrides["verbose"] = True
    return overrides


def main(argv: Optional[Sequence[str]] = None):
    """Run one fit from the command line."""
    args = build_parser().parse_args(argv)
    if (args.valid_features is None) != (args.valid_sample_metadata is None):
        build_parser().error(
            "--valid-features and --valid-sample-metadata go together")

    # CLI flags win over the YAML file
    cfg = resolve_config(_cli_overrides(args), args.config)

    layers, sm = load_inputs(args.features, args.sample_metadata,
                             args.feature_metadata, cfg)
    valid_layers = valid_sm = None
    if args.valid_features is not None:
        valid_layers, valid_sm = load_inputs(
            args.valid_features, args.valid_sample_metadata,
            args.feature_metadata, cfg, require_subject=False)

    result = fit_integrated_learner(layers, sm, valid_layers=valid_layers,
                                    valid_metadata=valid_sm, config=cfg)
    tab = write_tables(result, args.out)

    print(f"\n{'=' * 60}")
    print("IntegratedLearner: COMPLETE")
    print(f"{'=' * 60}")
    summ = result.summary()
    for split in ("train", "valid"):
        if split in summ:
            for model, value in summ[split].items():
                print(f"  {split:5s} {model:20s} {summ['metric']}={value:.3f}")
    print(f"\n  Outputs in: {tab}/")
    return result


if __name__ == "__main__":
    main()
