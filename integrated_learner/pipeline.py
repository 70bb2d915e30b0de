"""
Pipeline entry point. Runs every stage in order:
  §0  Configuration + input checks (fail fast, before any fit)
  §1  Subject-grouped folds
  §2-3 Per-layer models + OOF matrix
  §4  Meta combiner (stacked model)
  §4b Concatenation baseline
  §5  Training (OOF) and validation metrics
  §6  Result object
"""

from __future__ import annotations

import time
import warnings
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import numpy as np
import pandas as pd

from .config import resolve_config, print_banner
from .data_loading import check_sample_metadata
from .errors import ConfigurationError, LayerFitError
from .evaluation import (
    check_validation_schema, training_report, evaluate_validation, metric_name,
)
from .folds import partition_subjects
from .learners import CONCAT_KEY, resolve_layer_learners
from .meta import fit_meta, make_objective
from .orchestrator import check_layer_alignment, run_layers, run_concatenated
from .results import IntegratedLearnerResult, assemble_result
from .utils import readonly


def _feature_names(name: str, X) -> list:
    if isinstance(X, pd.DataFrame):
        return list(map(str, X.columns))
    return [f"{name}_{i}" for i in range(np.shape(X)[1])]


def _posterior_draws(models, layers, n_draws: int, seed: int) -> Dict[str, np.ndarray]:
    rng = np.random.default_rng(seed)
    out = {}
    for name, model in models.items():
        draws = model.sample_posterior(layers[name], n_draws, rng)
        if draws is not None:
            out[name] = readonly(draws)
    return out


def fit_integrated_learner(layers: Mapping[str, Any],
                           sample_metadata: pd.DataFrame,
                           valid_layers: Optional[Mapping[str, Any]] = None,
                           valid_metadata: Optional[pd.DataFrame] = None,
                           config: Optional[Dict[str, Any]] = None,
                           config_path: Optional[Union[str, Path]] = None,
                           ) -> IntegratedLearnerResult:
    """Fit per-layer models, stack them, and evaluate.

    ``layers`` maps layer name -> samples x features frame (or array), all in
    the row order of ``sample_metadata``; the mapping order fixes the column
    order of the OOF matrix and the weight vector. ``sample_metadata`` holds
    the subject-id and outcome columns named in the configuration.
    ``valid_layers`` / ``valid_metadata`` optionally give an independent
    holdout set with the same layers and feature order.

    Configuration and schema problems raise before any model is fit. Any
    error aborts the call; no partial result is returned.
    """
    t_start = time.perf_counter()
    timings: Dict[str, float] = {}

    # ── §0  Configuration + input checks ──────────────────────────────
    cfg = resolve_config(config, config_path)
    family = cfg["family"]
    verbose = cfg["verbose"]
    layers = dict(layers)
    names = list(layers)

    subjects, y = check_sample_metadata(sample_metadata, cfg)
    sample_ids = list(map(str, sample_metadata.index))
    check_layer_alignment(layers, len(y), sample_ids)

    learners = resolve_layer_learners(cfg["base_learner"], names, family,
                                      with_concat=cfg["run_concat"])
    objective = make_objective(cfg) if cfg["run_stacked"] else None

    y_valid = None
    if (valid_layers is None) != (valid_metadata is None):
        raise ConfigurationError(
            "validation needs both valid_layers and valid_metadata")
    if valid_layers is not None:
        valid_layers = dict(valid_layers)
        _, y_valid = check_sample_metadata(valid_metadata, cfg, require_subject=False)
        check_validation_schema({n: _feature_names(n, X) for n, X in layers.items()},
                                valid_layers)
        check_layer_alignment(valid_layers, len(y_valid),
                              list(map(str, valid_metadata.index)))

    if verbose:
        print_banner(cfg, names)
        print(f"  Samples: TRAIN={len(y)}"
              + (f", VALID={len(y_valid)}" if y_valid is not None else ""))

    # ── §1  Folds ─────────────────────────────────────────────────────
    t0 = time.perf_counter()
    folds = partition_subjects(subjects, cfg["n_folds"], cfg["seed"],
                               sample_ids=sample_ids)
    timings["folds"] = time.perf_counter() - t0
    if verbose:
        print(f"  [Folds] {len(folds.subject_folds)} subjects -> "
              f"{folds.n_folds} folds; leakage check passed")

    # ── §2-3 Layer models + OOF matrix ────────────────────────────────
    t0 = time.perf_counter()
    oof, models, dropped = run_layers(layers, y, folds, learners, cfg)
    timings["layers"] = time.perf_counter() - t0

    # ── §4  Meta combiner ─────────────────────────────────────────────
    meta = None
    if cfg["run_stacked"]:
        t0 = time.perf_counter()
        meta = fit_meta(oof, y, cfg, objective)
        timings["meta"] = time.perf_counter() - t0

    # ── §4b Concatenation baseline ────────────────────────────────────
    concat = None
    if cfg["run_concat"]:
        t0 = time.perf_counter()
        kept = {n: layers[n] for n in models}
        try:
            concat = run_concatenated(kept, y, folds, learners[CONCAT_KEY], cfg)
        except LayerFitError as err:
            if cfg["on_layer_error"] != "drop":
                raise
            warnings.warn(f"dropping {err}", RuntimeWarning, stacklevel=2)
            dropped[CONCAT_KEY] = str(err)
        timings["concat"] = time.perf_counter() - t0

    # ── §5  Metrics ───────────────────────────────────────────────────
    train_rep = training_report(oof, y, family, meta, concat)
    valid_rep = None
    if valid_layers is not None:
        t0 = time.perf_counter()
        valid_rep = evaluate_validation(models, valid_layers, y_valid, family,
                                        meta, concat)
        timings["validation"] = time.perf_counter() - t0
        if verbose:
            print(f"\n  [Validation] {len(y_valid)} samples scored with "
                  f"{len(models)} full-data layer models")

    posterior: Dict[str, Dict[str, np.ndarray]] = {}
    if cfg["n_posterior_draws"] > 0:
        posterior["train"] = _posterior_draws(
            models, layers, cfg["n_posterior_draws"], cfg["seed"])
        if valid_layers is not None:
            posterior["valid"] = _posterior_draws(
                models, valid_layers, cfg["n_posterior_draws"], cfg["seed"] + 1)

    if verbose:
        key = metric_name(family).upper()
        print(f"\n{'=' * 60}")
        print(f"SUMMARY ({key})")
        print(f"{'=' * 60}")
        for model in train_rep.predictions.columns:
            line = f"  {model:20s} train={train_rep.metric(model):.3f}"
            if valid_rep is not None:
                line += f"  valid={valid_rep.metric(model):.3f}"
            print(line)

    # ── §6  Result ────────────────────────────────────────────────────
    return assemble_result(
        family=family,
        folds=folds,
        layer_models=models,
        oof=oof,
        meta=meta,
        concat_model=concat,
        train=train_rep,
        valid=valid_rep,
        dropped_layers=dropped,
        posterior=posterior,
        config=cfg,
        computation_time=time.perf_counter() - t_start,
        timings=timings,
    )
