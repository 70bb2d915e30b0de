"""
§0 — Configuration surface, defaults, and derived constants.

All tunable parameters live in ``DEFAULTS`` so that every stage reads a
single resolved ``cfg`` dict. Optional YAML files and keyword overrides are
merged on top and validated by ``resolve_config``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Any, Optional, Union

import numpy as np

from .errors import ConfigurationError

# ── Defaults ────────────────────────────────────────────────────────────────
DEFAULTS: Dict[str, Any] = {
    "family":             "binomial",
    "n_folds":            5,
    "seed":               42,
    "base_learner":       "random_forest",
    "meta_objective":     "auto",
    "run_stacked":        True,
    "run_concat":         False,
    "n_jobs":             1,
    "on_layer_error":     "raise",
    # Input contract column names
    "subject_col":        "subjectID",
    "outcome_col":        "Y",
    "layer_col":          "featureType",
    # Meta combiner
    "meta_max_iter":      1000,
    "rank_loss_scale":    10.0,
    "rank_loss_l2":       1e-3,
    "max_rank_pairs":     200_000,
    "degenerate_tol":     1e-10,
    # Posterior summaries (providers exposing sample_posterior only)
    "n_posterior_draws":  0,
    "credible_level":     0.95,
    "verbose":            False,
}

FAMILIES = ("binomial", "gaussian")
META_OBJECTIVES = ("auto", "sse", "rank_loss")
LAYER_ERROR_POLICIES = ("raise", "drop")

# ── Derived constants for the shipped learners ─────────────────────────────
RIDGE_ALPHAS   = np.logspace(-3, 3, 15)
LOGIT_CS       = np.logspace(-3, 3, 15)
ENET_L1_RATIOS = [0.1, 0.5, 0.7, 0.9, 0.95]
ENET_ALPHAS    = np.logspace(-3, 1, 10)
N_SVD          = 128
INNER_CV       = 3
RF_TREES       = 500
GBT_PARAMS: Dict[str, Any] = {
    "max_iter": 200, "max_depth": 5, "learning_rate": 0.05,
    "min_samples_leaf": 10, "early_stopping": True,
    "n_iter_no_change": 20, "validation_fraction": 0.15,
}


def load_yaml_config(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a YAML override file; an empty file yields an empty dict."""
    import yaml
    if not os.path.exists(path):
        raise ConfigurationError(f"config file not found: {path}")
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must hold a mapping")
    return data


def resolve_config(overrides: Optional[Dict[str, Any]] = None,
                   path: Optional[Union[str, Path]] = None,
                   ) -> Dict[str, Any]:
    """Merge DEFAULTS <- YAML file <- overrides and validate the result."""
    cfg = dict(DEFAULTS)
    extra: Dict[str, Any] = {}
    if path is not None:
        extra.update(load_yaml_config(path))
    if overrides:
        extra.update(overrides)

    unknown = sorted(set(extra) - set(DEFAULTS))
    if unknown:
        raise ConfigurationError(f"unknown configuration keys: {unknown}")
    cfg.update(extra)
    _validate(cfg)
    return cfg


def _validate(cfg: Dict[str, Any]) -> None:
    if cfg["family"] not in FAMILIES:
        raise ConfigurationError(
            f"family must be one of {FAMILIES}, got {cfg['family']!r}")
    if cfg["meta_objective"] not in META_OBJECTIVES:
        raise ConfigurationError(
            f"meta_objective must be one of {META_OBJECTIVES}, "
            f"got {cfg['meta_objective']!r}")
    if cfg["on_layer_error"] not in LAYER_ERROR_POLICIES:
        raise ConfigurationError(
            f"on_layer_error must be one of {LAYER_ERROR_POLICIES}, "
            f"got {cfg['on_layer_error']!r}")

    nf = cfg["n_folds"]
    if isinstance(nf, str):
        if nf.lower() != "loso":
            raise ConfigurationError(
                f"n_folds must be an integer or 'loso', got {nf!r}")
    elif isinstance(nf, bool) or not isinstance(nf, (int, np.integer)):
        raise ConfigurationError(f"n_folds must be an integer, got {nf!r}")
    elif nf < 2:
        raise ConfigurationError(f"n_folds must be >= 2, got {nf}")

    if not isinstance(cfg["base_learner"], (str, dict)) and not hasattr(
            cfg["base_learner"], "fit"):
        raise ConfigurationError(
            "base_learner must be a registered name, a learner instance, "
            "or a mapping of layer name to either")

    if not isinstance(cfg["seed"], (int, np.integer)) or isinstance(cfg["seed"], bool):
        raise ConfigurationError(f"seed must be an integer, got {cfg['seed']!r}")
    for key in ("meta_max_iter", "max_rank_pairs"):
        if int(cfg[key]) < 1:
            raise ConfigurationError(f"{key} must be positive")
    if int(cfg["n_posterior_draws"]) < 0:
        raise ConfigurationError("n_posterior_draws must be >= 0")
    if not 0.0 < float(cfg["credible_level"]) < 1.0:
        raise ConfigurationError("credible_level must lie in (0, 1)")
    if float(cfg["rank_loss_scale"]) <= 0 or float(cfg["rank_loss_l2"]) < 0:
        raise ConfigurationError(
            "rank_loss_scale must be > 0 and rank_loss_l2 >= 0")


def print_banner(cfg: Dict[str, Any], layer_names=None):
    """Print startup banner with configuration summary."""
    learner = cfg["base_learner"]
    if not isinstance(learner, (str, dict)):
        learner = type(learner).__name__
    print("=" * 70)
    print("Integrated Learner  (late-fusion stacking over omics layers)")
    print("=" * 70)
    print(f"  Outcome family       : {cfg['family']}")
    print(f"  Folds                : {cfg['n_folds']} (seed={cfg['seed']})")
    print(f"  Base learner         : {learner}")
    print(f"  Meta objective       : {cfg['meta_objective']}")
    print(f"  Stacked / concat     : {cfg['run_stacked']} / {cfg['run_concat']}")
    print(f"  Layer error policy   : {cfg['on_layer_error']}")
    if layer_names is not None:
        print(f"  Layers               : {list(layer_names)}")
    print("=" * 70)
