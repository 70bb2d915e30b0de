"""
§3 — Cross-layer orchestration: run the layer trainer over every layer with
one shared fold assignment and gather the out-of-fold prediction matrix.
"""

from __future__ import annotations

import warnings
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import ConfigurationError, LayerFitError, SchemaMismatchError
from .folds import FoldAssignment
from .layer_trainer import LayerModel, train_layer
from .learners import CONCAT_KEY
from .utils import auc_np, r2_np


def check_layer_alignment(layers: Mapping[str, Any], n_samples: int,
                          sample_ids: Optional[Sequence] = None) -> None:
    """Fail fast unless every layer is numeric, finite, and in one sample order."""
    if not layers:
        raise ConfigurationError("no data layers supplied")
    names = list(layers)
    ref_index = None
    if sample_ids is not None:
        ref_index = pd.Index(list(map(str, sample_ids)))

    for name in names:
        X = layers[name]
        if X.shape[0] != n_samples:
            raise SchemaMismatchError(
                f"layer '{name}' has {X.shape[0]} samples, expected {n_samples}")
        if X.shape[1] == 0:
            raise SchemaMismatchError(f"layer '{name}' has no features")
        if isinstance(X, pd.DataFrame):
            index = X.index.astype(str)
            if ref_index is None:
                ref_index = index
            elif not index.equals(ref_index):
                raise SchemaMismatchError(
                    f"layer '{name}' sample order differs from the other layers")
            if X.columns.duplicated().any():
                raise SchemaMismatchError(f"layer '{name}' has duplicated feature ids")
            non_num = [c for c, dt in X.dtypes.items()
                       if not pd.api.types.is_numeric_dtype(dt)]
            if non_num:
                raise SchemaMismatchError(
                    f"layer '{name}' has non-numeric features {non_num[:5]}")
            values = X.to_numpy(dtype=float)
        else:
            values = np.asarray(X, dtype=float)
        if not np.isfinite(values).all():
            raise SchemaMismatchError(
                f"layer '{name}' contains missing or infinite values")


def concatenate_layers(layers: Mapping[str, Any]) -> pd.DataFrame:
    """Merge all layers into one samples x features frame ("layer:feature")."""
    parts = []
    for name, X in layers.items():
        df = X if isinstance(X, pd.DataFrame) else pd.DataFrame(np.asarray(X))
        df = df.copy()
        df.columns = [f"{name}:{c}" for c in df.columns]
        parts.append(df)
    return pd.concat(parts, axis=1)


def run_layers(layers: Mapping[str, Any], y, folds: FoldAssignment,
               learners: Mapping[str, Any], cfg: Mapping[str, Any],
               ) -> Tuple[pd.DataFrame, Dict[str, LayerModel], Dict[str, str]]:
    """Train every layer on the same folds.

    Returns ``(oof, models, dropped)``: the OOF matrix (rows = samples,
    columns = layers in the caller's order), the trained LayerModel per
    layer, and the layers excluded under ``on_layer_error="drop"`` with the
    reason. Layers are only read, never modified.
    """
    check_layer_alignment(layers, folds.n_samples)
    missing = [n for n in layers if n not in learners]
    if missing:
        raise ConfigurationError(f"no base learner resolved for layers {missing}")

    verbose = cfg.get("verbose")
    if verbose:
        print(f"\n{'=' * 60}")
        print(f"LAYER MODELS ({len(layers)} layers x {folds.n_folds} folds)")
        print(f"{'=' * 60}")

    models: Dict[str, LayerModel] = {}
    dropped: Dict[str, str] = {}
    last_err: Optional[LayerFitError] = None
    for name, X in layers.items():
        try:
            models[name] = train_layer(name, X, y, folds, learners[name], cfg)
            if verbose:
                if cfg["family"] == "binomial":
                    print(f"    {name} OOF AUC={auc_np(models[name].oof, y):.3f}")
                else:
                    print(f"    {name} OOF R2={r2_np(models[name].oof, y):.3f}")
        except LayerFitError as err:
            if cfg.get("on_layer_error", "raise") != "drop":
                raise
            warnings.warn(f"dropping {err}", RuntimeWarning, stacklevel=2)
            dropped[name] = str(err)
            last_err = err

    if not models:
        raise last_err

    oof = pd.DataFrame({n: m.oof for n, m in models.items()},
                       index=pd.Index(list(folds.sample_ids), name="sample_id"))
    oof.columns.name = "layer"
    return oof, models, dropped


def run_concatenated(layers: Mapping[str, Any], y, folds: FoldAssignment,
                     learner, cfg: Mapping[str, Any]) -> LayerModel:
    """Concatenation baseline: one model over all layers' features merged."""
    return train_layer(CONCAT_KEY, concatenate_layers(layers), y, folds,
                       learner, cfg)
