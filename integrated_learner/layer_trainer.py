"""
§2 — Per-layer training: one full-data fit plus one fit per fold complement.

Fold-complement model ``f`` is trained on every sample outside fold ``f`` and
predicts only fold ``f``; the held-out predictions of all folds are gathered
into one out-of-fold (OOF) vector that covers each training sample once.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .errors import LayerFitError, SchemaMismatchError
from .folds import FoldAssignment
from .learners import learner_name
from .utils import readonly


@dataclass(frozen=True, eq=False)
class LayerModel:
    """Trained models and OOF predictions for one layer."""

    name: str
    learner: Any
    full_model: Any
    fold_models: Tuple[Any, ...]
    oof: np.ndarray
    feature_names: Tuple[str, ...]
    family: str

    @property
    def learner_name(self) -> str:
        return learner_name(self.learner)

    @property
    def n_features(self) -> int:
        return len(self.feature_names)

    def predict(self, X) -> np.ndarray:
        """Predict with the full-data model."""
        Xa = as_matrix(X, self.feature_names, self.name)
        return np.asarray(self.learner.predict(self.full_model, Xa),
                          dtype=float).ravel()

    def feature_importance(self) -> Optional[pd.Series]:
        if not hasattr(self.learner, "feature_importance"):
            return None
        imp = np.asarray(self.learner.feature_importance(self.full_model),
                         dtype=float).ravel()
        if imp.shape[0] != self.n_features:
            return None
        return pd.Series(imp, index=list(self.feature_names), name=self.name)

    def sample_posterior(self, X, n_draws: int,
                         rng: np.random.Generator) -> Optional[np.ndarray]:
        if n_draws <= 0 or not hasattr(self.learner, "sample_posterior"):
            return None
        Xa = as_matrix(X, self.feature_names, self.name)
        draws = self.learner.sample_posterior(self.full_model, Xa, n_draws, rng)
        return np.asarray(draws, dtype=float)


def as_matrix(X, feature_names: Sequence[str], layer: str) -> np.ndarray:
    """Numeric samples x features array, checking feature order for frames."""
    if isinstance(X, pd.DataFrame):
        if list(map(str, X.columns)) != list(feature_names):
            raise SchemaMismatchError(
                f"layer '{layer}': feature columns differ from training")
        return X.to_numpy(dtype=float)
    Xa = np.asarray(X, dtype=float)
    if Xa.ndim != 2 or Xa.shape[1] != len(feature_names):
        raise SchemaMismatchError(
            f"layer '{layer}': expected {len(feature_names)} features, "
            f"got shape {Xa.shape}")
    return Xa


def _fit_one(layer: str, learner, X: np.ndarray, y: np.ndarray,
             train_pos: np.ndarray, held_pos: Optional[np.ndarray],
             fold: Optional[int], cfg: Mapping[str, Any]):
    try:
        model = learner.fit(X[train_pos], y[train_pos], cfg)
        pred = None
        if held_pos is not None:
            pred = np.asarray(learner.predict(model, X[held_pos]),
                              dtype=float).ravel()
    except Exception as exc:
        raise LayerFitError(layer, fold, f"{type(exc).__name__}: {exc}") from exc

    if pred is not None:
        if pred.shape[0] != len(held_pos):
            raise LayerFitError(
                layer, fold,
                f"{pred.shape[0]} predictions for {len(held_pos)} held-out samples")
        if not np.all(np.isfinite(pred)):
            raise LayerFitError(layer, fold, "non-finite predictions")
    return fold, model, held_pos, pred


def train_layer(name: str, X, y, folds: FoldAssignment, learner,
                cfg: Mapping[str, Any]) -> LayerModel:
    """Fit the full-data model and K fold-complement models for one layer.

    The K + 1 fits are independent and run through ``joblib.Parallel`` with
    ``cfg["n_jobs"]`` workers; each task gets its own index arrays and
    returns its own slot. Any learner failure is raised as LayerFitError
    naming the layer and the fold (None for the full-data fit).
    """
    if isinstance(X, pd.DataFrame):
        feature_names = tuple(map(str, X.columns))
        Xa = X.to_numpy(dtype=float)
    else:
        Xa = np.asarray(X, dtype=float)
        feature_names = tuple(f"{name}_{i}" for i in range(Xa.shape[1]))
    ya = np.asarray(y, dtype=float)
    if cfg["family"] == "binomial":
        ya = ya.astype(int)

    n = folds.n_samples
    if Xa.shape[0] != n or ya.shape[0] != n:
        raise SchemaMismatchError(
            f"layer '{name}': {Xa.shape[0]} rows and {ya.shape[0]} outcomes "
            f"for a fold assignment over {n} samples")

    tasks = [(None, np.arange(n), None)]
    tasks += [(f, tr, va) for f, tr, va in folds.splits()]
    results = Parallel(n_jobs=cfg.get("n_jobs", 1))(
        delayed(_fit_one)(name, learner, Xa, ya, tr, va, f, cfg)
        for f, tr, va in tasks)

    full_model = None
    fold_models: Dict[int, Any] = {}
    oof = np.full(n, np.nan, dtype=float)
    for fold, model, held_pos, pred in results:
        if fold is None:
            full_model = model
        else:
            fold_models[fold] = model
            oof[held_pos] = pred

    if np.isnan(oof).any():
        raise LayerFitError(name, None,
                            f"{int(np.isnan(oof).sum())} samples without an OOF prediction")

    if cfg.get("verbose"):
        print(f"  [Layer] {name}: {Xa.shape[1]} features, "
              f"{folds.n_folds} folds + full fit ({learner_name(learner)})")

    return LayerModel(
        name=name,
        learner=learner,
        full_model=full_model,
        fold_models=tuple(fold_models[f] for f in range(folds.n_folds)),
        oof=readonly(oof),
        feature_names=feature_names,
        family=cfg["family"],
    )
