"""
§5 — Metrics and validation: apply the trained layer models and meta weights
to an independent holdout set, and score training (OOF) and validation
predictions the same way.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.metrics import roc_curve

from .errors import SchemaMismatchError
from .layer_trainer import LayerModel
from .meta import MetaModel
from .orchestrator import concatenate_layers
from .learners import CONCAT_KEY
from .utils import auc_np, r2_np, full_metrics, readonly

STACKED_KEY = "stacked"


def metric_name(family: str) -> str:
    return "auc" if family == "binomial" else "r2"


def compute_metric(pred, y, family: str) -> float:
    """AUC for binomial outcomes, R^2 for gaussian; NaN when undefined."""
    if family == "binomial":
        return auc_np(pred, y)
    return r2_np(pred, y)


def roc_points(pred, y) -> pd.DataFrame:
    """ROC curve points (fpr, tpr, threshold); empty unless both classes occur."""
    pred, y = np.asarray(pred, dtype=float), np.asarray(y, dtype=float)
    m = np.isfinite(pred) & np.isfinite(y)
    if len(np.unique(y[m])) < 2:
        return pd.DataFrame(columns=["fpr", "tpr", "threshold"])
    fpr, tpr, thr = roc_curve(y[m].astype(int), pred[m])
    return pd.DataFrame({"fpr": fpr, "tpr": tpr, "threshold": thr})


def check_validation_schema(train_features: Mapping[str, Sequence[str]],
                            valid_layers: Mapping[str, Any]) -> None:
    """Same layers, same per-layer feature order; sample counts may differ."""
    missing = [n for n in train_features if n not in valid_layers]
    extra = [n for n in valid_layers if n not in train_features]
    if missing or extra:
        raise SchemaMismatchError(
            f"validation layers differ from training: missing={missing}, "
            f"extra={extra}")

    n_rows = None
    ref_index = None
    for name, feats in train_features.items():
        X = valid_layers[name]
        if isinstance(X, pd.DataFrame):
            if list(map(str, X.columns)) != list(feats):
                raise SchemaMismatchError(
                    f"validation layer '{name}' features differ from training "
                    f"(same features in the same order required)")
            if ref_index is None:
                ref_index = X.index
            elif not X.index.equals(ref_index):
                raise SchemaMismatchError(
                    f"validation layer '{name}' sample order differs from the other layers")
        elif np.ndim(X) != 2 or np.shape(X)[1] != len(feats):
            raise SchemaMismatchError(
                f"validation layer '{name}' has shape {np.shape(X)}, "
                f"expected {len(feats)} features")
        if n_rows is None:
            n_rows = X.shape[0]
        elif X.shape[0] != n_rows:
            raise SchemaMismatchError(
                f"validation layer '{name}' has {X.shape[0]} samples, expected {n_rows}")


@dataclass(frozen=True, eq=False)
class EvaluationReport:
    """Per-model predictions and metrics on one data split."""

    split: str
    _predictions: pd.DataFrame
    y: np.ndarray
    metrics: Mapping[str, Mapping[str, float]]
    family: str

    @property
    def predictions(self) -> pd.DataFrame:
        """One column per model; a fresh copy on each access."""
        return self._predictions.copy()

    def metric(self, model: str) -> float:
        return self.metrics[model][metric_name(self.family)]

    def roc_points(self, model: str) -> pd.DataFrame:
        return roc_points(self._predictions[model].to_numpy(), self.y)


def score_predictions(split: str, predictions: pd.DataFrame, y,
                      family: str) -> EvaluationReport:
    """Score every prediction column with the family's metric set."""
    ya = np.asarray(y, dtype=float)
    if len(ya) != len(predictions):
        raise SchemaMismatchError(
            f"{split}: {len(predictions)} predictions for {len(ya)} outcomes")
    metrics = {str(c): MappingProxyType(full_metrics(predictions[c].to_numpy(), ya, family))
               for c in predictions.columns}
    return EvaluationReport(split=split, _predictions=predictions.copy(),
                            y=readonly(ya), metrics=MappingProxyType(metrics),
                            family=family)


def training_report(oof: pd.DataFrame, y, family: str,
                    meta_model: Optional[MetaModel] = None,
                    concat_model: Optional[LayerModel] = None,
                    ) -> EvaluationReport:
    """Score OOF predictions per layer, stacked, and concatenated."""
    preds = oof.copy()
    if meta_model is not None:
        preds[STACKED_KEY] = meta_model.predict(oof)
    if concat_model is not None:
        preds[CONCAT_KEY] = np.asarray(concat_model.oof)
    return score_predictions("train", preds, y, family)


def evaluate_validation(layer_models: Mapping[str, LayerModel],
                        valid_layers: Mapping[str, Any], y_valid, family: str,
                        meta_model: Optional[MetaModel] = None,
                        concat_model: Optional[LayerModel] = None,
                        ) -> EvaluationReport:
    """Predict the validation set with every full-data model and score it."""
    check_validation_schema(
        {n: m.feature_names for n, m in layer_models.items()},
        {n: valid_layers[n] for n in layer_models if n in valid_layers})

    first = valid_layers[next(iter(layer_models))]
    index = (first.index if isinstance(first, pd.DataFrame)
             else pd.RangeIndex(np.shape(first)[0]))
    preds = pd.DataFrame({n: m.predict(valid_layers[n])
                          for n, m in layer_models.items()}, index=index)
    if meta_model is not None:
        preds[STACKED_KEY] = meta_model.predict(preds.loc[:, list(meta_model.layers)])
    if concat_model is not None:
        merged = concatenate_layers({n: valid_layers[n] for n in layer_models})
        preds[CONCAT_KEY] = concat_model.predict(merged)
    return score_predictions("valid", preds, y_valid, family)
