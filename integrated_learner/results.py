"""
§6 — Result object: an immutable snapshot of one fit, shaped for downstream
reporting and plotting code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import numpy as np
import pandas as pd

from .evaluation import EvaluationReport, metric_name
from .folds import FoldAssignment
from .layer_trainer import LayerModel
from .meta import MetaModel


@dataclass(frozen=True, eq=False)
class IntegratedLearnerResult:
    """Everything a single fit produced; read-only."""

    family: str
    folds: FoldAssignment
    layer_models: Mapping[str, LayerModel]
    _oof: pd.DataFrame
    meta: Optional[MetaModel]
    concat_model: Optional[LayerModel]
    train: EvaluationReport
    valid: Optional[EvaluationReport]
    dropped_layers: Mapping[str, str]
    posterior: Mapping[str, Mapping[str, np.ndarray]]
    config: Mapping[str, Any]
    computation_time: float
    timings: Mapping[str, float] = field(default_factory=dict)

    @property
    def oof(self) -> pd.DataFrame:
        """Samples x layers OOF matrix; a fresh copy on each access."""
        return self._oof.copy()

    # ── Lookups ────────────────────────────────────────────────────────
    @property
    def layers(self):
        return tuple(self.layer_models)

    @property
    def weights(self) -> Optional[pd.Series]:
        if self.meta is None:
            return None
        return pd.Series(self.meta.weights, index=list(self.meta.layers),
                         name="weight")

    def _report(self, split: str) -> EvaluationReport:
        if split == "train":
            return self.train
        if split == "valid":
            if self.valid is None:
                raise KeyError("no validation data was evaluated")
            return self.valid
        raise KeyError(f"split must be 'train' or 'valid', got {split!r}")

    def metrics_frame(self) -> pd.DataFrame:
        """One row per (split, model) with the family's metric set."""
        rows = []
        for rep in (self.train, self.valid):
            if rep is None:
                continue
            for model, mets in rep.metrics.items():
                rows.append({"split": rep.split, "model": model, **mets})
        return pd.DataFrame(rows)

    def metric(self, model: str, split: str = "train") -> float:
        return self._report(split).metric(model)

    def weights_frame(self) -> pd.DataFrame:
        """Per-layer raw and normalized weights (bar-chart data)."""
        if self.meta is None:
            return pd.DataFrame(columns=["raw_weight", "weight", "degenerate"])
        return self.meta.weights_frame()

    def roc_curve(self, model: str, split: str = "train") -> pd.DataFrame:
        if self.family != "binomial":
            raise ValueError("ROC curves are defined for binomial outcomes only")
        return self._report(split).roc_points(model)

    def r2_values(self, split: str = "train") -> pd.Series:
        if self.family != "gaussian":
            raise ValueError("R^2 values are defined for gaussian outcomes only")
        rep = self._report(split)
        return pd.Series({m: v["r2"] for m, v in rep.metrics.items()}, name="r2")

    def predictions(self, split: str = "train") -> pd.DataFrame:
        return self._report(split).predictions

    def feature_importance(self, layer: str) -> Optional[pd.Series]:
        if layer in self.layer_models:
            return self.layer_models[layer].feature_importance()
        if self.concat_model is not None and layer == self.concat_model.name:
            return self.concat_model.feature_importance()
        raise KeyError(f"unknown layer {layer!r}")

    def credible_intervals(self, layer: str, split: str = "train",
                           level: Optional[float] = None) -> Optional[pd.DataFrame]:
        """Posterior mean and equal-tailed interval per sample, if drawn."""
        draws = self.posterior.get(split, {}).get(layer)
        if draws is None:
            return None
        level = float(level if level is not None else self.config["credible_level"])
        alpha = (1 - level) / 2
        return pd.DataFrame({
            "mean": draws.mean(axis=0),
            "lo": np.quantile(draws, alpha, axis=0),
            "hi": np.quantile(draws, 1 - alpha, axis=0),
        }, index=self._report(split).predictions.index)

    def summary(self) -> Dict[str, Any]:
        """JSON-ready digest for report writers."""
        key = metric_name(self.family)
        out: Dict[str, Any] = {
            "family": self.family,
            "metric": key,
            "computation_time_s": self.computation_time,
            "timings_s": dict(self.timings),
            "n_train": int(self.folds.n_samples),
            "n_folds": int(self.folds.n_folds),
            "seed": int(self.folds.seed),
            "layers": list(self.layers),
            "dropped_layers": dict(self.dropped_layers),
            "train": {m: v[key] for m, v in self.train.metrics.items()},
        }
        if self.valid is not None:
            out["n_valid"] = int(len(self.valid.y))
            out["valid"] = {m: v[key] for m, v in self.valid.metrics.items()}
        if self.meta is not None:
            out["meta_objective"] = self.meta.objective.value
            out["weights"] = dict(zip(self.meta.layers, self.meta.weights.tolist()))
            out["raw_weights"] = dict(zip(self.meta.layers,
                                          self.meta.raw_weights.tolist()))
        out["config"] = {k: (v if isinstance(v, (str, int, float, bool)) else repr(v))
                         for k, v in self.config.items()}
        return out


def assemble_result(**parts) -> IntegratedLearnerResult:
    """Freeze the mapping-valued parts and build the result."""
    parts["_oof"] = parts.pop("oof").copy()
    parts["layer_models"] = MappingProxyType(dict(parts["layer_models"]))
    parts["dropped_layers"] = MappingProxyType(dict(parts.get("dropped_layers") or {}))
    parts["posterior"] = MappingProxyType(
        {s: MappingProxyType(dict(d)) for s, d in (parts.get("posterior") or {}).items()})
    parts["config"] = MappingProxyType(dict(parts["config"]))
    parts["timings"] = MappingProxyType(dict(parts.get("timings") or {}))
    return IntegratedLearnerResult(**parts)
