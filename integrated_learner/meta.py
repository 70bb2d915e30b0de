"""
§4 — Meta combiner: non-negative weights over the out-of-fold layer
predictions.

Two objectives, selected once from the configuration:

  - SUM_SQUARED_ERROR: non-negative least squares of the outcome on the OOF
    columns (``scipy.optimize.nnls``).
  - RANK_LOSS: smooth pairwise-logistic surrogate of 1 - AUC over
    (positive, negative) sample pairs, minimized with SLSQP on the simplex
    (w >= 0, sum(w) = 1); AUC ignores the scale of w.

Both return raw weights; the normalized variant divides by their sum.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.optimize import nnls, minimize
from scipy.special import expit

from .errors import ConfigurationError, OptimizationError, SchemaMismatchError
from .utils import readonly


class ObjectiveKind(Enum):
    SUM_SQUARED_ERROR = "sse"
    RANK_LOSS = "rank_loss"


class SumSquaredError:
    kind = ObjectiveKind.SUM_SQUARED_ERROR

    def __init__(self, max_iter: int = 1000):
        self.max_iter = int(max_iter)

    def solve(self, Z: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, Optional[int]]:
        try:
            w, _ = nnls(Z, y, maxiter=self.max_iter)
        except RuntimeError as exc:
            raise OptimizationError(
                f"NNLS did not converge in {self.max_iter} iterations: {exc}") from exc
        return w, None


class RankLoss:
    """Pairwise logistic rank loss over the weight simplex.

    The small L2 term spreads weight across layers that rank equally well.
    """

    kind = ObjectiveKind.RANK_LOSS

    def __init__(self, max_iter: int = 1000, scale: float = 10.0,
                 l2: float = 1e-3, max_pairs: int = 200_000, seed: int = 42):
        self.max_iter = int(max_iter)
        self.scale = float(scale)
        self.l2 = float(l2)
        self.max_pairs = int(max_pairs)
        self.seed = int(seed)

    def pair_differences(self, Z: np.ndarray, y: np.ndarray) -> np.ndarray:
        pos = np.flatnonzero(y == 1)
        neg = np.flatnonzero(y == 0)
        if pos.size == 0 or neg.size == 0:
            raise OptimizationError("rank loss needs both outcome classes")
        n_pairs = pos.size * neg.size
        if n_pairs <= self.max_pairs:
            pi = np.repeat(pos, neg.size)
            ni = np.tile(neg, pos.size)
        else:
            rng = np.random.default_rng(self.seed)
            pi = rng.choice(pos, size=self.max_pairs)
            ni = rng.choice(neg, size=self.max_pairs)
        return Z[pi] - Z[ni]

    def solve(self, Z: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, Optional[int]]:
        D = self.pair_differences(Z, np.asarray(y).astype(int))
        n_pairs, n_cols = D.shape
        if n_cols == 1:
            return np.ones(1), 0
        s, l2 = self.scale, self.l2

        def fun(w):
            m = s * (D @ w)
            loss = np.mean(np.logaddexp(0.0, -m)) + l2 * (w @ w)
            grad = -s * (D.T @ expit(-m)) / n_pairs + 2.0 * l2 * w
            return loss, grad

        x0 = np.full(n_cols, 1.0 / n_cols)
        f0 = fun(x0)[0]
        res = minimize(fun, x0, jac=True, method="SLSQP",
                       bounds=[(0.0, 1.0)] * n_cols,
                       constraints=[{"type": "eq",
                                     "fun": lambda w: w.sum() - 1.0,
                                     "jac": lambda w: np.ones_like(w)}],
                       options={"maxiter": self.max_iter})
        if not np.isfinite(res.x).all():
            raise OptimizationError("rank-loss solver returned non-finite weights")
        if not res.success:
            # a line-search stop counts only after progress from the start point
            if res.status == 9 or res.nit == 0 or res.fun > f0:
                raise OptimizationError(
                    f"rank-loss solver failed after {res.nit} iterations: "
                    f"{res.message}")
        w = np.clip(res.x, 0.0, None)
        if w.sum() <= 0:
            raise OptimizationError("rank-loss solver left the weight simplex")
        return w / w.sum(), int(res.nit)


def make_objective(cfg: Mapping[str, Any]):
    """Pick the objective once: explicit choice, else by outcome family."""
    choice = cfg.get("meta_objective", "auto")
    if choice == "auto":
        choice = "rank_loss" if cfg["family"] == "binomial" else "sse"
    if choice == "sse":
        return SumSquaredError(max_iter=cfg["meta_max_iter"])
    if choice == "rank_loss":
        if cfg["family"] != "binomial":
            raise ConfigurationError("rank_loss meta objective needs a binomial outcome")
        return RankLoss(max_iter=cfg["meta_max_iter"],
                        scale=cfg["rank_loss_scale"], l2=cfg["rank_loss_l2"],
                        max_pairs=cfg["max_rank_pairs"], seed=cfg["seed"])
    raise ConfigurationError(f"unknown meta objective {choice!r}")


@dataclass(frozen=True, eq=False)
class MetaModel:
    """Fitted layer weights and the combined-prediction rule."""

    layers: Tuple[str, ...]
    raw_weights: np.ndarray
    weights: np.ndarray
    objective: ObjectiveKind
    n_iter: Optional[int]
    degenerate: Tuple[str, ...]

    @property
    def coef(self) -> np.ndarray:
        """Weights used by ``predict``.

        Raw weights for sum-squared-error (they are the least-squares fit);
        normalized weights for rank loss, whose scale carries no meaning and
        whose normalized combination of probabilities stays on [0, 1].
        """
        if self.objective is ObjectiveKind.RANK_LOSS:
            return self.weights
        return self.raw_weights

    def predict(self, layer_predictions) -> np.ndarray:
        """Combined prediction: sum over layers of coef_i * prediction_i."""
        if isinstance(layer_predictions, pd.DataFrame):
            missing = [n for n in self.layers if n not in layer_predictions.columns]
            if missing:
                raise SchemaMismatchError(f"predictions missing layers {missing}")
            M = layer_predictions.loc[:, list(self.layers)].to_numpy(dtype=float)
        else:
            M = np.asarray(layer_predictions, dtype=float)
            if M.ndim != 2 or M.shape[1] != len(self.layers):
                raise SchemaMismatchError(
                    f"expected {len(self.layers)} prediction columns, got shape {M.shape}")
        return M @ self.coef

    def weights_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "raw_weight": self.raw_weights,
            "weight": self.weights,
            "degenerate": [n in self.degenerate for n in self.layers],
        }, index=pd.Index(self.layers, name="layer"))


def degenerate_columns(Z: np.ndarray, tol: float = 1e-10) -> np.ndarray:
    """Boolean mask of zero-variance OOF columns."""
    return np.ptp(Z, axis=0) <= tol


def fit_meta(oof: pd.DataFrame, y, cfg: Mapping[str, Any],
             objective=None) -> MetaModel:
    """Fit non-negative layer weights on the OOF matrix.

    Zero-variance columns are pinned to weight 0 and left out of the solve.
    When no column carries usable signal (all degenerate, or NNLS settles on
    w = 0) the zero weight vector is returned with a RuntimeWarning and the
    normalized weights are zero too. Raises OptimizationError when the solver
    fails to converge or returns non-finite weights.
    """
    objective = objective or make_objective(cfg)
    Z = oof.to_numpy(dtype=float)
    ya = np.asarray(y, dtype=float)
    layers = tuple(map(str, oof.columns))
    if Z.shape[0] != ya.shape[0]:
        raise SchemaMismatchError(
            f"OOF matrix has {Z.shape[0]} rows for {ya.shape[0]} outcomes")
    if not np.isfinite(Z).all():
        raise OptimizationError("OOF matrix contains non-finite values")

    degen = degenerate_columns(Z, cfg.get("degenerate_tol", 1e-10))
    raw = np.zeros(Z.shape[1], dtype=float)
    n_iter = None
    if degen.all():
        warnings.warn("every layer's OOF predictions are constant; "
                      "all meta weights set to 0", RuntimeWarning, stacklevel=2)
    else:
        w_sub, n_iter = objective.solve(Z[:, ~degen], ya)
        raw[~degen] = w_sub
        if not np.isfinite(raw).all():
            raise OptimizationError("solver returned non-finite weights")
        if raw.sum() <= 0:
            warnings.warn("no layer improves on a zero prediction; "
                          "all meta weights are 0", RuntimeWarning, stacklevel=2)

    total = raw.sum()
    meta = MetaModel(
        layers=layers,
        raw_weights=readonly(raw),
        weights=readonly(raw / total if total > 0 else raw),
        objective=objective.kind,
        n_iter=n_iter,
        degenerate=tuple(n for n, d in zip(layers, degen) if d),
    )
    if cfg.get("verbose"):
        print(f"\n  [Meta] objective={objective.kind.value}")
        for name, r, w in zip(layers, meta.raw_weights, meta.weights):
            print(f"    {name:20s} raw={r:.4f}  normalized={w:.3f}")
    return meta
