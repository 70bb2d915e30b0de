"""
Shared utility functions: metrics, read-only array helpers, summary JSON I/O.

Every module imports from here rather than reimplementing these primitives.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Any, Union

import numpy as np
from scipy.stats import spearmanr, pearsonr
from sklearn.metrics import roc_auc_score, brier_score_loss, log_loss


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  Array helpers                                                           ║
# ╚═══════════════════════════════════════════════════════════════════════════╝

def readonly(arr) -> np.ndarray:
    """Copy into a float/int ndarray that refuses in-place writes."""
    out = np.array(arr, copy=True)
    out.setflags(write=False)
    return out


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  Metric functions                                                        ║
# ╚═══════════════════════════════════════════════════════════════════════════╝

def spearman_np(a, b):
    a, b = np.asarray(a, dtype=float), np.asarray(b, dtype=float)
    m = np.isfinite(a) & np.isfinite(b)
    if m.sum() < 3 or np.ptp(a[m]) == 0 or np.ptp(b[m]) == 0:
        return np.nan
    return float(spearmanr(a[m], b[m]).statistic)


def pearson_np(a, b):
    a, b = np.asarray(a, dtype=float), np.asarray(b, dtype=float)
    m = np.isfinite(a) & np.isfinite(b)
    if m.sum() < 3 or np.ptp(a[m]) == 0 or np.ptp(b[m]) == 0:
        return np.nan
    return float(pearsonr(a[m], b[m]).statistic)


def r2_np(pred, true):
    pred, true = np.asarray(pred, dtype=float), np.asarray(true, dtype=float)
    m = np.isfinite(pred) & np.isfinite(true)
    if m.sum() < 3:
        return np.nan
    p, t = pred[m], true[m]
    ss_res = np.sum((t - p)**2)
    ss_tot = np.sum((t - t.mean())**2)
    return float(1 - ss_res / max(ss_tot, 1e-12))


def auc_np(pred, true):
    pred, true = np.asarray(pred, dtype=float), np.asarray(true, dtype=float)
    m = np.isfinite(pred) & np.isfinite(true)
    if m.sum() < 2 or len(np.unique(true[m])) < 2:
        return np.nan
    return float(roc_auc_score(true[m], pred[m]))


def full_metrics(pred, true, family: str) -> Dict[str, float]:
    """Headline metric plus supporting set for one prediction vector.

    binomial: auc (headline), brier, log_loss.
    gaussian: r2 (headline), spearman, pearson, mae, rmse.
    """
    pred, true = np.asarray(pred, dtype=float), np.asarray(true, dtype=float)
    m = np.isfinite(pred) & np.isfinite(true)
    n = int(m.sum())
    p, t = pred[m], true[m]

    if family == "binomial":
        out = {"n": n, "auc": auc_np(p, t), "brier": np.nan, "log_loss": np.nan}
        if n >= 2 and len(np.unique(t)) == 2:
            pc = np.clip(p, 1e-15, 1 - 1e-15)
            out["brier"] = float(brier_score_loss(t, pc))
            out["log_loss"] = float(log_loss(t, pc, labels=[0, 1]))
        return out

    if n < 3:
        return {"n": n, "r2": np.nan, "spearman": np.nan, "pearson": np.nan,
                "mae": np.nan, "rmse": np.nan}
    return {
        "n": n,
        "r2": r2_np(p, t),
        "spearman": spearman_np(p, t),
        "pearson":  pearson_np(p, t),
        "mae": float(np.mean(np.abs(p - t))),
        "rmse": float(np.sqrt(np.mean((p - t)**2))),
    }


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  Summary JSON                                                            ║
# ╚═══════════════════════════════════════════════════════════════════════════╝

def _jsonable(v):
    if isinstance(v, np.floating):
        f = float(v)
        return None if not np.isfinite(f) else f
    if isinstance(v, float) and not np.isfinite(v):
        return None
    if isinstance(v, np.integer):
        return int(v)
    if isinstance(v, np.ndarray):
        return [_jsonable(x) for x in v.tolist()]
    if isinstance(v, dict):
        return {str(k): _jsonable(x) for k, x in v.items()}
    if isinstance(v, (list, tuple)):
        return [_jsonable(x) for x in v]
    return v


def write_summary(path: Union[str, Path], summary: Dict[str, Any]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as fh:
        json.dump(_jsonable(summary), fh, indent=2, default=str)
    return path
