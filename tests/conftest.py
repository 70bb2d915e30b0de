from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
import pytest

from integrated_learner.config import resolve_config


# ---------------------------------------------------------------------------
# Deterministic synthetic multi-omics data. Each layer's first feature is the
# outcome plus Gaussian noise of a layer-specific scale, so the informative
# layer is known in advance.
# ---------------------------------------------------------------------------

TEST_SEED = 1337


# ---------------------------------------------------------------------------
# Stub learners (module level so joblib can pickle them)
# ---------------------------------------------------------------------------

class FirstColumnLearner:
    """Predicts the first feature unchanged; fitting stores nothing useful."""

    name = "first_column"
    families = ("binomial", "gaussian")

    def fit(self, X, y, cfg):
        return {"n_train": len(y)}

    def predict(self, model, X):
        return np.asarray(X, dtype=float)[:, 0]


class RecordingLearner(FirstColumnLearner):
    """Records the first-column values of every training set it sees."""

    name = "recording"

    def __init__(self):
        self.seen: List[np.ndarray] = []

    def fit(self, X, y, cfg):
        self.seen.append(np.asarray(X[:, 0]).copy())
        return super().fit(X, y, cfg)


class CountingLearner(FirstColumnLearner):
    name = "counting"

    def __init__(self):
        self.n_fits = 0

    def fit(self, X, y, cfg):
        self.n_fits += 1
        return super().fit(X, y, cfg)


class FailingLearner(FirstColumnLearner):
    """Raises on the fit whose training set has ``fail_on_n`` rows (any if None)."""

    name = "failing"

    def __init__(self, fail_on_n: Optional[int] = None):
        self.fail_on_n = fail_on_n

    def fit(self, X, y, cfg):
        if self.fail_on_n is None or len(y) == self.fail_on_n:
            raise RuntimeError("singular design")
        return super().fit(X, y, cfg)


class ConstantLearner(FirstColumnLearner):
    name = "constant"

    def predict(self, model, X):
        return np.full(np.shape(X)[0], 0.5)


@dataclass(frozen=True)
class SyntheticStudy:
    """Layers, sample metadata, and the noise scale used for each layer."""

    layers: Dict[str, pd.DataFrame]
    sample_metadata: pd.DataFrame
    noise: Dict[str, float]

    @property
    def y(self) -> np.ndarray:
        return self.sample_metadata["Y"].to_numpy(dtype=float)


def make_study(n_samples: int = 40,
               noise: Optional[Dict[str, float]] = None,
               family: str = "binomial",
               n_features: int = 3,
               samples_per_subject: int = 1,
               seed: int = TEST_SEED,
               prefix: str = "S") -> SyntheticStudy:
    noise = noise or {"low_noise": 0.05, "high_noise": 0.5}
    rng = np.random.default_rng(seed)
    if family == "binomial":
        y = np.tile([0.0, 1.0], n_samples // 2 + 1)[:n_samples]
        rng.shuffle(y)
    else:
        y = rng.normal(size=n_samples)

    ids = [f"{prefix}{i:03d}" for i in range(n_samples)]
    subjects = [f"{prefix}subj{i // samples_per_subject:03d}" for i in range(n_samples)]
    sm = pd.DataFrame({"subjectID": subjects, "Y": y},
                      index=pd.Index(ids, name="sample_id"))

    layers = {}
    for name, scale in noise.items():
        X = rng.normal(size=(n_samples, n_features))
        X[:, 0] = y + scale * rng.normal(size=n_samples)
        layers[name] = pd.DataFrame(
            X, index=pd.Index(ids, name="sample_id"),
            columns=[f"{name}_f{j}" for j in range(n_features)])
    return SyntheticStudy(layers=layers, sample_metadata=sm, noise=dict(noise))


@pytest.fixture
def binomial_study() -> SyntheticStudy:
    return make_study(n_samples=40, family="binomial")


@pytest.fixture
def gaussian_study() -> SyntheticStudy:
    return make_study(n_samples=34, family="gaussian", samples_per_subject=2)


@pytest.fixture
def stub_cfg():
    def _make(**overrides):
        base = {"base_learner": FirstColumnLearner(), "n_folds": 5}
        base.update(overrides)
        return resolve_config(base)
    return _make
