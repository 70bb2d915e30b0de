"""
Pluggable base learners: the fit/predict contract, shipped scikit-learn
providers, and the name registry.

A provider implements ``fit(X, y, cfg) -> model`` and
``predict(model, X) -> ndarray``. Binomial providers return P(y=1).
Two capabilities are optional and probed with ``hasattr``:

  - ``sample_posterior(model, X, n_draws, rng)`` -> (n_draws, n_samples)
  - ``feature_importance(model)`` -> (n_features,)
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Sequence, Union

import numpy as np
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.decomposition import TruncatedSVD
from sklearn.linear_model import (
    RidgeCV, ElasticNetCV, LogisticRegressionCV, BayesianRidge,
)
from sklearn.ensemble import (
    RandomForestRegressor, RandomForestClassifier,
    HistGradientBoostingRegressor, HistGradientBoostingClassifier,
)

from .config import (
    RIDGE_ALPHAS, LOGIT_CS, ENET_L1_RATIOS, ENET_ALPHAS,
    N_SVD, INNER_CV, RF_TREES, GBT_PARAMS,
)
from .errors import ConfigurationError


def svd_n_components(X_train: np.ndarray, target: int = N_SVD) -> int:
    return max(1, min(target, X_train.shape[1] - 1, X_train.shape[0] - 1))


class BaseLearner:
    """Uniform contract for per-layer model providers."""

    name = "base"
    families = ("binomial", "gaussian")

    def fit(self, X: np.ndarray, y: np.ndarray, cfg: Mapping[str, Any]):
        raise NotImplementedError

    def predict(self, model, X: np.ndarray) -> np.ndarray:
        if hasattr(model, "predict_proba"):
            return model.predict_proba(X)[:, 1]
        return model.predict(X)

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r})"


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  scikit-learn providers                                                  ║
# ╚═══════════════════════════════════════════════════════════════════════════╝

def _logit_cv(seed, **kw):
    return LogisticRegressionCV(Cs=LOGIT_CS, cv=INNER_CV, max_iter=2000,
                                random_state=seed, **kw)


class RidgeLearner(BaseLearner):
    """Standardized ridge (gaussian) or L2 logistic regression (binomial)."""

    name = "ridge"

    def fit(self, X, y, cfg):
        if cfg["family"] == "binomial":
            est = _logit_cv(cfg["seed"])
        else:
            est = RidgeCV(alphas=RIDGE_ALPHAS)
        model = make_pipeline(StandardScaler(), est)
        model.fit(X, y)
        return model

    def feature_importance(self, model):
        return np.abs(np.ravel(model[-1].coef_))


class RidgeSVDLearner(BaseLearner):
    """Scaler -> truncated SVD -> ridge / logistic regression."""

    name = "ridge_svd"

    def __init__(self, n_svd: int = N_SVD):
        self.n_svd = n_svd

    def fit(self, X, y, cfg):
        steps = [StandardScaler(with_mean=False)]
        if X.shape[1] >= 2:
            nc = svd_n_components(X, self.n_svd)
            steps.append(TruncatedSVD(n_components=nc, random_state=cfg["seed"]))
        if cfg["family"] == "binomial":
            steps.append(_logit_cv(cfg["seed"]))
        else:
            steps.append(RidgeCV(alphas=RIDGE_ALPHAS))
        model = make_pipeline(*steps)
        model.fit(X, y)
        return model


class ElasticNetLearner(BaseLearner):
    name = "elastic_net"

    def fit(self, X, y, cfg):
        if cfg["family"] == "binomial":
            est = _logit_cv(cfg["seed"], penalty="elasticnet", solver="saga",
                            l1_ratios=ENET_L1_RATIOS)
        else:
            est = ElasticNetCV(l1_ratio=ENET_L1_RATIOS, alphas=ENET_ALPHAS,
                               cv=INNER_CV, random_state=cfg["seed"],
                               max_iter=2000)
        model = make_pipeline(StandardScaler(), est)
        model.fit(X, y)
        return model

    def feature_importance(self, model):
        return np.abs(np.ravel(model[-1].coef_))


class RandomForestLearner(BaseLearner):
    name = "random_forest"

    def __init__(self, n_estimators: int = RF_TREES):
        self.n_estimators = n_estimators

    def fit(self, X, y, cfg):
        Cls = (RandomForestClassifier if cfg["family"] == "binomial"
               else RandomForestRegressor)
        model = Cls(n_estimators=self.n_estimators,
                    random_state=cfg["seed"], n_jobs=1)
        model.fit(X, y)
        return model

    def feature_importance(self, model):
        return np.asarray(model.feature_importances_, dtype=float)


class HistGBTLearner(BaseLearner):
    name = "hist_gbt"

    def fit(self, X, y, cfg):
        Cls = (HistGradientBoostingClassifier if cfg["family"] == "binomial"
               else HistGradientBoostingRegressor)
        model = Cls(random_state=cfg["seed"], **GBT_PARAMS)
        model.fit(X, y)
        return model


class BayesianRidgeLearner(BaseLearner):
    """Bayesian linear regression; exposes posterior predictive draws."""

    name = "bayesian_ridge"
    families = ("gaussian",)

    def fit(self, X, y, cfg):
        model = make_pipeline(StandardScaler(), BayesianRidge())
        model.fit(X, y)
        return model

    def sample_posterior(self, model, X, n_draws: int,
                         rng: np.random.Generator) -> np.ndarray:
        mean, std = model.predict(X, return_std=True)
        noise = rng.standard_normal((n_draws, len(mean)))
        return mean[None, :] + std[None, :] * noise

    def feature_importance(self, model):
        return np.abs(np.ravel(model[-1].coef_))


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  Registry                                                                ║
# ╚═══════════════════════════════════════════════════════════════════════════╝

LEARNERS: Dict[str, Callable[[], BaseLearner]] = {
    RidgeLearner.name:         RidgeLearner,
    RidgeSVDLearner.name:      RidgeSVDLearner,
    ElasticNetLearner.name:    ElasticNetLearner,
    RandomForestLearner.name:  RandomForestLearner,
    HistGBTLearner.name:       HistGBTLearner,
    BayesianRidgeLearner.name: BayesianRidgeLearner,
}

CONCAT_KEY = "concatenated"


def register_learner(name: str, factory: Callable[[], Any]) -> None:
    """Make ``factory()`` available under ``name`` in configuration."""
    LEARNERS[name] = factory


def learner_name(learner) -> str:
    return getattr(learner, "name", type(learner).__name__)


def get_learner(spec: Union[str, Any], family: str):
    """Resolve a registry name or provider instance, checking the family."""
    if isinstance(spec, str):
        if spec not in LEARNERS:
            raise ConfigurationError(
                f"unknown base learner {spec!r}; registered: {sorted(LEARNERS)}")
        learner = LEARNERS[spec]()
    elif hasattr(spec, "fit") and hasattr(spec, "predict"):
        learner = spec
    else:
        raise ConfigurationError(
            f"base learner {spec!r} does not implement fit/predict")
    families = getattr(learner, "families", ("binomial", "gaussian"))
    if family not in families:
        raise ConfigurationError(
            f"base learner {learner_name(learner)!r} does not support "
            f"the {family} family")
    return learner


def resolve_layer_learners(spec, layer_names: Sequence[str], family: str,
                           with_concat: bool = False) -> Dict[str, Any]:
    """Map every layer (and optionally the concatenation baseline) to a learner.

    ``spec`` is one name/instance used for all layers, or a mapping with an
    entry per layer. In a mapping, the concatenation baseline uses the
    ``"concatenated"`` entry when present, else the first layer's learner.
    """
    if isinstance(spec, Mapping):
        missing = [n for n in layer_names if n not in spec]
        if missing:
            raise ConfigurationError(f"no base learner given for layers {missing}")
        unknown = sorted(set(spec) - set(layer_names) - {CONCAT_KEY})
        if unknown:
            raise ConfigurationError(
                f"base learner given for unknown layers {unknown}")
        out = {n: get_learner(spec[n], family) for n in layer_names}
        if with_concat:
            out[CONCAT_KEY] = get_learner(
                spec.get(CONCAT_KEY, spec[layer_names[0]]), family)
        return out

    out = {n: get_learner(spec, family) for n in layer_names}
    if with_concat:
        out[CONCAT_KEY] = get_learner(spec, family)
    return out
