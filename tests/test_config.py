"""
Tests for configuration resolution (integrated_learner/config.py).
"""
import pytest

from integrated_learner.config import DEFAULTS, resolve_config
from integrated_learner.errors import ConfigurationError


def test_defaults_resolve():
    cfg = resolve_config()
    assert cfg == DEFAULTS
    assert cfg is not DEFAULTS


def test_yaml_overrides_defaults_and_overrides_win(tmp_path):
    path = tmp_path / "run.yaml"
    path.write_text("family: gaussian\nn_folds: 3\nseed: 7\n")
    cfg = resolve_config({"seed": 11}, path)
    assert cfg["family"] == "gaussian"
    assert cfg["n_folds"] == 3
    assert cfg["seed"] == 11


def test_empty_yaml_is_allowed(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert resolve_config(path=path) == DEFAULTS


def test_missing_yaml_raises(tmp_path):
    with pytest.raises(ConfigurationError):
        resolve_config(path=tmp_path / "missing.yaml")


def test_unknown_key_raises():
    with pytest.raises(ConfigurationError, match="unknown"):
        resolve_config({"n_fold": 5})


@pytest.mark.parametrize("overrides", [
    {"family": "poisson"},
    {"meta_objective": "hinge"},
    {"on_layer_error": "ignore"},
    {"n_folds": 1},
    {"n_folds": "kfold"},
    {"n_folds": 2.5},
    {"seed": "abc"},
    {"credible_level": 1.5},
    {"n_posterior_draws": -1},
    {"base_learner": 3},
])
def test_invalid_values_raise(overrides):
    with pytest.raises(ConfigurationError):
        resolve_config(overrides)


def test_loso_is_accepted():
    assert resolve_config({"n_folds": "loso"})["n_folds"] == "loso"
