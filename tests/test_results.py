"""
Tests for the result object and the table writers
(integrated_learner/results.py, integrated_learner/main.py).
"""
import json

import numpy as np
import pandas as pd
import pytest

from conftest import FirstColumnLearner, make_study
from integrated_learner.main import main, write_tables
from integrated_learner.pipeline import fit_integrated_learner


@pytest.fixture
def binomial_result():
    study = make_study()
    valid = make_study(n_samples=20, seed=4, prefix="V")
    return fit_integrated_learner(study.layers, study.sample_metadata,
                                  valid_layers=valid.layers,
                                  valid_metadata=valid.sample_metadata,
                                  config={"base_learner": FirstColumnLearner()})


def test_roc_curve_for_binomial(binomial_result):
    roc = binomial_result.roc_curve("stacked", split="valid")
    assert list(roc.columns) == ["fpr", "tpr", "threshold"]
    assert roc["tpr"].iloc[-1] == 1.0
    with pytest.raises(ValueError):
        binomial_result.r2_values()


def test_r2_values_for_gaussian():
    study = make_study(family="gaussian")
    res = fit_integrated_learner(study.layers, study.sample_metadata,
                                 config={"family": "gaussian",
                                         "base_learner": FirstColumnLearner()})
    r2 = res.r2_values()
    assert r2["low_noise"] > r2["high_noise"]
    with pytest.raises(ValueError):
        res.roc_curve("stacked")


def test_unknown_split_raises(binomial_result):
    with pytest.raises(KeyError):
        binomial_result.predictions("test")


def test_weights_frame_indexed_by_layer(binomial_result):
    wf = binomial_result.weights_frame()
    assert list(wf.index) == ["low_noise", "high_noise"]
    assert np.isclose(wf["weight"].sum(), 1.0)


def test_summary_is_json_ready(binomial_result, tmp_path):
    summ = binomial_result.summary()
    assert summ["metric"] == "auc"
    assert summ["n_train"] == 40 and summ["n_valid"] == 20
    assert set(summ["train"]) == {"low_noise", "high_noise", "stacked"}
    assert summ["meta_objective"] == "rank_loss"
    tab = write_tables(binomial_result, tmp_path)
    loaded = json.loads((tab / "summary.json").read_text())
    assert loaded["layers"] == ["low_noise", "high_noise"]


def test_write_tables_outputs(binomial_result, tmp_path):
    tab = write_tables(binomial_result, tmp_path)
    for name in ("metrics.csv", "weights.csv", "oof_predictions.csv",
                 "fold_assignment.csv", "validation_predictions.csv"):
        assert (tab / name).exists()
    folds = pd.read_csv(tab / "fold_assignment.csv")
    assert len(folds) == 40
    assert folds["fold"].between(0, 4).all()


def test_feature_importance_without_capability(binomial_result):
    assert binomial_result.feature_importance("low_noise") is None
    with pytest.raises(KeyError):
        binomial_result.feature_importance("lipids")


def test_credible_intervals_absent_without_draws(binomial_result):
    assert binomial_result.credible_intervals("low_noise") is None


def test_cli_end_to_end(tmp_path):
    study = make_study(n_samples=30, n_features=2)
    ft = pd.concat([X.T for X in study.layers.values()])
    fm = pd.DataFrame({"featureType": [n for n, X in study.layers.items()
                                       for _ in X.columns]}, index=ft.index)
    ft.to_csv(tmp_path / "features.csv")
    fm.to_csv(tmp_path / "feature_metadata.csv")
    study.sample_metadata.to_csv(tmp_path / "sample_metadata.csv")

    res = main(["--features", str(tmp_path / "features.csv"),
                "--sample-metadata", str(tmp_path / "sample_metadata.csv"),
                "--feature-metadata", str(tmp_path / "feature_metadata.csv"),
                "--base-learner", "ridge", "--folds", "3",
                "--out", str(tmp_path / "out")])
    assert res.layers == ("low_noise", "high_noise")
    summ = json.loads((tmp_path / "out" / "tables" / "summary.json").read_text())
    assert summ["n_folds"] == 3


def test_oof_and_predictions_cannot_be_edited_in_place(binomial_result):
    oof = binomial_result.oof
    binomial_result.oof.iloc[0, 0] = 99.0
    binomial_result.oof["low_noise"] = 0.0
    assert binomial_result.oof.equals(oof)
    stacked = binomial_result.metric("stacked", split="valid")
    binomial_result.valid.predictions.iloc[:, :] = 0.0
    binomial_result.predictions("valid").iloc[:, :] = 0.0
    assert binomial_result.metric("stacked", split="valid") == stacked
    assert binomial_result.roc_curve("stacked", split="valid").equals(
        binomial_result.valid.roc_points("stacked"))
    assert not (binomial_result.predictions("valid") == 0.0).all().all()
