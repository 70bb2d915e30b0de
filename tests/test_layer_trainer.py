"""
Tests for per-layer training (integrated_learner/layer_trainer.py).
"""
import numpy as np
import pandas as pd
import pytest

from conftest import (
    FirstColumnLearner, RecordingLearner, FailingLearner, make_study,
)
from integrated_learner.errors import LayerFitError, SchemaMismatchError
from integrated_learner.folds import partition_subjects
from integrated_learner.layer_trainer import train_layer, as_matrix
from integrated_learner.learners import get_learner


def _setup(n=30, n_folds=5, reps=1):
    study = make_study(n_samples=n, samples_per_subject=reps)
    folds = partition_subjects(study.sample_metadata["subjectID"], n_folds=n_folds,
                               seed=5, sample_ids=study.sample_metadata.index)
    return study, folds


def test_oof_covers_every_sample(stub_cfg):
    study, folds = _setup()
    X = study.layers["low_noise"]
    model = train_layer("low_noise", X, study.y, folds, FirstColumnLearner(), stub_cfg())
    assert model.oof.shape == (30,)
    assert np.isfinite(model.oof).all()
    # identity learner: OOF equals the first feature
    assert np.allclose(model.oof, X.iloc[:, 0].to_numpy())
    assert len(model.fold_models) == folds.n_folds
    assert model.full_model == {"n_train": 30}


def test_fold_models_never_see_their_held_out_samples(stub_cfg):
    study, folds = _setup(n=24, n_folds=4, reps=2)
    n = folds.n_samples
    X = np.column_stack([np.arange(n, dtype=float), np.ones(n)])
    learner = RecordingLearner()
    train_layer("probe", X, study.y, folds, learner, stub_cfg(n_jobs=1))

    # first fit is the full-data model, then one per fold in order
    assert len(learner.seen) == folds.n_folds + 1
    assert set(learner.seen[0].astype(int)) == set(range(n))
    for f, seen in enumerate(learner.seen[1:]):
        held = set(folds.held_out(f))
        assert not held & set(seen.astype(int))
        assert len(seen) + len(held) == n


def test_layer_fit_error_names_layer_and_fold(stub_cfg):
    study, folds = _setup(n=30, n_folds=5)
    # each fold complement has 24 training rows, the full fit has 30
    with pytest.raises(LayerFitError) as info:
        train_layer("rna", study.layers["low_noise"], study.y, folds,
                    FailingLearner(fail_on_n=24), stub_cfg())
    assert info.value.layer == "rna"
    assert info.value.fold == 0
    assert "singular design" in str(info.value)


def test_full_data_fit_failure_has_no_fold(stub_cfg):
    study, folds = _setup(n=30, n_folds=5)
    with pytest.raises(LayerFitError) as info:
        train_layer("rna", study.layers["low_noise"], study.y, folds,
                    FailingLearner(fail_on_n=30), stub_cfg())
    assert info.value.fold is None


def test_layer_fit_error_survives_pickling():
    import pickle
    err = pickle.loads(pickle.dumps(LayerFitError("protein", 3, "boom")))
    assert (err.layer, err.fold, err.message) == ("protein", 3, "boom")


def test_predict_checks_feature_order(stub_cfg):
    study, folds = _setup()
    X = study.layers["low_noise"]
    model = train_layer("low_noise", X, study.y, folds, FirstColumnLearner(), stub_cfg())
    with pytest.raises(SchemaMismatchError):
        model.predict(X.iloc[:, ::-1])
    assert np.allclose(model.predict(X), X.iloc[:, 0])


def test_row_count_mismatch_raises(stub_cfg):
    study, folds = _setup()
    with pytest.raises(SchemaMismatchError):
        train_layer("low_noise", study.layers["low_noise"].iloc[:-1], study.y[:-1],
                    folds, FirstColumnLearner(), stub_cfg())


def test_as_matrix_rejects_wrong_width():
    with pytest.raises(SchemaMismatchError):
        as_matrix(np.zeros((4, 2)), ("a", "b", "c"), "layer")
    df = pd.DataFrame(np.zeros((4, 2)), columns=["a", "b"])
    assert as_matrix(df, ("a", "b"), "layer").shape == (4, 2)


def test_oof_is_read_only(stub_cfg):
    study, folds = _setup()
    model = train_layer("low_noise", study.layers["low_noise"], study.y, folds,
                        FirstColumnLearner(), stub_cfg())
    with pytest.raises(ValueError):
        model.oof[0] = 0.0


def test_ridge_learner_produces_probabilities(stub_cfg):
    study, folds = _setup(n=40, n_folds=4)
    learner = get_learner("ridge", "binomial")
    model = train_layer("low_noise", study.layers["low_noise"], study.y, folds,
                        learner, stub_cfg())
    assert ((model.oof >= 0) & (model.oof <= 1)).all()
    imp = model.feature_importance()
    assert list(imp.index) == list(study.layers["low_noise"].columns)
