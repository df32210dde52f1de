import dataclasses

import numpy as np
import pandas as pd
import pytest

from mitigation_classifier import tuning
from mitigation_classifier.data import to_model_frame
from mitigation_classifier.split import make_folds
from mitigation_classifier.tuning import (
    ForestParams,
    build_forest,
    param_grid,
    select_best,
    tune_forest,
)

from conftest import make_raw


def test_param_grid_full_and_sampled(small_config):
    cfg = dataclasses.replace(small_config, mtry=(2, 4), min_n=(1, 5, 10))
    assert len(param_grid(cfg, np.random.default_rng(0))) == 6

    sampled = param_grid(dataclasses.replace(cfg, grid_size=3), np.random.default_rng(0))
    assert len(sampled) == 3
    assert len(set(sampled)) == 3


def test_build_forest_caps_mtry_at_column_count():
    model = build_forest(ForestParams(mtry=500, min_n=3), trees=10, seed=0, n_features=20)
    assert model.max_features == 20
    assert model.min_samples_leaf == 3
    assert build_forest(ForestParams(), trees=10, seed=0).max_features == "sqrt"


def test_select_best_picks_highest_mean():
    cells = pd.DataFrame(
        {
            "fold": ["F1", "F2", "F1", "F2"],
            "config": ["Model01", "Model01", "Model02", "Model02"],
            "roc_auc": [0.7, 0.9, 0.85, 0.85],
            "accuracy": [0.9, 0.9, 0.8, 0.8],
        }
    )
    candidates = {"Model01": ForestParams(2, 1), "Model02": ForestParams(4, 5)}

    assert select_best(cells, candidates, "roc_auc").best == ForestParams(4, 5)
    result = select_best(cells, candidates, "accuracy")
    assert result.best == ForestParams(2, 1)
    assert result.best_metrics()["roc_auc"] == pytest.approx(0.8)

    with pytest.raises(ValueError):
        select_best(cells, candidates, "f1")


def test_tune_forest_scores_every_fold_and_candidate(small_config):
    train = to_model_frame(make_raw(n=120, positive_share=0.25))
    cfg = dataclasses.replace(small_config, tune=True, mtry=(2, 8), min_n=(1,), trees=10)
    folds = make_folds(train, n_folds=cfg.n_folds, rng=np.random.default_rng(0))

    result = tune_forest(train, folds, cfg, np.random.default_rng(0))

    assert len(result.cells) == 3 * 2
    assert set(result.summary["n_folds"]) == {3}
    assert result.best in param_grid(cfg, np.random.default_rng(0))
    assert 0.0 <= result.best_metrics()["roc_auc"] <= 1.0


def test_failing_cell_aborts_tuning(small_config, monkeypatch):
    train = to_model_frame(make_raw(n=120, positive_share=0.25))
    cfg = dataclasses.replace(small_config, tune=True, mtry=(2, 8), min_n=(1,), trees=10, n_jobs=1)
    folds = make_folds(train, n_folds=cfg.n_folds, rng=np.random.default_rng(0))
    original = tuning.build_forest

    def broken_for_mtry_8(params, **kwargs):
        if params == ForestParams(mtry=8, min_n=1):
            raise RuntimeError("fit failed")
        return original(params, **kwargs)

    monkeypatch.setattr(tuning, "build_forest", broken_for_mtry_8)

    result = None
    with pytest.raises(RuntimeError, match="fit failed"):
        result = tune_forest(train, folds, cfg, np.random.default_rng(0))
    assert result is None
