from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.ensemble import RandomForestClassifier

from .config import METRICS, MitigationConfig
from .data import OUTCOME, POSITIVE
from .evaluation import evaluate_classifier
from .recipe import build_recipe
from .split import Fold, child_seed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ForestParams:
    """mtry -> max_features (None: sqrt of the column count), min_n -> min_samples_leaf."""

    mtry: int | None = None
    min_n: int = 1

    def as_dict(self) -> dict:
        return {"mtry": self.mtry, "min_n": self.min_n}


@dataclass
class PreparedFold:
    id: str
    X_train: pd.DataFrame
    y_train: pd.Series
    X_assess: pd.DataFrame
    y_assess: pd.Series


@dataclass
class TuningResult:
    metric: str
    cells: pd.DataFrame
    summary: pd.DataFrame
    best: ForestParams
    best_config: str

    def best_metrics(self) -> dict[str, float]:
        """Mean resampled metrics of the selected configuration."""
        row = self.summary.set_index("config").loc[self.best_config]
        return {k: float(v) for k, v in row.items() if k in METRICS and pd.notna(v)}


def default_params() -> ForestParams:
    return ForestParams()


def param_grid(config: MitigationConfig, rng: np.random.Generator) -> list[ForestParams]:
    grid = [ForestParams(mtry=int(m), min_n=int(n)) for m, n in itertools.product(config.mtry, config.min_n)]
    if config.grid_size is not None and config.grid_size < len(grid):
        picked = np.sort(rng.choice(len(grid), size=config.grid_size, replace=False))
        grid = [grid[i] for i in picked]
    return grid


def build_forest(params: ForestParams, *, trees: int, seed: int, n_features: int | None = None) -> RandomForestClassifier:
    max_features = "sqrt" if params.mtry is None else params.mtry
    if n_features is not None and params.mtry is not None:
        max_features = max(1, min(params.mtry, n_features))
    return RandomForestClassifier(
        n_estimators=trees,
        max_features=max_features,
        min_samples_leaf=params.min_n,
        random_state=seed,
        n_jobs=1,
    )


def positive_proba(model: RandomForestClassifier, X: pd.DataFrame) -> np.ndarray:
    classes = list(model.classes_)
    if POSITIVE not in classes:
        return np.zeros(len(X))
    return model.predict_proba(X)[:, classes.index(POSITIVE)]


def _prepare_fold(train: pd.DataFrame, fold: Fold, config: MitigationConfig, seed: int) -> PreparedFold:
    fitted = build_recipe(config, seed=seed).fit(train.iloc[fold.analysis])
    baked = fitted.transform(train.iloc[fold.assessment])
    processed = fitted.training_data
    return PreparedFold(
        id=fold.id,
        X_train=processed[fitted.columns],
        y_train=processed[OUTCOME],
        X_assess=baked[fitted.columns],
        y_assess=baked[OUTCOME],
    )


def prepare_folds(
    train: pd.DataFrame,
    folds: list[Fold],
    config: MitigationConfig,
    rng: np.random.Generator,
) -> list[PreparedFold]:
    """Fit one recipe per fold on its analysis rows and bake its assessment rows."""
    seeds = [child_seed(rng) for _ in folds]
    return Parallel(n_jobs=config.n_jobs)(
        delayed(_prepare_fold)(train, fold, config, seed) for fold, seed in zip(folds, seeds)
    )


def _evaluate_cell(prepared: PreparedFold, config_id: str, params: ForestParams, trees: int, seed: int) -> dict:
    model = build_forest(params, trees=trees, seed=seed, n_features=prepared.X_train.shape[1])
    model.fit(prepared.X_train, prepared.y_train)
    y_pred = model.predict(prepared.X_assess)
    y_prob = positive_proba(model, prepared.X_assess)
    result = evaluate_classifier(prepared.y_assess, y_pred, y_prob=y_prob)
    return {"fold": prepared.id, "config": config_id, **params.as_dict(), **result.metrics}


def tune_forest(
    train: pd.DataFrame,
    folds: list[Fold],
    config: MitigationConfig,
    rng: np.random.Generator,
) -> TuningResult:
    """Score every (fold, params) cell in parallel and pick the best mean `config.metric`.

    Without tuning the single default configuration is resampled the same way.
    Any failing cell aborts the whole run.
    """
    candidates = param_grid(config, rng) if config.tune else [default_params()]
    config_ids = [f"Model{i + 1:02d}" for i in range(len(candidates))]
    forest_seed = child_seed(rng)

    prepared = prepare_folds(train, folds, config, rng)
    logger.info("Evaluating %d candidate(s) over %d folds", len(candidates), len(prepared))

    cells = Parallel(n_jobs=config.n_jobs)(
        delayed(_evaluate_cell)(fold, cid, params, config.trees, forest_seed)
        for fold in prepared
        for cid, params in zip(config_ids, candidates)
    )
    cells_df = pd.DataFrame(cells)
    return select_best(cells_df, dict(zip(config_ids, candidates)), config.metric)


def select_best(cells: pd.DataFrame, candidates: dict[str, ForestParams], metric: str) -> TuningResult:
    metric_cols = [m for m in METRICS if m in cells.columns]
    if metric not in metric_cols:
        raise ValueError(f"Metric '{metric}' was not computed for any fold")

    summary = cells.groupby("config", sort=True)[metric_cols].mean()
    summary["n_folds"] = cells.groupby("config", sort=True).size()
    summary = summary.reset_index()
    if summary[metric].isna().all():
        raise ValueError(f"Metric '{metric}' is undefined for every candidate")

    best_id = summary.loc[summary[metric].idxmax(), "config"]
    best = candidates[best_id]
    logger.info("Best %s=%.4f with %s", metric, summary[metric].max(), best.as_dict())
    return TuningResult(metric=metric, cells=cells, summary=summary, best=best, best_config=best_id)
