from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path

import joblib
import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestClassifier

from .config import MitigationConfig
from .data import OUTCOME, PREDICTORS, prepare_predictors
from .recipe import FittedRecipe, build_recipe
from .split import child_seed
from .tuning import ForestParams, build_forest, positive_proba

logger = logging.getLogger(__name__)


@dataclass
class MitigationModel:
    """Fitted recipe + random forest, persisted as one joblib artifact."""

    recipe: FittedRecipe
    forest: RandomForestClassifier
    params: ForestParams

    def features(self, records: pd.DataFrame) -> pd.DataFrame:
        if not set(PREDICTORS).issubset(records.columns):
            records = prepare_predictors(records)
        return self.recipe.predictor_frame(records)

    def predict(self, records: pd.DataFrame) -> np.ndarray:
        """Predicted label per record; accepts raw or already-normalized records."""
        return self.forest.predict(self.features(records))

    def predict_proba(self, records: pd.DataFrame) -> np.ndarray:
        """Probability of "Mitigation" per record."""
        return positive_proba(self.forest, self.features(records))

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        # the processed training frame is only needed while fitting
        slim = dataclasses.replace(self.recipe, training_data=self.recipe.training_data.iloc[0:0])
        joblib.dump(dataclasses.replace(self, recipe=slim), path)
        logger.info("Model saved to %s", path)
        return path

    @classmethod
    def load(cls, path: str | Path) -> MitigationModel:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Model file not found: {path}")
        model = joblib.load(path)
        if not isinstance(model, cls):
            raise TypeError(f"{path} does not hold a {cls.__name__}")
        return model


def fit_final_model(
    train: pd.DataFrame,
    params: ForestParams,
    config: MitigationConfig,
    rng: np.random.Generator,
) -> MitigationModel:
    """Refit the recipe and the forest on the whole training partition."""
    recipe = build_recipe(config, seed=child_seed(rng)).fit(train)
    processed = recipe.training_data
    forest = build_forest(params, trees=config.trees, seed=child_seed(rng), n_features=len(recipe.columns))
    forest.set_params(n_jobs=config.n_jobs)
    forest.fit(processed[recipe.columns], processed[OUTCOME])
    logger.info("Final forest fit on %d rows x %d columns", len(processed), len(recipe.columns))
    return MitigationModel(recipe=recipe, forest=forest, params=params)
