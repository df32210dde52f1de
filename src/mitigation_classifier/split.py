from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd
from sklearn.model_selection import StratifiedKFold, train_test_split

from .data import OUTCOME

_MAX_SEED = 2**31 - 1


def child_seed(rng: np.random.Generator) -> int:
    """Draw an int seed from `rng` for APIs that only take integers."""
    return int(rng.integers(0, _MAX_SEED))


@dataclass(frozen=True)
class Fold:
    id: str
    analysis: np.ndarray
    assessment: np.ndarray


def split_train_test(
    df: pd.DataFrame,
    *,
    test_size: float,
    rng: np.random.Generator,
    outcome: str = OUTCOME,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Stratified train/test split on the label."""
    train, test = train_test_split(
        df,
        test_size=test_size,
        random_state=child_seed(rng),
        stratify=df[outcome],
    )
    return train.reset_index(drop=True), test.reset_index(drop=True)


def make_folds(
    df: pd.DataFrame,
    *,
    n_folds: int,
    rng: np.random.Generator,
    outcome: str = OUTCOME,
) -> list[Fold]:
    """Stratified k-fold partitions of the training set (positional indices)."""
    skf = StratifiedKFold(n_splits=n_folds, shuffle=True, random_state=child_seed(rng))
    return [
        Fold(id=f"Fold{i + 1:02d}", analysis=analysis, assessment=assessment)
        for i, (analysis, assessment) in enumerate(skf.split(np.zeros(len(df)), df[outcome]))
    ]


def label_proportions(y, labels) -> dict[str, float]:
    y = pd.Series(np.asarray(y))
    n = len(y)
    return {label: float((y == label).sum() / n) if n else float("nan") for label in labels}
