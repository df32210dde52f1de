"""
Declarative preprocessing recipe.

A recipe is an ordered list of steps. Each step learns its statistics once from
training data (`fit`) and replays them unchanged on any later data (`apply`).
Steps flagged `skip_on_predict` (oversampling) only ever run on the training
data the recipe is fit on.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd
from imblearn.over_sampling import SMOTE
from sklearn.feature_extraction.text import ENGLISH_STOP_WORDS, TfidfVectorizer
from sklearn.preprocessing import StandardScaler

from .config import MitigationConfig
from .data import CATEGORICAL_COLUMNS, OUTCOME, PREDICTORS, TEXT_COLUMN

logger = logging.getLogger(__name__)

NOVEL_LEVEL = "novel"
UNKNOWN_LEVEL = "unknown"
OTHER_LEVEL = "other"

_TOKEN = re.compile(r"\b\w+\b")
_SLUG = re.compile(r"\W+")


def _identity(tokens):
    return tokens


def _slug(level: str) -> str:
    return _SLUG.sub("_", str(level)).strip("_")


class Step:
    """Base class: `fit` returns frozen state, `apply` uses it without refitting."""

    skip_on_predict: bool = False

    def fit(self, data: pd.DataFrame) -> Any:
        return None

    def apply(self, state: Any, data: pd.DataFrame) -> pd.DataFrame:
        raise NotImplementedError


class TokenizeStep(Step):
    def __init__(self, columns: Sequence[str]):
        self.columns = list(columns)

    def apply(self, state, data):
        out = data.copy()
        for col in self.columns:
            out[col] = [_TOKEN.findall(text.lower()) if isinstance(text, str) else [] for text in out[col]]
        return out


class StopwordsStep(Step):
    def __init__(self, columns: Sequence[str], stopwords: Iterable[str] = ENGLISH_STOP_WORDS):
        self.columns = list(columns)
        self.stopwords = frozenset(stopwords)

    def apply(self, state, data):
        out = data.copy()
        for col in self.columns:
            out[col] = [[t for t in tokens if t not in self.stopwords] for tokens in out[col]]
        return out


class TokenFilterStep(Step):
    """Keep the `max_tokens` most frequent tokens seen at least `min_times` times."""

    def __init__(self, columns: Sequence[str], *, max_tokens: int = 1000, min_times: int = 0):
        self.columns = list(columns)
        self.max_tokens = max_tokens
        self.min_times = min_times

    def fit(self, data):
        vocab = {}
        for col in self.columns:
            counts = Counter(t for tokens in data[col] for t in tokens)
            kept = [(tok, n) for tok, n in counts.items() if n >= self.min_times]
            # ties broken alphabetically so the vocabulary is deterministic
            kept.sort(key=lambda item: (-item[1], item[0]))
            vocab[col] = frozenset(tok for tok, _ in kept[: self.max_tokens])
        return vocab

    def apply(self, state, data):
        out = data.copy()
        for col in self.columns:
            keep = state[col]
            out[col] = [[t for t in tokens if t in keep] for tokens in out[col]]
        return out


class TfidfStep(Step):
    """Replace each token column with `tfidf_<column>_<token>` weights."""

    def __init__(self, columns: Sequence[str], *, prefix: str = "tfidf"):
        self.columns = list(columns)
        self.prefix = prefix

    def fit(self, data):
        vectorizers = {}
        for col in self.columns:
            vec = TfidfVectorizer(analyzer=_identity, lowercase=False, norm="l1")
            vec.fit(data[col])
            vectorizers[col] = vec
        return vectorizers

    def apply(self, state, data):
        pieces = [data.drop(columns=self.columns)]
        for col in self.columns:
            vec = state[col]
            names = [f"{self.prefix}_{col}_{tok}" for tok in vec.get_feature_names_out()]
            weights = vec.transform(data[col]).toarray()
            pieces.append(pd.DataFrame(weights, columns=names, index=data.index))
        return pd.concat(pieces, axis=1)


class NormalizeStep(Step):
    """Standardize every numeric predictor with training mean/std.

    Missing numeric values end up at the training mean (0 after scaling).
    """

    def __init__(self, exclude: Sequence[str] = (OUTCOME,)):
        self.exclude = set(exclude)

    def fit(self, data):
        cols = [c for c in data.select_dtypes(include="number").columns if c not in self.exclude]
        scaler = StandardScaler()
        if cols:
            scaler.fit(data[cols])
        return cols, scaler

    def apply(self, state, data):
        cols, scaler = state
        out = data.copy()
        if cols:
            scaled = scaler.transform(out[cols])
            out[cols] = np.nan_to_num(scaled, nan=0.0)
        return out


class OtherStep(Step):
    """Collapse training levels rarer than `threshold` (share of rows) into "other".

    Only the rare levels learned at fit time are collapsed; levels never seen in
    training pass through and are dealt with by `NovelStep`.
    """

    def __init__(self, columns: Sequence[str], *, threshold: float = 0.01, other: str = OTHER_LEVEL):
        self.columns = list(columns)
        self.threshold = threshold
        self.other = other

    def fit(self, data):
        rare = {}
        n = len(data)
        for col in self.columns:
            counts = data[col].value_counts(dropna=True)
            rare[col] = frozenset(level for level, c in counts.items() if n and c / n < self.threshold)
        return rare

    def apply(self, state, data):
        out = data.copy()
        for col in self.columns:
            out[col] = out[col].where(~out[col].isin(list(state[col])), self.other)
        return out


class NovelStep(Step):
    """Route unseen levels to "novel" and missing values to "unknown"."""

    def __init__(self, columns: Sequence[str], *, novel: str = NOVEL_LEVEL, unknown: str = UNKNOWN_LEVEL):
        self.columns = list(columns)
        self.novel = novel
        self.unknown = unknown

    def fit(self, data):
        return {col: frozenset(data[col].dropna().unique()) for col in self.columns}

    def apply(self, state, data):
        out = data.copy()
        for col in self.columns:
            values = out[col]
            mapped = values.where(values.isin(list(state[col])), self.novel)
            out[col] = mapped.where(values.notna(), self.unknown)
        return out


class DummyStep(Step):
    """One-hot encode over the fit-time levels plus the reserved novel/unknown levels."""

    def __init__(self, columns: Sequence[str], *, reserved: Sequence[str] = (NOVEL_LEVEL, UNKNOWN_LEVEL)):
        self.columns = list(columns)
        self.reserved = list(reserved)

    def fit(self, data):
        """level -> column name per column; levels whose slugs clash get a numeric suffix."""
        names = {}
        for col in self.columns:
            seen = sorted(str(v) for v in data[col].dropna().unique())
            taken: set[str] = set()
            mapping = {}
            for level in seen + [r for r in self.reserved if r not in seen]:
                name = base = f"{col}_{_slug(level)}"
                suffix = 2
                while name in taken:
                    name = f"{base}_{suffix}"
                    suffix += 1
                taken.add(name)
                mapping[level] = name
            names[col] = mapping
        return names

    def apply(self, state, data):
        pieces = [data.drop(columns=self.columns)]
        for col in self.columns:
            values = data[col].astype("object")
            dummies = {
                name: (values == level).astype(float).to_numpy() for level, name in state[col].items()
            }
            pieces.append(pd.DataFrame(dummies, index=data.index))
        return pd.concat(pieces, axis=1)


class ZeroVarianceStep(Step):
    def __init__(self, exclude: Sequence[str] = (OUTCOME,)):
        self.exclude = set(exclude)

    def fit(self, data):
        return [c for c in data.columns if c not in self.exclude and data[c].nunique(dropna=False) <= 1]

    def apply(self, state, data):
        return data.drop(columns=[c for c in state if c in data.columns])


class SmoteStep(Step):
    """SMOTE oversampling of the minority class. Training data only."""

    skip_on_predict = True

    def __init__(self, outcome: str = OUTCOME, *, over_ratio: float = 1.0, neighbors: int = 5, seed: int = 0):
        self.outcome = outcome
        self.over_ratio = over_ratio
        self.neighbors = neighbors
        self.seed = seed

    def apply(self, state, data):
        y = data[self.outcome]
        counts = y.value_counts()
        if len(counts) < 2:
            logger.warning("SMOTE skipped: only one class present")
            return data
        minority = int(counts.min())
        if minority / counts.max() >= self.over_ratio:
            return data
        k = min(self.neighbors, minority - 1)
        if k < 1:
            logger.warning("SMOTE skipped: %d minority rows is too few to interpolate", minority)
            return data

        X = data.drop(columns=[self.outcome])
        sampler = SMOTE(sampling_strategy=self.over_ratio, k_neighbors=k, random_state=self.seed)
        X_res, y_res = sampler.fit_resample(X, y)
        out = pd.DataFrame(X_res, columns=X.columns)
        out[self.outcome] = np.asarray(y_res)
        logger.debug("SMOTE grew training data from %d to %d rows", len(data), len(out))
        return out[list(data.columns)].reset_index(drop=True)


@dataclass
class FittedRecipe:
    steps: list[Step]
    states: list[Any]
    outcome: str
    predictors: list[str]
    columns: list[str]
    training_data: pd.DataFrame = field(repr=False)

    def transform(self, data: pd.DataFrame) -> pd.DataFrame:
        """Apply the frozen steps to new data; oversampling is never replayed."""
        current = _select(data, self.predictors, self.outcome, require_outcome=False)
        for step, state in zip(self.steps, self.states):
            if step.skip_on_predict:
                continue
            current = step.apply(state, current)
        cols = list(self.columns)
        if self.outcome in current.columns:
            cols.append(self.outcome)
        # same column set as training even if a step produced extras
        return current.reindex(columns=cols, fill_value=0.0)

    def predictor_frame(self, data: pd.DataFrame) -> pd.DataFrame:
        return self.transform(data)[self.columns]


class Recipe:
    def __init__(self, steps: Sequence[Step], *, outcome: str = OUTCOME, predictors: Sequence[str] = PREDICTORS):
        self.steps = list(steps)
        self.outcome = outcome
        self.predictors = list(predictors)

    def fit(self, data: pd.DataFrame) -> FittedRecipe:
        """Fit every step in order on training data, feeding each the previous output."""
        current = _select(data, self.predictors, self.outcome, require_outcome=True)
        states = []
        for step in self.steps:
            state = step.fit(current)
            current = step.apply(state, current)
            states.append(state)
        current = current.reset_index(drop=True)
        columns = [c for c in current.columns if c != self.outcome]
        logger.debug("Recipe fit on %d rows -> %d columns", len(data), len(columns))
        return FittedRecipe(
            steps=self.steps,
            states=states,
            outcome=self.outcome,
            predictors=self.predictors,
            columns=columns,
            training_data=current,
        )


def _select(data: pd.DataFrame, predictors: list[str], outcome: str, *, require_outcome: bool) -> pd.DataFrame:
    missing = [c for c in predictors if c not in data.columns]
    if missing:
        raise ValueError(f"Missing predictor columns: {missing}")
    cols = list(predictors)
    if outcome in data.columns:
        cols.append(outcome)
    elif require_outcome:
        raise ValueError(f"Outcome column '{outcome}' is required to fit the recipe")
    return data[cols].copy()


def build_recipe(config: MitigationConfig, *, seed: int) -> Recipe:
    text = [TEXT_COLUMN]
    nominal = list(CATEGORICAL_COLUMNS)
    return Recipe(
        [
            TokenizeStep(text),
            StopwordsStep(text),
            TokenFilterStep(text, max_tokens=config.max_tokens, min_times=config.min_times),
            TfidfStep(text),
            NormalizeStep(exclude=[OUTCOME]),
            OtherStep(nominal, threshold=config.other_threshold),
            NovelStep(nominal),
            DummyStep(nominal),
            ZeroVarianceStep(exclude=[OUTCOME]),
            SmoteStep(OUTCOME, over_ratio=config.over_ratio, neighbors=config.neighbors, seed=seed),
        ]
    )
