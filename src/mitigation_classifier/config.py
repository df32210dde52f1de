from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

METRICS = ("accuracy", "precision", "recall", "f1", "roc_auc", "sensitivity", "specificity")


@dataclass(frozen=True)
class MitigationConfig:
    """Configuration for training/evaluation.

    Notes:
      - min_times: minimum corpus count for a token to be kept (0 disables the cut).
      - other_threshold: levels rarer than this share of training rows collapse to "other".
      - mtry/min_n: candidate values for max_features/min_samples_leaf when tuning.
    """

    # Data filters (None leaves the bound open)
    year_min: int | None = None
    year_max: int | None = None
    flow_types: Sequence[str] = ("ODA",)
    excluded_agreement_types: Sequence[str] = ("Rammeavtale",)

    test_size: float = 0.25
    n_folds: int = 10
    random_state: int = 42

    # Feature recipe
    max_tokens: int = 1000
    min_times: int = 0
    other_threshold: float = 0.01
    over_ratio: float = 1.0
    neighbors: int = 5

    # Random forest
    trees: int = 500
    tune: bool = False
    mtry: Sequence[int] = (10, 30, 60)
    min_n: Sequence[int] = (1, 5, 10)
    grid_size: int | None = None
    metric: str = "roc_auc"
    n_jobs: int = -1

    # MLflow
    tracking_uri: str | None = None  # None -> MLflow default (./mlruns if run locally)
    experiment_name: str = "climate-mitigation"

    model_path: str = "models/final_model.joblib"

    def validate(self) -> None:
        if not 0.0 < self.test_size < 1.0:
            raise ValueError(f"test_size must be in (0, 1), got {self.test_size}")
        if self.n_folds < 2:
            raise ValueError(f"n_folds must be >= 2, got {self.n_folds}")
        if self.metric not in METRICS:
            raise ValueError(f"Unsupported metric: {self.metric}. Choose from {METRICS}")
        if not self.mtry or not self.min_n:
            raise ValueError("mtry and min_n grids must not be empty")
        if self.grid_size is not None and self.grid_size < 1:
            raise ValueError("grid_size must be >= 1")
        if self.year_min is not None and self.year_max is not None and self.year_max < self.year_min:
            raise ValueError("year_max must be >= year_min")
