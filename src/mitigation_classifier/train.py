from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

import mlflow
import numpy as np
import pandas as pd

from .config import MitigationConfig
from .data import LABELS, OUTCOME, filter_agreements, load_raw_csv, to_model_frame
from .evaluation import evaluate_classifier
from .logs import configure_logging
from .model import fit_final_model
from .serving import log_pyfunc_model
from .split import label_proportions, make_folds, split_train_test
from .tuning import tune_forest

logger = logging.getLogger(__name__)


def _prefix_metrics(prefix: str, metrics: dict[str, float]) -> dict[str, float]:
    return {f"{prefix}_{k}": float(v) for k, v in metrics.items()}


def load_model_frame(data_path: str | Path, config: MitigationConfig) -> pd.DataFrame:
    raw = load_raw_csv(data_path)
    filtered = filter_agreements(
        raw,
        year_min=config.year_min,
        year_max=config.year_max,
        flow_types=tuple(config.flow_types),
        excluded_agreement_types=tuple(config.excluded_agreement_types),
    )
    return to_model_frame(filtered)


def run_training(
    *,
    data_path: str,
    config: MitigationConfig | None = None,
    artifacts_dir: str | Path = Path("reports") / "artifacts",
) -> dict:
    if config is None:
        config = MitigationConfig()
    config.validate()

    if config.tracking_uri:
        mlflow.set_tracking_uri(config.tracking_uri)

    mlflow.set_experiment(config.experiment_name)

    frame = load_model_frame(data_path, config)
    rng = np.random.default_rng(config.random_state)

    train, test = split_train_test(frame, test_size=config.test_size, rng=rng)
    folds = make_folds(train, n_folds=config.n_folds, rng=rng)
    logger.info("Split %d agreements into %d train / %d test", len(frame), len(train), len(test))

    with mlflow.start_run() as run:
        mlflow.log_params(
            {
                "test_size": config.test_size,
                "n_folds": config.n_folds,
                "random_state": config.random_state,
                "year_min": config.year_min if config.year_min is not None else -1,
                "year_max": config.year_max if config.year_max is not None else -1,
                "max_tokens": config.max_tokens,
                "min_times": config.min_times,
                "other_threshold": config.other_threshold,
                "over_ratio": config.over_ratio,
                "trees": config.trees,
                "tune": config.tune,
                "metric": config.metric,
            }
        )

        artifacts_dir = Path(artifacts_dir)
        artifacts_dir.mkdir(parents=True, exist_ok=True)

        # -----------------------
        # 1) RESAMPLED TUNING
        # -----------------------
        tuning = tune_forest(train, folds, config, rng)
        cv_metrics = tuning.best_metrics()
        mlflow.log_params({f"best_{k}": v if v is not None else "sqrt" for k, v in tuning.best.as_dict().items()})
        mlflow.log_metrics(_prefix_metrics("cv", cv_metrics))

        tuning.cells.to_csv(artifacts_dir / "fold_metrics.csv", index=False)
        tuning.summary.to_csv(artifacts_dir / "tuning_summary.csv", index=False)
        mlflow.log_artifact(str(artifacts_dir / "fold_metrics.csv"))
        mlflow.log_artifact(str(artifacts_dir / "tuning_summary.csv"))

        # --------------------------
        # 2) FINAL FIT + TEST EVAL
        # --------------------------
        model = fit_final_model(train, tuning.best, config, rng)

        y_pred = model.predict(test)
        y_prob = model.predict_proba(test)
        test_eval = evaluate_classifier(test[OUTCOME], y_pred, y_prob=y_prob)
        mlflow.log_metrics(_prefix_metrics("test", test_eval.metrics))

        (artifacts_dir / "classification_report.txt").write_text(test_eval.report, encoding="utf-8")
        (artifacts_dir / "confusion_matrix.json").write_text(
            json.dumps(test_eval.confusion_table(), indent=2),
            encoding="utf-8",
        )
        mlflow.log_artifact(str(artifacts_dir / "classification_report.txt"))
        mlflow.log_artifact(str(artifacts_dir / "confusion_matrix.json"))

        # --------------------------
        # 3) EXPORT
        # --------------------------
        model_path = model.save(config.model_path)
        mlflow.log_artifact(str(model_path), artifact_path="bundle")
        log_pyfunc_model(model_path)

        out = {
            "run_id": run.info.run_id,
            "tracking_uri": mlflow.get_tracking_uri(),
            "best_params": tuning.best.as_dict(),
            "cv": cv_metrics,
            "test": test_eval.metrics,
            "confusion": test_eval.confusion_table(),
            "label_proportions": {
                "all": label_proportions(frame[OUTCOME], LABELS),
                "train": label_proportions(train[OUTCOME], LABELS),
                "test": label_proportions(test[OUTCOME], LABELS),
            },
            "model_path": str(model_path),
            "artifact_dir": str(artifacts_dir),
        }

        (artifacts_dir / "last_run.json").write_text(
            json.dumps(out, indent=2),
            encoding="utf-8",
        )
        mlflow.log_artifact(str(artifacts_dir / "last_run.json"))

        return out


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Train the climate-mitigation classifier and log to MLflow."
    )
    p.add_argument("--data-path", required=True, help="Path to the CSV extract.")
    p.add_argument("--year-min", type=int, default=None, help="First year to include.")
    p.add_argument("--year-max", type=int, default=None, help="Last year to include.")
    p.add_argument(
        "--test-size",
        type=float,
        default=MitigationConfig.test_size,
        help="Test size fraction.",
    )
    p.add_argument(
        "--folds",
        type=int,
        default=MitigationConfig.n_folds,
        help="Number of cross-validation folds.",
    )
    p.add_argument(
        "--random-state",
        type=int,
        default=MitigationConfig.random_state,
        help="Random seed.",
    )
    p.add_argument(
        "--max-tokens",
        type=int,
        default=MitigationConfig.max_tokens,
        help="Vocabulary size kept for TF-IDF.",
    )
    p.add_argument(
        "--min-times",
        type=int,
        default=MitigationConfig.min_times,
        help="Minimum token count to enter the vocabulary.",
    )
    p.add_argument("--trees", type=int, default=MitigationConfig.trees, help="Number of trees.")
    p.add_argument("--tune", action="store_true", help="Grid-search mtry and min_n.")
    p.add_argument("--grid-size", type=int, default=None, help="Random sample size of the grid.")
    p.add_argument(
        "--metric",
        default=MitigationConfig.metric,
        help="Metric used to select the best configuration.",
    )
    p.add_argument("--n-jobs", type=int, default=MitigationConfig.n_jobs, help="Parallel workers.")
    p.add_argument(
        "--tracking-uri",
        default=None,
        help="Optional MLflow tracking URI.",
    )
    p.add_argument(
        "--experiment-name",
        default=MitigationConfig.experiment_name,
        help="MLflow experiment name.",
    )
    p.add_argument("--model-path", default=MitigationConfig.model_path, help="Where to save the bundle.")
    p.add_argument("--log-level", default="INFO")
    return p.parse_args()


def main() -> None:
    args = _parse_args()
    configure_logging(args.log_level)
    cfg = MitigationConfig(
        year_min=args.year_min,
        year_max=args.year_max,
        test_size=args.test_size,
        n_folds=args.folds,
        random_state=args.random_state,
        max_tokens=args.max_tokens,
        min_times=args.min_times,
        trees=args.trees,
        tune=args.tune,
        grid_size=args.grid_size,
        metric=args.metric,
        n_jobs=args.n_jobs,
        tracking_uri=args.tracking_uri,
        experiment_name=args.experiment_name,
        model_path=args.model_path,
    )
    out = run_training(data_path=args.data_path, config=cfg)
    print(json.dumps(out, indent=2))


if __name__ == "__main__":
    main()
