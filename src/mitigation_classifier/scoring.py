"""
Score one year's new agreements with a saved model.

Agreements whose number already appears in earlier years are left out, so only
agreements the model could not have seen during training are scored.
"""

from __future__ import annotations

import argparse
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import pandas as pd

from .data import ID_COLUMN, OUTCOME, filter_agreements, load_raw_csv, to_model_frame
from .evaluation import EvalResult, evaluate_classifier
from .logs import configure_logging
from .model import MitigationModel
from .serving import predict_frame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringResult:
    predictions: pd.DataFrame
    evaluation: EvalResult


def score_new_year(
    df: pd.DataFrame,
    model: MitigationModel,
    *,
    year: int,
    history_years: Sequence[int] | None = None,
) -> ScoringResult:
    """Predict the agreements of `year` that are absent from `history_years`.

    history_years defaults to every year before `year` present in `df`.
    """
    years = pd.to_numeric(df["year"], errors="coerce")
    if history_years is None:
        history = df.loc[years < year]
    else:
        history = df.loc[years.isin(list(history_years))]

    current = to_model_frame(df.loc[years == year])
    seen = set(history[ID_COLUMN].dropna())
    new = current.loc[~current[ID_COLUMN].isin(seen)].reset_index(drop=True)
    logger.info("Scoring %d new agreements in %d (%d already seen)", len(new), year, len(current) - len(new))
    if new.empty:
        raise ValueError(f"No new agreements to score for {year}")

    scored = predict_frame(model, new)
    predictions = pd.concat([new[[ID_COLUMN, OUTCOME]], scored], axis=1)
    evaluation = evaluate_classifier(new[OUTCOME], scored["pred_class"], y_prob=scored["pred_mitigation"])
    return ScoringResult(predictions=predictions, evaluation=evaluation)


def main() -> None:
    p = argparse.ArgumentParser(description="Score a year of new agreements with a saved model.")
    p.add_argument("--data-path", required=True, help="Path to the CSV extract.")
    p.add_argument("--model-path", default="models/final_model.joblib", help="Saved model bundle.")
    p.add_argument("--year", type=int, required=True, help="Year to score.")
    p.add_argument(
        "--history-from",
        type=int,
        default=None,
        help="First history year; agreements seen from this year up to --year are skipped.",
    )
    p.add_argument("--out", default="reports/predictions.csv", help="Where to write predictions.")
    p.add_argument("--log-level", default="INFO")
    args = p.parse_args()
    configure_logging(args.log_level)

    df = filter_agreements(load_raw_csv(args.data_path))
    history = None if args.history_from is None else list(range(args.history_from, args.year))
    result = score_new_year(df, MitigationModel.load(args.model_path), year=args.year, history_years=history)

    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    result.predictions.to_csv(out_path, index=False)
    print(json.dumps({"metrics": result.evaluation.metrics, "confusion": result.evaluation.confusion_table()}, indent=2))
    print(f"Wrote: {out_path}")


if __name__ == "__main__":
    main()
