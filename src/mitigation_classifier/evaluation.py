from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from sklearn.metrics import (
    accuracy_score,
    classification_report,
    confusion_matrix,
    f1_score,
    precision_score,
    recall_score,
    roc_auc_score,
)

from .data import LABELS, POSITIVE


@dataclass(frozen=True)
class EvalResult:
    metrics: dict[str, float]
    confusion: dict[tuple[str, str], int]
    report: str

    def confusion_table(self) -> list[dict]:
        return [{"truth": t, "prediction": p, "n": n} for (t, p), n in self.confusion.items()]


def confusion_counts(y_true, y_pred, labels=LABELS) -> dict[tuple[str, str], int]:
    """(truth, predicted) -> count, over every label pair."""
    cm = confusion_matrix(np.asarray(y_true), np.asarray(y_pred), labels=list(labels))
    return {(t, p): int(cm[i, j]) for i, t in enumerate(labels) for j, p in enumerate(labels)}


def evaluate_classifier(y_true, y_pred, y_prob=None, *, positive: str = POSITIVE) -> EvalResult:
    """Point metrics with `positive` as the event class.

    y_prob, when given, is the predicted probability of `positive`.
    """
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)

    recall = float(recall_score(y_true, y_pred, pos_label=positive, zero_division=0))
    negatives = y_true != positive
    specificity = float(np.mean(y_pred[negatives] != positive)) if negatives.any() else float("nan")

    metrics: dict[str, float] = {
        "accuracy": float(accuracy_score(y_true, y_pred)),
        "precision": float(precision_score(y_true, y_pred, pos_label=positive, zero_division=0)),
        "recall": recall,
        "f1": float(f1_score(y_true, y_pred, pos_label=positive, zero_division=0)),
        "sensitivity": recall,
        "specificity": specificity,
    }
    if y_prob is not None and len(np.unique(y_true)) == 2:
        metrics["roc_auc"] = float(roc_auc_score(y_true == positive, np.asarray(y_prob)))

    report = classification_report(y_true, y_pred, labels=list(LABELS), zero_division=0)
    return EvalResult(metrics=metrics, confusion=confusion_counts(y_true, y_pred), report=report)
