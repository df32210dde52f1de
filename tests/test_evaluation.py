import pytest

from mitigation_classifier.evaluation import confusion_counts, evaluate_classifier

M, N = "Mitigation", "Not mitigation"


def test_metrics_use_mitigation_as_event():
    y_true = [M, M, N, N, N]
    y_pred = [M, N, M, N, N]
    y_prob = [0.9, 0.4, 0.6, 0.2, 0.1]

    res = evaluate_classifier(y_true, y_pred, y_prob=y_prob)

    assert res.metrics["accuracy"] == pytest.approx(0.6)
    assert res.metrics["precision"] == pytest.approx(0.5)
    assert res.metrics["recall"] == pytest.approx(0.5)
    assert res.metrics["sensitivity"] == res.metrics["recall"]
    assert res.metrics["specificity"] == pytest.approx(2 / 3)
    assert res.metrics["roc_auc"] == pytest.approx(5 / 6)
    assert "Mitigation" in res.report


def test_roc_auc_skipped_with_one_class():
    res = evaluate_classifier([N, N], [N, M], y_prob=[0.1, 0.7])
    assert "roc_auc" not in res.metrics


def test_confusion_counts_cover_every_pair():
    counts = confusion_counts([M, M, N], [M, N, N])
    assert counts == {(M, M): 1, (M, N): 1, (N, M): 0, (N, N): 1}
