import dataclasses
import json

import pytest

from mitigation_classifier.config import MitigationConfig
from mitigation_classifier.model import MitigationModel
from mitigation_classifier.train import run_training

from conftest import make_raw


@pytest.mark.parametrize(
    "overrides",
    [{"test_size": 0.0}, {"test_size": 1.0}, {"n_folds": 1}, {"metric": "logloss"}, {"mtry": ()}, {"grid_size": 0}],
)
def test_config_validation(overrides):
    with pytest.raises(ValueError):
        MitigationConfig(**overrides).validate()


def test_run_training_end_to_end(tmp_path, monkeypatch, small_config):
    monkeypatch.chdir(tmp_path)
    data_path = tmp_path / "statsys.csv"
    make_raw(n=160, positive_share=0.1, seed=2).to_csv(data_path, index=False)

    cfg = dataclasses.replace(
        small_config,
        trees=10,
        tracking_uri=f"sqlite:///{tmp_path / 'mlflow.db'}",
        experiment_name="test-mitigation",
        model_path=str(tmp_path / "models" / "final_model.joblib"),
    )
    out = run_training(data_path=str(data_path), config=cfg, artifacts_dir=tmp_path / "artifacts")

    assert out["run_id"]
    assert out["label_proportions"]["test"]["Mitigation"] == pytest.approx(0.1, abs=0.02)
    assert out["label_proportions"]["train"]["Mitigation"] == pytest.approx(0.1, abs=0.02)
    assert 0.0 <= out["test"]["accuracy"] <= 1.0
    assert sum(row["n"] for row in out["confusion"]) == 40

    saved = json.loads((tmp_path / "artifacts" / "last_run.json").read_text(encoding="utf-8"))
    assert saved["run_id"] == out["run_id"]
    assert (tmp_path / "artifacts" / "fold_metrics.csv").exists()

    model = MitigationModel.load(out["model_path"])
    record = make_raw(n=1, seed=11)
    assert model.predict(record)[0] in ("Mitigation", "Not mitigation")
