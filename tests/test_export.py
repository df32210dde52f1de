import importlib.util
import json
from pathlib import Path

import mlflow
import numpy as np
import pytest

from mitigation_classifier.data import to_model_frame
from mitigation_classifier.model import fit_final_model
from mitigation_classifier.serving import log_pyfunc_model
from mitigation_classifier.tuning import ForestParams

from conftest import make_raw

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "export_model.py"


@pytest.fixture(scope="module")
def export_script():
    spec = importlib.util.spec_from_file_location("export_model", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_run_from_record_reads_run_and_store(tmp_path, export_script):
    record = tmp_path / "last_run.json"
    record.write_text(json.dumps({"run_id": "abc123", "tracking_uri": "sqlite:///mlflow.db"}), encoding="utf-8")

    assert export_script.run_from_record(record) == ("abc123", "sqlite:///mlflow.db")


def test_run_from_record_rejects_missing_or_empty(tmp_path, export_script):
    with pytest.raises(FileNotFoundError):
        export_script.run_from_record(tmp_path / "missing.json")

    record = tmp_path / "last_run.json"
    record.write_text(json.dumps({"test": {}}), encoding="utf-8")
    with pytest.raises(ValueError):
        export_script.run_from_record(record)


def test_export_model_downloads_a_loadable_model(tmp_path, monkeypatch, small_config, export_script):
    monkeypatch.chdir(tmp_path)
    train = to_model_frame(make_raw(n=120, positive_share=0.2))
    model = fit_final_model(train, ForestParams(), small_config, np.random.default_rng(0))
    bundle = model.save(tmp_path / "bundle.joblib")

    mlflow.set_tracking_uri(f"sqlite:///{tmp_path / 'mlflow.db'}")
    mlflow.set_experiment("test-export")
    with mlflow.start_run() as run:
        log_pyfunc_model(bundle)

    out_dir = tmp_path / "models"
    local = export_script.export_model(run.info.run_id, out_dir)

    assert local == out_dir / "pyfunc_model"
    assert (local / "MLmodel").exists()
    served = mlflow.pyfunc.load_model(str(local))
    records = make_raw(n=2, seed=5).drop(columns=["pm_climate_change_mitigation"])
    assert list(served.predict(records).columns) == ["pred_class", "pred_mitigation"]

    with pytest.raises(FileExistsError):
        export_script.export_model(run.info.run_id, out_dir)
    assert export_script.export_model(run.info.run_id, out_dir, replace=True) == local
