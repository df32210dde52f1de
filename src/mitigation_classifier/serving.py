from __future__ import annotations

from pathlib import Path

import mlflow
import mlflow.pyfunc
import pandas as pd
from mlflow.models import infer_signature

from .data import NUMERIC_COLUMNS, PREDICTOR_SOURCE_COLUMNS
from .model import MitigationModel

PYFUNC_ARTIFACT = "pyfunc_model"


def predict_frame(model: MitigationModel, records: pd.DataFrame, *, with_proba: bool = True) -> pd.DataFrame:
    """Label (and probability of "Mitigation") per record, in input order."""
    out = pd.DataFrame({"pred_class": model.predict(records)}, index=records.index)
    if with_proba:
        out["pred_mitigation"] = model.predict_proba(records)
    return out


class MitigationPyfunc(mlflow.pyfunc.PythonModel):
    """Exposes the joblib bundle to `mlflow models serve` (POST /invocations).

    Records use the raw input schema; the fitted bundle is read-only across requests.
    """

    def load_context(self, context):
        self.model = MitigationModel.load(context.artifacts["model"])

    def predict(self, context, model_input, params=None):
        records = model_input if isinstance(model_input, pd.DataFrame) else pd.DataFrame(model_input)
        with_proba = True if params is None else bool(params.get("with_proba", True))
        return predict_frame(self.model, records, with_proba=with_proba)


def example_records() -> pd.DataFrame:
    """One blank record in the raw input schema."""
    row = {c: "" for c in PREDICTOR_SOURCE_COLUMNS}
    row.update({c: 0.0 for c in NUMERIC_COLUMNS})
    return pd.DataFrame([row], columns=PREDICTOR_SOURCE_COLUMNS)


def pyfunc_signature(model: MitigationModel):
    """Raw-record inputs, prediction outputs and the `with_proba` request param."""
    records = example_records()
    return infer_signature(records, predict_frame(model, records), params={"with_proba": True})


def log_pyfunc_model(bundle_path: str | Path, artifact_path: str = PYFUNC_ARTIFACT):
    """Log the bundle as a servable pyfunc model in the active MLflow run."""
    return mlflow.pyfunc.log_model(
        artifact_path=artifact_path,
        python_model=MitigationPyfunc(),
        artifacts={"model": str(bundle_path)},
        code_paths=[str(Path(__file__).parent)],
        signature=pyfunc_signature(MitigationModel.load(bundle_path)),
    )
