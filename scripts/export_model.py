"""
Pull the servable pyfunc model of a training run out of MLflow.

    python scripts/export_model.py                 # run recorded in reports/artifacts/last_run.json
    python scripts/export_model.py --run-id <id>
    mlflow models serve -m models/pyfunc_model --env-manager local

The model can also be served straight from the store with
`mlflow models serve -m runs:/<run_id>/pyfunc_model`.
"""

from __future__ import annotations

import argparse
import json
import shutil
from pathlib import Path

import mlflow
import mlflow.pyfunc

from mitigation_classifier.serving import PYFUNC_ARTIFACT


def run_from_record(path: Path) -> tuple[str, str | None]:
    """(run_id, tracking_uri) written by training; the URI is None for older records."""
    if not path.exists():
        raise FileNotFoundError(f"Training record not found: {path} (train first or pass --run-id)")
    record = json.loads(path.read_text(encoding="utf-8"))
    if not record.get("run_id"):
        raise ValueError(f"{path} has no run_id")
    return str(record["run_id"]), record.get("tracking_uri")


def export_model(run_id: str, out_dir: Path, *, artifact_path: str = PYFUNC_ARTIFACT, replace: bool = False) -> Path:
    """Download the run's pyfunc model under out_dir and check that it loads."""
    target = out_dir / artifact_path
    if target.exists():
        if not replace:
            raise FileExistsError(f"{target} already exists; pass --replace to overwrite it")
        shutil.rmtree(target)
    out_dir.mkdir(parents=True, exist_ok=True)

    local = Path(
        mlflow.artifacts.download_artifacts(run_id=run_id, artifact_path=artifact_path, dst_path=str(out_dir))
    )
    loaded = mlflow.pyfunc.load_model(str(local))
    if loaded.metadata.signature is None:
        print(f"warning: {local} has no signature; request params will be ignored by the server")
    return local


def main() -> None:
    p = argparse.ArgumentParser(description="Export the servable model of a training run.")
    p.add_argument("--run-json", default="reports/artifacts/last_run.json", help="Record written by training.")
    p.add_argument("--run-id", default=None, help="Run to export (overrides --run-json).")
    p.add_argument("--tracking-uri", default=None, help="MLflow tracking URI (defaults to the recorded one).")
    p.add_argument("--artifact", default=PYFUNC_ARTIFACT, help="Artifact path of the pyfunc model in the run.")
    p.add_argument("--out-dir", default="models", help="Directory the model folder is written into.")
    p.add_argument("--replace", action="store_true", help="Overwrite an earlier export.")
    args = p.parse_args()

    tracking_uri = args.tracking_uri
    if args.run_id:
        run_id = args.run_id
    else:
        run_id, recorded_uri = run_from_record(Path(args.run_json))
        tracking_uri = tracking_uri or recorded_uri
    if tracking_uri:
        mlflow.set_tracking_uri(tracking_uri)

    local = export_model(run_id, Path(args.out_dir), artifact_path=args.artifact, replace=args.replace)
    print(f"Exported run {run_id} -> {local}")
    print(f"Serve with: mlflow models serve -m {local} --env-manager local")


if __name__ == "__main__":
    main()
