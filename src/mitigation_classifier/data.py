from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from pathlib import Path

import pandas as pd

logger = logging.getLogger(__name__)

ID_COLUMN = "agreement_number"
MARKER_COLUMN = "pm_climate_change_mitigation"
OUTCOME = "mitigation"
TEXT_COLUMN = "title_desc"

POSITIVE = "Mitigation"
NEGATIVE = "Not mitigation"
LABELS = (POSITIVE, NEGATIVE)
MITIGATION_LEVELS = ("Main objective", "Significant objective")

CATEGORICAL_COLUMNS = [
    "agreement_partner",
    "group_of_agreement_partner",
    "extending_agency",
    "recipient_country",
    "main_region",
    "main_sector",
    "sub_sector",
]
NUMERIC_COLUMNS = ["disbursed_mill_nok"]

# Columns a record needs to be scored
PREDICTOR_SOURCE_COLUMNS = [
    "agreement_title",
    "description_of_agreement",
    *CATEGORICAL_COLUMNS,
    *NUMERIC_COLUMNS,
]

REQUIRED_COLUMNS = [
    ID_COLUMN,
    "year",
    "type_of_flow",
    "type_of_agreement",
    MARKER_COLUMN,
    *PREDICTOR_SOURCE_COLUMNS,
]

PREDICTORS = [TEXT_COLUMN, *CATEGORICAL_COLUMNS, *NUMERIC_COLUMNS]
MODEL_COLUMNS = [OUTCOME, *PREDICTORS]

_NON_ALNUM = re.compile(r"[^0-9a-zA-Z]+")
_NON_ASCII_TEXT = re.compile(r"[^0-9a-zA-Z ]")


def clean_names(columns: Iterable[str]) -> list[str]:
    """snake_case column headers, e.g. "Disbursed (mill NOK)" -> "disbursed_mill_nok"."""
    return [_NON_ALNUM.sub("_", str(c).strip().lower()).strip("_") for c in columns]


def _validate_schema(df: pd.DataFrame, required: Sequence[str] = REQUIRED_COLUMNS) -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")


def load_raw_csv(path: str | Path) -> pd.DataFrame:
    """Load the raw CSV extract, clean the headers and validate the schema."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")
    df = pd.read_csv(path, low_memory=False)
    df.columns = clean_names(df.columns)
    _validate_schema(df)
    logger.info("Loaded %d rows from %s", len(df), path)
    return df


def filter_agreements(
    df: pd.DataFrame,
    *,
    year_min: int | None = None,
    year_max: int | None = None,
    flow_types: Sequence[str] = ("ODA",),
    excluded_agreement_types: Sequence[str] = ("Rammeavtale",),
) -> pd.DataFrame:
    """Keep the chosen flow types and years and drop excluded agreement levels."""
    _validate_schema(df)
    mask = df["type_of_flow"].isin(list(flow_types))
    mask &= df["type_of_agreement"].notna() & ~df["type_of_agreement"].isin(list(excluded_agreement_types))
    year = pd.to_numeric(df["year"], errors="coerce")
    if year_min is not None:
        mask &= year >= year_min
    if year_max is not None:
        mask &= year <= year_max
    out = df.loc[mask].copy()
    logger.info("Kept %d of %d rows after flow/agreement/year filters", len(out), len(df))
    return out


def label_from_marker(marker) -> str:
    if isinstance(marker, str) and marker.strip() in MITIGATION_LEVELS:
        return POSITIVE
    return NEGATIVE


def ascii_normalize(series: pd.Series) -> pd.Series:
    """Replace anything outside [0-9a-zA-Z ] with a space; missing values stay missing."""
    return series.map(lambda v: v if pd.isna(v) else _NON_ASCII_TEXT.sub(" ", str(v)))


def prepare_predictors(df: pd.DataFrame) -> pd.DataFrame:
    """Build the predictor columns from raw records (no dedup, label kept if present).

    Used both for training frames and for records arriving at prediction time.
    """
    _validate_schema(df, PREDICTOR_SOURCE_COLUMNS)

    title = df["agreement_title"].fillna("").astype(str)
    description = df["description_of_agreement"].fillna("").astype(str)

    out = pd.DataFrame(index=df.index)
    if ID_COLUMN in df.columns:
        out[ID_COLUMN] = df[ID_COLUMN]
    if OUTCOME in df.columns:
        out[OUTCOME] = df[OUTCOME]
    out[TEXT_COLUMN] = ascii_normalize(title + ". " + description)
    for col in CATEGORICAL_COLUMNS:
        out[col] = ascii_normalize(df[col])
    for col in NUMERIC_COLUMNS:
        out[col] = pd.to_numeric(df[col], errors="coerce")
    return out


def to_model_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Return one row per agreement with the label and the modeling columns.

    The first row of each agreement number is kept, so the same agreement can
    never land in both the train and the test partition. All other policy
    markers are dropped.
    """
    _validate_schema(df)

    deduped = df.drop_duplicates(subset=ID_COLUMN, keep="first").copy()
    logger.info("Deduplicated %d rows to %d agreements", len(df), len(deduped))

    deduped[OUTCOME] = deduped[MARKER_COLUMN].map(label_from_marker)
    frame = prepare_predictors(deduped)
    return frame[[ID_COLUMN, *MODEL_COLUMNS]].reset_index(drop=True)
