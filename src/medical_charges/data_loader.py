import logging
from pathlib import Path
from typing import Optional

import pandas as pd

from .config import CAT_FEATURES, FEATURE_COLS, NUM_FEATURES, RAW_DATA, TARGET_COL
from .exceptions import EmptyDataset

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = FEATURE_COLS + [TARGET_COL]


def validate_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Check the record layout and coerce column dtypes.

    Returns a copy holding only the record columns, in record order.
    """
    missing = set(REQUIRED_COLUMNS) - set(df.columns)
    if missing:
        logger.error("Missing required columns: %s", missing)
        raise ValueError(f"Missing required columns: {sorted(missing)}")

    df = df[REQUIRED_COLUMNS].copy()
    for col in NUM_FEATURES + [TARGET_COL]:
        df[col] = pd.to_numeric(df[col], errors="raise").astype(float)
    for col in CAT_FEATURES:
        df[col] = df[col].astype(str).str.strip().str.lower()
    return df


def load_insurance_data(path: Optional[Path] = None) -> pd.DataFrame:
    """
    Load raw medical charges data from CSV.
    """
    path = Path(path) if path is not None else RAW_DATA
    logger.info("Loading data from %s", path)
    df = pd.read_csv(path)
    df = validate_columns(df)

    if df.empty:
        raise EmptyDataset(f"No records in {path}")

    logger.info("Loaded %d records", len(df))
    return df
