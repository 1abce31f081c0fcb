import logging
from typing import Dict

import numpy as np
import pandas as pd

from .config import CAT_FEATURES, NUM_FEATURES, TARGET_COL

logger = logging.getLogger(__name__)


def describe_dataset(df: pd.DataFrame) -> Dict[str, pd.DataFrame]:
    """
    Descriptive tables for the report:
      - numeric: count/mean/std/quantiles of numeric fields and charges
      - categorical: per-level count, share and mean/median charges
      - correlation: Pearson correlation of each numeric field with log(charges)
    """
    logger.info("Describing %d records", len(df))

    numeric = df[NUM_FEATURES + [TARGET_COL]].describe().T

    frames = []
    for col in CAT_FEATURES:
        grouped = df.groupby(col)[TARGET_COL].agg(["count", "mean", "median"])
        grouped["share"] = grouped["count"] / len(df)
        grouped.index = pd.MultiIndex.from_product([[col], grouped.index], names=["field", "level"])
        frames.append(grouped)
    categorical = pd.concat(frames)

    log_charges = np.log(df[TARGET_COL])
    correlation = (
        df[NUM_FEATURES]
        .apply(lambda s: s.corr(log_charges))
        .rename("corr_log_charges")
        .to_frame()
        .sort_values("corr_log_charges", key=np.abs, ascending=False)
    )

    return {"numeric": numeric, "categorical": categorical, "correlation": correlation}
