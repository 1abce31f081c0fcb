import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split

from .config import RANDOM_STATE, SPLIT_BINS, TARGET_COL, TRAIN_FRACTION
from .exceptions import EmptyDataset, InvalidFraction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Split:
    """Disjoint, exhaustive train/test row positions (sorted, read-only)."""

    train_idx: np.ndarray
    test_idx: np.ndarray

    def __post_init__(self):
        for arr in (self.train_idx, self.test_idx):
            arr.flags.writeable = False

    @property
    def n_records(self) -> int:
        return len(self.train_idx) + len(self.test_idx)


def _quantile_strata(y: np.ndarray, n_bins: int, max_bins: int) -> Optional[np.ndarray]:
    """Label each response value with its quantile bin.

    Fewer bins are tried until every bin holds at least two rows and the
    number of bins fits on both sides of the split.
    """
    for q in range(min(n_bins, max_bins), 1, -1):
        labels = pd.qcut(y, q, labels=False, duplicates="drop")
        counts = np.bincount(labels)
        if 2 <= len(counts) <= max_bins and counts.min() >= 2:
            return labels
    return None


def stratified_split(
    y,
    fraction: float = TRAIN_FRACTION,
    random_state: int = RANDOM_STATE,
    n_bins: int = SPLIT_BINS,
) -> Split:
    """Seeded train/test partition stratified by response quantiles.

    The training side holds round(fraction * N) rows, clamped so both sides
    are non-empty whenever N >= 2.
    """
    if not 0.0 < fraction < 1.0:
        raise InvalidFraction(f"Split fraction must lie in (0, 1), got {fraction!r}")

    y = np.asarray(y, dtype=float)
    n = len(y)
    if n == 0:
        raise EmptyDataset("Cannot split an empty dataset")

    indices = np.arange(n)
    if n == 1:
        return Split(train_idx=indices, test_idx=np.array([], dtype=int))

    n_train = int(np.floor(fraction * n + 0.5))
    n_train = min(max(n_train, 1), n - 1)
    n_test = n - n_train

    strata = _quantile_strata(y, n_bins, min(n_train, n_test))
    train_idx, test_idx = train_test_split(
        indices,
        train_size=n_train,
        test_size=n_test,
        random_state=random_state,
        stratify=strata,
    )

    logger.info(
        "Data split: %d training, %d test (%s)",
        n_train,
        n_test,
        "unstratified" if strata is None else f"{len(np.unique(strata))} strata",
    )
    return Split(train_idx=np.sort(train_idx), test_idx=np.sort(test_idx))


def split_dataset(
    df: pd.DataFrame,
    fraction: float = TRAIN_FRACTION,
    random_state: int = RANDOM_STATE,
    n_bins: int = SPLIT_BINS,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    split = stratified_split(df[TARGET_COL], fraction, random_state, n_bins)
    train_df = df.iloc[split.train_idx].reset_index(drop=True)
    test_df = df.iloc[split.test_idx].reset_index(drop=True)
    return train_df, test_df
