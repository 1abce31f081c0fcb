"""
Best-subset selection for the log-charges linear model.

Three search strategies are offered:

* ``forward`` (default) adds, one at a time, the predictor that most reduces
  the in-sample residual sum of squares.
* ``backward`` starts from the full model and removes, one at a time, the
  predictor whose removal increases the RSS least.
* ``exhaustive`` fits every subset of every size up to ``max_size``.

The sequential strategies are heuristics: they return one candidate per size
but not necessarily the globally best subset of that size. ``exhaustive``
does, at the cost of 2^P fits.

Each candidate is scored in-sample (R^2, adjusted R^2, Mallows' Cp, BIC) and
by repeated k-fold cross-validated RMSE, all on the log scale. The
recommended size minimises BIC, preferring the smaller model on ties.
"""

import itertools
import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.linear_model import LinearRegression
from sklearn.model_selection import RepeatedKFold, cross_val_score

from .config import (
    MAX_SUBSET_SIZE,
    RANDOM_STATE,
    SUBSET_CV_FOLDS,
    SUBSET_CV_REPEATS,
    SUBSET_METHOD,
)
from .exceptions import InsufficientData, SingularDesignMatrix
from .models import LinearModel
from .preprocessing import DesignMatrix

logger = logging.getLogger(__name__)

METHODS = ("forward", "backward", "exhaustive")


@dataclass(frozen=True)
class SubsetSearchResult:
    table: pd.DataFrame
    best_size: int
    method: str
    model: LinearModel

    @property
    def best_predictors(self) -> Tuple[str, ...]:
        return self.predictors(self.best_size)

    def predictors(self, size: int) -> Tuple[str, ...]:
        return tuple(self.table.loc[size, "predictors"])

    @property
    def cv_rmse(self) -> float:
        return float(self.table.loc[self.best_size, "cv_rmse"])


def _rss(X: np.ndarray, y: np.ndarray, cols: Sequence[int]) -> Optional[float]:
    """In-sample RSS of OLS with intercept, or None if the fit is not identifiable."""
    A = np.column_stack([np.ones(len(y)), X[:, list(cols)]])
    if np.linalg.matrix_rank(A) < A.shape[1]:
        return None
    beta, *_ = np.linalg.lstsq(A, y, rcond=None)
    resid = y - A @ beta
    return float(resid @ resid)


def _best_of(X, y, subsets) -> Optional[Tuple[Tuple[int, ...], float]]:
    best = None
    for cols in subsets:
        rss = _rss(X, y, cols)
        if rss is not None and (best is None or rss < best[1]):
            best = (tuple(sorted(cols)), rss)
    return best


def _forward(X, y, max_size: int) -> Dict[int, Tuple[Tuple[int, ...], float]]:
    selected: List[int] = []
    remaining = list(range(X.shape[1]))
    path = {}
    for size in range(1, max_size + 1):
        best = _best_of(X, y, [selected + [j] for j in remaining])
        if best is None:
            logger.warning("Forward search stopped at size %d: no identifiable extension", size - 1)
            break
        added = (set(best[0]) - set(selected)).pop()
        selected.append(added)
        remaining.remove(added)
        path[size] = best
    return path


def _backward(X, y, max_size: int) -> Dict[int, Tuple[Tuple[int, ...], float]]:
    current = list(range(X.shape[1]))
    path = {}
    rss = _rss(X, y, current)
    if rss is not None:
        path[len(current)] = (tuple(current), rss)
    while len(current) > 1:
        best = _best_of(X, y, [[c for c in current if c != j] for j in current])
        if best is None:
            break
        current = list(best[0])
        path[len(current)] = best
    return {size: cand for size, cand in path.items() if size <= max_size}


def _exhaustive(X, y, max_size: int) -> Dict[int, Tuple[Tuple[int, ...], float]]:
    path = {}
    for size in range(1, max_size + 1):
        best = _best_of(X, y, itertools.combinations(range(X.shape[1]), size))
        if best is not None:
            path[size] = best
    return path


def _check_fold_sizes(n: int, cv_folds: int, max_size: int) -> None:
    if n < cv_folds:
        raise InsufficientData(f"{n} rows cannot be split into {cv_folds} folds")
    smallest_train = n - math.ceil(n / cv_folds)
    if smallest_train < max_size + 1:
        raise InsufficientData(
            f"Smallest CV training fold has {smallest_train} rows; "
            f"subsets of size {max_size} need at least {max_size + 1}"
        )


def best_subset_search(
    design: DesignMatrix,
    max_size: int = MAX_SUBSET_SIZE,
    method: str = SUBSET_METHOD,
    cv_folds: int = SUBSET_CV_FOLDS,
    cv_repeats: int = SUBSET_CV_REPEATS,
    random_state: int = RANDOM_STATE,
    tie_tolerance: float = 1e-6,
) -> SubsetSearchResult:
    """Pick one predictor subset per size and recommend the BIC-minimising one."""
    if method not in METHODS:
        raise ValueError(f"method must be one of {METHODS}, got {method!r}")
    if max_size < 1:
        raise ValueError(f"max_size must be at least 1, got {max_size}")

    X, y = design.X, design.y
    n, p = X.shape
    if max_size > p:
        logger.info("max_size %d exceeds %d predictors; using %d", max_size, p, p)
        max_size = p

    _check_fold_sizes(n, cv_folds, max_size)
    if n <= p + 1:
        raise InsufficientData(f"{n} rows are too few to estimate error variance with {p} predictors")

    A_full = np.column_stack([np.ones(n), X])
    rank_full = int(np.linalg.matrix_rank(A_full))
    beta_full, *_ = np.linalg.lstsq(A_full, y, rcond=None)
    resid_full = y - A_full @ beta_full
    if rank_full < A_full.shape[1]:
        logger.info("Full design has rank %d < %d columns", rank_full, A_full.shape[1])
    # sigma^2 for Cp from the full model; lstsq handles collinear columns
    sigma2 = float(resid_full @ resid_full) / (n - rank_full)
    tss = float(np.sum((y - y.mean()) ** 2))

    logger.info("Best subset search: method=%s, max_size=%d, %d predictors", method, max_size, p)
    search = {"forward": _forward, "backward": _backward, "exhaustive": _exhaustive}[method]
    path = search(X, y, max_size)
    if not path:
        raise SingularDesignMatrix("No identifiable subset found")

    cv = RepeatedKFold(n_splits=cv_folds, n_repeats=cv_repeats, random_state=random_state)
    rows = []
    for size in sorted(path):
        cols, rss = path[size]
        r2 = 1.0 - rss / tss if tss > 0 else np.nan
        adj_r2 = 1.0 - (1.0 - r2) * (n - 1) / (n - size - 1)
        scores = cross_val_score(
            LinearRegression(),
            X[:, list(cols)],
            y,
            cv=cv,
            scoring="neg_root_mean_squared_error",
        )
        rows.append(
            {
                "size": size,
                "predictors": tuple(design.feature_names[j] for j in cols),
                "rss": rss,
                "r2": r2,
                "adj_r2": adj_r2,
                "cp": rss / sigma2 + 2 * (size + 1) - n,
                "bic": n * np.log(rss / n) + (size + 1) * np.log(n),
                "cv_rmse": -scores.mean(),
                "cv_rmse_sd": scores.std(),
            }
        )
    table = pd.DataFrame(rows).set_index("size")

    best_size = int(table.index[table["bic"] <= table["bic"].min() + tie_tolerance].min())
    cols = design.column_indices(table.loc[best_size, "predictors"])
    ols = LinearRegression().fit(X[:, cols], y)
    coef = np.zeros(p)
    coef[cols] = ols.coef_

    logger.info(
        "Best subset: size %d by BIC %s (cv_rmse=%.5f)",
        best_size,
        list(table.loc[best_size, "predictors"]),
        table.loc[best_size, "cv_rmse"],
    )

    return SubsetSearchResult(
        table=table,
        best_size=best_size,
        method=method,
        model=LinearModel(design.feature_names, coef, ols.intercept_),
    )
