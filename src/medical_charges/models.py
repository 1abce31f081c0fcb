from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import ElasticNet, Ridge
from sklearn.model_selection import KFold

from .config import CV_FOLDS, ENET_ALPHAS, N_LAMBDAS, RANDOM_STATE
from .exceptions import InsufficientData, SingularDesignMatrix
from .preprocessing import DesignMatrix

logger = logging.getLogger(__name__)

# Mixing values at or above this are treated as lasso for identifiability
LASSO_LIKE_ALPHA = 0.99
# glmnet's floor on alpha when locating lambda_max for ridge
_RIDGE_ALPHA_FLOOR = 1e-3


# --------------------------------------------------------------------
# Fitted linear model
# --------------------------------------------------------------------
@dataclass(frozen=True)
class LinearModel:
    """Intercept plus one coefficient per design column (zeros allowed)."""

    feature_names: Tuple[str, ...]
    coef: np.ndarray
    intercept: float

    def __post_init__(self):
        coef = np.array(self.coef, dtype=float).ravel()
        if len(coef) != len(self.feature_names):
            raise ValueError(f"{len(coef)} coefficients for {len(self.feature_names)} features")
        coef.flags.writeable = False
        object.__setattr__(self, "coef", coef)
        object.__setattr__(self, "feature_names", tuple(self.feature_names))
        object.__setattr__(self, "intercept", float(self.intercept))

    @property
    def coefficients(self) -> Dict[str, float]:
        return dict(zip(self.feature_names, self.coef.tolist()))

    @property
    def n_nonzero(self) -> int:
        return int(np.count_nonzero(self.coef))

    def predict_log(self, X) -> np.ndarray:
        return self.intercept + np.asarray(X, dtype=float) @ self.coef

    def predict(self, X) -> np.ndarray:
        """Predicted charges on the original scale."""
        return np.exp(self.predict_log(X))


# --------------------------------------------------------------------
# Single penalized fit
# --------------------------------------------------------------------
def _check_alpha(alpha: float) -> float:
    alpha = float(alpha)
    if not 0.0 <= alpha <= 1.0:
        raise ValueError(f"Mixing parameter alpha must lie in [0, 1], got {alpha}")
    return alpha


def _center_scale(X: np.ndarray, standardize: bool) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    mean = X.mean(axis=0)
    scale = X.std(axis=0) if standardize else np.ones(X.shape[1])
    # constant columns are all zero once centered; keep them unscaled
    scale = np.where(scale > 0, scale, 1.0)
    return (X - mean) / scale, mean, scale


def _check_identifiable(X: np.ndarray, alpha: float) -> None:
    if alpha < LASSO_LIKE_ALPHA or X.shape[1] == 0:
        return
    rank = np.linalg.matrix_rank(X - X.mean(axis=0))
    if rank < X.shape[1]:
        raise SingularDesignMatrix(
            f"Design has rank {rank} < {X.shape[1]} columns; lasso-type fit "
            f"(alpha={alpha}) has no unique solution under perfect collinearity"
        )


def _make_estimator(alpha: float, lam: float, n_samples: int, max_iter: int, tol: float):
    if alpha == 0.0:
        # Ridge minimises |y - Xb|^2 + a|b|^2, i.e. 2n times the elastic-net
        # objective at alpha=0 when a = n * lambda
        return Ridge(alpha=n_samples * lam, fit_intercept=False)
    return ElasticNet(
        alpha=lam,
        l1_ratio=alpha,
        fit_intercept=False,
        max_iter=max_iter,
        tol=tol,
        warm_start=True,
    )


def _fit_path(
    X: np.ndarray,
    y: np.ndarray,
    alpha: float,
    lambdas: np.ndarray,
    standardize: bool,
    max_iter: int,
    tol: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """Coefficients (original scale) and intercepts for every lambda.

    Lambdas are visited in the given order; coordinate descent warm-starts
    from the previous solution.
    """
    Xs, x_mean, x_scale = _center_scale(X, standardize)
    y_mean = y.mean()
    yc = y - y_mean

    coefs = np.zeros((len(lambdas), X.shape[1]))
    estimator = None
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=ConvergenceWarning)
        for i, lam in enumerate(lambdas):
            if estimator is None or alpha == 0.0:
                estimator = _make_estimator(alpha, lam, X.shape[0], max_iter, tol)
            else:
                estimator.set_params(alpha=lam)
            estimator.fit(Xs, yc)
            coefs[i] = estimator.coef_ / x_scale

    intercepts = y_mean - coefs @ x_mean
    return coefs, intercepts


def fit_penalized(
    design: DesignMatrix,
    alpha: float,
    lam: float,
    standardize: bool = True,
    max_iter: int = 100_000,
    tol: float = 1e-7,
) -> LinearModel:
    """
    Minimise (1/2n)|y - Xb|^2 + lam * (alpha |b|_1 + (1 - alpha)/2 |b|_2^2)
    with an unpenalized intercept. With standardize=True (glmnet convention)
    the penalty applies to the coefficients of the standardized columns;
    only standardize=False penalizes b on the original scale.

    alpha = 0 is ridge (closed form, stable for singular X'X);
    alpha = 1 is lasso; anything between is elastic net.
    """
    alpha = _check_alpha(alpha)
    if not lam > 0:
        raise ValueError(f"Penalty strength must be positive, got {lam}")
    _check_identifiable(design.X, alpha)

    coefs, intercepts = _fit_path(
        design.X, design.y, alpha, np.array([float(lam)]), standardize, max_iter, tol
    )
    return LinearModel(design.feature_names, coefs[0], intercepts[0])


# --------------------------------------------------------------------
# Cross-validated regularization path
# --------------------------------------------------------------------
def lambda_grid(
    design: DesignMatrix,
    alpha: float,
    n_lambdas: int = N_LAMBDAS,
    lambda_min_ratio: Optional[float] = None,
    standardize: bool = True,
) -> np.ndarray:
    """Descending log-spaced grid from lambda_max, the smallest penalty
    that zeroes every coefficient."""
    Xs, _, _ = _center_scale(design.X, standardize)
    yc = design.y - design.y.mean()
    n, p = design.X.shape

    lambda_max = np.max(np.abs(Xs.T @ yc)) / (n * max(alpha, _RIDGE_ALPHA_FLOOR)) if p else 0.0
    if not lambda_max > 0:
        lambda_max = 1.0
    if lambda_min_ratio is None:
        lambda_min_ratio = 1e-4 if n > p else 1e-2

    return lambda_max * np.logspace(0, np.log10(lambda_min_ratio), n_lambdas)


@dataclass(frozen=True)
class PathFit:
    alpha: float
    lambdas: np.ndarray
    cv_mean: np.ndarray
    cv_se: np.ndarray
    lambda_min: float
    lambda_1se: float
    selected: str
    model: LinearModel
    coef_path: np.ndarray
    n_folds: int

    @property
    def lambda_selected(self) -> float:
        return self.lambda_min if self.selected == "min" else self.lambda_1se

    @property
    def cv_error(self) -> float:
        """Mean CV squared error (log scale) at the selected lambda."""
        i = int(np.flatnonzero(self.lambdas == self.lambda_selected)[0])
        return float(self.cv_mean[i])

    @property
    def cv_rmse(self) -> float:
        return float(np.sqrt(self.cv_error))

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "lambda": self.lambdas,
                "log_lambda": np.log(self.lambdas),
                "cv_mse": self.cv_mean,
                "cv_se": self.cv_se,
                "n_nonzero": np.count_nonzero(self.coef_path, axis=1),
            }
        )


def cross_validate_path(
    design: DesignMatrix,
    alpha: float,
    lambdas: np.ndarray,
    cv_folds: int = CV_FOLDS,
    random_state: int = RANDOM_STATE,
    standardize: bool = True,
    max_iter: int = 100_000,
    tol: float = 1e-7,
) -> np.ndarray:
    """Held-out MSE per fold and lambda, shape (cv_folds, len(lambdas))."""
    if cv_folds < 2:
        raise ValueError(f"cv_folds must be at least 2, got {cv_folds}")
    if design.n_samples < cv_folds:
        raise InsufficientData(
            f"{design.n_samples} rows cannot be split into {cv_folds} folds"
        )

    kf = KFold(n_splits=cv_folds, shuffle=True, random_state=random_state)
    fold_mse = np.empty((cv_folds, len(lambdas)))
    for k, (tr_idx, te_idx) in enumerate(kf.split(design.X)):
        coefs, intercepts = _fit_path(
            design.X[tr_idx], design.y[tr_idx], alpha, lambdas, standardize, max_iter, tol
        )
        preds = intercepts + design.X[te_idx] @ coefs.T
        fold_mse[k] = np.mean((design.y[te_idx, None] - preds) ** 2, axis=0)
    return fold_mse


def fit_regularization_path(
    design: DesignMatrix,
    alpha: float,
    lambdas: Optional[Sequence[float]] = None,
    cv_folds: int = CV_FOLDS,
    random_state: int = RANDOM_STATE,
    n_lambdas: int = N_LAMBDAS,
    lambda_min_ratio: Optional[float] = None,
    standardize: bool = True,
    select: str = "min",
    max_iter: int = 100_000,
    tol: float = 1e-7,
) -> PathFit:
    """Cross-validate a lambda grid for a fixed mixing parameter and refit.

    lambda_min minimises the mean CV error (ties go to the larger lambda);
    lambda_1se is the largest lambda within one standard error of it.
    """
    alpha = _check_alpha(alpha)
    if select not in ("min", "1se"):
        raise ValueError(f"select must be 'min' or '1se', got {select!r}")
    _check_identifiable(design.X, alpha)

    if lambdas is None:
        lambdas = lambda_grid(design, alpha, n_lambdas, lambda_min_ratio, standardize)
    else:
        lambdas = np.sort(np.asarray(lambdas, dtype=float))[::-1]
        if len(lambdas) == 0 or not np.all(lambdas > 0):
            raise ValueError("lambda grid must be non-empty and strictly positive")

    fold_mse = cross_validate_path(
        design, alpha, lambdas, cv_folds, random_state, standardize, max_iter, tol
    )
    cv_mean = fold_mse.mean(axis=0)
    cv_se = fold_mse.std(axis=0, ddof=1) / np.sqrt(cv_folds)

    i_min = int(np.argmin(cv_mean))
    lambda_min = float(lambdas[i_min])
    lambda_1se = float(lambdas[cv_mean <= cv_mean[i_min] + cv_se[i_min]].max())

    coef_path, _ = _fit_path(design.X, design.y, alpha, lambdas, standardize, max_iter, tol)
    chosen = lambda_min if select == "min" else lambda_1se
    model = fit_penalized(design, alpha, chosen, standardize, max_iter, tol)

    logger.info(
        "alpha=%.2f: lambda_min=%.5g lambda_1se=%.5g cv_mse=%.5f nonzero=%d/%d",
        alpha,
        lambda_min,
        lambda_1se,
        cv_mean[i_min],
        model.n_nonzero,
        design.n_features,
    )

    return PathFit(
        alpha=alpha,
        lambdas=lambdas,
        cv_mean=cv_mean,
        cv_se=cv_se,
        lambda_min=lambda_min,
        lambda_1se=lambda_1se,
        selected=select,
        model=model,
        coef_path=coef_path,
        n_folds=cv_folds,
    )


# --------------------------------------------------------------------
# Elastic net over a grid of mixing values
# --------------------------------------------------------------------
@dataclass(frozen=True)
class ElasticNetSelection:
    paths: Dict[float, PathFit]
    best_alpha: float
    skipped: Dict[float, str] = field(default_factory=dict)

    @property
    def best(self) -> PathFit:
        return self.paths[self.best_alpha]

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "alpha": a,
                "lambda_min": p.lambda_min,
                "lambda_1se": p.lambda_1se,
                "cv_rmse": p.cv_rmse,
                "n_nonzero": p.model.n_nonzero,
            }
            for a, p in self.paths.items()
        ]
        return pd.DataFrame(rows).set_index("alpha")


def select_elastic_net(
    design: DesignMatrix,
    alphas: Sequence[float] = ENET_ALPHAS,
    **path_kwargs,
) -> ElasticNetSelection:
    """Run the CV path for every alpha and keep the lowest CV error.

    Every alpha sees the same fold assignment. An alpha whose fit is not
    identifiable is logged and skipped.
    """
    paths: Dict[float, PathFit] = {}
    skipped: Dict[float, str] = {}
    for alpha in alphas:
        try:
            paths[float(alpha)] = fit_regularization_path(design, alpha, **path_kwargs)
        except SingularDesignMatrix as exc:
            logger.warning("Skipping alpha=%.2f: %s", alpha, exc)
            skipped[float(alpha)] = str(exc)

    if not paths:
        raise SingularDesignMatrix(f"No mixing value in {list(alphas)} could be fitted")

    best_alpha = min(paths, key=lambda a: paths[a].cv_error)
    logger.info("Elastic net: best alpha=%.2f (cv_rmse=%.5f)", best_alpha, paths[best_alpha].cv_rmse)
    return ElasticNetSelection(paths=paths, best_alpha=best_alpha, skipped=skipped)
