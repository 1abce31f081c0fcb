from dataclasses import asdict, dataclass
from typing import Dict, Mapping

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score

from .models import LinearModel
from .preprocessing import DesignMatrix


@dataclass(frozen=True)
class Metrics:
    """RMSE/MAE on the original charges scale; R^2 on the log scale."""

    rmse_charges: float
    mae_charges: float
    r2_log: float
    adj_r2_log: float
    n: int
    p: int

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


def regression_metrics(y_true_log, y_pred_log, n_predictors: int, y_true=None) -> Metrics:
    """`y_true` holds the original-scale response; defaults to exp(y_true_log)."""
    y_true_log = np.asarray(y_true_log, dtype=float)
    y_pred_log = np.asarray(y_pred_log, dtype=float)
    y_true = np.exp(y_true_log) if y_true is None else np.asarray(y_true, dtype=float)
    y_pred = np.exp(y_pred_log)
    n = len(y_true_log)

    rmse = float(np.sqrt(mean_squared_error(y_true, y_pred)))
    mae = float(mean_absolute_error(y_true, y_pred))
    r2 = float(r2_score(y_true_log, y_pred_log)) if n > 1 else np.nan
    dof = n - n_predictors - 1
    adj_r2 = 1.0 - (1.0 - r2) * (n - 1) / dof if dof > 0 else np.nan

    return Metrics(
        rmse_charges=rmse,
        mae_charges=mae,
        r2_log=r2,
        adj_r2_log=adj_r2,
        n=n,
        p=n_predictors,
    )


def evaluate(model: LinearModel, design: DesignMatrix) -> Metrics:
    """
    Score a fitted model on a design matrix.

    Predictions are made on the log scale and back-transformed with exp.
    RMSE and MAE compare against the recorded charges; R^2 and adjusted R^2
    compare log(charges) with the log-scale prediction, with p the number of
    non-zero coefficients.
    """
    if tuple(model.feature_names) != tuple(design.feature_names):
        raise ValueError(
            "Model and design columns differ: "
            f"{list(model.feature_names)} vs {list(design.feature_names)}"
        )
    y_pred_log = model.predict_log(design.X)
    return regression_metrics(design.y, y_pred_log, model.n_nonzero, y_true=design.charges)


def summarize_results(results: Mapping[str, Mapping[str, Metrics]], sort_by: str = "test") -> pd.DataFrame:
    """Flatten {model: {subset: Metrics}} into one row per model, sorted by RMSE."""
    rows = {}
    for name, by_subset in results.items():
        row = {}
        for subset, metrics in by_subset.items():
            for key, value in metrics.as_dict().items():
                row[f"{subset}_{key}"] = value
        rows[name] = row

    df = pd.DataFrame(rows).T
    sort_col = f"{sort_by}_rmse_charges"
    if sort_col in df.columns:
        df = df.sort_values(sort_col)
    return df
