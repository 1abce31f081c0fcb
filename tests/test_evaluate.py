import numpy as np
import pytest

from medical_charges.evaluate import evaluate, regression_metrics, summarize_results
from medical_charges.models import LinearModel
from medical_charges.preprocessing import DesignMatrix


def _exact_design(n=40, seed=5):
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n, 3))
    model = LinearModel(("a", "b", "c"), [0.3, -0.2, 0.0], 8.0)
    design = DesignMatrix(X=X, y=model.predict_log(X), feature_names=("a", "b", "c"))
    return model, design


def test_zero_error_model_has_zero_rmse():
    model, design = _exact_design()
    metrics = evaluate(model, design)

    assert metrics.rmse_charges == pytest.approx(0.0, abs=1e-8)
    assert metrics.mae_charges == pytest.approx(0.0, abs=1e-8)
    assert metrics.r2_log == pytest.approx(1.0)
    assert metrics.adj_r2_log == pytest.approx(1.0)


def test_rmse_is_on_original_scale_and_r2_on_log_scale():
    model, design = _exact_design()
    noisy_charges = design.charges * np.exp(np.random.default_rng(0).normal(0, 0.2, design.n_samples))
    noisy = DesignMatrix.from_charges(design.X, noisy_charges, design.feature_names)

    metrics = evaluate(model, noisy)
    pred = np.exp(model.predict_log(noisy.X))
    log_resid = noisy.y - np.log(pred)

    assert metrics.rmse_charges == pytest.approx(np.sqrt(np.mean((noisy_charges - pred) ** 2)))
    expected_r2 = 1 - np.sum(log_resid**2) / np.sum((noisy.y - noisy.y.mean()) ** 2)
    assert metrics.r2_log == pytest.approx(expected_r2)


def test_adjusted_r2_counts_nonzero_coefficients():
    model, design = _exact_design()
    noisy = DesignMatrix(X=design.X, y=design.y + np.linspace(-0.1, 0.1, design.n_samples),
                         feature_names=design.feature_names)
    metrics = evaluate(model, noisy)

    assert metrics.p == 2
    n = metrics.n
    assert metrics.adj_r2_log == pytest.approx(1 - (1 - metrics.r2_log) * (n - 1) / (n - 2 - 1))


def test_adjusted_r2_undefined_without_residual_degrees_of_freedom():
    metrics = regression_metrics([1.0, 2.0, 3.0], [1.1, 1.9, 3.0], n_predictors=2)
    assert np.isnan(metrics.adj_r2_log)


def test_column_mismatch_raises():
    model, design = _exact_design()
    other = LinearModel(("a", "c", "b"), model.coef, model.intercept)

    with pytest.raises(ValueError):
        evaluate(other, design)


def test_summarize_results_sorts_by_test_rmse():
    good = regression_metrics([1.0, 2.0, 3.0, 4.0], [1.0, 2.1, 3.0, 4.0], 1)
    bad = regression_metrics([1.0, 2.0, 3.0, 4.0], [1.5, 2.5, 2.0, 4.5], 1)

    df = summarize_results({"bad": {"train": good, "test": bad}, "good": {"train": bad, "test": good}})

    assert list(df.index) == ["good", "bad"]
    assert "test_rmse_charges" in df.columns
    assert "train_r2_log" in df.columns
