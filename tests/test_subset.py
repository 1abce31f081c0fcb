import numpy as np
import pytest

from medical_charges.exceptions import InsufficientData
from medical_charges.preprocessing import DesignMatrix
from medical_charges.subset import best_subset_search


def _subset_design(n=200, seed=3) -> DesignMatrix:
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n, 6))
    X[:, 4] = 0.6 * X[:, 0] + 0.8 * rng.normal(size=n)
    y = 1.0 + 2.0 * X[:, 0] + 0.7 * X[:, 2] - 0.4 * X[:, 5] + rng.normal(0, 0.5, n)
    return DesignMatrix(X=X, y=y, feature_names=tuple(f"x{j}" for j in range(6)))


@pytest.mark.parametrize("method", ["forward", "backward", "exhaustive"])
def test_size_one_picks_most_correlated_predictor(method):
    design = _subset_design()
    result = best_subset_search(design, max_size=3, method=method, cv_folds=5, cv_repeats=1)

    corr = [abs(np.corrcoef(design.X[:, j], design.y)[0, 1]) for j in range(design.n_features)]
    assert result.predictors(1) == (design.feature_names[int(np.argmax(corr))],)


def test_table_has_one_row_per_size():
    result = best_subset_search(_subset_design(), max_size=5, cv_folds=5, cv_repeats=2)

    assert list(result.table.index) == [1, 2, 3, 4, 5]
    for col in ("predictors", "rss", "r2", "adj_r2", "cp", "bic", "cv_rmse", "cv_rmse_sd"):
        assert col in result.table.columns
    assert all(len(result.predictors(k)) == k for k in result.table.index)
    # forward steps are nested, so in-sample fit never gets worse
    assert result.table["rss"].is_monotonic_decreasing


def test_recovers_true_predictors_by_bic():
    result = best_subset_search(_subset_design(), max_size=6, cv_folds=5, cv_repeats=1)

    assert set(result.predictors(3)) == {"x0", "x2", "x5"}
    assert {"x0", "x2", "x5"} <= set(result.best_predictors)
    assert result.best_size == int(result.table["bic"].idxmin())


def test_exhaustive_is_never_worse_than_forward():
    design = _subset_design()
    forward = best_subset_search(design, max_size=4, method="forward", cv_folds=5, cv_repeats=1)
    exhaustive = best_subset_search(design, max_size=4, method="exhaustive", cv_folds=5, cv_repeats=1)

    assert np.all(exhaustive.table["rss"].to_numpy() <= forward.table["rss"].to_numpy() + 1e-9)


def test_ties_prefer_smaller_model():
    result = best_subset_search(_subset_design(), max_size=4, cv_folds=5, cv_repeats=1, tie_tolerance=np.inf)
    assert result.best_size == 1


def test_refit_uses_only_selected_predictors():
    design = _subset_design()
    result = best_subset_search(design, max_size=6, cv_folds=5, cv_repeats=1)

    selected = set(result.best_predictors)
    for name, weight in result.model.coefficients.items():
        if name not in selected:
            assert weight == 0.0
        else:
            assert weight != 0.0
    assert result.model.n_nonzero == result.best_size


def test_cv_scores_are_reproducible():
    design = _subset_design()
    first = best_subset_search(design, max_size=3, cv_folds=10, cv_repeats=3, random_state=311)
    second = best_subset_search(design, max_size=3, cv_folds=10, cv_repeats=3, random_state=311)

    np.testing.assert_array_equal(first.table["cv_rmse"], second.table["cv_rmse"])


def test_max_size_is_capped_at_predictor_count():
    result = best_subset_search(_subset_design(), max_size=10, cv_folds=5, cv_repeats=1)
    assert result.table.index.max() == 6


def test_folds_too_small_raise():
    design = _subset_design(n=10)
    with pytest.raises(InsufficientData):
        best_subset_search(design, max_size=6, cv_folds=2, cv_repeats=1)


@pytest.mark.parametrize("method", ["forward", "exhaustive"])
def test_collinear_full_design_still_searched(method):
    design = _subset_design()
    X = np.column_stack([design.X, design.X[:, 1] + design.X[:, 3]])
    collinear = DesignMatrix(X=X, y=design.y, feature_names=design.feature_names + ("x1_plus_x3",))

    result = best_subset_search(collinear, max_size=3, method=method, cv_folds=5, cv_repeats=1)

    assert result.predictors(1) == ("x0",)
    assert set(result.predictors(3)) == {"x0", "x2", "x5"}
    assert np.isfinite(result.table["cp"]).all()


def test_unknown_method_rejected():
    with pytest.raises(ValueError):
        best_subset_search(_subset_design(), method="stepwise")
