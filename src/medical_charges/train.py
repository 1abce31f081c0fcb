import argparse
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence

import joblib
import pandas as pd
from joblib import Parallel, delayed

from .config import Settings, load_settings
from .data_loader import load_insurance_data
from .eda import describe_dataset
from .evaluate import Metrics, evaluate, summarize_results
from .exceptions import ChargesModelError
from .models import ElasticNetSelection, LinearModel, PathFit, fit_regularization_path, select_elastic_net
from .preprocessing import DesignMatrix, EncodingSchema, build_design_matrices
from .split import split_dataset
from .subset import SubsetSearchResult, best_subset_search

logger = logging.getLogger(__name__)

FAMILIES = ("best_subset", "ridge", "lasso", "elastic_net")


@dataclass(frozen=True)
class FitResult:
    name: str
    model: LinearModel
    hyperparameter: str
    value: float
    cv_rmse_log: float
    metrics: Mapping[str, Metrics]
    details: Mapping[str, object] = field(default_factory=dict)

    @property
    def coefficients(self) -> Dict[str, float]:
        return self.model.coefficients

    @property
    def intercept(self) -> float:
        return self.model.intercept


@dataclass(frozen=True)
class ModelReport:
    results: Dict[str, FitResult]
    failures: Dict[str, str]
    schema: EncodingSchema
    n_train: int
    n_test: int
    subset: Optional[SubsetSearchResult] = None
    paths: Dict[str, PathFit] = field(default_factory=dict)
    elastic_net: Optional[ElasticNetSelection] = None
    description: Dict[str, pd.DataFrame] = field(default_factory=dict)
    data: Optional[pd.DataFrame] = field(default=None, repr=False, compare=False)

    def summary_frame(self) -> pd.DataFrame:
        df = summarize_results({name: r.metrics for name, r in self.results.items()})
        df.insert(0, "cv_rmse_log", pd.Series({n: r.cv_rmse_log for n, r in self.results.items()}))
        df.insert(0, "value", pd.Series({n: r.value for n, r in self.results.items()}))
        df.insert(0, "hyperparameter", pd.Series({n: r.hyperparameter for n, r in self.results.items()}))
        return df

    def coefficient_frame(self) -> pd.DataFrame:
        """Features x models, intercept as the first row."""
        table = {}
        for name, r in self.results.items():
            table[name] = {"(intercept)": r.intercept, **r.coefficients}
        return pd.DataFrame(table).reindex(["(intercept)", *self.schema.feature_names])


# --------------------------------------------------------------------
# Model families
# --------------------------------------------------------------------
def _path_kwargs(settings: Settings) -> dict:
    return {
        "cv_folds": settings.cv_folds,
        "random_state": settings.random_state,
        "n_lambdas": settings.n_lambdas,
        "lambda_min_ratio": settings.lambda_min_ratio,
        "standardize": settings.standardize,
        "select": settings.lambda_rule,
    }


def _fit_family(name: str, train: DesignMatrix, settings: Settings):
    """Return (model, hyperparameter, value, cv_rmse, details, artifact)."""
    if name == "best_subset":
        res = best_subset_search(
            train,
            max_size=settings.max_subset_size,
            method=settings.subset_method,
            cv_folds=settings.subset_cv_folds,
            cv_repeats=settings.subset_cv_repeats,
            random_state=settings.random_state,
        )
        details = {"method": res.method, "predictors": res.best_predictors}
        return res.model, "subset_size", float(res.best_size), res.cv_rmse, details, res

    if name in ("ridge", "lasso"):
        alpha = 0.0 if name == "ridge" else 1.0
        path = fit_regularization_path(train, alpha, **_path_kwargs(settings))
        details = {"alpha": alpha, "lambda_min": path.lambda_min, "lambda_1se": path.lambda_1se}
        return path.model, "lambda", path.lambda_selected, path.cv_rmse, details, path

    if name == "elastic_net":
        sel = select_elastic_net(train, settings.enet_alphas, **_path_kwargs(settings))
        best = sel.best
        details = {
            "alpha": sel.best_alpha,
            "lambda_min": best.lambda_min,
            "lambda_1se": best.lambda_1se,
        }
        return best.model, "lambda", best.lambda_selected, best.cv_rmse, details, sel

    raise ValueError(f"Unknown model family {name!r}; expected one of {FAMILIES}")


def _run_family(name: str, train: DesignMatrix, test: DesignMatrix, settings: Settings):
    logger.info("=== Fitting model family: %s ===", name)
    try:
        model, hyper, value, cv_rmse, details, artifact = _fit_family(name, train, settings)
    except ChargesModelError as exc:
        logger.error("Model family %s failed: %s: %s", name, type(exc).__name__, exc)
        return name, None, None, f"{type(exc).__name__}: {exc}"

    metrics = {"train": evaluate(model, train)}
    if test.n_samples:
        metrics["test"] = evaluate(model, test)

    result = FitResult(
        name=name,
        model=model,
        hyperparameter=hyper,
        value=value,
        cv_rmse_log=cv_rmse,
        metrics=metrics,
        details=details,
    )
    logger.info("%s: %s=%.5g, metrics=%s", name, hyper, value, {k: m.as_dict() for k, m in metrics.items()})
    return name, result, artifact, None


def run_model_families(
    schema: EncodingSchema,
    train: DesignMatrix,
    test: DesignMatrix,
    settings: Settings,
    families: Sequence[str] = FAMILIES,
    description: Optional[Dict[str, pd.DataFrame]] = None,
) -> ModelReport:
    """Fit every family on the shared training matrix and score it.

    Families are independent; with `settings.n_jobs != 1` they run in
    parallel joblib workers. A family that raises a ChargesModelError is
    recorded in `failures` and the others still complete.
    """
    unknown = [name for name in families if name not in FAMILIES]
    if unknown:
        raise ValueError(f"Unknown model families {unknown}; expected a subset of {FAMILIES}")

    outcomes = Parallel(n_jobs=settings.n_jobs)(
        delayed(_run_family)(name, train, test, settings) for name in families
    )

    results: Dict[str, FitResult] = {}
    failures: Dict[str, str] = {}
    subset = None
    paths: Dict[str, PathFit] = {}
    elastic_net = None
    for name, result, artifact, error in outcomes:
        if error is not None:
            failures[name] = error
            continue
        results[name] = result
        if isinstance(artifact, SubsetSearchResult):
            subset = artifact
        elif isinstance(artifact, ElasticNetSelection):
            elastic_net = artifact
            paths[name] = artifact.best
        else:
            paths[name] = artifact

    return ModelReport(
        results=results,
        failures=failures,
        schema=schema,
        n_train=train.n_samples,
        n_test=test.n_samples,
        subset=subset,
        paths=paths,
        elastic_net=elastic_net,
        description=description or {},
    )


def run_report(settings: Optional[Settings] = None, df: Optional[pd.DataFrame] = None) -> ModelReport:
    settings = settings or Settings()
    if df is None:
        df = load_insurance_data(settings.data_path)

    description = describe_dataset(df)
    train_df, test_df = split_dataset(
        df,
        fraction=settings.train_fraction,
        random_state=settings.random_state,
        n_bins=settings.split_bins,
    )
    schema, train, test = build_design_matrices(
        train_df, test_df, reference_levels=settings.reference_levels
    )
    report = run_model_families(schema, train, test, settings, description=description)
    return replace(report, data=df)


# --------------------------------------------------------------------
# Artifacts
# --------------------------------------------------------------------
def save_report(report: ModelReport, output_dir: Path, plots: bool = False) -> None:
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report.summary_frame().to_csv(output_dir / "model_comparison.csv")
    report.coefficient_frame().to_csv(output_dir / "coefficients.csv")
    if report.subset is not None:
        report.subset.table.to_csv(output_dir / "best_subset.csv")
    if report.elastic_net is not None:
        report.elastic_net.to_frame().to_csv(output_dir / "elastic_net_alphas.csv")
    for name, table in report.description.items():
        table.to_csv(output_dir / f"describe_{name}.csv")

    joblib.dump(report, output_dir / "report.joblib")
    logger.info("Saved report artifacts to %s", output_dir.resolve())

    if plots:
        _save_plots(report, output_dir)


def _save_plots(report: ModelReport, output_dir: Path) -> None:
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    from . import viz

    figures = {}
    for name, path in report.paths.items():
        figures[f"cv_curve_{name}.png"] = viz.plot_cv_curve(path, title=f"{name} cross-validation curve")
        figures[f"coef_path_{name}.png"] = viz.plot_coefficient_path(path, report.schema.feature_names)
    if report.subset is not None:
        figures["best_subset_criteria.png"] = viz.plot_subset_criteria(report.subset)
    if report.results:
        figures["coefficients.png"] = viz.plot_coefficients(report.coefficient_frame().drop(index="(intercept)"))
    if report.data is not None:
        numeric, categorical = viz.plot_insurance_distribution(report.data)
        figures["distribution_numeric.png"] = numeric
        figures["distribution_categorical.png"] = categorical

    for filename, fig in figures.items():
        fig.savefig(output_dir / filename, dpi=120)
        plt.close(fig)
    logger.info("Saved %d plots to %s", len(figures), output_dir)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Regularized regression report for medical charges.")
    parser.add_argument("--config", type=Path, default=None, help="YAML settings file")
    parser.add_argument("--data", type=Path, default=None, help="CSV of records")
    parser.add_argument("--output-dir", type=Path, default=None)
    parser.add_argument("--n-jobs", type=int, default=None)
    parser.add_argument("--plots", action="store_true", help="Also write PNG plots")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    )

    settings = load_settings(args.config)
    overrides = {
        "data_path": args.data,
        "output_dir": args.output_dir,
        "n_jobs": args.n_jobs,
    }
    settings = replace(settings, **{k: v for k, v in overrides.items() if v is not None})

    report = run_report(settings)

    print("\n=== Model comparison (RMSE on charges, R² on log charges) ===")
    print(report.summary_frame())
    if report.subset is not None:
        print("\n=== Best subset by size ===")
        print(report.subset.table)
    if report.failures:
        print("\n=== Failed model families ===")
        for name, error in report.failures.items():
            print(f"{name}: {error}")

    save_report(report, settings.output_dir, plots=args.plots)
    return 1 if report.failures and not report.results else 0


if __name__ == "__main__":
    raise SystemExit(main())
