from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, Optional, Tuple

import yaml

# Paths
PROJECT_ROOT = Path(__file__).resolve().parents[2]
DATA_DIR = PROJECT_ROOT / "data"
RAW_DATA = DATA_DIR / "raw" / "insurance.csv"
REPORTS_DIR = PROJECT_ROOT / "reports"
CONFIG_PATH = PROJECT_ROOT / "configs" / "report.yaml"

# Reproducibility
RANDOM_STATE = 311
TRAIN_FRACTION = 0.7
SPLIT_BINS = 5

TARGET_COL = "charges"

# Record layout, in the order columns appear in the design matrix
FEATURE_COLS = ["age", "gender", "bmi", "kids", "smoker", "exercise", "region"]
NUM_FEATURES = ["age", "bmi", "kids", "exercise"]
CAT_FEATURES = ["gender", "smoker", "region"]

# Reference (dropped) level per categorical column; unlisted columns fall
# back to their first level in sorted order
REFERENCE_LEVELS = {
    "gender": "female",
    "smoker": "no",
    "region": "northeast",
}

# Best subset
MAX_SUBSET_SIZE = 7
SUBSET_METHOD = "forward"
SUBSET_CV_FOLDS = 10
SUBSET_CV_REPEATS = 3

# Ridge / lasso / elastic net
CV_FOLDS = 10
N_LAMBDAS = 100
ENET_ALPHAS = (0.0, 0.25, 0.5, 0.75, 1.0)


@dataclass(frozen=True)
class Settings:
    data_path: Path = RAW_DATA
    output_dir: Path = REPORTS_DIR

    train_fraction: float = TRAIN_FRACTION
    random_state: int = RANDOM_STATE
    split_bins: int = SPLIT_BINS

    reference_levels: Dict[str, str] = field(
        default_factory=lambda: dict(REFERENCE_LEVELS)
    )

    max_subset_size: int = MAX_SUBSET_SIZE
    subset_method: str = SUBSET_METHOD
    subset_cv_folds: int = SUBSET_CV_FOLDS
    subset_cv_repeats: int = SUBSET_CV_REPEATS

    cv_folds: int = CV_FOLDS
    n_lambdas: int = N_LAMBDAS
    lambda_min_ratio: Optional[float] = None
    standardize: bool = True
    lambda_rule: str = "min"
    enet_alphas: Tuple[float, ...] = ENET_ALPHAS

    n_jobs: int = 1


_PATH_FIELDS = {"data_path", "output_dir"}


def load_settings(path: Optional[Path] = None) -> Settings:
    """Build settings from the module defaults, overlaid with a YAML file.

    The YAML file holds a flat mapping of `Settings` field names. When `path`
    is None the project's `configs/report.yaml` is used if it exists.
    """
    if path is None:
        path = CONFIG_PATH
        if not path.exists():
            return Settings()

    with open(path, "r") as fh:
        raw = yaml.safe_load(fh) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a mapping")

    known = {f.name for f in fields(Settings)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"Unknown config keys in {path}: {sorted(unknown)}")

    overrides = {}
    for key, value in raw.items():
        if key in _PATH_FIELDS:
            value = Path(value)
            if not value.is_absolute():
                value = PROJECT_ROOT / value
        elif key == "enet_alphas":
            value = tuple(float(a) for a in value)
        elif key == "reference_levels":
            value = {**REFERENCE_LEVELS, **(value or {})}
        overrides[key] = value

    return replace(Settings(), **overrides)
