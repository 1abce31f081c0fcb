import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.preprocessing import OneHotEncoder

from .config import CAT_FEATURES, FEATURE_COLS, NUM_FEATURES, TARGET_COL
from .exceptions import NonPositiveResponse, UnknownCategoryLevel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncodingSchema:
    """Level sets, reference levels and output column order.

    Built once from the training rows and reused verbatim for any other
    subset, so train and test matrices share columns and column order.
    """

    columns: Tuple[str, ...]
    numeric: Tuple[str, ...]
    levels: Mapping[str, Tuple[str, ...]]
    reference_levels: Mapping[str, str]
    feature_names: Tuple[str, ...]

    def __post_init__(self):
        levels = {col: tuple(lvls) for col, lvls in self.levels.items()}
        object.__setattr__(self, "levels", MappingProxyType(levels))
        object.__setattr__(self, "reference_levels", MappingProxyType(dict(self.reference_levels)))

    def __reduce__(self):
        # mappingproxy does not pickle; rebuild from plain dicts
        return (
            type(self),
            (self.columns, self.numeric, dict(self.levels), dict(self.reference_levels), self.feature_names),
        )

    @property
    def categorical(self) -> Tuple[str, ...]:
        return tuple(c for c in self.columns if c in self.levels)


@dataclass(frozen=True)
class DesignMatrix:
    """Numeric encoding of a record subset.

    `y` is log(charges); `charges` keeps the original scale for evaluation.
    All arrays are copied on construction and made read-only.
    """

    X: np.ndarray
    y: np.ndarray
    feature_names: Tuple[str, ...]
    charges: Optional[np.ndarray] = None

    def __post_init__(self):
        X = np.array(self.X, dtype=float)
        y = np.array(self.y, dtype=float).ravel()
        if X.ndim != 2:
            raise ValueError(f"Design matrix must be 2-D, got shape {X.shape}")
        if X.shape[0] != y.shape[0]:
            raise ValueError(f"X has {X.shape[0]} rows but y has {y.shape[0]}")
        names = tuple(self.feature_names)
        if len(names) != X.shape[1]:
            raise ValueError(f"{len(names)} feature names for {X.shape[1]} columns")

        charges = np.exp(y) if self.charges is None else np.array(self.charges, dtype=float).ravel()
        if charges.shape != y.shape:
            raise ValueError("charges and y must have the same length")

        for arr in (X, y, charges):
            arr.flags.writeable = False
        object.__setattr__(self, "X", X)
        object.__setattr__(self, "y", y)
        object.__setattr__(self, "charges", charges)
        object.__setattr__(self, "feature_names", names)

    @classmethod
    def from_charges(cls, X, charges, feature_names: Optional[Sequence[str]] = None) -> "DesignMatrix":
        charges = np.asarray(charges, dtype=float).ravel()
        _check_positive(charges)
        X = np.asarray(X, dtype=float)
        if feature_names is None:
            feature_names = [f"x{j}" for j in range(X.shape[1])]
        return cls(X=X, y=np.log(charges), feature_names=tuple(feature_names), charges=charges)

    @property
    def n_samples(self) -> int:
        return self.X.shape[0]

    @property
    def n_features(self) -> int:
        return self.X.shape[1]

    def column_indices(self, names: Iterable[str]) -> List[int]:
        lookup = {name: j for j, name in enumerate(self.feature_names)}
        return [lookup[name] for name in names]

    def to_frame(self) -> pd.DataFrame:
        df = pd.DataFrame(self.X, columns=list(self.feature_names))
        df["log_charges"] = self.y
        return df


def _check_positive(charges: np.ndarray) -> None:
    bad = ~(charges > 0)
    if bad.any():
        raise NonPositiveResponse(
            f"{int(bad.sum())} record(s) have non-positive or missing charges; "
            "log transform requires charges > 0"
        )


def build_encoding_schema(
    train_df: pd.DataFrame,
    reference_levels: Optional[Mapping[str, str]] = None,
    columns: Sequence[str] = tuple(FEATURE_COLS),
    numeric: Sequence[str] = tuple(NUM_FEATURES),
    categorical: Sequence[str] = tuple(CAT_FEATURES),
) -> EncodingSchema:
    """Compute level sets from training rows and fix the column layout.

    Categorical levels are sorted. The reference level of each category comes
    from `reference_levels`; unlisted categories use their first sorted level.
    """
    reference_levels = dict(reference_levels or {})
    missing = set(columns) - set(train_df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {sorted(missing)}")

    levels: Dict[str, Tuple[str, ...]] = {}
    refs: Dict[str, str] = {}
    for col in categorical:
        observed = tuple(sorted(train_df[col].astype(str).unique()))
        ref = reference_levels.get(col, observed[0] if observed else None)
        if ref not in observed:
            raise UnknownCategoryLevel(
                f"Reference level {ref!r} for '{col}' not present in training data {list(observed)}"
            )
        levels[col] = observed
        refs[col] = ref

    feature_names: List[str] = []
    for col in columns:
        if col in levels:
            feature_names.extend(f"{col}_{lvl}" for lvl in levels[col] if lvl != refs[col])
        else:
            feature_names.append(col)

    schema = EncodingSchema(
        columns=tuple(columns),
        numeric=tuple(numeric),
        levels=levels,
        reference_levels=refs,
        feature_names=tuple(feature_names),
    )
    logger.info("Encoding schema: %d columns %s", len(feature_names), feature_names)
    logger.info("Reference levels: %s", refs)
    return schema


def _build_column_transformer(schema: EncodingSchema) -> ColumnTransformer:
    """One transformer per record column, in record order."""
    transformers = []
    for col in schema.columns:
        if col not in schema.levels:
            transformers.append((col, "passthrough", [col]))
        elif len(schema.levels[col]) < 2:
            transformers.append((col, "drop", [col]))
        else:
            encoder = OneHotEncoder(
                categories=[list(schema.levels[col])],
                drop=[schema.reference_levels[col]],
                handle_unknown="error",
                sparse_output=False,
                dtype=float,
            )
            transformers.append((col, encoder, [col]))

    return ColumnTransformer(transformers=transformers, verbose_feature_names_out=False)


def encode(df: pd.DataFrame, schema: EncodingSchema) -> DesignMatrix:
    """Encode a record subset with a fixed schema."""
    missing = set(schema.columns) - set(df.columns)
    if TARGET_COL not in df.columns:
        missing.add(TARGET_COL)
    if missing:
        raise ValueError(f"Missing required columns: {sorted(missing)}")

    frame = df[list(schema.columns)].copy()
    for col in schema.columns:
        if col in schema.levels:
            frame[col] = frame[col].astype(str)
            unknown = set(frame[col].unique()) - set(schema.levels[col])
            if unknown:
                raise UnknownCategoryLevel(
                    f"Level(s) {sorted(unknown)} of '{col}' not seen in training data"
                )
        else:
            frame[col] = frame[col].astype(float)

    charges = df[TARGET_COL].to_numpy(dtype=float)
    _check_positive(charges)

    if len(frame) == 0:
        X = np.empty((0, len(schema.feature_names)))
    else:
        X = _build_column_transformer(schema).fit_transform(frame)

    return DesignMatrix(
        X=X,
        y=np.log(charges),
        feature_names=schema.feature_names,
        charges=charges,
    )


def build_design_matrices(
    train_df: pd.DataFrame,
    test_df: pd.DataFrame,
    reference_levels: Optional[Mapping[str, str]] = None,
) -> Tuple[EncodingSchema, DesignMatrix, DesignMatrix]:
    schema = build_encoding_schema(train_df, reference_levels=reference_levels)
    train = encode(train_df, schema)
    test = encode(test_df, schema)
    logger.info("Design matrices: train %s, test %s", train.X.shape, test.X.shape)
    return schema, train, test
