import joblib
import numpy as np
import pandas as pd
import pytest

from medical_charges.config import REFERENCE_LEVELS
from medical_charges.exceptions import NonPositiveResponse, UnknownCategoryLevel
from medical_charges.preprocessing import (
    DesignMatrix,
    build_design_matrices,
    build_encoding_schema,
    encode,
)


def _sample_records() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "age": [25, 40, 61, 33],
            "gender": ["male", "female", "female", "male"],
            "bmi": [22.5, 30.1, 27.4, 35.0],
            "kids": [0, 2, 1, 3],
            "smoker": ["no", "yes", "no", "no"],
            "exercise": [3, 0, 5, 7],
            "region": ["northwest", "southeast", "northeast", "southwest"],
            "charges": [3200.5, 24000.0, 13100.2, 6500.0],
        }
    )


EXPECTED_COLUMNS = (
    "age",
    "gender_male",
    "bmi",
    "kids",
    "smoker_yes",
    "exercise",
    "region_northwest",
    "region_southeast",
    "region_southwest",
)


def test_schema_follows_record_order_and_reference_levels():
    schema = build_encoding_schema(_sample_records(), reference_levels=REFERENCE_LEVELS)

    assert schema.feature_names == EXPECTED_COLUMNS
    assert schema.reference_levels == {"gender": "female", "smoker": "no", "region": "northeast"}
    assert schema.levels["region"] == ("northeast", "northwest", "southeast", "southwest")


def test_reference_level_is_configurable():
    schema = build_encoding_schema(_sample_records(), reference_levels={"region": "southwest"})

    assert schema.reference_levels["region"] == "southwest"
    assert "region_northeast" in schema.feature_names
    assert "region_southwest" not in schema.feature_names
    # unlisted categories fall back to the first sorted level
    assert schema.reference_levels["smoker"] == "no"


def test_schema_mappings_are_read_only(tmp_path):
    schema = build_encoding_schema(_sample_records(), reference_levels=REFERENCE_LEVELS)

    with pytest.raises(TypeError):
        schema.levels["region"] = ("northeast",)
    with pytest.raises(TypeError):
        schema.reference_levels["smoker"] = "yes"

    path = tmp_path / "schema.joblib"
    joblib.dump(schema, path)
    restored = joblib.load(path)
    assert restored.feature_names == schema.feature_names
    assert dict(restored.reference_levels) == dict(schema.reference_levels)
    assert restored.levels["smoker"] == ("no", "yes")


def test_reference_level_must_exist_in_training_data():
    with pytest.raises(UnknownCategoryLevel):
        build_encoding_schema(_sample_records(), reference_levels={"region": "midwest"})


def test_encode_rows():
    df = _sample_records()
    schema = build_encoding_schema(df, reference_levels=REFERENCE_LEVELS)
    design = encode(df, schema)

    assert design.X.shape == (4, 9)
    np.testing.assert_array_equal(design.X[1], [40, 0, 30.1, 2, 1, 0, 0, 1, 0])
    np.testing.assert_array_equal(design.X[2], [61, 0, 27.4, 1, 0, 5, 0, 0, 0])
    np.testing.assert_allclose(design.y, np.log(df["charges"]))
    np.testing.assert_allclose(design.charges, df["charges"])


def test_encoding_reproduces_training_row(records):
    schema, train, _ = build_design_matrices(records.iloc[:200], records.iloc[200:], REFERENCE_LEVELS)

    again = encode(records.iloc[[17]], schema)

    np.testing.assert_array_equal(again.X[0], train.X[17])
    assert again.feature_names == train.feature_names


def test_train_and_test_share_columns(records):
    _, train, test = build_design_matrices(records.iloc[:200], records.iloc[200:], REFERENCE_LEVELS)
    assert train.feature_names == test.feature_names


def test_unknown_level_raises():
    df = _sample_records()
    schema = build_encoding_schema(df, reference_levels=REFERENCE_LEVELS)
    new = df.iloc[[0]].assign(region="midwest")

    with pytest.raises(UnknownCategoryLevel, match="midwest"):
        encode(new, schema)


@pytest.mark.parametrize("bad", [0.0, -10.0, np.nan])
def test_non_positive_charges_raise(bad):
    df = _sample_records()
    schema = build_encoding_schema(df, reference_levels=REFERENCE_LEVELS)
    df.loc[1, "charges"] = bad

    with pytest.raises(NonPositiveResponse):
        encode(df, schema)


def test_missing_column_raises():
    df = _sample_records()
    schema = build_encoding_schema(df, reference_levels=REFERENCE_LEVELS)

    with pytest.raises(ValueError, match="exercise"):
        encode(df.drop(columns=["exercise"]), schema)


def test_design_matrix_is_read_only():
    design = DesignMatrix.from_charges(np.ones((3, 2)), [1.0, 2.0, 3.0])

    with pytest.raises(ValueError):
        design.X[0, 0] = 5.0
    with pytest.raises(ValueError):
        design.y[0] = 5.0
    assert design.feature_names == ("x0", "x1")


def test_design_matrix_copies_input():
    X = np.zeros((2, 1))
    design = DesignMatrix(X=X, y=[0.0, 1.0], feature_names=("a",))
    X[0, 0] = 7.0

    assert design.X[0, 0] == 0.0
    np.testing.assert_allclose(design.charges, [1.0, np.e])
