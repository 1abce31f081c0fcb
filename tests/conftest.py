import numpy as np
import pandas as pd
import pytest

REGIONS = ["northeast", "northwest", "southeast", "southwest"]


def make_records(n: int = 300, seed: int = 0) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    age = rng.integers(18, 65, n)
    gender = rng.choice(["female", "male"], n)
    bmi = np.clip(rng.normal(30, 6, n), 16, 55).round(1)
    kids = rng.integers(0, 6, n)
    smoker = rng.choice(["no", "yes"], n, p=[0.8, 0.2])
    exercise = rng.integers(0, 8, n)
    region = rng.choice(REGIONS, n)

    region_effect = pd.Series(region).map(
        {"northeast": 0.1, "northwest": 0.0, "southeast": -0.05, "southwest": -0.1}
    ).to_numpy()
    log_charges = (
        7.0
        + 0.035 * age
        + 1.5 * (smoker == "yes")
        + 0.01 * bmi
        + 0.1 * kids
        - 0.05 * exercise
        + region_effect
        + rng.normal(0, 0.3, n)
    )
    return pd.DataFrame(
        {
            "age": age,
            "gender": gender,
            "bmi": bmi,
            "kids": kids,
            "smoker": smoker,
            "exercise": exercise,
            "region": region,
            "charges": np.exp(log_charges).round(2),
        }
    )


@pytest.fixture
def records() -> pd.DataFrame:
    return make_records()
