from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from market_regimes.config import NullPolicy, PipelineStage
from market_regimes.errors import InputValidationError
from market_regimes.regime_detector import EconomicLabeler, RegimeCharacterizer


@pytest.fixture
def summary() -> pd.DataFrame:
    # median vol = 0.015
    frame = pd.DataFrame(
        {
            "mean_return": [0.001, -0.001, 0.002, -0.0005],
            "vol": [0.005, 0.030, 0.020, 0.010],
            "avg_drawdown": [-0.02, -0.20, -0.08, -0.05],
            "avg_vix": [14.0, 32.0, 22.0, 18.0],
            "n_obs": [100, 50, 40, 30],
        },
        index=pd.Index([0, 1, 2, 3], name="regime"),
    )
    return frame


def _features(n: int) -> pd.DataFrame:
    rng = np.random.default_rng(2)
    return pd.DataFrame({
        "log_return": rng.normal(0, 0.01, n),
        "vol_20": rng.uniform(0.005, 0.03, n),
        "mean_ret_20": rng.normal(0, 0.001, n),
        "drawdown": -rng.uniform(0, 0.3, n),
        "vix_level": rng.uniform(10, 40, n),
    })


def test_labels_follow_return_sign_and_median_vol(summary: pd.DataFrame) -> None:
    mapping = EconomicLabeler().mapping(summary)

    assert mapping == {0: "Bull", 1: "Bear", 2: "Neutral", 3: "Neutral"}


def test_split_neutral_marks_contradictory_regimes(summary: pd.DataFrame) -> None:
    mapping = EconomicLabeler(split_neutral=True).mapping(summary)

    assert mapping == {0: "Bull", 1: "Bear", 2: "Mixed", 3: "Mixed"}


def test_zero_return_and_median_vol_are_neutral() -> None:
    frame = pd.DataFrame(
        {"mean_return": [0.0, 0.001, -0.001], "vol": [0.01, 0.02, 0.03]},
        index=pd.Index([0, 1, 2], name="regime"),
    )

    mapping = EconomicLabeler(split_neutral=True).mapping(frame)

    # regime 1 sits exactly on the median
    assert mapping == {0: "Neutral", 1: "Neutral", 2: "Bear"}


def test_labeling_is_idempotent_and_order_independent(summary: pd.DataFrame) -> None:
    labeler = EconomicLabeler()

    first = labeler.mapping(summary)
    again = labeler.mapping(labeler.label(summary))
    shuffled = labeler.mapping(summary.sample(frac=1.0, random_state=4))

    assert first == again == shuffled


def test_label_does_not_mutate_summary(summary: pd.DataFrame) -> None:
    before = summary.copy()
    EconomicLabeler().label(summary)

    pd.testing.assert_frame_equal(summary, before)


def test_apply_keeps_null_ids_null() -> None:
    regimes = pd.Series(pd.array([0, 1, None, 0], dtype="Int64"))

    labels = EconomicLabeler.apply(regimes, {0: "Bull", 1: "Bear"})

    assert labels.iloc[0] == "Bull"
    assert labels.iloc[1] == "Bear"
    assert pd.isna(labels.iloc[2])
    assert labels.index.equals(regimes.index)


def test_characterizer_means_per_regime() -> None:
    features = _features(6)
    regimes = pd.Series(pd.array([0, 0, 1, 1, 1, None], dtype="Int64"))

    summary = RegimeCharacterizer().summarize(features, regimes)

    assert summary.index.tolist() == [0, 1]
    assert summary.loc[0, "n_obs"] == 2
    assert summary.loc[1, "n_obs"] == 3
    assert summary.loc[0, "mean_return"] == pytest.approx(features["log_return"].iloc[:2].mean())
    assert summary.loc[1, "vol"] == pytest.approx(features["vol_20"].iloc[2:5].mean())
    assert summary.loc[1, "avg_vix"] == pytest.approx(features["vix_level"].iloc[2:5].mean())
    assert list(summary.columns) == ["mean_return", "vol", "avg_drawdown", "avg_vix", "n_obs"]


def test_characterizer_null_policy() -> None:
    features = _features(4)
    features.loc[1, "vix_level"] = np.nan
    regimes = pd.Series(pd.array([0, 0, 1, 1], dtype="Int64"))

    skipped = RegimeCharacterizer(NullPolicy.SKIP).summarize(features, regimes)
    propagated = RegimeCharacterizer(NullPolicy.PROPAGATE).summarize(features, regimes)

    assert skipped.loc[0, "avg_vix"] == pytest.approx(features.loc[0, "vix_level"])
    assert np.isnan(propagated.loc[0, "avg_vix"])
    assert propagated.loc[1, "avg_vix"] == pytest.approx(skipped.loc[1, "avg_vix"])


def test_characterizer_rejects_misaligned_input() -> None:
    with pytest.raises(ValueError):
        RegimeCharacterizer().summarize(_features(4), pd.Series([0, 1], dtype="Int64"))


def test_characterizer_all_null_gives_empty_table() -> None:
    regimes = pd.Series(pd.array([None] * 3, dtype="Int64"))

    summary = RegimeCharacterizer().summarize(_features(3), regimes)

    assert summary.empty
    assert "mean_return" in summary.columns


def test_characterizer_treats_infinite_values_as_missing() -> None:
    features = _features(4)
    features.loc[1, "drawdown"] = -np.inf
    regimes = pd.Series(pd.array([0, 0, 1, 1], dtype="Int64"))

    summary = RegimeCharacterizer().summarize(features, regimes)

    assert summary.loc[0, "avg_drawdown"] == pytest.approx(features.loc[0, "drawdown"])


def test_characterizer_coerces_numeric_strings() -> None:
    features = _features(4)
    expected = features["vix_level"].iloc[:2].mean()
    features["vix_level"] = features["vix_level"].astype(str)
    regimes = pd.Series(pd.array([0, 0, 1, 1], dtype="Int64"))

    summary = RegimeCharacterizer().summarize(features, regimes)

    assert summary.loc[0, "avg_vix"] == pytest.approx(expected)


def test_characterizer_input_errors_carry_stage() -> None:
    regimes = pd.Series(pd.array([0, 0, 1, 1], dtype="Int64"))
    features = _features(4)
    features["vix_level"] = ["high", "low", "high", "low"]

    with pytest.raises(InputValidationError) as excinfo:
        RegimeCharacterizer().summarize(features, regimes)
    assert excinfo.value.stage is PipelineStage.CHARACTERIZATION

    with pytest.raises(InputValidationError):
        RegimeCharacterizer().summarize(_features(4).drop(columns=["vol_20"]), regimes)
