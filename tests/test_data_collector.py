from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from market_regimes.config import MODEL_FEATURES, FeatureConfig, PipelineStage
from market_regimes.data_collector import (
    FeatureEngineer,
    MarketDataLoader,
    fingerprint_frame,
    simulate_market_data,
)
from market_regimes.errors import InputValidationError


def _write_raw_files(tmp_path: Path, n_days: int = 120) -> tuple[Path, Path]:
    market, vix = simulate_market_data(n_days=n_days, seed=3, start="2021-01-05")

    raw_market = market.rename(columns={
        "DATE": "Date", "OPEN": "Open", "HIGH": "High", "LOW": "Low",
        "CLOSE": "Close", "ADJ_CLOSE": "Adj Close", "VOLUME": "Volume",
    })
    raw_market["Date"] = raw_market["Date"].dt.strftime("%m/%d/%Y")

    raw_vix = vix.rename(columns={
        "VIX_OPEN": "OPEN", "VIX_HIGH": "HIGH", "VIX_LOW": "LOW", "VIX_CLOSE": "CLOSE",
    })
    raw_vix["DATE"] = raw_vix["DATE"].dt.strftime("%m/%d/%Y")
    # VIX history starts earlier than the market file
    earlier = raw_vix.iloc[:3].copy()
    earlier["DATE"] = ["12/01/2020", "12/02/2020", "12/03/2020"]
    raw_vix = pd.concat([earlier, raw_vix], ignore_index=True)

    market_path = tmp_path / "market_data.csv"
    vix_path = tmp_path / "vix_history.csv"
    # Unsorted on disk
    raw_market.iloc[::-1].to_csv(market_path, index=False)
    raw_vix.to_csv(vix_path, index=False)
    return market_path, vix_path


def test_loader_cleans_and_aligns(tmp_path: Path) -> None:
    market_path, vix_path = _write_raw_files(tmp_path)

    market, vix, provenance = MarketDataLoader().load(market_path, vix_path)

    assert list(market.columns) == ["DATE", "OPEN", "HIGH", "LOW", "CLOSE", "ADJ_CLOSE", "VOLUME"]
    assert market["DATE"].is_monotonic_increasing
    assert market["DATE"].iloc[0] == pd.Timestamp("2021-01-05")
    assert vix["DATE"].isin(market["DATE"]).all()
    assert len(vix) == len(market)
    assert provenance.record_count == len(market)
    assert len(provenance.data_hash) == 16
    assert provenance.date_range[0] == "2021-01-05"


def test_loader_applies_analysis_window(tmp_path: Path) -> None:
    market_path, vix_path = _write_raw_files(tmp_path)

    market, vix, _ = MarketDataLoader().load(market_path, vix_path, start="2021-02-01", end="2021-03-31")

    assert market["DATE"].min() >= pd.Timestamp("2021-02-01")
    assert market["DATE"].max() <= pd.Timestamp("2021-03-31")
    assert vix["DATE"].max() <= pd.Timestamp("2021-03-31")


def test_missing_file_names_the_path(tmp_path: Path) -> None:
    missing = tmp_path / "nope.csv"

    with pytest.raises(InputValidationError) as excinfo:
        MarketDataLoader.read_table(missing)

    assert "nope.csv" in str(excinfo.value)
    assert excinfo.value.stage is PipelineStage.INGESTION


def test_missing_column_is_reported() -> None:
    raw = pd.DataFrame({"Date": ["01/05/2021"], "Close": [1.0]})

    with pytest.raises(InputValidationError) as excinfo:
        MarketDataLoader().clean_market(raw)

    assert "ADJ_CLOSE" in str(excinfo.value)


def test_duplicate_dates_are_rejected() -> None:
    market, vix = simulate_market_data(n_days=30, seed=1)
    market = pd.concat([market, market.iloc[[5]]], ignore_index=True)

    with pytest.raises(InputValidationError):
        MarketDataLoader().prepare(market, vix)


def test_feature_engineer_columns() -> None:
    market, vix = simulate_market_data(n_days=80, seed=2)

    enriched = FeatureEngineer().enrich(market, vix)

    assert enriched["log_return"].iloc[0] == 0.0
    assert enriched["vol_20"].iloc[:19].isna().all()
    assert enriched["vol_20"].iloc[19:].notna().all()

    expected_vol = np.std(enriched["log_return"].iloc[6:26].to_numpy(), ddof=1)
    assert enriched["vol_20"].iloc[25] == pytest.approx(expected_vol)
    assert enriched["mean_ret_20"].iloc[25] == pytest.approx(enriched["log_return"].iloc[6:26].mean())

    assert (enriched["drawdown"] <= 0).all()
    np.testing.assert_allclose(
        enriched["drawdown"], enriched["cum_return"] / enriched["cum_return"].cummax() - 1
    )
    np.testing.assert_allclose(enriched["vix_level"], vix["VIX_CLOSE"])
    assert enriched["vix_return"].iloc[0] == 0.0


def test_feature_matrix_drops_rows_without_history() -> None:
    market, vix = simulate_market_data(n_days=80, seed=2)

    feature_set = FeatureEngineer().build(market, vix)

    assert list(feature_set.features.columns) == list(MODEL_FEATURES)
    assert len(feature_set.features) == 80 - 19
    assert feature_set.n_dropped == 19
    assert feature_set.features.index.name == "DATE"


def test_missing_vix_rows_are_kept_as_incomplete() -> None:
    market, vix = simulate_market_data(n_days=60, seed=4)
    vix = vix.drop(index=[40, 41])

    features = FeatureEngineer().build(market, vix).features

    assert features["vix_level"].isna().sum() == 2


def test_custom_rolling_window() -> None:
    market, vix = simulate_market_data(n_days=50, seed=2)

    features = FeatureEngineer(FeatureConfig(rolling_window=10)).build(market, vix).features

    assert len(features) == 50 - 9


def test_simulation_is_seeded() -> None:
    a_market, a_vix = simulate_market_data(n_days=50, seed=8)
    b_market, b_vix = simulate_market_data(n_days=50, seed=8)
    c_market, _ = simulate_market_data(n_days=50, seed=9)

    pd.testing.assert_frame_equal(a_market, b_market)
    pd.testing.assert_frame_equal(a_vix, b_vix)
    assert fingerprint_frame(a_market) == fingerprint_frame(b_market)
    assert fingerprint_frame(a_market) != fingerprint_frame(c_market)


def test_feature_engineer_rejects_unusable_prices() -> None:
    market, vix = simulate_market_data(n_days=30, seed=5)
    market.loc[10, "ADJ_CLOSE"] = 0.0

    with pytest.raises(InputValidationError) as excinfo:
        FeatureEngineer().enrich(market, vix)
    assert excinfo.value.stage is PipelineStage.FEATURE_ENGINEERING

    market, vix = simulate_market_data(n_days=30, seed=5)
    with pytest.raises(InputValidationError) as excinfo:
        FeatureEngineer().build(market, vix.drop(columns=["VIX_CLOSE"]))
    assert "VIX_CLOSE" in str(excinfo.value)
