"""
Market Data Pipeline for Regime Identification

Loads raw equity market prices and VIX history, cleans and aligns them, and
constructs the daily feature table the regime model consumes.

PIPELINE ARCHITECTURE
    Stage 1 - LOAD
        Market file (CSV or Excel) and VIX CSV. Read failures stop the run
        with the path and reason.

    Stage 2 - CLEAN
        Canonical column names, date parsing, numeric coercion,
        chronological ordering.

    Stage 3 - ALIGN
        Restrict both series to the analysis window; keep only VIX dates
        that exist in the market data.

    Stage 4 - ENRICH
        Left-join VIX onto market dates and compute:
        - log_return: log(P_t / P_{t-1}) on adjusted close, first day 0
        - vol_20 / mean_ret_20: right-aligned 20-day sample sd / mean
        - cum_log_return, cum_return, running_max
        - drawdown: cum_return / running_max - 1
        - vix_level, vix_return

    Stage 5 - SELECT
        Keep the five modeling fields; drop rows without rolling history.

DATA PROVENANCE
    Every load is recorded with its source, record count, date range and a
    SHA-256 fingerprint of the table.

Version: 1.0.0
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np
import pandas as pd

from market_regimes.config import FEATURES, MODEL_FEATURES, VERSION, FeatureConfig, PipelineStage
from market_regimes.errors import InputValidationError

# Module-level logger
logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

MARKET_NUMERIC = ("OPEN", "HIGH", "LOW", "CLOSE", "ADJ_CLOSE", "VOLUME")
VIX_NUMERIC = ("VIX_OPEN", "VIX_HIGH", "VIX_LOW", "VIX_CLOSE")
EXCEL_SUFFIXES = (".xlsx", ".xls")


# =============================================================================
# DATA CLASSES - DATA PROVENANCE
# =============================================================================

@dataclass
class DataProvenance:
    """
    Tracks the origin and lineage of data for auditability.

    Every load is recorded with its source, timestamp, and integrity hash to
    ensure reproducibility and traceability.
    """
    source: str                     # File path(s) or "synthetic"
    record_count: int               # Number of market rows after cleaning
    date_range: Tuple[str, str]     # (first, last) dates
    data_hash: str                  # SHA-256 fingerprint of the market table
    load_timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    version: str = VERSION

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "source": self.source,
            "record_count": self.record_count,
            "date_range": list(self.date_range),
            "data_hash": self.data_hash,
            "load_timestamp": self.load_timestamp,
            "version": self.version
        }


@dataclass
class FeatureSet:
    """Enriched table (every computed column) and the modeling feature matrix."""
    enriched: pd.DataFrame
    features: pd.DataFrame

    @property
    def n_dropped(self) -> int:
        return len(self.enriched) - len(self.features)


def fingerprint_frame(df: pd.DataFrame) -> str:
    """SHA-256 fingerprint (16 hex chars) of a table's values and index."""
    return hashlib.sha256(
        pd.util.hash_pandas_object(df, index=True).values.tobytes()
    ).hexdigest()[:16]


def check_chronology(dates: pd.Series, name: str) -> None:
    """
    Require unique, strictly increasing dates.

    Raises:
        InputValidationError: on duplicates or out-of-order dates
    """
    if dates.isna().any():
        raise InputValidationError(
            f"{name} contains unparseable dates",
            stage=PipelineStage.INGESTION,
            n_obs=len(dates)
        )
    if not dates.is_unique:
        n_dup = int(dates.duplicated().sum())
        raise InputValidationError(
            f"{name} contains {n_dup} duplicate dates",
            stage=PipelineStage.INGESTION,
            n_obs=len(dates)
        )
    if not dates.is_monotonic_increasing:
        raise InputValidationError(
            f"{name} dates are not in chronological order",
            stage=PipelineStage.INGESTION,
            n_obs=len(dates)
        )


# =============================================================================
# DATA LOADING
# =============================================================================

class MarketDataLoader:
    """
    Read, clean and align the market and VIX files.

    Usage:
        loader = MarketDataLoader()
        market, vix, provenance = loader.load("market_data.xlsx", "vix_history.csv")
    """

    def __init__(self, config: FeatureConfig = FEATURES):
        self.config = config

    @staticmethod
    def read_table(path: Union[str, Path]) -> pd.DataFrame:
        """
        Read a CSV or Excel file.

        Raises:
            InputValidationError: naming the path and the reason
        """
        path = Path(path)
        try:
            if path.suffix.lower() in EXCEL_SUFFIXES:
                return pd.read_excel(path)
            return pd.read_csv(path)
        except (OSError, ValueError, ImportError) as e:
            raise InputValidationError(
                f"Failed to load {path}: {e}",
                stage=PipelineStage.INGESTION
            ) from e

    def _parse_dates(self, values: pd.Series) -> pd.Series:
        if pd.api.types.is_datetime64_any_dtype(values):
            return values
        return pd.to_datetime(values, format=self.config.date_format, errors="coerce")

    def _clean(
        self,
        raw: pd.DataFrame,
        rename: Dict[str, str],
        numeric: Tuple[str, ...],
        name: str
    ) -> pd.DataFrame:
        df = raw.rename(columns=rename)
        required = ("DATE",) + numeric
        missing = [c for c in required if c not in df.columns]
        if missing:
            raise InputValidationError(
                f"{name} is missing columns {missing}",
                stage=PipelineStage.INGESTION,
                n_obs=len(df)
            )

        df = df.loc[:, list(required)].copy()
        df["DATE"] = self._parse_dates(df["DATE"])
        for col in numeric:
            df[col] = pd.to_numeric(df[col], errors="coerce")

        n_bad_dates = int(df["DATE"].isna().sum())
        if n_bad_dates:
            logger.warning(f"{name}: dropping {n_bad_dates} rows with unparseable dates")
            df = df[df["DATE"].notna()]

        return df.sort_values("DATE").reset_index(drop=True)

    def clean_market(self, raw: pd.DataFrame) -> pd.DataFrame:
        """Canonical names, parsed dates, numeric prices, sorted."""
        return self._clean(raw, self.config.market_columns, MARKET_NUMERIC, "market data")

    def clean_vix(self, raw: pd.DataFrame) -> pd.DataFrame:
        """Canonical VIX_* names, parsed dates, numeric levels, sorted."""
        return self._clean(raw, self.config.vix_columns, VIX_NUMERIC, "VIX data")

    def filter_window(
        self,
        df: pd.DataFrame,
        start: Optional[str] = None,
        end: Optional[str] = None
    ) -> pd.DataFrame:
        """Keep rows with start <= DATE <= end."""
        start = pd.Timestamp(start or self.config.start_date)
        end = pd.Timestamp(end or self.config.end_date)
        mask = (df["DATE"] >= start) & (df["DATE"] <= end)
        return df.loc[mask].reset_index(drop=True)

    @staticmethod
    def align(vix: pd.DataFrame, market: pd.DataFrame) -> pd.DataFrame:
        """Keep only VIX rows whose date exists in the market data."""
        return vix[vix["DATE"].isin(market["DATE"])].reset_index(drop=True)

    def prepare(
        self,
        market_raw: pd.DataFrame,
        vix_raw: pd.DataFrame,
        start: Optional[str] = None,
        end: Optional[str] = None
    ) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """Clean, window and align already-read tables."""
        market = self.filter_window(self.clean_market(market_raw), start, end)
        vix = self.filter_window(self.clean_vix(vix_raw), start, end)
        vix = self.align(vix, market)

        check_chronology(market["DATE"], "market data")
        check_chronology(vix["DATE"], "VIX data")

        if market.empty:
            raise InputValidationError(
                "No market rows inside the analysis window",
                stage=PipelineStage.INGESTION,
                n_obs=0
            )

        logger.info(
            f"Prepared {len(market):,} market rows and {len(vix):,} VIX rows "
            f"({market['DATE'].iloc[0].date()} to {market['DATE'].iloc[-1].date()})"
        )
        return market, vix

    def load(
        self,
        market_path: Union[str, Path],
        vix_path: Union[str, Path],
        start: Optional[str] = None,
        end: Optional[str] = None
    ) -> Tuple[pd.DataFrame, pd.DataFrame, DataProvenance]:
        """
        Read both files and return cleaned, aligned tables with provenance.

        Args:
            market_path: Market price file (.csv, .xlsx)
            vix_path: VIX history file (.csv, .xlsx)
            start: Analysis window start (defaults to config)
            end: Analysis window end (defaults to config)
        """
        logger.info(f"Loading market data from {market_path}, VIX from {vix_path}")
        market, vix = self.prepare(
            self.read_table(market_path), self.read_table(vix_path), start, end
        )
        provenance = DataProvenance(
            source=f"{Path(market_path).name}, {Path(vix_path).name}",
            record_count=len(market),
            date_range=(str(market["DATE"].iloc[0].date()), str(market["DATE"].iloc[-1].date())),
            data_hash=fingerprint_frame(market)
        )
        return market, vix, provenance


# =============================================================================
# FEATURE ENGINEERING
# =============================================================================

class FeatureEngineer:
    """
    Daily return, volatility, drawdown and VIX features.

    All rolling statistics are right-aligned: the value at date t uses only
    observations up to and including t.
    """

    def __init__(self, config: FeatureConfig = FEATURES):
        self.config = config
        self.window = config.rolling_window

    def enrich(self, market: pd.DataFrame, vix: pd.DataFrame) -> pd.DataFrame:
        """
        Join VIX onto market dates and add every engineered column.

        Args:
            market: Cleaned market table (DATE + price columns)
            vix: Cleaned VIX table (DATE + VIX_* columns)

        Returns:
            DataFrame indexed by DATE

        Raises:
            InputValidationError: if a required column is missing or a
                price is not positive
        """
        missing = [c for c in ("DATE", self.config.price_column) if c not in market.columns]
        missing += [f"vix.{c}" for c in ("DATE", "VIX_CLOSE") if c not in vix.columns]
        if missing:
            raise InputValidationError(
                f"Cannot build features without columns {missing}",
                stage=PipelineStage.FEATURE_ENGINEERING,
                n_obs=len(market)
            )
        if (market[self.config.price_column] <= 0).any():
            raise InputValidationError(
                f"{self.config.price_column} has non-positive prices",
                stage=PipelineStage.FEATURE_ENGINEERING,
                n_obs=len(market)
            )

        df = market.merge(vix, on="DATE", how="left").sort_values("DATE")
        check_chronology(df["DATE"], "merged data")
        df = df.set_index("DATE")

        price = df[self.config.price_column]

        # =====================================================================
        # RETURNS
        # =====================================================================
        df["log_return"] = np.log(price / price.shift(1)).fillna(0.0)

        # =====================================================================
        # ROLLING STATISTICS
        # =====================================================================
        rolling = df["log_return"].rolling(self.window, min_periods=self.window)
        df["vol_20"] = rolling.std(ddof=1)
        df["mean_ret_20"] = rolling.mean()

        # =====================================================================
        # CUMULATIVE PERFORMANCE
        # =====================================================================
        df["cum_log_return"] = df["log_return"].cumsum()
        df["cum_return"] = np.exp(df["cum_log_return"])
        df["running_max"] = df["cum_return"].cummax()
        df["drawdown"] = df["cum_return"] / df["running_max"] - 1

        # =====================================================================
        # VIX
        # =====================================================================
        df["vix_level"] = df["VIX_CLOSE"]
        df["vix_return"] = np.log(df["VIX_CLOSE"] / df["VIX_CLOSE"].shift(1)).fillna(0.0)

        return df

    def build(self, market: pd.DataFrame, vix: pd.DataFrame) -> FeatureSet:
        """
        Enrich, then keep the modeling fields for rows with rolling history.

        Rows missing vix_level are kept; the regime model treats them as
        incomplete.
        """
        enriched = self.enrich(market, vix)
        features = enriched.loc[enriched["vol_20"].notna(), list(MODEL_FEATURES)].copy()

        n_missing_vix = int(features["vix_level"].isna().sum())
        if n_missing_vix:
            logger.warning(f"{n_missing_vix} feature rows have no VIX observation")

        logger.info(
            f"Built {len(features):,} feature rows "
            f"({len(enriched) - len(features)} dropped for rolling history)"
        )
        return FeatureSet(enriched=enriched, features=features)


# =============================================================================
# SYNTHETIC DATA
# =============================================================================

def simulate_market_data(
    n_days: int = 1000,
    seed: int = 42,
    start: str = "2021-01-05",
    persistence: float = 0.985
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Generate a seeded two-state (calm / stressed) market and VIX history.

    The state follows a sticky Markov chain; calm days drift upward with low
    volatility and a low VIX, stressed days drift downward with high
    volatility and an elevated VIX.

    Args:
        n_days: Number of business days
        seed: Random seed
        start: First date
        persistence: Probability of staying in the current state

    Returns:
        (market, vix) in the cleaned, canonical column layout
    """
    rng = np.random.default_rng(seed)
    dates = pd.bdate_range(start=start, periods=n_days)

    states = np.zeros(n_days, dtype=int)
    for t in range(1, n_days):
        stay = rng.random() < persistence
        states[t] = states[t - 1] if stay else 1 - states[t - 1]

    drift = np.where(states == 0, 0.0006, -0.0012)
    sigma = np.where(states == 0, 0.007, 0.022)
    log_ret = drift + sigma * rng.standard_normal(n_days)
    log_ret[0] = 0.0

    close = 100.0 * np.exp(np.cumsum(log_ret))
    open_ = close * np.exp(0.002 * rng.standard_normal(n_days))
    spread = np.abs(sigma * rng.standard_normal(n_days))
    high = np.maximum(open_, close) * (1 + spread)
    low = np.minimum(open_, close) * (1 - spread)
    volume = rng.integers(50_000_000, 150_000_000, n_days) * np.where(states == 0, 1.0, 1.6)

    market = pd.DataFrame({
        "DATE": dates,
        "OPEN": open_,
        "HIGH": high,
        "LOW": low,
        "CLOSE": close,
        "ADJ_CLOSE": close,
        "VOLUME": volume,
    })

    vix_base = np.where(states == 0, 15.0, 32.0)
    vix_close = np.maximum(vix_base + 1.5 * rng.standard_normal(n_days), 9.0)
    vix = pd.DataFrame({
        "DATE": dates,
        "VIX_OPEN": vix_close * np.exp(0.01 * rng.standard_normal(n_days)),
        "VIX_HIGH": vix_close * 1.03,
        "VIX_LOW": vix_close * 0.97,
        "VIX_CLOSE": vix_close,
    })

    logger.info(
        f"Simulated {n_days} days ({int((states == 1).sum())} stressed), seed={seed}"
    )
    return market, vix


def synthetic_provenance(market: pd.DataFrame, seed: int) -> DataProvenance:
    """Provenance record for simulated data."""
    return DataProvenance(
        source=f"synthetic(seed={seed})",
        record_count=len(market),
        date_range=(str(market["DATE"].iloc[0].date()), str(market["DATE"].iloc[-1].date())),
        data_hash=fingerprint_frame(market)
    )


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    'DataProvenance',
    'FeatureSet',
    'MarketDataLoader',
    'FeatureEngineer',
    'fingerprint_frame',
    'check_chronology',
    'simulate_market_data',
    'synthetic_provenance',
]
