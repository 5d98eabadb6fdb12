"""
Configuration Module for Market Regime Identification

This module centralizes the constants, enumerations and parameter sets used
throughout the regime pipeline: the clustering search grid, the confidence
gate, the minimum regime duration, null-handling policies for aggregations,
feature construction windows and the out-of-sample validation split.

All "magic numbers" are defined here so that:
1. Every tunable parameter is an explicit argument, never a hidden default
2. A pipeline run is fully described by one immutable RegimeConfig
3. Assumptions stay visible and easy to audit

Version: 1.0.0
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Tuple


VERSION = "1.0.0"


# =============================================================================
# ENUMERATIONS
# =============================================================================

class CovarianceFamily(Enum):
    """
    Covariance structures searched by the mixture model.

    Both families share one shape and orientation across components:
        EEE: equal volume, equal shape, equal orientation (one pooled matrix)
        VEE: variable volume, equal shape, equal orientation
    """
    EEE = "EEE"
    VEE = "VEE"


class EconomicRegime(Enum):
    """Human-readable regime labels assigned from regime statistics."""
    BULL = "Bull"
    BEAR = "Bear"
    NEUTRAL = "Neutral"
    MIXED = "Mixed"     # Only produced when split_neutral is enabled


class NullPolicy(Enum):
    """How an aggregation treats missing values inside a group."""
    SKIP = "skip"             # Ignore nulls (mean of the observed values)
    PROPAGATE = "propagate"   # Any null makes the aggregate null


class ShortHistoryPolicy(Enum):
    """What to do when no regime run reaches the minimum duration."""
    LEAVE_NULL = "leave_null"   # Keep ids null ("no signal") and warn
    FAIL = "fail"               # Raise InputValidationError


class PipelineStage(Enum):
    """Pipeline stages, used to give errors and logs their context."""
    INGESTION = "Data Ingestion"
    FEATURE_ENGINEERING = "Feature Engineering"
    FEATURE_SELECTION = "Feature Selection"
    STANDARDIZATION = "Standardization"
    MODEL_FITTING = "Mixture Model Fitting"
    SMOOTHING = "Temporal Smoothing"
    CHARACTERIZATION = "Regime Characterization"
    TRANSITIONS = "Transition Estimation"
    VALIDATION = "Out-of-Sample Validation"
    ANALYTICS = "Regime Analytics"


# =============================================================================
# FIELD NAMES
# =============================================================================

# The five modeling fields, in the order they enter the mixture model
MODEL_FEATURES: Tuple[str, ...] = (
    "log_return",    # Daily log return
    "vol_20",        # Trailing 20-day realized volatility
    "mean_ret_20",   # Trailing 20-day mean return
    "drawdown",      # Peak-to-trough decline of cumulative return
    "vix_level",     # Volatility index close
)

# Raw market file column names -> canonical names
MARKET_COLUMNS: Dict[str, str] = {
    "Date": "DATE",
    "Open": "OPEN",
    "High": "HIGH",
    "Low": "LOW",
    "Close": "CLOSE",
    "Adj Close": "ADJ_CLOSE",
    "Volume": "VOLUME",
}

# Raw VIX file column names -> canonical names (avoids collisions on join)
VIX_COLUMNS: Dict[str, str] = {
    "OPEN": "VIX_OPEN",
    "HIGH": "VIX_HIGH",
    "LOW": "VIX_LOW",
    "CLOSE": "VIX_CLOSE",
}


# =============================================================================
# REGIME MODEL CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class RegimeConfig:
    """
    Parameters for one regime identification run.

    Every field is an explicit, validated parameter. Two runs with equal
    configs and equal input data produce identical outputs.
    """

    # Confidence gate
    confidence_threshold: float = 0.60   # Minimum max-posterior to accept an id

    # Temporal smoothing
    min_duration: int = 10               # Shortest permitted run (observations)
    short_history_policy: ShortHistoryPolicy = ShortHistoryPolicy.LEAVE_NULL

    # Mixture model search grid
    component_range: Tuple[int, ...] = (2, 3, 4)
    covariance_families: Tuple[CovarianceFamily, ...] = (
        CovarianceFamily.EEE,
        CovarianceFamily.VEE,
    )

    # EM settings
    random_state: int = 42               # Seed for restart initialization
    n_init: int = 5                      # Random restarts per candidate
    max_iter: int = 500                  # EM iterations per restart
    tol: float = 1e-5                    # Convergence on mean log-likelihood
    reg_covar: float = 1e-6              # Ridge added to covariance diagonals

    # Characterization and labeling
    null_policy: NullPolicy = NullPolicy.SKIP
    split_neutral: bool = False          # Separate "Mixed" from "Neutral"

    feature_columns: Tuple[str, ...] = MODEL_FEATURES

    def __post_init__(self):
        if not 0.0 < self.confidence_threshold <= 1.0:
            raise ValueError(
                f"confidence_threshold must be in (0, 1], got {self.confidence_threshold}"
            )
        if self.min_duration < 1:
            raise ValueError(f"min_duration must be >= 1, got {self.min_duration}")
        if not self.component_range:
            raise ValueError("component_range must not be empty")
        if any(int(g) < 1 for g in self.component_range):
            raise ValueError(f"component counts must be >= 1, got {self.component_range}")
        if not self.covariance_families:
            raise ValueError("covariance_families must not be empty")
        if self.n_init < 1:
            raise ValueError(f"n_init must be >= 1, got {self.n_init}")
        if self.max_iter < 1:
            raise ValueError(f"max_iter must be >= 1, got {self.max_iter}")
        if self.tol <= 0:
            raise ValueError(f"tol must be positive, got {self.tol}")
        if self.reg_covar < 0:
            raise ValueError(f"reg_covar must be non-negative, got {self.reg_covar}")
        if not self.feature_columns:
            raise ValueError("feature_columns must not be empty")

        # Normalize sequences so the config stays hashable
        object.__setattr__(self, "component_range", tuple(int(g) for g in self.component_range))
        object.__setattr__(
            self,
            "covariance_families",
            tuple(CovarianceFamily(f) for f in self.covariance_families),
        )
        object.__setattr__(self, "feature_columns", tuple(self.feature_columns))

    def cache_key(self) -> Tuple:
        """Parameters that influence the fitted mixture model."""
        return (
            self.component_range,
            tuple(f.value for f in self.covariance_families),
            self.random_state,
            self.n_init,
            self.max_iter,
            self.tol,
            self.reg_covar,
            self.feature_columns,
        )


# =============================================================================
# FEATURE CONSTRUCTION
# =============================================================================

@dataclass(frozen=True)
class FeatureConfig:
    """Parameters for turning raw market and VIX files into features."""

    rolling_window: int = 20                 # Trailing window for vol/mean
    trading_days_year: int = 252
    date_format: str = "%m/%d/%Y"            # Format used by the raw files
    start_date: str = "2021-01-05"
    end_date: str = "2026-01-02"
    price_column: str = "ADJ_CLOSE"
    market_columns: Dict[str, str] = field(default_factory=lambda: dict(MARKET_COLUMNS))
    vix_columns: Dict[str, str] = field(default_factory=lambda: dict(VIX_COLUMNS))


# =============================================================================
# OUT-OF-SAMPLE VALIDATION
# =============================================================================

@dataclass(frozen=True)
class ValidationConfig:
    """Parameters for the train/test comparison and long/flat simulation."""

    split_date: str = "2023-01-05"           # Test sample starts on this date
    invested_regime: EconomicRegime = EconomicRegime.BULL
    risk_free_rate: float = 0.0
    trading_days_year: int = 252


# =============================================================================
# GLOBAL CONFIGURATION INSTANCES
# =============================================================================

REGIME = RegimeConfig()
FEATURES = FeatureConfig()
VALIDATION = ValidationConfig()


__all__ = [
    "VERSION",
    "CovarianceFamily",
    "EconomicRegime",
    "NullPolicy",
    "ShortHistoryPolicy",
    "PipelineStage",
    "MODEL_FEATURES",
    "MARKET_COLUMNS",
    "VIX_COLUMNS",
    "RegimeConfig",
    "FeatureConfig",
    "ValidationConfig",
    "REGIME",
    "FEATURES",
    "VALIDATION",
]
