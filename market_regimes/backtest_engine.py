#!/usr/bin/env python3
"""
Out-of-Sample Regime Validation
===============================

Checks whether regime labels estimated on the full history keep their
economic meaning after a chronological split, and whether they carry any
practical information.

METHOD
------
    1. Split the labeled history at a fixed date: Train is strictly before
       the split, Test is on or after it.
    2. Compare per-regime statistics (mean return, mean rolling volatility,
       mean drawdown, observation count) between the two samples.
    3. Simulate a long/flat rule on the Test sample only: hold the market on
       days labeled with the invested regime (Bull by default), stay flat
       otherwise, including days without a label. No transaction costs.
    4. Estimate the transition matrix on Test labels alone.

Returns are daily log returns, so cumulative performance is exp(cumsum(r)).

METRICS
-------
    Total Return:    exp(sum r) - 1
    CAGR:            (1 + Total Return)^(1 / years) - 1, years = n / 252
    Volatility:      sd(r) * sqrt(252)
    Sharpe:          (mean(r) * 252 - rf) / Volatility
    Max Drawdown:    min over t of (E_t - max_{s<=t} E_s) / max_{s<=t} E_s
    Exposure:        share of days invested

Version: 1.0.0
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict

import numpy as np
import pandas as pd

from market_regimes.config import VALIDATION, PipelineStage, ValidationConfig
from market_regimes.errors import InputValidationError
from market_regimes.regime_detector import TransitionEstimator, TransitionMatrix

logger = logging.getLogger(__name__)


# =============================================================================
# SECTION 1: DATA STRUCTURES
# =============================================================================

@dataclass
class PerformanceMetrics:
    """Return and risk summary of one daily log-return stream."""
    total_return: float
    cagr: float
    annualized_volatility: float
    sharpe_ratio: float
    max_drawdown: float
    exposure: float
    n_days: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_return": self.total_return,
            "cagr": self.cagr,
            "annualized_volatility": self.annualized_volatility,
            "sharpe_ratio": self.sharpe_ratio,
            "max_drawdown": self.max_drawdown,
            "exposure": self.exposure,
            "n_days": self.n_days,
        }


@dataclass
class OutOfSampleResult:
    """
    Results of the chronological split validation.

    `samples` is the labeled table with a `sample` column (Train/Test);
    `strategy` is the Test sample with strategy and buy-and-hold curves.
    """
    split_date: pd.Timestamp
    invested_regime: str

    samples: pd.DataFrame
    regime_comparison: pd.DataFrame
    strategy: pd.DataFrame

    strategy_metrics: PerformanceMetrics
    buy_and_hold_metrics: PerformanceMetrics
    transitions: TransitionMatrix

    analysis_date: datetime = field(default_factory=datetime.now)

    @property
    def n_train(self) -> int:
        return int((self.samples["sample"] == "Train").sum())

    @property
    def n_test(self) -> int:
        return int((self.samples["sample"] == "Test").sum())

    @property
    def excess_return(self) -> float:
        """Strategy total return minus buy-and-hold total return."""
        return self.strategy_metrics.total_return - self.buy_and_hold_metrics.total_return


# =============================================================================
# SECTION 2: METRICS CALCULATOR
# =============================================================================

class PerformanceCalculator:
    """
    Return and drawdown metrics from daily log returns.

    Drawdown Formula:
        DD_t = (E_t - running max) / running max
        Max DD = min(DD_t)
    """

    def __init__(self, trading_days: int = 252, risk_free: float = 0.0):
        self.trading_days = trading_days
        self.rf = risk_free

    @staticmethod
    def equity_curve(log_returns: pd.Series) -> pd.Series:
        return np.exp(log_returns.cumsum())

    @staticmethod
    def drawdown_series(equity_curve: pd.Series) -> pd.Series:
        rolling_max = equity_curve.expanding().max()
        return (equity_curve - rolling_max) / rolling_max

    def calculate(self, log_returns: pd.Series, exposure: float = 1.0) -> PerformanceMetrics:
        """
        Args:
            log_returns: Daily log returns
            exposure: Share of days with a position

        Returns:
            PerformanceMetrics
        """
        n_days = len(log_returns)
        if n_days == 0:
            return PerformanceMetrics(0.0, 0.0, 0.0, 0.0, 0.0, exposure, 0)

        equity = self.equity_curve(log_returns)
        total_return = float(equity.iloc[-1] - 1.0)

        years = n_days / self.trading_days
        cagr = (1.0 + total_return) ** (1.0 / years) - 1.0 if total_return > -1.0 else -1.0

        ann_vol = float(log_returns.std() * np.sqrt(self.trading_days)) if n_days > 1 else 0.0
        ann_mean = float(log_returns.mean() * self.trading_days)
        sharpe = (ann_mean - self.rf) / ann_vol if ann_vol > 0 else 0.0

        max_dd = float(self.drawdown_series(equity).min())

        return PerformanceMetrics(
            total_return=total_return,
            cagr=float(cagr),
            annualized_volatility=ann_vol,
            sharpe_ratio=float(sharpe),
            max_drawdown=max_dd,
            exposure=float(exposure),
            n_days=n_days
        )


# =============================================================================
# SECTION 3: OUT-OF-SAMPLE VALIDATOR
# =============================================================================

class OutOfSampleValidator:
    """
    Chronological train/test validation of regime labels.

    Usage:
        validator = OutOfSampleValidator(ValidationConfig(split_date="2023-01-05"))
        oos = validator.run(result.to_frame())
        print(format_validation_report(oos))
    """

    REQUIRED_COLUMNS = ("log_return", "vol_20", "drawdown")

    def __init__(self, config: ValidationConfig = VALIDATION, label_column: str = "econ_regime"):
        self.config = config
        self.label_column = label_column
        self.calculator = PerformanceCalculator(config.trading_days_year, config.risk_free_rate)
        self.estimator = TransitionEstimator()

    def split(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Tag each row Train (before the split date) or Test (on or after).

        Raises:
            InputValidationError: if either sample is empty
        """
        if not isinstance(df.index, pd.DatetimeIndex):
            raise InputValidationError(
                "Out-of-sample validation needs a DatetimeIndex",
                stage=PipelineStage.VALIDATION,
                n_obs=len(df)
            )
        split_date = pd.Timestamp(self.config.split_date)
        samples = df.copy()
        samples["sample"] = np.where(samples.index < split_date, "Train", "Test")

        n_train = int((samples["sample"] == "Train").sum())
        n_test = len(samples) - n_train
        if n_train == 0 or n_test == 0:
            raise InputValidationError(
                f"Split at {split_date.date()} leaves an empty sample "
                f"(train={n_train}, test={n_test})",
                stage=PipelineStage.VALIDATION,
                n_obs=len(df)
            )
        logger.info(f"Split at {split_date.date()}: {n_train} train, {n_test} test rows")
        return samples

    def compare_regimes(self, samples: pd.DataFrame) -> pd.DataFrame:
        """Per-regime statistics for each sample. Unlabeled days are excluded."""
        labeled = samples[samples[self.label_column].notna()].copy()
        labeled["sample"] = pd.Categorical(labeled["sample"], categories=["Train", "Test"], ordered=True)

        grouped = labeled.groupby(["sample", self.label_column], observed=True, sort=True)
        comparison = grouped.agg(
            mean_return=("log_return", "mean"),
            vol=("vol_20", "mean"),
            avg_drawdown=("drawdown", "mean"),
            n_obs=("log_return", "size"),
        )
        return comparison.reset_index().rename(columns={self.label_column: "econ_regime"})

    def simulate(self, test: pd.DataFrame) -> pd.DataFrame:
        """Long/flat rule on the test sample plus buy-and-hold."""
        invested = test[self.label_column].eq(self.config.invested_regime.value)
        strategy = pd.DataFrame(index=test.index)
        strategy["econ_regime"] = test[self.label_column]
        strategy["log_return"] = test["log_return"]
        strategy["invested"] = invested.astype(bool)
        strategy["strategy_return"] = test["log_return"].where(invested, 0.0)
        strategy["cum_strategy"] = self.calculator.equity_curve(strategy["strategy_return"])
        strategy["cum_buy_hold"] = self.calculator.equity_curve(strategy["log_return"])
        return strategy

    def run(self, df: pd.DataFrame) -> OutOfSampleResult:
        """
        Args:
            df: Date-indexed labeled table (log_return, vol_20, drawdown, label)

        Returns:
            OutOfSampleResult
        """
        missing = [c for c in self.REQUIRED_COLUMNS + (self.label_column,) if c not in df.columns]
        if missing:
            raise InputValidationError(
                f"Labeled table is missing columns {missing}",
                stage=PipelineStage.VALIDATION,
                n_obs=len(df)
            )

        samples = self.split(df)
        comparison = self.compare_regimes(samples)

        test = samples[samples["sample"] == "Test"]
        strategy = self.simulate(test)

        strategy_metrics = self.calculator.calculate(
            strategy["strategy_return"], exposure=float(strategy["invested"].mean())
        )
        buy_hold_metrics = self.calculator.calculate(strategy["log_return"], exposure=1.0)
        transitions = self.estimator.estimate(test[self.label_column])

        logger.info(
            f"Out-of-sample: strategy {strategy_metrics.total_return:+.2%} vs "
            f"buy-and-hold {buy_hold_metrics.total_return:+.2%} "
            f"(exposure {strategy_metrics.exposure:.1%})"
        )

        return OutOfSampleResult(
            split_date=pd.Timestamp(self.config.split_date),
            invested_regime=self.config.invested_regime.value,
            samples=samples,
            regime_comparison=comparison,
            strategy=strategy,
            strategy_metrics=strategy_metrics,
            buy_and_hold_metrics=buy_hold_metrics,
            transitions=transitions
        )


# =============================================================================
# SECTION 4: REPORT FORMATTING
# =============================================================================

def format_validation_report(result: OutOfSampleResult) -> str:
    """
    Format out-of-sample validation results.

    Args:
        result: OutOfSampleResult

    Returns:
        Formatted report string
    """
    s = result.strategy_metrics
    b = result.buy_and_hold_metrics
    lines = [
        "=" * 70,
        "OUT-OF-SAMPLE VALIDATION REPORT",
        "=" * 70,
        f"Split Date: {result.split_date.date()}",
        f"Train Rows: {result.n_train:,} | Test Rows: {result.n_test:,}",
        "",
        "-" * 70,
        "REGIME COMPARISON (TRAIN vs TEST)",
        "-" * 70,
    ]

    lines.append(f"  {'Sample':<7} {'Regime':<9} {'Mean Ret':>10} {'Vol':>8} {'Avg DD':>8} {'N':>6}")
    lines.append("  " + "-" * 52)
    for _, row in result.regime_comparison.iterrows():
        lines.append(
            f"  {row['sample']:<7} {row['econ_regime']:<9} {row['mean_return']:>+10.5f} "
            f"{row['vol']:>8.4f} {row['avg_drawdown']:>8.3f} {int(row['n_obs']):>6}"
        )

    lines.extend([
        "",
        "-" * 70,
        f"LONG/FLAT STRATEGY (invested when {result.invested_regime})",
        "-" * 70,
        f"  {'Metric':<22} {'Strategy':>12} {'Buy & Hold':>12}",
        f"  {'Total Return':<22} {s.total_return:>+11.2%} {b.total_return:>+11.2%}",
        f"  {'CAGR':<22} {s.cagr:>+11.2%} {b.cagr:>+11.2%}",
        f"  {'Volatility':<22} {s.annualized_volatility:>11.2%} {b.annualized_volatility:>11.2%}",
        f"  {'Sharpe Ratio':<22} {s.sharpe_ratio:>12.2f} {b.sharpe_ratio:>12.2f}",
        f"  {'Max Drawdown':<22} {s.max_drawdown:>11.2%} {b.max_drawdown:>11.2%}",
        f"  {'Exposure':<22} {s.exposure:>11.1%} {b.exposure:>11.1%}",
        "",
        "-" * 70,
        "TEST-SAMPLE TRANSITION MATRIX",
        "-" * 70,
        result.transitions.probabilities.round(3).to_string(),
        "=" * 70,
    ])
    return "\n".join(lines)


__all__ = [
    'PerformanceMetrics',
    'OutOfSampleResult',
    'PerformanceCalculator',
    'OutOfSampleValidator',
    'format_validation_report',
]
