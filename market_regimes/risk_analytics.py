"""
================================================================================
REGIME-CONDITIONAL RISK ANALYTICS
================================================================================

Describes how the market behaved inside each economic regime once every
trading day carries a label.

Components:
-----------
1. REGIME-CONDITIONAL PERFORMANCE
   - Share of time, mean and annualized return, annualized volatility
   - Mean rolling volatility, drawdown and VIX level
   - Worst within-regime cumulative drawdown, hit rate

2. REGIME DURATION ANALYSIS
   - Number of spells per regime
   - Mean, median and longest spell length
   - Length of the spell in progress at the end of the sample

Days without a label ("no signal") are counted separately and belong to no
regime.

Version: 1.0.0
================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from market_regimes.config import PipelineStage
from market_regimes.errors import InputValidationError
from market_regimes.regime_detector import LABEL_ORDER, find_segments

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class RegimePerformance:
    """
    Market behavior during one economic regime.

    Attributes
    ----------
    regime : str
        Regime label (Bull/Bear/Neutral/Mixed)
    days : int
        Number of trading days carrying this label
    pct_time : float
        Share of labeled days spent in the regime
    mean_daily_return : float
        Mean daily log return
    annualized_return : float
        Mean daily log return scaled to a year
    annualized_volatility : float
        Sample standard deviation of daily log returns, annualized
    sharpe : float
        (annualized_return - risk_free) / annualized_volatility
    mean_vol_20 : float
        Mean trailing 20-day volatility
    mean_drawdown : float
        Mean drawdown from the running peak
    max_drawdown : float
        Worst cumulative drawdown of in-regime returns, chained together
    hit_rate : float
        Share of days with a positive return
    mean_vix : float
        Mean VIX level
    """
    regime: str
    days: int
    pct_time: float
    mean_daily_return: float
    annualized_return: float
    annualized_volatility: float
    sharpe: float
    mean_vol_20: float
    mean_drawdown: float
    max_drawdown: float
    hit_rate: float
    mean_vix: float


@dataclass
class RegimeDurationStats:
    """Spell lengths (consecutive trading days) of one regime."""
    regime: str
    n_spells: int
    mean_length: float
    median_length: float
    max_length: int


@dataclass
class RegimeAnalyticsReport:
    """Regime-conditional analytics for one labeled history."""
    period_start: pd.Timestamp
    period_end: pd.Timestamp
    trading_days: int
    no_signal_days: int

    performance: Dict[str, RegimePerformance]
    durations: Dict[str, RegimeDurationStats]

    current_regime: Optional[str]
    current_spell_length: int

    analysis_date: datetime = field(default_factory=datetime.now)

    def performance_frame(self) -> pd.DataFrame:
        """Performance table, one row per regime."""
        rows = [vars(p) for p in self.performance.values()]
        return pd.DataFrame(rows).set_index("regime") if rows else pd.DataFrame()

    def duration_frame(self) -> pd.DataFrame:
        rows = [vars(d) for d in self.durations.values()]
        return pd.DataFrame(rows).set_index("regime") if rows else pd.DataFrame()


# =============================================================================
# REGIME ANALYTICS ENGINE
# =============================================================================

class RegimeAnalyticsEngine:
    """
    Regime-conditional performance and duration analysis.

    Usage:
        engine = RegimeAnalyticsEngine()
        report = engine.analyze(result.to_frame())
        print(format_regime_analytics_report(report))
    """

    REQUIRED_COLUMNS = ("log_return", "vol_20", "drawdown", "vix_level")

    def __init__(
        self,
        trading_days: int = 252,
        risk_free: float = 0.0,
        label_column: str = "econ_regime"
    ):
        """
        Parameters
        ----------
        trading_days : int
            Trading days per year used for annualization
        risk_free : float
            Annual risk-free rate for the Sharpe ratio
        label_column : str
            Column holding the economic label
        """
        self.trading_days = trading_days
        self.rf = risk_free
        self.label_column = label_column

    def analyze(self, df: pd.DataFrame) -> RegimeAnalyticsReport:
        """
        Analyze a labeled feature table.

        Parameters
        ----------
        df : pd.DataFrame
            Date-indexed rows with log_return, vol_20, drawdown, vix_level
            and the label column

        Returns
        -------
        RegimeAnalyticsReport
        """
        missing = [c for c in self.REQUIRED_COLUMNS + (self.label_column,) if c not in df.columns]
        if missing:
            raise InputValidationError(
                f"Labeled table is missing columns {missing}",
                stage=PipelineStage.ANALYTICS,
                n_obs=len(df)
            )
        if df.empty:
            raise InputValidationError(
                "Labeled table is empty",
                stage=PipelineStage.ANALYTICS,
                n_obs=0
            )

        labels = df[self.label_column]
        labeled = df[labels.notna()]
        no_signal = len(df) - len(labeled)
        if no_signal:
            logger.info(f"{no_signal} days carry no regime label")

        present = set(labeled[self.label_column])
        order = [lab for lab in LABEL_ORDER if lab in present]
        order += sorted(lab for lab in present if lab not in LABEL_ORDER)

        performance = {
            regime: self._regime_performance(labeled[labeled[self.label_column] == regime], regime, len(labeled))
            for regime in order
        }
        durations = self._duration_stats(labels, order)

        segments = find_segments(labels)
        current_regime = None
        current_spell = 0
        if not segments.empty and segments.iloc[-1]["end"] == df.index[-1]:
            current_regime = segments.iloc[-1]["regime"]
            current_spell = int(segments.iloc[-1]["length"])

        logger.info(f"Regime analytics: {len(order)} regimes over {len(df)} days")
        return RegimeAnalyticsReport(
            period_start=df.index[0],
            period_end=df.index[-1],
            trading_days=len(df),
            no_signal_days=no_signal,
            performance=performance,
            durations=durations,
            current_regime=current_regime,
            current_spell_length=current_spell
        )

    def _regime_performance(self, rows: pd.DataFrame, regime: str, n_labeled: int) -> RegimePerformance:
        returns = rows["log_return"]
        n_days = len(rows)

        mean_ret = returns.mean()
        ann_return = mean_ret * self.trading_days
        ann_vol = returns.std() * np.sqrt(self.trading_days) if n_days > 1 else 0.0
        sharpe = (ann_return - self.rf) / ann_vol if ann_vol > 0 else 0.0

        # Drawdown of in-regime days chained together
        equity = np.exp(returns.cumsum())
        peak = equity.cummax()
        max_dd = ((equity - peak) / peak).min()

        return RegimePerformance(
            regime=regime,
            days=n_days,
            pct_time=n_days / n_labeled if n_labeled else 0.0,
            mean_daily_return=float(mean_ret),
            annualized_return=float(ann_return),
            annualized_volatility=float(ann_vol),
            sharpe=float(sharpe),
            mean_vol_20=float(rows["vol_20"].mean()),
            mean_drawdown=float(rows["drawdown"].mean()),
            max_drawdown=float(max_dd),
            hit_rate=float((returns > 0).mean()),
            mean_vix=float(rows["vix_level"].mean())
        )

    @staticmethod
    def _duration_stats(labels: pd.Series, order: List[str]) -> Dict[str, RegimeDurationStats]:
        segments = find_segments(labels)
        result = {}
        for regime in order:
            lengths = segments.loc[segments["regime"] == regime, "length"].astype(int)
            result[regime] = RegimeDurationStats(
                regime=regime,
                n_spells=len(lengths),
                mean_length=float(lengths.mean()),
                median_length=float(lengths.median()),
                max_length=int(lengths.max())
            )
        return result


# =============================================================================
# REPORT FORMATTING
# =============================================================================

def format_regime_analytics_report(report: RegimeAnalyticsReport) -> str:
    """
    Format regime analytics as a text report.

    Parameters
    ----------
    report : RegimeAnalyticsReport

    Returns
    -------
    str
    """
    lines = []

    lines.append("=" * 70)
    lines.append("REGIME-CONDITIONAL ANALYTICS REPORT")
    lines.append("=" * 70)
    lines.append(f"Analysis Date: {report.analysis_date.strftime('%Y-%m-%d %H:%M:%S')}")
    lines.append(f"Period: {pd.Timestamp(report.period_start).date()} to {pd.Timestamp(report.period_end).date()}")
    lines.append(f"Trading Days: {report.trading_days:,} ({report.no_signal_days} without signal)")
    lines.append("")

    lines.append("-" * 70)
    lines.append("PERFORMANCE BY REGIME")
    lines.append("-" * 70)
    lines.append(f"  {'Regime':<10} {'Days':>6} {'% Time':>8} {'Ann Ret':>9} {'Ann Vol':>8} {'Sharpe':>7} {'Max DD':>8} {'VIX':>6}")
    lines.append("  " + "-" * 66)
    for regime, perf in report.performance.items():
        lines.append(
            f"  {regime:<10} {perf.days:>6,} {perf.pct_time:>7.1%} "
            f"{perf.annualized_return:>+8.2%} {perf.annualized_volatility:>7.2%} "
            f"{perf.sharpe:>7.2f} {perf.max_drawdown:>7.2%} {perf.mean_vix:>6.1f}"
        )
    lines.append("")

    lines.append("-" * 70)
    lines.append("REGIME DURATIONS (trading days)")
    lines.append("-" * 70)
    lines.append(f"  {'Regime':<10} {'Spells':>7} {'Mean':>8} {'Median':>8} {'Longest':>8}")
    lines.append("  " + "-" * 66)
    for regime, dur in report.durations.items():
        lines.append(
            f"  {regime:<10} {dur.n_spells:>7} {dur.mean_length:>8.1f} "
            f"{dur.median_length:>8.1f} {dur.max_length:>8}"
        )
    lines.append("")

    if report.current_regime is not None:
        lines.append(
            f"Current Regime: {report.current_regime} "
            f"({report.current_spell_length} days in progress)"
        )
    else:
        lines.append("Current Regime: no signal")
    lines.append("=" * 70)

    return "\n".join(lines)


__all__ = [
    'RegimePerformance',
    'RegimeDurationStats',
    'RegimeAnalyticsReport',
    'RegimeAnalyticsEngine',
    'format_regime_analytics_report',
]
