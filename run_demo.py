#!/usr/bin/env python3
"""
Market Regime Identification - Demo Runner

This script runs the complete regime pipeline end to end:
    Stage 1: Load and align market + VIX data, build daily features
    Stage 2: Gaussian mixture regimes, confidence gate, temporal smoothing,
             economic labels, transition matrix
    Stage 3: Regime-conditional performance and durations
    Stage 4: Out-of-sample validation with a long/flat Bull strategy
    Stage 5: CSV, JSON and Markdown reports

EXECUTION
    python run_demo.py --synthetic
    python run_demo.py --market market_data.xlsx --vix vix_history.csv
    python run_demo.py --features market_features.csv --split-date 2023-01-05

OUTPUT ARTIFACTS
    outputs/
        csv/regime_labeled_data.csv       Features with regime id and label
        csv/regime_summary.csv            Per-regime statistics
        csv/transition_matrix.csv         Label transition probabilities
        csv/oos_*.csv                     Out-of-sample tables
        reports/regime_analysis.json      Machine-readable results
        reports/regime_analysis.md        Documentation-ready summary

Version: 1.0.0
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Tuple

import pandas as pd

from market_regimes.config import MODEL_FEATURES, VERSION, FeatureConfig, RegimeConfig, ValidationConfig
from market_regimes.errors import RegimeError


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_SPLIT: str = "2023-01-05"
DEFAULT_SEED: int = 42
OUTPUT_DIR = Path("outputs")


# =============================================================================
# DISPLAY COMPONENTS
# =============================================================================

BANNER = r'''
╔═══════════════════════════════════════════════════════════════════════════════╗
║                                                                               ║
║                    MARKET REGIME IDENTIFICATION PIPELINE                      ║
║                                                                               ║
║         Gaussian mixtures  ·  temporal smoothing  ·  economic labels          ║
║                                                                               ║
╚═══════════════════════════════════════════════════════════════════════════════╝
'''


def print_section_header(title: str, char: str = "═") -> None:
    """Print a formatted section header."""
    width = 79
    print()
    print(char * width)
    print(f"  {title}")
    print(char * width)
    print()


def format_percent(value: float, precision: int = 1) -> str:
    """Format a value as percentage."""
    return f"{value * 100:.{precision}f}%"


# =============================================================================
# STAGE 1: DATA
# =============================================================================

def load_feature_file(path: Path, logger: logging.Logger) -> pd.DataFrame:
    """Read a prebuilt feature table (DATE column plus the modeling fields)."""
    from market_regimes.data_collector import MarketDataLoader, check_chronology

    raw = MarketDataLoader.read_table(path)
    date_col = "DATE" if "DATE" in raw.columns else raw.columns[0]
    raw[date_col] = pd.to_datetime(raw[date_col])
    raw = raw.rename(columns={"VIX_level": "vix_level"})
    check_chronology(raw[date_col], str(path))
    features = raw.set_index(date_col)
    features.index.name = "DATE"
    logger.info(f"Loaded {len(features):,} feature rows from {path}")
    return features


def run_data_stage(args: argparse.Namespace, logger: logging.Logger) -> Tuple[pd.DataFrame, Any]:
    """
    Produce the feature table from files or simulated data.

    Returns
    -------
    (features, provenance)
    """
    print_section_header("STAGE 1: DATA & FEATURES")

    from market_regimes.data_collector import (
        DataProvenance,
        FeatureEngineer,
        MarketDataLoader,
        fingerprint_frame,
        simulate_market_data,
        synthetic_provenance,
    )

    feature_config = FeatureConfig(
        start_date=args.start or FeatureConfig.start_date,
        end_date=args.end or FeatureConfig.end_date,
    )

    if args.features:
        features = load_feature_file(Path(args.features), logger)
        provenance = DataProvenance(
            source=Path(args.features).name,
            record_count=len(features),
            date_range=(str(features.index[0].date()), str(features.index[-1].date())),
            data_hash=fingerprint_frame(features)
        )
        return features, provenance

    if args.synthetic:
        market, vix = simulate_market_data(seed=args.seed, start=feature_config.start_date)
        provenance = synthetic_provenance(market, args.seed)
    else:
        loader = MarketDataLoader(feature_config)
        market, vix, provenance = loader.load(args.market, args.vix)

    feature_set = FeatureEngineer(feature_config).build(market, vix)
    features = feature_set.features

    print(f"  Source:        {provenance.source}")
    print(f"  Records:       {provenance.record_count:,}")
    print(f"  Period:        {provenance.date_range[0]} to {provenance.date_range[1]}")
    print(f"  Fingerprint:   {provenance.data_hash}")
    print(f"  Feature rows:  {len(features):,} ({feature_set.n_dropped} without rolling history)")
    return features, provenance


# =============================================================================
# STAGE 2: REGIMES
# =============================================================================

def run_regime_stage(features: pd.DataFrame, args: argparse.Namespace, logger: logging.Logger) -> Any:
    """Fit, gate, smooth and label regimes."""
    print_section_header("STAGE 2: REGIME IDENTIFICATION")

    from market_regimes.regime_detector import RegimeDetectionPipeline, format_regime_report

    config = RegimeConfig(
        confidence_threshold=args.confidence,
        min_duration=args.min_duration,
        random_state=args.seed,
    )
    result = RegimeDetectionPipeline(config).run(features)

    logger.info(f"Selected model: {result.fit.model_name}")
    logger.info(f"Current regime: {result.current_label or 'no signal'}")
    print("\n" + format_regime_report(result))
    return result


# =============================================================================
# STAGE 3: ANALYTICS
# =============================================================================

def run_analytics_stage(result: Any, logger: logging.Logger) -> Optional[Any]:
    """Regime-conditional performance; optional, returns None on failure."""
    print_section_header("STAGE 3: REGIME ANALYTICS")

    from market_regimes.risk_analytics import RegimeAnalyticsEngine, format_regime_analytics_report

    try:
        report = RegimeAnalyticsEngine().analyze(result.to_frame())
    except RegimeError as e:
        logger.warning(f"Regime analytics skipped: {e}")
        return None

    print(format_regime_analytics_report(report))
    return report


# =============================================================================
# STAGE 4: OUT-OF-SAMPLE VALIDATION
# =============================================================================

def run_validation_stage(result: Any, args: argparse.Namespace, logger: logging.Logger) -> Optional[Any]:
    """Train/test comparison and long/flat strategy; optional."""
    print_section_header("STAGE 4: OUT-OF-SAMPLE VALIDATION")

    from market_regimes.backtest_engine import OutOfSampleValidator, format_validation_report

    validator = OutOfSampleValidator(ValidationConfig(split_date=args.split_date))
    try:
        oos = validator.run(result.to_frame())
    except RegimeError as e:
        logger.warning(f"Out-of-sample validation skipped: {e}")
        return None

    print(format_validation_report(oos))
    return oos


# =============================================================================
# MAIN
# =============================================================================

def main() -> int:
    """
    Main entry point for the demo runner.

    Returns
    -------
    int
        Exit code (0 for success, 1 for failure)
    """
    start_time = time.time()

    parser = argparse.ArgumentParser(
        description="Market Regime Identification - Demo Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_demo.py --synthetic
  python run_demo.py --market market_data.xlsx --vix vix_history.csv
  python run_demo.py --features market_features.csv --confidence 0.7
        """
    )

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--market", type=str, help="Market price file (.csv or .xlsx)")
    source.add_argument("--features", type=str, help="Prebuilt feature table (.csv)")
    source.add_argument("--synthetic", action="store_true", help="Use simulated data")

    parser.add_argument("--vix", type=str, help="VIX history file (required with --market)")
    parser.add_argument("--start", type=str, default=None, help="Analysis window start (YYYY-MM-DD)")
    parser.add_argument("--end", type=str, default=None, help="Analysis window end (YYYY-MM-DD)")
    parser.add_argument(
        "--split-date",
        type=str,
        default=DEFAULT_SPLIT,
        help=f"Out-of-sample split date (default: {DEFAULT_SPLIT})"
    )
    parser.add_argument(
        "--confidence",
        type=float,
        default=0.60,
        help="Minimum posterior probability for a regime assignment (default: 0.60)"
    )
    parser.add_argument(
        "--min-duration",
        type=int,
        default=10,
        help="Shortest regime run in observations (default: 10)"
    )
    parser.add_argument("--seed", type=int, default=DEFAULT_SEED, help=f"Random seed (default: {DEFAULT_SEED})")
    parser.add_argument(
        "--output", "-o",
        type=str,
        default=str(OUTPUT_DIR),
        help=f"Output directory (default: {OUTPUT_DIR})"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    args = parser.parse_args()
    if args.market and not args.vix:
        parser.error("--vix is required with --market")
    if args.features and (args.start or args.end):
        parser.error("--start/--end apply to raw market data, not to --features")

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="  %(asctime)s │ %(levelname)s │ %(message)s",
        datefmt="%H:%M:%S"
    )
    logger = logging.getLogger(__name__)

    print(BANNER)
    print(f"  Execution Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"  Model Features:    {', '.join(MODEL_FEATURES)}")
    print(f"  Split Date:        {args.split_date}")
    print(f"  Version:           {VERSION}")
    print()

    # ==========================================================================
    # REQUIRED STAGES
    # ==========================================================================

    try:
        features, provenance = run_data_stage(args, logger)
        result = run_regime_stage(features, args, logger)
    except (RegimeError, ValueError) as e:
        logger.error(f"Pipeline failed: {e}")
        return 1

    # ==========================================================================
    # OPTIONAL STAGES
    # ==========================================================================

    analytics = run_analytics_stage(result, logger)
    validation = run_validation_stage(result, args, logger)

    # ==========================================================================
    # REPORTS
    # ==========================================================================

    print_section_header("STAGE 5: REPORTS")

    from market_regimes.report_generator import generate_all_reports

    reports = generate_all_reports(
        result,
        Path(args.output),
        analytics=analytics,
        validation=validation,
        provenance=provenance
    )
    for name, path in reports.items():
        logger.info(f"{name.upper()}: {path if path else 'Not generated'}")

    total_time = time.time() - start_time

    print("\n" + "=" * 79)
    print("  SUMMARY")
    print("=" * 79)
    print(f"  Selected Model:   {result.fit.model_name}")
    print(f"  Regimes:          {', '.join(f'{k}={v}' for k, v in result.label_map.items())}")
    print(f"  Current Regime:   {result.current_label or 'no signal'}")
    if validation is not None:
        print(f"  OOS Strategy:     {format_percent(validation.strategy_metrics.total_return, 2)}")
        print(f"  OOS Buy & Hold:   {format_percent(validation.buy_and_hold_metrics.total_return, 2)}")
    print(f"  Total Time:       {total_time:.1f}s")
    print("=" * 79)

    return 0


if __name__ == "__main__":
    sys.exit(main())
