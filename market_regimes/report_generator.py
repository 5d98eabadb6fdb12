#!/usr/bin/env python3
"""
Report Generator for the Regime Identification Pipeline

Writes pipeline results in several native formats:
    - CSV: regime-labeled data, regime summary, transition matrices,
      train/test regime comparison, strategy curves
    - JSON: comprehensive machine-readable structured data
    - Markdown: documentation-ready summary

Each format is produced independently; a format that fails is logged and
reported as None without stopping the others.

Version: 1.0.0
"""

from __future__ import annotations

import json
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from market_regimes.backtest_engine import OutOfSampleResult
from market_regimes.config import VERSION
from market_regimes.data_collector import DataProvenance
from market_regimes.regime_detector import RegimeDetectionResult
from market_regimes.risk_analytics import RegimeAnalyticsReport

logger = logging.getLogger(__name__)


# =============================================================================
# HELPERS
# =============================================================================

def _clean(value: Any) -> Any:
    """Make a value JSON-safe: numpy scalars to Python, NaN/inf to None."""
    if isinstance(value, dict):
        return {str(k): _clean(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_clean(v) for v in value]
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, (np.floating, float)):
        value = float(value)
        return value if math.isfinite(value) else None
    if isinstance(value, (pd.Timestamp, datetime)):
        return value.isoformat()
    if value is pd.NA:
        return None
    return value


def _matrix_dict(frame: pd.DataFrame) -> Dict[str, Dict[str, Any]]:
    return {str(row): {str(col): _clean(frame.loc[row, col]) for col in frame.columns} for row in frame.index}


def _markdown_table(frame: pd.DataFrame, float_format: str = "{:.4f}") -> str:
    """Render a small DataFrame as a pipe table."""
    headers = [frame.index.name or ""] + [str(c) for c in frame.columns]
    lines = [
        "| " + " | ".join(headers) + " |",
        "|" + "|".join(["---"] * len(headers)) + "|",
    ]
    for idx, row in frame.iterrows():
        cells = [str(idx)]
        for value in row:
            if isinstance(value, (float, np.floating)):
                cells.append("n/a" if pd.isna(value) else float_format.format(value))
            else:
                cells.append(str(value))
        lines.append("| " + " | ".join(cells) + " |")
    return "\n".join(lines)


# =============================================================================
# CSV EXPORTS
# =============================================================================

def generate_csv_exports(
    result: RegimeDetectionResult,
    output_dir: Path,
    validation: Optional[OutOfSampleResult] = None
) -> Dict[str, Path]:
    """
    Write the tabular outputs as CSV files.

    Args:
        result: Regime pipeline result
        output_dir: Directory for the files (created if missing)
        validation: Optional out-of-sample results

    Returns:
        Mapping of export name to file path
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    paths = {}

    paths["regimes"] = output_dir / "regime_labeled_data.csv"
    result.to_frame().to_csv(paths["regimes"], index_label="DATE")

    paths["summary"] = output_dir / "regime_summary.csv"
    result.summary.to_csv(paths["summary"])

    paths["transitions"] = output_dir / "transition_matrix.csv"
    result.transitions.probabilities.to_csv(paths["transitions"])

    paths["candidates"] = output_dir / "model_selection.csv"
    result.fit.candidate_scores.to_csv(paths["candidates"], index=False)

    if validation is not None:
        paths["oos_regimes"] = output_dir / "out_of_sample_regimes.csv"
        validation.samples.to_csv(paths["oos_regimes"], index_label="DATE")

        paths["oos_comparison"] = output_dir / "oos_regime_comparison.csv"
        validation.regime_comparison.to_csv(paths["oos_comparison"], index=False)

        paths["oos_transitions"] = output_dir / "oos_transition_matrix.csv"
        validation.transitions.probabilities.to_csv(paths["oos_transitions"])

        paths["oos_strategy"] = output_dir / "oos_strategy.csv"
        validation.strategy.to_csv(paths["oos_strategy"], index_label="DATE")

    logger.info(f"CSV exports: {len(paths)} files in {output_dir}")
    return paths


# =============================================================================
# JSON REPORT
# =============================================================================

def build_json_report(
    result: RegimeDetectionResult,
    analytics: Optional[RegimeAnalyticsReport] = None,
    validation: Optional[OutOfSampleResult] = None,
    provenance: Optional[DataProvenance] = None
) -> Dict[str, Any]:
    """Assemble the JSON report as a plain dictionary."""
    fit = result.fit
    cfg = result.config
    index = result.features.index

    report: Dict[str, Any] = {
        "metadata": {
            "generated_at": datetime.now().isoformat(),
            "report_version": VERSION,
            "engine_version": result.version,
            "data_fingerprint": result.fingerprint,
            "provenance": provenance.to_dict() if provenance is not None else None,
        },
        "analysis_period": {
            "start": _clean(index[0]) if len(index) else None,
            "end": _clean(index[-1]) if len(index) else None,
            "observations": result.n_observations,
            "complete_observations": result.selection.n_valid,
        },
        "configuration": {
            "confidence_threshold": cfg.confidence_threshold,
            "min_duration": cfg.min_duration,
            "component_range": list(cfg.component_range),
            "covariance_families": [f.value for f in cfg.covariance_families],
            "random_state": cfg.random_state,
            "n_init": cfg.n_init,
            "null_policy": cfg.null_policy.value,
            "short_history_policy": cfg.short_history_policy.value,
            "split_neutral": cfg.split_neutral,
        },
        "model": {
            "selected": fit.model_name,
            "n_components": fit.n_components,
            "family": fit.family.value,
            "bic": fit.bic,
            "log_likelihood": fit.log_likelihood,
            "n_parameters": fit.n_parameters,
            "n_iter": fit.n_iter,
            "weights": fit.weights.tolist(),
            "candidates": fit.candidate_scores.to_dict(orient="records"),
        },
        "smoothing": {
            "low_confidence_observations": int(result.smoothing.raw.isna().sum()),
            "short_runs_removed": result.smoothing.n_short_runs,
            "rows_without_regime": int(result.regimes.isna().sum()),
            "unresolved": result.smoothing.unresolved,
        },
        "regimes": [
            {"regime": int(rid), **{k: row[k] for k in result.summary.columns}}
            for rid, row in result.summary.iterrows()
        ],
        "current_regime": result.current_label,
        "transition_matrix": _matrix_dict(result.transitions.probabilities),
        "transition_counts": _matrix_dict(result.transitions.counts),
        "expected_durations": result.transitions.expected_durations().to_dict(),
        "undefined_transition_rows": result.transitions.undefined_rows,
    }

    if analytics is not None:
        report["regime_analytics"] = {
            "no_signal_days": analytics.no_signal_days,
            "performance": {k: vars(v) for k, v in analytics.performance.items()},
            "durations": {k: vars(v) for k, v in analytics.durations.items()},
            "current_spell_length": analytics.current_spell_length,
        }

    if validation is not None:
        report["out_of_sample"] = {
            "split_date": validation.split_date,
            "n_train": validation.n_train,
            "n_test": validation.n_test,
            "invested_regime": validation.invested_regime,
            "regime_comparison": validation.regime_comparison.astype({"sample": str}).to_dict(orient="records"),
            "strategy": validation.strategy_metrics.to_dict(),
            "buy_and_hold": validation.buy_and_hold_metrics.to_dict(),
            "transition_matrix": _matrix_dict(validation.transitions.probabilities),
        }

    return _clean(report)


def generate_json_report(
    result: RegimeDetectionResult,
    output_path: Path,
    analytics: Optional[RegimeAnalyticsReport] = None,
    validation: Optional[OutOfSampleResult] = None,
    provenance: Optional[DataProvenance] = None
) -> None:
    """Generate JSON report for programmatic consumption."""
    report = build_json_report(result, analytics, validation, provenance)
    Path(output_path).write_text(json.dumps(report, indent=2), encoding="utf-8")
    logger.info(f"JSON report: {output_path}")


# =============================================================================
# MARKDOWN REPORT
# =============================================================================

def generate_markdown_report(
    result: RegimeDetectionResult,
    output_path: Path,
    analytics: Optional[RegimeAnalyticsReport] = None,
    validation: Optional[OutOfSampleResult] = None
) -> None:
    """Generate documentation-ready Markdown report."""
    fit = result.fit
    index = result.features.index
    period = f"{index[0]} to {index[-1]}" if len(index) else "n/a"

    md = [
        "# Market Regime Identification Report",
        "",
        f"*Generated {datetime.now().strftime('%Y-%m-%d %H:%M')} | Version {result.version} | "
        f"Data fingerprint `{result.fingerprint}`*",
        "",
        "## Summary",
        "",
        f"- **Period:** {period}",
        f"- **Observations:** {result.n_observations:,} ({result.selection.n_valid:,} complete)",
        f"- **Selected model:** {fit.model_name} (BIC {fit.bic:.2f})",
        f"- **Current regime:** {result.current_label or 'no signal'}",
        "",
        "## Model Selection",
        "",
        _markdown_table(fit.candidate_scores.set_index("family"), "{:.2f}"),
        "",
        "## Regimes",
        "",
        _markdown_table(result.summary),
        "",
        "## Transition Matrix",
        "",
        _markdown_table(result.transitions.probabilities, "{:.3f}"),
        "",
    ]

    if result.transitions.undefined_rows:
        md.extend([
            f"Rows with no observed successor: {', '.join(result.transitions.undefined_rows)}",
            "",
        ])

    if analytics is not None:
        md.extend([
            "## Regime-Conditional Performance",
            "",
            _markdown_table(analytics.performance_frame()),
            "",
            "## Regime Durations",
            "",
            _markdown_table(analytics.duration_frame(), "{:.1f}"),
            "",
        ])

    if validation is not None:
        s = validation.strategy_metrics
        b = validation.buy_and_hold_metrics
        md.extend([
            f"## Out-of-Sample Validation (split {validation.split_date.date()})",
            "",
            f"Train rows: {validation.n_train:,} | Test rows: {validation.n_test:,}",
            "",
            "| Metric | Strategy | Buy & Hold |",
            "|---|---|---|",
            f"| Total Return | {s.total_return:+.2%} | {b.total_return:+.2%} |",
            f"| CAGR | {s.cagr:+.2%} | {b.cagr:+.2%} |",
            f"| Volatility | {s.annualized_volatility:.2%} | {b.annualized_volatility:.2%} |",
            f"| Sharpe | {s.sharpe_ratio:.2f} | {b.sharpe_ratio:.2f} |",
            f"| Max Drawdown | {s.max_drawdown:.2%} | {b.max_drawdown:.2%} |",
            f"| Exposure | {s.exposure:.1%} | {b.exposure:.1%} |",
            "",
        ])

    Path(output_path).write_text("\n".join(md), encoding="utf-8")
    logger.info(f"Markdown report: {output_path}")


# =============================================================================
# ALL REPORTS
# =============================================================================

def generate_all_reports(
    result: RegimeDetectionResult,
    output_dir: Path,
    analytics: Optional[RegimeAnalyticsReport] = None,
    validation: Optional[OutOfSampleResult] = None,
    provenance: Optional[DataProvenance] = None
) -> Dict[str, Optional[Path]]:
    """Generate every report format: CSV exports, JSON, Markdown."""
    output_dir = Path(output_dir)
    reports_dir = output_dir / "reports"
    reports_dir.mkdir(parents=True, exist_ok=True)

    outputs: Dict[str, Optional[Path]] = {}

    # CSV
    try:
        generate_csv_exports(result, output_dir / "csv", validation)
        outputs['csv'] = output_dir / "csv"
    except (OSError, ValueError) as e:
        logger.error(f"CSV export failed: {e}")
        outputs['csv'] = None

    # JSON
    json_path = reports_dir / "regime_analysis.json"
    try:
        generate_json_report(result, json_path, analytics, validation, provenance)
        outputs['json'] = json_path
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"JSON failed: {e}")
        outputs['json'] = None

    # Markdown
    md_path = reports_dir / "regime_analysis.md"
    try:
        generate_markdown_report(result, md_path, analytics, validation)
        outputs['md'] = md_path
    except (OSError, ValueError) as e:
        logger.error(f"Markdown failed: {e}")
        outputs['md'] = None

    return outputs


__all__ = [
    'generate_csv_exports',
    'build_json_report',
    'generate_json_report',
    'generate_markdown_report',
    'generate_all_reports',
]
