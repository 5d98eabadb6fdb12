#!/usr/bin/env python3
"""
Market Regime Identification and Labeling
=========================================

This module partitions a daily history of equity and volatility features into
a small number of persistent, explainable market regimes and estimates how
often each regime follows another.

PIPELINE
--------
Data flows strictly left to right; every stage returns a new artifact and
never mutates its input.

    FeatureSelector      five modeling fields, complete-row positions
    Standardizer         z-scores over complete rows, scaling parameters kept
    MixtureModelFitter   EEE/VEE Gaussian mixtures, G in {2,3,4}, BIC selection
    ConfidenceGate       arg-max component if max posterior >= 0.60, else null
    TemporalSmoother     fill gaps, drop runs shorter than 10, re-fill, re-index
    RegimeCharacterizer  mean return, volatility, drawdown, VIX per regime
    EconomicLabeler      Bull / Bear / Neutral from return sign and median vol
    TransitionEstimator  row-stochastic matrix of consecutive label pairs

Temporal smoothing is applied after clustering; this is NOT a hidden Markov
model and transitions are not estimated jointly with the clusters.

OUTPUT
------
RegimeDetectionResult holds every intermediate artifact, a row-aligned regime
id and economic label for each input row, the regime summary table and the
transition matrix. Persistence is left to the caller (see report_generator).

Version: 1.0.0
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from market_regimes.config import (
    VERSION,
    EconomicRegime,
    NullPolicy,
    PipelineStage,
    RegimeConfig,
    ShortHistoryPolicy,
)
from market_regimes.data_collector import fingerprint_frame
from market_regimes.errors import DegenerateTransitionError, InputValidationError
from market_regimes.mixture_model import FitCache, MixtureFit, MixtureModelFitter

logger = logging.getLogger(__name__)

# Canonical ordering of labels on both axes of the transition matrix
LABEL_ORDER: Tuple[str, ...] = tuple(r.value for r in EconomicRegime)


# =============================================================================
# SECTION 1: DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class FeatureSelection:
    """
    The modeling fields of the input table and where they are complete.

    `features` keeps every input row; only `valid_positions` enter fitting.
    """
    features: pd.DataFrame          # Same length as the input, five columns
    valid_mask: np.ndarray          # True where every field is present
    valid_positions: np.ndarray     # Integer positions of complete rows

    @property
    def n_total(self) -> int:
        return len(self.features)

    @property
    def n_valid(self) -> int:
        return len(self.valid_positions)

    @property
    def valid_frame(self) -> pd.DataFrame:
        return self.features.iloc[self.valid_positions]


@dataclass(frozen=True)
class ScalingParameters:
    """Column means and standard deviations used for z-scoring."""
    mean: pd.Series
    std: pd.Series

    def transform(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Apply the stored scaling to new data with the same columns."""
        columns = list(self.mean.index)
        return (frame[columns] - self.mean) / self.std


@dataclass(frozen=True)
class SmoothingResult:
    """
    Every intermediate sequence of the temporal smoother.

    `persistent` covers only originally-valid positions (steps 1-5);
    `regimes` covers the full input index (steps 6-7).
    """
    raw: pd.Series                  # Confidence-gated ids (valid rows)
    filled: pd.Series               # After forward + backward fill
    persistent: pd.Series           # After minimum-duration filter + forward fill
    regimes: pd.Series              # Full index, final continuity fill
    n_short_runs: int               # Runs removed by the duration filter
    unresolved: bool                # True when no run reached min_duration


@dataclass(frozen=True)
class TransitionMatrix:
    """
    Empirical transition probabilities between economic labels.

    Rows are the current label, columns the next label. A label that never
    appears as a predecessor has an all-NaN row.
    """
    probabilities: pd.DataFrame
    counts: pd.DataFrame

    @property
    def labels(self) -> List[str]:
        return list(self.probabilities.index)

    @property
    def undefined_rows(self) -> List[str]:
        """Labels with no observed successor."""
        return [lab for lab in self.labels if self.probabilities.loc[lab].isna().all()]

    @property
    def is_complete(self) -> bool:
        return not self.undefined_rows

    def require_complete(self) -> "TransitionMatrix":
        """
        Return self, or raise if any row is undefined.

        Raises:
            DegenerateTransitionError: if a label has no observed successor
        """
        undefined = self.undefined_rows
        if undefined:
            raise DegenerateTransitionError(
                f"No observed successor for label(s) {undefined}",
                stage=PipelineStage.TRANSITIONS,
                n_obs=int(self.counts.to_numpy().sum())
            )
        return self

    def expected_durations(self) -> pd.Series:
        """
        Expected spell length per label: 1 / (1 - p_ii).

        NaN for undefined rows, inf for labels that never leave.
        """
        diagonal = pd.Series(
            [self.probabilities.loc[lab, lab] for lab in self.labels],
            index=self.labels,
            dtype=float
        )
        with np.errstate(divide="ignore"):
            return 1.0 / (1.0 - diagonal)


@dataclass(frozen=True)
class RegimeDetectionResult:
    """
    Complete output of one regime pipeline run.

    All artifacts are produced fresh by the run; nothing is shared with other
    runs except through an explicit FitCache.
    """
    config: RegimeConfig
    fingerprint: str
    features: pd.DataFrame          # Input table, untouched

    selection: FeatureSelection
    scaling: ScalingParameters
    fit: MixtureFit
    smoothing: SmoothingResult

    summary: pd.DataFrame           # One row per regime id, with econ_regime
    label_map: Dict[int, str]
    regimes: pd.Series              # Row-aligned regime id (Int64)
    labels: pd.Series               # Row-aligned economic label
    transitions: TransitionMatrix

    analysis_date: datetime = field(default_factory=datetime.now)
    processing_time_ms: int = 0
    version: str = VERSION

    @property
    def n_observations(self) -> int:
        return len(self.features)

    @property
    def current_label(self) -> Optional[str]:
        """Label of the last row, or None when it carries no signal."""
        if len(self.labels) == 0:
            return None
        last = self.labels.iloc[-1]
        return None if pd.isna(last) else last

    def to_frame(self) -> pd.DataFrame:
        """Input features with `regime` and `econ_regime` columns attached."""
        frame = self.features.copy()
        frame["regime"] = self.regimes.to_numpy()
        frame["econ_regime"] = self.labels.to_numpy()
        return frame


# =============================================================================
# SECTION 2: UTILITY FUNCTIONS
# =============================================================================

def scatter_to_index(
    values: Sequence,
    positions: np.ndarray,
    index: pd.Index
) -> pd.Series:
    """
    Place values at integer positions of a longer index; other rows are null.

    Args:
        values: Sequence aligned with `positions`
        positions: Integer positions into `index`
        index: Full target index

    Returns:
        Nullable integer Series over `index`
    """
    if len(values) != len(positions):
        raise ValueError(
            f"values ({len(values)}) and positions ({len(positions)}) differ in length"
        )
    full = pd.Series(pd.NA, index=index, dtype="Int64", name="regime")
    full.iloc[np.asarray(positions, dtype=int)] = pd.array(np.asarray(values, dtype=object), dtype="Int64")
    return full


def gather_positions(full: pd.Series, positions: np.ndarray) -> pd.Series:
    """Inverse of scatter_to_index: the values at the given positions."""
    return full.iloc[np.asarray(positions, dtype=int)]


def run_lengths(values: pd.Series) -> pd.Series:
    """
    Length of the maximal run of identical consecutive values each element
    belongs to. Null elements each form a run of their own.
    """
    starts = values.ne(values.shift()).fillna(True).astype(bool)
    run_id = starts.cumsum()
    return run_id.map(run_id.value_counts()).astype(int)


def find_segments(regimes: pd.Series) -> pd.DataFrame:
    """
    Maximal runs of a regime sequence.

    Returns:
        DataFrame with columns regime, start, end (index labels), length.
        Runs of null values are omitted.
    """
    columns = ["regime", "start", "end", "length"]
    if len(regimes) == 0:
        return pd.DataFrame(columns=columns)

    starts = regimes.ne(regimes.shift()).fillna(True).astype(bool).to_numpy()
    run_id = np.cumsum(starts)
    positions = pd.Series(np.arange(len(regimes)))
    grouped = positions.groupby(run_id, sort=True)
    first = grouped.first().to_numpy()
    last = grouped.last().to_numpy()

    segments = pd.DataFrame({
        "regime": regimes.iloc[first].reset_index(drop=True),
        "start": regimes.index[first],
        "end": regimes.index[last],
        "length": grouped.size().to_numpy(),
    }, columns=columns)
    return segments[segments["regime"].notna()].reset_index(drop=True)


# =============================================================================
# SECTION 3: FEATURE SELECTION AND SCALING
# =============================================================================

class FeatureSelector:
    """
    Extract the modeling fields and locate complete rows.

    A row is complete when all fields are present and finite. Incomplete rows
    stay in the selection (they are re-admitted after smoothing) but are
    excluded from scaling and fitting.
    """

    def __init__(self, columns: Sequence[str]):
        self.columns = tuple(columns)

    def select(self, df: pd.DataFrame) -> FeatureSelection:
        missing = [c for c in self.columns if c not in df.columns]
        if missing:
            raise InputValidationError(
                f"Feature table is missing required columns {missing}",
                stage=PipelineStage.FEATURE_SELECTION,
                n_obs=len(df)
            )

        try:
            selected = df.loc[:, list(self.columns)].astype(float)
        except (TypeError, ValueError) as e:
            raise InputValidationError(
                f"Feature columns are not numeric: {e}",
                stage=PipelineStage.FEATURE_SELECTION,
                n_obs=len(df)
            ) from e

        valid_mask = np.isfinite(selected.to_numpy()).all(axis=1)
        valid_positions = np.flatnonzero(valid_mask)

        if len(valid_positions) == 0:
            raise InputValidationError(
                "No complete rows after filtering incomplete features",
                stage=PipelineStage.FEATURE_SELECTION,
                n_obs=len(df)
            )

        dropped = len(df) - len(valid_positions)
        if dropped:
            logger.info(f"Excluded {dropped} incomplete rows from fitting ({len(valid_positions)} valid)")

        return FeatureSelection(
            features=selected,
            valid_mask=valid_mask,
            valid_positions=valid_positions
        )


class Standardizer:
    """Z-score normalization over complete rows (sample standard deviation)."""

    def fit_transform(self, frame: pd.DataFrame) -> Tuple[pd.DataFrame, ScalingParameters]:
        """
        Scale each column to zero mean and unit variance.

        Raises:
            InputValidationError: if a column has zero or undefined deviation
        """
        mean = frame.mean(axis=0)
        std = frame.std(axis=0, ddof=1)

        degenerate = [c for c in frame.columns if not np.isfinite(std[c]) or std[c] == 0]
        if degenerate:
            raise InputValidationError(
                f"Zero or undefined standard deviation in columns {degenerate}",
                stage=PipelineStage.STANDARDIZATION,
                n_obs=len(frame)
            )

        params = ScalingParameters(mean=mean, std=std)
        return params.transform(frame), params


# =============================================================================
# SECTION 4: CONFIDENCE GATE
# =============================================================================

class ConfidenceGate:
    """Hard component ids for confident observations, null otherwise."""

    def __init__(self, threshold: float = 0.60):
        self.threshold = threshold

    def assign(self, posteriors: np.ndarray, index: Optional[pd.Index] = None) -> pd.Series:
        """
        Args:
            posteriors: (n x G) posterior probabilities
            index: Index for the output (defaults to 0..n-1)

        Returns:
            Nullable integer Series of component ids
        """
        posteriors = np.asarray(posteriors, dtype=float)
        if posteriors.ndim != 2:
            raise ValueError(f"posteriors must be 2-D, got shape {posteriors.shape}")

        ids = pd.Series(posteriors.argmax(axis=1), index=index, dtype="Int64", name="regime")
        confident = posteriors.max(axis=1) >= self.threshold
        gated = ids.where(confident)

        n_null = int((~confident).sum())
        logger.info(
            f"Confidence gate: {len(ids) - n_null}/{len(ids)} assigned, "
            f"{n_null} below {self.threshold:.2f}"
        )
        return gated


# =============================================================================
# SECTION 5: TEMPORAL SMOOTHER
# =============================================================================

class TemporalSmoother:
    """
    Turn a gappy, noisy id sequence into persistent regimes.

    Steps, in order:
        1. forward fill
        2. backward fill
        3. maximal runs of identical ids
        4. runs shorter than min_duration -> null
        5. forward fill (a short run ahead of the first long run stays null)
        6. scatter onto the full row index (incomplete rows null)
        7. forward fill, then backward fill, over the full index
    """

    def __init__(
        self,
        min_duration: int = 10,
        short_history_policy: ShortHistoryPolicy = ShortHistoryPolicy.LEAVE_NULL
    ):
        self.min_duration = min_duration
        self.short_history_policy = short_history_policy

    def enforce_persistence(self, raw: pd.Series) -> Tuple[pd.Series, pd.Series, int]:
        """
        Steps 1-5 over the valid observations.

        Returns:
            (filled, persistent, number of runs removed)
        """
        filled = raw.ffill().bfill()

        lengths = run_lengths(filled)
        short = (lengths < self.min_duration) & filled.notna()
        n_short = len(find_segments(filled.where(short))) if short.any() else 0

        persistent = filled.mask(short).ffill()
        return filled, persistent, n_short

    @staticmethod
    def broadcast(persistent: pd.Series, positions: np.ndarray, index: pd.Index) -> pd.Series:
        """Steps 6-7: re-index onto every input row and fill for continuity."""
        full = scatter_to_index(persistent.to_numpy(dtype=object), positions, index)
        return full.ffill().bfill()

    def smooth(
        self,
        raw: pd.Series,
        positions: Optional[np.ndarray] = None,
        index: Optional[pd.Index] = None
    ) -> SmoothingResult:
        """
        Run all seven steps.

        Args:
            raw: Confidence-gated ids for valid rows, chronological
            positions: Positions of those rows in the full input
            index: Full input index (defaults to raw's own index)

        Returns:
            SmoothingResult
        """
        if positions is None:
            positions = np.arange(len(raw))
        if index is None:
            index = raw.index

        filled, persistent, n_short = self.enforce_persistence(raw)

        unresolved = bool(persistent.isna().all()) and len(persistent) > 0
        if unresolved:
            message = (
                f"No regime run reaches {self.min_duration} observations; "
                f"regime ids left null"
            )
            if self.short_history_policy is ShortHistoryPolicy.FAIL:
                raise InputValidationError(
                    f"No regime run reaches {self.min_duration} observations",
                    stage=PipelineStage.SMOOTHING,
                    n_obs=len(raw)
                )
            logger.warning(message)

        regimes = self.broadcast(persistent, positions, index)
        logger.info(
            f"Smoothing: removed {n_short} runs shorter than {self.min_duration}, "
            f"{int(regimes.isna().sum())} rows without a regime"
        )

        return SmoothingResult(
            raw=raw,
            filled=filled,
            persistent=persistent,
            regimes=regimes,
            n_short_runs=n_short,
            unresolved=unresolved
        )


# =============================================================================
# SECTION 6: CHARACTERIZATION AND LABELING
# =============================================================================

SUMMARY_FIELDS: Dict[str, str] = {
    "mean_return": "log_return",
    "vol": "vol_20",
    "avg_drawdown": "drawdown",
    "avg_vix": "vix_level",
}


class RegimeCharacterizer:
    """
    Per-regime means of return, volatility, drawdown and VIX level.

    The null policy is explicit: SKIP ignores missing values inside a group,
    PROPAGATE turns the group mean null if any value is missing. Rows with a
    null regime id belong to no group.
    """

    def __init__(self, null_policy: NullPolicy = NullPolicy.SKIP):
        self.null_policy = null_policy

    def summarize(self, features: pd.DataFrame, regimes: pd.Series) -> pd.DataFrame:
        """
        Args:
            features: Feature rows (needs log_return, vol_20, drawdown, vix_level)
            regimes: Regime ids aligned 1:1 with `features` rows

        Returns:
            DataFrame indexed by regime id
        """
        if len(features) != len(regimes):
            raise ValueError(
                f"features ({len(features)}) and regimes ({len(regimes)}) are not aligned"
            )

        columns = list(SUMMARY_FIELDS) + ["n_obs"]
        fields = list(SUMMARY_FIELDS.values())
        missing = [c for c in fields if c not in features.columns]
        if missing:
            raise InputValidationError(
                f"Cannot characterize regimes without columns {missing}",
                stage=PipelineStage.CHARACTERIZATION,
                n_obs=len(features)
            )
        try:
            frame = features[fields].astype(float)
        except (TypeError, ValueError) as e:
            raise InputValidationError(
                f"Characterization columns are not numeric: {e}",
                stage=PipelineStage.CHARACTERIZATION,
                n_obs=len(features)
            ) from e

        # Non-finite values count as missing
        frame = frame.where(np.isfinite(frame))
        frame["regime"] = regimes.to_numpy()
        frame = frame[frame["regime"].notna()]

        if frame.empty:
            empty = pd.DataFrame(columns=columns, dtype=float)
            empty.index.name = "regime"
            return empty

        frame["regime"] = frame["regime"].astype(int)
        skipna = self.null_policy is NullPolicy.SKIP
        grouped = frame.groupby("regime", sort=True)

        summary = pd.DataFrame({
            name: grouped[source].agg(lambda x: x.mean(skipna=skipna))
            for name, source in SUMMARY_FIELDS.items()
        })
        summary["n_obs"] = grouped.size()
        summary.index.name = "regime"
        return summary


class EconomicLabeler:
    """
    Name regimes from their return sign and volatility relative to the median.

        Bull:    mean_return > 0 and vol < median(vol)
        Bear:    mean_return < 0 and vol > median(vol)
        Neutral: everything else (ties and null statistics included)

    With split_neutral, the contradictory quadrants (rising but volatile,
    falling but calm) become Mixed and Neutral only means insufficient
    evidence. The rule is a pure function of the summary table.
    """

    def __init__(self, split_neutral: bool = False):
        self.split_neutral = split_neutral

    def _classify(self, mean_return: float, vol: float, median_vol: float) -> str:
        if mean_return > 0 and vol < median_vol:
            return EconomicRegime.BULL.value
        if mean_return < 0 and vol > median_vol:
            return EconomicRegime.BEAR.value
        if self.split_neutral and (
            (mean_return > 0 and vol > median_vol) or (mean_return < 0 and vol < median_vol)
        ):
            return EconomicRegime.MIXED.value
        return EconomicRegime.NEUTRAL.value

    def label(self, summary: pd.DataFrame) -> pd.DataFrame:
        """Return a copy of the summary with an `econ_regime` column."""
        labeled = summary.copy()
        median_vol = summary["vol"].median(skipna=True)
        labeled["econ_regime"] = [
            self._classify(ret, vol, median_vol)
            for ret, vol in zip(summary["mean_return"], summary["vol"])
        ]
        return labeled

    def mapping(self, summary: pd.DataFrame) -> Dict[int, str]:
        labeled = self.label(summary)
        return {int(k): v for k, v in labeled["econ_regime"].items()}

    @staticmethod
    def apply(regimes: pd.Series, mapping: Dict[int, str]) -> pd.Series:
        """Relabel every observation; null ids stay null."""
        return pd.Series(
            [None if pd.isna(r) else mapping[int(r)] for r in regimes],
            index=regimes.index,
            dtype=object,
            name="econ_regime"
        )


# =============================================================================
# SECTION 7: TRANSITION ESTIMATOR
# =============================================================================

class TransitionEstimator:
    """
    Row-normalized counts of consecutive label pairs.

    Pairs with a null on either side are not counted. The matrix covers only
    labels present in the sequence, in canonical order.
    """

    def estimate(self, labels: Iterable) -> TransitionMatrix:
        seq = pd.Series(list(labels), dtype=object)

        present = set(seq.dropna())
        order = [lab for lab in LABEL_ORDER if lab in present]
        order += sorted(str(lab) for lab in present if lab not in LABEL_ORDER)

        pairs = Counter()
        for current, following in zip(seq.iloc[:-1], seq.iloc[1:]):
            if pd.isna(current) or pd.isna(following):
                continue
            pairs[(current, following)] += 1

        counts = pd.DataFrame(0, index=order, columns=order, dtype=int)
        for (current, following), n in pairs.items():
            counts.loc[current, following] = n
        counts.index.name = "from"
        counts.columns.name = "to"

        row_totals = counts.sum(axis=1)
        probabilities = counts.div(row_totals.where(row_totals > 0), axis=0)

        matrix = TransitionMatrix(probabilities=probabilities, counts=counts)
        if matrix.undefined_rows:
            logger.warning(
                f"Transition rows undefined (no observed successor): {matrix.undefined_rows}"
            )
        return matrix


# =============================================================================
# SECTION 8: REGIME DETECTION PIPELINE
# =============================================================================

class RegimeDetectionPipeline:
    """
    Complete regime identification pipeline.

    Each stage receives the previous stage's artifact and returns a new one;
    the final RegimeDetectionResult threads them all together.

    Usage:
        pipeline = RegimeDetectionPipeline(RegimeConfig(random_state=7))
        result = pipeline.run(features)
        result.labels, result.summary, result.transitions.probabilities
    """

    def __init__(self, config: Optional[RegimeConfig] = None, cache: Optional[FitCache] = None):
        self.config = config or RegimeConfig()
        self.selector = FeatureSelector(self.config.feature_columns)
        self.standardizer = Standardizer()
        self.fitter = MixtureModelFitter(self.config, cache=cache)
        self.gate = ConfidenceGate(self.config.confidence_threshold)
        self.smoother = TemporalSmoother(self.config.min_duration, self.config.short_history_policy)
        self.characterizer = RegimeCharacterizer(self.config.null_policy)
        self.labeler = EconomicLabeler(self.config.split_neutral)
        self.transitions = TransitionEstimator()

    @staticmethod
    def _check_index(features: pd.DataFrame) -> None:
        if not features.index.is_unique or not features.index.is_monotonic_increasing:
            raise InputValidationError(
                "Feature index must be unique and strictly increasing",
                stage=PipelineStage.FEATURE_SELECTION,
                n_obs=len(features)
            )

    def run(self, features: pd.DataFrame) -> RegimeDetectionResult:
        """
        Run every stage on a chronologically sorted feature table.

        Args:
            features: Date-indexed table with the modeling fields

        Returns:
            RegimeDetectionResult
        """
        start_time = time.time()
        cfg = self.config
        self._check_index(features)
        logger.info(f"Regime pipeline started on {len(features)} rows")

        # 1. Feature selection
        selection = self.selector.select(features)
        fingerprint = fingerprint_frame(selection.features)

        # 2. Standardization
        scaled, scaling = self.standardizer.fit_transform(selection.valid_frame)

        # 3. Mixture model
        fit = self.fitter.fit(scaled.to_numpy(), fingerprint=fingerprint)

        # 4. Confidence gate
        raw = self.gate.assign(fit.posteriors, index=scaled.index)

        # 5. Temporal smoothing
        smoothing = self.smoother.smooth(raw, selection.valid_positions, features.index)
        regimes = smoothing.regimes

        # 6. Characterization
        summary_input = features.copy()
        summary_input[list(selection.features.columns)] = selection.features
        summary = self.characterizer.summarize(summary_input, regimes)

        # 7. Economic labels
        summary = self.labeler.label(summary)
        label_map = {int(k): v for k, v in summary["econ_regime"].items()}
        labels = self.labeler.apply(regimes, label_map)

        # 8. Transitions
        transitions = self.transitions.estimate(labels)

        elapsed = int((time.time() - start_time) * 1000)
        logger.info(
            f"Regime pipeline finished: {fit.model_name}, "
            f"{len(summary)} regimes {sorted(set(label_map.values()))}, {elapsed}ms"
        )

        return RegimeDetectionResult(
            config=cfg,
            fingerprint=fingerprint,
            features=features,
            selection=selection,
            scaling=scaling,
            fit=fit,
            smoothing=smoothing,
            summary=summary,
            label_map=label_map,
            regimes=regimes,
            labels=labels,
            transitions=transitions,
            processing_time_ms=elapsed,
        )


# =============================================================================
# SECTION 9: CONVENIENCE FUNCTIONS
# =============================================================================

def detect_regimes(
    features: pd.DataFrame,
    config: Optional[RegimeConfig] = None,
    **overrides: Any
) -> RegimeDetectionResult:
    """
    Run the regime pipeline in one call.

    Args:
        features: Date-indexed feature table
        config: Base configuration (defaults to RegimeConfig())
        **overrides: Individual RegimeConfig fields to replace

    Example:
        >>> result = detect_regimes(features, confidence_threshold=0.7)
        >>> result.transitions.probabilities
    """
    config = dataclasses.replace(config or RegimeConfig(), **overrides)
    return RegimeDetectionPipeline(config).run(features)


def format_regime_report(result: RegimeDetectionResult) -> str:
    """
    Format a regime detection result as human-readable text.

    Args:
        result: RegimeDetectionResult from the pipeline

    Returns:
        Formatted string
    """
    fit = result.fit
    index = result.features.index
    lines = [
        "=" * 70,
        "MARKET REGIME IDENTIFICATION REPORT",
        "=" * 70,
        f"Analysis Date: {result.analysis_date.strftime('%Y-%m-%d %H:%M:%S')}",
        f"Period: {index[0]} to {index[-1]}" if len(index) else "Period: (empty)",
        f"Observations: {result.n_observations:,} ({result.selection.n_valid:,} complete)",
        f"Data Fingerprint: {result.fingerprint}",
        "",
        "-" * 70,
        "MIXTURE MODEL",
        "-" * 70,
        f"Selected Model: {fit.model_name}",
        f"BIC: {fit.bic:.2f}",
        f"Log-Likelihood: {fit.log_likelihood:.2f}",
        f"Parameters: {fit.n_parameters}",
        f"EM Iterations: {fit.n_iter}",
        "",
        "Candidates:",
    ]

    for _, row in fit.candidate_scores.iterrows():
        status = f"BIC {row['bic']:.2f}" if row["converged"] else "did not converge"
        lines.append(f"  {row['family']},{int(row['n_components'])}: {status}")

    lines.extend([
        "",
        "-" * 70,
        "SMOOTHING",
        "-" * 70,
        f"Confidence Threshold: {result.config.confidence_threshold:.2f}",
        f"Low-Confidence Observations: {int(result.smoothing.raw.isna().sum())}",
        f"Minimum Duration: {result.config.min_duration}",
        f"Short Runs Removed: {result.smoothing.n_short_runs}",
        f"Rows Without Regime: {int(result.regimes.isna().sum())}",
        "",
        "-" * 70,
        "REGIME SUMMARY",
        "-" * 70,
    ])

    for regime_id, row in result.summary.iterrows():
        lines.append(
            f"  Regime {regime_id} [{row['econ_regime']}]: "
            f"return {row['mean_return']:+.5f}, vol {row['vol']:.4f}, "
            f"drawdown {row['avg_drawdown']:.3f}, VIX {row['avg_vix']:.1f}, "
            f"n={int(row['n_obs'])}"
        )

    lines.extend([
        "",
        "-" * 70,
        "TRANSITION MATRIX",
        "-" * 70,
        result.transitions.probabilities.round(3).to_string(),
    ])

    if result.transitions.undefined_rows:
        lines.append("")
        lines.append(f"Undefined rows (no successor): {result.transitions.undefined_rows}")

    lines.extend([
        "",
        "=" * 70,
        f"Processing Time: {result.processing_time_ms}ms | Version: {result.version}",
        "=" * 70,
    ])

    return "\n".join(lines)


# =============================================================================
# SECTION 10: MODULE EXPORTS
# =============================================================================

__all__ = [
    # Data structures
    'FeatureSelection',
    'ScalingParameters',
    'SmoothingResult',
    'TransitionMatrix',
    'RegimeDetectionResult',

    # Stages
    'FeatureSelector',
    'Standardizer',
    'ConfidenceGate',
    'TemporalSmoother',
    'RegimeCharacterizer',
    'EconomicLabeler',
    'TransitionEstimator',

    # Pipeline
    'RegimeDetectionPipeline',

    # Convenience functions
    'detect_regimes',
    'format_regime_report',

    # Utilities
    'scatter_to_index',
    'gather_positions',
    'run_lengths',
    'find_segments',
    'LABEL_ORDER',
]
