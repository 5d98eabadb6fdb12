from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from market_regimes.config import PipelineStage, ShortHistoryPolicy
from market_regimes.errors import InputValidationError
from market_regimes.regime_detector import (
    ConfidenceGate,
    TemporalSmoother,
    find_segments,
    gather_positions,
    run_lengths,
    scatter_to_index,
)


def _ids(values) -> pd.Series:
    return pd.Series(pd.array(values, dtype="Int64"))


def test_low_confidence_gap_is_absorbed() -> None:
    posteriors = np.zeros((30, 4))
    posteriors[0:10] = [0.9, 0.05, 0.03, 0.02]
    # Positions 10-14 lean to id 1 but only with probability 0.3
    posteriors[10:15] = [0.25, 0.3, 0.25, 0.2]
    posteriors[15:30] = [0.8, 0.1, 0.05, 0.05]

    raw = ConfidenceGate(0.60).assign(posteriors)
    assert raw.iloc[10:15].isna().all()
    assert raw.iloc[:10].tolist() == [0] * 10

    result = TemporalSmoother(min_duration=10).smooth(raw)

    assert result.regimes.tolist() == [0] * 30
    assert not result.unresolved


def test_short_run_is_replaced_by_previous_regime() -> None:
    raw = _ids([0] * 12 + [1] * 5 + [0] * 12)

    result = TemporalSmoother(min_duration=10).smooth(raw)

    assert result.regimes.tolist() == [0] * 29
    assert result.n_short_runs == 1


def test_leading_short_run_is_back_filled_on_full_index() -> None:
    raw = _ids([1] * 4 + [0] * 15)

    result = TemporalSmoother(min_duration=10).smooth(raw)

    # Steps 1-5 leave the leading short run null
    assert result.persistent.iloc[:4].isna().all()
    assert result.persistent.iloc[4:].tolist() == [0] * 15
    # Step 7 back-fills it
    assert result.regimes.tolist() == [0] * 19


def test_incomplete_rows_take_neighbouring_regime() -> None:
    raw = _ids([0] * 10 + [1] * 10)
    positions = np.array([p for p in range(22) if p not in (3, 15)])
    index = pd.RangeIndex(22)

    result = TemporalSmoother(min_duration=10).smooth(raw, positions, index)

    assert len(result.regimes) == 22
    assert result.regimes.iloc[3] == 0
    assert result.regimes.iloc[15] == 1
    assert result.regimes.notna().all()


def test_every_run_reaches_min_duration_on_random_input() -> None:
    rng = np.random.default_rng(11)
    posteriors = rng.dirichlet([0.4, 0.4, 0.4], size=400)
    raw = ConfidenceGate(0.60).assign(posteriors)

    result = TemporalSmoother(min_duration=10).smooth(raw)

    if not result.unresolved:
        assert result.regimes.notna().all()
        assert (run_lengths(result.regimes) >= 10).all()


def test_sticky_random_input_keeps_long_runs() -> None:
    rng = np.random.default_rng(5)
    blocks = np.repeat(rng.integers(0, 3, 40), rng.integers(1, 25, 40))
    values = [v if rng.random() > 0.2 else None for v in blocks]

    result = TemporalSmoother(min_duration=10).smooth(_ids(values))

    assert not result.unresolved
    assert (run_lengths(result.regimes) >= 10).all()


def test_no_long_run_leaves_nulls_by_default(caplog) -> None:
    raw = _ids([0] * 3 + [1] * 3 + [0] * 3)

    with caplog.at_level("WARNING"):
        result = TemporalSmoother(min_duration=10).smooth(raw)

    assert result.unresolved
    assert result.regimes.isna().all()
    assert "No regime run" in caplog.text


def test_no_long_run_fails_when_requested() -> None:
    raw = _ids([0] * 3 + [1] * 3)
    smoother = TemporalSmoother(min_duration=10, short_history_policy=ShortHistoryPolicy.FAIL)

    with pytest.raises(InputValidationError) as excinfo:
        smoother.smooth(raw)

    assert excinfo.value.stage is PipelineStage.SMOOTHING


def test_all_low_confidence_is_unresolved() -> None:
    raw = _ids([None] * 20)

    result = TemporalSmoother(min_duration=10).smooth(raw)

    assert result.unresolved
    assert result.regimes.isna().all()


def test_smoother_does_not_mutate_input() -> None:
    raw = _ids([0] * 12 + [None] * 3 + [1] * 2 + [0] * 12)
    before = raw.copy()

    TemporalSmoother(min_duration=10).smooth(raw)

    pd.testing.assert_series_equal(raw, before)


def test_scatter_then_gather_round_trip() -> None:
    index = pd.bdate_range("2024-01-01", periods=12)
    positions = np.array([0, 2, 3, 7, 8, 11])
    values = pd.array([1, 0, None, 2, 2, 1], dtype="Int64")

    full = scatter_to_index(values, positions, index)
    back = gather_positions(full, positions)

    assert len(full) == 12
    assert full.iloc[[1, 4, 5, 6, 9, 10]].isna().all()
    assert back.tolist() == list(values)


def test_scatter_rejects_misaligned_lengths() -> None:
    with pytest.raises(ValueError):
        scatter_to_index([1, 2], np.array([0]), pd.RangeIndex(3))


def test_run_lengths_and_segments() -> None:
    seq = _ids([0, 0, 1, 1, 1, None, 0])

    assert run_lengths(seq).tolist() == [2, 2, 3, 3, 3, 1, 1]

    segments = find_segments(seq)
    assert segments["regime"].tolist() == [0, 1, 0]
    assert segments["length"].tolist() == [2, 3, 1]
    assert segments["start"].tolist() == [0, 2, 6]


def test_segments_skip_scattered_null_runs() -> None:
    values = [None if i % 2 else i // 200 for i in range(2000)]

    segments = find_segments(_ids(values))

    assert len(segments) == 1000
    assert segments["length"].eq(1).all()
    assert segments["regime"].tolist() == [i // 200 for i in range(0, 2000, 2)]
    assert segments["end"].tolist() == segments["start"].tolist()
