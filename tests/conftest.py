from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from market_regimes.config import RegimeConfig

# (mean, sd) per modeling field; the stressed block's sds are exactly 3x the calm ones
CALM = {
    "log_return": (0.002, 0.002),
    "vol_20": (0.008, 0.0005),
    "mean_ret_20": (0.001, 0.0002),
    "drawdown": (-0.02, 0.005),
    "vix_level": (14.0, 1.0),
}
STRESSED = {
    "log_return": (-0.004, 0.006),
    "vol_20": (0.025, 0.0015),
    "mean_ret_20": (-0.002, 0.0006),
    "drawdown": (-0.20, 0.015),
    "vix_level": (35.0, 3.0),
}


def _block(rng: np.random.Generator, spec: dict, n: int) -> pd.DataFrame:
    return pd.DataFrame({col: rng.normal(mu, sd, n) for col, (mu, sd) in spec.items()})


@pytest.fixture
def block_features() -> pd.DataFrame:
    """Calm (120) -> stressed (120) -> calm (120) business days from 2022-01-03."""
    rng = np.random.default_rng(7)
    frame = pd.concat(
        [_block(rng, CALM, 120), _block(rng, STRESSED, 120), _block(rng, CALM, 120)],
        ignore_index=True,
    )
    frame.index = pd.bdate_range("2022-01-03", periods=len(frame), name="DATE")
    return frame


@pytest.fixture
def fast_config() -> RegimeConfig:
    return RegimeConfig(n_init=2, max_iter=300)
