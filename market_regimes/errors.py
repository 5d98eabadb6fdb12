"""
Error classes for the regime pipeline.

Every error is fatal to the run. Each one records the pipeline stage and the
number of observations it was working on so a failure can be diagnosed from
the message alone.
"""

from __future__ import annotations

from typing import Optional

from market_regimes.config import PipelineStage

__all__ = [
    "RegimeError",
    "InputValidationError",
    "ModelFittingError",
    "DegenerateTransitionError",
]


class RegimeError(Exception):
    """Base error for regime pipeline operations."""

    def __init__(
        self,
        message: str,
        stage: Optional[PipelineStage] = None,
        n_obs: Optional[int] = None
    ):
        self.message = message
        self.stage = stage
        self.n_obs = n_obs
        super().__init__(self._format())

    def _format(self) -> str:
        context = []
        if self.stage is not None:
            context.append(f"stage={self.stage.value}")
        if self.n_obs is not None:
            context.append(f"n_obs={self.n_obs}")
        if context:
            return f"{self.message} [{', '.join(context)}]"
        return self.message


class InputValidationError(RegimeError):
    """Input data cannot be modeled (no complete rows, zero variance, bad schema)."""


class ModelFittingError(RegimeError):
    """No candidate in the mixture model search grid converged."""


class DegenerateTransitionError(RegimeError):
    """A regime label has no observed successor, so its transition row is undefined."""
