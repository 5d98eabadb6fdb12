from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from market_regimes.config import CovarianceFamily, PipelineStage, RegimeConfig
from market_regimes.errors import ModelFittingError
from market_regimes.mixture_model import (
    FitCache,
    GaussianMixtureEM,
    MixtureModelFitter,
    estimate_log_gaussian,
    n_parameters,
)
from market_regimes.regime_detector import Standardizer


@pytest.fixture
def scaled(block_features: pd.DataFrame) -> np.ndarray:
    frame, _ = Standardizer().fit_transform(block_features)
    return frame.to_numpy()


def test_parameter_counts() -> None:
    assert n_parameters(2, 5, CovarianceFamily.EEE) == 1 + 10 + 15
    assert n_parameters(2, 5, CovarianceFamily.VEE) == 1 + 10 + 15 - 1 + 2
    assert n_parameters(4, 5, CovarianceFamily.VEE) == 3 + 20 + 15 - 1 + 4


def test_log_gaussian_matches_scipy() -> None:
    from scipy.stats import multivariate_normal

    rng = np.random.default_rng(0)
    X = rng.normal(size=(6, 3))
    means = np.array([[0.0, 0.0, 0.0], [1.0, -1.0, 0.5]])
    cov = np.array([[1.0, 0.2, 0.0], [0.2, 2.0, 0.1], [0.0, 0.1, 0.5]])
    covariances = np.stack([cov, 2.0 * cov])

    result = estimate_log_gaussian(X, means, covariances)

    for k in range(2):
        expected = multivariate_normal(means[k], covariances[k]).logpdf(X)
        np.testing.assert_allclose(result[:, k], expected)


@pytest.mark.parametrize("family", [CovarianceFamily.EEE, CovarianceFamily.VEE])
def test_em_posteriors_are_distributions(scaled: np.ndarray, family: CovarianceFamily) -> None:
    model = GaussianMixtureEM(n_components=2, family=family, n_init=2).fit(scaled)

    assert model.converged_
    assert model.posteriors_.shape == (len(scaled), 2)
    assert np.all(model.posteriors_ >= 0)
    np.testing.assert_allclose(model.posteriors_.sum(axis=1), 1.0)
    np.testing.assert_allclose(model.weights_.sum(), 1.0)


def test_vee_covariances_are_proportional(scaled: np.ndarray) -> None:
    model = GaussianMixtureEM(n_components=2, family=CovarianceFamily.VEE, n_init=2, reg_covar=0.0).fit(scaled)

    ratio = model.covariances_[1] / model.covariances_[0]
    np.testing.assert_allclose(ratio, ratio[0, 0], rtol=1e-6)


def test_em_separates_blocks(scaled: np.ndarray) -> None:
    model = GaussianMixtureEM(n_components=2, family=CovarianceFamily.VEE, n_init=5).fit(scaled)
    labels = model.posteriors_.argmax(axis=1)

    assert len(set(labels[:120])) == 1
    assert len(set(labels[120:240])) == 1
    assert labels[0] == labels[-1]
    assert labels[0] != labels[150]


@pytest.mark.parametrize("family", [CovarianceFamily.EEE, CovarianceFamily.VEE])
def test_predict_proba_reproduces_training_posteriors(scaled: np.ndarray, family: CovarianceFamily) -> None:
    model = GaussianMixtureEM(n_components=2, family=family, n_init=2).fit(scaled)

    np.testing.assert_allclose(model.predict_proba(scaled), model.posteriors_)
    np.testing.assert_allclose(model.predict_proba(scaled[:5]), model.posteriors_[:5])


def test_predict_proba_requires_fit() -> None:
    with pytest.raises(RuntimeError):
        GaussianMixtureEM(n_components=2).predict_proba(np.zeros((3, 2)))


def test_fewer_rows_than_components_does_not_converge() -> None:
    model = GaussianMixtureEM(n_components=4).fit(np.zeros((3, 2)))

    assert not model.converged_
    assert "3 observations" in model.failure_reason_


def test_fitter_selects_from_grid(scaled: np.ndarray, fast_config: RegimeConfig) -> None:
    fit = MixtureModelFitter(fast_config).fit(scaled)

    assert fit.n_components in (2, 3, 4)
    assert fit.family in (CovarianceFamily.EEE, CovarianceFamily.VEE)
    assert len(fit.candidate_scores) == 6
    assert fit.posteriors.shape == (len(scaled), fit.n_components)
    np.testing.assert_allclose(fit.posteriors.sum(axis=1), 1.0)

    converged = fit.candidate_scores[fit.candidate_scores["converged"]]
    assert fit.bic == pytest.approx(converged["bic"].min())


def test_fitter_respects_restricted_grid(scaled: np.ndarray) -> None:
    config = RegimeConfig(component_range=(3,), covariance_families=(CovarianceFamily.EEE,), n_init=2)

    fit = MixtureModelFitter(config).fit(scaled)

    assert fit.n_components == 3
    assert fit.model_name == "EEE,3"


def test_fitter_is_deterministic(scaled: np.ndarray, fast_config: RegimeConfig) -> None:
    first = MixtureModelFitter(fast_config).fit(scaled)
    second = MixtureModelFitter(fast_config).fit(scaled)

    assert first.model_name == second.model_name
    np.testing.assert_array_equal(first.posteriors, second.posteriors)


def test_bic_tie_keeps_first_candidate(scaled: np.ndarray, fast_config: RegimeConfig, monkeypatch) -> None:
    monkeypatch.setattr(GaussianMixtureEM, "bic", lambda self, X: 100.0)

    fit = MixtureModelFitter(fast_config).fit(scaled)

    assert fit.model_name == "EEE,2"


def test_no_converged_candidate_raises(scaled: np.ndarray) -> None:
    config = RegimeConfig(max_iter=1, n_init=1)

    with pytest.raises(ModelFittingError) as excinfo:
        MixtureModelFitter(config).fit(scaled)

    assert excinfo.value.stage is PipelineStage.MODEL_FITTING
    assert excinfo.value.n_obs == len(scaled)


def test_cache_returns_previous_fit(scaled: np.ndarray, fast_config: RegimeConfig) -> None:
    cache = FitCache()
    fitter = MixtureModelFitter(fast_config, cache=cache)

    first = fitter.fit(scaled)
    second = fitter.fit(scaled)

    assert second is first
    assert cache.hits == 1
    assert cache.misses == 1
    assert len(cache) == 1


def test_cache_misses_on_different_data(scaled: np.ndarray, fast_config: RegimeConfig) -> None:
    cache = FitCache()
    fitter = MixtureModelFitter(fast_config, cache=cache)

    fitter.fit(scaled)
    fitter.fit(scaled[::-1].copy())

    assert cache.hits == 0
    assert len(cache) == 2
