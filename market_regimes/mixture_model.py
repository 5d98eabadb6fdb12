#!/usr/bin/env python3
"""
Gaussian Mixture Model Fitting for Regime Clustering
====================================================

This module fits a small family of Gaussian mixture models to the
standardized regime features and selects one by the Bayesian Information
Criterion. The selected model provides, for every observation, a posterior
probability vector over its components.

MATHEMATICAL FRAMEWORK
----------------------
Mixture density:
    p(x) = sum_k w_k * N(x | mu_k, Sigma_k)

Covariance families (both share shape and orientation across components):
    EEE: Sigma_k = Sigma                 one pooled matrix
    VEE: Sigma_k = lambda_k * C          det(C) = 1, per-component volume

Estimation by Expectation-Maximization:
    E-step: z_ik = w_k N(x_i | mu_k, Sigma_k) / sum_j w_j N(x_i | mu_j, Sigma_j)
    M-step: n_k = sum_i z_ik, w_k = n_k / n, mu_k = sum_i z_ik x_i / n_k
            W_k = sum_i z_ik (x_i - mu_k)(x_i - mu_k)^T
            EEE: Sigma = sum_k W_k / n
            VEE: iterate  C = S / det(S)^(1/d),  S = sum_k W_k / lambda_k
                          lambda_k = tr(W_k C^-1) / (d n_k)

Model selection:
    BIC = -2 log L + p log n          (lower is better)

    Free parameters p for G components in d dimensions:
        EEE: (G - 1) + G d + d (d + 1) / 2
        VEE: (G - 1) + G d + d (d + 1) / 2 - 1 + G

Ties in BIC go to the candidate visited first: component counts ascending,
then covariance families in their configured order.

References:
    Dempster, Laird & Rubin (1977), Celeux & Govaert (1995),
    Fraley & Raftery (2002)

Version: 1.0.0
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import linalg
from scipy.special import logsumexp

from market_regimes.config import CovarianceFamily, PipelineStage, RegimeConfig
from market_regimes.errors import ModelFittingError

logger = logging.getLogger(__name__)

LOG_2PI = np.log(2.0 * np.pi)

# Share of initial responsibility spread evenly across components
INIT_SMOOTHING = 0.10

# Components holding less than one observation's worth of weight have collapsed
MIN_COMPONENT_WEIGHT = 1.0

# Inner fixed-point iterations for the VEE volume/shape update
VEE_INNER_ITER = 50
VEE_INNER_RTOL = 1e-8


class _DegenerateFit(Exception):
    """Raised inside a single EM restart when its parameters become unusable."""


# =============================================================================
# SECTION 1: DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class MixtureFit:
    """
    Selected mixture model and its per-observation posteriors.

    Rows of `posteriors` are aligned with the rows of the fitted matrix.
    """
    n_components: int
    family: CovarianceFamily
    weights: np.ndarray             # (G,)
    means: np.ndarray               # (G, d)
    covariances: np.ndarray         # (G, d, d)

    log_likelihood: float
    bic: float
    n_parameters: int
    n_iter: int
    n_obs: int

    posteriors: np.ndarray          # (n, G), rows sum to 1
    classification: np.ndarray      # (n,), arg-max component index

    candidate_scores: pd.DataFrame = field(repr=False)

    @property
    def max_posterior(self) -> np.ndarray:
        """Largest component probability for each observation."""
        return self.posteriors.max(axis=1)

    @property
    def model_name(self) -> str:
        return f"{self.family.value},{self.n_components}"


# =============================================================================
# SECTION 2: UTILITY FUNCTIONS
# =============================================================================

def n_parameters(n_components: int, n_features: int, family: CovarianceFamily) -> int:
    """Number of free parameters of a mixture in the given family."""
    g, d = n_components, n_features
    shared_cov = d * (d + 1) // 2
    base = (g - 1) + g * d
    if family is CovarianceFamily.EEE:
        return base + shared_cov
    return base + shared_cov - 1 + g


def fingerprint_array(X: np.ndarray) -> str:
    """SHA-256 fingerprint of a numeric matrix (shape and values)."""
    X = np.ascontiguousarray(X, dtype=float)
    digest = hashlib.sha256(str(X.shape).encode())
    digest.update(X.tobytes())
    return digest.hexdigest()[:16]


def estimate_log_gaussian(
    X: np.ndarray,
    means: np.ndarray,
    covariances: np.ndarray
) -> np.ndarray:
    """
    Log density of every observation under every component.

    Args:
        X: Observations (n x d)
        means: Component means (G x d)
        covariances: Component covariances (G x d x d)

    Returns:
        Array of shape (n, G) with log N(x_i | mu_k, Sigma_k)
    """
    n, d = X.shape
    log_prob = np.empty((n, means.shape[0]))
    for k in range(means.shape[0]):
        chol = linalg.cholesky(covariances[k], lower=True)
        solved = linalg.solve_triangular(chol, (X - means[k]).T, lower=True)
        mahalanobis = np.sum(solved ** 2, axis=0)
        log_det = 2.0 * np.sum(np.log(np.diag(chol)))
        log_prob[:, k] = -0.5 * (d * LOG_2PI + log_det + mahalanobis)
    return log_prob


# =============================================================================
# SECTION 3: GAUSSIAN MIXTURE (EM)
# =============================================================================

class GaussianMixtureEM:
    """
    Gaussian mixture with EEE or VEE covariance, fitted by EM.

    Each restart draws G distinct observations as initial centers (seeded by
    random_state + restart), assigns every point to its nearest center with a
    little responsibility smoothing, and iterates EM until the mean
    log-likelihood changes by less than `tol`. The best converged restart is
    kept. A restart that never converges, collapses a component or produces a
    singular covariance does not count.
    """

    def __init__(
        self,
        n_components: int,
        family: CovarianceFamily = CovarianceFamily.EEE,
        n_init: int = 5,
        max_iter: int = 500,
        tol: float = 1e-5,
        reg_covar: float = 1e-6,
        random_state: int = 42
    ):
        self.n_components = n_components
        self.family = CovarianceFamily(family)
        self.n_init = n_init
        self.max_iter = max_iter
        self.tol = tol
        self.reg_covar = reg_covar
        self.random_state = random_state

        # Learned parameters
        self.weights_: Optional[np.ndarray] = None
        self.means_: Optional[np.ndarray] = None
        self.covariances_: Optional[np.ndarray] = None

        # Fit diagnostics
        self.converged_ = False
        self.n_iter_ = 0
        self.log_likelihood_ = -np.inf
        self.posteriors_: Optional[np.ndarray] = None
        self.failure_reason_: Optional[str] = None

    # -------------------------------------------------------------------------
    # EM steps
    # -------------------------------------------------------------------------

    def _initial_responsibilities(self, X: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        n = X.shape[0]
        centers = X[rng.choice(n, size=self.n_components, replace=False)]
        sq_dist = ((X[:, None, :] - centers[None, :, :]) ** 2).sum(axis=2)
        nearest = sq_dist.argmin(axis=1)

        resp = np.full((n, self.n_components), INIT_SMOOTHING / self.n_components)
        resp[np.arange(n), nearest] += 1.0 - INIT_SMOOTHING
        return resp

    def _e_step(
        self,
        X: np.ndarray,
        weights: np.ndarray,
        means: np.ndarray,
        covariances: np.ndarray
    ) -> Tuple[float, np.ndarray]:
        """Return the mean log-likelihood and the responsibilities."""
        weighted = estimate_log_gaussian(X, means, covariances) + np.log(weights)
        log_norm = logsumexp(weighted, axis=1)
        resp = np.exp(weighted - log_norm[:, None])
        return float(log_norm.mean()), resp

    def _m_step(self, X: np.ndarray, resp: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        n, d = X.shape
        nk = resp.sum(axis=0)
        if np.any(nk < MIN_COMPONENT_WEIGHT):
            raise _DegenerateFit(f"component collapsed (weights {np.round(nk, 3).tolist()})")

        weights = nk / n
        means = (resp.T @ X) / nk[:, None]

        scatter = np.empty((self.n_components, d, d))
        for k in range(self.n_components):
            diff = X - means[k]
            scatter[k] = (resp[:, k, None] * diff).T @ diff

        ridge = self.reg_covar * np.eye(d)
        if self.family is CovarianceFamily.EEE:
            pooled = scatter.sum(axis=0) / n + ridge
            covariances = np.repeat(pooled[None, :, :], self.n_components, axis=0)
        else:
            volumes, shape = self._vee_shape_and_volumes(scatter, nk)
            covariances = volumes[:, None, None] * shape[None, :, :] + ridge

        return weights, means, covariances

    def _vee_shape_and_volumes(
        self,
        scatter: np.ndarray,
        nk: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        d = scatter.shape[1]
        volumes = np.einsum("kii->k", scatter) / (d * nk)
        if np.any(volumes <= 0):
            raise _DegenerateFit("non-positive component volume")

        for _ in range(VEE_INNER_ITER):
            pooled = np.sum(scatter / volumes[:, None, None], axis=0)
            sign, log_det = np.linalg.slogdet(pooled)
            if sign <= 0:
                raise _DegenerateFit("pooled scatter is not positive definite")
            shape = pooled / np.exp(log_det / d)

            new_volumes = np.einsum("kij,ji->k", scatter, linalg.inv(shape)) / (d * nk)
            if np.any(new_volumes <= 0):
                raise _DegenerateFit("non-positive component volume")
            done = np.allclose(new_volumes, volumes, rtol=VEE_INNER_RTOL, atol=0.0)
            volumes = new_volumes
            if done:
                break

        return volumes, shape

    # -------------------------------------------------------------------------
    # Fitting
    # -------------------------------------------------------------------------

    def _run_restart(self, X: np.ndarray, restart: int) -> Dict:
        rng = np.random.default_rng(self.random_state + restart)
        weights, means, covariances = self._m_step(X, self._initial_responsibilities(X, rng))

        prev_ll = -np.inf
        converged = False
        n_iter = 0
        for n_iter in range(1, self.max_iter + 1):
            mean_ll, resp = self._e_step(X, weights, means, covariances)
            if abs(mean_ll - prev_ll) < self.tol:
                converged = True
                break
            prev_ll = mean_ll
            weights, means, covariances = self._m_step(X, resp)

        return {
            "converged": converged,
            "n_iter": n_iter,
            "log_likelihood": mean_ll * X.shape[0],
            "weights": weights,
            "means": means,
            "covariances": covariances,
            "posteriors": resp,
        }

    def fit(self, X: np.ndarray) -> "GaussianMixtureEM":
        """
        Fit the mixture with several seeded restarts.

        Args:
            X: Standardized observations (n x d)

        Returns:
            self; check `converged_` before using the parameters
        """
        X = np.asarray(X, dtype=float)
        n = X.shape[0]
        self.converged_ = False
        self.failure_reason_ = None

        if n < self.n_components:
            self.failure_reason_ = f"{n} observations for {self.n_components} components"
            return self

        best = None
        reasons: List[str] = []
        for restart in range(self.n_init):
            try:
                result = self._run_restart(X, restart)
            except (_DegenerateFit, np.linalg.LinAlgError) as e:
                reasons.append(str(e))
                logger.debug(
                    f"{self.family.value},{self.n_components} restart {restart} failed: {e}"
                )
                continue

            if not result["converged"]:
                reasons.append(f"no convergence in {self.max_iter} iterations")
                continue
            if best is None or result["log_likelihood"] > best["log_likelihood"]:
                best = result

        if best is None:
            self.failure_reason_ = "; ".join(sorted(set(reasons))) or "no restart converged"
            return self

        self.weights_ = best["weights"]
        self.means_ = best["means"]
        self.covariances_ = best["covariances"]
        self.posteriors_ = best["posteriors"]
        self.log_likelihood_ = best["log_likelihood"]
        self.n_iter_ = best["n_iter"]
        self.converged_ = True
        return self

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """Posterior component probabilities for (possibly new) observations."""
        if not self.converged_:
            raise RuntimeError("Model must be fitted first")
        _, resp = self._e_step(np.asarray(X, dtype=float), self.weights_, self.means_, self.covariances_)
        return resp

    def n_parameters(self, n_features: int) -> int:
        return n_parameters(self.n_components, n_features, self.family)

    def bic(self, X: np.ndarray) -> float:
        """BIC = -2 log L + p log n (lower is better)."""
        n, d = np.asarray(X).shape
        return -2.0 * self.log_likelihood_ + self.n_parameters(d) * np.log(n)


# =============================================================================
# SECTION 4: MODEL SELECTION
# =============================================================================

class FitCache:
    """
    In-memory cache of selected mixture fits.

    Keyed by (feature data fingerprint, RegimeConfig.cache_key()), so a hit
    returns exactly what a refit would produce.
    """

    def __init__(self):
        self._store: Dict[Tuple, MixtureFit] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: Tuple) -> Optional[MixtureFit]:
        fit = self._store.get(key)
        if fit is None:
            self.misses += 1
        else:
            self.hits += 1
        return fit

    def put(self, key: Tuple, fit: MixtureFit) -> None:
        self._store[key] = fit

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


class MixtureModelFitter:
    """
    Grid search over component counts and covariance families.

    Usage:
        fitter = MixtureModelFitter(RegimeConfig())
        fit = fitter.fit(x_scaled)
        fit.posteriors, fit.classification
    """

    def __init__(self, config: Optional[RegimeConfig] = None, cache: Optional[FitCache] = None):
        self.config = config or RegimeConfig()
        self.cache = cache

    def _candidates(self) -> List[Tuple[int, CovarianceFamily]]:
        return [
            (g, family)
            for g in sorted(set(self.config.component_range))
            for family in self.config.covariance_families
        ]

    def fit(self, X: np.ndarray, fingerprint: Optional[str] = None) -> MixtureFit:
        """
        Fit every candidate and return the one with the lowest BIC.

        Args:
            X: Standardized observations (n x d), valid rows only
            fingerprint: Optional fingerprint of the source data for caching

        Returns:
            MixtureFit for the selected candidate

        Raises:
            ModelFittingError: if no candidate converges
        """
        X = np.asarray(X, dtype=float)
        n, d = X.shape
        cfg = self.config

        cache_key = None
        if self.cache is not None:
            cache_key = (fingerprint or fingerprint_array(X), cfg.cache_key())
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"Mixture fit cache hit ({cached.model_name}, n={n})")
                return cached

        logger.info(
            f"Fitting mixture grid G={list(sorted(set(cfg.component_range)))} "
            f"families={[f.value for f in cfg.covariance_families]} on {n} x {d}"
        )

        rows = []
        best: Optional[GaussianMixtureEM] = None
        best_bic = np.inf
        for g, family in self._candidates():
            model = GaussianMixtureEM(
                n_components=g,
                family=family,
                n_init=cfg.n_init,
                max_iter=cfg.max_iter,
                tol=cfg.tol,
                reg_covar=cfg.reg_covar,
                random_state=cfg.random_state
            ).fit(X)

            if not model.converged_:
                logger.debug(f"{family.value},{g} failed: {model.failure_reason_}")
                rows.append({
                    "n_components": g, "family": family.value, "converged": False,
                    "log_likelihood": np.nan, "bic": np.nan, "n_iter": 0,
                })
                continue

            bic = model.bic(X)
            logger.debug(f"{family.value},{g}: logL={model.log_likelihood_:.3f} BIC={bic:.3f}")
            rows.append({
                "n_components": g, "family": family.value, "converged": True,
                "log_likelihood": model.log_likelihood_, "bic": bic, "n_iter": model.n_iter_,
            })
            # Strict improvement keeps the earlier (simpler) candidate on ties
            if bic < best_bic:
                best, best_bic = model, bic

        scores = pd.DataFrame(rows)
        if best is None:
            raise ModelFittingError(
                f"No mixture candidate converged (G={sorted(set(cfg.component_range))}, "
                f"families={[f.value for f in cfg.covariance_families]})",
                stage=PipelineStage.MODEL_FITTING,
                n_obs=n
            )

        posteriors = best.posteriors_
        fit = MixtureFit(
            n_components=best.n_components,
            family=best.family,
            weights=best.weights_,
            means=best.means_,
            covariances=best.covariances_,
            log_likelihood=float(best.log_likelihood_),
            bic=float(best_bic),
            n_parameters=best.n_parameters(d),
            n_iter=best.n_iter_,
            n_obs=n,
            posteriors=posteriors,
            classification=posteriors.argmax(axis=1),
            candidate_scores=scores,
        )
        logger.info(f"Selected {fit.model_name} (BIC={fit.bic:.2f}, logL={fit.log_likelihood:.2f})")

        if self.cache is not None:
            self.cache.put(cache_key, fit)
        return fit


__all__ = [
    "MixtureFit",
    "GaussianMixtureEM",
    "MixtureModelFitter",
    "FitCache",
    "n_parameters",
    "fingerprint_array",
    "estimate_log_gaussian",
]
