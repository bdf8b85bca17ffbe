"""Validated sampling primitives used by the simulation step.

Each constructor checks its parameters up front and raises
DistributionConstructionError naming the offending value, so corrupted
probabilities surface as an error instead of a silently wrong draw.

Draw counts are part of the contract (bit-reproducibility):
  - bernoulli_draws: one uniform per trial, row-major order
  - categorical:     exactly one uniform
  - lognormal_factors: one normal per factor
"""

from __future__ import annotations

import numpy as np

from phenoevo.errors import DistributionConstructionError


def bernoulli_table(prob_matrix: np.ndarray, environment: int) -> np.ndarray:
    """Per-phenotype Bernoulli parameters for one environment.

    Args:
        prob_matrix: (n_phe, n_env) probability matrix.
        environment: Column to extract.

    Returns:
        (n_phe,) float64 array of probabilities.
    """
    prob_matrix = np.asarray(prob_matrix, dtype=np.float64)
    if prob_matrix.ndim != 2 or not 0 <= environment < prob_matrix.shape[1]:
        raise DistributionConstructionError(
            f"environment {environment} is not a column of a "
            f"{prob_matrix.shape} probability matrix"
        )
    p = prob_matrix[:, environment]
    bad = np.flatnonzero(~((p >= 0.0) & (p <= 1.0)))
    if bad.size:
        i = int(bad[0])
        raise DistributionConstructionError(
            f"Bernoulli probability for phenotype {i} in environment "
            f"{environment} must be in [0, 1], got {p[i]!r}"
        )
    return p


def bernoulli_draws(p: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Independent Bernoulli trials, one uniform draw per trial.

    ``p`` may have any shape; trials are drawn in row-major order.
    """
    p = np.asarray(p, dtype=np.float64)
    return rng.random(p.shape) < p


def categorical(weights, rng: np.random.Generator) -> int:
    """Draw an index with probability proportional to ``weights``.

    Weights need not be normalized but must be finite, non-negative and
    have a positive sum.
    """
    w = np.asarray(weights, dtype=np.float64)
    if w.ndim != 1 or w.size == 0:
        raise DistributionConstructionError(
            f"categorical weights must be a non-empty vector, got shape {w.shape}"
        )
    if not np.all(np.isfinite(w)) or np.any(w < 0.0):
        raise DistributionConstructionError(
            f"categorical weights must be finite and non-negative, got {w.tolist()}"
        )
    cumulative = np.cumsum(w)
    total = cumulative[-1]
    if total <= 0.0:
        raise DistributionConstructionError(
            "categorical weights must have a positive sum"
        )
    u = rng.random() * total
    idx = int(np.searchsorted(cumulative, u, side='right'))
    # u == total only for a generator returning 1.0; use the last non-zero weight
    if idx >= w.size:
        idx = int(np.flatnonzero(w)[-1])
    return idx


def lognormal_factors(
    sigma: float,
    size: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """Log-normal(0, sigma) multiplicative factors.

    sigma == 0 yields exactly 1.0 for every factor.
    """
    if not np.isfinite(sigma) or sigma < 0.0:
        raise DistributionConstructionError(
            f"log-normal scale must be finite and >= 0, got {sigma!r}"
        )
    return rng.lognormal(0.0, sigma, size=size)
