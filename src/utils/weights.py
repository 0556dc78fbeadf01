"""
Survey weight calculations and replicate-weight variance utilities.

Replicate weights follow the Rao-Wu rescaled bootstrap: within each stratum
n_h - 1 PSUs are drawn with replacement and weights are rescaled by
n_h / (n_h - 1) times the number of draws.
"""

import logging
from typing import Optional, Union

import numpy as np
import pandas as pd
from scipy import stats

from .errors import InvalidInputError

logger = logging.getLogger(__name__)


def weighted_count(
    weights: Union[pd.Series, np.ndarray],
    mask: Optional[Union[pd.Series, np.ndarray]] = None,
) -> float:
    """
    Compute weighted count (sum of weights).

    Args:
        weights: Survey weights
        mask: Optional boolean mask for subsetting

    Returns:
        Sum of weights (population estimate)
    """
    weights = np.asarray(weights, dtype=float)

    if mask is not None:
        mask = np.asarray(mask)
        weights = weights[mask]

    return np.nansum(weights)


def rescale_to_mean_one(weights: Union[pd.Series, np.ndarray]) -> np.ndarray:
    """Rescale weights so they average 1 (leaves estimating equations unchanged)."""
    weights = np.asarray(weights, dtype=float)
    mean_w = weights.mean() if len(weights) else np.nan
    if not mean_w > 0:
        raise InvalidInputError("Cannot rescale weights with non-positive mean")
    return weights / mean_w


class RaoWuBootstrapWeights:
    """
    Rescaled bootstrap replicate weights for a stratified cluster design.

    Var(theta) = (1/R) * sum_r (theta_r - theta)^2

    Strata with a single PSU cannot be resampled; their units keep the
    full-sample weight in every replicate and so contribute no variance.

    Reference:
    Rao, J.N.K. and Wu, C.F.J. (1988). Resampling inference with complex
    survey data. JASA 83, 231-241.
    """

    def __init__(self, n_replicates: int = 200, random_state: Optional[int] = None):
        """
        Initialize replicate-weight generator.

        Args:
            n_replicates: Number of bootstrap replicates (R)
            random_state: Random seed for reproducibility
        """
        if n_replicates < 2:
            raise ValueError(f"n_replicates must be >= 2, got {n_replicates}")
        self.n_replicates = n_replicates
        self.random_state = random_state

    def generate(
        self,
        weights: np.ndarray,
        strata: np.ndarray,
        clusters: np.ndarray,
    ) -> np.ndarray:
        """
        Build the replicate weight matrix.

        Args:
            weights: Full-sample weights, shape (n,)
            strata: Stratum label per record
            clusters: Cluster label per record, unique within stratum

        Returns:
            Array of shape (n, n_replicates)
        """
        rng = np.random.default_rng(self.random_state)
        weights = np.asarray(weights, dtype=float)
        strata = np.asarray(strata)
        clusters = np.asarray(clusters)

        reps = np.repeat(weights[:, np.newaxis], self.n_replicates, axis=1)

        for stratum in pd.unique(strata):
            in_stratum = strata == stratum
            psus, psu_index = np.unique(clusters[in_stratum], return_inverse=True)
            n_h = len(psus)
            if n_h < 2:
                continue

            # Draw n_h - 1 PSUs with replacement for each replicate
            draws = rng.integers(0, n_h, size=(n_h - 1, self.n_replicates))
            counts = np.zeros((n_h, self.n_replicates))
            for r in range(self.n_replicates):
                counts[:, r] = np.bincount(draws[:, r], minlength=n_h)

            multipliers = counts * n_h / (n_h - 1)
            reps[in_stratum, :] = weights[in_stratum, np.newaxis] * multipliers[psu_index, :]

        return reps

    def _compute_replicate_variance(
        self,
        main_estimate: Union[float, np.ndarray],
        replicate_estimates: np.ndarray,
    ) -> np.ndarray:
        """
        Compute bootstrap variance (or covariance matrix for vector estimates).

        Args:
            main_estimate: Estimate from full-sample weights
            replicate_estimates: Shape (R,) or (R, p)

        Returns:
            Scalar variance or (p, p) covariance matrix
        """
        reps = np.asarray(replicate_estimates, dtype=float)
        centred = reps - np.asarray(main_estimate, dtype=float)
        if centred.ndim == 1:
            return np.mean(centred**2)
        return centred.T @ centred / reps.shape[0]


def critical_value(confidence: float = 0.95, df: Optional[float] = None) -> float:
    """Two-sided critical value; Student t when finite positive df is given."""
    alpha = 1 - confidence
    if df is not None and np.isfinite(df) and df > 0:
        return stats.t.ppf(1 - alpha / 2, df)
    return stats.norm.ppf(1 - alpha / 2)


def confidence_interval(
    estimate: float,
    se: float,
    confidence: float = 0.95,
    df: Optional[float] = None,
) -> tuple[float, float]:
    """
    Compute confidence interval.

    Args:
        estimate: Point estimate
        se: Standard error
        confidence: Confidence level (default 0.95 for 95% CI)
        df: Optional degrees of freedom for a t-based interval

    Returns:
        Tuple of (lower, upper) bounds
    """
    z = critical_value(confidence, df)

    lower = estimate - z * se
    upper = estimate + z * se

    return lower, upper


def logit_confidence_interval(
    proportion: float,
    se: float,
    confidence: float = 0.95,
    df: Optional[float] = None,
) -> tuple[float, float]:
    """
    Confidence interval for a proportion built on the logit scale.

    The bounds always lie in [0, 1] and bracket the estimate.

    Args:
        proportion: Estimated proportion
        se: Standard error on the proportion scale
        confidence: Confidence level
        df: Optional degrees of freedom for a t-based interval

    Returns:
        Tuple of (lower, upper) bounds
    """
    if proportion <= 0.0 or proportion >= 1.0 or not np.isfinite(se):
        return float(proportion), float(proportion)

    z = critical_value(confidence, df)
    logit = np.log(proportion / (1 - proportion))
    logit_se = se / (proportion * (1 - proportion))

    lower = 1 / (1 + np.exp(-(logit - z * logit_se)))
    upper = 1 / (1 + np.exp(-(logit + z * logit_se)))

    return float(lower), float(upper)
