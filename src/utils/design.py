"""
Complex survey design construction and design-based estimation.

The GSS design used here:
- Strata: interaction of survey year and variance stratum (vstrat)
- Clusters: variance PSUs (vpsu), numbered within stratum, so nested
- Weights: wtssall

Variance is estimated by Taylor linearization (with-replacement PSU
estimator) or by Rao-Wu bootstrap replicate weights. Strata holding a
single PSU are handled by the configured LonelyPSUPolicy.
"""

import logging
from dataclasses import dataclass, replace
from typing import Callable, Optional, Union

import numpy as np
import pandas as pd

from .. import config
from ..config import LonelyPSUPolicy, VarianceMethod
from .errors import DesignError, InvalidInputError
from .weights import (
    RaoWuBootstrapWeights,
    confidence_interval,
    logit_confidence_interval,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class SurveyDesign:
    """Weighted analysis frame with stratum and cluster structure."""

    frame: pd.DataFrame
    strata: np.ndarray
    clusters: np.ndarray  # Globally unique (stratum-qualified) PSU labels
    weights: np.ndarray
    lonely_psu: LonelyPSUPolicy = LonelyPSUPolicy.ADJUST
    variance_method: VarianceMethod = VarianceMethod.LINEARIZATION
    lonely_strata: tuple = ()
    replicate_weights: Optional[np.ndarray] = None

    @property
    def n_strata(self) -> int:
        return len(pd.unique(self.strata))

    @property
    def n_psu(self) -> int:
        return len(pd.unique(self.clusters))

    @property
    def degrees_of_freedom(self) -> int:
        """Design degrees of freedom: #PSU - #strata."""
        return self.n_psu - self.n_strata

    def __len__(self) -> int:
        return len(self.frame)


@dataclass
class SurveyEstimate:
    """Design-based point estimate with uncertainty."""

    estimate: float
    se: float
    ci_lower: float
    ci_upper: float
    confidence: float
    df: int
    n_unweighted: int
    n_weighted: float


def _stratum_labels(frame: pd.DataFrame, stratum_cols: tuple[str, ...]) -> np.ndarray:
    """Cartesian interaction of the stratum columns as string labels."""
    parts = [frame[col].astype(int).astype(str) for col in stratum_cols]
    labels = parts[0]
    for part in parts[1:]:
        labels = labels + "_" + part
    return labels.to_numpy()


def find_lonely_strata(strata: np.ndarray, clusters: np.ndarray) -> list:
    """Strata that contain fewer than two distinct PSUs."""
    psu_counts = (
        pd.DataFrame({"stratum": strata, "cluster": clusters})
        .groupby("stratum", sort=True)["cluster"]
        .nunique()
    )
    return psu_counts[psu_counts < config.MIN_PSU_PER_STRATUM].index.tolist()


def build_survey_design(
    cleaned: pd.DataFrame,
    analysis_config: Optional[config.AnalysisConfig] = None,
) -> SurveyDesign:
    """
    Attach sampling metadata to the cleaned table.

    Args:
        cleaned: Cleaned respondent table
        analysis_config: Design column names and lonely-PSU policy

    Returns:
        SurveyDesign

    Raises:
        SchemaError: If a design column is absent
        DesignError: If design fields are missing or invalid, or a lonely
            PSU is found under the FAIL policy
    """
    cfg = (analysis_config or config.AnalysisConfig()).validate()

    design_cols = [*cfg.stratum_cols, cfg.cluster_col, cfg.weight_col]
    config.validate_required_columns(cleaned, design_cols, context="survey design")

    n_missing = cleaned[design_cols].isna().any(axis=1).sum()
    if n_missing > 0:
        raise DesignError(
            f"{n_missing:,} records are missing stratum, cluster or weight "
            f"({', '.join(design_cols)})"
        )

    weights = cleaned[cfg.weight_col].to_numpy(dtype=float)
    if (weights < 0).any():
        raise DesignError(f"Negative weights found in '{cfg.weight_col}'")
    if weights.sum() <= 0:
        raise DesignError(f"Weights in '{cfg.weight_col}' sum to zero")

    frame = cleaned.reset_index(drop=True)
    strata = _stratum_labels(frame, cfg.stratum_cols)

    cluster_raw = frame[cfg.cluster_col].astype(int).astype(str).to_numpy()
    if cfg.nest:
        # PSU ids repeat across strata; qualify them by stratum
        clusters = (pd.Series(strata) + ":" + pd.Series(cluster_raw)).to_numpy()
    else:
        clusters = cluster_raw
        shared = (
            pd.DataFrame({"stratum": strata, "cluster": clusters})
            .groupby("cluster")["stratum"]
            .nunique()
        )
        if (shared > 1).any():
            raise DesignError(
                "Cluster ids appear in more than one stratum; use a nested design"
            )

    lonely = find_lonely_strata(strata, clusters)
    if lonely:
        if cfg.lonely_psu == LonelyPSUPolicy.FAIL:
            raise DesignError(
                f"{len(lonely)} strata contain a single PSU: {lonely[:10]}"
            )
        logger.warning(
            f"{len(lonely)} strata contain a single PSU; applying "
            f"lonely-PSU policy '{cfg.lonely_psu.value}': {lonely[:10]}"
        )

    replicate_weights = None
    if cfg.variance_method == VarianceMethod.BOOTSTRAP:
        generator = RaoWuBootstrapWeights(cfg.n_replicates, random_state=cfg.random_seed)
        replicate_weights = generator.generate(weights, strata, clusters)
        logger.info(f"Generated {cfg.n_replicates} bootstrap replicate weights")

    design = SurveyDesign(
        frame=frame,
        strata=strata,
        clusters=clusters,
        weights=weights,
        lonely_psu=cfg.lonely_psu,
        variance_method=cfg.variance_method,
        lonely_strata=tuple(lonely),
        replicate_weights=replicate_weights,
    )

    logger.info(
        f"Survey design: {len(frame):,} records, {design.n_strata} strata, "
        f"{design.n_psu} PSUs, df={design.degrees_of_freedom}"
    )
    return design


def subset_design(design: SurveyDesign, mask: Union[pd.Series, np.ndarray]) -> SurveyDesign:
    """
    Restrict estimation to a domain while keeping the full design structure.

    Records outside the domain keep their PSU membership but get zero weight.
    """
    mask = np.asarray(mask, dtype=bool)
    if mask.shape[0] != len(design):
        raise InvalidInputError(
            f"Domain mask has {mask.shape[0]} entries, design has {len(design)}"
        )

    replicate_weights = design.replicate_weights
    if replicate_weights is not None:
        replicate_weights = replicate_weights * mask[:, np.newaxis]

    return replace(
        design,
        weights=design.weights * mask,
        replicate_weights=replicate_weights,
    )


def design_total_variance(design: SurveyDesign, scores: np.ndarray) -> Union[float, np.ndarray]:
    """
    Linearization variance of the total of per-record score vectors.

    V = sum_h n_h/(n_h - 1) * sum_i (z_hi - zbar_h)(z_hi - zbar_h)'

    where z_hi is the PSU total of the scores. Lonely strata follow the
    design's LonelyPSUPolicy. Under AVERAGE each lonely stratum adds the
    mean per-PSU contribution of the regular strata, i.e. the average of
    contribution_h / n_h, not the average per-stratum contribution.

    Args:
        design: Survey design
        scores: Weighted per-record contributions, shape (n,) or (n, p)

    Returns:
        Scalar variance for 1-d scores, otherwise a (p, p) covariance matrix
    """
    scores = np.asarray(scores, dtype=float)
    is_vector = scores.ndim == 1
    if is_vector:
        scores = scores[:, np.newaxis]
    if scores.shape[0] != len(design):
        raise InvalidInputError(
            f"Scores have {scores.shape[0]} rows, design has {len(design)}"
        )

    psu_totals = pd.DataFrame(scores).groupby(
        [design.strata, design.clusters], sort=False
    ).sum()
    totals = psu_totals.to_numpy()
    psu_strata = psu_totals.index.get_level_values(0).to_numpy()
    grand_mean = totals.mean(axis=0)

    p = scores.shape[1]
    variance = np.zeros((p, p))
    regular: list[np.ndarray] = []
    n_lonely = 0

    for stratum in pd.unique(psu_strata):
        t = totals[psu_strata == stratum]
        n_h = t.shape[0]

        if n_h > 1:
            centred = t - t.mean(axis=0)
            contribution = n_h / (n_h - 1) * centred.T @ centred
            variance += contribution
            regular.append(contribution / n_h)
            continue

        n_lonely += 1
        if design.lonely_psu == LonelyPSUPolicy.ADJUST:
            centred = t - grand_mean
            variance += centred.T @ centred
        elif design.lonely_psu == LonelyPSUPolicy.FAIL:
            raise DesignError(f"Stratum {stratum} contains a single PSU")
        # REMOVE and CERTAINTY contribute nothing; AVERAGE is filled in below

    if n_lonely and design.lonely_psu == LonelyPSUPolicy.AVERAGE and regular:
        variance += n_lonely * np.mean(regular, axis=0)

    return float(variance[0, 0]) if is_vector else variance


def replicate_variance(
    design: SurveyDesign,
    estimate: Union[float, np.ndarray],
    estimator: Callable[[np.ndarray], Union[float, np.ndarray]],
) -> Union[float, np.ndarray]:
    """
    Bootstrap variance: re-run ``estimator`` under each replicate weight.

    Args:
        design: Survey design carrying replicate weights
        estimate: Full-sample estimate
        estimator: Function mapping a weight vector to an estimate

    Returns:
        Scalar variance or (p, p) covariance matrix
    """
    if design.replicate_weights is None:
        raise DesignError("Design has no replicate weights; use variance_method='bootstrap'")

    n_reps = design.replicate_weights.shape[1]
    replicates = np.array([estimator(design.replicate_weights[:, r]) for r in range(n_reps)])
    generator = RaoWuBootstrapWeights(max(n_reps, 2))
    return generator._compute_replicate_variance(estimate, replicates)


def _ratio_mean(values: np.ndarray, weights: np.ndarray) -> float:
    total = weights.sum()
    return float(np.sum(weights * values) / total) if total > 0 else np.nan


def _mean_with_variance(design: SurveyDesign, values: np.ndarray) -> tuple[float, float, np.ndarray]:
    """Weighted mean and its design variance; missing values drop out as a domain."""
    present = ~np.isnan(values)
    if not present.all():
        design = subset_design(design, present)
    values = np.where(present, values, 0.0)
    weights = design.weights

    mean = _ratio_mean(values, weights)
    if np.isnan(mean):
        return np.nan, np.nan, weights

    if design.variance_method == VarianceMethod.BOOTSTRAP:
        variance = replicate_variance(design, mean, lambda w: _ratio_mean(values, w))
    else:
        scores = weights * (values - mean) / weights.sum()
        variance = design_total_variance(design, scores)

    return mean, float(variance), weights


def svy_mean(
    design: SurveyDesign,
    column: str,
    confidence: float = config.DEFAULT_CONFIDENCE,
) -> SurveyEstimate:
    """
    Design-based weighted mean with a t interval on design df.

    Args:
        design: Survey design
        column: Numeric column in design.frame
        confidence: Confidence level

    Returns:
        SurveyEstimate
    """
    config.validate_required_columns(design.frame, [column], context="svy_mean")
    values = design.frame[column].to_numpy(dtype=float)

    mean, variance, weights = _mean_with_variance(design, values)
    se = np.sqrt(variance)
    lower, upper = confidence_interval(mean, se, confidence, df=design.degrees_of_freedom)

    return SurveyEstimate(
        estimate=mean,
        se=se,
        ci_lower=lower,
        ci_upper=upper,
        confidence=confidence,
        df=design.degrees_of_freedom,
        n_unweighted=int((weights > 0).sum()),
        n_weighted=float(weights.sum()),
    )


def svy_proportion(
    design: SurveyDesign,
    column: str,
    level: Optional[str] = None,
    confidence: float = config.DEFAULT_CONFIDENCE,
) -> SurveyEstimate:
    """
    Design-based proportion with a logit-scale interval.

    Args:
        design: Survey design
        column: 0/1 indicator column, or a categorical column with ``level``
        level: If given, the proportion of records where column == level
        confidence: Confidence level

    Returns:
        SurveyEstimate whose estimate and bounds lie in [0, 1]

    Raises:
        InvalidInputError: If the indicator is not binary
    """
    config.validate_required_columns(design.frame, [column], context="svy_proportion")
    series = design.frame[column]

    if level is not None:
        values = np.where(series.isna(), np.nan, (series == level).astype(float))
    else:
        values = series.to_numpy(dtype=float)
        observed = np.unique(values[~np.isnan(values)])
        if not set(observed).issubset({0.0, 1.0}):
            raise InvalidInputError(
                f"Column '{column}' must be binary (0/1), found values: {observed[:10]}"
            )

    prop, variance, weights = _mean_with_variance(design, values)
    se = np.sqrt(variance)
    lower, upper = logit_confidence_interval(prop, se, confidence, df=design.degrees_of_freedom)

    return SurveyEstimate(
        estimate=prop,
        se=se,
        ci_lower=lower,
        ci_upper=upper,
        confidence=confidence,
        df=design.degrees_of_freedom,
        n_unweighted=int((weights > 0).sum()),
        n_weighted=float(weights.sum()),
    )


def svy_by(
    design: SurveyDesign,
    column: str,
    by: Union[str, list[str]],
    confidence: float = config.DEFAULT_CONFIDENCE,
    proportion: bool = True,
) -> pd.DataFrame:
    """
    Domain estimates of a mean or proportion for each level of ``by``.

    Args:
        design: Survey design
        column: Column to estimate
        by: Grouping column(s)
        confidence: Confidence level
        proportion: Use svy_proportion (True) or svy_mean (False)

    Returns:
        DataFrame with one row per group
    """
    by = [by] if isinstance(by, str) else list(by)
    config.validate_required_columns(design.frame, by, context="svy_by")

    estimate_fn = svy_proportion if proportion else svy_mean
    results = []

    for key, group in design.frame.groupby(by, observed=True, sort=True):
        key = key if isinstance(key, tuple) else (key,)
        mask = design.frame.index.isin(group.index)
        est = estimate_fn(subset_design(design, mask), column, confidence=confidence)
        row = dict(zip(by, key))
        row.update(
            {
                "estimate": est.estimate,
                "se": est.se,
                "ci_lower": est.ci_lower,
                "ci_upper": est.ci_upper,
                "n_unweighted": est.n_unweighted,
                "n_weighted": est.n_weighted,
            }
        )
        results.append(row)

    return pd.DataFrame(results)
