"""
Inference on fitted survey GLMs: predictions with confidence bands,
information criteria and design-adjusted Wald tests.
"""

import logging
from typing import Optional

import numpy as np
import pandas as pd
from scipy import stats
from scipy.special import expit

from .. import config
from .errors import InvalidInputError
from .glm import FittedModel
from .weights import critical_value

logger = logging.getLogger(__name__)


def predict_with_ci(
    model: FittedModel,
    newdata: pd.DataFrame,
    confidence: float = config.DEFAULT_CONFIDENCE,
) -> pd.DataFrame:
    """
    Predicted probabilities with delta-method standard errors.

    The interval is formed on the logit scale and back-transformed, so it
    always lies in [0, 1].

    Args:
        model: Fitted model
        newdata: Covariate rows
        confidence: Confidence level (0.90, 0.95 and 0.99 are used in plots)

    Returns:
        Copy of ``newdata`` with columns link, link_se, fit, se, ci_lower, ci_upper
    """
    if not 0.0 < confidence < 1.0:
        raise InvalidInputError(f"Confidence level must be in (0, 1), got {confidence}")

    X = model.model_matrix(newdata)
    link = X @ model.coefficients
    link_se = np.sqrt(np.einsum("ij,jk,ik->i", X, model.cov, X))

    fit = expit(link)
    z = critical_value(confidence)

    out = newdata.copy()
    out["link"] = link
    out["link_se"] = link_se
    out["fit"] = fit
    # d expit(eta) / d eta = p (1 - p)
    out["se"] = fit * (1 - fit) * link_se
    out["ci_lower"] = expit(link - z * link_se)
    out["ci_upper"] = expit(link + z * link_se)
    out["confidence"] = confidence
    return out


def prediction_grid(
    model: FittedModel,
    age_range: tuple[float, float] = config.AGE_GRID_RANGE,
    n_points: int = config.AGE_GRID_POINTS,
    fixed: Optional[dict[str, str]] = None,
    by: Optional[str] = None,
    confidence: float = config.DEFAULT_CONFIDENCE,
) -> pd.DataFrame:
    """
    Dense age grid of predictions for smooth-curve plotting.

    Categorical variables the model uses but not given in ``fixed`` (or
    ``by``) are held at their reference level.

    Args:
        model: Fitted model
        age_range: (start, end) in decades
        n_points: Number of grid points
        fixed: Categorical values to hold constant, e.g. {"sex": "female"}
        by: Categorical variable to vary, one curve per level
        confidence: Confidence level

    Returns:
        Prediction DataFrame (see predict_with_ci)
    """
    if n_points < 2:
        raise InvalidInputError(f"n_points must be >= 2, got {n_points}")

    ages = np.linspace(age_range[0], age_range[1], n_points)
    fixed = dict(fixed or {})

    categorical = [v for v in model.spec.variables if v in config.RECODE_TABLES]
    for var in categorical:
        fixed.setdefault(var, config.category_levels(var)[0])

    if by is not None:
        if by not in config.RECODE_TABLES:
            raise InvalidInputError(f"Cannot vary non-categorical variable '{by}'")
        by_levels = config.category_levels(by)
    else:
        by_levels = [None]

    frames = []
    for level in by_levels:
        grid = pd.DataFrame({"age_in_decades": ages})
        for var, value in fixed.items():
            grid[var] = value
        if by is not None:
            grid[by] = level
        frames.append(grid)

    grid = pd.concat(frames, ignore_index=True)
    result = predict_with_ci(model, grid, confidence)
    result.insert(0, "model", model.name)
    return result


def log_likelihood(model: FittedModel) -> float:
    """Weighted binomial log-likelihood (rescaled weights)."""
    mu = model.fitted
    y = model.response
    return float(np.sum(model.weights * (y * np.log(mu) + (1 - y) * np.log(1 - mu))))


def aic(model: FittedModel, k: float = 2.0) -> float:
    """AIC = -2 loglik + k * (number of coefficients)."""
    return -2.0 * log_likelihood(model) + k * model.n_params


def design_effective_params(model: FittedModel) -> float:
    """Trace of V0^{-1} V: the design-adjusted parameter count."""
    delta = np.linalg.solve(model.naive_cov, model.cov)
    return float(np.trace(delta))


def design_aic(model: FittedModel, k: float = 2.0) -> float:
    """
    Design-based AIC (Lumley & Scott 2015): deviance + k * tr(V0^{-1} V).

    Reference:
        Lumley, T. and Scott, A. (2015). AIC and BIC for modeling with
        complex survey data. J. Survey Stat. Methodol. 3, 1-18.
    """
    return model.deviance + k * design_effective_params(model)


def _wald_f(
    coefficients: np.ndarray,
    cov: np.ndarray,
    index: list[int],
    df_denominator: int,
) -> tuple[float, int, float]:
    """Wald F statistic and p-value for H0: coefficients[index] == 0."""
    b = coefficients[index]
    v = cov[np.ix_(index, index)]
    chisq = float(b @ np.linalg.solve(v, b))
    q = len(index)
    f_stat = chisq / q
    if df_denominator > 0:
        p_value = float(stats.f.sf(f_stat, q, df_denominator))
    else:
        p_value = float(stats.chi2.sf(chisq, q))
    return f_stat, q, p_value


def wald_term_tests(model: FittedModel) -> pd.DataFrame:
    """
    Design-adjusted Wald F test for every term of a model.

    Each term is tested over all of its coefficients with denominator df
    equal to design df - p + 1.
    """
    rows = []
    for term, index in model.term_columns.items():
        f_stat, q, p_value = _wald_f(model.coefficients, model.cov, index, model.df_residual)
        rows.append(
            {
                "model": model.name,
                "term": term,
                "f_statistic": f_stat,
                "df_num": q,
                "df_den": model.df_residual,
                "p_value": p_value,
            }
        )
    return pd.DataFrame(rows)


def compare_nested(small: FittedModel, large: FittedModel) -> dict:
    """
    Wald F test of the coefficients the larger model adds.

    Raises:
        InvalidInputError: If ``small`` is not nested in ``large``
    """
    extra_names = [c for c in large.coef_names if c not in small.coef_names]
    missing = [c for c in small.coef_names if c not in large.coef_names]
    if missing or not extra_names:
        raise InvalidInputError(
            f"Model '{small.name}' is not nested in '{large.name}' (unmatched: {missing})"
        )

    index = [large.coef_names.index(c) for c in extra_names]
    f_stat, q, p_value = _wald_f(large.coefficients, large.cov, index, large.df_residual)

    return {
        "small": small.name,
        "large": large.name,
        "added_terms": [t for t in large.spec.terms if t not in small.spec.terms],
        "f_statistic": f_stat,
        "df_num": q,
        "df_den": large.df_residual,
        "p_value": p_value,
    }


def model_comparison_table(models: dict[str, FittedModel]) -> pd.DataFrame:
    """One row per model with AIC, design AIC, deviance and dispersion."""
    rows = []
    for name, model in models.items():
        rows.append(
            {
                "model": name,
                "label": model.spec.label,
                "n_params": model.n_params,
                "deviance": model.deviance,
                "null_deviance": model.null_deviance,
                "aic": aic(model),
                "design_aic": design_aic(model),
                "eff_params": design_effective_params(model),
                "dispersion": model.dispersion,
            }
        )
    return pd.DataFrame(rows)
