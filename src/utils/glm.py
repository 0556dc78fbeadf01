"""
Survey-weighted logistic regression (quasi-binomial) fitted by IRLS.

Coefficients solve the weighted score equations
    sum_i w_i x_i (y_i - mu_i) = 0
and their covariance is the design-based sandwich
    V = A^{-1} Var_design(sum_i U_i) A^{-1},   U_i = w_i x_i (y_i - mu_i)
with A = X' diag(w mu (1 - mu)) X. Weights are rescaled to mean one, which
changes the deviance scale but not the coefficients or their covariance.
"""

import logging
from dataclasses import dataclass, field
from typing import Final, Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy import stats
from scipy.special import expit, xlogy

from .. import config
from ..config import VarianceMethod
from .design import SurveyDesign, design_total_variance, replicate_variance
from .errors import ConvergenceError, InvalidInputError
from .weights import critical_value, rescale_to_mean_one

logger = logging.getLogger(__name__)

# Keeps log(mu) finite when a fit drifts towards separation
_MU_EPS: Final[float] = 1e-10


@dataclass(frozen=True)
class ModelSpec:
    """Main effects and pairwise interactions ("a:b") for one model."""

    name: str
    terms: tuple[str, ...]
    label: str = ""

    @property
    def variables(self) -> list[str]:
        seen: list[str] = []
        for term in self.terms:
            for var in term.split(":"):
                if var not in seen:
                    seen.append(var)
        return seen


MODEL_SPECS: Final[dict[str, ModelSpec]] = {
    "simple": ModelSpec(
        name="simple",
        terms=("age_in_decades",),
        label="Age",
    ),
    "sex_interaction": ModelSpec(
        name="sex_interaction",
        terms=("age_in_decades", "sex", "age_in_decades:sex"),
        label="Age x Sex",
    ),
    "full": ModelSpec(
        name="full",
        terms=(
            "age_in_decades",
            "sex",
            "nativity",
            "sector",
            "age_in_decades:sex",
            "sector:sex",
        ),
        label="Age x Sex + Nativity + Sector x Sex",
    ),
}


@dataclass(frozen=True, eq=False)
class IRLSResult:
    """Output of a single IRLS fit."""

    coefficients: np.ndarray
    cov_unscaled: np.ndarray  # (X' W X)^{-1} at convergence
    deviance: float
    n_iter: int
    fitted: np.ndarray
    working_weights: np.ndarray


def binomial_deviance(y: np.ndarray, mu: np.ndarray, weights: np.ndarray) -> float:
    """Weighted binomial deviance, valid for y anywhere in [0, 1]."""
    mu = np.clip(mu, _MU_EPS, 1 - _MU_EPS)
    terms = xlogy(y, y / mu) + xlogy(1 - y, (1 - y) / (1 - mu))
    return float(2.0 * np.sum(weights * terms))


def irls_logistic(
    X: np.ndarray,
    y: np.ndarray,
    weights: Optional[np.ndarray] = None,
    tol: float = config.IRLS_TOLERANCE,
    max_iter: int = config.IRLS_MAX_ITER,
) -> IRLSResult:
    """
    Fit a weighted logistic regression by iteratively reweighted least squares.

    Pure function: no logging, no shared state.

    Convergence: |dev - dev_old| / (|dev| + 0.1) < tol

    Args:
        X: Design matrix, shape (n, p)
        y: Response in [0, 1], shape (n,)
        weights: Prior weights, shape (n,); defaults to ones
        tol: Relative deviance tolerance
        max_iter: Maximum number of iterations

    Returns:
        IRLSResult

    Raises:
        InvalidInputError: On shape mismatch or a response outside [0, 1]
        ConvergenceError: If the loop does not converge or X'WX is singular
    """
    if max_iter < 1:
        raise ValueError(f"max_iter must be >= 1, got {max_iter}")
    X = np.asarray(X, dtype=float)
    y = np.asarray(y, dtype=float)
    if X.ndim != 2 or X.shape[0] != y.shape[0]:
        raise InvalidInputError(f"X has shape {X.shape}, y has {y.shape[0]} rows")
    weights = np.ones_like(y) if weights is None else np.asarray(weights, dtype=float)
    if weights.shape != y.shape:
        raise InvalidInputError(f"weights have shape {weights.shape}, expected {y.shape}")
    if np.isnan(X).any() or np.isnan(y).any() or np.isnan(weights).any():
        raise InvalidInputError("X, y and weights must not contain NaN")
    if (y < 0).any() or (y > 1).any():
        raise InvalidInputError("Response must lie in [0, 1]")

    # Same starting values as R's binomial()$initialize
    mu = (weights * y + 0.5) / (weights + 1.0)
    eta = np.log(mu / (1 - mu))
    dev_old = binomial_deviance(y, mu, weights)

    beta = np.zeros(X.shape[1])
    converged = False
    n_iter = 0

    for n_iter in range(1, max_iter + 1):
        variance = mu * (1 - mu)
        z = eta + (y - mu) / variance
        w_work = weights * variance

        xtw = X.T * w_work
        try:
            beta = np.linalg.solve(xtw @ X, xtw @ z)
        except np.linalg.LinAlgError as e:
            raise ConvergenceError(f"Singular weighted cross-product at iteration {n_iter}") from e

        eta = X @ beta
        mu = np.clip(expit(eta), _MU_EPS, 1 - _MU_EPS)
        dev = binomial_deviance(y, mu, weights)

        if abs(dev - dev_old) / (abs(dev) + 0.1) < tol:
            converged = True
            break
        dev_old = dev

    if not converged:
        raise ConvergenceError(
            f"IRLS did not converge in {max_iter} iterations "
            f"(last deviance {dev:.6f}, tolerance {tol})"
        )

    w_work = weights * mu * (1 - mu)
    try:
        cov_unscaled = np.linalg.inv((X.T * w_work) @ X)
    except np.linalg.LinAlgError as e:
        raise ConvergenceError("Singular information matrix at convergence") from e

    return IRLSResult(
        coefficients=beta,
        cov_unscaled=cov_unscaled,
        deviance=dev,
        n_iter=n_iter,
        fitted=mu,
        working_weights=w_work,
    )


@dataclass(frozen=True, eq=False)
class ModelMatrix:
    """Design matrix with column names and the columns belonging to each term."""

    X: np.ndarray
    names: list[str]
    term_columns: dict[str, list[int]] = field(default_factory=dict)


def _variable_block(frame: pd.DataFrame, var: str) -> dict[str, np.ndarray]:
    """Columns for one variable: itself if numeric, treatment dummies if categorical."""
    config.validate_required_columns(frame, [var], context="model matrix")
    series = frame[var]

    if var in config.RECODE_TABLES:
        levels = config.category_levels(var)
    elif isinstance(series.dtype, pd.CategoricalDtype):
        levels = list(series.cat.categories)
    else:
        values = pd.to_numeric(series, errors="coerce").to_numpy(dtype=float)
        if np.isnan(values).any():
            raise InvalidInputError(f"Predictor '{var}' contains missing or non-numeric values")
        return {var: values}

    if series.isna().any():
        raise InvalidInputError(f"Predictor '{var}' contains missing values")
    unknown = sorted(set(series.astype(str)) - set(levels))
    if unknown:
        raise InvalidInputError(f"Predictor '{var}' has unknown levels {unknown}; expected {levels}")

    # First level is the reference
    return {f"{var}{level}": (series.astype(str) == level).to_numpy(dtype=float) for level in levels[1:]}


def build_model_matrix(frame: pd.DataFrame, spec: ModelSpec) -> ModelMatrix:
    """
    Build an intercept-plus-terms design matrix with treatment contrasts.

    Interaction columns are products of the component columns, named
    like ``age_in_decades:sexfemale``.
    """
    n = len(frame)
    columns: dict[str, np.ndarray] = {"(Intercept)": np.ones(n)}
    term_columns: dict[str, list[int]] = {}

    blocks = {var: _variable_block(frame, var) for var in spec.variables}

    for term in spec.terms:
        parts = term.split(":")
        if len(parts) > 2:
            raise ValueError(f"Only pairwise interactions are supported, got '{term}'")

        block = blocks[parts[0]]
        for var in parts[1:]:
            block = {
                f"{left}:{right}": left_col * right_col
                for left, left_col in block.items()
                for right, right_col in blocks[var].items()
            }

        start = len(columns)
        columns.update(block)
        term_columns[term] = list(range(start, len(columns)))

    names = list(columns)
    return ModelMatrix(X=np.column_stack([columns[c] for c in names]), names=names, term_columns=term_columns)


@dataclass(frozen=True, eq=False)
class FittedModel:
    """Immutable survey-weighted logistic regression fit."""

    spec: ModelSpec
    coef_names: list[str]
    coefficients: np.ndarray
    cov: np.ndarray  # Design-based covariance
    naive_cov: np.ndarray  # Model-based (X'WX)^{-1}, rescaled weights
    dispersion: float
    deviance: float
    null_deviance: float
    fitted: np.ndarray
    response: np.ndarray
    weights: np.ndarray  # Rescaled prior weights
    n_iter: int
    df_design: int
    term_columns: dict[str, list[int]]

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def n_params(self) -> int:
        return len(self.coefficients)

    @property
    def df_residual(self) -> int:
        """Denominator df for Wald tests: design df - p + 1."""
        return self.df_design - self.n_params + 1

    @property
    def se(self) -> np.ndarray:
        return np.sqrt(np.diag(self.cov))

    def model_matrix(self, newdata: pd.DataFrame) -> np.ndarray:
        mm = build_model_matrix(newdata, self.spec)
        if mm.names != self.coef_names:
            raise InvalidInputError(f"New data encodes {mm.names}, model has {self.coef_names}")
        return mm.X

    def linear_predictor(self, newdata: pd.DataFrame) -> np.ndarray:
        return self.model_matrix(newdata) @ self.coefficients

    def predict(self, newdata: pd.DataFrame) -> np.ndarray:
        """Predicted probabilities for new covariate rows."""
        return expit(self.linear_predictor(newdata))

    def coef_table(self, confidence: float = config.DEFAULT_CONFIDENCE) -> pd.DataFrame:
        """Estimate, SE, confidence bounds, t statistic and p-value per coefficient."""
        se = self.se
        t_values = self.coefficients / se
        df = self.df_residual
        crit = critical_value(confidence, df)
        if df > 0:
            p_values = 2 * stats.t.sf(np.abs(t_values), df)
        else:
            p_values = 2 * stats.norm.sf(np.abs(t_values))

        return pd.DataFrame(
            {
                "term": self.coef_names,
                "estimate": self.coefficients,
                "se": se,
                "ci_lower": self.coefficients - crit * se,
                "ci_upper": self.coefficients + crit * se,
                "t_value": t_values,
                "p_value": p_values,
            }
        )


def fit_survey_glm(
    design: SurveyDesign,
    spec: ModelSpec,
    response: str = config.RESPONSE_COLUMN,
    tol: float = config.IRLS_TOLERANCE,
    max_iter: int = config.IRLS_MAX_ITER,
    rescale_weights: bool = True,
) -> FittedModel:
    """
    Fit a quasi-binomial logistic regression against a survey design.

    Args:
        design: Survey design
        spec: Term specification
        response: 0/1 response column
        tol: IRLS deviance tolerance
        max_iter: IRLS iteration cap
        rescale_weights: Rescale weights to mean one before fitting

    Returns:
        FittedModel with design-based covariance

    Raises:
        ConvergenceError: If IRLS fails
        InvalidInputError: If the response is not binary
    """
    config.validate_required_columns(design.frame, [response], context=f"model '{spec.name}'")
    y = design.frame[response].to_numpy(dtype=float)
    if not set(np.unique(y)).issubset({0.0, 1.0}):
        raise InvalidInputError(f"Response '{response}' must be 0/1")

    mm = build_model_matrix(design.frame, spec)
    X = mm.X
    w = rescale_to_mean_one(design.weights) if rescale_weights else design.weights.astype(float)

    result = irls_logistic(X, y, w, tol=tol, max_iter=max_iter)
    mu = result.fitted

    if design.variance_method == VarianceMethod.BOOTSTRAP:

        def refit(rep_weights: np.ndarray) -> np.ndarray:
            rep_w = rescale_to_mean_one(rep_weights) if rescale_weights else rep_weights
            return irls_logistic(X, y, rep_w, tol=tol, max_iter=max_iter).coefficients

        cov = replicate_variance(design, result.coefficients, refit)
    else:
        estfun = X * (w * (y - mu))[:, np.newaxis]
        influence = estfun @ result.cov_unscaled
        cov = design_total_variance(design, influence)

    dispersion = float(np.sum(w * (y - mu) ** 2 / (mu * (1 - mu))) / np.sum(w))
    y_bar = np.sum(w * y) / np.sum(w)
    null_deviance = binomial_deviance(y, np.full_like(y, y_bar), w)

    return FittedModel(
        spec=spec,
        coef_names=mm.names,
        coefficients=result.coefficients,
        cov=cov,
        naive_cov=result.cov_unscaled,
        dispersion=dispersion,
        deviance=result.deviance,
        null_deviance=null_deviance,
        fitted=mu,
        response=y,
        weights=w,
        n_iter=result.n_iter,
        df_design=design.degrees_of_freedom,
        term_columns=mm.term_columns,
    )


def _fit_one(
    design: SurveyDesign, spec: ModelSpec, tol: float, max_iter: int, rescale_weights: bool
):
    try:
        model = fit_survey_glm(
            design, spec, tol=tol, max_iter=max_iter, rescale_weights=rescale_weights
        )
        return spec.name, model, None
    except ConvergenceError as e:
        return spec.name, None, str(e)


def fit_models(
    design: SurveyDesign,
    specs: Optional[list[ModelSpec]] = None,
    n_jobs: int = 1,
    tol: float = config.IRLS_TOLERANCE,
    max_iter: int = config.IRLS_MAX_ITER,
    rescale_weights: bool = True,
) -> tuple[dict[str, FittedModel], dict[str, str]]:
    """
    Fit several independent models against the same design.

    A ConvergenceError in one model is recorded and does not stop the others.

    Args:
        design: Survey design
        specs: Model specifications (default: all of MODEL_SPECS)
        n_jobs: Number of parallel jobs (1 = sequential)
        tol: IRLS deviance tolerance
        max_iter: IRLS iteration cap
        rescale_weights: Rescale weights to mean one before fitting

    Returns:
        Tuple of (fitted models by name, error messages by name)
    """
    specs = list(MODEL_SPECS.values()) if specs is None else specs

    if n_jobs == 1:
        outcomes = [_fit_one(design, spec, tol, max_iter, rescale_weights) for spec in specs]
    else:
        outcomes = Parallel(n_jobs=n_jobs)(
            delayed(_fit_one)(design, spec, tol, max_iter, rescale_weights) for spec in specs
        )

    models: dict[str, FittedModel] = {}
    failures: dict[str, str] = {}
    for name, model, error in outcomes:
        if model is None:
            logger.error(f"Model '{name}' failed to converge: {error}")
            failures[name] = error
        else:
            logger.info(
                f"Model '{name}': {model.n_params} coefficients, "
                f"{model.n_iter} iterations, deviance {model.deviance:.2f}"
            )
            models[name] = model

    return models, failures
