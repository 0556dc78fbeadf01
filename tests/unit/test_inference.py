"""Tests for predictions, information criteria and Wald tests."""

import numpy as np
import pandas as pd
import pytest
from scipy.special import expit

from src.utils.errors import InvalidInputError
from src.utils.glm import MODEL_SPECS, FittedModel
from src.utils.inference import (
    aic,
    compare_nested,
    design_aic,
    design_effective_params,
    log_likelihood,
    model_comparison_table,
    predict_with_ci,
    prediction_grid,
    wald_term_tests,
)


@pytest.fixture
def fixed_simple_model():
    """Age-only model with fixed coefficients (-12.60, 1.90)."""
    cov = np.array([[0.5, -0.07], [-0.07, 0.01]])
    y = np.array([0.0, 1.0, 0.0, 1.0])
    fitted = np.array([0.2, 0.7, 0.4, 0.6])
    return FittedModel(
        spec=MODEL_SPECS["simple"],
        coef_names=["(Intercept)", "age_in_decades"],
        coefficients=np.array([-12.60, 1.90]),
        cov=cov,
        naive_cov=cov * 0.8,
        dispersion=1.0,
        deviance=4.0,
        null_deviance=5.5,
        fitted=fitted,
        response=y,
        weights=np.ones(4),
        n_iter=5,
        df_design=100,
        term_columns={"age_in_decades": [1]},
    )


class TestPredictWithCI:
    """Tests for delta-method predictions."""

    def test_fixed_coefficient_prediction(self, fixed_simple_model):
        """Test P(retired | age 65) = expit(-12.60 + 1.90 * 6.5) = expit(-0.25)."""
        result = predict_with_ci(fixed_simple_model, pd.DataFrame({"age_in_decades": [6.5]}))
        assert result["fit"].iloc[0] == pytest.approx(expit(-0.25))
        assert result["fit"].iloc[0] == pytest.approx(0.4378, abs=1e-4)

    def test_link_se_is_quadratic_form(self, fixed_simple_model):
        """Test link SE is sqrt(x' V x)."""
        result = predict_with_ci(fixed_simple_model, pd.DataFrame({"age_in_decades": [6.5]}))
        x = np.array([1.0, 6.5])
        expected = np.sqrt(x @ fixed_simple_model.cov @ x)
        assert result["link_se"].iloc[0] == pytest.approx(expected)

    def test_interval_ordered_and_bounded(self, fixed_simple_model):
        """Test 0 <= lower <= fit <= upper <= 1."""
        grid = pd.DataFrame({"age_in_decades": np.linspace(2, 9, 15)})
        result = predict_with_ci(fixed_simple_model, grid, confidence=0.99)
        assert (result["ci_lower"] >= 0).all()
        assert (result["ci_upper"] <= 1).all()
        assert (result["ci_lower"] <= result["fit"]).all()
        assert (result["fit"] <= result["ci_upper"]).all()

    def test_higher_confidence_is_wider(self, fixed_simple_model):
        """Test 99% bands contain 90% bands."""
        newdata = pd.DataFrame({"age_in_decades": [5.0, 6.5]})
        narrow = predict_with_ci(fixed_simple_model, newdata, confidence=0.90)
        wide = predict_with_ci(fixed_simple_model, newdata, confidence=0.99)
        assert (wide["ci_lower"] < narrow["ci_lower"]).all()
        assert (wide["ci_upper"] > narrow["ci_upper"]).all()

    @pytest.mark.parametrize("level", [0.0, 1.0, 1.5])
    def test_invalid_confidence_raises(self, fixed_simple_model, level):
        """Test confidence must lie in (0, 1)."""
        with pytest.raises(InvalidInputError):
            predict_with_ci(fixed_simple_model, pd.DataFrame({"age_in_decades": [6.5]}), confidence=level)

    def test_does_not_modify_input(self, fixed_simple_model):
        """Test the caller's frame is left untouched."""
        newdata = pd.DataFrame({"age_in_decades": [6.5]})
        predict_with_ci(fixed_simple_model, newdata)
        assert list(newdata.columns) == ["age_in_decades"]


class TestPredictionGrid:
    """Tests for dense prediction grids."""

    def test_grid_size(self, fixed_simple_model):
        """Test one row per grid point."""
        grid = prediction_grid(fixed_simple_model, n_points=25)
        assert len(grid) == 25
        assert grid["model"].eq("simple").all()
        assert grid["age_in_decades"].iloc[0] == pytest.approx(2.0)
        assert grid["age_in_decades"].iloc[-1] == pytest.approx(9.0)

    def test_monotone_for_positive_slope(self, fixed_simple_model):
        """Test predictions increase with age."""
        grid = prediction_grid(fixed_simple_model)
        assert np.all(np.diff(grid["fit"]) > 0)

    def test_by_sex_curves(self, fitted_models):
        """Test one curve per sex for the interaction model."""
        grid = prediction_grid(fitted_models["sex_interaction"], n_points=10, by="sex")
        assert len(grid) == 20
        assert set(grid["sex"]) == {"male", "female"}

    def test_unspecified_categoricals_at_reference(self, fitted_models):
        """Test categoricals not given are held at their reference level."""
        grid = prediction_grid(fitted_models["full"], n_points=5, fixed={"sex": "female"})
        assert grid["sex"].eq("female").all()
        assert grid["nativity"].eq("native-born").all()
        assert grid["sector"].eq("public").all()

    def test_by_numeric_raises(self, fixed_simple_model):
        """Test that a numeric by variable is rejected."""
        with pytest.raises(InvalidInputError):
            prediction_grid(fixed_simple_model, by="age_in_decades")


class TestInformationCriteria:
    """Tests for log-likelihood and AIC."""

    def test_log_likelihood_hand_computed(self, fixed_simple_model):
        """Test the weighted Bernoulli log-likelihood."""
        expected = np.log(0.8) + np.log(0.7) + np.log(0.6) + np.log(0.6)
        assert log_likelihood(fixed_simple_model) == pytest.approx(expected)

    def test_aic_definition(self, fixed_simple_model):
        """Test AIC = -2 loglik + 2k."""
        expected = -2 * log_likelihood(fixed_simple_model) + 2 * 2
        assert aic(fixed_simple_model) == pytest.approx(expected)

    def test_design_aic_definition(self, fixed_simple_model):
        """Test design AIC = deviance + 2 tr(V0^-1 V)."""
        # V = V0 / 0.8, so tr(V0^-1 V) = 2 / 0.8
        assert design_effective_params(fixed_simple_model) == pytest.approx(2.5)
        assert design_aic(fixed_simple_model) == pytest.approx(4.0 + 2 * 2.5)

    def test_comparison_table(self, fitted_models):
        """Test one row per model and larger models fit at least as well."""
        table = model_comparison_table(fitted_models)
        assert list(table["model"]) == ["simple", "sex_interaction", "full"]
        assert table["deviance"].is_monotonic_decreasing
        assert (table["eff_params"] > 0).all()


class TestWaldTests:
    """Tests for design-adjusted Wald F tests."""

    def test_term_tests(self, fitted_models):
        """Test one row per term with design denominator df."""
        model = fitted_models["full"]
        result = wald_term_tests(model)
        assert list(result["term"]) == list(model.spec.terms)
        assert (result["df_den"] == model.df_design - model.n_params + 1).all()
        assert result["p_value"].between(0, 1).all()
        assert (result["f_statistic"] >= 0).all()

    def test_strong_age_effect(self, fitted_models):
        """Test the age effect is highly significant on synthetic data."""
        result = wald_term_tests(fitted_models["simple"])
        assert result.loc[result["term"] == "age_in_decades", "p_value"].iloc[0] < 1e-6

    def test_single_coefficient_f_is_t_squared(self, fitted_models):
        """Test F for a one-column term equals the squared t statistic."""
        model = fitted_models["simple"]
        f_stat = wald_term_tests(model)["f_statistic"].iloc[0]
        t_value = model.coef_table()["t_value"].iloc[1]
        assert f_stat == pytest.approx(t_value**2)

    def test_compare_nested(self, fitted_models):
        """Test the nested comparison counts the added coefficients."""
        result = compare_nested(fitted_models["simple"], fitted_models["sex_interaction"])
        assert result["df_num"] == 2
        assert result["added_terms"] == ["sex", "age_in_decades:sex"]
        assert 0 <= result["p_value"] <= 1

    def test_non_nested_raises(self, fitted_models):
        """Test that reversing the models is rejected."""
        with pytest.raises(InvalidInputError, match="not nested"):
            compare_nested(fitted_models["full"], fitted_models["simple"])
