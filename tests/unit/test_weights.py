"""Tests for survey weight calculation utilities."""

import numpy as np
import pytest
from scipy import stats

from src.utils.errors import InvalidInputError
from src.utils.weights import (
    RaoWuBootstrapWeights,
    confidence_interval,
    critical_value,
    logit_confidence_interval,
    rescale_to_mean_one,
    weighted_count,
)


class TestWeightedCount:
    """Tests for weighted_count."""

    def test_weighted_count_with_mask(self):
        """Test weighted count over a subset."""
        weights = np.array([10.0, 20.0, 30.0])
        assert weighted_count(weights) == pytest.approx(60)
        assert weighted_count(weights, mask=np.array([True, False, True])) == pytest.approx(40)

    def test_ignores_missing(self):
        """Test missing weights are skipped."""
        assert weighted_count(np.array([1.0, np.nan, 2.0])) == pytest.approx(3.0)


class TestRescaleToMeanOne:
    """Tests for rescale_to_mean_one."""

    def test_mean_is_one(self, sample_weights):
        """Test rescaled weights average one."""
        assert rescale_to_mean_one(sample_weights).mean() == pytest.approx(1.0)

    def test_preserves_ratios(self):
        """Test that relative weights are unchanged."""
        result = rescale_to_mean_one(np.array([1.0, 3.0]))
        assert result[1] / result[0] == pytest.approx(3.0)

    def test_zero_weights_raise(self):
        """Test that all-zero weights cannot be rescaled."""
        with pytest.raises(InvalidInputError):
            rescale_to_mean_one(np.zeros(3))


class TestCriticalValue:
    """Tests for critical_value."""

    def test_normal_without_df(self):
        """Test the normal quantile is used without df."""
        assert critical_value(0.95) == pytest.approx(1.959964, rel=1e-5)

    def test_t_with_df(self):
        """Test Student t is used with finite df."""
        assert critical_value(0.95, df=10) == pytest.approx(stats.t.ppf(0.975, 10))

    def test_nonpositive_df_falls_back_to_normal(self):
        """Test that df <= 0 uses the normal quantile."""
        assert critical_value(0.95, df=0) == pytest.approx(critical_value(0.95))


class TestConfidenceInterval:
    """Tests for confidence interval calculation."""

    def test_basic_ci(self):
        """Test basic CI calculation."""
        lower, upper = confidence_interval(0.5, 0.1, 0.95)
        assert lower == pytest.approx(0.5 - 1.96 * 0.1, rel=0.01)
        assert upper == pytest.approx(0.5 + 1.96 * 0.1, rel=0.01)

    def test_wider_ci_with_higher_confidence(self):
        """Test that a 99% CI is wider than a 90% CI."""
        lo90, hi90 = confidence_interval(0.5, 0.1, 0.90)
        lo99, hi99 = confidence_interval(0.5, 0.1, 0.99)
        assert hi99 - lo99 > hi90 - lo90


class TestLogitConfidenceInterval:
    """Tests for logit_confidence_interval."""

    def test_bounds_in_unit_interval(self):
        """Test that bounds stay in [0, 1] for small proportions."""
        lower, upper = logit_confidence_interval(0.02, 0.05, 0.99)
        assert 0.0 <= lower <= 0.02 <= upper <= 1.0

    def test_ordered(self):
        """Test lower <= estimate <= upper."""
        lower, upper = logit_confidence_interval(0.4, 0.03, 0.95, df=50)
        assert lower < 0.4 < upper

    def test_degenerate_proportion(self):
        """Test that 0 and 1 return a zero-width interval."""
        assert logit_confidence_interval(0.0, 0.0) == (0.0, 0.0)
        assert logit_confidence_interval(1.0, 0.0) == (1.0, 1.0)


class TestRaoWuBootstrapWeights:
    """Tests for Rao-Wu rescaled bootstrap replicate weights."""

    @pytest.fixture
    def design_arrays(self):
        """Three strata: two with three PSUs, one lonely."""
        strata = np.array(["a"] * 6 + ["b"] * 6 + ["c"] * 2)
        clusters = np.array(
            ["a:1", "a:1", "a:2", "a:2", "a:3", "a:3",
             "b:1", "b:1", "b:2", "b:2", "b:3", "b:3",
             "c:1", "c:1"]
        )
        weights = np.linspace(1.0, 2.3, len(strata))
        return weights, strata, clusters

    def test_too_few_replicates_raises(self):
        """Test that fewer than two replicates is rejected."""
        with pytest.raises(ValueError):
            RaoWuBootstrapWeights(n_replicates=1)

    def test_shape(self, design_arrays):
        """Test replicate matrix has one column per replicate."""
        weights, strata, clusters = design_arrays
        reps = RaoWuBootstrapWeights(50, random_state=42).generate(weights, strata, clusters)
        assert reps.shape == (len(weights), 50)

    def test_lonely_stratum_keeps_weights(self, design_arrays):
        """Test a single-PSU stratum keeps full-sample weights."""
        weights, strata, clusters = design_arrays
        reps = RaoWuBootstrapWeights(20, random_state=42).generate(weights, strata, clusters)
        lonely = strata == "c"
        np.testing.assert_allclose(reps[lonely], np.repeat(weights[lonely, None], 20, axis=1))

    def test_multipliers_constant_within_psu(self, design_arrays):
        """Test every record in a PSU shares the replicate multiplier."""
        weights, strata, clusters = design_arrays
        reps = RaoWuBootstrapWeights(20, random_state=42).generate(weights, strata, clusters)
        ratios = reps / weights[:, None]
        np.testing.assert_allclose(ratios[0], ratios[1])
        np.testing.assert_allclose(ratios[8], ratios[9])

    def test_multipliers_are_scaled_draw_counts(self, design_arrays):
        """Test multipliers are draw counts times n_h / (n_h - 1)."""
        weights, strata, clusters = design_arrays
        reps = RaoWuBootstrapWeights(30, random_state=1).generate(weights, strata, clusters)
        counts = (reps / weights[:, None]) / 1.5
        np.testing.assert_allclose(counts[strata == "a"], np.round(counts[strata == "a"]))
        # n_h - 1 = 2 draws per replicate in stratum a
        psu_counts = counts[[0, 2, 4]].sum(axis=0)
        np.testing.assert_allclose(psu_counts, 2.0)

    def test_reproducible_with_seed(self, design_arrays):
        """Test that a fixed seed gives identical replicates."""
        weights, strata, clusters = design_arrays
        a = RaoWuBootstrapWeights(10, random_state=7).generate(weights, strata, clusters)
        b = RaoWuBootstrapWeights(10, random_state=7).generate(weights, strata, clusters)
        np.testing.assert_array_equal(a, b)

    def test_replicate_variance_scalar(self):
        """Test replicate variance is the mean squared deviation."""
        gen = RaoWuBootstrapWeights(4)
        variance = gen._compute_replicate_variance(1.0, np.array([0.0, 2.0, 1.0, 1.0]))
        assert variance == pytest.approx(0.5)

    def test_replicate_variance_matrix(self):
        """Test vector estimates give a covariance matrix."""
        gen = RaoWuBootstrapWeights(2)
        cov = gen._compute_replicate_variance(np.zeros(2), np.array([[1.0, 1.0], [-1.0, -1.0]]))
        np.testing.assert_allclose(cov, [[1.0, 1.0], [1.0, 1.0]])
