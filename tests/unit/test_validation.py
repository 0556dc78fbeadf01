"""Tests for data validation utilities."""

import numpy as np
import pandas as pd
import pytest

from src import config
from src.utils.validation import (
    CleanedDataValidator,
    ValidationResult,
    check_missing_values,
    check_psu_per_stratum,
    validate_positive_weights,
    validate_rate_range,
    validate_response_consistency,
    validate_year_bounds,
)


class TestValidateYearBounds:
    """Tests for year bound validation."""

    def test_all_in_range(self):
        """Test passes when all years are inside the range."""
        df = pd.DataFrame({"year": [2000, 2008, 2016]})
        assert validate_year_bounds(df, (2000, 2016)).passed

    def test_out_of_range_fails(self):
        """Test fails and counts records outside the range."""
        df = pd.DataFrame({"year": [1998, 2008, 2018]})
        result = validate_year_bounds(df, (2000, 2016))
        assert not result.passed
        assert result.actual == 2


class TestValidateResponseConsistency:
    """Tests for retirement indicator consistency."""

    def test_consistent(self):
        """Test passes when is_retired matches employment_status."""
        df = pd.DataFrame(
            {"employment_status": ["retired", "school"], "is_retired": [1, 0]}
        )
        assert validate_response_consistency(df).passed

    def test_mismatch_fails(self):
        """Test fails when the indicator disagrees with the status."""
        df = pd.DataFrame(
            {"employment_status": ["retired", "school"], "is_retired": [0, 0]}
        )
        result = validate_response_consistency(df)
        assert not result.passed
        assert result.actual == 1


class TestCheckMissingValues:
    """Tests for missing value checks."""

    def test_no_missing_values(self):
        """Test passes when no values are missing."""
        df = pd.DataFrame({"a": [1, 2, 3], "b": [4, 5, 6]})
        result = check_missing_values(df, ["a", "b"])
        assert result.passed
        assert result.actual == 0

    def test_missing_values_fail(self):
        """Test fails when a mandatory field has gaps."""
        df = pd.DataFrame({"a": [1, np.nan, 3]})
        result = check_missing_values(df, ["a"])
        assert not result.passed
        assert "a:" in result.message

    def test_missing_column_fails(self):
        """Test fails when column doesn't exist."""
        df = pd.DataFrame({"a": [1, 2, 3]})
        result = check_missing_values(df, ["a", "nonexistent"])
        assert not result.passed
        assert "COLUMN NOT FOUND" in result.message


class TestValidatePositiveWeights:
    """Tests for weight validation."""

    def test_positive_weights(self):
        """Test passes with strictly positive weights."""
        df = pd.DataFrame({"w": [0.5, 1.0, 2.0]})
        assert validate_positive_weights(df, "w").passed

    @pytest.mark.parametrize("bad", [0.0, -1.0, np.nan])
    def test_bad_weight_fails(self, bad):
        """Test fails with zero, negative or missing weights."""
        df = pd.DataFrame({"w": [0.5, bad, 2.0]})
        result = validate_positive_weights(df, "w")
        assert not result.passed
        assert result.actual == 1


class TestCheckPSUPerStratum:
    """Tests for the lonely PSU count."""

    def test_counts_lonely_strata(self):
        """Test lonely strata are reported but the check passes."""
        df = pd.DataFrame(
            {
                "year": [2004, 2004, 2004, 2006],
                "stratum_id": [1, 1, 2, 1],
                "primary_sampling_unit_id": [1, 2, 1, 1],
            }
        )
        result = check_psu_per_stratum(df, ["year", "stratum_id"], "primary_sampling_unit_id")
        assert result.passed
        assert result.actual == 1
        assert result.message.startswith("2 of 3 strata")


class TestValidateRateRange:
    """Tests for rate range validation."""

    def test_valid_rate(self):
        """Test valid rate passes."""
        assert validate_rate_range(0.25).passed

    def test_rate_above_one_fails(self):
        """Test that rate above 1 fails."""
        assert not validate_rate_range(1.5).passed


class TestValidationResult:
    """Tests for ValidationResult dataclass."""

    def test_create_result(self):
        """Test creating a validation result."""
        result = ValidationResult(name="Test Check", passed=True, expected=100.0, actual=100.0)
        assert result.name == "Test Check"
        assert result.message == ""


class TestCleanedDataValidator:
    """Tests for the full validator."""

    def test_cleaned_table_passes(self, cleaned_gss):
        """Test the cleaned synthetic table passes every check."""
        validator = CleanedDataValidator(config.DEFAULT_YEAR_RANGE)
        results = validator.validate_cleaned_data(cleaned_gss, config.MANDATORY_FIELDS)
        assert len(results) == 6
        assert validator.all_passed

    def test_summary_lists_failures(self, cleaned_gss):
        """Test the summary names failed checks."""
        df = cleaned_gss.copy()
        df.loc[0, "analysis_weight"] = 0.0
        validator = CleanedDataValidator(config.DEFAULT_YEAR_RANGE)
        validator.validate_cleaned_data(df, config.MANDATORY_FIELDS)

        summary = validator.summary()
        assert not validator.all_passed
        assert "Failed: 1" in summary
        assert "Analysis weights" in summary
