"""
Data validation utilities for quality checks on the cleaned GSS table.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

from . import weights

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of a validation check."""

    name: str
    passed: bool
    expected: Optional[float] = None
    actual: Optional[float] = None
    tolerance: Optional[float] = None
    message: str = ""


def validate_year_bounds(
    df: pd.DataFrame,
    year_range: tuple[int, int],
    year_col: str = "year",
    name: str = "Year range",
) -> ValidationResult:
    """
    Check that every record falls inside the inclusive year range.

    Args:
        df: Cleaned DataFrame
        year_range: (start, end) inclusive
        year_col: Year column name
        name: Name for the check

    Returns:
        ValidationResult
    """
    lo, hi = year_range
    outside = (~df[year_col].between(lo, hi)).sum()

    return ValidationResult(
        name=name,
        passed=bool(outside == 0),
        expected=0,
        actual=float(outside),
        message=f"{outside:,} records outside {lo}-{hi}",
    )


def validate_response_consistency(
    df: pd.DataFrame,
    response_col: str = "is_retired",
    status_col: str = "employment_status",
    retired_level: str = "retired",
    name: str = "Retirement indicator",
) -> ValidationResult:
    """
    Check that the response is 0/1 and equals 1 exactly for retired records.

    Args:
        df: Cleaned DataFrame
        response_col: Derived 0/1 response
        status_col: Recoded employment status
        retired_level: Level that defines retirement
        name: Name for the check

    Returns:
        ValidationResult
    """
    response = df[response_col]
    binary = response.isin([0, 1]).all()
    expected = (df[status_col] == retired_level).astype(int)
    mismatches = int((response != expected).sum())

    passed = bool(binary and mismatches == 0)

    return ValidationResult(
        name=name,
        passed=passed,
        expected=0,
        actual=float(mismatches),
        message=f"binary={binary}, {mismatches:,} mismatches with '{status_col}'",
    )


def check_missing_values(
    df: pd.DataFrame,
    columns: list[str],
    max_missing_pct: float = 0.0,
    name: str = "Missing values",
) -> ValidationResult:
    """
    Check that missing value rates are acceptable.

    Args:
        df: DataFrame
        columns: Columns to check
        max_missing_pct: Maximum acceptable missing rate
        name: Name for the check

    Returns:
        ValidationResult
    """
    n_rows = len(df)
    missing_info = []
    max_missing = 0

    for col in columns:
        if col not in df.columns:
            missing_info.append(f"{col}: COLUMN NOT FOUND")
            max_missing = 1.0
            continue

        n_missing = df[col].isna().sum()
        pct_missing = n_missing / n_rows if n_rows else 0.0
        max_missing = max(max_missing, pct_missing)

        if pct_missing > max_missing_pct:
            missing_info.append(f"{col}: {pct_missing:.1%} missing")

    passed = max_missing <= max_missing_pct

    return ValidationResult(
        name=name,
        passed=passed,
        expected=max_missing_pct,
        actual=max_missing,
        tolerance=max_missing_pct,
        message="; ".join(missing_info) if missing_info else "All columns OK",
    )


def validate_positive_weights(
    df: pd.DataFrame,
    weight_col: str,
    name: str = "Analysis weights",
) -> ValidationResult:
    """
    Check that weights are present and strictly positive.

    Args:
        df: DataFrame
        weight_col: Weight column
        name: Name for the check

    Returns:
        ValidationResult
    """
    w = df[weight_col].to_numpy(dtype=float)
    n_bad = int((np.isnan(w) | (w <= 0)).sum())

    return ValidationResult(
        name=name,
        passed=n_bad == 0,
        expected=0,
        actual=float(n_bad),
        message=f"{n_bad:,} missing or non-positive weights; total weight {weights.weighted_count(w):,.1f}",
    )


def check_psu_per_stratum(
    df: pd.DataFrame,
    stratum_cols: list[str],
    cluster_col: str,
    min_psu: int = 2,
    name: str = "PSUs per stratum",
) -> ValidationResult:
    """
    Count strata with fewer than ``min_psu`` distinct PSUs.

    This is informational: lonely strata are handled by the design's
    lonely-PSU policy, so the check always passes.

    Args:
        df: DataFrame
        stratum_cols: Columns whose interaction defines the stratum
        cluster_col: PSU column (numbered within stratum)
        min_psu: Minimum PSUs per stratum
        name: Name for the check

    Returns:
        ValidationResult
    """
    counts = df.groupby(stratum_cols)[cluster_col].nunique()
    n_lonely = int((counts < min_psu).sum())

    return ValidationResult(
        name=name,
        passed=True,
        expected=float(min_psu),
        actual=float(counts.min()) if len(counts) else np.nan,
        message=f"{n_lonely} of {len(counts)} strata have fewer than {min_psu} PSUs",
    )


def validate_rate_range(
    rate: float,
    min_rate: float = 0.0,
    max_rate: float = 1.0,
    name: str = "Rate range",
) -> ValidationResult:
    """
    Validate that a rate is within valid range.

    Args:
        rate: Rate value
        min_rate: Minimum valid rate
        max_rate: Maximum valid rate
        name: Name for check

    Returns:
        ValidationResult
    """
    passed = min_rate <= rate <= max_rate

    return ValidationResult(
        name=name,
        passed=passed,
        expected=None,
        actual=rate,
        tolerance=None,
        message=f"Rate {rate:.2%} {'within' if passed else 'OUTSIDE'} [{min_rate:.0%}, {max_rate:.0%}]",
    )


class CleanedDataValidator:
    """
    Validate the cleaned GSS table before design construction.
    """

    def __init__(self, year_range: tuple[int, int]):
        self.year_range = year_range
        self.results: list[ValidationResult] = []

    def add_result(self, result: ValidationResult):
        """Add validation result."""
        self.results.append(result)
        status = "PASS" if result.passed else "FAIL"
        logger.info(f"[{status}] {result.name}: {result.message}")

    def validate_cleaned_data(
        self,
        df: pd.DataFrame,
        mandatory_fields: list[str],
        weight_col: str = "analysis_weight",
        stratum_cols: Optional[list[str]] = None,
        cluster_col: str = "primary_sampling_unit_id",
    ) -> list[ValidationResult]:
        """
        Run all validation checks on the cleaned table.

        Args:
            df: Cleaned DataFrame
            mandatory_fields: Fields that must never be missing
            weight_col: Weight column name
            stratum_cols: Stratum columns (default: year and stratum_id)
            cluster_col: PSU column

        Returns:
            List of ValidationResults
        """
        self.results = []
        stratum_cols = stratum_cols or ["year", "stratum_id"]

        # 1. Year range
        self.add_result(validate_year_bounds(df, self.year_range))

        # 2. Response consistency
        self.add_result(validate_response_consistency(df))

        # 3. Mandatory fields
        self.add_result(check_missing_values(df, mandatory_fields, name="Mandatory fields"))

        # 4. Weights
        self.add_result(validate_positive_weights(df, weight_col))

        # 5. Design structure
        self.add_result(check_psu_per_stratum(df, stratum_cols, cluster_col))

        # 6. Unweighted retired share
        if len(df):
            self.add_result(
                validate_rate_range(float(df["is_retired"].mean()), name="Retired share")
            )

        return self.results

    @property
    def all_passed(self) -> bool:
        return all(r.passed for r in self.results)

    def summary(self) -> str:
        """Generate summary of validation results."""
        n_passed = sum(1 for r in self.results if r.passed)
        n_failed = sum(1 for r in self.results if not r.passed)

        lines = [
            f"Validation Summary for GSS {self.year_range[0]}-{self.year_range[1]}",
            f"{'=' * 40}",
            f"Passed: {n_passed}",
            f"Failed: {n_failed}",
            "",
        ]

        if n_failed > 0:
            lines.append("Failed Checks:")
            for r in self.results:
                if not r.passed:
                    lines.append(f"  - {r.name}: {r.message}")

        return "\n".join(lines)
