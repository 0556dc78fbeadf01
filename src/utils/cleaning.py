"""
Variable selection, recoding and derivation for GSS respondent records.

Cleaning order:
1. Project to the retained raw columns (SchemaError if any is absent)
2. Rename raw GSS names to analysis names
3. Recode categorical fields through explicit tables
4. Restrict to the inclusive year range
5. Drop rows missing a mandatory field
6. Derive age_in_decades and is_retired
"""

import logging
from typing import Optional

import numpy as np
import pandas as pd

from .. import config
from .errors import SchemaError, UnrecognizedCodeError

logger = logging.getLogger(__name__)


def select_variables(raw: pd.DataFrame, columns: list[str]) -> pd.DataFrame:
    """
    Project the raw table onto a list of columns.

    Args:
        raw: Raw GSS DataFrame (left untouched)
        columns: Column names to retain

    Returns:
        Copy of the raw table restricted to ``columns``

    Raises:
        SchemaError: If any requested column is absent
    """
    missing = [col for col in columns if col not in raw.columns]
    if missing:
        raise SchemaError(
            f"Requested columns not found in source table: {missing}. "
            f"Available columns: {list(raw.columns)[:20]}..."
        )

    return raw.loc[:, list(columns)].copy()


def recode_categorical(
    series: pd.Series,
    mapping: dict[int, Optional[str]],
    name: str = "",
) -> pd.Series:
    """
    Map raw survey codes to named levels.

    Sentinel codes (mapped to None) and values already missing become NaN.
    The result is a Categorical whose categories follow the table order.

    Args:
        series: Raw numeric codes
        mapping: Recode table, code -> level or None
        name: Field name used in error messages

    Returns:
        Categorical Series with the same index

    Raises:
        UnrecognizedCodeError: If a non-missing code is not in the table
    """
    codes = pd.to_numeric(series, errors="coerce")
    present = codes.dropna().unique()
    unknown = sorted(c for c in present if c not in mapping)
    if unknown:
        raise UnrecognizedCodeError(
            f"Unrecognized codes in '{name or series.name}': {unknown[:10]}. "
            f"Expected one of {sorted(mapping)}"
        )

    levels: list[str] = []
    for level in mapping.values():
        if level is not None and level not in levels:
            levels.append(level)

    labels = codes.map(lambda c: mapping.get(c) if pd.notna(c) else None)
    return pd.Series(
        pd.Categorical(labels, categories=levels),
        index=series.index,
        name=series.name,
    )


def derive_fields(df: pd.DataFrame) -> pd.DataFrame:
    """Add age_in_decades and the is_retired response."""
    df = df.copy()
    df["age_in_decades"] = df["age"].astype(float) / 10.0
    df[config.RESPONSE_COLUMN] = (
        (df["employment_status"] == config.RETIRED_LEVEL).astype(int)
    )
    return df


def clean_gss(
    raw: pd.DataFrame,
    analysis_config: Optional[config.AnalysisConfig] = None,
) -> pd.DataFrame:
    """
    Produce the cleaned respondent table used for design construction.

    Args:
        raw: Raw GSS DataFrame with raw variable names (not modified)
        analysis_config: Run settings; defaults to AnalysisConfig()

    Returns:
        Cleaned DataFrame with analysis names, recoded levels and derived fields

    Raises:
        SchemaError: If a retained column is absent from ``raw``
        UnrecognizedCodeError: If a categorical field holds an unknown code
    """
    cfg = (analysis_config or config.AnalysisConfig()).validate()

    df = select_variables(raw, list(cfg.retained_columns))
    n_in = len(df)
    logger.info(f"Selected {len(cfg.retained_columns)} variables from {n_in:,} records")

    df = df.rename(columns={k: v for k, v in config.GSS_VARIABLES.items() if k in df.columns})

    for field_name, table in config.RECODE_TABLES.items():
        if field_name in df.columns:
            df[field_name] = recode_categorical(df[field_name], table, name=field_name)

    # Year filter (inclusive)
    lo, hi = cfg.year_range
    in_range = df["year"].between(lo, hi)
    df = df[in_range]
    logger.info(f"Year filter {lo}-{hi}: kept {len(df):,} of {n_in:,} records")

    mandatory = [c for c in cfg.mandatory_fields if c in df.columns]
    config.validate_required_columns(df, list(cfg.mandatory_fields), context="cleaned GSS")
    n_before = len(df)
    df = df.dropna(subset=mandatory)
    logger.info(
        f"Dropped {n_before - len(df):,} records missing a mandatory field "
        f"({', '.join(mandatory)})"
    )

    df["year"] = df["year"].astype(int)
    df = derive_fields(df).reset_index(drop=True)

    retired_share = df[config.RESPONSE_COLUMN].mean() if len(df) else np.nan
    logger.info(f"Cleaned table: {len(df):,} records, unweighted retired share {retired_share:.3f}")

    return df


def summarize_cleaning(raw: pd.DataFrame, cleaned: pd.DataFrame) -> dict[str, int]:
    """Row counts before and after cleaning."""
    return {
        "rows_in": int(len(raw)),
        "rows_out": int(len(cleaned)),
        "rows_dropped": int(len(raw) - len(cleaned)),
    }
