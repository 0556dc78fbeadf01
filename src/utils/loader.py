"""
GSS microdata loading.

The GSS cumulative file ships as Stata .dta. Categorical fields are read as
raw numeric codes so the recode tables in config can validate them.
"""

import logging
from pathlib import Path
from typing import Optional

import pandas as pd

logger = logging.getLogger(__name__)


def load_gss(file_path: Path, columns: Optional[list[str]] = None) -> pd.DataFrame:
    """
    Load a GSS data file into a DataFrame with lower-case column names.

    Args:
        file_path: Path to a .dta, .csv or .parquet file
        columns: Optional list of raw columns to load

    Returns:
        DataFrame with one row per respondent

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file extension is not supported
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"GSS data file not found: {file_path}")

    logger.info(f"Loading GSS file: {file_path}")
    suffix = file_path.suffix.lower()

    if suffix == ".dta":
        if columns is not None:
            # Absent columns are left for select_variables to report
            with pd.read_stata(file_path, iterator=True) as reader:
                available = {name.lower(): name for name in reader.variable_labels()}
            columns = [available[c.lower()] for c in columns if c.lower() in available]
        # Extended missing values (.i, .d, .n) become NaN
        df = pd.read_stata(
            file_path,
            columns=columns,
            convert_categoricals=False,
            convert_missing=False,
        )
    elif suffix == ".csv":
        df = pd.read_csv(file_path, low_memory=False)
    elif suffix == ".parquet":
        df = pd.read_parquet(file_path)
    else:
        raise ValueError(f"Unsupported GSS file type: {suffix}")

    df.columns = [str(c).lower() for c in df.columns]

    if columns is not None and suffix != ".dta":
        wanted = [c.lower() for c in columns]
        df = df[[c for c in wanted if c in df.columns]]

    logger.info(f"Loaded {len(df):,} respondent records, {df.shape[1]} columns")
    return df
