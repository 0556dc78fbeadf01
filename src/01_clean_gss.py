"""
GSS data cleaning and response creation.

This script:
1. Loads the GSS cumulative data file
2. Selects the retained variables
3. Recodes categorical codes to named levels
4. Restricts to the analysis year range and drops incomplete records
5. Derives age in decades and the retirement indicator
6. Validates data quality

Usage:
    python -m src.01_clean_gss [--input PATH] [--start-year YEAR] [--end-year YEAR] [--validate]
"""

import argparse
import logging
import sys
from pathlib import Path

import pandas as pd

from . import config
from .utils.cleaning import clean_gss, summarize_cleaning
from .utils.errors import SchemaError
from .utils.loader import load_gss
from .utils.validation import CleanedDataValidator

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def save_processed_data(df: pd.DataFrame, output_path: Path) -> Path:
    """
    Save cleaned data to parquet.

    Args:
        df: Cleaned DataFrame
        output_path: Destination file

    Returns:
        Path to saved file
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_parquet(output_path, index=False)
    logger.info(f"Saved cleaned data: {output_path}")
    return output_path


def summarize_data(df: pd.DataFrame) -> None:
    """Log record counts by year and the retired share by sex."""
    logger.info("\n" + "=" * 60)
    logger.info("DATA SUMMARY")
    logger.info("=" * 60)

    logger.info(f"Total records: {len(df):,}")
    logger.info(f"Years: {df['year'].min()}-{df['year'].max()} ({df['year'].nunique()} waves)")

    by_sex = df.groupby("sex", observed=True)["is_retired"].agg(["count", "mean"])
    for sex, row in by_sex.iterrows():
        logger.info(f"  {sex}: n={int(row['count']):,}, retired share {row['mean']:.1%}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Clean GSS data for the retirement analysis")
    parser.add_argument(
        "--input",
        type=Path,
        default=config.GSS_DATA_FILE,
        help=f"GSS data file (default: {config.GSS_DATA_FILE})",
    )
    parser.add_argument(
        "--start-year",
        type=int,
        default=config.DEFAULT_YEAR_RANGE[0],
        help=f"First survey year (default: {config.DEFAULT_YEAR_RANGE[0]})",
    )
    parser.add_argument(
        "--end-year",
        type=int,
        default=config.DEFAULT_YEAR_RANGE[1],
        help=f"Last survey year (default: {config.DEFAULT_YEAR_RANGE[1]})",
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Run validation checks on the cleaned data",
    )
    parser.add_argument(
        "--output-csv",
        action="store_true",
        help="Also save as CSV (in addition to parquet)",
    )

    args = parser.parse_args()

    year_range = (args.start_year, args.end_year)
    try:
        config.validate_year_range(year_range)
    except ValueError as e:
        logger.error(str(e))
        return 1

    config.ensure_directories()
    analysis_config = config.AnalysisConfig(year_range=year_range)

    logger.info("=" * 60)
    logger.info(f"GSS Data Cleaning - {year_range[0]}-{year_range[1]}")
    logger.info("=" * 60)

    try:
        raw = load_gss(args.input, columns=list(analysis_config.retained_columns))
        cleaned = clean_gss(raw, analysis_config)
    except FileNotFoundError as e:
        logger.error(str(e))
        return 1
    except SchemaError as e:
        logger.error(f"Schema error: {e}")
        logger.error("PIPELINE STOPPED: no model can be fit without the required variables")
        return 1

    counts = summarize_cleaning(raw, cleaned)
    logger.info(f"Rows in: {counts['rows_in']:,}, rows out: {counts['rows_out']:,}")

    if args.validate:
        logger.info("\nRunning validation checks...")
        validator = CleanedDataValidator(year_range)
        validator.validate_cleaned_data(
            cleaned,
            mandatory_fields=list(analysis_config.mandatory_fields),
            weight_col=analysis_config.weight_col,
            stratum_cols=list(analysis_config.stratum_cols),
            cluster_col=analysis_config.cluster_col,
        )
        logger.info(validator.summary())

    output_path = save_processed_data(cleaned, config.CLEANED_DATA_FILE)

    if args.output_csv:
        csv_path = output_path.with_suffix(".csv")
        cleaned.to_csv(csv_path, index=False)
        logger.info(f"Also saved as CSV: {csv_path}")

    summarize_data(cleaned)

    logger.info("\nGSS data cleaning complete!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
