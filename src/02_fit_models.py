"""
Survey-weighted retirement models.

This script:
1. Loads the cleaned GSS table
2. Builds the complex survey design (year x stratum, nested PSUs)
3. Estimates design-based retired shares by year and sex
4. Fits the three logistic regression specifications
5. Saves fitted models and coefficient tables

A model that fails to converge is reported and skipped; the remaining
models are still fitted and saved.

Usage:
    python -m src.02_fit_models [--lonely-psu POLICY] [--variance-method METHOD] [--n-jobs N]
"""

import argparse
import logging
import sys
from pathlib import Path

import joblib
import pandas as pd

from . import config
from .utils.design import build_survey_design, svy_by, svy_proportion
from .utils.errors import DesignError, SchemaError
from .utils.glm import MODEL_SPECS, FittedModel, fit_models

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def load_cleaned_data(file_path: Path = config.CLEANED_DATA_FILE) -> pd.DataFrame:
    """Load the cleaned GSS table written by 01_clean_gss."""
    if not file_path.exists():
        raise FileNotFoundError(f"Cleaned GSS file not found: {file_path}")

    logger.info(f"Loading cleaned GSS: {file_path}")
    df = pd.read_parquet(file_path)
    logger.info(f"Loaded {len(df):,} records")
    return df


def save_models(models: dict[str, FittedModel], output_dir: Path) -> list[Path]:
    """Save each fitted model with joblib."""
    output_dir.mkdir(parents=True, exist_ok=True)
    paths = []
    for name, model in models.items():
        path = output_dir / f"retirement_model_{name}.joblib"
        joblib.dump(model, path)
        logger.info(f"Saved model: {path}")
        paths.append(path)
    return paths


def save_coefficient_tables(
    models: dict[str, FittedModel],
    output_dir: Path,
    confidence: float = config.DEFAULT_CONFIDENCE,
) -> Path:
    """Write one long-format coefficient table covering all models."""
    output_dir.mkdir(parents=True, exist_ok=True)
    tables = []
    for name, model in models.items():
        table = model.coef_table(confidence)
        table.insert(0, "model", name)
        tables.append(table)

    path = output_dir / "coefficients.csv"
    pd.concat(tables, ignore_index=True).to_csv(path, index=False)
    logger.info(f"Saved coefficient tables: {path}")
    return path


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Fit survey-weighted retirement models")
    parser.add_argument(
        "--lonely-psu",
        choices=[p.value for p in config.LonelyPSUPolicy],
        default=config.LonelyPSUPolicy.ADJUST.value,
        help="Policy for strata with a single PSU (default: adjust)",
    )
    parser.add_argument(
        "--variance-method",
        choices=[m.value for m in config.VarianceMethod],
        default=config.VarianceMethod.LINEARIZATION.value,
        help="Design variance method (default: linearization)",
    )
    parser.add_argument(
        "--n-replicates",
        type=int,
        default=config.N_BOOTSTRAP_REPLICATES,
        help=f"Bootstrap replicates (default: {config.N_BOOTSTRAP_REPLICATES})",
    )
    parser.add_argument(
        "--n-jobs",
        type=int,
        default=1,
        help="Parallel jobs for model fitting (default: 1)",
    )
    parser.add_argument(
        "--no-rescale-weights",
        action="store_true",
        help="Fit with raw analysis weights instead of weights rescaled to mean one",
    )

    args = parser.parse_args()

    config.ensure_directories()
    analysis_config = config.AnalysisConfig(
        lonely_psu=config.LonelyPSUPolicy(args.lonely_psu),
        variance_method=config.VarianceMethod(args.variance_method),
        n_replicates=args.n_replicates,
        rescale_weights=not args.no_rescale_weights,
    )

    try:
        cleaned = load_cleaned_data()
        design = build_survey_design(cleaned, analysis_config)
    except FileNotFoundError as e:
        logger.error(str(e))
        logger.error("Run: python -m src.01_clean_gss")
        return 1
    except (SchemaError, DesignError) as e:
        logger.error(f"Cannot build survey design: {e}")
        return 1

    # Design-based descriptive estimates
    overall = svy_proportion(design, "is_retired")
    logger.info(
        f"Retired share: {overall.estimate:.3f} "
        f"(95% CI {overall.ci_lower:.3f}-{overall.ci_upper:.3f})"
    )
    by_year_sex = svy_by(design, "is_retired", ["year", "sex"])
    by_year_sex_path = config.TABLES_DIR / "retired_share_by_year_sex.csv"
    by_year_sex.to_csv(by_year_sex_path, index=False)
    logger.info(f"Saved domain estimates: {by_year_sex_path}")

    logger.info("=" * 60)
    logger.info(f"Fitting {len(MODEL_SPECS)} models")
    logger.info("=" * 60)

    models, failures = fit_models(
        design,
        n_jobs=args.n_jobs,
        tol=analysis_config.irls_tol,
        max_iter=analysis_config.irls_max_iter,
        rescale_weights=analysis_config.rescale_weights,
    )

    if not models:
        logger.error("No model converged; nothing to save")
        return 1

    for name, model in models.items():
        logger.info(f"\n{name} ({model.spec.label}):")
        logger.info("\n" + model.coef_table().to_string(index=False, float_format="%.4f"))

    save_models(models, config.MODELS_DIR)
    save_coefficient_tables(models, config.TABLES_DIR)

    if failures:
        logger.warning(f"Models that failed to converge: {sorted(failures)}")

    logger.info("\nModel fitting complete!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
