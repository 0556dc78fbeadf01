"""
Inference and diagnostics for the fitted retirement models.

This script:
1. Loads the fitted models
2. Builds prediction grids with 90/95/99% confidence bands
3. Computes sensitivity/specificity at the classification cutoff
4. Compares models by AIC and design-adjusted Wald F tests
5. Computes ROC curves and AUC

Usage:
    python -m src.03_diagnostics [--cutoff P]
"""

import argparse
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import joblib
import pandas as pd

from . import config
from .utils.diagnostics import classification_accuracy, generate_diagnostics_report
from .utils.errors import InvalidInputError, SchemaError
from .utils.glm import MODEL_SPECS, FittedModel
from .utils.inference import (
    compare_nested,
    model_comparison_table,
    prediction_grid,
    predict_with_ci,
    wald_term_tests,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Example respondent for point predictions
EXAMPLE_AGE_DECADES = 6.5


def load_models(model_dir: Optional[Path] = None) -> dict[str, FittedModel]:
    """Load fitted models in MODEL_SPECS order, skipping any that were not saved."""
    model_dir = config.MODELS_DIR if model_dir is None else model_dir
    models = {}
    for name in MODEL_SPECS:
        path = model_dir / f"retirement_model_{name}.joblib"
        if path.exists():
            models[name] = joblib.load(path)
        else:
            logger.warning(f"Model file not found, skipping: {path}")

    if not models:
        raise FileNotFoundError(f"No fitted models found in {model_dir}")

    logger.info(f"Loaded {len(models)} models: {list(models)}")
    return models


def build_prediction_grids(
    models: dict[str, FittedModel],
    confidence_levels: tuple[float, ...],
) -> pd.DataFrame:
    """Age curves per model, by sex where the model uses sex."""
    frames = []
    for model in models.values():
        by = "sex" if "sex" in model.spec.variables else None
        for level in confidence_levels:
            frames.append(prediction_grid(model, by=by, confidence=level))
    return pd.concat(frames, ignore_index=True)


def example_prediction(model: FittedModel, age_decades: float = EXAMPLE_AGE_DECADES) -> pd.Series:
    """Point prediction at one age, with categoricals at their reference level."""
    row = {"age_in_decades": [age_decades]}
    for var in model.spec.variables:
        if var in config.RECODE_TABLES:
            row[var] = [config.category_levels(var)[0]]
    return predict_with_ci(model, pd.DataFrame(row)).iloc[0]


def main(argv: Optional[list[str]] = None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Diagnostics for retirement models")
    parser.add_argument(
        "--cutoff",
        type=float,
        default=config.DEFAULT_CUTOFF,
        help=f"Classification cutoff (default: {config.DEFAULT_CUTOFF})",
    )

    args = parser.parse_args(argv)

    try:
        analysis_config = config.AnalysisConfig(cutoff=args.cutoff).validate()
    except ValueError as e:
        logger.error(str(e))
        return 1

    config.ensure_directories()

    try:
        models = load_models(config.MODELS_DIR)
    except FileNotFoundError as e:
        logger.error(str(e))
        logger.error("Run: python -m src.02_fit_models")
        return 1

    tables_dir = config.TABLES_DIR

    # 1. Prediction grids
    grids = build_prediction_grids(models, analysis_config.confidence_levels)
    grid_path = tables_dir / "prediction_grids.csv"
    grids.to_csv(grid_path, index=False)
    logger.info(f"Saved prediction grids: {grid_path}")

    example_name = "simple" if "simple" in models else next(iter(models))
    try:
        point = example_prediction(models[example_name])
        logger.info(
            f"P(retired | age {EXAMPLE_AGE_DECADES * 10:.0f}, {example_name}) = "
            f"{point['fit']:.3f} "
            f"[{point['ci_lower']:.3f}, {point['ci_upper']:.3f}]"
        )
    except (SchemaError, InvalidInputError) as e:
        logger.warning(f"Example prediction skipped: {e}")

    # 2. Classification accuracy
    rows = []
    try:
        for name, model in models.items():
            accuracy = classification_accuracy(model.response, model.fitted, cutoff=analysis_config.cutoff)
            rows.append({"model": name, **asdict(accuracy)})
    except InvalidInputError as e:
        logger.error(f"Invalid diagnostics input: {e}")
        return 1
    accuracy_path = tables_dir / config.OUTPUT_ACCURACY_FILE
    pd.DataFrame(rows).to_csv(accuracy_path, index=False)
    logger.info(f"Saved classification accuracy: {accuracy_path}")

    # 3. Model comparison
    comparison = model_comparison_table(models)
    comparison_path = tables_dir / config.OUTPUT_COMPARISON_FILE
    comparison.to_csv(comparison_path, index=False)
    logger.info("\n" + comparison.to_string(index=False, float_format="%.3f"))

    wald = pd.concat([wald_term_tests(m) for m in models.values()], ignore_index=True)
    wald.to_csv(tables_dir / config.OUTPUT_WALD_FILE, index=False)

    names = list(models)
    nested = []
    for small, large in zip(names, names[1:]):
        try:
            nested.append(compare_nested(models[small], models[large]))
        except InvalidInputError as e:
            logger.warning(str(e))
    if nested:
        nested_df = pd.DataFrame(nested)
        nested_df["added_terms"] = nested_df["added_terms"].apply(", ".join)
        nested_df.to_csv(tables_dir / "nested_model_tests.csv", index=False)

    # 4. ROC / AUC (all models share the same training records)
    y_true = next(iter(models.values())).response
    report = generate_diagnostics_report(
        y_true,
        {name: m.fitted for name, m in models.items()},
        cutoff=analysis_config.cutoff,
        output_dir=tables_dir,
    )
    auc_df = pd.DataFrame(
        [{"model": name, "auc": metrics["auc"]} for name, metrics in report["models"].items()]
    )
    auc_df.to_csv(tables_dir / config.OUTPUT_AUC_FILE, index=False)

    logger.info("\nDiagnostics complete!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
