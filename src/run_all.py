"""
Main pipeline orchestrator for the GSS retirement analysis.

This script runs all pipeline steps in sequence:
1. Clean GSS data
2. Fit survey-weighted models
3. Compute inference and diagnostics
4. Generate report

Usage:
    python -m src.run_all [--input PATH] [--start-year YEAR] [--end-year YEAR] [--force]
"""

import argparse
import logging
import subprocess
import sys

from . import config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def run_step(step_name: str, command: list[str], critical: bool = True) -> bool:
    """
    Run a pipeline step.

    Args:
        step_name: Name of the step
        command: Command to run
        critical: If True, pipeline stops on failure

    Returns:
        True if successful, False otherwise
    """
    logger.info("=" * 60)
    logger.info(f"STEP: {step_name}")
    logger.info("=" * 60)
    logger.info(f"Command: {' '.join(command)}")

    try:
        subprocess.run(
            command,
            check=True,
            capture_output=False,
        )
        logger.info(f"Step '{step_name}' completed successfully")
        return True

    except subprocess.CalledProcessError as e:
        logger.error(f"Step '{step_name}' failed with exit code {e.returncode}")
        if critical:
            logger.error("PIPELINE STOPPED due to critical step failure")
            return False
        logger.warning("Continuing despite non-critical step failure")
        return True

    except OSError as e:
        logger.error(f"Step '{step_name}' failed - OS error: {e}")
        return not critical


def check_prerequisites() -> bool:
    """
    Check that required packages are available.

    Returns:
        True if all prerequisites met
    """
    logger.info("Checking prerequisites...")

    if sys.version_info < (3, 10):
        logger.error(f"Python 3.10+ required, found {sys.version}")
        return False

    required = ["pandas", "numpy", "scipy", "sklearn", "joblib", "pyarrow"]
    missing = []

    for pkg in required:
        try:
            __import__(pkg)
        except ImportError:
            missing.append(pkg)

    if missing:
        logger.error(f"Missing required packages: {missing}")
        logger.error("Run: pip install -e .")
        return False

    logger.info("Prerequisites check passed")
    return True


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run the GSS retirement analysis pipeline")
    parser.add_argument(
        "--input",
        default=str(config.GSS_DATA_FILE),
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
        "--cutoff",
        type=float,
        default=config.DEFAULT_CUTOFF,
        help=f"Classification cutoff (default: {config.DEFAULT_CUTOFF})",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Force re-run of all steps",
    )

    args = parser.parse_args()

    try:
        config.validate_year_range((args.start_year, args.end_year))
    except ValueError as e:
        logger.error(str(e))
        return 1

    config.ensure_directories()

    logger.info("#" * 60)
    logger.info("# GSS RETIREMENT ANALYSIS PIPELINE")
    logger.info("#" * 60)
    logger.info(f"Years: {args.start_year}-{args.end_year}")
    logger.info(f"Lonely PSU policy: {args.lonely_psu}")
    logger.info(f"Variance method: {args.variance_method}")
    logger.info("")

    if not check_prerequisites():
        return 1

    python = sys.executable
    years = ["--start-year", str(args.start_year), "--end-year", str(args.end_year)]

    # Step 1: Clean GSS data
    if args.force or not config.CLEANED_DATA_FILE.exists():
        success = run_step(
            "Clean GSS Data",
            [python, "-m", "src.01_clean_gss", "--input", args.input, *years, "--validate"],
            critical=True,
        )
        if not success:
            return 1
    else:
        logger.info(f"Skipping GSS cleaning (file exists: {config.CLEANED_DATA_FILE})")

    # Step 2: Fit models
    success = run_step(
        "Fit Models",
        [
            python,
            "-m",
            "src.02_fit_models",
            "--lonely-psu",
            args.lonely_psu,
            "--variance-method",
            args.variance_method,
        ],
        critical=True,
    )
    if not success:
        return 1

    # Step 3: Diagnostics
    success = run_step(
        "Diagnostics",
        [python, "-m", "src.03_diagnostics", "--cutoff", str(args.cutoff)],
        critical=True,
    )
    if not success:
        return 1

    # Step 4: Generate report
    run_step(
        "Generate Report",
        [python, "-m", "src.04_report", *years],
        critical=False,
    )

    # Summary
    logger.info("")
    logger.info("#" * 60)
    logger.info("# PIPELINE COMPLETE")
    logger.info("#" * 60)
    logger.info("")
    logger.info("Output files:")

    for f in config.TABLES_DIR.glob("*.csv"):
        logger.info(f"  - {f}")

    for f in config.FIGURES_DIR.glob("*.png"):
        logger.info(f"  - {f}")

    for f in config.REPORTS_DIR.glob("*.md"):
        logger.info(f"  - {f}")

    logger.info("")
    logger.info("See reports/ for the final analysis report.")

    return 0


if __name__ == "__main__":
    sys.exit(main())
