"""
Generate final report with visualizations.

This script:
1. Loads the cleaned data and the tables written by earlier stages
2. Creates visualization figures
3. Generates markdown report

Usage:
    python -m src.04_report [--confidence LEVEL]
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from . import config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Set plot style
plt.style.use("seaborn-v0_8-whitegrid")
sns.set_palette("colorblind")


def load_table(filename: str) -> pd.DataFrame:
    """Load a CSV table written by an earlier stage."""
    file_path = config.TABLES_DIR / filename

    if not file_path.exists():
        raise FileNotFoundError(f"Results file not found: {file_path}")

    return pd.read_csv(file_path)


def create_bar_chart(shares: pd.DataFrame, output_dir: Path) -> Path:
    """
    Bar chart of the design-based retired share by survey year and sex.

    Args:
        shares: Output of svy_by with columns year, sex, estimate, ci_lower, ci_upper
        output_dir: Directory for output

    Returns:
        Path to saved figure
    """
    fig, ax = plt.subplots(figsize=(12, 6))

    years = sorted(shares["year"].unique())
    sexes = [s for s in config.category_levels("sex") if s in set(shares["sex"])]
    x = np.arange(len(years))
    width = 0.8 / max(len(sexes), 1)

    for i, sex in enumerate(sexes):
        sub = shares[shares["sex"] == sex].set_index("year").reindex(years)
        values = sub["estimate"].to_numpy() * 100
        lower = (sub["estimate"] - sub["ci_lower"]).to_numpy() * 100
        upper = (sub["ci_upper"] - sub["estimate"]).to_numpy() * 100

        ax.bar(x + i * width, values, width, label=sex.title())
        ax.errorbar(
            x + i * width,
            values,
            yerr=[lower, upper],
            fmt="none",
            color="black",
            capsize=3,
        )

    ax.set_ylabel("Retired (%)")
    ax.set_title("Retired Share by Survey Year and Sex\n(survey-weighted, 95% CI)")
    ax.set_xticks(x + width * (len(sexes) - 1) / 2)
    ax.set_xticklabels([str(y) for y in years])
    ax.legend(title="Sex", loc="upper left")

    plt.tight_layout()

    output_path = output_dir / "retired_share_by_year_sex.png"
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close()

    logger.info(f"Saved bar chart: {output_path}")
    return output_path


def create_age_boxplot(cleaned: pd.DataFrame, output_dir: Path) -> Path:
    """Boxplot of age by retirement status."""
    df = cleaned.assign(
        status=np.where(cleaned["is_retired"] == 1, "Retired", "Not retired"),
    )

    fig, ax = plt.subplots(figsize=(7, 6))
    sns.boxplot(data=df, x="status", y="age", order=["Not retired", "Retired"], ax=ax)
    ax.set_xlabel("")
    ax.set_ylabel("Age (years)")
    ax.set_title("Age by Retirement Status")

    plt.tight_layout()

    output_path = output_dir / "age_by_retirement.png"
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close()

    logger.info(f"Saved boxplot: {output_path}")
    return output_path


def create_age_density(cleaned: pd.DataFrame, output_dir: Path) -> Path:
    """Survey-weighted age density by nativity."""
    df = cleaned.assign(nativity=cleaned["nativity"].astype(str))

    fig, ax = plt.subplots(figsize=(9, 6))
    sns.kdeplot(
        data=df,
        x="age",
        hue="nativity",
        weights="analysis_weight",
        common_norm=False,
        fill=True,
        alpha=0.3,
        ax=ax,
    )
    ax.set_xlabel("Age (years)")
    ax.set_title("Age Distribution by Nativity (survey-weighted)")

    plt.tight_layout()

    output_path = output_dir / "age_density_by_nativity.png"
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close()

    logger.info(f"Saved density plot: {output_path}")
    return output_path


def create_marginal_effects_chart(
    grids: pd.DataFrame,
    confidence_levels: tuple[float, ...],
    output_dir: Path,
) -> Path:
    """
    Predicted retirement probability against age, one panel per model.

    Bands for each confidence level are drawn from widest to narrowest.

    Args:
        grids: Prediction grids from 03_diagnostics
        confidence_levels: Levels to shade
        output_dir: Directory for output

    Returns:
        Path to saved figure
    """
    models = list(dict.fromkeys(grids["model"]))
    fig, axes = plt.subplots(1, len(models), figsize=(6 * len(models), 5), sharey=True, squeeze=False)
    palette = sns.color_palette("colorblind")

    for ax, name in zip(axes[0], models):
        sub = grids[grids["model"] == name]
        groups = sub["sex"].unique() if "sex" in sub.columns and sub["sex"].notna().any() else [None]

        for color, group in zip(palette, groups):
            curve = sub if group is None else sub[sub["sex"] == group]
            for alpha, level in zip((0.12, 0.2, 0.3), sorted(confidence_levels, reverse=True)):
                band = curve[np.isclose(curve["confidence"], level)]
                ax.fill_between(
                    band["age_in_decades"] * 10,
                    band["ci_lower"],
                    band["ci_upper"],
                    color=color,
                    alpha=alpha,
                    linewidth=0,
                )
            line = curve[np.isclose(curve["confidence"], config.DEFAULT_CONFIDENCE)]
            ax.plot(line["age_in_decades"] * 10, line["fit"], color=color, label=group or "All")

        ax.set_title(name)
        ax.set_xlabel("Age (years)")
        ax.set_ylim(0, 1)
        ax.legend(loc="upper left")

    axes[0][0].set_ylabel("P(retired)")
    levels_str = "/".join(f"{level:.0%}" for level in confidence_levels)
    plt.suptitle(f"Predicted Probability of Retirement ({levels_str} bands)", fontsize=14)
    plt.tight_layout()

    output_path = output_dir / "marginal_effects_age.png"
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close()

    logger.info(f"Saved marginal effects chart: {output_path}")
    return output_path


def create_roc_chart(roc_points: pd.DataFrame, auc_df: pd.DataFrame, output_dir: Path) -> Path:
    """ROC curves for every model from the saved ROC points."""
    auc_by_model = auc_df.set_index("model")["auc"].to_dict()

    fig, ax = plt.subplots(figsize=(6, 6))
    ax.plot([0, 1], [0, 1], "k--", alpha=0.5, label="Chance")
    for name, points in roc_points.groupby("model", sort=False):
        ax.plot(points["fpr"], points["tpr"], label=f"{name} (AUC = {auc_by_model.get(name, np.nan):.3f})")

    ax.set_xlabel("False positive rate (1 - specificity)")
    ax.set_ylabel("True positive rate (sensitivity)")
    ax.set_title("ROC Curves")
    ax.set_xlim([0, 1])
    ax.set_ylim([0, 1])
    ax.legend(loc="lower right")

    plt.tight_layout()

    output_path = output_dir / "roc_curves.png"
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close()

    logger.info(f"Saved ROC chart: {output_path}")
    return output_path


def _markdown_table(df: pd.DataFrame, float_format: str = "{:.3f}") -> str:
    """Render a DataFrame as a GitHub markdown table."""
    header = "| " + " | ".join(df.columns) + " |"
    rule = "|" + "|".join("---" for _ in df.columns) + "|"
    rows = []
    for _, row in df.iterrows():
        cells = [float_format.format(v) if isinstance(v, float) else str(v) for v in row]
        rows.append("| " + " | ".join(cells) + " |")
    return "\n".join([header, rule, *rows])


def generate_report_markdown(
    coefficients: pd.DataFrame,
    comparison: pd.DataFrame,
    wald: pd.DataFrame,
    accuracy: pd.DataFrame,
    auc_df: pd.DataFrame,
    figure_paths: list[Path],
    year_range: tuple[int, int],
) -> str:
    """
    Generate markdown report content.

    Args:
        coefficients: Long-format coefficient table (column "model")
        comparison: AIC / design AIC table
        wald: Per-term Wald F tests
        accuracy: Sensitivity/specificity per model
        auc_df: AUC per model
        figure_paths: Paths to generated figures
        year_range: Survey years covered

    Returns:
        Markdown string
    """
    today = datetime.now().strftime("%Y-%m-%d")

    coef_sections = []
    for name, table in coefficients.groupby("model", sort=False):
        coef_sections.append(f"\n### Model: {name}\n")
        coef_sections.append(_markdown_table(table.drop(columns="model"), "{:.4f}"))
    coef_str = "\n".join(coef_sections)

    fit_summary = accuracy[["model", "cutoff", "sensitivity", "specificity", "accuracy"]].merge(
        auc_df, on="model", how="left"
    )

    fig_refs = []
    for path in figure_paths:
        fig_refs.append(f"![{path.stem}](../outputs/figures/{path.name})")
    fig_refs_str = "\n\n".join(fig_refs)

    report = f"""# Retirement and Age in the General Social Survey

**Survey Years:** {year_range[0]}-{year_range[1]}
**Report Generated:** {today}

## Overview

This report models the probability that a GSS respondent reports being retired
as a function of age, and examines whether the age gradient differs by sex,
nativity and employment sector. All estimates account for the GSS complex
sample design: strata are survey year by variance stratum, PSUs are nested
within strata, and respondents are weighted by WTSSALL.

## Methodology

- **Response:** retired (WRKSTAT = 5) versus every other labor force status.
- **Models:** quasi-binomial logistic regressions fitted by IRLS with
  survey weights rescaled to mean one.
- **Standard errors:** design-based sandwich (Taylor linearization), with
  t reference distributions on PSUs minus strata degrees of freedom.
- **Model comparison:** AIC and the design-adjusted AIC of Lumley and Scott,
  plus Wald F tests for every model term.
- **Classification:** a respondent is predicted retired when the fitted
  probability is at or above the cutoff.

## Coefficients
{coef_str}

## Model Comparison

{_markdown_table(comparison)}

### Wald Tests

{_markdown_table(wald)}

## Classification Accuracy

{_markdown_table(fit_summary)}

## Visualizations

{fig_refs_str}

## Limitations

- Retirement is self-reported and single-coded; respondents who are both
  retired and working part time are classified by their main status.
- Respondents with no WRKGOVT (sector) or BORN (nativity) answer are dropped
  during cleaning, so every model is fitted on the same complete cases.
- Strata holding a single PSU are handled by the configured lonely-PSU
  policy, which can understate or overstate variance for those strata.

## References

1. Smith, T.W. et al. General Social Surveys, 1972-2016. NORC at the University of Chicago.

2. Lumley, T. and Scott, A. (2015). AIC and BIC for modeling with complex
   survey data. Journal of Survey Statistics and Methodology 3, 1-18.

3. Rao, J.N.K. and Wu, C.F.J. (1988). Resampling inference with complex
   survey data. JASA 83, 231-241.

---

*This report was generated automatically by `python -m src.04_report`.*
"""

    return report


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Generate retirement analysis report")
    parser.add_argument(
        "--start-year",
        type=int,
        default=config.DEFAULT_YEAR_RANGE[0],
        help=f"First survey year covered (default: {config.DEFAULT_YEAR_RANGE[0]})",
    )
    parser.add_argument(
        "--end-year",
        type=int,
        default=config.DEFAULT_YEAR_RANGE[1],
        help=f"Last survey year covered (default: {config.DEFAULT_YEAR_RANGE[1]})",
    )

    args = parser.parse_args()

    config.ensure_directories()
    year_range = (args.start_year, args.end_year)

    logger.info("=" * 60)
    logger.info("Generating report")
    logger.info("=" * 60)

    try:
        cleaned = pd.read_parquet(config.CLEANED_DATA_FILE)
        shares = load_table("retired_share_by_year_sex.csv")
        coefficients = load_table("coefficients.csv")
        grids = load_table("prediction_grids.csv")
        comparison = load_table(config.OUTPUT_COMPARISON_FILE)
        wald = load_table(config.OUTPUT_WALD_FILE)
        accuracy = load_table(config.OUTPUT_ACCURACY_FILE)
        roc_points = load_table(config.OUTPUT_ROC_FILE)
        auc_df = load_table(config.OUTPUT_AUC_FILE)
    except FileNotFoundError as e:
        logger.error(str(e))
        logger.error("Run 01_clean_gss, 02_fit_models and 03_diagnostics first")
        return 1

    figures_dir = config.FIGURES_DIR
    figure_paths = [
        create_bar_chart(shares, figures_dir),
        create_age_boxplot(cleaned, figures_dir),
        create_age_density(cleaned, figures_dir),
        create_marginal_effects_chart(grids, config.CONFIDENCE_LEVELS, figures_dir),
        create_roc_chart(roc_points, auc_df, figures_dir),
    ]

    report = generate_report_markdown(
        coefficients,
        comparison,
        wald,
        accuracy,
        auc_df,
        figure_paths,
        year_range,
    )

    report_path = config.REPORTS_DIR / config.OUTPUT_REPORT_FILE
    with open(report_path, "w") as f:
        f.write(report)

    logger.info(f"Saved report: {report_path}")
    logger.info("\nReport generation complete!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
