"""
Classification diagnostics for fitted retirement models.

This module provides functions for assessing discrimination, including
sensitivity/specificity at a probability cutoff and ROC curves with AUC.
"""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
from sklearn.metrics import auc, roc_curve

from .. import config
from .errors import InvalidInputError

logger = logging.getLogger(__name__)


@dataclass
class ClassificationAccuracy:
    """Accuracy of thresholded predictions against the observed response."""

    cutoff: float
    sensitivity: float
    specificity: float
    accuracy: float
    true_positive: float
    false_negative: float
    true_negative: float
    false_positive: float


@dataclass
class ROCResult:
    """ROC curve points and trapezoidal AUC for one model."""

    fpr: np.ndarray
    tpr: np.ndarray
    thresholds: np.ndarray
    auc: float


def validate_binary_response(y_true) -> np.ndarray:
    """
    Return the observed response as a float array of 0/1.

    Raises:
        InvalidInputError: If any value is not 0 or 1
    """
    y = np.asarray(y_true, dtype=float)
    if y.ndim != 1:
        raise InvalidInputError(f"Response must be one-dimensional, got shape {y.shape}")
    observed = np.unique(y)
    if np.isnan(y).any() or not set(observed).issubset({0.0, 1.0}):
        raise InvalidInputError(f"Response must contain only 0/1, found values: {observed[:10]}")
    return y


def validate_probabilities(y_prob, n: Optional[int] = None) -> np.ndarray:
    """
    Return predicted probabilities as a float array.

    Raises:
        InvalidInputError: If any value is NaN or outside [0, 1], or the
            length does not match ``n``
    """
    p = np.asarray(y_prob, dtype=float)
    if p.ndim != 1:
        raise InvalidInputError(f"Probabilities must be one-dimensional, got shape {p.shape}")
    if np.isnan(p).any():
        raise InvalidInputError("Probabilities contain NaN values")
    if (p < 0).any() or (p > 1).any():
        raise InvalidInputError("Probabilities must be in [0, 1]")
    if n is not None and len(p) != n:
        raise InvalidInputError(f"Got {len(p)} probabilities for {n} observations")
    return p


def classification_accuracy(
    y_true,
    y_prob,
    cutoff: float = config.DEFAULT_CUTOFF,
    sample_weight=None,
) -> ClassificationAccuracy:
    """
    Sensitivity and specificity of the rule "retired if p >= cutoff".

    Args:
        y_true: Observed 0/1 response
        y_prob: Predicted probabilities
        cutoff: Probability cutoff
        sample_weight: Optional weights for a weighted confusion table

    Returns:
        ClassificationAccuracy (sensitivity is NaN with no positives,
        specificity is NaN with no negatives)
    """
    y = validate_binary_response(y_true)
    p = validate_probabilities(y_prob, n=len(y))
    if not 0.0 <= cutoff <= 1.0:
        raise InvalidInputError(f"Cutoff must be in [0, 1], got {cutoff}")

    w = np.ones_like(y) if sample_weight is None else np.asarray(sample_weight, dtype=float)
    predicted = p >= cutoff

    tp = float(np.sum(w[(y == 1) & predicted]))
    fn = float(np.sum(w[(y == 1) & ~predicted]))
    tn = float(np.sum(w[(y == 0) & ~predicted]))
    fp = float(np.sum(w[(y == 0) & predicted]))

    if tp + fn == 0:
        logger.warning("No observed positives; sensitivity is undefined")
    if tn + fp == 0:
        logger.warning("No observed negatives; specificity is undefined")

    sensitivity = tp / (tp + fn) if tp + fn > 0 else np.nan
    specificity = tn / (tn + fp) if tn + fp > 0 else np.nan
    total = tp + fn + tn + fp

    return ClassificationAccuracy(
        cutoff=cutoff,
        sensitivity=sensitivity,
        specificity=specificity,
        accuracy=(tp + tn) / total if total > 0 else np.nan,
        true_positive=tp,
        false_negative=fn,
        true_negative=tn,
        false_positive=fp,
    )


def compute_roc(y_true, y_prob, sample_weight=None) -> ROCResult:
    """
    ROC curve over every distinct threshold, with trapezoidal AUC.

    Args:
        y_true: Observed 0/1 response
        y_prob: Predicted probabilities (any monotone score gives the same AUC)
        sample_weight: Optional sample weights

    Returns:
        ROCResult

    Raises:
        InvalidInputError: If inputs are malformed or only one class is present
    """
    y = validate_binary_response(y_true)
    p = validate_probabilities(y_prob, n=len(y))
    if len(np.unique(y)) < 2:
        raise InvalidInputError("ROC requires both outcome classes to be present")

    fpr, tpr, thresholds = roc_curve(
        y, p, sample_weight=sample_weight, drop_intermediate=False
    )
    return ROCResult(fpr=fpr, tpr=tpr, thresholds=thresholds, auc=float(auc(fpr, tpr)))


def compare_roc(
    y_true,
    predictions: dict[str, np.ndarray],
    sample_weight=None,
) -> dict[str, ROCResult]:
    """ROC curves for several models scored on the same observations."""
    return {
        name: compute_roc(y_true, probs, sample_weight=sample_weight)
        for name, probs in predictions.items()
    }


def roc_points_frame(results: dict[str, ROCResult]) -> pd.DataFrame:
    """Long-format ROC points for every model."""
    frames = [
        pd.DataFrame(
            {
                "model": name,
                "fpr": res.fpr,
                "tpr": res.tpr,
                "threshold": res.thresholds,
            }
        )
        for name, res in results.items()
    ]
    return pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()


def plot_roc_curves(
    results: dict[str, ROCResult],
    title: str = "ROC Curves",
    output_path: Optional[Path] = None,
):
    """
    Plot ROC curves for several models on one set of axes.

    Args:
        results: ROC results keyed by model name
        title: Plot title
        output_path: Optional path to save the figure

    Returns:
        matplotlib Figure object
    """
    import matplotlib.pyplot as plt

    fig, ax = plt.subplots(figsize=(6, 6))
    ax.plot([0, 1], [0, 1], "k--", alpha=0.5, label="Chance")

    for name, res in results.items():
        ax.plot(res.fpr, res.tpr, label=f"{name} (AUC = {res.auc:.3f})")

    ax.set_xlabel("False positive rate (1 - specificity)")
    ax.set_ylabel("True positive rate (sensitivity)")
    ax.set_title(title)
    ax.set_xlim([0, 1])
    ax.set_ylim([0, 1])
    ax.legend(loc="lower right")
    plt.tight_layout()

    if output_path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=150, bbox_inches="tight")
        logger.info(f"Saved ROC plot: {output_path}")

    return fig


def generate_diagnostics_report(
    y_true,
    predictions: dict[str, np.ndarray],
    cutoff: float = config.DEFAULT_CUTOFF,
    output_dir: Optional[Path] = None,
) -> dict:
    """
    Accuracy and ROC summary for several models.

    Args:
        y_true: Observed 0/1 response
        predictions: Fitted probabilities keyed by model name
        cutoff: Probability cutoff for sensitivity/specificity
        output_dir: Directory to save outputs

    Returns:
        Dictionary with metrics per model and written file paths
    """
    roc_results = compare_roc(y_true, predictions)
    results: dict = {"cutoff": cutoff, "models": {}}

    for name, probs in predictions.items():
        accuracy = classification_accuracy(y_true, probs, cutoff=cutoff)
        results["models"][name] = {
            **asdict(accuracy),
            "auc": roc_results[name].auc,
        }
        logger.info(
            f"{name}: sensitivity={accuracy.sensitivity:.3f}, "
            f"specificity={accuracy.specificity:.3f}, AUC={roc_results[name].auc:.3f}"
        )

    if output_dir:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        roc_csv = output_dir / config.OUTPUT_ROC_FILE
        roc_points_frame(roc_results).to_csv(roc_csv, index=False)
        results["roc_csv"] = str(roc_csv)

        roc_plot = output_dir / "roc_curves.png"
        plot_roc_curves(roc_results, output_path=roc_plot)
        results["roc_plot"] = str(roc_plot)

        summary_path = output_dir / "diagnostics_summary.json"
        with open(summary_path, "w") as f:
            json.dump(results, f, indent=2, default=float)
        results["summary_json"] = str(summary_path)

    return results
