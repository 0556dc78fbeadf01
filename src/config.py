"""
Configuration constants for the GSS retirement analysis.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Final, Optional

from .utils.errors import SchemaError


class LonelyPSUPolicy(str, Enum):
    """How a stratum containing a single PSU enters the variance estimate."""

    FAIL = "fail"
    REMOVE = "remove"
    CERTAINTY = "certainty"
    ADJUST = "adjust"  # Centre at the grand mean (conservative)
    AVERAGE = "average"


class VarianceMethod(str, Enum):
    """Variance estimation method for design-based inference."""

    LINEARIZATION = "linearization"
    BOOTSTRAP = "bootstrap"


# =============================================================================
# DIRECTORY PATHS
# =============================================================================

PROJECT_ROOT: Final[Path] = Path(__file__).parent.parent
DATA_DIR: Final[Path] = PROJECT_ROOT / "data"
RAW_DATA_DIR: Final[Path] = DATA_DIR / "raw"
PROCESSED_DATA_DIR: Final[Path] = DATA_DIR / "processed"
OUTPUTS_DIR: Final[Path] = PROJECT_ROOT / "outputs"
TABLES_DIR: Final[Path] = OUTPUTS_DIR / "tables"
FIGURES_DIR: Final[Path] = OUTPUTS_DIR / "figures"
REPORTS_DIR: Final[Path] = PROJECT_ROOT / "reports"
MODELS_DIR: Final[Path] = PROJECT_ROOT / "models"

# All required directories
_REQUIRED_DIRS: Final[list[Path]] = [
    RAW_DATA_DIR,
    PROCESSED_DATA_DIR,
    TABLES_DIR,
    FIGURES_DIR,
    REPORTS_DIR,
    MODELS_DIR,
]


def ensure_directories() -> None:
    """
    Create required project directories if they don't exist.

    Call this function explicitly at the start of pipeline scripts
    rather than relying on import-time side effects.
    """
    for dir_path in _REQUIRED_DIRS:
        dir_path.mkdir(parents=True, exist_ok=True)


# =============================================================================
# INPUT FILES
# =============================================================================

# GSS cumulative cross-section (Stata format)
GSS_DATA_FILE: Final[Path] = RAW_DATA_DIR / "GSS7216_R4.DTA"
CLEANED_DATA_FILE: Final[Path] = PROCESSED_DATA_DIR / "gss_retirement_clean.parquet"

# =============================================================================
# GSS VARIABLE NAMES (raw name -> analysis name)
# =============================================================================

GSS_VARIABLES: Final[dict[str, str]] = {
    "year": "year",
    "id": "id",
    "age": "age",
    "race": "race",
    "sex": "sex",
    "wrkstat": "employment_status",
    "degree": "education_level",
    "marital": "marital_status",
    "born": "nativity",
    "wrkgovt": "sector",
    # Survey design fields
    "vpsu": "primary_sampling_unit_id",
    "vstrat": "stratum_id",
    "oversamp": "oversampling_flag",
    "formwt": "experiment_weight",
    "wtssall": "analysis_weight",
    "sampcode": "sampling_error_code",
    "sample": "sample_id",
}

RETAINED_COLUMNS: Final[list[str]] = list(GSS_VARIABLES)

# Rows missing any of these (after recoding) are dropped
MANDATORY_FIELDS: Final[list[str]] = [
    "employment_status",
    "year",
    "age",
    "nativity",
    "sector",
]

RESPONSE_COLUMN: Final[str] = "is_retired"
RETIRED_LEVEL: Final[str] = "retired"

# =============================================================================
# RECODE TABLES (raw GSS code -> level; None marks IAP/DK/NA sentinels)
# Reference: GSS 1972-2016 Cumulative Codebook
# =============================================================================

RECODE_TABLES: Final[dict[str, dict[int, Optional[str]]]] = {
    "employment_status": {
        0: None,  # IAP
        1: "working fulltime",
        2: "working parttime",
        3: "temp not working",
        4: "unemployed",
        5: "retired",
        6: "school",
        7: "keeping house",
        8: "other",
        9: None,  # NA
    },
    "sex": {
        1: "male",
        2: "female",
    },
    "race": {
        0: None,
        1: "white",
        2: "black",
        3: "other",
    },
    "education_level": {
        0: "lt high school",
        1: "high school",
        2: "junior college",
        3: "bachelor",
        4: "graduate",
        7: None,
        8: None,
        9: None,
    },
    "marital_status": {
        1: "married",
        2: "widowed",
        3: "divorced",
        4: "separated",
        5: "never married",
        9: None,
    },
    "nativity": {
        0: None,
        1: "native-born",
        2: "foreign-born",
        8: None,  # DK
        9: None,
    },
    "sector": {
        0: None,
        1: "public",
        2: "private",
        8: None,
        9: None,
    },
}


def category_levels(field_name: str) -> list[str]:
    """Ordered levels of a recoded field; the first level is the reference."""
    levels: list[str] = []
    for level in RECODE_TABLES[field_name].values():
        if level is not None and level not in levels:
            levels.append(level)
    return levels


# =============================================================================
# ANALYSIS SETTINGS
# =============================================================================

DEFAULT_YEAR_RANGE: Final[tuple[int, int]] = (2000, 2016)
DEFAULT_CUTOFF: Final[float] = 0.5

# Confidence levels used per plot: marginal effects, coefficient tables, ROC
CONFIDENCE_LEVELS: Final[tuple[float, ...]] = (0.90, 0.95, 0.99)
DEFAULT_CONFIDENCE: Final[float] = 0.95

# IRLS settings (same defaults as R's glm.control)
IRLS_TOLERANCE: Final[float] = 1e-8
IRLS_MAX_ITER: Final[int] = 25

RANDOM_SEED: Final[int] = 42
N_BOOTSTRAP_REPLICATES: Final[int] = 200

# Prediction grid for smooth curves
AGE_GRID_RANGE: Final[tuple[float, float]] = (2.0, 9.0)  # decades
AGE_GRID_POINTS: Final[int] = 100

# Minimum PSUs per stratum before a stratum is considered "lonely"
MIN_PSU_PER_STRATUM: Final[int] = 2

# =============================================================================
# OUTPUT FILE NAMES
# =============================================================================

OUTPUT_COMPARISON_FILE: Final[str] = "model_comparison.csv"
OUTPUT_WALD_FILE: Final[str] = "wald_term_tests.csv"
OUTPUT_ACCURACY_FILE: Final[str] = "classification_accuracy.csv"
OUTPUT_ROC_FILE: Final[str] = "roc_points.csv"
OUTPUT_AUC_FILE: Final[str] = "roc_auc.csv"
OUTPUT_REPORT_FILE: Final[str] = "gss_retirement_report.md"


# =============================================================================
# RUN CONFIGURATION
# =============================================================================


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Explicit settings threaded through cleaning, design and fitting.

    Nothing in the pipeline reads process-wide option state; every stage
    receives one of these.
    """

    year_range: tuple[int, int] = DEFAULT_YEAR_RANGE
    retained_columns: tuple[str, ...] = tuple(RETAINED_COLUMNS)
    cutoff: float = DEFAULT_CUTOFF
    confidence_levels: tuple[float, ...] = CONFIDENCE_LEVELS
    cluster_col: str = "primary_sampling_unit_id"
    stratum_cols: tuple[str, ...] = ("year", "stratum_id")
    weight_col: str = "analysis_weight"
    nest: bool = True
    lonely_psu: LonelyPSUPolicy = LonelyPSUPolicy.ADJUST
    variance_method: VarianceMethod = VarianceMethod.LINEARIZATION
    n_replicates: int = N_BOOTSTRAP_REPLICATES
    random_seed: int = RANDOM_SEED
    irls_tol: float = IRLS_TOLERANCE
    irls_max_iter: int = IRLS_MAX_ITER
    rescale_weights: bool = True
    mandatory_fields: tuple[str, ...] = field(default=tuple(MANDATORY_FIELDS))

    def validate(self) -> "AnalysisConfig":
        """
        Check internal consistency.

        Raises:
            ValueError: If any setting is out of range
        """
        lo, hi = self.year_range
        if lo > hi:
            raise ValueError(f"Year range is inverted: {self.year_range}")
        if not 0.0 <= self.cutoff <= 1.0:
            raise ValueError(f"Cutoff must be in [0, 1], got {self.cutoff}")
        for level in self.confidence_levels:
            if not 0.0 < level < 1.0:
                raise ValueError(f"Confidence level must be in (0, 1), got {level}")
        if self.irls_max_iter < 1:
            raise ValueError(f"irls_max_iter must be >= 1, got {self.irls_max_iter}")
        if self.variance_method == VarianceMethod.BOOTSTRAP and self.n_replicates < 2:
            raise ValueError(f"n_replicates must be >= 2, got {self.n_replicates}")
        return self


# =============================================================================
# VALIDATION UTILITIES
# =============================================================================


def validate_year_range(year_range: tuple[int, int]) -> None:
    """
    Validate a (start, end) survey year range.

    Raises:
        ValueError: If the range is inverted or predates the GSS
    """
    lo, hi = year_range
    if lo > hi:
        raise ValueError(f"Year range is inverted: {year_range}")
    if lo < 1972:
        raise ValueError(f"Year {lo} predates the first GSS wave (1972)")


def validate_required_columns(
    df,  # pd.DataFrame, but avoiding import
    required_columns: list[str],
    context: str = "",
) -> None:
    """
    Validate that required columns exist in DataFrame.

    Args:
        df: DataFrame to check
        required_columns: List of required column names
        context: Context string for error message

    Raises:
        SchemaError: If any required column is missing
    """
    missing = [col for col in required_columns if col not in df.columns]
    if missing:
        ctx = f" in {context}" if context else ""
        raise SchemaError(
            f"Missing required columns{ctx}: {missing}. "
            f"Available columns: {list(df.columns)[:20]}..."
        )
