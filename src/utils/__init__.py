# Utility functions for the retirement analysis
"""
Utility modules:
- errors: Exception types
- weights: Weight rescaling, replicate weights and intervals
- validation: Data validation helpers
- loader: GSS file loading
- cleaning: Variable selection and recoding
- design: Survey design and design-based estimation
- glm: Survey-weighted logistic regression
- inference: Predictions, AIC and Wald tests
- diagnostics: Sensitivity/specificity and ROC

Modules that depend on src.config are imported directly
(e.g. ``from src.utils.design import build_survey_design``).
"""

from . import errors as errors
from . import validation as validation
from . import weights as weights

__all__ = ["errors", "validation", "weights"]
