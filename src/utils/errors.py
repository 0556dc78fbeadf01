"""
Exception types for the retirement analysis pipeline.

Cleaning and design errors abort a run. A ConvergenceError is fatal only
to the model being fit.
"""


class SchemaError(KeyError):
    """A requested column is absent from the source table."""

    def __str__(self) -> str:
        # KeyError wraps its message in quotes
        return str(self.args[0]) if self.args else ""


class UnrecognizedCodeError(SchemaError):
    """A raw survey code is not listed in its recode table."""


class DesignError(ValueError):
    """The survey design cannot be constructed from the cleaned table."""


class ConvergenceError(RuntimeError):
    """Iteratively reweighted least squares did not converge."""


class InvalidInputError(ValueError):
    """Malformed input to a diagnostics function."""
