"""
Exception hierarchy for gradient boosting.

Every error derives from ``ValueError`` as well as ``GBMError`` so callers
that guard model fitting with ``except ValueError`` keep working.
"""


class GBMError(Exception):
    """Base class for all errors raised by the gbm package."""


class ConfigurationError(GBMError, ValueError):
    """Invalid hyperparameter, raised from a learner constructor."""


class ShapeError(GBMError, ValueError):
    """
    Mismatched array shapes.

    Raised when observations and targets disagree on the number of rows, or
    when an inference input has a different column count than the model
    was trained on.
    """


class DataValidationError(GBMError, ValueError):
    """Malformed training data (empty or out-of-range indices, NaN/inf values)."""
