"""
Gradient boosted regression trees from scratch.

Stage-wise additive modelling (Friedman, 2001) with presorted exact-greedy
tree learning, one-vs-all multiclass classification and stochastic row
subsampling.
"""

from .core import (
    GradientBoostRegressionLearner,
    GradientBoostClassificationLearner,
    GradientBoostRegressionModel,
    GradientBoostClassificationModel,
    ProbabilityPrediction,
)
from .exceptions import GBMError, ConfigurationError, ShapeError, DataValidationError
from .losses import Loss, SquaredLoss, BinomialLoss, AbsoluteLoss, HuberLoss, QuantileLoss
from .sampling import RowSampler
from .tree import RegressionTree, RegressionTreeLearner, create_column_order_index
from .validation import cross_validation_predictions, kfold_indices

__version__ = "0.1.0"
__all__ = [
    "GradientBoostRegressionLearner",
    "GradientBoostClassificationLearner",
    "GradientBoostRegressionModel",
    "GradientBoostClassificationModel",
    "ProbabilityPrediction",
    "GBMError",
    "ConfigurationError",
    "ShapeError",
    "DataValidationError",
    "Loss",
    "SquaredLoss",
    "BinomialLoss",
    "AbsoluteLoss",
    "HuberLoss",
    "QuantileLoss",
    "RowSampler",
    "RegressionTree",
    "RegressionTreeLearner",
    "create_column_order_index",
    "cross_validation_predictions",
    "kfold_indices",
]
