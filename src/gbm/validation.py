"""
K-fold cross-validation on top of the indexed ``learn`` contract.

Every fold is fit with ``learner.learn(X, y, train_indices)`` on the full
observation matrix, so the column order index is shared by construction and
held-out rows are only ever predicted, never read as targets.
"""

from typing import Iterator, Optional, Tuple
import logging
import numpy as np
from sklearn.model_selection import KFold, StratifiedKFold

from .exceptions import ConfigurationError
from .utils import check_observations, check_targets

logger = logging.getLogger(__name__)


def kfold_indices(
    n_rows: int,
    n_folds: int = 5,
    random_state: Optional[int] = 42,
    y: Optional[np.ndarray] = None
) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
    """
    Yield (train_indices, test_indices) pairs.

    Folds are stratified on ``y`` when it is given, plain shuffled folds otherwise.
    """
    if n_folds < 2:
        raise ConfigurationError(f"n_folds must be at least 2, got {n_folds}")

    if y is not None:
        splitter = StratifiedKFold(n_splits=n_folds, shuffle=True, random_state=random_state)
        yield from splitter.split(np.zeros((n_rows, 1)), y)
    else:
        splitter = KFold(n_splits=n_folds, shuffle=True, random_state=random_state)
        yield from splitter.split(np.zeros((n_rows, 1)))


def cross_validation_predictions(
    learner,
    X: np.ndarray,
    y: np.ndarray,
    n_folds: int = 5,
    random_state: Optional[int] = 42,
    stratify: bool = False,
    proba: bool = False
) -> np.ndarray:
    """
    Out-of-fold predictions for every row.

    Parameters
    ----------
    learner : GradientBoostRegressionLearner or GradientBoostClassificationLearner
        Anything with ``learn(X, y, indices)`` returning a model with ``predict``.
    X : np.ndarray, shape (n_samples, n_features)
    y : np.ndarray, shape (n_samples,)
    n_folds : int, default=5
    random_state : int, optional
        Seed for the fold assignment.
    stratify : bool, default=False
        Stratify folds on y (classification).
    proba : bool, default=False
        Return ``predict_proba`` output instead of ``predict``. Every fold
        must then see every class.

    Returns
    -------
    predictions : np.ndarray, shape (n_samples,) or (n_samples, n_classes)
    """
    X = check_observations(X)
    y = check_targets(X, y)

    predictions = None
    folds = kfold_indices(X.shape[0], n_folds, random_state, y if stratify else None)
    for fold, (train_indices, test_indices) in enumerate(folds):
        model = learner.learn(X, y, train_indices)
        fold_predictions = model.predict_proba(X[test_indices]) if proba else model.predict(X[test_indices])

        if predictions is None:
            predictions = np.zeros((X.shape[0],) + np.shape(fold_predictions)[1:])
        predictions[test_indices] = fold_predictions

        logger.info(f"Fold {fold + 1}/{n_folds}: trained on {len(train_indices)} rows")

    return predictions
