"""
Utility functions for gradient boosting: input validation, link functions and metrics.
"""

from typing import Optional
import numpy as np
from scipy.special import expit
from sklearn.metrics import mean_squared_error, log_loss, accuracy_score, roc_auc_score

from .exceptions import ShapeError, DataValidationError


# ===========================
# Input validation
# ===========================

def check_observations(X: np.ndarray) -> np.ndarray:
    """Convert observations to a finite float64 matrix of shape (n_rows, n_features)."""
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2:
        raise DataValidationError(
            f"Observations must be a 2D array, got {X.ndim} dimension(s)"
        )
    if X.shape[0] == 0 or X.shape[1] == 0:
        raise DataValidationError(f"Observations must be non-empty, got shape {X.shape}")
    if not np.all(np.isfinite(X)):
        raise DataValidationError("Observations contain NaN or infinite values")
    return X


def check_targets(X: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Convert targets to a finite float64 vector matching the rows of X."""
    y = np.asarray(y, dtype=np.float64).ravel()
    if X.shape[0] != y.shape[0]:
        raise ShapeError(
            f"Observations and targets have incompatible shapes: {X.shape[0]} vs {y.shape[0]}"
        )
    if not np.all(np.isfinite(y)):
        raise DataValidationError("Targets contain NaN or infinite values")
    return y


def check_indices(indices: Optional[np.ndarray], n_rows: int) -> np.ndarray:
    """
    Validate a row subset.

    ``None`` selects every row. Order is preserved; the indices are
    neither sorted nor deduplicated.
    """
    if indices is None:
        return np.arange(n_rows)

    indices = np.asarray(indices)
    if indices.ndim != 1 or indices.size == 0:
        raise DataValidationError("Indices must be a non-empty 1D sequence of row numbers")
    if not np.issubdtype(indices.dtype, np.integer):
        raise DataValidationError(f"Indices must be integers, got dtype {indices.dtype}")
    if indices.min() < 0 or indices.max() >= n_rows:
        raise DataValidationError(
            f"Indices must lie in [0, {n_rows - 1}], got range "
            f"[{indices.min()}, {indices.max()}]"
        )
    return indices.astype(np.intp)


def check_feature_count(X: np.ndarray, feature_count: int) -> np.ndarray:
    """Coerce an inference input to 2D and check it against the trained column count."""
    X = np.asarray(X, dtype=np.float64)
    if X.ndim == 1:
        X = X.reshape(1, -1)
    if X.ndim != 2:
        raise ShapeError(f"Observations must be 1D or 2D, got {X.ndim} dimensions")
    if X.shape[1] != feature_count:
        raise ShapeError(
            f"Model was trained on {feature_count} features, got {X.shape[1]}"
        )
    return X


# ===========================
# Link functions
# ===========================

def sigmoid(x: np.ndarray) -> np.ndarray:
    """Numerically stable logistic sigmoid."""
    return expit(x)


# ===========================
# Metrics
# ===========================

def compute_metrics_regression(
    y_true: np.ndarray,
    y_pred: np.ndarray
) -> dict:
    """Compute regression metrics."""
    mse = mean_squared_error(y_true, y_pred)
    rmse = np.sqrt(mse)
    mae = np.mean(np.abs(y_true - y_pred))

    return {
        "mse": mse,
        "rmse": rmse,
        "mae": mae
    }


def compute_metrics_classification(
    y_true: np.ndarray,
    y_pred_proba: np.ndarray,
    labels: Optional[np.ndarray] = None
) -> dict:
    """
    Compute classification metrics.

    ``y_pred_proba`` is either a vector of positive-class probabilities
    (binary) or a matrix with one column per entry of ``labels``.
    """
    y_pred_proba = np.asarray(y_pred_proba, dtype=np.float64)

    if y_pred_proba.ndim == 1:
        y_pred = (y_pred_proba >= 0.5).astype(int)
        proba_clipped = np.clip(y_pred_proba, 1e-15, 1 - 1e-15)
        logloss = log_loss(y_true, proba_clipped, labels=[0, 1])
        auc = roc_auc_score(y_true, y_pred_proba) if len(np.unique(y_true)) == 2 else np.nan
    else:
        if labels is None:
            labels = np.arange(y_pred_proba.shape[1])
        y_pred = np.asarray(labels)[np.argmax(y_pred_proba, axis=1)]
        logloss = log_loss(y_true, y_pred_proba, labels=labels)
        auc = np.nan

    accuracy = accuracy_score(y_true, y_pred)

    return {
        "log_loss": logloss,
        "accuracy": accuracy,
        "roc_auc": auc
    }
