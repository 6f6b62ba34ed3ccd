"""
Unit tests for gradient boosting implementation.

Tests numerical correctness of:
- Pseudo-residual computation
- Leaf value optimisation
- Model fitting and prediction
- Determinism with random_state
"""

import numpy as np
import pytest
from sklearn.tree import DecisionTreeRegressor
from sklearn.datasets import make_regression, make_classification

import sys
from pathlib import Path

# Add src directory to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from gbm.core import (
    GradientBoostRegressionLearner, GradientBoostClassificationLearner,
    GradientBoostClassificationModel
)
from gbm.exceptions import ConfigurationError, ShapeError, DataValidationError
from gbm.losses import SquaredLoss, BinomialLoss
from gbm.utils import sigmoid


# =========================
# Test Loss Functions
# =========================

def test_squared_negative_gradient():
    """Test squared-error pseudo-residuals match theoretical formula."""
    y_true = np.array([1.0, 2.0, 3.0, 4.0])
    y_pred = np.array([1.5, 1.8, 3.2, 3.5])

    residuals = SquaredLoss().negative_gradient(y_true, y_pred)

    np.testing.assert_allclose(residuals, y_true - y_pred, rtol=1e-10)


def test_squared_leaf_value_is_mean_residual():
    """Test optimal leaf value for squared error is mean of residuals."""
    y_true = np.array([2.0, 3.0, 5.0, 7.0])
    y_pred = np.array([1.0, 2.5, 4.0, 6.0])
    residuals = y_true - y_pred

    gamma = SquaredLoss().leaf_value(y_true, residuals, y_pred)

    assert abs(gamma - np.mean(residuals)) < 1e-10


def test_binomial_negative_gradient():
    """Test logistic loss pseudo-residuals."""
    y_true = np.array([0.0, 1.0, 1.0, 0.0])
    F = np.array([-0.5, 1.2, 0.3, -1.0])

    residuals = BinomialLoss().negative_gradient(y_true, F)

    np.testing.assert_allclose(residuals, y_true - sigmoid(F), rtol=1e-10)


def test_update_residuals_leaves_out_of_sample_rows_untouched():
    y_true = np.array([1.0, 0.0, 1.0, 0.0])
    F = np.zeros(4)
    residuals = np.full(4, 7.0)
    in_sample = np.array([True, False, True, False])

    BinomialLoss().update_residuals(y_true, F, residuals, in_sample)

    np.testing.assert_allclose(residuals, [0.5, 7.0, 0.5, 7.0])


def test_sigmoid_stability():
    """Test sigmoid is numerically stable for large inputs."""
    p_pos = sigmoid(np.array([100.0, 500.0]))
    p_neg = sigmoid(np.array([-100.0, -500.0]))

    np.testing.assert_allclose(p_pos, 1.0, atol=1e-10)
    np.testing.assert_allclose(p_neg, 0.0, atol=1e-10)


# =========================
# Test GradientBoostRegressionLearner
# =========================

def test_regressor_single_tree_matches_dt():
    """
    A single stage (iterations=1, learning_rate=1.0) must match fitting
    DecisionTreeRegressor to the residuals from f_0 = mean(y).
    """
    X, y = make_regression(n_samples=100, n_features=10, random_state=42)
    # sklearn trees work in float32; keep both implementations on the same grid
    X = X.astype(np.float32).astype(np.float64)

    model = GradientBoostRegressionLearner(
        iterations=1,
        learning_rate=1.0,
        maximum_tree_depth=3,
        sub_sample_ratio=1.0,
        random_state=42
    ).learn(X, y)
    y_pred_boost = model.predict(X)

    f0 = np.mean(y)
    dt = DecisionTreeRegressor(max_depth=3, random_state=42)
    dt.fit(X, y - f0)
    y_pred_dt = f0 + dt.predict(X)

    np.testing.assert_allclose(y_pred_boost, y_pred_dt, rtol=1e-6, atol=1e-8)


def test_regressor_determinism():
    """Test that same random_state gives identical results."""
    X, y = make_regression(n_samples=100, n_features=5, random_state=123)

    pred1 = GradientBoostRegressionLearner(
        iterations=10, sub_sample_ratio=0.8, random_state=42
    ).learn(X, y).predict(X)
    pred2 = GradientBoostRegressionLearner(
        iterations=10, sub_sample_ratio=0.8, random_state=42
    ).learn(X, y).predict(X)

    np.testing.assert_array_equal(pred1, pred2)


def test_repeated_learn_calls_are_identical():
    """The generator is reseeded per learn call, so one learner reproduces itself."""
    X, y = make_regression(n_samples=80, n_features=4, random_state=5)
    learner = GradientBoostRegressionLearner(iterations=8, sub_sample_ratio=0.6, random_state=3)

    np.testing.assert_array_equal(learner.learn(X, y).predict(X), learner.learn(X, y).predict(X))


def test_regressor_learning_rate_effect():
    """Test that lower learning_rate reduces per-iteration impact."""
    X, y = make_regression(n_samples=100, n_features=5, random_state=42)

    model_high = GradientBoostRegressionLearner(
        iterations=5, learning_rate=1.0, maximum_tree_depth=3
    ).learn(X, y)
    model_low = GradientBoostRegressionLearner(
        iterations=5, learning_rate=0.1, maximum_tree_depth=3
    ).learn(X, y)

    mse_high = np.mean((y - model_high.predict(X)) ** 2)
    mse_low = np.mean((y - model_low.predict(X)) ** 2)

    assert mse_high < mse_low


def test_single_exact_fit_stage_reduces_loss():
    """One unshrunk stage on all rows must beat the constant initial prediction."""
    X, y = make_regression(n_samples=60, n_features=3, noise=5.0, random_state=0)
    loss = SquaredLoss()

    model = GradientBoostRegressionLearner(
        iterations=1, learning_rate=1.0, maximum_tree_depth=2
    ).learn(X, y)

    initial = np.full_like(y, model.initial_loss[0])
    assert loss.loss(y, model.predict(X)) < loss.loss(y, initial)


def test_identical_targets_predict_initial_value_exactly():
    rng = np.random.default_rng(0)
    X = rng.standard_normal((32, 3))
    y = np.full(32, 2.5)

    model = GradientBoostRegressionLearner(iterations=5, learning_rate=1.0).learn(X, y)

    assert model.initial_loss[0] == 2.5
    np.testing.assert_array_equal(model.predict(X), np.full(32, 2.5))
    assert all(tree.n_leaves == 1 for tree in model.trees[0])


# =========================
# Test GradientBoostClassificationLearner
# =========================

def test_end_to_end_single_split():
    """Four rows, one feature: one stump splitting at 2.5."""
    X = np.array([[1.0], [2.0], [3.0], [4.0]])
    y = np.array([0.0, 0.0, 1.0, 1.0])

    model = GradientBoostClassificationLearner(
        iterations=1,
        learning_rate=1.0,
        maximum_tree_depth=1,
        minimum_split_size=1,
        loss=BinomialLoss()
    ).learn(X, y)

    tree = model.trees[0][0]
    assert tree.feature[0] == 0
    assert tree.threshold[0] == pytest.approx(2.5)
    left, right = tree.left[0], tree.right[0]
    assert tree.value[left] < 0 < tree.value[right]

    label, probability = model.predict_probability(np.array([4.0]))
    assert label == 1.0
    assert probability[1.0] > 0.5
    assert probability[0.0] == pytest.approx(1.0 - probability[1.0])
    assert model.predict(np.array([4.0])) == 1.0
    assert model.predict(np.array([1.0])) == 0.0


def test_classifier_predict_proba_range():
    """Test that predicted probabilities are in [0, 1] and rows sum to one."""
    X, y = make_classification(n_samples=100, n_features=10, n_classes=2, random_state=42)

    proba = GradientBoostClassificationLearner(iterations=20).learn(X, y).predict_proba(X)

    assert proba.shape == (100, 2)
    assert np.all(proba >= 0.0)
    assert np.all(proba <= 1.0)
    np.testing.assert_allclose(proba.sum(axis=1), 1.0)


def test_classifier_predict_matches_proba():
    """Test that predict returns the argmax of predict_proba."""
    X, y = make_classification(n_samples=100, n_features=10, n_classes=2, random_state=42)

    model = GradientBoostClassificationLearner(iterations=20).learn(X, y)
    proba = model.predict_proba(X)

    np.testing.assert_array_equal(model.predict(X), model.target_names[np.argmax(proba, axis=1)])


def test_classifier_determinism():
    """Test that same random_state gives identical results."""
    X, y = make_classification(n_samples=100, n_features=5, random_state=123)

    proba1 = GradientBoostClassificationLearner(
        iterations=10, sub_sample_ratio=0.8, random_state=42
    ).learn(X, y).predict_proba(X)
    proba2 = GradientBoostClassificationLearner(
        iterations=10, sub_sample_ratio=0.8, random_state=42
    ).learn(X, y).predict_proba(X)

    np.testing.assert_array_equal(proba1, proba2)


def test_binary_targets_fit_one_tree_sequence():
    X, y = make_classification(n_samples=80, n_features=5, random_state=0)

    model = GradientBoostClassificationLearner(iterations=6).learn(X, y)

    assert isinstance(model, GradientBoostClassificationModel)
    assert len(model.trees) == 1
    assert len(model.trees[0]) == 6
    np.testing.assert_array_equal(model.target_names, [0.0, 1.0])


def test_multiclass_targets_fit_one_sequence_per_class():
    X, y = make_classification(
        n_samples=150, n_features=6, n_informative=4, n_classes=3, random_state=0
    )
    y = y.astype(float) * 2.0 + 1.0  # labels 1, 3, 5

    model = GradientBoostClassificationLearner(iterations=4).learn(X, y)

    assert len(model.trees) == 3
    assert all(len(sequence) == 4 for sequence in model.trees)
    np.testing.assert_array_equal(model.target_names, [1.0, 3.0, 5.0])

    proba = model.predict_proba(X)
    assert proba.shape == (150, 3)
    np.testing.assert_allclose(proba.sum(axis=1), 1.0)
    assert set(np.unique(model.predict(X))).issubset({1.0, 3.0, 5.0})


def test_classifier_improves_with_iterations():
    """Test that more iterations generally improve training accuracy."""
    X, y = make_classification(n_samples=200, n_features=10, n_informative=8, random_state=42)

    acc_few = np.mean(GradientBoostClassificationLearner(iterations=5).learn(X, y).predict(X) == y)
    acc_many = np.mean(GradientBoostClassificationLearner(iterations=50).learn(X, y).predict(X) == y)

    assert acc_many >= acc_few


# =========================
# Test Validation
# =========================

@pytest.mark.parametrize("kwargs", [
    {"iterations": 0},
    {"learning_rate": 0.0},
    {"maximum_tree_depth": 0},
    {"minimum_split_size": 0},
    {"minimum_information_gain": 0.0},
    {"sub_sample_ratio": 0.0},
    {"sub_sample_ratio": 1.5},
    {"features_per_split": -1},
    {"n_jobs": 0},
    {"loss": "binomial"},
])
def test_invalid_configuration_raises(kwargs):
    with pytest.raises(ConfigurationError):
        GradientBoostClassificationLearner(**kwargs)


def test_configuration_error_is_value_error():
    with pytest.raises(ValueError):
        GradientBoostRegressionLearner(iterations=-3)


def test_mismatched_lengths_raise_shape_error():
    X = np.zeros((5, 2))
    with pytest.raises(ShapeError):
        GradientBoostRegressionLearner(iterations=1).learn(X, np.zeros(4))


def test_non_finite_observations_raise():
    X = np.ones((5, 2))
    X[2, 1] = np.nan
    with pytest.raises(DataValidationError):
        GradientBoostRegressionLearner(iterations=1).learn(X, np.zeros(5))


@pytest.mark.parametrize("indices", [[], [0, 5], [-1, 2]])
def test_bad_indices_raise(indices):
    X = np.arange(10, dtype=float).reshape(5, 2)
    with pytest.raises(DataValidationError):
        GradientBoostRegressionLearner(iterations=1).learn(X, np.arange(5.0), np.array(indices, dtype=int))


def test_predict_with_wrong_feature_count_raises():
    X, y = make_regression(n_samples=30, n_features=4, random_state=0)
    model = GradientBoostRegressionLearner(iterations=2).learn(X, y)

    with pytest.raises(ShapeError):
        model.predict(np.zeros((3, 5)))
    with pytest.raises(ShapeError):
        model.predict(np.zeros(3))


# =========================
# Test Edge Cases
# =========================

def test_regressor_two_samples():
    """Test regressor on minimal data."""
    X = np.array([[1, 2], [3, 4]])
    y = np.array([1.0, 2.0])

    pred = GradientBoostRegressionLearner(iterations=5).learn(X, y).predict(X)

    assert pred.shape == y.shape


def test_classifier_two_samples():
    """Test classifier on minimal data."""
    X = np.array([[1, 2], [3, 4]])
    y = np.array([0, 1])

    model = GradientBoostClassificationLearner(iterations=5).learn(X, y)
    pred = model.predict(X)
    proba = model.predict_proba(X)

    assert pred.shape == y.shape
    assert proba.shape == (2, 2)
    assert np.all(proba >= 0.0) and np.all(proba <= 1.0)


def test_single_row_predict_returns_scalar():
    X, y = make_regression(n_samples=30, n_features=3, random_state=0)
    model = GradientBoostRegressionLearner(iterations=3).learn(X, y)

    single = model.predict(X[0])

    assert isinstance(single, float)
    assert single == pytest.approx(model.predict(X)[0])


def test_tiny_subsample_ratio_still_fits():
    """round(ratio * n) == 0 still draws one row per tree."""
    X, y = make_regression(n_samples=4, n_features=2, random_state=0)

    model = GradientBoostRegressionLearner(iterations=3, sub_sample_ratio=0.05).learn(X, y)

    assert np.all(np.isfinite(model.predict(X)))
    assert all(tree.samples[0] == 1 for tree in model.trees[0])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
