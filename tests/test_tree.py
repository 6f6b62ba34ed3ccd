"""
Tests for the presorted regression tree learner and the column order index.
"""

import numpy as np
import pytest

import sys
from pathlib import Path

src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from gbm.exceptions import ConfigurationError, ShapeError
from gbm.losses import SquaredLoss, BinomialLoss
from gbm.tree import RegressionTreeLearner, create_column_order_index, LEAF


def fit_tree(X, y, in_sample=None, loss=None, **kwargs):
    """Fit one tree to squared-error residuals around the mean."""
    loss = loss if loss is not None else SquaredLoss()
    in_sample = np.ones(len(y), dtype=bool) if in_sample is None else in_sample
    predictions = np.full(len(y), loss.initial_value(y, in_sample))
    residuals = np.zeros(len(y))
    loss.update_residuals(y, predictions, residuals, in_sample)
    learner = RegressionTreeLearner(loss=loss, **kwargs)
    return learner.learn(X, y, residuals, predictions, create_column_order_index(X), in_sample)


class TestColumnOrderIndex:

    def test_each_row_sorts_its_feature(self):
        rng = np.random.default_rng(0)
        X = rng.standard_normal((25, 4))

        order = create_column_order_index(X)

        assert order.shape == (4, 25)
        for j in range(4):
            assert np.all(np.diff(X[order[j], j]) >= 0)
            assert sorted(order[j]) == list(range(25))

    def test_equal_values_keep_row_order(self):
        X = np.array([[2.0], [1.0], [2.0], [1.0]])
        np.testing.assert_array_equal(create_column_order_index(X)[0], [1, 3, 0, 2])


class TestSplitSearch:

    def test_single_split_between_distinct_values(self):
        X = np.array([[1.0], [2.0], [3.0], [4.0]])
        y = np.array([0.0, 0.0, 1.0, 1.0])

        tree = fit_tree(X, y, maximum_tree_depth=1)

        assert tree.n_nodes == 3
        assert tree.threshold[0] == pytest.approx(2.5)
        np.testing.assert_allclose(tree.predict(X), [-0.5, -0.5, 0.5, 0.5])

    def test_duplicate_values_never_straddle_a_split(self):
        X = np.array([[1.0], [1.0], [1.0], [2.0], [2.0]])
        y = np.array([0.0, 1.0, 0.0, 5.0, 5.0])

        tree = fit_tree(X, y, maximum_tree_depth=3)

        assert tree.feature[0] == 0
        assert tree.threshold[0] == pytest.approx(1.5)
        assert tree.n_leaves == 2

    def test_tied_features_pick_lowest_column(self):
        rng = np.random.default_rng(1)
        column = rng.standard_normal(20)
        X = np.column_stack([column, column, column])
        y = (column > 0).astype(float)

        tree = fit_tree(X, y, maximum_tree_depth=2)

        internal = tree.feature[tree.feature != LEAF]
        assert np.all(internal == 0)

    def test_tied_thresholds_pick_lowest_value(self):
        # Cuts at 1.5 and 3.5 reduce the variance by exactly the same amount
        X = np.array([[1.0], [2.0], [3.0], [4.0]])
        y = np.array([0.0, 1.0, 1.0, 0.0])

        tree = fit_tree(X, y, maximum_tree_depth=1)

        assert tree.threshold[0] == pytest.approx(1.5)

    def test_constant_feature_becomes_leaf(self):
        X = np.ones((10, 2))
        y = np.arange(10, dtype=float)

        tree = fit_tree(X, y, maximum_tree_depth=3)

        assert tree.n_nodes == 1
        assert tree.is_leaf(0)
        assert tree.value[0] == pytest.approx(0.0)

    def test_minimum_information_gain_blocks_small_splits(self):
        X = np.array([[1.0], [2.0], [3.0], [4.0]])
        y = np.array([0.0, 0.0, 0.001, 0.001])

        assert fit_tree(X, y, minimum_information_gain=1e-3).n_nodes == 1
        assert fit_tree(X, y, minimum_information_gain=1e-9).n_nodes == 3

    def test_depth_limit(self):
        rng = np.random.default_rng(2)
        X = rng.standard_normal((200, 3))
        y = rng.standard_normal(200)

        for depth in (1, 2, 4):
            tree = fit_tree(X, y, maximum_tree_depth=depth)
            assert tree.max_depth <= depth
            assert np.all(tree.depth[tree.feature != LEAF] < depth)


class TestLeafConstraints:

    def test_every_leaf_holds_minimum_split_size_rows(self):
        rng = np.random.default_rng(3)
        X = rng.standard_normal((10, 2))
        y = rng.standard_normal(10)

        tree = fit_tree(X, y, maximum_tree_depth=4, minimum_split_size=3)

        leaves = tree.feature == LEAF
        assert np.all(tree.samples[leaves] >= 3)
        counts = np.bincount(tree.apply(X), minlength=tree.n_nodes)
        assert np.all(counts[leaves] >= 3)
        assert counts[leaves].sum() == 10

    def test_only_in_sample_rows_are_counted(self):
        rng = np.random.default_rng(4)
        X = rng.standard_normal((40, 3))
        y = rng.standard_normal(40)
        in_sample = np.zeros(40, dtype=bool)
        in_sample[::2] = True

        tree = fit_tree(X, y, in_sample=in_sample, maximum_tree_depth=3, minimum_split_size=2)

        assert tree.samples[0] == 20
        leaves = tree.feature == LEAF
        assert tree.samples[leaves].sum() == 20
        assert np.all(tree.samples[leaves] >= 2)

    def test_out_of_sample_rows_do_not_change_the_tree(self):
        rng = np.random.default_rng(5)
        X = rng.standard_normal((30, 2))
        y = rng.standard_normal(30)
        in_sample = np.ones(30, dtype=bool)
        in_sample[:5] = False

        y_changed = y.copy()
        y_changed[:5] = 1e6

        tree_a = fit_tree(X, y, in_sample=in_sample)
        tree_b = fit_tree(X, y_changed, in_sample=in_sample)

        np.testing.assert_array_equal(tree_a.threshold, tree_b.threshold)
        np.testing.assert_array_equal(tree_a.value, tree_b.value)


class TestPrediction:

    def test_routes_less_or_equal_to_the_left(self):
        X = np.array([[1.0], [2.0], [3.0], [4.0]])
        y = np.array([0.0, 0.0, 1.0, 1.0])
        tree = fit_tree(X, y, maximum_tree_depth=1)

        novel = np.array([[2.5], [2.5000001], [-100.0], [100.0]])

        np.testing.assert_allclose(tree.predict(novel), [-0.5, 0.5, -0.5, 0.5])

    def test_single_row_input(self):
        X = np.array([[1.0], [2.0], [3.0], [4.0]])
        y = np.array([0.0, 0.0, 1.0, 1.0])
        tree = fit_tree(X, y, maximum_tree_depth=1)

        assert tree.predict(np.array([4.0])).shape == (1,)

    def test_binomial_leaf_is_newton_step(self):
        X = np.array([[1.0], [2.0], [3.0], [4.0]])
        y = np.array([0.0, 0.0, 1.0, 1.0])

        tree = fit_tree(X, y, loss=BinomialLoss(), maximum_tree_depth=1)

        # p = 0.5 everywhere: γ = Σr / Σp(1-p) = ±1.0 / 0.5
        np.testing.assert_allclose(tree.predict(X), [-2.0, -2.0, 2.0, 2.0])

    def test_feature_importance_sums_gains(self):
        rng = np.random.default_rng(6)
        X = rng.standard_normal((50, 3))
        y = 3.0 * X[:, 2] + 0.01 * rng.standard_normal(50)

        tree = fit_tree(X, y, maximum_tree_depth=2)
        importance = tree.feature_importance(3)

        assert importance.sum() == pytest.approx(tree.gain.sum())
        assert np.argmax(importance) == 2


class TestParallelismAndSampling:

    def test_threads_do_not_change_the_tree(self):
        rng = np.random.default_rng(7)
        X = rng.standard_normal((120, 6))
        y = X[:, 0] - 2 * X[:, 3] + rng.standard_normal(120)

        serial = fit_tree(X, y, maximum_tree_depth=4, n_jobs=1)
        threaded = fit_tree(X, y, maximum_tree_depth=4, n_jobs=4)

        np.testing.assert_array_equal(serial.feature, threaded.feature)
        np.testing.assert_array_equal(serial.threshold, threaded.threshold)
        np.testing.assert_array_equal(serial.value, threaded.value)

    def test_features_per_split_is_reproducible(self):
        rng = np.random.default_rng(8)
        X = rng.standard_normal((60, 5))
        y = rng.standard_normal(60)
        loss = SquaredLoss()
        in_sample = np.ones(60, dtype=bool)
        predictions = np.full(60, loss.initial_value(y, in_sample))
        residuals = loss.negative_gradient(y, predictions)
        order = create_column_order_index(X)
        learner = RegressionTreeLearner(maximum_tree_depth=3, loss=loss, features_per_split=2)

        tree_a = learner.learn(X, y, residuals, predictions, order, in_sample,
                               rng=np.random.default_rng(11))
        tree_b = learner.learn(X, y, residuals, predictions, order, in_sample,
                               rng=np.random.default_rng(11))

        np.testing.assert_array_equal(tree_a.feature, tree_b.feature)
        np.testing.assert_array_equal(tree_a.threshold, tree_b.threshold)


class TestLearnerValidation:

    def test_missing_loss_raises(self):
        with pytest.raises(ConfigurationError):
            RegressionTreeLearner(loss=None)

    def test_column_order_shape_is_checked(self):
        X = np.zeros((4, 2))
        y = np.zeros(4)
        learner = RegressionTreeLearner(loss=SquaredLoss())

        with pytest.raises(ShapeError):
            learner.learn(X, y, y, y, np.zeros((4, 2), dtype=int), np.ones(4, dtype=bool))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
