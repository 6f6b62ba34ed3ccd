"""
Regression trees fit to pseudo-residuals.

Trees are grown with an exact greedy, presorted split search: every feature
column is sorted once per boosting run (the column order index), and each
node scans those global orderings restricted to its own in-sample rows.
Running sums of residuals and squared residuals then give the
variance-reduction gain of every candidate threshold in a single pass,
without re-sorting at any node.

Reference: Friedman, J. H. (2001). Greedy function approximation: A gradient
boosting machine. Annals of Statistics, 29(5), 1189-1232. Section 4.
"""

from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional
import logging
import numpy as np

from .exceptions import ConfigurationError, ShapeError
from .losses import Loss

logger = logging.getLogger(__name__)

LEAF = -1


def create_column_order_index(X: np.ndarray) -> np.ndarray:
    """
    Row permutations that sort each feature column ascending.

    Rows with equal values keep their original relative order (stable sort),
    so the index is fully determined by X.

    Parameters
    ----------
    X : np.ndarray, shape (n_rows, n_features)

    Returns
    -------
    order : np.ndarray of int, shape (n_features, n_rows)
        ``order[j]`` lists row numbers sorted by ``X[:, j]``.
    """
    return np.ascontiguousarray(np.argsort(X, axis=0, kind="stable").T)


class SplitCandidate:
    """Best split found for one feature at one node."""

    __slots__ = ("feature", "threshold", "gain", "left_count", "right_count")

    def __init__(self, feature: int, threshold: float, gain: float,
                 left_count: int, right_count: int):
        self.feature = feature
        self.threshold = threshold
        self.gain = gain
        self.left_count = left_count
        self.right_count = right_count

    def __repr__(self) -> str:
        return (
            f"SplitCandidate(feature={self.feature}, threshold={self.threshold:.6g}, "
            f"gain={self.gain:.6g})"
        )


class RegressionTree:
    """
    Fitted binary regression tree stored as parallel node arrays.

    Node 0 is the root. For an internal node ``i``, rows with
    ``x[feature[i]] <= threshold[i]`` descend to ``left[i]`` and all others
    to ``right[i]``. Leaves have ``feature[i] == -1`` and output ``value[i]``.
    Internal nodes also carry ``value``, the leaf value they would have had.

    Attributes
    ----------
    feature, left, right, depth, samples : np.ndarray of int
    threshold, value, gain : np.ndarray of float
        ``samples`` counts the in-sample training rows routed to each node;
        ``gain`` is the split improvement (0 for leaves).
    """

    def __init__(
        self,
        feature: np.ndarray,
        threshold: np.ndarray,
        left: np.ndarray,
        right: np.ndarray,
        value: np.ndarray,
        gain: np.ndarray,
        samples: np.ndarray,
        depth: np.ndarray
    ):
        self.feature = np.asarray(feature, dtype=np.intp)
        self.threshold = np.asarray(threshold, dtype=np.float64)
        self.left = np.asarray(left, dtype=np.intp)
        self.right = np.asarray(right, dtype=np.intp)
        self.value = np.asarray(value, dtype=np.float64)
        self.gain = np.asarray(gain, dtype=np.float64)
        self.samples = np.asarray(samples, dtype=np.intp)
        self.depth = np.asarray(depth, dtype=np.intp)

    @property
    def n_nodes(self) -> int:
        return len(self.feature)

    @property
    def n_leaves(self) -> int:
        return int(np.sum(self.feature == LEAF))

    @property
    def max_depth(self) -> int:
        return int(self.depth.max())

    def is_leaf(self, node: int) -> bool:
        return self.feature[node] == LEAF

    def apply(self, X: np.ndarray) -> np.ndarray:
        """
        Leaf id reached by each row.

        Routing only compares feature values against thresholds, so training
        rows and unseen rows are treated identically.
        """
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X.reshape(1, -1)

        node = np.zeros(X.shape[0], dtype=np.intp)
        active = np.flatnonzero(self.feature[node] != LEAF)
        while active.size:
            current = node[active]
            go_left = X[active, self.feature[current]] <= self.threshold[current]
            node[active] = np.where(go_left, self.left[current], self.right[current])
            active = active[self.feature[node[active]] != LEAF]
        return node

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Leaf output for each row of X, shape (n_rows,)."""
        return self.value[self.apply(X)]

    def feature_importance(self, n_features: int) -> np.ndarray:
        """Total split gain per feature column."""
        internal = self.feature != LEAF
        return np.bincount(
            self.feature[internal], weights=self.gain[internal], minlength=n_features
        )

    def __repr__(self) -> str:
        return f"RegressionTree(n_nodes={self.n_nodes}, n_leaves={self.n_leaves})"


class RegressionTreeLearner:
    """
    Grows one shallow regression tree per boosting stage.

    Nodes are expanded breadth-first. A node is split only while its depth is
    below ``maximum_tree_depth`` and a candidate exists whose gain is at least
    ``minimum_information_gain`` and whose children both hold at least
    ``minimum_split_size`` in-sample rows. Otherwise the node becomes a leaf
    with the loss-specific terminal value.

    Ties on gain keep the first candidate found: features are scanned in
    ascending column order and thresholds in ascending value order, and a
    candidate only replaces the incumbent when its gain is strictly larger.

    Parameters
    ----------
    maximum_tree_depth : int, default=3
        Depth limit; the root has depth 0.
    minimum_split_size : int, default=1
        Minimum in-sample rows on each side of a split.
    minimum_information_gain : float, default=1e-6
        Minimum variance reduction required to split.
    loss : Loss, optional
        Supplies the split cost and leaf values. Required.
    features_per_split : int, default=0
        Number of randomly drawn candidate features per node; 0 uses all.
    n_jobs : int, default=1
        Threads used to evaluate candidate features concurrently. Results
        are identical for every value.
    """

    def __init__(
        self,
        maximum_tree_depth: int = 3,
        minimum_split_size: int = 1,
        minimum_information_gain: float = 1e-6,
        loss: Optional[Loss] = None,
        features_per_split: int = 0,
        n_jobs: int = 1
    ):
        if maximum_tree_depth < 1:
            raise ConfigurationError(
                f"maximum_tree_depth must be at least 1, got {maximum_tree_depth}"
            )
        if minimum_split_size < 1:
            raise ConfigurationError(
                f"minimum_split_size must be at least 1, got {minimum_split_size}"
            )
        if not minimum_information_gain > 0:
            raise ConfigurationError(
                f"minimum_information_gain must be positive, got {minimum_information_gain}"
            )
        if features_per_split < 0:
            raise ConfigurationError(
                f"features_per_split must be non-negative, got {features_per_split}"
            )
        if n_jobs < 1:
            raise ConfigurationError(f"n_jobs must be at least 1, got {n_jobs}")
        if not isinstance(loss, Loss):
            raise ConfigurationError(f"loss must be a Loss instance, got {loss!r}")

        self.maximum_tree_depth = maximum_tree_depth
        self.minimum_split_size = minimum_split_size
        self.minimum_information_gain = minimum_information_gain
        self.loss = loss
        self.features_per_split = features_per_split
        self.n_jobs = n_jobs

    def learn(
        self,
        X: np.ndarray,
        targets: np.ndarray,
        residuals: np.ndarray,
        predictions: np.ndarray,
        column_order: np.ndarray,
        in_sample: np.ndarray,
        rng: Optional[np.random.Generator] = None
    ) -> RegressionTree:
        """
        Fit a tree to the residuals of the in-sample rows.

        Parameters
        ----------
        X : np.ndarray, shape (n_rows, n_features)
            All observations; only in-sample rows are read.
        targets : np.ndarray, shape (n_rows,)
            Targets (one-vs-all indicator for classification), used for leaf values.
        residuals : np.ndarray, shape (n_rows,)
            Current pseudo-residuals.
        predictions : np.ndarray, shape (n_rows,)
            Current raw ensemble predictions, used for leaf values.
        column_order : np.ndarray, shape (n_features, n_rows)
            Output of ``create_column_order_index(X)``.
        in_sample : np.ndarray of bool, shape (n_rows,)
            Rows that may influence the tree.
        rng : np.random.Generator, optional
            Source for per-node feature subsets when ``features_per_split > 0``.

        Returns
        -------
        tree : RegressionTree
        """
        n_rows, n_features = X.shape
        if column_order.shape != (n_features, n_rows):
            raise ShapeError(
                f"Column order index has shape {column_order.shape}, "
                f"expected {(n_features, n_rows)}"
            )
        if self.features_per_split and rng is None:
            rng = np.random.default_rng()

        # Node id per row; rows that are not in-sample never join a node
        node_of_row = np.where(in_sample, 0, LEAF)

        feature: List[int] = [LEAF]
        threshold: List[float] = [0.0]
        left: List[int] = [LEAF]
        right: List[int] = [LEAF]
        value: List[float] = [0.0]
        gain: List[float] = [0.0]
        samples: List[int] = [0]
        depth: List[int] = [0]

        executor = ThreadPoolExecutor(max_workers=self.n_jobs) if self.n_jobs > 1 else None
        try:
            queue = deque([0])
            while queue:
                node = queue.popleft()
                node_mask = node_of_row == node
                rows = np.flatnonzero(node_mask)

                samples[node] = len(rows)
                value[node] = self.loss.leaf_value(
                    targets[rows], residuals[rows], predictions[rows]
                )

                split = None
                if depth[node] < self.maximum_tree_depth and len(rows) >= 2 * self.minimum_split_size:
                    features = self._candidate_features(n_features, rng)
                    split = self._find_best_split(
                        X, residuals, column_order, node_mask, rows, features, executor
                    )

                if split is None:
                    logger.debug(f"Node {node} at depth {depth[node]} with {len(rows)} rows is a leaf")
                    continue

                left_id, right_id = len(feature), len(feature) + 1
                for _ in range(2):
                    feature.append(LEAF)
                    threshold.append(0.0)
                    left.append(LEAF)
                    right.append(LEAF)
                    value.append(0.0)
                    gain.append(0.0)
                    samples.append(0)
                    depth.append(depth[node] + 1)

                feature[node] = split.feature
                threshold[node] = split.threshold
                left[node] = left_id
                right[node] = right_id
                gain[node] = split.gain

                goes_left = X[rows, split.feature] <= split.threshold
                node_of_row[rows[goes_left]] = left_id
                node_of_row[rows[~goes_left]] = right_id
                queue.append(left_id)
                queue.append(right_id)
        finally:
            if executor is not None:
                executor.shutdown()

        return RegressionTree(feature, threshold, left, right, value, gain, samples, depth)

    def _candidate_features(self, n_features: int, rng: Optional[np.random.Generator]) -> np.ndarray:
        if 0 < self.features_per_split < n_features:
            return np.sort(rng.choice(n_features, size=self.features_per_split, replace=False))
        return np.arange(n_features)

    def _find_best_split(
        self,
        X: np.ndarray,
        residuals: np.ndarray,
        column_order: np.ndarray,
        node_mask: np.ndarray,
        rows: np.ndarray,
        features: np.ndarray,
        executor: Optional[ThreadPoolExecutor]
    ) -> Optional[SplitCandidate]:
        """Best split over ``features``; None when nothing satisfies the constraints."""
        node_residuals = residuals[rows]
        node_sum = np.sum(node_residuals)
        node_square_sum = np.sum(node_residuals ** 2)
        node_cost = self.loss.split_cost(node_sum, node_square_sum, len(rows))

        def evaluate(j):
            return self._evaluate_feature(
                int(j), X, residuals, column_order[j], node_mask,
                node_sum, node_square_sum, node_cost
            )

        if executor is not None:
            candidates = list(executor.map(evaluate, features))
        else:
            candidates = [evaluate(j) for j in features]

        # Reduce in column order so the outcome never depends on thread timing
        best = None
        for candidate in candidates:
            if candidate is not None and (best is None or candidate.gain > best.gain):
                best = candidate
        return best

    def _evaluate_feature(
        self,
        j: int,
        X: np.ndarray,
        residuals: np.ndarray,
        order: np.ndarray,
        node_mask: np.ndarray,
        node_sum: float,
        node_square_sum: float,
        node_cost: float
    ) -> Optional[SplitCandidate]:
        """Scan one feature's presorted rows and return its best split."""
        sorted_rows = order[node_mask[order]]
        n = len(sorted_rows)
        if n < 2:
            return None

        values = X[sorted_rows, j]
        r = residuals[sorted_rows]

        # Candidate k puts the first k + 1 sorted rows on the left
        left_count = np.arange(1, n)
        right_count = n - left_count
        left_sum = np.cumsum(r)[:-1]
        left_square_sum = np.cumsum(r ** 2)[:-1]
        right_sum = node_sum - left_sum
        right_square_sum = node_square_sum - left_square_sum

        children_cost = (
            self.loss.split_cost(left_sum, left_square_sum, left_count)
            + self.loss.split_cost(right_sum, right_square_sum, right_count)
        )
        gains = node_cost - children_cost

        valid = (
            (values[1:] > values[:-1])
            & (left_count >= self.minimum_split_size)
            & (right_count >= self.minimum_split_size)
            & (gains >= self.minimum_information_gain)
        )
        if not valid.any():
            return None

        # argmax returns the first maximum: lowest threshold wins ties
        k = int(np.argmax(np.where(valid, gains, -np.inf)))
        threshold = (values[k] + values[k + 1]) / 2.0
        if not threshold < values[k + 1]:
            # Adjacent floats: the midpoint rounds up onto the right value
            threshold = values[k]

        return SplitCandidate(j, float(threshold), float(gains[k]), k + 1, n - k - 1)

