"""
Core gradient boosting implementations.

Implements Gradient Tree Boosting (Friedman, 2001; ESL Algorithm 10.4) with
shrinkage, stochastic row subsampling (Friedman, 2002) and one-vs-all
multiclass classification. Trees are grown by ``RegressionTreeLearner`` on a
column order index that is built once per ``learn`` call.

References:
- Hastie, T., Tibshirani, R., & Friedman, J. (2009). The Elements of Statistical
  Learning (2nd ed.). Springer. Chapter 10.
- Friedman, J. H. (2001). Greedy function approximation: A gradient boosting machine.
  Annals of Statistics, 29(5), 1189-1232.
- Friedman, J. H. (2002). Stochastic gradient boosting.
  Computational Statistics & Data Analysis, 38(4), 367-378.
"""

from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple
import logging
import pickle
import numpy as np
from sklearn.metrics import log_loss, mean_squared_error

from .exceptions import ConfigurationError, ShapeError
from .losses import Loss, BinomialLoss, SquaredLoss
from .sampling import RowSampler
from .tree import RegressionTree, RegressionTreeLearner, create_column_order_index
from .utils import (
    check_observations, check_targets, check_indices, check_feature_count, sigmoid
)

logger = logging.getLogger(__name__)


class ProbabilityPrediction(NamedTuple):
    """Predicted label together with the probability of every class label."""
    prediction: float
    probabilities: Dict[float, float]


def class_probabilities(raw: np.ndarray, n_classes: int) -> np.ndarray:
    """
    Convert raw one-vs-all scores of shape (n, k) into class probabilities.

    A model fit on a single label always predicts it with probability one.
    With two labels the single column scores the second class and the first
    class receives 1 - p. With more labels each class is squashed
    independently and the rows are renormalised to sum to one.
    """
    if n_classes == 1:
        return np.ones((raw.shape[0], 1))
    if n_classes == 2:
        p = sigmoid(raw[:, 0])
        return np.column_stack([1.0 - p, p])
    p = sigmoid(raw)
    return p / np.sum(p, axis=1, keepdims=True)


# ===========================
# Models
# ===========================

class GradientBoostModelBase:
    """
    Fitted additive tree ensemble.

    Stores one tree sequence per fitted target column together with the
    shrinkage and initial values needed to rebuild raw scores:
    F_k(x) = f0_k + ν Σ_m tree_km(x).
    """

    def __init__(
        self,
        trees: List[List[RegressionTree]],
        learning_rate: float,
        initial_loss: np.ndarray,
        feature_count: int
    ):
        self.trees = trees
        self.learning_rate = learning_rate
        self.initial_loss = np.atleast_1d(np.asarray(initial_loss, dtype=np.float64))
        self.feature_count = feature_count

    @property
    def n_iterations(self) -> int:
        """Number of boosting stages per target column."""
        return len(self.trees[0])

    def predict_raw(self, X: np.ndarray, up_to_iteration: Optional[int] = None) -> np.ndarray:
        """
        Raw additive scores before any output transform.

        Parameters
        ----------
        X : np.ndarray, shape (n_samples, n_features) or (n_features,)
            Observations.
        up_to_iteration : int, optional
            Use only the first k stages (for staged predictions).

        Returns
        -------
        F : np.ndarray, shape (n_samples, n_columns)
        """
        X = check_feature_count(X, self.feature_count)
        n_iterations = up_to_iteration if up_to_iteration is not None else self.n_iterations

        F = np.tile(self.initial_loss, (X.shape[0], 1))
        for k, sequence in enumerate(self.trees):
            for tree in sequence[:n_iterations]:
                F[:, k] += self.learning_rate * tree.predict(X)
        return F

    def raw_feature_importance(self) -> np.ndarray:
        """Summed split gain per feature column over every tree."""
        importance = np.zeros(self.feature_count)
        for sequence in self.trees:
            for tree in sequence:
                importance += tree.feature_importance(self.feature_count)
        return importance

    def feature_importance(self, feature_names: Optional[Sequence[str]] = None) -> Dict[str, float]:
        """
        Relative feature importance scaled so the most important feature is 100.

        Returns a dict sorted by decreasing importance.
        """
        if feature_names is None:
            feature_names = [f"feature_{j}" for j in range(self.feature_count)]
        if len(feature_names) != self.feature_count:
            raise ShapeError(
                f"Expected {self.feature_count} feature names, got {len(feature_names)}"
            )

        raw = self.raw_feature_importance()
        top = raw.max()
        scaled = raw / top * 100.0 if top > 0 else raw
        ranked = sorted(zip(feature_names, scaled), key=lambda item: item[1], reverse=True)
        return {name: float(value) for name, value in ranked}

    def save(self, filepath: str) -> None:
        """Save fitted model to disk."""
        with open(filepath, 'wb') as f:
            pickle.dump(self, f)
        logger.info(f"Model saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'GradientBoostModelBase':
        """Load fitted model from disk."""
        with open(filepath, 'rb') as f:
            model = pickle.load(f)
        if not isinstance(model, cls):
            raise TypeError(f"{filepath} holds a {type(model).__name__}, not a {cls.__name__}")
        logger.info(f"Model loaded from {filepath}")
        return model


class GradientBoostRegressionModel(GradientBoostModelBase):
    """Regression ensemble: prediction is the raw additive score."""

    def predict(self, X: np.ndarray):
        """
        Predict regression targets.

        A single row (1D input) yields a float, a matrix yields shape (n_samples,).
        """
        F = self.predict_raw(X)[:, 0]
        if np.ndim(X) == 1:
            return float(F[0])
        return F


class GradientBoostClassificationModel(GradientBoostModelBase):
    """
    Classification ensemble over ``target_names`` (sorted ascending).

    Binary problems hold one tree sequence scoring the second label;
    multiclass problems hold one sequence per label.
    """

    def __init__(
        self,
        trees: List[List[RegressionTree]],
        target_names: np.ndarray,
        learning_rate: float,
        initial_loss: np.ndarray,
        feature_count: int
    ):
        super().__init__(trees, learning_rate, initial_loss, feature_count)
        self.target_names = np.asarray(target_names, dtype=np.float64)

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """
        Class probabilities, columns ordered like ``target_names``.

        Returns shape (n_samples, n_classes), or (n_classes,) for a single row.
        """
        proba = class_probabilities(self.predict_raw(X), len(self.target_names))
        if np.ndim(X) == 1:
            return proba[0]
        return proba

    def predict_probability(self, row: np.ndarray) -> ProbabilityPrediction:
        """Most probable label and the probability per class label for a single observation."""
        if np.ndim(row) != 1:
            raise ShapeError("predict_probability expects a single 1D observation")
        proba = self.predict_proba(row)
        return ProbabilityPrediction(
            float(self.target_names[np.argmax(proba)]),
            {float(label): float(p) for label, p in zip(self.target_names, proba)}
        )

    def predict(self, X: np.ndarray):
        """
        Most probable class label; ties go to the smaller label.

        A single row yields a float label, a matrix yields shape (n_samples,).
        """
        proba = class_probabilities(self.predict_raw(X), len(self.target_names))
        labels = self.target_names[np.argmax(proba, axis=1)]
        if np.ndim(X) == 1:
            return float(labels[0])
        return labels


# ===========================
# Learners
# ===========================

class GradientBoostBase:
    """
    Base class for gradient boosting learners.

    Implements stochastic gradient boosting with shrinkage (learning rate) and
    row subsampling. The boosting loop follows Algorithm 10.4 from ESL; all
    hyperparameters are validated here, before any data is seen.

    Parameters
    ----------
    iterations : int, default=100
        Number of boosting stages (M).
    learning_rate : float, default=0.1
        Shrinkage ν multiplying every tree's contribution.
    maximum_tree_depth : int, default=3
        Maximum depth of individual trees.
    minimum_split_size : int, default=1
        Minimum in-sample rows in each child of a split.
    minimum_information_gain : float, default=1e-6
        Minimum variance reduction required to split a node.
    sub_sample_ratio : float, default=1.0
        Fraction of rows drawn per tree; below 1.0 gives stochastic boosting.
    features_per_split : int, default=0
        Candidate features drawn per node; 0 uses every feature.
    loss : Loss, optional
        Loss strategy. Defaults depend on the learner.
    n_jobs : int, default=1
        Threads for the split search inside a single tree.
    random_state : int, optional, default=42
        Seed of the generator driving row and feature sampling.
    verbose : bool, default=False
        Enable logging output.
    """

    def __init__(
        self,
        iterations: int = 100,
        learning_rate: float = 0.1,
        maximum_tree_depth: int = 3,
        minimum_split_size: int = 1,
        minimum_information_gain: float = 1e-6,
        sub_sample_ratio: float = 1.0,
        features_per_split: int = 0,
        loss: Optional[Loss] = None,
        n_jobs: int = 1,
        random_state: Optional[int] = 42,
        verbose: bool = False
    ):
        if iterations < 1:
            raise ConfigurationError(f"iterations must be at least 1, got {iterations}")
        if not learning_rate > 0:
            raise ConfigurationError(f"learning_rate must be positive, got {learning_rate}")
        if not 0.0 < sub_sample_ratio <= 1.0:
            raise ConfigurationError(
                f"sub_sample_ratio must be in (0, 1], got {sub_sample_ratio}"
            )

        self.iterations = iterations
        self.learning_rate = learning_rate
        self.sub_sample_ratio = sub_sample_ratio
        self.loss = loss if loss is not None else self._default_loss()
        self.random_state = random_state
        self.verbose = verbose

        # Validates depth, split size, gain, features_per_split, n_jobs and loss
        self.tree_learner = RegressionTreeLearner(
            maximum_tree_depth=maximum_tree_depth,
            minimum_split_size=minimum_split_size,
            minimum_information_gain=minimum_information_gain,
            loss=self.loss,
            features_per_split=features_per_split,
            n_jobs=n_jobs
        )

        # Training history
        self.train_scores_: List[float] = []
        self.val_scores_: List[float] = []
        self.best_iteration_: Optional[int] = None

    def _default_loss(self) -> Loss:
        raise NotImplementedError

    def _validate(
        self,
        X: np.ndarray,
        y: np.ndarray,
        indices: Optional[np.ndarray]
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        X = check_observations(X)
        y = check_targets(X, y)
        indices = check_indices(indices, X.shape[0])
        return X, y, indices

    def _boost(self, *args, **kwargs) -> Tuple[List[List[RegressionTree]], np.ndarray]:
        """Run ``_boost_stages`` with INFO logging enabled for this call only when verbose."""
        previous_level = logger.level
        if self.verbose:
            logger.setLevel(logging.INFO)
        try:
            return self._boost_stages(*args, **kwargs)
        finally:
            logger.setLevel(previous_level)

    def _boost_stages(
        self,
        X: np.ndarray,
        class_targets: List[np.ndarray],
        indices: np.ndarray,
        X_val: Optional[np.ndarray] = None,
        score_validation: Optional[Callable[[np.ndarray], float]] = None,
        early_stopping_rounds: Optional[int] = None
    ) -> Tuple[List[List[RegressionTree]], np.ndarray]:
        """
        Run the stage-wise boosting loop.

        Parameters
        ----------
        X : np.ndarray, shape (n_rows, n_features)
            Validated observations.
        class_targets : list of np.ndarray
            One target vector per fitted column, processed in list order.
        indices : np.ndarray of int
            Rows that may be used for fitting.
        X_val : np.ndarray, optional
            Validation observations scored after every iteration.
        score_validation : callable, optional
            Maps raw validation scores (n_val, n_columns) to a metric
            (lower is better).
        early_stopping_rounds : int, optional
            Stop after this many iterations without validation improvement.

        Returns
        -------
        trees : list of list of RegressionTree
            ``trees[k][m]`` is the tree for column k at stage m.
        initial_values : np.ndarray, shape (n_columns,)
        """
        n_rows = X.shape[0]
        n_columns = len(class_targets)

        # Step 1: presort every feature once for all iterations and columns
        column_order = create_column_order_index(X)

        fold_mask = np.zeros(n_rows, dtype=bool)
        fold_mask[indices] = True
        in_sample = fold_mask

        subsample = self.sub_sample_ratio < 1.0
        sampler = RowSampler(self.random_state)
        work_indices = indices.copy()
        sample_size = max(1, int(round(self.sub_sample_ratio * len(indices))))

        # Step 2: initialise f_0 per column from in-sample targets
        initial_values = np.array([
            self.loss.initial_value(targets, fold_mask) for targets in class_targets
        ])
        predictions = [np.full(n_rows, value) for value in initial_values]
        residuals = [np.zeros(n_rows) for _ in class_targets]
        trees: List[List[RegressionTree]] = [[] for _ in class_targets]

        if X_val is not None:
            val_predictions = np.tile(initial_values, (X_val.shape[0], 1))

        self.train_scores_ = []
        self.val_scores_ = []
        self.best_iteration_ = None
        best_score = np.inf
        best_iteration = 0

        if self.verbose:
            logger.info(
                f"Boosting {n_columns} column(s) for {self.iterations} iterations "
                f"on {len(indices)}/{n_rows} rows; initial values {np.round(initial_values, 6)}"
            )

        # Step 3: boosting loop, columns in fixed order inside each iteration
        for m in range(self.iterations):
            for k, targets in enumerate(class_targets):
                # (a) pseudo-residuals over every row the fit may use
                self.loss.update_residuals(targets, predictions[k], residuals[k], fold_mask)

                # (b) stochastic boosting draws a fresh in-sample mask per tree
                if subsample:
                    in_sample = sampler.sample(sample_size, work_indices, n_rows)

                # (c) fit the tree and its terminal-region values
                tree = self.tree_learner.learn(
                    X, targets, residuals[k], predictions[k], column_order, in_sample,
                    rng=sampler.rng
                )
                trees[k].append(tree)

                # (d) shrunken update of the running predictions
                predictions[k] += self.learning_rate * tree.predict(X)
                if X_val is not None:
                    val_predictions[:, k] += self.learning_rate * tree.predict(X_val)

            train_score = float(np.mean([
                self.loss.loss(targets[fold_mask], predictions[k][fold_mask])
                for k, targets in enumerate(class_targets)
            ]))
            self.train_scores_.append(train_score)

            if score_validation is not None:
                val_score = float(score_validation(val_predictions))
                self.val_scores_.append(val_score)

                if self.verbose and (m + 1) % 10 == 0:
                    logger.info(
                        f"Iteration {m+1}/{self.iterations}: "
                        f"train_loss={train_score:.6f}, val_score={val_score:.6f}"
                    )

                if val_score < best_score:
                    best_score = val_score
                    best_iteration = m
                elif early_stopping_rounds is not None and m - best_iteration >= early_stopping_rounds:
                    logger.info(
                        f"Early stopping at iteration {m+1}: best iteration "
                        f"{best_iteration+1} with val_score={best_score:.6f}"
                    )
                    break
            elif self.verbose and (m + 1) % 10 == 0:
                logger.info(
                    f"Iteration {m+1}/{self.iterations}: train_loss={train_score:.6f}"
                )

        if early_stopping_rounds is not None:
            self.best_iteration_ = best_iteration + 1
            trees = [sequence[:self.best_iteration_] for sequence in trees]

        return trees, initial_values

    def _check_validation_data(
        self,
        X: np.ndarray,
        X_val: np.ndarray,
        y_val: np.ndarray,
        early_stopping_rounds: int
    ) -> Tuple[np.ndarray, np.ndarray]:
        if early_stopping_rounds < 1:
            raise ConfigurationError(
                f"early_stopping_rounds must be at least 1, got {early_stopping_rounds}"
            )
        X_val = check_observations(X_val)
        y_val = check_targets(X_val, y_val)
        if X_val.shape[1] != X.shape[1]:
            raise ShapeError(
                f"Validation data has {X_val.shape[1]} features, training data {X.shape[1]}"
            )
        return X_val, y_val


class GradientBoostRegressionLearner(GradientBoostBase):
    """
    Gradient Tree Boosting for regression.

    Implements:
    1. Initialisation: f_0 = argmin_γ Σ L(y_i, γ), e.g. mean(y) for squared error.
    2. For m = 1 to M:
       a. Compute pseudo-residuals r_im = -∂L/∂f at f_{m-1}.
       b. Fit a regression tree to {(x_i, r_im)} yielding regions R_jm.
       c. For each region: γ_jm = argmin_γ Σ_{x_i ∈ R_jm} L(y_i, f_{m-1}(x_i) + γ).
       d. Update: f_m(x) = f_{m-1}(x) + ν * Σ_j γ_jm I(x ∈ R_jm).

    The loss defaults to ``SquaredLoss``; ``AbsoluteLoss``, ``HuberLoss`` and
    ``QuantileLoss`` plug in unchanged.
    """

    def _default_loss(self) -> Loss:
        return SquaredLoss()

    def learn(
        self,
        X: np.ndarray,
        y: np.ndarray,
        indices: Optional[np.ndarray] = None
    ) -> GradientBoostRegressionModel:
        """
        Fit on all rows, or only on ``indices`` when given.

        Args:
            X: Observations, shape (n_samples, n_features).
            y: Targets, shape (n_samples,).
            indices: Optional row subset (e.g. a cross-validation training fold).

        Returns:
            Fitted GradientBoostRegressionModel.
        """
        X, y, indices = self._validate(X, y, indices)
        trees, initial_values = self._boost(X, [y], indices)
        return GradientBoostRegressionModel(
            trees, self.learning_rate, initial_values, X.shape[1]
        )

    def learn_with_early_stopping(
        self,
        X_train: np.ndarray,
        y_train: np.ndarray,
        X_val: np.ndarray,
        y_val: np.ndarray,
        metric: Optional[Callable[[np.ndarray, np.ndarray], float]] = None,
        early_stopping_rounds: int = 20
    ) -> GradientBoostRegressionModel:
        """
        Fit while tracking a validation metric and keep only the best stages.

        Args:
            X_train, y_train: Training data.
            X_val, y_val: Validation data scored after every iteration.
            metric: metric(y_true, y_pred), lower is better. Defaults to MSE.
            early_stopping_rounds: Iterations without improvement before stopping.

        Returns:
            Model truncated to ``best_iteration_`` stages.
        """
        X, y, indices = self._validate(X_train, y_train, None)
        X_val, y_val = self._check_validation_data(X, X_val, y_val, early_stopping_rounds)
        metric = metric if metric is not None else mean_squared_error

        def score(raw: np.ndarray) -> float:
            return metric(y_val, raw[:, 0])

        trees, initial_values = self._boost(
            X, [y], indices, X_val=X_val, score_validation=score,
            early_stopping_rounds=early_stopping_rounds
        )
        return GradientBoostRegressionModel(
            trees, self.learning_rate, initial_values, X.shape[1]
        )


class GradientBoostClassificationLearner(GradientBoostBase):
    """
    Gradient Tree Boosting for classification with binomial deviance.

    Two distinct labels are fit with a single tree sequence scoring the larger
    label; the smaller label receives 1 - p. Three or more labels use a
    one-vs-all indicator per label, each with its own residuals, running
    predictions and tree sequence. Labels are processed in ascending order.

    Implements, per fitted column k:
    1. Initialisation: f_0k = log(p_k / (1 - p_k)), p_k the label frequency.
    2. For m = 1 to M:
       a. Pseudo-residuals: r_ik = y_ik - sigmoid(F_k(x_i)).
       b. Fit a regression tree to the residuals.
       c. Newton step per region: γ = Σ r_i / Σ p_i (1 - p_i).
       d. Update: F_k(x) += ν * Σ_j γ_j I(x ∈ R_j).

    References:
    - ESL Section 10.9, Algorithm 10.4.
    - Friedman et al. (2000), "Additive logistic regression" (LogitBoost).
    """

    def _default_loss(self) -> Loss:
        return BinomialLoss()

    def _one_vs_all_targets(self, y: np.ndarray, indices: np.ndarray) -> Tuple[np.ndarray, List[np.ndarray]]:
        # Labels come from the fitted rows only, so held-out rows cannot add classes
        target_names = np.unique(y[indices])
        if len(target_names) == 2:
            return target_names, [(y == target_names[1]).astype(np.float64)]
        return target_names, [(y == label).astype(np.float64) for label in target_names]

    def learn(
        self,
        X: np.ndarray,
        y: np.ndarray,
        indices: Optional[np.ndarray] = None
    ) -> GradientBoostClassificationModel:
        """
        Fit on all rows, or only on ``indices`` when given.

        Args:
            X: Observations, shape (n_samples, n_features).
            y: Class labels encoded as numbers, shape (n_samples,).
            indices: Optional row subset (e.g. a cross-validation training fold).

        Returns:
            Fitted GradientBoostClassificationModel.
        """
        X, y, indices = self._validate(X, y, indices)
        target_names, class_targets = self._one_vs_all_targets(y, indices)
        trees, initial_values = self._boost(X, class_targets, indices)
        return GradientBoostClassificationModel(
            trees, target_names, self.learning_rate, initial_values, X.shape[1]
        )

    def learn_with_early_stopping(
        self,
        X_train: np.ndarray,
        y_train: np.ndarray,
        X_val: np.ndarray,
        y_val: np.ndarray,
        metric: Optional[Callable[[np.ndarray, np.ndarray], float]] = None,
        early_stopping_rounds: int = 20
    ) -> GradientBoostClassificationModel:
        """
        Fit while tracking a validation metric and keep only the best stages.

        Args:
            X_train, y_train: Training data.
            X_val, y_val: Validation data scored after every iteration.
            metric: metric(y_true, proba) on the (n_val, n_classes) probability
                matrix, lower is better. Defaults to log loss.
            early_stopping_rounds: Iterations without improvement before stopping.

        Returns:
            Model truncated to ``best_iteration_`` stages.
        """
        X, y, indices = self._validate(X_train, y_train, None)
        X_val, y_val = self._check_validation_data(X, X_val, y_val, early_stopping_rounds)
        target_names, class_targets = self._one_vs_all_targets(y, indices)

        if metric is None:
            def metric(y_true, proba):
                return log_loss(y_true, proba, labels=target_names)

        def score(raw: np.ndarray) -> float:
            return metric(y_val, class_probabilities(raw, len(target_names)))

        trees, initial_values = self._boost(
            X, class_targets, indices, X_val=X_val, score_validation=score,
            early_stopping_rounds=early_stopping_rounds
        )
        return GradientBoostClassificationModel(
            trees, target_names, self.learning_rate, initial_values, X.shape[1]
        )
