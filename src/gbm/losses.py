"""
Loss functions for gradient boosting.

Each loss supplies the three ingredients the boosting loop needs:
  1. An initial constant prediction f_0 = argmin_γ Σ L(y_i, γ).
  2. Pseudo-residuals r_i = -∂L(y_i, F(x_i))/∂F, the targets each tree is fit to.
  3. A terminal-region value γ_j = argmin_γ Σ_{x_i ∈ R_j} L(y_i, F(x_i) + γ).

All trees are grown with the same variance-reduction criterion on the
pseudo-residuals; only the terminal-region values are loss specific.

References:
- Friedman, J. H. (2001). Greedy function approximation: A gradient boosting machine.
  Annals of Statistics, 29(5), 1189-1232.
- Friedman, J., Hastie, T., & Tibshirani, R. (2000). Additive logistic regression:
  a statistical view of boosting (LogitBoost). Annals of Statistics, 28(2), 337-407.
"""

from abc import ABC, abstractmethod
import numpy as np

from .exceptions import ConfigurationError
from .utils import sigmoid


class Loss(ABC):
    """Abstract base class for boosting losses."""

    @abstractmethod
    def initial_value(self, targets: np.ndarray, in_sample: np.ndarray) -> float:
        """
        Closed-form constant start f_0 computed from in-sample targets only.

        Parameters
        ----------
        targets : np.ndarray, shape (n,)
            Target vector (one-vs-all indicator for classification).
        in_sample : np.ndarray of bool, shape (n,)
            Rows that may be read.
        """
        pass

    @abstractmethod
    def negative_gradient(self, targets: np.ndarray, predictions: np.ndarray) -> np.ndarray:
        """Pseudo-residuals -∂L/∂F evaluated elementwise."""
        pass

    @abstractmethod
    def leaf_value(
        self,
        targets: np.ndarray,
        residuals: np.ndarray,
        predictions: np.ndarray
    ) -> float:
        """Terminal-region value γ for the in-sample rows routed to a leaf."""
        pass

    @abstractmethod
    def loss(self, targets: np.ndarray, predictions: np.ndarray) -> float:
        """Mean loss, used for training history and early stopping."""
        pass

    def update_residuals(
        self,
        targets: np.ndarray,
        predictions: np.ndarray,
        residuals: np.ndarray,
        in_sample: np.ndarray
    ) -> None:
        """
        Write pseudo-residuals for in-sample rows into ``residuals`` in place.

        Rows outside ``in_sample`` are left untouched.
        """
        residuals[in_sample] = self.negative_gradient(
            targets[in_sample], predictions[in_sample]
        )

    def split_cost(
        self,
        residual_sum: np.ndarray,
        residual_square_sum: np.ndarray,
        count: np.ndarray
    ) -> np.ndarray:
        """
        Sum of squared deviations of residuals around their mean.

        Vectorised over candidate splits: Σr² - (Σr)²/n.
        """
        return residual_square_sum - residual_sum ** 2 / count

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class SquaredLoss(Loss):
    """
    Least squares: L(y, F) = 0.5 * (y - F)^2.

    f_0 = mean(y), r = y - F, γ_j = mean of residuals in region j.
    """

    def initial_value(self, targets, in_sample):
        return float(np.mean(targets[in_sample]))

    def negative_gradient(self, targets, predictions):
        return targets - predictions

    def leaf_value(self, targets, residuals, predictions):
        return float(np.mean(residuals))

    def loss(self, targets, predictions):
        return float(0.5 * np.mean((targets - predictions) ** 2))


class BinomialLoss(Loss):
    """
    Binomial deviance for y ∈ {0, 1}: L(y, F) = -y*F + log(1 + exp(F)).

    f_0 = log(p / (1 - p)) with p the in-sample positive frequency,
    r = y - sigmoid(F), and γ_j is a single Newton-Raphson step
    (LogitBoost): γ_j = Σ r_i / Σ p_i (1 - p_i).
    """

    def __init__(self, eps: float = 1e-15):
        self.eps = eps

    def initial_value(self, targets, in_sample):
        p = np.mean(targets[in_sample])
        # Clip to avoid log(0) or division by zero
        p = np.clip(p, self.eps, 1 - self.eps)
        return float(np.log(p / (1 - p)))

    def negative_gradient(self, targets, predictions):
        return targets - sigmoid(predictions)

    def leaf_value(self, targets, residuals, predictions):
        # p = y - r, so the Hessian p(1 - p) is recovered from targets and residuals
        p = targets - residuals
        denominator = np.sum(p * (1.0 - p))
        if abs(denominator) < self.eps:
            return 0.0
        return float(np.sum(residuals) / denominator)

    def loss(self, targets, predictions):
        p = np.clip(sigmoid(predictions), self.eps, 1 - self.eps)
        return float(-np.mean(targets * np.log(p) + (1 - targets) * np.log(1 - p)))


class AbsoluteLoss(Loss):
    """
    Least absolute deviation: L(y, F) = |y - F|.

    f_0 = median(y), r = sign(y - F), γ_j = median(y - F) in region j.
    """

    def initial_value(self, targets, in_sample):
        return float(np.median(targets[in_sample]))

    def negative_gradient(self, targets, predictions):
        return np.sign(targets - predictions)

    def leaf_value(self, targets, residuals, predictions):
        return float(np.median(targets - predictions))

    def loss(self, targets, predictions):
        return float(np.mean(np.abs(targets - predictions)))


class HuberLoss(Loss):
    """
    Huber M-regression loss (Friedman 2001, Algorithm 4).

    Quadratic for |y - F| <= δ and linear beyond. The transition point δ is
    the ``alpha`` quantile of |y - F| over the in-sample rows and is
    recomputed on every residual update.

    Parameters
    ----------
    alpha : float, default=0.9
        Quantile of absolute residuals used as the transition point.
    """

    def __init__(self, alpha: float = 0.9):
        if not 0.0 < alpha < 1.0:
            raise ConfigurationError(f"alpha must be in (0, 1), got {alpha}")
        self.alpha = alpha
        self.delta_ = None

    def initial_value(self, targets, in_sample):
        return float(np.median(targets[in_sample]))

    def update_residuals(self, targets, predictions, residuals, in_sample):
        difference = targets[in_sample] - predictions[in_sample]
        self.delta_ = float(np.quantile(np.abs(difference), self.alpha))
        residuals[in_sample] = self.negative_gradient(
            targets[in_sample], predictions[in_sample]
        )

    def negative_gradient(self, targets, predictions):
        difference = targets - predictions
        delta = self._delta(difference)
        return np.where(
            np.abs(difference) <= delta,
            difference,
            delta * np.sign(difference)
        )

    def leaf_value(self, targets, residuals, predictions):
        difference = targets - predictions
        median = np.median(difference)
        deviation = difference - median
        delta = self._delta(difference)
        return float(median + np.mean(np.sign(deviation) * np.minimum(delta, np.abs(deviation))))

    def loss(self, targets, predictions):
        difference = targets - predictions
        delta = self._delta(difference)
        quadratic = np.abs(difference) <= delta
        values = np.where(
            quadratic,
            0.5 * difference ** 2,
            delta * (np.abs(difference) - 0.5 * delta)
        )
        return float(np.mean(values))

    def _delta(self, difference: np.ndarray) -> float:
        if self.delta_ is None:
            return float(np.quantile(np.abs(difference), self.alpha))
        return self.delta_

    def __repr__(self) -> str:
        return f"HuberLoss(alpha={self.alpha})"


class QuantileLoss(Loss):
    """
    Quantile (pinball) loss for conditional quantile regression.

    L(y, F) = alpha * (y - F) if y > F else (1 - alpha) * (F - y).
    f_0 and γ_j are the ``alpha`` percentile of y and y - F respectively.

    Parameters
    ----------
    alpha : float, default=0.9
        Target quantile.
    """

    def __init__(self, alpha: float = 0.9):
        if not 0.0 < alpha < 1.0:
            raise ConfigurationError(f"alpha must be in (0, 1), got {alpha}")
        self.alpha = alpha

    def initial_value(self, targets, in_sample):
        return float(np.quantile(targets[in_sample], self.alpha))

    def negative_gradient(self, targets, predictions):
        return np.where(targets > predictions, self.alpha, self.alpha - 1.0)

    def leaf_value(self, targets, residuals, predictions):
        return float(np.quantile(targets - predictions, self.alpha))

    def loss(self, targets, predictions):
        difference = targets - predictions
        return float(np.mean(np.where(
            difference > 0,
            self.alpha * difference,
            (self.alpha - 1.0) * difference
        )))

    def __repr__(self) -> str:
        return f"QuantileLoss(alpha={self.alpha})"
