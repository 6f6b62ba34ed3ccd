"""
Regression experiment on California Housing dataset.

Demonstrates Algorithm 10.4 for squared-error loss with hyperparameter analysis,
robust losses, cross-validated predictions and feature importance.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import logging
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from sklearn.datasets import fetch_california_housing
from sklearn.model_selection import train_test_split
from sklearn.preprocessing import StandardScaler
from sklearn.tree import DecisionTreeRegressor
from sklearn.metrics import mean_squared_error

from gbm import (
    GradientBoostRegressionLearner,
    SquaredLoss,
    AbsoluteLoss,
    HuberLoss,
    cross_validation_predictions,
)
from gbm.utils import compute_metrics_regression

OUTPUT_DIR = Path(__file__).parent

# Set style
plt.style.use('seaborn-v0_8-darkgrid')
logging.basicConfig(level=logging.INFO, format="%(name)s - %(message)s")


def load_and_prepare_data():
    """Load California Housing dataset and split."""
    print("Loading California Housing dataset...")
    data = fetch_california_housing()
    X, y = data.data, data.target

    # Split 80/20
    X_train, X_test, y_train, y_test = train_test_split(
        X, y, test_size=0.2, random_state=42
    )

    # Further split train into train/val for tracking
    X_train, X_val, y_train, y_val = train_test_split(
        X_train, y_train, test_size=0.2, random_state=42
    )

    scaler = StandardScaler()
    X_train = scaler.fit_transform(X_train)
    X_val = scaler.transform(X_val)
    X_test = scaler.transform(X_test)

    print(f"Train: {X_train.shape}, Val: {X_val.shape}, Test: {X_test.shape}")

    return X_train, X_val, X_test, y_train, y_val, y_test, list(data.feature_names)


def baseline_comparison(X_train, X_test, y_train, y_test):
    """Baseline: single DecisionTreeRegressor."""
    print("\n" + "="*60)
    print("Baseline: Single Decision Tree Regressor")
    print("="*60)

    dt = DecisionTreeRegressor(max_depth=3, random_state=42)
    dt.fit(X_train, y_train)

    train_mse = mean_squared_error(y_train, dt.predict(X_train))
    test_mse = mean_squared_error(y_test, dt.predict(X_test))

    print(f"Train MSE: {train_mse:.6f}")
    print(f"Test MSE:  {test_mse:.6f}")

    return train_mse, test_mse


def tracked_fit(learner, X_train, y_train, X_val, y_val):
    """Fit with validation tracking over every iteration."""
    return learner.learn_with_early_stopping(
        X_train, y_train, X_val, y_val, early_stopping_rounds=learner.iterations
    )


def sweep(name, values, make_learner, data, xlabel):
    """Fit one learner per value and plot validation curves."""
    X_train, X_val, X_test, y_train, y_val, y_test = data
    print("\n" + "="*60)
    print(f"Experiment: Effect of {name}")
    print("="*60)

    results = []
    fig, ax = plt.subplots(figsize=(10, 6))

    for value in values:
        print(f"\nFitting with {name}={value}...")
        learner = make_learner(value)
        model = tracked_fit(learner, X_train, y_train, X_val, y_val)

        test_mse = mean_squared_error(y_test, model.predict(X_test))
        print(f"Test MSE: {test_mse:.6f} (best iteration {learner.best_iteration_})")

        results.append({
            name: value,
            'test_mse': test_mse,
            'best_iteration': learner.best_iteration_,
            'final_train_loss': learner.train_scores_[-1]
        })
        ax.plot(learner.val_scores_, label=f'{name}={value}', linewidth=2)

    ax.set_xlabel(xlabel)
    ax.set_ylabel('Validation MSE')
    ax.set_title(f'Effect of {name} on Validation Loss')
    ax.legend()
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(OUTPUT_DIR / f'regression_{name}.png', dpi=150)
    print(f"\nSaved plot: regression_{name}.png")

    return pd.DataFrame(results)


def experiment_losses(X_train, X_test, y_train, y_test):
    """Experiment: squared vs robust losses under injected outliers."""
    print("\n" + "="*60)
    print("Experiment: Robust losses with 5% corrupted targets")
    print("="*60)

    rng = np.random.default_rng(42)
    y_noisy = y_train.copy()
    corrupted = rng.choice(len(y_noisy), size=len(y_noisy) // 20, replace=False)
    y_noisy[corrupted] += rng.normal(0, 10, size=len(corrupted))

    results = []
    for loss in [SquaredLoss(), AbsoluteLoss(), HuberLoss(alpha=0.9)]:
        model = GradientBoostRegressionLearner(
            iterations=150, learning_rate=0.1, maximum_tree_depth=3, loss=loss
        ).learn(X_train, y_noisy)
        metrics = compute_metrics_regression(y_test, model.predict(X_test))
        print(f"{loss}: test RMSE={metrics['rmse']:.4f}, MAE={metrics['mae']:.4f}")
        results.append({'loss': repr(loss), **metrics})

    return pd.DataFrame(results)


def experiment_cross_validation(X, y):
    """Out-of-fold predictions with 5-fold cross-validation."""
    print("\n" + "="*60)
    print("Experiment: 5-fold cross-validation")
    print("="*60)

    learner = GradientBoostRegressionLearner(
        iterations=100, learning_rate=0.1, maximum_tree_depth=3, sub_sample_ratio=0.8
    )
    predictions = cross_validation_predictions(learner, X, y, n_folds=5)
    metrics = compute_metrics_regression(y, predictions)
    print(f"CV RMSE: {metrics['rmse']:.4f}, CV MAE: {metrics['mae']:.4f}")
    return metrics


def final_model_and_summary(X_train, X_val, X_test, y_train, y_val, y_test, feature_names):
    """Train final model with best hyperparameters."""
    print("\n" + "="*60)
    print("Final Model with Optimised Hyperparameters")
    print("="*60)

    best_params = {
        'iterations': 200,
        'learning_rate': 0.1,
        'maximum_tree_depth': 3,
        'sub_sample_ratio': 0.8
    }

    print(f"\nBest hyperparameters: {best_params}")

    # Combine train + val for final training
    X_train_full = np.vstack([X_train, X_val])
    y_train_full = np.concatenate([y_train, y_val])

    model = GradientBoostRegressionLearner(**best_params, random_state=42).learn(
        X_train_full, y_train_full
    )

    train_mse = mean_squared_error(y_train_full, model.predict(X_train_full))
    test_mse = mean_squared_error(y_test, model.predict(X_test))

    print(f"\nFinal Train MSE: {train_mse:.6f}")
    print(f"Final Test MSE:  {test_mse:.6f}")

    importance = pd.Series(model.feature_importance(feature_names))
    print("\nRelative feature importance:")
    print(importance.round(1).to_string())

    fig, ax = plt.subplots(figsize=(8, 5))
    importance.sort_values().plot.barh(ax=ax)
    ax.set_xlabel('Relative importance')
    ax.set_title('California Housing Feature Importance')
    plt.tight_layout()
    plt.savefig(OUTPUT_DIR / 'regression_feature_importance.png', dpi=150)

    model.save(str(OUTPUT_DIR / 'regression_model.pkl'))

    return test_mse


def main():
    """Run all regression experiments."""
    print("="*60)
    print("Gradient Boosting Regression Experiments")
    print("California Housing Dataset")
    print("="*60)

    X_train, X_val, X_test, y_train, y_val, y_test, feature_names = load_and_prepare_data()
    data = (X_train, X_val, X_test, y_train, y_val, y_test)

    baseline_comparison(X_train, X_test, y_train, y_test)

    results = {
        'iterations': sweep(
            'iterations', [50, 100, 300],
            lambda n: GradientBoostRegressionLearner(iterations=n),
            data, 'Iteration'
        ),
        'learning_rate': sweep(
            'learning_rate', [0.01, 0.1, 0.2],
            lambda lr: GradientBoostRegressionLearner(iterations=200, learning_rate=lr),
            data, 'Iteration'
        ),
        'maximum_tree_depth': sweep(
            'maximum_tree_depth', [2, 3, 5],
            lambda depth: GradientBoostRegressionLearner(iterations=150, maximum_tree_depth=depth),
            data, 'Iteration'
        ),
        'sub_sample_ratio': sweep(
            'sub_sample_ratio', [0.5, 0.8, 1.0],
            lambda ratio: GradientBoostRegressionLearner(iterations=150, sub_sample_ratio=ratio),
            data, 'Iteration'
        ),
        'loss': experiment_losses(X_train, X_test, y_train, y_test),
    }

    for name, frame in results.items():
        frame.to_csv(OUTPUT_DIR / f'regression_{name}_results.csv', index=False)

    experiment_cross_validation(np.vstack([X_train, X_val]), np.concatenate([y_train, y_val]))

    print("\n" + "="*60)
    print("Results Summary")
    print("="*60)
    for name, frame in results.items():
        print(f"\nEffect of {name}:")
        print(frame.to_string(index=False))

    final_model_and_summary(X_train, X_val, X_test, y_train, y_val, y_test, feature_names)

    print("\n" + "="*60)
    print("Regression Experiments Complete!")
    print("="*60)


if __name__ == "__main__":
    main()
