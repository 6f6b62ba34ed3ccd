"""
Classification experiments on Breast Cancer (binary) and Iris (multiclass).

Demonstrates Algorithm 10.4 for binomial deviance with hyperparameter analysis,
early stopping and one-vs-all multiclass boosting.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import logging
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from sklearn.datasets import load_breast_cancer, load_iris
from sklearn.model_selection import train_test_split
from sklearn.preprocessing import StandardScaler
from sklearn.tree import DecisionTreeClassifier
from sklearn.metrics import (
    accuracy_score, log_loss, roc_auc_score, roc_curve, confusion_matrix
)

from gbm import GradientBoostClassificationLearner, cross_validation_predictions
from gbm.utils import compute_metrics_classification

OUTPUT_DIR = Path(__file__).parent

# Set style
plt.style.use('seaborn-v0_8-darkgrid')
logging.basicConfig(level=logging.INFO, format="%(name)s - %(message)s")


def load_and_prepare_data():
    """Load Breast Cancer dataset and split."""
    print("Loading Breast Cancer dataset...")
    data = load_breast_cancer()
    X, y = data.data, data.target

    # Split 80/20
    X_train, X_test, y_train, y_test = train_test_split(
        X, y, test_size=0.2, random_state=42, stratify=y
    )

    # Further split train into train/val for tracking
    X_train, X_val, y_train, y_val = train_test_split(
        X_train, y_train, test_size=0.2, random_state=42, stratify=y_train
    )

    scaler = StandardScaler()
    X_train = scaler.fit_transform(X_train)
    X_val = scaler.transform(X_val)
    X_test = scaler.transform(X_test)

    print(f"Train: {X_train.shape}, Val: {X_val.shape}, Test: {X_test.shape}")
    print(f"Class distribution - Train: {np.bincount(y_train)}, Test: {np.bincount(y_test)}")

    return X_train, X_val, X_test, y_train, y_val, y_test, list(data.feature_names)


def baseline_comparison(X_train, X_test, y_train, y_test):
    """Baseline: single DecisionTreeClassifier."""
    print("\n" + "="*60)
    print("Baseline: Single Decision Tree Classifier")
    print("="*60)

    dt = DecisionTreeClassifier(max_depth=3, random_state=42)
    dt.fit(X_train, y_train)

    train_acc = accuracy_score(y_train, dt.predict(X_train))
    test_acc = accuracy_score(y_test, dt.predict(X_test))
    test_auc = roc_auc_score(y_test, dt.predict_proba(X_test)[:, 1])

    print(f"Train Accuracy: {train_acc:.4f}")
    print(f"Test Accuracy:  {test_acc:.4f}")
    print(f"Test ROC AUC:   {test_auc:.4f}")

    return train_acc, test_acc, test_auc


def sweep(name, values, make_learner, data):
    """Fit one learner per value, tracking validation log loss per iteration."""
    X_train, X_val, X_test, y_train, y_val, y_test = data
    print("\n" + "="*60)
    print(f"Experiment: Effect of {name}")
    print("="*60)

    results = []
    fig, ax = plt.subplots(figsize=(10, 6))

    for value in values:
        print(f"\nFitting with {name}={value}...")
        learner = make_learner(value)
        model = learner.learn_with_early_stopping(
            X_train, y_train, X_val, y_val, early_stopping_rounds=learner.iterations
        )

        test_proba = model.predict_proba(X_test)[:, 1]
        metrics = compute_metrics_classification(y_test, test_proba)

        print(f"Test Accuracy: {metrics['accuracy']:.4f}")
        print(f"Test ROC AUC:  {metrics['roc_auc']:.4f}")
        print(f"Test Log Loss: {metrics['log_loss']:.6f}")

        results.append({
            name: value,
            'test_acc': metrics['accuracy'],
            'test_auc': metrics['roc_auc'],
            'test_logloss': metrics['log_loss'],
            'best_iteration': learner.best_iteration_
        })
        ax.plot(learner.val_scores_, label=f'{name}={value}', linewidth=2)

    ax.set_xlabel('Iteration')
    ax.set_ylabel('Validation Log Loss')
    ax.set_title(f'Effect of {name} on Validation Loss')
    ax.legend()
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(OUTPUT_DIR / f'classification_{name}.png', dpi=150)
    print(f"\nSaved plot: classification_{name}.png")

    return pd.DataFrame(results)


def experiment_early_stopping(X_train, X_val, X_test, y_train, y_val, y_test):
    """Early stopping on validation log loss with an aggressive learning rate."""
    print("\n" + "="*60)
    print("Experiment: Early stopping")
    print("="*60)

    learner = GradientBoostClassificationLearner(
        iterations=500, learning_rate=0.3, maximum_tree_depth=3, verbose=True
    )
    model = learner.learn_with_early_stopping(
        X_train, y_train, X_val, y_val, early_stopping_rounds=20
    )
    test_acc = accuracy_score(y_test, model.predict(X_test))
    print(f"Stopped after {len(learner.val_scores_)} iterations, kept {model.n_iterations}")
    print(f"Test Accuracy: {test_acc:.4f}")

    fig, ax = plt.subplots(figsize=(10, 6))
    ax.plot(learner.train_scores_, label='Train', linewidth=2)
    ax.plot(learner.val_scores_, label='Validation', linewidth=2)
    ax.axvline(learner.best_iteration_ - 1, color='k', linestyle='--', label='Best iteration')
    ax.set_xlabel('Iteration')
    ax.set_ylabel('Log Loss')
    ax.set_title('Early Stopping')
    ax.legend()
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(OUTPUT_DIR / 'classification_early_stopping.png', dpi=150)


def experiment_multiclass():
    """One-vs-all boosting on the three Iris classes."""
    print("\n" + "="*60)
    print("Experiment: Multiclass (Iris, one-vs-all)")
    print("="*60)

    data = load_iris()
    learner = GradientBoostClassificationLearner(
        iterations=50, learning_rate=0.1, maximum_tree_depth=2, sub_sample_ratio=0.8
    )
    proba = cross_validation_predictions(
        learner, data.data, data.target, n_folds=5, stratify=True, proba=True
    )
    metrics = compute_metrics_classification(data.target, proba, labels=[0, 1, 2])
    print(f"CV Accuracy: {metrics['accuracy']:.4f}, CV Log Loss: {metrics['log_loss']:.4f}")

    cm = confusion_matrix(data.target, np.argmax(proba, axis=1))
    print("\nConfusion Matrix:")
    print(pd.DataFrame(cm, index=data.target_names, columns=data.target_names))

    model = learner.learn(data.data, data.target)
    label, probabilities = model.predict_probability(data.data[0])
    print(f"\nFirst observation: predicted {data.target_names[int(label)]}, probabilities {probabilities}")

    return metrics


def final_model_and_summary(X_train, X_val, X_test, y_train, y_val, y_test, feature_names):
    """Train final model with best hyperparameters."""
    print("\n" + "="*60)
    print("Final Model with Optimised Hyperparameters")
    print("="*60)

    best_params = {
        'iterations': 150,
        'learning_rate': 0.1,
        'maximum_tree_depth': 3,
        'sub_sample_ratio': 0.8
    }

    print(f"\nBest hyperparameters: {best_params}")

    # Combine train + val for final training
    X_train_full = np.vstack([X_train, X_val])
    y_train_full = np.concatenate([y_train, y_val])

    model = GradientBoostClassificationLearner(**best_params, random_state=42).learn(
        X_train_full, y_train_full
    )

    train_acc = accuracy_score(y_train_full, model.predict(X_train_full))
    test_proba = model.predict_proba(X_test)[:, 1]
    test_acc = accuracy_score(y_test, model.predict(X_test))
    test_auc = roc_auc_score(y_test, test_proba)
    test_logloss = log_loss(y_test, np.clip(test_proba, 1e-15, 1 - 1e-15))

    print(f"\nFinal Train Accuracy: {train_acc:.4f}")
    print(f"Final Test Accuracy:  {test_acc:.4f}")
    print(f"Final Test ROC AUC:   {test_auc:.4f}")
    print(f"Final Test Log Loss:  {test_logloss:.6f}")

    cm = confusion_matrix(y_test, model.predict(X_test))
    print("\nConfusion Matrix:")
    print(cm)

    top_features = pd.Series(model.feature_importance(feature_names)).head(10)
    print("\nTop 10 features by relative importance:")
    print(top_features.round(1).to_string())

    fpr, tpr, _ = roc_curve(y_test, test_proba)

    fig, ax = plt.subplots(figsize=(8, 6))
    ax.plot(fpr, tpr, linewidth=2, label=f'GBM (AUC = {test_auc:.4f})')
    ax.plot([0, 1], [0, 1], 'k--', linewidth=1, label='Random')
    ax.set_xlabel('False Positive Rate')
    ax.set_ylabel('True Positive Rate')
    ax.set_title('ROC Curve - Final Model')
    ax.legend()
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(OUTPUT_DIR / 'classification_final_roc.png', dpi=150)
    print("\nSaved plot: classification_final_roc.png")

    model.save(str(OUTPUT_DIR / 'classification_model.pkl'))

    return test_acc, test_auc


def main():
    """Run all classification experiments."""
    print("="*60)
    print("Gradient Boosting Classification Experiments")
    print("Breast Cancer Dataset")
    print("="*60)

    X_train, X_val, X_test, y_train, y_val, y_test, feature_names = load_and_prepare_data()
    data = (X_train, X_val, X_test, y_train, y_val, y_test)

    baseline_comparison(X_train, X_test, y_train, y_test)

    results = {
        'iterations': sweep(
            'iterations', [50, 100, 300],
            lambda n: GradientBoostClassificationLearner(iterations=n), data
        ),
        'learning_rate': sweep(
            'learning_rate', [0.01, 0.1, 0.2],
            lambda lr: GradientBoostClassificationLearner(iterations=200, learning_rate=lr), data
        ),
        'maximum_tree_depth': sweep(
            'maximum_tree_depth', [2, 3, 5],
            lambda depth: GradientBoostClassificationLearner(iterations=150, maximum_tree_depth=depth),
            data
        ),
        'sub_sample_ratio': sweep(
            'sub_sample_ratio', [0.5, 0.8, 1.0],
            lambda ratio: GradientBoostClassificationLearner(iterations=150, sub_sample_ratio=ratio),
            data
        ),
    }

    for name, frame in results.items():
        frame.to_csv(OUTPUT_DIR / f'classification_{name}_results.csv', index=False)

    print("\n" + "="*60)
    print("Results Summary")
    print("="*60)
    for name, frame in results.items():
        print(f"\nEffect of {name}:")
        print(frame.to_string(index=False))

    experiment_early_stopping(*data)
    experiment_multiclass()
    final_model_and_summary(*data, feature_names)

    print("\n" + "="*60)
    print("Classification Experiments Complete!")
    print("="*60)


if __name__ == "__main__":
    main()
