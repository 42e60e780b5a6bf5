"""
Regression experiment on a Friedman #1 problem with a categorical column.

Compares a single XGBTree and boosted XGBTrees against scikit-learn,
studies the effect of pruning, and plots learning curves and feature
importances.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from sklearn.datasets import make_friedman1
from sklearn.ensemble import GradientBoostingRegressor as SklearnGBR
from sklearn.model_selection import train_test_split
from sklearn.tree import DecisionTreeRegressor
from sklearn.metrics import mean_squared_error

from xgbtree import GradientBoostingRegressor, XGBTree, encode_frame

OUTPUT_DIR = Path(__file__).resolve().parent

# Set style
plt.style.use('seaborn-v0_8-darkgrid')

REGION_EFFECT = {"north": -2.0, "south": 0.0, "east": 1.5, "west": 3.0}


def load_and_prepare_data():
    """Friedman #1 plus a region column with a per-region offset."""
    print("Generating Friedman #1 data with a categorical column...")
    X, y = make_friedman1(n_samples=2000, n_features=8, noise=1.0, random_state=42)

    rng = np.random.default_rng(42)
    regions = rng.choice(list(REGION_EFFECT), size=len(y))
    y = y + np.array([REGION_EFFECT[r] for r in regions])

    frame = pd.DataFrame(X, columns=[f"x{i}" for i in range(X.shape[1])])
    frame["region"] = regions

    data, info, labels = encode_frame(frame)
    X = data.T
    categorical = {dim: info.num_mappings(dim) for dim in info.categorical_dimensions}
    print(f"Categorical columns: {labels}")

    X_train, X_test, y_train, y_test = train_test_split(
        X, y, test_size=0.2, random_state=42
    )
    X_train, X_val, y_train, y_val = train_test_split(
        X_train, y_train, test_size=0.2, random_state=42
    )
    print(f"Train: {X_train.shape}, Val: {X_val.shape}, Test: {X_test.shape}")

    return (X_train, X_val, X_test, y_train, y_val, y_test), list(frame.columns), categorical


def single_tree_comparison(splits, categorical):
    """A single XGBTree against a CART tree with the same depth."""
    X_train, _, X_test, y_train, _, y_test = splits
    print("\n" + "="*60)
    print("Single tree: XGBTree vs DecisionTreeRegressor")
    print("="*60)

    results = []
    for depth in [2, 4, 6]:
        tree = XGBTree(
            minimum_leaf_size=5, maximum_depth=depth + 1, categorical_features=categorical
        ).fit(X_train, y_train)
        dt = DecisionTreeRegressor(max_depth=depth, min_samples_leaf=5, random_state=42)
        dt.fit(X_train, y_train)

        results.append({
            'max_depth': depth,
            'xgbtree_test_mse': mean_squared_error(y_test, tree.predict(X_test)),
            'cart_test_mse': mean_squared_error(y_test, dt.predict(X_test)),
            'xgbtree_leaves': tree.n_leaves,
            'cart_leaves': dt.get_n_leaves(),
        })

    results = pd.DataFrame(results)
    print(results.to_string(index=False))
    return results


def experiment_pruning(splits, categorical):
    """Experiment: size and error of a deep tree pruned at increasing thresholds."""
    X_train, _, X_test, y_train, _, y_test = splits
    print("\n" + "="*60)
    print("Experiment 1: Effect of prune threshold")
    print("="*60)

    base = XGBTree(minimum_leaf_size=2, categorical_features=categorical).fit(X_train, y_train)
    gains = sorted(node.node_gain for node in _walk(base.root_))
    thresholds = [-np.inf] + [float(np.quantile(gains, q)) for q in (0.1, 0.25, 0.5, 0.75)]

    results = []
    for threshold in thresholds:
        tree = XGBTree(minimum_leaf_size=2, categorical_features=categorical)
        tree.fit(X_train, y_train).prune(threshold)
        results.append({
            'threshold': threshold,
            'nodes': tree.node_count,
            'test_mse': mean_squared_error(y_test, tree.predict(X_test)),
        })

    results = pd.DataFrame(results)
    print(results.to_string(index=False))

    fig, ax = plt.subplots(figsize=(8, 5))
    ax.plot(results['nodes'], results['test_mse'], marker='o', linewidth=2)
    ax.set_xlabel('Nodes after pruning')
    ax.set_ylabel('Test MSE')
    ax.set_title('Pruning a fully grown tree')
    ax.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig(OUTPUT_DIR / 'regression_pruning.png', dpi=150)
    plt.close(fig)
    print("\nSaved plot: regression_pruning.png")

    return results


def _walk(node):
    yield node
    for child in node.children:
        yield from _walk(child)


def experiment_boosting(splits, categorical, feature_names):
    """Boosted XGBTrees against scikit-learn's GradientBoostingRegressor."""
    X_train, X_val, X_test, y_train, y_val, y_test = splits
    print("\n" + "="*60)
    print("Experiment 2: Boosting vs sklearn GradientBoostingRegressor")
    print("="*60)

    params = dict(n_estimators=200, learning_rate=0.1, max_depth=3, subsample=0.8)

    ours = GradientBoostingRegressor(
        **params, categorical_features=categorical, random_state=42
    )
    ours.fit(X_train, y_train, X_val=X_val, y_val=y_val)

    sk = SklearnGBR(**params, random_state=42)
    sk.fit(X_train, y_train)

    our_mse = mean_squared_error(y_test, ours.predict(X_test))
    sk_mse = mean_squared_error(y_test, sk.predict(X_test))
    print(f"Test MSE (xgbtree): {our_mse:.6f}")
    print(f"Test MSE (sklearn): {sk_mse:.6f}")

    fig, axes = plt.subplots(1, 2, figsize=(14, 5))

    ax = axes[0]
    ax.plot(ours.train_scores_, label='Train', linewidth=2)
    ax.plot(ours.val_scores_, label='Validation', linewidth=2)
    ax.set_xlabel('Iteration')
    ax.set_ylabel('0.5 * MSE')
    ax.set_title('Learning curves')
    ax.legend()
    ax.grid(True, alpha=0.3)

    ax = axes[1]
    positions = np.arange(len(feature_names))
    ax.barh(positions - 0.2, ours.feature_importances_, height=0.4, label='xgbtree (cover)')
    ax.barh(positions + 0.2, sk.feature_importances_, height=0.4, label='sklearn (impurity)')
    ax.set_yticks(positions)
    ax.set_yticklabels(feature_names)
    ax.set_xlabel('Normalised importance')
    ax.set_title('Feature importances')
    ax.legend()

    plt.tight_layout()
    plt.savefig(OUTPUT_DIR / 'regression_boosting.png', dpi=150)
    plt.close(fig)
    print("\nSaved plot: regression_boosting.png")

    frame = ours.importance_.to_frame()
    frame.index = [feature_names[d] for d in frame.index]
    print("\nSplit frequency and cover per feature:")
    print(frame.sort_values('cover', ascending=False).to_string())

    return pd.DataFrame([{'model': 'xgbtree', 'test_mse': our_mse},
                         {'model': 'sklearn', 'test_mse': sk_mse}])


def experiment_max_features(splits, categorical):
    """Experiment: effect of per-node feature subsampling."""
    X_train, X_val, X_test, y_train, y_val, y_test = splits
    print("\n" + "="*60)
    print("Experiment 3: Effect of max_features")
    print("="*60)

    results = []
    fig, ax = plt.subplots(figsize=(10, 6))

    for max_features in [2, 5, None]:
        gbr = GradientBoostingRegressor(
            n_estimators=150,
            learning_rate=0.1,
            max_depth=3,
            max_features=max_features,
            categorical_features=categorical,
            random_state=42
        )
        gbr.fit(X_train, y_train, X_val=X_val, y_val=y_val)

        test_mse = mean_squared_error(y_test, gbr.predict(X_test))
        print(f"max_features={max_features}: Test MSE {test_mse:.6f}")
        results.append({'max_features': max_features, 'test_mse': test_mse})

        ax.plot(gbr.val_scores_, label=f'max_features={max_features}', linewidth=2)

    ax.set_xlabel('Iteration')
    ax.set_ylabel('Validation 0.5 * MSE')
    ax.set_title('Effect of per-node feature subsampling')
    ax.legend()
    ax.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig(OUTPUT_DIR / 'regression_max_features.png', dpi=150)
    plt.close(fig)
    print("\nSaved plot: regression_max_features.png")

    return pd.DataFrame(results)


def main():
    """Run all regression experiments."""
    print("="*60)
    print("XGBTree Regression Experiments")
    print("Friedman #1 with a categorical region column")
    print("="*60)

    splits, feature_names, categorical = load_and_prepare_data()

    results = {
        'single_tree': single_tree_comparison(splits, categorical),
        'pruning': experiment_pruning(splits, categorical),
        'boosting': experiment_boosting(splits, categorical, feature_names),
        'max_features': experiment_max_features(splits, categorical),
    }

    for name, frame in results.items():
        frame.to_csv(OUTPUT_DIR / f'regression_{name}_results.csv', index=False)

    print("\n" + "="*60)
    print("Regression Experiments Complete!")
    print("="*60)


if __name__ == "__main__":
    main()
