"""
Gradient boosting with ``XGBTree`` weak learners.

Implements the stagewise loop of Gradient Tree Boosting (Friedman, 2001;
ESL Algorithm 10.4): start from a constant, repeatedly fit a tree to the
pseudo-residuals, replace each leaf's value by the loss-optimal step for the
samples it covers, and add the tree scaled by the learning rate.

References:
- Hastie, T., Tibshirani, R., & Friedman, J. (2009). The Elements of Statistical
  Learning (2nd ed.). Springer. Chapter 10.
- Friedman, J. H. (2001). Greedy function approximation: A gradient boosting machine.
  Annals of Statistics, 29(5), 1189-1232.
- Chen, T., & Guestrin, C. (2016). XGBoost: A scalable tree boosting system. KDD.
"""

from typing import Callable, Dict, List, Mapping, Optional
import logging

import numpy as np
from sklearn.exceptions import NotFittedError

from .dimension_select import RandomDimensionSelect
from .importance import FeatureImportance
from .tree import XGBTree
from .utils import (
    mse_loss, mse_negative_gradient, mse_optimal_gamma,
    logistic_loss, logistic_negative_gradient, logistic_optimal_gamma,
    sigmoid
)


class GradientBoostingBase:
    """
    Base class for gradient boosting models.

    Implements stochastic gradient boosting with shrinkage (learning rate),
    row subsampling and optional per-node feature subsampling. Each stage
    grows an ``XGBTree`` on the pseudo-residuals.
    """

    def __init__(
        self,
        n_estimators: int = 100,
        learning_rate: float = 0.1,
        max_depth: int = 3,
        min_samples_leaf: int = 1,
        min_gain_split: float = 0.0,
        subsample: float = 1.0,
        max_features: Optional[int] = None,
        prune_threshold: Optional[float] = None,
        categorical_features: Optional[Mapping[int, int]] = None,
        random_state: Optional[int] = None,
        verbose: bool = False
    ):
        """
        Args:
            n_estimators: Number of boosting stages (M).
            learning_rate: Shrinkage parameter ν ∈ (0, 1]. Multiplies tree contributions.
            max_depth: Maximum number of split levels in each tree.
            min_samples_leaf: Minimum samples required in every branch of a split.
            min_gain_split: Minimum gain improvement required to split a node.
            subsample: Fraction of samples to use per iteration (stochastic boosting).
            max_features: Number of features examined per node (None for all).
            prune_threshold: If set, each tree is pruned at this gain threshold.
            categorical_features: Mapping of feature index to category count.
            random_state: Random seed for reproducibility.
            verbose: Enable logging output.
        """
        self.n_estimators = n_estimators
        self.learning_rate = learning_rate
        self.max_depth = max_depth
        self.min_samples_leaf = min_samples_leaf
        self.min_gain_split = min_gain_split
        self.subsample = subsample
        self.max_features = max_features
        self.prune_threshold = prune_threshold
        self.categorical_features = categorical_features
        self.random_state = random_state
        self.verbose = verbose

        # Model state
        self.f0_: float = 0.0  # Initial constant prediction
        self.estimators_: List[XGBTree] = []  # Weak learners
        self.leaf_values_: List[Dict[int, float]] = []  # Optimal gamma per leaf per tree
        self.importance_: FeatureImportance = FeatureImportance()

        # Training history
        self.train_scores_: List[float] = []
        self.val_scores_: List[float] = []

        # Setup logging
        self.logger = logging.getLogger(__name__)
        if self.verbose:
            logging.basicConfig(level=logging.INFO)

    def _check_params(self) -> None:
        if self.n_estimators < 1:
            raise ValueError(f"n_estimators must be >= 1, got {self.n_estimators}")
        if not 0.0 < self.learning_rate <= 1.0:
            raise ValueError(f"learning_rate must be in (0, 1], got {self.learning_rate}")
        if self.max_depth < 1:
            raise ValueError(f"max_depth must be >= 1, got {self.max_depth}")
        if not 0.0 < self.subsample <= 1.0:
            raise ValueError(f"subsample must be in (0, 1], got {self.subsample}")

    def _subsample_indices(self, n_samples: int, rng: np.random.Generator) -> np.ndarray:
        """Generate subsampled indices for stochastic boosting."""
        if self.subsample < 1.0:
            n_subsample = max(1, int(self.subsample * n_samples))
            indices = rng.choice(n_samples, size=n_subsample, replace=False)
            return np.sort(indices)
        else:
            return np.arange(n_samples)

    def _make_tree(self, rng: np.random.Generator) -> XGBTree:
        selector = None
        if self.max_features is not None:
            selector = RandomDimensionSelect(
                self.max_features, random_state=int(rng.integers(2**31 - 1))
            )
        # A budget of d + 1 node levels allows d levels of splits.
        return XGBTree(
            minimum_leaf_size=self.min_samples_leaf,
            minimum_gain_split=self.min_gain_split,
            maximum_depth=self.max_depth + 1,
            categorical_features=self.categorical_features,
            dimension_selector=selector,
        )

    def _boost(
        self,
        X: np.ndarray,
        y: np.ndarray,
        F_train: np.ndarray,
        negative_gradient: Callable[[np.ndarray, np.ndarray], np.ndarray],
        optimal_gamma: Callable[[np.ndarray, np.ndarray, np.ndarray], float],
        loss: Callable[[np.ndarray, np.ndarray], float],
        X_val: Optional[np.ndarray],
        y_val: Optional[np.ndarray],
        score_name: str
    ) -> None:
        """Run the boosting loop (step 2 of Algorithm 10.4), updating F_train in place."""
        rng = np.random.default_rng(self.random_state)
        n_samples = X.shape[0]

        self.estimators_ = []
        self.leaf_values_ = []
        self.importance_ = FeatureImportance()
        self.train_scores_ = []
        self.val_scores_ = []

        for m in range(self.n_estimators):
            # Subsample
            indices = self._subsample_indices(n_samples, rng)
            X_sub = X[indices]
            y_sub = y[indices]
            F_sub = F_train[indices]

            # (a) Compute pseudo-residuals (negative gradient)
            residuals = negative_gradient(y_sub, F_sub)

            # (b) Fit tree to residuals
            tree = self._make_tree(rng)
            tree.fit(X_sub, residuals)
            if self.prune_threshold is not None:
                tree.prune(self.prune_threshold)

            # (c) Compute optimal gamma per terminal node
            leaf_indices_sub = tree.apply(X_sub)
            gamma_map = {}
            for leaf_id in np.unique(leaf_indices_sub):
                mask = (leaf_indices_sub == leaf_id)
                gamma_map[int(leaf_id)] = optimal_gamma(y_sub[mask], F_sub[mask], residuals[mask])

            # (d) Update predictions with shrinkage
            F_train += self.learning_rate * self._tree_update(tree, gamma_map, X)

            self.estimators_.append(tree)
            self.leaf_values_.append(gamma_map)
            self.importance_.merge(tree.feature_importance_)

            # Track scores
            train_score = loss(y, F_train)
            self.train_scores_.append(train_score)

            if X_val is not None and y_val is not None:
                F_val = self._predict_raw(X_val, up_to_iteration=m + 1)
                val_score = loss(y_val, F_val)
                self.val_scores_.append(val_score)

                if self.verbose and (m + 1) % 10 == 0:
                    self.logger.info(
                        f"Iteration {m+1}/{self.n_estimators}: "
                        f"train_{score_name}={train_score:.6f}, val_{score_name}={val_score:.6f}"
                    )
            elif self.verbose and (m + 1) % 10 == 0:
                self.logger.info(
                    f"Iteration {m+1}/{self.n_estimators}: train_{score_name}={train_score:.6f}"
                )

    @staticmethod
    def _tree_update(tree: XGBTree, gamma_map: Dict[int, float], X: np.ndarray) -> np.ndarray:
        leaf_indices = tree.apply(X)
        return np.array([gamma_map.get(int(leaf), 0.0) for leaf in leaf_indices])

    def _predict_raw(self, X: np.ndarray, up_to_iteration: Optional[int] = None) -> np.ndarray:
        """
        Raw additive predictions F(x).

        Args:
            X: Features, shape (n_samples, n_features).
            up_to_iteration: Use only first k estimators (for staged predictions).

        Returns:
            Raw predictions, shape (n_samples,).
        """
        if not self.estimators_:
            raise NotFittedError(
                f"This {type(self).__name__} instance is not fitted yet. Call 'fit' first."
            )
        n_estimators = up_to_iteration if up_to_iteration is not None else len(self.estimators_)

        X = np.asarray(X, dtype=np.float64)
        F = np.full(X.shape[0], self.f0_)

        for m in range(n_estimators):
            F += self.learning_rate * self._tree_update(
                self.estimators_[m], self.leaf_values_[m], X
            )

        return F

    @property
    def feature_importances_(self) -> np.ndarray:
        """Total cover per feature over all trees, normalised to sum to 1."""
        if not self.estimators_:
            raise NotFittedError(
                f"This {type(self).__name__} instance is not fitted yet. Call 'fit' first."
            )
        return self.importance_.normalized_cover(self.estimators_[0].n_features_in_)


class GradientBoostingRegressor(GradientBoostingBase):
    """
    Gradient Tree Boosting for regression (Algorithm 10.4 with squared-error loss).

    Implements:
    1. Initialisation: f_0(x) = argmin_γ Σ L(y_i, γ) = mean(y) for MSE.
    2. For m = 1 to M:
       a. Compute pseudo-residuals: r_im = -∂L/∂f = y_i - f_{m-1}(x_i).
       b. Fit an XGBTree to {(x_i, r_im)} yielding regions R_jm.
       c. For each region j: γ_jm = mean(residuals in R_jm).
       d. Update: f_m(x) = f_{m-1}(x) + ν * Σ_j γ_jm I(x ∈ R_jm).

    Reference: ESL Section 10.9, Algorithm 10.4.
    """

    def fit(
        self,
        X: np.ndarray,
        y: np.ndarray,
        X_val: Optional[np.ndarray] = None,
        y_val: Optional[np.ndarray] = None
    ) -> "GradientBoostingRegressor":
        """
        Fit gradient boosting regressor.

        Args:
            X: Training features, shape (n_samples, n_features).
            y: Training targets, shape (n_samples,).
            X_val: Optional validation features for tracking generalisation.
            y_val: Optional validation targets.

        Returns:
            self
        """
        self._check_params()
        X = np.asarray(X, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)

        # Step 1: Initialise f_0(x) = argmin_γ Σ L(y_i, γ) = mean(y) for MSE
        self.f0_ = float(np.mean(y))
        F_train = np.full(X.shape[0], self.f0_)  # Current predictions

        if self.verbose:
            self.logger.info(f"Initial f_0 = {self.f0_:.6f}")

        self._boost(
            X, y, F_train,
            mse_negative_gradient,
            lambda y_leaf, F_leaf, r_leaf: mse_optimal_gamma(y_leaf, F_leaf),
            mse_loss,
            X_val, y_val,
            score_name="mse",
        )
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Predict regression targets."""
        return self._predict_raw(X)


class GradientBoostingClassifier(GradientBoostingBase):
    """
    Gradient Tree Boosting for binary classification (Algorithm 10.4 with logistic loss).

    Uses binomial deviance (logistic loss) and Newton-Raphson leaf optimisation (LogitBoost).

    Implements:
    1. Initialisation: f_0(x) = log(p/(1-p)), where p = mean(y).
    2. For m = 1 to M:
       a. Pseudo-residuals: r_im = y_i - p_i, where p_i = sigmoid(F_{m-1}(x_i)).
       b. Fit an XGBTree to {(x_i, r_im)} yielding regions R_jm.
       c. For each region j: γ_jm via Newton step:
          γ_jm = Σ_{x_i ∈ R_jm} r_i / Σ_{x_i ∈ R_jm} p_i(1 - p_i).
       d. Update: F_m(x) = F_{m-1}(x) + ν * Σ_j γ_jm I(x ∈ R_jm).

    Predictions: p(x) = sigmoid(F_M(x)).
    """

    def fit(
        self,
        X: np.ndarray,
        y: np.ndarray,
        X_val: Optional[np.ndarray] = None,
        y_val: Optional[np.ndarray] = None
    ) -> "GradientBoostingClassifier":
        """
        Fit gradient boosting classifier.

        Args:
            X: Training features, shape (n_samples, n_features).
            y: Training targets {0, 1}, shape (n_samples,).
            X_val: Optional validation features.
            y_val: Optional validation targets.

        Returns:
            self
        """
        self._check_params()
        X = np.asarray(X, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        if not np.all(np.isin(y, (0.0, 1.0))):
            raise ValueError("GradientBoostingClassifier expects binary targets in {0, 1}")

        # Step 1: Initialise f_0(x) = log(p/(1-p)), where p = mean(y)
        p_init = np.clip(np.mean(y), 1e-15, 1 - 1e-15)
        self.f0_ = float(np.log(p_init / (1 - p_init)))

        F_train = np.full(X.shape[0], self.f0_)  # Current raw predictions

        if self.verbose:
            self.logger.info(f"Initial f_0 = {self.f0_:.6f}")

        self._boost(
            X, y, F_train,
            logistic_negative_gradient,
            logistic_optimal_gamma,
            logistic_loss,
            X_val, y_val,
            score_name="loss",
        )
        return self

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """
        Predict class probabilities.

        Args:
            X: Features, shape (n_samples, n_features).

        Returns:
            Probabilities for class 1, shape (n_samples,).
        """
        return sigmoid(self._predict_raw(X))

    def predict(self, X: np.ndarray) -> np.ndarray:
        """
        Predict class labels.

        Args:
            X: Features, shape (n_samples, n_features).

        Returns:
            Predicted labels {0, 1}, shape (n_samples,).
        """
        proba = self.predict_proba(X)
        return (proba >= 0.5).astype(int)
