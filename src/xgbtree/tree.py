"""
Gain-greedy decision tree used as the weak learner of the boosting loop.

``TreeNode`` is the recursive unit. Training works on a dimensions x samples
matrix and a response vector shared by the whole growth call: each node
scores every candidate dimension with the split strategy matching its type,
keeps the best one, partitions its column range in place so that every
branch occupies a contiguous segment, and trains one child per segment.

``XGBTree`` wraps a root node with an estimator-style interface over
samples x features input.
"""

import copy
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

import numpy as np
from sklearn.exceptions import NotFittedError
from sklearn.utils.validation import check_array, check_X_y

from .data import DatasetInfo, Datatype
from .dimension_select import AllDimensionSelect
from .gain import GainFunction, MSEGain
from .importance import FeatureImportance
from .splits import (
    AllCategoricalSplit,
    BestBinaryNumericSplit,
    CategoricalSplitInfo,
    NumericSplitInfo,
)

logger = logging.getLogger(__name__)

SplitInfo = Union[NumericSplitInfo, CategoricalSplitInfo]


@dataclass
class Leaf:
    """Payload of a leaf node."""
    prediction: float


@dataclass
class Split:
    """
    Payload of an internal node.

    ``node_value`` is the leaf value of the node's own training range. It
    answers for samples routed to a branch that pruning has removed.
    """
    dimension: int
    dimension_type: Datatype
    split_info: SplitInfo
    node_value: float


def _strategy(dimension_type: Datatype):
    if dimension_type is Datatype.CATEGORICAL:
        return AllCategoricalSplit
    return BestBinaryNumericSplit


def _check_train_arguments(
    data: np.ndarray,
    responses: np.ndarray,
    dataset_info: DatasetInfo,
    begin: int,
    count: int,
    weights: Optional[np.ndarray],
    minimum_leaf_size: int,
    minimum_gain_split: float,
    maximum_depth: int
) -> None:
    if minimum_leaf_size < 1:
        raise ValueError(f"minimum_leaf_size must be >= 1, got {minimum_leaf_size}")
    if minimum_gain_split < 0:
        raise ValueError(f"minimum_gain_split must be >= 0, got {minimum_gain_split}")
    if maximum_depth < 1:
        raise ValueError(f"maximum_depth must be >= 1, got {maximum_depth}")

    if data.ndim != 2:
        raise ValueError(f"data must be 2-D (dimensions x samples), got {data.ndim}-D")
    if responses.ndim != 1:
        raise ValueError(f"responses must be 1-D, got {responses.ndim}-D")
    if data.shape[0] != dataset_info.dimensionality:
        raise ValueError(
            f"data has {data.shape[0]} dimensions but dataset info describes "
            f"{dataset_info.dimensionality}"
        )
    n_samples = data.shape[1]
    if responses.shape[0] != n_samples:
        raise ValueError(
            f"responses has {responses.shape[0]} entries but data has {n_samples} samples"
        )
    if weights is not None and weights.size > 0 and weights.shape[0] != n_samples:
        raise ValueError(
            f"weights has {weights.shape[0]} entries but data has {n_samples} samples"
        )
    if not (data.flags.writeable and responses.flags.writeable):
        raise ValueError("data and responses must be writeable; they are reordered in place")

    if count < 1:
        raise ValueError("cannot train on an empty range of samples")
    if begin < 0 or begin + count > n_samples:
        raise ValueError(
            f"range [{begin}, {begin + count}) is outside the {n_samples} available samples"
        )

    end = begin + count
    if not np.all(np.isfinite(data[:, begin:end])):
        raise ValueError("data contains NaN or infinite values")
    if not np.all(np.isfinite(responses[begin:end])):
        raise ValueError("responses contain NaN or infinite values")

    for dim in dataset_info.categorical_dimensions:
        codes = data[dim, begin:end]
        n_categories = dataset_info.num_mappings(dim)
        valid = (codes == np.floor(codes)) & (codes >= 0) & (codes < n_categories)
        if not np.all(valid):
            raise ValueError(
                f"categorical dimension {dim} must hold integer codes in [0, {n_categories})"
            )


@dataclass
class TreeNode:
    """
    One node of a decision tree.

    A node is a leaf iff it has no children. Before training the payload is
    ``None``; afterwards it is a ``Leaf`` or a ``Split``.

    Attributes
    ----------
    payload : Leaf, Split or None
        Leaf prediction or split descriptor.
    children : list of TreeNode
        Owned child nodes in branch order (at least two for a freshly
        trained internal node).
    node_gain : float
        Baseline gain for a leaf; count-weighted gain of the children for an
        internal node.
    branch : int
        Branch index of this node in its parent.
    node_id : int
        Pre-order index, assigned by ``number_nodes``.
    """
    payload: Optional[Union[Leaf, Split]] = None
    children: List["TreeNode"] = field(default_factory=list)
    node_gain: float = 0.0
    branch: int = 0
    node_id: int = 0

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def value(self) -> float:
        """Prediction made when routing stops at this node."""
        if isinstance(self.payload, Leaf):
            return self.payload.prediction
        if isinstance(self.payload, Split):
            return self.payload.node_value
        raise NotFittedError("This TreeNode has not been trained yet.")

    def train(
        self,
        data: np.ndarray,
        responses: np.ndarray,
        dataset_info: DatasetInfo,
        begin: int = 0,
        count: Optional[int] = None,
        weights: Optional[np.ndarray] = None,
        *,
        minimum_leaf_size: int,
        minimum_gain_split: float,
        maximum_depth: int,
        dimension_selector=None,
        gain: Optional[GainFunction] = None,
        feature_importance: Optional[FeatureImportance] = None
    ) -> float:
        """
        Grow the subtree rooted at this node.

        ``data`` columns and ``responses`` entries in ``[begin, begin + count)``
        are reordered in place so that every child's samples are contiguous.

        Parameters
        ----------
        data : np.ndarray, shape (n_dimensions, n_samples)
            Feature matrix, one sample per column.
        responses : np.ndarray, shape (n_samples,)
            Targets, reordered together with ``data``.
        dataset_info : DatasetInfo
            Type of every dimension.
        begin, count : int
            Column range to train on. ``count`` defaults to the rest of the matrix.
        weights : np.ndarray, optional
            Per-sample weights; reordered with the data but not used for scoring.
        minimum_leaf_size : int
            Minimum number of samples in every branch of a split.
        minimum_gain_split : float
            Minimum gain improvement for a split to be taken.
        maximum_depth : int
            Remaining depth budget; 1 makes this node a leaf.
        dimension_selector : iterable of int, optional
            Candidate dimensions per node. Defaults to all dimensions.
        gain : GainFunction, optional
            Defaults to ``MSEGain``.
        feature_importance : FeatureImportance, optional
            Ledger updated for every split; ``None`` disables tracking.

        Returns
        -------
        float
            The negated ``node_gain`` (the loss of this subtree).
        """
        if count is None:
            count = data.shape[1] - begin
        _check_train_arguments(
            data, responses, dataset_info, begin, count, weights,
            minimum_leaf_size, minimum_gain_split, maximum_depth
        )
        if dimension_selector is None:
            dimension_selector = AllDimensionSelect(dataset_info.dimensionality)
        if gain is None:
            gain = MSEGain()
        if weights is not None and weights.size == 0:
            weights = None

        return self._grow(
            data, responses, dataset_info, begin, count, weights,
            minimum_leaf_size, minimum_gain_split, maximum_depth,
            dimension_selector, gain, feature_importance
        )

    def _grow(
        self,
        data: np.ndarray,
        responses: np.ndarray,
        dataset_info: DatasetInfo,
        begin: int,
        count: int,
        weights: Optional[np.ndarray],
        minimum_leaf_size: int,
        minimum_gain_split: float,
        maximum_depth: int,
        dimension_selector,
        gain: GainFunction,
        feature_importance: Optional[FeatureImportance]
    ) -> float:
        self.children = []
        self.payload = None

        end = begin + count
        node_responses = responses[begin:end]
        node_weights = weights[begin:end] if weights is not None else None

        baseline = gain.evaluate(node_responses)
        best_gain = baseline
        best_dim = None
        best_info = None

        if maximum_depth > 1:
            for dim in dimension_selector:
                values = data[dim, begin:end]
                if dataset_info.type(dim) is Datatype.CATEGORICAL:
                    result = AllCategoricalSplit.split_if_better(
                        best_gain, values, dataset_info.num_mappings(dim),
                        node_responses, node_weights,
                        minimum_leaf_size, minimum_gain_split, gain
                    )
                else:
                    result = BestBinaryNumericSplit.split_if_better(
                        best_gain, values, node_responses, node_weights,
                        minimum_leaf_size, minimum_gain_split, gain
                    )

                if result is None:
                    continue

                best_gain, best_info = result
                best_dim = dim

                # Perfect split; no other dimension can do better.
                if best_gain >= 0.0:
                    break

        if best_dim is None:
            self.payload = Leaf(gain.output_leaf_value(node_responses))
            self.node_gain = baseline
            return -self.node_gain

        dimension_type = dataset_info.type(best_dim)
        strategy = _strategy(dimension_type)
        n_children = strategy.num_children(best_info)
        node_value = gain.output_leaf_value(node_responses)

        directions = np.fromiter(
            (strategy.calculate_direction(v, best_info) for v in data[best_dim, begin:end]),
            dtype=np.intp,
            count=count,
        )
        child_counts = np.bincount(directions, minlength=n_children)

        # Stable partition: branch i occupies the i-th segment, original order kept.
        order = np.argsort(directions, kind="stable")
        data[:, begin:end] = data[:, begin:end][:, order]
        responses[begin:end] = node_responses[order]
        if weights is not None:
            weights[begin:end] = node_weights[order]

        if feature_importance is not None:
            feature_importance.increase_feature_frequency(best_dim, 1)
            feature_importance.increase_feature_cover(best_dim, best_gain - baseline)

        logger.debug(
            "Split %d samples on dimension %d (%s) into %s, gain %.6g -> %.6g",
            count, best_dim, dimension_type.value, child_counts.tolist(), baseline, best_gain
        )

        children = []
        aggregate_gain = 0.0
        child_begin = begin
        for branch in range(n_children):
            child_count = int(child_counts[branch])
            child = TreeNode(branch=branch)
            child_loss = child._grow(
                data, responses, dataset_info, child_begin, child_count, weights,
                minimum_leaf_size, minimum_gain_split, maximum_depth - 1,
                dimension_selector, gain, feature_importance
            )
            aggregate_gain += child_count / count * (-child_loss)
            children.append(child)
            child_begin += child_count

        self.children = children
        self.payload = Split(best_dim, dimension_type, best_info, node_value)
        self.node_gain = aggregate_gain
        return -self.node_gain

    def _child_for(self, point) -> Optional["TreeNode"]:
        split = self.payload
        if split.dimension >= len(point):
            raise ValueError(
                f"feature vector has {len(point)} dimensions but the tree splits "
                f"on dimension {split.dimension}"
            )
        strategy = _strategy(split.dimension_type)
        direction = strategy.calculate_direction(point[split.dimension], split.split_info)
        if not 0 <= direction < strategy.num_children(split.split_info):
            raise ValueError(
                f"value {point[split.dimension]!r} of dimension {split.dimension} "
                f"does not map to a branch"
            )
        for child in self.children:
            if child.branch == direction:
                return child
        return None

    def find(self, point) -> "TreeNode":
        """Node at which routing of ``point`` stops."""
        if not self.children:
            if not isinstance(self.payload, Leaf):
                raise NotFittedError("This TreeNode has not been trained yet.")
            return self
        child = self._child_for(point)
        if child is None:
            return self
        return child.find(point)

    def decision_path(self, point) -> List["TreeNode"]:
        """Nodes visited by ``point``, from this node to where routing stops."""
        path = [self]
        node = self
        while node.children:
            child = node._child_for(point)
            if child is None:
                break
            path.append(child)
            node = child
        return path

    def predict(self, point) -> float:
        """Prediction for a single feature vector."""
        return self.find(point).value

    def prune(self, threshold: float) -> bool:
        """
        Remove, bottom-up, every descendant whose ``node_gain`` is below ``threshold``.

        Returns
        -------
        bool
            Whether this node's own ``node_gain`` is below ``threshold``, i.e.
            whether the caller should remove it.
        """
        if self.payload is None:
            raise NotFittedError("This TreeNode has not been trained yet.")

        survivors = []
        for child in self.children:
            if child.prune(threshold):
                logger.debug(
                    "Pruned branch %d (node gain %.6g < %.6g)", child.branch, child.node_gain, threshold
                )
            else:
                survivors.append(child)

        if self.children and not survivors:
            self.payload = Leaf(self.payload.node_value)
        self.children = survivors

        return self.node_gain < threshold

    def number_nodes(self, start: int = 0) -> int:
        """Assign pre-order ``node_id`` values. Returns the next free id."""
        self.node_id = start
        next_id = start + 1
        for child in self.children:
            next_id = child.number_nodes(next_id)
        return next_id

    def depth(self) -> int:
        """Number of edges on the longest path to a leaf."""
        if not self.children:
            return 0
        return 1 + max(child.depth() for child in self.children)

    def count_nodes(self) -> int:
        return 1 + sum(child.count_nodes() for child in self.children)

    def count_leaves(self) -> int:
        if not self.children:
            return 1
        return sum(child.count_leaves() for child in self.children)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"node_gain": self.node_gain, "branch": self.branch}
        if isinstance(self.payload, Leaf):
            data["leaf"] = {"prediction": self.payload.prediction}
        elif isinstance(self.payload, Split):
            data["split"] = {
                "dimension": self.payload.dimension,
                "dimension_type": self.payload.dimension_type.value,
                "split_info": asdict(self.payload.split_info),
                "node_value": self.payload.node_value,
            }
        data["children"] = [child.to_dict() for child in self.children]
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TreeNode":
        node = cls(node_gain=float(data["node_gain"]), branch=int(data.get("branch", 0)))
        if "leaf" in data:
            node.payload = Leaf(float(data["leaf"]["prediction"]))
        elif "split" in data:
            split = data["split"]
            dimension_type = Datatype(split["dimension_type"])
            if dimension_type is Datatype.CATEGORICAL:
                info = CategoricalSplitInfo(int(split["split_info"]["n_categories"]))
            else:
                info = NumericSplitInfo(float(split["split_info"]["threshold"]))
            node.payload = Split(
                int(split["dimension"]), dimension_type, info, float(split["node_value"])
            )
        node.children = [cls.from_dict(child) for child in data.get("children", [])]
        return node


class XGBTree:
    """
    Regression tree over samples x features input.

    The input is copied and transposed before growth, so the caller's arrays
    are never modified.

    Args:
        minimum_leaf_size: Minimum samples in every branch of a split.
        minimum_gain_split: Minimum gain improvement for a split.
        maximum_depth: Number of node levels allowed (1 gives a single leaf);
            0 means unlimited.
        categorical_features: ``DatasetInfo`` or mapping of feature index to
            category count. Categorical columns hold codes ``0..k-1``.
        dimension_selector: Candidate features per node; defaults to all.
            Copied at fit time, so a seeded selector gives the same tree on
            every fit.
        track_importance: Record split frequency and cover per feature.
    """

    def __init__(
        self,
        minimum_leaf_size: int = 10,
        minimum_gain_split: float = 1e-7,
        maximum_depth: int = 0,
        categorical_features: Optional[Union[DatasetInfo, Mapping[int, int]]] = None,
        dimension_selector=None,
        track_importance: bool = True
    ):
        self.minimum_leaf_size = minimum_leaf_size
        self.minimum_gain_split = minimum_gain_split
        self.maximum_depth = maximum_depth
        self.categorical_features = categorical_features
        self.dimension_selector = dimension_selector
        self.track_importance = track_importance

    def _dataset_info(self, n_features: int) -> DatasetInfo:
        if isinstance(self.categorical_features, DatasetInfo):
            if self.categorical_features.dimensionality != n_features:
                raise ValueError(
                    f"dataset info describes {self.categorical_features.dimensionality} "
                    f"features but X has {n_features}"
                )
            return self.categorical_features
        return DatasetInfo(n_features, self.categorical_features)

    def fit(
        self,
        X: np.ndarray,
        y: np.ndarray,
        sample_weight: Optional[np.ndarray] = None
    ) -> "XGBTree":
        """
        Grow the tree.

        Args:
            X: Training features, shape (n_samples, n_features).
            y: Training targets, shape (n_samples,).
            sample_weight: Optional per-sample weights (carried, not scored).

        Returns:
            self
        """
        X, y = check_X_y(X, y, dtype=np.float64, y_numeric=True)
        n_samples, n_features = X.shape
        if self.maximum_depth < 0:
            raise ValueError(f"maximum_depth must be >= 0, got {self.maximum_depth}")

        info = self._dataset_info(n_features)
        data = np.array(X.T, dtype=np.float64, order="C")
        responses = np.array(y, dtype=np.float64)
        weights = None
        if sample_weight is not None:
            weights = np.array(sample_weight, dtype=np.float64).ravel()

        if self.dimension_selector is None:
            selector = AllDimensionSelect()
        else:
            selector = copy.deepcopy(self.dimension_selector)
        selector.dimensions = n_features

        # A numeric split leaves at least one sample per side, so n_samples + 1
        # levels can never be exhausted.
        depth = self.maximum_depth if self.maximum_depth > 0 else n_samples + 1
        importance = FeatureImportance() if self.track_importance else None

        self.root_ = None
        root = TreeNode()
        root.train(
            data, responses, info, 0, n_samples, weights,
            minimum_leaf_size=self.minimum_leaf_size,
            minimum_gain_split=self.minimum_gain_split,
            maximum_depth=depth,
            dimension_selector=selector,
            gain=MSEGain(),
            feature_importance=importance,
        )
        root.number_nodes()

        self.root_ = root
        self.feature_importance_ = importance
        self.dataset_info_ = info
        self.n_features_in_ = n_features

        logger.debug(
            "Grew tree on %d samples: %d nodes, %d leaves, depth %d",
            n_samples, self.node_count, self.n_leaves, self.get_depth()
        )
        return self

    def _check_fitted(self) -> TreeNode:
        root = getattr(self, "root_", None)
        if root is None:
            raise NotFittedError(
                "This XGBTree instance is not fitted yet. Call 'fit' first."
            )
        return root

    def _check_X(self, X: np.ndarray) -> np.ndarray:
        X = check_array(X, dtype=np.float64)
        if X.shape[1] != self.n_features_in_:
            raise ValueError(
                f"X has {X.shape[1]} features, but the tree was fitted with "
                f"{self.n_features_in_}"
            )
        return X

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Predict targets, shape (n_samples,)."""
        root = self._check_fitted()
        X = self._check_X(X)
        return np.array([root.predict(row) for row in X], dtype=np.float64)

    def predict_one(self, x) -> float:
        """Predict the target of a single feature vector."""
        root = self._check_fitted()
        x = np.asarray(x, dtype=np.float64).ravel()
        if x.shape[0] != self.n_features_in_:
            raise ValueError(
                f"x has {x.shape[0]} features, but the tree was fitted with "
                f"{self.n_features_in_}"
            )
        return root.predict(x)

    def apply(self, X: np.ndarray) -> np.ndarray:
        """Id of the node where each sample's routing stops, shape (n_samples,)."""
        root = self._check_fitted()
        X = self._check_X(X)
        return np.array([root.find(row).node_id for row in X], dtype=np.intp)

    def prune(self, threshold: float) -> "XGBTree":
        """Prune every non-root node whose gain is below ``threshold``."""
        root = self._check_fitted()
        before = root.count_nodes()
        if root.prune(threshold):
            logger.debug("Root gain %.6g is below threshold; the root is kept", root.node_gain)
        root.number_nodes()
        logger.debug("Pruning at %.6g removed %d nodes", threshold, before - root.count_nodes())
        return self

    def get_depth(self) -> int:
        return self._check_fitted().depth()

    @property
    def n_leaves(self) -> int:
        return self._check_fitted().count_leaves()

    @property
    def node_count(self) -> int:
        return self._check_fitted().count_nodes()

    @property
    def feature_importances_(self) -> np.ndarray:
        """Cover per feature, normalised to sum to 1."""
        self._check_fitted()
        if self.feature_importance_ is None:
            raise AttributeError("feature importance was not tracked (track_importance=False)")
        return self.feature_importance_.normalized_cover(self.n_features_in_)
