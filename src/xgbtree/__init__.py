"""
Gain-greedy decision trees as weak learners for gradient boosting.

The tree grows recursively over a dimensions x samples matrix, partitioning
samples in place, with numeric (binary threshold) and categorical
(one branch per category) splits scored by a mean-squared-error gain. It
supports post-hoc pruning and per-feature importance tracking, and is used
by the gradient boosting estimators in ``xgbtree.core``.
"""

from .core import GradientBoostingRegressor, GradientBoostingClassifier
from .data import Datatype, DatasetInfo, encode_frame
from .dimension_select import AllDimensionSelect, RandomDimensionSelect
from .gain import GainFunction, MSEGain
from .importance import FeatureImportance
from .splits import (
    AllCategoricalSplit,
    BestBinaryNumericSplit,
    CategoricalSplitInfo,
    NumericSplitInfo,
)
from .tree import Leaf, Split, TreeNode, XGBTree

__version__ = "0.1.0"
__all__ = [
    "GradientBoostingRegressor",
    "GradientBoostingClassifier",
    "Datatype",
    "DatasetInfo",
    "encode_frame",
    "AllDimensionSelect",
    "RandomDimensionSelect",
    "GainFunction",
    "MSEGain",
    "FeatureImportance",
    "AllCategoricalSplit",
    "BestBinaryNumericSplit",
    "CategoricalSplitInfo",
    "NumericSplitInfo",
    "Leaf",
    "Split",
    "TreeNode",
    "XGBTree",
]
