"""
Split strategies for numeric and categorical dimensions.

Each strategy searches one dimension of the active row range for a
partition that beats the current best gain, and knows how to route a single
value to a branch once the split has been chosen. A search that finds
nothing returns ``None``.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .gain import GainFunction

# Relative tolerance for floating-point noise in gain comparisons.
GAIN_RTOL = 1e-9


def _improves(split_gain: float, best_gain: float, minimum_gain_split: float) -> bool:
    return split_gain - best_gain > minimum_gain_split + GAIN_RTOL * abs(best_gain)


@dataclass(frozen=True)
class NumericSplitInfo:
    threshold: float


@dataclass(frozen=True)
class CategoricalSplitInfo:
    n_categories: int


class BestBinaryNumericSplit:
    """
    Best binary split of a numeric dimension.

    Candidate thresholds are the midpoints between consecutive distinct
    sorted values. Samples with ``value <= threshold`` go to branch 0, the
    rest to branch 1.
    """

    @staticmethod
    def split_if_better(
        best_gain: float,
        values: np.ndarray,
        responses: np.ndarray,
        weights: Optional[np.ndarray],
        minimum_leaf_size: int,
        minimum_gain_split: float,
        gain: GainFunction
    ) -> Optional[Tuple[float, NumericSplitInfo]]:
        """
        Search for a threshold whose split gain beats ``best_gain``.

        Parameters
        ----------
        best_gain : float
            Gain to beat (the node's current best).
        values : np.ndarray, shape (n,)
            Values of this dimension over the active range.
        responses : np.ndarray, shape (n,)
            Responses over the active range.
        weights : np.ndarray or None
            Accepted for interface symmetry; not used.
        minimum_leaf_size : int
            Minimum number of samples on each side.
        minimum_gain_split : float
            The split gain must exceed ``best_gain`` by more than this.
        gain : GainFunction
            Scores each side of a candidate split.

        Returns
        -------
        (split_gain, info) or None
            ``split_gain`` is the count-weighted gain of the two sides.
        """
        n = values.size
        # Nothing can beat a perfectly pure node.
        if best_gain >= 0.0 or n < 2 * minimum_leaf_size:
            return None

        order = np.argsort(values, kind="stable")
        sorted_values = values[order]
        left_gains, right_gains = gain.binary_scan(responses[order])

        # Split after position i: i + 1 samples left, n - i - 1 right.
        positions = np.arange(minimum_leaf_size - 1, n - minimum_leaf_size)
        positions = positions[sorted_values[positions] != sorted_values[positions + 1]]
        if positions.size == 0:
            return None

        left_frac = (positions + 1) / n
        split_gains = left_frac * left_gains[positions] + (1.0 - left_frac) * right_gains[positions]

        best = int(np.argmax(split_gains))
        split_gain = float(split_gains[best])
        if not _improves(split_gain, best_gain, minimum_gain_split):
            return None

        pos = positions[best]
        low, high = sorted_values[pos], sorted_values[pos + 1]
        threshold = low / 2.0 + high / 2.0
        # Adjacent floats can round the midpoint up to the upper value.
        if threshold == high or not np.isfinite(threshold):
            threshold = low
        return split_gain, NumericSplitInfo(float(threshold))

    @staticmethod
    def num_children(info: NumericSplitInfo) -> int:
        return 2

    @staticmethod
    def calculate_direction(value: float, info: NumericSplitInfo) -> int:
        return 0 if value <= info.threshold else 1


class AllCategoricalSplit:
    """
    Multi-way split of a categorical dimension with one branch per category.

    The split is only possible when every category holds at least
    ``minimum_leaf_size`` samples of the active range.
    """

    @staticmethod
    def split_if_better(
        best_gain: float,
        values: np.ndarray,
        n_categories: int,
        responses: np.ndarray,
        weights: Optional[np.ndarray],
        minimum_leaf_size: int,
        minimum_gain_split: float,
        gain: GainFunction
    ) -> Optional[Tuple[float, CategoricalSplitInfo]]:
        n = values.size
        if best_gain >= 0.0 or n_categories < 2:
            return None

        codes = values.astype(np.intp)
        counts = np.bincount(codes, minlength=n_categories)
        if counts.min() < minimum_leaf_size:
            return None

        split_gain = 0.0
        for category in range(n_categories):
            child = responses[codes == category]
            split_gain += child.size / n * gain.evaluate(child)

        if not _improves(split_gain, best_gain, minimum_gain_split):
            return None
        return split_gain, CategoricalSplitInfo(int(n_categories))

    @staticmethod
    def num_children(info: CategoricalSplitInfo) -> int:
        return info.n_categories

    @staticmethod
    def calculate_direction(value: float, info: CategoricalSplitInfo) -> int:
        if not (np.isfinite(value) and value == np.floor(value)):
            raise ValueError(f"category code must be an integer, got {value!r}")
        return int(value)
