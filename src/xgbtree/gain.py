"""
Gain functions used to score candidate splits.

A gain is a homogeneity score for a set of responses: 0.0 for a perfectly
homogeneous set, more negative as the set becomes more spread out.
"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple

import numpy as np


class GainFunction(ABC):
    """Abstract base class for gain functions."""

    @abstractmethod
    def evaluate(
        self,
        responses: np.ndarray,
        weights: Optional[np.ndarray] = None,
        use_weights: bool = False
    ) -> float:
        """Score a set of responses; the maximum possible score is 0.0."""
        pass

    @abstractmethod
    def output_leaf_value(
        self,
        responses: np.ndarray,
        weights: Optional[np.ndarray] = None,
        use_weights: bool = False
    ) -> float:
        """Prediction of a leaf covering ``responses``."""
        pass

    @abstractmethod
    def binary_scan(self, sorted_responses: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Gains of every left/right pair of a binary split.

        Returns
        -------
        left_gains, right_gains : np.ndarray, shape (n - 1,)
            Entry ``i`` scores ``sorted_responses[:i + 1]`` and
            ``sorted_responses[i + 1:]`` respectively.
        """
        pass


class MSEGain(GainFunction):
    """
    Negative mean squared error around the mean.

    evaluate(y) = -(1/n) Σ (y_i - ȳ)², the negated population variance.
    The leaf value minimising squared error is the (weighted) mean.
    """

    def evaluate(
        self,
        responses: np.ndarray,
        weights: Optional[np.ndarray] = None,
        use_weights: bool = False
    ) -> float:
        if responses.size == 0:
            raise ValueError("cannot evaluate gain of an empty set of responses")
        # np.var of identical values need not round to exactly zero.
        if np.all(responses == responses[0]):
            return 0.0

        if use_weights and weights is not None and weights.size > 0:
            total = np.sum(weights)
            if total <= 0:
                raise ValueError("weights must sum to a positive value")
            mean = np.dot(weights, responses) / total
            return float(-np.dot(weights, (responses - mean) ** 2) / total)

        return float(-np.var(responses))

    def output_leaf_value(
        self,
        responses: np.ndarray,
        weights: Optional[np.ndarray] = None,
        use_weights: bool = False
    ) -> float:
        if responses.size == 0:
            raise ValueError("cannot compute leaf value of an empty set of responses")

        if use_weights and weights is not None and weights.size > 0:
            return float(np.average(responses, weights=weights))

        return float(np.mean(responses))

    def binary_scan(self, sorted_responses: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        n = sorted_responses.size
        if n < 2:
            return np.empty(0), np.empty(0)

        # Centre first to limit cancellation in sum-of-squares.
        centred = sorted_responses - np.mean(sorted_responses)
        cum = np.cumsum(centred)
        cum_sq = np.cumsum(centred ** 2)
        total, total_sq = cum[-1], cum_sq[-1]

        left_n = np.arange(1, n, dtype=np.float64)
        right_n = n - left_n

        left_sum, left_sq = cum[:-1], cum_sq[:-1]
        right_sum, right_sq = total - left_sum, total_sq - left_sq

        left_var = left_sq / left_n - (left_sum / left_n) ** 2
        right_var = right_sq / right_n - (right_sum / right_n) ** 2

        return -np.maximum(left_var, 0.0), -np.maximum(right_var, 0.0)
