"""
Unit tests for the building blocks of tree growth.

Covers:
- MSEGain scores, leaf values and the vectorised binary scan
- Numeric and categorical split search and routing
- Dimension selectors
- Feature importance ledger
- Dataset metadata and data frame encoding
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Add src directory to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from xgbtree.data import DatasetInfo, Datatype, encode_frame
from xgbtree.dimension_select import AllDimensionSelect, RandomDimensionSelect
from xgbtree.gain import MSEGain
from xgbtree.importance import FeatureImportance
from xgbtree.splits import (
    AllCategoricalSplit,
    BestBinaryNumericSplit,
    CategoricalSplitInfo,
    NumericSplitInfo,
)


# =========================
# Gain function
# =========================

class TestMSEGain:
    def test_homogeneous_set_scores_zero(self):
        assert MSEGain().evaluate(np.array([2.0, 2.0, 2.0])) == 0.0
        assert MSEGain().evaluate(np.full(3, 0.1)) == 0.0

    def test_score_is_negative_variance(self):
        y = np.array([1.0, 3.0])
        assert MSEGain().evaluate(y) == pytest.approx(-1.0)

    def test_more_spread_scores_lower(self):
        gain = MSEGain()
        assert gain.evaluate(np.array([0.0, 10.0])) < gain.evaluate(np.array([4.0, 6.0]))

    def test_weights_ignored_unless_requested(self):
        y = np.array([1.0, 2.0, 6.0])
        w = np.array([10.0, 1.0, 1.0])
        gain = MSEGain()

        assert gain.evaluate(y, w) == pytest.approx(-np.var(y))
        assert gain.output_leaf_value(y, w) == pytest.approx(3.0)

    def test_weighted_form(self):
        y = np.array([1.0, 2.0, 6.0])
        w = np.array([2.0, 1.0, 1.0])
        gain = MSEGain()

        mean = np.average(y, weights=w)
        assert gain.output_leaf_value(y, w, use_weights=True) == pytest.approx(mean)
        assert gain.evaluate(y, w, use_weights=True) == pytest.approx(
            -np.average((y - mean) ** 2, weights=w)
        )

    def test_leaf_value_is_mean(self):
        assert MSEGain().output_leaf_value(np.array([1.0, 2.0, 6.0])) == pytest.approx(3.0)

    def test_empty_responses_raise(self):
        with pytest.raises(ValueError):
            MSEGain().evaluate(np.array([]))
        with pytest.raises(ValueError):
            MSEGain().output_leaf_value(np.array([]))

    def test_binary_scan_matches_direct_evaluation(self):
        rng = np.random.default_rng(0)
        y = rng.standard_normal(25) * 10 + 100
        gain = MSEGain()

        left, right = gain.binary_scan(y)

        expected_left = [gain.evaluate(y[:i + 1]) for i in range(24)]
        expected_right = [gain.evaluate(y[i + 1:]) for i in range(24)]
        np.testing.assert_allclose(left, expected_left, atol=1e-9)
        np.testing.assert_allclose(right, expected_right, atol=1e-9)

    def test_binary_scan_of_single_value_is_empty(self):
        left, right = MSEGain().binary_scan(np.array([1.0]))
        assert left.size == 0 and right.size == 0


# =========================
# Numeric split
# =========================

class TestBestBinaryNumericSplit:
    values = np.array([1.0, 2.0, 3.0, 100.0, 101.0, 102.0])

    def _search(self, values, responses, best_gain=None, min_leaf=1, min_gain=0.0):
        gain = MSEGain()
        if best_gain is None:
            best_gain = gain.evaluate(responses)
        return BestBinaryNumericSplit.split_if_better(
            best_gain, values, responses, None, min_leaf, min_gain, gain
        )

    def test_adjacent_floats_are_separated(self):
        low = 1.0000000000000002
        high = np.nextafter(low, 2.0)
        values = np.array([low, high])

        _, info = self._search(values, np.array([0.0, 1.0]))

        assert low <= info.threshold < high
        assert BestBinaryNumericSplit.calculate_direction(low, info) == 0
        assert BestBinaryNumericSplit.calculate_direction(high, info) == 1

    def test_tiny_response_scale_still_splits(self):
        responses = self.values * 1e-6
        split_gain, info = self._search(self.values, responses)
        assert info.threshold == pytest.approx(51.5)
        assert split_gain == pytest.approx(-2.0 / 3.0 * 1e-12)

    def test_finds_gap_midpoint(self):
        split_gain, info = self._search(self.values, self.values.copy())

        assert info == NumericSplitInfo(51.5)
        assert split_gain == pytest.approx(-2.0 / 3.0)

    def test_unsorted_input(self):
        values = np.array([101.0, 2.0, 100.0, 1.0, 102.0, 3.0])
        _, info = self._search(values, values.copy())
        assert info.threshold == pytest.approx(51.5)

    def test_minimum_leaf_size_limits_candidates(self):
        # Only the 3 | 3 split is allowed; responses favour 1 | 5.
        values = np.arange(6, dtype=float)
        responses = np.array([50.0, 0.0, 0.0, 0.0, 0.0, 0.0])

        _, free = self._search(values, responses, min_leaf=1)
        _, constrained = self._search(values, responses, min_leaf=3)

        assert free.threshold == pytest.approx(0.5)
        assert constrained.threshold == pytest.approx(2.5)

    def test_too_few_samples_for_minimum_leaf_size(self):
        assert self._search(self.values, self.values.copy(), min_leaf=4) is None

    def test_constant_dimension_cannot_split(self):
        values = np.full(6, 3.0)
        assert self._search(values, np.arange(6, dtype=float)) is None

    def test_pure_node_cannot_improve(self):
        assert self._search(self.values, np.full(6, 2.0)) is None

    def test_minimum_gain_split_floor(self):
        assert self._search(self.values, self.values.copy(), min_gain=1e6) is None

    def test_must_beat_current_best(self):
        # A best gain already above any achievable split gain.
        assert self._search(self.values, self.values.copy(), best_gain=-0.1) is None

    def test_never_splits_between_equal_values(self):
        values = np.array([1.0, 1.0, 1.0, 2.0])
        responses = np.array([0.0, 10.0, 0.0, 5.0])
        _, info = self._search(values, responses)
        assert info.threshold == pytest.approx(1.5)

    def test_direction_and_children(self):
        info = NumericSplitInfo(2.5)
        assert BestBinaryNumericSplit.num_children(info) == 2
        assert BestBinaryNumericSplit.calculate_direction(2.5, info) == 0
        assert BestBinaryNumericSplit.calculate_direction(2.6, info) == 1


# =========================
# Categorical split
# =========================

class TestAllCategoricalSplit:
    def _search(self, codes, n_categories, responses, min_leaf=1, min_gain=0.0):
        gain = MSEGain()
        return AllCategoricalSplit.split_if_better(
            gain.evaluate(responses), codes, n_categories, responses, None,
            min_leaf, min_gain, gain
        )

    def test_perfectly_correlated_categories(self):
        codes = np.array([0.0, 1.0, 2.0, 0.0, 1.0, 2.0])
        responses = np.array([5.0, 10.0, 20.0, 5.0, 10.0, 20.0])

        split_gain, info = self._search(codes, 3, responses)

        assert split_gain == pytest.approx(0.0)
        assert info == CategoricalSplitInfo(3)

    def test_weighted_child_gain(self):
        codes = np.array([0.0, 0.0, 1.0, 1.0])
        responses = np.array([0.0, 2.0, 10.0, 10.0])

        split_gain, _ = self._search(codes, 2, responses)

        assert split_gain == pytest.approx(0.5 * -1.0 + 0.5 * 0.0)

    def test_missing_category_blocks_split(self):
        codes = np.array([0.0, 0.0, 1.0, 1.0])
        assert self._search(codes, 3, np.array([1.0, 1.0, 5.0, 5.0])) is None

    def test_minimum_leaf_size_per_category(self):
        codes = np.array([0.0, 0.0, 1.0, 1.0, 1.0])
        responses = np.array([1.0, 1.0, 5.0, 5.0, 5.0])
        assert self._search(codes, 2, responses, min_leaf=3) is None
        assert self._search(codes, 2, responses, min_leaf=2) is not None

    def test_uninformative_categories_do_not_split(self):
        codes = np.array([0.0, 1.0, 0.0, 1.0])
        responses = np.array([1.0, 1.0, 3.0, 3.0])
        assert self._search(codes, 2, responses) is None

    def test_direction_and_children(self):
        info = CategoricalSplitInfo(4)
        assert AllCategoricalSplit.num_children(info) == 4
        assert AllCategoricalSplit.calculate_direction(3.0, info) == 3

    @pytest.mark.parametrize("value", [-0.5, 1.5, np.inf, -np.inf, np.nan])
    def test_direction_rejects_non_integer_codes(self, value):
        with pytest.raises(ValueError):
            AllCategoricalSplit.calculate_direction(value, CategoricalSplitInfo(4))


# =========================
# Dimension selectors
# =========================

class TestDimensionSelectors:
    def test_all_dimensions_in_order_and_restartable(self):
        selector = AllDimensionSelect(4)
        assert list(selector) == [0, 1, 2, 3]
        assert list(selector) == [0, 1, 2, 3]

    def test_random_subset_is_sorted_and_distinct(self):
        selector = RandomDimensionSelect(3, dimensions=10, random_state=0)
        for _ in range(20):
            dims = list(selector)
            assert len(dims) == 3
            assert dims == sorted(set(dims))
            assert all(0 <= d < 10 for d in dims)

    def test_random_subset_changes_between_iterations(self):
        selector = RandomDimensionSelect(2, dimensions=20, random_state=1)
        draws = {tuple(selector) for _ in range(20)}
        assert len(draws) > 1

    def test_random_subset_reproducible(self):
        a = RandomDimensionSelect(2, dimensions=8, random_state=42)
        b = RandomDimensionSelect(2, dimensions=8, random_state=42)
        assert [list(a) for _ in range(5)] == [list(b) for _ in range(5)]

    def test_random_subset_capped_at_dimensions(self):
        assert list(RandomDimensionSelect(10, dimensions=3, random_state=0)) == [0, 1, 2]

    def test_invalid_subset_size(self):
        with pytest.raises(ValueError):
            RandomDimensionSelect(0)


# =========================
# Feature importance
# =========================

class TestFeatureImportance:
    def test_increments(self):
        imp = FeatureImportance()
        imp.increase_feature_frequency(2, 1)
        imp.increase_feature_frequency(2, 1)
        imp.increase_feature_cover(2, 0.5)
        imp.increase_feature_cover(2, 0.25)

        assert imp.frequency(2) == 2
        assert imp.cover(2) == pytest.approx(0.75)
        assert imp.frequency(0) == 0
        assert imp.cover(0) == 0.0
        assert imp.dimensions == [2]

    def test_merge(self):
        a, b = FeatureImportance(), FeatureImportance()
        a.increase_feature_frequency(0)
        a.increase_feature_cover(0, 1.0)
        b.increase_feature_frequency(0)
        b.increase_feature_frequency(3)
        b.increase_feature_cover(3, 2.0)

        a.merge(b)

        assert a.frequency(0) == 2
        assert a.frequency(3) == 1
        assert a.cover(3) == pytest.approx(2.0)

    def test_frame_is_a_snapshot(self):
        imp = FeatureImportance()
        imp.increase_feature_frequency(1)
        imp.increase_feature_cover(1, 0.5)

        frame = imp.to_frame()
        imp.increase_feature_frequency(1)

        assert list(frame.columns) == ["frequency", "cover"]
        assert frame.index.name == "dimension"
        assert frame.loc[1, "frequency"] == 1
        assert frame.loc[1, "cover"] == pytest.approx(0.5)

    def test_empty_frame(self):
        frame = FeatureImportance().to_frame()
        assert frame.empty

    def test_normalized_cover(self):
        imp = FeatureImportance()
        imp.increase_feature_cover(0, 1.0)
        imp.increase_feature_cover(2, 3.0)

        np.testing.assert_allclose(imp.normalized_cover(4), [0.25, 0.0, 0.75, 0.0])
        np.testing.assert_allclose(FeatureImportance().normalized_cover(2), [0.0, 0.0])


# =========================
# Dataset metadata
# =========================

class TestDatasetInfo:
    def test_types_and_mappings(self):
        info = DatasetInfo(3, {1: 4})
        assert info.type(0) is Datatype.NUMERIC
        assert info.type(1) is Datatype.CATEGORICAL
        assert info.num_mappings(1) == 4
        assert info.num_mappings(0) == 0
        assert info.categorical_dimensions == [1]

    def test_invalid_definitions(self):
        with pytest.raises(ValueError):
            DatasetInfo(0)
        with pytest.raises(ValueError):
            DatasetInfo(2, {2: 3})
        with pytest.raises(ValueError):
            DatasetInfo(2, {0: 0})

    def test_encode_frame(self):
        frame = pd.DataFrame({
            "size": [1.5, 2.5, 3.5, 4.5],
            "colour": ["red", "blue", "red", "green"],
            "grade": [3, 1, 3, 2],
        })

        data, info, labels = encode_frame(frame, categorical_columns=["grade"])

        assert data.shape == (3, 4)
        np.testing.assert_array_equal(data[0], [1.5, 2.5, 3.5, 4.5])
        np.testing.assert_array_equal(data[1], [0, 1, 0, 2])
        np.testing.assert_array_equal(data[2], [0, 1, 0, 2])
        assert info == DatasetInfo(3, {1: 3, 2: 3})
        assert labels == {"colour": ["red", "blue", "green"], "grade": [3, 1, 2]}

    def test_encode_frame_unknown_column(self):
        with pytest.raises(ValueError):
            encode_frame(pd.DataFrame({"a": [1.0]}), categorical_columns=["b"])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
