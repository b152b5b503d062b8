"""Tests for coda_tools.coda_transform."""

import numpy as np
import pandas as pd
import pytest

from coda_tools import (
    ConfigurationError,
    InputShapeError,
    clr_transform,
    filter_low_abundance,
    iqlr_features,
    multiplicative_replacement,
    sort_features_by_abundance,
    to_proportions,
)


@pytest.fixture
def replaced_counts(random_counts):
    return multiplicative_replacement(random_counts).counts


class TestProportions:
    def test_columns_sum_to_one(self, replaced_counts):
        proportions = to_proportions(replaced_counts)
        np.testing.assert_allclose(proportions.sum(axis=0), 1.0)

    def test_empty_sample_rejected(self):
        counts = pd.DataFrame({'S1': [0.0, 0.0], 'S2': [1.0, 2.0]})
        with pytest.raises(InputShapeError):
            to_proportions(counts)


class TestFilterLowAbundance:
    def test_drops_features_below_threshold(self):
        counts = pd.DataFrame(
            {'S1': [500.0, 499.0, 1.0], 'S2': [600.0, 399.9, 0.1]},
            index=['common', 'other', 'rare'],
        )
        result = filter_low_abundance(counts, min_abundance=0.01)
        assert result.dropped_features == ['rare']
        assert list(result.counts.index) == ['common', 'other']
        assert list(result.proportions.index) == ['common', 'other']

    def test_feature_kept_if_abundant_in_one_sample(self):
        counts = pd.DataFrame(
            {'S1': [999.0, 1.0], 'S2': [500.0, 500.0]},
            index=['a', 'b'],
        )
        result = filter_low_abundance(counts, min_abundance=0.01)
        assert result.dropped_features == []

    def test_proportions_match_unfiltered_closure(self, replaced_counts):
        result = filter_low_abundance(replaced_counts, min_abundance=0.01)
        expected = to_proportions(replaced_counts).loc[result.counts.index]
        pd.testing.assert_frame_equal(result.proportions, expected)

    def test_idempotent(self, replaced_counts):
        once = filter_low_abundance(replaced_counts, min_abundance=0.02)
        twice = filter_low_abundance(once.counts, min_abundance=0.02)
        assert list(twice.counts.index) == list(once.counts.index)
        assert twice.dropped_features == []

    def test_default_threshold(self, replaced_counts):
        result = filter_low_abundance(replaced_counts)
        assert result.threshold == 1e-4

    @pytest.mark.parametrize('threshold', [-0.1, 1.5])
    def test_invalid_threshold(self, replaced_counts, threshold):
        with pytest.raises(ConfigurationError):
            filter_low_abundance(replaced_counts, min_abundance=threshold)


class TestCLRTransform:
    def test_samples_sum_to_zero(self, replaced_counts):
        clr_df = clr_transform(replaced_counts)
        np.testing.assert_allclose(clr_df.sum(axis=0), 0.0, atol=1e-10)

    def test_matches_definition(self):
        x = pd.DataFrame({'S1': [1.0, 2.0, 4.0]}, index=['a', 'b', 'c'])
        clr_df = clr_transform(x)
        logs = np.log([1.0, 2.0, 4.0])
        np.testing.assert_allclose(clr_df['S1'].values, logs - logs.mean())

    def test_scale_invariant(self, replaced_counts):
        np.testing.assert_allclose(
            clr_transform(replaced_counts).values,
            clr_transform(to_proportions(replaced_counts)).values,
            atol=1e-10,
        )

    def test_samples_as_rows(self, replaced_counts):
        by_column = clr_transform(replaced_counts)
        by_row = clr_transform(replaced_counts.T, samples_as_rows=True)
        pd.testing.assert_frame_equal(by_row, by_column.T)
        np.testing.assert_allclose(by_row.sum(axis=1), 0.0, atol=1e-10)

    def test_sorting_only_reorders(self, replaced_counts):
        plain = clr_transform(replaced_counts)
        ordered = clr_transform(replaced_counts, sort_by_abundance=True)
        totals = replaced_counts.sum(axis=1).loc[ordered.index]
        assert (np.diff(totals.values) <= 0).all()
        pd.testing.assert_frame_equal(ordered, plain.loc[ordered.index])

    def test_sort_features_by_abundance(self):
        df = pd.DataFrame({'S1': [1.0, 5.0, 3.0], 'S2': [1.0, 5.0, 3.0]}, index=['a', 'b', 'c'])
        assert list(sort_features_by_abundance(df).index) == ['b', 'c', 'a']
        assert list(sort_features_by_abundance(df.T, samples_as_rows=True).columns) == ['b', 'c', 'a']

    def test_zero_rejected(self):
        x = pd.DataFrame({'S1': [0.0, 2.0, 4.0]})
        with pytest.raises(InputShapeError):
            clr_transform(x)

    def test_single_sample(self):
        x = pd.DataFrame({'S1': [1.0, 2.0, 4.0]}, index=['a', 'b', 'c'])
        assert clr_transform(x).shape == (3, 1)


class TestIqlrFeatures:
    def test_changed_feature_left_out(self, single_shift_counts):
        assert iqlr_features(single_shift_counts) == ['uniform1', 'uniform2', 'uniform3']

    def test_two_features_share_one_variance(self):
        # clr of two parts is (x, -x), so both are always in the reference
        counts = pd.DataFrame({'S1': [10.0, 20.0], 'S2': [30.0, 5.0]}, index=['a', 'b'])
        assert iqlr_features(counts) == ['a', 'b']
