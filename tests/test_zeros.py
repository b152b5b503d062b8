"""Tests for coda_tools.coda_zeros."""

import numpy as np
import pandas as pd
import pytest

from coda_tools import (
    ConfigurationError,
    DegenerateSampleError,
    InputShapeError,
    ZeroReplacementError,
    find_empty_samples,
    multiplicative_replacement,
    zero_pattern,
)


class TestEmptySamples:
    def test_find_empty_samples(self, sparse_counts):
        assert find_empty_samples(sparse_counts) == ['S3']

    def test_empty_sample_is_dropped_and_reported(self, sparse_counts):
        result = multiplicative_replacement(sparse_counts)
        assert result.dropped_samples == ['S3']
        assert 'S3' not in result.counts.columns
        assert list(result.counts.columns) == ['S1', 'S2', 'S4', 'S5']

    def test_empty_sample_can_be_fatal(self, sparse_counts):
        with pytest.raises(DegenerateSampleError) as excinfo:
            multiplicative_replacement(sparse_counts, drop_empty_samples=False)
        assert excinfo.value.sample_ids == ['S3']

    def test_all_samples_empty(self):
        counts = pd.DataFrame(np.zeros((3, 2)), index=['a', 'b', 'c'], columns=['S1', 'S2'])
        with pytest.raises(DegenerateSampleError):
            multiplicative_replacement(counts)


class TestMultiplicativeReplacement:
    @pytest.mark.parametrize('method', ['CZM', 'GBM', 'SQ', 'BL'])
    def test_all_values_positive(self, sparse_counts, method):
        result = multiplicative_replacement(sparse_counts, method=method)
        assert (result.counts.values > 0).all()
        assert result.method == method

    @pytest.mark.parametrize('method', ['CZM', 'GBM', 'SQ', 'BL'])
    def test_sample_totals_preserved(self, sparse_counts, method):
        result = multiplicative_replacement(sparse_counts, method=method)
        original = sparse_counts[result.counts.columns].sum(axis=0)
        np.testing.assert_allclose(result.counts.sum(axis=0), original, rtol=1e-6)

    def test_shape_matches_reduced_input(self, sparse_counts):
        result = multiplicative_replacement(sparse_counts)
        assert result.counts.shape == (5, 4)
        assert list(result.counts.index) == list(sparse_counts.index)

    def test_ratios_between_observed_features_kept(self, sparse_counts):
        result = multiplicative_replacement(sparse_counts)
        before = sparse_counts.loc['taxon1', 'S1'] / sparse_counts.loc['taxon5', 'S1']
        after = result.counts.loc['taxon1', 'S1'] / result.counts.loc['taxon5', 'S1']
        assert after == pytest.approx(before)

    def test_feature_absent_everywhere_is_kept(self, sparse_counts):
        result = multiplicative_replacement(sparse_counts)
        assert 'absent' in result.counts.index
        assert (result.counts.loc['absent'] > 0).all()

    def test_czm_value(self):
        counts = pd.DataFrame({'S1': [0, 50, 50], 'S2': [10, 40, 50]}, index=['a', 'b', 'c'])
        result = multiplicative_replacement(counts, method='CZM', frac=0.65, threshold=0.5)
        # 0.65 * 0.5 / 100 of the closure, below the smallest observed share of 'a' (0.1)
        assert result.counts.loc['a', 'S1'] == pytest.approx(0.325)
        assert result.counts.loc['b', 'S1'] == pytest.approx(50 * (1 - 0.00325))

    def test_replacement_capped_at_observed_minimum(self):
        counts = pd.DataFrame({'S1': [0, 5], 'S2': [1, 1999]}, index=['a', 'b'])
        result = multiplicative_replacement(counts, method='CZM')
        # CZM would give 0.065 of S1, more than a's smallest share (1/2000)
        assert result.n_adjusted == 1
        assert result.counts.loc['a', 'S1'] / 5 == pytest.approx(0.65 / 2000)

    def test_zero_mask_records_detection_pattern(self, sparse_counts):
        result = multiplicative_replacement(sparse_counts)
        expected = zero_pattern(sparse_counts.drop(columns='S3'))
        pd.testing.assert_frame_equal(result.zero_mask, expected)
        assert result.n_replaced == int(expected.values.sum())

    def test_no_zeros_returns_input(self, toy_counts):
        result = multiplicative_replacement(toy_counts)
        pd.testing.assert_frame_equal(result.counts, toy_counts.astype(float))
        assert result.n_replaced == 0

    def test_replacement_mass_exceeding_total(self):
        counts = pd.DataFrame(
            {'S1': [1, 0, 0, 0, 0], 'S2': [1, 0, 0, 0, 0]},
            index=['a', 'b', 'c', 'd', 'e'],
        )
        with pytest.raises(ZeroReplacementError):
            multiplicative_replacement(counts, method='CZM')

    def test_unknown_method(self, sparse_counts):
        with pytest.raises(ConfigurationError):
            multiplicative_replacement(sparse_counts, method='mean')

    def test_invalid_frac(self, sparse_counts):
        with pytest.raises(ConfigurationError):
            multiplicative_replacement(sparse_counts, frac=1.5)

    def test_negative_counts_rejected(self, sparse_counts):
        counts = sparse_counts.copy()
        counts.loc['taxon1', 'S1'] = -1
        with pytest.raises(InputShapeError):
            multiplicative_replacement(counts)
