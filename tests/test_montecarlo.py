"""Tests for coda_tools.coda_montecarlo."""

import logging

import numpy as np
import pandas as pd
import pytest

from coda_tools import (
    ConfigurationError,
    InputShapeError,
    MonteCarloInstances,
    draw_posterior_compositions,
    generate_mc_instances,
)


class TestDrawPosteriorCompositions:
    def test_draws_are_compositions(self):
        draws = draw_posterior_compositions([10, 0, 5, 100], n_draws=50, rng=1)
        assert draws.shape == (50, 4)
        np.testing.assert_allclose(draws.sum(axis=1), 1.0)
        assert (draws >= 0).all()

    def test_posterior_mean_tracks_counts(self):
        draws = draw_posterior_compositions([900, 100], n_draws=2000, prior=0.5, rng=3)
        assert draws[:, 0].mean() == pytest.approx(900.5 / 1001, abs=0.01)

    def test_invalid_prior(self):
        with pytest.raises(InputShapeError):
            draw_posterior_compositions([0, 1], n_draws=5, prior=0)

    def test_two_dimensional_input(self):
        with pytest.raises(InputShapeError):
            draw_posterior_compositions([[1, 2], [3, 4]], n_draws=5)


class TestGenerateMCInstances:
    def test_shape_and_ids(self, toy_counts, toy_instances):
        assert toy_instances.values.shape == (6, 128, 4)
        assert (toy_instances.n_samples, toy_instances.n_draws, toy_instances.n_features) == (6, 128, 4)
        assert list(toy_instances.sample_ids) == list(toy_counts.columns)
        assert list(toy_instances.feature_ids) == list(toy_counts.index)

    def test_every_draw_is_clr(self, toy_instances):
        np.testing.assert_allclose(toy_instances.values.sum(axis=2), 0.0, atol=1e-9)
        assert np.isfinite(toy_instances.values).all()

    def test_same_seed_is_bit_identical(self, toy_counts):
        first = generate_mc_instances(toy_counts, n_draws=32, seed=11)
        second = generate_mc_instances(toy_counts, n_draws=32, seed=11)
        assert np.array_equal(first.values, second.values)

    def test_thread_count_does_not_change_draws(self, random_counts):
        counts = random_counts + 1
        serial = generate_mc_instances(counts, n_draws=32, seed=5, n_jobs=1)
        threaded = generate_mc_instances(counts, n_draws=32, seed=5, n_jobs=4)
        assert np.array_equal(serial.values, threaded.values)

    def test_different_seeds_differ(self, toy_counts):
        first = generate_mc_instances(toy_counts, n_draws=32, seed=1)
        second = generate_mc_instances(toy_counts, n_draws=32, seed=2)
        assert not np.array_equal(first.values, second.values)

    def test_unseeded_run_records_entropy(self, toy_counts):
        instances = generate_mc_instances(toy_counts, n_draws=16)
        assert instances.seed is not None
        again = generate_mc_instances(toy_counts, n_draws=16, seed=instances.seed)
        assert np.array_equal(instances.values, again.values)

    def test_accessors_agree(self, toy_instances):
        k = 7
        draw = toy_instances.instance(k)
        assert draw.shape == (4, 6)
        assert toy_instances['B2'][k][2] == draw.loc['flat1', 'B2']
        assert toy_instances[3][k][2] == draw.loc['flat1', 'B1']
        np.testing.assert_array_equal(toy_instances.for_sample('A1').values, toy_instances['A1'])
        stack = toy_instances.as_stack()
        assert stack.shape == (128, 4, 6)
        np.testing.assert_array_equal(stack[k], draw.values)

    def test_subset_samples(self, toy_instances):
        subset = toy_instances.subset_samples(['B1', 'A1'])
        assert list(subset.sample_ids) == ['B1', 'A1']
        np.testing.assert_array_equal(subset['A1'], toy_instances['A1'])

    def test_signal_visible_in_draws(self, toy_instances):
        down = toy_instances.as_stack()[:, 0, :]
        assert (down[:, :3].mean(axis=1) > down[:, 3:].mean(axis=1)).all()

    @pytest.mark.parametrize('n_draws', [0, -3, 2.5, True])
    def test_invalid_draw_count(self, toy_counts, n_draws):
        with pytest.raises(ConfigurationError):
            generate_mc_instances(toy_counts, n_draws=n_draws)

    @pytest.mark.parametrize('seed', [-1, 'abc', 1.5, True])
    def test_invalid_seed(self, toy_counts, seed):
        with pytest.raises(ConfigurationError):
            generate_mc_instances(toy_counts, n_draws=16, seed=seed)

    def test_few_draws_warns(self, toy_counts, caplog):
        with caplog.at_level(logging.WARNING):
            instances = generate_mc_instances(toy_counts, n_draws=4, seed=0)
        assert instances.n_draws == 4
        assert 'Monte-Carlo draws' in caplog.text

    def test_single_feature_rejected(self):
        counts = pd.DataFrame({'S1': [5.0], 'S2': [7.0]}, index=['only'])
        with pytest.raises(InputShapeError):
            generate_mc_instances(counts, n_draws=16, seed=0)


class TestMonteCarloInstances:
    def test_shape_mismatch(self):
        with pytest.raises(InputShapeError):
            MonteCarloInstances(np.zeros((2, 3, 4)), ['f1', 'f2'], ['s1', 's2'])

    def test_not_three_dimensional(self):
        with pytest.raises(InputShapeError):
            MonteCarloInstances(np.zeros((2, 3)), ['f1', 'f2', 'f3'], ['s1', 's2'])


class TestIqlrDenominator:
    def test_reference_recorded(self, single_shift_counts):
        instances = generate_mc_instances(single_shift_counts, n_draws=16, seed=4, denominator='iqlr')
        assert instances.denominator == ['uniform1', 'uniform2', 'uniform3']
        assert generate_mc_instances(single_shift_counts, n_draws=16, seed=4).denominator is None

    def test_reference_features_centred(self, single_shift_counts):
        instances = generate_mc_instances(single_shift_counts, n_draws=16, seed=4, denominator='iqlr')
        np.testing.assert_allclose(instances.values[:, :, 1:].sum(axis=2), 0.0, atol=1e-9)

    def test_same_draws_as_clr_up_to_shift(self, single_shift_counts):
        clr_instances = generate_mc_instances(single_shift_counts, n_draws=16, seed=4)
        iqlr_instances = generate_mc_instances(single_shift_counts, n_draws=16, seed=4, denominator='iqlr')
        shift = iqlr_instances.values - clr_instances.values
        np.testing.assert_allclose(shift, shift[:, :, :1], atol=1e-9)

    def test_unknown_denominator(self, toy_counts):
        with pytest.raises(ConfigurationError):
            generate_mc_instances(toy_counts, n_draws=16, denominator='zero')
