"""Shared fixtures for the coda_tools tests."""

import numpy as np
import pandas as pd
import pytest

from coda_tools import generate_mc_instances


SAMPLES = ['A1', 'A2', 'A3', 'B1', 'B2', 'B3']


@pytest.fixture
def groups():
    return pd.Series(['A', 'A', 'A', 'B', 'B', 'B'], index=SAMPLES, name='Group')


@pytest.fixture
def toy_counts():
    """4 features x 6 samples; one feature drops from 100 to 1 reads in group B.

    A second feature rises by the same amount so the geometric mean of every
    sample is unchanged and the two flat features keep the same clr value in
    both groups.
    """
    return pd.DataFrame(
        [[100, 100, 100, 1, 1, 1],
         [1, 1, 1, 100, 100, 100],
         [100, 100, 100, 100, 100, 100],
         [100, 100, 100, 100, 100, 100]],
        index=['down', 'up', 'flat1', 'flat2'],
        columns=SAMPLES,
    )


@pytest.fixture
def sparse_counts():
    """Counts with scattered zeros, one feature absent everywhere and one empty sample."""
    return pd.DataFrame(
        {
            'S1': [120, 0, 35, 0, 7],
            'S2': [95, 12, 0, 0, 3],
            'S3': [0, 0, 0, 0, 0],
            'S4': [210, 4, 18, 0, 0],
            'S5': [60, 30, 22, 0, 1],
        },
        index=['taxon1', 'taxon2', 'taxon3', 'absent', 'taxon5'],
    )


@pytest.fixture
def random_counts():
    rng = np.random.default_rng(7)
    counts = rng.poisson(lam=rng.uniform(0.2, 200, size=(30, 1)), size=(30, 8))
    return pd.DataFrame(
        counts,
        index=[f'feature{i}' for i in range(30)],
        columns=[f'S{j}' for j in range(8)],
    )


@pytest.fixture
def toy_instances(toy_counts):
    return generate_mc_instances(toy_counts, n_draws=128, seed=42)


@pytest.fixture
def single_shift_counts():
    """One feature drops from 100 to 1 read in group B; the other three are uniform.

    The drop lowers the geometric mean of every B sample, so under the plain
    clr the uniform features rise in B as well.
    """
    return pd.DataFrame(
        [[100, 100, 100, 1, 1, 1],
         [50, 50, 50, 50, 50, 50],
         [50, 50, 50, 50, 50, 50],
         [50, 50, 50, 50, 50, 50]],
        index=['shifted', 'uniform1', 'uniform2', 'uniform3'],
        columns=SAMPLES,
    )
