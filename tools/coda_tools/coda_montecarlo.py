"""
Monte-Carlo sampling of each sample's composition.

A count vector is one noisy observation of the underlying proportions. For
every sample we draw ``n_draws`` compositions from the Dirichlet posterior
``Dir(counts + prior)`` and clr-transform each draw. Downstream tests are run
once per draw, which carries the counting uncertainty into the p-values and
effect sizes.
"""

import logging
import numpy as np
import pandas as pd
from skbio.stats.composition import clr

from .coda_config import DENOMINATORS, check_mc_samples, check_seed
from .coda_errors import ConfigurationError, InputShapeError
from .coda_transform import iqlr_features
from .coda_utils import run_parallel, validate_abundance_matrix

logger = logging.getLogger(__name__)


class MonteCarloInstances:
    """
    clr values of posterior draws, addressable as ``[sample][draw][feature]``.

    ``values`` has shape ``(n_samples, n_draws, n_features)``. Indexing the
    object with a sample ID (or position) returns that sample's
    ``(n_draws, n_features)`` array.
    """

    def __init__(self, values, feature_ids, sample_ids, seed=None, prior=0.5,
                 denominator=None):
        values = np.asarray(values, dtype=float)
        if values.ndim != 3:
            raise InputShapeError(f"Expected a 3-d array, got shape {values.shape}")
        if values.shape[0] != len(sample_ids) or values.shape[2] != len(feature_ids):
            raise InputShapeError(
                f"Array of shape {values.shape} does not match "
                f"{len(sample_ids)} samples x {len(feature_ids)} features"
            )
        self.values = values
        self.feature_ids = pd.Index(feature_ids)
        self.sample_ids = pd.Index(sample_ids)
        self.seed = seed
        self.prior = prior
        # Reference feature IDs of the log-ratio; None means every feature
        self.denominator = None if denominator is None else list(denominator)

    @property
    def n_samples(self):
        return self.values.shape[0]

    @property
    def n_draws(self):
        return self.values.shape[1]

    @property
    def n_features(self):
        return self.values.shape[2]

    def __getitem__(self, sample):
        if isinstance(sample, (int, np.integer)):
            return self.values[sample]
        return self.values[self.sample_ids.get_loc(sample)]

    def __repr__(self):
        return (f"MonteCarloInstances(n_samples={self.n_samples}, n_draws={self.n_draws}, "
                f"n_features={self.n_features}, seed={self.seed})")

    def instance(self, k):
        """clr matrix of draw ``k`` (features x samples)."""
        return pd.DataFrame(self.values[:, k, :].T, index=self.feature_ids, columns=self.sample_ids)

    def for_sample(self, sample_id):
        """All draws of one sample (draws x features)."""
        return pd.DataFrame(self[sample_id], columns=self.feature_ids)

    def as_stack(self):
        """View the instances as ``(n_draws, n_features, n_samples)``."""
        return self.values.transpose(1, 2, 0)

    def subset_samples(self, sample_ids):
        positions = [self.sample_ids.get_loc(s) for s in sample_ids]
        return MonteCarloInstances(
            self.values[positions], self.feature_ids, list(sample_ids),
            seed=self.seed, prior=self.prior, denominator=self.denominator,
        )


def draw_posterior_compositions(counts, n_draws, prior=0.5, rng=None):
    """
    Draw compositions from the Dirichlet posterior of one sample.

    Parameters:
    -----------
    counts : array-like
        Non-negative (pseudo-)counts of one sample
    n_draws : int
        Number of compositions to draw
    prior : float
        Symmetric Dirichlet prior added to every feature
    rng : numpy.random.Generator or int, optional
        Random source

    Returns:
    --------
    numpy.ndarray
        Array of shape (n_draws, n_features); every row sums to 1
    """
    alpha = np.asarray(counts, dtype=float) + prior
    if alpha.ndim != 1:
        raise InputShapeError(f"Expected one sample's counts, got shape {alpha.shape}")
    if not np.isfinite(alpha).all() or (alpha <= 0).any():
        raise InputShapeError("Dirichlet parameters must be finite and positive")
    if not isinstance(rng, np.random.Generator):
        rng = np.random.default_rng(rng)
    return rng.dirichlet(alpha, size=n_draws)


def generate_mc_instances(counts, n_draws=128, prior=0.5, seed=None, n_jobs=1,
                          denominator='all'):
    """
    Generate log-ratio transformed Monte-Carlo instances for every sample.

    Each sample gets its own generator spawned from ``SeedSequence(seed)``, so
    the result for a given seed, input and ``n_draws`` is identical whatever
    ``n_jobs`` is.

    Parameters:
    -----------
    counts : pandas.DataFrame
        Zero-replaced counts with features as index, samples as columns
    n_draws : int
        Number of Monte-Carlo draws per sample (128 for tests, 1000+ for
        precise effect sizes)
    prior : float
        Symmetric Dirichlet prior added to each feature
    seed : int, optional
        Seed for reproducible draws. When None, fresh entropy is used and
        recorded on the result.
    n_jobs : int
        Number of worker threads; samples are independent
    denominator : str
        'all' for the clr (log-ratio to the geometric mean of every
        feature) or 'iqlr' (log-ratio to the geometric mean of the features
        whose clr variance across samples is interquartile; see
        ``iqlr_features``)

    Returns:
    --------
    MonteCarloInstances
        Log-ratio values of shape (n_samples, n_draws, n_features)
    """
    counts = validate_abundance_matrix(counts)
    n_draws = check_mc_samples(n_draws)
    seed = check_seed(seed)
    if prior <= 0:
        raise ConfigurationError(f"prior must be > 0, got {prior}")
    if n_jobs < 1:
        raise ConfigurationError(f"n_jobs must be >= 1, got {n_jobs}")
    if denominator not in DENOMINATORS:
        raise ConfigurationError(
            f"denominator must be one of {', '.join(DENOMINATORS)}, got {denominator!r}"
        )

    X = counts.to_numpy(dtype=float)
    n_features, n_samples = X.shape
    if n_features < 2:
        raise InputShapeError("At least 2 features are needed to form a composition")

    reference = None
    if denominator == 'iqlr':
        reference = iqlr_features(counts, prior=prior)
        ref_mask = counts.index.isin(reference)

    seed_sequence = np.random.SeedSequence(seed)
    children = seed_sequence.spawn(n_samples)
    values = np.empty((n_samples, n_draws, n_features))
    tiny = np.finfo(float).tiny

    def _fill(j):
        rng = np.random.default_rng(children[j])
        draws = draw_posterior_compositions(X[:, j], n_draws, prior=prior, rng=rng)
        # Gamma variates for small alphas can underflow to exactly 0
        draws = np.maximum(draws, tiny)
        if reference is None:
            values[j] = np.reshape(clr(draws), (n_draws, n_features))
        else:
            log_draws = np.log(draws)
            values[j] = log_draws - log_draws[:, ref_mask].mean(axis=1, keepdims=True)

    run_parallel(_fill, range(n_samples), n_jobs=n_jobs)

    logger.info(
        f"Generated {n_draws} Monte-Carlo instances for {n_samples} samples "
        f"x {n_features} features (seed entropy {seed_sequence.entropy})"
    )
    return MonteCarloInstances(
        values, counts.index, counts.columns,
        seed=seed_sequence.entropy, prior=prior, denominator=reference,
    )
