"""
Zero replacement for count tables.

Log-ratio transforms are undefined on zeros, so every zero count is replaced
with a small positive pseudo-count before anything else happens. Replacement
is multiplicative: the mass given to the zero cells of a sample is taken
proportionally from its non-zero cells, which keeps the ratios between
observed features and the sample total unchanged.

Four estimates of the replacement value are available:

- ``CZM`` (count zero multiplicative): ``frac * threshold / n`` of the
  sample's closure, where ``n`` is the sample total.
- ``GBM``, ``SQ``, ``BL`` (Bayesian-multiplicative): a prior estimate ``t`` of
  each feature's share is taken from the other samples' totals, and the zero
  cell gets ``t * s / (n + s)``. The prior strength ``s`` is the inverse
  geometric mean of ``t`` (geometric Bayesian multiplicative), ``sqrt(n)``
  (square root) or the number of features (Bayes-Laplace).
"""

import logging
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from .coda_config import ZERO_METHODS
from .coda_errors import (
    ConfigurationError,
    DegenerateSampleError,
    ZeroReplacementError,
)
from .coda_utils import validate_abundance_matrix

logger = logging.getLogger(__name__)


@dataclass
class ZeroReplacementResult:
    """Output of multiplicative_replacement."""

    counts: pd.DataFrame
    zero_mask: pd.DataFrame
    dropped_samples: list = field(default_factory=list)
    method: str = 'CZM'
    n_replaced: int = 0
    n_adjusted: int = 0


def zero_pattern(counts):
    """Boolean table marking which features are zero in which samples."""
    return counts == 0


def find_empty_samples(counts):
    """Return the IDs of samples in which every feature is zero."""
    is_empty = (counts == 0).all(axis=0)
    return counts.columns[is_empty].tolist()


def multiplicative_replacement(counts, method='CZM', frac=0.65, threshold=0.5,
                               drop_empty_samples=True):
    """
    Replace zero counts with positive pseudo-counts.

    Parameters:
    -----------
    counts : pandas.DataFrame
        Non-negative counts with features as index, samples as columns
    method : str
        'CZM', 'GBM', 'SQ' or 'BL'
    frac : float
        Fraction of the detection limit used for the replacement (CZM) and
        for capping replacements that exceed a feature's smallest observed
        proportion (all methods)
    threshold : float
        Detection limit in counts used by CZM
    drop_empty_samples : bool
        Remove samples with no counts at all and report them. When False such
        samples raise DegenerateSampleError.

    Returns:
    --------
    ZeroReplacementResult
        Strictly positive pseudo-counts with each sample's total preserved,
        the zero pattern of the input and the list of dropped samples
    """
    if method not in ZERO_METHODS:
        raise ConfigurationError(
            f"Unknown zero replacement method '{method}'. Use one of {', '.join(ZERO_METHODS)}."
        )
    if not 0 < frac < 1:
        raise ConfigurationError(f"frac must be between 0 and 1 (exclusive), got {frac}")
    if threshold <= 0:
        raise ConfigurationError(f"threshold must be > 0, got {threshold}")

    counts = validate_abundance_matrix(counts)

    empty_samples = find_empty_samples(counts)
    if empty_samples:
        if not drop_empty_samples:
            raise DegenerateSampleError(
                f"{len(empty_samples)} sample(s) contain no counts: {empty_samples}",
                sample_ids=empty_samples,
            )
        logger.warning(f"Dropping {len(empty_samples)} sample(s) with no counts: {empty_samples}")
        counts = counts.drop(columns=empty_samples)

    if counts.shape[1] == 0:
        raise DegenerateSampleError("No samples with counts remain", sample_ids=empty_samples)

    zero_mask = zero_pattern(counts)

    # Samples as rows from here on
    X = counts.T.to_numpy(dtype=float)
    totals = X.sum(axis=1)
    if (totals <= 0).any():
        bad = counts.columns[totals <= 0].tolist()
        raise DegenerateSampleError(f"Samples with zero total count: {bad}", sample_ids=bad)

    zeros = X == 0
    if not zeros.any():
        logger.info("No zeros to replace")
        return ZeroReplacementResult(
            counts=counts.copy(), zero_mask=zero_mask,
            dropped_samples=empty_samples, method=method,
        )

    proportions = X / totals[:, None]
    repl = _replacement_values(X, totals, method, frac, threshold)

    # Cap replacements at frac * the smallest observed proportion of the feature
    col_mins = np.where(X > 0, proportions, np.inf).min(axis=0)
    over = zeros & (repl > col_mins[None, :])
    repl = np.where(over, frac * col_mins[None, :], repl)
    repl = np.where(zeros, repl, 0.0)

    zero_mass = repl.sum(axis=1)
    too_much = zero_mass >= 1
    if too_much.any():
        bad = counts.columns[too_much].tolist()
        raise ZeroReplacementError(
            f"Replacement mass reaches the sample total for {bad}; "
            f"lower frac/threshold or filter sparse features first"
        )

    replaced = np.where(zeros, repl, proportions * (1 - zero_mass)[:, None])
    pseudo_counts = replaced * totals[:, None]

    n_replaced = int(zeros.sum())
    n_adjusted = int(over.sum())
    logger.info(
        f"{method} zero replacement: {n_replaced} zero cells replaced across "
        f"{int(zeros.any(axis=1).sum())} samples ({n_adjusted} capped at the observed minimum)"
    )

    return ZeroReplacementResult(
        counts=pd.DataFrame(pseudo_counts.T, index=counts.index, columns=counts.columns),
        zero_mask=zero_mask,
        dropped_samples=empty_samples,
        method=method,
        n_replaced=n_replaced,
        n_adjusted=n_adjusted,
    )


def _replacement_values(X, totals, method, frac, threshold):
    """Replacement proportions for every cell (only zero cells are used)."""
    n_samples, n_features = X.shape
    czm = np.broadcast_to((frac * threshold / totals)[:, None], X.shape)
    if method == 'CZM':
        return czm.copy()

    # Prior share of each feature estimated from all other samples
    loo = X.sum(axis=0)[None, :] - X
    loo_totals = loo.sum(axis=1, keepdims=True)
    with np.errstate(invalid='ignore', divide='ignore'):
        t = np.where(loo_totals > 0, loo / loo_totals, 0.0)

    if method == 'GBM':
        # Geometric mean over the features that have a prior estimate
        positive = t > 0
        log_t = np.log(np.where(positive, t, 1.0))
        n_positive = positive.sum(axis=1)
        mean_log = (log_t * positive).sum(axis=1) / np.maximum(n_positive, 1)
        strength = np.exp(-mean_log)
    elif method == 'SQ':
        strength = np.sqrt(totals)
    else:
        strength = np.full(n_samples, float(n_features))

    repl = t * (strength / (totals + strength))[:, None]

    no_prior = (X == 0) & (t <= 0)
    if no_prior.any():
        logger.warning(
            f"{int(no_prior.sum())} zero cells belong to features never observed in other "
            f"samples; using the CZM estimate for them"
        )
        repl = np.where(no_prior, czm, repl)
    return repl
