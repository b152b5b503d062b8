"""
Proportions, abundance filtering and the centred log-ratio transform.
"""

import logging
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from skbio.stats.composition import clr

from .coda_errors import ConfigurationError, InputShapeError

logger = logging.getLogger(__name__)


@dataclass
class FilterResult:
    """Output of filter_low_abundance."""

    counts: pd.DataFrame
    proportions: pd.DataFrame
    dropped_features: list = field(default_factory=list)
    threshold: float = 1e-4


def to_proportions(counts):
    """
    Close each sample to 1.

    Parameters:
    -----------
    counts : pandas.DataFrame
        Non-negative values with features as index, samples as columns

    Returns:
    --------
    pandas.DataFrame
        Proportions; every column sums to 1
    """
    sample_sums = counts.sum(axis=0)
    if (sample_sums <= 0).any():
        bad = sample_sums.index[sample_sums <= 0].tolist()
        raise InputShapeError(f"Cannot compute proportions for samples with no counts: {bad}")
    return counts.div(sample_sums, axis=1)


def filter_low_abundance(counts, min_abundance=1e-4):
    """
    Drop features that never reach a relative abundance threshold.

    A feature is kept when its proportion is at least ``min_abundance`` in one
    or more samples. Proportions are computed from ``counts`` itself, so
    applying the filter again to its own output removes nothing further.

    Parameters:
    -----------
    counts : pandas.DataFrame
        Pseudo-counts with features as index, samples as columns
    min_abundance : float
        Minimum proportion a feature must reach in at least one sample
        (default 0.0001, i.e. 0.01%)

    Returns:
    --------
    FilterResult
        Surviving counts, their proportions and the removed feature IDs
    """
    if not 0 <= min_abundance <= 1:
        raise ConfigurationError(f"min_abundance must be between 0 and 1, got {min_abundance}")

    proportions = to_proportions(counts)
    max_abundance = proportions.max(axis=1)
    keep = max_abundance >= min_abundance
    dropped = counts.index[~keep].tolist()

    if keep.sum() == 0:
        raise InputShapeError(
            f"No feature reaches a relative abundance of {min_abundance} in any sample"
        )

    logger.info(f"Filtering from {len(counts)} to {int(keep.sum())} features")
    logger.info(f"  Abundance threshold: {min_abundance:.4g} (must reach {min_abundance*100:.4g}% in at least one sample)")
    if dropped:
        logger.debug(f"  Removed features: {dropped}")

    return FilterResult(
        counts=counts.loc[keep],
        proportions=proportions.loc[keep],
        dropped_features=dropped,
        threshold=min_abundance,
    )


def sort_features_by_abundance(abundance_df, samples_as_rows=False):
    """Order features by descending total abundance across samples (stable for ties)."""
    if samples_as_rows:
        totals = abundance_df.sum(axis=0)
        order = totals.sort_values(ascending=False, kind='mergesort').index
        return abundance_df[order]
    totals = abundance_df.sum(axis=1)
    order = totals.sort_values(ascending=False, kind='mergesort').index
    return abundance_df.loc[order]


def clr_transform(abundance_df, samples_as_rows=False, sort_by_abundance=False):
    """
    Centred log-ratio transform of every sample.

    ``clr(x)_i = log(x_i) - mean_j(log(x_j))`` for each sample vector x.

    Parameters:
    -----------
    abundance_df : pandas.DataFrame
        Strictly positive proportions or pseudo-counts
    samples_as_rows : bool
        False when features are the index and samples the columns (the
        default layout), True for one sample per row
    sort_by_abundance : bool
        Order features by descending total abundance first. Only the row
        (or column) order changes.

    Returns:
    --------
    pandas.DataFrame
        clr values in the same orientation as the input; each sample sums to 0
    """
    values = abundance_df.to_numpy(dtype=float)
    if not np.isfinite(values).all():
        raise InputShapeError("clr input contains missing or infinite values")
    if (values <= 0).any():
        raise InputShapeError(
            "clr requires strictly positive values; replace zeros before transforming"
        )

    if sort_by_abundance:
        abundance_df = sort_features_by_abundance(abundance_df, samples_as_rows=samples_as_rows)

    if samples_as_rows:
        return pd.DataFrame(
            np.reshape(clr(abundance_df.to_numpy(dtype=float)), abundance_df.shape),
            index=abundance_df.index,
            columns=abundance_df.columns,
        )

    # skbio expects compositions as rows
    return pd.DataFrame(
        np.reshape(clr(abundance_df.T.to_numpy(dtype=float)), abundance_df.T.shape),
        index=abundance_df.columns,
        columns=abundance_df.index,
    ).T


def iqlr_features(counts, prior=0.5):
    """
    Features whose clr variance across samples lies in the interquartile range.

    These form the reference of the iqlr log-ratio: features that swing
    strongly between samples (the likely differential ones) and near-constant
    ones are left out of the denominator.

    Parameters:
    -----------
    counts : pandas.DataFrame
        Counts with features as index, samples as columns
    prior : float
        Pseudo-count added before the clr

    Returns:
    --------
    list
        Reference feature IDs, in input order. All features when none falls
        inside the interquartile range.
    """
    clr_df = clr_transform(counts + prior)
    variance = clr_df.var(axis=1, ddof=1)
    q1, q3 = np.percentile(variance.to_numpy(), [25, 75])
    keep = (variance >= q1) & (variance <= q3)

    if not keep.any():
        logger.warning("No feature has interquartile clr variance; using all features as reference")
        return list(counts.index)

    logger.info(f"iqlr reference: {int(keep.sum())} of {len(keep)} features")
    return counts.index[keep.to_numpy()].tolist()
