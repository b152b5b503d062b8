"""
Effect sizes from Monte-Carlo clr instances.

For every draw and feature:

- ``rab.all``: median clr value over all samples
- ``rab.win.<group>``: median clr value within each group
- ``dif.btw``: median of all pairwise differences ``x_group2 - x_group1``
  between one sample of each group
- ``dif.win``: the larger of the two groups' dispersions, where a group's
  dispersion is the median absolute difference over all pairs of its samples
- ``effect``: ``dif.btw / dif.win``

The reported value of each quantity is its median over draws. ``overlap`` is
the share of all cross-group pairwise differences, pooled over draws, whose
sign disagrees with the median ``dif.btw``.
"""

import logging

import numpy as np
import pandas as pd

from .coda_utils import resolve_groups, run_parallel

logger = logging.getLogger(__name__)


def effect_sizes(instances, groups, group_order=None, n_jobs=1):
    """
    Between/within-group differences and standardized effect per feature.

    Parameters:
    -----------
    instances : MonteCarloInstances
        clr instances of all samples
    groups : pandas.Series or sequence
        Two-valued group label per sample
    group_order : sequence of two labels, optional
        Which label is group 1; differences are group 2 minus group 1
    n_jobs : int
        Worker threads; draws are independent

    Returns:
    --------
    pandas.DataFrame
        Columns ``rab.all``, ``rab.win.<group1>``, ``rab.win.<group2>``,
        ``dif.btw``, ``dif.win``, ``effect``, ``overlap`` indexed by feature.
        ``attrs['undefined_effect_draws']`` counts feature/draw pairs with
        ``dif.win == 0``.
    """
    labels, (group1, group2) = resolve_groups(groups, instances.sample_ids, group_order)
    idx1 = np.flatnonzero(labels.values == group1)
    idx2 = np.flatnonzero(labels.values == group2)
    pairs1 = np.triu_indices(len(idx1), k=1)
    pairs2 = np.triu_indices(len(idx2), k=1)

    stack = instances.as_stack()
    n_draws, n_features = stack.shape[0], stack.shape[1]
    rab_all = np.empty((n_draws, n_features))
    rab1 = np.empty((n_draws, n_features))
    rab2 = np.empty((n_draws, n_features))
    dif_btw = np.empty((n_draws, n_features))
    dif_win = np.empty((n_draws, n_features))

    def _effect_draw(k):
        values1 = stack[k][:, idx1]
        values2 = stack[k][:, idx2]
        rab_all[k] = np.median(stack[k], axis=1)
        rab1[k] = np.median(values1, axis=1)
        rab2[k] = np.median(values2, axis=1)

        between = (values2[:, None, :] - values1[:, :, None]).reshape(n_features, -1)
        dif_btw[k] = np.median(between, axis=1)
        dif_win[k] = np.maximum(_dispersion(values1, pairs1), _dispersion(values2, pairs2))

        return np.stack([
            (between < 0).sum(axis=1),
            (between > 0).sum(axis=1),
            (between == 0).sum(axis=1),
        ])

    sign_counts = np.sum(run_parallel(_effect_draw, range(n_draws), n_jobs=n_jobs), axis=0)

    effect, n_undefined = _standardize(dif_btw, dif_win)
    median_btw = np.median(dif_btw, axis=0)

    results_df = pd.DataFrame({
        'rab.all': np.median(rab_all, axis=0),
        f'rab.win.{group1}': np.median(rab1, axis=0),
        f'rab.win.{group2}': np.median(rab2, axis=0),
        'dif.btw': median_btw,
        'dif.win': np.median(dif_win, axis=0),
        'effect': _median_effect(effect),
        'overlap': _overlap(median_btw, sign_counts),
    }, index=instances.feature_ids)

    results_df.attrs['groups'] = (group1, group2)
    results_df.attrs['n_draws'] = n_draws
    results_df.attrs['undefined_effect_draws'] = n_undefined

    logger.info(f"Computed effect sizes for {n_features} features over {n_draws} draws")
    if n_undefined:
        logger.warning(
            f"{n_undefined} feature/draw pairs had no within-group dispersion; "
            f"their effect was set to +/-inf (0 when there was no difference either)"
        )
    return results_df


def _dispersion(values, pairs):
    """Median absolute difference over all sample pairs of one group, per feature."""
    return np.median(np.abs(values[:, pairs[0]] - values[:, pairs[1]]), axis=1)


def _standardize(dif_btw, dif_win):
    """dif.btw / dif.win with signed infinities where dif.win is 0."""
    undefined = dif_win == 0
    with np.errstate(divide='ignore', invalid='ignore'):
        effect = dif_btw / dif_win
    sentinel = np.where(dif_btw > 0, np.inf, np.where(dif_btw < 0, -np.inf, 0.0))
    effect = np.where(undefined, sentinel, effect)
    return effect, int(undefined.sum())


def _median_effect(effect):
    median = np.median(effect, axis=0)
    # +inf and -inf draws of equal count average to NaN
    return np.where(np.isnan(median), 0.0, median)


def _overlap(median_btw, sign_counts):
    """Share of pairwise differences on the wrong side of zero (ties count half)."""
    negative, positive, tied = sign_counts.astype(float)
    total = negative + positive + tied
    against = np.where(median_btw > 0, negative, positive)
    overlap = (against + 0.5 * tied) / total
    return np.where(median_btw == 0, 0.5, overlap)
