"""
Statistical tests on Monte-Carlo clr instances.

Every draw is tested on its own: Welch's t-test and the Wilcoxon rank-sum
test are run per feature, the p-values of the draw are Benjamini-Hochberg
corrected across features, and only then are raw and corrected p-values
averaged over draws. The averages are the expected p-value (``ep``) and the
expected BH-adjusted p-value (``eBH``).
"""

import logging
import warnings

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.multitest import multipletests

from .coda_config import TESTS
from .coda_errors import ConfigurationError, DegenerateFeatureError, InputShapeError
from .coda_utils import resolve_groups, run_parallel

logger = logging.getLogger(__name__)

TEST_PREFIXES = {'welch': 'we', 'wilcoxon': 'wi'}

# p-value given to a feature that cannot be tested in a draw
FALLBACK_PVALUE = 1.0


def per_draw_pvalues(instances, groups, paired=False, group_order=None, n_jobs=1):
    """
    Run both location tests on every Monte-Carlo draw.

    Parameters:
    -----------
    instances : MonteCarloInstances
        clr instances of all samples
    groups : pandas.Series or sequence
        Two-valued group label per sample
    paired : bool
        Use the paired t-test and the Wilcoxon signed-rank test. Samples are
        paired by their position within each group, so both groups must have
        the same size.
    group_order : sequence of two labels, optional
        Which label is group 1
    n_jobs : int
        Worker threads; draws are independent

    Returns:
    --------
    dict
        ``welch``, ``welch_bh``, ``wilcoxon`` and ``wilcoxon_bh`` arrays of
        shape (n_draws, n_features), the group pair and fallback counts
    """
    labels, (group1, group2) = resolve_groups(groups, instances.sample_ids, group_order)
    idx1 = np.flatnonzero(labels.values == group1)
    idx2 = np.flatnonzero(labels.values == group2)
    if paired and len(idx1) != len(idx2):
        raise InputShapeError(
            f"Paired tests need groups of equal size, got {len(idx1)} and {len(idx2)}"
        )

    stack = instances.as_stack()
    n_draws, n_features = stack.shape[0], stack.shape[1]
    welch = np.empty((n_draws, n_features))
    wilcoxon = np.empty((n_draws, n_features))

    def _test_draw(k):
        values1 = stack[k][:, idx1]
        values2 = stack[k][:, idx2]
        welch[k], welch_fallbacks = _welch_pvalues(values1, values2, paired)
        wilcoxon[k], wilcoxon_fallbacks = _wilcoxon_pvalues(values1, values2, paired)
        return welch_fallbacks, wilcoxon_fallbacks

    fallbacks = np.array(run_parallel(_test_draw, range(n_draws), n_jobs=n_jobs)).reshape(n_draws, 2)

    return {
        'welch': welch,
        'welch_bh': _bh_by_draw(welch),
        'wilcoxon': wilcoxon,
        'wilcoxon_bh': _bh_by_draw(wilcoxon),
        'groups': (group1, group2),
        'welch_fallbacks': int(fallbacks[:, 0].sum()),
        'wilcoxon_fallbacks': int(fallbacks[:, 1].sum()),
    }


def differential_abundance_tests(instances, groups, paired=False, group_order=None, n_jobs=1):
    """
    Expected p-values of Welch's and Wilcoxon's tests for every feature.

    Parameters:
    -----------
    instances : MonteCarloInstances
        clr instances of all samples
    groups : pandas.Series or sequence
        Two-valued group label per sample
    paired : bool
        Use paired variants of both tests
    group_order : sequence of two labels, optional
        Which label is group 1
    n_jobs : int
        Worker threads

    Returns:
    --------
    pandas.DataFrame
        Columns ``we.ep``, ``we.eBH``, ``wi.ep``, ``wi.eBH`` indexed by
        feature. ``attrs`` holds the number of feature/draw pairs that fell
        back to p = 1.
    """
    draws = per_draw_pvalues(instances, groups, paired=paired,
                             group_order=group_order, n_jobs=n_jobs)

    results_df = pd.DataFrame({
        'we.ep': draws['welch'].mean(axis=0),
        'we.eBH': draws['welch_bh'].mean(axis=0),
        'wi.ep': draws['wilcoxon'].mean(axis=0),
        'wi.eBH': draws['wilcoxon_bh'].mean(axis=0),
    }, index=instances.feature_ids)

    results_df.attrs['groups'] = draws['groups']
    results_df.attrs['paired'] = paired
    results_df.attrs['n_draws'] = instances.n_draws
    results_df.attrs['welch_fallbacks'] = draws['welch_fallbacks']
    results_df.attrs['wilcoxon_fallbacks'] = draws['wilcoxon_fallbacks']

    test_names = "paired t-test / signed-rank" if paired else "Welch / rank-sum"
    logger.info(
        f"Ran {test_names} tests on {instances.n_features} features over "
        f"{instances.n_draws} Monte-Carlo draws ({draws['groups'][0]} vs {draws['groups'][1]})"
    )
    for test in TESTS:
        n = draws[f'{test}_fallbacks']
        if n:
            logger.warning(
                f"{n} feature/draw pairs could not be tested with {test} "
                f"(no within-group variation); they were given p = {FALLBACK_PVALUE}"
            )
    return results_df


def call_significant(results_df, test='welch', adjusted=False, threshold=0.05,
                     effect_threshold=None):
    """
    Flag features called as differentially abundant.

    Parameters:
    -----------
    results_df : pandas.DataFrame
        Table with ``we.*``/``wi.*`` columns (and ``effect`` when an effect
        threshold is used)
    test : str
        'welch' or 'wilcoxon'
    adjusted : bool
        Use the expected BH-adjusted p-value instead of the raw one
    threshold : float
        Features with an expected p-value below this are called
    effect_threshold : float, optional
        Additionally require ``|effect|`` to be at least this large

    Returns:
    --------
    pandas.Series
        Boolean flag per feature
    """
    if test not in TEST_PREFIXES:
        raise ConfigurationError(f"test must be one of {', '.join(TESTS)}, got {test!r}")
    if not 0 <= threshold <= 1:
        raise ConfigurationError(f"threshold must be between 0 and 1, got {threshold}")

    column = f"{TEST_PREFIXES[test]}.{'eBH' if adjusted else 'ep'}"
    if column not in results_df.columns:
        raise InputShapeError(f"Column '{column}' not found in results")

    called = results_df[column] < threshold
    if effect_threshold is not None:
        if 'effect' not in results_df.columns:
            raise InputShapeError("An effect threshold needs the 'effect' column")
        called &= results_df['effect'].abs() >= effect_threshold
    return called.rename('called')


def _bh_by_draw(pvalues):
    """Benjamini-Hochberg correction across features, separately for each draw."""
    if pvalues.shape[1] < 2:
        return pvalues.copy()
    return np.vstack([multipletests(row, method='fdr_bh')[1] for row in pvalues])


def _welch_pvalues(values1, values2, paired):
    """t-test p-values for each row (feature); rows without variation get the fallback."""
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', RuntimeWarning)
        if paired:
            pvalues = np.asarray(stats.ttest_rel(values1, values2, axis=1).pvalue, dtype=float)
            degenerate = np.ptp(values1 - values2, axis=1) == 0
        else:
            pvalues = np.asarray(stats.ttest_ind(values1, values2, axis=1, equal_var=False).pvalue,
                                 dtype=float)
            degenerate = (np.ptp(values1, axis=1) == 0) & (np.ptp(values2, axis=1) == 0)

    degenerate |= ~np.isfinite(pvalues)
    pvalues[degenerate] = FALLBACK_PVALUE
    return pvalues, int(degenerate.sum())


def _wilcoxon_pvalues(values1, values2, paired):
    """Rank test p-values for each row (feature)."""
    if not paired:
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', RuntimeWarning)
            pvalues = np.asarray(
                stats.mannwhitneyu(values1, values2, axis=1, alternative='two-sided').pvalue,
                dtype=float,
            )
        degenerate = ~np.isfinite(pvalues)
        pvalues[degenerate] = FALLBACK_PVALUE
        return pvalues, int(degenerate.sum())

    pvalues = np.empty(values1.shape[0])
    n_fallback = 0
    for i in range(values1.shape[0]):
        try:
            pvalues[i] = _signed_rank_pvalue(values1[i], values2[i])
        except DegenerateFeatureError as e:
            logger.debug(f"Feature {i}: {e}")
            pvalues[i] = FALLBACK_PVALUE
            n_fallback += 1
    return pvalues, n_fallback


def _signed_rank_pvalue(x, y):
    differences = x - y
    if np.all(differences == 0):
        raise DegenerateFeatureError("all paired differences are zero")
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', UserWarning)
        pvalue = stats.wilcoxon(x, y, alternative='two-sided').pvalue
    if not np.isfinite(pvalue):
        raise DegenerateFeatureError("signed-rank statistic is undefined")
    return float(pvalue)
