"""
End-to-end compositional differential abundance pipeline.

raw counts -> zero replacement -> abundance filter -> clr (for ordination)
filtered counts -> Monte-Carlo instances -> tests + effect sizes
                -> merged statistic table

Every stage receives its inputs explicitly and returns new objects; a run is
a pure function of (counts, group labels, configuration).
"""

import logging
from dataclasses import dataclass, field

import pandas as pd

from .coda_config import AnalysisConfig
from .coda_effect import effect_sizes
from .coda_montecarlo import MonteCarloInstances, generate_mc_instances
from .coda_stats import call_significant, differential_abundance_tests
from .coda_transform import clr_transform, filter_low_abundance
from .coda_utils import resolve_groups, validate_abundance_matrix
from .coda_zeros import multiplicative_replacement

logger = logging.getLogger(__name__)


@dataclass
class CodaResult:
    """Everything produced by one pipeline run."""

    replaced_counts: pd.DataFrame
    filtered_counts: pd.DataFrame
    proportions: pd.DataFrame
    clr: pd.DataFrame
    instances: MonteCarloInstances
    statistics: pd.DataFrame
    groups: pd.Series
    dropped_samples: list = field(default_factory=list)
    dropped_features: list = field(default_factory=list)
    diagnostics: dict = field(default_factory=dict)

    def significant(self, config=None):
        """Rows of the statistic table called significant under ``config``."""
        config = config or AnalysisConfig()
        called = call_significant(
            self.statistics, test=config.test, adjusted=config.adjusted,
            threshold=config.p_value_threshold, effect_threshold=config.effect_threshold,
        )
        return self.statistics[called]


def aldex_table(test_results, effect_results):
    """Merge test and effect tables by feature ID."""
    merged = effect_results.join(test_results, how='inner')
    merged.attrs = {**effect_results.attrs, **test_results.attrs}
    return merged


def run_coda_pipeline(counts, groups, config=None, group_order=None):
    """
    Run the full compositional analysis of a two-group design.

    Parameters:
    -----------
    counts : pandas.DataFrame
        Non-negative read counts with features as index, samples as columns
    groups : pandas.Series or sequence
        Group label per sample (exactly two distinct labels)
    config : AnalysisConfig, optional
        Analysis parameters (defaults when omitted)
    group_order : sequence of two labels, optional
        Which label is group 1; differences are reported as group 2 - group 1

    Returns:
    --------
    CodaResult
        Stage outputs, the per-feature statistic table and the dropped
        sample and feature IDs
    """
    config = (config or AnalysisConfig()).validate()
    counts = validate_abundance_matrix(counts)
    labels, _ = resolve_groups(groups, counts.columns, group_order)

    logger.info(f"Starting analysis of {counts.shape[0]} features x {counts.shape[1]} samples")

    replaced = multiplicative_replacement(
        counts,
        method=config.zero_method,
        frac=config.zero_frac,
        threshold=config.zero_threshold,
        drop_empty_samples=config.degenerate_samples == 'exclude',
    )
    labels, group_pair = resolve_groups(labels, replaced.counts.columns, group_order)

    filtered = filter_low_abundance(replaced.counts, min_abundance=config.min_abundance)
    clr_df = clr_transform(filtered.proportions, sort_by_abundance=True)

    instances = generate_mc_instances(
        filtered.counts,
        n_draws=config.mc_samples,
        prior=config.prior,
        seed=config.seed,
        n_jobs=config.n_jobs,
        denominator=config.denominator,
    )
    tests = differential_abundance_tests(
        instances, labels, paired=config.paired, group_order=group_pair, n_jobs=config.n_jobs,
    )
    effects = effect_sizes(instances, labels, group_order=group_pair, n_jobs=config.n_jobs)
    statistics = aldex_table(tests, effects)

    diagnostics = {
        'n_input_features': counts.shape[0],
        'n_input_samples': counts.shape[1],
        'n_replaced_zeros': replaced.n_replaced,
        'n_adjusted_replacements': replaced.n_adjusted,
        'n_dropped_samples': len(replaced.dropped_samples),
        'n_dropped_features': len(filtered.dropped_features),
        'welch_fallbacks': tests.attrs['welch_fallbacks'],
        'wilcoxon_fallbacks': tests.attrs['wilcoxon_fallbacks'],
        'undefined_effect_draws': effects.attrs['undefined_effect_draws'],
        'mc_seed': instances.seed,
        'denominator': config.denominator,
        'n_reference_features': (instances.n_features if instances.denominator is None
                                 else len(instances.denominator)),
        'groups': group_pair,
    }

    result = CodaResult(
        replaced_counts=replaced.counts,
        filtered_counts=filtered.counts,
        proportions=filtered.proportions,
        clr=clr_df,
        instances=instances,
        statistics=statistics,
        groups=labels,
        dropped_samples=replaced.dropped_samples,
        dropped_features=filtered.dropped_features,
        diagnostics=diagnostics,
    )
    logger.info(
        f"Analysis complete: {statistics.shape[0]} features tested, "
        f"{int(call_significant(statistics, test=config.test, adjusted=config.adjusted, threshold=config.p_value_threshold).sum())} "
        f"called at {'BH-adjusted' if config.adjusted else 'raw'} p < {config.p_value_threshold}"
    )
    return result


def aldex_analysis(counts, groups, config=None, group_order=None):
    """Run the pipeline and return only the per-feature statistic table."""
    return run_coda_pipeline(counts, groups, config=config, group_order=group_order).statistics
