"""
Compositional data analysis toolkit for microbiome count tables.

This module provides functions for zero replacement, abundance filtering,
centred log-ratio transformation, Monte-Carlo resampling and
differential abundance testing between two groups of samples.

Usage:
    from coda_tools import run_coda_pipeline, load_config, ...
"""

__version__ = '0.1.0'

from .coda_errors import (
    CodaError,
    InputShapeError,
    ConfigurationError,
    DegenerateSampleError,
    DegenerateFeatureError,
    ZeroReplacementError
)

from .coda_config import (
    AnalysisConfig,
    load_config
)

from .coda_logger import setup_logger

from .coda_utils import (
    load_metadata,
    load_abundance_table,
    validate_abundance_matrix,
    resolve_groups,
    group_labels_from_metadata,
    write_table
)

from .coda_zeros import (
    ZeroReplacementResult,
    zero_pattern,
    find_empty_samples,
    multiplicative_replacement
)

from .coda_transform import (
    FilterResult,
    to_proportions,
    filter_low_abundance,
    sort_features_by_abundance,
    clr_transform,
    iqlr_features
)

from .coda_montecarlo import (
    MonteCarloInstances,
    draw_posterior_compositions,
    generate_mc_instances
)

from .coda_stats import (
    per_draw_pvalues,
    differential_abundance_tests,
    call_significant
)

from .coda_effect import effect_sizes

from .coda_ordination import (
    clr_pca,
    aitchison_distance,
    cluster_samples,
    perform_permanova,
    summarize_composition
)

from .coda_pipeline import (
    CodaResult,
    aldex_table,
    run_coda_pipeline,
    aldex_analysis
)

__all__ = [
    'CodaError',
    'InputShapeError',
    'ConfigurationError',
    'DegenerateSampleError',
    'DegenerateFeatureError',
    'ZeroReplacementError',
    'AnalysisConfig',
    'load_config',
    'setup_logger',
    'load_metadata',
    'load_abundance_table',
    'validate_abundance_matrix',
    'resolve_groups',
    'group_labels_from_metadata',
    'write_table',
    'ZeroReplacementResult',
    'zero_pattern',
    'find_empty_samples',
    'multiplicative_replacement',
    'FilterResult',
    'to_proportions',
    'filter_low_abundance',
    'sort_features_by_abundance',
    'clr_transform',
    'iqlr_features',
    'MonteCarloInstances',
    'draw_posterior_compositions',
    'generate_mc_instances',
    'per_draw_pvalues',
    'differential_abundance_tests',
    'call_significant',
    'effect_sizes',
    'clr_pca',
    'aitchison_distance',
    'cluster_samples',
    'perform_permanova',
    'summarize_composition',
    'CodaResult',
    'aldex_table',
    'run_coda_pipeline',
    'aldex_analysis'
]
