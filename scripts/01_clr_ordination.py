#!/usr/bin/env python3
"""
Transform a count table into clr coordinates and summarise sample structure.

This script:
1. Loads the count table and metadata
2. Replaces zero counts and removes samples without counts
3. Drops features below the relative abundance threshold
4. clr-transforms the filtered proportions
5. Runs PCA, hierarchical clustering and PERMANOVA on Aitchison distances
6. Writes the composition summary used for stacked bar charts

Usage:
    python scripts/01_clr_ordination.py --abundance-file counts.csv [--config CONFIG_FILE]
"""

import argparse
import logging
import sys
from pathlib import Path

import pandas as pd

# Add project root and tools directory to Python path
project_root = Path(__file__).resolve().parents[1]
sys.path.append(str(project_root / 'tools'))

from coda_tools import (
    CodaError,
    load_config,
    setup_logger,
    load_abundance_table,
    load_metadata,
    group_labels_from_metadata,
    multiplicative_replacement,
    filter_low_abundance,
    clr_transform,
    clr_pca,
    aitchison_distance,
    cluster_samples,
    perform_permanova,
    summarize_composition,
    write_table
)


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='clr transformation and ordination of a count table')
    parser.add_argument('--abundance-file', required=True,
                        help='Count table (CSV/TSV, features as rows, samples as columns)')
    parser.add_argument('--samples-as-rows', action='store_true',
                        help='The count table has one sample per row')
    parser.add_argument('--metadata-file', default=None,
                        help='Metadata file (default: metadata.filename from the config)')
    parser.add_argument('--config', type=str, default='config/analysis_parameters.yml',
                        help='Path to configuration file')
    parser.add_argument('--output-dir', default='results/clr_ordination',
                        help='Directory for output files (default: results/clr_ordination)')
    parser.add_argument('--log-file', default=None,
                        help='Path to log file (default: log to console only)')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Logging level (default: INFO)')
    return parser.parse_args()


def main():
    args = parse_args()
    logger = setup_logger(log_file=args.log_file, log_level=getattr(logging, args.log_level))

    config_path = Path(args.config)
    if not config_path.is_absolute():
        config_path = project_root / config_path
    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    try:
        config = load_config(config_path)
        ordination = config.extra.get('ordination', {}) or {}

        counts = load_abundance_table(args.abundance_file, samples_as_rows=args.samples_as_rows)

        replaced = multiplicative_replacement(
            counts,
            method=config.zero_method,
            frac=config.zero_frac,
            threshold=config.zero_threshold,
            drop_empty_samples=config.degenerate_samples == 'exclude',
        )
        filtered = filter_low_abundance(replaced.counts, min_abundance=config.min_abundance)
        clr_df = clr_transform(filtered.proportions, sort_by_abundance=True)

        write_table(clr_df, output_dir / 'clr_values.csv')
        write_table(pd.DataFrame({'SampleID': replaced.dropped_samples}),
                    output_dir / 'dropped_samples.tsv', index=False)
        write_table(pd.DataFrame({'Feature': filtered.dropped_features}),
                    output_dir / 'dropped_features.tsv', index=False)

        # PCA
        n_components = min(ordination.get('n_components', 5), *clr_df.shape)
        pca = clr_pca(clr_df, n_components=n_components)
        write_table(pca['scores'], output_dir / 'pca_scores.csv')
        write_table(pca['explained_variance_ratio'].to_frame(), output_dir / 'pca_explained_variance.csv')
        write_table(pca['loadings'], output_dir / 'pca_loadings.csv')

        # Clustering
        clustering = cluster_samples(clr_df, method=ordination.get('linkage_method', 'ward'))
        write_table(pd.DataFrame({'SampleID': clustering['order']}),
                    output_dir / 'cluster_order.tsv', index=False)

        # Group-level summaries need metadata
        groups = None
        metadata_file = args.metadata_file or config.metadata_file
        if metadata_file and config.group_variable:
            metadata_path = Path(metadata_file)
            if not metadata_path.is_absolute() and not metadata_path.exists():
                metadata_path = project_root / metadata_path
            if metadata_path.exists():
                metadata_df = load_metadata(metadata_path, config.sample_id_column)
                groups = group_labels_from_metadata(metadata_df, config.group_variable, list(clr_df.columns))
            else:
                logger.warning(f"Metadata file not found at {metadata_path}; skipping group summaries")

        if groups is not None:
            result = perform_permanova(
                aitchison_distance(clr_df), groups,
                permutations=ordination.get('permutations', 999),
            )
            logger.info(
                f"PERMANOVA ({config.group_variable}): pseudo-F = {result['test-statistic']}, "
                f"p = {result['p-value']} ({result['note']})"
            )
            write_table(pd.DataFrame([result]), output_dir / 'permanova.tsv', index=False)

        composition = summarize_composition(
            filtered.proportions, groups=groups, top_n=ordination.get('top_n_features', 10),
        )
        write_table(composition['per_sample'], output_dir / 'composition_per_sample.csv')
        if 'per_group' in composition:
            write_table(composition['per_group'], output_dir / 'composition_per_group.csv')

    except (CodaError, FileNotFoundError) as e:
        logger.error(f"Error during clr ordination: {e}")
        sys.exit(1)

    logger.info(f"Results saved to {output_dir}")


if __name__ == "__main__":
    main()
