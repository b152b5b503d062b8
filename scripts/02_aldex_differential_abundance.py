#!/usr/bin/env python3
"""
Identify differentially abundant features between two groups of samples.

This script:
1. Loads the count table and metadata
2. Runs zero replacement, abundance filtering and clr transformation
3. Draws Monte-Carlo instances of every sample's composition
4. Computes expected Welch/Wilcoxon p-values (raw and BH-adjusted)
5. Computes between/within-group differences, effect sizes and overlap
6. Writes the per-feature statistic table and the called features

Usage:
    python scripts/02_aldex_differential_abundance.py --abundance-file counts.csv [--config CONFIG_FILE]
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
    run_coda_pipeline,
    write_table
)


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Monte-Carlo clr differential abundance between two groups')
    parser.add_argument('--abundance-file', required=True,
                        help='Count table (CSV/TSV, features as rows, samples as columns)')
    parser.add_argument('--samples-as-rows', action='store_true',
                        help='The count table has one sample per row')
    parser.add_argument('--metadata-file', default=None,
                        help='Metadata file (default: metadata.filename from the config)')
    parser.add_argument('--config', type=str, default='config/analysis_parameters.yml',
                        help='Path to configuration file')
    parser.add_argument('--group-col', default=None,
                        help='Metadata column with the two groups (default: metadata.group_variable)')
    parser.add_argument('--groups', default=None,
                        help='Comma-separated group order, e.g. "control,case" (differences are case - control)')
    parser.add_argument('--mc-samples', type=int, default=None,
                        help='Number of Monte-Carlo draws (default: from config)')
    parser.add_argument('--seed', type=int, default=None,
                        help='Random seed (default: from config)')
    parser.add_argument('--denominator', choices=['all', 'iqlr'], default=None,
                        help='Reference features for the log-ratio (default: from config)')
    parser.add_argument('--paired', action='store_true',
                        help='Use paired t-test and Wilcoxon signed-rank test')
    parser.add_argument('--n-jobs', type=int, default=None,
                        help='Worker threads (default: from config)')
    parser.add_argument('--output-dir', default='results/differential_abundance',
                        help='Directory for output files (default: results/differential_abundance)')
    parser.add_argument('--log-file', default=None,
                        help='Path to log file (default: log to console only)')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Logging level (default: INFO)')
    return parser.parse_args()


def main():
    args = parse_args()
    logger = setup_logger(log_file=args.log_file, log_level=getattr(logging, args.log_level))
    logger.info("Starting compositional differential abundance analysis")

    config_path = Path(args.config)
    if not config_path.is_absolute():
        config_path = project_root / config_path
    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    try:
        overrides = {
            'mc_samples': args.mc_samples,
            'seed': args.seed,
            'n_jobs': args.n_jobs,
            'denominator': args.denominator,
            'group_variable': args.group_col,
            'metadata_file': args.metadata_file,
            'paired': True if args.paired else None,
        }
        config = load_config(config_path).replace(
            **{k: v for k, v in overrides.items() if v is not None}
        )

        counts = load_abundance_table(args.abundance_file, samples_as_rows=args.samples_as_rows)

        metadata_path = Path(config.metadata_file or '')
        if not metadata_path.is_absolute() and not metadata_path.exists():
            metadata_path = project_root / metadata_path
        if not metadata_path.is_file():
            logger.error(f"Metadata file not found at {metadata_path}")
            sys.exit(1)
        metadata_df = load_metadata(metadata_path, config.sample_id_column)

        groups = group_labels_from_metadata(metadata_df, config.group_variable, list(counts.columns))
        counts = counts[groups.index]
        group_order = args.groups.split(',') if args.groups else None

        result = run_coda_pipeline(counts, groups, config=config, group_order=group_order)

        # Save results
        statistics = result.statistics.sort_values('we.ep')
        statistics.index.name = 'Feature'
        write_table(statistics, output_dir / f"{config.group_variable}_aldex_results.tsv")
        write_table(result.clr, output_dir / 'clr_values.csv')
        write_table(pd.DataFrame({'SampleID': result.dropped_samples}),
                    output_dir / 'dropped_samples.tsv', index=False)
        write_table(pd.DataFrame({'Feature': result.dropped_features}),
                    output_dir / 'dropped_features.tsv', index=False)
        write_table(pd.Series(result.diagnostics, name='value').to_frame(),
                    output_dir / 'diagnostics.tsv')

        significant = result.significant(config)
        column = f"{'we' if config.test == 'welch' else 'wi'}.{'eBH' if config.adjusted else 'ep'}"
        significant = significant.sort_values(column)
        write_table(significant, output_dir / f"{config.group_variable}_significant_features.tsv")
        logger.info(
            f"Found {len(significant)} significant features "
            f"({column} < {config.p_value_threshold})"
        )

        top_n = min(5, len(significant))
        for i, (feature, row) in enumerate(significant.head(top_n).iterrows()):
            logger.info(
                f"  {i + 1}. {feature}: {column} = {row[column]:.4e}, "
                f"effect = {row['effect']:.2f}, overlap = {row['overlap']:.3f}"
            )

    except (CodaError, FileNotFoundError) as e:
        logger.error(f"Error during differential abundance analysis: {e}")
        sys.exit(1)

    logger.info(f"Results saved to {output_dir}")


if __name__ == "__main__":
    main()
