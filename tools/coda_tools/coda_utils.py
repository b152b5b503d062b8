"""
Utility functions for loading and validating compositional count data.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd

from .coda_errors import InputShapeError

logger = logging.getLogger(__name__)


def load_metadata(filepath, sample_id_column='SampleID'):
    """
    Load metadata from a CSV or TSV file.

    Parameters:
    -----------
    filepath : str
        Path to the metadata file
    sample_id_column : str
        Column name for sample IDs

    Returns:
    --------
    pandas.DataFrame
        Metadata DataFrame with sample IDs as index
    """
    sep = '\t' if str(filepath).endswith(('.tsv', '.txt')) else ','
    metadata_df = pd.read_csv(filepath, sep=sep)

    # Check if the sample ID column exists
    if sample_id_column not in metadata_df.columns:
        raise InputShapeError(f"Sample ID column '{sample_id_column}' not found in metadata")

    # Set index and remove any duplicate sample IDs
    metadata_df[sample_id_column] = metadata_df[sample_id_column].astype(str)
    metadata_df = metadata_df.set_index(sample_id_column)
    if metadata_df.index.duplicated().any():
        logger.warning(f"Found {metadata_df.index.duplicated().sum()} duplicate sample IDs in metadata")
        metadata_df = metadata_df[~metadata_df.index.duplicated(keep='first')]

    # Convert categorical variables to string
    for col in metadata_df.columns:
        if metadata_df[col].dtype == 'object' or metadata_df[col].dtype.name == 'category':
            metadata_df[col] = metadata_df[col].astype(str)

    return metadata_df


def load_abundance_table(filepath, samples_as_rows=False):
    """
    Load a count table into a features x samples DataFrame.

    Parameters:
    -----------
    filepath : str
        CSV or TSV file with feature IDs in the first column
    samples_as_rows : bool
        Set when the file stores one sample per row; the table is transposed

    Returns:
    --------
    pandas.DataFrame
        Count DataFrame with features as index, samples as columns
    """
    sep = '\t' if str(filepath).endswith(('.tsv', '.txt')) else ','
    abundance_df = pd.read_csv(filepath, sep=sep, index_col=0)
    if samples_as_rows:
        abundance_df = abundance_df.T

    abundance_df.index = abundance_df.index.astype(str)
    abundance_df.columns = abundance_df.columns.astype(str)
    logger.info(
        f"Loaded {os.path.basename(str(filepath))}: "
        f"{abundance_df.shape[0]} features, {abundance_df.shape[1]} samples"
    )
    return validate_abundance_matrix(abundance_df)


def validate_abundance_matrix(abundance_df):
    """
    Check that a table is a usable non-negative count matrix.

    Returns the table as a float DataFrame. Raises InputShapeError for empty
    tables, duplicate identifiers, non-numeric, missing or negative values.
    """
    if not isinstance(abundance_df, pd.DataFrame):
        raise InputShapeError(f"Expected a pandas DataFrame, got {type(abundance_df).__name__}")
    if abundance_df.shape[0] == 0 or abundance_df.shape[1] == 0:
        raise InputShapeError(f"Abundance table is empty (shape {abundance_df.shape})")
    if abundance_df.index.duplicated().any():
        dupes = abundance_df.index[abundance_df.index.duplicated()].tolist()
        raise InputShapeError(f"Duplicate feature IDs: {dupes[:5]}")
    if abundance_df.columns.duplicated().any():
        dupes = abundance_df.columns[abundance_df.columns.duplicated()].tolist()
        raise InputShapeError(f"Duplicate sample IDs: {dupes[:5]}")

    non_numeric = [col for col in abundance_df.columns
                   if not pd.api.types.is_numeric_dtype(abundance_df[col])
                   or pd.api.types.is_bool_dtype(abundance_df[col])]
    if non_numeric:
        raise InputShapeError(f"Non-numeric values in samples: {non_numeric[:5]}")

    values = abundance_df.to_numpy(dtype=float)
    if not np.isfinite(values).all():
        raise InputShapeError("Abundance table contains missing or infinite values")
    if (values < 0).any():
        bad = abundance_df.columns[(values < 0).any(axis=0)].tolist()
        raise InputShapeError(f"Negative counts in samples: {bad[:5]}")

    return abundance_df.astype(float)


def resolve_groups(groups, sample_ids, group_order=None):
    """
    Align a two-group labelling with the samples of a matrix.

    Parameters:
    -----------
    groups : pandas.Series, list or array
        One label per sample. A Series is matched by sample ID (extra IDs are
        ignored); a list or array is taken in sample-column order.
    sample_ids : sequence
        Sample IDs of the matrix being analysed
    group_order : sequence of two labels, optional
        Which label is group 1 and which is group 2. Defaults to sorted order.

    Returns:
    --------
    tuple
        (pandas.Series of labels indexed by sample_ids, (group1, group2))
    """
    sample_ids = list(sample_ids)
    if isinstance(groups, pd.Series):
        missing = [s for s in sample_ids if s not in groups.index]
        if missing:
            raise InputShapeError(f"No group label for samples: {missing[:5]}")
        labels = groups.loc[sample_ids]
    else:
        labels = np.asarray(groups)
        if labels.ndim != 1 or len(labels) != len(sample_ids):
            raise InputShapeError(
                f"Got {len(labels)} group labels for {len(sample_ids)} samples"
            )
        labels = pd.Series(labels, index=sample_ids)

    if labels.isna().any():
        raise InputShapeError(f"Missing group labels for samples: {labels.index[labels.isna()].tolist()[:5]}")
    labels = labels.astype(str)
    labels.name = groups.name if isinstance(groups, pd.Series) else 'group'

    unique_groups = sorted(labels.unique())
    if len(unique_groups) != 2:
        raise InputShapeError(
            f"Exactly 2 groups are required for comparison, found {len(unique_groups)}: {unique_groups}"
        )

    if group_order is not None:
        group_order = [str(g) for g in group_order]
        if sorted(group_order) != unique_groups:
            raise InputShapeError(f"group_order {group_order} does not match labels {unique_groups}")
        unique_groups = group_order

    for group in unique_groups:
        n = int((labels == group).sum())
        if n < 2:
            raise InputShapeError(f"Group '{group}' has {n} sample(s); at least 2 are required")

    return labels, tuple(unique_groups)


def group_labels_from_metadata(metadata_df, variable, sample_ids):
    """Pull the grouping column for a set of samples out of a metadata table."""
    if variable not in metadata_df.columns:
        raise InputShapeError(f"Group variable '{variable}' not found in metadata")
    common_samples = [s for s in sample_ids if s in metadata_df.index]
    if len(common_samples) < len(sample_ids):
        logger.warning(
            f"{len(sample_ids) - len(common_samples)} samples have no metadata and will be skipped"
        )
    return metadata_df.loc[common_samples, variable]


def write_table(df, filepath, index=True):
    """Write a result table, choosing the separator from the file extension."""
    os.makedirs(os.path.dirname(os.path.abspath(filepath)), exist_ok=True)
    sep = '\t' if str(filepath).endswith(('.tsv', '.txt')) else ','
    df.to_csv(filepath, sep=sep, index=index)
    logger.info(f"Saved {filepath}")
    return filepath


def run_parallel(func, items, n_jobs=1):
    """
    Apply ``func`` to every item, in worker threads when ``n_jobs`` > 1.

    Results come back in item order. Workers must only write to their own
    slice of any shared output array.
    """
    items = list(items)
    if n_jobs == 1 or len(items) < 2:
        return [func(item) for item in items]
    with ThreadPoolExecutor(max_workers=n_jobs) as executor:
        return list(executor.map(func, items))
