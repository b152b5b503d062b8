"""
Exploratory analyses on clr-transformed data: PCA, Aitchison distances,
hierarchical clustering, PERMANOVA and composition summaries.
"""

import logging

import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import fcluster, leaves_list, linkage
from scipy.spatial.distance import pdist, squareform
from skbio import DistanceMatrix
from skbio.stats.distance import permanova
from sklearn.decomposition import PCA

from .coda_errors import InputShapeError

logger = logging.getLogger(__name__)


def clr_pca(clr_df, n_components=None):
    """
    Principal component analysis of samples in clr space.

    Parameters:
    -----------
    clr_df : pandas.DataFrame
        clr values with features as index, samples as columns
    n_components : int, optional
        Number of components to keep (default: all)

    Returns:
    --------
    dict
        'scores' (samples x PCs), 'explained_variance_ratio' (per PC) and
        'loadings' (features x PCs)
    """
    X = clr_df.T.to_numpy(dtype=float)
    max_components = min(X.shape)
    if n_components is None:
        n_components = max_components
    if not 1 <= n_components <= max_components:
        raise InputShapeError(
            f"n_components must be between 1 and {max_components}, got {n_components}"
        )

    pca = PCA(n_components=n_components)
    scores = pca.fit_transform(X)
    pc_names = [f'PC{i + 1}' for i in range(n_components)]

    explained = pd.Series(pca.explained_variance_ratio_, index=pc_names, name='explained_variance_ratio')
    logger.info(
        "PCA on clr values: " +
        ", ".join(f"{pc} {var * 100:.1f}%" for pc, var in explained.head(3).items())
    )
    return {
        'scores': pd.DataFrame(scores, index=clr_df.columns, columns=pc_names),
        'explained_variance_ratio': explained,
        'loadings': pd.DataFrame(pca.components_.T, index=clr_df.index, columns=pc_names),
    }


def aitchison_distance(clr_df):
    """Aitchison distance between samples (Euclidean distance of clr vectors)."""
    distances = squareform(pdist(clr_df.T.to_numpy(dtype=float), metric='euclidean'))
    return DistanceMatrix(distances, ids=[str(s) for s in clr_df.columns])


def cluster_samples(clr_df, method='ward', n_clusters=None):
    """
    Hierarchical clustering of samples on their clr values.

    Parameters:
    -----------
    clr_df : pandas.DataFrame
        clr values with features as index, samples as columns
    method : str
        scipy linkage method ('ward', 'average', 'complete', ...)
    n_clusters : int, optional
        Cut the tree into this many clusters

    Returns:
    --------
    dict
        'linkage' matrix, 'order' (sample IDs in dendrogram leaf order) and,
        when requested, 'clusters' (cluster number per sample)
    """
    if clr_df.shape[1] < 2:
        raise InputShapeError("Clustering needs at least 2 samples")

    Z = linkage(clr_df.T.to_numpy(dtype=float), method=method, metric='euclidean')
    result = {
        'linkage': Z,
        'order': [clr_df.columns[i] for i in leaves_list(Z)],
    }
    if n_clusters is not None:
        result['clusters'] = pd.Series(
            fcluster(Z, t=n_clusters, criterion='maxclust'),
            index=clr_df.columns, name='cluster',
        )
    return result


def perform_permanova(distance_matrix, groups, permutations=999):
    """
    Perform PERMANOVA test to see if grouping explains community differences.

    Parameters:
    -----------
    distance_matrix : skbio.DistanceMatrix
        Distance matrix between samples (Aitchison for clr data)
    groups : pandas.Series
        Group label per sample ID
    permutations : int
        Number of permutations to use

    Returns:
    --------
    dict
        PERMANOVA results
    """
    # Filter labels to include only samples in distance matrix
    common_samples = [s for s in distance_matrix.ids if s in groups.index]

    if len(common_samples) < 5:
        return {
            'test-statistic': np.nan,
            'p-value': np.nan,
            'sample size': len(common_samples),
            'note': 'Insufficient samples for PERMANOVA'
        }

    filtered_dm = distance_matrix.filter(common_samples)
    grouping = groups.loc[common_samples].astype(str).values

    # Check that we have at least two groups with 2+ samples
    unique_groups = np.unique(grouping)
    if len(unique_groups) < 2:
        return {
            'test-statistic': np.nan,
            'p-value': np.nan,
            'sample size': len(common_samples),
            'note': 'Only one group found'
        }

    for group in unique_groups:
        if np.sum(grouping == group) < 2:
            return {
                'test-statistic': np.nan,
                'p-value': np.nan,
                'sample size': len(common_samples),
                'note': f"Group '{group}' has fewer than 2 samples"
            }

    results = permanova(filtered_dm, grouping, permutations=permutations)
    return {
        'test-statistic': results['test statistic'],
        'p-value': results['p-value'],
        'sample size': len(common_samples),
        'note': 'Successful test'
    }


def summarize_composition(proportions, groups=None, top_n=10):
    """
    Composition table behind a stacked bar chart.

    Parameters:
    -----------
    proportions : pandas.DataFrame
        Proportions with features as index, samples as columns
    groups : pandas.Series, optional
        Group label per sample; adds per-group mean compositions
    top_n : int
        Number of most abundant features (by mean proportion) shown
        individually; the rest are summed into 'Other'

    Returns:
    --------
    dict
        'per_sample' (top features + Other x samples) and, with groups,
        'per_group' (top features + Other x groups)
    """
    mean_abundance = proportions.mean(axis=1).sort_values(ascending=False, kind='mergesort')
    top_features = mean_abundance.index[:top_n]

    per_sample = proportions.loc[top_features].copy()
    rest = proportions.drop(index=top_features)
    if len(rest):
        per_sample.loc['Other'] = rest.sum(axis=0)

    summary = {'per_sample': per_sample}
    if groups is not None:
        common_samples = [s for s in per_sample.columns if s in groups.index]
        summary['per_group'] = per_sample[common_samples].T.groupby(groups.loc[common_samples]).mean().T
    return summary
