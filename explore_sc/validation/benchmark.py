"""
Benchmarking recovered clusters and markers against ground truth.
"""

import numpy as np
import pandas as pd
from anndata import AnnData
from typing import Dict, Sequence
import logging
from sklearn.metrics import adjusted_rand_score, normalized_mutual_info_score

logger = logging.getLogger(__name__)


def evaluate_clustering(
    true_labels: Sequence,
    predicted_labels: Sequence,
) -> Dict[str, float]:
    """
    Evaluate clustering quality.

    Parameters
    ----------
    true_labels : Sequence
        Ground truth cluster labels
    predicted_labels : Sequence
        Predicted cluster labels

    Returns
    -------
    metrics : Dict[str, float]
        ARI, NMI
    """
    true_labels = np.asarray(true_labels).astype(str)
    predicted_labels = np.asarray(predicted_labels).astype(str)

    return {
        'ARI': adjusted_rand_score(true_labels, predicted_labels),
        'NMI': normalized_mutual_info_score(true_labels, predicted_labels),
    }


def marker_recovery(
    adata: AnnData,
    ground_truth: Dict[str, object],
    groupby: str = 'kmedoids',
    key: str = 'markers',
) -> pd.DataFrame:
    """
    Precision and recall of marker genes per predicted cluster.

    Each predicted cluster is matched to the true cluster most of its
    cells come from.

    Parameters
    ----------
    adata : AnnData
        Data after tl.kmedoids and tl.find_markers
    ground_truth : Dict
        Output of generate_synthetic_data
    groupby : str
        Predicted cluster column
    key : str
        Marker table in .uns

    Returns
    -------
    results : pd.DataFrame
        One row per predicted cluster
    """
    if key not in adata.uns:
        raise ValueError(f"'{key}' not found in adata.uns. Run tl.find_markers first.")

    table = adata.uns[key]
    true_labels = np.asarray(ground_truth['labels']).astype(str)
    predicted = adata.obs[groupby].astype(str).values

    results = []
    for group in pd.unique(table['group']):
        in_group = predicted == group
        matched = pd.Series(true_labels[in_group]).value_counts().idxmax()

        found = set(table.loc[(table['group'] == group) & table['is_marker'], 'gene'])
        expected = set(ground_truth['markers'][matched])
        hits = len(found & expected)

        results.append({
            'group': group,
            'true_cluster': matched,
            'n_found': len(found),
            'n_expected': len(expected),
            'precision': hits / len(found) if found else np.nan,
            'recall': hits / len(expected) if expected else np.nan,
        })

    results_df = pd.DataFrame(results)

    logger.info("\n" + results_df.to_string())

    return results_df


def benchmark_normalizations(
    adata: AnnData,
    ground_truth: Dict[str, object],
    n_clusters: int,
    methods: Sequence[str] = ('vst', 'log'),
) -> pd.DataFrame:
    """
    Compare normalization methods by how well k-medoids recovers truth.

    Each method runs on a copy of ``adata`` through the full analysis
    (without figures or artifacts) with a fixed number of clusters.

    Returns
    -------
    results : pd.DataFrame
        ARI, NMI, PCs used and marker precision/recall per method
    """
    from ..pipeline import run_analysis

    results = []
    for method in methods:
        run = run_analysis(
            adata.copy(),
            plots=False,
            normalization=method,
            n_clusters=n_clusters,
        )
        metrics = evaluate_clustering(ground_truth['labels'], run.obs['kmedoids'])
        recovery = marker_recovery(run, ground_truth)
        results.append({
            'method': method,
            'n_pcs': run.uns['analysis']['n_pcs'],
            **metrics,
            'marker_precision': recovery['precision'].mean(),
            'marker_recall': recovery['recall'].mean(),
        })

    results_df = pd.DataFrame(results)

    logger.info("\n" + results_df.to_string())

    return results_df
