"""
Plotting: QC histograms, PCA, k-medoids diagnostics and marker heatmaps.
"""

from .figures import (
    qc_histograms,
    expression_histogram,
    mean_variance,
    pca_variance,
    pca_scatter,
    elbow_plot,
    silhouette_plot,
    marker_heatmap,
)

__all__ = [
    "qc_histograms",
    "expression_histogram",
    "mean_variance",
    "pca_variance",
    "pca_scatter",
    "elbow_plot",
    "silhouette_plot",
    "marker_heatmap",
]
