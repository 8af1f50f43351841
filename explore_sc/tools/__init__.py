"""
Analysis tools: PCA, k-medoids clustering and marker genes.
"""

from .decomposition import pca, select_n_components
from .clustering import (
    PAMResult,
    pairwise_distances,
    pam,
    kmedoids,
    elbow,
    find_elbow,
    choose_k,
)
from .markers import (
    lm_fit,
    ebayes,
    find_markers,
    top_markers,
)

__all__ = [
    "pca",
    "select_n_components",
    "PAMResult",
    "pairwise_distances",
    "pam",
    "kmedoids",
    "elbow",
    "find_elbow",
    "choose_k",
    "lm_fit",
    "ebayes",
    "find_markers",
    "top_markers",
]
