"""
Principal component analysis on normalized expression.
"""

import numpy as np
from anndata import AnnData
from sklearn.decomposition import PCA
from typing import Optional
import logging

from ..preprocessing.quality_control import _dense

logger = logging.getLogger(__name__)


def pca(
    adata: AnnData,
    n_comps: Optional[int] = None,
    use_highly_variable: bool = True,
    layer: Optional[str] = None,
    random_state: int = 0,
) -> None:
    """
    PCA of the normalized matrix.

    Adds to adata:
    - .obsm['X_pca']: Cell scores (n_cells, n_comps)
    - .varm['PCs']: Gene loadings (zero for genes not used)
    - .uns['pca']: 'variance', 'variance_ratio', 'cumulative_variance_ratio', 'genes'

    Parameters
    ----------
    adata : AnnData
        Normalized data
    n_comps : Optional[int]
        Number of components (default: min(50, n_cells - 1, n_genes))
    use_highly_variable : bool
        Restrict to .var['highly_variable'] if present
    layer : Optional[str]
        Layer to use (None = .X)
    random_state : int
        Seed for the randomized solver

    Examples
    --------
    >>> esc.tl.pca(adata)
    >>> esc.tl.select_n_components(adata, threshold=0.8)
    """
    gene_mask = np.ones(adata.n_vars, dtype=bool)
    if use_highly_variable and 'highly_variable' in adata.var.columns:
        gene_mask = adata.var['highly_variable'].values.astype(bool)

    X = _dense(adata, layer)[:, gene_mask]

    max_comps = min(adata.n_obs - 1, int(gene_mask.sum()))
    if max_comps < 1:
        raise ValueError("PCA needs at least two cells and one gene")
    if n_comps is None:
        n_comps = min(50, max_comps)
    elif n_comps > max_comps:
        logger.warning(f"n_comps={n_comps} too large; using {max_comps}")
        n_comps = max_comps

    model = PCA(n_components=n_comps, random_state=random_state)
    scores = model.fit_transform(X)

    loadings = np.zeros((adata.n_vars, n_comps))
    loadings[gene_mask] = model.components_.T

    ratio = model.explained_variance_ratio_
    adata.obsm['X_pca'] = scores
    adata.varm['PCs'] = loadings
    adata.uns['pca'] = {
        'variance': model.explained_variance_,
        'variance_ratio': ratio,
        'cumulative_variance_ratio': np.cumsum(ratio),
        'genes': np.asarray(adata.var_names[gene_mask]),
    }

    logger.info(
        f"PCA on {gene_mask.sum()} genes: {n_comps} components, "
        f"PC1 {ratio[0]:.1%}, total {ratio.sum():.1%} of variance"
    )


def select_n_components(
    adata: AnnData,
    threshold: float = 0.8,
    min_comps: int = 2,
) -> int:
    """
    Smallest number of leading PCs reaching a cumulative variance ratio.

    Parameters
    ----------
    adata : AnnData
        Data after tl.pca
    threshold : float
        Target fraction of variance in (0, 1]
    min_comps : int
        Lower bound on the returned number

    Returns
    -------
    n_pcs : int
        Also stored in .uns['pca']['n_selected']
    """
    if not 0 < threshold <= 1:
        raise ValueError(f"threshold must be in (0, 1], got {threshold}")
    if 'pca' not in adata.uns:
        raise ValueError("PCA not found. Run tl.pca first.")

    cumulative = np.asarray(adata.uns['pca']['cumulative_variance_ratio'])
    n_comps = len(cumulative)

    reached = np.nonzero(cumulative >= threshold - 1e-12)[0]
    n_pcs = int(reached[0]) + 1 if len(reached) else n_comps
    n_pcs = int(min(max(n_pcs, min_comps), n_comps))

    adata.uns['pca']['n_selected'] = n_pcs
    adata.uns['pca']['threshold'] = threshold

    logger.info(
        f"Using {n_pcs} PCs ({cumulative[n_pcs - 1]:.1%} of variance, "
        f"threshold {threshold:.0%})"
    )

    return n_pcs
