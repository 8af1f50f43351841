"""
Quality control functions compatible with Scanpy.
"""

import numpy as np
from anndata import AnnData
from typing import Optional
import logging

logger = logging.getLogger(__name__)


def _dense(adata: AnnData, layer: Optional[str] = None) -> np.ndarray:
    X = adata.X if layer is None else adata.layers[layer]
    if hasattr(X, 'toarray'):
        X = X.toarray()
    return np.asarray(X, dtype=np.float64)


def _counts_layer(adata: AnnData) -> Optional[str]:
    return 'counts' if 'counts' in adata.layers else None


def calculate_qc_metrics(
    adata: AnnData,
    mito_prefix: str = "MT-",
    spike_prefix: str = "ERCC-",
    layer: Optional[str] = None,
) -> None:
    """
    Compute per-cell and per-gene QC metrics on raw counts.

    Adds to adata.obs:
    - 'n_genes': Genes detected per cell
    - 'total_counts': Library size
    - 'pct_mito': Percentage of counts from mitochondrial genes
    - 'pct_spike': Percentage of counts from spike-ins

    Adds to adata.var:
    - 'n_cells': Cells in which the gene is detected
    - 'total_counts': Total counts over cells
    - 'mean_counts': Mean counts per cell

    Parameters
    ----------
    adata : AnnData
        Data
    mito_prefix : str
        Prefix for mitochondrial genes (case-insensitive)
    spike_prefix : str
        Prefix for spike-in controls
    layer : Optional[str]
        Layer with raw counts (default 'counts' if present, else .X)
    """
    if layer is None:
        layer = _counts_layer(adata)
    X = _dense(adata, layer)

    total = X.sum(axis=1)
    names = adata.var_names.str.upper()
    mito_genes = np.asarray(names.str.startswith(mito_prefix.upper()))
    spike_genes = np.asarray(names.str.startswith(spike_prefix.upper()))

    adata.obs['n_genes'] = (X > 0).sum(axis=1)
    adata.obs['total_counts'] = total
    adata.obs['pct_mito'] = X[:, mito_genes].sum(axis=1) / (total + 1e-8) * 100
    adata.obs['pct_spike'] = X[:, spike_genes].sum(axis=1) / (total + 1e-8) * 100

    adata.var['n_cells'] = (X > 0).sum(axis=0)
    adata.var['total_counts'] = X.sum(axis=0)
    adata.var['mean_counts'] = X.mean(axis=0)

    logger.info(
        f"QC metrics: median {np.median(total):.0f} counts, "
        f"median {np.median(adata.obs['n_genes']):.0f} genes per cell, "
        f"{mito_genes.sum()} mitochondrial genes, {spike_genes.sum()} spike-ins"
    )


def basic_qc(
    adata: AnnData,
    min_genes: int = 200,
    min_cells: int = 3,
    max_pct_mito: float = 20.0,
    mito_prefix: str = "MT-",
    copy: bool = False,
) -> Optional[AnnData]:
    """
    Basic quality control filtering.

    Parameters
    ----------
    adata : AnnData
        Data
    min_genes : int
        Minimum genes per cell
    min_cells : int
        Minimum cells per gene
    max_pct_mito : float
        Maximum mitochondrial percentage
    mito_prefix : str
        Prefix for mitochondrial genes
    copy : bool
        Return copy

    Returns
    -------
    adata : Optional[AnnData]
        Filtered data
    """
    if copy:
        adata = adata.copy()

    logger.info(f"Starting QC: {adata.n_obs} cells × {adata.n_vars} genes")

    calculate_qc_metrics(adata, mito_prefix=mito_prefix)

    cell_filter = np.asarray(
        (adata.obs['n_genes'] >= min_genes) &
        (adata.obs['pct_mito'] <= max_pct_mito)
    )
    gene_filter = np.asarray(adata.var['n_cells'] >= min_cells)

    _check_not_empty(cell_filter, "cells")
    _check_not_empty(gene_filter, "genes")

    logger.info(f"Removing {(~cell_filter).sum()} cells")
    logger.info(f"Removing {(~gene_filter).sum()} genes")

    adata._inplace_subset_obs(cell_filter)
    adata._inplace_subset_var(gene_filter)

    logger.info(f"After QC: {adata.n_obs} cells × {adata.n_vars} genes")

    if copy:
        return adata


def filter_cells(
    adata: AnnData,
    min_genes: Optional[int] = None,
    max_genes: Optional[int] = None,
    min_counts: Optional[float] = None,
    max_counts: Optional[float] = None,
    max_pct_mito: Optional[float] = None,
    copy: bool = False,
) -> Optional[AnnData]:
    """
    Filter cells by metrics.

    Parameters
    ----------
    adata : AnnData
        Data
    min_genes : Optional[int]
        Minimum genes detected
    max_genes : Optional[int]
        Maximum genes detected
    min_counts : Optional[float]
        Minimum total counts
    max_counts : Optional[float]
        Maximum total counts
    max_pct_mito : Optional[float]
        Maximum mitochondrial percentage
    copy : bool
        Return copy

    Returns
    -------
    adata : Optional[AnnData]
        Filtered data
    """
    if 'n_genes' not in adata.obs.columns or 'pct_mito' not in adata.obs.columns:
        calculate_qc_metrics(adata)

    cell_filter = np.ones(adata.n_obs, dtype=bool)

    if min_genes is not None:
        cell_filter &= adata.obs['n_genes'].values >= min_genes

    if max_genes is not None:
        cell_filter &= adata.obs['n_genes'].values <= max_genes

    if min_counts is not None:
        cell_filter &= adata.obs['total_counts'].values >= min_counts

    if max_counts is not None:
        cell_filter &= adata.obs['total_counts'].values <= max_counts

    if max_pct_mito is not None:
        cell_filter &= adata.obs['pct_mito'].values <= max_pct_mito

    _check_not_empty(cell_filter, "cells")

    logger.info(f"Filtering {(~cell_filter).sum()} cells")

    if copy:
        return adata[cell_filter, :].copy()
    adata._inplace_subset_obs(cell_filter)


def filter_genes(
    adata: AnnData,
    min_cells: Optional[int] = None,
    min_counts: Optional[float] = None,
    min_count_per_cell: float = 1,
    copy: bool = False,
) -> Optional[AnnData]:
    """
    Filter genes by detection.

    A gene passes ``min_cells`` when at least that many cells have
    ``min_count_per_cell`` counts or more for it.

    Parameters
    ----------
    adata : AnnData
        Data
    min_cells : Optional[int]
        Minimum cells expressing gene
    min_counts : Optional[float]
        Minimum total counts
    min_count_per_cell : float
        Count at which a gene is called expressed in a cell
    copy : bool
        Return copy

    Returns
    -------
    adata : Optional[AnnData]
        Filtered data
    """
    X = _dense(adata, _counts_layer(adata))

    gene_filter = np.ones(adata.n_vars, dtype=bool)

    if min_cells is not None:
        gene_filter &= (X >= min_count_per_cell).sum(axis=0) >= min_cells

    if min_counts is not None:
        gene_filter &= X.sum(axis=0) >= min_counts

    _check_not_empty(gene_filter, "genes")

    logger.info(f"Filtering {(~gene_filter).sum()} genes")

    if copy:
        return adata[:, gene_filter].copy()
    adata._inplace_subset_var(gene_filter)


def remove_spike_ins(
    adata: AnnData,
    prefix: str = "ERCC-",
    copy: bool = False,
) -> Optional[AnnData]:
    """
    Drop spike-in control genes (e.g. ERCC) before normalization.
    """
    spike = np.asarray(adata.var_names.str.upper().str.startswith(prefix.upper()))
    _check_not_empty(~spike, "genes")

    logger.info(f"Removing {spike.sum()} spike-in genes")

    if copy:
        return adata[:, ~spike].copy()
    adata._inplace_subset_var(~spike)


def _check_not_empty(mask: np.ndarray, what: str) -> None:
    if not mask.any():
        raise ValueError(f"Filtering would remove all {what}; relax the thresholds")
