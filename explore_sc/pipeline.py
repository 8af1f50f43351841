"""
The exploratory analysis from raw counts to marker genes in one call.

This is the primary user-facing function: filter, normalize, reduce,
cluster, find markers, draw the figures and write every intermediate
table.
"""

import matplotlib.pyplot as plt
from anndata import AnnData
from pathlib import Path
from typing import Optional, Union
import logging

from . import io
from . import preprocessing as pp
from . import tools as tl
from . import plotting as pl

logger = logging.getLogger(__name__)

DEFAULTS = {
    # quality control
    'mito_prefix': 'MT-',
    'spike_prefix': 'ERCC-',
    'remove_spike_ins': True,
    'min_genes': 100,
    'min_counts': None,
    'max_pct_mito': 20.0,
    'min_cells': 3,
    'min_count_per_cell': 1,
    # normalization
    'normalization': 'vst',
    'target_sum': 1e4,
    'n_top_genes': 500,
    # PCA
    'n_comps': None,
    'n_pcs': None,
    'variance_threshold': 0.8,
    # k-medoids
    'max_k': 10,
    'n_clusters': None,
    'k_method': 'elbow',
    'metric': 'euclidean',
    # markers
    'reference': 'rest',
    'alpha': 0.05,
    'min_log_fc': 1.0,
    'n_heatmap_genes': 10,
    'random_state': 0,
}


def run_analysis(
    data: Union[AnnData, str, Path],
    output_dir: Optional[Union[str, Path]] = None,
    plots: bool = True,
    verbose: bool = True,
    **params,
) -> AnnData:
    """
    Run the whole analysis.

    Parameters
    ----------
    data : AnnData, str or Path
        Count matrix (cells × genes) or a file readable by io.read.
        An AnnData is modified in place.
    output_dir : Optional[str or Path]
        Where tables, figures (in 'figures/') and the h5ad dump go.
        Nothing is written when None.
    plots : bool
        Draw figures (saved under output_dir, shown otherwise)
    verbose : bool
        Progress bars
    **params
        Overrides for DEFAULTS

    Returns
    -------
    adata : AnnData
        Analysed data. Summary in .uns['analysis'].

    Examples
    --------
    >>> import explore_sc as esc
    >>> adata = esc.run_analysis("counts.tsv", output_dir="results")
    >>> adata.obs['kmedoids'].value_counts()
    >>> esc.tl.top_markers(adata, n=5)
    """
    unknown = set(params) - set(DEFAULTS)
    if unknown:
        raise TypeError(f"Unknown parameters: {', '.join(sorted(unknown))}")
    settings = {**DEFAULTS, **params}

    if isinstance(data, AnnData):
        adata = data
    else:
        adata = io.read(data)
    if 'counts' not in adata.layers:
        adata.layers['counts'] = adata.X.copy()

    logger.info(f"Starting analysis: {adata.n_obs} cells × {adata.n_vars} genes")

    figdir = None
    if output_dir is not None:
        output_dir = Path(output_dir)
        figdir = output_dir / "figures"

    def figure(plot_fn, name, *args, **kwargs):
        if not plots:
            return
        save = figdir / f"{name}.png" if figdir is not None else None
        fig = plot_fn(adata, *args, save=save, show=figdir is None, **kwargs)
        plt.close(fig)

    # 1. Quality control
    pp.calculate_qc_metrics(
        adata,
        mito_prefix=settings['mito_prefix'],
        spike_prefix=settings['spike_prefix'],
    )
    figure(pl.qc_histograms, "qc_histograms")

    if settings['remove_spike_ins']:
        pp.remove_spike_ins(adata, prefix=settings['spike_prefix'])

    pp.filter_cells(
        adata,
        min_genes=settings['min_genes'],
        min_counts=settings['min_counts'],
        max_pct_mito=settings['max_pct_mito'],
    )
    pp.filter_genes(
        adata,
        min_cells=settings['min_cells'],
        min_count_per_cell=settings['min_count_per_cell'],
    )
    pp.calculate_qc_metrics(
        adata,
        mito_prefix=settings['mito_prefix'],
        spike_prefix=settings['spike_prefix'],
    )
    logger.info(f"After filtering: {adata.n_obs} cells × {adata.n_vars} genes")

    # 2. Normalization
    if settings['normalization'] == 'log':
        pp.normalize(adata, method='log', target_sum=settings['target_sum'])
    else:
        pp.normalize(adata, method=settings['normalization'])
    pp.highly_variable(adata, n_top=settings['n_top_genes'])

    figure(pl.expression_histogram, "expression_histogram")
    figure(pl.mean_variance, "mean_variance")

    # 3. PCA
    tl.pca(adata, n_comps=settings['n_comps'], random_state=settings['random_state'])
    if settings['n_pcs'] is not None:
        n_available = adata.obsm['X_pca'].shape[1]
        n_pcs = int(min(settings['n_pcs'], n_available))
        adata.uns['pca']['n_selected'] = n_pcs
        logger.info(f"Using {n_pcs} PCs as requested")
    else:
        n_pcs = tl.select_n_components(adata, threshold=settings['variance_threshold'])

    figure(pl.pca_variance, "pca_variance")

    # 4. k-medoids
    max_k = min(settings['max_k'], adata.n_obs)
    tl.elbow(adata, k_range=range(1, max_k + 1), metric=settings['metric'], verbose=verbose)

    k = settings['n_clusters']
    if k is None:
        k = tl.choose_k(adata, method=settings['k_method'])

    tl.kmedoids(adata, n_clusters=k, metric=settings['metric'])

    figure(pl.elbow_plot, "kmedoids_elbow")
    figure(pl.silhouette_plot, "kmedoids_silhouette")
    figure(pl.pca_scatter, "pca_kmedoids", color='kmedoids')

    # 5. Marker genes
    n_markers = 0
    if k > 1:
        markers = tl.find_markers(
            adata,
            groupby='kmedoids',
            reference=settings['reference'],
            alpha=settings['alpha'],
            min_log_fc=settings['min_log_fc'],
        )
        n_markers = int(markers['is_marker'].sum())
        if n_markers > 0:
            figure(pl.marker_heatmap, "marker_heatmap", n_genes=settings['n_heatmap_genes'])
        else:
            logger.warning("No marker genes passed the thresholds; skipping heatmap")
    else:
        logger.warning("Only one cluster; skipping marker genes")

    adata.uns['analysis'] = {
        'n_cells': adata.n_obs,
        'n_genes': adata.n_vars,
        'normalization': settings['normalization'],
        'n_pcs': n_pcs,
        'k': k,
        'n_markers': n_markers,
        'parameters': {key: value for key, value in settings.items() if value is not None},
    }

    # 6. Artifacts
    if output_dir is not None:
        io.write_artifacts(adata, output_dir)

    logger.info(
        f"Done: {adata.n_obs} cells in {k} clusters, {n_markers} marker genes"
    )

    return adata
