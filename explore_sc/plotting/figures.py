"""
Figures for the exploratory analysis.

Every function returns the matplotlib Figure; pass ``save`` to write it
to disk and ``show=True`` to display it.
"""

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from anndata import AnnData
from pathlib import Path
from typing import Optional, Tuple, Union
import logging

from ..preprocessing.quality_control import _dense
from ..tools.markers import top_markers

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _finish(fig: plt.Figure, save: Optional[PathLike], show: bool) -> plt.Figure:
    fig.tight_layout()
    if save is not None:
        save = Path(save)
        save.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(save, dpi=150, bbox_inches='tight')
        logger.info(f"Saved figure to {save}")
    if show:
        plt.show()
    return fig


def qc_histograms(
    adata: AnnData,
    bins: int = 30,
    save: Optional[PathLike] = None,
    show: bool = False,
) -> plt.Figure:
    """Histograms of library size, detected genes and mitochondrial percentage."""
    panels = [
        ('total_counts', 'Library size (counts)'),
        ('n_genes', 'Genes detected'),
        ('pct_mito', 'Mitochondrial counts (%)'),
    ]
    missing = [key for key, _ in panels if key not in adata.obs.columns]
    if missing:
        raise ValueError(f"QC metrics {missing} not found. Run pp.calculate_qc_metrics first.")

    fig, axes = plt.subplots(1, 3, figsize=(14, 4))
    for ax, (key, label) in zip(axes, panels):
        sns.histplot(adata.obs[key].values, bins=bins, ax=ax, color='steelblue')
        ax.axvline(np.median(adata.obs[key]), color='black', linestyle='--', linewidth=1)
        ax.set_xlabel(label)
        ax.set_ylabel('Cells')

    fig.suptitle(f"{adata.n_obs} cells × {adata.n_vars} genes")
    return _finish(fig, save, show)


def expression_histogram(
    adata: AnnData,
    layer: Optional[str] = None,
    bins: int = 50,
    save: Optional[PathLike] = None,
    show: bool = False,
) -> plt.Figure:
    """Distribution of normalized expression values."""
    values = _dense(adata, layer).ravel()

    method = adata.uns.get('normalization', {}).get('method', 'expression')

    fig, ax = plt.subplots(figsize=(6, 4))
    sns.histplot(values, bins=bins, ax=ax, color='darkorange')
    ax.set_xlabel(f"{method} value")
    ax.set_ylabel('Count')
    ax.set_title('Normalized expression')
    return _finish(fig, save, show)


def mean_variance(
    adata: AnnData,
    layer: Optional[str] = None,
    save: Optional[PathLike] = None,
    show: bool = False,
) -> plt.Figure:
    """
    Gene standard deviation against mean, before and after normalization.

    A flat trend after normalization means the variance was stabilized.
    """
    panels = []
    if 'counts' in adata.layers:
        counts = _dense(adata, 'counts')
        panels.append(('Raw counts', np.log1p(counts.mean(axis=0)), np.log1p(counts.std(axis=0))))
    normalized = _dense(adata, layer)
    panels.append(('Normalized', normalized.mean(axis=0), normalized.std(axis=0)))

    fig, axes = plt.subplots(1, len(panels), figsize=(6 * len(panels), 4), squeeze=False)
    for ax, (title, mean, sd) in zip(axes[0], panels):
        ax.scatter(mean, sd, s=4, alpha=0.5, color='grey')
        order = np.argsort(mean)
        trend = pd.Series(sd[order]).rolling(max(len(sd) // 20, 1), center=True, min_periods=1).median()
        ax.plot(mean[order], trend.values, color='red', linewidth=1.5)
        ax.set_title(title)
        ax.set_xlabel('mean' if title == 'Normalized' else 'log(1 + mean)')
        ax.set_ylabel('sd' if title == 'Normalized' else 'log(1 + sd)')

    return _finish(fig, save, show)


def pca_variance(
    adata: AnnData,
    save: Optional[PathLike] = None,
    show: bool = False,
) -> plt.Figure:
    """Scree plot with cumulative variance explained."""
    if 'pca' not in adata.uns:
        raise ValueError("PCA not found. Run tl.pca first.")

    info = adata.uns['pca']
    ratio = np.asarray(info['variance_ratio'])
    cumulative = np.asarray(info['cumulative_variance_ratio'])
    components = np.arange(1, len(ratio) + 1)

    fig, ax = plt.subplots(figsize=(7, 4))
    ax.bar(components, ratio, color='steelblue', label='per component')
    ax.plot(components, cumulative, color='black', marker='o', markersize=3, label='cumulative')

    if 'threshold' in info:
        ax.axhline(info['threshold'], color='red', linestyle='--', linewidth=1,
                   label=f"threshold {info['threshold']:.0%}")
    if 'n_selected' in info:
        ax.axvline(info['n_selected'], color='red', linestyle=':', linewidth=1)

    ax.set_xlabel('Principal component')
    ax.set_ylabel('Variance explained')
    ax.set_ylim(0, 1.05)
    ax.legend(frameon=False)
    return _finish(fig, save, show)


def pca_scatter(
    adata: AnnData,
    color: Optional[str] = 'kmedoids',
    components: Tuple[int, int] = (1, 2),
    save: Optional[PathLike] = None,
    show: bool = False,
) -> plt.Figure:
    """
    Cells on two principal components.

    Parameters
    ----------
    adata : AnnData
        Data after tl.pca
    color : Optional[str]
        Column in .obs used for colouring (ignored if absent). Medoids are
        outlined when ``color`` is a k-medoids result.
    components : Tuple[int, int]
        1-based component numbers
    """
    if 'X_pca' not in adata.obsm:
        raise ValueError("PCA not found. Run tl.pca first.")

    scores = adata.obsm['X_pca']
    i, j = components[0] - 1, components[1] - 1
    if max(i, j) >= scores.shape[1] or min(i, j) < 0:
        raise ValueError(f"Components {components} out of range (1..{scores.shape[1]})")

    ratio = np.asarray(adata.uns['pca']['variance_ratio'])
    hue = adata.obs[color].values if color is not None and color in adata.obs.columns else None

    fig, ax = plt.subplots(figsize=(6, 5))
    sns.scatterplot(x=scores[:, i], y=scores[:, j], hue=hue, s=40, ax=ax)

    info = adata.uns.get(color) if color is not None else None
    if isinstance(info, dict) and 'medoid_indices' in info:
        medoids = np.asarray(info['medoid_indices'])
        ax.scatter(scores[medoids, i], scores[medoids, j], s=160, facecolors='none',
                   edgecolors='black', linewidths=1.5, label='medoid')

    ax.set_xlabel(f"PC{components[0]} ({ratio[i]:.1%})")
    ax.set_ylabel(f"PC{components[1]} ({ratio[j]:.1%})")
    if hue is not None:
        ax.legend(title=color, frameon=False, bbox_to_anchor=(1.02, 1), loc='upper left')
    return _finish(fig, save, show)


def elbow_plot(
    adata: AnnData,
    k: Optional[int] = None,
    save: Optional[PathLike] = None,
    show: bool = False,
) -> plt.Figure:
    """Total PAM cost and average silhouette width against k."""
    if 'elbow' not in adata.uns:
        raise ValueError("Elbow sweep not found. Run tl.elbow first.")

    table = adata.uns['elbow']
    if k is None and isinstance(adata.uns.get('kmedoids'), dict):
        k = int(adata.uns['kmedoids']['n_clusters'])

    fig, ax = plt.subplots(figsize=(7, 4))
    ax.plot(table['k'], table['cost'], marker='o', color='steelblue')
    ax.set_xlabel('Number of clusters (k)')
    ax.set_ylabel('Total distance to medoids', color='steelblue')

    ax2 = ax.twinx()
    ax2.plot(table['k'], table['silhouette'], marker='s', color='darkorange')
    ax2.set_ylabel('Average silhouette width', color='darkorange')

    if k is not None:
        ax.axvline(k, color='red', linestyle='--', linewidth=1)
        ax.set_title(f"Chosen k = {k}")

    return _finish(fig, save, show)


def silhouette_plot(
    adata: AnnData,
    key: str = 'kmedoids',
    save: Optional[PathLike] = None,
    show: bool = False,
) -> plt.Figure:
    """Silhouette width per cell, grouped by cluster."""
    column = f"{key}_silhouette"
    if column not in adata.obs.columns:
        raise ValueError(f"'{column}' not found. Run tl.kmedoids first.")

    df = adata.obs[[key, column]].copy()
    df = df.sort_values([key, column], ascending=[True, False])

    palette = sns.color_palette('tab10', n_colors=max(df[key].nunique(), 1))
    colors = [palette[code % len(palette)] for code in df[key].cat.codes] \
        if hasattr(df[key], 'cat') else 'grey'

    fig, ax = plt.subplots(figsize=(6, max(4, adata.n_obs * 0.06)))
    ax.barh(np.arange(len(df)), df[column].values, color=colors, height=1.0)
    ax.axvline(df[column].mean(), color='red', linestyle='--', linewidth=1)
    ax.set_yticks([])
    ax.set_xlabel('Silhouette width')
    ax.set_title(f"Average silhouette width: {df[column].mean():.2f}")
    return _finish(fig, save, show)


def marker_heatmap(
    adata: AnnData,
    n_genes: int = 10,
    groupby: str = 'kmedoids',
    layer: Optional[str] = None,
    key: str = 'markers',
    save: Optional[PathLike] = None,
    show: bool = False,
) -> plt.Figure:
    """
    Heatmap of the top markers of every cluster.

    Values are z-scored per gene; cells are ordered by cluster and genes
    by the cluster they mark.
    """
    markers = top_markers(adata, n=n_genes, key=key)
    if len(markers) == 0:
        raise ValueError("No marker genes to plot")

    genes = list(pd.unique(markers['gene']))
    gene_idx = [adata.var_names.get_loc(g) for g in genes]

    order = np.argsort(adata.obs[groupby].astype(str).map(
        {g: i for i, g in enumerate(pd.unique(markers['group']))}
    ).fillna(len(markers)).values, kind='stable')

    X = _dense(adata, layer)[:, gene_idx]
    sd = X.std(axis=0)
    z = (X - X.mean(axis=0)) / np.where(sd > 0, sd, 1)
    data = pd.DataFrame(z[order].T, index=genes, columns=adata.obs_names[order])

    fig, ax = plt.subplots(figsize=(max(8, adata.n_obs * 0.12), max(4, len(genes) * 0.25)))
    sns.heatmap(data, cmap='RdBu_r', center=0, vmin=-3, vmax=3, xticklabels=False,
                yticklabels=True, cbar_kws={'label': 'z-score'}, ax=ax)

    labels = adata.obs[groupby].astype(str).values[order]
    boundaries = np.nonzero(labels[1:] != labels[:-1])[0] + 1
    for b in boundaries:
        ax.axvline(b, color='black', linewidth=1)
    starts = np.concatenate([[0], boundaries])
    ends = np.concatenate([boundaries, [len(labels)]])
    ax.set_xticks((starts + ends) / 2)
    ax.set_xticklabels(labels[starts], rotation=0)
    ax.set_xlabel(groupby)

    return _finish(fig, save, show)
