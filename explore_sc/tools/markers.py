"""
Marker genes by linear models with empirical Bayes moderation.

Every gene gets the same linear model (one mean per cluster), fitted with
limma (``lmFit`` / ``contrasts_fit`` / ``eBayes`` from InMoose). Residual
variances are shrunk towards a common prior estimated from all genes,
which stabilizes the t-statistics when clusters are small. Contrasts
compare each cluster to the average of the other clusters, or to a
chosen reference cluster.
"""

import numpy as np
import pandas as pd
from anndata import AnnData
from inmoose.limma import lmFit, contrasts_fit, eBayes
from patsy import DesignMatrix, dmatrix
from statsmodels.stats.multitest import multipletests
from typing import Optional, Dict, Tuple
import logging

from ..preprocessing.quality_control import _dense

logger = logging.getLogger(__name__)


def lm_fit(Y: np.ndarray, design: np.ndarray):
    """
    Least-squares fit of the same design to every gene.

    Parameters
    ----------
    Y : np.ndarray
        Expression (n_genes, n_samples)
    design : np.ndarray
        Design matrix (n_samples, n_coefficients). A patsy DesignMatrix
        keeps its column names.

    Returns
    -------
    fit : MArrayLM
        limma fit with 'coefficients', 'stdev_unscaled', 'sigma',
        'df_residual' and 'Amean'
    """
    Y = np.asarray(Y, dtype=np.float64)
    if not isinstance(design, DesignMatrix):
        design = DesignMatrix(np.asarray(design, dtype=np.float64))

    if Y.shape[1] != design.shape[0]:
        raise ValueError(
            f"Design has {design.shape[0]} rows but data has {Y.shape[1]} samples"
        )
    if np.linalg.matrix_rank(np.asarray(design)) < design.shape[1]:
        raise ValueError("Design matrix is not of full column rank")

    return lmFit(Y, design)


def ebayes(fit, contrasts) -> Dict[str, object]:
    """
    Moderated t-tests for contrasts of a linear model fit.

    Parameters
    ----------
    fit : MArrayLM
        Output of lm_fit
    contrasts : pd.DataFrame or np.ndarray
        Contrast matrix (n_coefficients, n_contrasts)

    Returns
    -------
    results : Dict[str, object]
        'log_fc', 't', 'p_value', 'p_adj' (n_genes, n_contrasts) and the
        prior 'df_prior', 's2_prior'
    """
    if np.min(np.asarray(fit.df_residual)) < 1:
        raise ValueError("No residual degrees of freedom; need more cells than groups")

    if not isinstance(contrasts, pd.DataFrame):
        contrasts = np.asarray(contrasts, dtype=np.float64)
        if contrasts.ndim == 1:
            contrasts = contrasts[:, None]
        # rows named like the coefficients, as makeContrasts returns them
        contrasts = pd.DataFrame(contrasts, index=getattr(fit.coefficients, 'columns', None))
    n_contrasts = contrasts.shape[1]

    fit_eb = eBayes(contrasts_fit(fit, contrasts))

    log_fc = np.asarray(fit_eb.coefficients, dtype=np.float64).reshape(-1, n_contrasts)
    t = np.asarray(fit_eb.t, dtype=np.float64).reshape(-1, n_contrasts)
    p_value = np.asarray(fit_eb.p_value, dtype=np.float64).reshape(-1, n_contrasts)

    p_adj = np.full_like(p_value, np.nan)
    for j in range(n_contrasts):
        column = p_value[:, j]
        finite = np.isfinite(column)
        if finite.any():
            p_adj[finite, j] = multipletests(column[finite], method='fdr_bh')[1]

    df_prior = float(np.mean(np.asarray(fit_eb.df_prior, dtype=np.float64)))
    s2_prior = float(np.mean(np.asarray(fit_eb.s2_prior, dtype=np.float64)))
    logger.info(f"Empirical Bayes prior: d0={df_prior:.2f}, s0^2={s2_prior:.4f}")

    return {
        'log_fc': log_fc,
        't': t,
        'p_value': p_value,
        'p_adj': p_adj,
        'df_prior': df_prior,
        's2_prior': s2_prior,
    }


def _group_contrasts(groups, reference: str) -> Tuple[np.ndarray, list]:
    n_groups = len(groups)
    columns = []
    tested = []

    if reference == 'rest':
        for g in range(n_groups):
            c = np.full(n_groups, -1.0 / (n_groups - 1))
            c[g] = 1.0
            columns.append(c)
            tested.append(groups[g])
    else:
        if reference not in groups:
            raise ValueError(f"Reference group '{reference}' not found in {list(groups)}")
        ref = list(groups).index(reference)
        for g in range(n_groups):
            if g == ref:
                continue
            c = np.zeros(n_groups)
            c[g] = 1.0
            c[ref] = -1.0
            columns.append(c)
            tested.append(groups[g])

    return np.column_stack(columns), tested


def find_markers(
    adata: AnnData,
    groupby: str = 'kmedoids',
    layer: Optional[str] = None,
    reference: str = 'rest',
    alpha: float = 0.05,
    min_log_fc: float = 1.0,
    key_added: str = 'markers',
) -> pd.DataFrame:
    """
    Differential expression of every cluster against the others.

    A gene is a marker of a cluster when its BH-adjusted p-value is
    below ``alpha`` and it is up by at least ``min_log_fc`` (log2 units
    of the normalized data).

    Adds to adata.uns:
    - key_added: Long table with columns 'group', 'gene', 'log_fc',
      'ave_expr', 't', 'p_value', 'p_adj', 'pct_in', 'pct_out', 'is_marker'

    Parameters
    ----------
    adata : AnnData
        Normalized data with cluster labels
    groupby : str
        Column in .obs with groups
    layer : Optional[str]
        Normalized layer (None = .X)
    reference : str
        'rest' (mean of the other groups) or the name of a group
    alpha : float
        FDR threshold
    min_log_fc : float
        Minimum log2 fold change for a marker
    key_added : str
        Key in .uns

    Returns
    -------
    table : pd.DataFrame
        Sorted by group, then t-statistic (descending)

    Examples
    --------
    >>> esc.tl.find_markers(adata, groupby='kmedoids')
    >>> esc.tl.top_markers(adata, n=5)
    """
    if groupby not in adata.obs.columns:
        raise ValueError(f"Group key '{groupby}' not found in adata.obs")

    labels = adata.obs[groupby].astype(str).values
    if hasattr(adata.obs[groupby], 'cat'):
        order = [str(c) for c in adata.obs[groupby].cat.categories]
        groups = [g for g in order if g in set(labels)]
    else:
        groups = list(pd.unique(labels))

    if len(groups) < 2:
        raise ValueError(f"Need at least two groups in '{groupby}', found {len(groups)}")

    if adata.n_obs - len(groups) < 1:
        raise ValueError("No residual degrees of freedom; need more cells than groups")

    design = dmatrix(
        "~0 + group",
        data=pd.DataFrame({'group': pd.Categorical(labels, categories=groups)}),
    )
    contrasts, tested = _group_contrasts(groups, reference)
    contrasts = pd.DataFrame(
        contrasts, index=design.design_info.column_names, columns=tested,
    )

    Y = _dense(adata, layer).T
    fit = lm_fit(Y, design)
    results = ebayes(fit, contrasts)
    ave_expr = Y.mean(axis=1)

    counts = _dense(adata, 'counts') if 'counts' in adata.layers else _dense(adata, layer)
    detected = counts > 0

    frames = []
    for j, group in enumerate(tested):
        in_group = labels == group
        log_fc = results['log_fc'][:, j]
        p_adj = results['p_adj'][:, j]
        frames.append(pd.DataFrame({
            'group': group,
            'gene': np.asarray(adata.var_names),
            'log_fc': log_fc,
            'ave_expr': ave_expr,
            't': results['t'][:, j],
            'p_value': results['p_value'][:, j],
            'p_adj': p_adj,
            'pct_in': detected[in_group].mean(axis=0),
            'pct_out': detected[~in_group].mean(axis=0),
            'is_marker': (p_adj < alpha) & (log_fc >= min_log_fc),
        }).sort_values('t', ascending=False, kind='stable'))

    table = pd.concat(frames, ignore_index=True)

    adata.uns[key_added] = table

    per_group = table.groupby('group', sort=False)['is_marker'].sum()
    logger.info(f"Marker genes per group: {dict(per_group)}")

    return table


def top_markers(
    adata: AnnData,
    n: int = 10,
    key: str = 'markers',
) -> pd.DataFrame:
    """Top ``n`` markers of every group, ranked by t-statistic."""
    if key not in adata.uns:
        raise ValueError(f"'{key}' not found in adata.uns. Run tl.find_markers first.")

    table = adata.uns[key]
    markers = table[table['is_marker']]
    return markers.groupby('group', sort=False).head(n).reset_index(drop=True)
