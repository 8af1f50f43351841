"""
Normalization: size factors and the variance-stabilizing transformation.

Size factors, dispersions and the VST come from PyDESeq2: median-of-ratios
size factors (positive-count geometric means when every gene has a zero),
a parametric dispersion-mean trend ``disp(mu) = a0 + a1 / mu`` with a
constant fallback, and DESeq2's closed-form transformation that makes the
variance roughly independent of the mean. Every call refits on the
current counts. A plain log-normalization (Scanpy's ``normalize_total`` +
``log1p``) is available for comparison.
"""

import warnings

import numpy as np
import pandas as pd
import scanpy as sc
from anndata import AnnData
from pydeseq2.dds import DeseqDataSet
from pydeseq2.default_inference import DefaultInference
from scipy.stats import trim_mean
from statsmodels.tools.sm_exceptions import DomainWarning
from typing import Optional, Dict, Tuple
import logging

from .quality_control import _dense

logger = logging.getLogger(__name__)

MIN_DISPERSION = 1e-8


def _counts(adata: AnnData, layer: Optional[str]) -> np.ndarray:
    if layer is not None and layer not in adata.layers:
        raise ValueError(f"Layer '{layer}' not found in adata.layers")
    return _dense(adata, layer)


def _size_factor_method(X: np.ndarray) -> str:
    if (X > 0).all(axis=0).any():
        return 'ratio'
    logger.warning("Every gene has a zero count; using positive-count geometric means")
    return 'poscounts'


def _deseq_dataset(adata: AnnData, X: np.ndarray) -> DeseqDataSet:
    empty = X.sum(axis=1) == 0
    if empty.any():
        raise ValueError(
            f"{empty.sum()} cells have zero total counts; filter them first"
        )

    # DESeq2 requires integer counts
    counts = pd.DataFrame(
        np.round(X).astype(int),
        index=adata.obs_names.astype(str),
        columns=adata.var_names.astype(str),
    )
    return DeseqDataSet(
        counts=counts,
        metadata=pd.DataFrame(index=counts.index),
        design="~1",
        inference=DefaultInference(n_cpus=1),
        quiet=True,
    )


def estimate_size_factors(
    adata: AnnData,
    layer: Optional[str] = 'counts',
) -> np.ndarray:
    """
    Median-of-ratios size factors.

    Each cell's factor is the median ratio of its counts to the per-gene
    geometric mean. When every gene has a zero somewhere (typical for
    single-cell data) the geometric means are taken over positive counts
    only (DESeq2's "poscounts").

    Adds to adata.obs:
    - 'size_factor'

    Parameters
    ----------
    adata : AnnData
        Data with raw counts
    layer : Optional[str]
        Layer with counts (None = .X)

    Returns
    -------
    size_factors : np.ndarray
        One factor per cell
    """
    X = _counts(adata, layer)
    dds = _deseq_dataset(adata, X)
    dds.fit_size_factors(fit_type=_size_factor_method(X))

    size_factors = np.asarray(dds.obs['size_factors'], dtype=np.float64)
    adata.obs['size_factor'] = size_factors

    logger.info(
        f"Size factors: min={size_factors.min():.3f}, "
        f"median={np.median(size_factors):.3f}, max={size_factors.max():.3f}"
    )

    return size_factors


def _fit_vst(adata: AnnData, layer: Optional[str]) -> Tuple[DeseqDataSet, Dict[str, object]]:
    """
    Fit size factors, dispersions and the trend, then apply the VST.

    Results are copied into ``adata`` (size factors, per-gene dispersions
    and ``uns['vst']``); the transformed values stay in the returned
    dataset's ``layers['vst_counts']``.
    """
    X = _counts(adata, layer)
    dds = _deseq_dataset(adata, X)

    with warnings.catch_warnings():
        # the trend is a Gamma GLM with identity link
        warnings.simplefilter("ignore", DomainWarning)
        dds.fit_size_factors(fit_type=_size_factor_method(X))
        dds.vst(use_design=False)

    size_factors = np.asarray(dds.obs['size_factors'], dtype=np.float64)
    genewise = np.asarray(dds.varm['vst_genewise_dispersions'], dtype=np.float64)
    fitted = np.asarray(dds.varm['vst_fitted_dispersions'], dtype=np.float64)

    if getattr(dds, 'fit_type', 'parametric') == 'parametric' and 'vst_trend_coeffs' in dds.uns:
        a0, a1 = np.asarray(dds.uns['vst_trend_coeffs'], dtype=np.float64)
        trend = {
            'fit_type': 'parametric',
            'asympt_disp': float(a0),
            'extra_pois': float(a1),
        }
        logger.info(f"Dispersion trend: {a0:.4f} + {a1:.4f} / mean")
    else:
        min_disp = getattr(dds, 'min_disp', MIN_DISPERSION)
        use = genewise > 10 * min_disp
        alpha = float(trim_mean(genewise[use], 0.001)) if use.any() else min_disp
        trend = {'fit_type': 'mean', 'mean_disp': alpha}
        logger.warning(f"Parametric dispersion trend unavailable; using mean dispersion {alpha:.4g}")

    adata.obs['size_factor'] = size_factors
    adata.var['base_mean'] = (X / size_factors[:, None]).mean(axis=0)
    adata.var['dispersion'] = genewise
    adata.var['dispersion_fit'] = fitted
    adata.uns['vst'] = trend

    return dds, trend


def estimate_dispersions(
    adata: AnnData,
    layer: Optional[str] = 'counts',
) -> Dict[str, object]:
    """
    Estimate gene-wise dispersions and the dispersion-mean trend.

    Size factors are refitted on the current counts. The trend is
    ``a0 + a1 / mean``; if it cannot be fitted with positive coefficients
    a constant (trimmed mean) dispersion is used.

    Adds to adata.obs:
    - 'size_factor'

    Adds to adata.var:
    - 'base_mean': Mean normalized count
    - 'dispersion': Gene-wise dispersion
    - 'dispersion_fit': Trend value

    Adds to adata.uns:
    - 'vst': Trend type and coefficients

    Returns
    -------
    trend : Dict[str, object]
        The same content as adata.uns['vst']
    """
    _, trend = _fit_vst(adata, layer)
    return trend


def vst(
    adata: AnnData,
    layer: Optional[str] = 'counts',
    copy: bool = False,
) -> Optional[AnnData]:
    """
    Variance-stabilizing transformation of raw counts.

    Size factors and the dispersion trend are always re-estimated from
    the counts in ``layer``, so results of an earlier call on other cells
    or genes are never reused. Values are on a log2-like scale.

    Adds to adata:
    - .X and .layers['vst']: Transformed values
    - .obs['size_factor'], .var['base_mean', 'dispersion', 'dispersion_fit']
    - .uns['vst']: Trend type and coefficients
    - .uns['normalization']: {'method': 'vst', 'layer': 'vst'}

    Parameters
    ----------
    adata : AnnData
        Data with raw counts
    layer : Optional[str]
        Layer with counts (None = .X)
    copy : bool
        Return copy

    Returns
    -------
    adata : Optional[AnnData]
        Transformed data if copy=True

    Examples
    --------
    >>> esc.pp.vst(adata)
    >>> adata.layers['vst'].shape == adata.shape
    True
    """
    if copy:
        adata = adata.copy()

    dds, trend = _fit_vst(adata, layer)
    transformed = np.asarray(dds.layers['vst_counts'], dtype=np.float64)

    adata.layers['vst'] = transformed
    adata.X = transformed.copy()
    adata.uns['normalization'] = {'method': 'vst', 'layer': 'vst'}

    logger.info(
        f"VST ({trend['fit_type']}): values in "
        f"[{transformed.min():.2f}, {transformed.max():.2f}]"
    )

    if copy:
        return adata


def log_normalize(
    adata: AnnData,
    target_sum: float = 1e4,
    layer: Optional[str] = 'counts',
    copy: bool = False,
) -> Optional[AnnData]:
    """
    Library-size normalization followed by log2(x + 1).

    Adds to adata:
    - .X and .layers['lognorm']
    - .uns['normalization']: {'method': 'log', 'layer': 'lognorm'}
    """
    if copy:
        adata = adata.copy()

    if layer is not None and layer not in adata.layers:
        raise ValueError(f"Layer '{layer}' not found in adata.layers")
    X = adata.X if layer is None else adata.layers[layer]
    adata.X = X.astype(np.float64)

    sc.pp.normalize_total(adata, target_sum=target_sum)
    sc.pp.log1p(adata, base=2)

    adata.layers['lognorm'] = adata.X.copy()
    adata.uns['normalization'] = {'method': 'log', 'layer': 'lognorm'}

    logger.info(f"Log-normalized to {target_sum:.0f} counts per cell")

    if copy:
        return adata


def normalize(
    adata: AnnData,
    method: str = 'vst',
    copy: bool = False,
    **kwargs,
) -> Optional[AnnData]:
    """
    Normalize with the chosen method ('vst' or 'log').

    Parameters
    ----------
    adata : AnnData
        Data with raw counts
    method : str
        'vst': Variance-stabilizing transformation
        'log': Library-size normalization + log2(x + 1)
    copy : bool
        Return copy
    **kwargs
        Passed to the method
    """
    if method == 'vst':
        return vst(adata, copy=copy, **kwargs)
    if method == 'log':
        return log_normalize(adata, copy=copy, **kwargs)
    raise ValueError(f"Unknown normalization method: {method}")


def highly_variable(
    adata: AnnData,
    n_top: int = 500,
    layer: Optional[str] = None,
) -> np.ndarray:
    """
    Flag the genes with the largest variance of normalized values.

    Adds to adata.var:
    - 'norm_variance'
    - 'highly_variable'
    """
    if n_top < 1:
        raise ValueError("n_top must be positive")

    X = _dense(adata, layer)
    variances = X.var(axis=0)

    n_top = min(n_top, adata.n_vars)
    top = np.argsort(variances)[::-1][:n_top]
    mask = np.zeros(adata.n_vars, dtype=bool)
    mask[top] = True

    adata.var['norm_variance'] = variances
    adata.var['highly_variable'] = mask

    logger.info(f"Selected {n_top} most variable genes")

    return mask
