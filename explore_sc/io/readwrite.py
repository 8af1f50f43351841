"""
Loading count matrices into AnnData and dumping results to disk.

Inputs are usually a delimited text matrix with genes in rows and cells in
columns. Outputs are plain tab-separated tables plus an ``.h5ad`` dump of
the whole object.
"""

import numpy as np
import pandas as pd
from anndata import AnnData
import anndata
from pathlib import Path
from typing import Optional, Dict, Union
import logging

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_TEXT_SUFFIXES = {".tsv": "\t", ".txt": "\t", ".tab": "\t", ".csv": ","}


def read_expression_matrix(
    path: PathLike,
    sep: str = "\t",
    genes_as_rows: bool = True,
    first_column_index: bool = True,
) -> AnnData:
    """
    Read a delimited count matrix into AnnData.

    Parameters
    ----------
    path : str or Path
        Text file (optionally gzipped)
    sep : str
        Field delimiter
    genes_as_rows : bool
        Rows are genes and columns are cells. The matrix is transposed
        so that the result is cells × genes.
    first_column_index : bool
        First column holds the row names

    Returns
    -------
    adata : AnnData
        Counts in .X and in .layers['counts']

    Examples
    --------
    >>> adata = esc.io.read_expression_matrix("counts.tsv")
    >>> adata.n_obs  # number of cell columns in the file
    73
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Expression matrix not found: {path}")

    df = pd.read_csv(path, sep=sep, index_col=0 if first_column_index else None)

    if df.shape[0] == 0 or df.shape[1] == 0:
        raise ValueError(f"Empty expression matrix in {path}")

    non_numeric = [c for c in df.columns if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        raise ValueError(
            f"Non-numeric columns in {path}: {', '.join(map(str, non_numeric[:5]))}"
        )

    if df.isna().any().any():
        raise ValueError(f"Missing values in {path}")

    if genes_as_rows:
        df = df.T

    X = df.to_numpy(dtype=np.float64)
    if (X < 0).any():
        raise ValueError("Expression matrix contains negative values")

    adata = AnnData(
        X=X,
        obs=pd.DataFrame(index=df.index.astype(str)),
        var=pd.DataFrame(index=df.columns.astype(str)),
    )
    adata.var_names_make_unique()
    adata.layers['counts'] = adata.X.copy()

    logger.info(f"Read {path.name}: {adata.n_obs} cells × {adata.n_vars} genes")

    return adata


def read(path: PathLike, **kwargs) -> AnnData:
    """
    Read a dataset, choosing the reader from the file suffix.

    Supported: ``.h5ad``, 10x directories and ``.mtx`` files, and
    ``.tsv``/``.txt``/``.tab``/``.csv`` text matrices (optionally ``.gz``).
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input not found: {path}")

    if path.is_dir():
        import scanpy as sc
        adata = sc.read_10x_mtx(path, **kwargs)
        adata.layers['counts'] = adata.X.copy()
        return adata

    suffixes = [s.lower() for s in path.suffixes]
    if suffixes and suffixes[-1] == ".gz":
        suffixes = suffixes[:-1]
    suffix = suffixes[-1] if suffixes else ""

    if suffix == ".h5ad":
        adata = anndata.read_h5ad(path)
        if 'counts' not in adata.layers:
            adata.layers['counts'] = adata.X.copy()
        return adata

    if suffix == ".mtx":
        import scanpy as sc
        adata = sc.read_mtx(path, **kwargs)
        adata.layers['counts'] = adata.X.copy()
        return adata

    if suffix in _TEXT_SUFFIXES:
        kwargs.setdefault("sep", _TEXT_SUFFIXES[suffix])
        return read_expression_matrix(path, **kwargs)

    raise ValueError(f"Unknown file format: {path.name}")


def write_table(df: pd.DataFrame, path: PathLike) -> Path:
    """Write a DataFrame as a tab-separated file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, sep="\t")
    return path


def write_matrix(
    adata: AnnData,
    path: PathLike,
    layer: Optional[str] = None,
    genes_as_rows: bool = True,
) -> Path:
    """
    Write an expression matrix as TSV.

    Parameters
    ----------
    adata : AnnData
        Data
    path : str or Path
        Output file
    layer : Optional[str]
        Layer to write (None = .X)
    genes_as_rows : bool
        Write genes × cells, the orientation of the input files
    """
    X = adata.X if layer is None else adata.layers[layer]
    if hasattr(X, 'toarray'):
        X = X.toarray()

    df = pd.DataFrame(np.asarray(X), index=adata.obs_names, columns=adata.var_names)
    if genes_as_rows:
        df = df.T
        df.index.name = "gene"
    else:
        df.index.name = "cell"

    return write_table(df, path)


def write_artifacts(
    adata: AnnData,
    output_dir: PathLike,
    prefix: str = "",
) -> Dict[str, Path]:
    """
    Write every analysis result present in ``adata``.

    Tables are written only for the steps that have been run, so this can
    be called at any point of the analysis.
    When a run summary is present in ``adata.uns['analysis']`` the list of
    artifacts is recorded there before the ``.h5ad`` dump is written.

    Parameters
    ----------
    adata : AnnData
        Analysed data
    output_dir : str or Path
        Output directory (created if needed)
    prefix : str
        Prefix for every file name

    Returns
    -------
    paths : Dict[str, Path]
        Artifact name → written file
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    def out(name: str) -> Path:
        return output_dir / f"{prefix}{name}"

    paths = {}

    if 'counts' in adata.layers:
        paths['counts'] = write_matrix(adata, out("filtered_counts.tsv"), layer='counts')

    if 'normalization' in adata.uns:
        paths['normalized'] = write_matrix(
            adata, out("normalized.tsv"), layer=adata.uns['normalization']['layer']
        )

    qc_obs = [c for c in ('n_genes', 'total_counts', 'pct_mito', 'pct_spike', 'size_factor')
              if c in adata.obs.columns]
    if qc_obs:
        paths['cell_qc'] = write_table(adata.obs[qc_obs], out("cell_qc.tsv"))

    qc_var = [c for c in ('n_cells', 'total_counts', 'mean_counts', 'base_mean',
                          'dispersion', 'dispersion_fit', 'highly_variable')
              if c in adata.var.columns]
    if qc_var:
        paths['gene_qc'] = write_table(adata.var[qc_var], out("gene_qc.tsv"))

    if 'X_pca' in adata.obsm:
        scores = adata.obsm['X_pca']
        columns = [f"PC{i + 1}" for i in range(scores.shape[1])]
        paths['pca_scores'] = write_table(
            pd.DataFrame(scores, index=adata.obs_names, columns=columns),
            out("pca_scores.tsv"),
        )
        loadings = pd.DataFrame(adata.varm['PCs'], index=adata.var_names, columns=columns)
        paths['pca_loadings'] = write_table(loadings, out("pca_loadings.tsv"))

        pca_info = adata.uns['pca']
        variance = pd.DataFrame(
            {
                'variance': pca_info['variance'],
                'variance_ratio': pca_info['variance_ratio'],
                'cumulative_variance_ratio': pca_info['cumulative_variance_ratio'],
            },
            index=pd.Index(columns, name="component"),
        )
        paths['pca_variance'] = write_table(variance, out("pca_variance.tsv"))

    if 'elbow' in adata.uns:
        paths['elbow'] = write_table(adata.uns['elbow'], out("kmedoids_elbow.tsv"))

    for key, info in adata.uns.items():
        if not (isinstance(info, dict) and info.get('method') == 'pam'):
            continue
        columns = [key]
        if f"{key}_silhouette" in adata.obs.columns:
            columns.append(f"{key}_silhouette")
        paths[f'{key}_clusters'] = write_table(adata.obs[columns], out(f"{key}_clusters.tsv"))

        medoids = pd.DataFrame(
            {'cell': list(info['medoids'])},
            index=pd.Index(list(info['categories']), name="cluster"),
        )
        paths[f'{key}_medoids'] = write_table(medoids, out(f"{key}_medoids.tsv"))

    if 'markers' in adata.uns:
        table = adata.uns['markers']
        paths['de'] = write_table(table, out("differential_expression.tsv"))
        paths['markers'] = write_table(table[table['is_marker']], out("marker_genes.tsv"))

    h5ad_path = out("analysis.h5ad")
    paths['h5ad'] = h5ad_path
    if 'analysis' in adata.uns:
        adata.uns['analysis']['artifacts'] = {name: str(path) for name, path in paths.items()}
    adata.write_h5ad(h5ad_path)

    logger.info(f"Wrote {len(paths)} artifacts to {output_dir}")

    return paths
