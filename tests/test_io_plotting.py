"""
Tests for reading and writing data, and for the figures.
"""

import gzip

import pytest
import numpy as np
import matplotlib.pyplot as plt
from anndata import AnnData


COUNTS = (
    "gene\tcell_a\tcell_b\tcell_c\n"
    "Actb\t10\t0\t3\n"
    "MT-CO1\t2\t5\t0\n"
    "Actb\t1\t1\t1\n"
)


def test_read_expression_matrix(tmp_path):
    from explore_sc.io import read_expression_matrix

    path = tmp_path / "counts.tsv"
    path.write_text(COUNTS)

    adata = read_expression_matrix(path)

    # genes in rows are turned into cells × genes
    assert adata.shape == (3, 3)
    assert list(adata.obs_names) == ['cell_a', 'cell_b', 'cell_c']
    assert adata.var_names.is_unique
    assert adata.var_names[0] == 'Actb'
    assert np.array_equal(adata.layers['counts'][:, 1], [2, 5, 0])
    assert np.array_equal(adata.X, adata.layers['counts'])


def test_read_expression_matrix_cells_as_rows(tmp_path):
    from explore_sc.io import read_expression_matrix

    path = tmp_path / "counts.tsv"
    path.write_text(COUNTS)

    adata = read_expression_matrix(path, genes_as_rows=False)

    assert list(adata.obs_names) == ['Actb', 'MT-CO1', 'Actb']
    assert list(adata.var_names) == ['cell_a', 'cell_b', 'cell_c']


@pytest.mark.parametrize("content", [
    "gene\tcell_a\tcell_b\nActb\t1\tx\n",
    "gene\tcell_a\tcell_b\nActb\t1\t-2\n",
    "gene\tcell_a\tcell_b\nActb\t1\t\n",
    "gene\n",
])
def test_read_expression_matrix_rejects_bad_input(tmp_path, content):
    from explore_sc.io import read_expression_matrix

    path = tmp_path / "bad.tsv"
    path.write_text(content)

    with pytest.raises(ValueError):
        read_expression_matrix(path)


def test_read_missing_file(tmp_path):
    from explore_sc.io import read, read_expression_matrix

    with pytest.raises(FileNotFoundError):
        read_expression_matrix(tmp_path / "missing.tsv")
    with pytest.raises(FileNotFoundError):
        read(tmp_path / "missing.tsv")


def test_read_dispatch(tmp_path):
    from explore_sc.io import read

    csv = tmp_path / "counts.csv"
    csv.write_text(COUNTS.replace("\t", ","))
    assert read(csv).shape == (3, 3)

    gz = tmp_path / "counts.txt.gz"
    with gzip.open(gz, "wt") as f:
        f.write(COUNTS)
    assert read(gz).shape == (3, 3)

    h5ad = tmp_path / "counts.h5ad"
    AnnData(X=np.ones((4, 2))).write_h5ad(h5ad)
    adata = read(h5ad)
    assert adata.shape == (4, 2)
    assert 'counts' in adata.layers

    unknown = tmp_path / "counts.xlsx"
    unknown.write_text("")
    with pytest.raises(ValueError):
        read(unknown)


def test_write_matrix_round_trip(tmp_path, synthetic):
    from explore_sc.io import read, write_matrix

    adata, _ = synthetic
    path = write_matrix(adata, tmp_path / "out" / "counts.tsv", layer='counts')

    reread = read(path)

    assert list(reread.obs_names) == list(adata.obs_names)
    assert list(reread.var_names) == list(adata.var_names)
    assert np.allclose(reread.X, adata.layers['counts'])


def test_write_artifacts_partial(tmp_path, synthetic):
    from explore_sc.io import write_artifacts
    from explore_sc.preprocessing import calculate_qc_metrics

    adata, _ = synthetic
    calculate_qc_metrics(adata)

    paths = write_artifacts(adata, tmp_path, prefix="raw_")

    # only the steps that were run are written
    assert set(paths) == {'counts', 'cell_qc', 'gene_qc', 'h5ad'}
    assert paths['cell_qc'].name == "raw_cell_qc.tsv"
    assert all(p.exists() for p in paths.values())


def test_write_artifacts_full(tmp_path, analysed):
    import pandas as pd
    from explore_sc.io import write_artifacts

    adata, _ = analysed
    paths = write_artifacts(adata, tmp_path)

    for name in ('counts', 'normalized', 'cell_qc', 'gene_qc', 'pca_scores',
                 'pca_loadings', 'pca_variance', 'elbow', 'kmedoids_clusters',
                 'kmedoids_medoids', 'de', 'markers', 'h5ad'):
        assert paths[name].exists()

    medoids = pd.read_csv(paths['kmedoids_medoids'], sep="\t", index_col=0)
    assert len(medoids) == 3
    assert set(medoids['cell']) <= set(adata.obs_names)

    markers = pd.read_csv(paths['markers'], sep="\t", index_col=0)
    assert markers['is_marker'].all()

    scores = pd.read_csv(paths['pca_scores'], sep="\t", index_col=0)
    assert scores.shape == adata.obsm['X_pca'].shape


def test_figures(tmp_path, analysed):
    import explore_sc.plotting as pl

    adata, _ = analysed

    figures = {
        'qc': pl.qc_histograms(adata, save=tmp_path / "qc.png"),
        'expression': pl.expression_histogram(adata, save=tmp_path / "expression.png"),
        'mean_variance': pl.mean_variance(adata, save=tmp_path / "mean_variance.png"),
        'pca_variance': pl.pca_variance(adata, save=tmp_path / "pca_variance.png"),
        'pca': pl.pca_scatter(adata, save=tmp_path / "pca.png"),
        'pca_23': pl.pca_scatter(adata, components=(2, 3), save=tmp_path / "pca_23.png"),
        'elbow': pl.elbow_plot(adata, save=tmp_path / "elbow.png"),
        'silhouette': pl.silhouette_plot(adata, save=tmp_path / "silhouette.png"),
        'heatmap': pl.marker_heatmap(adata, n_genes=5, save=tmp_path / "heatmap.png"),
    }

    for name, fig in figures.items():
        assert isinstance(fig, plt.Figure)
        plt.close(fig)

    for name in ('qc', 'expression', 'mean_variance', 'pca_variance', 'pca', 'pca_23',
                 'elbow', 'silhouette', 'heatmap'):
        assert (tmp_path / f"{name}.png").exists()


def test_figures_need_results(synthetic):
    import explore_sc.plotting as pl

    adata, _ = synthetic

    with pytest.raises(ValueError):
        pl.qc_histograms(adata)
    with pytest.raises(ValueError):
        pl.pca_variance(adata)
    with pytest.raises(ValueError):
        pl.pca_scatter(adata)
    with pytest.raises(ValueError):
        pl.elbow_plot(adata)
    with pytest.raises(ValueError):
        pl.silhouette_plot(adata)
    with pytest.raises(ValueError):
        pl.marker_heatmap(adata)


def test_pca_scatter_rejects_bad_components(analysed):
    import explore_sc.plotting as pl

    adata, _ = analysed

    with pytest.raises(ValueError):
        pl.pca_scatter(adata, components=(1, adata.obsm['X_pca'].shape[1] + 1))

    plt.close('all')


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
