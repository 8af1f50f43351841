"""
Basic tests for the explore-sc package.
"""

import pytest
import numpy as np


def test_imports():
    """Test that all modules can be imported."""
    import explore_sc
    import explore_sc.io
    import explore_sc.preprocessing as pp
    import explore_sc.tools as tl
    import explore_sc.plotting as pl
    import explore_sc.validation

    assert explore_sc.pp is pp
    assert explore_sc.tl is tl
    assert explore_sc.pl is pl


def test_synthetic_data_generation():
    """Test synthetic data generation."""
    from explore_sc.validation import generate_synthetic_data

    adata, truth = generate_synthetic_data(
        n_cells=60,
        n_genes=200,
        n_clusters=3,
        n_markers=10,
        seed=42,
    )

    assert adata.n_obs == 60
    assert adata.n_vars == 200
    assert 'counts' in adata.layers
    assert len(truth['labels']) == 60
    assert sorted(truth['markers']) == ['0', '1', '2']
    assert all(len(genes) == 10 for genes in truth['markers'].values())
    assert np.all(adata.X >= 0)
    assert np.allclose(adata.X, np.round(adata.X))


def test_synthetic_data_is_reproducible():
    from explore_sc.validation import generate_synthetic_data

    a, _ = generate_synthetic_data(n_cells=30, n_genes=100, n_markers=5, seed=3)
    b, _ = generate_synthetic_data(n_cells=30, n_genes=100, n_markers=5, seed=3)

    assert np.array_equal(a.X, b.X)


def test_synthetic_data_rejects_too_many_markers():
    from explore_sc.validation import SyntheticDataGenerator

    with pytest.raises(ValueError):
        SyntheticDataGenerator(n_genes=50, n_clusters=3, n_markers=20)


def test_run_analysis_recovers_clusters(analysed):
    """Test the full analysis on synthetic data."""
    from explore_sc.validation import evaluate_clustering

    adata, truth = analysed

    assert adata.obs['kmedoids'].nunique() == 3
    assert 'X_pca' in adata.obsm
    assert 'vst' in adata.layers

    metrics = evaluate_clustering(truth['labels'], adata.obs['kmedoids'])
    assert metrics['ARI'] > 0.9

    summary = adata.uns['analysis']
    assert summary['k'] == 3
    assert summary['n_cells'] == adata.n_obs
    assert summary['n_markers'] > 0
    assert 1 <= summary['n_pcs'] <= adata.obsm['X_pca'].shape[1]


def test_run_analysis_recovers_markers(analysed):
    from explore_sc.validation import marker_recovery

    adata, truth = analysed

    recovery = marker_recovery(adata, truth)

    assert len(recovery) == 3
    assert sorted(recovery['true_cluster']) == ['0', '1', '2']
    assert recovery['precision'].min() > 0.8
    assert recovery['recall'].min() > 0.5


def test_run_analysis_chooses_k(synthetic):
    from explore_sc import run_analysis

    adata, _ = synthetic
    run_analysis(adata, plots=False, verbose=False, max_k=6)

    k = adata.uns['analysis']['k']
    assert 2 <= k <= 6
    assert list(adata.uns['elbow']['k']) == [1, 2, 3, 4, 5, 6]


def test_run_analysis_log_normalization(synthetic):
    from explore_sc import run_analysis

    adata, _ = synthetic
    run_analysis(adata, plots=False, verbose=False, normalization='log', n_clusters=3, n_pcs=5)

    assert 'lognorm' in adata.layers
    assert adata.uns['normalization']['method'] == 'log'
    assert adata.uns['analysis']['n_pcs'] == 5


def test_run_analysis_rejects_unknown_parameter(synthetic):
    from explore_sc import run_analysis

    adata, _ = synthetic
    with pytest.raises(TypeError):
        run_analysis(adata, plots=False, n_cluster=3)


def test_run_analysis_writes_artifacts(synthetic, tmp_path):
    from pathlib import Path
    import anndata
    from explore_sc import run_analysis

    adata, _ = synthetic
    run_analysis(adata, output_dir=tmp_path, verbose=False, n_clusters=3)

    artifacts = adata.uns['analysis']['artifacts']
    for name in ('counts', 'normalized', 'pca_scores', 'pca_variance',
                 'kmedoids_clusters', 'elbow', 'markers', 'de', 'h5ad'):
        assert name in artifacts
        assert Path(artifacts[name]).exists()

    for figure in ('qc_histograms', 'pca_variance', 'pca_kmedoids', 'kmedoids_elbow',
                   'kmedoids_silhouette', 'marker_heatmap'):
        assert (tmp_path / 'figures' / f'{figure}.png').exists()

    reloaded = anndata.read_h5ad(tmp_path / 'analysis.h5ad')
    assert reloaded.n_obs == adata.n_obs
    assert list(reloaded.obs['kmedoids']) == list(adata.obs['kmedoids'])
    # the dump carries the list of artifacts too
    saved = reloaded.uns['analysis']['artifacts']
    assert {'h5ad', 'markers', 'de'} <= set(saved)
    assert saved['h5ad'] == str(tmp_path / 'analysis.h5ad')


def test_run_analysis_ignores_earlier_normalization(synthetic):
    from explore_sc import run_analysis
    import explore_sc.preprocessing as pp

    adata, _ = synthetic
    fresh = adata.copy()

    # normalized before filtering: the trend and size factors must not be reused
    pp.vst(adata)
    run_analysis(adata, plots=False, verbose=False, n_clusters=3, min_cells=60)
    run_analysis(fresh, plots=False, verbose=False, n_clusters=3, min_cells=60)

    assert adata.n_vars == fresh.n_vars
    assert adata.uns['vst']['fit_type'] == fresh.uns['vst']['fit_type']
    for key, value in fresh.uns['vst'].items():
        if key != 'fit_type':
            assert adata.uns['vst'][key] == pytest.approx(value)
    assert np.allclose(adata.obs['size_factor'], fresh.obs['size_factor'])
    assert np.allclose(adata.layers['vst'], fresh.layers['vst'])


def test_run_analysis_from_file(synthetic, tmp_path):
    from explore_sc import run_analysis
    from explore_sc.io import write_matrix

    adata, _ = synthetic
    path = write_matrix(adata, tmp_path / 'counts.tsv')

    result = run_analysis(path, plots=False, verbose=False, n_clusters=3)

    assert result.n_obs == adata.n_obs
    assert result.obs['kmedoids'].nunique() == 3


def test_benchmark_normalizations(synthetic):
    from explore_sc.validation import benchmark_normalizations

    adata, truth = synthetic
    results = benchmark_normalizations(adata, truth, n_clusters=3)

    assert list(results['method']) == ['vst', 'log']
    assert (results['ARI'] > 0.8).all()
    # the input is left untouched
    assert 'kmedoids' not in adata.obs.columns


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
