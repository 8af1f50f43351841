"""
Tests for PCA, k-medoids and marker detection.
"""

import pytest
import numpy as np
import pandas as pd
from anndata import AnnData


def _two_blobs(n_per_blob=10, seed=0):
    rng = np.random.default_rng(seed)
    a = rng.normal(0, 0.5, size=(n_per_blob, 3))
    b = rng.normal(0, 0.5, size=(n_per_blob, 3)) + np.array([8.0, 0.0, 0.0])
    adata = AnnData(
        X=np.zeros((2 * n_per_blob, 1)),
        obs=pd.DataFrame(index=[f"cell_{i}" for i in range(2 * n_per_blob)]),
    )
    adata.obsm['X_pca'] = np.vstack([a, b])
    return adata


def test_pca(synthetic):
    from explore_sc.preprocessing import vst, highly_variable
    from explore_sc.tools import pca

    adata, _ = synthetic
    vst(adata)
    highly_variable(adata, n_top=100)
    pca(adata, n_comps=10)

    assert adata.obsm['X_pca'].shape == (adata.n_obs, 10)
    assert adata.varm['PCs'].shape == (adata.n_vars, 10)
    assert len(adata.uns['pca']['genes']) == 100

    # genes outside the highly variable set get zero loadings
    unused = ~adata.var['highly_variable'].values
    assert np.all(adata.varm['PCs'][unused] == 0)

    ratio = adata.uns['pca']['variance_ratio']
    assert np.all(np.diff(ratio) <= 1e-12)
    assert adata.uns['pca']['cumulative_variance_ratio'] == pytest.approx(np.cumsum(ratio))


def test_pca_caps_components():
    from explore_sc.tools import pca

    rng = np.random.default_rng(1)
    adata = AnnData(X=rng.normal(size=(6, 20)))
    pca(adata, n_comps=50)

    assert adata.obsm['X_pca'].shape == (6, 5)


def test_select_n_components():
    from explore_sc.tools import select_n_components

    adata = AnnData(X=np.zeros((5, 4)))
    adata.uns['pca'] = {'cumulative_variance_ratio': np.array([0.5, 0.7, 0.85, 0.95])}

    assert select_n_components(adata, threshold=0.8) == 3
    assert adata.uns['pca']['n_selected'] == 3
    assert adata.uns['pca']['threshold'] == 0.8

    # never fewer than min_comps
    assert select_n_components(adata, threshold=0.4) == 2
    # all components when the threshold is never reached
    assert select_n_components(adata, threshold=1.0) == 4

    with pytest.raises(ValueError):
        select_n_components(adata, threshold=0)


def test_select_n_components_requires_pca():
    from explore_sc.tools import select_n_components

    with pytest.raises(ValueError):
        select_n_components(AnnData(X=np.zeros((3, 3))))


def test_pam_separates_groups():
    from explore_sc.tools import pairwise_distances, pam

    x = np.array([0.0, 0.1, 0.2, 10.0, 10.1, 10.2])[:, None]
    result = pam(pairwise_distances(x), k=2)

    assert list(result.medoids) == [1, 4]
    assert list(result.labels) == [0, 0, 0, 1, 1, 1]
    assert result.cost == pytest.approx(0.4)


def test_pam_edge_cases():
    from explore_sc.tools import pairwise_distances, pam

    rng = np.random.default_rng(2)
    D = pairwise_distances(rng.normal(size=(8, 2)))

    # one cluster per object
    result = pam(D, k=8)
    assert result.cost == pytest.approx(0.0)
    assert sorted(result.labels) == list(range(8))

    # a single medoid minimizes the total distance
    result = pam(D, k=1)
    assert result.cost == pytest.approx(D.sum(axis=1).min())

    with pytest.raises(ValueError):
        pam(D, k=0)
    with pytest.raises(ValueError):
        pam(D, k=9)
    with pytest.raises(ValueError):
        pam(D[:, :4], k=2)


def test_kmedoids():
    from explore_sc.tools import kmedoids

    adata = _two_blobs()
    kmedoids(adata, n_clusters=2)

    labels = adata.obs['kmedoids']
    assert list(labels.cat.categories) == ['1', '2']
    # clusters are numbered by the position of their medoid
    assert list(labels[:10]) == ['1'] * 10
    assert list(labels[10:]) == ['2'] * 10

    info = adata.uns['kmedoids']
    assert info['method'] == 'pam'
    assert info['n_clusters'] == 2
    assert info['n_pcs'] == 3
    assert all(labels[m] == c for m, c in zip(info['medoids'], info['categories']))
    assert info['average_silhouette'] > 0.8
    assert adata.obs['kmedoids_silhouette'].min() > 0


def test_kmedoids_uses_selected_pcs():
    from explore_sc.tools import kmedoids

    adata = _two_blobs()
    adata.uns['pca'] = {'n_selected': 1}
    kmedoids(adata, n_clusters=2, key_added='pam')

    assert adata.uns['pam']['n_pcs'] == 1
    assert 'pam' in adata.obs.columns

    kmedoids(adata, n_clusters=2, n_pcs=2, key_added='pam2')
    assert adata.uns['pam2']['n_pcs'] == 2


def test_kmedoids_requires_embedding():
    from explore_sc.tools import kmedoids

    with pytest.raises(ValueError):
        kmedoids(AnnData(X=np.zeros((4, 2))), n_clusters=2)


def test_elbow_and_choose_k():
    from explore_sc.tools import elbow, choose_k

    adata = _two_blobs()
    table = elbow(adata, k_range=range(1, 7), verbose=False)

    assert list(table['k']) == [1, 2, 3, 4, 5, 6]
    assert np.isnan(table['silhouette'].iloc[0])
    assert list(adata.uns['elbow']['k']) == list(table['k'])

    assert choose_k(adata) == 2
    assert choose_k(adata, method='silhouette') == 2

    with pytest.raises(ValueError):
        choose_k(adata, method='gap')


def test_elbow_skips_impossible_k():
    from explore_sc.tools import elbow

    adata = _two_blobs(n_per_blob=2)
    table = elbow(adata, k_range=range(1, 10), verbose=False)

    assert list(table['k']) == [1, 2, 3, 4]


def test_find_elbow():
    from explore_sc.tools import find_elbow

    ks = range(1, 9)
    assert find_elbow(ks, [100, 60, 20, 18, 16, 14, 12, 10]) == 3
    assert find_elbow([1, 2], [10, 5]) == 2
    assert find_elbow([1, 2, 3, 4], [5, 5, 5, 5]) == 1

    with pytest.raises(ValueError):
        find_elbow([1, 2, 3], [1, 2])


def test_choose_k_by_silhouette():
    from explore_sc.tools import choose_k

    adata = AnnData(X=np.zeros((10, 2)))
    adata.uns['elbow'] = pd.DataFrame({
        'k': [1, 2, 3, 4],
        'cost': [10.0, 6.0, 4.0, 3.5],
        'silhouette': [np.nan, 0.3, 0.6, 0.5],
    })

    assert choose_k(adata, method='silhouette') == 3


def test_choose_k_requires_elbow():
    from explore_sc.tools import choose_k

    with pytest.raises(ValueError):
        choose_k(AnnData(X=np.zeros((3, 2))))


def test_lm_fit():
    from explore_sc.tools import lm_fit

    x = np.arange(6, dtype=float)
    design = np.column_stack([np.ones(6), x])
    Y = np.vstack([2 + 3 * x, -1 + 0.5 * x])

    fit = lm_fit(Y, design)

    assert np.asarray(fit.coefficients) == pytest.approx(np.array([[2, 3], [-1, 0.5]]))
    assert np.all(np.asarray(fit.df_residual) == 4)

    with pytest.raises(ValueError):
        lm_fit(Y[:, :5], design)
    with pytest.raises(ValueError):
        lm_fit(Y, np.column_stack([np.ones(6), np.ones(6)]))


def test_ebayes_finds_shifted_gene():
    from explore_sc.tools import lm_fit, ebayes

    rng = np.random.default_rng(3)
    groups = np.repeat([0, 1], 6)
    Y = rng.normal(5, 0.5, size=(40, 12))
    Y[0, groups == 1] += 4

    design = np.column_stack([groups == 0, groups == 1]).astype(float)
    fit = lm_fit(Y, design)
    results = ebayes(fit, np.array([-1.0, 1.0]))

    assert results['log_fc'].shape == (40, 1)
    assert results['log_fc'][0, 0] == pytest.approx(4, abs=1)
    assert np.argmax(results['t'][:, 0]) == 0
    assert results['p_adj'][0, 0] < 0.01
    # adjusted p-values never fall below the raw ones
    assert np.all(results['p_adj'] >= results['p_value'] - 1e-12)
    assert results['s2_prior'] > 0


def test_find_markers_needs_residual_df():
    from explore_sc.tools import find_markers

    # one cell per group leaves nothing to estimate the variance from
    adata = AnnData(
        X=np.array([[1.0, 2.0], [3.0, 5.0]]),
        obs=pd.DataFrame({'group': ['A', 'B']}, index=['cell_0', 'cell_1']),
    )

    with pytest.raises(ValueError):
        find_markers(adata, groupby='group')


def _grouped_adata(seed=5):
    rng = np.random.default_rng(seed)
    groups = np.repeat(['A', 'B', 'C'], 8)
    Y = rng.normal(5, 0.5, size=(24, 30))
    Y[groups == 'B', 0] += 3
    Y[groups == 'C', 1] += 3
    return AnnData(
        X=Y,
        obs=pd.DataFrame({'group': groups}, index=[f"cell_{i}" for i in range(24)]),
        var=pd.DataFrame(index=[f"Gene_{i}" for i in range(30)]),
    )


def test_find_markers_against_rest():
    from explore_sc.tools import find_markers, top_markers

    adata = _grouped_adata()
    table = find_markers(adata, groupby='group')

    assert list(pd.unique(table['group'])) == ['A', 'B', 'C']
    assert len(table) == 3 * 30
    assert set(table.columns) == {
        'group', 'gene', 'log_fc', 'ave_expr', 't', 'p_value', 'p_adj',
        'pct_in', 'pct_out', 'is_marker',
    }

    b = table[table['group'] == 'B']
    assert b['gene'].iloc[0] == 'Gene_0'
    assert b['log_fc'].iloc[0] == pytest.approx(3, abs=0.5)
    assert np.all(np.diff(b['t'].values) <= 0)

    markers = top_markers(adata, n=5)
    assert set(markers['gene']) == {'Gene_0', 'Gene_1'}
    assert list(markers.loc[markers['gene'] == 'Gene_0', 'group']) == ['B']
    assert list(markers.loc[markers['gene'] == 'Gene_1', 'group']) == ['C']


def test_find_markers_against_reference():
    from explore_sc.tools import find_markers

    adata = _grouped_adata()
    table = find_markers(adata, groupby='group', reference='A', key_added='vs_a')

    assert list(pd.unique(table['group'])) == ['B', 'C']
    assert 'vs_a' in adata.uns

    c = table[(table['group'] == 'C') & (table['gene'] == 'Gene_1')].iloc[0]
    assert c['is_marker']
    assert c['p_adj'] < 0.05

    with pytest.raises(ValueError):
        find_markers(adata, groupby='group', reference='D')


def test_find_markers_needs_two_groups():
    from explore_sc.tools import find_markers

    adata = _grouped_adata()
    adata.obs['single'] = 'A'

    with pytest.raises(ValueError):
        find_markers(adata, groupby='single')
    with pytest.raises(ValueError):
        find_markers(adata, groupby='missing')


def test_top_markers_requires_markers():
    from explore_sc.tools import top_markers

    with pytest.raises(ValueError):
        top_markers(AnnData(X=np.zeros((3, 3))))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
