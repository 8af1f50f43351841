import matplotlib

matplotlib.use("Agg")

import pytest


@pytest.fixture
def synthetic():
    """73 cells, 3 clusters with 40 markers each."""
    from explore_sc.validation import generate_synthetic_data

    return generate_synthetic_data(
        n_cells=73, n_genes=400, n_clusters=3, n_markers=40, marker_fold=10.0, seed=7,
    )


@pytest.fixture
def analysed(synthetic):
    """Synthetic data run through the analysis with k fixed to 3."""
    from explore_sc import run_analysis

    adata, truth = synthetic
    run_analysis(adata, plots=False, verbose=False, n_clusters=3)
    return adata, truth
