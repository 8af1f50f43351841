"""
Basic usage example of explore-sc.

This script walks through the analysis one step at a time.
"""

import explore_sc as esc

# 1. Load your data (genes in rows, cells in columns)
adata = esc.io.read("your_counts.tsv")

# 2. QC and filtering
esc.pp.calculate_qc_metrics(adata)
esc.pl.qc_histograms(adata, save="figures/qc_histograms.png")
esc.pp.filter_cells(adata, min_genes=100, max_pct_mito=20)
esc.pp.filter_genes(adata, min_cells=3)

# 3. Variance-stabilizing transformation
esc.pp.vst(adata)
esc.pp.highly_variable(adata, n_top=500)

# 4. PCA; keep the PCs explaining 80% of the variance
esc.tl.pca(adata)
n_pcs = esc.tl.select_n_components(adata, threshold=0.8)
esc.pl.pca_variance(adata, save="figures/pca_variance.png")

# 5. k-medoids; look at the elbow, then pick k
esc.tl.elbow(adata, k_range=range(1, 11))
k = esc.tl.choose_k(adata)
esc.tl.kmedoids(adata, n_clusters=k)
esc.pl.elbow_plot(adata, save="figures/elbow.png")
esc.pl.pca_scatter(adata, color='kmedoids', save="figures/pca.png")

# 6. Marker genes
esc.tl.find_markers(adata, groupby='kmedoids')
print(esc.tl.top_markers(adata, n=10))
esc.pl.marker_heatmap(adata, save="figures/marker_heatmap.png")

# 7. Write tables and the h5ad dump
esc.io.write_artifacts(adata, "results")

print(f"\nDone! {n_pcs} PCs, {k} clusters")
