#!/usr/bin/env python
"""
Exploratory analysis of a count matrix from the command line.

Usage:
    python examples/run_analysis.py counts.tsv --output-dir results
    python examples/run_analysis.py --synthetic --output-dir results
"""

import argparse
import logging

import matplotlib
matplotlib.use("Agg")

import explore_sc as esc

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def main(args):
    # =========================================================================
    # 1. Load Data
    # =========================================================================
    truth = None
    if args.synthetic:
        logger.info("Generating synthetic dataset...")
        adata, truth = esc.validation.generate_synthetic_data(
            n_cells=args.n_cells,
            n_clusters=args.true_clusters,
            seed=args.seed,
        )
    else:
        adata = esc.io.read(args.input)
    logger.info(f"Raw data: {adata.shape}")

    # =========================================================================
    # 2. Analysis
    # =========================================================================
    adata = esc.run_analysis(
        adata,
        output_dir=args.output_dir,
        plots=not args.no_plots,
        normalization=args.normalization,
        min_genes=args.min_genes,
        max_pct_mito=args.max_pct_mito,
        min_cells=args.min_cells,
        n_top_genes=args.n_top_genes,
        variance_threshold=args.variance_threshold,
        n_pcs=args.n_pcs,
        max_k=args.max_k,
        n_clusters=args.n_clusters,
        k_method=args.k_method,
        alpha=args.alpha,
        min_log_fc=args.min_log_fc,
    )

    # =========================================================================
    # 3. Report
    # =========================================================================
    summary = adata.uns['analysis']
    logger.info(
        f"{summary['n_cells']} cells, {summary['n_genes']} genes, "
        f"{summary['n_pcs']} PCs, k={summary['k']}, {summary['n_markers']} markers"
    )
    if summary['n_markers'] > 0:
        print(esc.tl.top_markers(adata, n=5).to_string(index=False))

    if truth is not None:
        metrics = esc.validation.evaluate_clustering(truth['labels'], adata.obs['kmedoids'])
        logger.info(f"Agreement with true clusters: {metrics}")
        if summary['n_markers'] > 0:
            esc.validation.marker_recovery(adata, truth)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Exploratory scRNA-seq analysis")
    parser.add_argument('input', nargs='?', help='Count matrix (genes × cells TSV, h5ad, mtx)')
    parser.add_argument('--synthetic', action='store_true', help='Use a synthetic dataset')
    parser.add_argument('--n-cells', type=int, default=73)
    parser.add_argument('--true-clusters', type=int, default=3)
    parser.add_argument('--seed', type=int, default=0)
    parser.add_argument('--output-dir', type=str, default='results')
    parser.add_argument('--no-plots', action='store_true', help='Skip figures')
    parser.add_argument('--normalization', choices=['vst', 'log'], default='vst')
    parser.add_argument('--min-genes', type=int, default=esc.DEFAULTS['min_genes'])
    parser.add_argument('--max-pct-mito', type=float, default=esc.DEFAULTS['max_pct_mito'])
    parser.add_argument('--min-cells', type=int, default=esc.DEFAULTS['min_cells'])
    parser.add_argument('--n-top-genes', type=int, default=esc.DEFAULTS['n_top_genes'])
    parser.add_argument('--variance-threshold', type=float,
                        default=esc.DEFAULTS['variance_threshold'])
    parser.add_argument('--n-pcs', type=int, default=None, help='Override the variance threshold')
    parser.add_argument('--max-k', type=int, default=esc.DEFAULTS['max_k'])
    parser.add_argument('--n-clusters', type=int, default=None, help='Override the elbow')
    parser.add_argument('--k-method', choices=['elbow', 'silhouette'], default='elbow')
    parser.add_argument('--alpha', type=float, default=esc.DEFAULTS['alpha'])
    parser.add_argument('--min-log-fc', type=float, default=esc.DEFAULTS['min_log_fc'])

    args = parser.parse_args()
    if args.input is None and not args.synthetic:
        parser.error("give an input file or --synthetic")

    main(args)
