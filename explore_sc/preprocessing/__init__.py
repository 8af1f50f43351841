"""
Preprocessing module: Scanpy-style QC and normalization.
"""

from .quality_control import (
    calculate_qc_metrics,
    basic_qc,
    filter_cells,
    filter_genes,
    remove_spike_ins,
)
from .normalization import (
    estimate_size_factors,
    estimate_dispersions,
    vst,
    log_normalize,
    normalize,
    highly_variable,
)

__all__ = [
    "calculate_qc_metrics",
    "basic_qc",
    "filter_cells",
    "filter_genes",
    "remove_spike_ins",
    "estimate_size_factors",
    "estimate_dispersions",
    "vst",
    "log_normalize",
    "normalize",
    "highly_variable",
]
