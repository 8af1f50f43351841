"""
Validation framework: Synthetic data generation and benchmarking.
"""

from .synthetic import generate_synthetic_data, SyntheticDataGenerator
from .benchmark import evaluate_clustering, marker_recovery, benchmark_normalizations

__all__ = [
    "generate_synthetic_data",
    "SyntheticDataGenerator",
    "evaluate_clustering",
    "marker_recovery",
    "benchmark_normalizations",
]
