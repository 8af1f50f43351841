"""
explore-sc: exploratory analysis of single-cell RNA-seq matrices

Filter, variance-stabilize, reduce, cluster with k-medoids and find
marker genes, with a Scanpy-style interface on AnnData.
"""

__version__ = "0.1.0"

from . import io
from . import preprocessing as pp
from . import tools as tl
from . import plotting as pl
from . import validation
from .pipeline import run_analysis, DEFAULTS

__all__ = ["io", "pp", "tl", "pl", "validation", "run_analysis", "DEFAULTS"]
