"""
Reading expression matrices and writing analysis artifacts.
"""

from .readwrite import (
    read,
    read_expression_matrix,
    write_table,
    write_matrix,
    write_artifacts,
)

__all__ = [
    "read",
    "read_expression_matrix",
    "write_table",
    "write_matrix",
    "write_artifacts",
]
