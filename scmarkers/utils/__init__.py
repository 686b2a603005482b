"""Utility functions for scmarkers"""

from .utils import (
    calculate_variance,
    tie_sums,
    bimod_likelihood,
    bimod_lrt,
    apply_per_feature,
    to_dense,
    get_slot_matrix,
    expression_frame,
)

__all__ = [
    "calculate_variance",
    "tie_sums",
    "bimod_likelihood",
    "bimod_lrt",
    "apply_per_feature",
    "to_dense",
    "get_slot_matrix",
    "expression_frame",
]
