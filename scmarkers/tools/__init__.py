"""Marker detection and label transfer tools"""

from .find_markers import find_markers, find_markers_matrix, find_all_markers, assemble_results
from .de_tests import run_test, STRATEGIES
from .anchors import AnchorSet, find_transfer_anchors, transfer_data
from .gene_activity import gene_activity_matrix
from .incorporate import incorporate

__all__ = [
    "find_markers",
    "find_markers_matrix",
    "find_all_markers",
    "assemble_results",
    "run_test",
    "STRATEGIES",
    "AnchorSet",
    "find_transfer_anchors",
    "transfer_data",
    "gene_activity_matrix",
    "incorporate",
]
