"""scmarkers: differential features and label transfer for single-cell data

Seurat-style marker detection (Wilcoxon, bimod, ROC, t, GLM, hurdle,
DESeq2 and logistic regression tests) between groups of cells, and
co-embedding of scATAC-seq with scRNA-seq through anchor-based label
transfer. Uses scanpy's AnnData as the data structure.
"""

__version__ = "0.1.0"

from .zlm import zlm, ZlmFit, lr_test, hurdle_test
from .io import from_matrix, read_rp_matrix, read_gtf_genes
from .core import (
    TestMethod,
    DataSlot,
    Diagnostics,
    get_capabilities,
    ScMarkersError,
    EmptyFeatureSetError,
    UnknownTestError,
    MissingDependencyError,
)
from .tools import (
    find_markers,
    find_markers_matrix,
    find_all_markers,
    find_transfer_anchors,
    transfer_data,
    gene_activity_matrix,
    incorporate,
)

__all__ = [
    "ZlmFit",
    "zlm",
    "lr_test",
    "hurdle_test",
    "from_matrix",
    "read_rp_matrix",
    "read_gtf_genes",
    "TestMethod",
    "DataSlot",
    "Diagnostics",
    "get_capabilities",
    "ScMarkersError",
    "EmptyFeatureSetError",
    "UnknownTestError",
    "MissingDependencyError",
    "find_markers",
    "find_markers_matrix",
    "find_all_markers",
    "find_transfer_anchors",
    "transfer_data",
    "gene_activity_matrix",
    "incorporate",
]
