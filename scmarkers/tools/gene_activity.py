"""Gene activity scores from peak accessibility counts."""

import logging

import numpy as np
import pandas as pd
from scipy import sparse

from ..io import parse_peak_names, read_gtf_genes
from ..utils.utils import get_slot_matrix

logger = logging.getLogger(__name__)

DEFAULT_SEQ_LEVELS = [str(i) for i in range(1, 23)] + ["X", "Y"]


def extend_upstream(genes: pd.DataFrame, upstream: int = 2000) -> pd.DataFrame:
    """
    Extend gene bodies towards their promoter

    ``+`` strand genes move their start left, ``-`` strand genes move their
    end right. Starts are clipped at 1.
    """
    genes = genes.copy()
    plus = (genes["strand"] != "-").to_numpy()
    genes.loc[plus, "start"] = np.maximum(genes.loc[plus, "start"] - upstream, 1)
    genes.loc[~plus, "end"] = genes.loc[~plus, "end"] + upstream
    return genes


def peak_gene_overlaps(peaks: pd.DataFrame, genes: pd.DataFrame) -> sparse.csr_matrix:
    """
    Indicator matrix (peaks x genes) of peaks overlapping gene regions

    Both frames need ``chrom``, ``start`` and ``end``; intervals are closed.
    """
    rows, cols = [], []
    peak_pos = np.arange(len(peaks))
    gene_pos = np.arange(len(genes))

    for chrom, gene_idx in pd.Series(gene_pos).groupby(genes["chrom"].to_numpy()):
        on_chrom = peak_pos[(peaks["chrom"] == chrom).to_numpy()]
        if len(on_chrom) == 0:
            continue
        starts = peaks["start"].to_numpy()[on_chrom]
        ends = peaks["end"].to_numpy()[on_chrom]
        order = np.argsort(starts, kind="mergesort")
        on_chrom, starts, ends = on_chrom[order], starts[order], ends[order]
        max_width = int((ends - starts).max())

        for g in gene_idx.to_numpy():
            gs, ge = genes["start"].iat[g], genes["end"].iat[g]
            lo = np.searchsorted(starts, gs - max_width, side="left")
            hi = np.searchsorted(starts, ge, side="right")
            hits = on_chrom[lo:hi][ends[lo:hi] >= gs]
            rows.extend(hits.tolist())
            cols.extend([g] * len(hits))

    data = np.ones(len(rows), dtype=float)
    return sparse.csr_matrix((data, (rows, cols)), shape=(len(peaks), len(genes)))


def gene_activity_matrix(
    atac,
    annotation_file,
    upstream=2000,
    seq_levels=None,
    slot="counts",
):
    """
    Sum peak counts over gene bodies extended upstream

    Parameters
    ----------
    atac : AnnData
        Cells x peaks, peak names like ``chr1:100-200`` or ``chr1-100-200``
    annotation_file : str or Path
        GTF file with ``gene`` records
    upstream : int
        Bases added on the promoter side of each gene
    seq_levels : list of str, optional
        Chromosomes to use, default 1-22, X and Y
    slot : str
        Representation of peak values to sum, default 'counts'

    Returns
    -------
    pandas.DataFrame
        Genes x cells activity. Genes sharing a name are summed; genes with
        zero total activity are dropped.
    """
    seq_levels = DEFAULT_SEQ_LEVELS if seq_levels is None else seq_levels
    genes = read_gtf_genes(annotation_file, seq_levels=seq_levels)
    genes = extend_upstream(genes, upstream=upstream)

    peaks = parse_peak_names(atac.var_names)
    overlaps = peak_gene_overlaps(peaks, genes)

    counts = get_slot_matrix(atac, slot)
    counts = sparse.csr_matrix(counts) if not sparse.issparse(counts) else counts.tocsr()
    activity = (counts @ overlaps).toarray()

    frame = pd.DataFrame(activity.T, index=genes["gene_name"].to_numpy(), columns=atac.obs_names)
    frame = frame.groupby(level=0, sort=False).sum()
    frame = frame.loc[frame.sum(axis=1) > 0]

    logger.info("Gene activity for %d genes from %d peaks", frame.shape[0], len(peaks))
    return frame
