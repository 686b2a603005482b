"""
Data import/export functions for scmarkers.

Builds AnnData objects from features x cells tables and reads the inputs
of the label transfer pipeline: regulatory potential (RP) score matrices
and GTF gene annotations.
"""

import csv
import re
import warnings
from pathlib import Path
from typing import Optional, Union, Sequence

import numpy as np
import pandas as pd
import anndata


def from_matrix(
    exprs: Union[np.ndarray, pd.DataFrame],
    obs: Optional[pd.DataFrame] = None,
    var: Optional[pd.DataFrame] = None,
    layer: Optional[str] = None,
    check_sanity: bool = False,
) -> anndata.AnnData:
    """
    Create AnnData from a features x cells matrix.

    Parameters
    ----------
    exprs : np.ndarray or pd.DataFrame
        Values with features as rows and cells as columns
    obs : pd.DataFrame, optional
        Cell metadata, indexed by cell id
    var : pd.DataFrame, optional
        Feature metadata, indexed by feature id
    layer : str, optional
        Also store the values in ``layers[layer]`` (e.g. 'counts')
    check_sanity : bool
        Warn if the values do not look log-transformed

    Returns
    -------
    anndata.AnnData
        AnnData object (cells x features)
    """
    if isinstance(exprs, pd.DataFrame):
        X = exprs.to_numpy(dtype=float)
        if var is None:
            var = pd.DataFrame(index=exprs.index.astype(str))
        if obs is None:
            obs = pd.DataFrame(index=exprs.columns.astype(str))
    else:
        X = np.asarray(exprs, dtype=float)

    n_features, n_cells = X.shape

    if var is None:
        var = pd.DataFrame(index=[f"feature_{i}" for i in range(n_features)])
    if obs is None:
        obs = pd.DataFrame(index=[f"cell_{i}" for i in range(n_cells)])

    if check_sanity:
        _sanity_check(X)

    adata = anndata.AnnData(X=X.T.copy(), obs=obs.copy(), var=var.copy())
    if layer is not None:
        adata.layers[layer] = X.T.copy()
    return adata


def _sanity_check(X: np.ndarray) -> None:
    """Check if data appears log-transformed."""
    X_nonzero = X[X != 0]

    if len(X_nonzero) == 0:
        warnings.warn("All expression values are zero")
        return

    max_val = np.max(X_nonzero)

    if max_val > 100:
        warnings.warn(
            "Maximum expression value > 100. Data may not be log-transformed. "
            "Set check_sanity=False to override."
        )


def read_rp_matrix(path: Union[str, Path]) -> pd.DataFrame:
    """
    Read a regulatory potential matrix (genes x cells).

    ``.h5ad`` files are read with anndata and transposed; anything else is
    read with pandas, tab separated unless the suffix is ``.csv``.
    """
    path = Path(path)
    suffixes = "".join(path.suffixes)
    if path.suffix == ".h5ad":
        adata = anndata.read_h5ad(path)
        X = adata.X.toarray() if hasattr(adata.X, "toarray") else np.asarray(adata.X)
        return pd.DataFrame(X.T, index=adata.var_names, columns=adata.obs_names)
    sep = "," if ".csv" in suffixes else "\t"
    return pd.read_csv(path, sep=sep, index_col=0)


_GTF_COLUMNS = ["seqname", "source", "feature", "start", "end", "score", "strand", "frame", "attribute"]


def read_gtf_genes(path: Union[str, Path], seq_levels: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """
    Read gene records from a GTF file.

    Parameters
    ----------
    path : str or Path
        GTF file (optionally gzipped)
    seq_levels : sequence of str, optional
        Chromosomes to keep, with or without the ``chr`` prefix

    Returns
    -------
    pandas.DataFrame
        Columns ``chrom``, ``start``, ``end``, ``strand``, ``gene_name``
        (1-based, inclusive coordinates as in the GTF)
    """
    gtf = pd.read_csv(
        path,
        sep="\t",
        comment="#",
        header=None,
        names=_GTF_COLUMNS,
        dtype={"seqname": str},
    )
    genes = gtf[gtf["feature"] == "gene"].copy()

    name = genes["attribute"].str.extract(r'gene_name "([^"]+)"', expand=False)
    gene_id = genes["attribute"].str.extract(r'gene_id "([^"]+)"', expand=False)
    genes["gene_name"] = name.fillna(gene_id)

    genes["chrom"] = genes["seqname"].map(_strip_chr)
    if seq_levels is not None:
        keep = {_strip_chr(str(s)) for s in seq_levels}
        genes = genes[genes["chrom"].isin(keep)]

    genes = genes.dropna(subset=["gene_name"])
    return genes[["chrom", "start", "end", "strand", "gene_name"]].reset_index(drop=True)


def _strip_chr(name: str) -> str:
    return re.sub(r"^chr", "", name)


_PEAK_PATTERN = re.compile(r"^(?P<chrom>[^:_\-]+)[:_\-](?P<start>\d+)[:_\-](?P<end>\d+)$")


def parse_peak_names(names: Sequence[str]) -> pd.DataFrame:
    """
    Split peak names such as ``chr1:100-200`` or ``chr1-100-200``.

    Returns
    -------
    pandas.DataFrame
        Columns ``chrom`` (without ``chr``), ``start``, ``end`` in the
        order of ``names``

    Raises
    ------
    ValueError
        If a name does not look like a genomic interval
    """
    rows = []
    for name in names:
        match = _PEAK_PATTERN.match(str(name))
        if match is None:
            raise ValueError(f"Cannot parse peak name '{name}'")
        rows.append((_strip_chr(match["chrom"]), int(match["start"]), int(match["end"])))
    return pd.DataFrame(rows, columns=["chrom", "start", "end"], index=list(names))


def write_metadata(obs: pd.DataFrame, path: Union[str, Path]) -> None:
    """Write cell metadata as a tab separated table."""
    obs.to_csv(path, sep="\t", quoting=csv.QUOTE_NONE)
