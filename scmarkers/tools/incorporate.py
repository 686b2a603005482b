"""
Co-embedding of scRNA-seq and scATAC-seq cells through label transfer.

ATAC cells are represented by a gene activity matrix (regulatory potential
scores or peak counts summed over gene bodies). Anchors between the RNA
cells and the activity profiles carry the RNA cell type labels onto the
ATAC cells and impute their expression of the variable genes, after which
both modalities share one PCA/UMAP embedding.
"""

import logging
import warnings
from pathlib import Path

import numpy as np
import pandas as pd
import anndata
import scanpy as sc
import matplotlib.pyplot as plt

from ..io import write_metadata
from ..utils.utils import expression_frame, to_dense
from .anchors import find_transfer_anchors, transfer_data
from .gene_activity import gene_activity_matrix

logger = logging.getLogger(__name__)

METHODS = ("MAESTRO", "Seurat")


def _activity_frame(atac, method, rp_matrix, activity, annotation_file):
    if method == "Seurat":
        if annotation_file is None:
            raise ValueError("method='Seurat' requires annotation_file")
        return gene_activity_matrix(atac, annotation_file, upstream=2000)

    frame = activity if activity is not None else rp_matrix
    if frame is None:
        raise ValueError("method='MAESTRO' requires rp_matrix or activity")
    if isinstance(frame, anndata.AnnData):
        frame = pd.DataFrame(to_dense(frame.X).T, index=frame.var_names, columns=frame.obs_names)
    return frame


def _normalize_activity(frame):
    """Library-size normalize to 1e4 and log1p, genes x cells in and out."""
    act = anndata.AnnData(
        X=frame.T.to_numpy(dtype=float),
        obs=pd.DataFrame(index=frame.columns.astype(str)),
        var=pd.DataFrame(index=frame.index.astype(str)),
    )
    sc.pp.normalize_total(act, target_sum=1e4)
    sc.pp.log1p(act)
    return pd.DataFrame(to_dense(act.X).T, index=act.var_names, columns=act.obs_names)


def variable_genes(rna, n_top_genes=2000):
    """Highly variable genes of ``rna``, computed on a copy if not annotated."""
    if "highly_variable" not in rna.var.columns:
        tmp = rna.copy()
        sc.pp.highly_variable_genes(tmp, n_top_genes=min(n_top_genes, tmp.n_vars), flavor="seurat")
        mask = tmp.var["highly_variable"].to_numpy()
    else:
        mask = rna.var["highly_variable"].to_numpy(dtype=bool)
    return rna.var_names[mask].tolist()


def _co_embed(rna_values, atac_values, obs, var, dims_use):
    """Center the joint matrix and run PCA, neighbors and UMAP."""
    X = np.vstack([rna_values, atac_values])
    X = X - X.mean(axis=0, keepdims=True)

    combined = anndata.AnnData(X=X, obs=obs, var=var)
    combined.obs_names_make_unique()

    n_comps = max(2, min(dims_use, min(X.shape) - 1))
    sc.tl.pca(combined, n_comps=n_comps, zero_center=True, random_state=0)
    sc.pp.neighbors(combined, n_pcs=n_comps, random_state=0)
    sc.tl.umap(combined, random_state=42)
    return combined


def _save_umap(adata, color, path, **kwargs):
    fig = sc.pl.umap(adata, color=color, show=False, return_fig=True, **kwargs)
    fig.savefig(path, bbox_inches="tight", dpi=150)
    plt.close(fig)


def plot_coembedding(combined, project, rna_res, atac_res, label_key, out_dir):
    """Write the UMAP plots and cell metadata of a co-embedding."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    _save_umap(combined, "tech", out_dir / f"{project}_source.png")

    for tech, res in (("RNA", rna_res), ("ATAC", atac_res)):
        subset = combined[combined.obs["tech"] == tech].copy()
        color = f"leiden_{res}"
        if color not in subset.obs.columns or subset.obs[color].isna().all():
            warnings.warn(f"'{color}' not found for {tech} cells, colouring by '{label_key}'")
            color = label_key
        _save_umap(subset, color, out_dir / f"{project}_{tech}only.png", legend_loc="on data")

    _save_umap(combined, label_key, out_dir / f"{project}_annotated.png",
               legend_loc="on data", size=15)
    write_metadata(combined.obs, out_dir / f"{project}_metadata.tsv")


def incorporate(
    rna,
    atac,
    rp_matrix=None,
    project="scmarkers.coembedding",
    method="MAESTRO",
    annotation_file=None,
    activity=None,
    dims_use=30,
    rna_res=0.6,
    atac_res=0.6,
    label_key="assign.ident",
    out_dir=".",
):
    """
    Transfer RNA cell type labels to ATAC cells and co-embed both

    Parameters
    ----------
    rna : AnnData
        Log-normalized expression (cells x genes) with cell types in
        ``obs[label_key]`` and clusters in ``obs['leiden_<rna_res>']``
    atac : AnnData
        ATAC cells (cells x peaks) with clusters in
        ``obs['leiden_<atac_res>']`` and optionally an LSI embedding in
        ``obsm['X_lsi']``. Needs a 'counts' layer for ``method='Seurat'``
    rp_matrix : pandas.DataFrame, optional
        Regulatory potential scores, genes x cells
    project : str
        Prefix of the output files
    method : str
        'MAESTRO' uses ``activity`` or ``rp_matrix``; 'Seurat' sums peak
        counts over gene bodies from ``annotation_file``
    annotation_file : str or Path, optional
        GTF annotation, required for 'Seurat'
    activity : pandas.DataFrame or AnnData, optional
        Precomputed gene activity, used instead of ``rp_matrix``
    dims_use : int
        Number of CCA and principal components
    rna_res, atac_res : float
        Resolutions naming the cluster columns to plot
    label_key : str
        Cell type column transferred from RNA to ATAC
    out_dir : str or Path
        Directory of the written plots and metadata

    Returns
    -------
    AnnData
        RNA and ATAC cells over the RNA variable genes (ATAC values imputed)
        with ``X_pca`` and ``X_umap``; ATAC cells carry the predicted
        ``label_key`` and ``prediction.score.max``

    Raises
    ------
    ValueError
        On an unknown method, missing inputs, no cells shared between
        ``atac`` and the activity matrix, or no anchors. Nothing is written
        in these cases.
    """
    if method not in METHODS:
        raise ValueError(f"Unknown method '{method}', expected one of {METHODS}")
    if label_key not in rna.obs.columns:
        raise ValueError(f"'{label_key}' not in rna.obs")

    rna = rna.copy()
    atac = atac.copy()
    rna.obs["tech"] = "RNA"
    atac.obs["tech"] = "ATAC"

    act = _activity_frame(atac, method, rp_matrix, activity, annotation_file)
    act = act.rename(columns=str)
    available = set(act.columns)
    shared = [c for c in atac.obs_names if c in available]
    if len(shared) == 0:
        raise ValueError("No cells shared between the ATAC data and the activity matrix")
    atac = atac[shared].copy()
    act = _normalize_activity(act.loc[:, shared])
    logger.info("Gene activity for %d genes in %d ATAC cells", act.shape[0], len(shared))

    rna_data = expression_frame(rna, slot="data")
    genes_use = variable_genes(rna)
    anchors = find_transfer_anchors(
        reference=rna_data,
        query=act,
        features=genes_use,
        dims=dims_use,
    )

    weight_reduction = atac.obsm["X_lsi"] if "X_lsi" in atac.obsm else None
    predictions = transfer_data(anchors, rna.obs[label_key], weight_reduction=weight_reduction)
    imputation = transfer_data(anchors, rna_data.loc[genes_use], weight_reduction=weight_reduction)

    atac.obs[label_key] = predictions.loc[atac.obs_names, "predicted.id"].to_numpy()
    atac.obs["prediction.score.max"] = predictions.loc[atac.obs_names, "prediction.score.max"].to_numpy()

    obs = pd.concat([rna.obs, atac.obs], axis=0, sort=False)
    obs.index = obs.index.astype(str)
    for column in ["tech", label_key, f"leiden_{rna_res}", f"leiden_{atac_res}"]:
        if column in obs.columns:
            obs[column] = obs[column].astype(str).where(obs[column].notna()).astype("category")

    combined = _co_embed(
        rna_data.loc[genes_use].T.to_numpy(dtype=float),
        imputation.loc[genes_use, atac.obs_names].T.to_numpy(dtype=float),
        obs,
        pd.DataFrame(index=genes_use),
        dims_use,
    )
    combined.uns["project"] = project

    plot_coembedding(combined, project, rna_res, atac_res, label_key, out_dir)
    logger.info("Co-embedded %d RNA and %d ATAC cells", rna.n_obs, atac.n_obs)
    return combined
