"""
Transfer anchors between a reference and a query dataset.

Both datasets are projected into a shared space by canonical correlation
analysis (CCA). Cells of the reference and the query that are mutual
nearest neighbours in that space become anchors, each scored by how many
neighbours the two cells share. Anchors then carry reference labels or
values over to the query cells, weighted by the distance of each query
cell to its nearest anchors.
"""

import logging
import warnings
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy import sparse
from sklearn.neighbors import NearestNeighbors
from sklearn.preprocessing import normalize
from sklearn.utils.extmath import randomized_svd

logger = logging.getLogger(__name__)


@dataclass
class AnchorSet:
    """
    Anchors between a reference and a query.

    Attributes
    ----------
    anchors : pandas.DataFrame
        One row per anchor with integer positions ``cell1`` (reference),
        ``cell2`` (query) and ``score`` in [0, 1]
    reference_cells, query_cells : pandas.Index
        Cell ids in the order of the embeddings
    features : list
        Features used for the CCA
    reference_embedding, query_embedding : numpy.ndarray
        L2-normalized canonical vectors (cells x dims)
    """

    anchors: pd.DataFrame
    reference_cells: pd.Index
    query_cells: pd.Index
    features: list
    reference_embedding: np.ndarray
    query_embedding: np.ndarray

    @property
    def n_anchors(self) -> int:
        return self.anchors.shape[0]

    def __repr__(self) -> str:
        return (f"AnchorSet: {self.n_anchors} anchors between "
                f"{len(self.reference_cells)} reference and {len(self.query_cells)} query cells")


def _scale_rows(values, max_value=10.0):
    """Center and scale each feature across cells, clipped at ``max_value``."""
    mean = values.mean(axis=1, keepdims=True)
    sd = values.std(axis=1, ddof=1, keepdims=True)
    sd[~np.isfinite(sd) | (sd == 0)] = 1.0
    return np.clip((values - mean) / sd, -np.inf, max_value)


def run_cca(reference, query, dims=30, random_state=0):
    """
    Canonical correlation vectors of two standardized feature x cell matrices

    Returns
    -------
    (numpy.ndarray, numpy.ndarray)
        Reference and query cell embeddings, each L2-normalized per cell
    """
    cross = reference.T @ query
    dims = max(1, min(dims, min(cross.shape) - 1))
    u, s, vt = randomized_svd(cross, n_components=dims, random_state=random_state)
    return normalize(u, norm="l2"), normalize(vt.T, norm="l2")


def find_mnn_pairs(X1, X2, k=5):
    """
    Mutual nearest neighbours between two embeddings

    Returns
    -------
    numpy.ndarray
        ``(n_pairs, 2)`` integer array of (row in X1, row in X2)
    """
    nn1 = NearestNeighbors(n_neighbors=min(k, len(X2))).fit(X2)
    indices1 = nn1.kneighbors(X1, return_distance=False)

    nn2 = NearestNeighbors(n_neighbors=min(k, len(X1))).fit(X1)
    indices2 = nn2.kneighbors(X2, return_distance=False)

    pairs = []
    for i in range(len(X1)):
        for j in indices1[i]:
            if i in indices2[j]:
                pairs.append((i, j))
    return np.asarray(pairs, dtype=int).reshape(-1, 2)


def _neighborhood_matrix(embedding, n_ref, k):
    """Sparse indicator of each cell's k nearest reference and k nearest query cells."""
    n_total = embedding.shape[0]
    blocks = []
    for lo, hi in ((0, n_ref), (n_ref, n_total)):
        k_use = min(k, hi - lo)
        nn = NearestNeighbors(n_neighbors=k_use).fit(embedding[lo:hi])
        idx = nn.kneighbors(embedding, return_distance=False) + lo
        rows = np.repeat(np.arange(n_total), k_use)
        blocks.append(sparse.csr_matrix(
            (np.ones(rows.size), (rows, idx.ravel())), shape=(n_total, n_total)
        ))
    return (blocks[0] + blocks[1]).tocsr()


def score_anchors(pairs, reference_embedding, query_embedding, k_score=30,
                  quantiles=(0.01, 0.9)):
    """
    Shared-neighbour score of each anchor, rescaled to [0, 1]

    Scores at or below the lower quantile become 0, at or above the upper
    quantile 1.
    """
    n_ref = reference_embedding.shape[0]
    embedding = np.vstack([reference_embedding, query_embedding])
    neighborhoods = _neighborhood_matrix(embedding, n_ref, k_score)

    shared = neighborhoods[pairs[:, 0]].multiply(neighborhoods[pairs[:, 1] + n_ref])
    raw = np.asarray(shared.sum(axis=1)).ravel()

    low, high = np.quantile(raw, quantiles)
    if high <= low:
        return np.ones_like(raw, dtype=float)
    return np.clip((raw - low) / (high - low), 0.0, 1.0)


def find_transfer_anchors(
    reference,
    query,
    features=None,
    dims=30,
    k_anchor=5,
    k_score=30,
    random_state=0,
):
    """
    Find anchors between reference and query cells

    Parameters
    ----------
    reference, query : pandas.DataFrame
        Log-normalized features x cells values
    features : list, optional
        Features to use; intersected with both datasets. Default all
        shared features
    dims : int
        Number of canonical vectors
    k_anchor : int
        Neighbours searched when pairing cells
    k_score : int
        Neighbours used for anchor scoring
    random_state : int
        Seed of the randomized SVD

    Returns
    -------
    AnchorSet

    Raises
    ------
    ValueError
        If the datasets share no features, either has no cells, or no
        anchors are found
    """
    if reference.shape[1] == 0 or query.shape[1] == 0:
        raise ValueError("Reference and query must both contain cells")

    candidates = reference.index if features is None else pd.Index(features)
    features = [f for f in candidates.unique() if f in reference.index and f in query.index]
    if len(features) == 0:
        raise ValueError("No shared features between reference and query")

    ref_scaled = _scale_rows(reference.loc[features].to_numpy(dtype=float))
    query_scaled = _scale_rows(query.loc[features].to_numpy(dtype=float))

    logger.info("Running CCA on %d features (%d reference, %d query cells)",
                len(features), reference.shape[1], query.shape[1])
    ref_emb, query_emb = run_cca(ref_scaled, query_scaled, dims=dims, random_state=random_state)

    pairs = find_mnn_pairs(ref_emb, query_emb, k=k_anchor)
    if len(pairs) == 0:
        raise ValueError("No anchors found between reference and query")

    scores = score_anchors(pairs, ref_emb, query_emb, k_score=k_score)
    anchors = pd.DataFrame({"cell1": pairs[:, 0], "cell2": pairs[:, 1], "score": scores})
    logger.info("Found %d anchors", len(anchors))

    return AnchorSet(
        anchors=anchors,
        reference_cells=pd.Index(reference.columns),
        query_cells=pd.Index(query.columns),
        features=features,
        reference_embedding=ref_emb,
        query_embedding=query_emb,
    )


def anchor_weights(anchorset, weight_reduction=None, k_weight=50, sd_weight=1.0):
    """
    Weight of every anchor for every query cell (query cells x anchors)

    Each query cell looks at its ``k_weight`` nearest anchors in
    ``weight_reduction`` space. Distances are turned into weights with
    ``(1 - d / d_k) * score`` and a Gaussian kernel, then normalized to sum
    to one per cell.
    """
    if weight_reduction is None:
        warnings.warn("No weight reduction given, using the CCA query embedding")
        embedding = anchorset.query_embedding
    elif isinstance(weight_reduction, pd.DataFrame):
        embedding = weight_reduction.loc[anchorset.query_cells].to_numpy(dtype=float)
    else:
        embedding = np.asarray(weight_reduction, dtype=float)
    if embedding.shape[0] != len(anchorset.query_cells):
        raise ValueError(
            f"weight_reduction has {embedding.shape[0]} rows, "
            f"expected {len(anchorset.query_cells)} query cells"
        )

    anchors = anchorset.anchors
    anchor_cells = anchors["cell2"].to_numpy()
    scores = anchors["score"].to_numpy()
    k_use = min(k_weight, len(anchors))

    nn = NearestNeighbors(n_neighbors=k_use).fit(embedding[anchor_cells])
    dist, idx = nn.kneighbors(embedding)

    d_k = dist[:, -1:]
    ratio = np.divide(dist, d_k, out=np.zeros_like(dist), where=d_k > 0)
    w = (1 - ratio) * scores[idx]
    w = 1 - np.exp(-w / (2 / sd_weight) ** 2)

    totals = w.sum(axis=1, keepdims=True)
    w = np.divide(w, totals, out=np.full_like(w, 1.0 / k_use), where=totals > 0)

    rows = np.repeat(np.arange(embedding.shape[0]), k_use)
    return sparse.csr_matrix((w.ravel(), (rows, idx.ravel())),
                             shape=(embedding.shape[0], len(anchors)))


def transfer_data(anchorset, refdata, weight_reduction=None, k_weight=50, sd_weight=1.0):
    """
    Transfer reference labels or values onto the query cells

    Parameters
    ----------
    anchorset : AnchorSet
        Output of ``find_transfer_anchors``
    refdata : pandas.Series or pandas.DataFrame
        Labels indexed by reference cell, or a features x reference cells
        matrix of values
    weight_reduction : array-like or pandas.DataFrame, optional
        Query embedding (cells x dims) used to weight anchors, e.g. LSI.
        Defaults to the CCA query embedding with a warning
    k_weight : int
        Anchors considered per query cell
    sd_weight : float
        Bandwidth of the Gaussian kernel

    Returns
    -------
    pandas.DataFrame
        For labels: ``predicted.id``, one ``prediction.score.<label>`` column
        per label and ``prediction.score.max``, indexed by query cell.
        For values: features x query cells.
    """
    weights = anchor_weights(anchorset, weight_reduction, k_weight=k_weight, sd_weight=sd_weight)
    anchor_ref = anchorset.reference_cells[anchorset.anchors["cell1"].to_numpy()]

    if isinstance(refdata, pd.DataFrame):
        missing = anchorset.reference_cells.difference(refdata.columns)
        if len(missing) > 0:
            raise ValueError(f"refdata is missing {len(missing)} reference cells")
        values = refdata.loc[:, anchor_ref].to_numpy(dtype=float)
        imputed = weights @ values.T
        return pd.DataFrame(np.asarray(imputed).T, index=refdata.index, columns=anchorset.query_cells)

    refdata = pd.Series(refdata)
    missing = anchorset.reference_cells.difference(refdata.index)
    if len(missing) > 0:
        raise ValueError(f"refdata is missing {len(missing)} reference cells")
    labels = refdata.loc[anchor_ref].astype(str)
    classes = sorted(refdata.astype(str).unique())
    onehot = pd.get_dummies(labels).reindex(columns=classes, fill_value=0).to_numpy(dtype=float)

    prediction = np.asarray(weights @ onehot)
    result = pd.DataFrame(
        prediction,
        index=anchorset.query_cells,
        columns=[f"prediction.score.{c}" for c in classes],
    )
    result.insert(0, "predicted.id", np.asarray(classes)[prediction.argmax(axis=1)])
    result["prediction.score.max"] = prediction.max(axis=1)
    return result
