import math

import numpy as np
import pandas as pd
from numba import jit
from tqdm import tqdm

from ..core.methods import DataSlot


@jit(nopython=True)
def calculate_variance(data):
    """
    Calculate variance for each feature

    Parameters
    ----------
    data : numpy.ndarray
        Expression matrix with shape (n_features, n_cells)

    Returns
    -------
    numpy.ndarray
        Sample variance (ddof=1) for each feature
    """
    n_features = data.shape[0]
    n_cells = data.shape[1]
    variances = np.zeros(n_features)

    for i in range(n_features):
        row = data[i, :]
        mean = np.mean(row)
        variances[i] = np.sum((row - mean) ** 2) / (n_cells - 1)

    return variances


@jit(nopython=True)
def tie_sums(sorted_data):
    """
    Sum of t^3 - t over tie groups of each (row-sorted) feature

    Parameters
    ----------
    sorted_data : numpy.ndarray
        Expression matrix (n_features, n_cells), each row sorted ascending

    Returns
    -------
    numpy.ndarray
        Tie correction term per feature
    """
    n_features = sorted_data.shape[0]
    n_cells = sorted_data.shape[1]
    out = np.zeros(n_features)

    for i in range(n_features):
        total = 0.0
        run = 1
        for j in range(1, n_cells):
            if sorted_data[i, j] == sorted_data[i, j - 1]:
                run += 1
            else:
                total += run ** 3 - run
                run = 1
        total += run ** 3 - run
        out[i] = total

    return out


@jit(nopython=True)
def bimod_likelihood(x, xmin=0.0):
    """Log-likelihood of a point mass at zero plus a Gaussian tail."""
    n = x.shape[0]
    n2 = 0
    total = 0.0
    for v in x:
        if v > xmin:
            n2 += 1
            total += v
    n1 = n - n2

    xal = n2 / n
    if xal < 1e-5:
        xal = 1e-5
    elif xal > 1 - 1e-5:
        xal = 1 - 1e-5

    lik_a = n1 * math.log(1 - xal)

    mean = total / n2 if n2 > 0 else 0.0
    if n2 < 2:
        sd = 1.0
    else:
        ss = 0.0
        for v in x:
            if v > xmin:
                ss += (v - mean) ** 2
        sd = math.sqrt(ss / (n2 - 1))

    lik_b = n2 * math.log(xal)
    if sd == 0.0:
        # degenerate tail: every positive value equal
        return math.inf
    for v in x:
        if v > xmin:
            z = (v - mean) / sd
            lik_b += -0.5 * z * z - math.log(sd) - 0.5 * math.log(2 * math.pi)

    return lik_a + lik_b


@jit(nopython=True)
def bimod_lrt(data_1, data_2):
    """
    Bimodal likelihood-ratio statistic for every feature

    Parameters
    ----------
    data_1, data_2 : numpy.ndarray
        Group matrices with shape (n_features, n_cells_in_group)

    Returns
    -------
    numpy.ndarray
        ``2 * (L1 + L2 - L12)`` per feature
    """
    n_features = data_1.shape[0]
    out = np.zeros(n_features)
    for i in range(n_features):
        x = data_1[i, :]
        y = data_2[i, :]
        z = np.concatenate((x, y))
        out[i] = 2 * (bimod_likelihood(x) + bimod_likelihood(y) - bimod_likelihood(z))
    return out


def apply_per_feature(func, rows, n_jobs=1, verbose=False, desc="Testing features"):
    """
    Run ``func`` on every row, in order

    Parameters
    ----------
    func : callable
        Function of a single feature row (or tuple of arguments)
    rows : sequence
        One item per feature
    n_jobs : int, optional
        Number of workers; 1 runs sequentially, -1 uses all cores
    verbose : bool, optional
        Show a progress bar for sequential runs
    desc : str, optional
        Progress bar label

    Returns
    -------
    list
        ``func(row)`` for each row, in input order
    """
    rows = list(rows)
    if n_jobs != 1 and len(rows) > 10:
        from joblib import Parallel, delayed

        return Parallel(n_jobs=n_jobs, backend="loky")(
            delayed(func)(row) for row in rows
        )
    return [func(row) for row in tqdm(rows, desc=desc, disable=not verbose)]


def to_dense(matrix):
    if hasattr(matrix, "toarray"):
        return matrix.toarray()
    elif hasattr(matrix, "todense"):
        return np.asarray(matrix.todense())
    return np.asarray(matrix)


def get_slot_matrix(adata, slot):
    """
    Get the matrix backing a data slot (cells x features, possibly sparse)

    ``data`` reads ``layers['data']`` when present and ``X`` otherwise,
    ``counts`` reads ``layers['counts']`` or falls back to ``raw.X``,
    ``scale.data`` reads ``layers['scale.data']``.
    """
    slot = DataSlot.parse(slot)
    if slot is DataSlot.DATA:
        if "data" in adata.layers:
            return adata.layers["data"]
        return adata.X
    if slot is DataSlot.COUNTS:
        if "counts" in adata.layers:
            return adata.layers["counts"]
        if adata.raw is not None and list(adata.raw.var_names) == list(adata.var_names):
            return adata.raw.X
        raise ValueError(
            "Slot 'counts' requested but adata has no 'counts' layer "
            "and no matching adata.raw"
        )
    if "scale.data" in adata.layers:
        return adata.layers["scale.data"]
    raise ValueError("Slot 'scale.data' requested but adata has no 'scale.data' layer")


def expression_frame(adata, slot="data", features=None, cells=None):
    """
    Extract a dense features x cells DataFrame from an AnnData object

    Parameters
    ----------
    adata : AnnData
        Single-cell data (cells x features)
    slot : str or DataSlot
        Which representation to read
    features : list, optional
        Features to keep, default all
    cells : list, optional
        Cells to keep (in this order), default all

    Returns
    -------
    pandas.DataFrame
        Expression values with features as rows and cells as columns
    """
    matrix = get_slot_matrix(adata, slot)
    feature_names = list(adata.var_names) if features is None else list(features)
    cell_names = list(adata.obs_names) if cells is None else list(cells)

    missing = set(feature_names).difference(adata.var_names)
    if missing:
        raise ValueError(f"{len(missing)} features not found in adata, e.g. {sorted(missing)[:5]}")

    row_idx = adata.obs_names.get_indexer(cell_names)
    if (row_idx < 0).any():
        raise ValueError("Some requested cells are not in adata.obs_names")
    col_idx = adata.var_names.get_indexer(feature_names)

    sub = matrix[row_idx, :][:, col_idx]
    values = to_dense(sub).astype(float).T
    return pd.DataFrame(values, index=feature_names, columns=cell_names)
