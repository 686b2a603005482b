"""Marker detection between two groups of cells with AnnData support"""

import logging

import numpy as np
import pandas as pd

from ..core.diagnostics import (
    Diagnostics,
    EmptyFeatureSetError,
    LatentVarsIgnoredWarning,
    SmallGroupWarning,
)
from ..core.methods import DataSlot, TestMethod, LATENT_VAR_METHODS
from ..utils.utils import expression_frame
from .de_tests import run_test
from .prefilter import (
    average_log_fold_change,
    detection_fraction,
    filter_by_detection,
    filter_by_fold_change,
)

logger = logging.getLogger(__name__)


def _check_groups(cells_1, cells_2, min_cells_group, diagnostics):
    cells_1, cells_2 = list(cells_1), list(cells_2)
    if len(cells_1) == 0 or len(cells_2) == 0:
        raise ValueError("Both cell groups must contain at least one cell")
    overlap = set(cells_1).intersection(cells_2)
    if overlap:
        raise ValueError(f"{len(overlap)} cells are in both groups, e.g. {sorted(overlap)[:5]}")
    for name, cells in (("ident_1", cells_1), ("ident_2", cells_2)):
        if len(cells) < min_cells_group:
            diagnostics.warn(
                f"{name} has only {len(cells)} cells, fewer than min_cells_group={min_cells_group}",
                SmallGroupWarning,
            )
    return cells_1, cells_2


def assemble_results(test_res, avg_logfc, pct_1, pct_2, method, n_total):
    """
    Merge test output with fold change and detection, then rank

    Parameters
    ----------
    test_res : pandas.DataFrame
        Output of a test strategy, indexed by feature
    avg_logfc, pct_1, pct_2 : pandas.Series
        Per-feature statistics covering at least ``test_res.index``
    method : TestMethod
        The strategy that produced ``test_res``
    n_total : int
        Number of features in the full dataset, used as the
        Bonferroni multiplier

    Returns
    -------
    pandas.DataFrame
        ``roc``: AUC, power, avg_logFC, pct.1, pct.2 sorted by AUC then
        fold change (both descending). Otherwise p_val, avg_logFC, pct.1,
        pct.2, p_val_adj sorted by p-value ascending then fold change
        descending.
    """
    result = test_res.copy()
    result["avg_logFC"] = avg_logfc.reindex(result.index).to_numpy()
    result["pct.1"] = pct_1.reindex(result.index).to_numpy()
    result["pct.2"] = pct_2.reindex(result.index).to_numpy()

    if method.is_rank_auc:
        order = np.lexsort((-result["avg_logFC"].to_numpy(), -result["AUC"].to_numpy()))
        return result.iloc[order].copy()

    order = np.lexsort((-result["avg_logFC"].to_numpy(), result["p_val"].to_numpy()))
    result = result.iloc[order].copy()
    result["p_val_adj"] = np.minimum(1.0, result["p_val"].to_numpy() * n_total)
    return result


def find_markers_matrix(
    data,
    cells_1,
    cells_2,
    test_use="presto",
    slot="data",
    features=None,
    min_pct=0.1,
    logfc_threshold=0.25,
    latent_vars=None,
    min_cells_feature=3,
    min_cells_group=3,
    only_pos=False,
    n_total=None,
    n_jobs=1,
    verbose=False,
    diagnostics=None,
):
    """
    Find differential features between two groups of cells

    Parameters
    ----------
    data : pandas.DataFrame
        Features x cells values in the representation named by ``slot``
    cells_1, cells_2 : list
        Cell ids (columns of ``data``) of the two groups
    test_use : str or TestMethod
        One of presto, wilcox, bimod, roc, t, negbinom, poisson, MAST,
        DESeq2, LR
    slot : str or DataSlot
        Representation of ``data``: 'data', 'counts' or 'scale.data'
    features : list, optional
        Features to consider, default all rows of ``data``
    min_pct : float
        Only test features detected in more than this fraction of cells in
        either group
    logfc_threshold : float
        Only test features whose average log fold change exceeds this
    latent_vars : pandas.DataFrame, optional
        Cell-indexed covariates for negbinom, poisson, LR and MAST
    min_cells_feature : int
        Minimum expressing cells in at least one group (negbinom, poisson)
    min_cells_group : int
        Groups smaller than this trigger a warning
    only_pos : bool
        Only return features up-regulated in group 1
    n_total : int, optional
        Bonferroni multiplier; defaults to the number of rows of ``data``
    n_jobs : int
        Number of parallel jobs for per-feature tests
    verbose : bool
        Show progress bars
    diagnostics : Diagnostics, optional
        Collector for advisories; a new one is made if omitted

    Returns
    -------
    pandas.DataFrame
        Ranked markers indexed by feature
    """
    method = TestMethod.parse(test_use)
    slot = DataSlot.parse(slot)
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    n_total = data.shape[0] if n_total is None else n_total

    features = list(data.index) if features is None else list(features)
    if method.skips_prefilter:
        features = list(data.index)
        min_pct = -np.inf
        logfc_threshold = -np.inf

    cells_1, cells_2 = _check_groups(cells_1, cells_2, min_cells_group, diagnostics)
    data = data.loc[features, cells_1 + cells_2]

    pct_1 = detection_fraction(data, cells_1)
    pct_2 = detection_fraction(data, cells_2)
    features = filter_by_detection(pct_1, pct_2, min_pct)

    avg_logfc = average_log_fold_change(data.loc[features], cells_1, cells_2, slot)
    features = filter_by_fold_change(avg_logfc, logfc_threshold, only_pos)

    if latent_vars is not None and not method.uses_latent_vars:
        diagnostics.warn(
            "'latent_vars' is only used for "
            + ", ".join(f"'{m}'" for m in LATENT_VAR_METHODS[:-1])
            + f", and '{LATENT_VAR_METHODS[-1]}' tests",
            LatentVarsIgnoredWarning,
        )

    logger.info("Testing %d features with %s (%d vs %d cells)",
                len(features), method.value, len(cells_1), len(cells_2))

    test_res = run_test(
        method,
        data.loc[features],
        cells_1,
        cells_2,
        latent_vars=latent_vars,
        min_cells=min_cells_feature,
        n_jobs=n_jobs,
        verbose=verbose,
        diagnostics=diagnostics,
    )

    return assemble_results(test_res, avg_logfc, pct_1, pct_2, method, n_total)


def _cells_for(obs_column, ident):
    idents = ident if isinstance(ident, (list, tuple, set, np.ndarray, pd.Index)) else [ident]
    idents = {str(i) for i in idents}
    mask = obs_column.astype(str).isin(idents)
    return obs_column.index[mask.to_numpy()].tolist()


def _resolve_latent_vars(adata, latent_vars):
    if latent_vars is None:
        return None
    if isinstance(latent_vars, str):
        latent_vars = [latent_vars]
    if isinstance(latent_vars, (list, tuple)):
        missing = [c for c in latent_vars if c not in adata.obs.columns]
        if missing:
            raise ValueError(f"latent_vars not found in adata.obs: {missing}")
        return adata.obs[list(latent_vars)]
    return pd.DataFrame(latent_vars)


def find_markers(
    adata,
    groupby,
    ident_1=0,
    ident_2=None,
    test_use="presto",
    slot="data",
    features=None,
    min_pct=0.1,
    logfc_threshold=0.25,
    latent_vars=None,
    min_cells_feature=3,
    min_cells_group=3,
    only_pos=False,
    n_jobs=1,
    verbose=True,
    return_diagnostics=False,
):
    """
    Find differential features (genes or peaks) for a given cluster

    Parameters
    ----------
    adata : AnnData
        AnnData object containing single-cell data (cells x features)
    groupby : str
        Column name in adata.obs with the cluster identities
    ident_1 : str, int or list
        Identity class(es) to find markers for; default 0
    ident_2 : str, int or list, optional
        Identity class(es) to compare against. If None, use all other cells
    test_use : str
        Test to use, default 'presto' (fast Wilcoxon rank-sum)
    slot : str
        'data' (log-normalized, adata.X), 'counts' or 'scale.data'. Set to
        'counts' automatically for negbinom, poisson and DESeq2
    features : list, optional
        Features to use, default all
    min_pct : float
        Only test features detected in more than this fraction of cells in
        either group
    logfc_threshold : float
        Only test features with more than this average log fold change
    latent_vars : list or pandas.DataFrame, optional
        adata.obs columns (or a cell-indexed frame) used as covariates by
        negbinom, poisson, LR and MAST
    min_cells_feature : int
        Minimum expressing cells in at least one group for negbinom and
        poisson
    min_cells_group : int
        Minimum cells per group; smaller groups only trigger a warning
    only_pos : bool
        Only return positive markers
    n_jobs : int
        Number of parallel jobs for per-feature tests; 1 for serial
    verbose : bool
        Show progress bars
    return_diagnostics : bool
        Also return the collected ``Diagnostics``

    Returns
    -------
    pandas.DataFrame or (pandas.DataFrame, Diagnostics)
        Ranked markers with p_val, avg_logFC, pct.1, pct.2 and p_val_adj
        (or AUC and power for 'roc')
    """
    method = TestMethod.parse(test_use)
    if groupby not in adata.obs.columns:
        raise ValueError(f"'{groupby}' not in adata.obs")

    slot = DataSlot.COUNTS if method.uses_counts else DataSlot.parse(slot)

    cells_1 = _cells_for(adata.obs[groupby], ident_1)
    if ident_2 is None:
        chosen = set(cells_1)
        cells_2 = [c for c in adata.obs_names if c not in chosen]
    else:
        cells_2 = _cells_for(adata.obs[groupby], ident_2)

    if method.skips_prefilter:
        features = None
    data = expression_frame(adata, slot=slot, features=features, cells=cells_1 + cells_2)

    diagnostics = Diagnostics()
    result = find_markers_matrix(
        data,
        cells_1,
        cells_2,
        test_use=method,
        slot=slot,
        min_pct=min_pct,
        logfc_threshold=logfc_threshold,
        latent_vars=_resolve_latent_vars(adata, latent_vars),
        min_cells_feature=min_cells_feature,
        min_cells_group=min_cells_group,
        only_pos=only_pos,
        n_total=adata.n_vars,
        n_jobs=n_jobs,
        verbose=verbose,
        diagnostics=diagnostics,
    )

    logger.info("Found %d markers for %s", len(result), ident_1)
    if return_diagnostics:
        return result, diagnostics
    return result


def _identity_order(groups):
    """Identities as strings, in category order or order of first appearance."""
    present = set(groups.dropna().astype(str))
    if isinstance(groups.dtype, pd.CategoricalDtype):
        return [str(c) for c in groups.cat.categories if str(c) in present]
    return list(pd.unique(groups.dropna().astype(str)))


def find_all_markers(
    adata,
    groupby,
    test_use="presto",
    slot="data",
    min_pct=0.1,
    logfc_threshold=0.25,
    latent_vars=None,
    only_pos=False,
    n_jobs=1,
    verbose=True,
    return_diagnostics=False,
    **kwargs,
):
    """
    Find markers for all identity classes in a dataset

    Each identity is compared against all remaining cells. Identities are
    visited in category order for a categorical ``groupby`` column, else in
    order of first appearance. Identities for which no feature passes the
    prefilters are skipped with a warning.

    Returns
    -------
    pandas.DataFrame or (pandas.DataFrame, Diagnostics)
        Markers of every identity, with ``cluster`` and ``gene`` columns
    """
    diagnostics = Diagnostics()

    all_markers = []
    for ident in _identity_order(adata.obs[groupby]):
        logger.info("Calculating markers for %s", ident)
        try:
            markers, found = find_markers(
                adata,
                groupby,
                ident_1=ident,
                ident_2=None,
                test_use=test_use,
                slot=slot,
                min_pct=min_pct,
                logfc_threshold=logfc_threshold,
                latent_vars=latent_vars,
                only_pos=only_pos,
                n_jobs=n_jobs,
                verbose=verbose,
                return_diagnostics=True,
                **kwargs,
            )
        except EmptyFeatureSetError as e:
            diagnostics.warn(f"No markers for {ident}: {e}")
            continue

        diagnostics.extend(found)
        markers["cluster"] = ident
        markers["gene"] = markers.index
        all_markers.append(markers)

    result = pd.concat(all_markers).reset_index(drop=True) if all_markers else pd.DataFrame()
    if return_diagnostics:
        return result, diagnostics
    return result
