"""Expression-based feature prefilters applied before any test runs."""

import numpy as np
import pandas as pd

from ..core.diagnostics import EmptyFeatureSetError
from ..core.methods import DataSlot


def detection_fraction(data: pd.DataFrame, cells) -> pd.Series:
    """Fraction of ``cells`` with a strictly positive value, rounded to 3 dp."""
    sub = data.loc[:, list(cells)].to_numpy()
    pct = (sub > 0).sum(axis=1) / sub.shape[1]
    return pd.Series(np.round(pct, 3), index=data.index)


def filter_by_detection(pct_1: pd.Series, pct_2: pd.Series, min_pct: float) -> list:
    """
    Keep features detected in more than ``min_pct`` of either group

    The comparison is strict: a feature whose larger fraction equals
    ``min_pct`` is dropped.

    Raises
    ------
    EmptyFeatureSetError
        If no feature passes
    """
    pct_max = np.maximum(pct_1.to_numpy(), pct_2.to_numpy())
    features = pct_1.index[pct_max > min_pct].tolist()
    if len(features) == 0:
        raise EmptyFeatureSetError("No features pass min_pct threshold")
    return features


def average_log_fold_change(data: pd.DataFrame, cells_1, cells_2, slot="data") -> pd.Series:
    """
    Per-feature difference in average expression between two groups

    Parameters
    ----------
    data : pandas.DataFrame
        Features x cells values in the representation given by ``slot``
    cells_1, cells_2 : list
        Cell ids of the two groups
    slot : str or DataSlot
        ``data`` averages in linear space (expm1) and logs the mean,
        ``counts`` logs the mean of the raw values, ``scale.data`` uses
        plain means

    Returns
    -------
    pandas.Series
        ``mean_1 - mean_2`` on the natural-log scale, indexed by feature
    """
    slot = DataSlot.parse(slot)
    x1 = data.loc[:, list(cells_1)].to_numpy()
    x2 = data.loc[:, list(cells_2)].to_numpy()

    if slot is DataSlot.DATA:
        mean_1 = np.log(np.expm1(x1).mean(axis=1) + 1)
        mean_2 = np.log(np.expm1(x2).mean(axis=1) + 1)
    elif slot is DataSlot.COUNTS:
        mean_1 = np.log(x1.mean(axis=1) + 1)
        mean_2 = np.log(x2.mean(axis=1) + 1)
    else:
        mean_1 = x1.mean(axis=1)
        mean_2 = x2.mean(axis=1)

    return pd.Series(mean_1 - mean_2, index=data.index)


def filter_by_fold_change(diff: pd.Series, threshold: float, only_pos: bool = False) -> list:
    """
    Keep features whose fold change exceeds ``threshold``

    With ``only_pos`` only up-regulated features in group 1 are kept,
    otherwise the absolute difference is compared.

    Raises
    ------
    EmptyFeatureSetError
        If no feature passes
    """
    values = diff.to_numpy()
    keep = values > threshold if only_pos else np.abs(values) > threshold
    features = diff.index[keep].tolist()
    if len(features) == 0:
        raise EmptyFeatureSetError("No features pass logfc threshold")
    return features
