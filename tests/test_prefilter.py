import numpy as np
import pandas as pd
import pytest

from scmarkers.core import EmptyFeatureSetError
from scmarkers.tools.prefilter import (
    average_log_fold_change,
    detection_fraction,
    filter_by_detection,
    filter_by_fold_change,
)


@pytest.fixture
def small_frame():
    cells_1 = [f"a{i}" for i in range(10)]
    cells_2 = [f"b{i}" for i in range(10)]
    values = np.zeros((3, 20))
    values[0, 0] = 1.0          # detected in exactly 1/10 of group 1
    values[1, :5] = 2.0         # 0.5 in group 1
    values[2, 10:13] = 1.0      # 0.3 in group 2
    data = pd.DataFrame(values, index=["edge", "half", "other"], columns=cells_1 + cells_2)
    return data, cells_1, cells_2


def test_detection_fraction_rounds_to_three_places():
    data = pd.DataFrame([[1, 0, 0], [1, 1, 0]], index=["f1", "f2"], columns=["c1", "c2", "c3"])
    pct = detection_fraction(data, ["c1", "c2", "c3"])
    assert pct["f1"] == 0.333
    assert pct["f2"] == 0.667


def test_detection_filter_is_strict(small_frame):
    data, cells_1, cells_2 = small_frame
    pct_1 = detection_fraction(data, cells_1)
    pct_2 = detection_fraction(data, cells_2)

    kept = filter_by_detection(pct_1, pct_2, min_pct=0.1)
    assert "edge" not in kept
    assert kept == ["half", "other"]

    kept = filter_by_detection(pct_1, pct_2, min_pct=0.099)
    assert "edge" in kept


def test_detection_filter_raises_when_empty(small_frame):
    data, cells_1, cells_2 = small_frame
    pct_1 = detection_fraction(data, cells_1)
    pct_2 = detection_fraction(data, cells_2)
    with pytest.raises(EmptyFeatureSetError, match="No features pass min_pct threshold"):
        filter_by_detection(pct_1, pct_2, min_pct=0.5)


def test_fold_change_data_slot_averages_in_linear_space():
    data = pd.DataFrame(
        [[np.log1p(1.0), np.log1p(3.0), 0.0, 0.0]],
        index=["g"],
        columns=["a1", "a2", "b1", "b2"],
    )
    diff = average_log_fold_change(data, ["a1", "a2"], ["b1", "b2"], slot="data")
    assert diff["g"] == pytest.approx(np.log(3.0))


def test_fold_change_counts_slot_logs_mean_counts():
    data = pd.DataFrame([[2.0, 4.0, 1.0, 1.0]], index=["g"], columns=["a1", "a2", "b1", "b2"])
    diff = average_log_fold_change(data, ["a1", "a2"], ["b1", "b2"], slot="counts")
    assert diff["g"] == pytest.approx(np.log(4.0) - np.log(2.0))


def test_fold_change_scale_data_uses_plain_means():
    data = pd.DataFrame([[1.0, 3.0, -1.0, -1.0]], index=["g"], columns=["a1", "a2", "b1", "b2"])
    diff = average_log_fold_change(data, ["a1", "a2"], ["b1", "b2"], slot="scale.data")
    assert diff["g"] == pytest.approx(3.0)


def test_fold_change_filter_absolute_and_positive():
    diff = pd.Series([0.5, -0.5, 0.1], index=["up", "down", "flat"])
    assert filter_by_fold_change(diff, 0.25) == ["up", "down"]
    assert filter_by_fold_change(diff, 0.25, only_pos=True) == ["up"]
    with pytest.raises(EmptyFeatureSetError, match="No features pass logfc threshold"):
        filter_by_fold_change(diff, 1.0)


def test_negative_infinite_thresholds_keep_everything(small_frame):
    data, cells_1, cells_2 = small_frame
    data = data.copy()
    data.loc["zero"] = 0.0
    pct_1 = detection_fraction(data, cells_1)
    pct_2 = detection_fraction(data, cells_2)
    kept = filter_by_detection(pct_1, pct_2, -np.inf)
    assert kept == list(data.index)

    diff = average_log_fold_change(data.loc[kept], cells_1, cells_2)
    assert filter_by_fold_change(diff, -np.inf) == list(data.index)
