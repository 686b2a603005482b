import numpy as np
import pandas as pd
import pytest

from scmarkers.tools.anchors import (
    AnchorSet,
    find_mnn_pairs,
    find_transfer_anchors,
    score_anchors,
    transfer_data,
)


@pytest.fixture
def reference_and_query(coembed_data):
    rna, atac, rp_matrix = coembed_data
    reference = pd.DataFrame(rna.X.T, index=rna.var_names, columns=rna.obs_names)
    query = np.log1p(rp_matrix / rp_matrix.sum(axis=0) * 1e4)
    return reference, query, rna.obs["assign.ident"], atac.obs["true_type"]


def test_mnn_pairs_are_mutual():
    X1 = np.array([[0.0, 0.0], [10.0, 10.0]])
    X2 = np.array([[0.1, 0.0], [10.0, 9.9], [50.0, 50.0]])
    pairs = find_mnn_pairs(X1, X2, k=1)
    assert sorted(map(tuple, pairs)) == [(0, 0), (1, 1)]


def test_anchor_scores_are_rescaled():
    rng = np.random.default_rng(0)
    ref = rng.normal(size=(40, 5))
    query = ref + rng.normal(scale=0.05, size=ref.shape)
    pairs = np.column_stack([np.arange(40), np.arange(40)])
    scores = score_anchors(pairs, ref, query, k_score=10)
    assert scores.min() >= 0 and scores.max() <= 1
    assert scores.max() == 1.0


def test_find_transfer_anchors(reference_and_query):
    reference, query, _, _ = reference_and_query
    anchors = find_transfer_anchors(reference, query, dims=2)

    assert isinstance(anchors, AnchorSet)
    assert anchors.n_anchors > 0
    assert list(anchors.anchors.columns) == ["cell1", "cell2", "score"]
    assert anchors.anchors["score"].between(0, 1).all()
    assert anchors.reference_embedding.shape == (reference.shape[1], 2)
    np.testing.assert_allclose(np.linalg.norm(anchors.query_embedding, axis=1), 1.0)


def test_labels_transfer_to_matching_types(reference_and_query):
    reference, query, labels, truth = reference_and_query
    anchors = find_transfer_anchors(reference, query, dims=2)
    with pytest.warns(UserWarning, match="CCA query embedding"):
        predictions = transfer_data(anchors, labels)

    assert list(predictions.index) == list(query.columns)
    assert predictions.columns[0] == "predicted.id"
    assert predictions.columns[-1] == "prediction.score.max"
    score_columns = [c for c in predictions.columns if c.startswith("prediction.score.") and c != "prediction.score.max"]
    np.testing.assert_allclose(predictions[score_columns].sum(axis=1), 1.0)
    accuracy = (predictions["predicted.id"] == truth.loc[predictions.index]).mean()
    assert accuracy > 0.9


def test_values_transfer_with_weight_reduction(reference_and_query):
    reference, query, _, _ = reference_and_query
    anchors = find_transfer_anchors(reference, query, dims=2)
    lsi = pd.DataFrame(anchors.query_embedding, index=query.columns)
    imputed = transfer_data(anchors, reference.iloc[:30], weight_reduction=lsi)

    assert imputed.shape == (30, query.shape[1])
    assert list(imputed.columns) == list(query.columns)
    # each imputed value is a convex combination of reference values
    assert (imputed.to_numpy() <= reference.iloc[:30].to_numpy().max() + 1e-9).all()


def test_weight_reduction_must_match_query(reference_and_query):
    reference, query, labels, _ = reference_and_query
    anchors = find_transfer_anchors(reference, query, dims=2)
    with pytest.raises(ValueError, match="weight_reduction"):
        transfer_data(anchors, labels, weight_reduction=np.zeros((3, 2)))


def test_no_shared_features(reference_and_query):
    reference, query, _, _ = reference_and_query
    query = query.rename(index=lambda g: f"other_{g}")
    with pytest.raises(ValueError, match="No shared features"):
        find_transfer_anchors(reference, query)
