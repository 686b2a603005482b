"""Shared fixtures for scmarkers tests."""

import numpy as np
import pandas as pd
import pytest
import anndata as ad


def make_marker_adata(n_cells_1=50, n_cells_2=60, n_features=200, n_markers=20, seed=42):
    """Counts with the first ``n_markers`` features up in group A."""
    rng = np.random.default_rng(seed)
    n_cells = n_cells_1 + n_cells_2

    rates = np.full((n_cells, n_features), 1.0)
    rates[:n_cells_1, :n_markers] = 6.0
    counts = rng.poisson(rates).astype(float)

    obs = pd.DataFrame(
        {
            "cluster": ["A"] * n_cells_1 + ["B"] * n_cells_2,
            "batch": rng.choice(["b1", "b2"], size=n_cells),
            "depth": counts.sum(axis=1),
        },
        index=[f"cell_{i}" for i in range(n_cells)],
    )
    var = pd.DataFrame(index=[f"gene_{i}" for i in range(n_features)])

    adata = ad.AnnData(X=np.log1p(counts), obs=obs, var=var)
    adata.layers["counts"] = counts
    return adata


@pytest.fixture
def marker_adata():
    return make_marker_adata()


@pytest.fixture
def marker_adata_factory():
    return make_marker_adata


@pytest.fixture
def marker_data(marker_adata):
    """Log-scale features x cells frame plus the two cell groups."""
    data = pd.DataFrame(
        marker_adata.X.T, index=marker_adata.var_names, columns=marker_adata.obs_names
    )
    cells_1 = marker_adata.obs_names[(marker_adata.obs["cluster"] == "A").to_numpy()].tolist()
    cells_2 = marker_adata.obs_names[(marker_adata.obs["cluster"] == "B").to_numpy()].tolist()
    return data, cells_1, cells_2


@pytest.fixture
def marker_counts(marker_adata, marker_data):
    _, cells_1, cells_2 = marker_data
    counts = pd.DataFrame(
        marker_adata.layers["counts"].T, index=marker_adata.var_names, columns=marker_adata.obs_names
    )
    return counts, cells_1, cells_2


def make_typed_profiles(cell_types, n_genes=100, genes_per_type=20, high=3.0, noise=0.3, seed=0):
    """Genes x cells log-scale values where each type lights up its own gene block."""
    rng = np.random.default_rng(seed)
    values = rng.normal(0.2, noise, size=(n_genes, len(cell_types)))
    for j, t in enumerate(cell_types):
        block = slice(t * genes_per_type, (t + 1) * genes_per_type)
        values[block, j] += high
    return np.clip(values, 0, None)


@pytest.fixture
def coembed_data():
    """RNA AnnData, ATAC AnnData and a genes x cells RP matrix sharing three cell types."""
    rng = np.random.default_rng(7)
    n_genes = 100
    genes = [f"gene_{i}" for i in range(n_genes)]
    labels = np.array(["T cell", "B cell", "Monocyte"])

    rna_types = np.repeat([0, 1, 2], 30)
    rna_values = make_typed_profiles(rna_types, n_genes=n_genes, seed=1)
    rna = ad.AnnData(
        X=rna_values.T,
        obs=pd.DataFrame(
            {
                "assign.ident": pd.Categorical(labels[rna_types]),
                "leiden_0.6": pd.Categorical(rna_types.astype(str)),
            },
            index=[f"rna_{i}" for i in range(len(rna_types))],
        ),
        var=pd.DataFrame(index=genes),
    )
    rna.var["highly_variable"] = True

    atac_types = np.repeat([0, 1, 2], 20)
    atac_cells = [f"atac_{i}" for i in range(len(atac_types))]
    activity = np.expm1(make_typed_profiles(atac_types, n_genes=n_genes, seed=2)) * 10
    rp_matrix = pd.DataFrame(activity, index=genes, columns=atac_cells)

    n_peaks = 40
    atac = ad.AnnData(
        X=rng.poisson(1.0, size=(len(atac_types), n_peaks)).astype(float),
        obs=pd.DataFrame(
            {"leiden_0.6": pd.Categorical(atac_types.astype(str)), "true_type": labels[atac_types]},
            index=atac_cells,
        ),
        var=pd.DataFrame(index=[f"chr1:{i * 1000}-{i * 1000 + 500}" for i in range(n_peaks)]),
    )
    return rna, atac, rp_matrix
