import numpy as np
import pandas as pd
import pytest
import anndata as ad

from scmarkers.io import parse_peak_names, read_gtf_genes
from scmarkers.tools.gene_activity import extend_upstream, gene_activity_matrix

GTF_LINES = [
    "#!genome-build test",
    'chr1\ttest\tgene\t3000\t4000\t.\t+\t.\tgene_id "g1"; gene_name "PLUS";',
    'chr1\ttest\ttranscript\t3000\t4000\t.\t+\t.\tgene_id "g1"; gene_name "PLUS";',
    'chr1\ttest\tgene\t5000\t6000\t.\t-\t.\tgene_id "g2"; gene_name "MINUS";',
    'chr2\ttest\tgene\t100\t900\t.\t+\t.\tgene_id "g3";',
    'chrM\ttest\tgene\t1\t500\t.\t+\t.\tgene_id "g4"; gene_name "MT-A";',
]


@pytest.fixture
def gtf_file(tmp_path):
    path = tmp_path / "genes.gtf"
    path.write_text("\n".join(GTF_LINES) + "\n")
    return path


def test_read_gtf_genes(gtf_file):
    genes = read_gtf_genes(gtf_file, seq_levels=["1", "2", "X"])
    assert list(genes["gene_name"]) == ["PLUS", "MINUS", "g3"]
    assert list(genes["chrom"]) == ["1", "1", "2"]


def test_extend_upstream_respects_strand(gtf_file):
    genes = extend_upstream(read_gtf_genes(gtf_file), upstream=2000)
    plus = genes.set_index("gene_name").loc["PLUS"]
    minus = genes.set_index("gene_name").loc["MINUS"]
    assert (plus["start"], plus["end"]) == (1000, 4000)
    assert (minus["start"], minus["end"]) == (5000, 8000)
    assert genes.set_index("gene_name").loc["g3", "start"] == 1


def test_parse_peak_names():
    peaks = parse_peak_names(["chr1:100-200", "chr2-300-400", "X_5_10"])
    assert list(peaks["chrom"]) == ["1", "2", "X"]
    assert list(peaks["start"]) == [100, 300, 5]
    with pytest.raises(ValueError, match="Cannot parse peak name"):
        parse_peak_names(["not_a_peak"])


def test_gene_activity_sums_overlapping_peaks(gtf_file):
    peaks = ["chr1:1500-1600", "chr1:3500-3600", "chr1-7000-7100", "chr2:5000-5100", "chrM:10-20"]
    counts = np.array([[1, 2, 3, 4, 5], [0, 1, 0, 2, 7]], dtype=float)
    atac = ad.AnnData(
        X=counts,
        obs=pd.DataFrame(index=["c1", "c2"]),
        var=pd.DataFrame(index=peaks),
    )
    atac.layers["counts"] = counts

    activity = gene_activity_matrix(atac, gtf_file, upstream=2000)

    assert list(activity.columns) == ["c1", "c2"]
    # promoter peak and gene body peak for PLUS, upstream-side peak for MINUS
    assert activity.loc["PLUS"].tolist() == [3.0, 1.0]
    assert activity.loc["MINUS"].tolist() == [3.0, 0.0]
    assert "g3" not in activity.index
    assert "MT-A" not in activity.index
