"""End-to-end pipeline tests on count files written to a temp directory."""

from unittest.mock import MagicMock

import pandas as pd
import pytest

from eisa_de.config import EngineConfig, RunConfig
from eisa_de.counts import intersect_genes, load_dataset
from eisa_de.engine import run_condition_glm
from eisa_de.errors import ColumnMismatch, InputNotFound
from eisa_de.labels import condition_factor, condition_labels
from eisa_de.pipeline import OutputNames, run_pipeline
from eisa_de.report import write_table


def _write_pair(directory, dataset, exon, intron):
    exon.to_csv(directory / f"{dataset}_ExonicCounts.txt", sep="\t", index_label="gene_id")
    intron.to_csv(directory / f"{dataset}_IntronicCounts.txt", sep="\t", index_label="gene_id")


def _mart_session(gene_id, symbol):
    response = MagicMock()
    response.status_code = 200
    response.text = f"Gene stable ID\tHGNC symbol\n{gene_id}\t{symbol}\n"
    session = MagicMock()
    session.post.return_value = response
    return session


def test_two_gene_scenario(tmp_path, scenario_counts):
    exon, intron = scenario_counts
    _write_pair(tmp_path, "GSE1", exon, intron)

    exon, intron = load_dataset(tmp_path, "GSE1")
    labels = condition_labels(exon.columns)
    assert labels == ["A", "A", "B", "B"]

    exon_i, intron_i = intersect_genes(exon, intron)
    pd.testing.assert_frame_equal(exon_i, exon)

    factor = condition_factor(list(exon.columns), "A", "B")
    result = run_condition_glm(exon_i, factor, EngineConfig(gene_selection="none"))
    assert result.table.loc["G1", "FDR"] < 0.05

    path = write_table(result, tmp_path / "GSE1_DE_A.B.txt")
    rows = path.read_text().splitlines()[1:]
    assert len(rows) == 2
    assert rows[0].startswith("G1\t")


class TestRunPipeline:

    @pytest.fixture
    def dataset_dir(self, tmp_path, eisa_pair):
        exon, intron = eisa_pair
        # one intron-only and one exon-only gene; both dropped by intersection
        intron.loc["ENSG99999999999"] = [5] * 6
        exon.loc["ENSG88888888888"] = [5] * 6
        inputs = tmp_path / "in"
        inputs.mkdir()
        _write_pair(inputs, "GSE42", exon, intron)
        return inputs

    def test_outputs(self, dataset_dir, tmp_path):
        config = RunConfig(dataset="GSE42", input_dir=dataset_dir, output_dir=tmp_path / "out", annotate=False)
        report = run_pipeline(config)

        assert (report.reference, report.treatment) == ("A", "B")
        assert set(report.summaries) == {"eisa", "exonic", "intronic", "glm", "deseq2"}
        assert report.summaries["eisa"].n_up >= 8
        assert len(report.intron_fraction) == 6
        assert report.intron_fraction.between(0.15, 0.35).all()

        names = sorted(p.name for p in (tmp_path / "out").iterdir())
        assert names == sorted(
            [
                "GSE42_PCA_exon.png",
                "GSE42_PCA_intron.png",
                "GSE42_eisaMAplot_A.B.png",
                "GSE42_eisaMAplot_A.B_exonic_0.05.png",
                "GSE42_eisaMAplot_A.B_intronic_0.05.png",
                "GSE42_eisaDE_A.B.txt",
                "GSE42_eisaMAplotcustom_A.B.png",
                "GSE42_eisaDEcustom_A.B.txt",
                "GSE42_DESeqMAplot_A.B.png",
                "GSE42_DESeq_A.B.txt",
            ]
        )
        assert sorted(p.name for p in report.files) == names

        eisa = pd.read_csv(tmp_path / "out" / "GSE42_eisaDE_A.B.txt", sep="\t", index_col=0)
        assert "ENSG99999999999" not in eisa.index
        assert "ENSG88888888888" not in eisa.index
        assert eisa["FDR"].iloc[0] == eisa["FDR"].min()

    def test_existing_pca_kept(self, dataset_dir, tmp_path):
        out = tmp_path / "out"
        out.mkdir()
        (out / "GSE42_PCA_exon.png").write_bytes(b"existing")
        config = RunConfig(dataset="GSE42", input_dir=dataset_dir, output_dir=out, annotate=False)
        report = run_pipeline(config)

        assert (out / "GSE42_PCA_exon.png").read_bytes() == b"existing"
        assert (out / "GSE42_PCA_intron.png").exists()
        assert out / "GSE42_PCA_exon.png" not in report.files

    def test_annotation_and_html(self, dataset_dir, tmp_path, eisa_pair):
        exon, _ = eisa_pair
        first_gene = exon.index[0]
        session = _mart_session(first_gene, "GENE0")
        config = RunConfig(
            dataset="GSE42",
            input_dir=dataset_dir,
            output_dir=tmp_path / "out",
            conditions=("B", "A"),
            interactive_plots=True,
        )
        report = run_pipeline(config, session=session)

        assert (report.reference, report.treatment) == ("B", "A")
        # One BioMart query per run, shared by every annotated table.
        assert session.post.call_count == 1
        table = pd.read_csv(
            tmp_path / "out" / "GSE42_eisaDEcustom_B.A.txt", sep="\t", index_col=0, keep_default_na=False
        )
        assert table.loc[first_gene, "symbol"] == "GENE0"
        assert (table.drop(index=first_gene)["symbol"] == "").all()
        assert (tmp_path / "out" / "GSE42_eisaMAplot_B.A.html").exists()
        # treatment and reference swapped: up-regulated genes become down
        assert report.summaries["eisa"].n_down >= 8


class TestFailures:

    def test_missing_input(self, tmp_path):
        with pytest.raises(InputNotFound):
            run_pipeline(RunConfig(dataset="GSE0", input_dir=tmp_path, output_dir=tmp_path, annotate=False))

    def test_sample_mismatch(self, tmp_path, scenario_counts):
        exon, intron = scenario_counts
        _write_pair(tmp_path, "GSE1", exon, intron.rename(columns={"B_2": "B_3"}))
        with pytest.raises(ColumnMismatch):
            run_pipeline(RunConfig(dataset="GSE1", input_dir=tmp_path, output_dir=tmp_path, annotate=False))
        assert not list(tmp_path.glob("*.png"))


def test_output_names(tmp_path):
    factor = condition_factor(["WT_1", "KO_1"], "WT", "KO")
    names = OutputNames(tmp_path, "GSE7", factor, 0.1)
    assert names.region_plot("intronic").name == "GSE7_eisaMAplot_WT.KO_intronic_0.1.png"
    assert names.deseq_table().name == "GSE7_DESeq_WT.KO.txt"
