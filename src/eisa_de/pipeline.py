"""End-to-end processing of one dataset.

Loads the exon / intron count pair, writes QC plots, then runs the EISA,
custom GLM and DESeq2 analyses, each followed by symbol annotation and
reporting. Output files are named after the dataset and the compared
condition pair; a failure aborts the run and may leave earlier outputs
behind.
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
import requests

from . import report
from .annotation import annotate, create_session, symbol_lookup
from .config import RunConfig
from .counts import assert_same_samples, intersect_genes, intron_fraction, load_dataset
from .engine import DEResult, run_custom_glm, run_deseq2, run_eisa, run_region_tests
from .labels import ConditionFactor, condition_factor, condition_labels, default_conditions

logger = logging.getLogger(__name__)


@dataclass
class PipelineReport:
    """What one run produced."""

    dataset: str
    reference: str
    treatment: str
    intron_fraction: pd.Series
    summaries: Dict[str, report.DESummary] = field(default_factory=dict)
    files: List[Path] = field(default_factory=list)


class OutputNames:
    """File names for one dataset and condition pair."""

    def __init__(self, output_dir: Path, dataset: str, factor: ConditionFactor, alpha: float):
        self.dir = Path(output_dir)
        self.dataset = dataset
        self.pair = factor.contrast_name
        self.alpha = f"{alpha:g}"

    def _path(self, name: str) -> Path:
        return self.dir / f"{self.dataset}_{name}"

    def pca(self, region: str) -> Path:
        return self._path(f"PCA_{region}.png")

    def eisa_plot(self) -> Path:
        return self._path(f"eisaMAplot_{self.pair}.png")

    def region_plot(self, region: str) -> Path:
        return self._path(f"eisaMAplot_{self.pair}_{region}_{self.alpha}.png")

    def custom_plot(self) -> Path:
        return self._path(f"eisaMAplotcustom_{self.pair}.png")

    def deseq_plot(self) -> Path:
        return self._path(f"DESeqMAplot_{self.pair}.png")

    def eisa_table(self) -> Path:
        return self._path(f"eisaDE_{self.pair}.txt")

    def custom_table(self) -> Path:
        return self._path(f"eisaDEcustom_{self.pair}.txt")

    def deseq_table(self) -> Path:
        return self._path(f"DESeq_{self.pair}.txt")


def write_qc_plots(
    exon: pd.DataFrame,
    intron: pd.DataFrame,
    names: OutputNames,
    pseudocount: float,
) -> List[Path]:
    """PCA plots for both matrices; existing files are left untouched."""
    labels = condition_labels(exon.columns)
    written = []
    for region, counts in (("exon", exon), ("intron", intron)):
        path = names.pca(region)
        if path.exists():
            logger.info("%s exists, skipping", path.name)
            continue
        written.append(
            report.pca_plot(counts, labels, path, f"{names.dataset} {region}ic counts", pseudocount=pseudocount)
        )
    return written


def _report(
    result: DEResult,
    config: RunConfig,
    run: PipelineReport,
    plot_path: Path,
    table_path: Optional[Path],
    title: str,
    symbols: Optional[Dict[str, str]],
) -> None:
    summary = report.summarize(result, config.alpha)
    run.summaries[result.method] = summary
    logger.info(
        "%s %s: %d up, %d down, ratio %.3g",
        result.method, result.factor.contrast_name, summary.n_up, summary.n_down, summary.ratio,
    )

    run.files.append(report.ma_plot(result, plot_path, title, config.alpha, summary))
    if table_path is None:
        return

    if symbols is not None:
        result = replace(result, table=annotate(result.table, mapping=symbols))
    if config.interactive_plots:
        run.files.append(
            report.interactive_ma_plot(result, plot_path.with_suffix(".html"), title, config.alpha, summary)
        )
    run.files.append(report.write_table(result, table_path))


def run_pipeline(
    config: RunConfig,
    session: Optional[requests.Session] = None,
) -> PipelineReport:
    """Run all three analyses for ``config.dataset``.

    Raises:
        InputNotFound, ColumnMismatch, NamespaceUndetected,
        AnnotationServiceUnavailable, StatisticalFitFailure: all fatal.
    """
    exon, intron = load_dataset(config.input_dir, config.dataset)
    assert_same_samples(exon, intron)
    exon, intron = intersect_genes(exon, intron)

    fraction = intron_fraction(exon, intron)
    for sample, value in fraction.items():
        logger.info("Intron fraction %s: %.3f", sample, value)

    reference, treatment = config.conditions or default_conditions(list(exon.columns))
    factor = condition_factor(list(exon.columns), reference, treatment)
    logger.info(
        "%s: %s (%d samples) vs %s (%d samples)",
        config.dataset, treatment, factor.group_sizes[1], reference, factor.group_sizes[0],
    )

    names = OutputNames(config.output_dir, config.dataset, factor, config.alpha)
    run = PipelineReport(
        dataset=config.dataset,
        reference=reference,
        treatment=treatment,
        intron_fraction=fraction,
    )
    run.files.extend(write_qc_plots(exon, intron, names, config.engine.pseudocount))

    symbols = None
    if config.annotate:
        symbols = symbol_lookup(list(exon.index), session=session or create_session())
    title = f"{config.dataset}: {treatment} vs {reference}"

    eisa = run_eisa(exon, intron, factor, config.engine)
    _report(eisa, config, run, names.eisa_plot(), names.eisa_table(), f"{title} (EISA)", symbols)

    exonic, intronic = run_region_tests(exon, intron, factor, config.engine)
    for region, result in (("exonic", exonic), ("intronic", intronic)):
        _report(result, config, run, names.region_plot(region), None, f"{title} ({region})", symbols)

    custom = run_custom_glm(exon, intron, factor, config=config.engine)
    _report(custom, config, run, names.custom_plot(), names.custom_table(), f"{title} (GLM)", symbols)

    deseq = run_deseq2(exon, factor, config.engine)
    _report(deseq, config, run, names.deseq_plot(), names.deseq_table(), f"{title} (DESeq2)", symbols)

    return run
