"""Exon-intron split and differential expression analysis of count tables.

Processes a dataset's exonic and intronic read-count tables into ranked,
symbol-annotated differential expression tables and MA / PCA plots.

Usage::

    from eisa_de import EngineConfig, condition_factor, run_eisa, write_table

    factor = condition_factor(list(exon.columns), "WT", "KO")
    result = run_eisa(exon, intron, factor, EngineConfig(alpha=0.05))
    write_table(result, "GSE1_eisaDE_WT.KO.txt")
"""

from eisa_de.annotation import GeneNamespace, annotate, detect_namespace
from eisa_de.config import EngineConfig, RunConfig
from eisa_de.counts import assert_same_samples, intersect_genes, intron_fraction, load_counts
from eisa_de.engine import DEResult, run_custom_glm, run_deseq2, run_eisa, run_region_tests
from eisa_de.errors import (
    AnnotationServiceUnavailable,
    ColumnMismatch,
    EisaError,
    InputNotFound,
    NamespaceUndetected,
    StatisticalFitFailure,
)
from eisa_de.labels import ConditionFactor, condition_factor, condition_labels
from eisa_de.pipeline import run_pipeline
from eisa_de.report import ma_plot, rank_table, summarize, write_table

__all__ = [
    "AnnotationServiceUnavailable",
    "ColumnMismatch",
    "ConditionFactor",
    "DEResult",
    "EisaError",
    "EngineConfig",
    "GeneNamespace",
    "InputNotFound",
    "NamespaceUndetected",
    "RunConfig",
    "StatisticalFitFailure",
    "annotate",
    "assert_same_samples",
    "condition_factor",
    "condition_labels",
    "detect_namespace",
    "intersect_genes",
    "intron_fraction",
    "load_counts",
    "ma_plot",
    "rank_table",
    "run_custom_glm",
    "run_deseq2",
    "run_eisa",
    "run_pipeline",
    "run_region_tests",
    "summarize",
    "write_table",
]
