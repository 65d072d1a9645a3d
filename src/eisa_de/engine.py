"""Differential expression engine.

Three analyses share the preparation steps in this module:

* ``run_eisa`` - Exon-Intron Split Analysis: a joint exon/intron negative
  binomial GLM testing whether the exonic change differs from the intronic
  change (the ``exon_treat`` interaction).
* ``run_custom_glm`` - the same joint model assembled from user formulas,
  by default with a batch covariate.
* ``run_deseq2`` - a single-matrix DESeq2 Wald test on exon counts.

Whenever exon and intron counts are modelled together, the intron
library sizes and normalization factors are set to the exon ones: both
come from the same sequencing libraries.

Example::

    factor = condition_factor(exon.columns, "WT", "KO")
    result = run_eisa(exon, intron, factor, EngineConfig(alpha=0.05))
    result.table.head()
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from pydeseq2.dds import DeseqDataSet
from pydeseq2.ds import DeseqStats

from .config import EngineConfig
from .counts import assert_same_samples, subset_samples
from .errors import StatisticalFitFailure
from .glm import adjust_pvalues, build_design, fit_and_test
from .labels import ConditionFactor, replicate_index
from .normalization import (
    ave_log_cpm,
    calc_norm_factors,
    estimate_dispersions,
    filter_by_expr,
    library_sizes,
    make_dge,
)

logger = logging.getLogger(__name__)

EISA_FULL_BLOCKED = "C(sample) + exon + exon_treat"
EISA_REDUCED_BLOCKED = "C(sample) + exon"
EISA_FULL = "treat + exon + exon_treat"
EISA_REDUCED = "treat + exon"


@dataclass
class DEResult:
    """Per-gene result table of one engine run.

    ``table`` is indexed by gene ID; ``mean_col``, ``effect_col`` and
    ``padj_col`` name its abundance, log fold-change and adjusted p-value
    columns. ``norm_factors`` holds the normalization factors and library
    sizes used, one row per sample.
    """

    method: str
    factor: ConditionFactor
    table: pd.DataFrame
    mean_col: str = "logCPM"
    effect_col: str = "logFC"
    padj_col: str = "FDR"
    mean_is_log: bool = True
    norm_factors: pd.DataFrame = field(default_factory=pd.DataFrame)

    @property
    def n_tested(self) -> int:
        return int(self.table[self.padj_col].notna().sum())

    @property
    def log_mean(self) -> pd.Series:
        mean = self.table[self.mean_col].astype(float)
        if self.mean_is_log:
            return mean
        with np.errstate(divide="ignore"):
            return np.log2(mean)

    def __repr__(self) -> str:
        return (
            f"DEResult({self.method}, {self.factor.contrast_name}, "
            f"genes={len(self.table)}, tested={self.n_tested})"
        )


@dataclass(frozen=True)
class JointCounts:
    """Filtered exon/intron counts with their shared scaling."""

    exon: pd.DataFrame
    intron: pd.DataFrame
    lib_size: pd.Series
    norm_factors: pd.Series

    @property
    def eff_lib(self) -> np.ndarray:
        return (self.lib_size * self.norm_factors).to_numpy(dtype=float)

    @property
    def combined(self) -> pd.DataFrame:
        return pd.concat([self.exon.add_suffix(".exon"), self.intron.add_suffix(".intron")], axis=1)

    def dge(self, groups: Sequence[str]) -> dict:
        """DGEList over the combined matrix; introns reuse the exon scaling."""
        return make_dge(
            self.combined,
            lib_size=np.tile(self.lib_size.to_numpy(dtype=float), 2),
            norm_factors=np.tile(self.norm_factors.to_numpy(dtype=float), 2),
            groups=groups,
        )

    def factor_table(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "lib_size_exon": self.lib_size,
                "lib_size_intron": self.lib_size,
                "norm_factor_exon": self.norm_factors,
                "norm_factor_intron": self.norm_factors,
            }
        )


def _select_genes(counts: pd.DataFrame, factor: ConditionFactor, config: EngineConfig) -> pd.Series:
    if config.gene_selection == "none":
        return pd.Series(True, index=counts.index)
    return filter_by_expr(
        counts,
        factor.labels,
        min_count=config.min_count,
        min_total_count=config.min_total_count,
    )


def prepare_joint(
    exon: pd.DataFrame,
    intron: pd.DataFrame,
    factor: ConditionFactor,
    config: EngineConfig,
) -> JointCounts:
    """Subset, filter and normalize an exon/intron pair.

    Genes must pass the expression filter in both matrices. Library sizes
    come from the unfiltered exon counts; TMM factors from the exon counts
    after filtering when ``recalc_norm_factors`` is set, before otherwise.
    The intron matrix reuses both.
    """
    assert_same_samples(exon, intron)
    exon = subset_samples(exon, factor.samples)
    intron = subset_samples(intron, factor.samples)

    keep = _select_genes(exon, factor, config) & _select_genes(intron, factor, config)
    logger.info("Expression filter: %d of %d genes kept", int(keep.sum()), len(keep))
    if not keep.any():
        raise StatisticalFitFailure("No genes pass the expression filter")

    lib_size = library_sizes(exon)
    norm_source = exon.loc[keep] if config.recalc_norm_factors else exon
    norm_factors = calc_norm_factors(norm_source)
    return JointCounts(
        exon=exon.loc[keep],
        intron=intron.loc[keep],
        lib_size=lib_size,
        norm_factors=norm_factors,
    )


def joint_layout(factor: ConditionFactor, batch: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """One row per (region, sample) observation: exon samples first."""
    n = len(factor.samples)
    batch = list(batch) if batch is not None else ["1"] * n
    treat = factor.is_treatment
    rows = []
    for region, is_exon in (("exon", 1), ("intron", 0)):
        for sample, t, b in zip(factor.samples, treat, batch):
            rows.append(
                {
                    "sample": sample,
                    "region": region,
                    "batch": str(b),
                    "treat": t,
                    "exon": is_exon,
                    "exon_treat": is_exon * t,
                }
            )
    return pd.DataFrame(rows)


def region_log_fc(counts: pd.DataFrame, eff_lib: np.ndarray, factor: ConditionFactor, pseudocount: float) -> pd.Series:
    """Mean log2 normalized count, treatment minus reference."""
    normalized = counts.to_numpy(dtype=float) / eff_lib * eff_lib.mean()
    logged = np.log2(normalized + pseudocount)
    treat = np.asarray(factor.is_treatment, dtype=bool)
    return pd.Series(logged[:, treat].mean(axis=1) - logged[:, ~treat].mean(axis=1), index=counts.index)


def _joint_test(
    joint: JointCounts,
    factor: ConditionFactor,
    layout: pd.DataFrame,
    full_formula: str,
    reduced_formula: str,
    config: EngineConfig,
) -> pd.DataFrame:
    design = build_design(full_formula, reduced_formula, layout)
    combined = joint.combined
    groups = [f"{region}.{label}" for region in ("exon", "intron") for label in factor.labels]
    eff_lib = np.tile(joint.eff_lib, 2)
    dge = estimate_dispersions(joint.dge(groups), design.full)

    logger.info("Fitting %d genes: %s vs %s", len(combined), full_formula, reduced_formula)
    tested = fit_and_test(dge, design, combined.index, config.stat_framework)

    table = pd.DataFrame(index=combined.index)
    table["logFC"] = tested["logFC"]
    table["logCPM"] = ave_log_cpm(combined, eff_lib, config.pseudocount)
    for col in tested.columns.drop(["logFC", "logCPM", "PValue"]):
        table[col] = tested[col]
    table["PValue"] = tested["PValue"]
    table["FDR"] = adjust_pvalues(tested["PValue"])
    table["logFCexon"] = region_log_fc(joint.exon, joint.eff_lib, factor, config.pseudocount)
    table["logFCintron"] = region_log_fc(joint.intron, joint.eff_lib, factor, config.pseudocount)
    return table


def run_eisa(
    exon: pd.DataFrame,
    intron: pd.DataFrame,
    factor: ConditionFactor,
    config: Optional[EngineConfig] = None,
) -> DEResult:
    """Exon-Intron Split Analysis.

    Positive ``logFC`` means the exonic change in treatment exceeds the
    intronic change, i.e. post-transcriptional up-regulation.
    """
    config = config or EngineConfig()
    joint = prepare_joint(exon, intron, factor, config)
    if config.model_samples:
        full, reduced = EISA_FULL_BLOCKED, EISA_REDUCED_BLOCKED
    else:
        full, reduced = EISA_FULL, EISA_REDUCED

    table = _joint_test(joint, factor, joint_layout(factor), full, reduced, config)
    return DEResult(method="eisa", factor=factor, table=table, norm_factors=joint.factor_table())


def default_batch(factor: ConditionFactor) -> list:
    """Replicate index of each sample, used as the batch covariate."""
    return [replicate_index(s) or "1" for s in factor.samples]


def run_custom_glm(
    exon: pd.DataFrame,
    intron: pd.DataFrame,
    factor: ConditionFactor,
    batch: Optional[Sequence[str]] = None,
    config: Optional[EngineConfig] = None,
) -> DEResult:
    """Joint exon/intron GLM with a batch covariate and configurable formulas.

    ``batch`` defaults to each sample's replicate index. Formulas may use
    ``sample``, ``batch``, ``treat``, ``exon`` and ``exon_treat``.

    Raises:
        StatisticalFitFailure: If either design is rank deficient, e.g. a
            batch that coincides with the condition.
    """
    config = config or EngineConfig()
    batch = list(batch) if batch is not None else default_batch(factor)
    if len(batch) != len(factor.samples):
        raise ValueError(f"Got {len(batch)} batch labels for {len(factor.samples)} samples")

    joint = prepare_joint(exon, intron, factor, config)
    layout = joint_layout(factor, batch)
    table = _joint_test(joint, factor, layout, config.full_formula, config.reduced_formula, config)
    return DEResult(method="glm", factor=factor, table=table, norm_factors=joint.factor_table())


def run_condition_glm(
    counts: pd.DataFrame,
    factor: ConditionFactor,
    config: Optional[EngineConfig] = None,
    batch: Optional[Sequence[str]] = None,
    lib_size: Optional[pd.Series] = None,
    norm_factors: Optional[pd.Series] = None,
    method: str = "glm",
) -> DEResult:
    """Treatment-vs-reference GLM on a single count matrix.

    Library sizes and normalization factors may be supplied so that two
    matrices from the same libraries share them.
    """
    config = config or EngineConfig()
    counts = subset_samples(counts, factor.samples)
    keep = _select_genes(counts, factor, config)
    if not keep.any():
        raise StatisticalFitFailure("No genes pass the expression filter")

    if lib_size is None:
        lib_size = library_sizes(counts)
    if norm_factors is None:
        norm_factors = calc_norm_factors(counts.loc[keep] if config.recalc_norm_factors else counts)
    counts = counts.loc[keep]
    samples = list(factor.samples)
    eff_lib = (lib_size.loc[samples] * norm_factors.loc[samples]).to_numpy(dtype=float)

    layout = pd.DataFrame(
        {
            "sample": list(factor.samples),
            "treat": factor.is_treatment,
            "batch": [str(b) for b in batch] if batch is not None else ["1"] * len(factor.samples),
        }
    )
    full, reduced = ("C(batch) + treat", "C(batch)") if batch is not None else ("treat", "1")
    design = build_design(full, reduced, layout)
    dge = make_dge(counts, lib_size.loc[samples], norm_factors.loc[samples], factor.labels)
    dge = estimate_dispersions(dge, design.full)
    tested = fit_and_test(dge, design, counts.index, config.stat_framework)

    table = pd.DataFrame(index=counts.index)
    table["logFC"] = tested["logFC"]
    table["logCPM"] = ave_log_cpm(counts, eff_lib, config.pseudocount)
    for col in tested.columns.drop(["logFC", "logCPM", "PValue"]):
        table[col] = tested[col]
    table["PValue"] = tested["PValue"]
    table["FDR"] = adjust_pvalues(tested["PValue"])

    factors = pd.DataFrame({"lib_size": lib_size, "norm_factor": norm_factors}).loc[samples]
    return DEResult(method=method, factor=factor, table=table, norm_factors=factors)


def run_region_tests(
    exon: pd.DataFrame,
    intron: pd.DataFrame,
    factor: ConditionFactor,
    config: Optional[EngineConfig] = None,
) -> Tuple[DEResult, DEResult]:
    """Separate exonic and intronic condition tests with shared exon scaling."""
    config = config or EngineConfig()
    assert_same_samples(exon, intron)
    exon_sub = subset_samples(exon, factor.samples)
    lib_size = library_sizes(exon_sub)
    norm_factors = calc_norm_factors(exon_sub.loc[_select_genes(exon_sub, factor, config)])
    exonic = run_condition_glm(
        exon, factor, config, lib_size=lib_size, norm_factors=norm_factors, method="exonic"
    )
    intronic = run_condition_glm(
        intron, factor, config, lib_size=lib_size, norm_factors=norm_factors, method="intronic"
    )
    return exonic, intronic


def run_deseq2(
    exon: pd.DataFrame,
    factor: ConditionFactor,
    config: Optional[EngineConfig] = None,
) -> DEResult:
    """DESeq2 Wald test (``~condition``) on exon counts.

    Genes DESeq2 leaves untested (all-zero, outliers, independent
    filtering) stay in the table with NA fields.
    """
    config = config or EngineConfig()
    counts = subset_samples(exon, factor.samples).round().astype(int)
    # Factor levels are passed as fixed names; labels may contain characters
    # the design parser rejects.
    levels = {factor.reference: "reference", factor.treatment: "treatment"}
    metadata = pd.DataFrame(
        {"condition": [levels[label] for label in factor.labels]},
        index=list(factor.samples),
    )

    logger.info("Running DESeq2 (%d vs %d samples)", *factor.group_sizes)
    try:
        dds = DeseqDataSet(counts=counts.T, metadata=metadata, design="~condition", quiet=True)
        dds.deseq2()
        stat_res = DeseqStats(
            dds,
            contrast=["condition", "treatment", "reference"],
            alpha=config.alpha,
            quiet=True,
        )
        stat_res.summary()
    except (ValueError, np.linalg.LinAlgError) as e:
        raise StatisticalFitFailure(f"DESeq2 failed: {e}") from e

    table = stat_res.results_df.copy()
    size_factors = pd.DataFrame({"size_factor": dds.obs["size_factors"].to_numpy()}, index=counts.columns)
    return DEResult(
        method="deseq2",
        factor=factor,
        table=table,
        mean_col="baseMean",
        effect_col="log2FoldChange",
        padj_col="padj",
        mean_is_log=False,
        norm_factors=size_factors,
    )
