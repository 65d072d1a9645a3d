"""Expression filtering, TMM normalization factors and dispersion estimates.

Thin wrappers over ``edgepython`` (edgeR's filterByExpr, calcNormFactors,
estimateDisp and cpm) that keep gene IDs and sample names on the pandas
side. Matrices are genes x samples; nothing is modified in place.
"""

import logging
import warnings
from typing import Optional, Sequence

import edgepython as ep
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_DISPERSION = 0.1
# Below this many genes the abundance trend is not fitted.
MIN_TREND_GENES = 500


def library_sizes(counts: pd.DataFrame) -> pd.Series:
    return counts.sum(axis=0).astype(float)


def cpm(counts: pd.DataFrame, lib_size: Optional[Sequence[float]] = None) -> pd.DataFrame:
    """Counts per million."""
    lib = library_sizes(counts) if lib_size is None else np.asarray(lib_size, dtype=float)
    values = ep.cpm(counts.to_numpy(dtype=float), lib_size=np.asarray(lib, dtype=float))
    return pd.DataFrame(values, index=counts.index, columns=counts.columns)


def log_cpm(counts: pd.DataFrame, pseudocount: float = 2.0) -> pd.DataFrame:
    """log2 CPM with a library-scaled pseudocount."""
    values = ep.cpm(
        counts.to_numpy(dtype=float),
        lib_size=library_sizes(counts).to_numpy(),
        log=True,
        prior_count=pseudocount,
    )
    return pd.DataFrame(values, index=counts.index, columns=counts.columns)


def ave_log_cpm(
    counts: pd.DataFrame,
    eff_lib: Sequence[float],
    pseudocount: float = 2.0,
) -> pd.Series:
    """Average abundance per gene on the log2-CPM scale."""
    values = ep.ave_log_cpm(
        counts.to_numpy(dtype=float),
        lib_size=np.asarray(eff_lib, dtype=float),
        prior_count=pseudocount,
    )
    return pd.Series(np.asarray(values, dtype=float), index=counts.index, name="logCPM")


def filter_by_expr(
    counts: pd.DataFrame,
    groups: Sequence[str],
    min_count: float = 10.0,
    min_total_count: float = 15.0,
) -> pd.Series:
    """Boolean mask of genes with worthwhile counts (edgeR ``filterByExpr``).

    A gene is kept when its CPM reaches ``min_count`` scaled to the median
    library size in at least as many samples as the smallest group, and its
    total count reaches ``min_total_count``.
    """
    keep = ep.filter_by_expr(
        counts.to_numpy(dtype=float),
        group=np.asarray(list(groups)),
        min_count=min_count,
        min_total_count=min_total_count,
    )
    return pd.Series(np.asarray(keep, dtype=bool), index=counts.index)


def calc_norm_factors(counts: pd.DataFrame) -> pd.Series:
    """TMM normalization factors, scaled to a geometric mean of one."""
    factors = ep.calc_norm_factors(counts.to_numpy(dtype=float), method="TMM")
    return pd.Series(np.asarray(factors, dtype=float), index=counts.columns, name="norm_factors")


def make_dge(
    counts: pd.DataFrame,
    lib_size: Sequence[float],
    norm_factors: Sequence[float],
    groups: Sequence[str],
) -> dict:
    """DGEList over ``counts`` with the given per-column scaling."""
    return ep.make_dgelist(
        counts.to_numpy(dtype=float),
        lib_size=np.asarray(lib_size, dtype=float),
        norm_factors=np.asarray(norm_factors, dtype=float),
        group=np.asarray(list(groups)),
    )


def estimate_dispersions(dge: dict, design: pd.DataFrame) -> dict:
    """Common, trended and tagwise dispersions (edgeR ``estimateDisp``).

    The abundance trend needs a reasonable number of genes; smaller sets
    are squeezed toward the common dispersion instead. A design that
    leaves no residual degrees of freedom gets ``DEFAULT_DISPERSION`` for
    every gene.
    """
    n_genes = dge["counts"].shape[0]
    trend = "locfit" if n_genes >= MIN_TREND_GENES else "none"
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        dge = ep.estimate_disp(dge, design=design.to_numpy(dtype=float), trend_method=trend)

    common = dge.get("common.dispersion")
    if common is None or not np.isfinite(common):
        logger.warning("No residual degrees of freedom; using dispersion %.2f for all genes", DEFAULT_DISPERSION)
        dge["common.dispersion"] = DEFAULT_DISPERSION
        dge["trended.dispersion"] = None
        dge["tagwise.dispersion"] = None
    else:
        logger.debug("Common dispersion %.4f (%s trend, %d genes)", common, trend, n_genes)
    return dge
