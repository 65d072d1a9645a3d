"""Per-gene negative-binomial GLM tests.

Design matrices are built once with patsy from a per-observation layout
frame. Genes are fitted together with ``edgepython`` (edgeR's glmFit /
glmQLFit) using the dispersions stored on the DGEList and its log
effective-library-size offset. The tested coefficients are the design
columns present in the full model but not in the reduced one.
"""

import logging
from dataclasses import dataclass
from typing import List

import edgepython as ep
import numpy as np
import pandas as pd
import patsy
from statsmodels.stats.multitest import multipletests

from .errors import StatisticalFitFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Design:
    """Full and reduced model matrices plus the columns under test."""

    full: pd.DataFrame
    reduced: pd.DataFrame
    tested: List[str]

    @property
    def df(self) -> int:
        return self.full.shape[1] - self.reduced.shape[1]

    @property
    def coef(self) -> List[int]:
        return [self.full.columns.get_loc(c) for c in self.tested]

    @property
    def residual_df(self) -> int:
        return self.full.shape[0] - self.full.shape[1]


def design_matrix(formula: str, layout: pd.DataFrame) -> pd.DataFrame:
    """Model matrix for ``formula`` over the observation layout."""
    try:
        matrix = patsy.dmatrix(formula, layout, return_type="dataframe")
    except patsy.PatsyError as e:
        raise StatisticalFitFailure(f"Invalid model formula {formula!r}: {e}") from e
    rank = np.linalg.matrix_rank(matrix.to_numpy())
    if rank < matrix.shape[1]:
        raise StatisticalFitFailure(
            f"Design {formula!r} is rank deficient ({rank} < {matrix.shape[1]} columns); "
            "check for covariates confounded with the condition"
        )
    return matrix


def build_design(full_formula: str, reduced_formula: str, layout: pd.DataFrame) -> Design:
    full = design_matrix(full_formula, layout)
    reduced = design_matrix(reduced_formula, layout)
    missing = [c for c in reduced.columns if c not in full.columns]
    if missing:
        raise StatisticalFitFailure(
            f"Reduced model {reduced_formula!r} is not nested in {full_formula!r}: {missing}"
        )
    tested = [c for c in full.columns if c not in reduced.columns]
    if not tested:
        raise StatisticalFitFailure(
            f"Full model {full_formula!r} does not extend reduced model {reduced_formula!r}"
        )
    return Design(full=full, reduced=reduced, tested=tested)


def fit_and_test(
    dge: dict,
    design: Design,
    genes: pd.Index,
    framework: str = "lrt",
) -> pd.DataFrame:
    """Fit every gene of ``dge`` and test the design's extra terms.

    Args:
        dge: DGEList with dispersions already estimated; its columns follow
            the design's row order.
        design: Full / reduced matrices over the same observations.
        genes: Gene IDs, one per row of ``dge``.
        framework: ``"lrt"`` (likelihood ratio) or ``"qlf"`` (quasi-likelihood
            F-test).

    Returns:
        Frame indexed by ``genes`` with ``logFC`` (log2 of the first tested
        coefficient), ``logCPM``, ``LR`` or ``F``, and ``PValue``.
    """
    X = design.full.to_numpy(dtype=float)
    try:
        if framework == "qlf":
            if design.residual_df < 1:
                raise StatisticalFitFailure("The quasi-likelihood F-test needs residual degrees of freedom")
            fit = ep.glm_ql_fit(dge, design=X)
            result = ep.glm_ql_ftest(fit, coef=design.coef)
        else:
            fit = ep.glm_fit(dge, design=X)
            result = ep.glm_lrt(fit, coef=design.coef)
    except (ValueError, np.linalg.LinAlgError) as e:
        raise StatisticalFitFailure(f"GLM fit failed: {e}") from e

    table = result["table"].copy()
    table.index = genes
    n_failed = int(table["PValue"].isna().sum())
    if n_failed:
        logger.warning("No p-value for %d of %d genes", n_failed, len(table))
    return table


def adjust_pvalues(pvalues: pd.Series) -> pd.Series:
    """Benjamini-Hochberg FDR; NaN p-values stay NaN."""
    fdr = pd.Series(np.nan, index=pvalues.index, name="FDR")
    tested = pvalues.notna()
    if tested.any():
        _, adjusted, _, _ = multipletests(pvalues[tested].to_numpy(), method="fdr_bh")
        fdr[tested] = adjusted
    return fdr
