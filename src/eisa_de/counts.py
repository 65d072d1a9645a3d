"""Loading and preparing exon / intron count matrices.

Count matrices are ``pandas.DataFrame`` objects with gene identifiers as the
index and sample identifiers as columns. Functions here never modify the
frames they receive.
"""

import logging
from pathlib import Path
from typing import Tuple, Union

import numpy as np
import pandas as pd

from .errors import ColumnMismatch, InputNotFound

logger = logging.getLogger(__name__)

EXON_SUFFIX = "_ExonicCounts.txt"
INTRON_SUFFIX = "_IntronicCounts.txt"


def count_paths(input_dir: Union[str, Path], dataset: str) -> Tuple[Path, Path]:
    """Exonic and intronic count table paths for a dataset."""
    input_dir = Path(input_dir)
    return input_dir / f"{dataset}{EXON_SUFFIX}", input_dir / f"{dataset}{INTRON_SUFFIX}"


def load_counts(path: Union[str, Path]) -> pd.DataFrame:
    """Load a tab-separated count table (first column = gene ID).

    Raises:
        InputNotFound: If the file does not exist.
        ValueError: On duplicated identifiers or missing, negative or
            non-integer counts.
    """
    path = Path(path)
    if not path.exists():
        raise InputNotFound(f"Count table not found: {path}")

    counts = pd.read_csv(path, sep="\t", index_col=0)
    counts.index = counts.index.astype(str)
    counts.columns = counts.columns.astype(str)

    if counts.index.duplicated().any():
        dupes = counts.index[counts.index.duplicated()].unique()[:5]
        raise ValueError(f"{path.name}: duplicated gene IDs, e.g. {list(dupes)}")
    if counts.columns.duplicated().any():
        raise ValueError(f"{path.name}: duplicated sample IDs")

    counts = counts.apply(pd.to_numeric, errors="raise")
    values = counts.to_numpy(dtype=float)
    if np.isnan(values).any():
        raise ValueError(f"{path.name}: missing counts in {int(counts.isna().any(axis=1).sum())} genes")
    if (values < 0).any():
        raise ValueError(f"{path.name}: counts must be non-negative")
    if not np.isfinite(values).all() or (values != np.round(values)).any():
        raise ValueError(f"{path.name}: counts must be whole numbers")

    logger.info("Loaded %s: %d genes x %d samples", path.name, *counts.shape)
    return counts


def load_dataset(input_dir: Union[str, Path], dataset: str) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Load the (exon, intron) count pair for a dataset."""
    exon_path, intron_path = count_paths(input_dir, dataset)
    return load_counts(exon_path), load_counts(intron_path)


def assert_same_samples(exon: pd.DataFrame, intron: pd.DataFrame) -> None:
    """Fail unless both matrices have identical columns in identical order."""
    if list(exon.columns) != list(intron.columns):
        only_exon = sorted(set(exon.columns) - set(intron.columns))
        only_intron = sorted(set(intron.columns) - set(exon.columns))
        detail = (
            f"exon-only {only_exon}, intron-only {only_intron}"
            if only_exon or only_intron
            else "same samples in a different order"
        )
        raise ColumnMismatch(f"Exon and intron sample columns differ: {detail}")


def intersect_genes(
    exon: pd.DataFrame,
    intron: pd.DataFrame,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Restrict both matrices to their shared genes, in exon row order."""
    shared = exon.index[exon.index.isin(intron.index)]
    n_dropped = len(exon) + len(intron) - 2 * len(shared)
    if n_dropped:
        logger.info(
            "Gene intersection: %d shared (%d exon, %d intron before)",
            len(shared), len(exon), len(intron),
        )
    return exon.loc[shared].copy(), intron.loc[shared].copy()


def intron_fraction(exon: pd.DataFrame, intron: pd.DataFrame) -> pd.Series:
    """Per-sample share of intronic reads, ``intron / (exon + intron)``.

    Informational only; a sample without reads yields NaN.
    """
    exon_total = exon.sum(axis=0).astype(float)
    intron_total = intron.sum(axis=0).astype(float)
    with np.errstate(divide="ignore", invalid="ignore"):
        fraction = intron_total / (exon_total + intron_total)
    fraction.name = "intron_fraction"
    return fraction


def subset_samples(counts: pd.DataFrame, samples) -> pd.DataFrame:
    return counts.loc[:, list(samples)]
