"""Shared fixtures: small count matrices with known structure."""

import numpy as np
import pandas as pd
import pytest


SAMPLES = ["A_1", "A_2", "A_3", "B_1", "B_2", "B_3"]


def nb_counts(rng, mu, dispersion=0.05):
    """Negative-binomial draws with mean ``mu`` (array) and fixed dispersion."""
    n = 1.0 / dispersion
    p = n / (n + np.asarray(mu, dtype=float))
    return rng.negative_binomial(n, p)


def make_pair(
    n_genes=200,
    exon_fold=None,
    intron_fold=None,
    samples=SAMPLES,
    intron_scale=0.3,
    seed=1,
    prefix="ENSG",
):
    """Exon/intron matrices; ``*_fold`` maps gene index -> treatment fold change."""
    rng = np.random.RandomState(seed)
    genes = [f"{prefix}{i:011d}" for i in range(n_genes)]
    base = rng.lognormal(mean=5.5, sigma=0.7, size=n_genes)
    treat = np.array([s.startswith("B") for s in samples])

    exon_mu = np.tile(base[:, None], (1, len(samples)))
    intron_mu = exon_mu * intron_scale
    for i, fold in (exon_fold or {}).items():
        exon_mu[i, treat] *= fold
    for i, fold in (intron_fold or {}).items():
        intron_mu[i, treat] *= fold

    exon = pd.DataFrame(nb_counts(rng, exon_mu), index=genes, columns=samples)
    intron = pd.DataFrame(nb_counts(rng, intron_mu), index=genes, columns=samples)
    return exon, intron


@pytest.fixture
def scenario_counts():
    """Two-gene exon matrix with intron counts at 0.3x."""
    exon = pd.DataFrame(
        {"A_1": [100, 50], "A_2": [120, 55], "B_1": [20, 52], "B_2": [25, 48]},
        index=["G1", "G2"],
    )
    intron = (exon * 0.3).round().astype(int)
    return exon, intron


@pytest.fixture
def null_pair():
    return make_pair(n_genes=300, seed=7)


@pytest.fixture
def eisa_pair():
    """Genes 0-9 change exonic counts only (post-transcriptional up-regulation)."""
    return make_pair(n_genes=200, exon_fold={i: 4.0 for i in range(10)}, seed=3)


@pytest.fixture
def pair_factory():
    return make_pair
