"""Tests for expression filtering, TMM factors and dispersion estimates."""

import numpy as np
import pandas as pd
import pytest

from eisa_de.normalization import (
    DEFAULT_DISPERSION,
    MIN_TREND_GENES,
    ave_log_cpm,
    calc_norm_factors,
    cpm,
    estimate_dispersions,
    filter_by_expr,
    log_cpm,
    make_dge,
)


class TestFilterByExpr:

    def test_low_genes_removed(self):
        counts = pd.DataFrame(
            {
                "A_1": [500, 0, 20, 3],
                "A_2": [480, 1, 25, 0],
                "B_1": [510, 0, 0, 2],
                "B_2": [530, 2, 0, 0],
            },
            index=["high", "zero", "one_group", "low"],
        )
        keep = filter_by_expr(counts, ["A", "A", "B", "B"])
        assert keep["high"]
        assert not keep["zero"]
        assert not keep["low"]
        # Expressed in one full group is enough.
        assert keep["one_group"]

    def test_total_count_rule(self):
        counts = pd.DataFrame({"A_1": [7, 1000], "B_1": [7, 1000]}, index=["g", "bg"])
        keep = filter_by_expr(counts, ["A", "B"], min_count=0, min_total_count=15)
        assert not keep["g"]
        assert keep["bg"]


class TestNormFactors:

    def test_identical_samples(self):
        counts = pd.DataFrame(np.tile(np.arange(1, 51)[:, None], (1, 4)) * 10)
        factors = calc_norm_factors(counts)
        np.testing.assert_allclose(factors.to_numpy(), 1.0)

    def test_geometric_mean_one(self, pair_factory):
        exon, _ = pair_factory(n_genes=150, seed=11)
        factors = calc_norm_factors(exon)
        assert np.exp(np.log(factors).mean()) == pytest.approx(1.0)

    def test_composition_bias(self):
        rng = np.random.RandomState(0)
        base = rng.poisson(200, size=(300, 1)).astype(float)
        counts = pd.DataFrame(np.hstack([base, base, base, base]), columns=list("abcd"))
        # One highly expressed gene dominates sample d.
        counts.loc[0, "d"] = counts["d"].sum()
        factors = calc_norm_factors(counts)
        eff = counts.sum() * factors
        # Effective library sizes of the other genes agree.
        assert eff["d"] / eff["a"] == pytest.approx(1.0, rel=0.05)
        np.testing.assert_allclose(factors.to_numpy(), [1.1887, 1.1887, 1.1887, 0.5954], rtol=1e-3)

    def test_depth_not_factor(self):
        counts = pd.DataFrame({"a": [10, 20, 30, 40], "b": [20, 40, 60, 80]})
        np.testing.assert_allclose(calc_norm_factors(counts).to_numpy(), 1.0)


class TestDispersion:

    @staticmethod
    def _estimate(counts, groups):
        design = pd.DataFrame({"Intercept": 1.0, "B": [float(g == "B") for g in groups]})
        dge = make_dge(counts, counts.sum().to_numpy(), np.ones(counts.shape[1]), groups)
        return estimate_dispersions(dge, design)

    def test_poisson_data_near_zero(self):
        rng = np.random.RandomState(2)
        counts = pd.DataFrame(rng.poisson(100, size=(400, 6)))
        dge = self._estimate(counts, list("AAABBB"))
        assert dge["common.dispersion"] < 0.01
        assert (np.asarray(dge["tagwise.dispersion"]) > 0).all()

    def test_overdispersed_data(self, pair_factory):
        exon, _ = pair_factory(n_genes=400, seed=5)
        dge = self._estimate(exon, list("AAABBB"))
        assert 0.02 < dge["common.dispersion"] < 0.1
        assert len(dge["tagwise.dispersion"]) == 400

    def test_trend_fitted_on_many_genes(self, pair_factory):
        exon, _ = pair_factory(n_genes=MIN_TREND_GENES + 100, seed=6)
        dge = self._estimate(exon, list("AAABBB"))
        assert dge["trended.dispersion"] is not None
        assert np.isfinite(dge["trended.dispersion"]).all()

    def test_no_residual_df(self):
        counts = pd.DataFrame({"a": [10, 20], "b": [12, 18]})
        dge = self._estimate(counts, ["A", "B"])
        assert dge["common.dispersion"] == DEFAULT_DISPERSION
        assert dge["tagwise.dispersion"] is None


def test_cpm_and_ave_log_cpm():
    counts = pd.DataFrame({"a": [1, 3], "b": [2, 6]}, index=["x", "y"])
    assert cpm(counts).loc["y", "a"] == pytest.approx(750000)
    ave = ave_log_cpm(counts, counts.sum().to_numpy(), pseudocount=0.001)
    assert ave["y"] == pytest.approx(np.log2(750000), abs=0.01)
    assert list(ave.index) == ["x", "y"]


def test_log_cpm_keeps_labels():
    counts = pd.DataFrame({"a": [0, 30], "b": [10, 50]}, index=["x", "y"])
    logged = log_cpm(counts)
    assert list(logged.columns) == ["a", "b"]
    assert np.isfinite(logged.to_numpy()).all()
    assert logged.loc["y", "a"] > logged.loc["x", "a"]
