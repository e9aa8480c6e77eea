"""
Test suite for the jumptest package.

Tests cover:
    1. Kernels and one-sided local-linear weights
    2. Jump estimates and studentized statistics
    3. Gaussian-max critical values and p-values
    4. The threshold test and its result object
    5. Utility and simulation functions
"""

import numpy as np
import pandas as pd
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from jumptest import (
    threshold_test,
    jump_statistics,
    gaussian_max_critical_value,
    gaussian_max_pvalue,
    kernel_function,
    local_linear_weights,
    local_linear_fit,
    rule_of_thumb_bandwidth,
    threshold_grid,
    prepare_panel,
    load_panel,
    generate_panel_data,
    simulate_max_critical_values,
    simulate_threshold_critical_values,
    monte_carlo_size_power,
)
from jumptest.utils import orient_statistics


def _step_panel(N=4, T=2000, jump=2.0, sigma=0.5, seed=0):
    """Units with y = x + jump * 1{x >= 0} + noise."""
    rng = np.random.default_rng(seed)
    frames = []
    for j in range(N):
        x = rng.uniform(-2, 2, size=T)
        y = x + jump * (x >= 0) + rng.normal(0, sigma, size=T)
        frames.append(pd.DataFrame({"id": f"S{j}", "x": x, "y": y}))
    return pd.concat(frames, ignore_index=True)


# ============================================================================
# Test kernels and local-linear weights
# ============================================================================

class TestKernels:
    """Tests for kernel evaluation."""

    def test_epanechnikov_peak(self):
        assert abs(kernel_function(0.0, "epanechnikov") - 0.75) < 1e-12

    def test_compact_support(self):
        for kernel in ["epanechnikov", "triangular", "uniform"]:
            k = kernel_function(np.array([-1.5, 1.01, 3.0]), kernel)
            assert np.all(k == 0)

    def test_gaussian_positive(self):
        assert np.all(kernel_function(np.array([-5.0, 0.0, 5.0]),
                                      "gaussian") > 0)

    def test_unknown_kernel(self):
        with pytest.raises(ValueError):
            kernel_function(0.0, "cosine")


class TestLocalLinear:
    """Tests for one-sided local-linear weights."""

    def test_weights_sum_to_one(self):
        x = np.linspace(-1, 1, 201)
        for side in ["right", "left"]:
            w, n_eff = local_linear_weights(x, 0.1, 0.5, side=side)
            assert abs(np.sum(w) - 1.0) < 1e-10
            assert abs(np.sum(w * (x - 0.1))) < 1e-10
            assert n_eff > 0

    def test_one_sided_support(self):
        x = np.linspace(-1, 1, 201)
        w_r, _ = local_linear_weights(x, 0.0, 0.5, side="right")
        w_l, _ = local_linear_weights(x, 0.0, 0.5, side="left")
        assert np.all(w_r[x < 0] == 0)
        assert np.all(w_l[x >= 0] == 0)

    def test_reproduces_linear_function(self):
        x = np.linspace(-1, 1, 101)
        y = 2.0 + 3.0 * x
        m_hat, _, resid, _ = local_linear_fit(y, x, 0.2, 0.5, side="right")
        assert abs(m_hat - 2.6) < 1e-8
        assert np.max(np.abs(resid)) < 1e-8

    def test_empty_side_raises(self):
        x = np.linspace(-1, -0.5, 50)
        with pytest.raises(ValueError):
            local_linear_weights(x, 0.0, 0.5, side="right")

    def test_unknown_side(self):
        with pytest.raises(ValueError):
            local_linear_weights(np.linspace(-1, 1, 10), 0.0, 0.5,
                                 side="up")


# ============================================================================
# Test jump statistics
# ============================================================================

class TestJumpStatistics:
    """Tests for unit-by-threshold jump estimates."""

    def test_shapes(self):
        data = _step_panel(N=3, T=500)
        js = jump_statistics(data, "y", "x", "id",
                             thresholds=[-1.0, 0.0, 1.0], bandwidth=0.5)
        assert js.stat.shape == (3, 3)
        assert js.jump.shape == (3, 3)
        assert list(js.n_obs) == [500, 500, 500]
        assert js.n_valid == 9

    def test_jump_estimate(self):
        data = _step_panel(N=2, T=2000, jump=2.0)
        js = jump_statistics(data, "y", "x", "id",
                             thresholds=[0.0], bandwidth=0.5)
        assert np.all(np.abs(js.jump[0.0] - 2.0) < 0.5)
        assert np.all(js.se[0.0] > 0)
        assert np.all(js.stat[0.0] > 5)

    def test_statistic_is_scaled_jump(self):
        data = _step_panel(N=2, T=800)
        js = jump_statistics(data, "y", "x", "id",
                             thresholds=[-0.5, 0.5], bandwidth=0.5)
        ratio = js.jump.to_numpy() / js.se.to_numpy()
        assert np.allclose(ratio, js.stat.to_numpy())

    def test_infeasible_cells_are_nan(self):
        data = _step_panel(N=2, T=300)
        js = jump_statistics(data, "y", "x", "id",
                             thresholds=[0.0, 5.0], bandwidth=0.5)
        assert np.all(np.isnan(js.stat[5.0]))
        assert np.all(np.isfinite(js.stat[0.0]))

    def test_default_grid_and_bandwidth(self):
        data = _step_panel(N=2, T=300)
        js = jump_statistics(data, "y", "x", "id", n_thresholds=7)
        assert len(js.thresholds) == 7
        assert js.bandwidth > 0


# ============================================================================
# Test Gaussian-max critical values
# ============================================================================

class TestCriticalValues:
    """Tests for analytic Gaussian-max quantiles and p-values."""

    def test_single_normal(self):
        assert abs(gaussian_max_critical_value(1, 0.05) - 1.959964) < 1e-5
        assert abs(gaussian_max_critical_value(1, 0.05, "greater")
                   - 1.644854) < 1e-5

    def test_increasing_in_M(self):
        cvs = [gaussian_max_critical_value(M, 0.05) for M in
               [1, 10, 100, 1000]]
        assert all(a < b for a, b in zip(cvs, cvs[1:]))

    def test_pvalue_at_critical_value(self):
        for direction in ["two-sided", "greater", "less"]:
            for M in [1, 25, 400]:
                cv = gaussian_max_critical_value(M, 0.05, direction)
                p = gaussian_max_pvalue(cv, M, direction)
                assert abs(p - 0.05) < 1e-8

    def test_pvalue_bounds(self):
        p = gaussian_max_pvalue(np.array([-10.0, 0.0, 10.0]), 50, "greater")
        assert np.all((p >= 0) & (p <= 1))
        assert p[0] == pytest.approx(1.0)

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            gaussian_max_critical_value(0, 0.05)
        with pytest.raises(ValueError):
            gaussian_max_critical_value(10, 1.5)
        with pytest.raises(ValueError):
            gaussian_max_critical_value(10, 0.05, direction="up")

    def test_simulated_matches_analytic(self):
        cvs = simulate_max_critical_values(10, alphas=[0.10, 0.05],
                                           n_sim=20000, seed=1)
        for a, cv in cvs.items():
            assert abs(cv - gaussian_max_critical_value(10, a)) < 0.1

    def test_one_sided_below_two_sided(self):
        two = simulate_max_critical_values(20, "two-sided", n_sim=5000,
                                           seed=2)
        one = simulate_max_critical_values(20, "greater", n_sim=5000,
                                           seed=2)
        assert all(one[a] < two[a] for a in two)


# ============================================================================
# Test the threshold test
# ============================================================================

class TestThresholdTest:
    """Tests for the max studentized jump test."""

    def test_under_null(self):
        data, _ = generate_panel_data(N=10, T=400, jump=0.0, seed=1)
        res = threshold_test(data, "y", "x", "unit",
                             thresholds=[-0.5, 0.0, 0.5], bandwidth=0.6)
        assert np.isfinite(res.statistic)
        assert 0 <= res.p_value <= 1
        assert res.N == 10
        assert res.K == 3
        assert res.M == 30

    def test_under_alternative(self):
        data, info = generate_panel_data(N=10, T=600, jump=2.0,
                                         jump_units=3, seed=42)
        res = threshold_test(data, "y", "x", "unit",
                             thresholds=[-0.5, 0.0, 0.5], bandwidth=0.5)
        assert res.significant()
        sig = res.significant_units
        assert set(info["jump_units"]) <= set(sig["unit"])
        located = sig[sig["unit"].isin(info["jump_units"])]
        assert np.all(located["threshold"] == 0.0)
        assert np.all(located["jump"] > 0)

    def test_permutation_invariance(self):
        data, _ = generate_panel_data(N=6, T=300, jump=1.0, jump_units=2,
                                      seed=3)
        relabel = {u: f"Z{i}" for i, u in
                   enumerate(sorted(data["unit"].unique(), reverse=True))}
        shuffled = data.assign(unit=data["unit"].map(relabel))
        shuffled = shuffled.sample(frac=1.0, random_state=0)
        kwargs = dict(thresholds=[-0.3, 0.0, 0.3], bandwidth=0.5)
        res_a = threshold_test(data, "y", "x", "unit", **kwargs)
        res_b = threshold_test(shuffled, "y", "x", "unit", **kwargs)
        assert res_a.statistic == pytest.approx(res_b.statistic)
        assert res_a.p_value == pytest.approx(res_b.p_value)

    def test_monotone_in_thresholds(self):
        data, _ = generate_panel_data(N=5, T=300, seed=4)
        small = threshold_test(data, "y", "x", "unit", thresholds=[0.0],
                               bandwidth=0.5)
        large = threshold_test(data, "y", "x", "unit",
                               thresholds=[-0.6, -0.3, 0.0, 0.3, 0.6],
                               bandwidth=0.5)
        assert large.statistic >= small.statistic
        assert large.M > small.M

    def test_direction(self):
        data, _ = generate_panel_data(N=5, T=500, jump=2.0, seed=5)
        kwargs = dict(thresholds=[0.0], bandwidth=0.5)
        up = threshold_test(data, "y", "x", "unit", direction="greater",
                            **kwargs)
        down = threshold_test(data, "y", "x", "unit", direction="less",
                              **kwargs)
        both = threshold_test(data, "y", "x", "unit", **kwargs)
        assert up.statistic > down.statistic
        assert both.statistic == pytest.approx(up.statistic)
        assert len(down.significant_units) == 0

    def test_simulated_method(self):
        data, _ = generate_panel_data(N=5, T=300, jump=1.5, jump_units=1,
                                      seed=6)
        res = threshold_test(data, "y", "x", "unit",
                             thresholds=[-0.5, 0.0, 0.5], bandwidth=0.5,
                             method="simulate", n_sim=20000, seed=7)
        assert 0 <= res.p_value <= 1
        for a, cv in res.critical_values.items():
            assert abs(cv - gaussian_max_critical_value(res.M, a)) < 0.15
        assert np.all((res.unit_table["p_value"] >= 0)
                      & (res.unit_table["p_value"] <= 1))

    def test_unit_table(self):
        data, _ = generate_panel_data(N=8, T=300, jump=1.0, jump_units=2,
                                      seed=8)
        res = threshold_test(data, "y", "x", "unit",
                             thresholds=[-0.5, 0.0, 0.5], bandwidth=0.5)
        table = res.unit_table
        assert len(table) == 8
        assert list(table.columns) == ["unit", "threshold", "jump", "se",
                                       "statistic", "p_value"]
        assert table["statistic"].is_monotonic_decreasing
        assert table["p_value"].is_monotonic_increasing
        assert table["statistic"].iloc[0] == pytest.approx(res.statistic)
        assert table["p_value"].iloc[0] == pytest.approx(res.p_value)

    def test_critical_values(self):
        data, _ = generate_panel_data(N=4, T=300, seed=9)
        res = threshold_test(data, "y", "x", "unit", thresholds=[0.0],
                             bandwidth=0.5, alpha=0.025)
        assert set(res.critical_values) == {0.10, 0.05, 0.025, 0.01}
        assert res.critical_value(0.20) < res.critical_values[0.10]

    def test_summary(self):
        data, _ = generate_panel_data(N=4, T=300, jump=2.0, jump_units=1,
                                      seed=10)
        res = threshold_test(data, "y", "x", "unit", thresholds=[0.0],
                             bandwidth=0.5)
        s = res.summary()
        assert isinstance(s, str)
        assert "Jumps in Nonparametric Panel Regressions" in s
        assert repr(res) == s

    def test_to_latex(self, tmp_path):
        data, _ = generate_panel_data(N=4, T=500, jump=2.0, jump_units=2,
                                      seed=11)
        res = threshold_test(data, "y", "x", "unit", thresholds=[0.0],
                             bandwidth=0.5)
        path = tmp_path / "jumps.tex"
        latex = res.to_latex(path, label="tab:jumps")
        assert "tabular" in latex
        assert "tab:jumps" in latex
        assert path.read_text() == latex

    def test_all_kernels(self):
        data, _ = generate_panel_data(N=3, T=300, seed=12)
        for kernel in ["epanechnikov", "triangular", "uniform", "gaussian"]:
            res = threshold_test(data, "y", "x", "unit",
                                 thresholds=[0.0], bandwidth=0.5,
                                 kernel=kernel)
            assert res.kernel == kernel
            assert np.isfinite(res.statistic)

    def test_invalid_arguments(self):
        data, _ = generate_panel_data(N=3, T=100, seed=13)
        with pytest.raises(ValueError):
            threshold_test(data, "y", "x", "unit", bandwidth=-1.0)
        with pytest.raises(ValueError):
            threshold_test(data, "y", "x", "unit", direction="up")
        with pytest.raises(ValueError):
            threshold_test(data, "y", "x", "unit", method="bootstrap")
        with pytest.raises(ValueError):
            threshold_test(data, "y", "x", "unit", kernel="cosine")
        with pytest.raises(ValueError):
            threshold_test(data, "y", "x", "unit", alpha=0.0)
        with pytest.raises(ValueError):
            threshold_test(data, "y", "missing", "unit")

    def test_non_finite_values_keep_unit(self):
        data, info = generate_panel_data(N=4, T=500, jump=3.0, jump_units=1,
                                         seed=15)
        data.loc[0, "x"] = np.inf
        data.loc[1, "y"] = -np.inf
        with pytest.warns(UserWarning):
            res = threshold_test(data, "y", "x", "unit",
                                 thresholds=[-0.5, 0.0, 0.5], bandwidth=0.5)
        assert res.N == 4
        assert res.M == 12
        assert "U000" in set(res.significant_units["unit"])

    def test_simulated_unknown_alpha(self):
        data, _ = generate_panel_data(N=3, T=300, seed=16)
        res = threshold_test(data, "y", "x", "unit", thresholds=[0.0],
                             bandwidth=0.5, method="simulate", n_sim=2000,
                             seed=17)
        with pytest.raises(ValueError):
            res.significant(0.2)
        with pytest.raises(ValueError):
            res.units_at(0.2)
        assert res.significant(0.05) in (True, False)

    def test_no_feasible_cells(self):
        data, _ = generate_panel_data(N=3, T=100, seed=14)
        with pytest.raises(ValueError):
            threshold_test(data, "y", "x", "unit", thresholds=[0.0],
                           bandwidth=0.5, min_obs=1000)


# ============================================================================
# Test utility functions
# ============================================================================

class TestUtilities:
    """Tests for utility functions."""

    def test_orient_statistics(self):
        stat = np.array([-2.0, 1.0, np.nan])
        assert np.allclose(orient_statistics(stat, "two-sided")[:2],
                           [2.0, 1.0])
        assert np.allclose(orient_statistics(stat, "less")[:2], [2.0, -1.0])
        assert np.isnan(orient_statistics(stat, "greater")[2])

    def test_threshold_grid(self):
        rng = np.random.default_rng(0)
        x = rng.normal(size=1000)
        grid = threshold_grid(x, n_thresholds=11, trim=0.1)
        assert len(grid) == 11
        assert grid[0] == pytest.approx(np.quantile(x, 0.1))
        assert grid[-1] == pytest.approx(np.quantile(x, 0.9))
        with pytest.raises(ValueError):
            threshold_grid(x, n_thresholds=5, trim=0.6)

    def test_rule_of_thumb_bandwidth(self):
        rng = np.random.default_rng(0)
        x = rng.normal(size=500)
        h_small_n = rule_of_thumb_bandwidth(x, n=100)
        h_large_n = rule_of_thumb_bandwidth(x, n=10000)
        assert h_small_n > h_large_n > 0
        with pytest.raises(ValueError):
            rule_of_thumb_bandwidth(np.ones(10))

    def test_prepare_panel_drops_non_finite(self):
        data = pd.DataFrame({"u": ["a", "a", "a", "b", "b"],
                             "y": [1.0, 2.0, -np.inf, 3.0, 4.0],
                             "x": [0.1, np.inf, 0.3, 0.4, 0.5]})
        with pytest.warns(UserWarning, match="Dropped 2 rows"):
            panel = prepare_panel(data, "y", "x", "u")
        assert len(panel["a"][0]) == 1
        assert np.all(np.isfinite(panel["a"][1]))
        assert len(panel["b"][0]) == 2

    def test_prepare_panel_drops_missing(self):
        data = pd.DataFrame({"u": ["a", "a", "b", "b"],
                             "y": [1.0, np.nan, 3.0, 4.0],
                             "x": [0.1, 0.2, 0.3, 0.4]})
        with pytest.warns(UserWarning):
            panel = prepare_panel(data, "y", "x", "u")
        assert list(panel) == ["a", "b"]
        assert len(panel["a"][0]) == 1
        assert len(panel["b"][1]) == 2

    def test_generate_panel_data(self):
        data, info = generate_panel_data(N=5, T=50, jump=1.0, jump_units=2,
                                         seed=42)
        assert len(data) == 250
        assert set(data.columns) == {"unit", "x", "y"}
        assert info["jump_units"] == ["U000", "U001"]
        _, info_null = generate_panel_data(N=5, T=50, seed=42)
        assert info_null["jump_units"] == []

    def test_load_panel(self, tmp_path):
        data = pd.DataFrame({
            "Date": ["2020-01-01", "2020-01-02", "2020-01-03"] * 2,
            "Symbol": ["AAA"] * 3 + ["BBB"] * 3,
            "Volatility": np.arange(6, dtype=float),
            "Lag.return": np.linspace(-1, 1, 6),
        })
        path = tmp_path / "stocks.csv"
        data.to_csv(path, index=False)

        out = load_panel(path, "Volatility", "Lag.return", "Symbol",
                         date="Date", units=["BBB"], start="2020-01-02")
        assert list(out["Symbol"].unique()) == ["BBB"]
        assert len(out) == 2
        with pytest.raises(ValueError):
            load_panel(path, "Volatility", "Lag.return", "Ticker")
        with pytest.raises(ValueError):
            load_panel(path, "Volatility", "Lag.return", "Symbol",
                       start="2020-01-02")


# ============================================================================
# Test simulation
# ============================================================================

class TestSimulation:
    """Tests for Monte Carlo routines."""

    def test_simulate_threshold_critical_values(self):
        cvs = simulate_threshold_critical_values(
            N=3, T=200, thresholds=[0.0], bandwidth=0.5, n_reps=20, seed=1)
        assert set(cvs) == {0.10, 0.05, 0.01}
        assert all(np.isfinite(v) for v in cvs.values())
        assert cvs[0.01] >= cvs[0.10]

    def test_size_power(self):
        res = monte_carlo_size_power(N=5, T=400, jump=3.0, jump_units=2,
                                     n_reps=5, bandwidth=0.5, seed=2)
        assert res["n_reps"] == 5
        assert res["rejection_rate"] >= 0.8
        assert 0 <= res["false_unit_rate"] <= 1
        assert res["unit_detection_rate"] > 0.5

    def test_size_runs(self):
        res = monte_carlo_size_power(N=3, T=200, jump=0.0, n_reps=3,
                                     bandwidth=0.5, seed=3)
        assert 0 <= res["rejection_rate"] <= 1
        assert np.isnan(res["unit_detection_rate"])
        assert res["n_skipped"] == 0

    def test_size_near_alpha_large_T(self):
        """Rejection rate under no jump approaches alpha as T grows."""
        res = monte_carlo_size_power(N=5, T=3000, jump=0.0, n_reps=200,
                                     alpha=0.05, seed=11)
        assert 0.01 <= res["rejection_rate"] <= 0.10

    def test_infeasible_replications_skipped(self):
        res = monte_carlo_size_power(N=3, T=100, jump=0.0, n_reps=3,
                                     thresholds=[5.0], bandwidth=0.5, seed=4)
        assert res["n_skipped"] == 3
        assert np.isnan(res["rejection_rate"])

    def test_invalid_arguments_not_skipped(self):
        with pytest.raises(ValueError):
            monte_carlo_size_power(N=3, T=100, n_reps=2, method="bootstrap")


# ============================================================================
# Run tests
# ============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
