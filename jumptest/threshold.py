"""
Tests for jumps (threshold effects) in nonparametric panel regressions.

For every unit j and candidate threshold c_i the regression function of
the response on the running variable is estimated from the right and from
the left of c_i by one-sided local-linear smoothing. The difference is the
jump estimate J_ji, which is studentized with a heteroskedasticity-robust
standard error. The test statistic is the maximum over all K x N
studentized jumps, compared with the (1 - alpha) quantile of the maximum
of K x N independent standard normal variables.

This module provides:
    - One-sided local-linear jump estimates and standard errors
    - Studentized max statistic (two-sided or one-sided)
    - Gaussian-max critical values and p-values (analytic or simulated)
    - Multiplicity-adjusted table of units with significant jumps

Model:
    y_{jt} = m_j(x_{jt}) + u_{jt}
    H_0: m_j is continuous at c_1, ..., c_K for all j
    H_1: m_j jumps at some c_i for at least one unit j
"""

import numpy as np
import pandas as pd
from scipy.stats import norm

from .simulation import simulate_max_critical_values, _DEFAULT_ALPHAS
from .utils import (
    _KERNELS,
    check_direction,
    local_linear_fit,
    orient_statistics,
    prepare_panel,
    rule_of_thumb_bandwidth,
    threshold_grid,
)

_METHODS = ("analytic", "simulate")


# ============================================================================
# Gaussian-max critical values and p-values
# ============================================================================

def _check_alpha(alpha):
    if not 0.0 < alpha < 1.0:
        raise ValueError(f"alpha={alpha} must lie in (0, 1).")


def gaussian_max_critical_value(M, alpha, direction="two-sided"):
    """
    (1 - alpha) quantile of the maximum of M iid standard normals.

    With q = 1 - (1 - alpha)^{1/M},
        two-sided: cv = Phi^{-1}(1 - q/2)   (reference: max |Z_m|)
        one-sided: cv = Phi^{-1}(1 - q)     (reference: max Z_m)

    Parameters
    ----------
    M : int
        Number of statistics entering the maximum.
    alpha : float
        Significance level.
    direction : str
        'two-sided', 'greater' or 'less'.

    Returns
    -------
    cv : float
    """
    check_direction(direction)
    _check_alpha(alpha)
    if M < 1:
        raise ValueError(f"M={M} must be at least 1.")

    q = -np.expm1(np.log1p(-alpha) / M)
    if direction == "two-sided":
        return float(norm.isf(q / 2.0))
    return float(norm.isf(q))


def gaussian_max_pvalue(stat, M, direction="two-sided"):
    """
    P-value of an oriented max statistic under the Gaussian-max law.

        two-sided: p = 1 - (1 - 2 Phi_bar(|T|))^M
        one-sided: p = 1 - (1 - Phi_bar(T))^M

    Parameters
    ----------
    stat : float or array_like
        Oriented statistic(s), see `orient_statistics`.
    M : int
        Number of statistics entering the maximum.
    direction : str
        'two-sided', 'greater' or 'less'.

    Returns
    -------
    p : float or ndarray
    """
    check_direction(direction)
    if M < 1:
        raise ValueError(f"M={M} must be at least 1.")

    stat = np.asarray(stat, dtype=np.float64)
    if direction == "two-sided":
        tail = np.minimum(2.0 * norm.sf(np.abs(stat)), 1.0)
    else:
        tail = norm.sf(stat)

    with np.errstate(divide="ignore"):
        p = -np.expm1(M * np.log1p(-tail))
    if p.ndim == 0:
        return float(p)
    return p


# ============================================================================
# Jump estimates and studentized statistics
# ============================================================================

def _unit_jump_statistics(y, x, thresholds, h, kernel="epanechnikov",
                          min_obs=5):
    """
    Jump estimates, standard errors and studentized statistics for a unit.

    For each candidate c_i:
        J_i   = m_hat_+(c_i) - m_hat_-(c_i)
        s_i^2 = n h [r+ sum (w+_t)^2 (e+_t)^2 + r- sum (w-_t)^2 (e-_t)^2]
        T_i   = sqrt(n h) J_i / s_i

    with r = n_eff / (n_eff - 2) on each side.

    Parameters
    ----------
    y, x : ndarray, shape (n,)
        Response and running variable of one unit.
    thresholds : ndarray, shape (K,)
        Candidate threshold locations.
    h : float
        Bandwidth.
    kernel : str
        Kernel name.
    min_obs : int
        Minimum effective observations required on each side.

    Returns
    -------
    jump : ndarray, shape (K,)
    se : ndarray, shape (K,)
    stat : ndarray, shape (K,)
        NaN where the cell is infeasible.
    """
    n = len(y)
    K = len(thresholds)
    jump = np.full(K, np.nan)
    se = np.full(K, np.nan)
    stat = np.full(K, np.nan)

    for i, c in enumerate(thresholds):
        try:
            m_r, w_r, e_r, n_r = local_linear_fit(
                y, x, c, h, side="right", kernel=kernel)
            m_l, w_l, e_l, n_l = local_linear_fit(
                y, x, c, h, side="left", kernel=kernel)
        except ValueError:
            continue

        if n_r < min_obs or n_l < min_obs or min(n_r, n_l) <= 2:
            continue

        # Degrees-of-freedom correction for the two local parameters
        J = m_r - m_l
        s_sq = n * h * (n_r / (n_r - 2.0) * np.sum(w_r ** 2 * e_r ** 2)
                        + n_l / (n_l - 2.0) * np.sum(w_l ** 2 * e_l ** 2))
        if not s_sq > 0:
            continue

        jump[i] = J
        se[i] = np.sqrt(s_sq / (n * h))
        stat[i] = np.sqrt(n * h) * J / np.sqrt(s_sq)

    return jump, se, stat


def jump_statistics(data, response, running, unit, thresholds=None,
                    bandwidth=None, kernel="epanechnikov", min_obs=5,
                    n_thresholds=20, trim=0.1):
    """
    Compute jump estimates and studentized statistics for all units.

    Parameters
    ----------
    data : pandas.DataFrame
        Long-format panel, one row per (unit, observation).
    response : str
        Response column.
    running : str
        Running-variable column.
    unit : str
        Unit identifier column.
    thresholds : array_like or None
        Candidate thresholds. If None, `n_thresholds` points between the
        `trim` and `1 - trim` quantiles of the pooled running variable.
    bandwidth : float or None
        Bandwidth. If None, Silverman's rule of thumb on the pooled running
        variable with n equal to the average number of observations per
        unit.
    kernel : str
        Kernel name.
    min_obs : int
        Minimum effective observations required on each side.
    n_thresholds : int
        Grid size used when `thresholds` is None.
    trim : float
        Tail trimming used when `thresholds` is None.

    Returns
    -------
    result : JumpStatistics
    """
    if kernel not in _KERNELS:
        raise ValueError(
            f"Unknown kernel: {kernel}. Use one of {list(_KERNELS)}.")
    panel = prepare_panel(data, response, running, unit)
    pooled_x = np.concatenate([x for _, x in panel.values()])

    if thresholds is None:
        thresholds = threshold_grid(pooled_x, n_thresholds=n_thresholds,
                                    trim=trim)
    thresholds = np.sort(np.unique(np.asarray(thresholds, dtype=np.float64)))
    if len(thresholds) == 0:
        raise ValueError("At least one candidate threshold is required.")

    if bandwidth is None:
        n_bar = np.mean([len(y) for y, _ in panel.values()])
        bandwidth = rule_of_thumb_bandwidth(pooled_x, n=n_bar)
    if not bandwidth > 0:
        raise ValueError(f"bandwidth={bandwidth} must be positive.")

    units = list(panel.keys())
    K = len(thresholds)
    jump = np.full((len(units), K), np.nan)
    se = np.full((len(units), K), np.nan)
    stat = np.full((len(units), K), np.nan)
    n_obs = []

    for j, key in enumerate(units):
        y, x = panel[key]
        jump[j], se[j], stat[j] = _unit_jump_statistics(
            y, x, thresholds, bandwidth, kernel=kernel, min_obs=min_obs)
        n_obs.append(len(y))

    index = pd.Index(units, name=unit)
    columns = pd.Index(thresholds, name="threshold")
    return JumpStatistics(
        jump=pd.DataFrame(jump, index=index, columns=columns),
        se=pd.DataFrame(se, index=index, columns=columns),
        stat=pd.DataFrame(stat, index=index, columns=columns),
        n_obs=pd.Series(n_obs, index=index, name="n_obs"),
        thresholds=thresholds,
        bandwidth=bandwidth,
        kernel=kernel,
    )


class JumpStatistics:
    """
    Unit-by-threshold jump estimates.

    Attributes
    ----------
    jump : pandas.DataFrame, shape (N, K)
        Jump estimates J_ji.
    se : pandas.DataFrame, shape (N, K)
        Standard errors of J_ji.
    stat : pandas.DataFrame, shape (N, K)
        Signed studentized statistics T_ji.
    n_obs : pandas.Series
        Observations per unit.
    thresholds : ndarray
        Candidate thresholds (sorted).
    bandwidth : float
    kernel : str
    """

    def __init__(self, jump, se, stat, n_obs, thresholds, bandwidth,
                 kernel):
        self.jump = jump
        self.se = se
        self.stat = stat
        self.n_obs = n_obs
        self.thresholds = thresholds
        self.bandwidth = bandwidth
        self.kernel = kernel

    @property
    def n_valid(self):
        """Number of finite studentized statistics (M)."""
        return int(np.isfinite(self.stat.to_numpy()).sum())

    def __repr__(self):
        N, K = self.stat.shape
        return (f"JumpStatistics(N={N}, K={K}, valid={self.n_valid}, "
                f"bandwidth={self.bandwidth:.4g}, kernel='{self.kernel}')")


# ============================================================================
# Threshold test
# ============================================================================

def threshold_test(data, response, running, unit, thresholds=None,
                   bandwidth=None, direction="two-sided", alpha=0.05,
                   kernel="epanechnikov", method="analytic", n_sim=10000,
                   min_obs=5, n_thresholds=20, trim=0.1, seed=None,
                   verbose=False):
    """
    Test for jumps in nonparametric panel regressions.

    The null hypothesis is that the regression function of every unit is
    continuous at every candidate threshold. The statistic is

        T = max_{i, j} |T_ji|  (two-sided),  max T_ji  ('greater'),
            max -T_ji  ('less'),

    and H_0 is rejected when T exceeds the (1 - alpha) quantile of the
    maximum of M = K x N independent standard normals (M counts only the
    feasible unit-threshold cells).

    The Gaussian-max approximation is asymptotic. With few observations
    per kernel window the test over-rejects; the size approaches alpha as
    T grows. For small T, `simulate_threshold_critical_values` gives
    finite-sample critical values.

    Parameters
    ----------
    data : pandas.DataFrame
        Long-format panel.
    response : str
        Response column (e.g. 'Volatility').
    running : str
        Running-variable column (e.g. 'Lag.return').
    unit : str
        Unit identifier column (e.g. 'Symbol').
    thresholds : array_like or None
        Candidate threshold locations c_1, ..., c_K.
    bandwidth : float or None
        Bandwidth h. None uses Silverman's rule of thumb.
    direction : str
        'two-sided', 'greater' (upward jumps) or 'less' (downward jumps).
    alpha : float
        Significance level for the table of significant units.
    kernel : str
        'epanechnikov', 'triangular', 'uniform' or 'gaussian'.
    method : str
        'analytic' (closed-form Gaussian-max quantiles) or 'simulate'.
    n_sim : int
        Number of simulated maxima when method='simulate'.
    min_obs : int
        Minimum effective observations required on each side.
    n_thresholds : int
        Grid size when `thresholds` is None.
    trim : float
        Tail trimming of the default grid.
    seed : int or None
        Random seed for method='simulate'.
    verbose : bool
        If True, print progress information.

    Returns
    -------
    results : ThresholdTestResult
    """
    check_direction(direction)
    _check_alpha(alpha)
    if method not in _METHODS:
        raise ValueError(
            f"Unknown method: {method}. Use one of {list(_METHODS)}.")

    js = jump_statistics(data, response, running, unit,
                         thresholds=thresholds, bandwidth=bandwidth,
                         kernel=kernel, min_obs=min_obs,
                         n_thresholds=n_thresholds, trim=trim)

    oriented = orient_statistics(js.stat.to_numpy(), direction)
    finite = np.isfinite(oriented)
    M = int(finite.sum())
    if M == 0:
        raise ValueError(
            "No feasible unit-threshold cell: increase the bandwidth, "
            "lower min_obs or move the candidate thresholds.")

    statistic = float(np.nanmax(oriented))
    valid_units = finite.any(axis=1)
    N = int(valid_units.sum())
    K = len(js.thresholds)

    if verbose:
        n_units = len(valid_units)
        print(f"Units: {N} of {n_units} with feasible cells; "
              f"thresholds: {K}; feasible cells: {M}; "
              f"bandwidth: {js.bandwidth:.4g}")

    alphas = sorted(set(_DEFAULT_ALPHAS) | {alpha}, reverse=True)

    # Row-wise maxima and their locations
    rows = np.flatnonzero(valid_units)
    filled = np.where(finite, oriented, -np.inf)
    arg = filled[rows].argmax(axis=1)
    unit_max = filled[rows, arg]

    if method == "analytic":
        cvs = {a: gaussian_max_critical_value(M, a, direction)
               for a in alphas}
        p_value = gaussian_max_pvalue(statistic, M, direction)
        unit_p = gaussian_max_pvalue(unit_max, M, direction)
    else:
        cvs, draws = simulate_max_critical_values(
            M, direction=direction, alphas=alphas, n_sim=n_sim, seed=seed,
            return_draws=True)
        sorted_draws = np.sort(draws)
        exceed = n_sim - np.searchsorted(sorted_draws, unit_max, side="left")
        unit_p = exceed / n_sim
        p_value = float(np.mean(draws >= statistic))

    if verbose:
        print(f"Statistic: {statistic:.4f}; p-value: {p_value:.4f}; "
              f"critical value ({alpha * 100:g}%): {cvs[alpha]:.4f}")

    unit_table = pd.DataFrame({
        "unit": js.stat.index[rows].to_numpy(),
        "threshold": js.thresholds[arg],
        "jump": js.jump.to_numpy()[rows, arg],
        "se": js.se.to_numpy()[rows, arg],
        "statistic": unit_max,
        "p_value": unit_p,
    })
    unit_table = unit_table.sort_values(
        "statistic", ascending=False).reset_index(drop=True)

    return ThresholdTestResult(
        statistic=statistic,
        p_value=p_value,
        N=N,
        K=K,
        M=M,
        critical_values=cvs,
        unit_table=unit_table,
        jump_stats=js,
        direction=direction,
        alpha=alpha,
        method=method,
    )


# ============================================================================
# Result class
# ============================================================================

class ThresholdTestResult:
    """
    Container for jump (threshold effect) test results.

    Attributes
    ----------
    statistic : float
        Max studentized jump statistic.
    p_value : float
        P-value of the max statistic.
    N : int
        Number of units with at least one feasible cell.
    K : int
        Number of candidate thresholds.
    M : int
        Number of feasible unit-threshold cells entering the maximum.
    critical_values : dict
        alpha -> critical value.
    unit_table : pandas.DataFrame
        Per-unit maximum: unit, threshold (location of the maximum), jump,
        se, statistic (oriented) and multiplicity-adjusted p_value, sorted
        by statistic.
    significant_units : pandas.DataFrame
        Rows of `unit_table` exceeding the critical value at `alpha`.
    jump_stats : JumpStatistics
        Full unit-by-threshold estimates.
    thresholds : ndarray
    bandwidth : float
    kernel : str
    direction : str
    alpha : float
    method : str
    """

    def __init__(self, statistic, p_value, N, K, M, critical_values,
                 unit_table, jump_stats, direction, alpha, method):
        self.statistic = statistic
        self.p_value = p_value
        self.N = N
        self.K = K
        self.M = M
        self.critical_values = critical_values
        self.unit_table = unit_table
        self.jump_stats = jump_stats
        self.thresholds = jump_stats.thresholds
        self.bandwidth = jump_stats.bandwidth
        self.kernel = jump_stats.kernel
        self.direction = direction
        self.alpha = alpha
        self.method = method

    def critical_value(self, alpha=None):
        """
        Critical value at `alpha`.

        Computed analytically if not stored. Raises ValueError for a
        simulated test without a stored value at `alpha`.
        """
        if alpha is None:
            alpha = self.alpha
        cv = self.critical_values.get(alpha)
        if cv is None:
            if self.method != "analytic":
                raise ValueError(
                    f"No critical value stored for alpha={alpha}.")
            cv = gaussian_max_critical_value(self.M, alpha, self.direction)
        return cv

    def significant(self, alpha=None):
        """Check if the max test rejects H_0 at the given level."""
        return self.statistic > self.critical_value(alpha)

    @property
    def significant_units(self):
        return self.units_at(self.alpha)

    def units_at(self, alpha):
        """Units whose max statistic exceeds the critical value at `alpha`."""
        cv = self.critical_value(alpha)
        table = self.unit_table
        return table[table["statistic"] > cv].reset_index(drop=True)

    def to_latex(self, path=None, alpha=None, caption=None, label=None,
                 float_format="%.4f"):
        """
        Export the table of units with significant jumps to LaTeX.

        Parameters
        ----------
        path : str or path-like or None
            If given, the table is also written to this file.
        alpha : float or None
            Significance level; defaults to the level of the test.
        caption, label : str or None
            LaTeX caption and label.
        float_format : str
            printf-style format for floats.

        Returns
        -------
        latex : str
        """
        if alpha is None:
            alpha = self.alpha
        table = self.units_at(alpha).rename(columns={
            "unit": "Unit", "threshold": "Threshold", "jump": "Jump",
            "se": "S.E.", "statistic": "Statistic", "p_value": "Adj. p",
        })
        if caption is None:
            caption = (f"Units with significant jumps at the "
                       f"{alpha * 100:g}% level ({self.direction})")
        latex = table.to_latex(
            index=False,
            float_format=float_format,
            caption=caption,
            label=label,
            column_format="l" + "c" * (len(table.columns) - 1),
        )
        if path is not None:
            with open(path, "w") as f:
                f.write(latex)
        return latex

    def summary(self):
        """
        Produce a formatted summary string.

        Returns
        -------
        s : str
        """
        lines = []
        lines.append("=" * 72)
        lines.append("Test for Jumps in Nonparametric Panel Regressions")
        lines.append("=" * 72)
        lines.append(f"Alternative:        {self.direction}")
        lines.append(f"Units (N):          {self.N}")
        lines.append(f"Thresholds (K):     {self.K}  "
                     f"[{self.thresholds[0]:.4g}, {self.thresholds[-1]:.4g}]")
        lines.append(f"Feasible cells (M): {self.M}")
        lines.append(f"Bandwidth (h):      {self.bandwidth:.4g}")
        lines.append(f"Kernel:             {self.kernel}")
        lines.append(f"Critical values:    {self.method}")
        lines.append("")
        lines.append("-" * 72)
        cv_levels = sorted(self.critical_values, reverse=True)
        header = f"{'Statistic':>12} {'p-value':>10}"
        for a in cv_levels:
            header += f" {format(a * 100, 'g') + '% CV':>10}"
        header += f" {'Reject H0':>10}"
        lines.append(header)
        lines.append("-" * 72)
        reject = self.significant()
        row = f"{self.statistic:>12.4f} {self.p_value:>10.4f}"
        for a in cv_levels:
            row += f" {self.critical_values[a]:>10.4f}"
        row += f" {('Yes' if reject else 'No'):>10}"
        lines.append(row)
        lines.append("-" * 72)

        sig = self.significant_units
        lines.append("")
        lines.append(f"Units with significant jumps at {self.alpha * 100:g}%: "
                     f"{len(sig)}")
        if len(sig) > 0:
            lines.append(f"  {'Unit':<12} {'Threshold':>10} {'Jump':>10} "
                         f"{'S.E.':>10} {'Stat':>10} {'Adj. p':>10}")
            for rec in sig.itertuples(index=False):
                lines.append(
                    f"  {str(rec.unit):<12} {rec.threshold:>10.4f} "
                    f"{rec.jump:>10.4f} {rec.se:>10.4f} "
                    f"{rec.statistic:>10.4f} {rec.p_value:>10.4f}")
        lines.append("")
        lines.append("Notes: T = max over units and thresholds of the "
                     "studentized jump.")
        lines.append("       Critical values are quantiles of the maximum "
                     "of M iid N(0,1).")
        lines.append("=" * 72)
        return "\n".join(lines)

    def __repr__(self):
        return self.summary()
