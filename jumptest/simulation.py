"""
Monte Carlo simulation for critical values and size/power analysis.

Implements:
    - Simulated quantiles of the maximum of M independent standard normal
      variables, the multiple-testing reference distribution of the max
      jump statistic.
    - Finite-sample critical values of the max jump statistic on a
      no-jump panel design.
    - Size and power analysis of the threshold test.
"""

import numpy as np

from .utils import (
    _KERNELS,
    check_direction,
    generate_panel_data,
    orient_statistics,
)

_DEFAULT_ALPHAS = [0.10, 0.05, 0.01]


def simulate_max_critical_values(M, direction="two-sided",
                                 alphas=_DEFAULT_ALPHAS, n_sim=10000,
                                 chunk_size=None, seed=None,
                                 return_draws=False):
    """
    Simulate critical values of the maximum of M iid N(0, 1) variables.

    For the two-sided test the reference variable is max_m |Z_m|, for
    one-sided tests it is max_m Z_m.

    Parameters
    ----------
    M : int
        Number of studentized statistics entering the maximum (K x N).
    direction : str
        'two-sided', 'greater' or 'less'.
    alphas : sequence of float
        Significance levels.
    n_sim : int
        Number of simulated maxima.
    chunk_size : int or None
        Rows of the (n_sim, M) normal matrix generated at a time. If None,
        chosen so that each chunk holds about two million draws.
    seed : int or None
        Random seed.
    return_draws : bool
        If True, also return the simulated maxima.

    Returns
    -------
    cvs : dict
        alpha -> critical value.
    draws : ndarray, shape (n_sim,)
        Only if `return_draws` is True.
    """
    check_direction(direction)
    M = int(M)
    if M < 1:
        raise ValueError(f"M={M} must be at least 1.")
    if n_sim < 1:
        raise ValueError(f"n_sim={n_sim} must be at least 1.")

    rng = np.random.default_rng(seed)
    if chunk_size is None:
        chunk_size = max(1, 2_000_000 // M)

    draws = np.empty(n_sim)
    for start in range(0, n_sim, chunk_size):
        stop = min(start + chunk_size, n_sim)
        z = rng.standard_normal(size=(stop - start, M))
        if direction == "two-sided":
            draws[start:stop] = np.abs(z).max(axis=1)
        else:
            # max Z and max -Z have the same law
            draws[start:stop] = z.max(axis=1)

    cvs = {a: float(np.quantile(draws, 1.0 - a)) for a in alphas}
    if return_draws:
        return cvs, draws
    return cvs


def simulate_threshold_critical_values(N, T, thresholds, bandwidth,
                                       direction="two-sided",
                                       kernel="epanechnikov",
                                       alphas=_DEFAULT_ALPHAS, n_reps=500,
                                       min_obs=5, seed=None):
    """
    Simulate finite-sample critical values of the max jump statistic.

    Generates panels without a jump (smooth quadratic regression function,
    unit fixed effects), computes the max studentized jump statistic, and
    returns the empirical quantiles. Useful to check how close the
    Gaussian-max approximation is for a given (N, T, K, h).

    Parameters
    ----------
    N : int
        Number of units.
    T : int
        Observations per unit.
    thresholds : array_like
        Candidate threshold locations.
    bandwidth : float
        Bandwidth.
    direction : str
        'two-sided', 'greater' or 'less'.
    kernel : str
        Kernel name.
    alphas : sequence of float
        Significance levels.
    n_reps : int
        Number of Monte Carlo replications.
    min_obs : int
        Minimum effective observations per side.
    seed : int or None
        Random seed.

    Returns
    -------
    results : dict
        alpha -> critical value.
    """
    from .threshold import jump_statistics

    check_direction(direction)
    rng = np.random.default_rng(seed)

    max_stats = []
    for rep in range(n_reps):
        data, _ = generate_panel_data(
            N, T, jump=0.0, seed=rng.integers(0, 2**31))
        js = jump_statistics(data, "y", "x", "unit", thresholds=thresholds,
                             bandwidth=bandwidth, kernel=kernel,
                             min_obs=min_obs)
        oriented = orient_statistics(js.stat.to_numpy(), direction)
        if np.any(np.isfinite(oriented)):
            max_stats.append(np.nanmax(oriented))

    arr = np.asarray(max_stats)
    if len(arr) == 0:
        return {a: np.nan for a in alphas}
    return {a: float(np.quantile(arr, 1.0 - a)) for a in alphas}


def monte_carlo_size_power(N=20, T=200, jump=0.0, location=0.0,
                           jump_units=None, n_reps=200, alpha=0.05,
                           thresholds=None, bandwidth=None,
                           direction="two-sided", kernel="epanechnikov",
                           method="analytic", heteroskedastic=False,
                           seed=None):
    """
    Perform Monte Carlo size and power analysis of the threshold test.

    Parameters
    ----------
    N : int
        Number of units.
    T : int
        Observations per unit.
    jump : float
        Jump size. jump=0 gives size, jump != 0 gives power.
    location : float
        True jump location.
    jump_units : int, sequence or None
        Units carrying the jump (see `generate_panel_data`).
    n_reps : int
        Number of Monte Carlo replications.
    alpha : float
        Nominal significance level.
    thresholds : array_like or None
        Candidate thresholds. None defaults to 11 points on [-1, 1].
    bandwidth : float or None
        Bandwidth. None uses the rule of thumb in each replication.
    direction, kernel, method : str
        Passed to `threshold_test`.
    heteroskedastic : bool
        Use heteroskedastic errors in the DGP.
    seed : int or None
        Random seed.

    Returns
    -------
    results : dict
        'rejection_rate', 'unit_detection_rate' (share of jump units
        flagged, averaged over replications), 'false_unit_rate' (share of
        no-jump units flagged), 'n_reps' and 'n_skipped' (replications
        without a feasible unit-threshold cell, excluded from the rates).
    """
    from .threshold import threshold_test, _check_alpha, _METHODS

    check_direction(direction)
    _check_alpha(alpha)
    if method not in _METHODS:
        raise ValueError(
            f"Unknown method: {method}. Use one of {list(_METHODS)}.")
    if kernel not in _KERNELS:
        raise ValueError(
            f"Unknown kernel: {kernel}. Use one of {list(_KERNELS)}.")

    rng = np.random.default_rng(seed)
    if thresholds is None:
        thresholds = np.linspace(-1.0, 1.0, 11)

    rejections = 0
    n_skipped = 0
    detected = []
    false_flags = []

    for rep in range(n_reps):
        data, info = generate_panel_data(
            N, T, jump=jump, location=location, jump_units=jump_units,
            heteroskedastic=heteroskedastic,
            seed=rng.integers(0, 2**31))
        test_seed = rng.integers(0, 2**31)

        # Replications without a feasible unit-threshold cell are skipped
        try:
            res = threshold_test(
                data, "y", "x", "unit", thresholds=thresholds,
                bandwidth=bandwidth, direction=direction, alpha=alpha,
                kernel=kernel, method=method, seed=test_seed)
        except ValueError:
            n_skipped += 1
            continue

        if res.significant(alpha):
            rejections += 1

        flagged = set(res.significant_units["unit"])
        true_units = set(info["jump_units"])
        other_units = set(res.unit_table["unit"]) - true_units
        if true_units:
            detected.append(len(flagged & true_units) / len(true_units))
        if other_units:
            false_flags.append(len(flagged & other_units) / len(other_units))

    n_done = n_reps - n_skipped
    return {
        "rejection_rate": rejections / n_done if n_done > 0 else np.nan,
        "unit_detection_rate": float(np.mean(detected)) if detected else np.nan,
        "false_unit_rate": float(np.mean(false_flags)) if false_flags else np.nan,
        "n_reps": n_reps,
        "n_skipped": n_skipped,
    }
