"""
jumptest: Tests for Jumps in Nonparametric Panel Regressions
============================================================

A Python library for detecting discontinuities ("jumps", threshold
effects) at unknown locations in otherwise smooth regression functions,
estimated unit by unit in a panel, e.g. stock volatility against lagged
return across many stocks.

For every unit and candidate threshold a one-sided local-linear jump
estimate is studentized; the maximum over all units and thresholds is
compared with the quantiles of the maximum of independent standard
normal variables, which controls the family-wise error rate over the
K x N comparisons.

Main Functions
--------------
threshold_test :
    Max studentized jump test with a multiplicity-adjusted table of units
    with significant jumps.

jump_statistics :
    Unit-by-threshold jump estimates, standard errors and statistics.

gaussian_max_critical_value, gaussian_max_pvalue :
    Analytic quantiles and p-values of the maximum of M iid N(0,1).

Utility Functions
-----------------
load_panel :
    Read a long-format CSV panel, optionally restricted to a subset.

generate_panel_data :
    Simulate a panel with an optional jump.

simulate_max_critical_values :
    Monte Carlo quantiles of the maximum of M iid N(0,1).

simulate_threshold_critical_values :
    Finite-sample critical values of the max statistic under no jump.

monte_carlo_size_power :
    Size and power analysis of the threshold test.

Example
-------
>>> from jumptest import threshold_test, generate_panel_data
>>>
>>> data, info = generate_panel_data(N=20, T=300, jump=1.0, jump_units=3,
...                                  seed=42)
>>> res = threshold_test(data, "y", "x", "unit",
...                      thresholds=[-0.5, 0.0, 0.5], bandwidth=0.5)
>>> print(res)
>>> res.to_latex("jumps.tex")
"""

__version__ = "1.0.0"

from .threshold import (
    threshold_test,
    jump_statistics,
    gaussian_max_critical_value,
    gaussian_max_pvalue,
    JumpStatistics,
    ThresholdTestResult,
)

from .utils import (
    kernel_function,
    local_linear_weights,
    local_linear_fit,
    rule_of_thumb_bandwidth,
    threshold_grid,
    prepare_panel,
    load_panel,
    generate_panel_data,
)

from .simulation import (
    simulate_max_critical_values,
    simulate_threshold_critical_values,
    monte_carlo_size_power,
)

__all__ = [
    # Threshold test
    "threshold_test",
    "jump_statistics",
    "gaussian_max_critical_value",
    "gaussian_max_pvalue",
    "JumpStatistics",
    "ThresholdTestResult",
    # Utilities
    "kernel_function",
    "local_linear_weights",
    "local_linear_fit",
    "rule_of_thumb_bandwidth",
    "threshold_grid",
    "prepare_panel",
    "load_panel",
    "generate_panel_data",
    # Simulation
    "simulate_max_critical_values",
    "simulate_threshold_critical_values",
    "monte_carlo_size_power",
]
