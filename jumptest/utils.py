"""
Utility functions for jump tests in nonparametric panel regressions.

Shared helper routines used by the threshold test and the Monte Carlo
simulations: kernels, one-sided local-linear weights, bandwidth and
threshold-grid selection, panel preparation and a synthetic data generator.

References
----------
Fan, J. and Gijbels, I. (1996). Local Polynomial Modelling and Its
    Applications. Chapman & Hall.
Silverman, B.W. (1986). Density Estimation for Statistics and Data
    Analysis. Chapman & Hall.
"""

import warnings

import numpy as np
import pandas as pd


# ============================================================================
# Kernels
# ============================================================================

def _epanechnikov(u):
    return np.where(np.abs(u) <= 1.0, 0.75 * (1.0 - u ** 2), 0.0)


def _triangular(u):
    return np.where(np.abs(u) <= 1.0, 1.0 - np.abs(u), 0.0)


def _uniform(u):
    return np.where(np.abs(u) <= 1.0, 0.5, 0.0)


def _gaussian(u):
    return np.exp(-0.5 * u ** 2) / np.sqrt(2.0 * np.pi)


_KERNELS = {
    "epanechnikov": _epanechnikov,
    "triangular": _triangular,
    "uniform": _uniform,
    "gaussian": _gaussian,
}

_DIRECTIONS = ("two-sided", "greater", "less")


def check_direction(direction):
    """Validate the alternative hypothesis direction."""
    if direction not in _DIRECTIONS:
        raise ValueError(
            f"Unknown direction: {direction}. Use one of {list(_DIRECTIONS)}.")
    return direction


def orient_statistics(stat, direction="two-sided"):
    """
    Map signed studentized statistics to the scale on which large values
    are evidence against the null: |T| (two-sided), T ('greater') or
    -T ('less').
    """
    check_direction(direction)
    stat = np.asarray(stat, dtype=np.float64)
    if direction == "two-sided":
        return np.abs(stat)
    if direction == "greater":
        return stat
    return -stat


def kernel_function(u, kernel="epanechnikov"):
    """
    Evaluate a kernel at scaled distances u = (x - c) / h.

    Parameters
    ----------
    u : array_like
        Scaled distances.
    kernel : str
        One of 'epanechnikov', 'triangular', 'uniform', 'gaussian'.

    Returns
    -------
    k : ndarray
        Kernel values.
    """
    func = _KERNELS.get(kernel)
    if func is None:
        raise ValueError(
            f"Unknown kernel: {kernel}. Use one of {list(_KERNELS)}.")
    return func(np.asarray(u, dtype=np.float64))


# ============================================================================
# One-sided local-linear estimation
# ============================================================================

def local_linear_weights(x, c, h, side="right", kernel="epanechnikov"):
    """
    Boundary local-linear weights on one side of a candidate threshold.

    With k_t = K((x_t - c)/h), d_t = x_t - c and S_r = sum k_t d_t^r over
    the observations on the requested side,

        w_t = k_t (S_2 - d_t S_1) / (S_0 S_2 - S_1^2).

    The weights sum to one and annihilate linear terms, so sum w_t y_t is
    the local-linear intercept at c (Fan and Gijbels 1996, Sec. 3.2).

    Parameters
    ----------
    x : ndarray, shape (n,)
        Running variable.
    c : float
        Candidate threshold location.
    h : float
        Bandwidth.
    side : str
        'right' uses x >= c, 'left' uses x < c.
    kernel : str
        Kernel name.

    Returns
    -------
    weights : ndarray, shape (n,)
        Weights, zero for observations on the other side.
    n_eff : int
        Number of observations with positive kernel weight on this side.
    """
    x = np.asarray(x, dtype=np.float64).ravel()
    if side == "right":
        mask = x >= c
    elif side == "left":
        mask = x < c
    else:
        raise ValueError(f"Unknown side: {side}. Use 'right' or 'left'.")

    d = x - c
    k = kernel_function(d / h, kernel) * mask
    n_eff = int(np.sum(k > 0))

    S0 = np.sum(k)
    S1 = np.sum(k * d)
    S2 = np.sum(k * d ** 2)
    denom = S0 * S2 - S1 ** 2

    # Relative tolerance: denom scales like S0^2 h^2
    if n_eff < 2 or not denom > 1e-12 * max(S0 ** 2 * h ** 2, 1e-300):
        raise ValueError(
            f"Singular local design at c={c:.4g} ({side}, n_eff={n_eff}).")

    weights = k * (S2 - d * S1) / denom
    return weights, n_eff


def local_linear_fit(y, x, c, h, side="right", kernel="epanechnikov"):
    """
    One-sided local-linear fit at a candidate threshold.

    Parameters
    ----------
    y : ndarray, shape (n,)
        Response variable.
    x : ndarray, shape (n,)
        Running variable.
    c, h, side, kernel
        See `local_linear_weights`.

    Returns
    -------
    m_hat : float
        Boundary estimate of the regression function at c.
    weights : ndarray, shape (n,)
        Local-linear weights.
    residuals : ndarray, shape (n,)
        Residuals y_t - a - b (x_t - c) of the local fit; zero outside
        the kernel window on this side.
    n_eff : int
        Effective number of observations.
    """
    y = np.asarray(y, dtype=np.float64).ravel()
    x = np.asarray(x, dtype=np.float64).ravel()
    weights, n_eff = local_linear_weights(x, c, h, side=side, kernel=kernel)

    d = x - c
    k = kernel_function(d / h, kernel)
    k = k * ((x >= c) if side == "right" else (x < c))

    # Slope from the same weighted least squares problem
    S0 = np.sum(k)
    S1 = np.sum(k * d)
    S2 = np.sum(k * d ** 2)
    T0 = np.sum(k * y)
    T1 = np.sum(k * d * y)
    slope = (S0 * T1 - S1 * T0) / (S0 * S2 - S1 ** 2)

    m_hat = np.sum(weights * y)
    residuals = np.where(k > 0, y - m_hat - slope * d, 0.0)
    return m_hat, weights, residuals, n_eff


# ============================================================================
# Tuning parameters
# ============================================================================

def rule_of_thumb_bandwidth(x, n=None):
    """
    Silverman's rule-of-thumb bandwidth.

        h = 1.06 * min(sd, IQR / 1.349) * n^{-1/5}

    Parameters
    ----------
    x : array_like
        Running variable (pooled across units).
    n : int or None
        Sample size entering the rate. If None, uses len(x). For panels
        the average number of observations per unit is the natural choice.

    Returns
    -------
    h : float
    """
    x = np.asarray(x, dtype=np.float64).ravel()
    x = x[np.isfinite(x)]
    if len(x) < 2:
        raise ValueError("Need at least two observations for a bandwidth.")
    if n is None:
        n = len(x)

    sd = np.std(x, ddof=1)
    q75, q25 = np.percentile(x, [75, 25])
    spread = min(sd, (q75 - q25) / 1.349)
    if spread <= 0:
        spread = sd
    if spread <= 0:
        raise ValueError("Running variable has no variation.")
    return 1.06 * spread * n ** (-0.2)


def threshold_grid(x, n_thresholds=20, trim=0.1):
    """
    Equally spaced candidate thresholds between trimmed quantiles of x.

    Parameters
    ----------
    x : array_like
        Running variable (pooled).
    n_thresholds : int
        Number of candidate locations K.
    trim : float
        Fraction trimmed from each tail, 0 <= trim < 0.5.

    Returns
    -------
    grid : ndarray, shape (n_thresholds,)
    """
    if n_thresholds < 1:
        raise ValueError("n_thresholds must be at least 1.")
    if not 0.0 <= trim < 0.5:
        raise ValueError(f"trim={trim} must lie in [0, 0.5).")
    x = np.asarray(x, dtype=np.float64).ravel()
    x = x[np.isfinite(x)]
    lo, hi = np.quantile(x, [trim, 1.0 - trim])
    if n_thresholds == 1:
        return np.array([0.5 * (lo + hi)])
    return np.linspace(lo, hi, n_thresholds)


# ============================================================================
# Panel data
# ============================================================================

def prepare_panel(data, response, running, unit):
    """
    Split a long-format table into per-unit response/running arrays.

    Parameters
    ----------
    data : pandas.DataFrame
        One row per (unit, observation).
    response : str
        Name of the response column (e.g. 'Volatility').
    running : str
        Name of the running-variable column (e.g. 'Lag.return').
    unit : str
        Name of the unit identifier column (e.g. 'Symbol').

    Returns
    -------
    panel : dict
        Mapping unit -> (y, x), units in sorted order.
    """
    missing = [col for col in (response, running, unit)
               if col not in data.columns]
    if missing:
        raise ValueError(f"Columns not found in data: {missing}")

    df = data[[unit, response, running]]
    n_before = len(df)
    df = df.dropna()
    finite = (np.isfinite(df[response].to_numpy(dtype=np.float64))
              & np.isfinite(df[running].to_numpy(dtype=np.float64)))
    df = df[finite]
    n_dropped = n_before - len(df)
    if n_dropped > 0:
        warnings.warn(
            f"Dropped {n_dropped} rows with missing or non-finite values.",
            UserWarning)
    if len(df) == 0:
        raise ValueError("No complete observations in data.")

    panel = {}
    for key, group in df.groupby(unit, sort=True):
        panel[key] = (group[response].to_numpy(dtype=np.float64),
                      group[running].to_numpy(dtype=np.float64))
    return panel


def load_panel(path, response, running, unit, date=None, units=None,
               start=None, end=None):
    """
    Read a long-format CSV panel and restrict it to a subset.

    Parameters
    ----------
    path : str or path-like
        CSV file with at least the response, running and unit columns.
    response, running, unit : str
        Column names.
    date : str or None
        Optional date column. Parsed to datetime; required when `start`
        or `end` is given.
    units : sequence or None
        Keep only these unit identifiers.
    start, end : str, datetime or None
        Inclusive date window.

    Returns
    -------
    data : pandas.DataFrame
    """
    data = pd.read_csv(path)
    missing = [col for col in (response, running, unit)
               if col not in data.columns]
    if missing:
        raise ValueError(f"Columns not found in {path}: {missing}")

    if date is not None:
        if date not in data.columns:
            raise ValueError(f"Date column '{date}' not found in {path}")
        data[date] = pd.to_datetime(data[date])
    elif start is not None or end is not None:
        raise ValueError("A date column is required to filter by date.")

    if units is not None:
        data = data[data[unit].isin(list(units))]
    if start is not None:
        data = data[data[date] >= pd.Timestamp(start)]
    if end is not None:
        data = data[data[date] <= pd.Timestamp(end)]

    sort_cols = [unit] if date is None else [unit, date]
    return data.sort_values(sort_cols).reset_index(drop=True)


def generate_panel_data(N, T, jump=0.0, location=0.0, jump_units=None,
                        slope=0.5, curvature=0.3, sigma=1.0,
                        heteroskedastic=False, seed=None):
    """
    Generate a panel with an optional jump in the regression function.

        y_{jt} = a_j + b x_{jt} + g x_{jt}^2 + delta_j 1{x_{jt} >= c} + u_{jt}
        x_{jt} ~ N(0, 1),  a_j ~ N(0, 1),  u_{jt} ~ N(0, sigma^2(x))

    with delta_j = jump for units in `jump_units` and 0 otherwise.

    Parameters
    ----------
    N : int
        Number of units.
    T : int
        Observations per unit.
    jump : float
        Size of the discontinuity.
    location : float
        Jump location c.
    jump_units : int, sequence of int, or None
        If int, the first `jump_units` units carry the jump. If a
        sequence, those unit indices do. If None, all units do.
    slope : float
        Linear coefficient b.
    curvature : float
        Quadratic coefficient g.
    sigma : float
        Error standard deviation.
    heteroskedastic : bool
        If True, sigma(x) = sigma * (1 + 0.5 |x|).
    seed : int or None
        Random seed.

    Returns
    -------
    data : pandas.DataFrame
        Columns 'unit', 'x', 'y'.
    info : dict
        'jump_units' (list of unit labels with a jump), 'location', 'jump'.
    """
    rng = np.random.default_rng(seed)

    if jump_units is None:
        jump_idx = list(range(N))
    elif np.isscalar(jump_units):
        jump_idx = list(range(min(int(jump_units), N)))
    else:
        jump_idx = sorted(int(j) for j in jump_units)

    delta = np.zeros(N)
    delta[jump_idx] = jump

    alpha = rng.normal(0, 1, size=N)
    x = rng.normal(0, 1, size=(N, T))
    scale = sigma * (1.0 + 0.5 * np.abs(x)) if heteroskedastic else sigma
    u = rng.normal(0, 1, size=(N, T)) * scale
    y = (alpha[:, None] + slope * x + curvature * x ** 2
         + delta[:, None] * (x >= location) + u)

    labels = [f"U{j:03d}" for j in range(N)]
    data = pd.DataFrame({
        "unit": np.repeat(labels, T),
        "x": x.ravel(),
        "y": y.ravel(),
    })

    info = {
        "jump_units": [labels[j] for j in jump_idx] if jump != 0 else [],
        "location": location,
        "jump": jump,
    }
    return data, info
