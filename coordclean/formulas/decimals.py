"""
Coordinate decimal and autocorrelation helpers for dataset bias tests.

All functions are pure (no I/O, no side effects).
"""

import numpy as np
from statsmodels.tsa.stattools import acf


def decimal_fraction(values):
    """Fractional part of |value| in [0, 1).

    Rounded to 10 decimals first so float noise such as 12.999999999
    maps to 0.0 rather than 0.999999999.
    """
    values = np.abs(np.asarray(values, dtype=float))
    frac = np.round(values - np.floor(values), 10)
    return np.where(frac >= 1.0, 0.0, frac)


def decimal_histogram(lon_frac, lat_frac, bins=10):
    """2D histogram of lon/lat decimal fractions on the unit square.

    Returns a (bins, bins) integer array with longitude along rows.
    """
    edges = np.linspace(0.0, 1.0, bins + 1)
    hist, _, _ = np.histogram2d(lon_frac, lat_frac, bins=[edges, edges])
    return hist.astype(int)


def binned_counts(values, resolution):
    """Count coordinates in contiguous bins of width *resolution*.

    Bins start at the floor of the minimum value so the series is aligned
    to the coordinate grid and not to the data.
    """
    values = np.asarray(values, dtype=float)
    # Rounding before floor keeps 10.5 / 0.01 from landing in bin 1049.
    start = np.floor(np.round(values.min() / resolution, 6)) * resolution
    idx = np.floor(np.round((values - start) / resolution, 6)).astype(int)
    return np.bincount(idx)


def autocorrelation(series, max_lag):
    """Sample autocorrelation at lags 1..max_lag.

    Index i of the result holds lag i + 1. Constant series have no
    defined autocorrelation and return an array of NaN.
    """
    series = np.asarray(series, dtype=float)
    max_lag = int(min(max_lag, len(series) - 1))
    if max_lag < 1:
        return np.array([])
    if np.allclose(series, series[0]):
        return np.full(max_lag, np.nan)
    return acf(series, nlags=max_lag, fft=True)[1:]


def acf_peaks(acf_values, t1, noise_z, n_obs):
    """Lags (1-based) whose autocorrelation is an outlier.

    A lag is a peak when its value exceeds both Q3 + t1 * IQR of the ACF
    series and the white-noise bound noise_z / sqrt(n_obs).
    """
    acf_values = np.asarray(acf_values, dtype=float)
    finite = acf_values[np.isfinite(acf_values)]
    if finite.size == 0:
        return np.array([], dtype=int)
    q1, q3 = np.percentile(finite, [25, 75])
    cutoff = max(q3 + t1 * (q3 - q1), noise_z / np.sqrt(n_obs))
    return np.flatnonzero(acf_values > cutoff) + 1
