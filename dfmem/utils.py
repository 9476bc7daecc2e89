"""Data preparation: standardization, missing case removal and imputation."""

from __future__ import annotations

import numpy as np
import pandas as pd
from scipy.interpolate import CubicSpline

IMPUTE_METHODS = ("median", "rnorm", "median.ma", "median.ma.spline")


def standardize(X: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Center and scale each column ignoring missing values.

    Returns
    -------
    Z, mean, sd
        Standardized data and the column means and standard deviations used.
        Constant columns are only centered.
    """
    X = np.asarray(X, dtype=float)
    if X.ndim != 2:
        raise ValueError("X must be a 2D array")
    X = np.where(np.isfinite(X), X, np.nan)
    mean = np.nanmean(X, axis=0)
    sd = np.nanstd(X, axis=0, ddof=1)
    sd = np.where(np.isfinite(sd) & (sd > 0), sd, 1.0)
    return (X - mean) / sd, mean, sd


def unscale(Z: np.ndarray, mean: np.ndarray, sd: np.ndarray) -> np.ndarray:
    """Invert :func:`standardize`."""
    return np.asarray(Z, dtype=float) * sd + mean


def missing_rows(
    X: np.ndarray, max_missing: float = 0.8, method: str = "LE"
) -> np.ndarray:
    """Indices of rows with more than ``max_missing`` share of series missing.

    With ``method="LE"`` only such rows at the beginning or end of the sample
    are returned, with ``method="all"`` every such row.
    """
    if method not in ("LE", "all"):
        raise ValueError("method must be 'LE' or 'all'")
    if not 0 <= max_missing <= 1:
        raise ValueError("max_missing must be between 0 and 1")
    share = np.mean(~np.isfinite(X), axis=1)
    bad = share > max_missing
    if method == "all":
        return np.flatnonzero(bad)
    Tn = bad.size
    lead = 0
    while lead < Tn and bad[lead]:
        lead += 1
    trail = Tn
    while trail > lead and bad[trail - 1]:
        trail -= 1
    return np.concatenate([np.arange(lead), np.arange(trail, Tn)]).astype(int)


def _moving_average(x: np.ndarray, terms: int) -> np.ndarray:
    return (
        pd.Series(x).rolling(window=terms, center=True, min_periods=1).mean().to_numpy()
    )


def impute_missing(
    X: np.ndarray,
    method: str = "median",
    ma_terms: int = 3,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """Fill missing values of ``X`` column by column.

    Parameters
    ----------
    X : array_like, shape (T, n)
        Data with NaN for missing entries.
    method : {"median", "rnorm", "median.ma", "median.ma.spline"}
        ``median`` uses the column median. ``rnorm`` draws standard normal
        numbers (meant for standardized data). ``median.ma`` smooths the
        median-imputed series with a centered moving average of
        ``ma_terms`` and uses the smoothed values at missing positions.
        ``median.ma.spline`` fills interior gaps with a cubic spline
        through the observed points and the leading and trailing gaps as
        ``median.ma``.
    ma_terms : int, default 3
        Window of the moving average.

    Returns
    -------
    ndarray
        Copy of ``X`` without missing values. Observed entries are unchanged.
    """
    if method not in IMPUTE_METHODS:
        raise ValueError(f"method must be one of {IMPUTE_METHODS}, got {method!r}")
    if ma_terms < 1:
        raise ValueError("ma_terms must be positive")
    X = np.asarray(X, dtype=float)
    miss = ~np.isfinite(X)
    X_imp = np.where(miss, np.nan, X)
    if not miss.any():
        return X_imp

    if method == "rnorm":
        rng = rng if rng is not None else np.random.default_rng()
        X_imp[miss] = rng.standard_normal(int(miss.sum()))
        return X_imp

    med = np.nanmedian(np.where(miss.all(axis=0), 0.0, X_imp), axis=0)
    for j in np.flatnonzero(miss.any(axis=0)):
        col = X_imp[:, j]
        m = miss[:, j]
        filled = np.where(m, med[j], col)
        if method == "median":
            X_imp[:, j] = filled
            continue
        smooth = _moving_average(filled, ma_terms)
        if method == "median.ma":
            X_imp[:, j] = np.where(m, smooth, col)
            continue
        obs = np.flatnonzero(~m)
        result = np.where(m, smooth, col)
        if obs.size >= 2:
            interior = m.copy()
            interior[: obs[0]] = False
            interior[obs[-1] + 1 :] = False
            if interior.any():
                spline = CubicSpline(obs, col[obs])
                result[interior] = spline(np.flatnonzero(interior))
        X_imp[:, j] = result
    return X_imp
