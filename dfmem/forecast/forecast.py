"""h-step ahead forecasts of the factors and the data implied by a fitted DFM.

The factor VAR(p) is iterated forward from the last ``p`` factor estimates
and the forecasts are mapped to the series with the loadings ``C``.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


# ---------------------------------------------------------------------------
@dataclass
class ForecastResult:
    """h-step ahead forecasts of factors and data."""

    F_fcst: np.ndarray
    X_fcst: np.ndarray
    h: int
    method: str = "qml"
    standardized: bool = True


# ---------------------------------------------------------------------------
def forecast_factors(F: np.ndarray, A: np.ndarray, h: int) -> np.ndarray:
    """Iterate the factor VAR(p) forward ``h`` steps.

    Parameters
    ----------
    F : ndarray
        Factor history ``(T, r)``; the last ``p`` rows start the recursion.
    A : ndarray
        VAR coefficients ``[A_1, ..., A_p]`` of shape ``(r, r * p)``.
    h : int
        Forecast horizon.

    Returns
    -------
    ndarray
        Forecasts of shape ``(h, r)``.
    """
    F = np.asarray(F, dtype=float)
    A = np.atleast_2d(np.asarray(A, dtype=float))
    if h <= 0:
        raise ValueError("h must be positive")
    r = F.shape[1]
    if A.shape[0] != r or A.shape[1] % r:
        raise ValueError("A has incompatible shape")
    p = A.shape[1] // r
    if F.shape[0] < p:
        raise ValueError("Not enough factor history for forecasting")

    history = list(F[-p:])
    out = np.empty((h, r))
    for i in range(h):
        regressors = np.concatenate([history[-l - 1] for l in range(p)])
        out[i] = A @ regressors
        history.append(out[i])
    return out


# ---------------------------------------------------------------------------
def forecast_dfm(
    F: np.ndarray, A: np.ndarray, C: np.ndarray, h: int
) -> tuple[np.ndarray, np.ndarray]:
    """Forecast factors with the VAR and map them to the data with ``C``.

    Returns ``(F_fcst, X_fcst)`` with shapes ``(h, r)`` and ``(h, n)``.
    """
    F_fc = forecast_factors(F, A, h)
    C = np.atleast_2d(np.asarray(C, dtype=float))
    if C.shape[1] != F_fc.shape[1]:
        raise ValueError("C has incompatible shape")
    return F_fc, F_fc @ C.T
