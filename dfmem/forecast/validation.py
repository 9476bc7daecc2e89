"""Out-of-sample validation of DFM forecasts."""

from __future__ import annotations

import numpy as np


# ---------------------------------------------------------------------------
def out_of_sample_rmse(
    X: np.ndarray,
    steps: int,
    *,
    r: int = 1,
    p: int = 1,
    **kwargs,
) -> float:
    """Compute out-of-sample RMSE for a DFM forecast.

    The model is estimated on ``X`` excluding the last ``steps`` observations.
    A forecast on the original scale is produced for these periods and
    compared with the held-out data using the root mean squared error
    (missing held-out values are ignored). Further keyword arguments are
    passed to :func:`dfmem.DFM`.
    """
    from ..dfm import DFM

    X = np.asarray(X, dtype=float)
    if X.ndim != 2:
        raise ValueError("X must be a 2D array")
    if steps <= 0 or steps >= X.shape[0]:
        raise ValueError("steps must be between 1 and T-1")

    fit = DFM(X[:-steps], r, p, **kwargs)
    fcst = fit.predict(h=steps, standardized=False)
    err = fcst.X_fcst - X[-steps:]
    return float(np.sqrt(np.nanmean(err**2)))
