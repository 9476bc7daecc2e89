"""Utility functions for initialising the dynamic factor model."""

from __future__ import annotations

import numpy as np
import pandas as pd
from numpy.linalg import svd

from .linalg import ainv, initial_state_covariance
from .model import Restriction, Restrictions, SystemMatrices, apply_restriction


def pca_factors(X_imp: np.ndarray, r: int) -> tuple[np.ndarray, np.ndarray]:
    """Principal component factors of a complete data matrix.

    Parameters
    ----------
    X_imp : array_like, shape (T, n)
        Data without missing values.
    r : int
        Number of components.

    Returns
    -------
    F, V : ndarray
        Factors ``X_imp @ V`` of shape ``(T, r)`` and the ``n x r`` matrix of
        leading right singular vectors.
    """
    X_imp = np.asarray(X_imp, dtype=float)
    if not np.all(np.isfinite(X_imp)):
        raise ValueError("PCA requires complete data; impute missing values first")
    _, _, Vt = svd(X_imp, full_matrices=False)
    V = Vt.T[:, :r]
    return X_imp @ V, V


def lag_matrix(F: np.ndarray, p: int) -> np.ndarray:
    """Rows ``[f_{t-1}', ..., f_{t-p}']`` for ``t = p, ..., T - 1``."""
    Tn = F.shape[0]
    return np.hstack([F[p - l - 1 : Tn - l - 1] for l in range(p)])


def fit_var(F: np.ndarray, p: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Least-squares VAR(p) without intercept.

    Returns the ``r x rp`` coefficient block ``[A_1, ..., A_p]``, the
    residuals and the lagged regressor matrix.
    """
    F = np.asarray(F, dtype=float)
    if F.ndim == 1:
        F = F[:, None]
    if F.shape[0] <= p + 1:
        raise ValueError(
            f"VAR({p}) needs more than {p + 1} time points, got {F.shape[0]}"
        )
    Y = F[p:]
    X_lag = lag_matrix(F, p)
    coef = np.linalg.lstsq(X_lag, Y, rcond=None)[0]
    res = Y - X_lag @ coef
    return coef.T, res, X_lag


def companion_matrix(A_top: np.ndarray, r: int, p: int) -> np.ndarray:
    """Stack VAR(p) coefficients into the ``rp x rp`` VAR(1) transition matrix."""
    rp = r * p
    A = np.zeros((rp, rp))
    A[:r, :] = A_top
    if p > 1:
        A[r:, :-r] = np.eye(rp - r)
    return A


def _residual_covariance(res: np.ndarray, restriction: Restriction) -> np.ndarray:
    """Covariance of residuals with NaN marking missing entries."""
    n = res.shape[1]
    if restriction is Restriction.IDENTITY:
        return np.eye(n)
    if restriction is Restriction.DIAGONAL:
        var = pd.DataFrame(res).var(ddof=1).to_numpy()
        return np.diag(np.nan_to_num(var, nan=1.0))
    # pairwise complete observations
    cov = pd.DataFrame(res).cov().to_numpy()
    return apply_restriction(np.nan_to_num(cov, nan=0.0), restriction)


def system_from_factors(
    F: np.ndarray,
    loadings: np.ndarray,
    X_imp: np.ndarray,
    X: np.ndarray,
    p: int,
    restrictions: Restrictions,
) -> SystemMatrices:
    """Build system matrices from a factor path and loadings.

    ``R`` is estimated from the residuals ``X_imp - F loadings'`` on observed
    entries of ``X`` only, the dynamics from a VAR(p) on ``F``.
    """
    r = F.shape[1]
    n = X_imp.shape[1]
    rp = r * p

    C = np.zeros((n, rp))
    C[:, :r] = loadings
    res = X_imp - F @ loadings.T
    res = np.where(np.isfinite(X), res, np.nan)
    R = _residual_covariance(res, restrictions.rR)
    R[np.diag_indices_from(R)] = np.maximum(np.diag(R), 1e-7)

    A_top, var_res, X_lag = fit_var(F, p)
    A = companion_matrix(A_top, r, p)
    Q = np.zeros((rp, rp))
    Q[:r, :r] = _residual_covariance(var_res, restrictions.rQ)

    F0 = X_lag[0]
    P0 = initial_state_covariance(A, Q)
    return SystemMatrices(A, C, Q, R, F0, P0, r=r)


def init_system_matrices(
    X_imp: np.ndarray,
    X: np.ndarray,
    r: int,
    p: int,
    restrictions: Restrictions | None = None,
) -> tuple[SystemMatrices, np.ndarray]:
    """Starting values for the EM algorithm from PCA and a VAR.

    Parameters
    ----------
    X_imp : ndarray, shape (T, n)
        Imputed data used for the principal components.
    X : ndarray, shape (T, n)
        Original data; its missing entries are excluded when estimating ``R``.
    r, p : int
        Number of factors and VAR lag order.

    Returns
    -------
    system, F_pc
        Initial system matrices and the principal component factors.
    """
    restrictions = restrictions or Restrictions()
    X_imp = np.asarray(X_imp, dtype=float)
    X = np.asarray(X, dtype=float)
    if X.shape != X_imp.shape:
        raise ValueError("X and X_imp must have the same shape")
    if not 1 <= r <= min(X.shape):
        raise ValueError(f"r must be between 1 and {min(X.shape)}, got {r}")
    F_pc, V = pca_factors(X_imp, r)
    return system_from_factors(F_pc, V, X_imp, X, p, restrictions), F_pc


def loadings_from_factors(F: np.ndarray, X: np.ndarray) -> np.ndarray:
    """Least-squares loadings ``(F'F)^-1 F'X`` with missing ``X`` set to zero."""
    X0 = np.where(np.isfinite(X), X, 0.0)
    return (ainv(F.T @ F) @ F.T @ X0).T
