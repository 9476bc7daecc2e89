"""Kalman filtering and smoothing for the DFM."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..exceptions import DimensionMismatchError
from .linalg import ainv, symmetrize
from .model import SystemMatrices

LOG_2PI = np.log(2.0 * np.pi)


@dataclass
class KalmanConfig:
    """Numerical settings of the Kalman recursions.

    Parameters
    ----------
    regularization : float, default 0.0
        Ridge added to every innovation covariance before inversion.
    """

    regularization: float = 0.0

    def __post_init__(self) -> None:
        if self.regularization < 0:
            raise ValueError("regularization must be non-negative")


@dataclass
class KalmanState:
    """Output of a filter (and optionally smoother) pass.

    ``P_smooth_lag[t - 1]`` holds ``Cov(F_t, F_{t-1} | X)`` for
    ``t = 1, ..., T - 1`` so the array has ``T - 1`` slices.
    ``n_skipped`` counts steps whose innovation covariance was not positive
    definite and therefore did not contribute to ``loglik``.
    """

    x_pred: np.ndarray
    P_pred: np.ndarray
    x_filt: np.ndarray
    P_filt: np.ndarray
    x_smooth: np.ndarray | None = None
    P_smooth: np.ndarray | None = None
    P_smooth_lag: np.ndarray | None = None
    loglik: float | None = None
    n_skipped: int = 0


def _check_data(X: np.ndarray) -> np.ndarray:
    X = np.asarray(X, dtype=float)
    if X.ndim != 2:
        raise DimensionMismatchError(f"Expected 2D array (T x n), got {X.ndim}D")
    if X.shape[0] < 1:
        raise DimensionMismatchError("Data must contain at least one time point")
    return X


def kalman_filter(
    X: np.ndarray,
    C: np.ndarray,
    Q: np.ndarray,
    R: np.ndarray,
    A: np.ndarray,
    F0: np.ndarray,
    P0: np.ndarray,
    *,
    regularization: float = 0.0,
) -> KalmanState:
    """Run the Kalman filter on ``X`` allowing arbitrary missing values.

    Parameters
    ----------
    X : ndarray, shape (T, n)
        Observations; non-finite entries are treated as missing.
    C, Q, R, A : ndarray
        Observation, state covariance, observation covariance and transition
        matrices.
    F0, P0 : ndarray
        Mean and covariance of the state at the first time point.

    Returns
    -------
    KalmanState
        Predicted and filtered means/covariances and the log-likelihood.
    """
    X = _check_data(X)
    system = SystemMatrices(A, C, Q, R, F0, P0)
    system.validate(X.shape[1])
    A, C, Q, R = system.A, system.C, system.Q, system.R

    Tn = X.shape[0]
    d = system.rp
    xp = np.zeros((Tn, d))
    Pp = np.zeros((Tn, d, d))
    xf = np.zeros((Tn, d))
    Pf = np.zeros((Tn, d, d))
    observed = np.isfinite(X)

    x_prior = system.F0
    V_prior = system.P0
    loglik = 0.0
    n_skipped = 0
    for t in range(Tn):
        idx = np.flatnonzero(observed[t])
        if idx.size > 0:
            Z = C[idx, :]
            R_t = R[np.ix_(idx, idx)]
            S = Z @ V_prior @ Z.T + R_t
            if regularization:
                S += regularization * np.eye(idx.size)
            S_inv = ainv(S)
            innov = X[t, idx] - Z @ x_prior
            K_gain = V_prior @ Z.T @ S_inv
            x_post = x_prior + K_gain @ innov
            V_post = symmetrize(V_prior - K_gain @ Z @ V_prior)
            sign, logdet = np.linalg.slogdet(S)
            if sign > 0:
                loglik -= 0.5 * (
                    idx.size * LOG_2PI + logdet + innov @ S_inv @ innov
                )
            else:
                n_skipped += 1
        else:
            x_post = x_prior
            V_post = V_prior
        xp[t] = x_prior
        Pp[t] = V_prior
        xf[t] = x_post
        Pf[t] = V_post
        x_prior = A @ x_post
        V_prior = symmetrize(A @ V_post @ A.T + Q)
    return KalmanState(
        x_pred=xp,
        P_pred=Pp,
        x_filt=xf,
        P_filt=Pf,
        loglik=float(loglik),
        n_skipped=n_skipped,
    )


def kalman_smoother(
    A: np.ndarray,
    C: np.ndarray,
    R: np.ndarray,
    x_filt: np.ndarray,
    x_pred: np.ndarray,
    P_filt: np.ndarray,
    P_pred: np.ndarray,
) -> KalmanState:
    """Rauch-Tung-Striebel smoother with lag-one covariances.

    The lag-one recursion is started from the Kalman gain of the last time
    point computed with the full ``C`` and ``R``. For a single time point no
    lag-one covariance exists and ``P_smooth_lag`` is empty.
    """
    A = np.atleast_2d(np.asarray(A, dtype=float))
    C = np.atleast_2d(np.asarray(C, dtype=float))
    R = np.atleast_2d(np.asarray(R, dtype=float))
    Tn, d = x_filt.shape
    if A.shape != (d, d) or C.shape[1] != d or R.shape != (C.shape[0],) * 2:
        raise DimensionMismatchError("Smoother inputs have inconsistent shapes")
    if P_filt.shape != (Tn, d, d) or P_pred.shape != (Tn, d, d) or x_pred.shape != (Tn, d):
        raise DimensionMismatchError("Filter output has inconsistent shapes")

    xs = np.zeros_like(x_filt)
    Vs = np.zeros_like(P_filt)
    xs[-1] = x_filt[-1]
    Vs[-1] = P_filt[-1]
    J = np.zeros((max(Tn - 1, 0), d, d))
    for t in range(Tn - 2, -1, -1):
        J[t] = P_filt[t] @ A.T @ ainv(P_pred[t + 1])
        xs[t] = x_filt[t] + J[t] @ (xs[t + 1] - x_pred[t + 1])
        Vs[t] = symmetrize(P_filt[t] + J[t] @ (Vs[t + 1] - P_pred[t + 1]) @ J[t].T)

    Vss = np.zeros((max(Tn - 1, 0), d, d))
    if Tn >= 2:
        S = C @ P_pred[-1] @ C.T + R
        K_last = P_pred[-1] @ C.T @ ainv(S)
        Vss[-1] = (np.eye(d) - K_last @ C) @ A @ P_filt[-2]
        for t in range(Tn - 2, 0, -1):
            Vss[t - 1] = (
                P_filt[t] @ J[t - 1].T
                + J[t] @ (Vss[t] - A @ P_filt[t]) @ J[t - 1].T
            )

    return KalmanState(
        x_pred=x_pred,
        P_pred=P_pred,
        x_filt=x_filt,
        P_filt=P_filt,
        x_smooth=xs,
        P_smooth=Vs,
        P_smooth_lag=Vss,
    )


def kalman_filter_smoother(
    X: np.ndarray,
    C: np.ndarray,
    Q: np.ndarray,
    R: np.ndarray,
    A: np.ndarray,
    F0: np.ndarray,
    P0: np.ndarray,
    *,
    regularization: float = 0.0,
) -> KalmanState:
    """Run :func:`kalman_filter` followed by :func:`kalman_smoother`."""
    filt = kalman_filter(X, C, Q, R, A, F0, P0, regularization=regularization)
    state = kalman_smoother(A, C, R, filt.x_filt, filt.x_pred, filt.P_filt, filt.P_pred)
    state.loglik = filt.loglik
    state.n_skipped = filt.n_skipped
    return state


class KalmanFilterDFM:
    """Kalman filter and RTS smoother bound to a set of system matrices."""

    def __init__(self, system: SystemMatrices, config: KalmanConfig | None = None) -> None:
        if system is None:
            raise ValueError("Model must be initialized before filtering")
        system.validate()
        self.system = system
        self.config = config or KalmanConfig()
        self.state: KalmanState | None = None

    # ------------------------------------------------------------------
    def filter(self, X: np.ndarray) -> KalmanState:
        s = self.system
        self.state = kalman_filter(
            X, s.C, s.Q, s.R, s.A, s.F0, s.P0,
            regularization=self.config.regularization,
        )
        return self.state

    # ------------------------------------------------------------------
    def smooth(self, state: KalmanState | None = None) -> KalmanState:
        state = state if state is not None else self.state
        if state is None:
            raise ValueError("No filtered state available; call filter() first")
        s = self.system
        smoothed = kalman_smoother(
            s.A, s.C, s.R, state.x_filt, state.x_pred, state.P_filt, state.P_pred
        )
        state.x_smooth = smoothed.x_smooth
        state.P_smooth = smoothed.P_smooth
        state.P_smooth_lag = smoothed.P_smooth_lag
        self.state = state
        return state

    # ------------------------------------------------------------------
    def log_likelihood(self, X: np.ndarray | None = None) -> float:
        """Log-likelihood of ``X`` (or of the last filtered data)."""
        if X is not None:
            self.filter(X)
        if self.state is None or self.state.loglik is None:
            raise ValueError("No filtered state available; call filter() first")
        return self.state.loglik

    # ------------------------------------------------------------------
    @property
    def factors(self) -> np.ndarray:
        """Smoothed factors (first ``r`` state components)."""
        if self.state is None or self.state.x_smooth is None:
            raise ValueError("No smoothed state available; call smooth() first")
        return self.state.x_smooth[:, : self.system.r]
