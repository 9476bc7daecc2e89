"""EM algorithm for estimating the DFM.

The E-step runs the Kalman filter and smoother and condenses the result
into second-moment sufficient statistics. Two M-steps are available:

* ``DGR`` (Doz, Giannone and Reichlin, 2012) updates ``C`` and ``R`` in
  closed form with missing observations zero-filled in the cross moments.
* ``BM`` (Banbura and Modugno, 2014) regresses every series on the smoothed
  factors over the time points where that series is observed.

Both share the transition equation update, since the state equation does
not depend on which observations are missing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable
import logging
import warnings

import numpy as np

from ..exceptions import DimensionMismatchError
from .kalman import KalmanState, kalman_filter_smoother
from .linalg import ainv, apinv, symmetrize
from .model import (
    DFMModel,
    Method,
    Restriction,
    Restrictions,
    SystemMatrices,
    apply_restriction,
)

logger = logging.getLogger(__name__)

LOGLIK_SENTINEL = -np.finfo(float).max
MIN_VARIANCE = 1e-7


# ----------------------------------------------------------------------
# E-step
# ----------------------------------------------------------------------


@dataclass
class SufficientStats:
    """Sufficient statistics produced by :func:`e_step`.

    ``delta`` is ``sum_t x_t f_t'`` with missing ``x_t`` entries set to zero,
    ``gamma`` is ``sum_t E[F_t F_t']``, ``beta`` is
    ``sum_{t>=2} E[F_t F_{t-1}']``, ``gamma1`` excludes the last and
    ``gamma2`` the first time point from ``gamma``. ``F0``/``P0`` are the
    first smoothed mean and covariance (the next initial state). The
    parameters the statistics were computed under are kept in ``system``.
    """

    delta: np.ndarray
    gamma: np.ndarray
    beta: np.ndarray
    gamma1: np.ndarray
    gamma2: np.ndarray
    F0: np.ndarray
    P0: np.ndarray
    loglik: float
    cpX: np.ndarray
    T: int
    system: SystemMatrices
    x_smooth: np.ndarray
    P_smooth: np.ndarray
    n_skipped: int = 0

    @property
    def r(self) -> int:
        return self.system.r


def e_step(
    X: np.ndarray,
    C: np.ndarray,
    Q: np.ndarray,
    R: np.ndarray,
    A: np.ndarray,
    F0: np.ndarray,
    P0: np.ndarray,
    *,
    r: int | None = None,
    regularization: float = 0.0,
) -> SufficientStats:
    """Expectation step: filter, smooth and accumulate second moments."""
    system = SystemMatrices(A, C, Q, R, F0, P0, r=r)
    ks = kalman_filter_smoother(
        X, system.C, system.Q, system.R, system.A, system.F0, system.P0,
        regularization=regularization,
    )
    Fs, Ps, Pss = ks.x_smooth, ks.P_smooth, ks.P_smooth_lag

    X0 = np.asarray(X, dtype=float)
    X0 = np.where(np.isfinite(X0), X0, 0.0)

    delta = X0.T @ Fs
    gamma = Fs.T @ Fs + Ps.sum(axis=0)
    # empty for a single time point
    beta = Fs[1:].T @ Fs[:-1] + Pss.sum(axis=0)
    gamma1 = gamma - np.outer(Fs[-1], Fs[-1]) - Ps[-1]
    gamma2 = gamma - np.outer(Fs[0], Fs[0]) - Ps[0]

    return SufficientStats(
        delta=delta,
        gamma=gamma,
        beta=beta,
        gamma1=gamma1,
        gamma2=gamma2,
        F0=Fs[0].copy(),
        P0=Ps[0].copy(),
        loglik=ks.loglik,
        cpX=X0.T @ X0,
        T=X0.shape[0],
        system=system,
        x_smooth=Fs,
        P_smooth=Ps,
        n_skipped=ks.n_skipped,
    )


# ----------------------------------------------------------------------
# M-steps
# ----------------------------------------------------------------------


def _update_transition(
    stats: SufficientStats, restrictions: Restrictions
) -> tuple[np.ndarray, np.ndarray]:
    r = stats.r
    A = stats.system.A.copy()
    Q = stats.system.Q.copy()
    if stats.T < 2:
        # no transitions observed, keep the current dynamics
        return A, Q
    A_top = stats.beta[:r, :] @ ainv(stats.gamma1)
    A[:r, :] = A_top
    if restrictions.rQ is Restriction.IDENTITY:
        Q_top = np.eye(r)
    else:
        Q_top = (stats.gamma2[:r, :r] - A_top @ stats.beta[:r, :].T) / (stats.T - 1)
        Q_top = apply_restriction(Q_top, restrictions.rQ)
    Q = np.zeros_like(Q)
    Q[:r, :r] = Q_top
    return A, Q


def _floor_diagonal(R: np.ndarray) -> np.ndarray:
    R = R.copy()
    idx = np.diag_indices_from(R)
    R[idx] = np.maximum(R[idx], MIN_VARIANCE)
    return R


def m_step_dgr(
    stats: SufficientStats, restrictions: Restrictions | None = None
) -> SystemMatrices:
    """Closed-form M-step of Doz, Giannone and Reichlin (2012).

    Missing observations enter the cross moments as zeros.
    """
    restrictions = restrictions or Restrictions()
    r = stats.r
    delta_r = stats.delta[:, :r]

    C = np.zeros_like(stats.system.C)
    C[:, :r] = delta_r @ ainv(stats.gamma[:r, :r])

    if restrictions.rR is Restriction.IDENTITY:
        R = np.eye(C.shape[0])
    else:
        R = (stats.cpX - C[:, :r] @ delta_r.T) / stats.T
        R = _floor_diagonal(apply_restriction(R, restrictions.rR))

    A, Q = _update_transition(stats, restrictions)
    return SystemMatrices(A, C, Q, R, stats.F0, stats.P0, r=r)


def m_step_bm(
    X: np.ndarray,
    stats: SufficientStats,
    mask: np.ndarray | None = None,
    restrictions: Restrictions | None = None,
) -> SystemMatrices:
    """M-step of Banbura and Modugno (2014) for patterned missing data.

    Each series is regressed on the smoothed factors using only the time
    points where it is observed. Series that are never observed keep a zero
    loading and unit idiosyncratic variance.
    """
    restrictions = restrictions or Restrictions()
    X = np.asarray(X, dtype=float)
    if mask is None:
        mask = np.isfinite(X)
    if X.shape != mask.shape or X.shape[0] != stats.T:
        raise DimensionMismatchError("X and mask must match the E-step data")
    r = stats.r
    n = X.shape[1]
    X0 = np.where(mask, X, 0.0)
    Fs = stats.x_smooth[:, :r]
    Ps = stats.P_smooth[:, :r, :r]
    second = Ps + np.einsum("ti,tj->tij", Fs, Fs)

    C = np.zeros_like(stats.system.C)
    for i in range(n):
        obs = mask[:, i]
        if not obs.any():
            continue
        num = X0[obs, i] @ Fs[obs]
        den = second[obs].sum(axis=0)
        C[i, :r] = num @ apinv(den)

    Cr = C[:, :r]
    counts = mask.sum(axis=0)
    resid = np.where(mask, X0 - Fs @ Cr.T, 0.0)
    if restrictions.rR is Restriction.IDENTITY:
        R = np.eye(n)
    elif restrictions.rR is Restriction.DIAGONAL:
        var_t = resid**2 + np.einsum("ik,tkl,il->ti", Cr, Ps, Cr, optimize=True)
        total = np.where(mask, var_t, 0.0).sum(axis=0)
        diag = np.ones(n)
        seen = counts > 0
        diag[seen] = total[seen] / counts[seen]
        R = _floor_diagonal(np.diag(diag))
    else:
        W = mask.astype(float)
        total = resid.T @ resid + np.einsum(
            "ti,tj,ik,tkl,jl->ij", W, W, Cr, Ps, Cr, optimize=True
        )
        pair_counts = W.T @ W
        R = np.divide(
            total,
            pair_counts,
            where=pair_counts > 0,
            out=np.zeros_like(total),
        )
        unseen = counts == 0
        R[unseen, unseen] = 1.0
        R = _floor_diagonal(symmetrize(R))

    A, Q = _update_transition(stats, restrictions)
    return SystemMatrices(A, C, Q, R, stats.F0, stats.P0, r=r)


def _dgr_update(
    X: np.ndarray, stats: SufficientStats, restrictions: Restrictions
) -> SystemMatrices:
    return m_step_dgr(stats, restrictions)


def _bm_update(
    X: np.ndarray, stats: SufficientStats, restrictions: Restrictions
) -> SystemMatrices:
    return m_step_bm(X, stats, np.isfinite(X), restrictions)


UpdateRule = Callable[[np.ndarray, SufficientStats, Restrictions], SystemMatrices]

UPDATE_RULES: dict[Method, UpdateRule] = {
    Method.DGR: _dgr_update,
    Method.BM: _bm_update,
}


# ----------------------------------------------------------------------
# Convergence and iteration
# ----------------------------------------------------------------------


def em_converged(
    loglik: float, previous_loglik: float, tol: float = 1e-4
) -> bool:
    """Relative log-likelihood convergence test.

    Converged when ``|L - L_prev| < tol * (1 + |L|)``. With ``L_prev`` at
    :data:`LOGLIK_SENTINEL` the test never passes.
    """
    loglik = float(loglik)
    previous_loglik = float(previous_loglik)
    change = loglik - previous_loglik
    if change < -1e-3:
        logger.info(
            "Log-likelihood decreased from %.4f to %.4f", previous_loglik, loglik
        )
    return abs(change) < tol * (1.0 + abs(loglik))


def _compute_param_diff(old: SystemMatrices, new: SystemMatrices) -> float:
    diff = np.linalg.norm(new.A - old.A) + np.linalg.norm(new.C - old.C)
    return float(diff / max(1.0, np.linalg.norm(old.C)))


@dataclass(frozen=True)
class EMState:
    """Immutable snapshot of the EM iteration."""

    system: SystemMatrices
    num_iter: int = 0
    loglik_trace: tuple[float, ...] = ()
    diff_trace: tuple[float, ...] = ()
    previous_loglik: float = LOGLIK_SENTINEL
    converged: bool = False
    n_skipped: int = 0


def em_step(
    state: EMState,
    X: np.ndarray,
    update: UpdateRule,
    restrictions: Restrictions,
    *,
    min_iter: int = 0,
    tol: float = 1e-4,
) -> EMState:
    """Run one E/M cycle and return the next :class:`EMState`.

    The log-likelihood recorded is the one of the parameters entering the
    iteration. The convergence test only runs once ``min_iter`` iterations
    have been completed.
    """
    s = state.system
    stats = e_step(X, s.C, s.Q, s.R, s.A, s.F0, s.P0, r=s.r)
    new_system = update(X, stats, restrictions)
    num_iter = state.num_iter + 1
    loglik = stats.loglik
    converged = num_iter >= min_iter and em_converged(
        loglik, state.previous_loglik, tol
    )
    return EMState(
        system=new_system,
        num_iter=num_iter,
        loglik_trace=state.loglik_trace + (loglik,),
        diff_trace=state.diff_trace + (_compute_param_diff(s, new_system),),
        previous_loglik=loglik,
        converged=converged,
        n_skipped=stats.n_skipped,
    )


# ----------------------------------------------------------------------
# Driver
# ----------------------------------------------------------------------


@dataclass
class EMConfig:
    """Configuration of the EM iterations.

    Parameters
    ----------
    method : {"DGR", "BM"}, default "DGR"
        M-step update rule.
    min_iter : int, default 25
        Iterations run before the convergence test is evaluated.
    max_iter : int, default 100
        Iteration ceiling.
    tol : float, default 1e-4
        Relative log-likelihood tolerance.
    """

    method: str = "DGR"
    min_iter: int = 25
    max_iter: int = 100
    tol: float = 1e-4

    def __post_init__(self) -> None:
        self.method = Method.from_option(self.method)
        if self.min_iter < 0:
            raise ValueError("min_iter must be non-negative")
        if self.max_iter < 1:
            raise ValueError("max_iter must be at least 1")
        if self.tol <= 0:
            raise ValueError("tol must be positive")


@dataclass
class EMResult:
    """Outcome of :func:`run_em`.

    ``final_loglik`` is the last entry of ``loglik_trace``, the likelihood of
    the parameters entering the last iteration. The likelihood under the
    returned ``system`` is ``state.loglik`` from the final filter pass.
    """

    converged: bool
    num_iter: int
    final_loglik: float
    loglik_trace: list[float]
    diff_trace: list[float] = field(default_factory=list)
    status: str = ""
    system: SystemMatrices | None = None
    state: KalmanState | None = None
    n_skipped: int = 0

    @property
    def factors(self) -> np.ndarray | None:
        """Smoothed factors evaluated at the final parameters."""
        if self.state is None or self.system is None:
            return None
        return self.state.x_smooth[:, : self.system.r]


def run_em(
    X: np.ndarray,
    initial: SystemMatrices,
    method: str | Method = Method.DGR,
    min_iter: int = 25,
    max_iter: int = 100,
    tol: float = 1e-4,
    restrictions: Restrictions | None = None,
) -> EMResult:
    """Iterate E- and M-steps until convergence or ``max_iter``.

    After the loop one more filter and smoother pass is run with the last
    parameter estimates to obtain the final factors.
    """
    X = np.asarray(X, dtype=float)
    if X.ndim != 2:
        raise DimensionMismatchError(f"Expected 2D array (T x n), got {X.ndim}D")
    initial.validate(X.shape[1])
    config = EMConfig(method=method, min_iter=min_iter, max_iter=max_iter, tol=tol)
    restrictions = restrictions or Restrictions()
    update = UPDATE_RULES[config.method]

    state = EMState(system=initial.copy())
    while state.num_iter < config.max_iter and not state.converged:
        state = em_step(
            state, X, update, restrictions, min_iter=config.min_iter, tol=config.tol
        )
        logger.debug(
            "EM iteration %d: loglik=%.6f", state.num_iter, state.loglik_trace[-1]
        )

    if state.converged:
        status = "converged"
        logger.info("Converged after %d iterations.", state.num_iter)
    else:
        status = "max_iter_reached"
        warnings.warn(
            f"Maximum number of iterations ({config.max_iter}) reached "
            "without convergence."
        )

    final = state.system
    ks = kalman_filter_smoother(X, final.C, final.Q, final.R, final.A, final.F0, final.P0)
    if ks.n_skipped:
        logger.warning(
            "%d of %d time points had a non positive definite innovation "
            "covariance and were left out of the log-likelihood.",
            ks.n_skipped,
            X.shape[0],
        )

    return EMResult(
        converged=state.converged,
        num_iter=state.num_iter,
        final_loglik=state.loglik_trace[-1],
        loglik_trace=list(state.loglik_trace),
        diff_trace=list(state.diff_trace),
        status=status,
        system=final,
        state=ks,
        n_skipped=ks.n_skipped,
    )


class EMEstimatorDFM:
    """Estimate DFM parameters via the EM algorithm."""

    def __init__(self, model: DFMModel, config: EMConfig | None = None) -> None:
        self.model = model
        self.config = config or EMConfig()
        self.result: EMResult | None = None

    # ------------------------------------------------------------------
    def fit(self, X: np.ndarray, X_imp: np.ndarray | None = None) -> EMResult:
        """Run EM iterations, initialising the model from ``X`` if needed."""
        if not self.model.is_initialized:
            self.model.initialize(X, X_imp)
        c = self.config
        self.result = run_em(
            X,
            self.model.system,
            method=c.method,
            min_iter=c.min_iter,
            max_iter=c.max_iter,
            tol=c.tol,
            restrictions=self.model.config.restrictions,
        )
        self.model.system = self.result.system
        return self.result

    # ------------------------------------------------------------------
    def get_factors(self) -> np.ndarray:
        """Return the smoothed factor sequence."""
        if self.result is None:
            raise RuntimeError("Estimator has not been fitted yet")
        return self.result.factors

    # ------------------------------------------------------------------
    def get_loglik_trace(self) -> list[float]:
        """Return the log-likelihood values across EM iterations."""
        if self.result is None:
            return []
        return self.result.loglik_trace
