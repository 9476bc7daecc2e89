"""Shared pytest fixtures for dfmem tests.

This module provides common fixtures used across all test modules,
including data generators, small state-space systems and the exact
Gaussian moments the Kalman recursions are checked against.
"""

from __future__ import annotations

import numpy as np
import pytest

from dfmem.core import SystemMatrices, initial_state_covariance

# ---------------------------------------------------------------------------
# Data generation
# ---------------------------------------------------------------------------


def generate_dfm_data(
    T: int,
    n: int,
    r: int,
    rng: np.random.Generator,
    A: np.ndarray | None = None,
    noise_var: float = 0.1,
) -> dict:
    """Simulate a DFM with VAR(1) factors.

    Parameters
    ----------
    T : int
        Number of time periods.
    n : int
        Number of series.
    r : int
        Number of factors.
    rng : np.random.Generator
        Random number generator.
    A : ndarray, optional
        Factor transition matrix, ``0.5 * I`` by default.
    noise_var : float, default 0.1
        Variance of the idiosyncratic noise.

    Returns
    -------
    dict
        Dictionary with keys: X, F, C, A, R.
    """
    if A is None:
        A = 0.5 * np.eye(r)
    C = rng.normal(size=(n, r))
    F = np.zeros((T, r))
    F[0] = rng.normal(size=r)
    for t in range(1, T):
        F[t] = A @ F[t - 1] + rng.normal(size=r)
    X = F @ C.T + np.sqrt(noise_var) * rng.normal(size=(T, n))
    return {"X": X, "F": F, "C": C, "A": A, "R": noise_var * np.eye(n)}


def joint_moments(system: SystemMatrices, T: int) -> dict:
    """Exact joint Gaussian moments of states and observations.

    States are stacked as ``[F_1', ..., F_T']'`` and observations as the
    rows of the ``T x n`` data matrix read in row-major order.
    """
    A, C, Q, R = system.A, system.C, system.Q, system.R
    d = A.shape[0]
    means = [system.F0]
    covs = [system.P0]
    for _ in range(1, T):
        means.append(A @ means[-1])
        covs.append(A @ covs[-1] @ A.T + Q)

    Sf = np.zeros((T * d, T * d))
    for s in range(T):
        block = covs[s]
        for t in range(s, T):
            Sf[t * d : (t + 1) * d, s * d : (s + 1) * d] = block
            Sf[s * d : (s + 1) * d, t * d : (t + 1) * d] = block.T
            block = A @ block

    H = np.kron(np.eye(T), C)
    mu_f = np.concatenate(means)
    return {
        "mu_f": mu_f,
        "Sf": Sf,
        "mu_x": H @ mu_f,
        "Sx": H @ Sf @ H.T + np.kron(np.eye(T), R),
        "Sxf": H @ Sf,
    }


def posterior_moments(system: SystemMatrices, X: np.ndarray) -> tuple:
    """Mean and covariance of the stacked states given the observed entries."""
    T, _ = X.shape
    m = joint_moments(system, T)
    x = X.reshape(-1)
    obs = np.isfinite(x)
    Sxx = m["Sx"][np.ix_(obs, obs)]
    Sxf = m["Sxf"][obs]
    gain = np.linalg.solve(Sxx, Sxf).T
    mean = m["mu_f"] + gain @ (x[obs] - m["mu_x"][obs])
    cov = m["Sf"] - gain @ Sxf
    return mean, cov


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def rng():
    """Provide a seeded random number generator for reproducibility."""
    return np.random.default_rng(42)


@pytest.fixture
def small_system():
    """Two factors, one lag, four series."""
    A = np.array([[0.5, 0.1], [0.0, 0.3]])
    C = np.array([[1.0, 0.2], [0.5, -0.4], [-0.3, 0.8], [0.7, 0.7]])
    Q = np.diag([1.0, 0.5])
    R = np.diag([0.2, 0.3, 0.25, 0.4])
    return SystemMatrices(A, C, Q, R, np.zeros(2), initial_state_covariance(A, Q))


@pytest.fixture
def companion_system():
    """One factor with two lags in block-companion form, three series."""
    A = np.array([[0.5, 0.2], [1.0, 0.0]])
    C = np.array([[1.0, 0.0], [0.6, 0.0], [-0.8, 0.0]])
    Q = np.array([[1.0, 0.0], [0.0, 0.0]])
    R = np.diag([0.3, 0.2, 0.5])
    return SystemMatrices(
        A, C, Q, R, np.array([0.5, -0.2]), initial_state_covariance(A, Q)
    )


@pytest.fixture
def dfm_data(rng):
    """Moderate DFM sample with two factors and ten series."""
    return generate_dfm_data(T=120, n=10, r=2, rng=rng)


@pytest.fixture
def panel_with_missing(dfm_data, rng):
    """``dfm_data`` with roughly 10% of the entries set to NaN."""
    X = dfm_data["X"].copy()
    X[rng.random(X.shape) < 0.1] = np.nan
    return X
