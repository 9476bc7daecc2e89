"""Linear algebra helpers for singular and near-singular covariance systems."""

from __future__ import annotations

import numpy as np
from numpy.linalg import inv, pinv
from scipy import linalg


def symmetrize(M: np.ndarray) -> np.ndarray:
    """Return ``(M + M') / 2``."""
    return 0.5 * (M + M.T)


def apinv(M: np.ndarray) -> np.ndarray:
    """Moore-Penrose pseudo-inverse of ``M``.

    The result ``V`` satisfies ``M @ V @ M == M`` up to rounding and equals
    the ordinary inverse when ``M`` is non-singular.
    """
    return pinv(np.atleast_2d(M))


def ainv(M: np.ndarray) -> np.ndarray:
    """Inverse of ``M`` with a pseudo-inverse fallback.

    The exact inverse is tried first. If ``M`` is singular, or the inverse
    overflows to non-finite values, the Moore-Penrose pseudo-inverse is
    returned instead.
    """
    M = np.atleast_2d(M)
    try:
        M_inv = inv(M)
    except np.linalg.LinAlgError:
        return pinv(M)
    if not np.all(np.isfinite(M_inv)):
        return pinv(M)
    return M_inv


def initial_state_covariance(A: np.ndarray, Q: np.ndarray) -> np.ndarray:
    """Unconditional state covariance of ``F_t = A F_{t-1} + u_t``.

    Solves ``P0 = A P0 A' + Q`` in vectorized form,
    ``vec(P0) = (I - A kron A)^+ vec(Q)``. The pseudo-inverse keeps the
    solution defined when ``A kron A`` has eigenvalues at or near one.
    If it yields non-finite values, the same system is solved directly.
    """
    rp = A.shape[0]
    M = np.eye(rp * rp) - np.kron(A, A)
    vec_q = Q.reshape(-1, order="F")
    try:
        vec_p = apinv(M) @ vec_q
    except np.linalg.LinAlgError:
        vec_p = None
    if vec_p is None or not np.all(np.isfinite(vec_p)):
        vec_p = linalg.solve(M, vec_q)
    return symmetrize(vec_p.reshape(rp, rp, order="F"))
