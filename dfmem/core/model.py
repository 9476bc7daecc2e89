"""Model representation for the dynamic factor model."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

import numpy as np

from ..exceptions import DimensionMismatchError, InvalidRestrictionError
from ..utils import impute_missing


class Restriction(str, Enum):
    """Structure imposed on a covariance matrix after each update."""

    NONE = "none"
    DIAGONAL = "diagonal"
    IDENTITY = "identity"

    @classmethod
    def from_option(cls, value: "str | Restriction") -> "Restriction":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise InvalidRestrictionError(
                f"Unknown restriction {value!r}; expected one of "
                f"{[m.value for m in cls]}"
            ) from None


class Method(str, Enum):
    """EM update rule."""

    DGR = "DGR"
    BM = "BM"

    @classmethod
    def from_option(cls, value: "str | Method") -> "Method":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise InvalidRestrictionError(
                f"Unknown EM method {value!r}; expected 'DGR' or 'BM'"
            ) from None


@dataclass(frozen=True)
class Restrictions:
    """Restrictions on the state (``rQ``) and observation (``rR``) covariances."""

    rQ: Restriction = Restriction.NONE
    rR: Restriction = Restriction.DIAGONAL

    def __post_init__(self) -> None:
        object.__setattr__(self, "rQ", Restriction.from_option(self.rQ))
        object.__setattr__(self, "rR", Restriction.from_option(self.rR))


def apply_restriction(M: np.ndarray, restriction: Restriction) -> np.ndarray:
    """Return ``M`` with ``restriction`` imposed (result is symmetric)."""
    if restriction is Restriction.IDENTITY:
        return np.eye(M.shape[0])
    if restriction is Restriction.DIAGONAL:
        return np.diag(np.diag(M))
    return 0.5 * (M + M.T)


def infer_factor_count(A: np.ndarray, C: np.ndarray | None = None) -> int:
    """Number of factors ``r`` implied by a block-companion transition matrix.

    Returns the smallest ``r`` dividing ``rp`` for which the rows below the
    first ``r`` hold the lag-shifting identity followed by a zero block.
    Only the first ``r`` columns of ``C`` may load on the state, so if ``C``
    has a nonzero column beyond that guess, ``A`` is a full VAR(1) and
    ``rp`` is returned.
    """
    rp = A.shape[0]
    guess = rp
    for r in range(1, rp):
        if rp % r:
            continue
        below = A[r:]
        if np.array_equal(below[:, : rp - r], np.eye(rp - r)) and not np.any(
            below[:, rp - r :]
        ):
            guess = r
            break
    if C is not None and guess < rp:
        loaded = np.flatnonzero(np.any(C != 0, axis=0))
        if loaded.size and loaded[-1] + 1 > guess:
            return rp
    return guess


@dataclass
class SystemMatrices:
    """System matrices of the stacked VAR(1) state-space form.

    ``x_t = C F_t + e_t,  e_t ~ N(0, R)``
    ``F_t = A F_{t-1} + u_t,  u_t ~ N(0, Q)``

    ``A`` is ``rp x rp`` in block-companion form, ``C`` is ``n x rp`` with
    only the first ``r`` columns nonzero and ``Q`` is zero outside its
    top-left ``r x r`` block. ``F0`` and ``P0`` give the initial state.
    """

    A: np.ndarray
    C: np.ndarray
    Q: np.ndarray
    R: np.ndarray
    F0: np.ndarray
    P0: np.ndarray
    r: int | None = None

    def __post_init__(self) -> None:
        self.A = np.atleast_2d(np.asarray(self.A, dtype=float))
        self.C = np.atleast_2d(np.asarray(self.C, dtype=float))
        self.Q = np.atleast_2d(np.asarray(self.Q, dtype=float))
        self.R = np.atleast_2d(np.asarray(self.R, dtype=float))
        self.F0 = np.asarray(self.F0, dtype=float).reshape(-1)
        self.P0 = np.atleast_2d(np.asarray(self.P0, dtype=float))
        if self.r is None:
            self.r = infer_factor_count(self.A, self.C)

    @property
    def rp(self) -> int:
        return self.A.shape[0]

    @property
    def n(self) -> int:
        return self.C.shape[0]

    @property
    def p(self) -> int:
        return self.rp // self.r

    def validate(self, n: int | None = None) -> None:
        """Raise :class:`DimensionMismatchError` on inconsistent shapes."""
        rp = self.A.shape[0]
        if self.A.shape != (rp, rp):
            raise DimensionMismatchError(f"A must be square, got {self.A.shape}")
        if self.C.shape[1] != rp:
            raise DimensionMismatchError(
                f"C has {self.C.shape[1]} columns, expected {rp}"
            )
        n_obs = self.C.shape[0]
        if n is not None and n != n_obs:
            raise DimensionMismatchError(
                f"Data has {n} series but C has {n_obs} rows"
            )
        if self.Q.shape != (rp, rp):
            raise DimensionMismatchError(f"Q must be {rp}x{rp}, got {self.Q.shape}")
        if self.R.shape != (n_obs, n_obs):
            raise DimensionMismatchError(
                f"R must be {n_obs}x{n_obs}, got {self.R.shape}"
            )
        if self.F0.shape != (rp,):
            raise DimensionMismatchError(f"F0 must have length {rp}, got {self.F0.shape}")
        if self.P0.shape != (rp, rp):
            raise DimensionMismatchError(f"P0 must be {rp}x{rp}, got {self.P0.shape}")
        if not 1 <= self.r <= rp or rp % self.r:
            raise DimensionMismatchError(
                f"Number of factors r={self.r} incompatible with state dimension {rp}"
            )

    def copy(self) -> "SystemMatrices":
        return replace(
            self,
            A=self.A.copy(),
            C=self.C.copy(),
            Q=self.Q.copy(),
            R=self.R.copy(),
            F0=self.F0.copy(),
            P0=self.P0.copy(),
        )


@dataclass
class DFMConfig:
    """Configuration of a dynamic factor model.

    Parameters
    ----------
    n : int
        Number of observed series.
    r : int
        Number of factors.
    p : int, default 1
        Lag order of the factor VAR.
    rQ : {"none", "diagonal", "identity"}, default "none"
        Restriction on the state covariance.
    rR : {"diagonal", "identity", "none"}, default "diagonal"
        Restriction on the observation covariance.
    """

    n: int
    r: int
    p: int = 1
    rQ: str = "none"
    rR: str = "diagonal"

    def __post_init__(self) -> None:
        if self.n < 1:
            raise ValueError(f"n must be positive, got {self.n}")
        if self.r < 1:
            raise ValueError(f"r must be positive, got {self.r}")
        if self.p < 1:
            raise ValueError(f"p must be positive, got {self.p}")
        if self.r > self.n:
            raise ValueError(f"r={self.r} exceeds the number of series n={self.n}")
        # fail fast on unknown options
        Restrictions(rQ=self.rQ, rR=self.rR)

    @property
    def rp(self) -> int:
        return self.r * self.p

    @property
    def restrictions(self) -> Restrictions:
        return Restrictions(rQ=self.rQ, rR=self.rR)


@dataclass
class DFMModel:
    """Dynamic factor model holding its configuration and system matrices."""

    config: DFMConfig
    system: SystemMatrices | None = None
    F_pca: np.ndarray | None = None

    @property
    def is_initialized(self) -> bool:
        return self.system is not None

    def initialize(self, X: np.ndarray, X_imp: np.ndarray | None = None) -> None:
        """Initialise system matrices from PCA factors and a VAR on them.

        ``X`` may contain NaN; ``X_imp`` is a complete version of ``X`` used
        for the principal components. When omitted, missing entries are
        median-imputed.
        """
        from . import utils

        X = np.asarray(X, dtype=float)
        if X_imp is None:
            X_imp = impute_missing(X, method="median")
        c = self.config
        self.system, self.F_pca = utils.init_system_matrices(
            X_imp, X, c.r, c.p, c.restrictions
        )
