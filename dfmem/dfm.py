"""Dynamic Factor Model (DFM) estimation.

Estimates the model

    x_t = C_0 f_t + e_t,                 e_t ~ N(0, R)
    f_t = A_1 f_{t-1} + ... + A_p f_{t-p} + u_t,   u_t ~ N(0, Q_0)

on standardized data of a single frequency with arbitrary patterns of
missing values. Starting values come from principal components and a VAR
on them; the data are then run through the Kalman filter and smoother
once (the two-step estimator of Doz, Giannone and Reichlin, 2011) and,
unless ``em_method="none"``, the parameters are refined by EM.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from .core.em import EMResult, run_em
from .core.kalman import kalman_filter_smoother
from .core.model import Method, Restrictions
from .core.utils import init_system_matrices, loadings_from_factors, system_from_factors
from .exceptions import InvalidRestrictionError
from .forecast.forecast import ForecastResult, forecast_dfm
from .utils import IMPUTE_METHODS, impute_missing, missing_rows, standardize, unscale

EM_METHODS = ("DGR", "BM", "none")


@dataclass
class DFMResult:
    """Estimates of a dynamic factor model.

    ``X_imp`` is the standardized and imputed data, ``missing`` marks the
    entries that were missing (``None`` if there were none). Factor
    estimates are available as ``pca``, ``twostep`` and, after EM, ``qml``.
    ``A`` is ``r x rp``, ``C`` is ``n x r``, ``Q`` is ``r x r`` and ``R``
    is ``n x n``.
    """

    X_imp: np.ndarray
    mean: np.ndarray
    sd: np.ndarray
    missing: np.ndarray | None
    pca: np.ndarray
    twostep: np.ndarray
    A: np.ndarray
    C: np.ndarray
    Q: np.ndarray
    R: np.ndarray
    em_method: str
    anyNA: bool
    na_rm: np.ndarray | None = None
    qml: np.ndarray | None = None
    loglik: list[float] | None = None
    tol: float | None = None
    converged: bool | None = None
    em_result: EMResult | None = None
    columns: list | None = field(default=None, repr=False)

    @property
    def r(self) -> int:
        return self.C.shape[1]

    @property
    def p(self) -> int:
        return self.A.shape[1] // self.A.shape[0]

    def factors(self, method: str | None = None) -> np.ndarray:
        """Factor estimates: ``"qml"`` (default after EM), ``"twostep"`` or ``"pca"``."""
        method = method or ("twostep" if self.qml is None else "qml")
        if method not in ("qml", "twostep", "pca"):
            raise ValueError("method must be 'qml', 'twostep' or 'pca'")
        F = getattr(self, method)
        if F is None:
            raise ValueError(f"No {method} factor estimates available")
        return F

    def fitted(self, method: str | None = None, standardized: bool = False) -> np.ndarray:
        """Common component ``F C'``; NaN where the data were missing."""
        fit = self.factors(method) @ self.C.T
        if not standardized:
            fit = unscale(fit, self.mean, self.sd)
        if self.missing is not None:
            fit = np.where(self.missing, np.nan, fit)
        return fit

    def residuals(self, method: str | None = None, standardized: bool = False) -> np.ndarray:
        """Data minus fitted values; NaN where the data were missing."""
        X = self.X_imp
        fit = self.factors(method) @ self.C.T
        if standardized:
            res = X - fit
        else:
            res = unscale(X, self.mean, self.sd) - unscale(fit, self.mean, self.sd)
        if self.missing is not None:
            res = np.where(self.missing, np.nan, res)
        return res

    def predict(
        self, h: int = 10, method: str | None = None, standardized: bool = True
    ) -> ForecastResult:
        """h-step ahead forecasts of the factors and the data."""
        method = method or ("twostep" if self.qml is None else "qml")
        F_fc, X_fc = forecast_dfm(self.factors(method), self.A, self.C, h)
        if not standardized:
            X_fc = unscale(X_fc, self.mean, self.sd)
        return ForecastResult(
            F_fcst=F_fc, X_fcst=X_fc, h=h, method=method, standardized=standardized
        )

    def to_frame(self, method: str | None = None) -> pd.DataFrame:
        """Factor estimates as a DataFrame with columns ``f1, ..., fr``."""
        F = self.factors(method)
        return pd.DataFrame(F, columns=[f"f{i + 1}" for i in range(F.shape[1])])

    def loadings(self) -> pd.DataFrame:
        """Observation matrix ``C`` indexed by series name."""
        return pd.DataFrame(
            self.C,
            index=self.columns if self.columns is not None else range(self.C.shape[0]),
            columns=[f"f{i + 1}" for i in range(self.r)],
        )


def _check_options(X, r, p, em_method, min_iter, max_iter, tol, max_missing,
                   na_rm_method, na_impute, ma_terms):
    if X.ndim != 2:
        raise ValueError("X must be a 2D array (T x n)")
    if not isinstance(r, (int, np.integer)) or not 1 <= r <= X.shape[1]:
        raise ValueError(f"r must be an integer between 1 and {X.shape[1]}")
    if not isinstance(p, (int, np.integer)) or p < 1:
        raise ValueError("p must be a positive integer")
    if em_method not in EM_METHODS:
        raise InvalidRestrictionError(
            f"Unknown EM option {em_method!r}; expected one of {EM_METHODS}"
        )
    if min_iter < 0 or max_iter < 1:
        raise ValueError("Need min_iter >= 0 and max_iter >= 1")
    if tol <= 0:
        raise ValueError("tol must be positive")
    if not 0 <= max_missing <= 1:
        raise ValueError("max_missing must be between 0 and 1")
    if na_rm_method not in ("LE", "all"):
        raise ValueError("na_rm_method must be 'LE' or 'all'")
    if na_impute not in IMPUTE_METHODS:
        raise ValueError(f"na_impute must be one of {IMPUTE_METHODS}")
    if ma_terms < 1:
        raise ValueError("ma_terms must be positive")


def DFM(
    X,
    r: int,
    p: int = 1,
    *,
    rQ: str = "none",
    rR: str = "diagonal",
    em_method: str = "DGR",
    min_iter: int = 25,
    max_iter: int = 100,
    tol: float = 1e-4,
    max_missing: float = 0.8,
    na_rm_method: str = "LE",
    na_impute: str = "median",
    ma_terms: int = 3,
) -> DFMResult:
    r"""Estimate a dynamic factor model.

    Parameters
    ----------
    X : array_like or pandas.DataFrame, shape (T, n)
        Data; NaN marks missing values. Standardized internally.
    r : int
        Number of factors.
    p : int, default 1
        Lag order of the factor VAR.
    rQ : {"none", "diagonal", "identity"}, default "none"
        Restriction on the state covariance ``Q``.
    rR : {"diagonal", "identity", "none"}, default "diagonal"
        Restriction on the observation covariance ``R``.
    em_method : {"DGR", "BM", "none"}, default "DGR"
        ``"DGR"`` is the EM of Doz, Giannone and Reichlin (2012), ``"BM"``
        the modification of Banbura and Modugno (2014) for arbitrary
        patterns of missing data and ``"none"`` returns the two-step
        estimates without EM iterations.
    min_iter, max_iter : int
        Bounds on the number of EM iterations.
    tol : float, default 1e-4
        EM convergence tolerance.
    max_missing : float, default 0.8
        Share of missing series above which a time point counts as missing.
    na_rm_method : {"LE", "all"}, default "LE"
        ``"LE"`` removes such time points only at the beginning or end of
        the sample, ``"all"`` removes all of them.
    na_impute : {"median", "rnorm", "median.ma", "median.ma.spline"}
        Imputation used for the principal components that initialize the
        model.
    ma_terms : int, default 3
        Moving average order of the ``"median.ma*"`` imputations.

    Returns
    -------
    DFMResult
    """
    columns = list(X.columns) if isinstance(X, pd.DataFrame) else None
    X = np.asarray(X, dtype=float)
    _check_options(X, r, p, em_method, min_iter, max_iter, tol, max_missing,
                   na_rm_method, na_impute, ma_terms)
    restrictions = Restrictions(rQ=rQ, rR=rR)

    Z, mean, sd = standardize(X)
    miss = ~np.isfinite(Z)
    any_na = bool(miss.any())
    na_rm = None
    X_imp = Z
    if any_na:
        X_imp = impute_missing(Z, method=na_impute, ma_terms=ma_terms)
        rows = missing_rows(Z, max_missing, na_rm_method)
        if rows.size:
            na_rm = rows
            keep = np.setdiff1d(np.arange(Z.shape[0]), rows)
            Z, X_imp, miss = Z[keep], X_imp[keep], miss[keep]

    system, F_pc = init_system_matrices(X_imp, Z, r, p, restrictions)
    ks = kalman_filter_smoother(Z, system.C, system.Q, system.R, system.A, system.F0, system.P0)
    F_kal = ks.x_smooth[:, :r]

    common = dict(
        X_imp=X_imp,
        mean=mean,
        sd=sd,
        missing=miss if any_na else None,
        pca=F_pc,
        twostep=F_kal,
        em_method=em_method,
        anyNA=any_na,
        na_rm=na_rm,
        columns=columns,
    )

    if em_method == "none":
        final = system_from_factors(
            F_kal, loadings_from_factors(F_kal, Z), X_imp, Z, p, restrictions
        )
        return DFMResult(
            A=final.A[:r, :],
            C=final.C[:, :r],
            Q=final.Q[:r, :r],
            R=final.R,
            **common,
        )

    em = run_em(
        Z,
        system,
        method=Method.from_option(em_method),
        min_iter=min_iter,
        max_iter=max_iter,
        tol=tol,
        restrictions=restrictions,
    )
    final = em.system
    return DFMResult(
        A=final.A[:r, :],
        C=final.C[:, :r],
        Q=final.Q[:r, :r],
        R=final.R,
        qml=em.factors,
        loglik=em.loglik_trace,
        tol=tol,
        converged=em.converged,
        em_result=em,
        **common,
    )
