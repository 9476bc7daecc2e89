"""Model selection tools for the DFM: AIC, BIC and choice of ``(r, p)``.

Each candidate model is estimated independently, so the grid can be fitted
in parallel worker processes.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import warnings

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .em import EMConfig, EMEstimatorDFM, EMResult
from .model import DFMConfig, DFMModel, Restriction, Restrictions

logger = logging.getLogger(__name__)

CRITERIA = ("aic", "bic", "aicc")


@dataclass
class InformationCriteria:
    """Information criteria for a fitted DFM.

    Attributes
    ----------
    loglik : float
        Log-likelihood value.
    n_params : int
        Number of estimated parameters.
    n_obs : int
        Number of observed data points (missing entries excluded).
    aic, bic, aicc : float
        Akaike, Bayesian and small-sample corrected Akaike criteria.
    """

    loglik: float
    n_params: int
    n_obs: int
    aic: float
    bic: float
    aicc: float


@dataclass
class ModelSelectionResult:
    """Results from :func:`select_model`.

    ``results_grid`` maps ``(r, p)`` to a dict holding either ``"ic"``,
    ``"em_result"`` and ``"model"`` or, for failed fits, ``"error"``.
    """

    best_r: int
    best_p: int
    best_model: DFMModel
    best_em_result: EMResult
    criterion: str
    best_value: float
    results_grid: dict

    def to_frame(self) -> pd.DataFrame:
        """Criteria of all successful fits as a DataFrame indexed by ``(r, p)``."""
        rows = []
        for (r, p), entry in sorted(self.results_grid.items()):
            if "ic" not in entry:
                continue
            ic = entry["ic"]
            rows.append(
                {
                    "r": r,
                    "p": p,
                    "loglik": ic.loglik,
                    "n_params": ic.n_params,
                    "aic": ic.aic,
                    "bic": ic.bic,
                    "aicc": ic.aicc,
                    "converged": entry["em_result"].converged,
                }
            )
        return pd.DataFrame(rows).set_index(["r", "p"])


def count_parameters(
    n: int, r: int, p: int, restrictions: Restrictions | None = None
) -> int:
    """Number of free parameters of a DFM.

    Loadings contribute ``n r``, the VAR ``p r^2``. The state covariance
    adds ``r (r + 1) / 2`` (full), ``r`` (diagonal) or nothing (identity),
    likewise the observation covariance with ``n``.
    """
    restrictions = restrictions or Restrictions()

    def _cov(k: int, restriction: Restriction) -> int:
        if restriction is Restriction.IDENTITY:
            return 0
        if restriction is Restriction.DIAGONAL:
            return k
        return k * (k + 1) // 2

    n_params = n * r + p * r * r
    n_params += _cov(r, restrictions.rQ)
    n_params += _cov(n, restrictions.rR)
    return n_params


def compute_information_criteria(
    loglik: float, n_params: int, X: np.ndarray
) -> InformationCriteria:
    """Compute AIC, BIC and AICc from a log-likelihood.

    Examples
    --------
    >>> ic = compute_information_criteria(-500.0, 20, X)
    >>> print(f"AIC: {ic.aic:.2f}, BIC: {ic.bic:.2f}")
    """
    n_obs = int(np.isfinite(np.asarray(X, dtype=float)).sum())
    aic = -2.0 * loglik + 2.0 * n_params
    bic = -2.0 * loglik + np.log(n_obs) * n_params
    if n_obs > n_params + 1:
        aicc = aic + 2.0 * n_params * (n_params + 1) / (n_obs - n_params - 1)
    else:
        aicc = np.inf
    return InformationCriteria(
        loglik=float(loglik),
        n_params=int(n_params),
        n_obs=n_obs,
        aic=float(aic),
        bic=float(bic),
        aicc=float(aicc),
    )


def _fit_candidate(
    X: np.ndarray,
    r: int,
    p: int,
    rQ: str,
    rR: str,
    em_config: EMConfig,
) -> dict:
    config = DFMConfig(n=X.shape[1], r=r, p=p, rQ=rQ, rR=rR)
    model = DFMModel(config)
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", UserWarning)
            model.initialize(X)
            em_result = EMEstimatorDFM(model, em_config).fit(X)
    except (np.linalg.LinAlgError, ValueError) as e:
        return {"error": str(e)}
    n_params = count_parameters(X.shape[1], r, p, config.restrictions)
    # likelihood under the returned parameters
    ic = compute_information_criteria(em_result.state.loglik, n_params, X)
    return {"ic": ic, "em_result": em_result, "model": model}


def select_model(
    X: np.ndarray,
    r_values: list[int] | tuple[int, int] = (1, 3),
    p_values: list[int] | tuple[int, int] = (1, 1),
    criterion: str = "bic",
    rQ: str = "none",
    rR: str = "diagonal",
    em_method: str = "DGR",
    min_iter: int = 5,
    max_iter: int = 50,
    tol: float = 1e-4,
    n_jobs: int = 1,
) -> ModelSelectionResult:
    """Select the number of factors ``r`` and lags ``p`` by information criterion.

    Parameters
    ----------
    X : np.ndarray
        Standardized data of shape ``(T, n)``, NaN for missing values.
    r_values, p_values : tuple or list
        Candidates. A tuple is read as an inclusive ``(min, max)`` range.
    criterion : {"aic", "bic", "aicc"}, default "bic"
        Criterion to minimize.
    n_jobs : int, default 1
        Number of joblib workers; ``-1`` uses all cores.

    Examples
    --------
    >>> result = select_model(X, r_values=(1, 4), p_values=[1, 2])
    >>> print(f"Selected: r={result.best_r}, p={result.best_p}")
    """
    if criterion not in CRITERIA:
        raise ValueError(f"Unknown criterion: {criterion}")
    Restrictions(rQ=rQ, rR=rR)
    X = np.asarray(X, dtype=float)
    n = X.shape[1]

    def _values(v):
        return list(range(v[0], v[1] + 1)) if isinstance(v, tuple) else list(v)

    r_list = [r for r in _values(r_values) if 1 <= r <= n]
    p_list = [p for p in _values(p_values) if p >= 1]
    if not r_list or not p_list:
        raise ValueError("No valid (r, p) combinations in specified ranges")

    em_config = EMConfig(method=em_method, min_iter=min_iter, max_iter=max_iter, tol=tol)
    grid = [(r, p) for r in r_list for p in p_list]
    fits = Parallel(n_jobs=n_jobs)(
        delayed(_fit_candidate)(X, r, p, rQ, rR, em_config) for r, p in grid
    )
    results_grid = dict(zip(grid, fits))

    best_key = None
    best_value = np.inf
    for key, entry in results_grid.items():
        if "error" in entry:
            logger.warning("Fit r=%d, p=%d failed: %s", key[0], key[1], entry["error"])
            continue
        value = getattr(entry["ic"], criterion)
        if value < best_value:
            best_key, best_value = key, value
    if best_key is None:
        raise RuntimeError("All model fits failed")

    best = results_grid[best_key]
    return ModelSelectionResult(
        best_r=best_key[0],
        best_p=best_key[1],
        best_model=best["model"],
        best_em_result=best["em_result"],
        criterion=criterion,
        best_value=float(best_value),
        results_grid=results_grid,
    )
