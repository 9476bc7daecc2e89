"""Parameter recovery on simulated data.

Factors and loadings are identified only up to an invertible rotation, so
the checks use rotation-invariant quantities: the common component, the
idiosyncratic variances and the eigenvalues of the transition matrix.
"""

import numpy as np
import pytest

from conftest import generate_dfm_data
from dfmem.core import run_em
from dfmem.core.utils import init_system_matrices

A_TRUE = np.diag([0.8, 0.3])


@pytest.fixture(scope="module")
def recovery_data():
    rng = np.random.default_rng(7)
    return generate_dfm_data(T=500, n=10, r=2, rng=rng, A=A_TRUE, noise_var=0.1)


def _fit(X, method, max_iter=50, tol=1e-4):
    X_imp = np.where(np.isfinite(X), X, np.nanmedian(X, axis=0))
    initial, _ = init_system_matrices(X_imp, X, 2, 1)
    return run_em(X, initial, method=method, min_iter=5, max_iter=max_iter, tol=tol)


def _common_component_error(result, data):
    fitted = result.factors @ result.system.C[:, :2].T
    truth = data["F"] @ data["C"].T
    return np.linalg.norm(fitted - truth) / np.linalg.norm(truth)


@pytest.mark.filterwarnings("ignore::UserWarning")
def test_dgr_recovers_model(recovery_data):
    result = _fit(recovery_data["X"], "DGR", max_iter=300, tol=1e-8)
    assert result.converged

    assert _common_component_error(result, recovery_data) < 0.15
    np.testing.assert_allclose(
        np.diag(result.system.R), np.diag(recovery_data["R"]), rtol=0.3
    )
    eig = np.sort(np.linalg.eigvals(result.system.A).real)
    np.testing.assert_allclose(eig, [0.3, 0.8], atol=0.15)
    assert result.loglik_trace[-1] >= result.loglik_trace[0]


@pytest.mark.filterwarnings("ignore::UserWarning")
def test_bm_recovers_model_with_missing(recovery_data):
    rng = np.random.default_rng(3)
    X = recovery_data["X"].copy()
    X[rng.random(X.shape) < 0.1] = np.nan
    result = _fit(X, "BM")
    assert result.converged

    assert _common_component_error(result, recovery_data) < 0.2
    np.testing.assert_allclose(
        np.diag(result.system.R), np.diag(recovery_data["R"]), rtol=0.4
    )
    eig = np.sort(np.linalg.eigvals(result.system.A).real)
    np.testing.assert_allclose(eig, [0.3, 0.8], atol=0.2)


@pytest.mark.filterwarnings("ignore::UserWarning")
def test_missing_data_close_to_complete(recovery_data):
    rng = np.random.default_rng(11)
    X = recovery_data["X"].copy()
    X[rng.random(X.shape) < 0.1] = np.nan
    complete = _fit(recovery_data["X"], "DGR")
    missing = _fit(X, "BM")

    fit_complete = complete.factors @ complete.system.C[:, :2].T
    fit_missing = missing.factors @ missing.system.C[:, :2].T
    rel = np.linalg.norm(fit_missing - fit_complete) / np.linalg.norm(fit_complete)
    assert rel < 0.1
    # the likelihood per observed entry is comparable
    n_obs = np.isfinite(X).sum()
    assert missing.final_loglik / n_obs == pytest.approx(
        complete.final_loglik / X.size, abs=0.1
    )
