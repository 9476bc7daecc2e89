"""Tests for dfmem.core.linalg."""

import numpy as np
import pytest

from dfmem.core import ainv, apinv, initial_state_covariance
from dfmem.core.linalg import symmetrize


class TestInverse:
    """Tests for ainv and apinv."""

    def test_ainv_matches_inverse_for_regular_matrix(self, rng):
        M = rng.normal(size=(4, 4)) + 4 * np.eye(4)
        np.testing.assert_allclose(ainv(M) @ M, np.eye(4), atol=1e-10)

    def test_ainv_falls_back_to_pseudo_inverse(self):
        M = np.array([[1.0, 2.0], [2.0, 4.0]])
        np.testing.assert_allclose(ainv(M), np.linalg.pinv(M))

    def test_ainv_zero_matrix(self):
        np.testing.assert_array_equal(ainv(np.zeros((3, 3))), np.zeros((3, 3)))

    def test_apinv_moore_penrose_identity(self, rng):
        M = rng.normal(size=(5, 2)) @ rng.normal(size=(2, 5))
        V = apinv(M)
        np.testing.assert_allclose(M @ V @ M, M, atol=1e-10)
        np.testing.assert_allclose(V @ M @ V, V, atol=1e-10)

    def test_scalar_input(self):
        np.testing.assert_allclose(ainv(4.0), [[0.25]])


class TestInitialStateCovariance:
    """Tests for the Lyapunov solution used as P0."""

    def test_solves_lyapunov_equation(self, small_system):
        A, Q = small_system.A, small_system.Q
        P0 = initial_state_covariance(A, Q)
        np.testing.assert_allclose(P0, A @ P0 @ A.T + Q, atol=1e-10)
        np.testing.assert_allclose(P0, P0.T)

    def test_scalar_ar1(self):
        P0 = initial_state_covariance(np.array([[0.5]]), np.array([[1.0]]))
        np.testing.assert_allclose(P0, [[1.0 / 0.75]])

    def test_companion_form_is_psd(self, companion_system):
        P0 = initial_state_covariance(companion_system.A, companion_system.Q)
        assert np.all(np.linalg.eigvalsh(P0) > 0)
        # both stacked components share the stationary variance
        assert P0[0, 0] == pytest.approx(P0[1, 1])

    def test_unit_root_stays_finite(self):
        P0 = initial_state_covariance(np.eye(2), np.eye(2))
        assert np.all(np.isfinite(P0))


def test_symmetrize():
    M = np.array([[1.0, 2.0], [0.0, 3.0]])
    np.testing.assert_allclose(symmetrize(M), [[1.0, 1.0], [1.0, 3.0]])
