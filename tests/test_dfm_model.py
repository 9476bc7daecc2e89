"""Tests for dfmem.core.model.

Tests cover the restriction and method options, SystemMatrices validation
and DFMConfig/DFMModel construction and initialization.
"""

import numpy as np
import pytest

from dfmem import DimensionMismatchError, InvalidRestrictionError
from dfmem.core import (
    DFMConfig,
    DFMModel,
    Method,
    Restriction,
    Restrictions,
    SystemMatrices,
)
from dfmem.core.model import apply_restriction, infer_factor_count

# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


class TestOptions:
    """Tests for Restriction, Method and Restrictions."""

    def test_restriction_case_insensitive(self):
        assert Restriction.from_option("Diagonal") is Restriction.DIAGONAL

    def test_unknown_restriction_raises(self):
        with pytest.raises(InvalidRestrictionError, match="Unknown restriction"):
            Restriction.from_option("banded")

    def test_method_from_option(self):
        assert Method.from_option("bm") is Method.BM
        assert Method.from_option(Method.DGR) is Method.DGR

    def test_unknown_method_raises(self):
        with pytest.raises(InvalidRestrictionError, match="Unknown EM method"):
            Method.from_option("kalman")

    def test_restrictions_coerce_strings(self):
        res = Restrictions(rQ="identity", rR="none")
        assert res.rQ is Restriction.IDENTITY
        assert res.rR is Restriction.NONE

    def test_invalid_restriction_is_value_error(self):
        with pytest.raises(ValueError):
            Restrictions(rR="sparse")

    def test_apply_restriction(self):
        M = np.array([[2.0, 1.0], [0.0, 3.0]])
        np.testing.assert_array_equal(
            apply_restriction(M, Restriction.DIAGONAL), np.diag([2.0, 3.0])
        )
        np.testing.assert_array_equal(
            apply_restriction(M, Restriction.IDENTITY), np.eye(2)
        )
        np.testing.assert_allclose(
            apply_restriction(M, Restriction.NONE), [[2.0, 0.5], [0.5, 3.0]]
        )


# ---------------------------------------------------------------------------
# SystemMatrices
# ---------------------------------------------------------------------------


class TestSystemMatrices:
    """Tests for SystemMatrices."""

    def test_infers_factor_count_from_companion(self, companion_system):
        assert companion_system.r == 1
        assert companion_system.p == 2
        assert companion_system.rp == 2
        assert companion_system.n == 3

    def test_infer_full_transition(self):
        assert infer_factor_count(np.array([[0.5, 0.1], [0.2, 0.3]])) == 2

    def test_infer_three_lags(self):
        A = np.zeros((3, 3))
        A[0] = [0.3, 0.2, 0.1]
        A[1:, :2] = np.eye(2)
        assert infer_factor_count(A) == 1

    def test_loadings_overrule_companion_pattern(self):
        # a VAR(1) in two factors whose second row happens to be [1, 0]
        A = np.array([[0.5, 0.2], [1.0, 0.0]])
        C = np.array([[1.0, 0.3], [0.4, -0.7], [0.2, 0.5]])
        assert infer_factor_count(A) == 1
        assert infer_factor_count(A, C) == 2

    def test_loadings_consistent_with_companion(self):
        A = np.array([[0.5, 0.2], [1.0, 0.0]])
        C = np.array([[1.0, 0.0], [0.4, 0.0]])
        assert infer_factor_count(A, C) == 1

    def test_system_uses_loadings(self):
        A = np.array([[0.5, 0.2], [1.0, 0.0]])
        system = SystemMatrices(
            A, np.ones((3, 2)), np.eye(2), np.eye(3), np.zeros(2), np.eye(2)
        )
        assert system.r == 2 and system.p == 1

    def test_validate_accepts_consistent(self, small_system):
        small_system.validate(n=4)

    def test_validate_data_width(self, small_system):
        with pytest.raises(DimensionMismatchError, match="series"):
            small_system.validate(n=5)

    def test_validate_R_shape(self, small_system):
        bad = small_system.copy()
        bad.R = np.eye(3)
        with pytest.raises(DimensionMismatchError, match="R must be"):
            bad.validate()

    def test_validate_F0_length(self, small_system):
        bad = small_system.copy()
        bad.F0 = np.zeros(3)
        with pytest.raises(DimensionMismatchError, match="F0"):
            bad.validate()

    def test_copy_is_independent(self, small_system):
        clone = small_system.copy()
        clone.A[0, 0] = 99.0
        assert small_system.A[0, 0] == 0.5


# ---------------------------------------------------------------------------
# DFMConfig and DFMModel
# ---------------------------------------------------------------------------


class TestDFMConfig:
    """Tests for DFMConfig validation."""

    def test_defaults(self):
        config = DFMConfig(n=5, r=2)
        assert config.p == 1
        assert config.rp == 2
        assert config.restrictions == Restrictions()

    @pytest.mark.parametrize(
        "kwargs, match",
        [
            ({"n": 0, "r": 1}, "n must be positive"),
            ({"n": 3, "r": 0}, "r must be positive"),
            ({"n": 3, "r": 1, "p": 0}, "p must be positive"),
            ({"n": 3, "r": 4}, "exceeds"),
        ],
    )
    def test_invalid(self, kwargs, match):
        with pytest.raises(ValueError, match=match):
            DFMConfig(**kwargs)

    def test_invalid_restriction(self):
        with pytest.raises(InvalidRestrictionError):
            DFMConfig(n=3, r=1, rQ="full")


class TestDFMModel:
    """Tests for DFMModel initialization."""

    def test_not_initialized(self):
        model = DFMModel(DFMConfig(n=10, r=2))
        assert not model.is_initialized
        assert model.system is None

    def test_initialize_structure(self, dfm_data):
        model = DFMModel(DFMConfig(n=10, r=2, p=2))
        model.initialize(dfm_data["X"])
        s = model.system
        assert model.is_initialized
        assert s.A.shape == (4, 4)
        assert s.C.shape == (10, 4)
        np.testing.assert_array_equal(s.C[:, 2:], 0.0)
        np.testing.assert_array_equal(s.A[2:, :2], np.eye(2))
        np.testing.assert_array_equal(s.A[2:, 2:], 0.0)
        np.testing.assert_array_equal(s.Q[2:, :], 0.0)
        np.testing.assert_array_equal(s.Q[:, 2:], 0.0)
        assert model.F_pca.shape == (120, 2)

    def test_initialize_with_missing(self, panel_with_missing):
        model = DFMModel(DFMConfig(n=10, r=2))
        model.initialize(panel_with_missing)
        s = model.system
        assert np.all(np.isfinite(s.C))
        assert np.all(np.diag(s.R) > 0)
        np.testing.assert_array_equal(s.R, np.diag(np.diag(s.R)))
