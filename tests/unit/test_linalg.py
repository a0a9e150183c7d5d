"""
Unit tests for the LAPACK/BLAS wrappers.
"""

import numpy as np
import pytest

from approx_fabia.linalg import (
    DegenerateMatrixError, cholesky_factor_lower, cholesky_invert_from_factor,
    gemm, invert_spd, rank1_update,
)


def _spd(k, seed=0, dtype=np.float64):
    rng = np.random.default_rng(seed)
    A = rng.standard_normal((k, k))
    return (A @ A.T + k * np.eye(k)).astype(dtype)


class TestCholeskyInverse:

    def test_matches_numpy_inverse(self):
        A = _spd(6)
        inv = invert_spd(A)
        np.testing.assert_allclose(inv, np.linalg.inv(A), rtol=1e-10, atol=1e-12)

    def test_result_is_symmetric(self):
        inv = invert_spd(_spd(7, seed=3))
        np.testing.assert_array_equal(inv, inv.T)

    def test_input_not_modified(self):
        A = _spd(5)
        A_copy = A.copy()
        invert_spd(A)
        np.testing.assert_array_equal(A, A_copy)

    def test_factor_only_fills_lower_triangle(self):
        A = _spd(4)
        C = cholesky_factor_lower(A)
        assert np.all(np.triu(C, 1) == 0)
        np.testing.assert_allclose(C @ C.T, A, rtol=1e-10)

        inv_lower = cholesky_invert_from_factor(C)
        np.testing.assert_allclose(np.tril(inv_lower), np.tril(np.linalg.inv(A)), rtol=1e-10, atol=1e-12)

    def test_single_precision_stays_single(self):
        A = _spd(5, dtype=np.float32)
        inv = invert_spd(A)
        assert inv.dtype == np.float32
        np.testing.assert_allclose(inv @ A, np.eye(5), atol=1e-4)

    def test_one_by_one(self):
        inv = invert_spd(np.array([[4.0]]))
        assert inv[0, 0] == pytest.approx(0.25)

    def test_not_positive_definite_raises(self):
        A = np.diag([1.0, -1.0, 2.0])
        with pytest.raises(DegenerateMatrixError) as excinfo:
            invert_spd(A)
        assert excinfo.value.info > 0

    def test_singular_raises(self):
        with pytest.raises(DegenerateMatrixError):
            invert_spd(np.zeros((3, 3)))

    def test_degenerate_error_is_arithmetic_error(self):
        assert issubclass(DegenerateMatrixError, ArithmeticError)


class TestBlas:

    def test_gemm(self):
        rng = np.random.default_rng(1)
        A = rng.standard_normal((5, 3))
        B = rng.standard_normal((3, 4))
        np.testing.assert_allclose(gemm(A, B), A @ B, rtol=1e-12)

    def test_gemm_transpose_and_accumulate(self):
        rng = np.random.default_rng(2)
        A = rng.standard_normal((3, 5))
        B = rng.standard_normal((3, 4))
        C = rng.standard_normal((5, 4))
        out = gemm(A, B, alpha=2.0, beta=0.5, c=C, trans_a=True)
        np.testing.assert_allclose(out, 2.0 * A.T @ B + 0.5 * C, rtol=1e-12)

    @pytest.mark.parametrize("order", ["F", "C"])
    def test_rank1_update_in_place(self, order):
        rng = np.random.default_rng(4)
        A = np.asarray(rng.standard_normal((4, 3)), order=order)
        expected = A + np.outer([1.0, 2.0, 3.0, 4.0], [0.5, -1.0, 2.0])
        ret = rank1_update(A, np.array([1.0, 2.0, 3.0, 4.0]), np.array([0.5, -1.0, 2.0]))
        assert ret is A
        np.testing.assert_allclose(A, expected, rtol=1e-12)
