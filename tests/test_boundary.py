"""Tests for Dirichlet boundary values."""

import numpy as np
import pytest

from walldist import (
    SSORPreconditioner,
    apply_boundary_values,
    assemble_system,
    constant,
    interpolate_boundary_values,
    solve_cg,
)


def linear_g(p):
    return 1.0 + p[:, 0] + 2.0 * p[:, 1]


class TestInterpolateBoundaryValues:

    def test_values_at_support_points(self, space_q2):
        bv = interpolate_boundary_values(space_q2, linear_g)
        assert len(bv) == 32
        dofs = np.array(list(bv.keys()))
        assert np.allclose(list(bv.values()), linear_g(space_q2.support_points[dofs]))

    def test_homogeneous(self, space_q2):
        bv = interpolate_boundary_values(space_q2, constant(0.0))
        assert set(bv.values()) == {0.0}
        assert set(bv) == set(space_q2.boundary_dofs().tolist())


class TestApplyBoundaryValues:

    def test_rows_and_columns_eliminated(self, space_q2, pattern_q2):
        A, b = assemble_system(space_q2, pattern_q2)
        bv = interpolate_boundary_values(space_q2, linear_g)
        A_out, b_out = apply_boundary_values(bv, A, b)

        assert A_out is A and b_out is b
        dense = A.toarray()
        for k, v in bv.items():
            assert dense[k, k] == 1.0
            assert b[k] == v
            off = np.delete(np.arange(space_q2.ndofs), k)
            assert np.all(dense[k, off] == 0.0)
            assert np.all(dense[off, k] == 0.0)
        assert abs(A - A.T).max() < 1e-12

    def test_sparsity_unchanged(self, space_q2, pattern_q2):
        A, b = assemble_system(space_q2, pattern_q2)
        apply_boundary_values(interpolate_boundary_values(space_q2, constant(0.0)), A, b)
        assert np.array_equal(A.indptr, pattern_q2.indptr)
        assert np.array_equal(A.indices, pattern_q2.indices)

    def test_reproduces_linear_harmonic_function(self, space_q2, pattern_q2):
        """With f = 0 the discrete solution is the linear boundary data everywhere."""
        A, b = assemble_system(space_q2, pattern_q2, constant(0.0))
        apply_boundary_values(interpolate_boundary_values(space_q2, linear_g), A, b)

        u = solve_cg(A, b, SSORPreconditioner().initialize(A))
        assert np.allclose(u, linear_g(space_q2.support_points), atol=1e-10)

    def test_empty_is_noop(self, space_q2, pattern_q2):
        A, b = assemble_system(space_q2, pattern_q2)
        data, rhs = A.data.copy(), b.copy()
        apply_boundary_values({}, A, b)
        assert np.array_equal(A.data, data)
        assert np.array_equal(b, rhs)

    def test_invalid_input(self, space_q2, pattern_q2):
        A, b = assemble_system(space_q2, pattern_q2)
        with pytest.raises(ValueError):
            apply_boundary_values({0: 1.0}, A.tocsc(), b)
        with pytest.raises(ValueError):
            apply_boundary_values({0: 1.0}, A, b[:-1])
        with pytest.raises(ValueError):
            apply_boundary_values({space_q2.ndofs: 1.0}, A, b)
