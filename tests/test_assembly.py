"""Tests for the sparsity pattern and global assembly."""

import numpy as np
import pytest

from walldist import (
    FunctionSpace,
    Mesh,
    SparsityError,
    SparsityPattern,
    assemble_global_stiffness,
    assemble_load_vector,
    assemble_system,
    constant,
    hyper_cube,
)
from walldist.assembly import scatter_matrix


class TestSparsityPattern:
    """Test the CSR structure built from the DOF map."""

    def test_tridiagonal_1d(self):
        """Q1 in 1D couples each DOF with its two neighbours only."""
        space = FunctionSpace(hyper_cube(1, n_refinements=3), 1)
        pattern = SparsityPattern.from_space(space)
        assert pattern.shape == (9, 9)
        assert pattern.nnz == 3 * 9 - 2

    def test_contains_all_element_couplings(self, space_q2, pattern_q2):
        for dofs in space_q2.loc2glb:
            rows, cols = np.meshgrid(dofs, dofs, indexing="ij")
            assert np.all(pattern_q2.exists(rows, cols))

    def test_sorted_columns(self, pattern_q2):
        for i in range(pattern_q2.ndofs):
            cols = pattern_q2.indices[pattern_q2.indptr[i] : pattern_q2.indptr[i + 1]]
            assert np.all(np.diff(cols) > 0)
            assert i in cols

    def test_add_accumulates(self, pattern_q2):
        A = pattern_q2.empty_matrix()
        pattern_q2.add(A, [0, 0], [0, 0], [1.0, 0.5])
        pattern_q2.add(A, 0, 0, 0.5)
        assert A[0, 0] == 2.0
        assert A.nnz == pattern_q2.nnz

    def test_add_outside_pattern(self, space_q2, pattern_q2):
        pts = space_q2.support_points
        i = int(np.argmin(np.linalg.norm(pts - [-1.0, -1.0], axis=1)))
        j = int(np.argmin(np.linalg.norm(pts - [1.0, 1.0], axis=1)))
        A = pattern_q2.empty_matrix()

        assert not pattern_q2.exists(i, j).any()
        with pytest.raises(SparsityError):
            pattern_q2.add(A, i, j, 1.0)
        with pytest.raises(KeyError):
            pattern_q2.positions([i], [pattern_q2.ndofs])
        assert np.all(A.data == 0.0)

    def test_foreign_matrix_rejected(self, pattern_q2):
        other = SparsityPattern(np.array([[0, 1], [1, 2]]), 3).empty_matrix()
        with pytest.raises(SparsityError):
            pattern_q2.add(other, 0, 0, 1.0)

    def test_bad_loc2glb(self):
        with pytest.raises(ValueError):
            SparsityPattern(np.array([[0, 5]]), 3)


class TestAssembly:
    """Test stiffness matrix and load vector."""

    def test_q1_reference_stiffness(self):
        """Single square Q1 cell: 2/3 on the diagonal, -1/6 along edges, -1/3 across."""
        space = FunctionSpace(hyper_cube(2, n_refinements=0), 1)
        A = assemble_global_stiffness(space, SparsityPattern.from_space(space)).toarray()
        expected = np.array(
            [
                [4, -1, -1, -2],
                [-1, 4, -2, -1],
                [-1, -2, 4, -1],
                [-2, -1, -1, 4],
            ]
        ) / 6.0
        assert np.allclose(A, expected)

    def test_symmetric_with_zero_row_sums(self, space_q2, pattern_q2):
        A = assemble_global_stiffness(space_q2, pattern_q2)
        assert abs(A - A.T).max() < 1e-12
        assert np.allclose(A @ np.ones(space_q2.ndofs), 0.0, atol=1e-12)

    def test_energy_of_linear_function(self, space_q2, pattern_q2):
        """u^T A u equals the integral of |grad u|^2 = 4 for u = x on [-1, 1]^2."""
        A = assemble_global_stiffness(space_q2, pattern_q2)
        u = space_q2.interpolate(lambda p: p[:, 0])
        assert np.isclose(u @ A @ u, 4.0)

    def test_load_vector_integrates_source(self, space_q2):
        b = assemble_load_vector(space_q2, constant(1.0))
        assert np.isclose(b.sum(), 4.0)
        b_x = assemble_load_vector(space_q2, lambda p: p[:, 0])
        assert np.isclose(b_x.sum(), 0.0, atol=1e-14)

    def test_assemble_system_matches_parts(self, space_q2, pattern_q2):
        A, b = assemble_system(space_q2, pattern_q2)
        assert abs(A - assemble_global_stiffness(space_q2, pattern_q2)).max() == 0.0
        assert np.array_equal(b, assemble_load_vector(space_q2))

    def test_keeps_pattern_structure(self, pattern_q2, space_q2):
        A, _ = assemble_system(space_q2, pattern_q2)
        assert np.array_equal(A.indptr, pattern_q2.indptr)
        assert np.array_equal(A.indices, pattern_q2.indices)

    def test_deterministic(self, space_q2, pattern_q2):
        A1, b1 = assemble_system(space_q2, pattern_q2)
        A2, b2 = assemble_system(space_q2, pattern_q2)
        assert np.array_equal(A1.data, A2.data)
        assert np.array_equal(b1, b2)

    def test_cell_order_invariance(self, square_mesh, coordinate_order):
        """Shuffling the cells only renumbers the DOFs."""
        perm = np.random.default_rng(3).permutation(square_mesh.noelms)
        shuffled = Mesh(vertices=square_mesh.vertices, EToV=square_mesh.EToV[perm])

        results = []
        for mesh in (square_mesh, shuffled):
            space = FunctionSpace(mesh, 2)
            A, b = assemble_system(space, SparsityPattern.from_space(space))
            order = coordinate_order(space)
            results.append((A.toarray()[np.ix_(order, order)], b[order]))

        assert np.allclose(results[0][0], results[1][0], atol=1e-13)
        assert np.allclose(results[0][1], results[1][1], atol=1e-15)

    def test_element_matrix_shape_mismatch(self, pattern_q2):
        A = pattern_q2.empty_matrix()
        with pytest.raises(SparsityError):
            scatter_matrix(pattern_q2, A, np.zeros((2, 9, 9)))
