"""Tests for the SSOR preconditioner and the CG driver."""

import numpy as np
import pytest
from scipy.sparse import csr_matrix, diags

from walldist import ConvergenceError, SolverControl, SSORPreconditioner, solve_cg


def laplacian_1d(n):
    return csr_matrix(diags([-1.0, 2.0, -1.0], [-1, 0, 1], shape=(n, n)))


def dense_ssor_inverse(A, omega):
    """M^{-1} = omega (2 - omega) (D + omega U)^{-1} D (D + omega L)^{-1}."""
    A = A.toarray()
    D = np.diag(np.diag(A))
    L = np.tril(A, -1)
    U = np.triu(A, 1)
    return (
        omega * (2.0 - omega)
        * np.linalg.inv(D + omega * U) @ D @ np.linalg.inv(D + omega * L)
    )


class TestSSORPreconditioner:

    @pytest.mark.parametrize("omega", [0.5, 1.0, 1.6])
    def test_matches_dense_formula(self, omega):
        rng = np.random.default_rng(1)
        B = rng.normal(size=(12, 12))
        A = csr_matrix(B @ B.T + 12.0 * np.eye(12))
        r = rng.normal(size=12)

        z = SSORPreconditioner(omega).initialize(A).vmult(r)
        assert np.allclose(z, dense_ssor_inverse(A, omega) @ r)

    def test_symmetric_operator(self):
        A = laplacian_1d(10)
        M = SSORPreconditioner(1.2).initialize(A)
        Minv = np.column_stack([M.vmult(e) for e in np.eye(10)])
        assert np.allclose(Minv, Minv.T)

    @pytest.mark.parametrize("omega", [0.0, 2.0, -1.0])
    def test_invalid_relaxation(self, omega):
        with pytest.raises(ValueError):
            SSORPreconditioner(omega)

    def test_non_positive_diagonal(self):
        A = laplacian_1d(4).tolil()
        A[2, 2] = 0.0
        with pytest.raises(ValueError, match="diagonal"):
            SSORPreconditioner().initialize(A.tocsr())

    def test_used_before_initialize(self):
        with pytest.raises(RuntimeError):
            SSORPreconditioner().vmult(np.ones(3))


class TestSolveCG:

    def test_converges_to_absolute_tolerance(self):
        A = laplacian_1d(50)
        b = np.full(50, 1.0 / 51**2)
        control = SolverControl(tolerance=1e-12)

        x = solve_cg(A, b, SSORPreconditioner().initialize(A), control)
        assert control.converged
        assert control.residual <= 1e-12
        assert np.linalg.norm(b - A @ x) <= 1e-12
        assert 0 < control.iterations <= control.max_iterations
        assert np.allclose(x, np.linalg.solve(A.toarray(), b))

    def test_deterministic(self):
        A = laplacian_1d(40)
        b = np.linspace(0.0, 1.0, 40) / 41**2
        runs = []
        for _ in range(2):
            control = SolverControl()
            x = solve_cg(A, b, SSORPreconditioner().initialize(A), control)
            runs.append((x, control.iterations))
        assert np.array_equal(runs[0][0], runs[1][0])
        assert runs[0][1] == runs[1][1]

    def test_zero_rhs(self):
        A = laplacian_1d(5)
        control = SolverControl()
        x = solve_cg(A, np.zeros(5), SSORPreconditioner().initialize(A), control)
        assert np.all(x == 0.0)
        assert control.iterations == 0
        assert control.converged

    def test_iteration_cap(self):
        A = laplacian_1d(200)
        control = SolverControl(max_iterations=2)
        with pytest.raises(ConvergenceError) as excinfo:
            solve_cg(A, np.ones(200), SSORPreconditioner().initialize(A), control)

        assert excinfo.value.iterations == 2
        assert excinfo.value.residual > 1e-12
        assert not control.converged
        assert isinstance(excinfo.value, RuntimeError)

    def test_shape_mismatch(self):
        A = laplacian_1d(5)
        with pytest.raises(ValueError):
            solve_cg(A, np.ones(4), SSORPreconditioner().initialize(A))
        with pytest.raises(ValueError):
            solve_cg(A, np.ones(5), SSORPreconditioner().initialize(laplacian_1d(6)))

    def test_logs_iteration_count(self, caplog):
        A = laplacian_1d(20)
        with caplog.at_level("INFO", logger="walldist.solvers"):
            solve_cg(A, np.full(20, 1.0 / 21**2), SSORPreconditioner().initialize(A))
        assert "CG iterations needed to obtain convergence" in caplog.text
