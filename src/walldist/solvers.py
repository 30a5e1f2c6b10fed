"""Preconditioned conjugate gradient solve of the assembled system.

SSOR preconditioning with relaxation factor omega:

    M = 1/(omega (2 - omega)) (D + omega L) D^{-1} (D + omega U)

applied as a forward sweep, a diagonal scaling and a backward sweep.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import numpy as np
from numba import njit
from numpy.typing import NDArray
from scipy.sparse import csr_matrix
from scipy.sparse.linalg import LinearOperator, cg

log = logging.getLogger(__name__)


class ConvergenceError(RuntimeError):
    """The iteration cap was reached before the residual tolerance."""

    def __init__(self, iterations: int, residual: float, tolerance: float):
        self.iterations = iterations
        self.residual = residual
        self.tolerance = tolerance
        super().__init__(
            f"CG did not converge: residual {residual:.3e} > tolerance {tolerance:.3e} "
            f"after {iterations} iterations"
        )


@njit
def _ssor_forward(indptr, indices, data, diag, omega, r, y):
    """Solve (D + omega L) y = r."""
    n = len(r)
    for i in range(n):
        s = r[i]
        for k in range(indptr[i], indptr[i + 1]):
            j = indices[k]
            if j < i:
                s -= omega * data[k] * y[j]
        y[i] = s / diag[i]


@njit
def _ssor_backward(indptr, indices, data, diag, omega, w, z):
    """Solve (D + omega U) z = w."""
    n = len(w)
    for i in range(n - 1, -1, -1):
        s = w[i]
        for k in range(indptr[i], indptr[i + 1]):
            j = indices[k]
            if j > i:
                s -= omega * data[k] * z[j]
        z[i] = s / diag[i]


class SSORPreconditioner:
    """Symmetric successive over-relaxation preconditioner.

    Parameters
    ----------
    relaxation : float
        Relaxation factor omega in (0, 2).
    """

    def __init__(self, relaxation: float = 1.0):
        if not 0.0 < relaxation < 2.0:
            raise ValueError(f"SSOR relaxation must lie in (0, 2), got {relaxation}")
        self.relaxation = relaxation
        self._A = None
        self._diag = None

    def initialize(self, A: csr_matrix) -> SSORPreconditioner:
        """Take the matrix to precondition; must be called after assembly."""
        A = csr_matrix(A)
        if not A.has_sorted_indices:
            A = A.sorted_indices()
        diag = A.diagonal()
        if np.any(diag <= 0.0):
            i = int(np.flatnonzero(diag <= 0.0)[0])
            raise ValueError(f"SSOR needs a positive diagonal, A[{i}, {i}] = {diag[i]}")
        self._A = A
        self._diag = diag
        return self

    @property
    def shape(self) -> tuple[int, int]:
        if self._A is None:
            raise RuntimeError("SSORPreconditioner used before initialize()")
        return self._A.shape

    def vmult(self, r: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return z = M^{-1} r."""
        if self._A is None:
            raise RuntimeError("SSORPreconditioner used before initialize()")
        A, omega = self._A, self.relaxation
        r = np.ascontiguousarray(r, dtype=np.float64).ravel()
        y = np.empty_like(r)
        z = np.empty_like(r)
        _ssor_forward(A.indptr, A.indices, A.data, self._diag, omega, r, y)
        _ssor_backward(A.indptr, A.indices, A.data, self._diag, omega, self._diag * y, z)
        z *= omega * (2.0 - omega)
        return z

    def aslinearoperator(self) -> LinearOperator:
        return LinearOperator(self.shape, matvec=self.vmult, dtype=np.float64)


@dataclass
class SolverControl:
    """Iteration limits of a solve and what the solve achieved."""

    max_iterations: int = 1000
    tolerance: float = 1e-12
    report_every: int = 50

    # Filled in by solve_cg
    iterations: int = 0
    residual: float = float("inf")
    converged: bool = False
    wall_time_seconds: float = 0.0


class IterationMonitor:
    """CG callback counting iterations and logging the true residual now and then."""

    def __init__(self, A, b, every: int = 50):
        self.A = A
        self.b = b
        self.it: int = 0
        self.every = every

    def __call__(self, xk: NDArray[np.float64]) -> None:
        self.it += 1
        if self.every > 0 and self.it % self.every == 0 and log.isEnabledFor(logging.DEBUG):
            res_norm = float(np.linalg.norm(self.b - self.A @ xk))
            log.debug(f"  CG iteration {self.it}: ||r|| = {res_norm:.3e}")


def solve_cg(
    A: csr_matrix,
    b: NDArray[np.float64],
    preconditioner: SSORPreconditioner,
    control: SolverControl | None = None,
    x0: NDArray[np.float64] | None = None,
) -> NDArray[np.float64]:
    """Solve A x = b for SPD A with preconditioned conjugate gradients.

    Converged means ||b - A x||_2 <= control.tolerance for the returned x.
    CG tracks the residual by recurrence; if that claims convergence while
    the true residual is still above tolerance, CG restarts from the current
    iterate with the iterations that remain.

    Raises
    ------
    ConvergenceError
        If ``control.max_iterations`` is exhausted.
    """
    control = control or SolverControl()
    n = A.shape[0]
    if A.shape != (n, n) or b.shape != (n,):
        raise ValueError(f"Incompatible system: A {A.shape}, b {b.shape}")

    M = preconditioner.aslinearoperator()
    if M.shape != A.shape:
        raise ValueError(f"Preconditioner of shape {M.shape} does not match A {A.shape}")

    x = np.zeros(n) if x0 is None else np.array(x0, dtype=np.float64)
    monitor = IterationMonitor(A, b, every=control.report_every)
    t_start = time.perf_counter()

    residual = float(np.linalg.norm(b - A @ x))
    while residual > control.tolerance:
        remaining = control.max_iterations - monitor.it
        if remaining <= 0:
            break
        x, info = cg(
            A, b,
            x0=x,
            rtol=0.0,
            atol=control.tolerance,
            maxiter=remaining,
            M=M,
            callback=monitor,
        )
        if info < 0:
            raise ValueError(f"CG breakdown (info={info}): matrix not positive definite?")
        residual = float(np.linalg.norm(b - A @ x))

    control.iterations = monitor.it
    control.residual = residual
    control.converged = residual <= control.tolerance
    control.wall_time_seconds = time.perf_counter() - t_start

    if not control.converged:
        raise ConvergenceError(monitor.it, residual, control.tolerance)

    log.info(f"   {monitor.it} CG iterations needed to obtain convergence.")
    return x
