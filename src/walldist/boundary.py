from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy.sparse import csr_matrix

from .datastructures import DEFAULT_BOUNDARY_ID, ScalarFunction
from .function_space import FunctionSpace, evaluate_function


def interpolate_boundary_values(
    space: FunctionSpace,
    boundary_function: ScalarFunction,
    boundary_id: int = DEFAULT_BOUNDARY_ID,
) -> dict[int, float]:
    """Map each DOF on boundary ``boundary_id`` to the boundary function at its support point."""
    dofs = space.boundary_dofs(boundary_id)
    values = evaluate_function(boundary_function, space.support_points[dofs])
    return dict(zip(dofs.tolist(), values.tolist()))


def apply_boundary_values(
    boundary_values: dict[int, float],
    A: csr_matrix,
    b: NDArray[np.float64],
) -> tuple[csr_matrix, NDArray[np.float64]]:
    """Impose Dirichlet values on A x = b in place, keeping A symmetric.

    For every constrained DOF k with value v, A[i, k] * v is moved to the
    right-hand side of every row i, row and column k are zeroed, A[k, k] = 1
    and b[k] = v. Zeroed entries stay stored so the sparsity pattern is
    unchanged. Returns the same (A, b) objects.
    """
    n = A.shape[0]
    if A.shape != (n, n) or b.shape != (n,):
        raise ValueError(f"Incompatible system: A {A.shape}, b {b.shape}")
    if not isinstance(A, csr_matrix):
        raise ValueError(f"A must be a csr_matrix, got {type(A).__name__}")
    if not boundary_values:
        return A, b

    bnodes = np.fromiter(boundary_values.keys(), dtype=np.int64, count=len(boundary_values))
    f = np.fromiter(boundary_values.values(), dtype=np.float64, count=len(boundary_values))
    if bnodes.min() < 0 or bnodes.max() >= n:
        raise ValueError(f"Boundary DOFs outside [0, {n})")

    # A[:, bnodes] @ f == A @ f_full where f_full is zero except at bnodes
    f_full = np.zeros(n)
    f_full[bnodes] = f
    b -= A @ f_full
    b[bnodes] = f

    # Zero boundary rows/cols and set diagonal to 1
    scale = np.ones(n)
    scale[bnodes] = 0.0
    row_scale = np.repeat(scale, np.diff(A.indptr))
    col_scale = scale[A.indices]
    A.data *= row_scale * col_scale

    diag = A.diagonal()
    diag[bnodes] = 1.0
    A.setdiag(diag)

    return A, b
