"""Global assembly of the Poisson stiffness matrix and load vector.

Element contributions are computed for all cells at once, then reduced into
the shared CSR structure in cell order by a numba kernel. The reduction is
the only place the global matrix and vector are written.
"""

from __future__ import annotations

import logging

import numpy as np
from numba import njit
from numpy.typing import NDArray
from scipy.sparse import csr_matrix

from .datastructures import ScalarFunction, constant
from .function_space import CellValues, FunctionSpace, evaluate_function
from .quadrature import QGauss
from .sparsity import SparsityError, SparsityPattern

log = logging.getLogger(__name__)


@njit
def _scatter_matrix_core(data, data_map, Ke_flat):
    """data[data_map[k]] += Ke_flat[k], with k running cell by cell."""
    for k in range(len(data_map)):
        data[data_map[k]] += Ke_flat[k]


@njit
def _scatter_vector_core(b, loc2glb, Fe_all):
    noelms, nloc = loc2glb.shape
    for e in range(noelms):
        for i in range(nloc):
            b[loc2glb[e, i]] += Fe_all[e, i]


def element_stiffness(cv: CellValues) -> NDArray[np.float64]:
    """K_e[i, j] = sum_q grad phi_i . grad phi_j JxW, shape (noelms, nloc, nloc)."""
    return np.einsum("cqid,cqjd,cq->cij", cv.gradients, cv.gradients, cv.JxW)


def element_load(cv: CellValues, f_func: ScalarFunction) -> NDArray[np.float64]:
    """F_e[i] = sum_q phi_i f JxW, shape (noelms, nloc)."""
    noelms, n_q, dim = cv.points.shape
    f_vals = evaluate_function(f_func, cv.points.reshape(-1, dim)).reshape(noelms, n_q)
    return np.einsum("qi,cq,cq->ci", cv.values, f_vals, cv.JxW)


def scatter_matrix(
    pattern: SparsityPattern, matrix: csr_matrix, Ke_all: NDArray[np.float64]
) -> None:
    """Accumulate element matrices into ``matrix`` through the pattern's data map."""
    expected = (pattern.loc2glb.shape[0], pattern.loc2glb.shape[1], pattern.loc2glb.shape[1])
    if Ke_all.shape != expected:
        raise SparsityError(
            f"Element matrices of shape {Ke_all.shape} do not match the pattern {expected}"
        )
    pattern.check_matrix(matrix)
    _scatter_matrix_core(matrix.data, pattern.data_map, np.ascontiguousarray(Ke_all).ravel())


def scatter_vector(
    loc2glb: NDArray[np.int64], b: NDArray[np.float64], Fe_all: NDArray[np.float64]
) -> None:
    if Fe_all.shape != loc2glb.shape:
        raise ValueError(f"Element vectors of shape {Fe_all.shape} do not match loc2glb {loc2glb.shape}")
    _scatter_vector_core(b, loc2glb, np.ascontiguousarray(Fe_all))


def default_quadrature(space: FunctionSpace) -> QGauss:
    return QGauss(space.dim, space.degree + 1)


def assemble_global_stiffness(
    space: FunctionSpace,
    pattern: SparsityPattern,
    quadrature: QGauss | None = None,
) -> csr_matrix:
    """Assemble the stiffness matrix of -Laplace into the pattern's CSR structure."""
    cv = space.reinit(quadrature or default_quadrature(space))
    A = pattern.empty_matrix()
    scatter_matrix(pattern, A, element_stiffness(cv))
    return A


def assemble_load_vector(
    space: FunctionSpace,
    f_func: ScalarFunction = constant(1.0),
    quadrature: QGauss | None = None,
) -> NDArray[np.float64]:
    """Assemble load vector b_i = integral of f phi_i."""
    cv = space.reinit(quadrature or default_quadrature(space))
    b = np.zeros(space.ndofs)
    scatter_vector(space.loc2glb, b, element_load(cv, f_func))
    return b


def assemble_system(
    space: FunctionSpace,
    pattern: SparsityPattern,
    f_func: ScalarFunction = constant(1.0),
    quadrature: QGauss | None = None,
) -> tuple[csr_matrix, NDArray[np.float64]]:
    """Assemble (A, b) for -Laplace u = f with one pass over the cell tables."""
    quadrature = quadrature or default_quadrature(space)
    cv = space.reinit(quadrature)

    A = pattern.empty_matrix()
    b = np.zeros(space.ndofs)
    scatter_matrix(pattern, A, element_stiffness(cv))
    scatter_vector(space.loc2glb, b, element_load(cv, f_func))

    log.debug(
        f"Assembled {space.noelms} cells with {quadrature.size} quadrature points each, "
        f"nnz={pattern.nnz}"
    )
    return A, b
