"""Tensor-product Lagrange elements on the reference cell [-1, 1]^dim.

Support points are Gauss-Lobatto-Legendre (LGL) nodes, which coincide with
the equidistant nodes for degree 1 and 2. Local numbering is lexicographic
with the first coordinate running fastest, so the degree-1 element doubles
as the multilinear geometry map of a cell whose vertices are stored in the
same order.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from numpy.polynomial.legendre import Legendre
from numpy.typing import NDArray


def jacobi_poly(xs: np.ndarray, alpha: float, beta: float, N: int) -> np.ndarray:
    """Compute Jacobi polynomial P_N^{(alpha,beta)}(x) using recurrence."""
    if N == 0:
        return np.ones_like(xs)
    if N == 1:
        return 0.5 * (alpha - beta + (alpha + beta + 2) * xs)

    jpm2, jpm1 = np.ones_like(xs), 0.5 * (alpha - beta + (alpha + beta + 2) * xs)
    for n in range(2, N + 1):
        am1 = (2 * ((n-1) + alpha) * ((n-1) + beta)) / ((2*(n-1) + alpha + beta + 1) * (2*(n-1) + alpha + beta))
        a0 = (alpha**2 - beta**2) / ((2*(n-1) + alpha + beta + 2) * (2*(n-1) + alpha + beta))
        ap1 = (2 * ((n-1) + 1) * ((n-1) + alpha + beta + 1)) / ((2*(n-1) + alpha + beta + 2) * (2*(n-1) + alpha + beta + 1))
        jpm2, jpm1 = jpm1, ((a0 + xs) * jpm1 - am1 * jpm2) / ap1
    return jpm1


def legendre_gauss_lobatto_nodes(num_nodes: int) -> np.ndarray:
    """Compute LGL nodes on [-1, 1], exactly symmetric about 0."""
    if num_nodes < 2:
        raise ValueError(f"LGL rule needs at least 2 nodes, got {num_nodes}")
    degree = num_nodes - 1
    roots = Legendre.basis(degree).deriv().roots() if degree > 1 else np.empty(0)
    nodes = np.sort(np.concatenate(([-1.0], np.real(roots), [1.0])))
    return 0.5 * (nodes - nodes[::-1])


def _vandermonde(nodes: np.ndarray, x: np.ndarray) -> np.ndarray:
    """Legendre polynomials P_0..P_{n-1} (n = len(nodes)) evaluated at x."""
    V = np.zeros((len(x), len(nodes)))
    for n in range(len(nodes)):
        V[:, n] = jacobi_poly(x, 0.0, 0.0, n)
    return V


def _vandermonde_x(nodes: np.ndarray, x: np.ndarray) -> np.ndarray:
    """Derivatives of P_0..P_{n-1} evaluated at x."""
    Vx = np.zeros((len(x), len(nodes)))
    for n in range(1, len(nodes)):  # n=0 derivative is 0
        Vx[:, n] = 0.5 * (n + 1) * jacobi_poly(x, 1.0, 1.0, n - 1)
    return Vx


def lagrange_basis_1d(
    nodes: np.ndarray, x: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    """Values and derivatives of the Lagrange polynomials through ``nodes``.

    Returns arrays of shape (len(x), len(nodes)).
    """
    x = np.asarray(x, dtype=np.float64)
    V_inv = np.linalg.inv(_vandermonde(nodes, nodes))
    return _vandermonde(nodes, x) @ V_inv, _vandermonde_x(nodes, x) @ V_inv


@dataclass
class LagrangeElement:
    """Continuous Lagrange element Q_p on [-1, 1]^dim.

    Parameters
    ----------
    dim : spatial dimension
    degree : polynomial degree p (uses p+1 LGL nodes per direction)
    """

    dim: int
    degree: int

    nodes_1d: NDArray[np.float64] = field(init=False, repr=False)
    multi_index: NDArray[np.int64] = field(init=False, repr=False)
    support_points: NDArray[np.float64] = field(init=False, repr=False)

    def __post_init__(self):
        if self.dim not in (1, 2, 3):
            raise ValueError(f"Only dim 1, 2 or 3 is supported, got {self.dim}")
        if self.degree < 1:
            raise ValueError(f"Polynomial degree must be >= 1, got {self.degree}")

        n = self.degree + 1
        self.nodes_1d = legendre_gauss_lobatto_nodes(n)
        self.multi_index = np.stack(
            np.unravel_index(np.arange(n**self.dim), (n,) * self.dim, order="F"),
            axis=1,
        ).astype(np.int64)
        self.support_points = self.nodes_1d[self.multi_index]

    @property
    def dofs_per_cell(self) -> int:
        return (self.degree + 1) ** self.dim

    def face_dofs(self, axis: int, side: int) -> NDArray[np.int64]:
        """Local DOFs on the face where reference coordinate ``axis`` is -1 (side 0) or +1 (side 1)."""
        target = 0 if side == 0 else self.degree
        return np.flatnonzero(self.multi_index[:, axis] == target)

    def _tabulate_1d(self, points: np.ndarray) -> tuple[list, list]:
        vals, ders = [], []
        for d in range(self.dim):
            v, dv = lagrange_basis_1d(self.nodes_1d, points[:, d])
            vals.append(v)
            ders.append(dv)
        return vals, ders

    def values(self, points: np.ndarray) -> NDArray[np.float64]:
        """Shape function values at reference points, shape (n_points, dofs_per_cell)."""
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        vals, _ = self._tabulate_1d(points)
        out = np.ones((len(points), self.dofs_per_cell))
        for d in range(self.dim):
            out *= vals[d][:, self.multi_index[:, d]]
        return out

    def gradients(self, points: np.ndarray) -> NDArray[np.float64]:
        """Reference gradients, shape (n_points, dofs_per_cell, dim)."""
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        vals, ders = self._tabulate_1d(points)
        out = np.ones((len(points), self.dofs_per_cell, self.dim))
        for d in range(self.dim):
            for e in range(self.dim):
                table = ders[e] if e == d else vals[e]
                out[:, :, d] *= table[:, self.multi_index[:, e]]
        return out
