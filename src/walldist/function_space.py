"""Continuous Lagrange function space over a quad/hex mesh.

Builds the C0 local-to-global DOF map, the physical support points, and the
per-cell tables (shape values, physical gradients, JxW) used by assembly and
post-processing.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray

from .datastructures import DEFAULT_BOUNDARY_ID, Mesh, ScalarFunction, reference_faces
from .elements import LagrangeElement

# Cells whose |det J| falls below this are rejected as degenerate
DETJ_TOL = 1e-14


def evaluate_function(func: ScalarFunction, points: NDArray[np.float64]) -> NDArray[np.float64]:
    """Evaluate a scalar field of position at (n_points, dim) points."""
    values = np.asarray(func(points), dtype=np.float64)
    return np.broadcast_to(values, (len(points),)).copy()


@dataclass
class CellValues:
    """Shape function data of every cell at a common set of reference points.

    Attributes
    ----------
    values : (n_q, nloc) shape function values
    gradients : (noelms, n_q, nloc, dim) physical gradients
    points : (noelms, n_q, dim) physical coordinates
    JxW : (noelms, n_q) quadrature weight times |det J|; None without weights
    """

    values: NDArray[np.float64]
    gradients: NDArray[np.float64]
    points: NDArray[np.float64]
    JxW: NDArray[np.float64] | None = None


@dataclass
class FunctionSpace:
    """Q_p Lagrange space on a mesh.

    Parameters
    ----------
    mesh : conforming quad/hex mesh
    degree : polynomial degree p
    """

    mesh: Mesh
    degree: int

    element: LagrangeElement = field(init=False, repr=False)
    geometry: LagrangeElement = field(init=False, repr=False)
    loc2glb: NDArray[np.int64] = field(init=False, repr=False)
    support_points: NDArray[np.float64] = field(init=False, repr=False)
    ndofs: int = field(init=False)
    nloc: int = field(init=False)

    def __post_init__(self):
        self.element = LagrangeElement(self.mesh.dim, self.degree)
        self.geometry = LagrangeElement(self.mesh.dim, 1)
        self.nloc = self.element.dofs_per_cell

        self.loc2glb, self.ndofs = self._build_c0_mapping()

        coords = self._map_points(self.element.support_points)
        self.support_points = np.zeros((self.ndofs, self.dim))
        self.support_points[self.loc2glb] = coords

    @property
    def dim(self) -> int:
        return self.mesh.dim

    @property
    def noelms(self) -> int:
        return self.mesh.noelms

    def _build_c0_mapping(self) -> tuple[NDArray[np.int64], int]:
        """Build local-to-global DOF map ensuring C0 continuity.

        A local node is identified across elements by the vertices it has
        non-zero multilinear weight on, together with the 1D node indices
        making up each weight. The key depends only on mesh topology, so it
        is insensitive to how neighbouring elements are oriented.
        """
        p = self.degree
        multi = self.element.multi_index
        n_vertices = 2**self.dim
        bits = (np.arange(n_vertices)[:, np.newaxis] >> np.arange(self.dim)) & 1

        # Per local node: [(local vertex, sorted 1D weight indices), ...]
        node_weights = []
        for mi in multi:
            entries = []
            for v in range(n_vertices):
                ks = np.where(bits[v] == 1, mi, p - mi)
                if np.all(ks > 0):
                    entries.append((v, tuple(sorted(ks.tolist()))))
            node_weights.append(entries)

        loc2glb = np.empty((self.noelms, self.nloc), dtype=np.int64)
        key_to_dof = {}
        next_dof = 0
        for e, verts in enumerate(self.mesh.EToV.tolist()):
            for loc, entries in enumerate(node_weights):
                key = tuple(sorted((verts[v], ks) for v, ks in entries))
                dof = key_to_dof.get(key)
                if dof is None:
                    dof = key_to_dof[key] = next_dof
                    next_dof += 1
                loc2glb[e, loc] = dof

        return loc2glb, next_dof

    def _jacobians(self, ref_points: np.ndarray) -> NDArray[np.float64]:
        """Jacobians dx/dxi of every cell at reference points, shape (noelms, n_q, dim, dim)."""
        dN = self.geometry.gradients(ref_points)  # (n_q, 2**dim, dim)
        return np.einsum("cva,qvb->cqab", self.mesh.cell_vertices, dN)

    def _map_points(self, ref_points: np.ndarray) -> NDArray[np.float64]:
        """Physical coordinates of reference points in every cell, shape (noelms, n_q, dim)."""
        N = self.geometry.values(ref_points)
        return np.einsum("qv,cvd->cqd", N, self.mesh.cell_vertices)

    def cell_values(
        self, ref_points: np.ndarray, weights: np.ndarray | None = None
    ) -> CellValues:
        """Tabulate shape values and physical gradients at reference points in all cells."""
        ref_points = np.atleast_2d(np.asarray(ref_points, dtype=np.float64))
        J = self._jacobians(ref_points)
        detJ = np.linalg.det(J)
        if np.any(np.abs(detJ) < DETJ_TOL):
            bad = int(np.argmin(np.abs(detJ).min(axis=1)))
            raise ValueError(f"Degenerate cell {bad}: |det J| below {DETJ_TOL}")
        invJ = np.linalg.inv(J)

        # grad_x phi = J^{-T} grad_xi phi
        ref_grads = self.element.gradients(ref_points)
        gradients = np.einsum("cqba,qib->cqia", invJ, ref_grads)

        JxW = None
        if weights is not None:
            JxW = np.abs(detJ) * np.asarray(weights)[np.newaxis, :]

        return CellValues(
            values=self.element.values(ref_points),
            gradients=gradients,
            points=self._map_points(ref_points),
            JxW=JxW,
        )

    def reinit(self, quadrature) -> CellValues:
        """Cell tables at the points of a quadrature rule, including JxW."""
        if quadrature.dim != self.dim:
            raise ValueError(f"Quadrature dim {quadrature.dim} does not match mesh dim {self.dim}")
        return self.cell_values(quadrature.points, quadrature.weights)

    def cell_field(
        self, u: NDArray[np.float64], ref_points: np.ndarray
    ) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
        """Value and gradient of the finite element field ``u`` at reference points of every cell.

        Returns
        -------
        values : (noelms, n_q)
        gradients : (noelms, n_q, dim)
        points : (noelms, n_q, dim)
        """
        u = self._check_vector(u)
        cv = self.cell_values(ref_points)
        u_loc = u[self.loc2glb]  # (noelms, nloc)
        values = np.einsum("qi,ci->cq", cv.values, u_loc)
        gradients = np.einsum("cqid,ci->cqd", cv.gradients, u_loc)
        return values, gradients, cv.points

    def _check_vector(self, u: NDArray[np.float64]) -> NDArray[np.float64]:
        u = np.asarray(u, dtype=np.float64)
        if u.shape != (self.ndofs,):
            raise ValueError(f"Expected a vector of length {self.ndofs}, got shape {u.shape}")
        return u

    def boundary_dofs(self, boundary_id: int = DEFAULT_BOUNDARY_ID) -> NDArray[np.int64]:
        """Global indices of DOFs on boundary faces carrying ``boundary_id``."""
        mesh = self.mesh
        tagged = mesh.boundary_faces[mesh.boundary_ids == boundary_id]
        if len(tagged) == 0:
            raise ValueError(f"No boundary faces carry boundary id {boundary_id}")
        face_keys = {tuple(sorted(face)) for face in tagged.tolist()}

        dofs = []
        for axis, side, verts in reference_faces(self.dim):
            local_dofs = self.element.face_dofs(axis, side)
            keys = np.sort(mesh.EToV[:, verts], axis=1)
            on_boundary = np.array([tuple(k) in face_keys for k in keys.tolist()], dtype=bool)
            dofs.append(self.loc2glb[np.ix_(on_boundary, local_dofs)].ravel())

        return np.unique(np.concatenate(dofs))

    def interpolate(self, func: ScalarFunction) -> NDArray[np.float64]:
        """Nodal interpolant of ``func``."""
        return evaluate_function(func, self.support_points)

    def _locate(self, point: NDArray[np.float64], tol: float = 1e-10, max_newton: int = 25):
        """Return (cell, reference point) containing a physical point."""
        cells = self.mesh.cell_vertices
        lo = cells.min(axis=1) - tol
        hi = cells.max(axis=1) + tol
        candidates = np.flatnonzero(np.all((point >= lo) & (point <= hi), axis=1))

        for c in candidates:
            X = cells[c]
            xi = np.zeros(self.dim)
            for _ in range(max_newton):
                N = self.geometry.values(xi[np.newaxis])[0]
                dN = self.geometry.gradients(xi[np.newaxis])[0]
                residual = N @ X - point
                J = X.T @ dN
                step = np.linalg.solve(J, residual)
                xi -= step
                if np.max(np.abs(step)) < 1e-14:
                    break
            if np.all(np.abs(xi) <= 1.0 + 1e-8):
                return int(c), np.clip(xi, -1.0, 1.0)

        raise ValueError(f"Point {point.tolist()} is outside the mesh")

    def point_values(
        self, u: NDArray[np.float64], points: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Value and gradient of ``u`` at arbitrary physical points.

        Points on a face shared by several cells take the gradient of the
        first containing cell.
        """
        u = self._check_vector(u)
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        if points.shape[1] != self.dim:
            raise ValueError(f"Expected points of shape (n, {self.dim}), got {points.shape}")

        values = np.empty(len(points))
        gradients = np.empty((len(points), self.dim))
        for k, x in enumerate(points):
            c, xi = self._locate(x)
            u_loc = u[self.loc2glb[c]]
            X = self.mesh.cell_vertices[c]
            J = X.T @ self.geometry.gradients(xi[np.newaxis])[0]
            ref_grad = self.element.gradients(xi[np.newaxis])[0]  # (nloc, dim)
            values[k] = self.element.values(xi[np.newaxis])[0] @ u_loc
            gradients[k] = np.linalg.solve(J.T, ref_grad.T @ u_loc)
        return values, gradients
