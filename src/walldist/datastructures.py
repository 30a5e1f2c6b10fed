from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    import meshio

# Boundary id carried by every boundary face of generated meshes
DEFAULT_BOUNDARY_ID = 0

# meshio cell type per dimension, and the permutation between meshio's
# counterclockwise vertex order and our lexicographic order (an involution)
MESHIO_CELL_TYPES = {1: "line", 2: "quad", 3: "hexahedron"}
MESHIO_VERTEX_ORDER = {
    1: np.array([0, 1]),
    2: np.array([0, 1, 3, 2]),
    3: np.array([0, 1, 3, 2, 4, 5, 7, 6]),
}

# Scalar field of position: (n_points, dim) -> (n_points,)
ScalarFunction = Callable[[NDArray[np.float64]], NDArray[np.float64]]


def constant(value: float) -> ScalarFunction:
    """Return a closure evaluating to ``value`` at every point."""

    def f(points: NDArray[np.float64]) -> NDArray[np.float64]:
        return np.full(len(points), float(value))

    return f


def reference_faces(dim: int) -> list[tuple[int, int, NDArray[np.int64]]]:
    """Faces of the reference cell as (axis, side, local vertex indices)."""
    local = np.arange(2**dim)
    faces = []
    for axis in range(dim):
        for side in (0, 1):
            faces.append((axis, side, local[(local >> axis) & 1 == side]))
    return faces


@dataclass
class Mesh:
    """Conforming mesh of quadrilaterals (2D), hexahedra (3D) or segments (1D).

    Attributes
    ----------
    vertices : ndarray (nonodes, dim)
        Vertex coordinates
    EToV : ndarray (noelms, 2**dim)
        Element-to-vertex connectivity, lexicographic vertex order
        (first reference coordinate fastest)
    boundary_faces : ndarray (n_faces, 2**(dim-1))
        Vertices of faces that belong to exactly one element
    boundary_ids : ndarray (n_faces,)
        Boundary marker per boundary face
    """

    vertices: NDArray[np.float64]
    EToV: NDArray[np.int64]

    boundary_faces: NDArray[np.int64] = field(init=False, repr=False)
    boundary_ids: NDArray[np.int64] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.vertices = np.asarray(self.vertices, dtype=np.float64)
        if self.vertices.ndim == 1:
            self.vertices = self.vertices[:, np.newaxis]
        self.EToV = np.asarray(self.EToV, dtype=np.int64)

        if self.EToV.ndim != 2 or self.EToV.shape[1] != 2**self.dim:
            raise ValueError(
                f"EToV must have 2**dim = {2**self.dim} columns for dim={self.dim}, "
                f"got shape {self.EToV.shape}"
            )
        if self.EToV.size and (self.EToV.min() < 0 or self.EToV.max() >= self.nonodes):
            raise ValueError("EToV references vertices outside [0, nonodes)")

        self._compute_boundary_faces()

    def _compute_boundary_faces(self) -> None:
        """Find faces shared by no other element (sorted-key duplicate count)."""
        local_faces = [verts for _, _, verts in reference_faces(self.dim)]
        faces = np.concatenate([self.EToV[:, verts] for verts in local_faces])
        keys = np.sort(faces, axis=1)
        _, first, counts = np.unique(keys, axis=0, return_index=True, return_counts=True)

        on_boundary = np.sort(first[counts == 1])
        self.boundary_faces = faces[on_boundary]
        self.boundary_ids = np.full(len(on_boundary), DEFAULT_BOUNDARY_ID, dtype=np.int64)

    @property
    def dim(self) -> int:
        return self.vertices.shape[1]

    @property
    def nonodes(self) -> int:
        return len(self.vertices)

    @property
    def noelms(self) -> int:
        return len(self.EToV)

    @property
    def cell_vertices(self) -> NDArray[np.float64]:
        """Vertex coordinates per element, shape (noelms, 2**dim, dim)."""
        return self.vertices[self.EToV]

    @classmethod
    def from_meshio(cls, mesh: meshio.Mesh | str | Path, dim: int | None = None) -> Mesh:
        """
        Create Mesh from a meshio mesh or mesh file.

        Parameters
        ----------
        mesh : meshio.Mesh or str or Path
            Either a meshio Mesh object or path to a mesh file.
        dim : int, optional
            Spatial dimension. Defaults to the highest-dimensional tensor-product
            cell type present (hexahedron, quad, line).

        Returns
        -------
        Mesh
        """
        import meshio as mio

        if isinstance(mesh, (str, Path)):
            mesh = mio.read(mesh)

        dims = [dim] if dim is not None else [3, 2, 1]
        for d in dims:
            cell_type = MESHIO_CELL_TYPES[d]
            blocks = [c.data for c in mesh.cells if c.type == cell_type]
            if blocks:
                EToV = np.concatenate(blocks).astype(np.int64)
                break
        else:
            raise ValueError(f"No line/quad/hexahedron cells found in mesh (dim={dim})")

        # Drop vertices that only belong to lower-dimensional cells
        used, EToV = np.unique(EToV, return_inverse=True)
        EToV = EToV.reshape(-1, 2**d)[:, MESHIO_VERTEX_ORDER[d]]
        return cls(vertices=mesh.points[used, :d], EToV=EToV)

    def to_meshio(self) -> meshio.Mesh:
        import meshio as mio

        points = np.zeros((self.nonodes, 3))
        points[:, : self.dim] = self.vertices
        cells = [(MESHIO_CELL_TYPES[self.dim], self.EToV[:, MESHIO_VERTEX_ORDER[self.dim]])]
        return mio.Mesh(points, cells)


@dataclass
class Parameters:
    """Wall distance run configuration."""

    dim: int = 2
    degree: int = 2
    n_refinements: int = 4
    left: float = -1.0
    right: float = 1.0
    quadrature_order: int | None = None  # None -> degree + 1 points per direction
    tolerance: float = 1e-12
    max_iterations: int = 1000
    relaxation: float = 1.0
    report_every: int = 50
    n_subdivisions: int | None = None  # None -> degree
    strict_sqrt: bool = False
    sqrt_tolerance: float = 1e-10
    output_dir: str = "."

    @property
    def n_quadrature_points(self) -> int:
        return self.degree + 1 if self.quadrature_order is None else self.quadrature_order

    @property
    def output_filename(self) -> str:
        return f"solution-{self.dim}d.vtk"
