"""VTK output of the solution and derived wall distance fields via meshio.

Each cell is written as its own patch, subdivided ``n_subdivisions`` times per
direction, so per-cell gradients are kept discontinuous across cells.
"""

from __future__ import annotations

import logging
from pathlib import Path

import meshio
import numpy as np
from numpy.typing import NDArray

from .datastructures import MESHIO_CELL_TYPES, MESHIO_VERTEX_ORDER
from .function_space import FunctionSpace
from .postprocess import VECTOR, WallDistancePostprocessor

log = logging.getLogger(__name__)


def patch_points(dim: int, n_subdivisions: int) -> NDArray[np.float64]:
    """Reference points of a subdivided cell, lexicographic, shape ((n+1)**dim, dim)."""
    n = n_subdivisions + 1
    multi = np.stack(np.unravel_index(np.arange(n**dim), (n,) * dim, order="F"), axis=1)
    return np.linspace(-1.0, 1.0, n)[multi]


def patch_cells(dim: int, n_subdivisions: int) -> NDArray[np.int64]:
    """Sub-cell connectivity within one patch, lexicographic vertex order."""
    n = n_subdivisions
    strides = (n + 1) ** np.arange(dim)
    cidx = np.stack(np.unravel_index(np.arange(n**dim), (n,) * dim, order="F"), axis=1)
    bits = (np.arange(2**dim)[:, np.newaxis] >> np.arange(dim)) & 1
    return (cidx @ strides)[:, np.newaxis] + (bits @ strides)[np.newaxis, :]


def build_patches(
    space: FunctionSpace,
    u: NDArray[np.float64],
    postprocessor: WallDistancePostprocessor,
    n_subdivisions: int | None = None,
) -> meshio.Mesh:
    """Evaluate u and the derived quantities on patches and pack them into a meshio.Mesh."""
    dim = space.dim
    n_sub = space.degree if n_subdivisions is None else n_subdivisions
    if n_sub < 1:
        raise ValueError(f"n_subdivisions must be >= 1, got {n_sub}")

    ref = patch_points(dim, n_sub)
    values, gradients, points = space.cell_field(u, ref)
    n_per_patch = len(ref)

    flat_points = points.reshape(-1, dim)
    derived = postprocessor.evaluate(
        values.ravel(), gradients.reshape(-1, dim), points=flat_points
    )

    xyz = np.zeros((len(flat_points), 3))
    xyz[:, :dim] = flat_points

    local = patch_cells(dim, n_sub)
    offsets = np.arange(space.noelms)[:, np.newaxis, np.newaxis] * n_per_patch
    conn = (offsets + local[np.newaxis]).reshape(-1, 2**dim)
    conn = conn[:, MESHIO_VERTEX_ORDER[dim]]

    point_data = {"solution": values.ravel()}
    point_data.update(_split_components(derived, postprocessor))

    return meshio.Mesh(xyz, [(MESHIO_CELL_TYPES[dim], conn)], point_data=point_data)


def _split_components(
    derived: NDArray[np.float64], postprocessor: WallDistancePostprocessor
) -> dict[str, NDArray[np.float64]]:
    """Group consecutive vector components under one name, padded to 3 components."""
    fields = {}
    names, kinds = postprocessor.names, postprocessor.interpretation
    k = 0
    while k < len(names):
        if kinds[k] == VECTOR:
            end = k
            while end < len(names) and kinds[end] == VECTOR and names[end] == names[k]:
                end += 1
            vec = np.zeros((len(derived), 3))
            vec[:, : end - k] = derived[:, k:end]
            fields[names[k]] = vec
            k = end
        else:
            fields[names[k]] = derived[:, k].copy()
            k += 1
    return fields


def write_vtk(
    filepath: str | Path,
    space: FunctionSpace,
    u: NDArray[np.float64],
    postprocessor: WallDistancePostprocessor,
    n_subdivisions: int | None = None,
) -> Path:
    """Write solution, direction, s_min and s_max to a legacy VTK file."""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    mesh = build_patches(space, u, postprocessor, n_subdivisions)
    meshio.write(filepath, mesh, file_format="vtk")

    log.info(f"Saved VTK to {filepath}")
    return filepath
