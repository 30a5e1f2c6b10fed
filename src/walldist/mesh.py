import numpy as np

from .datastructures import Mesh


def hyper_cube(dim: int, left: float = -1.0, right: float = 1.0, n_refinements: int = 0) -> Mesh:
    """Create the cube [left, right]^dim, globally refined ``n_refinements`` times.

    Each refinement halves every cell in every direction, so the mesh has
    ``2**n_refinements`` cells per direction.
    """
    if dim not in (1, 2, 3):
        raise ValueError(f"Only dim 1, 2 or 3 is supported, got {dim}")
    if not right > left:
        raise ValueError(f"Need left < right, got [{left}, {right}]")
    if n_refinements < 0:
        raise ValueError(f"n_refinements must be non-negative, got {n_refinements}")

    n = 2**n_refinements
    nv = n + 1

    # Vertex (i_0, ..., i_{dim-1}) has id sum_d i_d * nv**d
    vidx = np.stack(np.unravel_index(np.arange(nv**dim), (nv,) * dim, order="F"), axis=1)
    vertices = np.linspace(left, right, nv)[vidx]

    cidx = np.stack(np.unravel_index(np.arange(n**dim), (n,) * dim, order="F"), axis=1)
    strides = nv ** np.arange(dim)
    base = cidx @ strides

    # Lexicographic corner offsets: bit d of the local vertex selects i_d + 1
    local = np.arange(2**dim)
    bits = (local[:, np.newaxis] >> np.arange(dim)) & 1
    EToV = base[:, np.newaxis] + (bits @ strides)[np.newaxis, :]

    return Mesh(vertices=vertices, EToV=EToV)
