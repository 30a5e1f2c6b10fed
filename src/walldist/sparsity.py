"""CSR sparsity pattern derived from the element-to-DOF incidence."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray
from scipy.sparse import csr_matrix


class SparsityError(KeyError):
    """Raised on a write to a (row, col) pair that is not in the pattern."""


@dataclass
class SparsityPattern:
    """Fixed CSR structure: every (i, j) pair that co-occurs in some element.

    Parameters
    ----------
    loc2glb : (noelms, nloc) local-to-global DOF map
    ndofs : total number of DOFs
    """

    loc2glb: NDArray[np.int64]
    ndofs: int

    indptr: NDArray[np.int64] = field(init=False, repr=False)
    indices: NDArray[np.int64] = field(init=False, repr=False)
    data_map: NDArray[np.int64] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.loc2glb = np.asarray(self.loc2glb, dtype=np.int64)
        if self.loc2glb.size and (self.loc2glb.min() < 0 or self.loc2glb.max() >= self.ndofs):
            raise ValueError(f"loc2glb references DOFs outside [0, {self.ndofs})")
        self._compute_assembly_indices()

    @classmethod
    def from_space(cls, space) -> SparsityPattern:
        return cls(space.loc2glb, space.ndofs)

    def _compute_assembly_indices(self) -> None:
        """Compute CSR structure and the element-entry -> CSR data map."""
        noelms, n = self.loc2glb.shape

        # (row, col) pairs for all element matrix entries, element-major
        rows = np.repeat(self.loc2glb, n, axis=1).ravel()
        cols = np.tile(self.loc2glb, n).ravel()

        # Sort by (row, col) to group duplicates and build CSR structure
        sort_order = np.lexsort((cols, rows))
        sorted_rows = rows[sort_order]
        sorted_cols = cols[sort_order]

        # Find boundaries between unique (row, col) pairs
        row_diff = np.diff(sorted_rows, prepend=-1)
        col_diff = np.diff(sorted_cols, prepend=-1)
        is_new_pair = (row_diff != 0) | (col_diff != 0)

        unique_rows = sorted_rows[is_new_pair]
        unique_cols = sorted_cols[is_new_pair]

        # indptr: cumulative count of entries per row
        self.indptr = np.zeros(self.ndofs + 1, dtype=np.int64)
        np.add.at(self.indptr, unique_rows + 1, 1)
        np.cumsum(self.indptr, out=self.indptr)

        self.indices = unique_cols

        # Map each element entry to its position in CSR data array
        pair_indices = np.cumsum(is_new_pair) - 1
        self.data_map = np.empty(noelms * n * n, dtype=np.int64)
        self.data_map[sort_order] = pair_indices

    @property
    def nnz(self) -> int:
        return len(self.indices)

    @property
    def shape(self) -> tuple[int, int]:
        return (self.ndofs, self.ndofs)

    def empty_matrix(self) -> csr_matrix:
        """Zero matrix with every pattern entry stored explicitly."""
        return csr_matrix(
            (np.zeros(self.nnz), self.indices.copy(), self.indptr.copy()),
            shape=self.shape,
        )

    def exists(self, rows: NDArray[np.int64], cols: NDArray[np.int64]) -> NDArray[np.bool_]:
        rows, cols = np.broadcast_arrays(np.asarray(rows), np.asarray(cols))
        return self._lookup(rows.ravel(), cols.ravel()) >= 0

    def _lookup(self, rows: NDArray[np.int64], cols: NDArray[np.int64]) -> NDArray[np.int64]:
        """CSR data positions of (row, col) pairs, -1 where absent."""
        pos = np.full(len(rows), -1, dtype=np.int64)
        valid = (rows >= 0) & (rows < self.ndofs) & (cols >= 0) & (cols < self.ndofs)

        # Keys row * N + col are strictly increasing along CSR storage
        entry_rows = np.repeat(np.arange(self.ndofs), np.diff(self.indptr))
        stored = entry_rows * self.ndofs + self.indices
        keys = rows[valid] * self.ndofs + cols[valid]
        found = np.searchsorted(stored, keys)
        found_clipped = np.minimum(found, len(stored) - 1)
        hit = (found < len(stored)) & (stored[found_clipped] == keys)

        pos_valid = np.where(hit, found_clipped, -1)
        pos[valid] = pos_valid
        return pos

    def positions(self, rows: NDArray[np.int64], cols: NDArray[np.int64]) -> NDArray[np.int64]:
        """CSR data positions of (row, col) pairs; raises SparsityError if any is absent."""
        rows, cols = np.broadcast_arrays(np.asarray(rows), np.asarray(cols))
        rows, cols = rows.ravel(), cols.ravel()
        pos = self._lookup(rows, cols)
        missing = np.flatnonzero(pos < 0)
        if len(missing):
            k = missing[0]
            raise SparsityError(
                f"Entry ({rows[k]}, {cols[k]}) is not in the sparsity pattern "
                f"({len(missing)} missing entries)"
            )
        return pos

    def add(
        self,
        matrix: csr_matrix,
        rows: NDArray[np.int64],
        cols: NDArray[np.int64],
        values: NDArray[np.float64],
    ) -> None:
        """Accumulate values into ``matrix`` at (rows, cols), in order."""
        self.check_matrix(matrix)
        pos = self.positions(rows, cols)
        shape = np.broadcast_shapes(np.shape(rows), np.shape(cols))
        values = np.broadcast_to(np.asarray(values, dtype=np.float64), shape).ravel()
        np.add.at(matrix.data, pos, values)

    def check_matrix(self, matrix: csr_matrix) -> None:
        if (
            matrix.shape != self.shape
            or len(matrix.indices) != self.nnz
            or not np.array_equal(matrix.indptr, self.indptr)
            or not np.array_equal(matrix.indices, self.indices)
        ):
            raise SparsityError("Matrix structure does not match the sparsity pattern")
