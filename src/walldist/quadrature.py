"""Tensor-product Gauss-Legendre quadrature on the reference cell [-1, 1]^dim."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from numpy.polynomial.legendre import leggauss
from numpy.typing import NDArray


def gauss_legendre_1d(n_points: int) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Return (points, weights) of the n-point Gauss-Legendre rule on [-1, 1]."""
    if n_points < 1:
        raise ValueError(f"Quadrature needs at least one point, got n_points={n_points}")
    pts, wts = leggauss(n_points)
    return pts.astype(np.float64), wts.astype(np.float64)


@dataclass
class QGauss:
    """Gauss-Legendre rule with ``n_points`` points per direction.

    Exact for polynomials of degree ``2 * n_points - 1`` in each coordinate.

    Parameters
    ----------
    dim : spatial dimension of the reference cell
    n_points : number of points per coordinate direction
    """

    dim: int
    n_points: int

    points: NDArray[np.float64] = field(init=False, repr=False)
    weights: NDArray[np.float64] = field(init=False, repr=False)

    def __post_init__(self):
        if self.dim < 1:
            raise ValueError(f"dim must be positive, got {self.dim}")

        pts_1d, wts_1d = gauss_legendre_1d(self.n_points)

        # Lexicographic ordering, first coordinate fastest
        n_total = self.n_points**self.dim
        multi = np.stack(
            np.unravel_index(np.arange(n_total), (self.n_points,) * self.dim, order="F"),
            axis=1,
        )
        self.points = pts_1d[multi]
        self.weights = np.prod(wts_1d[multi], axis=1)

    @property
    def size(self) -> int:
        return len(self.weights)
