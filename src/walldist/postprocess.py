"""Wall distance estimates from the Poisson solution and its gradient.

With -Laplace(phi) = 1 and phi = 0 on the wall, the distance to the nearest
wall is approximated by

    root  = sqrt(|grad phi|^2 + 2 phi)
    s_min = root - |grad phi|_1
    s_max = root + |grad phi|_1
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

log = logging.getLogger(__name__)

VECTOR = "vector"
SCALAR = "scalar"


class NegativeRootError(ArithmeticError):
    """|grad phi|^2 + 2 phi is negative beyond tolerance at some point."""


@dataclass(frozen=True)
class WallDistancePostprocessor:
    """Evaluates [grad phi, s_min, s_max] per point.

    Parameters
    ----------
    dim : spatial dimension
    tolerance : how negative |grad phi|^2 + 2 phi may get before a point is flagged
    strict : raise NegativeRootError on flagged points instead of logging a warning
    """

    dim: int
    tolerance: float = 1e-10
    strict: bool = False

    @property
    def n_components(self) -> int:
        return self.dim + 2

    @property
    def names(self) -> list[str]:
        return ["direction"] * self.dim + ["s_min", "s_max"]

    @property
    def interpretation(self) -> list[str]:
        return [VECTOR] * self.dim + [SCALAR, SCALAR]

    def evaluate(
        self,
        values: NDArray[np.float64],
        gradients: NDArray[np.float64],
        points: NDArray[np.float64] | None = None,
        out: NDArray[np.float64] | None = None,
    ) -> NDArray[np.float64]:
        """
        Compute derived quantities at n points.

        Parameters
        ----------
        values : (n,) solution values
        gradients : (n, dim) solution gradients
        points : (n, dim), optional
            Physical coordinates, only used to name flagged points.
        out : (n, dim + 2), optional
            Buffer receiving the result.

        Returns
        -------
        ndarray (n, dim + 2)
            Gradient components, then s_min, then s_max.
        """
        values = np.asarray(values, dtype=np.float64)
        gradients = np.asarray(gradients, dtype=np.float64)
        n = len(values)

        if values.ndim != 1:
            raise ValueError(f"values must be 1-D, got shape {values.shape}")
        if gradients.shape != (n, self.dim):
            raise ValueError(f"gradients must have shape {(n, self.dim)}, got {gradients.shape}")
        if out is None:
            out = np.empty((n, self.n_components))
        elif out.shape != (n, self.n_components):
            raise ValueError(
                f"Output buffer must have shape {(n, self.n_components)}, got {out.shape}"
            )

        l2_square = np.einsum("nd,nd->n", gradients, gradients)
        l1 = np.abs(gradients).sum(axis=1)
        arg = l2_square + 2.0 * values

        self._check_root_argument(arg, points)
        root = np.sqrt(np.maximum(arg, 0.0))

        out[:, : self.dim] = gradients
        out[:, self.dim] = root - l1
        out[:, self.dim + 1] = root + l1
        return out

    def _check_root_argument(self, arg: NDArray[np.float64], points) -> None:
        bad = np.flatnonzero(arg < -self.tolerance)
        if len(bad) == 0:
            return

        if self.strict:
            k = bad[0]
            where = f" at {np.asarray(points)[k].tolist()}" if points is not None else ""
            raise NegativeRootError(
                f"Sqrt of negative: |grad u|^2 + 2u = {arg[k]:.3e}{where} "
                f"({len(bad)} points below -{self.tolerance:g})"
            )

        for k in bad:
            where = f"{np.asarray(points)[k].tolist()}" if points is not None else f"#{k}"
            log.warning(f"Sqrt of negative clamped at point {where}: |grad u|^2 + 2u = {arg[k]:.3e}")
