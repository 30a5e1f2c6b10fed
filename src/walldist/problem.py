"""Wall distance pipeline: mesh, function space, assembly, solve, output."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
from numpy.typing import NDArray

from .assembly import assemble_system
from .boundary import apply_boundary_values, interpolate_boundary_values
from .datastructures import Mesh, Parameters, ScalarFunction, constant
from .function_space import FunctionSpace
from .mesh import hyper_cube
from .output import write_vtk
from .postprocess import WallDistancePostprocessor
from .quadrature import QGauss
from .solvers import SolverControl, SSORPreconditioner, solve_cg
from .sparsity import SparsityPattern

log = logging.getLogger(__name__)


class WallDistanceProblem:
    """Solves -Laplace(phi) = f, phi = g on the boundary, and derives wall distances.

    Phases run strictly in order, each once: ``make_grid``, ``setup_system``,
    ``assemble_system``, ``solve``, ``output_results``. ``run`` does all of
    them.

    Parameters
    ----------
    params : Parameters, optional
        Run configuration. If not provided, kwargs are used to create it.
    source : callable, optional
        Right-hand side f(points); defaults to the constant 1.
    boundary_function : callable, optional
        Dirichlet data g(points); defaults to the constant 0.
    mesh : Mesh, optional
        Use this mesh instead of generating the refined hypercube.
    """

    def __init__(
        self,
        params: Parameters | None = None,
        source: ScalarFunction | None = None,
        boundary_function: ScalarFunction | None = None,
        mesh: Mesh | None = None,
        **kwargs,
    ):
        self.params = params if params is not None else Parameters(**kwargs)
        self.source = source or constant(1.0)
        self.boundary_function = boundary_function or constant(0.0)
        self.mesh = mesh

        self.space: FunctionSpace | None = None
        self.pattern: SparsityPattern | None = None
        self.system_matrix = None
        self.system_rhs: NDArray[np.float64] | None = None
        self.solution: NDArray[np.float64] | None = None
        self.control = SolverControl(
            max_iterations=self.params.max_iterations,
            tolerance=self.params.tolerance,
            report_every=self.params.report_every,
        )
        self.postprocessor = WallDistancePostprocessor(
            dim=self.params.dim,
            tolerance=self.params.sqrt_tolerance,
            strict=self.params.strict_sqrt,
        )

    def make_grid(self) -> None:
        if self.mesh is None:
            p = self.params
            self.mesh = hyper_cube(p.dim, p.left, p.right, p.n_refinements)
        elif self.mesh.dim != self.params.dim:
            raise ValueError(f"Mesh dim {self.mesh.dim} does not match params.dim {self.params.dim}")

        log.info(f"   Number of active cells: {self.mesh.noelms}")

    def setup_system(self) -> None:
        self.space = FunctionSpace(self.mesh, self.params.degree)
        self.pattern = SparsityPattern.from_space(self.space)
        log.info(f"   Number of degrees of freedom: {self.space.ndofs}")

    def assemble_system(self) -> None:
        quadrature = QGauss(self.params.dim, self.params.n_quadrature_points)
        A, b = assemble_system(self.space, self.pattern, self.source, quadrature)

        boundary_values = interpolate_boundary_values(self.space, self.boundary_function)
        apply_boundary_values(boundary_values, A, b)

        self.system_matrix, self.system_rhs = A, b

    def solve(self) -> NDArray[np.float64]:
        preconditioner = SSORPreconditioner(self.params.relaxation).initialize(self.system_matrix)
        self.solution = solve_cg(
            self.system_matrix, self.system_rhs, preconditioner, self.control
        )
        return self.solution

    def output_results(self, output_dir: str | Path | None = None) -> Path:
        output_dir = Path(self.params.output_dir if output_dir is None else output_dir)
        return write_vtk(
            output_dir / self.params.output_filename,
            self.space,
            self.solution,
            self.postprocessor,
            self.params.n_subdivisions,
        )

    def run(self, write_output: bool = True) -> NDArray[np.float64]:
        log.info(f"Solving problem in {self.params.dim} space dimensions.")

        self.make_grid()
        self.setup_system()
        self.assemble_system()
        self.solve()
        if write_output:
            self.output_results()
        return self.solution

    def wall_distance(self, points: NDArray[np.float64]) -> NDArray[np.float64]:
        """[grad phi, s_min, s_max] at arbitrary physical points, shape (n, dim + 2)."""
        if self.solution is None:
            raise RuntimeError("wall_distance() called before solve()")
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        values, gradients = self.space.point_values(self.solution, points)
        return self.postprocessor.evaluate(values, gradients, points=points)
