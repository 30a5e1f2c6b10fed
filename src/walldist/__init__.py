"""Wall distance from a Poisson problem on quad/hex meshes.

Solves -Laplace(phi) = 1 with phi = 0 on the boundary using continuous
Lagrange elements, then estimates the distance to the nearest wall as
sqrt(|grad phi|^2 + 2 phi) -/+ |grad phi|_1.

Main components:
- Mesh, hyper_cube: quad/hex meshes and the refined hypercube generator
- FunctionSpace: C0 DOF map, cell tables and point evaluation
- SparsityPattern, assemble_system: CSR structure and global assembly
- interpolate_boundary_values, apply_boundary_values: Dirichlet conditions
- SSORPreconditioner, solve_cg: preconditioned conjugate gradients
- WallDistancePostprocessor: derived wall distance quantities
- WallDistanceProblem: the full pipeline
"""

from .datastructures import Mesh, Parameters, constant, DEFAULT_BOUNDARY_ID
from .mesh import hyper_cube
from .quadrature import QGauss
from .elements import LagrangeElement
from .function_space import FunctionSpace, CellValues
from .sparsity import SparsityPattern, SparsityError
from .assembly import (
    assemble_system,
    assemble_global_stiffness,
    assemble_load_vector,
)
from .boundary import interpolate_boundary_values, apply_boundary_values
from .solvers import SSORPreconditioner, SolverControl, ConvergenceError, solve_cg
from .postprocess import WallDistancePostprocessor, NegativeRootError
from .output import write_vtk
from .problem import WallDistanceProblem

__all__ = [
    # Mesh
    "Mesh",
    "hyper_cube",
    "DEFAULT_BOUNDARY_ID",
    # Configuration
    "Parameters",
    "constant",
    # Discretisation
    "QGauss",
    "LagrangeElement",
    "FunctionSpace",
    "CellValues",
    # Assembly
    "SparsityPattern",
    "SparsityError",
    "assemble_system",
    "assemble_global_stiffness",
    "assemble_load_vector",
    # Boundary conditions
    "interpolate_boundary_values",
    "apply_boundary_values",
    # Solver
    "SSORPreconditioner",
    "SolverControl",
    "ConvergenceError",
    "solve_cg",
    # Post-processing and output
    "WallDistancePostprocessor",
    "NegativeRootError",
    "write_vtk",
    # Pipeline
    "WallDistanceProblem",
]
