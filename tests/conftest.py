import numpy as np
import pytest

from walldist import FunctionSpace, SparsityPattern, hyper_cube


@pytest.fixture
def square_mesh():
    """[-1, 1]^2 refined twice (4x4 cells)."""
    return hyper_cube(2, -1.0, 1.0, n_refinements=2)


@pytest.fixture
def space_q2(square_mesh):
    return FunctionSpace(square_mesh, degree=2)


@pytest.fixture
def pattern_q2(space_q2):
    return SparsityPattern.from_space(space_q2)


@pytest.fixture
def coordinate_order():
    """Permutation sorting DOFs by their (rounded) support point coordinates."""

    def order(space):
        P = np.round(space.support_points, 10)
        return np.lexsort(P.T[::-1])

    return order
