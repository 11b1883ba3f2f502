"""
Pytest configuration and shared fixtures for htbIGA tests.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add the parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from htbIGA.discretization.knot_vector import make_uniform_knot_vector
from htbIGA.geometry.bspline import TensorBSplineBasis


def make_tensor_basis(degrees, n_elements, domain=None):
    """Open uniform tensor basis with given degrees and elements per direction."""
    if domain is None:
        domain = [(0.0, 1.0)] * len(degrees)
    return TensorBSplineBasis([
        make_uniform_knot_vector(n, p, d) for n, p, d in zip(n_elements, degrees, domain)
    ])


@pytest.fixture
def tolerance():
    """Default tolerance for floating point comparisons."""
    return 1e-12


@pytest.fixture
def loose_tolerance():
    """Looser tolerance for results of linear solves."""
    return 1e-8


@pytest.fixture
def tbasis_2d():
    """Degree 2, 4x4 elements on the unit square."""
    return make_tensor_basis([2, 2], [4, 4])


@pytest.fixture
def tbasis_1d():
    """Degree 2, 4 elements on [0, 1]."""
    return make_tensor_basis([2], [4])


@pytest.fixture
def sample_points_2d():
    """Random points in the unit square, shape (2, 60), plus the corners."""
    rng = np.random.default_rng(42)
    corners = np.array([[0.0, 1.0, 0.0, 1.0], [0.0, 0.0, 1.0, 1.0]])
    return np.hstack([rng.random((2, 60)), corners])
