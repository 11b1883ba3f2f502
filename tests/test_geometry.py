"""
Tests for spline geometries on hierarchical bases.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from htbIGA.geometry.hspline import HSplineGeometry, make_hspline_box, make_hspline_unit_square
from htbIGA.hierarchical import THBSplineBasis

CENTER_BOX = np.array([[0.25, 0.75], [0.25, 0.75]])


@pytest.fixture(params=[True, False], ids=["THB", "HB"])
def square(request):
    return make_hspline_unit_square(p=2, n_elem_xi=4, n_elem_eta=4, truncate=request.param)


class TestHSplineGeometry:

    def test_unit_square(self, square):
        assert square.n_dim_parametric == 2
        assert square.n_dim_physical == 2
        assert square.n_control_points == 36

    def test_identity_map(self, square, sample_points_2d):
        assert_allclose(square.eval_points(sample_points_2d), sample_points_2d.T, atol=1e-12)
        assert_allclose(square.eval_point((0.3, 0.8)), [0.3, 0.8], atol=1e-12)
        assert_allclose(square.jacobian((0.3, 0.8)), np.eye(2), atol=1e-12)

    def test_refine_preserves_map(self, square, sample_points_2d):
        square.refine(CENTER_BOX)
        square.refine(np.array([[0.4, 0.6], [0.4, 0.6]]))

        assert square.n_control_points == square.basis.size()
        assert_allclose(square.eval_points(sample_points_2d), sample_points_2d.T, atol=1e-10)
        assert_allclose(square.jacobian((0.5, 0.5)), np.eye(2), atol=1e-9)

    def test_refine_elements_and_uniform_refine(self, square, sample_points_2d):
        square.refine_elements([1, 0, 0, 4, 2])
        square.uniform_refine()

        assert square.basis.tensor_level(0).n_elements_per_dir == (8, 8)
        assert_allclose(square.eval_points(sample_points_2d), sample_points_2d.T, atol=1e-10)

    def test_thb_control_points_keep_greville_positions(self, sample_points_2d):
        """With truncation the transferred control points are the new anchors."""
        square = make_hspline_unit_square(truncate=True)
        square.refine(CENTER_BOX)

        assert_allclose(square.control_points, square.basis.anchors().T, atol=1e-10)

    def test_explicit_control_points(self, tbasis_2d, sample_points_2d):
        basis = THBSplineBasis(tbasis_2d)
        geometry = HSplineGeometry(basis, basis.anchors().T)
        geometry.refine(CENTER_BOX)

        assert isinstance(geometry.basis, THBSplineBasis)
        assert_allclose(geometry.eval_points(sample_points_2d), sample_points_2d.T, atol=1e-10)

    def test_wrong_number_of_control_points(self, tbasis_2d):
        with pytest.raises(ValueError):
            HSplineGeometry(THBSplineBasis(tbasis_2d), np.zeros((35, 2)))

    def test_scalar_control_values(self, tbasis_2d):
        geometry = HSplineGeometry(THBSplineBasis(tbasis_2d), np.ones(36))

        assert geometry.n_dim_physical == 1
        assert_allclose(geometry.eval_point((0.2, 0.9)), [1.0])


class TestMakeHSplineBox:

    def test_interval(self):
        geometry = make_hspline_box([2], [3], domain=[(-1.0, 2.0)])

        assert geometry.n_dim_parametric == geometry.n_dim_physical == 1
        assert_allclose(geometry.eval_point((0.5,)), [0.5], atol=1e-12)

    def test_cube(self):
        geometry = make_hspline_box([1, 2, 1], [2, 2, 3], truncate=False, nlevels=2)

        assert geometry.basis.num_levels == 2
        assert geometry.n_control_points == 3 * 4 * 4
        assert_allclose(geometry.eval_point((0.1, 0.5, 0.9)), [0.1, 0.5, 0.9], atol=1e-12)

    def test_mismatched_lengths(self):
        with pytest.raises(ValueError):
            make_hspline_box([2, 2], [4])
