#!/usr/bin/env python3
"""
Tests for THB-splines (Truncated Hierarchical B-splines) and their
relation to HB-splines.

Created: 2025-01-19
Author: Wataru Fukuda
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_almost_equal

from htbIGA.hierarchical import HBSplineBasis, THBSplineBasis
from htbIGA.geometry.bspline import derivative_multi_indices
from conftest import make_tensor_basis

CENTER_BOX = np.array([[0.25, 0.75], [0.25, 0.75]])
INNER_BOX = np.array([[0.4, 0.6], [0.4, 0.6]])


def refined_pair(tbasis, boxes):
    """HB and THB bases with the same structure."""
    hb, thb = HBSplineBasis(tbasis), THBSplineBasis(tbasis)
    for box in boxes:
        hb.refine(box)
        thb.refine(box)
    return hb, thb


@pytest.fixture
def thb(tbasis_2d):
    basis = THBSplineBasis(tbasis_2d)
    basis.refine(CENTER_BOX)
    basis.refine(INNER_BOX)
    return basis


class TestTHBSpline:
    """Tests for truncated hierarchical bases."""

    def test_partition_of_unity(self, thb, sample_points_2d):
        sums = np.asarray(thb.eval(sample_points_2d).sum(axis=1)).ravel()
        assert_allclose(sums, 1.0, atol=1e-12)

    def test_derivatives_sum_to_zero(self, thb, sample_points_2d):
        for point in sample_points_2d.T:
            _, ders = thb.eval_all_ders(point, 2)
            assert ders[1].shape[0] == 2
            assert ders[2].shape[0] == len(derivative_multi_indices(2, 2))
            assert_allclose(ders[1].sum(axis=1), 0.0, atol=1e-9)
            assert_allclose(ders[2].sum(axis=1), 0.0, atol=1e-7)

    def test_non_negative(self, thb, sample_points_2d):
        values = thb.eval(sample_points_2d).toarray()
        assert np.all(values >= -1e-14)

    def test_1d_partition_of_unity(self, tbasis_1d):
        basis = THBSplineBasis(tbasis_1d)
        basis.refine(np.array([[0.0, 0.5]]))
        basis.refine(np.array([[0.0, 0.2]]))
        points = np.linspace(0.0, 1.0, 33)[None, :]

        sums = np.asarray(basis.eval(points).sum(axis=1)).ravel()
        assert_allclose(sums, 1.0, atol=1e-12)

    def test_cubic_partition_of_unity(self):
        basis = THBSplineBasis(make_tensor_basis([3, 3], [4, 4]))
        basis.refine(np.array([[0.0, 0.5], [0.0, 0.75]]))
        grid = np.linspace(0.0, 1.0, 9)
        X, Y = np.meshgrid(grid, grid)

        sums = np.asarray(basis.eval(np.vstack([X.ravel(), Y.ravel()])).sum(axis=1)).ravel()
        assert_allclose(sums, 1.0, atol=1e-12)

    def test_eval_all_ders_matches_eval(self, thb):
        point = np.array([0.45, 0.55])
        indices, ders = thb.eval_all_ders(point, 0)
        values = thb.eval(point[:, None]).toarray().ravel()

        assert_allclose(values[indices], ders[0][0])
        mask = np.ones(thb.size(), dtype=bool)
        mask[indices] = False
        assert_allclose(values[mask], 0.0)

    def test_gradient_matches_finite_difference(self, thb):
        point = np.array([0.47, 0.52])
        h = 1e-6
        indices, ders = thb.eval_all_ders(point, 1)

        for k in range(2):
            step = np.zeros(2)
            step[k] = h
            plus = thb.eval((point + step)[:, None]).toarray().ravel()
            minus = thb.eval((point - step)[:, None]).toarray().ravel()
            assert_allclose(ders[1][k], ((plus - minus) / (2 * h))[indices], atol=1e-6)

    def test_eval_derivatives(self, thb):
        indices, second = thb.eval_derivatives((0.5, 0.5), 2)
        assert second.shape == (3, len(indices))


class TestTruncation:
    """Relation between THB- and HB-splines on the same structure."""

    def test_hb_is_not_partition_of_unity(self, tbasis_2d):
        hb, _ = refined_pair(tbasis_2d, [CENTER_BOX])
        total = np.asarray(hb.eval(np.array([[0.5], [0.5]])).sum(axis=1)).item()

        assert total > 1.0 + 1e-3
        # Outside the refined region the sum is still 1
        assert_almost_equal(hb.eval(np.array([[0.05], [0.95]])).sum(), 1.0)

    def test_same_structure(self, tbasis_2d):
        hb, thb = refined_pair(tbasis_2d, [CENTER_BOX, INNER_BOX])

        assert hb.size() == thb.size()
        for a, b in zip(hb.xmatrix, thb.xmatrix):
            assert np.array_equal(a, b)

    def test_truncation_matrix_links_evaluations(self, tbasis_2d, sample_points_2d):
        """THB functions are HB functions combined by the truncation matrix."""
        hb, thb = refined_pair(tbasis_2d, [CENTER_BOX, INNER_BOX])
        K = thb.truncation_matrix()

        assert_allclose(thb.eval(sample_points_2d).toarray(),
                        (hb.eval(sample_points_2d) @ K).toarray(), atol=1e-12)

    def test_truncation_matrix_is_unit_lower_triangular(self, tbasis_2d):
        _, thb = refined_pair(tbasis_2d, [CENTER_BOX, INNER_BOX])
        K = thb.truncation_matrix().toarray()

        assert_allclose(np.diag(K), 1.0)
        assert_allclose(np.triu(K, 1), 0.0)
        # Some coarse functions are actually truncated
        assert np.count_nonzero(np.tril(K, -1)) > 0

    def test_truncated_functions_are_smaller(self, tbasis_2d, sample_points_2d):
        hb, thb = refined_pair(tbasis_2d, [CENTER_BOX])
        H = hb.eval(sample_points_2d).toarray()
        T = thb.eval(sample_points_2d).toarray()

        assert np.all(T <= H + 1e-12)
        # Finest functions are never truncated
        assert_allclose(T[:, 36:], H[:, 36:])

    def test_unrefined_bases_coincide(self, tbasis_2d, sample_points_2d):
        hb, thb = refined_pair(tbasis_2d, [])

        assert_allclose(thb.eval(sample_points_2d).toarray(),
                        hb.eval(sample_points_2d).toarray())
        assert_allclose(thb.truncation_matrix().toarray(), np.eye(36))

    def test_cache_follows_refinement(self, tbasis_2d, sample_points_2d):
        basis = THBSplineBasis(tbasis_2d)
        basis.refine(CENTER_BOX)
        basis.eval(sample_points_2d)
        basis.refine(INNER_BOX)

        values = basis.eval(sample_points_2d)
        assert values.shape == (sample_points_2d.shape[1], basis.size())
        assert_allclose(np.asarray(values.sum(axis=1)).ravel(), 1.0, atol=1e-12)
