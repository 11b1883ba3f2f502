"""
Tests for coefficient transfer between versions of a hierarchical basis.

A spline must not change when its basis is refined and its coefficients
are transferred.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose
from scipy import sparse

from htbIGA.config import HSplineOptions
from htbIGA.hierarchical import HBSplineBasis, THBSplineBasis, hb_resolve
from htbIGA.hierarchical.transfer import fine_representation, level_maps

CENTER_BOX = np.array([[0.25, 0.75], [0.25, 0.75]])
INNER_BOX = np.array([[0.4, 0.6], [0.4, 0.6]])


@pytest.fixture(params=[HBSplineBasis, THBSplineBasis], ids=["HB", "THB"])
def variant(request):
    return request.param


@pytest.fixture(params=[True, False], ids=["direct", "projection"])
def direct(request):
    return request.param


@pytest.fixture
def basis(variant, direct, tbasis_2d):
    return variant(tbasis_2d, options=HSplineOptions(direct_transfer=direct))


def random_coefs(basis, seed=0):
    return np.random.default_rng(seed).standard_normal(basis.size())


class TestSplinePreservation:

    def test_refine(self, basis, sample_points_2d, loose_tolerance):
        coefs = random_coefs(basis)
        before = basis.eval(sample_points_2d) @ coefs

        coefs = basis.refine_with_coefs(coefs, CENTER_BOX)
        assert coefs.shape == (basis.size(),)
        assert_allclose(basis.eval(sample_points_2d) @ coefs, before, atol=loose_tolerance)

        coefs = basis.refine_with_coefs(coefs, INNER_BOX)
        assert basis.max_level == 2
        assert_allclose(basis.eval(sample_points_2d) @ coefs, before, atol=loose_tolerance)

    def test_refine_with_extension(self, basis, sample_points_2d, loose_tolerance):
        coefs = random_coefs(basis, seed=1)
        before = basis.eval(sample_points_2d) @ coefs

        coefs = basis.refine_with_coefs(coefs, np.array([[0.0, 0.3], [0.6, 0.7]]), ref_ext=1)
        assert_allclose(basis.eval(sample_points_2d) @ coefs, before, atol=loose_tolerance)

    def test_refine_elements(self, basis, sample_points_2d, loose_tolerance):
        basis.refine(CENTER_BOX)
        coefs = random_coefs(basis, seed=2)
        before = basis.eval(sample_points_2d) @ coefs

        coefs = basis.refine_elements_with_coefs(coefs, [[2, 0, 0, 4, 4], [2, 6, 6, 10, 10]])
        assert_allclose(basis.eval(sample_points_2d) @ coefs, before, atol=loose_tolerance)

    def test_uniform_refine(self, basis, sample_points_2d, loose_tolerance):
        basis.refine(CENTER_BOX)
        coefs = random_coefs(basis, seed=3)
        before = basis.eval(sample_points_2d) @ coefs

        coefs = basis.uniform_refine_with_coefs(coefs)
        assert basis.size() == 132
        assert_allclose(basis.eval(sample_points_2d) @ coefs, before, atol=loose_tolerance)

    def test_increase_multiplicity(self, basis, sample_points_2d, loose_tolerance):
        basis.refine(CENTER_BOX)
        coefs = random_coefs(basis, seed=4)
        before = basis.eval(sample_points_2d) @ coefs

        old = basis.state()
        basis.increase_multiplicity(0, 0, [0.5])
        coefs = basis.transfer(old) @ coefs
        assert_allclose(basis.eval(sample_points_2d) @ coefs, before, atol=loose_tolerance)

    def test_make_compressed(self, basis, sample_points_2d, loose_tolerance):
        basis.refine_elements([1, 0, 0, 8, 8])
        basis.refine_elements([2, 0, 0, 4, 4])
        coefs = random_coefs(basis, seed=5)
        before = basis.eval(sample_points_2d) @ coefs

        old = basis.state()
        basis.make_compressed()
        M = basis.transfer(old)

        assert_allclose(M.toarray(), np.eye(basis.size()), atol=loose_tolerance)
        assert_allclose(basis.eval(sample_points_2d) @ (M @ coefs), before, atol=loose_tolerance)

    def test_vector_valued_coefficients(self, basis, sample_points_2d, loose_tolerance):
        coefs = np.random.default_rng(6).standard_normal((basis.size(), 3))
        before = basis.eval(sample_points_2d) @ coefs

        coefs = basis.refine_with_coefs(coefs, CENTER_BOX)
        assert coefs.shape == (basis.size(), 3)
        assert_allclose(basis.eval(sample_points_2d) @ coefs, before, atol=loose_tolerance)

    def test_1d(self, variant, direct, tbasis_1d, loose_tolerance):
        basis = variant(tbasis_1d, options=HSplineOptions(direct_transfer=direct))
        points = np.linspace(0.0, 1.0, 41)[None, :]
        coefs = random_coefs(basis, seed=7)
        before = basis.eval(points) @ coefs

        coefs = basis.refine_with_coefs(coefs, np.array([[0.25, 0.5]]))
        coefs = basis.refine_with_coefs(coefs, np.array([[0.3, 0.4]]))
        assert basis.max_level == 2
        assert_allclose(basis.eval(points) @ coefs, before, atol=loose_tolerance)

    def test_wrong_number_of_coefficients(self, basis):
        with pytest.raises(ValueError):
            basis.refine_with_coefs(np.zeros(basis.size() + 1), CENTER_BOX)


class TestTransferMatrices:

    def test_unchanged_basis_gives_identity(self, basis, loose_tolerance):
        basis.refine(CENTER_BOX)
        M = basis.transfer(basis.state())

        assert M.shape == (40, 40)
        assert_allclose(M.toarray(), np.eye(40), atol=loose_tolerance)

    def test_direct_matches_projection(self, variant, tbasis_2d, loose_tolerance):
        basis = variant(tbasis_2d)
        basis.refine(CENTER_BOX)
        old = basis.state()
        basis.refine(INNER_BOX)

        direct = basis.transfer(old, direct=True)
        projected = basis.transfer(old, direct=False)

        assert direct.shape == (basis.size(), old.size)
        assert_allclose(direct.toarray(), projected.toarray(), atol=loose_tolerance)

    def test_hb_transfer_keeps_unrefined_functions(self, tbasis_2d):
        """Functions outside the new box map one to one."""
        basis = HBSplineBasis(tbasis_2d)
        old = basis.state()
        basis.refine(CENTER_BOX)
        M = basis.transfer(old).toarray()

        assert_allclose(M[:36, :], np.eye(36))
        assert np.count_nonzero(M[36:, :]) == 0

    def test_fine_representation_shape(self, variant, tbasis_2d):
        basis = variant(tbasis_2d)
        basis.refine(CENTER_BOX)
        state = basis.state()

        assert fine_representation(state, variant is THBSplineBasis).shape == (100, 40)
        target = basis.tensor_level(2)
        assert fine_representation(state, target=target).shape == (target.size, 40)

    def test_level_maps(self, tbasis_2d):
        basis = HBSplineBasis(tbasis_2d)
        old = basis.state()
        basis.uniform_refine()
        maps = level_maps(old, basis.state())

        assert len(maps) == basis.num_levels
        assert maps[0].shape == (100, 36)

    def test_hb_resolve_rejects_foreign_functions(self, tbasis_2d):
        """Level-1 functions of an unrefined basis cannot be resolved."""
        basis = HBSplineBasis(tbasis_2d, nlevels=2)
        state = basis.state()
        parts = [None, sparse.identity(basis.tensor_level(1).size, format='csr')]

        with pytest.raises(ValueError):
            hb_resolve(state, parts)

    def test_hb_resolve_carries_to_selected_functions(self, tbasis_2d, tolerance):
        basis = HBSplineBasis(tbasis_2d)
        basis.refine(CENTER_BOX)
        state = basis.state()
        level0 = sparse.identity(36, format='csr')

        coefs = hb_resolve(state, [level0]).toarray()

        assert_allclose(coefs[:36], np.eye(36), atol=tolerance)
        assert_allclose(coefs[36:], 0.0, atol=tolerance)
