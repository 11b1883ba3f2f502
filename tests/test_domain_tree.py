"""
Tests for the domain tree of hierarchical bases.
"""

import numpy as np
import pytest
from numpy.testing import assert_array_equal

from htbIGA.hierarchical.domain_tree import DomainTree
from conftest import make_tensor_basis


def leaf_volume(tree):
    return sum(int(np.prod(np.subtract(high, low))) for low, high, _ in tree.leaves())


@pytest.fixture
def refined_tree():
    """4x4 level-0 cells with [2, 6)^2 inserted at level 1."""
    tree = DomainTree((4, 4))
    tree.insert_box((2, 2), (6, 6), 1)
    return tree


class TestDomainTreeConstruction:

    def test_initial_tree(self):
        tree = DomainTree((4, 3))

        assert tree.size() == 1
        assert tree.leaf_size() == 1
        assert tree.max_ins_level == 0
        assert tree.index_level == 0
        assert tree.upper == (4, 3)
        assert list(tree.leaves()) == [((0, 0), (4, 3), 0)]

    def test_initial_index_level(self):
        tree = DomainTree((4, 3), index_level=2)
        assert tree.upper == (16, 12)
        assert tree.cells(0) == (4, 3)

    @pytest.mark.parametrize("upper", [(), (0, 4), (-1,)])
    def test_invalid_upper(self, upper):
        with pytest.raises(ValueError):
            DomainTree(upper)


class TestInsertBox:

    def test_insert_raises_index_level(self, refined_tree):
        assert refined_tree.index_level == 1
        assert refined_tree.upper == (8, 8)
        assert refined_tree.max_ins_level == 1

    def test_leaves_partition_domain(self, refined_tree):
        assert leaf_volume(refined_tree) == 64
        inside = [leaf for leaf in refined_tree.leaves() if leaf[2] == 1]
        assert inside == [((2, 2), (6, 6), 1)]

    def test_queries(self, refined_tree):
        assert refined_tree.query3((2, 2), (6, 6), 1) == 1
        assert refined_tree.query3((0, 0), (8, 8), 1) == 0
        assert refined_tree.query4((0, 0), (8, 8), 1) == 1
        assert refined_tree.query4((0, 0), (2, 8), 1) == 0
        # Box given in level-0 coordinates; query3 is clamped to the query level
        assert refined_tree.query3((1, 1), (3, 3), 0) == 0
        assert refined_tree.query4((1, 1), (3, 3), 0) == 1

    def test_level_at_is_closed_open(self, refined_tree):
        assert refined_tree.level_at((3, 3)) == 1
        assert refined_tree.level_at((2, 2)) == 1
        assert refined_tree.level_at((6, 6)) == 0
        assert refined_tree.level_at((0, 0)) == 0

    def test_reinsertion_is_idempotent(self, refined_tree):
        leaves = list(refined_tree.leaves())
        size = refined_tree.size()

        refined_tree.insert_box((2, 2), (6, 6), 1)

        assert list(refined_tree.leaves()) == leaves
        assert refined_tree.size() == size

    def test_finer_leaves_are_never_lowered(self):
        tree = DomainTree((4, 4))
        tree.insert_box((0, 0), (4, 4), 2)
        tree.insert_box((0, 0), (8, 8), 1)

        assert tree.level_at((0, 0)) == 2
        assert tree.level_at((15, 15)) == 1
        assert tree.query3((0, 0), (16, 16), 2) == 1

    def test_equal_siblings_are_merged(self, refined_tree):
        refined_tree.insert_box((0, 0), (8, 8), 1)

        assert refined_tree.size() == 1
        assert list(refined_tree.leaves()) == [((0, 0), (8, 8), 1)]

    def test_free_list_reuses_nodes(self):
        tree = DomainTree((4,))
        tree.insert_box((1,), (2,), 1)
        n_nodes = len(tree._nodes)
        tree.insert_box((0,), (8,), 1)
        tree.insert_box((1,), (2,), 2)

        assert len(tree._nodes) == n_nodes

    @pytest.mark.parametrize("low, high, level", [
        ((2, 2), (2, 4), 1),     # empty in direction 0
        ((0, 0), (9, 8), 1),     # outside the domain
        ((0,), (4,), 1),         # wrong arity
        ((0, 0), (2, 2), -1),    # negative level
    ])
    def test_invalid_boxes(self, refined_tree, low, high, level):
        with pytest.raises(ValueError):
            refined_tree.insert_box(low, high, level)

    def test_num_breaks(self, refined_tree):
        assert refined_tree.num_breaks(0, 0) == 5
        assert refined_tree.num_breaks(1, 1) == 9
        assert refined_tree.num_breaks(2, 0) == 17

    def test_boxes_history(self, refined_tree):
        refined_tree.insert_box((0, 0), (1, 1), 2)
        boxes = refined_tree.boxes()

        assert [b.as_row() for b in boxes] == [[1, 2, 2, 6, 6], [2, 0, 0, 1, 1]]

    def test_rebuild_from_boxes(self, refined_tree):
        refined_tree.insert_box((0, 10), (3, 16), 2)
        rebuilt = DomainTree((4, 4))
        for box in refined_tree.boxes():
            rebuilt.insert_box(box.low, box.high, box.level)

        assert list(rebuilt.leaves()) == list(refined_tree.leaves())


class TestTreeTransformations:

    def test_scale(self, refined_tree):
        refined_tree.scale((2, 3))

        assert refined_tree.upper == (16, 24)
        assert leaf_volume(refined_tree) == 16 * 24
        assert refined_tree.level_at((4, 6)) == 1
        assert refined_tree.level_at((3, 6)) == 0
        assert refined_tree.boxes()[0].as_row() == [1, 4, 6, 12, 18]

    def test_decrement_levels(self):
        tree = DomainTree((2, 2))
        tree.insert_box((0, 0), (4, 4), 1)
        tree.insert_box((0, 0), (2, 2), 2)
        tree.decrement_levels()

        assert tree.index_level == 1
        assert tree.max_ins_level == 1
        assert tree.level_at((0, 0)) == 1
        assert tree.level_at((3, 3)) == 0
        assert [b.level for b in tree.boxes()] == [0, 1]

    def test_decrement_requires_empty_level_zero(self, refined_tree):
        with pytest.raises(ValueError):
            refined_tree.decrement_levels()

    def test_copy_is_independent(self, refined_tree):
        clone = refined_tree.copy()
        clone.insert_box((0, 0), (1, 1), 2)

        assert refined_tree.max_ins_level == 1
        assert clone.max_ins_level == 2
        assert clone.leaf_size() > refined_tree.leaf_size()


class TestSupportLevels:

    def test_level_grid(self, refined_tree):
        expected = np.zeros((4, 4), dtype=int)
        expected[1:3, 1:3] = 1

        assert_array_equal(refined_tree.level_grid(0), expected)
        assert refined_tree.level_grid(1).shape == (8, 8)
        assert refined_tree.level_grid(2).shape == (16, 16)

    def test_support_min_levels(self, refined_tree):
        level1 = make_tensor_basis([2, 2], [8, 8])
        min_levels = refined_tree.support_min_levels(level1, 1)

        assert min_levels.shape == (level1.size,)
        selected = np.flatnonzero(min_levels == 1)
        expected = sorted(level1.flat_index((i, j)) for i in (4, 5) for j in (4, 5))
        assert_array_equal(selected, expected)

    def test_support_min_levels_matches_query3(self, refined_tree):
        level1 = make_tensor_basis([2, 2], [8, 8])
        min_levels = refined_tree.support_min_levels(level1, 1)

        for flat in range(level1.size):
            low, high = level1.element_support(flat)
            assert min_levels[flat] == refined_tree.query3(low, high, 1)

    def test_support_min_levels_shape_mismatch(self, refined_tree, tbasis_2d):
        with pytest.raises(ValueError):
            refined_tree.support_min_levels(tbasis_2d, 1)
