"""
Domain tree for hierarchical spline spaces.

The tree is a binary space partition (a kd-tree, the d-dimensional
generalization of a quadtree) of the index domain. Every leaf is an
axis-aligned half-open box [low, high) tagged with the level at which
refinement terminates there. All coordinates are stored in the cell
indices of the *index level*, the finest resolution the tree has seen: a
box given in level-l cell coordinates is scaled by 2**(index_level - l).

Nodes live in an arena (a list addressed by integer id) and reference
their parent and children by id. Removed nodes are recycled through a
free list.

Invariants:
- The leaves partition the domain; every cell belongs to exactly one leaf.
- Leaf levels never decrease under insertion.
- Sibling leaves with equal levels are merged, so the tree stays compact
  and re-inserting a box is a no-op.
"""

import copy
import logging

import numpy as np
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from ..geometry.bspline import TensorBSplineBasis

logger = logging.getLogger(__name__)

Box = Tuple[Tuple[int, ...], Tuple[int, ...]]


@dataclass
class _Node:
    low: List[int]
    high: List[int]
    level: int = 0
    parent: int = -1
    left: int = -1
    right: int = -1
    axis: int = -1
    pos: int = 0

    @property
    def is_leaf(self) -> bool:
        return self.left < 0


@dataclass
class InsertedBox:
    """A box as it was inserted: level and corners in level coordinates."""
    level: int
    low: Tuple[int, ...]
    high: Tuple[int, ...]

    def as_row(self) -> List[int]:
        """Row of the (level, low..., high...) encoding used by refine_elements."""
        return [self.level, *self.low, *self.high]


class DomainTree:
    """
    Hierarchical partition of a d-dimensional index domain.

    Parameters:
        upper: Number of level-0 cells per direction
        index_level: Initial resolution level of the stored coordinates
    """

    ROOT = 0

    def __init__(self, upper: Sequence[int], index_level: int = 0):
        if len(upper) == 0 or any(int(u) < 1 for u in upper):
            raise ValueError(f"Invalid number of cells per direction: {tuple(upper)}")
        if index_level < 0:
            raise ValueError(f"Index level must be non-negative, got {index_level}")
        self._dim = len(upper)
        self._index_level = index_level
        self._upper = [int(u) << index_level for u in upper]
        self._nodes: List[Optional[_Node]] = [_Node(low=[0] * self._dim, high=list(self._upper))]
        self._free: List[int] = []
        self._max_ins_level = 0
        self._history: List[InsertedBox] = []

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def index_level(self) -> int:
        """Level whose cells are the unit of the stored coordinates."""
        return self._index_level

    @property
    def upper(self) -> Tuple[int, ...]:
        """Upper corner of the domain in index-level coordinates."""
        return tuple(self._upper)

    @property
    def max_ins_level(self) -> int:
        """Highest level any box was inserted at."""
        return self._max_ins_level

    def size(self) -> int:
        """Number of nodes in the tree."""
        return len(self._nodes) - len(self._free)

    def leaf_size(self) -> int:
        return sum(1 for _ in self.leaves())

    def cells(self, level: int) -> Tuple[int, ...]:
        """Number of level cells per direction."""
        return tuple(self._scale_coord(u, self._index_level, level) for u in self._upper)

    def num_breaks(self, level: int, direction: int) -> int:
        """Number of distinct knot values in a direction of a level."""
        return self.cells(level)[direction] + 1

    # ------------------------------------------------------------------
    # Coordinates

    @staticmethod
    def _scale_coord(x: int, from_level: int, to_level: int, ceil: bool = False) -> int:
        shift = to_level - from_level
        if shift >= 0:
            return x << shift
        if ceil:
            return -((-x) >> -shift)
        return x >> -shift

    def _to_index_box(self, low: Sequence[int], high: Sequence[int],
                      level: int) -> Tuple[List[int], List[int]]:
        """Box in level coordinates to the smallest covering index box."""
        lo = [self._scale_coord(int(x), level, self._index_level) for x in low]
        hi = [self._scale_coord(int(x), level, self._index_level, ceil=True) for x in high]
        return lo, hi

    def check_box(self, low: Sequence[int], high: Sequence[int], level: int) -> None:
        """Raise ValueError unless [low, high) is a non-empty box of level cells."""
        if level < 0:
            raise ValueError(f"Level must be non-negative, got {level}")
        if len(low) != self._dim or len(high) != self._dim:
            raise ValueError(
                f"Box corners must have {self._dim} coordinates, got {len(low)} and {len(high)}"
            )
        cells = self.cells(level)
        for k in range(self._dim):
            if not 0 <= low[k] < high[k] <= cells[k]:
                raise ValueError(
                    f"Invalid box [{tuple(low)}, {tuple(high)}) at level {level} "
                    f"(direction {k} has {cells[k]} cells)"
                )

    def raise_index_level(self, level: int) -> None:
        """Refine the coordinate resolution so that level cells are representable."""
        shift = level - self._index_level
        if shift <= 0:
            return
        for node in self._nodes:
            if node is None:
                continue
            node.low = [x << shift for x in node.low]
            node.high = [x << shift for x in node.high]
            node.pos <<= shift
        self._upper = [x << shift for x in self._upper]
        self._index_level = level

    def scale(self, factors: Sequence[int]) -> None:
        """
        Multiply all coordinates per direction, e.g. after inserting
        factor - 1 knots in every span of every level.
        """
        if len(factors) != self._dim:
            raise ValueError(f"Need {self._dim} scale factors, got {len(factors)}")
        for node in self._nodes:
            if node is None:
                continue
            node.low = [x * f for x, f in zip(node.low, factors)]
            node.high = [x * f for x, f in zip(node.high, factors)]
            if not node.is_leaf:
                node.pos *= factors[node.axis]
        self._upper = [x * f for x, f in zip(self._upper, factors)]
        for box in self._history:
            box.low = tuple(x * f for x, f in zip(box.low, factors))
            box.high = tuple(x * f for x, f in zip(box.high, factors))

    def decrement_levels(self) -> None:
        """Shift every level down by one; level 0 must not be present."""
        if any(level == 0 for _, _, level in self.leaves()) or self._index_level == 0:
            raise ValueError("Cannot drop level 0 while the tree still uses it")
        for node in self._nodes:
            if node is not None:
                node.level -= 1
        self._index_level -= 1
        self._max_ins_level -= 1
        self._history = [InsertedBox(b.level - 1, b.low, b.high)
                         for b in self._history if b.level > 0]

    # ------------------------------------------------------------------
    # Insertion

    def insert_box(self, low: Sequence[int], high: Sequence[int], level: int) -> None:
        """
        Mark the box [low, high) given in level cell coordinates as
        belonging to (at least) level.

        Leaves of a coarser level overlapping the box are split along the
        box faces; finer leaves are left untouched.
        """
        low = [int(x) for x in low]
        high = [int(x) for x in high]
        self.check_box(low, high, level)
        self.raise_index_level(level)
        klow, khigh = self._to_index_box(low, high, level)

        stack = [self.ROOT]
        while stack:
            nid = stack.pop()
            node = self._nodes[nid]
            if not self._overlaps(node, klow, khigh):
                continue
            if node.is_leaf:
                if node.level >= level:
                    continue
                if self._contained(node, klow, khigh):
                    node.level = level
                    continue
                axis, pos = self._split_position(node, klow, khigh)
                self._split(nid, axis, pos)
            stack.extend((node.left, node.right))

        self._merge()
        self._max_ins_level = max(self._max_ins_level, level)
        self._history.append(InsertedBox(level, tuple(low), tuple(high)))
        logger.debug("Inserted box %s-%s at level %d, tree has %d nodes",
                     low, high, level, self.size())

    @staticmethod
    def _overlaps(node: _Node, low: Sequence[int], high: Sequence[int]) -> bool:
        return all(node.low[k] < high[k] and low[k] < node.high[k] for k in range(len(low)))

    @staticmethod
    def _contained(node: _Node, low: Sequence[int], high: Sequence[int]) -> bool:
        return all(low[k] <= node.low[k] and node.high[k] <= high[k] for k in range(len(low)))

    @staticmethod
    def _split_position(node: _Node, low: Sequence[int], high: Sequence[int]) -> Tuple[int, int]:
        for k in range(len(low)):
            if node.low[k] < low[k] < node.high[k]:
                return k, low[k]
            if node.low[k] < high[k] < node.high[k]:
                return k, high[k]
        raise AssertionError("box neither contains nor cuts the node")

    def _allocate(self, node: _Node) -> int:
        if self._free:
            nid = self._free.pop()
            self._nodes[nid] = node
            return nid
        self._nodes.append(node)
        return len(self._nodes) - 1

    def _split(self, nid: int, axis: int, pos: int) -> None:
        node = self._nodes[nid]
        left_high = list(node.high)
        left_high[axis] = pos
        right_low = list(node.low)
        right_low[axis] = pos
        node.left = self._allocate(_Node(list(node.low), left_high, node.level, parent=nid))
        node.right = self._allocate(_Node(right_low, list(node.high), node.level, parent=nid))
        node.axis = axis
        node.pos = pos

    def _preorder(self) -> List[int]:
        order = []
        stack = [self.ROOT]
        while stack:
            nid = stack.pop()
            order.append(nid)
            node = self._nodes[nid]
            if not node.is_leaf:
                stack.extend((node.right, node.left))
        return order

    def _merge(self) -> None:
        for nid in reversed(self._preorder()):
            node = self._nodes[nid]
            if node.is_leaf:
                continue
            left, right = self._nodes[node.left], self._nodes[node.right]
            if left.is_leaf and right.is_leaf and left.level == right.level:
                node.level = left.level
                self._nodes[node.left] = None
                self._nodes[node.right] = None
                self._free.extend((node.left, node.right))
                node.left = node.right = node.axis = -1
                node.pos = 0

    # ------------------------------------------------------------------
    # Queries

    def _reduce_leaves(self, low: Sequence[int], high: Sequence[int], level: int,
                       reduce: Callable[[int, int], int]) -> Optional[int]:
        klow, khigh = self._to_index_box(low, high, level)
        result = None
        stack = [self.ROOT]
        while stack:
            node = self._nodes[stack.pop()]
            if not self._overlaps(node, klow, khigh):
                continue
            if node.is_leaf:
                result = node.level if result is None else reduce(result, node.level)
            else:
                stack.extend((node.left, node.right))
        return result

    def query3(self, low: Sequence[int], high: Sequence[int], level: int) -> int:
        """
        Lowest leaf level over the box [low, high) given in level
        coordinates, capped at level.

        This is the finest level whose region fully contains the box.
        """
        self.check_box(low, high, level)
        return min(self._reduce_leaves(low, high, level, min), level)

    def query4(self, low: Sequence[int], high: Sequence[int], level: int) -> int:
        """Highest leaf level over the box [low, high) given in level coordinates."""
        self.check_box(low, high, level)
        return self._reduce_leaves(low, high, level, max)

    def level_at(self, cell: Sequence[int]) -> int:
        """Level of the leaf owning an index-level cell."""
        node = self._nodes[self.ROOT]
        while not node.is_leaf:
            node = self._nodes[node.left if cell[node.axis] < node.pos else node.right]
        return node.level

    def leaves(self) -> Iterator[Tuple[Tuple[int, ...], Tuple[int, ...], int]]:
        """Leaves in depth-first order as (low, high, level), index coordinates."""
        for nid in self._preorder():
            node = self._nodes[nid]
            if node.is_leaf:
                yield tuple(node.low), tuple(node.high), node.level

    def boxes(self) -> List[InsertedBox]:
        """The inserted boxes in insertion order; re-inserting them rebuilds the tree."""
        return [InsertedBox(b.level, b.low, b.high) for b in self._history]

    def level_grid(self, level: int) -> np.ndarray:
        """
        Lowest leaf level over each level cell, as an array of shape
        cells(level). This is query3 for every single cell at once.
        """
        shape = self.cells(level)
        grid = np.full(shape, np.iinfo(np.int64).max, dtype=np.int64)
        for low, high, lvl in self.leaves():
            index = tuple(
                slice(self._scale_coord(lo, self._index_level, level),
                      self._scale_coord(hi, self._index_level, level, ceil=True))
                for lo, hi in zip(low, high)
            )
            grid[index] = np.minimum(grid[index], lvl)
        return grid

    def support_min_levels(self, tbasis: 'TensorBSplineBasis', level: int) -> np.ndarray:
        """
        Lowest leaf level over the support of every function of a level
        basis, indexed by flat tensor index.
        """
        grid = self.level_grid(level)
        if grid.shape != tbasis.n_elements_per_dir:
            raise ValueError(
                f"Basis with {tbasis.n_elements_per_dir} elements does not match "
                f"the {grid.shape} cells of level {level}"
            )
        for k, kv in enumerate(tbasis.knot_vectors):
            low, high = kv.element_supports()
            grid = np.stack(
                [grid.take(np.arange(lo, hi), axis=k).min(axis=k) for lo, hi in zip(low, high)],
                axis=k,
            )
        return grid.ravel(order='F')

    def copy(self) -> 'DomainTree':
        return copy.deepcopy(self)
