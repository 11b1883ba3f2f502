"""
Hierarchical tensor-product B-spline bases.

A hierarchical basis is built from a sequence of nested tensor-product
B-spline bases (one per level, level l+1 the dyadic refinement of level
l) and a domain tree that records up to which level each part of the
parameter domain is refined.

Level l's region Omega^l is the set of tree cells of level >= l. A tensor
function of level l is *selected* iff its support lies in Omega^l but not
in Omega^{l+1}, i.e. the lowest tree level over its support is exactly l.
The selected flat tensor indices of every level form the characteristic
matrices; global indices run level by level:

    global = offsets[level] + position in xmatrix[level]

HTensorBasis implements everything that does not depend on truncation.
Variants (HBSplineBasis, THBSplineBasis) supply the evaluation and a
TransferStrategy.
"""

import dataclasses
import itertools
import logging
from abc import ABC, abstractmethod

import numpy as np
from scipy import sparse
from typing import Iterator, List, Optional, Sequence, Tuple, Union

from ..config import HSplineOptions
from ..geometry.bspline import TensorBSplineBasis, derivative_multi_indices
from ..discretization.knot_vector import KnotVector
from .domain_tree import DomainTree
from .transfer import HierarchyState, TransferStrategy, fine_representation, level_maps

logger = logging.getLogger(__name__)

# Boundary side names: (direction, side) with side 0 = lower, 1 = upper
SIDES = {
    'left': (0, 0), 'right': (0, 1),
    'bottom': (1, 0), 'top': (1, 1),
    'front': (2, 0), 'back': (2, 1),
}

Side = Union[str, Tuple[int, int]]


class HTensorBasis(ABC):
    """
    Hierarchical basis over a tensor-product B-spline basis.

    Parameters:
        tbasis: Tensor basis of level 0
        nlevels: Levels instantiated up front (default from options)
        options: HSplineOptions

    Raises:
        ValueError: if nlevels < 1
        TypeError: when instantiated without a transfer strategy (abstract)
    """

    def __init__(self, tbasis: TensorBSplineBasis, nlevels: Optional[int] = None,
                 options: Optional[HSplineOptions] = None):
        self.options = options if options is not None else HSplineOptions()
        if nlevels is None:
            nlevels = self.options.num_levels
        if nlevels < 1:
            raise ValueError(f"Number of levels must be at least 1, got {nlevels}")

        self._bases: List[TensorBSplineBasis] = [tbasis.copy()]
        self._tree = DomainTree(tbasis.n_elements_per_dir)
        self._xmatrix: List[np.ndarray] = []
        self._min_levels: List[np.ndarray] = []
        self._offsets = np.zeros(1, dtype=np.int64)
        self._base_level = 0
        self._strategy = self._make_transfer_strategy()

        self.ensure_level(nlevels - 1)
        self.update_structure()

    @classmethod
    def from_index_boxes(cls, tbasis: TensorBSplineBasis, boxes,
                         nlevels: Optional[int] = None,
                         options: Optional[HSplineOptions] = None) -> 'HTensorBasis':
        """
        Basis refined by index boxes: a flat sequence of
        (level, low_0..low_{d-1}, high_0..high_{d-1}) records or an
        (n, 2d+1) array.
        """
        basis = cls(tbasis, nlevels, options)
        for level, low, high in basis._parse_index_boxes(boxes):
            basis.ensure_level(level)
            basis._tree.insert_box(low, high, level)
        basis.update_structure()
        return basis

    @classmethod
    def from_boxes(cls, tbasis: TensorBSplineBasis, boxes: np.ndarray,
                   nlevels: Optional[int] = None, levels: Optional[Sequence[int]] = None,
                   options: Optional[HSplineOptions] = None) -> 'HTensorBasis':
        """
        Basis refined by physical boxes given as a (dim, 2n) array, two
        consecutive columns per box.

        Without levels each box goes one level finer than the coarsest
        level covering it; otherwise box k goes to levels[k].
        """
        basis = cls(tbasis, nlevels, options)
        corners = basis._parse_physical_boxes(boxes)
        if levels is None:
            for lower, upper in corners:
                basis._insert_physical_box(lower, upper, 0)
        else:
            if len(levels) != len(corners):
                raise ValueError(f"Got {len(levels)} levels for {len(corners)} boxes")
            if any(level < 0 for level in levels):
                raise ValueError(f"Levels must be non-negative, got {list(levels)}")
            for (lower, upper), level in zip(corners, levels):
                basis.ensure_level(level)
                low, high = basis._physical_to_index(lower, upper, level)
                basis._tree.insert_box(low, high, level)
        basis.update_structure()
        return basis

    @abstractmethod
    def _make_transfer_strategy(self) -> TransferStrategy:
        """Coefficient transfer used by this variant."""

    @abstractmethod
    def eval_all_ders(self, point: Sequence[float],
                      n: int = 0) -> Tuple[np.ndarray, List[np.ndarray]]:
        """
        Values and derivatives up to order n at a point.

        Returns:
            (indices, ders) with the sorted active global indices and
            ders[k] of shape (len(derivative_multi_indices(dim, k)), n_active)
        """

    @property
    def truncated(self) -> bool:
        return False

    @property
    def transfer_strategy(self) -> TransferStrategy:
        return self._strategy

    # ------------------------------------------------------------------
    # Structure

    def update_structure(self) -> None:
        """Recompute characteristic matrices and offsets from the tree."""
        max_level = self._tree.max_ins_level
        self._xmatrix = []
        self._min_levels = []
        for lvl, tbasis in enumerate(self._bases):
            if lvl > max_level:
                self._xmatrix.append(np.zeros(0, dtype=np.int64))
                continue
            min_levels = self._tree.support_min_levels(tbasis, lvl)
            self._min_levels.append(min_levels)
            self._xmatrix.append(np.flatnonzero(min_levels == lvl).astype(np.int64))
        sizes = [len(x) for x in self._xmatrix]
        self._offsets = np.concatenate([[0], np.cumsum(sizes)]).astype(np.int64)
        self._invalidate()
        logger.debug("Updated structure: %d functions on %d levels %s",
                     self.size(), max_level + 1, sizes[:max_level + 1])

    def _invalidate(self) -> None:
        """Drop cached data that depends on the structure."""

    def ensure_level(self, level: int) -> None:
        """Instantiate the tensor bases up to level (no-op if present)."""
        if level < 0:
            raise IndexError(f"Level must be non-negative, got {level}")
        while len(self._bases) <= level:
            self._bases.append(self._bases[-1].refine_dyadic())
            self._xmatrix.append(np.zeros(0, dtype=np.int64))
            self._offsets = np.append(self._offsets, self._offsets[-1])
            logger.debug("Created level %d: %r", len(self._bases) - 1, self._bases[-1])

    def state(self) -> HierarchyState:
        """Snapshot of the current structure, input to transfer."""
        return HierarchyState(
            bases=list(self._bases),
            tree=self._tree.copy(),
            xmatrix=[x.copy() for x in self._xmatrix],
            offsets=self._offsets.copy(),
            min_levels=[m.copy() for m in self._min_levels],
            base_level=self._base_level,
        )

    def _current_state(self) -> HierarchyState:
        # shares the live arrays; callers must not mutate it
        return HierarchyState(self._bases, self._tree, self._xmatrix, self._offsets,
                              self._min_levels, self._base_level)

    def representation(self, target: Optional[TensorBSplineBasis] = None) -> sparse.csr_matrix:
        """
        All functions as columns of tensor coefficients on the finest
        level (or on a nested finer target basis).
        """
        return fine_representation(self._current_state(), self.truncated, target)

    def transfer(self, old_state: HierarchyState,
                 direct: Optional[bool] = None) -> sparse.csr_matrix:
        """
        Matrix M with c_new = M @ c_old for coefficients of the basis
        described by old_state.
        """
        if direct is None:
            direct = self.options.direct_transfer
        new_state = self.state()
        if direct:
            return self._strategy.coarsening_direct(
                self, old_state, new_state, level_maps(old_state, new_state))
        return self._strategy.coarsening(self, old_state, new_state)

    def level_transfer_matrix(self, level: int) -> sparse.csr_matrix:
        """Tensor knot-insertion matrix from level to level + 1."""
        self._check_level(level)
        self.ensure_level(level + 1)
        return self._bases[level].refinement_matrix(self._bases[level + 1])

    def copy(self) -> 'HTensorBasis':
        other = self.__class__.__new__(self.__class__)
        other.__dict__.update(self.__dict__)
        other.options = dataclasses.replace(self.options)
        # tensor bases are never mutated in place, sharing them is safe
        other._bases = list(self._bases)
        other._tree = self._tree.copy()
        other._xmatrix = [x.copy() for x in self._xmatrix]
        other._min_levels = [m.copy() for m in self._min_levels]
        other._offsets = self._offsets.copy()
        other._invalidate()
        return other

    # ------------------------------------------------------------------
    # Sizes and levels

    def size(self) -> int:
        """Number of hierarchical basis functions."""
        return int(self._offsets[-1])

    @property
    def dim(self) -> int:
        return self._bases[0].dim

    def degree(self, direction: Optional[int] = None) -> Union[int, Tuple[int, ...]]:
        if direction is None:
            return self._bases[0].degrees
        return self._bases[0].degree(direction)

    def max_degree(self) -> int:
        return max(self._bases[0].degrees)

    def min_degree(self) -> int:
        return min(self._bases[0].degrees)

    @property
    def max_level(self) -> int:
        """Finest level carrying functions."""
        return self._tree.max_ins_level

    @property
    def num_levels(self) -> int:
        """Number of instantiated levels."""
        return len(self._bases)

    @property
    def bases(self) -> List[TensorBSplineBasis]:
        return list(self._bases)

    @property
    def tree(self) -> DomainTree:
        return self._tree

    @property
    def xmatrix(self) -> List[np.ndarray]:
        """Selected flat tensor indices per level (read-only views)."""
        return [x.view() for x in self._xmatrix]

    @property
    def offsets(self) -> np.ndarray:
        return self._offsets.copy()

    def tree_size(self) -> int:
        return self._tree.size()

    def _check_level(self, level: int) -> None:
        if not 0 <= level < len(self._bases):
            raise IndexError(f"Level {level} out of range [0, {len(self._bases)})")

    def _check_index(self, i: int) -> None:
        if not 0 <= i < self.size():
            raise IndexError(f"Basis function {i} out of range [0, {self.size()})")

    # ------------------------------------------------------------------
    # Index conversion

    def level_of(self, i: int) -> int:
        """Level of global function i."""
        self._check_index(i)
        return int(np.searchsorted(self._offsets, i, side='right') - 1)

    def flat_tensor_index_of(self, i: int, level: Optional[int] = None) -> int:
        """Flat tensor index of global function i within its level."""
        if level is None:
            level = self.level_of(i)
        else:
            self._check_index(i)
            self._check_level(level)
        local = i - self._offsets[level]
        if not 0 <= local < len(self._xmatrix[level]):
            raise IndexError(f"Basis function {i} is not on level {level}")
        return int(self._xmatrix[level][local])

    def tensor_index_of(self, i: int) -> np.ndarray:
        level = self.level_of(i)
        return self._bases[level].tensor_index(self.flat_tensor_index_of(i, level))

    def flat_tensor_index_to_hierarchical(self, index: int, level: int) -> int:
        """Global index of a tensor function of level, or -1 if it is not selected."""
        self._check_level(level)
        x = self._xmatrix[level]
        pos = int(np.searchsorted(x, index))
        if pos < len(x) and x[pos] == index:
            return int(self._offsets[level] + pos)
        return -1

    def flat_tensor_indices_to_hierarchical(self, indices: Sequence[int], level: int) -> np.ndarray:
        self._check_level(level)
        x = self._xmatrix[level]
        indices = np.asarray(indices, dtype=np.int64)
        pos = np.searchsorted(x, indices)
        found = pos < len(x)
        found[found] = x[pos[found]] == indices[found]
        return np.where(found, self._offsets[level] + pos, -1)

    # ------------------------------------------------------------------
    # Geometry of functions and points

    def support(self, i: Optional[int] = None) -> np.ndarray:
        """Parameter box (dim, 2) of function i, or of the domain."""
        if i is None:
            return self._bases[0].domain
        level = self.level_of(i)
        return self._bases[level].support(self.flat_tensor_index_of(i, level))

    def element_support(self, i: int) -> Tuple[np.ndarray, np.ndarray]:
        """Element index box [low, high) of function i on its own level."""
        level = self.level_of(i)
        return self._bases[level].element_support(self.flat_tensor_index_of(i, level))

    def anchors(self) -> np.ndarray:
        """Greville points of all functions, shape (dim, size)."""
        blocks = [self._bases[lvl].anchors()[:, x]
                  for lvl, x in enumerate(self._xmatrix) if len(x)]
        return np.hstack(blocks)

    def _index_cell(self, point: Sequence[float]) -> List[int]:
        if len(point) != self.dim:
            raise ValueError(f"Point has {len(point)} coordinates, basis dimension is {self.dim}")
        tbasis = self._bases[self._tree.index_level]
        return [tbasis.component(k).find_element(float(x)) for k, x in enumerate(point)]

    def get_level_at_point(self, point: Sequence[float]) -> int:
        """Level of the tree leaf containing point (cells closed-open, last closed)."""
        return self._tree.level_at(self._index_cell(point))

    def get_level_at_points(self, points: np.ndarray) -> np.ndarray:
        """Levels at the columns of a (dim, n) array of points."""
        points = np.atleast_2d(np.asarray(points, dtype=float))
        return np.array([self.get_level_at_point(p) for p in points.T], dtype=np.int64)

    def active(self, point: Sequence[float]) -> np.ndarray:
        """Sorted global indices of the functions whose support contains point."""
        top = min(self.get_level_at_point(point), self.max_level)
        result = []
        for lvl in range(top + 1):
            idx = self.flat_tensor_indices_to_hierarchical(self._bases[lvl].active(point), lvl)
            result.append(idx[idx >= 0])
        return np.concatenate(result)

    def num_active(self, point: Sequence[float]) -> int:
        return len(self.active(point))

    def eval(self, points: np.ndarray) -> sparse.csr_matrix:
        """
        Values of all functions at the columns of a (dim, n) point array.

        Returns:
            Sparse matrix of shape (n, size); eval(points) @ coefs
            evaluates a spline
        """
        points = np.atleast_2d(np.asarray(points, dtype=float))
        rows, cols, vals = [], [], []
        for k, point in enumerate(points.T):
            indices, ders = self.eval_all_ders(point, 0)
            rows.append(np.full(len(indices), k))
            cols.append(indices)
            vals.append(ders[0][0])
        return sparse.csr_matrix(
            (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
            shape=(points.shape[1], self.size()),
        )

    def eval_derivatives(self, point: Sequence[float], order: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        All partial derivatives of one total order at a point, rows ordered
        as derivative_multi_indices(dim, order).
        """
        indices, ders = self.eval_all_ders(point, order)
        return indices, ders[order]

    # ------------------------------------------------------------------
    # Elements and knots

    def _leaf_elements(self, low, high, level) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
        """Index-level boxes of the level cells inside one leaf."""
        step = 1 << max(self._tree.index_level - level, 0)
        cuts = []
        for lo, hi in zip(low, high):
            inner = np.arange((lo // step + 1) * step, hi, step)
            cuts.append(np.concatenate([[lo], inner, [hi]]).astype(np.int64))
        for corner in itertools.product(*[range(len(c) - 1) for c in cuts]):
            yield (np.array([c[j] for c, j in zip(cuts, corner)]),
                   np.array([c[j + 1] for c, j in zip(cuts, corner)]))

    def iter_elements(self) -> Iterator[Tuple[int, np.ndarray, np.ndarray]]:
        """
        Elements of the hierarchical mesh as (level, lower, upper) with
        parameter corners, leaf by leaf.
        """
        breaks = [kv.unique_knots for kv in self._bases[self._tree.index_level].knot_vectors]
        for low, high, level in self._tree.leaves():
            for lo, hi in self._leaf_elements(low, high, level):
                yield (level,
                       np.array([b[j] for b, j in zip(breaks, lo)]),
                       np.array([b[j] for b, j in zip(breaks, hi)]))

    def num_elements(self) -> int:
        return sum(1 for _ in self.iter_elements())

    def num_breaks(self, level: int, direction: int) -> int:
        return self._tree.num_breaks(level, direction)

    def num_knots(self, level: int, direction: int) -> int:
        self._check_level(level)
        return len(self._bases[level].component(direction).knots)

    def knot(self, level: int, direction: int, i: int) -> float:
        self._check_level(level)
        return float(self._bases[level].component(direction).knots[i])

    def tensor_level(self, level: int) -> TensorBSplineBasis:
        """Tensor basis of a level, instantiated on demand."""
        self.ensure_level(level)
        return self._bases[level]

    def component(self, direction: int) -> KnotVector:
        """Level-0 knot vector of a direction."""
        return self._bases[0].component(direction)

    def active_boundary_functions_of_level(self, level: int, side: Side) -> np.ndarray:
        """Global indices of the selected level functions on a boundary side."""
        self._check_level(level)
        direction, s = self._parse_side(side)
        candidates = self._bases[level].boundary_indices(direction, s)
        idx = self.flat_tensor_indices_to_hierarchical(candidates, level)
        return idx[idx >= 0]

    def _parse_side(self, side: Side) -> Tuple[int, int]:
        if isinstance(side, str):
            if side not in SIDES:
                raise ValueError(f"Unknown side '{side}', expected one of {sorted(SIDES)}")
            direction, s = SIDES[side]
        else:
            direction, s = side
        if not 0 <= direction < self.dim or s not in (0, 1):
            raise ValueError(f"Invalid side {side} for a {self.dim}-dimensional basis")
        return direction, s

    # ------------------------------------------------------------------
    # Boxes

    def _parse_index_boxes(self, boxes) -> List[Tuple[int, List[int], List[int]]]:
        d = self.dim
        arr = np.asarray(boxes, dtype=np.int64).ravel()
        if arr.size % (2 * d + 1) != 0:
            raise ValueError(
                f"Index boxes need 2*dim+1 = {2 * d + 1} entries each, got {arr.size} values"
            )
        parsed = [(int(row[0]), [int(v) for v in row[1:d + 1]], [int(v) for v in row[d + 1:]])
                  for row in arr.reshape(-1, 2 * d + 1)]
        # all boxes are checked before any is inserted
        for level, low, high in parsed:
            self._tree.check_box(low, high, level)
        return parsed

    def _parse_physical_boxes(self, boxes) -> List[Tuple[np.ndarray, np.ndarray]]:
        arr = np.asarray(boxes, dtype=float)
        if arr.ndim != 2 or arr.shape[0] != self.dim or arr.shape[1] % 2 != 0:
            raise ValueError(
                f"Physical boxes must be a ({self.dim}, 2n) array, got shape {arr.shape}"
            )
        corners = []
        for k in range(arr.shape[1] // 2):
            lower, upper = arr[:, 2 * k], arr[:, 2 * k + 1]
            if np.any(lower > upper):
                raise ValueError(f"Box {k} has lower corner {lower} above upper corner {upper}")
            corners.append((lower, upper))
        return corners

    def _physical_to_index(self, lower: np.ndarray, upper: np.ndarray,
                           level: int, ext: int = 0) -> Tuple[List[int], List[int]]:
        """
        Smallest box of level cells covering [lower, upper], grown by ext
        cells per side and clamped to the domain.
        """
        low, high = [], []
        for kv, a, b in zip(self._bases[level].knot_vectors, lower, upper):
            n = kv.n_elements
            lo = kv.knot_to_element_index(float(a))
            hi = int(np.searchsorted(kv.unique_knots, float(b) - kv.tolerance(), side='left'))
            hi = min(max(hi, lo + 1), n)
            low.append(max(lo - ext, 0))
            high.append(min(hi + ext, n))
        return low, high

    def _insert_physical_box(self, lower: np.ndarray, upper: np.ndarray, ext: int) -> None:
        finest = self._tree.index_level
        flow, fhigh = self._physical_to_index(lower, upper, finest)
        level = self._tree.query3(flow, fhigh, finest) + 1
        self.ensure_level(level)
        low, high = self._physical_to_index(lower, upper, level, ext)
        self._tree.insert_box(low, high, level)
        logger.debug("Refined box %s-%s to level %d (cells %s-%s)",
                     lower, upper, level, low, high)

    def boxes(self) -> np.ndarray:
        """
        Inserted boxes as (n, 2*dim+1) rows (level, low..., high...),
        the input format of refine_elements and from_index_boxes.
        """
        rows = [b.as_row() for b in self._tree.boxes()]
        return np.array(rows, dtype=np.int64).reshape(-1, 2 * self.dim + 1)

    def boxes_along_slice(self, direction: int, parameter: float) -> np.ndarray:
        """
        Leaves crossed by the hyperplane x_direction = parameter, as
        (level, low..., high...) rows in level coordinates (rounded outward).
        """
        if not 0 <= direction < self.dim:
            raise ValueError(f"Invalid direction {direction} for dimension {self.dim}")
        kv = self._bases[self._tree.index_level].component(direction)
        cell = kv.find_element(float(parameter))
        index_level = self._tree.index_level
        rows = []
        for low, high, level in self._tree.leaves():
            if not low[direction] <= cell < high[direction]:
                continue
            shift = index_level - level
            rows.append([level]
                        + [lo >> shift for lo in low]
                        + [-((-hi) >> shift) for hi in high])
        return np.array(rows, dtype=np.int64).reshape(-1, 2 * self.dim + 1)

    # ------------------------------------------------------------------
    # Refinement

    def refine(self, boxes: np.ndarray, ref_ext: Optional[int] = None,
               batch: Optional[bool] = None) -> None:
        """
        Refine physical boxes, a (dim, 2n) array with two columns per box.

        Each box is inserted one level finer than the coarsest level
        covering it, grown by ref_ext cells on every side.
        """
        if ref_ext is None:
            ref_ext = self.options.ref_ext
        if ref_ext < 0:
            raise ValueError(f"ref_ext must be non-negative, got {ref_ext}")
        if batch is None:
            batch = self.options.batch_refinement
        corners = self._parse_physical_boxes(boxes)
        try:
            for lower, upper in corners:
                self._insert_physical_box(lower, upper, ref_ext)
                if not batch:
                    self.update_structure()
        finally:
            if batch:
                self.update_structure()

    def refine_elements(self, boxes, batch: Optional[bool] = None) -> None:
        """
        Refine index boxes given as (level, low..., high...) records.

        A malformed box raises ValueError before any box is inserted.
        """
        if batch is None:
            batch = self.options.batch_refinement
        parsed = self._parse_index_boxes(boxes)
        try:
            for level, low, high in parsed:
                self.ensure_level(level)
                self._tree.insert_box(low, high, level)
                if not batch:
                    self.update_structure()
        finally:
            if batch:
                self.update_structure()

    def uniform_refine(self, num_knots: int = 1, mul: int = 1) -> None:
        """
        Insert num_knots equally spaced knots of multiplicity mul in every
        knot span of every level.
        """
        if num_knots < 1 or mul < 1:
            raise ValueError(f"num_knots and mul must be positive, got {num_knots}, {mul}")
        refined = []
        for tbasis in self._bases:
            fine = tbasis.refine_uniform(num_knots, mul)
            if refined:
                fine = fine.union(refined[-1])
            refined.append(fine)
        self._bases = refined
        self._tree.scale([num_knots + 1] * self.dim)
        logger.debug("Uniform refinement with %d knot(s) of multiplicity %d", num_knots, mul)
        self.update_structure()

    def increase_multiplicity(self, level: int, direction: int,
                              knot_values: Sequence[float], mult: int = 1) -> None:
        """
        Raise the multiplicity of existing knots on level and all finer
        levels; values that are not interior knots are ignored.
        """
        self._check_level(level)
        if not 0 <= direction < self.dim:
            raise ValueError(f"Invalid direction {direction} for dimension {self.dim}")
        for lvl in range(level, len(self._bases)):
            self._bases[lvl] = self._bases[lvl].increase_multiplicity(direction, knot_values, mult)
        self.update_structure()

    def make_compressed(self) -> None:
        """Drop leading levels that carry neither functions nor tree leaves."""
        dropped = 0
        while len(self._bases) > 1 and min(lvl for _, _, lvl in self._tree.leaves()) >= 1:
            self._bases.pop(0)
            self._tree.decrement_levels()
            self._base_level += 1
            dropped += 1
        if dropped:
            logger.debug("Compressed hierarchy by %d level(s)", dropped)
            self.update_structure()

    def set_active_to_level(self, level: int) -> List[np.ndarray]:
        """
        Characteristic matrices of the basis obtained by ignoring all
        refinement above level; the structure itself is unchanged.
        """
        self._check_level(level)
        result = []
        for lvl in range(level + 1):
            min_levels = np.minimum(self._tree.support_min_levels(self._bases[lvl], lvl), level)
            result.append(np.flatnonzero(min_levels == lvl).astype(np.int64))
        return result

    # ------------------------------------------------------------------
    # Refinement with coefficient transfer

    def _with_coefs(self, coefs: np.ndarray, refine_fn, *args, **kwargs) -> np.ndarray:
        coefs = np.asarray(coefs, dtype=float)
        if coefs.shape[0] != self.size():
            raise ValueError(f"Expected {self.size()} coefficient rows, got {coefs.shape[0]}")
        old = self.state()
        refine_fn(*args, **kwargs)
        M = self.transfer(old)
        return M @ coefs

    def refine_with_coefs(self, coefs: np.ndarray, boxes: np.ndarray,
                          ref_ext: Optional[int] = None) -> np.ndarray:
        """Refine physical boxes and return the transferred coefficients."""
        return self._with_coefs(coefs, self.refine, boxes, ref_ext)

    def refine_elements_with_coefs(self, coefs: np.ndarray, boxes) -> np.ndarray:
        return self._with_coefs(coefs, self.refine_elements, boxes)

    def uniform_refine_with_coefs(self, coefs: np.ndarray, num_knots: int = 1,
                                  mul: int = 1) -> np.ndarray:
        return self._with_coefs(coefs, self.uniform_refine, num_knots, mul)

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(dim={self.dim}, degree={self.degree()}, "
                f"size={self.size()}, levels={self.max_level + 1})")
