"""
Coefficient transfer between two versions of a hierarchical basis.

After a structural change (local refinement, uniform refinement, raised
knot multiplicity, compression) the space spanned by the new hierarchical
basis contains the old one. transfer returns the sparse matrix M with

    c_new = M @ c_old

so that sum_i c_old[i] * B_old_i == sum_j c_new[j] * B_new_j.

Two ingredients are used throughout:

- the *fine representation* R of a hierarchical basis: every
  hierarchical function written in the tensor basis of one fine level,
  built level by level as R <- D_l (T_{l-1} @ R) + S_l, where T is the
  dyadic knot-insertion matrix, S_l the selection of level l and D_l the
  truncation mask (identity for HB);
- the *level-wise carry*: a tensor function of level l that is not
  selected lies in the next region and is expanded one level up until
  every part hits a selected function. This resolves any level-wise
  combination of tensor functions into hierarchical (HB) coefficients
  without solving a system.

Strategies:
    HierarchicalTransfer: HB, exact carry (direct) or projection
    TruncatedTransfer: THB, projection with truncated columns (default)
        or the direct form K_new^{-1} M_HB K_old, where K maps THB
        coefficients to HB coefficients
"""

import logging
from abc import ABC, abstractmethod

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import spsolve
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, TYPE_CHECKING

from ..geometry.bspline import TensorBSplineBasis
from .domain_tree import DomainTree

if TYPE_CHECKING:
    from .htensor_basis import HTensorBasis

logger = logging.getLogger(__name__)

# Entries below this are treated as round-off in computed transfer matrices
DROP_TOL = 1e-13


@dataclass
class HierarchyState:
    """
    Snapshot of the structure of a hierarchical basis.

    Attributes:
        bases: Tensor basis per instantiated level
        tree: Domain tree
        xmatrix: Sorted selected flat tensor indices per level
        offsets: Global index of the first function of each level
        min_levels: Lowest tree level over the support of every tensor
            function, per level up to max_level
        base_level: Absolute level of bases[0] (raised by compression)
    """
    bases: List[TensorBSplineBasis]
    tree: DomainTree
    xmatrix: List[np.ndarray]
    offsets: np.ndarray
    min_levels: List[np.ndarray] = field(default_factory=list)
    base_level: int = 0

    @property
    def size(self) -> int:
        return int(self.offsets[-1])

    @property
    def max_level(self) -> int:
        return self.tree.max_ins_level

    def level_transfer(self, level: int) -> sparse.csr_matrix:
        """Knot-insertion matrix from the tensor basis of level to level+1."""
        return self.bases[level].refinement_matrix(self.bases[level + 1])

    def selection(self, level: int) -> sparse.csr_matrix:
        """Sparse (bases[level].size, size) matrix placing level functions in the global numbering."""
        rows = self.xmatrix[level]
        cols = self.offsets[level] + np.arange(len(rows))
        return sparse.csr_matrix(
            (np.ones(len(rows)), (rows, cols)), shape=(self.bases[level].size, self.size)
        )

    def copy(self) -> 'HierarchyState':
        return HierarchyState(
            bases=[b.copy() for b in self.bases],
            tree=self.tree.copy(),
            xmatrix=[x.copy() for x in self.xmatrix],
            offsets=self.offsets.copy(),
            min_levels=[m.copy() for m in self.min_levels],
            base_level=self.base_level,
        )


def _row_mask(keep: np.ndarray) -> sparse.dia_matrix:
    return sparse.diags(keep.astype(float))


def _clean(M: sparse.spmatrix) -> sparse.csr_matrix:
    M = sparse.csr_matrix(M)
    M.data[np.abs(M.data) < DROP_TOL] = 0.0
    M.eliminate_zeros()
    return M


def _expand(state: HierarchyState,
            truncate: bool) -> Tuple[sparse.csr_matrix, List[sparse.csr_matrix]]:
    """
    Level recursion shared by the fine representation and the
    truncation parts.

    Returns:
        (R, removed) where R is the representation on the tensor basis of
        state.max_level and removed[l] holds, per column, the level-l
        tensor coefficients cut away by truncation (zero for HB)
    """
    R = None
    removed = []
    for lvl in range(state.max_level + 1):
        n = state.bases[lvl].size
        if R is None:
            R = sparse.csr_matrix((n, state.size))
            removed.append(sparse.csr_matrix((n, state.size)))
        else:
            R = state.level_transfer(lvl - 1) @ R
            if truncate:
                inside = state.min_levels[lvl] >= lvl
                removed.append(_clean(_row_mask(inside) @ R))
                R = _row_mask(~inside) @ R
            else:
                removed.append(sparse.csr_matrix((n, state.size)))
        R = (R + state.selection(lvl)).tocsr()
    return _clean(R), removed


def fine_representation(state: HierarchyState, truncate: bool = False,
                        target: Optional[TensorBSplineBasis] = None) -> sparse.csr_matrix:
    """
    Hierarchical functions as columns of tensor coefficients on one level.

    Parameters:
        state: Hierarchy structure
        truncate: Truncate coarse functions (THB) or not (HB)
        target: Nested finer tensor basis to express the functions in,
            default the basis of state.max_level

    Returns:
        Sparse matrix of shape (target.size, state.size)
    """
    R, _ = _expand(state, truncate)
    if target is not None:
        R = state.bases[state.max_level].refinement_matrix(target) @ R
    return _clean(R)


def hb_resolve(state: HierarchyState, parts: List[Optional[sparse.spmatrix]]) -> sparse.csr_matrix:
    """
    Resolve level-wise tensor combinations into HB coefficients.

    parts[l] has one row per tensor function of level l; row blocks that
    belong to functions not selected in state are carried to the next
    level by knot insertion.

    Raises:
        ValueError: if a non-zero contribution is left after the finest
            level, i.e. the combination is not in the HB space
    """
    ncols = next(p.shape[1] for p in parts if p is not None)
    blocks = []
    carry = None
    for lvl in range(len(state.bases)):
        n = state.bases[lvl].size
        C = sparse.csr_matrix((n, ncols)) if carry is None else state.level_transfer(lvl - 1) @ carry
        if lvl < len(parts) and parts[lvl] is not None:
            C = C + parts[lvl]
        C = sparse.csr_matrix(C)
        selected = np.zeros(n, dtype=bool)
        selected[state.xmatrix[lvl]] = True
        blocks.append(C[state.xmatrix[lvl]])
        carry = _clean(_row_mask(~selected) @ C)
        if carry.nnz == 0 and lvl >= len(parts) - 1:
            # nothing left to carry; the remaining levels only add empty blocks
            for rest in range(lvl + 1, len(state.bases)):
                blocks.append(sparse.csr_matrix((len(state.xmatrix[rest]), ncols)))
            break
    else:
        if carry is not None and carry.nnz:
            raise ValueError(
                "Coefficients do not resolve into the hierarchical space "
                f"({carry.nnz} entries left beyond level {len(state.bases) - 1})"
            )
    return _clean(sparse.vstack(blocks, format='csr'))


def thb_to_hb(state: HierarchyState) -> sparse.csr_matrix:
    """
    Matrix K with c_hb = K @ c_thb for the same function.

    Every truncated function is its HB counterpart minus the truncated
    parts; K is unit lower triangular in the level-ordered numbering.
    """
    _, removed = _expand(state, truncate=True)
    cut = hb_resolve(state, removed)
    return _clean(sparse.identity(state.size, format='csr') - cut)


def level_maps(old: HierarchyState, new: HierarchyState) -> List[Optional[sparse.csr_matrix]]:
    """
    Per new level, the matrix taking old tensor coefficients of the same
    absolute level to the new tensor basis (None where the old state has
    no such level).
    """
    maps = []
    for lvl, basis in enumerate(new.bases):
        old_lvl = lvl + new.base_level - old.base_level
        if old_lvl < 0 or old_lvl >= len(old.bases):
            maps.append(None)
            continue
        old_basis = old.bases[old_lvl]
        same = (old_basis.n_basis_per_dir == basis.n_basis_per_dir and all(
            np.array_equal(a.knots, b.knots)
            for a, b in zip(old_basis.knot_vectors, basis.knot_vectors)
        ))
        if same:
            maps.append(sparse.identity(basis.size, format='csr'))
        else:
            maps.append(old_basis.refinement_matrix(basis))
    return maps


def hb_direct_transfer(old: HierarchyState, new: HierarchyState,
                       maps: List[Optional[sparse.csr_matrix]]) -> sparse.csr_matrix:
    """
    Level-wise HB transfer: every old function is written in the new
    tensor basis of its level and resolved by carrying.
    """
    parts = []
    for lvl, A in enumerate(maps):
        old_lvl = lvl + new.base_level - old.base_level
        if A is None or old_lvl > old.max_level:
            parts.append(None)
        else:
            parts.append(A @ old.selection(old_lvl))
    if all(p is None for p in parts):
        raise ValueError("The old and new hierarchies share no level")
    return hb_resolve(new, parts)


def projection_transfer(old: HierarchyState, new: HierarchyState,
                        truncate: bool) -> sparse.csr_matrix:
    """
    Transfer by solving R_new M = R_old on the finest common tensor level
    through the normal equations (exact, R_new has full column rank).
    """
    finest = new.bases[new.max_level].union(old.bases[old.max_level])
    R_new = fine_representation(new, truncate, target=finest)
    R_old = fine_representation(old, truncate, target=finest)
    lhs = sparse.csc_matrix(R_new.T @ R_new)
    rhs = sparse.csc_matrix(R_new.T @ R_old)
    return _solve(lhs, rhs, (new.size, old.size))


def _solve(A: sparse.csc_matrix, B: sparse.csc_matrix, shape: Tuple[int, int]) -> sparse.csr_matrix:
    # spsolve returns a dense vector for a single right-hand side
    X = spsolve(A, B)
    return _clean(sparse.csr_matrix(X).reshape(shape))


class TransferStrategy(ABC):
    """
    How coefficients move from an old to a new version of a
    hierarchical basis. Variants supply one strategy each.
    """

    @abstractmethod
    def coarsening(self, basis: 'HTensorBasis', old: HierarchyState,
                   new: HierarchyState, transfer: Optional[sparse.spmatrix] = None) -> sparse.csr_matrix:
        """
        Transfer through the fine representation.

        Parameters:
            transfer: Optional precomputed tensor refinement matrix from the
                old finest basis to the new one; unused by the exact
                projections below
        """

    @abstractmethod
    def coarsening_direct(self, basis: 'HTensorBasis', old: HierarchyState, new: HierarchyState,
                          transfers: List[Optional[sparse.csr_matrix]]) -> sparse.csr_matrix:
        """Level-wise transfer given the per-level tensor maps of level_maps."""


class HierarchicalTransfer(TransferStrategy):
    """Transfer for hierarchical B-splines."""

    def coarsening(self, basis, old, new, transfer=None):
        return projection_transfer(old, new, truncate=False)

    def coarsening_direct(self, basis, old, new, transfers):
        return hb_direct_transfer(old, new, transfers)


class TruncatedTransfer(TransferStrategy):
    """Transfer for truncated hierarchical B-splines."""

    def coarsening(self, basis, old, new, transfer=None):
        return projection_transfer(old, new, truncate=True)

    def coarsening_direct(self, basis, old, new, transfers):
        M_hb = hb_direct_transfer(old, new, transfers)
        K_old = thb_to_hb(old)
        K_new = thb_to_hb(new)
        rhs = sparse.csc_matrix(M_hb @ K_old)
        return _solve(sparse.csc_matrix(K_new), rhs, (new.size, old.size))
