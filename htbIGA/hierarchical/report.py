"""
Diagnostics for hierarchical bases.

The report functions return plain data; format_report renders it as
text. Example:

    report = basic_report(basis)
    print(format_report(report))
"""

import numpy as np
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from .htensor_basis import HTensorBasis


@dataclass
class LevelSummary:
    """Per-level numbers of a hierarchical basis."""
    level: int
    n_selected: int
    n_tensor: int
    n_elements: int
    shape: Tuple[int, ...]


@dataclass
class HierarchyReport:
    """
    Structured summary of a hierarchical basis.

    Attributes:
        kind: Class name of the basis (HBSplineBasis, THBSplineBasis)
        levels: One LevelSummary per level up to max_level
        char_matrices: Selected tensor indices per level, shape
            (n_selected, dim) each (char_matrix_report only)
        spaces: Knot vectors per level and direction (spaces_report only)
    """
    kind: str
    dim: int
    degree: Tuple[int, ...]
    size: int
    max_level: int
    num_levels: int
    tree_size: int
    leaf_size: int
    levels: List[LevelSummary] = field(default_factory=list)
    char_matrices: Optional[List[np.ndarray]] = None
    spaces: Optional[List[List[np.ndarray]]] = None


def basic_report(basis: 'HTensorBasis') -> HierarchyReport:
    """Sizes of the hierarchy and of every level."""
    elements = np.zeros(basis.max_level + 1, dtype=np.int64)
    for level, _, _ in basis.iter_elements():
        elements[level] += 1
    offsets = basis.offsets
    levels = [
        LevelSummary(
            level=lvl,
            n_selected=int(offsets[lvl + 1] - offsets[lvl]),
            n_tensor=basis.bases[lvl].size,
            n_elements=int(elements[lvl]),
            shape=basis.bases[lvl].n_basis_per_dir,
        )
        for lvl in range(basis.max_level + 1)
    ]
    return HierarchyReport(
        kind=type(basis).__name__,
        dim=basis.dim,
        degree=basis.degree(),
        size=basis.size(),
        max_level=basis.max_level,
        num_levels=basis.num_levels,
        tree_size=basis.tree_size(),
        leaf_size=basis.tree.leaf_size(),
        levels=levels,
    )


def char_matrix_report(basis: 'HTensorBasis') -> HierarchyReport:
    """basic_report plus the tensor indices of the selected functions."""
    report = basic_report(basis)
    report.char_matrices = []
    for lvl in range(basis.max_level + 1):
        x = basis.xmatrix[lvl]
        shape = basis.bases[lvl].n_basis_per_dir
        report.char_matrices.append(
            np.array(np.unravel_index(x, shape, order='F')).T.reshape(-1, basis.dim)
        )
    return report


def spaces_report(basis: 'HTensorBasis') -> HierarchyReport:
    """basic_report plus the knot vectors of every level."""
    report = basic_report(basis)
    report.spaces = [
        [kv.knots.copy() for kv in basis.bases[lvl].knot_vectors]
        for lvl in range(basis.max_level + 1)
    ]
    return report


def format_report(report: HierarchyReport) -> str:
    """Human-readable rendering of a report."""
    lines = [
        f"{report.kind}: dim {report.dim}, degree {report.degree}, "
        f"{report.size} functions",
        f"  levels: {report.max_level + 1} used, {report.num_levels} instantiated",
        f"  tree: {report.tree_size} nodes, {report.leaf_size} leaves",
    ]
    for s in report.levels:
        lines.append(
            f"  level {s.level}: {s.n_selected}/{s.n_tensor} functions "
            f"(tensor shape {s.shape}), {s.n_elements} elements"
        )
    if report.char_matrices is not None:
        lines.append("characteristic matrices:")
        for lvl, idx in enumerate(report.char_matrices):
            entries = " ".join("(" + ",".join(str(v) for v in row) + ")" for row in idx)
            lines.append(f"  level {lvl}: {entries}")
    if report.spaces is not None:
        lines.append("spaces:")
        for lvl, kvs in enumerate(report.spaces):
            for k, knots in enumerate(kvs):
                lines.append(f"  level {lvl}, direction {k}: {np.array2string(knots, precision=4)}")
    return "\n".join(lines)
