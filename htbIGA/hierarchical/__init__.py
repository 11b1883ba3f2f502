"""
Hierarchical spline spaces.

Provides:
- DomainTree: kd-tree of refinement levels over the index domain
- HTensorBasis: common core of hierarchical tensor bases
- HBSplineBasis, THBSplineBasis: hierarchical and truncated variants
- Transfer strategies and coefficient transfer helpers
- Diagnostic reports
"""

from .domain_tree import DomainTree, InsertedBox
from .transfer import (
    HierarchyState,
    TransferStrategy,
    HierarchicalTransfer,
    TruncatedTransfer,
    fine_representation,
    hb_resolve,
    thb_to_hb,
)
from .htensor_basis import HTensorBasis, SIDES
from .hbspline import HBSplineBasis
from .thbspline import THBSplineBasis
from .report import (
    LevelSummary,
    HierarchyReport,
    basic_report,
    char_matrix_report,
    spaces_report,
    format_report,
)
