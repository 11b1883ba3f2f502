"""
htbIGA - Hierarchical Tensor B-splines for Isogeometric Analysis

Locally refinable spline spaces built from a sequence of nested
tensor-product B-spline bases and a domain tree, with HB-splines and
THB-splines (truncated hierarchical B-splines) as variants.

Key modules:
- discretization: Knot vectors, knot insertion and nested knot algebra
- geometry: Tensor-product B-spline bases, spline geometries on
  hierarchical bases
- hierarchical: Domain tree, hierarchical bases, coefficient transfer,
  diagnostic reports
- visualization: Level maps (optional matplotlib)

Quick start:
    import numpy as np
    from htbIGA.discretization import make_uniform_knot_vector
    from htbIGA.geometry import TensorBSplineBasis
    from htbIGA.hierarchical import THBSplineBasis

    kv = make_uniform_knot_vector(4, 2)
    basis = THBSplineBasis(TensorBSplineBasis([kv, kv]), nlevels=2)

    # Refine [0.25, 0.75]^2 one level finer than it currently is
    basis.refine(np.array([[0.25, 0.75], [0.25, 0.75]]))
    print(basis.size())   # 40

Refinement with coefficients:
    coefs = basis.refine_with_coefs(coefs, boxes)
"""

__version__ = "0.1.0"
__author__ = "Wataru Fukuda"

# Core imports for convenience
from .config import HSplineOptions, load_config, make_basis_from_config
from .discretization.knot_vector import KnotVector, make_open_knot_vector, make_uniform_knot_vector
from .geometry.bspline import TensorBSplineBasis
from .hierarchical import (
    DomainTree, HTensorBasis, HBSplineBasis, THBSplineBasis,
    HierarchyState, TransferStrategy, HierarchicalTransfer, TruncatedTransfer,
    basic_report, format_report,
)
from .geometry.hspline import HSplineGeometry, make_hspline_box, make_hspline_unit_square
