"""
Geometry module: tensor-product B-spline bases.

Spline geometries on hierarchical bases live in htbIGA.geometry.hspline
(imported by the top-level package after htbIGA.hierarchical).
"""

from .bspline import (
    TensorBSplineBasis,
    eval_basis_1d,
    eval_basis_ders_1d,
    derivative_multi_indices,
)
