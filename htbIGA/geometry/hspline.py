"""
Spline geometries on hierarchical bases.

A geometry is a hierarchical basis plus one control point per basis
function:

    X(xi) = sum_i B_i(xi) * P_i

Refining the geometry refines the basis and transfers the control
points, so the mapped shape never changes.
"""

import numpy as np
from typing import Optional, Sequence, Tuple

from ..discretization.knot_vector import make_uniform_knot_vector
from ..hierarchical.htensor_basis import HTensorBasis
from ..hierarchical.hbspline import HBSplineBasis
from ..hierarchical.thbspline import THBSplineBasis
from .bspline import TensorBSplineBasis


class HSplineGeometry:
    """
    Parametric geometry on an HB- or THB-spline basis.

    Parameters:
        basis: Hierarchical basis (owned by the geometry afterwards)
        control_points: Array of shape (basis.size(), n_dim_physical)
    """

    def __init__(self, basis: HTensorBasis, control_points: np.ndarray):
        control_points = np.asarray(control_points, dtype=float)
        if control_points.ndim == 1:
            control_points = control_points[:, None]
        if control_points.shape[0] != basis.size():
            raise ValueError(
                f"Need {basis.size()} control points, got {control_points.shape[0]}"
            )
        self._basis = basis
        self._control_points = control_points

    @property
    def basis(self) -> HTensorBasis:
        return self._basis

    @property
    def n_dim_parametric(self) -> int:
        return self._basis.dim

    @property
    def n_dim_physical(self) -> int:
        return self._control_points.shape[1]

    @property
    def n_control_points(self) -> int:
        return self._control_points.shape[0]

    @property
    def control_points(self) -> np.ndarray:
        return self._control_points.copy()

    def eval_point(self, xi: Sequence[float]) -> np.ndarray:
        """Physical point X(xi)."""
        indices, ders = self._basis.eval_all_ders(xi, 0)
        return ders[0][0] @ self._control_points[indices]

    def eval_points(self, points: np.ndarray) -> np.ndarray:
        """Physical points for the columns of a (dim, n) array, shape (n, n_dim_physical)."""
        return self._basis.eval(points) @ self._control_points

    def jacobian(self, xi: Sequence[float]) -> np.ndarray:
        """dX/dxi at xi, shape (n_dim_physical, n_dim_parametric)."""
        indices, ders = self._basis.eval_all_ders(xi, 1)
        return (ders[1] @ self._control_points[indices]).T

    def refine(self, boxes: np.ndarray, ref_ext: Optional[int] = None) -> None:
        """Refine physical parameter boxes, a (dim, 2n) array."""
        self._control_points = self._basis.refine_with_coefs(self._control_points, boxes, ref_ext)

    def refine_elements(self, boxes) -> None:
        self._control_points = self._basis.refine_elements_with_coefs(self._control_points, boxes)

    def uniform_refine(self, num_knots: int = 1, mul: int = 1) -> None:
        self._control_points = self._basis.uniform_refine_with_coefs(
            self._control_points, num_knots, mul)


def make_hspline_box(degrees: Sequence[int], n_elements: Sequence[int],
                     domain: Optional[Sequence[Tuple[float, float]]] = None,
                     truncate: bool = True, nlevels: int = 3) -> HSplineGeometry:
    """
    Identity map of a parameter box on a hierarchical basis.

    The control points are the Greville anchors, which reproduce the
    parameter coordinates exactly.
    """
    if len(degrees) != len(n_elements):
        raise ValueError(f"degrees and n_elements differ in length: {degrees}, {n_elements}")
    if domain is None:
        domain = [(0.0, 1.0)] * len(degrees)
    tbasis = TensorBSplineBasis([
        make_uniform_knot_vector(n, p, tuple(d))
        for n, p, d in zip(n_elements, degrees, domain)
    ])
    cls = THBSplineBasis if truncate else HBSplineBasis
    basis = cls(tbasis, nlevels)
    return HSplineGeometry(basis, basis.anchors().T)


def make_hspline_unit_square(p: int = 2, n_elem_xi: int = 4, n_elem_eta: int = 4,
                             truncate: bool = True) -> HSplineGeometry:
    """Unit square [0, 1]^2 with degree p in both directions."""
    return make_hspline_box([p, p], [n_elem_xi, n_elem_eta], truncate=truncate)
