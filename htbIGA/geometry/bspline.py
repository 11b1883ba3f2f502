"""
B-spline basis function evaluation and tensor-product B-spline bases.

The i-th B-spline basis function of degree p is defined recursively:

    N_{i,0}(xi) = 1 if xi_i <= xi < xi_{i+1}, else 0

    N_{i,p}(xi) = (xi - xi_i)/(xi_{i+p} - xi_i) * N_{i,p-1}(xi)
                + (xi_{i+p+1} - xi)/(xi_{i+p+1} - xi_{i+1}) * N_{i+1,p-1}(xi)

Properties:
- Partition of unity: sum of all basis functions = 1
- Local support: N_{i,p} is non-zero only on [xi_i, xi_{i+p+1})

TensorBSplineBasis is the per-level space of a hierarchical basis. Flat
tensor indices run fastest in direction 0:

    flat = i_0 + n_0 * (i_1 + n_1 * (i_2 + ...))
"""

import itertools

import numpy as np
from scipy import sparse
from typing import List, Optional, Sequence, Tuple

from ..discretization.knot_vector import (
    KnotVector, compute_refinement_matrix, refine_knot_vector_uniform,
    increase_knot_multiplicity, knot_union
)


def eval_basis_1d(kv: KnotVector, xi: float,
                  span: Optional[int] = None) -> np.ndarray:
    """
    Evaluate all non-zero B-spline basis functions at a parameter value.

    Returns:
        Array of shape (p+1,) containing N_{span-p,p}(xi) to N_{span,p}(xi)
    """
    p = kv.degree
    knots = kv.knots

    if span is None:
        span = kv.find_span(xi)

    N = np.zeros(p + 1)
    N[0] = 1.0
    left = np.zeros(p + 1)
    right = np.zeros(p + 1)

    for j in range(1, p + 1):
        left[j] = xi - knots[span + 1 - j]
        right[j] = knots[span + j] - xi
        saved = 0.0
        for r in range(j):
            temp = N[r] / (right[r + 1] + left[j - r])
            N[r] = saved + right[r + 1] * temp
            saved = left[j - r] * temp
        N[j] = saved

    return N


def eval_basis_ders_1d(kv: KnotVector, xi: float, n_ders: int,
                       span: Optional[int] = None) -> np.ndarray:
    """
    Evaluate B-spline basis functions and derivatives at a parameter value.

    Uses the algorithm from Piegl & Tiller "The NURBS Book" (Algorithm A2.3).
    Derivatives above the degree are zero.

    Returns:
        Array of shape (n_ders+1, p+1) where result[k, j] is the k-th
        derivative of N_{span-p+j, p}
    """
    p = kv.degree
    knots = kv.knots

    if span is None:
        span = kv.find_span(xi)

    ders = np.zeros((n_ders + 1, p + 1))
    n_ders = min(n_ders, p)

    # ndu: basis functions (upper triangle incl. diagonal) and knot differences
    ndu = np.zeros((p + 1, p + 1))
    ndu[0, 0] = 1.0
    left = np.zeros(p + 1)
    right = np.zeros(p + 1)

    for j in range(1, p + 1):
        left[j] = xi - knots[span + 1 - j]
        right[j] = knots[span + j] - xi
        saved = 0.0
        for r in range(j):
            ndu[j, r] = right[r + 1] + left[j - r]
            temp = ndu[r, j - 1] / ndu[j, r]
            ndu[r, j] = saved + right[r + 1] * temp
            saved = left[j - r] * temp
        ndu[j, j] = saved

    ders[0, :] = ndu[:, p]

    a = np.zeros((2, p + 1))
    for r in range(p + 1):
        s1, s2 = 0, 1
        a[0, 0] = 1.0
        for k in range(1, n_ders + 1):
            d = 0.0
            rk = r - k
            pk = p - k
            if r >= k:
                a[s2, 0] = a[s1, 0] / ndu[pk + 1, rk]
                d = a[s2, 0] * ndu[rk, pk]
            j1 = 1 if rk >= -1 else -rk
            j2 = k - 1 if r - 1 <= pk else p - r
            for j in range(j1, j2 + 1):
                a[s2, j] = (a[s1, j] - a[s1, j - 1]) / ndu[pk + 1, rk + j]
                d += a[s2, j] * ndu[rk + j, pk]
            if r <= pk:
                a[s2, k] = -a[s1, k - 1] / ndu[pk + 1, r]
                d += a[s2, k] * ndu[r, pk]
            ders[k, r] = d
            s1, s2 = s2, s1

    factor = p
    for k in range(1, n_ders + 1):
        ders[k, :] *= factor
        factor *= (p - k)

    return ders


def derivative_multi_indices(dim: int, order: int) -> List[Tuple[int, ...]]:
    """
    Per-direction derivative orders of all partial derivatives of a given
    total order, e.g. dim=2, order=2 -> [(2, 0), (1, 1), (0, 2)].
    """
    result = []
    for combo in itertools.combinations_with_replacement(range(dim), order):
        alpha = [0] * dim
        for k in combo:
            alpha[k] += 1
        result.append(tuple(alpha))
    return result


def _tensor_combine(factors: Sequence[np.ndarray]) -> np.ndarray:
    """Kronecker product of 1D vectors with direction 0 running fastest."""
    result = factors[0]
    for f in factors[1:]:
        result = np.kron(f, result)
    return result


class TensorBSplineBasis:
    """
    Tensor-product B-spline basis for any number of dimensions.

    For 2D: N_{i,j}(xi, eta) = N_i(xi) * N_j(eta)

    Instances are treated as immutable: refinement methods return new
    bases together with the coefficient transfer.

    Attributes:
        knot_vectors: One KnotVector per parametric direction
    """

    def __init__(self, knot_vectors: Sequence[KnotVector]):
        if len(knot_vectors) == 0:
            raise ValueError("A tensor basis needs at least one direction")
        self.knot_vectors = tuple(knot_vectors)
        self._shape = tuple(kv.n_basis for kv in self.knot_vectors)

    @property
    def dim(self) -> int:
        return len(self.knot_vectors)

    @property
    def degrees(self) -> Tuple[int, ...]:
        """Polynomial degrees in each direction."""
        return tuple(kv.degree for kv in self.knot_vectors)

    def degree(self, direction: int) -> int:
        return self.knot_vectors[direction].degree

    def component(self, direction: int) -> KnotVector:
        """Knot vector of one parametric direction."""
        return self.knot_vectors[direction]

    @property
    def n_basis_per_dir(self) -> Tuple[int, ...]:
        return self._shape

    @property
    def size(self) -> int:
        """Total number of tensor-product basis functions."""
        return int(np.prod(self._shape))

    @property
    def n_elements_per_dir(self) -> Tuple[int, ...]:
        return tuple(kv.n_elements for kv in self.knot_vectors)

    @property
    def n_elements(self) -> int:
        return int(np.prod(self.n_elements_per_dir))

    @property
    def domain(self) -> np.ndarray:
        """Parametric domain as a (dim, 2) array of [lower, upper]."""
        return np.array([kv.domain for kv in self.knot_vectors])

    def tensor_index(self, flat_idx: int) -> np.ndarray:
        """Convert a flat index to per-direction indices."""
        return np.array(np.unravel_index(flat_idx, self._shape, order='F'))

    def flat_index(self, tensor_idx: Sequence[int]) -> int:
        """Convert per-direction indices to a flat index."""
        return int(np.ravel_multi_index(tuple(tensor_idx), self._shape, order='F'))

    def support(self, flat_idx: int) -> np.ndarray:
        """Parametric support box of a basis function, shape (dim, 2)."""
        ind = self.tensor_index(flat_idx)
        return np.array([kv.basis_support(int(i)) for kv, i in zip(self.knot_vectors, ind)])

    def element_support(self, flat_idx: int) -> Tuple[np.ndarray, np.ndarray]:
        """Element index box [low, high) covered by a basis function."""
        ind = self.tensor_index(flat_idx)
        bounds = [kv.element_support(int(i)) for kv, i in zip(self.knot_vectors, ind)]
        return (np.array([b[0] for b in bounds]), np.array([b[1] for b in bounds]))

    def greville(self, flat_idx: int) -> np.ndarray:
        """Greville point (anchor) of a basis function."""
        ind = self.tensor_index(flat_idx)
        return np.array([kv.greville_abscissae()[i] for kv, i in zip(self.knot_vectors, ind)])

    def anchors(self) -> np.ndarray:
        """Greville points of all basis functions, shape (dim, size)."""
        grids = [kv.greville_abscissae() for kv in self.knot_vectors]
        mesh = np.meshgrid(*grids, indexing='ij')
        return np.array([m.ravel(order='F') for m in mesh])

    def boundary_indices(self, direction: int, side: int) -> np.ndarray:
        """Flat indices of the functions on the side (0 or 1) of a direction."""
        grids = [np.arange(n) for n in self._shape]
        grids[direction] = np.array([0 if side == 0 else self._shape[direction] - 1])
        mesh = np.meshgrid(*grids, indexing='ij')
        return np.sort(np.ravel_multi_index(tuple(m.ravel() for m in mesh), self._shape, order='F'))

    def _spans(self, point: Sequence[float]) -> List[int]:
        if len(point) != self.dim:
            raise ValueError(f"Point has {len(point)} coordinates, basis dimension is {self.dim}")
        return [kv.find_span(float(x)) for kv, x in zip(self.knot_vectors, point)]

    def active(self, point: Sequence[float]) -> np.ndarray:
        """Sorted flat indices of the functions whose support contains point."""
        spans = self._spans(point)
        ranges = [np.arange(s - kv.degree, s + 1) for s, kv in zip(spans, self.knot_vectors)]
        return self._combine_indices(ranges)

    def _combine_indices(self, ranges: Sequence[np.ndarray]) -> np.ndarray:
        idx = ranges[0]
        stride = 1
        for d in range(1, self.dim):
            stride *= self._shape[d - 1]
            idx = np.add.outer(ranges[d] * stride, idx).ravel()
        return idx

    def eval_all_ders(self, point: Sequence[float],
                      n: int = 0) -> Tuple[np.ndarray, List[np.ndarray]]:
        """
        Values and derivatives up to order n of the functions active at point.

        Returns:
            (indices, ders) where indices are the active flat indices and
            ders[k] has shape (len(derivative_multi_indices(dim, k)), n_active)
        """
        spans = self._spans(point)
        ranges = []
        ders_1d = []
        for kv, x, s in zip(self.knot_vectors, point, spans):
            ranges.append(np.arange(s - kv.degree, s + 1))
            ders_1d.append(eval_basis_ders_1d(kv, float(x), n, s))
        indices = self._combine_indices(ranges)

        result = []
        for order in range(n + 1):
            rows = [_tensor_combine([ders_1d[d][alpha[d]] for d in range(self.dim)])
                    for alpha in derivative_multi_indices(self.dim, order)]
            result.append(np.array(rows))
        return indices, result

    def refinement_matrix(self, fine: 'TensorBSplineBasis') -> sparse.csr_matrix:
        """
        Sparse matrix mapping coefficients of this basis to a nested finer
        tensor basis (Kronecker product of the 1D knot-insertion matrices).
        """
        if fine.dim != self.dim:
            raise ValueError(f"Dimension mismatch: {self.dim} != {fine.dim}")
        result = None
        for kv_c, kv_f in zip(self.knot_vectors, fine.knot_vectors):
            A = sparse.csr_matrix(compute_refinement_matrix(kv_c, kv_f))
            result = A if result is None else sparse.kron(A, result, format='csr')
        return result

    def refine_uniform(self, num_knots: int = 1,
                       mul: int = 1) -> 'TensorBSplineBasis':
        """Basis with num_knots new knots of multiplicity mul per element."""
        return TensorBSplineBasis(
            [refine_knot_vector_uniform(kv, num_knots, mul)[0] for kv in self.knot_vectors]
        )

    def refine_dyadic(self) -> 'TensorBSplineBasis':
        """Next hierarchy level: every element halved in every direction."""
        return self.refine_uniform(1, 1)

    def increase_multiplicity(self, direction: int, knot_values: Sequence[float],
                              mult: int = 1) -> 'TensorBSplineBasis':
        kvs = list(self.knot_vectors)
        kvs[direction] = increase_knot_multiplicity(kvs[direction], knot_values, mult)
        return TensorBSplineBasis(kvs)

    def union(self, other: 'TensorBSplineBasis') -> 'TensorBSplineBasis':
        """Tensor basis on the union of both knot vectors per direction."""
        return TensorBSplineBasis(
            [knot_union(a, b) for a, b in zip(self.knot_vectors, other.knot_vectors)]
        )

    def copy(self) -> 'TensorBSplineBasis':
        return TensorBSplineBasis([kv.copy() for kv in self.knot_vectors])

    def __repr__(self) -> str:
        parts = ", ".join(
            f"deg {kv.degree}, {kv.n_basis} funcs, {kv.n_elements} elems"
            for kv in self.knot_vectors
        )
        return f"TensorBSplineBasis({parts})"
