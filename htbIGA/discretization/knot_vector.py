"""
Knot vector utilities for hierarchical B-spline spaces.

A knot vector is a non-decreasing sequence of real numbers that defines
the parametric domain and basis function support for B-splines.

Mathematical background:
- Open knot vectors have p+1 repeated knots at each end (interpolatory at boundaries)
- The number of basis functions n = len(knots) - p - 1
- Knot spans (elements) are unique intervals [xi_i, xi_{i+1}] where xi_i < xi_{i+1}

Hierarchical spaces need nested knot vectors: every knot of level l must
appear in level l+1 with at least the same multiplicity. The helpers at
the bottom of this module (knot difference, refinement matrices, knot
union) maintain and exploit that nesting.
"""

import logging

import numpy as np
from typing import List, Tuple, Optional, Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Relative tolerance used to identify equal knot values
KNOT_TOL = 1e-12


@dataclass
class KnotVector:
    """
    Represents a univariate knot vector.

    Attributes:
        knots: The knot values (non-decreasing sequence)
        degree: Polynomial degree p

    Properties computed:
        n_basis: Number of basis functions
        n_elements: Number of non-zero measure knot spans
        elements: List of (start, end) parametric coordinates for each element
    """
    knots: np.ndarray
    degree: int

    def __post_init__(self):
        self.knots = np.asarray(self.knots, dtype=np.float64)
        self._validate()
        self._compute_elements()

    def _validate(self):
        if self.degree < 0:
            raise ValueError(f"Degree must be non-negative, got {self.degree}.")
        if len(self.knots) < 2 * (self.degree + 1):
            raise ValueError(
                f"Knot vector too short for degree {self.degree}. "
                f"Need at least {2 * (self.degree + 1)} knots, got {len(self.knots)}."
            )
        if not np.all(np.diff(self.knots) >= 0):
            raise ValueError("Knot vector must be non-decreasing.")
        if self.knots[0] == self.knots[-1]:
            raise ValueError("Knot vector spans an empty parametric domain.")

    def _compute_elements(self):
        unique_knots, counts = np.unique(self.knots, return_counts=True)
        self._unique_knots = unique_knots
        self._multiplicities = counts
        # Span index of element e is the last occurrence of its left break
        spans = np.searchsorted(self.knots, unique_knots[:-1], side='right') - 1
        self._element_spans = np.clip(spans, self.degree, self.n_basis - 1)

    @property
    def n_basis(self) -> int:
        """Number of basis functions."""
        return len(self.knots) - self.degree - 1

    @property
    def n_elements(self) -> int:
        """Number of non-zero measure knot spans (elements)."""
        return len(self._unique_knots) - 1

    @property
    def elements(self) -> List[Tuple[float, float]]:
        """List of element intervals as (xi_start, xi_end) tuples."""
        u = self._unique_knots
        return [(u[e], u[e + 1]) for e in range(self.n_elements)]

    @property
    def unique_knots(self) -> np.ndarray:
        """Unique knot values (breakpoints)."""
        return self._unique_knots.copy()

    @property
    def multiplicities(self) -> np.ndarray:
        """Multiplicity of every breakpoint, aligned with unique_knots."""
        return self._multiplicities.copy()

    @property
    def domain(self) -> Tuple[float, float]:
        """Parametric domain (first unique knot, last unique knot)."""
        return (self._unique_knots[0], self._unique_knots[-1])

    def find_span(self, xi: float) -> int:
        """
        Find the knot span index containing parameter value xi.

        For xi in [xi_i, xi_{i+1}), returns i. The last span is closed.
        """
        n = self.n_basis
        p = self.degree

        if xi >= self.knots[n]:
            return n - 1
        if xi <= self.knots[p]:
            return p

        low = p
        high = n
        mid = (low + high) // 2
        while xi < self.knots[mid] or xi >= self.knots[mid + 1]:
            if xi < self.knots[mid]:
                high = mid
            else:
                low = mid
            mid = (low + high) // 2

        return mid

    def knot_to_element_index(self, xi: float) -> int:
        """
        Index of the element (unique knot span) containing xi.

        Interior breakpoints belong to the element on their right, the
        right end of the domain belongs to the last element. Values outside
        the domain are clamped to the first/last element.
        """
        e = int(np.searchsorted(self._unique_knots, xi, side='right')) - 1
        return min(max(e, 0), self.n_elements - 1)

    def find_element(self, xi: float) -> int:
        """
        Find which element contains parameter value xi.

        Uses half-open interval convention [xi_start, xi_end) for interior
        boundaries; the last element includes its right boundary.

        Raises:
            ValueError: if xi lies outside the domain
        """
        a, b = self.domain
        if xi < a or xi > b:
            raise ValueError(f"Parameter {xi} outside domain {self.domain}")
        return self.knot_to_element_index(xi)

    def element_to_span(self, element_idx: int) -> int:
        """Convert element index to knot span index."""
        return int(self._element_spans[element_idx])

    def active_basis_indices(self, element_idx: int) -> np.ndarray:
        """Indices of the p+1 basis functions non-zero on an element."""
        span = self.element_to_span(element_idx)
        return np.arange(span - self.degree, span + 1)

    def basis_support(self, basis_idx: int) -> Tuple[float, float]:
        """Parametric support [xi_i, xi_{i+p+1}] of basis function i."""
        return (self.knots[basis_idx], self.knots[basis_idx + self.degree + 1])

    def element_support(self, basis_idx: int) -> Tuple[int, int]:
        """
        Element index range [low, high) covered by basis function i.
        """
        lo, hi = self.basis_support(basis_idx)
        low = int(np.searchsorted(self._unique_knots, lo, side='left'))
        high = int(np.searchsorted(self._unique_knots, hi, side='left'))
        return (low, max(high, low + 1))

    def element_supports(self) -> Tuple[np.ndarray, np.ndarray]:
        """Element ranges [low, high) of all basis functions at once."""
        p = self.degree
        n = self.n_basis
        low = np.searchsorted(self._unique_knots, self.knots[:n], side='left')
        high = np.searchsorted(self._unique_knots, self.knots[p + 1:p + 1 + n], side='left')
        return low, np.maximum(high, low + 1)

    def greville_abscissae(self) -> np.ndarray:
        """
        Compute Greville abscissae (nodal parameters for basis functions).

        The i-th Greville abscissa is the average of p consecutive knots:
        xi_i = (xi_{i+1} + xi_{i+2} + ... + xi_{i+p}) / p

        For p = 0 the midpoint of the support is used.
        """
        p = self.degree
        n = self.n_basis
        if p == 0:
            return 0.5 * (self.knots[:n] + self.knots[1:n + 1])
        csum = np.concatenate([[0.0], np.cumsum(self.knots)])
        idx = np.arange(n)
        return (csum[idx + p + 1] - csum[idx + 1]) / p

    def tolerance(self) -> float:
        """Absolute tolerance for comparing knot values of this vector."""
        a, b = self.domain
        return KNOT_TOL * max(1.0, abs(b - a))

    def copy(self) -> 'KnotVector':
        return KnotVector(self.knots.copy(), self.degree)


def make_open_knot_vector(n_basis: int, degree: int,
                           domain: Tuple[float, float] = (0.0, 1.0)) -> KnotVector:
    """
    Create an open (clamped) uniform knot vector.

    Parameters:
        n_basis: Number of basis functions desired
        degree: Polynomial degree p
        domain: Parametric domain (start, end)

    Returns:
        KnotVector with uniform internal knots
    """
    p = degree
    n_internal = n_basis - p - 1

    if n_internal < 0:
        raise ValueError(
            f"Cannot create knot vector: n_basis={n_basis} too small for degree={degree}"
        )

    a, b = domain
    knots = [a] * (p + 1)
    if n_internal > 0:
        knots.extend(np.linspace(a, b, n_internal + 2)[1:-1])
    knots.extend([b] * (p + 1))

    return KnotVector(np.array(knots), degree)


def make_uniform_knot_vector(n_elements: int, degree: int,
                             domain: Tuple[float, float] = (0.0, 1.0)) -> KnotVector:
    """Open uniform knot vector with a given number of elements."""
    if n_elements < 1:
        raise ValueError(f"Need at least one element, got {n_elements}")
    return make_open_knot_vector(n_elements + degree, degree, domain)


def insert_knot(kv: KnotVector, xi: float, times: int = 1) -> KnotVector:
    """
    Insert a knot value into the knot vector.

    Only the knot vector is returned; use compute_knot_insertion_matrix
    to also transform coefficients.
    """
    new_knots = np.sort(np.concatenate([kv.knots, [xi] * times]))
    return KnotVector(new_knots, kv.degree)


def compute_multiplicity(kv: KnotVector, xi: float, tol: Optional[float] = None) -> int:
    """Number of times xi appears in the knot vector (up to tol)."""
    if tol is None:
        tol = kv.tolerance()
    return int(np.sum(np.abs(kv.knots - xi) < tol))


def _insert_knot_rows(kv: KnotVector, xi: float,
                      rows: np.ndarray) -> Tuple[KnotVector, np.ndarray]:
    """
    Insert xi once and apply the insertion to the rows of a coefficient
    matrix (Boehm's algorithm): rows has shape (n_basis, m).
    """
    p = kv.degree
    knots = kv.knots
    k = kv.find_span(xi)
    # Inserting at the domain end would extend the last span
    if xi >= knots[kv.n_basis]:
        k = int(np.searchsorted(knots, xi, side='left')) - 1

    new_knots = np.insert(knots, k + 1, xi)
    n_new = kv.n_basis + 1

    new_rows = np.zeros((n_new, rows.shape[1]))
    new_rows[:k - p + 1] = rows[:k - p + 1]
    new_rows[k + 1:] = rows[k:]
    for i in range(k - p + 1, k + 1):
        denom = knots[i + p] - knots[i]
        alpha = (xi - knots[i]) / denom if denom > 0.0 else 0.0
        new_rows[i] = alpha * rows[i] + (1.0 - alpha) * rows[i - 1]

    return KnotVector(new_knots, p), new_rows


def compute_knot_insertion_matrix(kv: KnotVector, xi: float) -> Tuple[KnotVector, np.ndarray]:
    """
    Compute the knot insertion matrix for inserting a single knot.

    When a knot is inserted, coefficients are updated by P_new = A @ P_old.

    Returns:
        Tuple of (new_knot_vector, insertion_matrix A) with A of shape
        (n_old + 1, n_old)
    """
    return _insert_knot_rows(kv, xi, np.eye(kv.n_basis))


def insert_knots(kv: KnotVector, knots: Sequence[float]) -> Tuple[KnotVector, np.ndarray]:
    """
    Insert several knots one after the other.

    Returns:
        (refined_knot_vector, A) with fine coefficients = A @ coarse coefficients
    """
    current = kv
    A = np.eye(kv.n_basis)
    for xi in sorted(knots):
        current, A = _insert_knot_rows(current, xi, A)
    return current, A


def refine_knot_vector_uniform(kv: KnotVector, num_knots: int = 1,
                               mul: int = 1) -> Tuple[KnotVector, np.ndarray]:
    """
    Insert num_knots equally spaced knots, each mul times, in every element.

    Parameters:
        kv: Original knot vector
        num_knots: Number of new breakpoints per element
        mul: Multiplicity of every new breakpoint

    Returns:
        (refined_knot_vector, refinement matrix A), fine = A @ coarse
    """
    if num_knots < 1 or mul < 1:
        raise ValueError(f"num_knots and mul must be positive, got {num_knots}, {mul}")
    mul = min(mul, kv.degree + 1)
    new = []
    for a, b in kv.elements:
        for k in range(1, num_knots + 1):
            new.extend([a + k * (b - a) / (num_knots + 1)] * mul)
    return insert_knots(kv, new)


def refine_knot_vector_dyadic(kv: KnotVector) -> Tuple[KnotVector, np.ndarray]:
    """
    Refine a knot vector by inserting midpoints of all non-zero spans.

    This is the level-to-level refinement of hierarchical B-splines.
    """
    return refine_knot_vector_uniform(kv, 1, 1)


def difference_between_knot_vectors(coarse: KnotVector, fine: KnotVector,
                                    c_low: int = 0, c_high: Optional[int] = None,
                                    f_low: int = 0, f_high: Optional[int] = None) -> List[float]:
    """
    Knots of fine that are missing from coarse, with multiplicity.

    Only the breakpoints with unique indices c_low..c_high of coarse and
    f_low..f_high of fine are compared (both ranges inclusive, default
    the whole vectors).

    Raises:
        ValueError: if a coarse breakpoint is missing from fine or has a
            higher multiplicity there (the knot vectors are not nested)
    """
    cu, cm = coarse._unique_knots, coarse._multiplicities
    fu, fm = fine._unique_knots, fine._multiplicities
    if c_high is None:
        c_high = len(cu) - 1
    if f_high is None:
        f_high = len(fu) - 1
    tol = max(coarse.tolerance(), fine.tolerance())

    knots = []
    c_index = c_low
    for f_index in range(f_low, f_high + 1):
        f_knot = fu[f_index]
        if c_index <= c_high and abs(f_knot - cu[c_index]) <= tol:
            extra = fm[f_index] - cm[c_index]
            if extra < 0:
                raise ValueError(
                    f"Knot {f_knot} has multiplicity {cm[c_index]} in the coarse "
                    f"vector but only {fm[f_index]} in the fine one"
                )
            knots.extend([f_knot] * int(extra))
            c_index += 1
        elif c_index <= c_high and cu[c_index] < f_knot:
            raise ValueError(f"Coarse knot {cu[c_index]} is missing from the fine knot vector")
        else:
            knots.extend([f_knot] * int(fm[f_index]))

    if c_index <= c_high:
        raise ValueError(f"Coarse knot {cu[c_index]} is missing from the fine knot vector")
    return knots


def compute_refinement_matrix(kv_coarse: KnotVector, kv_fine: KnotVector) -> np.ndarray:
    """
    Compute the refinement matrix between two nested knot vectors.

    Coefficients transform as c_fine = A @ c_coarse, equivalently
    N_coarse = A.T @ N_fine for the basis function vectors.

    Returns:
        Matrix A with shape (n_fine, n_coarse)
    """
    if kv_coarse.degree != kv_fine.degree:
        raise ValueError(
            f"Degree mismatch: {kv_coarse.degree} != {kv_fine.degree}"
        )
    knots = difference_between_knot_vectors(kv_coarse, kv_fine)
    refined, A = insert_knots(kv_coarse, knots)
    if refined.n_basis != kv_fine.n_basis:
        raise ValueError("Fine knot vector is not a refinement of the coarse one")
    return A


def knot_union(kv_a: KnotVector, kv_b: KnotVector) -> KnotVector:
    """
    Smallest knot vector containing both inputs (maximum multiplicities).

    Values closer than the knot tolerance are identified; the value from
    kv_a is kept.
    """
    if kv_a.degree != kv_b.degree:
        raise ValueError(f"Degree mismatch: {kv_a.degree} != {kv_b.degree}")
    tol = max(kv_a.tolerance(), kv_b.tolerance())
    values = list(kv_a._unique_knots)
    mults = list(kv_a._multiplicities)
    for u, m in zip(kv_b._unique_knots, kv_b._multiplicities):
        j = int(np.searchsorted(kv_a._unique_knots, u))
        for cand in (j - 1, j):
            if 0 <= cand < len(kv_a._unique_knots) and abs(kv_a._unique_knots[cand] - u) <= tol:
                mults[cand] = max(mults[cand], m)
                break
        else:
            values.append(u)
            mults.append(m)
    order = np.argsort(values, kind='stable')
    knots = np.repeat(np.asarray(values)[order], np.asarray(mults)[order])
    return KnotVector(knots, kv_a.degree)


def increase_knot_multiplicity(kv: KnotVector, knot_values: Sequence[float],
                               mult: int = 1) -> KnotVector:
    """
    Raise the multiplicity of existing interior breakpoints by mult.

    Values that are not interior breakpoints of kv are ignored. The
    multiplicity never exceeds p+1.
    """
    tol = kv.tolerance()
    u = kv._unique_knots
    mults = kv._multiplicities.copy()
    for value in knot_values:
        j = int(np.argmin(np.abs(u - value)))
        if abs(u[j] - value) > tol or j == 0 or j == len(u) - 1:
            logger.warning("Knot value %s is not an interior knot, ignored", value)
            continue
        mults[j] = min(mults[j] + mult, kv.degree + 1)
    return KnotVector(np.repeat(u, mults), kv.degree)
