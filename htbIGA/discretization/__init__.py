"""
Discretization module for hierarchical IGA.

Provides:
- KnotVector: Knot vector representation
- Knot insertion, dyadic/uniform refinement and nested knot algebra
"""

from .knot_vector import (
    KnotVector,
    make_open_knot_vector,
    make_uniform_knot_vector,
    insert_knot,
    insert_knots,
    compute_multiplicity,
    compute_knot_insertion_matrix,
    compute_refinement_matrix,
    refine_knot_vector_dyadic,
    refine_knot_vector_uniform,
    difference_between_knot_vectors,
    knot_union,
    increase_knot_multiplicity,
)
