"""
Visualization of hierarchical bases.

Key functions:
- sample_levels, sample_basis_sum: grid sampling without matplotlib
- plot_levels: level map with element boundaries (needs matplotlib)
"""

from .levels import (
    sample_grid,
    sample_levels,
    sample_basis_sum,
    plot_levels,
)

__all__ = [
    'sample_grid',
    'sample_levels',
    'sample_basis_sum',
    'plot_levels',
]
