"""
Level maps and basis sums of 2D hierarchical bases.

The sampling functions have no matplotlib dependency and can be used
independently for numerical checks; plot_levels imports matplotlib
lazily.

Example:
    from htbIGA.visualization import plot_levels

    plot_levels(basis, save_path="levels.png", show=False)
"""

from typing import Optional, Tuple, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from ..hierarchical.htensor_basis import HTensorBasis

__all__ = [
    'sample_grid',
    'sample_levels',
    'sample_basis_sum',
    'plot_levels',
]


def sample_grid(basis: 'HTensorBasis', n_points: int = 50) -> Tuple[np.ndarray, np.ndarray]:
    """
    Tensor grid of n_points per direction over the parameter domain of a
    2D basis.

    Returns:
        (xi_grid, eta_grid) 1D arrays
    """
    if basis.dim != 2:
        raise ValueError(f"Level maps need a 2D basis, got dimension {basis.dim}")
    domain = basis.support()
    return (np.linspace(domain[0, 0], domain[0, 1], n_points),
            np.linspace(domain[1, 0], domain[1, 1], n_points))


def sample_levels(basis: 'HTensorBasis', n_points: int = 50) -> np.ndarray:
    """Tree level at every grid point, shape (n_points, n_points) indexed [eta, xi]."""
    xi, eta = sample_grid(basis, n_points)
    X, Y = np.meshgrid(xi, eta)
    levels = basis.get_level_at_points(np.vstack([X.ravel(), Y.ravel()]))
    return levels.reshape(X.shape)


def sample_basis_sum(basis: 'HTensorBasis', n_points: int = 50) -> np.ndarray:
    """Sum of all basis functions at every grid point (1 for THB-splines)."""
    xi, eta = sample_grid(basis, n_points)
    X, Y = np.meshgrid(xi, eta)
    values = basis.eval(np.vstack([X.ravel(), Y.ravel()]))
    return np.asarray(values.sum(axis=1)).reshape(X.shape)


def plot_levels(basis: 'HTensorBasis', n_points: int = 200, show_elements: bool = True,
                save_path: Optional[str] = None, show: bool = True):
    """
    Plot the refinement levels of a 2D hierarchical basis.

    Parameters:
        basis: 2D hierarchical basis
        n_points: Sampling resolution per direction
        show_elements: Draw the element boundaries on top
        save_path: If provided, save figure to this path
        show: Whether to call plt.show()

    Returns:
        matplotlib Figure object
    """
    import matplotlib.pyplot as plt

    levels = sample_levels(basis, n_points)
    domain = basis.support()
    extent = [domain[0, 0], domain[0, 1], domain[1, 0], domain[1, 1]]

    fig, ax = plt.subplots(figsize=(6, 6))
    im = ax.imshow(levels, extent=extent, origin='lower', cmap='viridis',
                   vmin=0, vmax=max(basis.max_level, 1), aspect='equal',
                   interpolation='nearest')
    if show_elements:
        for _, lower, upper in basis.iter_elements():
            ax.add_patch(plt.Rectangle(lower, *(upper - lower), fill=False,
                                       edgecolor='white', linewidth=0.5))
    ax.set_xlabel('xi')
    ax.set_ylabel('eta')
    ax.set_title(f'{type(basis).__name__}: {basis.size()} functions')
    plt.colorbar(im, ax=ax, shrink=0.8, label='level')
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
    if show:
        plt.show()
    return fig
