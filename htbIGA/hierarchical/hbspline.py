"""
Hierarchical B-splines (HB-splines).

The selected tensor functions of every level are used as they are. HB
functions are linearly independent but do not form a partition of unity
once the domain is refined.
"""

import numpy as np
from typing import List, Sequence, Tuple

from .htensor_basis import HTensorBasis
from .transfer import HierarchicalTransfer, TransferStrategy


class HBSplineBasis(HTensorBasis):
    """Hierarchical B-spline basis."""

    def _make_transfer_strategy(self) -> TransferStrategy:
        return HierarchicalTransfer()

    def eval_all_ders(self, point: Sequence[float],
                      n: int = 0) -> Tuple[np.ndarray, List[np.ndarray]]:
        top = min(self.get_level_at_point(point), self.max_level)
        indices = []
        blocks = [[] for _ in range(n + 1)]
        for lvl in range(top + 1):
            local, ders = self._bases[lvl].eval_all_ders(point, n)
            idx = self.flat_tensor_indices_to_hierarchical(local, lvl)
            keep = idx >= 0
            indices.append(idx[keep])
            for k in range(n + 1):
                blocks[k].append(ders[k][:, keep])
        return np.concatenate(indices), [np.hstack(b) for b in blocks]
