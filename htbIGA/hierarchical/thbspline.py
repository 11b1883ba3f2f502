"""
Truncated hierarchical B-splines (THB-splines).

Truncation removes from a coarse function the contributions of the finer
tensor functions whose support lies in the finer region:

    trunc^{l+1}(f) = sum over tau in B^{l+1}, supp tau not in Omega^{l+1}
                     of c_tau(f) * tau

applied recursively level by level. The result is a partition of unity
and keeps the span of the HB basis.

Evaluation uses the truncated functions written on the finest tensor
level, which is computed once per structure and cached.
"""

import numpy as np
from scipy import sparse
from typing import List, Optional, Sequence, Tuple

from .htensor_basis import HTensorBasis
from .transfer import TransferStrategy, TruncatedTransfer, thb_to_hb


class THBSplineBasis(HTensorBasis):
    """Truncated hierarchical B-spline basis."""

    _fine: Optional[sparse.csr_matrix] = None

    def _make_transfer_strategy(self) -> TransferStrategy:
        return TruncatedTransfer()

    @property
    def truncated(self) -> bool:
        return True

    def _invalidate(self) -> None:
        self._fine = None

    def _fine_representation(self) -> sparse.csr_matrix:
        if self._fine is None:
            self._fine = self.representation()
        return self._fine

    def truncation_matrix(self) -> sparse.csr_matrix:
        """
        Matrix K with c_hb = K @ c_thb: THB coefficients to the HB
        coefficients of the same function.
        """
        return thb_to_hb(self._current_state())

    def eval_all_ders(self, point: Sequence[float],
                      n: int = 0) -> Tuple[np.ndarray, List[np.ndarray]]:
        active = self.active(point)
        local, ders = self._bases[self.max_level].eval_all_ders(point, n)
        coefs = self._fine_representation()[local][:, active].toarray()
        return active, [d @ coefs for d in ders]
