"""
Geary's C contiguity ratio.
"""
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, Optional, Tuple

import numpy as np
from scipy import sparse, stats

from ..core.decorators import performance_tracker
from ..weights.matrix import WeightsMatrix
from .base import (
    ArrayLike, permutation_p_value, prepare_values, require_links,
    resolve_alternative, simulate_permutations
)
from .moran import PermutationResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GearyResult:
    """Geary's C with its normality moments. Values below 1 indicate clustering."""
    statistic: float
    expected: float
    n: int
    variance_normal: float
    z_normal: float
    p_normal: float
    islands: Tuple[int, ...] = ()
    permutation: Optional[PermutationResult] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'statistic': self.statistic,
            'expected': self.expected,
            'n': self.n,
            'variance_normal': self.variance_normal,
            'z_normal': self.z_normal,
            'p_normal': self.p_normal,
            'islands': list(self.islands),
        }
        if self.permutation is not None:
            result['permutation'] = self.permutation.to_dict()
        return result


def _geary_batch(
    batch: np.ndarray,
    matrix: sparse.csr_matrix,
    margins: np.ndarray,
    scale: float,
    zz: float
) -> np.ndarray:
    # sum_ij w_ij (x_i - x_j)^2 = sum_i x_i^2 (r_i + c_i) - 2 x'Wx
    lagged = (matrix @ batch.T).T
    squared = (batch ** 2) @ margins - 2.0 * np.einsum('ij,ij->i', batch, lagged)
    return scale * squared / zz


@performance_tracker()
def geary(
    x: ArrayLike,
    weights: WeightsMatrix,
    permutations: int = 0,
    seed: Optional[int] = None,
    alternative: Optional[str] = None,
    **parallel_options
) -> GearyResult:
    """
    Geary's C: ``(n - 1) sum_ij w_ij (x_i - x_j)^2 / (2 S0 sum_i z_i^2)``.

    Under a zero policy ``n`` excludes the islands, as for Moran's I. The
    permutation test uses ``alternative='less'`` to look for clustering.
    """
    values = prepare_values(x, weights)
    require_links(weights)

    z = values - values.mean()
    zz = float(np.sum(z ** 2))
    n = weights.n_effective
    s0, s1, s2 = weights.s0, weights.s1, weights.s2

    margins = weights.row_sums + np.asarray(weights.sparse.sum(axis=0)).ravel()
    scale = (n - 1.0) / (2.0 * s0)
    statistic = float(_geary_batch(z.reshape(1, -1), weights.sparse, margins, scale, zz)[0])

    variance = ((2.0 * s1 + s2) * (n - 1.0) - 4.0 * s0 * s0) / (2.0 * (n + 1.0) * s0 * s0)
    z_normal = (statistic - 1.0) / np.sqrt(variance)
    p_normal = 2.0 * stats.norm.sf(abs(z_normal))

    permutation = None
    if permutations:
        alternative = resolve_alternative(alternative)
        batch = partial(_geary_batch, matrix=weights.sparse, margins=margins, scale=scale, zz=zz)
        simulated = simulate_permutations(batch, z, permutations, seed=seed, **parallel_options)
        mean, std = float(simulated.mean()), float(simulated.std())
        permutation = PermutationResult(
            permutations=permutations,
            seed=seed,
            alternative=alternative,
            p_value=permutation_p_value(simulated, statistic, alternative),
            simulated_mean=mean,
            simulated_std=std,
            z_value=float((statistic - mean) / std) if std > 0 else float('nan'),
            simulated=simulated,
        )

    logger.info(f"Geary's C = {statistic:.4f} (n = {n})")
    return GearyResult(
        statistic=statistic,
        expected=1.0,
        n=n,
        variance_normal=float(variance),
        z_normal=float(z_normal),
        p_normal=float(p_normal),
        islands=weights.islands,
        permutation=permutation,
    )
