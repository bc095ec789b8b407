"""
Local indicators of spatial association (local Moran's I).
"""
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import sparse, stats

from ..computation.parallel import chunk_bounds, parallel_map, spawn_generators
from ..core.config import get_config
from ..core.decorators import performance_tracker
from ..weights.matrix import WeightsMatrix
from .base import ArrayLike, prepare_values, require_links

logger = logging.getLogger(__name__)

LISA_METHODS = ('permutation', 'analytic')


class Quadrant(IntEnum):
    """Moran scatterplot quadrant of a significant unit."""
    NOT_SIGNIFICANT = 0
    HIGH_HIGH = 1
    LOW_HIGH = 2
    LOW_LOW = 3
    HIGH_LOW = 4


def classify_quadrants(
    quadrants: np.ndarray,
    p_values: np.ndarray,
    significance: float
) -> Tuple[Quadrant, ...]:
    """Keep the quadrant where ``p < significance``; p equal to the threshold is not significant."""
    significant = np.zeros(len(p_values), dtype=bool)
    finite = np.isfinite(p_values)
    significant[finite] = p_values[finite] < significance
    return tuple(
        Quadrant(int(q)) if flag else Quadrant.NOT_SIGNIFICANT
        for q, flag in zip(quadrants, significant)
    )


@dataclass(frozen=True)
class LisaResult:
    """
    Per-unit local Moran statistics.

    Attributes:
        ids: Unit ids in weights order.
        statistics: Local Moran I_i.
        z_values: Standardised I_i (against the permutation distribution or
            the analytic moments).
        p_values: Pseudo p-values; NaN for islands.
        quadrants: Scatterplot quadrant codes regardless of significance.
        classifications: Quadrant of significant units, NOT_SIGNIFICANT otherwise.
        lag: Spatial lag of the raw attribute.
    """
    ids: Tuple[int, ...]
    statistics: np.ndarray
    z_values: np.ndarray
    p_values: np.ndarray
    quadrants: np.ndarray
    classifications: Tuple[Quadrant, ...]
    lag: np.ndarray
    significance: float
    method: str
    permutations: int = 0
    seed: Optional[int] = None
    islands: Tuple[int, ...] = ()

    def classify(self, significance: float) -> Tuple[Quadrant, ...]:
        """Reclassify at another significance threshold without recomputing."""
        return classify_quadrants(self.quadrants, self.p_values, significance)

    @property
    def counts(self) -> Dict[str, int]:
        return {q.name: sum(1 for c in self.classifications if c is q) for q in Quadrant}

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                'statistic': self.statistics,
                'z_value': self.z_values,
                'p_value': self.p_values,
                'quadrant': self.quadrants,
                'classification': [c.name for c in self.classifications],
                'lag': self.lag,
            },
            index=pd.Index(self.ids, name='id')
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'method': self.method,
            'significance': self.significance,
            'permutations': self.permutations,
            'seed': self.seed,
            'islands': list(self.islands),
            'counts': self.counts,
            'units': {
                unit: {
                    'statistic': float(self.statistics[i]),
                    'z_value': float(self.z_values[i]),
                    'p_value': float(self.p_values[i]),
                    'classification': self.classifications[i].name,
                }
                for i, unit in enumerate(self.ids)
            },
        }


def _conditional_chunk(task: Tuple) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Conditional permutations for every unit in one chunk.

    Each draw relabels the neighbours of unit i with values taken without
    replacement from the other n - 1 units; the same index draws are shared
    across units.
    """
    z, matrix, m2, size, rng, observed = task
    n = len(z)
    max_k = int(np.diff(matrix.indptr).max())
    draws = rng.permuted(np.tile(np.arange(n - 1), (size, 1)), axis=1)[:, :max_k]

    above = np.zeros(n)
    total = np.zeros(n)
    total_sq = np.zeros(n)
    for i in range(n):
        start, end = matrix.indptr[i], matrix.indptr[i + 1]
        k = end - start
        if k == 0:
            continue
        others = draws[:, :k]
        others = others + (others >= i)
        simulated = z[i] / m2 * (z[others] @ matrix.data[start:end])
        above[i] = np.sum(simulated >= observed[i])
        total[i] = simulated.sum()
        total_sq[i] = np.sum(simulated ** 2)
    return above, total, total_sq


def _permutation_inference(
    z: np.ndarray,
    matrix: sparse.csr_matrix,
    m2: float,
    statistics: np.ndarray,
    permutations: int,
    seed: Optional[int],
    chunk_size: Optional[int] = None,
    **parallel_options
) -> Tuple[np.ndarray, np.ndarray]:
    chunk_size = chunk_size or get_config().section('autocorrelation').chunk_size
    sizes = chunk_bounds(permutations, chunk_size)
    generators = spawn_generators(seed, len(sizes))
    tasks = [(z, matrix, m2, size, rng, statistics) for size, rng in zip(sizes, generators)]

    chunks: List[Tuple] = parallel_map(_conditional_chunk, tasks, **parallel_options)
    above = sum(c[0] for c in chunks)
    total = sum(c[1] for c in chunks)
    total_sq = sum(c[2] for c in chunks)

    # Fold to the tail the observed value lies in
    below = permutations - above
    extreme = np.minimum(above, below)
    p_values = (extreme + 1.0) / (permutations + 1.0)

    mean = total / permutations
    std = np.sqrt(np.maximum(total_sq / permutations - mean ** 2, 0.0))
    with np.errstate(divide='ignore', invalid='ignore'):
        z_values = np.where(std > 0, (statistics - mean) / std, np.nan)
    return z_values, p_values


def _analytic_inference(
    z: np.ndarray,
    weights: WeightsMatrix,
    statistics: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """Moments of I_i under randomisation; one-sided normal p-values."""
    n = len(z)
    m2 = np.sum(z ** 2) / n
    b2 = (np.sum(z ** 4) / n) / m2 ** 2

    row_sums = weights.row_sums
    squared_sums = np.asarray(weights.sparse.multiply(weights.sparse).sum(axis=1)).ravel()

    expected = -row_sums / (n - 1.0)
    variance = (
        squared_sums * (n - b2) / (n - 1.0)
        + (row_sums ** 2 - squared_sums) * (2.0 * b2 - n) / ((n - 1.0) * (n - 2.0))
        - row_sums ** 2 / (n - 1.0) ** 2
    )
    with np.errstate(divide='ignore', invalid='ignore'):
        z_values = np.where(variance > 0, (statistics - expected) / np.sqrt(variance), np.nan)
    p_values = stats.norm.sf(np.abs(z_values))
    return z_values, p_values


@performance_tracker()
def local_moran(
    x: ArrayLike,
    weights: WeightsMatrix,
    permutations: Optional[int] = None,
    seed: Optional[int] = None,
    method: Optional[str] = None,
    significance: Optional[float] = None,
    **parallel_options
) -> LisaResult:
    """
    Local Moran's I for every unit.

    ``I_i = (z_i / m2) * sum_j w_ij z_j`` with ``z`` mean-centred and
    ``m2 = sum(z^2) / n``, so the local statistics sum to ``S0 * I``.

    Args:
        x: Attribute values in weights order, or an AttributeVector
        weights: Spatial weights
        permutations: Conditional permutations per unit
            (``autocorrelation.permutations`` by default)
        seed: Seed for reproducible permutations
        method: 'permutation' (folded pseudo p-values) or 'analytic'
        significance: Classification threshold (``autocorrelation.lisa_significance``)
        **parallel_options: chunk_size, max_workers, executor, timeout

    Returns:
        LisaResult; islands get I_i = 0, a NaN p-value and NOT_SIGNIFICANT
    """
    settings = get_config().section('autocorrelation')
    permutations = settings.permutations if permutations is None else permutations
    seed = settings.seed if seed is None else seed
    method = method or settings.lisa_method
    significance = settings.lisa_significance if significance is None else significance

    if method not in LISA_METHODS:
        raise ValueError(f"method must be one of {LISA_METHODS}, got {method!r}")
    if method == 'permutation' and permutations < 1:
        raise ValueError("Permutation inference needs at least one permutation")
    if not 0 < significance < 1:
        raise ValueError(f"significance must lie in (0, 1), got {significance}")

    values = prepare_values(x, weights)
    require_links(weights)

    z = values - values.mean()
    m2 = float(np.sum(z ** 2) / len(z))
    lag_z = weights.lag(z)
    statistics = z / m2 * lag_z

    if method == 'permutation':
        z_values, p_values = _permutation_inference(
            z, weights.sparse, m2, statistics, permutations, seed, **parallel_options
        )
    else:
        z_values, p_values = _analytic_inference(z, weights, statistics)

    island_mask = weights.island_mask
    statistics = np.where(island_mask, 0.0, statistics)
    p_values = np.where(island_mask, np.nan, p_values)
    z_values = np.where(island_mask, np.nan, z_values)

    lag = weights.lag(values)
    high = z > 0
    lag_high = (lag - lag.mean()) > 0
    quadrants = np.select(
        [high & lag_high, ~high & lag_high, ~high & ~lag_high, high & ~lag_high],
        [Quadrant.HIGH_HIGH, Quadrant.LOW_HIGH, Quadrant.LOW_LOW, Quadrant.HIGH_LOW]
    ).astype(int)

    classifications = classify_quadrants(quadrants, p_values, significance)
    result = LisaResult(
        ids=weights.ids,
        statistics=statistics,
        z_values=z_values,
        p_values=p_values,
        quadrants=quadrants,
        classifications=classifications,
        lag=lag,
        significance=significance,
        method=method,
        permutations=permutations if method == 'permutation' else 0,
        seed=seed if method == 'permutation' else None,
        islands=weights.islands,
    )
    logger.info(f"Local Moran ({method}): {result.counts}")
    return result
