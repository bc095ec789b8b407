"""
Global Moran's I with analytic and permutation inference.
"""
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, Optional, Tuple

import numpy as np
from scipy import sparse, stats

from ..core.config import get_config
from ..core.decorators import performance_tracker
from ..weights.matrix import WeightsMatrix
from .base import (
    ArrayLike, permutation_p_value, prepare_values, require_links,
    resolve_alternative, simulate_permutations
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PermutationResult:
    """Monte Carlo reference distribution summary for a global statistic."""
    permutations: int
    seed: Optional[int]
    alternative: str
    p_value: float
    simulated_mean: float
    simulated_std: float
    z_value: float
    simulated: np.ndarray = field(repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'permutations': self.permutations,
            'seed': self.seed,
            'alternative': self.alternative,
            'p_value': self.p_value,
            'simulated_mean': self.simulated_mean,
            'simulated_std': self.simulated_std,
            'z_value': self.z_value,
        }


@dataclass(frozen=True)
class MoranResult:
    """
    Global Moran's I with its moments.

    ``n`` is the number of units used in the moments: under a zero policy the
    islands are excluded from it.
    """
    statistic: float
    expected: float
    n: int
    s0: float
    variance_normal: float
    z_normal: float
    p_normal: float
    variance_random: float
    z_random: float
    p_random: float
    islands: Tuple[int, ...] = ()
    permutation: Optional[PermutationResult] = None

    @property
    def p_value(self) -> float:
        """Permutation p-value when available, otherwise the randomisation p-value."""
        if self.permutation is not None:
            return self.permutation.p_value
        return self.p_random

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'statistic': self.statistic,
            'expected': self.expected,
            'n': self.n,
            's0': self.s0,
            'variance_normal': self.variance_normal,
            'z_normal': self.z_normal,
            'p_normal': self.p_normal,
            'variance_random': self.variance_random,
            'z_random': self.z_random,
            'p_random': self.p_random,
            'islands': list(self.islands),
        }
        if self.permutation is not None:
            result['permutation'] = self.permutation.to_dict()
        return result


def _moran_batch(batch: np.ndarray, matrix: sparse.csr_matrix, scale: float, zz: float) -> np.ndarray:
    """Moran's I for each row of a batch of centred attribute vectors."""
    lagged = (matrix @ batch.T).T
    return scale * np.einsum('ij,ij->i', batch, lagged) / zz


def _z_and_p(statistic: float, expected: float, variance: float) -> Tuple[float, float]:
    if not np.isfinite(variance) or variance <= 0:
        return float('nan'), float('nan')
    z = (statistic - expected) / np.sqrt(variance)
    return float(z), float(2.0 * stats.norm.sf(abs(z)))


def moran_moments(weights: WeightsMatrix, z: np.ndarray) -> Dict[str, float]:
    """
    Expectation and variances of Moran's I under normality and randomisation.

    Uses the number of units with neighbours as ``n``; the kurtosis term
    uses every unit.
    """
    n = weights.n_effective
    s0, s1, s2 = weights.s0, weights.s1, weights.s2
    expected = -1.0 / (n - 1)

    variance_normal = (n * n * s1 - n * s2 + 3.0 * s0 * s0) / ((n * n - 1.0) * s0 * s0) - expected ** 2

    if n > 3:
        zz = np.sum(z ** 2)
        kurtosis = len(z) * np.sum(z ** 4) / zz ** 2
        numerator = (
            n * ((n * n - 3.0 * n + 3.0) * s1 - n * s2 + 3.0 * s0 * s0)
            - kurtosis * ((n * n - n) * s1 - 2.0 * n * s2 + 6.0 * s0 * s0)
        )
        variance_random = numerator / ((n - 1.0) * (n - 2.0) * (n - 3.0) * s0 * s0) - expected ** 2
    else:
        variance_random = float('nan')

    return {
        'expected': expected,
        'variance_normal': float(variance_normal),
        'variance_random': float(variance_random),
    }


@performance_tracker()
def global_moran(
    x: ArrayLike,
    weights: WeightsMatrix,
    permutations: int = 0,
    seed: Optional[int] = None,
    alternative: Optional[str] = None,
    **parallel_options
) -> MoranResult:
    """
    Global Moran's I.

    ``I = (n / S0) * sum_ij w_ij z_i z_j / sum_i z_i^2`` with ``z`` the
    mean-centred attribute.

    Args:
        x: Attribute values in weights order, or an AttributeVector
        weights: Spatial weights
        permutations: Number of random relabellings for a pseudo p-value (0 skips)
        seed: Seed making the permutation test reproducible
        alternative: 'greater', 'less' or 'two-sided' for the permutation test
        **parallel_options: chunk_size, max_workers, executor, timeout

    Returns:
        MoranResult with normality and randomisation inference and, when
        requested, the permutation test

    Raises:
        DimensionMismatchError: Misaligned, non-finite or constant attribute
    """
    values = prepare_values(x, weights)
    require_links(weights)

    z = values - values.mean()
    zz = float(np.sum(z ** 2))
    n = weights.n_effective
    s0 = weights.s0
    statistic = float(n / s0 * (z @ weights.lag(z)) / zz)

    moments = moran_moments(weights, z)
    z_normal, p_normal = _z_and_p(statistic, moments['expected'], moments['variance_normal'])
    z_random, p_random = _z_and_p(statistic, moments['expected'], moments['variance_random'])

    permutation = None
    if permutations:
        permutation = _permutation_result(
            statistic, z, weights, zz, permutations, seed, alternative, parallel_options
        )

    logger.info(f"Moran's I = {statistic:.4f} (E[I] = {moments['expected']:.4f}, n = {n})")
    return MoranResult(
        statistic=statistic,
        expected=moments['expected'],
        n=n,
        s0=s0,
        variance_normal=moments['variance_normal'],
        z_normal=z_normal,
        p_normal=p_normal,
        variance_random=moments['variance_random'],
        z_random=z_random,
        p_random=p_random,
        islands=weights.islands,
        permutation=permutation,
    )


def _permutation_result(
    statistic: float,
    z: np.ndarray,
    weights: WeightsMatrix,
    zz: float,
    permutations: int,
    seed: Optional[int],
    alternative: Optional[str],
    parallel_options: Dict[str, Any]
) -> PermutationResult:
    alternative = resolve_alternative(alternative)
    batch = partial(_moran_batch, matrix=weights.sparse, scale=weights.n_effective / weights.s0, zz=zz)
    simulated = simulate_permutations(batch, z, permutations, seed=seed, **parallel_options)

    mean, std = float(simulated.mean()), float(simulated.std())
    z_value = (statistic - mean) / std if std > 0 else float('nan')
    return PermutationResult(
        permutations=permutations,
        seed=seed,
        alternative=alternative,
        p_value=permutation_p_value(simulated, statistic, alternative),
        simulated_mean=mean,
        simulated_std=std,
        z_value=float(z_value),
        simulated=simulated,
    )


def moran_permutation_test(
    x: ArrayLike,
    weights: WeightsMatrix,
    permutations: Optional[int] = None,
    seed: Optional[int] = None,
    alternative: Optional[str] = None,
    **parallel_options
) -> MoranResult:
    """
    Moran's I with its Monte Carlo test.

    ``permutations`` and ``seed`` default to the ``autocorrelation`` section
    of the configuration.
    """
    settings = get_config().section('autocorrelation')
    permutations = settings.permutations if permutations is None else permutations
    seed = settings.seed if seed is None else seed
    if permutations < 1:
        raise ValueError("The permutation test needs at least one permutation")
    return global_moran(
        x, weights, permutations=permutations, seed=seed,
        alternative=alternative, **parallel_options
    )
