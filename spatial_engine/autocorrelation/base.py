"""
Shared input checks and permutation machinery for autocorrelation statistics.
"""
import logging
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..computation.parallel import chunk_bounds, parallel_map, spawn_generators
from ..core.config import get_config
from ..core.exceptions import DimensionMismatchError, IsolatedUnitError
from ..data.attributes import AttributeVector
from ..weights.matrix import WeightsMatrix

logger = logging.getLogger(__name__)

ALTERNATIVES = ('greater', 'less', 'two-sided')

ArrayLike = Union[AttributeVector, Sequence[float], np.ndarray]


def prepare_values(x: ArrayLike, weights: WeightsMatrix) -> np.ndarray:
    """
    Validate an attribute against a weights matrix and return it in weights order.

    Raises:
        DimensionMismatchError: Length or id mismatch, non-finite values, or
            zero variance
    """
    if isinstance(x, AttributeVector):
        values = np.array(x.align(weights.ids).values, dtype=float)
    else:
        values = np.array(x, dtype=float)
        if values.ndim != 1:
            raise DimensionMismatchError(f"Attribute must be one-dimensional, got shape {values.shape}")
        if len(values) != weights.n:
            raise DimensionMismatchError(
                f"Attribute has {len(values)} values but weights cover {weights.n} units"
            )
        if not np.all(np.isfinite(values)):
            raise DimensionMismatchError("Attribute contains missing or infinite values")

    if np.all(values == values[0]):
        raise DimensionMismatchError("Attribute has zero variance; autocorrelation is undefined")

    return values


def require_links(weights: WeightsMatrix) -> None:
    """Reject weights with fewer than two linked units."""
    if weights.s0 == 0 or weights.n_effective < 2:
        raise IsolatedUnitError(
            "Weights contain fewer than two units with neighbours", unit_ids=weights.islands
        )


def resolve_alternative(alternative: Optional[str]) -> str:
    alternative = alternative or get_config().section('autocorrelation').alternative
    if alternative not in ALTERNATIVES:
        raise ValueError(f"alternative must be one of {ALTERNATIVES}, got {alternative!r}")
    return alternative


def permutation_p_value(simulated: np.ndarray, observed: float, alternative: str) -> float:
    """
    Rank-based pseudo p-value of an observed statistic.

    ``greater`` counts simulated values at or above the observed one,
    ``less`` those at or below, and ``two-sided`` doubles the smaller tail
    (capped at one).
    """
    nsim = len(simulated)
    above = int(np.sum(simulated >= observed))
    below = int(np.sum(simulated <= observed))
    if alternative == 'greater':
        return (above + 1.0) / (nsim + 1.0)
    if alternative == 'less':
        return (below + 1.0) / (nsim + 1.0)
    return min(1.0, 2.0 * (min(above, below) + 1.0) / (nsim + 1.0))


def _permutation_chunk(task: Tuple[Callable, np.ndarray, int, np.random.Generator]) -> np.ndarray:
    batch_statistic, values, size, rng = task
    batch = rng.permuted(np.tile(values, (size, 1)), axis=1)
    return batch_statistic(batch)


def simulate_permutations(
    batch_statistic: Callable[[np.ndarray], np.ndarray],
    values: np.ndarray,
    permutations: int,
    seed: Optional[int] = None,
    chunk_size: Optional[int] = None,
    max_workers: Optional[int] = None,
    executor: Optional[str] = None,
    timeout: Optional[float] = None
) -> np.ndarray:
    """
    Reference distribution of a statistic under random relabelling.

    Permutations are split into fixed chunks, each with its own generator
    spawned from ``seed``, so results depend only on the seed and the chunk
    size, never on the number of workers.

    Args:
        batch_statistic: Module-level callable mapping an (m, n) array of
            permuted values to m statistics
        values: Attribute values
        permutations: Number of permutations
        seed: Seed for the generator sequence

    Returns:
        Array of simulated statistics
    """
    chunk_size = chunk_size or get_config().section('autocorrelation').chunk_size
    sizes = chunk_bounds(permutations, chunk_size)
    generators = spawn_generators(seed, len(sizes))
    tasks = [(batch_statistic, values, size, rng) for size, rng in zip(sizes, generators)]

    chunks: List[Any] = parallel_map(
        _permutation_chunk, tasks,
        max_workers=max_workers, executor=executor, timeout=timeout
    )
    logger.debug(f"Simulated {permutations} permutations in {len(sizes)} chunks")
    return np.concatenate(chunks) if chunks else np.empty(0)

