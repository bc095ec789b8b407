"""
Local weighting schemes for geographically weighted regression.
"""
import math
import logging
from typing import Sequence, Union

import numpy as np
from scipy.spatial.distance import cdist

from ..geometry.types import Geometry, centroids
from ..weights.kernels import BANDWIDTH_INFLATION, evaluate_kernel, get_kernel

logger = logging.getLogger(__name__)

GWR_KERNELS = ('gaussian', 'bisquare', 'exponential')


def as_coordinates(locations: Union[np.ndarray, Sequence[Geometry]]) -> np.ndarray:
    """(n, 2) coordinates from an array or from geometries (their centroids)."""
    if len(locations) and isinstance(locations[0], Geometry):
        return centroids(locations)
    coords = np.asarray(locations, dtype=float)
    if coords.ndim != 2 or coords.shape[1] != 2:
        raise ValueError(f"Coordinates must have shape (n, 2), got {coords.shape}")
    if not np.all(np.isfinite(coords)):
        raise ValueError("Coordinates contain missing or infinite values")
    return coords


def check_kernel(name: str) -> str:
    name = name.lower()
    get_kernel(name)
    if name not in GWR_KERNELS:
        raise ValueError(f"GWR kernel must be one of {GWR_KERNELS}, got '{name}'")
    return name


def neighbour_count(bandwidth: float, n: int) -> int:
    """
    Number of nearest points (self included) an adaptive bandwidth spans.

    Values up to 1 are proportions of ``n`` (``ceil(q * n)``); larger values
    are neighbour counts. An infinite bandwidth spans every point.
    """
    if bandwidth <= 0:
        raise ValueError(f"Adaptive bandwidth must be positive, got {bandwidth}")
    if not np.isfinite(bandwidth):
        return n
    if bandwidth <= 1:
        count = int(math.ceil(bandwidth * n))
    else:
        count = int(round(bandwidth))
    return max(1, min(count, n))


def adaptive_bandwidths(distances: np.ndarray, count: int) -> np.ndarray:
    """Per-unit distance to the ``count``-th nearest point, self included."""
    ordered = np.sort(distances, axis=1)
    return ordered[:, count - 1] * BANDWIDTH_INFLATION


def local_weights(
    distances: np.ndarray,
    bandwidth: float,
    kernel: str,
    fixed: bool
) -> np.ndarray:
    """
    Row i holds the weights of every observation in the regression at unit i.

    A fixed bandwidth is a distance (``np.inf`` gives equal weights
    everywhere); an adaptive one is resolved with ``neighbour_count``.
    """
    if fixed:
        if bandwidth <= 0:
            raise ValueError(f"Fixed bandwidth must be positive, got {bandwidth}")
        return evaluate_kernel(kernel, distances, bandwidth)

    count = neighbour_count(bandwidth, distances.shape[0])
    row_bandwidth = adaptive_bandwidths(distances, count).reshape(-1, 1)
    # Coincident points give a zero bandwidth
    row_bandwidth = np.where(row_bandwidth > 0, row_bandwidth, np.finfo(float).tiny)
    return evaluate_kernel(kernel, distances, row_bandwidth)


def pairwise_distances(coords: np.ndarray) -> np.ndarray:
    return cdist(coords, coords)
