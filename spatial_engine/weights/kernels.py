"""
Distance-decay kernels and kernel weights for Spatial Engine.
"""
import logging
from typing import Callable, Dict, Optional, Sequence

import numpy as np
from scipy import sparse
from scipy.spatial import cKDTree
from scipy.spatial.distance import cdist

from ..core.decorators import performance_tracker
from ..geometry.types import Geometry, centroids, validate_collection
from .matrix import WeightsMatrix, WeightsStyle

logger = logging.getLogger(__name__)

# Widens data-driven bandwidths so the defining neighbour keeps a positive weight
BANDWIDTH_INFLATION = 1.0000001


def _gaussian(u: np.ndarray) -> np.ndarray:
    return np.exp(-0.5 * u ** 2)


def _exponential(u: np.ndarray) -> np.ndarray:
    return np.exp(-u)


def _bisquare(u: np.ndarray) -> np.ndarray:
    return np.where(u < 1.0, (1.0 - u ** 2) ** 2, 0.0)


def _triangular(u: np.ndarray) -> np.ndarray:
    return np.where(u < 1.0, 1.0 - u, 0.0)


def _uniform(u: np.ndarray) -> np.ndarray:
    return np.where(u < 1.0, 1.0, 0.0)


KERNELS: Dict[str, Callable[[np.ndarray], np.ndarray]] = {
    'gaussian': _gaussian,
    'exponential': _exponential,
    'bisquare': _bisquare,
    'triangular': _triangular,
    'uniform': _uniform,
}


def get_kernel(name: str) -> Callable[[np.ndarray], np.ndarray]:
    """Look up a kernel function by name."""
    try:
        return KERNELS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown kernel '{name}'. Choose from {sorted(KERNELS)}") from None


def evaluate_kernel(name: str, distances: np.ndarray, bandwidth) -> np.ndarray:
    """
    Kernel weights for distances scaled by a bandwidth.

    ``bandwidth`` is a scalar or an array broadcastable against ``distances``
    (one value per row for adaptive kernels). An infinite bandwidth gives
    uniform weights of one.
    """
    bandwidth = np.asarray(bandwidth, dtype=float)
    if np.any(bandwidth <= 0):
        raise ValueError("Kernel bandwidth must be positive")
    u = np.asarray(distances, dtype=float) / bandwidth
    return get_kernel(name)(u)


def nearest_neighbour_distance(coords: np.ndarray, k: int) -> np.ndarray:
    """Distance from every point to its k-th nearest other point."""
    distances, _ = cKDTree(coords).query(coords, k=k + 1)
    return distances[:, k]


@performance_tracker()
def kernel_weights(
    geometries: Sequence[Geometry],
    bandwidth: Optional[float] = None,
    kernel: str = 'gaussian',
    fixed: bool = True,
    k: int = 2
) -> WeightsMatrix:
    """
    Build distance-decay weights from centroid distances.

    Args:
        geometries: Point or polygon geometries
        bandwidth: Fixed bandwidth; defaults to the largest k-th nearest
            neighbour distance
        kernel: Kernel name (gaussian, exponential, bisquare, triangular, uniform)
        fixed: Use one bandwidth for every unit; otherwise each unit uses the
            distance to its own k-th nearest neighbour
        k: Neighbour rank for data-driven bandwidths

    Returns:
        WeightsMatrix with KERNEL style and a zero diagonal
    """
    get_kernel(kernel)
    collection = validate_collection(geometries, allow_points=True)
    n = len(collection)
    if not 1 <= k < n:
        raise ValueError(f"k must lie in [1, {n - 1}], got {k}")

    coords = centroids(collection)
    knn_distance = nearest_neighbour_distance(coords, k)

    if fixed:
        if bandwidth is None:
            bandwidth = float(knn_distance.max()) * BANDWIDTH_INFLATION
        row_bandwidth = np.full((n, 1), float(bandwidth))
    else:
        if bandwidth is not None:
            logger.warning("Ignoring explicit bandwidth for adaptive kernel weights")
        row_bandwidth = (knn_distance * BANDWIDTH_INFLATION).reshape(-1, 1)

    distances = cdist(coords, coords)
    values = evaluate_kernel(kernel, distances, row_bandwidth)
    np.fill_diagonal(values, 0.0)

    weights = WeightsMatrix(
        sparse.csr_matrix(values),
        [g.id for g in collection],
        style=WeightsStyle.KERNEL,
        zero_policy=True
    )
    logger.info(
        f"Built {'fixed' if fixed else 'adaptive'} {kernel} kernel weights for {n} units"
    )
    return weights
