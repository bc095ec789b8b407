"""
Synthetic lattices and simulated data for Spatial Engine.

Regular grids of unit squares with known neighbour structure, attribute
patterns with known autocorrelation sign, and data simulated from the
spatial regression models. Used by tests and demos.
"""
import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import spsolve

from ..geometry.types import Geometry
from ..models.design import RegressionDesign
from ..weights.matrix import WeightsMatrix
from .attributes import AttributeVector

logger = logging.getLogger(__name__)


def square_lattice(rows: int, cols: int, start_id: int = 0) -> List[Geometry]:
    """
    Unit squares on a rows x cols grid, ids in row-major order.

    Cell (r, c) covers [c, c + 1] x [r, r + 1].
    """
    if rows < 1 or cols < 1 or rows * cols < 2:
        raise ValueError(f"Lattice needs at least two cells, got {rows} x {cols}")

    geometries = []
    for r in range(rows):
        for c in range(cols):
            shell = [(c, r), (c + 1, r), (c + 1, r + 1), (c, r + 1)]
            geometries.append(Geometry.polygon(start_id + r * cols + c, shell))
    return geometries


def strip(n: int, start_id: int = 0) -> List[Geometry]:
    """A single row of n unit squares."""
    return square_lattice(1, n, start_id=start_id)


def point_lattice(rows: int, cols: int, spacing: float = 1.0, start_id: int = 0) -> List[Geometry]:
    """Points at the cell centres of a rows x cols grid."""
    return [
        Geometry.point(start_id + r * cols + c, (c + 0.5) * spacing, (r + 0.5) * spacing)
        for r in range(rows)
        for c in range(cols)
    ]


def lattice_coordinates(rows: int, cols: int) -> np.ndarray:
    """(rows * cols, 2) cell-centre coordinates in row-major order."""
    r, c = np.divmod(np.arange(rows * cols), cols)
    return np.column_stack([c + 0.5, r + 0.5]).astype(float)


def checkerboard(rows: int, cols: int, high: float = 1.0, low: float = 0.0, start_id: int = 0) -> AttributeVector:
    """Alternating values; strongly negative autocorrelation under rook contiguity."""
    values = [high if (r + c) % 2 == 0 else low for r in range(rows) for c in range(cols)]
    ids = range(start_id, start_id + rows * cols)
    return AttributeVector(ids, values, name='checkerboard')


def gradient(rows: int, cols: int, start_id: int = 0) -> AttributeVector:
    """Values increasing with row and column; positive autocorrelation."""
    values = [float(r + c) for r in range(rows) for c in range(cols)]
    ids = range(start_id, start_id + rows * cols)
    return AttributeVector(ids, values, name='gradient')


def _predictors(
    n: int,
    beta: Sequence[float],
    rng: np.random.Generator
) -> Tuple[np.ndarray, List[str]]:
    k = len(beta)
    if k < 1:
        raise ValueError("beta needs at least the intercept")
    X = np.column_stack([np.ones(n), rng.standard_normal((n, k - 1))])
    return X, [f"x{i}" for i in range(1, k)]


def _spatial_system(weights: WeightsMatrix, parameter: float) -> sparse.csc_matrix:
    return sparse.identity(weights.n, format='csc') - parameter * weights.sparse.tocsc()


def simulate_sar(
    weights: WeightsMatrix,
    rho: float,
    beta: Sequence[float] = (1.0, 2.0),
    sigma: float = 1.0,
    seed: Optional[int] = None
) -> RegressionDesign:
    """Draw ``y = (I - rho W)^{-1} (X beta + e)`` with standard normal predictors."""
    rng = np.random.default_rng(seed)
    X, names = _predictors(weights.n, beta, rng)
    e = sigma * rng.standard_normal(weights.n)
    y = spsolve(_spatial_system(weights, rho), X @ np.asarray(beta, dtype=float) + e)
    logger.debug(f"Simulated SAR data: n={weights.n}, rho={rho}")
    return RegressionDesign(y, X[:, 1:], names=names, ids=weights.ids)


def simulate_sem(
    weights: WeightsMatrix,
    lam: float,
    beta: Sequence[float] = (1.0, 2.0),
    sigma: float = 1.0,
    seed: Optional[int] = None
) -> RegressionDesign:
    """Draw ``y = X beta + (I - lambda W)^{-1} e``."""
    rng = np.random.default_rng(seed)
    X, names = _predictors(weights.n, beta, rng)
    e = sigma * rng.standard_normal(weights.n)
    y = X @ np.asarray(beta, dtype=float) + spsolve(_spatial_system(weights, lam), e)
    logger.debug(f"Simulated SEM data: n={weights.n}, lambda={lam}")
    return RegressionDesign(y, X[:, 1:], names=names, ids=weights.ids)


def simulate_gwr(
    rows: int,
    cols: int,
    sigma: float = 0.1,
    seed: Optional[int] = None
) -> Tuple[np.ndarray, RegressionDesign, np.ndarray]:
    """
    Varying-coefficient data on a grid.

    The intercept is 3 everywhere and the slope rises linearly from 1 to 2
    across the grid.

    Returns:
        Tuple of (coordinates, design, true coefficients (n x 2))
    """
    rng = np.random.default_rng(seed)
    coords = lattice_coordinates(rows, cols)
    n = len(coords)
    span = max(rows + cols - 2, 1)
    slope = 1.0 + (coords[:, 0] + coords[:, 1] - 1.0) / span
    params = np.column_stack([np.full(n, 3.0), slope])

    x = rng.standard_normal(n)
    y = params[:, 0] + params[:, 1] * x + sigma * rng.standard_normal(n)
    design = RegressionDesign(y, x, names=['x1'], ids=range(n))
    return coords, design, params
