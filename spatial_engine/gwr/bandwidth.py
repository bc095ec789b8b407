"""
Bandwidth selection for geographically weighted regression.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np

from ..computation.numerical import golden_section_search
from ..computation.parallel import parallel_map
from ..core.config import get_config
from ..core.exceptions import InsufficientNeighborsError
from ..weights.kernels import BANDWIDTH_INFLATION

logger = logging.getLogger(__name__)

GRID_POINTS = 20


@dataclass(frozen=True)
class BandwidthResult:
    """Outcome of a bandwidth search."""
    bandwidth: float
    score: float
    criterion: str
    method: str
    fixed: bool
    iterations: int
    converged: bool
    history: Dict[float, float] = field(default_factory=dict)

    @property
    def evaluations(self) -> int:
        return len(self.history)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'bandwidth': self.bandwidth,
            'score': self.score,
            'criterion': self.criterion,
            'method': self.method,
            'fixed': self.fixed,
            'iterations': self.iterations,
            'converged': self.converged,
            'evaluations': self.evaluations,
            'history': {str(k): v for k, v in self.history.items()},
        }


def search_interval(gwr) -> Tuple[float, float]:
    """
    Default search interval.

    Adaptive: neighbour counts from ``min_neighbors + 1`` (the observation
    itself is left out under cross-validation) to ``n``. Fixed: from the
    largest distance to the ``min_neighbors``-th nearest other point to the
    largest pairwise distance.
    """
    n = gwr.n
    if not gwr.fixed:
        lower = gwr.min_neighbors + 1
        if lower >= n:
            raise InsufficientNeighborsError(
                f"Adaptive search needs more than {lower} units, got {n}"
            )
        return float(lower), float(n)

    ordered = np.sort(gwr.distances, axis=1)
    rank = min(gwr.min_neighbors, n - 1)
    lower = float(ordered[:, rank].max()) * BANDWIDTH_INFLATION
    upper = float(gwr.distances.max())
    return lower, max(upper, lower * 2.0)


def _grid_task(task: Tuple) -> float:
    gwr, bandwidth, criterion = task
    return gwr.score(bandwidth, criterion=criterion, executor='serial')


def grid_search(
    gwr,
    candidates: Sequence[float],
    criterion: str = 'cv',
    **parallel_options
) -> BandwidthResult:
    """Score every candidate bandwidth (in parallel) and keep the best."""
    candidates = [float(c) for c in candidates]
    if not candidates:
        raise ValueError("Grid search needs at least one candidate bandwidth")

    scores = parallel_map(_grid_task, [(gwr, c, criterion) for c in candidates], **parallel_options)
    history = dict(sorted(zip(candidates, scores)))
    best = min(history, key=lambda key: history[key])
    return BandwidthResult(
        bandwidth=best,
        score=history[best],
        criterion=criterion,
        method='grid',
        fixed=gwr.fixed,
        iterations=len(candidates),
        converged=True,
        history=history,
    )


def select_bandwidth(
    gwr,
    method: str = 'golden',
    criterion: str = 'cv',
    lower: Optional[float] = None,
    upper: Optional[float] = None,
    candidates: Optional[Sequence[float]] = None,
    max_iterations: Optional[int] = None,
    tolerance: Optional[float] = None,
    **parallel_options
) -> BandwidthResult:
    """
    Select the bandwidth minimising the cross-validation score (or AICc).

    Args:
        gwr: GWR instance
        method: 'golden' (golden-section search, integer neighbour counts for
            adaptive kernels) or 'grid'
        criterion: 'cv' or 'aicc'
        lower, upper: Search interval; defaults from ``search_interval``
        candidates: Explicit grid; defaults to evenly spaced points
        max_iterations: Golden-section budget; defaults to ``gwr.max_iterations``
        tolerance: Golden-section tolerance; defaults to ``gwr.tolerance``

    Returns:
        BandwidthResult

    Raises:
        InsufficientNeighborsError: If no bandwidth gives a finite score
        ConvergenceError: If the golden-section budget is exhausted
    """
    settings = get_config().section('gwr')
    max_iterations = max_iterations if max_iterations is not None else settings.max_iterations
    tolerance = tolerance if tolerance is not None else settings.tolerance

    default_lower, default_upper = search_interval(gwr)
    lower = default_lower if lower is None else float(lower)
    upper = default_upper if upper is None else float(upper)
    logger.info(f"Selecting GWR bandwidth by {method} search on [{lower:.4f}, {upper:.4f}] ({criterion})")

    if method == 'golden':
        best, score, report = golden_section_search(
            lambda bw: gwr.score(bw, criterion=criterion, **parallel_options),
            lower, upper,
            tolerance=tolerance,
            max_iterations=max_iterations,
            integer=not gwr.fixed,
        )
        result = BandwidthResult(
            bandwidth=float(best),
            score=score,
            criterion=criterion,
            method='golden',
            fixed=gwr.fixed,
            iterations=report.iterations,
            converged=report.converged,
            history=report.history,
        )
    elif method == 'grid':
        if candidates is None:
            candidates = np.linspace(lower, upper, GRID_POINTS)
            if not gwr.fixed:
                candidates = np.unique(np.round(candidates))
        result = grid_search(gwr, candidates, criterion=criterion, **parallel_options)
    else:
        raise ValueError(f"Unknown bandwidth search method: {method}")

    if not np.isfinite(result.score):
        raise InsufficientNeighborsError(
            f"No bandwidth in [{lower:.4f}, {upper:.4f}] gives a finite {criterion} score"
        )

    logger.info(f"Selected bandwidth {result.bandwidth:.4f} ({criterion}={result.score:.6f}, "
                f"{result.evaluations} evaluations)")
    return result
