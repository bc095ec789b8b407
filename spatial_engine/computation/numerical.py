"""
Numerical utilities for Spatial Engine.

Rank checks, the log-determinant of spatial filters, the bounded scalar optimiser used by
the maximum likelihood estimators, and golden-section search for bandwidth
selection.
"""
import math
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence, Tuple

import numpy as np
from scipy import optimize

from ..core.exceptions import ConvergenceError, SingularMatrixError

logger = logging.getLogger(__name__)

INVERSE_GOLDEN = (math.sqrt(5.0) - 1.0) / 2.0
# Below this width the golden interior points can round to the same integer
INTEGER_BRACKET = 1.0 / (2.0 * INVERSE_GOLDEN - 1.0) + 0.3


@dataclass(frozen=True)
class OptimizerReport:
    """Outcome of an iterative search."""
    method: str
    converged: bool
    iterations: int
    evaluations: int
    message: str = ""
    history: Dict[float, float] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'method': self.method,
            'converged': self.converged,
            'iterations': self.iterations,
            'evaluations': self.evaluations,
            'message': self.message,
        }


def check_rank(X: np.ndarray, names: Optional[Sequence[str]] = None) -> int:
    """Raise SingularMatrixError unless X has full column rank."""
    if X.ndim != 2:
        raise ValueError(f"Design matrix must be 2D, got shape {X.shape}")

    n, k = X.shape
    if n < k:
        raise SingularMatrixError(f"Design matrix has more columns ({k}) than rows ({n})")

    rank = np.linalg.matrix_rank(X)
    if rank < k:
        label = f" ({', '.join(names)})" if names is not None else ""
        raise SingularMatrixError(
            f"Design matrix is rank deficient: rank {rank} < {k} columns{label}"
        )
    return rank


def log_determinant(eigenvalues: np.ndarray, parameter: float) -> float:
    """log|I - parameter * W| from the eigenvalues of W."""
    values = 1.0 - parameter * eigenvalues
    return float(np.sum(np.log(np.abs(values))).real)


def bounded_minimize(
    func: Callable[[float], float],
    bounds: Tuple[float, float],
    max_iterations: int = 500,
    tolerance: float = 1e-8
) -> Tuple[float, float, OptimizerReport]:
    """
    Minimise a scalar function on an interval with bounded Brent search.

    Raises:
        ConvergenceError: If the search does not converge within the budget
    """
    lower, upper = bounds
    if not lower < upper:
        raise ValueError(f"Invalid search interval: ({lower}, {upper})")

    result = optimize.minimize_scalar(
        func,
        bounds=(lower, upper),
        method='bounded',
        options={'maxiter': max_iterations, 'xatol': tolerance}
    )

    iterations = int(getattr(result, 'nit', 0) or 0)
    report = OptimizerReport(
        method='brent-bounded',
        converged=bool(result.success),
        iterations=iterations,
        evaluations=int(getattr(result, 'nfev', 0) or 0),
        message=str(result.message),
    )

    if not result.success:
        logger.error(f"Bounded search failed after {iterations} iterations: {result.message}")
        raise ConvergenceError(
            f"Bounded search did not converge within {max_iterations} iterations: {result.message}",
            iterations=iterations
        )

    logger.debug(f"Bounded search converged at {result.x:.6f} after {iterations} iterations")
    return float(result.x), float(result.fun), report


def golden_section_search(
    func: Callable[[float], float],
    lower: float,
    upper: float,
    tolerance: float = 1e-5,
    max_iterations: int = 200,
    integer: bool = False
) -> Tuple[float, float, OptimizerReport]:
    """
    Minimise a unimodal function on [lower, upper] by golden-section search.

    With ``integer`` the function is only evaluated at whole numbers and the
    search stops while the two interior points still round to distinct
    integers; the few integers left in the bracket are then checked directly.
    Every evaluation is cached and returned in the report history.

    Raises:
        ConvergenceError: If the bracket is still wider than the tolerance
            after ``max_iterations`` steps
    """
    if not lower < upper:
        raise ValueError(f"Invalid search interval: ({lower}, {upper})")

    history: Dict[float, float] = {}

    def evaluate(x: float) -> float:
        key = int(round(x)) if integer else float(x)
        if key not in history:
            history[key] = float(func(key))
        return history[key]

    def finished(a: float, b: float) -> bool:
        if integer:
            return b - a <= INTEGER_BRACKET
        return b - a <= tolerance * max(1.0, abs(a) + abs(b))

    a, b = float(lower), float(upper)
    c = b - INVERSE_GOLDEN * (b - a)
    d = a + INVERSE_GOLDEN * (b - a)
    iterations = 0
    converged = finished(a, b)

    while not converged and iterations < max_iterations:
        iterations += 1
        if evaluate(c) <= evaluate(d):
            b = d
        else:
            a = c
        c = b - INVERSE_GOLDEN * (b - a)
        d = a + INVERSE_GOLDEN * (b - a)
        converged = finished(a, b)

    if not converged:
        raise ConvergenceError(
            f"Golden-section search did not converge within {max_iterations} iterations "
            f"(bracket [{a:.6g}, {b:.6g}])",
            iterations=iterations
        )

    if integer:
        for candidate in range(int(math.ceil(a)), int(math.floor(b)) + 1):
            evaluate(candidate)
    else:
        evaluate((a + b) / 2.0)

    best = min(history, key=lambda key: history[key])
    report = OptimizerReport(
        method='golden-section',
        converged=True,
        iterations=iterations,
        evaluations=len(history),
        history=dict(sorted(history.items())),
    )
    return best, history[best], report
