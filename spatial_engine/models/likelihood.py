"""
Helpers shared by the maximum likelihood spatial estimators.
"""
import logging
from typing import Any, Dict, Optional, Tuple

import numpy as np
from scipy import stats

from ..core.config import get_config
from ..core.exceptions import ModelError, SingularMatrixError
from ..weights.matrix import WeightsMatrix

logger = logging.getLogger(__name__)

LOG_2PI = np.log(2.0 * np.pi)


def parameter_bounds(weights: WeightsMatrix, epsilon: Optional[float] = None) -> Tuple[float, float]:
    """
    Feasible interval ``(1 / lambda_min, 1 / lambda_max)`` for a spatial parameter.

    The interval is shrunk by ``epsilon`` on both sides so the search never
    evaluates a singular ``I - parameter * W``.
    """
    if epsilon is None:
        epsilon = get_config().section('regression').boundary_epsilon

    real = np.real(weights.eigenvalues)
    lam_min, lam_max = real.min(), real.max()
    if not (lam_min < 0 < lam_max):
        raise ModelError(
            f"Weights eigenvalues [{lam_min:.4g}, {lam_max:.4g}] do not bracket zero; "
            "the spatial parameter is not identified"
        )
    return 1.0 / lam_min + epsilon, 1.0 / lam_max - epsilon


def spatial_inverse(weights: WeightsMatrix, parameter: float) -> np.ndarray:
    """Dense ``(I - parameter * W)^{-1}``."""
    A = np.eye(weights.n) - parameter * weights.dense()
    try:
        return np.linalg.inv(A)
    except np.linalg.LinAlgError as e:
        raise SingularMatrixError(f"I - {parameter:.4f} W is singular") from e


def trace_terms(weights: WeightsMatrix, parameter: float) -> Dict[str, Any]:
    """Traces of W A, (W A)^2 and (W A)'(W A) with A = (I - parameter W)^{-1}."""
    WA = weights.dense() @ spatial_inverse(weights, parameter)
    return {
        'tr1': float(np.trace(WA)),
        'tr2': float(np.trace(WA @ WA)),
        'tr3': float(np.sum(WA * WA)),
        'WA': WA,
    }


def full_log_likelihood(n: int, sigma2: float, log_det: float) -> float:
    return float(-0.5 * n * (LOG_2PI + 1.0) - 0.5 * n * np.log(sigma2) + log_det)


def information_criteria(log_likelihood: float, n_parameters: int, n: int) -> Tuple[float, float]:
    """AIC and Schwarz criterion."""
    aic = -2.0 * log_likelihood + 2.0 * n_parameters
    schwarz = -2.0 * log_likelihood + n_parameters * np.log(n)
    return float(aic), float(schwarz)


def normal_inference(estimates: np.ndarray, std_errors: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """z values and two-sided normal p-values."""
    with np.errstate(divide='ignore', invalid='ignore'):
        z_values = np.asarray(estimates) / np.asarray(std_errors)
    p_values = 2.0 * stats.norm.sf(np.abs(z_values))
    return z_values, p_values


def squared_correlation(a: np.ndarray, b: np.ndarray) -> float:
    if np.ptp(a) == 0 or np.ptp(b) == 0:
        return float('nan')
    return float(np.corrcoef(a, b)[0, 1] ** 2)
