"""
Spatial Error Model module for Spatial Engine.

This module provides the SpatialErrorModel class (``y = X beta + u``,
``u = lambda W u + e``) and its Durbin variant with lagged predictors.
"""
import logging
from typing import List, Optional, Tuple

import numpy as np

from ..computation.numerical import OptimizerReport, bounded_minimize, check_rank, log_determinant
from ..core.config import get_config
from ..core.decorators import map_errors
from ..weights.matrix import WeightsMatrix
from .base import FittedModel, ModelKind, SpatialModel
from .design import RegressionDesign
from .likelihood import (
    full_log_likelihood, information_criteria, normal_inference,
    parameter_bounds, squared_correlation, trace_terms
)
from .linear import spatially_lagged_design

logger = logging.getLogger(__name__)


class SpatialErrorModel(SpatialModel):
    """
    Spatial error model fitted by maximum likelihood.

    For a candidate lambda the data are spatially filtered
    (``y - lambda W y``, ``X - lambda W X``) and beta follows by least
    squares, which concentrates the likelihood on lambda alone.
    """
    kind = ModelKind.SPATIAL_ERROR

    def model_design(self) -> RegressionDesign:
        """Design the likelihood is evaluated on."""
        return self.design

    def dropped_columns(self) -> List[str]:
        return []

    @map_errors()
    def _estimate(self, fixed_parameter: Optional[float] = None) -> FittedModel:
        """
        Estimate the error model.

        Args:
            fixed_parameter: Evaluate the likelihood at this lambda instead of
                searching for the maximum

        Raises:
            SingularMatrixError: If X is rank deficient
            ConvergenceError: If the lambda search exhausts its iteration budget
        """
        settings = get_config().section('regression')
        design, weights = self.model_design(), self.weights
        X, y = design.X, design.y
        n, k = design.n, design.k

        check_rank(X, design.names)
        WX = weights.lag(X)
        Wy = weights.lag(y)
        eigenvalues = weights.eigenvalues
        bounds = parameter_bounds(weights, settings.boundary_epsilon)

        def filtered(lam: float) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
            ys = y - lam * Wy
            Xs = X - lam * WX
            beta, _, _, _ = np.linalg.lstsq(Xs, ys, rcond=None)
            return beta, ys - Xs @ beta, Xs

        def negative_concentrated(lam: float) -> float:
            _, e, _ = filtered(lam)
            return 0.5 * n * np.log(e @ e / n) - log_determinant(eigenvalues, lam)

        if fixed_parameter is None:
            lam, _, report = bounded_minimize(
                negative_concentrated, bounds,
                max_iterations=settings.max_iterations, tolerance=settings.tolerance
            )
        else:
            if not bounds[0] <= fixed_parameter <= bounds[1]:
                raise ValueError(f"lambda={fixed_parameter} lies outside the feasible interval {bounds}")
            lam = float(fixed_parameter)
            report = OptimizerReport(method='fixed', converged=True, iterations=0, evaluations=1)

        beta, innovations, Xs = filtered(lam)
        sigma2 = float(innovations @ innovations / n)
        log_likelihood = full_log_likelihood(n, sigma2, log_determinant(eigenvalues, lam))
        fitted = X @ beta

        covariance = self._covariance(Xs, lam, sigma2, weights)
        std_errors = np.sqrt(np.diag(covariance))
        z_values, p_values = normal_inference(np.append(beta, lam), std_errors)
        aic, schwarz = information_criteria(log_likelihood, k + 1, n)

        logger.info(f"{self.kind.value}: lambda={lam:.4f} after {report.iterations} iterations")
        return FittedModel(
            kind=self.kind.value,
            names=design.names,
            coefficients=beta,
            std_errors=std_errors[:k],
            z_values=z_values[:k],
            p_values=p_values[:k],
            residuals=y - fitted,
            fitted_values=fitted,
            sigma2=sigma2,
            log_likelihood=log_likelihood,
            aic=aic,
            schwarz=schwarz,
            pseudo_r2=squared_correlation(y, fitted),
            n=n,
            k=k,
            covariance=covariance,
            spatial_parameter=lam,
            spatial_parameter_name='lambda',
            spatial_std_error=float(std_errors[k]),
            spatial_z_value=float(z_values[k]),
            spatial_p_value=float(p_values[k]),
            innovations=innovations,
            optimizer=report.to_dict(),
            dropped=tuple(self.dropped_columns()),
            ids=design.ids or (),
        )

    @staticmethod
    def _covariance(Xs: np.ndarray, lam: float, sigma2: float, weights: WeightsMatrix) -> np.ndarray:
        """Block-diagonal asymptotic covariance of (beta, lambda)."""
        n, k = Xs.shape
        traces = trace_terms(weights, lam)

        info = np.array([
            [traces['tr2'] + traces['tr3'], traces['tr1'] / sigma2],
            [traces['tr1'] / sigma2, n / (2.0 * sigma2 ** 2)],
        ])
        covariance = np.zeros((k + 1, k + 1))
        covariance[:k, :k] = sigma2 * np.linalg.inv(Xs.T @ Xs)
        covariance[k, k] = np.linalg.inv(info)[0, 0]
        return covariance


class SpatialDurbinErrorModel(SpatialErrorModel):
    """Spatial error model on ``[X, WX]``."""
    kind = ModelKind.SPATIAL_DURBIN_ERROR

    def __init__(self, design: RegressionDesign, weights: Optional[WeightsMatrix] = None):
        super().__init__(design, weights)
        self.augmented, self.dropped = spatially_lagged_design(self.design, self.weights)

    def model_design(self) -> RegressionDesign:
        return self.augmented

    def dropped_columns(self) -> List[str]:
        return list(self.dropped)
