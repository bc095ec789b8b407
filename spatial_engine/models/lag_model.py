"""
Spatial Lag Model module for Spatial Engine.

This module provides the SpatialLagModel class, the maximum likelihood SAR
estimator ``y = rho W y + X beta + e``.
"""
import logging
from typing import Optional

import numpy as np

from ..computation.numerical import OptimizerReport, bounded_minimize, check_rank, log_determinant
from ..core.config import get_config
from ..core.decorators import map_errors
from .base import FittedModel, ModelKind, SpatialModel
from .likelihood import (
    full_log_likelihood, information_criteria, normal_inference,
    parameter_bounds, squared_correlation, trace_terms
)

logger = logging.getLogger(__name__)


class SpatialLagModel(SpatialModel):
    """
    Spatial autoregressive (lag) model fitted by maximum likelihood.

    The log-likelihood is concentrated on rho: for any rho the betas follow
    from ``b0 - rho b1`` where b0 and b1 are the OLS fits of y and Wy on X,
    so the search is one-dimensional (bounded Brent) over the interval set by
    the eigenvalues of W.
    """
    kind = ModelKind.SAR_LAG

    @map_errors()
    def _estimate(self, fixed_parameter: Optional[float] = None) -> FittedModel:
        """
        Estimate the lag model.

        Args:
            fixed_parameter: Evaluate the likelihood at this rho instead of
                searching for the maximum

        Raises:
            SingularMatrixError: If X is rank deficient
            ConvergenceError: If the rho search exhausts its iteration budget
        """
        settings = get_config().section('regression')
        design, weights = self.design, self.weights
        X, y = design.X, design.y
        n, k = design.n, design.k

        check_rank(X, design.names)
        Wy = weights.lag(y)
        b0, _, _, _ = np.linalg.lstsq(X, y, rcond=None)
        b1, _, _, _ = np.linalg.lstsq(X, Wy, rcond=None)
        e0 = y - X @ b0
        e1 = Wy - X @ b1
        eigenvalues = weights.eigenvalues
        bounds = parameter_bounds(weights, settings.boundary_epsilon)

        def negative_concentrated(rho: float) -> float:
            e = e0 - rho * e1
            return 0.5 * n * np.log(e @ e / n) - log_determinant(eigenvalues, rho)

        if fixed_parameter is None:
            rho, _, report = bounded_minimize(
                negative_concentrated, bounds,
                max_iterations=settings.max_iterations, tolerance=settings.tolerance
            )
        else:
            if not bounds[0] <= fixed_parameter <= bounds[1]:
                raise ValueError(f"rho={fixed_parameter} lies outside the feasible interval {bounds}")
            rho = float(fixed_parameter)
            report = OptimizerReport(method='fixed', converged=True, iterations=0, evaluations=1)

        beta = b0 - rho * b1
        residuals = e0 - rho * e1
        sigma2 = float(residuals @ residuals / n)
        log_likelihood = full_log_likelihood(n, sigma2, log_determinant(eigenvalues, rho))
        fitted = y - residuals

        covariance = self._covariance(X, beta, rho, sigma2)
        std_errors = np.sqrt(np.diag(covariance))
        z_values, p_values = normal_inference(np.append(beta, rho), std_errors)
        aic, schwarz = information_criteria(log_likelihood, k + 1, n)

        logger.info(f"SAR lag: rho={rho:.4f} after {report.iterations} iterations")
        return FittedModel(
            kind=self.kind.value,
            names=design.names,
            coefficients=beta,
            std_errors=std_errors[:k],
            z_values=z_values[:k],
            p_values=p_values[:k],
            residuals=residuals,
            fitted_values=fitted,
            sigma2=sigma2,
            log_likelihood=log_likelihood,
            aic=aic,
            schwarz=schwarz,
            pseudo_r2=squared_correlation(y, fitted),
            n=n,
            k=k,
            covariance=covariance,
            spatial_parameter=rho,
            spatial_parameter_name='rho',
            spatial_std_error=float(std_errors[k]),
            spatial_z_value=float(z_values[k]),
            spatial_p_value=float(p_values[k]),
            optimizer=report.to_dict(),
            ids=design.ids or (),
        )

    def _covariance(self, X: np.ndarray, beta: np.ndarray, rho: float, sigma2: float) -> np.ndarray:
        """Inverse of the analytic information matrix for (beta, rho, sigma2), without sigma2."""
        n, k = X.shape
        traces = trace_terms(self.weights, rho)
        WAXb = traces['WA'] @ (X @ beta)

        info = np.zeros((k + 2, k + 2))
        info[:k, :k] = X.T @ X / sigma2
        info[:k, k] = info[k, :k] = X.T @ WAXb / sigma2
        info[k, k] = traces['tr2'] + traces['tr3'] + WAXb @ WAXb / sigma2
        info[k, k + 1] = info[k + 1, k] = traces['tr1'] / sigma2
        info[k + 1, k + 1] = n / (2.0 * sigma2 ** 2)

        return np.linalg.inv(info)[:k + 1, :k + 1]
