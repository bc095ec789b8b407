"""
Least squares estimators: OLS and SLX.

This module provides the OLS baseline and the SLX model, which adds the
spatial lags of the predictors as exogenous columns and stays a linear
least squares problem.
"""
import logging
from typing import List, Optional, Tuple

import numpy as np
import statsmodels.api as sm

from ..computation.numerical import check_rank
from ..core.decorators import map_errors
from ..weights.matrix import WeightsMatrix
from .base import FittedModel, ModelKind, SpatialModel
from .design import RegressionDesign

logger = logging.getLogger(__name__)

LAG_PREFIX = 'W_'


def spatially_lagged_design(
    design: RegressionDesign,
    weights: WeightsMatrix
) -> Tuple[RegressionDesign, List[str]]:
    """
    Append ``W x`` for every non-constant predictor.

    Lag columns without variation (for example from an all-zero weights
    matrix) carry no information and are dropped.

    Returns:
        Tuple of (augmented design, names of dropped lag columns)
    """
    columns = design.variable_columns
    lagged = weights.lag(design.X[:, columns])
    names = [f"{LAG_PREFIX}{design.names[j]}" for j in columns]

    keep, dropped = [], []
    for i, name in enumerate(names):
        if np.ptp(lagged[:, i]) == 0:
            dropped.append(name)
        else:
            keep.append(i)

    if dropped:
        logger.warning(f"Dropping constant spatial lag columns: {dropped}")
    return design.with_columns(lagged[:, keep], [names[i] for i in keep]), dropped


@map_errors()
def fit_least_squares(
    design: RegressionDesign,
    kind: ModelKind,
    dropped: Optional[List[str]] = None
) -> FittedModel:
    """Fit OLS with statsmodels after a rank check."""
    check_rank(design.X, design.names)

    model = sm.OLS(design.y, design.X)
    results = model.fit()

    n, k = design.n, design.k
    return FittedModel(
        kind=kind.value,
        names=design.names,
        coefficients=np.asarray(results.params),
        std_errors=np.asarray(results.bse),
        z_values=np.asarray(results.tvalues),
        p_values=np.asarray(results.pvalues),
        residuals=np.asarray(results.resid),
        fitted_values=np.asarray(results.fittedvalues),
        sigma2=float(results.scale),
        log_likelihood=float(results.llf),
        aic=float(-2.0 * results.llf + 2.0 * k),
        schwarz=float(-2.0 * results.llf + k * np.log(n)),
        pseudo_r2=float(results.rsquared),
        n=n,
        k=k,
        covariance=np.asarray(results.cov_params()),
        dropped=tuple(dropped or ()),
        ids=design.ids or (),
    )


class OLSModel(SpatialModel):
    """
    Ordinary least squares baseline.

    Weights are optional; with weights, ``diagnostics()`` runs the full set of
    spatial dependence tests on the residuals.
    """
    kind = ModelKind.OLS
    requires_weights = False

    def _estimate(self) -> FittedModel:
        return fit_least_squares(self.design, self.kind)

    def diagnostics(self, permutations: int = 0, seed: Optional[int] = None):
        """Residual Moran's I and Lagrange multiplier tests."""
        from .diagnostics import spatial_diagnostics

        results = self._require_fit()
        if self.weights is None:
            return super().diagnostics(permutations=permutations, seed=seed)
        return spatial_diagnostics(
            self.design, self.weights, ols=results, permutations=permutations, seed=seed
        )


class SLXModel(SpatialModel):
    """Spatially lagged X model: OLS on ``[X, WX]``."""
    kind = ModelKind.SLX

    def __init__(self, design: RegressionDesign, weights: Optional[WeightsMatrix] = None):
        super().__init__(design, weights)
        self.augmented, self.dropped = spatially_lagged_design(self.design, self.weights)

    def _estimate(self) -> FittedModel:
        return fit_least_squares(self.augmented, self.kind, dropped=self.dropped)
