"""
Models module for Spatial Engine.
"""
from .design import RegressionDesign
from .base import FittedModel, ModelKind, ModelState, SpatialModel, create_model
from .linear import OLSModel, SLXModel, spatially_lagged_design, fit_least_squares
from .lag_model import SpatialLagModel
from .error_model import SpatialErrorModel, SpatialDurbinErrorModel
from .impacts import ImpactEstimate, ImpactsResult, compute_impacts, lag_multipliers
from .diagnostics import (
    LMTest, ResidualMoran, SpatialDiagnostics,
    spatial_diagnostics, lm_tests, residual_moran, recommend_model
)
from .tester import SpatialTester

__all__ = [
    'RegressionDesign',
    'FittedModel', 'ModelKind', 'ModelState', 'SpatialModel', 'create_model',
    'OLSModel', 'SLXModel', 'spatially_lagged_design', 'fit_least_squares',
    'SpatialLagModel', 'SpatialErrorModel', 'SpatialDurbinErrorModel',
    'ImpactEstimate', 'ImpactsResult', 'compute_impacts', 'lag_multipliers',
    'LMTest', 'ResidualMoran', 'SpatialDiagnostics',
    'spatial_diagnostics', 'lm_tests', 'residual_moran', 'recommend_model',
    'SpatialTester'
]
