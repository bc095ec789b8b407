"""
Spatial dependence diagnostics for OLS residuals.

This module provides Moran's I of the regression residuals (with the
regression-adjusted moments of Cliff and Ord) and the Lagrange multiplier
tests for a spatial lag, a spatial error and both, plus the model
recommendation derived from them.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np
from scipy import stats

from ..autocorrelation.moran import MoranResult, global_moran
from ..core.config import get_config
from ..core.decorators import map_errors
from ..weights.matrix import WeightsMatrix
from .base import FittedModel, ModelKind
from .design import RegressionDesign
from .linear import fit_least_squares

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LMTest:
    """A Lagrange multiplier statistic with its chi-square p-value."""
    name: str
    statistic: float
    df: int
    p_value: float

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'statistic': self.statistic, 'df': self.df, 'p_value': self.p_value}


@dataclass(frozen=True)
class ResidualMoran:
    """Moran's I of regression residuals with regression-adjusted moments."""
    statistic: float
    expected: float
    variance: float
    z_value: float
    p_value: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'statistic': self.statistic,
            'expected': self.expected,
            'variance': self.variance,
            'z_value': self.z_value,
            'p_value': self.p_value,
        }


@dataclass(frozen=True)
class SpatialDiagnostics:
    """
    Spatial dependence tests on OLS residuals.

    Attributes:
        moran: Engine Moran's I of the residuals (unadjusted moments)
        residual_moran: Moran's I with moments adjusted for the regression
        lm_error, lm_lag, robust_lm_error, robust_lm_lag, sarma: LM tests
        recommended: Model kind suggested by the LM tests
        significance: Level used for the recommendation
    """
    moran: MoranResult
    residual_moran: ResidualMoran
    lm_error: LMTest
    lm_lag: LMTest
    robust_lm_error: LMTest
    robust_lm_lag: LMTest
    sarma: LMTest
    recommended: ModelKind
    significance: float
    ols: FittedModel

    @property
    def tests(self) -> Dict[str, LMTest]:
        return {
            'lm_error': self.lm_error,
            'lm_lag': self.lm_lag,
            'robust_lm_error': self.robust_lm_error,
            'robust_lm_lag': self.robust_lm_lag,
            'sarma': self.sarma,
        }

    def to_dict(self) -> Dict[str, Any]:
        result = {name: test.to_dict() for name, test in self.tests.items()}
        result['moran'] = self.moran.to_dict()
        result['residual_moran'] = self.residual_moran.to_dict()
        result['recommended_model'] = self.recommended.value
        result['significance'] = self.significance
        return result

    def summary(self) -> str:
        summary = "Spatial Diagnostics\n"
        summary += "------------------\n"
        summary += (f"Moran's I (residuals): {self.residual_moran.statistic:.4f} "
                    f"(z: {self.residual_moran.z_value:.4f}, p-value: {self.residual_moran.p_value:.4f})\n")
        for test in self.tests.values():
            summary += f"{test.name}: {test.statistic:.4f} (df: {test.df}, p-value: {test.p_value:.4f})\n"
        summary += f"Recommended model: {self.recommended.value}\n"
        return summary


def _chi2_test(name: str, statistic: float, df: int) -> LMTest:
    statistic = float(statistic)
    return LMTest(name=name, statistic=statistic, df=df, p_value=float(stats.chi2.sf(statistic, df)))


def residual_moran(design: RegressionDesign, weights: WeightsMatrix, residuals: np.ndarray) -> ResidualMoran:
    """
    Moran's I of OLS residuals under normality, with the mean and variance
    adjusted for the estimated regression.
    """
    X = design.X
    n, k = X.shape
    W = weights.dense()
    e = np.asarray(residuals, dtype=float)
    scale = n / weights.s0

    statistic = scale * (e @ weights.lag(e)) / (e @ e)
    M = np.eye(n) - X @ np.linalg.solve(X.T @ X, X.T)
    MW = M @ W
    expected = scale * np.trace(MW) / (n - k)
    # tr(MWMW') + tr(MWMW) + tr(MW)^2
    second = (np.sum((MW @ M) * W) + np.trace(MW @ MW) + np.trace(MW) ** 2) / ((n - k) * (n - k + 2))
    variance = scale ** 2 * second - expected ** 2

    z_value = (statistic - expected) / np.sqrt(variance)
    return ResidualMoran(
        statistic=float(statistic),
        expected=float(expected),
        variance=float(variance),
        z_value=float(z_value),
        p_value=float(2.0 * stats.norm.sf(abs(z_value))),
    )


def lm_tests(
    design: RegressionDesign,
    weights: WeightsMatrix,
    ols: FittedModel
) -> Dict[str, LMTest]:
    """
    Lagrange multiplier tests from the OLS fit.

    Returns:
        Dictionary with lm_error, lm_lag, robust_lm_error, robust_lm_lag and
        sarma tests
    """
    X, y = design.X, design.y
    n = design.n
    e = ols.residuals
    sigma2 = float(e @ e / n)

    W = weights.sparse
    T = float((W.T @ W + W @ W).diagonal().sum())
    if T <= 0:
        raise ValueError("Weights matrix has no links; LM tests are undefined")

    WXb = weights.lag(X @ ols.coefficients)
    MWXb = WXb - X @ np.linalg.lstsq(X, WXb, rcond=None)[0]
    J = (WXb @ MWXb + T * sigma2) / sigma2

    error_score = (e @ weights.lag(e)) / sigma2
    lag_score = (e @ weights.lag(y)) / sigma2

    lm_error = error_score ** 2 / T
    lm_lag = lag_score ** 2 / J
    robust_lm_lag = (lag_score - error_score) ** 2 / (J - T)
    robust_lm_error = (error_score - (T / J) * lag_score) ** 2 / (T * (1.0 - T / J))

    return {
        'lm_error': _chi2_test('LM Error', lm_error, 1),
        'lm_lag': _chi2_test('LM Lag', lm_lag, 1),
        'robust_lm_error': _chi2_test('Robust LM Error', robust_lm_error, 1),
        'robust_lm_lag': _chi2_test('Robust LM Lag', robust_lm_lag, 1),
        'sarma': _chi2_test('LM SARMA', robust_lm_lag + lm_error, 2),
    }


def recommend_model(tests: Dict[str, LMTest], significance: float) -> ModelKind:
    """
    Choose a specification from the LM tests.

    When only one of the plain tests is significant its model is chosen.
    When both are, the robust tests decide; if both robust tests are
    significant as well the spatial Durbin error model is suggested.
    """
    lm_error = tests['lm_error'].p_value < significance
    lm_lag = tests['lm_lag'].p_value < significance

    if lm_error and lm_lag:
        robust_error = tests['robust_lm_error'].p_value < significance
        robust_lag = tests['robust_lm_lag'].p_value < significance
        if robust_error and not robust_lag:
            return ModelKind.SPATIAL_ERROR
        if robust_lag and not robust_error:
            return ModelKind.SAR_LAG
        if robust_lag and robust_error:
            return ModelKind.SPATIAL_DURBIN_ERROR
        return ModelKind.OLS
    if lm_error:
        return ModelKind.SPATIAL_ERROR
    if lm_lag:
        return ModelKind.SAR_LAG
    return ModelKind.OLS


@map_errors()
def spatial_diagnostics(
    design: RegressionDesign,
    weights: WeightsMatrix,
    ols: Optional[FittedModel] = None,
    significance: Optional[float] = None,
    permutations: int = 0,
    seed: Optional[int] = None
) -> SpatialDiagnostics:
    """
    Run the spatial dependence diagnostics on OLS residuals.

    Args:
        design: Regression design aligned to ``weights``
        weights: Spatial weights
        ols: An existing OLS fit of ``design``; fitted here when omitted
        significance: Level for the recommendation; defaults to
            ``regression.significance``
        permutations: Permutations for the engine Moran's I of the residuals
        seed: Seed for the permutations

    Returns:
        SpatialDiagnostics
    """
    if significance is None:
        significance = get_config().section('regression').significance

    design = design.align(weights.ids)
    if ols is None:
        ols = fit_least_squares(design, ModelKind.OLS)

    logger.info(f"Running spatial diagnostics on {design.n} OLS residuals")
    moran = global_moran(ols.residuals, weights, permutations=permutations, seed=seed)
    adjusted = residual_moran(design, weights, ols.residuals)
    tests = lm_tests(design, weights, ols)
    recommended = recommend_model(tests, significance)

    logger.info(
        f"LM error={tests['lm_error'].statistic:.4f} (p={tests['lm_error'].p_value:.4f}), "
        f"LM lag={tests['lm_lag'].statistic:.4f} (p={tests['lm_lag'].p_value:.4f}); "
        f"recommended model={recommended.value}"
    )
    return SpatialDiagnostics(
        moran=moran,
        residual_moran=adjusted,
        lm_error=tests['lm_error'],
        lm_lag=tests['lm_lag'],
        robust_lm_error=tests['robust_lm_error'],
        robust_lm_lag=tests['robust_lm_lag'],
        sarma=tests['sarma'],
        recommended=recommended,
        significance=significance,
        ols=ols,
    )
