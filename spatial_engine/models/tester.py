"""
Spatial tester module for Spatial Engine.

This module provides the SpatialTester class that runs the diagnostics on an
OLS fit and estimates the specification they recommend.
"""
import logging
from typing import Any, Dict, Optional, Union

from ..core.exceptions import ModelError
from ..weights.matrix import WeightsMatrix
from .base import FittedModel, ModelKind, SpatialModel, create_model
from .design import RegressionDesign
from .diagnostics import SpatialDiagnostics, spatial_diagnostics

logger = logging.getLogger(__name__)


class SpatialTester:
    """
    Diagnostics-driven model selection.

    Attributes:
        design: Regression design aligned to the weights.
        weights: Spatial weights.
        diagnostics: Result of the last ``run_diagnostics`` call.
        model: The last estimated model.
    """

    def __init__(self, design: RegressionDesign, weights: WeightsMatrix):
        self.design = design.align(weights.ids)
        self.weights = weights
        self.diagnostics: Optional[SpatialDiagnostics] = None
        self.model: Optional[SpatialModel] = None

    def run_diagnostics(
        self,
        significance: Optional[float] = None,
        permutations: int = 0,
        seed: Optional[int] = None
    ) -> SpatialDiagnostics:
        """Fit OLS and test its residuals for spatial dependence."""
        ols = create_model(ModelKind.OLS, self.design, self.weights)
        results = ols.fit()
        self.diagnostics = spatial_diagnostics(
            self.design, self.weights, ols=results, significance=significance,
            permutations=permutations, seed=seed
        )
        return self.diagnostics

    def estimate(self, kind: Optional[Union[str, ModelKind]] = None, **kwargs) -> FittedModel:
        """
        Estimate a model.

        Args:
            kind: Model kind; the diagnostics' recommendation when omitted
            **kwargs: Passed to the model's ``fit``

        Returns:
            FittedModel of the estimated model
        """
        if kind is None:
            if self.diagnostics is None:
                self.run_diagnostics()
            kind = self.diagnostics.recommended
            logger.info(f"Using recommended model type: {kind.value}")

        self.model = create_model(kind, self.design, self.weights)
        return self.model.fit(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.diagnostics is not None:
            result['diagnostics'] = self.diagnostics.to_dict()
        if self.model is not None and self.model.is_fitted:
            result['model'] = self.model.results.to_dict()
        return result

    def get_summary(self) -> str:
        """
        Summary of the diagnostics and the estimated model.

        Raises:
            ModelError: If nothing has been run yet
        """
        if self.diagnostics is None and (self.model is None or not self.model.is_fitted):
            raise ModelError("No analyses have been performed")

        summary = "Spatial Analysis Summary\n"
        summary += "======================\n\n"
        if self.diagnostics is not None:
            summary += self.diagnostics.summary() + "\n"
        if self.model is not None and self.model.is_fitted:
            summary += self.model.summary()
        return summary
