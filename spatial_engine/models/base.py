"""
Base model classes and interfaces for Spatial Engine.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np
import pandas as pd

from ..core.decorators import performance_context
from ..core.exceptions import DimensionMismatchError, ModelError, NotFittedError
from ..weights.matrix import WeightsMatrix
from .design import RegressionDesign

logger = logging.getLogger(__name__)


class ModelKind(Enum):
    OLS = 'ols'
    SLX = 'slx'
    SAR_LAG = 'sar_lag'
    SPATIAL_ERROR = 'spatial_error'
    SPATIAL_DURBIN_ERROR = 'spatial_durbin_error'

    @classmethod
    def parse(cls, value: Union[str, 'ModelKind']) -> 'ModelKind':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown model kind: {value}") from None


class ModelState(Enum):
    UNFIT = 'unfit'
    FITTED = 'fitted'
    IMPACTS_COMPUTED = 'impacts_computed'


_ARRAY_FIELDS = (
    'coefficients', 'std_errors', 'z_values', 'p_values',
    'residuals', 'fitted_values', 'innovations', 'covariance'
)
_TUPLE_FIELDS = ('names', 'dropped', 'ids')


@dataclass(frozen=True, eq=False)
class FittedModel:
    """
    Immutable result of one ``fit`` call.

    ``covariance`` covers the coefficients followed by the spatial parameter
    when the model has one. ``innovations`` are the spatially filtered
    residuals of error models.
    """
    kind: str
    names: Tuple[str, ...]
    coefficients: np.ndarray
    std_errors: np.ndarray
    z_values: np.ndarray
    p_values: np.ndarray
    residuals: np.ndarray
    fitted_values: np.ndarray
    sigma2: float
    log_likelihood: float
    aic: float
    schwarz: float
    pseudo_r2: float
    n: int
    k: int
    covariance: Optional[np.ndarray] = field(default=None, repr=False)
    spatial_parameter: Optional[float] = None
    spatial_parameter_name: Optional[str] = None
    spatial_std_error: Optional[float] = None
    spatial_z_value: Optional[float] = None
    spatial_p_value: Optional[float] = None
    innovations: Optional[np.ndarray] = field(default=None, repr=False)
    optimizer: Optional[Dict[str, Any]] = None
    dropped: Tuple[str, ...] = ()
    ids: Tuple[int, ...] = ()

    def coefficient(self, name: str) -> float:
        try:
            return float(self.coefficients[self.names.index(name)])
        except ValueError:
            raise KeyError(f"No coefficient named {name!r}") from None

    def coefficient_table(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                'coefficient': self.coefficients,
                'std_error': self.std_errors,
                'z_value': self.z_values,
                'p_value': self.p_values,
            },
            index=pd.Index(self.names, name='variable')
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, np.ndarray):
                value = value.tolist()
            elif isinstance(value, tuple):
                value = list(value)
            result[f.name] = value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FittedModel':
        kwargs = dict(data)
        for name in _ARRAY_FIELDS:
            if kwargs.get(name) is not None:
                kwargs[name] = np.array(kwargs[name], dtype=float)
        for name in _TUPLE_FIELDS:
            if kwargs.get(name) is not None:
                kwargs[name] = tuple(kwargs[name])
        return cls(**kwargs)

    def to_json(self, **kwargs) -> str:
        return json.dumps(self.to_dict(), **kwargs)

    @classmethod
    def from_json(cls, text: str) -> 'FittedModel':
        return cls.from_dict(json.loads(text))

    def summary(self) -> str:
        """Plain-text model summary."""
        summary = f"Model: {self.kind}\n"
        summary += f"Number of observations: {self.n}\n"
        summary += f"Log-likelihood: {self.log_likelihood:.4f}\n"
        summary += f"AIC: {self.aic:.4f}\n"
        summary += f"Schwarz criterion: {self.schwarz:.4f}\n"
        summary += f"Pseudo R-squared: {self.pseudo_r2:.4f}\n"
        if self.spatial_parameter is not None:
            summary += (f"{self.spatial_parameter_name}: {self.spatial_parameter:.4f} "
                        f"(std err: {self.spatial_std_error:.4f}, p-value: {self.spatial_p_value:.4f})\n")
        if self.dropped:
            summary += f"Dropped columns: {', '.join(self.dropped)}\n"

        summary += "\nCoefficients:\n"
        for i, var in enumerate(self.names):
            summary += (f"{var}: {self.coefficients[i]:.4f} (std err: {self.std_errors[i]:.4f}, "
                        f"z-value: {self.z_values[i]:.4f}, p-value: {self.p_values[i]:.4f})\n")
        return summary


class SpatialModel(ABC):
    """
    Abstract base class for regression estimators.

    Lifecycle: UNFIT -> FITTED -> IMPACTS_COMPUTED. ``results``,
    ``impacts()`` and ``diagnostics()`` require a successful fit; a new fit
    discards earlier impacts.

    Attributes:
        design: Regression design aligned to the weights.
        weights: Spatial weights (optional for OLS).
        state: Current ModelState.
    """
    kind: ModelKind = None
    requires_weights: bool = True

    def __init__(self, design: RegressionDesign, weights: Optional[WeightsMatrix] = None):
        if weights is None and self.requires_weights:
            raise ModelError(f"{self.kind.value} model requires a weights matrix")
        if weights is not None:
            if design.n != weights.n:
                raise DimensionMismatchError(
                    f"Design has {design.n} observations but weights cover {weights.n} units"
                )
            design = design.align(weights.ids)

        self.design = design
        self.weights = weights
        self.state = ModelState.UNFIT
        self._results: Optional[FittedModel] = None
        self._impacts = None

    @abstractmethod
    def _estimate(self, **kwargs) -> FittedModel:
        """Estimate the model and return its results."""
        pass

    def fit(self, **kwargs) -> FittedModel:
        """Fit the model; the results are also kept on the instance."""
        logger.info(f"Fitting {self.kind.value} model with {self.design.n} observations")
        with performance_context(f"{self.kind.value} fit"):
            results = self._estimate(**kwargs)

        self._results = results
        self._impacts = None
        self.state = ModelState.FITTED
        logger.info(f"Fitted {self.kind.value} model: log-likelihood={results.log_likelihood:.4f}, AIC={results.aic:.4f}")
        return results

    def _require_fit(self) -> FittedModel:
        if self._results is None:
            raise NotFittedError(f"{self.kind.value} model has not been fitted yet")
        return self._results

    @property
    def is_fitted(self) -> bool:
        return self._results is not None

    @property
    def results(self) -> FittedModel:
        return self._require_fit()

    def impacts(self, draws: Optional[int] = None, seed: Optional[int] = None):
        """Direct, indirect and total effects of each non-constant predictor."""
        from .impacts import compute_impacts

        results = self._require_fit()
        self._impacts = compute_impacts(self, results, draws=draws, seed=seed)
        self.state = ModelState.IMPACTS_COMPUTED
        return self._impacts

    def diagnostics(self, permutations: int = 0, seed: Optional[int] = None):
        """Moran's I of the fitted model's residuals (innovations for error models)."""
        from ..autocorrelation.moran import global_moran

        results = self._require_fit()
        if self.weights is None:
            raise ModelError("Residual diagnostics require a weights matrix")
        residuals = results.innovations if results.innovations is not None else results.residuals
        return global_moran(residuals, self.weights, permutations=permutations, seed=seed)

    def summary(self) -> str:
        return self._require_fit().summary()


def create_model(
    kind: Union[str, ModelKind],
    design: RegressionDesign,
    weights: Optional[WeightsMatrix] = None
) -> SpatialModel:
    """Factory function to create regression model instances."""
    from .linear import OLSModel, SLXModel
    from .lag_model import SpatialLagModel
    from .error_model import SpatialErrorModel, SpatialDurbinErrorModel

    kind = ModelKind.parse(kind)
    models = {
        ModelKind.OLS: OLSModel,
        ModelKind.SLX: SLXModel,
        ModelKind.SAR_LAG: SpatialLagModel,
        ModelKind.SPATIAL_ERROR: SpatialErrorModel,
        ModelKind.SPATIAL_DURBIN_ERROR: SpatialDurbinErrorModel,
    }
    return models[kind](design, weights)
