"""
Direct, indirect and total impacts of spatial regression models.

Closed-form impacts are used where the model is linear in its coefficients
(OLS, spatial error, SLX). The SAR lag and spatial Durbin error models are
summarised by simulation: coefficient vectors are drawn from the asymptotic
normal distribution of the estimates and the impacts are recomputed per draw.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import sparse
from scipy.sparse.linalg import spsolve

from ..core.config import get_config
from ..core.exceptions import ModelError
from .base import FittedModel, ModelKind
from .likelihood import parameter_bounds
from .linear import LAG_PREFIX

logger = logging.getLogger(__name__)

EFFECTS = ('direct', 'indirect', 'total')


@dataclass(frozen=True)
class ImpactEstimate:
    """
    One effect of one predictor.

    ``estimate`` is evaluated at the fitted coefficients. For simulated
    impacts ``mean``, ``lower`` and ``upper`` summarise the draws (2.5% and
    97.5% quantiles) and ``std_error`` is their standard deviation.
    """
    variable: str
    effect: str
    estimate: float
    std_error: Optional[float] = None
    mean: Optional[float] = None
    lower: Optional[float] = None
    upper: Optional[float] = None


@dataclass(frozen=True)
class ImpactsResult:
    """Impacts of all non-constant predictors of a fitted model."""
    kind: str
    method: str
    estimates: Tuple[ImpactEstimate, ...]
    draws: int = 0
    accepted: int = 0
    rejected: int = 0
    seed: Optional[int] = None
    simulated: Dict[str, np.ndarray] = field(default_factory=dict, repr=False, compare=False)

    @property
    def variables(self) -> List[str]:
        seen = []
        for estimate in self.estimates:
            if estimate.variable not in seen:
                seen.append(estimate.variable)
        return seen

    def get(self, variable: str, effect: str) -> ImpactEstimate:
        for estimate in self.estimates:
            if estimate.variable == variable and estimate.effect == effect:
                return estimate
        raise KeyError(f"No {effect} impact for {variable!r}")

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                'variable': e.variable,
                'effect': e.effect,
                'estimate': e.estimate,
                'std_error': e.std_error,
                'mean': e.mean,
                'lower': e.lower,
                'upper': e.upper,
            }
            for e in self.estimates
        ]
        return pd.DataFrame(rows).set_index(['variable', 'effect'])

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'method': self.method,
            'draws': self.draws,
            'accepted': self.accepted,
            'rejected': self.rejected,
            'seed': self.seed,
            'estimates': [
                {
                    'variable': e.variable,
                    'effect': e.effect,
                    'estimate': e.estimate,
                    'std_error': e.std_error,
                    'mean': e.mean,
                    'lower': e.lower,
                    'upper': e.upper,
                }
                for e in self.estimates
            ],
        }


def _variables(model) -> List[Tuple[str, int]]:
    """Names and coefficient positions of the non-constant base predictors."""
    design = model.design
    return [(design.names[j], j) for j in design.variable_columns]


def _linear_combination(
    covariance: Optional[np.ndarray],
    index: int,
    lag_index: Optional[int],
    scale: float
) -> Tuple[Optional[float], Optional[float], Optional[float]]:
    """Standard errors of beta, scale * theta and beta + scale * theta."""
    if covariance is None:
        return None, None, None
    direct_se = float(np.sqrt(covariance[index, index]))
    if lag_index is None:
        return direct_se, 0.0, direct_se

    indirect_se = float(abs(scale) * np.sqrt(covariance[lag_index, lag_index]))
    total_var = (
        covariance[index, index]
        + scale ** 2 * covariance[lag_index, lag_index]
        + 2.0 * scale * covariance[index, lag_index]
    )
    return direct_se, indirect_se, float(np.sqrt(max(total_var, 0.0)))


def closed_form_impacts(model, results: FittedModel) -> ImpactsResult:
    """
    Impacts that follow directly from the coefficients.

    For SLX the average indirect effect of x is ``theta * S0 / n`` where
    theta is the coefficient of ``W x``; without a lag column (OLS, spatial
    error, or a dropped lag) the indirect effect is zero.
    """
    kind = ModelKind.parse(results.kind)
    scale = model.weights.s0 / model.weights.n if model.weights is not None else 0.0

    estimates = []
    for name, index in _variables(model):
        lag_name = f"{LAG_PREFIX}{name}"
        lag_index = results.names.index(lag_name) if lag_name in results.names else None

        direct = float(results.coefficients[index])
        indirect = scale * float(results.coefficients[lag_index]) if lag_index is not None else 0.0
        direct_se, indirect_se, total_se = _linear_combination(results.covariance, index, lag_index, scale)

        estimates.extend([
            ImpactEstimate(name, 'direct', direct, direct_se),
            ImpactEstimate(name, 'indirect', indirect, indirect_se),
            ImpactEstimate(name, 'total', direct + indirect, total_se),
        ])

    logger.debug(f"Closed-form impacts for {kind.value}: {len(estimates) // 3} variables")
    return ImpactsResult(kind=kind.value, method='closed_form', estimates=tuple(estimates))


def lag_multipliers(weights, rho: float) -> Tuple[float, float]:
    """
    Average diagonal and average row sum of ``(I - rho W)^{-1}``.

    The diagonal average comes from the eigenvalues of W; the row sums are
    solved for directly so islands and non-stochastic weights are handled.
    """
    direct = float(np.mean(1.0 / (1.0 - rho * weights.eigenvalues)).real)
    system = sparse.identity(weights.n, format='csc') - rho * weights.sparse.tocsc()
    total = float(np.mean(spsolve(system, np.ones(weights.n))))
    return direct, total


def _summarise(
    name: str,
    point: Dict[str, float],
    samples: Dict[str, np.ndarray]
) -> List[ImpactEstimate]:
    estimates = []
    for effect in EFFECTS:
        values = samples[effect]
        estimates.append(ImpactEstimate(
            variable=name,
            effect=effect,
            estimate=point[effect],
            std_error=float(np.std(values, ddof=1)) if len(values) > 1 else float('nan'),
            mean=float(np.mean(values)),
            lower=float(np.quantile(values, 0.025)),
            upper=float(np.quantile(values, 0.975)),
        ))
    return estimates


def simulate_lag_impacts(model, results: FittedModel, draws: int, seed: Optional[int]) -> ImpactsResult:
    """
    Simulated impacts of the SAR lag model.

    Draws of rho outside the feasible interval are rejected and counted.

    Raises:
        ModelError: If every draw is rejected
    """
    weights = model.weights
    k = results.k
    mean = np.append(results.coefficients, results.spatial_parameter)
    rng = np.random.default_rng(seed)
    sample = rng.multivariate_normal(mean, results.covariance, size=draws, method='svd')

    lower, upper = parameter_bounds(weights)
    feasible = (sample[:, k] > lower) & (sample[:, k] < upper)
    rejected = int(draws - feasible.sum())
    if rejected:
        logger.warning(f"Rejected {rejected} of {draws} impact draws with rho outside ({lower:.4f}, {upper:.4f})")
    sample = sample[feasible]
    if len(sample) == 0:
        raise ModelError("Every impact draw fell outside the feasible rho interval")

    multipliers = np.array([lag_multipliers(weights, rho) for rho in sample[:, k]])
    point_direct, point_total = lag_multipliers(weights, results.spatial_parameter)

    estimates, simulated = [], {}
    for name, index in _variables(model):
        beta = results.coefficients[index]
        direct = sample[:, index] * multipliers[:, 0]
        total = sample[:, index] * multipliers[:, 1]
        samples = {'direct': direct, 'indirect': total - direct, 'total': total}
        point = {
            'direct': float(beta * point_direct),
            'indirect': float(beta * (point_total - point_direct)),
            'total': float(beta * point_total),
        }
        estimates.extend(_summarise(name, point, samples))
        simulated[name] = np.column_stack([samples[effect] for effect in EFFECTS])

    return ImpactsResult(
        kind=results.kind, method='simulation', estimates=tuple(estimates),
        draws=draws, accepted=len(sample), rejected=rejected, seed=seed, simulated=simulated
    )


def simulate_durbin_error_impacts(model, results: FittedModel, draws: int, seed: Optional[int]) -> ImpactsResult:
    """Simulated impacts of the spatial Durbin error model."""
    weights = model.weights
    k = results.k
    scale = weights.s0 / weights.n
    rng = np.random.default_rng(seed)
    sample = rng.multivariate_normal(results.coefficients, results.covariance[:k, :k], size=draws, method='svd')
    point_effects = closed_form_impacts(model, results)

    estimates, simulated = [], {}
    for name, index in _variables(model):
        lag_name = f"{LAG_PREFIX}{name}"
        direct = sample[:, index]
        if lag_name in results.names:
            indirect = scale * sample[:, results.names.index(lag_name)]
        else:
            indirect = np.zeros(len(sample))
        samples = {'direct': direct, 'indirect': indirect, 'total': direct + indirect}
        point = {effect: point_effects.get(name, effect).estimate for effect in EFFECTS}
        estimates.extend(_summarise(name, point, samples))
        simulated[name] = np.column_stack([samples[effect] for effect in EFFECTS])

    return ImpactsResult(
        kind=results.kind, method='simulation', estimates=tuple(estimates),
        draws=draws, accepted=draws, rejected=0, seed=seed, simulated=simulated
    )


def compute_impacts(
    model,
    results: FittedModel,
    draws: Optional[int] = None,
    seed: Optional[int] = None
) -> ImpactsResult:
    """
    Impacts for a fitted model.

    Args:
        model: The fitted SpatialModel
        results: Its FittedModel
        draws: Simulation draws; defaults to ``regression.impact_draws``
        seed: Seed for the simulation; defaults to ``regression.seed``

    Returns:
        ImpactsResult with one direct, indirect and total estimate per
        non-constant predictor
    """
    settings = get_config().section('regression')
    draws = draws if draws is not None else settings.impact_draws
    seed = seed if seed is not None else settings.seed
    if draws < 1:
        raise ValueError(f"draws must be positive, got {draws}")

    kind = ModelKind.parse(results.kind)
    logger.info(f"Computing impacts for {kind.value} model")
    if kind == ModelKind.SAR_LAG:
        return simulate_lag_impacts(model, results, draws, seed)
    if kind == ModelKind.SPATIAL_DURBIN_ERROR:
        return simulate_durbin_error_impacts(model, results, draws, seed)
    return closed_form_impacts(model, results)
