"""
Geographically Weighted Regression module for Spatial Engine.

This module provides the GWR solver: one weighted least squares fit per
unit, with the weights given by a distance-decay kernel around the unit.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..computation.parallel import chunk_bounds, parallel_map
from ..core.config import get_config
from ..core.decorators import performance_context
from ..core.exceptions import DimensionMismatchError, InsufficientNeighborsError, NotFittedError
from ..geometry.types import Geometry
from ..models.design import RegressionDesign
from .kernels import as_coordinates, check_kernel, local_weights, pairwise_distances

logger = logging.getLogger(__name__)

LOG_2PI = np.log(2.0 * np.pi)
UNIT_CHUNK = 64


class LocalFit(NamedTuple):
    beta: np.ndarray
    cc_diagonal: np.ndarray
    hat_row: np.ndarray
    local_r2: float


def local_regression(
    X: np.ndarray,
    y: np.ndarray,
    w: np.ndarray,
    row: int,
    min_neighbors: int,
    unit_id: Any = None
) -> LocalFit:
    """
    Weighted least squares at one unit.

    Raises:
        InsufficientNeighborsError: If fewer than ``min_neighbors``
            observations carry positive weight or ``X'WX`` is singular
    """
    k = X.shape[1]
    positive = w > 0
    if positive.sum() < min_neighbors:
        raise InsufficientNeighborsError(
            f"Unit {unit_id}: {int(positive.sum())} observations with positive weight, "
            f"{min_neighbors} required",
            unit_id=unit_id
        )
    if np.linalg.matrix_rank(X[positive] * np.sqrt(w[positive])[:, None]) < k:
        raise InsufficientNeighborsError(f"Unit {unit_id}: local design is rank deficient", unit_id=unit_id)

    xtw = X.T * w
    try:
        C = np.linalg.solve(xtw @ X, xtw)
    except np.linalg.LinAlgError as e:
        raise InsufficientNeighborsError(f"Unit {unit_id}: X'WX is singular", unit_id=unit_id) from e

    beta = C @ y
    fitted = X @ beta
    total_weight = w.sum()
    y_bar = (w @ y) / total_weight
    tss = w @ (y - y_bar) ** 2
    rss = w @ (y - fitted) ** 2
    local_r2 = 1.0 - rss / tss if tss > 0 else float('nan')

    return LocalFit(beta=beta, cc_diagonal=np.sum(C * C, axis=1), hat_row=X[row] @ C, local_r2=float(local_r2))


def _fit_chunk(task: Tuple) -> List[Tuple[int, Optional[LocalFit], Optional[str]]]:
    """Fit a block of units; per-unit failures are returned, not raised."""
    rows, ids, X, y, weight_rows, min_neighbors, leave_out = task
    out = []
    for row, unit_id, w in zip(rows, ids, weight_rows):
        if leave_out:
            w = w.copy()
            w[row] = 0.0
        try:
            out.append((row, local_regression(X, y, w, row, min_neighbors, unit_id), None))
        except InsufficientNeighborsError as e:
            logger.debug(str(e))
            out.append((row, None, str(e)))
    return out


@dataclass(frozen=True, eq=False)
class GWRResult:
    """
    Local coefficients and global fit statistics of one GWR fit.

    Rows of the per-unit arrays follow ``ids``; units that could not be
    fitted are NaN and listed in ``failures``.
    """
    names: Tuple[str, ...]
    ids: Tuple[Any, ...]
    kernel: str
    fixed: bool
    bandwidth: float
    params: np.ndarray
    std_errors: np.ndarray
    t_values: np.ndarray
    local_r2: np.ndarray
    fitted_values: np.ndarray
    residuals: np.ndarray
    influence: np.ndarray
    fitted_mask: np.ndarray
    tr_s: float
    tr_sts: float
    rss: float
    sigma2: float
    aic: float
    aicc: float
    r2: float
    adj_r2: float
    failures: Dict[Any, str] = field(default_factory=dict)

    @property
    def n(self) -> int:
        return len(self.ids)

    @property
    def n_fitted(self) -> int:
        return int(self.fitted_mask.sum())

    def to_frame(self) -> pd.DataFrame:
        data: Dict[str, Any] = {}
        for j, name in enumerate(self.names):
            data[name] = self.params[:, j]
        for j, name in enumerate(self.names):
            data[f"se_{name}"] = self.std_errors[:, j]
        for j, name in enumerate(self.names):
            data[f"t_{name}"] = self.t_values[:, j]
        data['local_r2'] = self.local_r2
        data['fitted'] = self.fitted_values
        data['residual'] = self.residuals
        data['influence'] = self.influence
        data['fitted_mask'] = self.fitted_mask
        return pd.DataFrame(data, index=pd.Index(self.ids, name='id'))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'names': list(self.names),
            'ids': list(self.ids),
            'kernel': self.kernel,
            'fixed': self.fixed,
            'bandwidth': self.bandwidth,
            'params': self.params.tolist(),
            'std_errors': self.std_errors.tolist(),
            't_values': self.t_values.tolist(),
            'local_r2': self.local_r2.tolist(),
            'fitted_values': self.fitted_values.tolist(),
            'residuals': self.residuals.tolist(),
            'influence': self.influence.tolist(),
            'fitted_mask': self.fitted_mask.tolist(),
            'tr_s': self.tr_s,
            'tr_sts': self.tr_sts,
            'rss': self.rss,
            'sigma2': self.sigma2,
            'aic': self.aic,
            'aicc': self.aicc,
            'r2': self.r2,
            'adj_r2': self.adj_r2,
            'failures': {str(k): v for k, v in self.failures.items()},
        }

    def summary(self) -> str:
        summary = "Geographically Weighted Regression\n"
        summary += f"Kernel: {'fixed' if self.fixed else 'adaptive'} {self.kernel}, bandwidth: {self.bandwidth:.4f}\n"
        summary += f"Units fitted: {self.n_fitted}/{self.n}\n"
        summary += f"tr(S): {self.tr_s:.4f}, tr(S'S): {self.tr_sts:.4f}\n"
        summary += f"Sigma2: {self.sigma2:.4f}\n"
        summary += f"AIC: {self.aic:.4f}, AICc: {self.aicc:.4f}\n"
        summary += f"R-squared: {self.r2:.4f}, adjusted: {self.adj_r2:.4f}\n"
        summary += "\nLocal coefficients (mean, min, max):\n"
        fitted = self.params[self.fitted_mask]
        for j, name in enumerate(self.names):
            summary += (f"{name}: {fitted[:, j].mean():.4f}, "
                        f"{fitted[:, j].min():.4f}, {fitted[:, j].max():.4f}\n")
        return summary


class GWR:
    """
    Geographically weighted regression.

    Attributes:
        coords: (n, 2) coordinates of the units.
        design: Regression design, rows aligned with ``coords``.
        kernel: Kernel name (gaussian, bisquare, exponential).
        fixed: Distance bandwidth if True, adaptive neighbour bandwidth otherwise.
        min_neighbors: Positive weights required per local fit (default: k).
    """

    def __init__(
        self,
        locations: Union[np.ndarray, Sequence[Geometry]],
        design: RegressionDesign,
        kernel: Optional[str] = None,
        fixed: Optional[bool] = None,
        min_neighbors: Optional[int] = None
    ):
        settings = get_config().section('gwr')
        coords = as_coordinates(locations)
        if len(coords) != design.n:
            raise DimensionMismatchError(
                f"{len(coords)} locations for {design.n} observations"
            )
        if locations is not None and len(locations) and isinstance(locations[0], Geometry):
            design = design.align([g.id for g in locations])

        self.coords = coords
        self.design = design
        self.kernel = check_kernel(kernel or settings.kernel)
        self.fixed = settings.fixed if fixed is None else bool(fixed)
        min_neighbors = min_neighbors if min_neighbors is not None else settings.min_neighbors
        self.min_neighbors = max(design.k, min_neighbors or design.k)
        self.distances = pairwise_distances(coords)
        self.ids = design.ids if design.ids is not None else tuple(range(design.n))
        self._results: Optional[GWRResult] = None
        self.selection = None

    @property
    def n(self) -> int:
        return self.design.n

    @property
    def results(self) -> GWRResult:
        if self._results is None:
            raise NotFittedError("GWR model has not been fitted yet")
        return self._results

    def weights(self, bandwidth: float) -> np.ndarray:
        """(n, n) local weights; row i is the kernel around unit i."""
        return local_weights(self.distances, bandwidth, self.kernel, self.fixed)

    def _local_fits(
        self,
        bandwidth: float,
        leave_out: bool,
        **parallel_options
    ) -> List[Tuple[int, Optional[LocalFit], Optional[str]]]:
        W = self.weights(bandwidth)
        X, y = self.design.X, self.design.y

        tasks, start = [], 0
        for size in chunk_bounds(self.n, UNIT_CHUNK):
            rows = list(range(start, start + size))
            tasks.append((rows, [self.ids[r] for r in rows], X, y, W[start:start + size],
                          self.min_neighbors, leave_out))
            start += size

        chunks = parallel_map(_fit_chunk, tasks, **parallel_options)
        return [fit for chunk in chunks for fit in chunk]

    def fit(self, bandwidth: Optional[float] = None, **parallel_options) -> GWRResult:
        """
        Fit every local regression at ``bandwidth``.

        Without a bandwidth one is selected first with ``select_bandwidth``.
        Units that cannot be fitted are recorded in ``failures`` and the
        rest still fit.

        Raises:
            InsufficientNeighborsError: If no unit can be fitted
        """
        if bandwidth is None:
            from .bandwidth import select_bandwidth

            self.selection = select_bandwidth(self, **parallel_options)
            bandwidth = self.selection.bandwidth

        n, k = self.design.n, self.design.k
        X, y = self.design.X, self.design.y
        logger.info(f"Fitting GWR ({'fixed' if self.fixed else 'adaptive'} {self.kernel}, "
                    f"bandwidth={bandwidth}) on {n} units")

        with performance_context("GWR fit"):
            fits = self._local_fits(bandwidth, leave_out=False, **parallel_options)

        params = np.full((n, k), np.nan)
        cc_diagonal = np.full((n, k), np.nan)
        local_r2 = np.full(n, np.nan)
        influence = np.full(n, np.nan)
        fitted_mask = np.zeros(n, dtype=bool)
        failures: Dict[Any, str] = {}
        tr_sts = 0.0

        for row, local, error in fits:
            if local is None:
                failures[self.ids[row]] = error
                continue
            params[row] = local.beta
            cc_diagonal[row] = local.cc_diagonal
            local_r2[row] = local.local_r2
            influence[row] = local.hat_row[row]
            tr_sts += float(local.hat_row @ local.hat_row)
            fitted_mask[row] = True

        if not fitted_mask.any():
            raise InsufficientNeighborsError(
                f"No unit could be fitted at bandwidth {bandwidth}; first failure: {next(iter(failures.values()))}"
            )
        if failures:
            logger.warning(f"GWR could not fit {len(failures)} of {n} units")

        fitted_values = np.einsum('ij,ij->i', X, params)
        residuals = y - fitted_values

        m = int(fitted_mask.sum())
        rss = float(np.sum(residuals[fitted_mask] ** 2))
        tss = float(np.sum((y[fitted_mask] - y[fitted_mask].mean()) ** 2))
        tr_s = float(np.nansum(influence))
        dof = m - tr_s
        sigma2 = rss / dof if dof > 0 else float('nan')
        log_likelihood = -0.5 * m * (LOG_2PI + np.log(rss / m) + 1.0)
        aic = -2.0 * log_likelihood + 2.0 * (tr_s + 1.0)
        aicc = (-2.0 * log_likelihood + 2.0 * m * (tr_s + 1.0) / (m - tr_s - 2.0)
                if m - tr_s - 2.0 > 0 else float('inf'))
        r2 = 1.0 - rss / tss if tss > 0 else float('nan')
        adj_r2 = 1.0 - (1.0 - r2) * (m - 1) / (dof - 1) if dof > 1 else float('nan')

        std_errors = np.sqrt(sigma2 * cc_diagonal)
        with np.errstate(divide='ignore', invalid='ignore'):
            t_values = params / std_errors

        self._results = GWRResult(
            names=self.design.names,
            ids=tuple(self.ids),
            kernel=self.kernel,
            fixed=self.fixed,
            bandwidth=float(bandwidth),
            params=params,
            std_errors=std_errors,
            t_values=t_values,
            local_r2=local_r2,
            fitted_values=fitted_values,
            residuals=residuals,
            influence=influence,
            fitted_mask=fitted_mask,
            tr_s=tr_s,
            tr_sts=tr_sts,
            rss=rss,
            sigma2=sigma2,
            aic=float(aic),
            aicc=float(aicc),
            r2=r2,
            adj_r2=adj_r2,
            failures=failures,
        )
        logger.info(f"Fitted GWR: AICc={aicc:.4f}, R2={r2:.4f}, tr(S)={tr_s:.4f}")
        return self._results

    def cross_validate(self, bandwidth: float, **parallel_options) -> float:
        """
        Leave-one-out cross-validation score (mean squared prediction error).

        Each local fit gives its own observation zero weight. The score is
        infinite when any unit cannot be fitted.
        """
        fits = self._local_fits(bandwidth, leave_out=True, **parallel_options)
        X, y = self.design.X, self.design.y

        errors = np.empty(self.n)
        for row, local, error in fits:
            if local is None:
                logger.debug(f"CV at bandwidth {bandwidth} is infinite: {error}")
                return float('inf')
            errors[row] = y[row] - X[row] @ local.beta
        score = float(np.mean(errors ** 2))
        logger.debug(f"CV score at bandwidth {bandwidth}: {score:.6f}")
        return score

    def aicc(self, bandwidth: float, **parallel_options) -> float:
        """AICc of a full fit; infinite when any unit cannot be fitted."""
        fits = self._local_fits(bandwidth, leave_out=False, **parallel_options)
        X, y = self.design.X, self.design.y
        n = self.n

        fitted = np.empty(n)
        tr_s = 0.0
        for row, local, error in fits:
            if local is None:
                return float('inf')
            fitted[row] = X[row] @ local.beta
            tr_s += local.hat_row[row]
        rss = float(np.sum((y - fitted) ** 2))
        if n - tr_s - 2.0 <= 0 or rss <= 0:
            return float('inf')
        log_likelihood = -0.5 * n * (LOG_2PI + np.log(rss / n) + 1.0)
        return float(-2.0 * log_likelihood + 2.0 * n * (tr_s + 1.0) / (n - tr_s - 2.0))

    def score(self, bandwidth: float, criterion: str = 'cv', **parallel_options) -> float:
        if criterion == 'cv':
            return self.cross_validate(bandwidth, **parallel_options)
        if criterion == 'aicc':
            return self.aicc(bandwidth, **parallel_options)
        raise ValueError(f"Unknown bandwidth criterion: {criterion}")
