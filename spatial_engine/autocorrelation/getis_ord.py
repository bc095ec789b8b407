"""
Getis-Ord local G statistics (hot and cold spots).
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from ..core.config import get_config
from ..core.decorators import performance_tracker
from ..weights.matrix import WeightsMatrix
from .base import ArrayLike, prepare_values, require_links

logger = logging.getLogger(__name__)


class HotSpot(Enum):
    NOT_SIGNIFICANT = 'not_significant'
    HOT_SPOT = 'hot_spot'
    COLD_SPOT = 'cold_spot'


@dataclass(frozen=True)
class GetisOrdResult:
    """
    Per-unit Getis-Ord statistics.

    ``z_values`` is the standardised form consumed for mapping; ``statistics``
    holds the G_i ratio. Islands have NaN z and p values.
    """
    ids: Tuple[int, ...]
    statistics: np.ndarray
    expected: np.ndarray
    z_values: np.ndarray
    p_values: np.ndarray
    classifications: Tuple[HotSpot, ...]
    star: bool
    significance: float
    islands: Tuple[int, ...] = ()

    @property
    def counts(self) -> Dict[str, int]:
        return {h.name: sum(1 for c in self.classifications if c is h) for h in HotSpot}

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                'statistic': self.statistics,
                'expected': self.expected,
                'z_value': self.z_values,
                'p_value': self.p_values,
                'classification': [c.name for c in self.classifications],
            },
            index=pd.Index(self.ids, name='id')
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'star': self.star,
            'significance': self.significance,
            'islands': list(self.islands),
            'counts': self.counts,
            'units': {
                unit: {
                    'statistic': float(self.statistics[i]),
                    'z_value': float(self.z_values[i]),
                    'p_value': float(self.p_values[i]),
                    'classification': self.classifications[i].name,
                }
                for i, unit in enumerate(self.ids)
            },
        }


def classify_hot_spots(z_values: np.ndarray, p_values: np.ndarray, significance: float) -> Tuple[HotSpot, ...]:
    labels = []
    for z, p in zip(z_values, p_values):
        if np.isfinite(p) and p < significance:
            labels.append(HotSpot.HOT_SPOT if z > 0 else HotSpot.COLD_SPOT)
        else:
            labels.append(HotSpot.NOT_SIGNIFICANT)
    return tuple(labels)


@performance_tracker()
def getis_ord(
    x: ArrayLike,
    weights: WeightsMatrix,
    star: bool = False,
    significance: Optional[float] = None
) -> GetisOrdResult:
    """
    Local G_i (or G_i* with ``star``) and its z-score.

    G_i excludes unit i from the sums; G_i* includes it, and a weights
    matrix without a diagonal is given self-neighbours first.

    Args:
        x: Attribute values in weights order, or an AttributeVector
        weights: Spatial weights
        star: Compute G_i* instead of G_i
        significance: Two-sided threshold for hot/cold spot labels

    Returns:
        GetisOrdResult
    """
    significance = (
        get_config().section('autocorrelation').lisa_significance
        if significance is None else significance
    )
    values = prepare_values(x, weights)
    require_links(weights)
    islands = weights.island_mask

    if star and not np.any(weights.diagonal):
        w = weights.with_self_neighbours()
    elif not star and np.any(weights.diagonal):
        raise ValueError("G_i requires a weights matrix without self-neighbours")
    else:
        w = weights

    n = len(values)
    total = values.sum()
    total_sq = np.sum(values ** 2)
    lag = w.lag(values)
    w_sum = w.row_sums
    w_sq = np.asarray(w.sparse.multiply(w.sparse).sum(axis=1)).ravel()

    with np.errstate(divide='ignore', invalid='ignore'):
        if star:
            mean = total / n
            std = np.sqrt(total_sq / n - mean ** 2)
            statistics = lag / total
            expected = w_sum / n
            denominator = std * np.sqrt((n * w_sq - w_sum ** 2) / (n - 1.0))
            z_values = (lag - w_sum * mean) / denominator
        else:
            others = total - values
            mean = others / (n - 1.0)
            std = np.sqrt((total_sq - values ** 2) / (n - 1.0) - mean ** 2)
            statistics = lag / others
            expected = w_sum / (n - 1.0)
            denominator = std * np.sqrt(((n - 1.0) * w_sq - w_sum ** 2) / (n - 2.0))
            z_values = (lag - w_sum * mean) / denominator

    z_values = np.where(islands | ~np.isfinite(z_values), np.nan, z_values)
    p_values = 2.0 * stats.norm.sf(np.abs(z_values))

    result = GetisOrdResult(
        ids=weights.ids,
        statistics=statistics,
        expected=expected,
        z_values=z_values,
        p_values=p_values,
        classifications=classify_hot_spots(z_values, p_values, significance),
        star=star,
        significance=significance,
        islands=weights.islands,
    )
    logger.info(f"Getis-Ord {'G*' if star else 'G'}: {result.counts}")
    return result
