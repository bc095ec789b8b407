"""
Attribute vectors aligned to spatial unit ids.
"""
import logging
from typing import Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..core.exceptions import DimensionMismatchError

logger = logging.getLogger(__name__)


class AttributeVector:
    """
    One finite real value per spatial unit id.

    Validated at construction: ids are unique, there is exactly one value per
    id and no value is missing or infinite. Values are read-only.
    """

    def __init__(self, ids: Sequence[int], values: Sequence[float], name: Optional[str] = None):
        ids = tuple(int(i) for i in ids)
        values = np.array(values, dtype=float).reshape(-1)

        if len(ids) != len(values):
            raise DimensionMismatchError(f"{len(ids)} ids but {len(values)} values")
        if len(set(ids)) != len(ids):
            raise DimensionMismatchError("Attribute ids must be unique")

        bad = ~np.isfinite(values)
        if bad.any():
            missing = [ids[i] for i in np.flatnonzero(bad)][:10]
            raise DimensionMismatchError(f"Non-finite values for ids {missing}; filter them first")

        values.flags.writeable = False
        self._ids = ids
        self._values = values
        self.name = name

    def __len__(self) -> int:
        return len(self._ids)

    def __repr__(self) -> str:
        return f"AttributeVector(name={self.name!r}, n={len(self)})"

    @property
    def ids(self) -> Tuple[int, ...]:
        return self._ids

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def variance(self) -> float:
        return float(self._values.var())

    @classmethod
    def from_mapping(cls, mapping: Mapping[int, float], name: Optional[str] = None) -> 'AttributeVector':
        return cls(list(mapping.keys()), list(mapping.values()), name=name)

    @classmethod
    def from_series(cls, series: pd.Series) -> 'AttributeVector':
        """Build from a pandas Series indexed by unit id."""
        return cls(series.index.tolist(), series.to_numpy(), name=series.name)

    def align(self, ids: Sequence[int]) -> 'AttributeVector':
        """
        Reorder to match ``ids``.

        Raises:
            DimensionMismatchError: If either side has ids the other lacks
        """
        ids = tuple(int(i) for i in ids)
        if ids == self._ids:
            return self

        index = {unit: i for i, unit in enumerate(self._ids)}
        unmatched = [unit for unit in ids if unit not in index]
        extra = set(self._ids) - set(ids)
        if unmatched or extra:
            raise DimensionMismatchError(
                f"Attribute ids do not match weights ids: {len(unmatched)} missing "
                f"(e.g. {unmatched[:5]}), {len(extra)} unmatched (e.g. {sorted(extra)[:5]})"
            )

        order = np.array([index[unit] for unit in ids])
        return AttributeVector(ids, self._values[order], name=self.name)

    def to_dict(self):
        return dict(zip(self._ids, self._values.tolist()))

    def to_series(self) -> pd.Series:
        return pd.Series(self._values, index=pd.Index(self._ids, name='id'), name=self.name)
