"""
Regression design: outcome vector and predictor matrix.
"""
import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm

from ..core.exceptions import DimensionMismatchError

logger = logging.getLogger(__name__)


class RegressionDesign:
    """
    Read-only outcome ``y`` (n) and predictors ``X`` (n x k) with column names.

    A constant column named ``const`` is prepended unless one is already
    present or ``add_constant`` is False.

    Attributes:
        y_name: Name of the outcome.
        names: Column names of X.
        ids: Unit ids of the rows, when known.
    """

    def __init__(
        self,
        y: Sequence[float],
        X: np.ndarray,
        names: Optional[Sequence[str]] = None,
        y_name: str = 'y',
        add_constant: bool = True,
        ids: Optional[Sequence[int]] = None
    ):
        y = np.array(y, dtype=float).reshape(-1)
        X = np.array(X, dtype=float)
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        if X.ndim != 2:
            raise DimensionMismatchError(f"Predictors must be 2D, got shape {X.shape}")
        if X.shape[0] != len(y):
            raise DimensionMismatchError(f"Outcome has {len(y)} rows but predictors have {X.shape[0]}")
        if not (np.all(np.isfinite(y)) and np.all(np.isfinite(X))):
            raise DimensionMismatchError("Design contains missing or infinite values")

        names = list(names) if names is not None else [f"x{i + 1}" for i in range(X.shape[1])]
        if len(names) != X.shape[1]:
            raise DimensionMismatchError(f"{len(names)} names for {X.shape[1]} predictor columns")

        if add_constant:
            augmented = sm.add_constant(X, prepend=True, has_constant='skip')
            if augmented.shape[1] > X.shape[1]:
                names = ['const'] + names
            X = augmented

        if ids is not None:
            ids = tuple(int(i) for i in ids)
            if len(ids) != len(y):
                raise DimensionMismatchError(f"{len(ids)} ids for {len(y)} observations")

        y.flags.writeable = False
        X = np.ascontiguousarray(X)
        X.flags.writeable = False
        self._y = y
        self._X = X
        self.names: Tuple[str, ...] = tuple(names)
        self.y_name = y_name
        self.ids = ids

    def __repr__(self) -> str:
        return f"RegressionDesign(y={self.y_name!r}, n={self.n}, columns={list(self.names)})"

    @property
    def y(self) -> np.ndarray:
        return self._y

    @property
    def X(self) -> np.ndarray:
        return self._X

    @property
    def n(self) -> int:
        return len(self._y)

    @property
    def k(self) -> int:
        return self._X.shape[1]

    @property
    def constant_columns(self) -> List[int]:
        return [j for j in range(self.k) if np.ptp(self._X[:, j]) == 0]

    @property
    def variable_columns(self) -> List[int]:
        """Indices of non-constant predictor columns."""
        constant = set(self.constant_columns)
        return [j for j in range(self.k) if j not in constant]

    def align(self, ids: Sequence[int]) -> 'RegressionDesign':
        """
        Reorder rows to match ``ids``.

        Without row ids only the length can be checked.

        Raises:
            DimensionMismatchError: Missing or extra ids, or a length mismatch
        """
        ids = tuple(int(i) for i in ids)
        if self.ids is None:
            if len(ids) != self.n:
                raise DimensionMismatchError(f"Design has {self.n} rows but weights cover {len(ids)} units")
            return self
        if ids == self.ids:
            return self

        index = {unit: i for i, unit in enumerate(self.ids)}
        missing = [unit for unit in ids if unit not in index]
        if missing or len(ids) != self.n:
            raise DimensionMismatchError(
                f"Design ids do not match weights ids ({len(missing)} missing, e.g. {missing[:5]})"
            )
        order = np.array([index[unit] for unit in ids])
        return RegressionDesign(
            self._y[order], self._X[order], names=self.names,
            y_name=self.y_name, add_constant=False, ids=ids
        )

    def with_columns(self, columns: np.ndarray, names: Sequence[str]) -> 'RegressionDesign':
        """New design with extra predictor columns appended."""
        columns = np.asarray(columns, dtype=float).reshape(self.n, -1)
        return RegressionDesign(
            self._y, np.hstack([self._X, columns]), names=list(self.names) + list(names),
            y_name=self.y_name, add_constant=False, ids=self.ids
        )

    def to_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame(self._X, columns=list(self.names))
        frame.insert(0, self.y_name, self._y)
        if self.ids is not None:
            frame.index = pd.Index(self.ids, name='id')
        return frame

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        y_col: str,
        x_cols: Sequence[str],
        add_constant: bool = True,
        id_column: Optional[str] = None
    ) -> 'RegressionDesign':
        """
        Build a design from DataFrame columns.

        Raises:
            KeyError: If a column is missing
        """
        missing = [col for col in [y_col, *x_cols] if col not in frame.columns]
        if missing:
            logger.error(f"Columns not found in data: {missing}")
            raise KeyError(f"Columns not found in data: {missing}")

        if id_column is not None:
            ids = frame[id_column].tolist()
        elif pd.api.types.is_integer_dtype(frame.index):
            ids = frame.index.tolist()
        else:
            ids = None

        logger.info(f"Building design with y={y_col}, x={list(x_cols)} ({len(frame)} observations)")
        return cls(
            frame[y_col].to_numpy(dtype=float),
            frame[list(x_cols)].to_numpy(dtype=float),
            names=list(x_cols),
            y_name=y_col,
            add_constant=add_constant,
            ids=ids,
        )
