"""
Spatial weights matrix for Spatial Engine.

This module provides the immutable WeightsMatrix used by every statistic and
model in the package, and the ``standardize`` operation that derives one from
an adjacency graph.
"""
import logging
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np
from scipy import sparse

from ..core.config import get_config
from ..core.exceptions import DimensionMismatchError, IsolatedUnitError
from ..geometry.adjacency import AdjacencyGraph

logger = logging.getLogger(__name__)


class WeightsStyle(Enum):
    """Weighting scheme of a WeightsMatrix."""
    BINARY = 'B'
    ROW = 'W'
    KERNEL = 'K'

    @classmethod
    def parse(cls, value: Union[str, 'WeightsStyle']) -> 'WeightsStyle':
        if isinstance(value, cls):
            return value
        aliases = {'b': 'B', 'binary': 'B', 'w': 'W', 'r': 'W', 'row': 'W', 'k': 'K', 'kernel': 'K'}
        try:
            return cls(aliases[str(value).lower()])
        except KeyError:
            raise ValueError(f"Unknown weights style: {value}") from None


def row_standardize(matrix: sparse.spmatrix) -> sparse.csr_matrix:
    """Scale every non-empty row to sum to one; empty rows stay zero."""
    matrix = sparse.csr_matrix(matrix, dtype=float)
    sums = np.asarray(matrix.sum(axis=1)).ravel()
    inverse = np.divide(1.0, sums, out=np.zeros_like(sums), where=sums != 0)
    return sparse.csr_matrix(sparse.diags(inverse) @ matrix)


class WeightsMatrix:
    """
    Immutable sparse spatial weights aligned to an ordered set of unit ids.

    The underlying CSR buffers are read-only; every derived quantity is
    computed from them and the eigenvalues are cached on first use.

    Attributes:
        ids: Unit ids in row/column order.
        style: WeightsStyle of the weights.
        zero_policy: Whether rows without neighbours are permitted.
        islands: Ids whose rows are all zero.
    """

    def __init__(
        self,
        matrix: sparse.spmatrix,
        ids: Sequence[int],
        style: Union[str, WeightsStyle] = WeightsStyle.ROW,
        zero_policy: bool = False
    ):
        matrix = sparse.csr_matrix(matrix, dtype=float, copy=True)
        ids = tuple(int(i) for i in ids)

        if matrix.shape[0] != matrix.shape[1]:
            raise DimensionMismatchError(f"Weights matrix must be square, got {matrix.shape}")
        if matrix.shape[0] != len(ids):
            raise DimensionMismatchError(
                f"Weights matrix has {matrix.shape[0]} rows but {len(ids)} ids were given"
            )
        if len(set(ids)) != len(ids):
            raise DimensionMismatchError("Weights ids must be unique")
        if not np.all(np.isfinite(matrix.data)):
            raise ValueError("Weights must be finite")

        matrix.eliminate_zeros()
        matrix.sort_indices()

        row_nnz = np.diff(matrix.indptr)
        islands = tuple(ids[i] for i in np.flatnonzero(row_nnz == 0))
        if islands and not zero_policy:
            raise IsolatedUnitError(
                f"{len(islands)} units have no neighbours and zero_policy is False: {list(islands)[:10]}",
                unit_ids=islands
            )

        for buffer in (matrix.data, matrix.indices, matrix.indptr):
            buffer.flags.writeable = False

        self._matrix = matrix
        self._ids = ids
        self._index = {unit: i for i, unit in enumerate(ids)}
        self.style = WeightsStyle.parse(style)
        self.zero_policy = bool(zero_policy)
        self.islands = islands
        self._eigenvalues: Optional[np.ndarray] = None

    def __repr__(self) -> str:
        return (f"WeightsMatrix(n={self.n}, style={self.style.value!r}, "
                f"nnz={self._matrix.nnz}, islands={len(self.islands)})")

    @property
    def ids(self) -> Tuple[int, ...]:
        return self._ids

    @property
    def n(self) -> int:
        return len(self._ids)

    @property
    def n_effective(self) -> int:
        """Number of units with at least one neighbour."""
        return self.n - len(self.islands)

    @property
    def sparse(self) -> sparse.csr_matrix:
        return self._matrix

    @property
    def island_mask(self) -> np.ndarray:
        return np.diff(self._matrix.indptr) == 0

    @property
    def row_sums(self) -> np.ndarray:
        return np.asarray(self._matrix.sum(axis=1)).ravel()

    @property
    def cardinalities(self) -> Dict[int, int]:
        counts = np.diff(self._matrix.indptr)
        return {unit: int(c) for unit, c in zip(self._ids, counts)}

    @property
    def s0(self) -> float:
        return float(self._matrix.sum())

    @property
    def s1(self) -> float:
        sym = self._matrix + self._matrix.T
        return float(sym.multiply(sym).sum() / 2.0)

    @property
    def s2(self) -> float:
        rows = np.asarray(self._matrix.sum(axis=1)).ravel()
        cols = np.asarray(self._matrix.sum(axis=0)).ravel()
        return float(((rows + cols) ** 2).sum())

    @property
    def diagonal(self) -> np.ndarray:
        return self._matrix.diagonal()

    @property
    def eigenvalues(self) -> np.ndarray:
        """Eigenvalues of W, cached; real when every imaginary part vanishes."""
        if self._eigenvalues is None:
            logger.debug(f"Computing eigenvalues of {self.n}x{self.n} weights matrix")
            values = np.linalg.eigvals(self.dense())
            if np.allclose(values.imag, 0.0):
                values = values.real
            values.flags.writeable = False
            self._eigenvalues = values
        return self._eigenvalues

    def lag(self, values: np.ndarray) -> np.ndarray:
        """Spatial lag W @ values; accepts a vector or an (n, k) matrix."""
        values = np.asarray(values, dtype=float)
        if values.shape[0] != self.n:
            raise DimensionMismatchError(
                f"Cannot lag {values.shape[0]} values with weights for {self.n} units"
            )
        return self._matrix @ values

    def dense(self) -> np.ndarray:
        return self._matrix.toarray()

    def neighbors(self, unit: int) -> Dict[int, float]:
        """Neighbour ids of ``unit`` with their weights."""
        i = self._index[unit]
        start, end = self._matrix.indptr[i], self._matrix.indptr[i + 1]
        return {
            self._ids[j]: float(w)
            for j, w in zip(self._matrix.indices[start:end], self._matrix.data[start:end])
        }

    def to_dict(self) -> Dict[Tuple[int, int], float]:
        """Mapping (row id, col id) -> weight for every stored weight."""
        coo = self._matrix.tocoo()
        return {
            (self._ids[i], self._ids[j]): float(w)
            for i, j, w in zip(coo.row, coo.col, coo.data)
        }

    def transform(self, style: Union[str, WeightsStyle]) -> 'WeightsMatrix':
        """Re-derive binary or row-standardised weights from this matrix's links."""
        style = WeightsStyle.parse(style)
        if style is WeightsStyle.KERNEL:
            raise ValueError("Kernel weights are built from coordinates, not transformed")
        binary = self._matrix.copy()
        binary.data = np.ones_like(binary.data)
        matrix = row_standardize(binary) if style is WeightsStyle.ROW else binary
        return WeightsMatrix(matrix, self._ids, style=style, zero_policy=self.zero_policy)

    def with_self_neighbours(self) -> 'WeightsMatrix':
        """
        Variant where every unit is its own neighbour, as used by Getis-Ord Gi*.

        Binary and kernel weights get a unit diagonal; row-standardised
        weights are rebuilt from the binary links plus the diagonal.
        """
        if self.style is WeightsStyle.ROW:
            binary = self._matrix.copy()
            binary.data = np.ones_like(binary.data)
            binary = binary.tolil()
            binary.setdiag(1.0)
            matrix = row_standardize(binary)
        else:
            matrix = self._matrix.tolil()
            matrix.setdiag(1.0)
            matrix = sparse.csr_matrix(matrix)
        return WeightsMatrix(matrix, self._ids, style=self.style, zero_policy=self.zero_policy)

    def to_libpysal(self):
        """Convert to a ``libpysal.weights.W``."""
        from libpysal.weights import WSP

        return WSP(self._matrix.copy(), id_order=list(self._ids)).to_W(silence_warnings=True)

    @classmethod
    def from_libpysal(cls, w, zero_policy: Optional[bool] = None) -> 'WeightsMatrix':
        """Build from a ``libpysal.weights.W``, keeping its id order."""
        matrix = sparse.csr_matrix(w.sparse, dtype=float)
        sums = np.asarray(matrix.sum(axis=1)).ravel()
        if np.allclose(matrix.data, 1.0):
            style = WeightsStyle.BINARY
        elif np.allclose(sums[sums > 0], 1.0):
            style = WeightsStyle.ROW
        else:
            style = WeightsStyle.KERNEL
        if zero_policy is None:
            zero_policy = bool(w.islands)
        return cls(matrix, w.id_order, style=style, zero_policy=zero_policy)


def standardize(
    adjacency: AdjacencyGraph,
    style: Optional[Union[str, WeightsStyle]] = None,
    zero_policy: Optional[bool] = None
) -> WeightsMatrix:
    """
    Derive a weights matrix from an adjacency graph.

    Args:
        adjacency: Symmetric neighbour graph
        style: BINARY (weight 1 per neighbour) or ROW (1 / number of neighbours);
            defaults to ``weights.style`` from configuration
        zero_policy: Allow units without neighbours; defaults to
            ``weights.zero_policy`` from configuration

    Returns:
        Immutable WeightsMatrix in adjacency id order

    Raises:
        IsolatedUnitError: If any unit has no neighbours and zero_policy is False
    """
    settings = get_config().section('weights')
    style = WeightsStyle.parse(settings.style if style is None else style)
    if style is WeightsStyle.KERNEL:
        raise ValueError("Use kernel_weights() to build kernel weights")

    if zero_policy is None:
        zero_policy = settings.zero_policy

    islands = adjacency.islands
    if islands and not zero_policy:
        logger.error(f"Isolated units under strict zero policy: {list(islands)[:10]}")
        raise IsolatedUnitError(
            f"{len(islands)} units have no neighbours and zero_policy is False: {list(islands)[:10]}",
            unit_ids=islands
        )

    binary = adjacency.to_sparse()
    matrix = row_standardize(binary) if style is WeightsStyle.ROW else binary

    weights = WeightsMatrix(matrix, adjacency.ids, style=style, zero_policy=zero_policy)
    logger.info(f"Built {style.name.lower()} weights for {weights.n} units (islands={len(islands)})")
    return weights
