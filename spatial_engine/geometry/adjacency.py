"""
Neighbour graph construction for Spatial Engine.

Contiguity graphs (rook and queen) are built from polygon geometries with an
STRtree bounding-box query followed by an exact predicate on the candidate
pairs. Distance-band and k-nearest-neighbour graphs are built from centroids
with a k-d tree.
"""
import logging
from collections.abc import Mapping
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import shapely
from scipy import sparse
from scipy.spatial import cKDTree

from ..core.decorators import performance_tracker
from ..core.exceptions import GeometryError
from .types import Geometry, centroids, validate_collection

logger = logging.getLogger(__name__)


class ContiguityRule(Enum):
    """Rule deciding when two polygons are neighbours."""
    ROOK = 'rook'
    QUEEN = 'queen'

    @classmethod
    def parse(cls, value: Union[str, 'ContiguityRule']) -> 'ContiguityRule':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown contiguity rule: {value}") from None


class AdjacencyGraph(Mapping):
    """
    Immutable symmetric neighbour graph keyed by unit id.

    Attributes:
        ids: Unit ids in a stable order; weights matrices follow this order.
        rule: Construction rule ('rook', 'queen', 'distance_band', 'knn', or None).
        islands: Ids of units with no neighbours.
    """

    def __init__(
        self,
        neighbors: Dict[int, Iterable[int]],
        ids: Optional[Sequence[int]] = None,
        rule: Optional[str] = None
    ):
        order = tuple(int(i) for i in (ids if ids is not None else neighbors.keys()))
        if len(set(order)) != len(order):
            raise GeometryError("Adjacency ids must be unique")

        known = set(order)
        graph: Dict[int, FrozenSet[int]] = {}
        for unit in order:
            linked = frozenset(int(j) for j in neighbors.get(unit, ()))
            unknown = linked - known
            if unknown:
                raise GeometryError(f"Unit {unit} has neighbours outside the graph: {sorted(unknown)}")
            if unit in linked:
                raise GeometryError(f"Unit {unit} lists itself as a neighbour")
            graph[unit] = linked

        for unit, linked in graph.items():
            for other in linked:
                if unit not in graph[other]:
                    raise GeometryError(
                        f"Adjacency is not symmetric: {other} is a neighbour of {unit} but not vice versa"
                    )

        self._ids = order
        self._graph = graph
        self._index = {unit: i for i, unit in enumerate(order)}
        self.rule = rule

    def __getitem__(self, unit: int) -> FrozenSet[int]:
        return self._graph[unit]

    def __iter__(self) -> Iterator[int]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __repr__(self) -> str:
        return (f"AdjacencyGraph(n={len(self)}, links={self.n_links}, "
                f"islands={len(self.islands)}, rule={self.rule!r})")

    @property
    def ids(self) -> Tuple[int, ...]:
        return self._ids

    @property
    def islands(self) -> Tuple[int, ...]:
        return tuple(unit for unit in self._ids if not self._graph[unit])

    @property
    def cardinalities(self) -> Dict[int, int]:
        return {unit: len(self._graph[unit]) for unit in self._ids}

    @property
    def n_links(self) -> int:
        """Number of directed links (twice the number of neighbour pairs)."""
        return sum(len(linked) for linked in self._graph.values())

    def to_dict(self) -> Dict[int, List[int]]:
        return {unit: sorted(self._graph[unit]) for unit in self._ids}

    def to_sparse(self) -> sparse.csr_matrix:
        """Binary adjacency matrix in id order."""
        rows, cols = [], []
        for unit in self._ids:
            i = self._index[unit]
            for other in self._graph[unit]:
                rows.append(i)
                cols.append(self._index[other])
        n = len(self._ids)
        data = np.ones(len(rows), dtype=float)
        matrix = sparse.csr_matrix((data, (rows, cols)), shape=(n, n))
        matrix.sort_indices()
        return matrix

    @classmethod
    def from_pairs(cls, ids: Sequence[int], pairs: Iterable[Tuple[int, int]], rule: Optional[str] = None) -> 'AdjacencyGraph':
        """Build a graph from undirected index pairs into ``ids``."""
        neighbors: Dict[int, set] = {int(unit): set() for unit in ids}
        for i, j in pairs:
            a, b = int(ids[i]), int(ids[j])
            if a == b:
                continue
            neighbors[a].add(b)
            neighbors[b].add(a)
        return cls(neighbors, ids=ids, rule=rule)


def _candidate_pairs(shapes: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Index pairs (i < j) whose bounding boxes intersect."""
    tree = shapely.STRtree(shapes)
    left, right = tree.query(shapes)
    keep = left < right
    return left[keep], right[keep]


@performance_tracker()
def build_adjacency(
    geometries: Sequence[Geometry],
    rule: Union[str, ContiguityRule] = ContiguityRule.QUEEN
) -> AdjacencyGraph:
    """
    Build a contiguity neighbour graph from polygon geometries.

    Args:
        geometries: Polygon geometries with unique ids
        rule: ROOK (shared edge of non-zero length) or QUEEN (any shared point)

    Returns:
        Symmetric AdjacencyGraph in input order; units without neighbours
        are kept as islands

    Raises:
        GeometryError: If fewer than two geometries are given, ids repeat,
            or any geometry is a point
    """
    rule = ContiguityRule.parse(rule)
    collection = validate_collection(geometries)
    ids = [g.id for g in collection]
    shapes = np.array([g.shape for g in collection], dtype=object)

    left, right = _candidate_pairs(shapes)
    logger.debug(f"{len(left)} candidate pairs from bounding boxes for {len(ids)} geometries")

    if len(left):
        a, b = shapes[left], shapes[right]
        if rule is ContiguityRule.QUEEN:
            mask = shapely.intersects(a, b)
        else:
            shared = shapely.intersection(shapely.boundary(a), shapely.boundary(b))
            mask = shapely.length(shared) > 0
        pairs = zip(left[mask], right[mask])
    else:
        pairs = iter(())

    graph = AdjacencyGraph.from_pairs(ids, pairs, rule=rule.value)

    if graph.islands:
        logger.warning(f"{len(graph.islands)} units have no {rule.value} neighbours: {list(graph.islands)[:10]}")
    logger.info(f"Built {rule.value} adjacency for {len(graph)} units with {graph.n_links // 2} neighbour pairs")
    return graph


@performance_tracker()
def build_distance_band(geometries: Sequence[Geometry], threshold: float) -> AdjacencyGraph:
    """
    Neighbours are units whose centroids lie within ``threshold`` of each other.

    Points and polygons are both accepted.
    """
    if threshold <= 0:
        raise ValueError(f"Distance threshold must be positive, got {threshold}")

    collection = validate_collection(geometries, allow_points=True)
    ids = [g.id for g in collection]
    tree = cKDTree(centroids(collection))
    pairs = tree.query_pairs(r=threshold)

    graph = AdjacencyGraph.from_pairs(ids, pairs, rule='distance_band')
    if graph.islands:
        logger.warning(f"{len(graph.islands)} units have no neighbours within {threshold}")
    logger.info(f"Built distance band adjacency (threshold={threshold}) for {len(graph)} units")
    return graph


@performance_tracker()
def build_knn(geometries: Sequence[Geometry], k: int = 4) -> AdjacencyGraph:
    """
    K-nearest-neighbour graph on centroids, made symmetric by union.

    A unit keeps its own k nearest neighbours and gains every unit that
    chose it, so cardinalities can exceed k.
    """
    collection = validate_collection(geometries, allow_points=True)
    n = len(collection)
    if k < 1 or k >= n:
        raise GeometryError(f"k must lie in [1, {n - 1}] for {n} geometries, got {k}")

    ids = [g.id for g in collection]
    _, indices = cKDTree(centroids(collection)).query(centroids(collection), k=k + 1)

    pairs = []
    for i, row in enumerate(indices):
        chosen = [j for j in row if j != i][:k]
        pairs.extend((i, j) for j in chosen)

    graph = AdjacencyGraph.from_pairs(ids, pairs, rule='knn')
    logger.info(f"Built k={k} nearest neighbour adjacency for {len(graph)} units")
    return graph
