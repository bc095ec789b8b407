"""
Geometry type for Spatial Engine.
"""
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np
from shapely import validation
from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon, Point, Polygon
from shapely.geometry.base import BaseGeometry

from ..core.exceptions import GeometryError

SUPPORTED_TYPES = (Polygon, MultiPolygon, Point)


@dataclass(frozen=True)
class Geometry:
    """
    A spatial unit: a unique integer id and a polygon or point shape.

    Attributes:
        id: Unique integer identifier of the unit.
        shape: Shapely ``Polygon``, ``MultiPolygon`` or ``Point``.
    """
    id: int
    shape: BaseGeometry

    def __post_init__(self):
        if isinstance(self.id, (bool, np.bool_)) or not isinstance(self.id, (int, np.integer)):
            raise GeometryError(f"Geometry id must be an integer, got {self.id!r}")
        object.__setattr__(self, 'id', int(self.id))

        if not isinstance(self.shape, SUPPORTED_TYPES):
            raise GeometryError(
                f"Geometry {self.id}: unsupported shape type {type(self.shape).__name__}"
            )
        if self.shape.is_empty:
            raise GeometryError(f"Geometry {self.id} is empty")
        if not self.shape.is_valid:
            raise GeometryError(
                f"Geometry {self.id} is invalid: {validation.explain_validity(self.shape)}"
            )

    @classmethod
    def polygon(
        cls,
        unit_id: int,
        shell: Sequence[Tuple[float, float]],
        holes: Optional[Iterable[Sequence[Tuple[float, float]]]] = None
    ) -> 'Geometry':
        """Build a polygon unit from a coordinate ring and optional holes."""
        try:
            shape = Polygon(shell, holes)
        except (ValueError, TypeError, GEOSException) as e:
            raise GeometryError(f"Geometry {unit_id}: cannot build polygon: {e}") from e
        return cls(unit_id, shape)

    @classmethod
    def point(cls, unit_id: int, x: float, y: float) -> 'Geometry':
        """Build a point unit."""
        return cls(unit_id, Point(float(x), float(y)))

    @property
    def is_point(self) -> bool:
        return isinstance(self.shape, Point)

    @property
    def centroid(self) -> Tuple[float, float]:
        c = self.shape.centroid
        return (c.x, c.y)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return self.shape.bounds


def centroids(geometries: Sequence[Geometry]) -> np.ndarray:
    """Centroid coordinates as an (n, 2) array."""
    return np.array([g.centroid for g in geometries], dtype=float)


def validate_collection(geometries: Iterable[Geometry], allow_points: bool = False) -> Tuple[Geometry, ...]:
    """
    Check a geometry collection before building a neighbour graph.

    Raises:
        GeometryError: Fewer than two geometries, duplicate ids, non-Geometry
            items, or point geometries where polygons are required.
    """
    collection = tuple(geometries)

    if len(collection) < 2:
        raise GeometryError(f"At least two geometries are required, got {len(collection)}")

    for item in collection:
        if not isinstance(item, Geometry):
            raise GeometryError(f"Expected Geometry, got {type(item).__name__}")

    ids = [g.id for g in collection]
    if len(set(ids)) != len(ids):
        seen, duplicates = set(), set()
        for gid in ids:
            if gid in seen:
                duplicates.add(gid)
            seen.add(gid)
        raise GeometryError(f"Duplicate geometry ids: {sorted(duplicates)}")

    if not allow_points:
        points = [g.id for g in collection if g.is_point]
        if points:
            raise GeometryError(
                f"Contiguity requires polygons; point geometries found for ids {points[:10]}"
            )

    return collection
