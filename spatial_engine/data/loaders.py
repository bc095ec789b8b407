"""
Data loading functions for Spatial Engine.

File formats are read by geopandas; these helpers turn the resulting frames
into validated geometries, attribute vectors and regression designs.
"""
import os
import logging
from typing import List, Optional, Sequence

import geopandas as gpd
import pandas as pd

from ..core.decorators import performance_tracker
from ..core.exceptions import GeometryError
from ..geometry.types import Geometry
from ..models.design import RegressionDesign
from .attributes import AttributeVector

logger = logging.getLogger(__name__)


@performance_tracker()
def read_frame(file_path: str) -> gpd.GeoDataFrame:
    """Read any geopandas-readable file (shapefile, GeoJSON, GeoPackage...)."""
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Data file not found: {file_path}")

    frame = gpd.read_file(file_path)
    logger.info(f"Loaded {len(frame)} features from {file_path}")
    return frame


def _unit_ids(frame: pd.DataFrame, id_column: Optional[str]) -> List[int]:
    if id_column is None:
        return [int(i) for i in range(len(frame))]
    if id_column not in frame.columns:
        raise KeyError(f"Id column '{id_column}' not found in data")
    try:
        return [int(i) for i in frame[id_column]]
    except (TypeError, ValueError) as e:
        raise GeometryError(f"Id column '{id_column}' must hold integers: {e}") from e


def geometries_from_frame(frame: gpd.GeoDataFrame, id_column: Optional[str] = None) -> List[Geometry]:
    """
    Convert a GeoDataFrame into validated geometries.

    Args:
        frame: GeoDataFrame with polygon or point geometries
        id_column: Integer id column; the row position is used when omitted

    Raises:
        GeometryError: If a geometry is missing, empty, invalid or unsupported
    """
    ids = _unit_ids(frame, id_column)
    geometries = []
    for unit_id, shape in zip(ids, frame.geometry):
        if shape is None:
            raise GeometryError(f"Geometry {unit_id} is missing")
        geometries.append(Geometry(unit_id, shape))
    return geometries


def load_geometries(file_path: str, id_column: Optional[str] = None) -> List[Geometry]:
    """Read a file and convert its features into geometries."""
    return geometries_from_frame(read_frame(file_path), id_column)


def attributes_from_frame(
    frame: pd.DataFrame,
    column: str,
    id_column: Optional[str] = None
) -> AttributeVector:
    """
    One attribute column as an AttributeVector keyed by unit id.

    Raises:
        KeyError: If the column is missing
        DimensionMismatchError: If the column holds missing values
    """
    if column not in frame.columns:
        logger.error(f"Column '{column}' not found in data")
        raise KeyError(f"Column '{column}' not found in data")

    values = pd.to_numeric(frame[column], errors='raise').to_numpy(dtype=float)
    return AttributeVector(_unit_ids(frame, id_column), values, name=column)


def design_from_frame(
    frame: pd.DataFrame,
    y_col: str,
    x_cols: Sequence[str],
    id_column: Optional[str] = None,
    add_constant: bool = True
) -> RegressionDesign:
    """Regression design with rows keyed by the same ids as the geometries."""
    ids = _unit_ids(frame, id_column)
    frame = pd.DataFrame(frame.drop(columns='geometry', errors='ignore'))
    frame.index = pd.Index(ids)
    return RegressionDesign.from_frame(frame, y_col, x_cols, add_constant=add_constant)
