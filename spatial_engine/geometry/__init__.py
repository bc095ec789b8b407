"""
Geometry module for Spatial Engine.
"""
from .types import Geometry, centroids, validate_collection
from .adjacency import (
    ContiguityRule, AdjacencyGraph, build_adjacency, build_distance_band, build_knn
)

__all__ = [
    'Geometry', 'centroids', 'validate_collection',
    'ContiguityRule', 'AdjacencyGraph', 'build_adjacency',
    'build_distance_band', 'build_knn'
]
