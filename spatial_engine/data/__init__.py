"""
Data module for Spatial Engine.

``attributes`` is imported by the statistics layers; ``loaders`` (geopandas
adapters) and ``synthetic`` (lattices and simulated data) build on the
models package and are imported as submodules.
"""
from .attributes import AttributeVector

__all__ = ['AttributeVector']
