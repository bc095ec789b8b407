"""
Spatial Engine.

Spatial weights, global and local autocorrelation statistics, spatial
regression with impacts and diagnostics, and geographically weighted
regression.
"""
__version__ = "1.0.0"
