"""
Geographically weighted regression for Spatial Engine.
"""
from .kernels import GWR_KERNELS, local_weights, neighbour_count, adaptive_bandwidths
from .model import GWR, GWRResult, LocalFit, local_regression
from .bandwidth import BandwidthResult, select_bandwidth, grid_search, search_interval

__all__ = [
    'GWR_KERNELS', 'local_weights', 'neighbour_count', 'adaptive_bandwidths',
    'GWR', 'GWRResult', 'LocalFit', 'local_regression',
    'BandwidthResult', 'select_bandwidth', 'grid_search', 'search_interval'
]
