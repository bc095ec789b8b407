"""
Autocorrelation module for Spatial Engine.
"""
from .base import prepare_values, permutation_p_value, simulate_permutations
from .moran import MoranResult, PermutationResult, global_moran, moran_permutation_test, moran_moments
from .geary import GearyResult, geary
from .local import Quadrant, LisaResult, local_moran, classify_quadrants
from .getis_ord import HotSpot, GetisOrdResult, getis_ord

__all__ = [
    'prepare_values', 'permutation_p_value', 'simulate_permutations',
    'MoranResult', 'PermutationResult', 'global_moran', 'moran_permutation_test',
    'moran_moments',
    'GearyResult', 'geary',
    'Quadrant', 'LisaResult', 'local_moran', 'classify_quadrants',
    'HotSpot', 'GetisOrdResult', 'getis_ord'
]
