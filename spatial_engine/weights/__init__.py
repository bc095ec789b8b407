"""
Spatial weights module for Spatial Engine.
"""
from .matrix import WeightsStyle, WeightsMatrix, standardize, row_standardize
from .kernels import (
    KERNELS, get_kernel, evaluate_kernel,
    nearest_neighbour_distance, kernel_weights
)

__all__ = [
    'WeightsStyle', 'WeightsMatrix', 'standardize', 'row_standardize',
    'KERNELS', 'get_kernel', 'evaluate_kernel',
    'nearest_neighbour_distance', 'kernel_weights'
]
