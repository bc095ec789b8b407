"""
Computation module for Spatial Engine.
"""
from .parallel import parallel_map, spawn_generators, chunk_bounds, resolve_workers
from .numerical import (
    OptimizerReport, check_rank, log_determinant,
    bounded_minimize, golden_section_search
)

__all__ = [
    'parallel_map', 'spawn_generators', 'chunk_bounds', 'resolve_workers',
    'OptimizerReport', 'check_rank', 'log_determinant',
    'bounded_minimize', 'golden_section_search'
]
