"""
Utility functions
"""
from .id_generator import generate_id, validate_id
from .query import get_path, set_path, matches, apply_options, normalize_sort

__all__ = [
    'generate_id',
    'validate_id',
    'get_path',
    'set_path',
    'matches',
    'apply_options',
    'normalize_sort',
]
