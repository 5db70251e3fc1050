"""
Voxel Queries - surface, bounding-box and centre-of-gravity queries on voxel fields.

Usage:
    python -m voxel_queries.run_report part.stl --voxel-size 0.5
"""

from .functions import (
    CentreOfGravity,
    bounding_box,
    centre_of_gravity,
    closest_surface_point,
    compute_centre_of_gravity,
    get_volume,
    projected_surface_point,
    try_closest_surface_point,
    try_projected_surface_point,
)

__version__ = "1.0.0"

__all__ = [
    'CentreOfGravity',
    'closest_surface_point', 'try_closest_surface_point',
    'projected_surface_point', 'try_projected_surface_point',
    'bounding_box', 'get_volume',
    'centre_of_gravity', 'compute_centre_of_gravity',
]
