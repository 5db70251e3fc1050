"""
Common modules shared by the voxel queries.

Sign convention (everywhere):
- Field values are signed distances in world units
- value <= 0 is inside (material), value > 0 is outside
"""

from .config import QueryConfig, EmptyPolicy
from .errors import VoxelQueryError, NoSurfacePointError, SliceExtractionError, EmptyFieldError
from .geometry import BBox3
from .image import GrayscaleImage
from .voxel import VoxelField
from .io import save_field, load_field, load_mesh, save_mesh

__all__ = [
    'QueryConfig', 'EmptyPolicy',
    'VoxelQueryError', 'NoSurfacePointError', 'SliceExtractionError', 'EmptyFieldError',
    'BBox3', 'GrayscaleImage', 'VoxelField',
    'save_field', 'load_field', 'load_mesh', 'save_mesh',
]
