"""
Error taxonomy for voxel field queries.

Surface queries that find nothing, slices that cannot be extracted and
centroids over empty fields each get their own exception type so callers
can catch exactly the condition they care about.
"""

from typing import Optional

import numpy as np


class VoxelQueryError(Exception):
    """Base class for all voxel query failures."""


class NoSurfacePointError(VoxelQueryError):
    """A surface query (closest point or ray cast) found no valid point."""

    def __init__(self, query: str, point, direction=None):
        self.query = query
        self.point = np.asarray(point, dtype=float)
        self.direction: Optional[np.ndarray] = (
            None if direction is None else np.asarray(direction, dtype=float)
        )
        message = f"{query}: no surface point found from {self.point.tolist()}"
        if self.direction is not None:
            message += f" along {self.direction.tolist()}"
        super().__init__(message)


class SliceExtractionError(VoxelQueryError):
    """A Z-slice could not be extracted from the field."""

    def __init__(self, slice_index: int, reason: str):
        self.slice_index = slice_index
        self.reason = reason
        super().__init__(f"Slice {slice_index}: {reason}")


class EmptyFieldError(VoxelQueryError):
    """The field holds no inside voxels, so no centroid exists."""
