"""
Surface, bounding-box and centre-of-gravity queries on voxel fields.

The surface and bounding-box queries hand straight through to the field's
primitives; they only turn the primitives' validity flags into exceptions
(or None for the try_* variants). The centre of gravity walks the field's
Z-slice stack and averages the positions of all inside cells.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from common.config import EmptyPolicy, QueryConfig
from common.errors import EmptyFieldError, NoSurfacePointError, SliceExtractionError
from common.geometry import BBox3
from common.image import GrayscaleImage
from common.voxel import VoxelField

logger = logging.getLogger(__name__)


@dataclass
class CentreOfGravity:
    """Centroid of a field plus the bookkeeping of how it was found."""
    point: np.ndarray
    n_voxels: int
    n_slices: int
    skipped_slices: int

    def to_dict(self):
        return {
            "point": self.point.tolist(),
            "n_voxels": self.n_voxels,
            "n_slices": self.n_slices,
            "skipped_slices": self.skipped_slices
        }


# ============== Surface queries ==============

def try_closest_surface_point(field: VoxelField, point: Sequence[float]) -> Optional[np.ndarray]:
    """Closest point on the surface, or None if the field has no surface."""
    valid, surface = field.closest_point_on_surface(point)
    return surface if valid else None


def closest_surface_point(field: VoxelField, point: Sequence[float]) -> np.ndarray:
    """
    Snap a point to the surface of the field.

    The point may be inside, outside or on the surface.

    Raises:
        NoSurfacePointError: If the field has no surface
    """
    surface = try_closest_surface_point(field, point)
    if surface is None:
        raise NoSurfacePointError("closest_surface_point", point)
    return surface


def try_projected_surface_point(
    field: VoxelField,
    point: Sequence[float],
    direction: Sequence[float],
    config: Optional[QueryConfig] = None
) -> Optional[np.ndarray]:
    """First surface crossing along the ray, or None if the ray misses."""
    config = config or QueryConfig()
    valid, surface = field.ray_cast_to_surface(point, direction, step=config.ray_step_factor)
    return surface if valid else None


def projected_surface_point(
    field: VoxelField,
    point: Sequence[float],
    direction: Sequence[float],
    config: Optional[QueryConfig] = None
) -> np.ndarray:
    """
    Project a point onto the surface by casting a ray along direction.

    Raises:
        NoSurfacePointError: If the ray never crosses the surface or the
            direction is zero
    """
    surface = try_projected_surface_point(field, point, direction, config)
    if surface is None:
        raise NoSurfacePointError("projected_surface_point", point, direction)
    return surface


# ============== Bounding box ==============

def bounding_box(field: VoxelField) -> BBox3:
    """Axis-aligned bounding box of the field's material."""
    _, bbox = field.calculate_properties()
    return bbox


def get_volume(field: VoxelField) -> float:
    """Occupied volume in cubic world units."""
    volume, _ = field.calculate_properties()
    return volume


# ============== Centre of gravity ==============

def compute_centre_of_gravity(
    field: VoxelField,
    config: Optional[QueryConfig] = None
) -> CentreOfGravity:
    """
    Centre of gravity from the field's Z-slice stack.

    Every cell with a value <= config.inside_threshold contributes the
    position bbox.min + (col / width, row / height, slice / n_slices) * bbox.size.
    The ratios use the raw index, not the voxel centre, so the result sits
    half a voxel toward the box minimum on every axis.

    Slices that fail to extract are skipped and counted; they add nothing to
    the sum or to the voxel count.

    Args:
        field: Field to measure
        config: Query configuration (inside threshold, empty policy)

    Returns:
        CentreOfGravity with the centroid and slice/voxel counts

    Raises:
        EmptyFieldError: If no inside cell was found and the empty policy
            is RAISE
    """
    config = config or QueryConfig()
    nx, ny, nz = field.get_voxel_dimensions()
    bbox = bounding_box(field)
    size = bbox.size()
    image = GrayscaleImage(nx, ny)

    total = np.zeros(3)
    count = 0
    skipped = 0

    for slice_index in range(nz):
        try:
            field.get_voxel_slice(slice_index, image)
        except SliceExtractionError as e:
            logger.debug(f"Skipping slice: {e}")
            skipped += 1
            continue

        rows, cols = np.nonzero(image.values <= config.inside_threshold)
        n = len(rows)
        if n == 0:
            continue

        total[0] += np.sum(bbox.vec_min[0] + cols / image.width * size[0])
        total[1] += np.sum(bbox.vec_min[1] + rows / image.height * size[1])
        total[2] += n * (bbox.vec_min[2] + slice_index / nz * size[2])
        count += n

    if skipped:
        logger.info(f"Centre of gravity: skipped {skipped}/{nz} slices")

    if count == 0:
        if config.empty_policy is EmptyPolicy.NAN:
            logger.warning("Centre of gravity of an empty field, returning NaN")
            point = np.full(3, np.nan)
        else:
            raise EmptyFieldError(
                f"No inside voxels found in {nz - skipped} of {nz} slices"
            )
    else:
        point = total / count

    return CentreOfGravity(point=point, n_voxels=count, n_slices=nz, skipped_slices=skipped)


def centre_of_gravity(field: VoxelField, config: Optional[QueryConfig] = None) -> np.ndarray:
    """Centre of gravity of all inside voxels (see compute_centre_of_gravity)."""
    return compute_centre_of_gravity(field, config).point
