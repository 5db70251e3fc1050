"""
Signed-distance voxel fields and the query primitives built on them.

Values are signed distances in world units: <= 0 is inside (material),
> 0 is outside. Voxel index (i, j, k) sits at origin + (i, j, k) * voxel_size,
i.e. the origin is the centre of the first voxel.

The "active region" is the index bounding box of all inside voxels. Voxel
dimensions and slice extraction refer to that region, so slice 0 is the
lowest Z layer that holds material.

Fields are treated as immutable once built: the active region, the surface
KD-tree and the gradient are computed on first use and cached. Every field
operation returns a new VoxelField.
"""

import numpy as np
from typing import Callable, List, Optional, Sequence, Tuple
from dataclasses import dataclass
from functools import cached_property
import logging

from scipy.ndimage import (
    binary_erosion,
    distance_transform_edt,
    gaussian_filter,
    map_coordinates,
)
from scipy.spatial import cKDTree
from skimage.measure import marching_cubes

from .errors import SliceExtractionError
from .geometry import BBox3, as_point
from .image import GrayscaleImage

logger = logging.getLogger(__name__)


@dataclass
class VoxelField:
    """
    Dense signed-distance voxel field.

    Coordinates are world units; voxel_size is the edge length of one voxel.
    """
    data: np.ndarray  # 3D array of signed distances, shape (nx, ny, nz)
    origin: np.ndarray  # world position of voxel (0, 0, 0)
    voxel_size: float

    def __post_init__(self):
        self.data = np.asarray(self.data, dtype=np.float32)
        if self.data.ndim != 3:
            raise ValueError(f"Voxel data must be 3D, got {self.data.ndim}D")
        self.origin = as_point(self.origin)
        self.voxel_size = float(self.voxel_size)
        if self.voxel_size <= 0:
            raise ValueError(f"voxel_size must be positive, got {self.voxel_size}")

    # ---------- construction ----------

    @classmethod
    def from_occupancy(
        cls,
        mask: np.ndarray,
        origin: Sequence[float] = (0.0, 0.0, 0.0),
        voxel_size: float = 1.0
    ) -> "VoxelField":
        """
        Build a field from a boolean occupancy mask.

        Distances come from Euclidean distance transforms on both sides of
        the boundary, shifted by half a voxel so the zero level lies midway
        between an inside and an outside voxel centre.
        """
        mask = np.asarray(mask, dtype=bool)
        if mask.ndim != 3:
            raise ValueError(f"Occupancy mask must be 3D, got {mask.ndim}D")

        far = float(max(mask.shape)) * voxel_size
        if not mask.any():
            data = np.full(mask.shape, far, dtype=np.float32)
        elif mask.all():
            data = np.full(mask.shape, -far, dtype=np.float32)
        else:
            outside = distance_transform_edt(~mask)
            inside = distance_transform_edt(mask)
            data = np.where(mask, -(inside - 0.5), outside - 0.5) * voxel_size

        return cls(data=data, origin=np.asarray(origin, dtype=float), voxel_size=voxel_size)

    @classmethod
    def from_function(
        cls,
        sdf: Callable[[np.ndarray], np.ndarray],
        bounds: Tuple[Sequence[float], Sequence[float]],
        voxel_size: float,
        padding: int = 2
    ) -> "VoxelField":
        """
        Sample an implicit signed-distance function over a box.

        Args:
            sdf: Vectorised function mapping an (N, 3) array of world points
                to N signed distances
            bounds: (min_corner, max_corner) in world units
            voxel_size: Edge length of one voxel
            padding: Extra voxels added on every side of the bounds

        Returns:
            Sampled VoxelField
        """
        if voxel_size <= 0:
            raise ValueError(f"voxel_size must be positive, got {voxel_size}")
        min_corner = as_point(bounds[0])
        max_corner = as_point(bounds[1])
        if np.any(max_corner < min_corner):
            raise ValueError("Bounds max corner must not be below min corner")

        origin = min_corner - padding * voxel_size
        shape = np.ceil((max_corner - min_corner) / voxel_size).astype(int) + 1 + 2 * padding
        shape = np.maximum(shape, 1)

        idx = np.indices(tuple(shape)).reshape(3, -1).T
        points = origin + idx * voxel_size
        values = np.asarray(sdf(points), dtype=np.float32).reshape(tuple(shape))

        logger.info(f"Sampled voxel field: {tuple(shape)}, voxel_size={voxel_size:.3f}")
        return cls(data=values, origin=origin, voxel_size=voxel_size)

    @classmethod
    def sphere(
        cls,
        center: Sequence[float],
        radius: float,
        voxel_size: float
    ) -> "VoxelField":
        """Solid sphere."""
        c = as_point(center)
        return cls.from_function(
            lambda p: np.linalg.norm(p - c, axis=1) - radius,
            (c - radius, c + radius),
            voxel_size
        )

    @classmethod
    def box(
        cls,
        min_corner: Sequence[float],
        max_corner: Sequence[float],
        voxel_size: float
    ) -> "VoxelField":
        """Solid axis-aligned box."""
        lo = as_point(min_corner)
        hi = as_point(max_corner)
        center = (lo + hi) / 2.0
        half = (hi - lo) / 2.0

        def sdf(p):
            q = np.abs(p - center) - half
            outside = np.linalg.norm(np.maximum(q, 0.0), axis=1)
            inside = np.minimum(q.max(axis=1), 0.0)
            return outside + inside

        return cls.from_function(sdf, (lo, hi), voxel_size)

    @classmethod
    def from_mesh(cls, mesh, voxel_size: float) -> "VoxelField":
        """
        Voxelise a closed trimesh mesh.

        The filled occupancy is padded by one voxel on every side so the
        surface never touches the grid border.
        """
        grid = mesh.voxelized(pitch=voxel_size).fill()
        mask = np.pad(np.asarray(grid.matrix, dtype=bool), 1)
        origin = np.asarray(grid.transform, dtype=float)[:3, 3] - voxel_size
        logger.info(f"Voxelised mesh: {len(mesh.faces)} faces -> {int(mask.sum())} voxels")
        return cls.from_occupancy(mask, origin=origin, voxel_size=voxel_size)

    def duplicate(self) -> "VoxelField":
        return VoxelField(data=self.data.copy(), origin=self.origin.copy(), voxel_size=self.voxel_size)

    # ---------- coordinates ----------

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self.data.shape

    @property
    def inside(self) -> np.ndarray:
        """Boolean mask of inside voxels."""
        return self.data <= 0

    def world_to_grid(self, points: np.ndarray) -> np.ndarray:
        """Convert world coordinates to fractional grid coordinates."""
        return (np.asarray(points, dtype=float) - self.origin) / self.voxel_size

    def grid_to_world(self, indices: np.ndarray) -> np.ndarray:
        """Convert grid indices (integer or fractional) to world coordinates."""
        return np.asarray(indices, dtype=float) * self.voxel_size + self.origin

    def sample(self, points: np.ndarray) -> np.ndarray:
        """Trilinearly interpolated values at world points, shape (N, 3) or (3,)."""
        pts = np.atleast_2d(np.asarray(points, dtype=float))
        coords = self.world_to_grid(pts).T
        return map_coordinates(self.data, coords, order=1, mode="nearest")

    @cached_property
    def _active_region(self) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """Index bounds (lo, hi) inclusive of all inside voxels, or None."""
        idx = np.argwhere(self.inside)
        if len(idx) == 0:
            return None
        return idx.min(axis=0), idx.max(axis=0)

    @cached_property
    def _surface_tree(self) -> Optional[cKDTree]:
        """KD-tree over centres of inside voxels with an outside 6-neighbour or on the border."""
        inside = self.inside
        interior = binary_erosion(inside, border_value=0)
        surface = np.argwhere(inside & ~interior)
        if len(surface) == 0:
            return None
        return cKDTree(self.grid_to_world(surface))

    @cached_property
    def _gradient(self) -> List[np.ndarray]:
        """Per-axis gradient of the distance values in world units."""
        if min(self.shape) < 2:
            return [np.zeros(self.shape) for _ in range(3)]
        return np.gradient(self.data.astype(float), self.voxel_size)

    def sample_gradient(self, point: Sequence[float]) -> np.ndarray:
        """Trilinearly interpolated gradient at a world point."""
        coords = self.world_to_grid(as_point(point)).reshape(3, 1)
        return np.array([
            map_coordinates(g, coords, order=1, mode="nearest")[0]
            for g in self._gradient
        ])

    def _project_to_zero_level(self, point: np.ndarray) -> np.ndarray:
        """
        Move an inside point near the surface onto the zero level.

        Casts a ray along the outward gradient; the point is kept as is
        where the gradient vanishes.
        """
        grad = self.sample_gradient(point)
        if float(grad @ grad) < 1e-12:
            return point
        valid, surface = self.ray_cast_to_surface(point, grad)
        return surface if valid else point

    # ---------- engine primitives ----------

    def get_voxel_dimensions(self) -> Tuple[int, int, int]:
        """Voxel counts along X, Y and Z of the active region."""
        region = self._active_region
        if region is None:
            return 0, 0, 0
        lo, hi = region
        nx, ny, nz = (hi - lo + 1).tolist()
        return nx, ny, nz

    def get_voxel_slice(self, slice_index: int, image: GrayscaleImage) -> None:
        """
        Write Z-slice slice_index of the active region into image.

        The image must be sized (width, height) = (nx, ny). Pixel (x, y)
        receives the value of voxel (x, y, slice_index) relative to the
        active region's minimum corner.
        """
        region = self._active_region
        if region is None:
            raise SliceExtractionError(slice_index, "field has no active voxels")
        lo, hi = region
        nx, ny, nz = (hi - lo + 1).tolist()

        if not 0 <= slice_index < nz:
            raise SliceExtractionError(slice_index, f"index outside 0..{nz - 1}")
        if (image.width, image.height) != (nx, ny):
            raise SliceExtractionError(
                slice_index,
                f"image is {image.width}x{image.height}, expected {nx}x{ny}"
            )

        layer = self.data[lo[0]:hi[0] + 1, lo[1]:hi[1] + 1, lo[2] + slice_index]
        image.values[:, :] = layer.T

    def calculate_properties(self) -> Tuple[float, BBox3]:
        """
        Occupied volume and bounding box.

        The box spans the full extent of the inside voxels (centre +/- half a
        voxel). An empty field yields volume 0 and an empty box.
        """
        region = self._active_region
        if region is None:
            return 0.0, BBox3.empty()
        lo, hi = region
        half = self.voxel_size / 2.0
        bbox = BBox3(
            vec_min=self.grid_to_world(lo) - half,
            vec_max=self.grid_to_world(hi) + half
        )
        volume = float(np.count_nonzero(self.inside)) * self.voxel_size ** 3
        return volume, bbox

    def closest_point_on_surface(self, point: Sequence[float]) -> Tuple[bool, np.ndarray]:
        """
        Nearest point on the zero level to point.

        The nearest surface voxel centre is found with a KD-tree and then
        projected onto the zero level along the field gradient, so the
        result lies on the same surface that ray casts hit.

        Returns:
            (valid, surface_point); valid is False for a field with no
            inside voxels, in which case the point is the zero vector.
        """
        pt = as_point(point)
        tree = self._surface_tree
        if tree is None:
            return False, np.zeros(3)

        _, nearest = tree.query(pt)
        return True, self._project_to_zero_level(np.array(tree.data[nearest], dtype=float))

    def ray_cast_to_surface(
        self,
        point: Sequence[float],
        direction: Sequence[float],
        step: float = 0.5
    ) -> Tuple[bool, np.ndarray]:
        """
        March from point along direction until the inside/outside state changes.

        The crossing is bracketed by the last two samples and narrowed by
        bisection on the interpolated field. A ray starting inside material finds
        the point where it leaves; a ray starting outside finds where it
        enters.

        Args:
            point: Ray origin (world)
            direction: Ray direction, need not be normalised
            step: March step in voxels

        Returns:
            (valid, surface_point); valid is False for a zero direction or a
            ray that leaves the grid without crossing the surface.
        """
        origin = as_point(point)
        dvec = as_point(direction)
        length = np.linalg.norm(dvec)
        if length == 0 or step <= 0:
            return False, np.zeros(3)
        unit = dvec / length

        # Work in grid units; the grid is isotropic so the direction is shared.
        g0 = self.world_to_grid(origin)
        t_enter, t_exit = self._ray_grid_interval(g0, unit)
        t_start = max(t_enter, 0.0)
        if t_exit < t_start:
            return False, np.zeros(3)

        in_grid = bool(np.all(g0 >= 0) and np.all(g0 <= np.array(self.shape) - 1))
        start_inside = in_grid and bool(self.sample(origin)[0] <= 0)

        ts = np.arange(t_start, t_exit, step)
        ts = np.append(ts, t_exit)
        grid_pts = g0 + ts[:, None] * unit
        values = map_coordinates(self.data, grid_pts.T, order=1, mode="nearest")

        hits = np.nonzero((values <= 0) != start_inside)[0]
        if len(hits) == 0:
            return False, np.zeros(3)

        k = int(hits[0])
        if k == 0:
            t_hit = ts[0]
        else:
            t_hit = self._refine_crossing(g0, unit, ts[k - 1], ts[k], start_inside)

        return True, self.grid_to_world(g0 + t_hit * unit)

    def _refine_crossing(
        self,
        g0: np.ndarray,
        unit: np.ndarray,
        t_a: float,
        t_b: float,
        start_inside: bool,
        iterations: int = 20
    ) -> float:
        """
        Narrow [t_a, t_b] around the inside/outside change by bisection.

        t_a keeps the start state, t_b the opposite one. The final estimate
        interpolates linearly between the bracket values.
        """
        def value_at(t):
            return float(map_coordinates(self.data, (g0 + t * unit).reshape(3, 1), order=1, mode="nearest")[0])

        v_a, v_b = value_at(t_a), value_at(t_b)
        for _ in range(iterations):
            t_mid = 0.5 * (t_a + t_b)
            v_mid = value_at(t_mid)
            if (v_mid <= 0) == start_inside:
                t_a, v_a = t_mid, v_mid
            else:
                t_b, v_b = t_mid, v_mid

        if v_a == v_b:
            return t_b
        return t_a + (t_b - t_a) * v_a / (v_a - v_b)

    def _ray_grid_interval(self, g0: np.ndarray, unit: np.ndarray) -> Tuple[float, float]:
        """Parameter interval in which g0 + t * unit lies inside the grid."""
        lo = np.zeros(3)
        hi = np.array(self.shape, dtype=float) - 1
        t_enter, t_exit = -np.inf, np.inf
        for axis in range(3):
            if unit[axis] == 0:
                if not lo[axis] <= g0[axis] <= hi[axis]:
                    return np.inf, -np.inf
                continue
            t1 = (lo[axis] - g0[axis]) / unit[axis]
            t2 = (hi[axis] - g0[axis]) / unit[axis]
            t_enter = max(t_enter, min(t1, t2))
            t_exit = min(t_exit, max(t1, t2))
        return t_enter, t_exit

    # ---------- field operations ----------

    def smooth(self, sigma: float = 1.0) -> "VoxelField":
        """Apply Gaussian smoothing to the distance values."""
        smoothed = gaussian_filter(self.data.astype(float), sigma=sigma)
        return VoxelField(data=smoothed, origin=self.origin.copy(), voxel_size=self.voxel_size)

    def offset(self, distance: float) -> "VoxelField":
        """Grow (positive distance) or shrink (negative) the solid."""
        return VoxelField(data=self.data - distance, origin=self.origin.copy(), voxel_size=self.voxel_size)

    def _check_compatible(self, other: "VoxelField") -> None:
        if (self.shape != other.shape
                or not np.allclose(self.origin, other.origin)
                or not np.isclose(self.voxel_size, other.voxel_size)):
            raise ValueError("Voxel fields must share shape, origin and voxel_size")

    def boolean_add(self, other: "VoxelField") -> "VoxelField":
        """Union: self OR other."""
        self._check_compatible(other)
        return VoxelField(data=np.minimum(self.data, other.data), origin=self.origin.copy(), voxel_size=self.voxel_size)

    def boolean_subtract(self, other: "VoxelField") -> "VoxelField":
        """Boolean subtraction: self AND NOT other."""
        self._check_compatible(other)
        return VoxelField(data=np.maximum(self.data, -other.data), origin=self.origin.copy(), voxel_size=self.voxel_size)

    def boolean_intersect(self, other: "VoxelField") -> "VoxelField":
        """Intersection: self AND other."""
        self._check_compatible(other)
        return VoxelField(data=np.maximum(self.data, other.data), origin=self.origin.copy(), voxel_size=self.voxel_size)

    def to_mesh(self, step_size: int = 1) -> Tuple[np.ndarray, np.ndarray]:
        """
        Extract the zero level set using marching cubes.

        Returns vertices in world coordinates.

        Args:
            step_size: Step size for marching cubes

        Returns:
            Tuple of (vertices, faces)
        """
        try:
            verts, faces, _, _ = marching_cubes(
                self.data,
                level=0.0,
                step_size=step_size,
                allow_degenerate=False
            )
        except ValueError as e:
            logger.error(f"Marching cubes failed: {e}")
            return np.empty((0, 3)), np.empty((0, 3), dtype=int)

        verts_world = self.grid_to_world(verts)

        logger.info(f"Extracted mesh: {len(verts_world)} vertices, {len(faces)} faces")
        return verts_world, faces
