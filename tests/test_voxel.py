"""
Tests for the voxel field engine and shared modules.

Tests cover:
- VoxelField construction (occupancy, implicit functions, meshes)
- Engine primitives (dimensions, slices, properties, surface queries)
- Field operations (booleans, offset, smoothing, meshing)
- BBox3 / GrayscaleImage helpers
- QueryConfig and field I/O
"""

import json

import pytest
import numpy as np
from pathlib import Path
import sys

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from common.config import QueryConfig, EmptyPolicy
from common.errors import SliceExtractionError
from common.geometry import BBox3, as_point
from common.image import GrayscaleImage
from common.io import load_field, save_field, save_mesh
from common.voxel import VoxelField


# ============== Fixtures ==============

@pytest.fixture
def block_mask():
    mask = np.zeros((10, 12, 8), dtype=bool)
    mask[2:6, 3:9, 1:5] = True
    return mask


@pytest.fixture
def block_field(block_mask):
    return VoxelField.from_occupancy(block_mask, origin=(1.0, 2.0, 3.0), voxel_size=0.5)


# ============== Construction Tests ==============

class TestConstruction:
    """Test building fields."""

    def test_occupancy_sign_convention(self, block_mask, block_field):
        """Occupied voxels are <= 0, free voxels > 0."""
        np.testing.assert_array_equal(block_field.inside, block_mask)
        assert block_field.data[block_mask].max() <= -0.25
        assert block_field.data[~block_mask].min() >= 0.25

    def test_all_empty_mask(self):
        field = VoxelField.from_occupancy(np.zeros((4, 4, 4), dtype=bool))
        assert not field.inside.any()

    def test_all_full_mask(self):
        field = VoxelField.from_occupancy(np.ones((4, 4, 4), dtype=bool))
        assert field.inside.all()

    def test_rejects_2d_data(self):
        with pytest.raises(ValueError):
            VoxelField(data=np.zeros((4, 4)), origin=(0, 0, 0), voxel_size=1.0)

    def test_rejects_non_positive_voxel_size(self):
        with pytest.raises(ValueError):
            VoxelField(data=np.zeros((4, 4, 4)), origin=(0, 0, 0), voxel_size=0.0)

    def test_sphere_volume(self):
        """Voxel volume of a sphere approaches 4/3 pi r^3."""
        field = VoxelField.sphere(center=(1.0, 2.0, 3.0), radius=4.0, voxel_size=0.25)
        volume, _ = field.calculate_properties()

        expected = 4.0 / 3.0 * np.pi * 4.0 ** 3
        assert volume == pytest.approx(expected, rel=0.05)

    def test_box_function(self):
        field = VoxelField.box((0.0, 0.0, 0.0), (2.0, 3.0, 4.0), voxel_size=0.5)
        _, bbox = field.calculate_properties()

        np.testing.assert_allclose(bbox.vec_min, [-0.25, -0.25, -0.25], atol=1e-9)
        np.testing.assert_allclose(bbox.vec_max, [2.25, 3.25, 4.25], atol=1e-9)

    def test_from_mesh(self):
        trimesh = pytest.importorskip("trimesh")
        mesh = trimesh.creation.box(extents=(4.0, 4.0, 4.0))

        field = VoxelField.from_mesh(mesh, voxel_size=0.5)
        volume, bbox = field.calculate_properties()

        assert volume > 0
        assert bbox.contains((0.0, 0.0, 0.0))
        # Padding keeps material off the grid border
        assert not field.inside[0].any()
        assert not field.inside[-1].any()

    def test_duplicate_is_independent(self, block_field):
        copy = block_field.duplicate()
        copy.data[:] = 1.0
        assert block_field.inside.any()


# ============== Primitive Tests ==============

class TestPrimitives:
    """Test the engine primitives used by the queries."""

    def test_voxel_dimensions(self, block_field):
        assert block_field.get_voxel_dimensions() == (4, 6, 4)

    def test_voxel_dimensions_empty(self):
        field = VoxelField.from_occupancy(np.zeros((4, 4, 4), dtype=bool))
        assert field.get_voxel_dimensions() == (0, 0, 0)

    def test_slice_layout(self, block_field):
        """Pixel (x, y) of slice z holds voxel (x, y, z) of the active region."""
        image = GrayscaleImage(4, 6)
        block_field.get_voxel_slice(2, image)

        assert image.shape == (6, 4)
        assert image.value(1, 4) == pytest.approx(float(block_field.data[3, 7, 3]))
        assert (image.values <= 0).all()

    def test_slice_overwrites_buffer(self, block_field):
        image = GrayscaleImage(4, 6, fill=99.0)
        block_field.get_voxel_slice(0, image)
        assert image.values.max() < 99.0

    def test_slice_out_of_range(self, block_field):
        image = GrayscaleImage(4, 6)
        with pytest.raises(SliceExtractionError) as exc_info:
            block_field.get_voxel_slice(4, image)
        assert exc_info.value.slice_index == 4

    def test_slice_wrong_image_size(self, block_field):
        with pytest.raises(SliceExtractionError):
            block_field.get_voxel_slice(0, GrayscaleImage(6, 4))

    def test_slice_of_empty_field(self):
        field = VoxelField.from_occupancy(np.zeros((4, 4, 4), dtype=bool))
        with pytest.raises(SliceExtractionError):
            field.get_voxel_slice(0, GrayscaleImage(0, 0))

    def test_properties(self, block_field):
        volume, bbox = block_field.calculate_properties()

        assert volume == pytest.approx(96 * 0.125)
        np.testing.assert_allclose(bbox.vec_min, [1.75, 3.25, 3.25])
        np.testing.assert_allclose(bbox.vec_max, [3.75, 6.25, 5.25])

    def test_properties_empty(self):
        field = VoxelField.from_occupancy(np.zeros((4, 4, 4), dtype=bool))
        volume, bbox = field.calculate_properties()

        assert volume == 0.0
        assert bbox.is_empty

    def test_closest_point_flag(self, block_field):
        valid, point = block_field.closest_point_on_surface((0.0, 0.0, 0.0))
        assert valid
        assert abs(block_field.sample(point)[0]) < 1e-4

    def test_closest_point_invalid(self):
        field = VoxelField.from_occupancy(np.zeros((4, 4, 4), dtype=bool))
        valid, point = field.closest_point_on_surface((1.0, 1.0, 1.0))

        assert not valid
        np.testing.assert_array_equal(point, np.zeros(3))

    def test_ray_cast_zero_direction(self, block_field):
        valid, point = block_field.ray_cast_to_surface((0.0, 0.0, 0.0), (0.0, 0.0, 0.0))
        assert not valid
        np.testing.assert_array_equal(point, np.zeros(3))

    def test_ray_cast_enters_block(self, block_field):
        """Ray along +X through the block centre enters at the boundary."""
        start = block_field.grid_to_world(np.array([0.0, 5.0, 2.0]))
        valid, point = block_field.ray_cast_to_surface(start, (1.0, 0.0, 0.0))

        assert valid
        # Zero level sits halfway between voxel 1 and voxel 2
        np.testing.assert_allclose(point, block_field.grid_to_world(np.array([1.5, 5.0, 2.0])), atol=1e-6)

    def test_ray_cast_miss(self, block_field):
        start = block_field.grid_to_world(np.array([0.0, 0.0, 0.0]))
        valid, _ = block_field.ray_cast_to_surface(start, (1.0, 0.0, 0.0))
        assert not valid


# ============== Field Operation Tests ==============

class TestFieldOperations:
    """Test booleans, offsets, smoothing and meshing."""

    def test_boolean_subtract(self, block_mask):
        cutter_mask = np.zeros_like(block_mask)
        cutter_mask[4:, :, :] = True
        block = VoxelField.from_occupancy(block_mask)
        cutter = VoxelField.from_occupancy(cutter_mask)

        result = block.boolean_subtract(cutter)

        np.testing.assert_array_equal(result.inside, block_mask & ~cutter_mask)

    def test_boolean_add_and_intersect(self, block_mask):
        other_mask = np.zeros_like(block_mask)
        other_mask[4:8, 5:7, 0:3] = True
        a = VoxelField.from_occupancy(block_mask)
        b = VoxelField.from_occupancy(other_mask)

        np.testing.assert_array_equal(a.boolean_add(b).inside, block_mask | other_mask)
        np.testing.assert_array_equal(a.boolean_intersect(b).inside, block_mask & other_mask)

    def test_boolean_incompatible_grids(self, block_field):
        other = VoxelField.from_occupancy(np.ones((3, 3, 3), dtype=bool))
        with pytest.raises(ValueError):
            block_field.boolean_add(other)

    def test_offset_grows(self, block_field):
        grown = block_field.offset(0.5)
        assert grown.inside.sum() > block_field.inside.sum()
        assert grown.inside[block_field.inside].all()

    def test_smooth_preserves_grid(self, block_field):
        smoothed = block_field.smooth(sigma=1.0)
        assert smoothed.shape == block_field.shape
        np.testing.assert_array_equal(smoothed.origin, block_field.origin)

    def test_to_mesh_in_world_coordinates(self):
        field = VoxelField.sphere(center=(10.0, 0.0, 0.0), radius=3.0, voxel_size=0.5)
        vertices, faces = field.to_mesh()

        assert len(faces) > 0
        radii = np.linalg.norm(vertices - np.array([10.0, 0.0, 0.0]), axis=1)
        np.testing.assert_allclose(radii, 3.0, atol=0.5)

    def test_to_mesh_without_surface(self):
        field = VoxelField.from_occupancy(np.zeros((4, 4, 4), dtype=bool))
        vertices, faces = field.to_mesh()

        assert vertices.shape == (0, 3)
        assert faces.shape == (0, 3)


# ============== Helper Tests ==============

class TestHelpers:
    """Test BBox3, points and images."""

    def test_empty_box(self):
        box = BBox3.empty()
        assert box.is_empty
        np.testing.assert_array_equal(box.size(), np.zeros(3))
        assert box.to_dict()["empty"] is True

    def test_include_points(self):
        box = BBox3.empty()
        box.include((1.0, 2.0, 3.0))
        box.include((-1.0, 4.0, 0.0))

        assert not box.is_empty
        np.testing.assert_array_equal(box.vec_min, [-1.0, 2.0, 0.0])
        np.testing.assert_array_equal(box.center(), [0.0, 3.0, 1.5])
        assert box.contains((0.0, 3.0, 1.0))

    def test_as_point_rejects_bad_shape(self):
        with pytest.raises(ValueError):
            as_point((1.0, 2.0))

    def test_image_indexing(self):
        image = GrayscaleImage(3, 2)
        image.set_value(2, 1, -4.0)

        assert image.shape == (2, 3)
        assert image.value(2, 1) == -4.0
        assert image.values[1, 2] == -4.0

    def test_image_rejects_negative_size(self):
        with pytest.raises(ValueError):
            GrayscaleImage(-1, 2)


# ============== Config Tests ==============

class TestQueryConfig:
    """Test configuration dataclass."""

    def test_default_values(self):
        config = QueryConfig()

        assert config.empty_policy is EmptyPolicy.RAISE
        assert config.inside_threshold == 0.0
        assert config.ray_step_factor == 0.5

    def test_json_round_trip(self, tmp_path):
        config = QueryConfig(empty_policy=EmptyPolicy.NAN, voxel_size=0.1, output_dir=tmp_path / "out")
        path = tmp_path / "nested" / "config.json"

        config.save(path)
        loaded = QueryConfig.from_json(path)

        assert loaded == config

    def test_partial_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"empty_policy": "nan"}))

        config = QueryConfig.from_json(path)

        assert config.empty_policy is EmptyPolicy.NAN
        assert config.output_dir == Path("outputs")

    def test_unknown_keys_rejected(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"empty_policy": "nan", "bogus": 1}))

        with pytest.raises(ValueError, match="bogus"):
            QueryConfig.from_json(path)


# ============== I/O Tests ==============

class TestFieldIO:
    """Test field and mesh persistence."""

    def test_save_and_load(self, tmp_path, block_field):
        path = save_field(block_field, tmp_path / "block")

        assert path.suffix == ".npz"
        loaded = load_field(path)
        np.testing.assert_array_equal(loaded.data, block_field.data)
        np.testing.assert_array_equal(loaded.origin, block_field.origin)
        assert loaded.voxel_size == block_field.voxel_size

    def test_load_rejects_foreign_archive(self, tmp_path):
        path = tmp_path / "other.npz"
        np.savez(path, something=np.zeros(3))

        with pytest.raises(ValueError):
            load_field(path)

    def test_save_mesh_with_sidecar(self, tmp_path):
        pytest.importorskip("trimesh")
        field = VoxelField.sphere(center=(0.0, 0.0, 0.0), radius=2.0, voxel_size=0.5)

        mesh_path, meta_path = save_mesh(field, tmp_path / "sphere.stl")

        assert mesh_path.exists()
        meta = json.loads(meta_path.read_text())
        assert meta["n_faces"] > 0
        assert meta["bbox"]["empty"] is False
