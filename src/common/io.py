"""
Voxel field I/O utilities.

Fields are stored as compressed numpy archives holding the distance values,
the origin and the voxel size. Meshes go through trimesh in both directions.
"""

import json
import logging
from pathlib import Path
from typing import Tuple, Union
import numpy as np

from .voxel import VoxelField

logger = logging.getLogger(__name__)

try:
    import trimesh
    TRIMESH_AVAILABLE = True
except ImportError:
    TRIMESH_AVAILABLE = False
    logger.warning("trimesh not available")


FIELD_SUFFIX = ".npz"


def save_field(field: VoxelField, path: Union[str, Path]) -> Path:
    """
    Save a voxel field to a compressed .npz archive.

    Args:
        field: VoxelField to save
        path: Output path (.npz is appended if missing)

    Returns:
        Path actually written
    """
    path = Path(path)
    if path.suffix != FIELD_SUFFIX:
        path = path.with_suffix(FIELD_SUFFIX)
    path.parent.mkdir(parents=True, exist_ok=True)

    np.savez_compressed(
        path,
        values=field.data,
        origin=field.origin,
        voxel_size=np.array(field.voxel_size)
    )
    logger.info(f"Saved field: {path} {field.shape}")
    return path


def load_field(path: Union[str, Path]) -> VoxelField:
    """
    Load a voxel field written by save_field.

    Raises:
        ValueError: If the archive lacks any of the expected arrays
    """
    path = Path(path)
    with np.load(path) as archive:
        missing = {"values", "origin", "voxel_size"} - set(archive.files)
        if missing:
            raise ValueError(f"{path} is not a voxel field archive (missing {sorted(missing)})")
        field = VoxelField(
            data=archive["values"],
            origin=archive["origin"],
            voxel_size=float(archive["voxel_size"])
        )

    logger.info(f"Loaded field: {path} {field.shape}, voxel_size={field.voxel_size}")
    return field


def load_mesh(path: Union[str, Path]) -> "trimesh.Trimesh":
    """
    Load a mesh file (STL, OBJ, PLY, GLB, ...) as a single Trimesh.

    Raises:
        ValueError: If the file holds no triangles
    """
    if not TRIMESH_AVAILABLE:
        raise ImportError("trimesh required for loading meshes")

    path = Path(path)
    mesh = trimesh.load(str(path), force="mesh")
    if len(mesh.faces) == 0:
        raise ValueError(f"{path} contains no triangles")

    logger.info(f"Loaded mesh: {path} ({len(mesh.vertices)} verts, {len(mesh.faces)} faces)")
    return mesh


def field_to_trimesh(field: VoxelField) -> "trimesh.Trimesh":
    """Marching-cubes surface of a field as a Trimesh."""
    if not TRIMESH_AVAILABLE:
        raise ImportError("trimesh required for mesh conversion")

    vertices, faces = field.to_mesh()
    return trimesh.Trimesh(vertices=vertices, faces=faces)


def save_mesh(field: VoxelField, path: Union[str, Path]) -> Tuple[Path, Path]:
    """
    Export the surface of a field with a JSON metadata sidecar.

    Args:
        field: VoxelField to mesh
        path: Output path; the format follows the suffix (.stl, .glb, ...)

    Returns:
        Tuple of (mesh_path, metadata_path)
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    mesh = field_to_trimesh(field)
    mesh.export(str(path))
    logger.info(f"Saved mesh: {path} ({len(mesh.vertices)} verts, {len(mesh.faces)} faces)")

    volume, bbox = field.calculate_properties()
    meta_path = path.with_suffix('.json')
    with open(meta_path, 'w') as f:
        json.dump({
            "n_vertices": len(mesh.vertices),
            "n_faces": len(mesh.faces),
            "voxel_size": field.voxel_size,
            "volume": volume,
            "bbox": bbox.to_dict()
        }, f, indent=2)
    logger.info(f"Saved metadata: {meta_path}")

    return path, meta_path
