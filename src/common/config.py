"""
Configuration and constants for voxel field queries.

Empty-field policy:
- RAISE (default): centre of gravity over a field with no inside voxels
  raises EmptyFieldError
- NAN: the same call returns a NaN vector instead
"""

from enum import Enum
from dataclasses import dataclass, field, fields
from typing import Dict, Any
import json
from pathlib import Path


class EmptyPolicy(Enum):
    """
    What the centre of gravity does when no inside voxel is found.

    RAISE (default): raise EmptyFieldError
        - Callers cannot mistake an empty field for a valid centroid

    NAN: return (nan, nan, nan)
        - For batch reports that should keep going over empty inputs
    """
    RAISE = "raise"
    NAN = "nan"


@dataclass
class QueryConfig:
    """
    Global configuration for voxel field queries.
    """

    # Empty-field handling for the centre of gravity
    empty_policy: EmptyPolicy = EmptyPolicy.RAISE

    # A cell counts as inside when value <= inside_threshold
    inside_threshold: float = 0.0

    # Ray march step, in voxels
    ray_step_factor: float = 0.5

    # Voxel size used when voxelising meshes (world units)
    voxel_size: float = 0.5

    # Paths (relative to project root)
    output_dir: Path = field(default_factory=lambda: Path("outputs"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "empty_policy": self.empty_policy.value,
            "inside_threshold": self.inside_threshold,
            "ray_step_factor": self.ray_step_factor,
            "voxel_size": self.voxel_size,
            "output_dir": str(self.output_dir)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueryConfig":
        data = dict(data)
        unknown = set(data) - {f.name for f in fields(cls)}
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        data["empty_policy"] = EmptyPolicy(data.get("empty_policy", "raise"))
        data["output_dir"] = Path(data.get("output_dir", "outputs"))
        return cls(**data)

    @classmethod
    def from_json(cls, path: Path) -> "QueryConfig":
        """Load config from JSON file."""
        with open(path) as f:
            data = json.load(f)
        return cls.from_dict(data)

    def save(self, path: Path) -> None:
        """Save config to JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
