"""
Axis-aligned bounding boxes and point helpers.

All coordinates are world units (the same units as the field's voxel size).
"""

from dataclasses import dataclass, field
from typing import Dict, Any, Sequence

import numpy as np


def as_point(value: Sequence[float]) -> np.ndarray:
    """Convert any 3-sequence to a float64 point, raising on bad shapes."""
    point = np.asarray(value, dtype=np.float64).reshape(-1)
    if point.shape != (3,):
        raise ValueError(f"Expected a 3D point, got shape {np.shape(value)}")
    return point.copy()


@dataclass
class BBox3:
    """
    Axis-aligned 3D box given by its minimum and maximum corners.

    An empty box has vec_min = +inf and vec_max = -inf so that including
    any point makes it valid.
    """
    vec_min: np.ndarray = field(default_factory=lambda: np.full(3, np.inf))
    vec_max: np.ndarray = field(default_factory=lambda: np.full(3, -np.inf))

    def __post_init__(self):
        self.vec_min = np.asarray(self.vec_min, dtype=np.float64).copy()
        self.vec_max = np.asarray(self.vec_max, dtype=np.float64).copy()

    @classmethod
    def empty(cls) -> "BBox3":
        return cls()

    @property
    def is_empty(self) -> bool:
        return bool(np.any(self.vec_max < self.vec_min))

    def size(self) -> np.ndarray:
        """Edge lengths along X, Y and Z (zero for an empty box)."""
        if self.is_empty:
            return np.zeros(3)
        return self.vec_max - self.vec_min

    def center(self) -> np.ndarray:
        if self.is_empty:
            return np.full(3, np.nan)
        return (self.vec_min + self.vec_max) / 2.0

    def include(self, point: Sequence[float]) -> None:
        """Grow the box so it contains the given point."""
        pt = as_point(point)
        self.vec_min = np.minimum(self.vec_min, pt)
        self.vec_max = np.maximum(self.vec_max, pt)

    def contains(self, point: Sequence[float]) -> bool:
        pt = as_point(point)
        return bool(np.all(pt >= self.vec_min) and np.all(pt <= self.vec_max))

    def to_dict(self) -> Dict[str, Any]:
        if self.is_empty:
            return {"empty": True, "min": None, "max": None, "size": [0.0, 0.0, 0.0]}
        return {
            "empty": False,
            "min": self.vec_min.tolist(),
            "max": self.vec_max.tolist(),
            "size": self.size().tolist(),
        }
