"""
Grayscale raster used to receive voxel field slices.
"""

import numpy as np


class GrayscaleImage:
    """
    2D raster of float values, indexed as (x, y) = (column, row).

    The backing array is stored row-major with shape (height, width).
    Slices written into it are overwritten in full on every extraction,
    so one image can be reused across a whole slice stack.
    """

    def __init__(self, width: int, height: int, fill: float = 0.0):
        if width < 0 or height < 0:
            raise ValueError(f"Image dimensions must be non-negative, got {width}x{height}")
        self.width = int(width)
        self.height = int(height)
        self.values = np.full((self.height, self.width), fill, dtype=np.float32)

    @property
    def shape(self):
        return self.values.shape

    def value(self, x: int, y: int) -> float:
        return float(self.values[y, x])

    def set_value(self, x: int, y: int, value: float) -> None:
        self.values[y, x] = value

    def __repr__(self) -> str:
        return f"GrayscaleImage({self.width}x{self.height})"
