"""Chunked GeoTIFF access via rasterio."""

import logging
import math
import pathlib
from typing import List, Tuple

import numpy as np
import rasterio
from rasterio.errors import RasterioIOError
from rasterio.windows import Window
from tqdm import tqdm

from .constants import CHUNK_SIZE, GRID_DIM, REGION_SIZE
from .models import Tile

logger = logging.getLogger(__name__)


class RasterLoadError(ValueError):
    """The elevation raster cannot be read as the expected tiled grid."""


class RasterSource:
    """Read fixed-size elevation chunks from a tiled single-band GeoTIFF.

    The raster must be ``size`` x ``size`` samples, internally tiled in
    ``chunk_size`` blocks, giving a ``grid`` x ``grid`` chunk layout.
    Chunk ``i`` covers row ``i // grid`` and column ``i % grid``.
    """

    def __init__(self, path, size: int = REGION_SIZE,
                 chunk_size: int = CHUNK_SIZE, grid: int = GRID_DIM):
        self.path = pathlib.Path(path)
        self.size = size
        self.chunk_size = chunk_size
        self.grid = grid

        if math.ceil(size / chunk_size) != grid:
            raise RasterLoadError(
                f"{grid}x{grid} chunks of {chunk_size} cannot cover {size} samples")

        try:
            self._ds = rasterio.open(str(self.path))
        except RasterioIOError as e:
            raise RasterLoadError(f"failed to open elevation map {self.path}: {e}") from e

        try:
            self._validate()
        except RasterLoadError:
            self._ds.close()
            raise

        transform = self._ds.transform
        self.origin: Tuple[float, float] = (transform.c, transform.f)
        logger.info(f"Opened {self.path.name}: {size}x{size}, origin "
                    f"E={self.origin[0]:.1f} N={self.origin[1]:.1f}")

    def _validate(self):
        ds = self._ds
        if (ds.width, ds.height) != (self.size, self.size):
            raise RasterLoadError(
                f"raster is {ds.width}x{ds.height}, expected {self.size}x{self.size}")
        if ds.count != 1:
            raise RasterLoadError(f"expected a single band, found {ds.count}")
        if ds.block_shapes[0] != (self.chunk_size, self.chunk_size):
            raise RasterLoadError(
                f"raster blocks are {ds.block_shapes[0]}, expected "
                f"({self.chunk_size}, {self.chunk_size})")
        if ds.dtypes[0] != 'float32':
            raise RasterLoadError(f"chunk in wrong format: {ds.dtypes[0]}")

    @property
    def tile_count(self) -> int:
        return self.grid * self.grid

    def chunk_dimensions(self, index: int) -> Tuple[int, int]:
        """(width, height) of chunk *index*; trailing chunks are smaller."""
        if not 0 <= index < self.tile_count:
            raise IndexError(f"chunk index {index} out of range")
        cx, cy = index % self.grid, index // self.grid
        width = min(self.chunk_size, self.size - cx * self.chunk_size)
        height = min(self.chunk_size, self.size - cy * self.chunk_size)
        return width, height

    def read_chunk(self, index: int) -> Tile:
        width, height = self.chunk_dimensions(index)
        cx, cy = index % self.grid, index // self.grid
        window = Window(cx * self.chunk_size, cy * self.chunk_size, width, height)
        data = self._ds.read(1, window=window)
        return Tile(np.ascontiguousarray(data, dtype=np.float32), width, height)

    def read_all(self) -> List[Tile]:
        return [self.read_chunk(i)
                for i in tqdm(range(self.tile_count), desc="Reading chunks", unit="chunk")]

    def close(self):
        self._ds.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
