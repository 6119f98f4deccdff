"""Shared fixtures: cheap full-size regions and a fake chunk source."""

import numpy as np
import pytest

from terrainbaker.constants import TILE_COUNT
from terrainbaker.models import Tile, UTMCoord
from terrainbaker.region import Region, expected_tile_dimensions


def ramp(offset=0.0):
    """Tile factory whose sample at (x, y) is ``offset + y * 1000 + x``."""
    def make(width, height):
        ys, xs = np.mgrid[0:height, 0:width]
        return (offset + ys * 1000 + xs).astype(np.float32)
    return make


def make_tiles(fill=None, elevation=0.0):
    """400 correctly sized tiles.

    Tiles listed in *fill* (index -> factory(width, height)) get their own
    data; every other tile shares one constant array per shape, so a full
    region costs only a few megabytes.
    """
    fill = fill or {}
    shared = {}
    tiles = []
    for index in range(TILE_COUNT):
        width, height = expected_tile_dimensions(index)
        if index in fill:
            data = fill[index](width, height)
        else:
            if (width, height) not in shared:
                shared[(width, height)] = np.full((height, width), elevation, dtype=np.float32)
            data = shared[(width, height)]
        tiles.append(Tile(data, width, height))
    return tiles


@pytest.fixture
def coord():
    return UTMCoord(zone_number=33, easting=500000.0, northing=5000000.0)


@pytest.fixture
def make_region(coord):
    def _make(fill=None, elevation=0.0, name="test"):
        return Region(name, coord, make_tiles(fill, elevation))
    return _make


class FakeChunkSource:
    """In-memory stand-in for RasterSource with a small grid."""

    def __init__(self, size=40, chunk_size=16, grid=3):
        self.size = size
        self.chunk_size = chunk_size
        self.grid = grid
        self.reads = []
        self.closed = False

    def read_chunk(self, index):
        self.reads.append(index)
        cx, cy = index % self.grid, index // self.grid
        width = min(self.chunk_size, self.size - cx * self.chunk_size)
        height = min(self.chunk_size, self.size - cy * self.chunk_size)
        return Tile(np.full((height, width), float(index), dtype=np.float32), width, height)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_source():
    return FakeChunkSource()
