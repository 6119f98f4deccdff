"""Terrain tile meshing: seam-stitched height grid, decimation, quantized encoding.

Binary layout of one tile (all little-endian)::

    f32 min_z | f32 range_z | u16 vertex_count
    vertex_count x (u16 x, u16 y, u16 z, i8 nx, i8 ny, i8 nz)
    u16 face_count
    face_count x (u16 b, u16 a, u16 c)

x and y are normalised against the fixed 512-sample tile span, not the
extended grid, so stitched seam vertices land on the very top of the range.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import trimesh

from .buffer import Buffer, BufferReader
from .constants import (CHUNK_SIZE, DECIMATION_MAX_ERROR, DECIMATION_MIN_FACES,
                        INDEX_LIMIT, NORMAL_SCALE, QUANT_MAX)
from .decimation import EdgeDecimator
from .models import Tile, TileFormatError, TileNeighbors

logger = logging.getLogger(__name__)

VERTEX_DTYPE = np.dtype([('x', '<u2'), ('y', '<u2'), ('z', '<u2'),
                         ('nx', 'i1'), ('ny', 'i1'), ('nz', 'i1')])
FACE_DTYPE = np.dtype('<u2')


class DecimationBudgetError(RuntimeError):
    """Decimated mesh does not fit 16-bit indices; retune the decimator."""


@dataclass
class TileMesh:
    """Decoded tile mesh with dequantized positions."""
    min_z: float
    range_z: float
    positions: np.ndarray   # (N, 3) float64
    normals: np.ndarray     # (N, 3) float64, unit-ish
    faces: np.ndarray       # (M, 3) original (a, b, c) winding

    @property
    def vertex_count(self) -> int:
        return len(self.positions)

    @property
    def face_count(self) -> int:
        return len(self.faces)


def tile_heightfield(tile: Tile, neighbors: Optional[TileNeighbors] = None) -> np.ndarray:
    """Build the (height, width) elevation grid for one tile.

    A full 512 dimension gets one extra row/column copied from the
    neighbouring tile so independently decimated tiles meet on identical
    boundary vertices.
    """
    neighbors = neighbors or TileNeighbors()
    if tile.data.shape != (tile.height, tile.width):
        raise TileFormatError(f"tile data shape {tile.data.shape} does not "
                              f"match {tile.width}x{tile.height}")

    extend_x = tile.width == CHUNK_SIZE
    extend_y = tile.height == CHUNK_SIZE
    width = tile.width + 1 if extend_x else tile.width
    height = tile.height + 1 if extend_y else tile.height

    grid = np.empty((height, width), dtype=np.float64)
    grid[:tile.height, :tile.width] = tile.data

    if extend_x:
        right = neighbors.right
        if right is None or right.height != tile.height:
            raise TileFormatError("full-width tile needs a right neighbour of equal height")
        grid[:tile.height, tile.width] = right.data[:, 0]
    if extend_y:
        below = neighbors.below
        if below is None or below.width != tile.width:
            raise TileFormatError("full-height tile needs a below neighbour of equal width")
        grid[tile.height, :tile.width] = below.data[0, :]
    if extend_x and extend_y:
        if neighbors.corner is None:
            raise TileFormatError("full tile needs a corner neighbour")
        grid[tile.height, tile.width] = neighbors.corner.data[0, 0]

    return grid


def make_grid(heights: np.ndarray, scale: float = 1.0):
    """Regular quad grid over *heights*, two triangles per quad."""
    height, width = heights.shape
    ys, xs = np.mgrid[0:height, 0:width]
    vertices = np.column_stack([xs.ravel(), ys.ravel(), heights.ravel()]).astype(np.float64) * scale

    qy, qx = np.mgrid[0:height - 1, 0:width - 1]
    i = (qy * width + qx).ravel()
    tri1 = np.column_stack([i, i + 1, i + width])
    tri2 = np.column_stack([i + 1, i + width + 1, i + width])
    faces = np.vstack([tri1, tri2]).astype(np.int64)
    return vertices, faces


def compact_mesh(vertices: np.ndarray, faces: np.ndarray):
    """Drop unreferenced vertices; local indices follow vertex-handle order."""
    used, inverse = np.unique(faces, return_inverse=True)
    return vertices[used], inverse.reshape(faces.shape)


def check_index_budget(vertex_count: int, face_count: int) -> None:
    if vertex_count >= INDEX_LIMIT or face_count >= INDEX_LIMIT:
        raise DecimationBudgetError(
            f"decimated mesh has {vertex_count} vertices / {face_count} faces; "
            f"both must stay below {INDEX_LIMIT}")


def vertex_normals(vertices: np.ndarray, faces: np.ndarray) -> np.ndarray:
    mesh = trimesh.Trimesh(vertices=vertices, faces=faces, process=False)
    return np.asarray(mesh.vertex_normals, dtype=np.float64)


def encode_tile_mesh(vertices: np.ndarray, faces: np.ndarray,
                     normals: Optional[np.ndarray] = None) -> Buffer:
    """Quantize and encode a compact mesh (every vertex referenced)."""
    check_index_budget(len(vertices), len(faces))
    if normals is None:
        if len(faces):
            normals = vertex_normals(vertices, faces)
        else:
            normals = np.zeros((len(vertices), 3))

    if len(vertices):
        min_z = float(vertices[:, 2].min())
        max_z = float(vertices[:, 2].max())
    else:
        min_z = max_z = 0.0
    range_z = max_z - min_z

    packed = np.empty(len(vertices), dtype=VERTEX_DTYPE)
    packed['x'] = np.rint(vertices[:, 0] / CHUNK_SIZE * QUANT_MAX)
    packed['y'] = np.rint(vertices[:, 1] / CHUNK_SIZE * QUANT_MAX)
    if range_z > 0:
        packed['z'] = np.rint((vertices[:, 2] - min_z) / range_z * QUANT_MAX)
    else:
        packed['z'] = 0
    quantized_normals = np.rint(normals * NORMAL_SCALE).astype(np.int8)
    packed['nx'] = quantized_normals[:, 0]
    packed['ny'] = quantized_normals[:, 1]
    packed['nz'] = quantized_normals[:, 2]

    buffer = Buffer()
    buffer.write_float(min_z)
    buffer.write_float(range_z)
    buffer.write_short(len(vertices))
    buffer.write_array(packed)
    buffer.write_short(len(faces))
    # renderer expects (b, a, c)
    buffer.write_array(faces[:, [1, 0, 2]].astype(FACE_DTYPE))
    return buffer


def decode_tile_mesh(data: bytes) -> TileMesh:
    """Parse a tile produced by :func:`encode_tile_mesh`."""
    reader = BufferReader(data)
    min_z = reader.read_float()
    range_z = reader.read_float()
    vertex_count = reader.read_short()
    packed = reader.read_array(VERTEX_DTYPE, vertex_count)
    face_count = reader.read_short()
    faces = reader.read_array(FACE_DTYPE, face_count * 3).reshape(-1, 3)

    positions = np.empty((vertex_count, 3), dtype=np.float64)
    positions[:, 0] = packed['x'] / QUANT_MAX * CHUNK_SIZE
    positions[:, 1] = packed['y'] / QUANT_MAX * CHUNK_SIZE
    positions[:, 2] = min_z + packed['z'] / QUANT_MAX * range_z
    normals = np.column_stack([packed['nx'], packed['ny'], packed['nz']]) / NORMAL_SCALE

    return TileMesh(min_z=min_z, range_z=range_z, positions=positions,
                    normals=normals, faces=faces[:, [1, 0, 2]].astype(np.int64))


def decimate_tile(tile: Tile, neighbors: Optional[TileNeighbors] = None,
                  max_error: float = DECIMATION_MAX_ERROR,
                  min_faces: Optional[int] = DECIMATION_MIN_FACES):
    """Heightfield -> grid -> decimated compact mesh ``(vertices, faces)``."""
    heights = tile_heightfield(tile, neighbors)
    vertices, faces = make_grid(heights)
    logger.debug(f"initial: {len(vertices)} / {len(faces)}")

    decimator = EdgeDecimator(max_error=max_error, min_faces=min_faces,
                              keep_boundary=True)
    vertices, faces = decimator.decimate(vertices, faces)
    vertices, faces = compact_mesh(vertices, faces)
    logger.debug(f"decimated: {len(vertices)} / {len(faces)}")

    check_index_budget(len(vertices), len(faces))
    return vertices, faces


def build_terrain_mesh(tile: Tile, neighbors: Optional[TileNeighbors] = None,
                       max_error: float = DECIMATION_MAX_ERROR,
                       min_faces: Optional[int] = DECIMATION_MIN_FACES) -> Buffer:
    """Mesh, decimate, and encode one tile."""
    vertices, faces = decimate_tile(tile, neighbors, max_error=max_error,
                                    min_faces=min_faces)
    return encode_tile_mesh(vertices, faces)
