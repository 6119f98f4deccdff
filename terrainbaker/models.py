"""Data classes and path management."""

import pathlib
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Tuple

import numpy as np

from .constants import CHUNK_SIZE, INPUT_DIR, OUTPUT_DIR


class TileFormatError(ValueError):
    """A tile's sample buffer does not match its declared dimensions."""


class PathManager:
    """Manage input and output paths for a region."""

    @staticmethod
    def get_input_path(filename: str) -> pathlib.Path:
        """Get the input file path."""
        return INPUT_DIR / filename

    @staticmethod
    def get_output_dir(region_name: str) -> pathlib.Path:
        """Get the per-region output directory."""
        return OUTPUT_DIR / region_name


@dataclass
class BoundingBox:
    north: float
    south: float
    east: float
    west: float

    def to_overpass(self) -> str:
        """Overpass bbox filter order: south, west, north, east."""
        return f"{self.south},{self.west},{self.north},{self.east}"


@dataclass(frozen=True)
class UTMCoord:
    zone_number: int
    easting: float
    northing: float
    northern: bool = True


@dataclass(frozen=True, eq=False)
class Tile:
    """One chunk of the elevation raster, stored row-major as (height, width)."""
    data: np.ndarray
    width: int
    height: int

    def __post_init__(self):
        if self.data.shape != (self.height, self.width):
            raise TileFormatError(
                f"tile data shape {self.data.shape} does not match "
                f"{self.width}x{self.height}")
        if self.width > CHUNK_SIZE or self.height > CHUNK_SIZE:
            raise TileFormatError(
                f"tile {self.width}x{self.height} exceeds chunk size {CHUNK_SIZE}")
        self.data.flags.writeable = False

    @classmethod
    def from_samples(cls, samples, width: int, height: int) -> "Tile":
        """Build a tile from a flat row-major sample sequence."""
        flat = np.asarray(samples, dtype=np.float32).ravel()
        if flat.size != width * height:
            raise TileFormatError(
                f"expected {width * height} samples for {width}x{height}, "
                f"got {flat.size}")
        return cls(flat.reshape(height, width), width, height)

    @property
    def is_full_width(self) -> bool:
        return self.width == CHUNK_SIZE

    @property
    def is_full_height(self) -> bool:
        return self.height == CHUNK_SIZE

    def get(self, x: int, y: int) -> float:
        return float(self.data[y, x])


@dataclass(frozen=True)
class TileNeighbors:
    right: Optional[Tile] = None
    below: Optional[Tile] = None
    corner: Optional[Tile] = None


class BuildingKind(IntEnum):
    HOUSE = 0        # siding, maybe brick, usually pitched roofs
    TOWER = 1        # skyscraper
    COMMERCIAL = 2   # flat with few windows: shops, theaters
    INDUSTRIAL = 3
    PARKING = 4      # parking garage
    SCHOOL = 5
    HOSPITAL = 6


class RoofKind(IntEnum):
    FLAT = 0


class RoadKind(IntEnum):
    ROAD = 0
    FOOTPATH = 1
    BIKEPATH = 2

    @property
    def is_level_path(self) -> bool:
        return self in (RoadKind.FOOTPATH, RoadKind.BIKEPATH)


# Record type tags, stable across the feature file format
OBJ_BUILDING = 0
OBJ_ROAD = 1


@dataclass
class BuildingRecord:
    origin: Tuple[float, float]
    ground_min: float
    ground_max: float
    height: float
    kind: BuildingKind
    roof_kind: RoofKind
    footprint: List[Tuple[float, float]]

    record_type = OBJ_BUILDING


@dataclass
class RoadNode:
    center: np.ndarray
    left: np.ndarray = field(default_factory=lambda: np.zeros(3))
    right: np.ndarray = field(default_factory=lambda: np.zeros(3))
    normal: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 1.0]))
    direction: np.ndarray = field(default_factory=lambda: np.array([1.0, 0.0, 0.0]))


@dataclass
class RoadRecord:
    origin: Tuple[float, float]
    base_elevation: float
    kind: RoadKind
    road_type: int     # 0 path, 1 two-way road, 2 one-way road
    lanes: int
    nodes: List[RoadNode]

    record_type = OBJ_ROAD
