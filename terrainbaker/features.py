"""Building footprints and road ribbons from OSM ways, draped on the elevation.

Feature file layout: a sequence of records, each starting with a type byte.

Building (``0``)::

    f32 base_x, base_y, ground_min, ground_max, height
    u8 kind | u8 roof_kind | u16 n | n x (f32 x, f32 y)

Road (``1``)::

    f32 base_x, base_y, base_elevation | u8 road_type | u8 lanes | u16 n
    n x (f32 left[3], right[3], normal[3], direction[3])
"""

import logging
import math
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np

from .buffer import Buffer, BufferReader
from .constants import (COMMERCIAL_MIN_AREA, COMMERCIAL_MIN_HEIGHT, DEFAULT_BUILDING_HEIGHT,
                        DEFAULT_LANES, LANE_HALF_WIDTH, LEVEL_HEIGHT, MAX_MITER_ANGLE,
                        PATH_HALF_WIDTH, ROAD_TAGS, TOWER_MIN_HEIGHT)
from .models import (OBJ_BUILDING, OBJ_ROAD, BuildingKind, BuildingRecord, RoadKind,
                     RoadNode, RoadRecord, RoofKind)
from .osm import OsmElement, OsmNode, OsmWay

logger = logging.getLogger(__name__)

Sampler = Callable[[float, float], float]
Projector = Callable[[float, float], Tuple[float, float]]
NodeMap = Dict[int, Tuple[float, float]]

MAX_RECORD_NODES = 65_535


# ── Tag parsing ──────────────────────────────────────────────────────────

def parse_number(value: Optional[str]) -> Optional[float]:
    """Parse a numeric tag, accepting a trailing metre unit; None when malformed."""
    if value is None:
        return None
    try:
        number = float(str(value).replace(' m', '').replace('m', '').strip())
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


def is_building(way: OsmWay) -> bool:
    return way.tag('building') is not None


def building_height(way: OsmWay) -> float:
    height = parse_number(way.tag('height'))
    if height is not None and height > 0:
        return height
    levels = parse_number(way.tag('building:levels'))
    if levels is not None and levels > 0:
        return levels * LEVEL_HEIGHT
    return DEFAULT_BUILDING_HEIGHT


def infer_building_kind(area: float, height: float) -> BuildingKind:
    if height > TOWER_MIN_HEIGHT:
        return BuildingKind.TOWER
    if area > COMMERCIAL_MIN_AREA:
        return BuildingKind.COMMERCIAL
    return BuildingKind.HOUSE


def path_area(path) -> float:
    """Bounding-box area of a footprint; an approximation of the polygon area."""
    if len(path) < 3:
        return 0.0
    xs = [p[0] for p in path]
    ys = [p[1] for p in path]
    return (max(xs) - min(xs)) * (max(ys) - min(ys))


def shoelace_sum(points) -> float:
    """Sum of (x2 - x1)(y2 + y1) over the closed ring; negative for CCW."""
    total = 0.0
    n = len(points)
    for i in range(n):
        x1, y1 = points[i]
        x2, y2 = points[(i + 1) % n]
        total += (x2 - x1) * (y2 + y1)
    return total


def is_ccw(points) -> bool:
    return shoelace_sum(points) < 0.0


def is_road(way: OsmWay) -> bool:
    return way.tag('highway') is not None


def is_road_oneway(way: OsmWay) -> bool:
    return way.tag('oneway') is not None


def road_lanes(way: OsmWay) -> float:
    lanes = parse_number(way.tag('lanes'))
    if lanes is None:
        return DEFAULT_LANES
    return max(lanes, 1.0)


def should_skip_road(way: OsmWay) -> bool:
    if any(way.tag(key) is not None for key in ROAD_TAGS['skip_structure']):
        return True
    return way.tag('highway') in ROAD_TAGS['skip_highway']


def road_kind(way: OsmWay) -> RoadKind:
    highway = way.tag('highway')
    if highway in ROAD_TAGS['footpath'] or way.tag('footway') is not None:
        return RoadKind.FOOTPATH
    if highway in ROAD_TAGS['bikepath']:
        return RoadKind.BIKEPATH
    return RoadKind.ROAD


# ── Geometry helpers ─────────────────────────────────────────────────────

def _unit(v: np.ndarray) -> Optional[np.ndarray]:
    norm = float(np.linalg.norm(v))
    if norm == 0.0 or not math.isfinite(norm):
        return None
    return v / norm


def average_direction(incoming: Optional[np.ndarray],
                      outgoing: Optional[np.ndarray]) -> Optional[np.ndarray]:
    """Mean of the two unit directions, or whichever one exists at an endpoint."""
    if incoming is not None and outgoing is not None:
        return (incoming + outgoing) * 0.5
    if incoming is not None:
        return incoming
    return outgoing


def width_correction(incoming: Optional[np.ndarray],
                     outgoing: Optional[np.ndarray]) -> float:
    """Miter scale ``1 / cos(angle / 2)``, with the bend angle capped at 90°."""
    if incoming is None or outgoing is None:
        return 1.0
    cos_angle = float(np.clip(np.dot(incoming, outgoing), -1.0, 1.0))
    angle = min(math.acos(cos_angle), MAX_MITER_ANGLE)
    return 1.0 / math.cos(angle / 2.0)


def _neighbor_directions(points: List[np.ndarray], i: int):
    incoming = _unit(points[i] - points[i - 1]) if i > 0 else None
    outgoing = _unit(points[i + 1] - points[i]) if i < len(points) - 1 else None
    return incoming, outgoing


def mean_position(node_ids: List[int], nodes: NodeMap) -> Tuple[float, float]:
    xs = [nodes[i][0] for i in node_ids]
    ys = [nodes[i][1] for i in node_ids]
    return sum(xs) / len(xs), sum(ys) / len(ys)


# ── Record synthesis ─────────────────────────────────────────────────────

def build_building(way: OsmWay, nodes: NodeMap, sample: Sampler) -> Optional[BuildingRecord]:
    ids = list(way.node_ids)
    missing = [i for i in ids if i not in nodes]
    if missing:
        logger.warning(f"Skipping building {way.id}: {len(missing)} unknown node(s)")
        return None

    base_x, base_y = mean_position(ids, nodes)
    # do not include the duplicate closing node
    if len(ids) > 1 and ids[0] == ids[-1]:
        ids = ids[:-1]
    if len(ids) < 3:
        logger.warning(f"Skipping building {way.id}: {len(ids)} footprint point(s)")
        return None

    ground_min = math.inf
    ground_max = -math.inf
    path = []
    for node_id in ids:
        x, y = nodes[node_id]
        e = sample(x, y)
        ground_min = min(ground_min, e)
        ground_max = max(ground_max, e)
        path.append((x - base_x, y - base_y))
    if not is_ccw(path):
        path.reverse()

    height = building_height(way)
    area = path_area(path)
    kind = infer_building_kind(area, height)
    # bump up height for non-houses
    if kind in (BuildingKind.COMMERCIAL, BuildingKind.INDUSTRIAL):
        height = max(height, COMMERCIAL_MIN_HEIGHT)

    return BuildingRecord(origin=(base_x, base_y), ground_min=ground_min,
                          ground_max=ground_max, height=height, kind=kind,
                          roof_kind=RoofKind.FLAT, footprint=path)


def build_road(way: OsmWay, nodes: NodeMap, sample: Sampler,
               skip_structures: bool = True) -> Optional[RoadRecord]:
    if skip_structures and should_skip_road(way):
        return None
    ids = list(way.node_ids)
    missing = [i for i in ids if i not in nodes]
    if missing:
        logger.warning(f"Skipping road {way.id}: {len(missing)} unknown node(s)")
        return None
    if len(ids) < 2:
        logger.warning(f"Skipping road {way.id}: fewer than two nodes")
        return None

    kind = road_kind(way)
    if kind == RoadKind.ROAD:
        lanes = road_lanes(way)
        half_width = lanes * LANE_HALF_WIDTH
        road_type = 2 if is_road_oneway(way) else 1
        # stored as u8
        lane_byte = min(int(math.ceil(lanes)), 255)
    else:
        half_width = PATH_HALF_WIDTH
        road_type = 0
        lane_byte = 1

    base_x, base_y = mean_position(ids, nodes)
    base_elevation = sample(base_x, base_y)

    def make3d(coord: np.ndarray) -> np.ndarray:
        e = sample(float(coord[0]), float(coord[1]))
        return np.array([coord[0] - base_x, coord[1] - base_y, e - base_elevation])

    path = [RoadNode(center=np.array(nodes[i], dtype=np.float64)) for i in ids]
    centers = [node.center for node in path]

    # place left and right rails
    last_dir = np.array([1.0, 0.0])
    for i, node in enumerate(path):
        incoming, outgoing = _neighbor_directions(centers, i)
        direction = average_direction(incoming, outgoing)
        if direction is None:
            direction = last_dir
        last_dir = direction
        width_mul = width_correction(incoming, outgoing)

        side = np.array([direction[1], -direction[0]])
        offset = side * half_width * width_mul
        left = make3d(node.center + offset)
        right = make3d(node.center - offset)

        if kind.is_level_path:
            z = max(left[2], right[2])
            left[2] = z
            right[2] = z
        node.left = left
        node.right = right

    # normals need the 3d rail positions
    lefts = [node.left for node in path]
    for i, node in enumerate(path):
        incoming, outgoing = _neighbor_directions(lefts, i)
        forward = average_direction(incoming, outgoing)
        side = _unit(node.right - node.left)
        if forward is None or side is None:
            continue
        node.normal = np.cross(forward, side)
        node.direction = forward

    return RoadRecord(origin=(base_x, base_y), base_elevation=base_elevation,
                      kind=kind, road_type=road_type, lanes=lane_byte, nodes=path)


# ── Encoding ─────────────────────────────────────────────────────────────

def _check_count(n: int) -> None:
    if n > MAX_RECORD_NODES:
        raise ValueError(f"too many nodes: {n}")


def encode_building(buffer: Buffer, rec: BuildingRecord) -> None:
    _check_count(len(rec.footprint))
    buffer.write_byte(OBJ_BUILDING)
    buffer.write_float(rec.origin[0])
    buffer.write_float(rec.origin[1])
    buffer.write_float(rec.ground_min)
    buffer.write_float(rec.ground_max)
    buffer.write_float(rec.height)
    buffer.write_byte(int(rec.kind))
    buffer.write_byte(int(rec.roof_kind))
    buffer.write_short(len(rec.footprint))
    for x, y in rec.footprint:
        buffer.write_float(x)
        buffer.write_float(y)


def encode_road(buffer: Buffer, rec: RoadRecord) -> None:
    _check_count(len(rec.nodes))
    buffer.write_byte(OBJ_ROAD)
    buffer.write_float(rec.origin[0])
    buffer.write_float(rec.origin[1])
    buffer.write_float(rec.base_elevation)
    buffer.write_byte(rec.road_type)
    buffer.write_byte(rec.lanes)
    buffer.write_short(len(rec.nodes))
    for node in rec.nodes:
        for vec in (node.left, node.right, node.normal, node.direction):
            for component in vec:
                buffer.write_float(float(component))


class FeatureSynthesizer:
    """Stream OSM elements into a feature :class:`Buffer`.

    Nodes are projected once into the node map; ways are turned into
    records as they arrive, so the input must list nodes before the ways
    that use them (as OSM XML does).
    """

    def __init__(self, sample: Sampler, project: Projector, skip_structures: bool = True):
        self.sample = sample
        self.project = project
        self.skip_structures = skip_structures
        self.nodes: NodeMap = {}
        self.buildings = 0
        self.roads = 0

    def add_node(self, node: OsmNode) -> None:
        self.nodes[node.id] = self.project(node.lat, node.lon)

    def synthesize(self, elements: Iterable[OsmElement]) -> Buffer:
        buffer = Buffer()
        for obj in elements:
            if isinstance(obj, OsmNode):
                self.add_node(obj)
            elif isinstance(obj, OsmWay):
                if is_building(obj):
                    rec = build_building(obj, self.nodes, self.sample)
                    if rec is not None:
                        encode_building(buffer, rec)
                        self.buildings += 1
                elif is_road(obj):
                    rec = build_road(obj, self.nodes, self.sample, self.skip_structures)
                    if rec is not None:
                        encode_road(buffer, rec)
                        self.roads += 1
        logger.info(f"Synthesized {self.buildings} buildings and {self.roads} roads "
                    f"from {len(self.nodes)} nodes")
        return buffer


# ── Decoding ─────────────────────────────────────────────────────────────

def decode_features(data: bytes) -> List[object]:
    """Read a feature file back into Building/Road records."""
    reader = BufferReader(data)
    records = []
    while not reader.at_end():
        tag = reader.read_byte()
        if tag == OBJ_BUILDING:
            origin = (reader.read_float(), reader.read_float())
            ground_min = reader.read_float()
            ground_max = reader.read_float()
            height = reader.read_float()
            kind = BuildingKind(reader.read_byte())
            roof_kind = RoofKind(reader.read_byte())
            n = reader.read_short()
            points = reader.read_array('<f4', n * 2).reshape(-1, 2)
            records.append(BuildingRecord(origin=origin, ground_min=ground_min,
                                          ground_max=ground_max, height=height,
                                          kind=kind, roof_kind=roof_kind,
                                          footprint=[tuple(p) for p in points.tolist()]))
        elif tag == OBJ_ROAD:
            origin = (reader.read_float(), reader.read_float())
            base_elevation = reader.read_float()
            road_type = reader.read_byte()
            lanes = reader.read_byte()
            n = reader.read_short()
            rows = reader.read_array('<f4', n * 12).reshape(-1, 4, 3).astype(np.float64)
            nodes = [RoadNode(center=(row[0, :2] + row[1, :2]) / 2 + np.asarray(origin),
                              left=row[0],
                              right=row[1], normal=row[2], direction=row[3])
                     for row in rows]
            kind = RoadKind.ROAD if road_type else RoadKind.FOOTPATH
            records.append(RoadRecord(origin=origin, base_elevation=base_elevation,
                                      kind=kind, road_type=road_type, lanes=lanes,
                                      nodes=nodes))
        else:
            raise ValueError(f"unknown feature record type {tag}")
    return records
