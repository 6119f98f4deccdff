"""Tests for building and road synthesis and the feature file format."""

import math

import numpy as np
import pytest

from terrainbaker.buffer import Buffer
from terrainbaker.features import (FeatureSynthesizer, build_building, build_road,
                                   building_height, decode_features, encode_building,
                                   encode_road, infer_building_kind, is_ccw, parse_number,
                                   road_lanes, width_correction)
from terrainbaker.models import (BuildingKind, BuildingRecord, RoadKind, RoadRecord,
                                 RoofKind)
from terrainbaker.osm import OsmNode, OsmWay


def flat(elevation=5.0):
    return lambda x, y: elevation


SQUARE = {1: (0.0, 0.0), 2: (10.0, 0.0), 3: (10.0, 10.0), 4: (0.0, 10.0)}


class TestTags:
    """Numeric tag parsing and building classification."""

    @pytest.mark.parametrize("raw, expected", [("12", 12.0), ("12 m", 12.0), ("7.5m", 7.5),
                                               ("tall", None), (None, None), ("nan", None)])
    def test_parse_number(self, raw, expected):
        assert parse_number(raw) == expected

    def test_height_prefers_explicit_height(self):
        way = OsmWay(1, {"building": "yes", "height": "20", "building:levels": "2"})
        assert building_height(way) == 20.0

    def test_height_from_levels(self):
        assert building_height(OsmWay(1, {"building": "yes", "building:levels": "4"})) == 12.0

    def test_height_default(self):
        assert building_height(OsmWay(1, {"building": "yes", "height": "-2"})) == 3.0

    def test_kind(self):
        assert infer_building_kind(100.0, 30.0) == BuildingKind.TOWER
        assert infer_building_kind(900.0, 3.0) == BuildingKind.COMMERCIAL
        assert infer_building_kind(100.0, 3.0) == BuildingKind.HOUSE

    def test_lanes(self):
        assert road_lanes(OsmWay(1, {"highway": "primary"})) == 2.0
        assert road_lanes(OsmWay(1, {"highway": "primary", "lanes": "0"})) == 1.0
        assert road_lanes(OsmWay(1, {"highway": "primary", "lanes": "3"})) == 3.0


class TestBuildings:
    """Footprint synthesis."""

    def test_origin_counts_closing_node(self):
        way = OsmWay(7, {"building": "yes"}, [1, 2, 3, 4, 1])
        rec = build_building(way, SQUARE, flat())
        assert rec.origin == (4.0, 4.0)
        assert len(rec.footprint) == 4
        assert rec.footprint[0] == (-4.0, -4.0)

    def test_clockwise_input_is_reversed(self):
        way = OsmWay(7, {"building": "yes"}, [1, 4, 3, 2, 1])
        rec = build_building(way, SQUARE, flat())
        assert is_ccw(rec.footprint)
        assert rec.footprint == [(6.0, -4.0), (6.0, 6.0), (-4.0, 6.0), (-4.0, -4.0)]

    def test_ground_range(self):
        way = OsmWay(7, {"building": "yes"}, [1, 2, 3, 4, 1])
        rec = build_building(way, SQUARE, lambda x, y: x + y)
        assert (rec.ground_min, rec.ground_max) == (0.0, 20.0)

    def test_large_low_building_gets_commercial_height(self):
        nodes = {1: (0.0, 0.0), 2: (30.0, 0.0), 3: (30.0, 30.0), 4: (0.0, 30.0)}
        rec = build_building(OsmWay(7, {"building": "retail"}, [1, 2, 3, 4, 1]), nodes, flat())
        assert rec.kind == BuildingKind.COMMERCIAL
        assert rec.height == 6.0

    def test_unknown_node_skips_building(self):
        way = OsmWay(7, {"building": "yes"}, [1, 2, 99, 1])
        assert build_building(way, SQUARE, flat()) is None

    def test_degenerate_footprint_skipped(self):
        assert build_building(OsmWay(7, {"building": "yes"}, [1, 2, 1]), SQUARE, flat()) is None


class TestRoads:
    """Road ribbon synthesis."""

    def test_width_correction(self):
        east = np.array([1.0, 0.0])
        north = np.array([0.0, 1.0])
        assert width_correction(east, east) == pytest.approx(1.0)
        assert width_correction(east, north) == pytest.approx(math.sqrt(2))
        # sharper than a right angle is capped
        assert width_correction(east, -east) == pytest.approx(math.sqrt(2))
        assert width_correction(None, east) == 1.0

    def test_straight_road(self):
        nodes = {1: (0.0, 0.0), 2: (10.0, 0.0), 3: (20.0, 0.0)}
        way = OsmWay(3, {"highway": "residential"}, [1, 2, 3])
        rec = build_road(way, nodes, flat())

        assert rec.kind == RoadKind.ROAD
        assert (rec.road_type, rec.lanes) == (1, 2)
        assert rec.origin == (10.0, 0.0)
        assert rec.base_elevation == 5.0
        first = rec.nodes[0]
        np.testing.assert_allclose(first.left, [-10.0, -3.0, 0.0])
        np.testing.assert_allclose(first.right, [-10.0, 3.0, 0.0])
        for node in rec.nodes:
            np.testing.assert_allclose(node.normal, [0.0, 0.0, 1.0])
            np.testing.assert_allclose(node.direction, [1.0, 0.0, 0.0])

    def test_right_angle_bend(self):
        nodes = {1: (0.0, 0.0), 2: (10.0, 0.0), 3: (10.0, 10.0)}
        way = OsmWay(3, {"highway": "residential"}, [1, 2, 3])
        rec = build_road(way, nodes, flat())
        bend = rec.nodes[1]

        # half width 3, widened by sqrt(2) along the unnormalised mean direction
        offset = np.array([0.5, -0.5]) * 3.0 * math.sqrt(2)
        np.testing.assert_allclose(bend.left[:2], np.array([10.0, 0.0]) + offset
                                   - np.array(rec.origin))
        np.testing.assert_allclose((bend.left - bend.right)[:2], 2 * offset)
        assert bend.left[2] == bend.right[2] == 0.0

        np.testing.assert_allclose(bend.direction, [0.53485, 0.53485, 0.0], atol=1e-4)
        np.testing.assert_allclose(bend.normal, [0.0, 0.0, 0.75640], atol=1e-4)

        lefts = [node.left for node in rec.nodes]
        d0 = (lefts[1] - lefts[0]) / np.linalg.norm(lefts[1] - lefts[0])
        d1 = (lefts[2] - lefts[1]) / np.linalg.norm(lefts[2] - lefts[1])
        forward = (d0 + d1) * 0.5
        side = (bend.right - bend.left) / np.linalg.norm(bend.right - bend.left)
        np.testing.assert_allclose(bend.direction, forward)
        np.testing.assert_allclose(bend.normal, np.cross(forward, side))

    def test_interior_vertices_of_straight_way(self):
        nodes = {1: (0.0, 0.0), 2: (10.0, 0.0), 3: (20.0, 0.0), 4: (30.0, 0.0)}
        way = OsmWay(3, {"highway": "residential"}, [1, 2, 3, 4])
        rec = build_road(way, nodes, flat())

        assert rec.origin == (15.0, 0.0)
        for index, x in ((1, -5.0), (2, 5.0)):
            node = rec.nodes[index]
            np.testing.assert_allclose(node.left, [x, -3.0, 0.0])
            np.testing.assert_allclose(node.right - node.left, [0.0, 6.0, 0.0])
            np.testing.assert_allclose(node.normal, [0.0, 0.0, 1.0])
            np.testing.assert_allclose(node.direction, [1.0, 0.0, 0.0])

    def test_lane_byte_saturates(self):
        nodes = {1: (0.0, 0.0), 2: (10.0, 0.0)}
        way = OsmWay(3, {"highway": "primary", "lanes": "300"}, [1, 2])
        rec = build_road(way, nodes, flat())
        assert rec.lanes == 255
        assert np.linalg.norm(rec.nodes[0].right - rec.nodes[0].left) == pytest.approx(900.0)

        buffer = Buffer()
        encode_road(buffer, rec)
        (decoded,) = decode_features(buffer.bytes)
        assert decoded.lanes == 255

    def test_oneway_and_lanes(self):
        nodes = {1: (0.0, 0.0), 2: (10.0, 0.0)}
        way = OsmWay(3, {"highway": "primary", "oneway": "yes", "lanes": "2.5"}, [1, 2])
        rec = build_road(way, nodes, flat())
        assert (rec.road_type, rec.lanes) == (2, 3)
        assert np.linalg.norm(rec.nodes[0].right - rec.nodes[0].left) == pytest.approx(7.5)

    def test_footpath_is_level_across(self):
        nodes = {1: (0.0, 0.0), 2: (10.0, 0.0)}
        way = OsmWay(3, {"highway": "footway"}, [1, 2])
        rec = build_road(way, nodes, lambda x, y: y)

        assert rec.kind == RoadKind.FOOTPATH
        assert (rec.road_type, rec.lanes) == (0, 1)
        for node in rec.nodes:
            assert node.left[2] == node.right[2] == 1.0

    @pytest.mark.parametrize("tags", [{"highway": "service", "tunnel": "yes"},
                                      {"highway": "primary", "bridge": "yes"},
                                      {"highway": "steps"}])
    def test_structures_skipped(self, tags):
        nodes = {1: (0.0, 0.0), 2: (10.0, 0.0)}
        assert build_road(OsmWay(3, tags, [1, 2]), nodes, flat()) is None

    def test_structures_kept_on_request(self):
        nodes = {1: (0.0, 0.0), 2: (10.0, 0.0)}
        way = OsmWay(3, {"highway": "primary", "bridge": "yes"}, [1, 2])
        assert build_road(way, nodes, flat(), skip_structures=False) is not None


class TestFeatureFile:
    """Synthesis over an element stream and the binary record layout."""

    def elements(self):
        # projector below maps (lat, lon) -> (x=lon, y=lat)
        yield OsmNode(1, 0.0, 0.0)
        yield OsmNode(2, 0.0, 10.0)
        yield OsmNode(3, 10.0, 10.0)
        yield OsmNode(4, 10.0, 0.0)
        yield OsmWay(100, {"building": "yes", "height": "15"}, [1, 2, 3, 4, 1])
        yield OsmWay(101, {"highway": "residential"}, [1, 2, 3])
        yield OsmWay(102, {"highway": "primary", "tunnel": "yes"}, [3, 4])
        yield OsmWay(103, {"building": "yes"}, [1, 2, 55, 1])
        yield OsmWay(104, {"natural": "wood"}, [1, 2, 3, 1])

    def test_round_trip(self):
        synth = FeatureSynthesizer(flat(2.0), lambda lat, lon: (lon, lat))
        buffer = synth.synthesize(self.elements())
        assert (synth.buildings, synth.roads) == (1, 1)

        building, road = decode_features(buffer.bytes)
        assert isinstance(building, BuildingRecord)
        assert building.kind == BuildingKind.TOWER
        assert building.height == 15.0
        assert building.ground_min == building.ground_max == 2.0
        assert building.origin == (4.0, 4.0)
        assert len(building.footprint) == 4

        assert isinstance(road, RoadRecord)
        assert road.road_type == 1 and road.lanes == 2
        assert len(road.nodes) == 3
        np.testing.assert_allclose(road.nodes[0].center, [0.0, 0.0], atol=1e-5)
        np.testing.assert_allclose(road.nodes[2].center, [10.0, 10.0], atol=1e-5)

    def test_building_record_layout(self):
        rec = BuildingRecord(origin=(1.0, 2.0), ground_min=3.0, ground_max=4.0, height=5.0,
                             kind=BuildingKind.TOWER, roof_kind=RoofKind.FLAT,
                             footprint=[(0.0, 0.0), (1.0, 0.0), (0.0, 1.0)])
        buffer = Buffer()
        encode_building(buffer, rec)
        data = buffer.bytes
        assert data[0] == 0
        assert data[21:23] == bytes([1, 0])
        assert len(data) == 1 + 5 * 4 + 2 + 2 + 3 * 8

    def test_too_many_nodes(self):
        rec = BuildingRecord(origin=(0.0, 0.0), ground_min=0.0, ground_max=0.0, height=3.0,
                             kind=BuildingKind.HOUSE, roof_kind=RoofKind.FLAT,
                             footprint=[(0.0, 0.0)] * 65_536)
        buffer = Buffer()
        with pytest.raises(ValueError, match="too many nodes"):
            encode_building(buffer, rec)
        assert len(buffer) == 0

    def test_unknown_record_type(self):
        with pytest.raises(ValueError):
            decode_features(b'\x09')
