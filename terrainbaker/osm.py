"""OSM extract access: Overpass download and streaming XML reader."""

import logging
import pathlib
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Union

import requests

from .constants import OVERPASS_TIMEOUT, OVERPASS_URL
from .models import BoundingBox

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OsmNode:
    id: int
    lat: float
    lon: float


@dataclass
class OsmWay:
    id: int
    tags: Dict[str, str] = field(default_factory=dict)
    node_ids: List[int] = field(default_factory=list)

    def tag(self, key: str) -> Optional[str]:
        return self.tags.get(key)


OsmElement = Union[OsmNode, OsmWay]


def overpass_query(bounds: BoundingBox, timeout: int = 60) -> str:
    """Every node in the box, the ways using them, and those ways' nodes."""
    bbox = bounds.to_overpass()
    return f"""
        [out:xml]
        [timeout:{timeout}]
        ;
        (
            node({bbox});
            <;
            >;
        );
        out body;
    """


def fetch_osm(bounds: BoundingBox, path, url: str = OVERPASS_URL) -> pathlib.Path:
    """Download the OSM extract for *bounds* into *path*."""
    path = pathlib.Path(path)
    logger.info(f"Fetching OSM data for {bounds.to_overpass()}...")
    response = requests.post(url, data={"data": overpass_query(bounds)},
                             timeout=OVERPASS_TIMEOUT)
    response.raise_for_status()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(response.text, encoding="utf-8")
    logger.info(f"Saved OSM extract: {path} ({len(response.content) / 1024:.0f} KB)")
    return path


def read_osm(path) -> Iterator[OsmElement]:
    """Yield nodes and ways in document order.

    Relations and other elements are skipped. Finished top-level elements
    are detached from the document root before anything is yielded, so
    large extracts stream in bounded memory.
    """
    context = ET.iterparse(str(path), events=("start", "end"))
    _, root = next(context)
    for event, elem in context:
        if event != "end":
            continue
        if elem.tag == "node":
            item = OsmNode(id=int(elem.get("id")),
                           lat=float(elem.get("lat")),
                           lon=float(elem.get("lon")))
        elif elem.tag == "way":
            item = OsmWay(id=int(elem.get("id")))
            for child in elem:
                if child.tag == "nd":
                    item.node_ids.append(int(child.get("ref")))
                elif child.tag == "tag":
                    item.tags[child.get("k")] = child.get("v")
        elif elem.tag == "relation":
            item = None
        else:
            continue
        root.clear()
        if item is not None:
            yield item
