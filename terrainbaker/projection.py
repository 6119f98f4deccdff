"""WGS84 <-> region-local planar coordinates through UTM."""

from typing import Tuple

from pyproj import Transformer

from .models import UTMCoord


def utm_epsg(zone_number: int, northern: bool = True) -> int:
    if not 1 <= zone_number <= 60:
        raise ValueError(f"invalid UTM zone {zone_number}")
    return (32600 if northern else 32700) + zone_number


class UTMProjector:
    """Map lat/lon to raster-aligned planar offsets from the region origin.

    Local x is easting minus the origin easting; local y is the origin
    northing minus the point's northing, so +y runs down the raster rows.
    """

    def __init__(self, coord: UTMCoord):
        self.coord = coord
        epsg = utm_epsg(coord.zone_number, coord.northern)
        self._forward = Transformer.from_crs("EPSG:4326", f"EPSG:{epsg}", always_xy=True)
        self._inverse = Transformer.from_crs(f"EPSG:{epsg}", "EPSG:4326", always_xy=True)

    def to_local(self, lat: float, lon: float) -> Tuple[float, float]:
        easting, northing = self._forward.transform(lon, lat)
        return easting - self.coord.easting, self.coord.northing - northing

    def to_latlon(self, x: float, y: float) -> Tuple[float, float]:
        lon, lat = self._inverse.transform(self.coord.easting + x, self.coord.northing - y)
        return lat, lon

    __call__ = to_local
