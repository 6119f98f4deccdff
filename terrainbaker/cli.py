"""Click CLI commands for TerrainBaker."""

import logging
import pathlib
from typing import Optional

import click

from .buffer import load_bytes
from .constants import WORKER_COUNT
from .elevation import decode_tile_mesh
from .features import decode_features
from .models import BuildingRecord
from .region import Region

logger = logging.getLogger(__name__)


@click.group()
def cli():
    """TerrainBaker CLI for baking elevation rasters and OSM extracts into render assets."""
    pass


@cli.command()
@click.argument('name')
@click.argument('zone_number', type=click.IntRange(1, 60))
@click.option('--elevation', '-e', is_flag=True, help='Generate elevation tiles')
@click.option('--map', '-m', 'build_map', is_flag=True, help='Generate map file')
@click.option('--workers', '-w', type=int, default=WORKER_COUNT,
              help='Worker threads for tile meshing (default: one per CPU)')
@click.option('--southern', is_flag=True, help='Region lies in the southern hemisphere')
def build(name: str, zone_number: int, elevation: bool, build_map: bool,
          workers: Optional[int], southern: bool):
    """Bake input/NAME.tif (and input/NAME.osm) into output/NAME/."""
    try:
        region = Region.from_geotiff(name, zone_number, northern=not southern)
        region.ensure_output_dir()
        if elevation:
            written = region.process_elevation(workers=workers)
            click.echo(f"Wrote {len(written)} tiles to {region.output_dir}")
        if build_map:
            path = region.process_map()
            click.echo(f"Wrote {path}")
    except Exception as e:
        logger.error(f"Error baking region {name}: {e}")
        raise click.ClickException(str(e))


@cli.command()
@click.argument('path', type=click.Path(exists=True, dir_okay=False, path_type=pathlib.Path))
def inspect(path: pathlib.Path):
    """Summarise a baked tile (tile*.bin[.gz]) or map (map.bin[.gz]) file."""
    try:
        data = load_bytes(path)
        if path.name.startswith('tile'):
            mesh = decode_tile_mesh(data)
            click.echo(f"{path.name}: {mesh.vertex_count} vertices, {mesh.face_count} faces, "
                       f"min_z={mesh.min_z:.2f}, range_z={mesh.range_z:.2f}")
        else:
            records = decode_features(data)
            buildings = sum(1 for r in records if isinstance(r, BuildingRecord))
            click.echo(f"{path.name}: {buildings} buildings, "
                       f"{len(records) - buildings} roads")
    except (ValueError, EOFError) as e:
        raise click.ClickException(f"cannot decode {path}: {e}")


if __name__ == '__main__':
    cli()
