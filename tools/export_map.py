#!/usr/bin/env python
"""
Map tile exporter CLI for WoW client data.

Exports ADT terrain tiles to OBJ/glTF with R16 heightmaps normalised to a
shared height range, lists available maps, and saves minimap previews.

Usage:
  python export_map.py --data <extracted_dir> list-maps
  python export_map.py --data <extracted_dir> info <MapDir>
  python export_map.py --data <extracted_dir> export <map_id> <MapDir> --tiles 32_48 32_49
  python export_map.py --wow-root <wow_dir> export <map_id> <MapDir> --all -o exports
  python export_map.py --data <extracted_dir> preview <MapDir> 32 48 --size 256 -o tile.png
"""

import argparse
import logging
import os
import signal
import sys

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from PIL import Image

from map_exporter import (AdtTileExporter, CancellationToken, DirectoryArchive,
                          ExportConfig, ExportPathLog, ExportProgress,
                          GameObjectIndex, Listfile, MapSessionController,
                          MeshCache, MPQChain, TileExportJob,
                          TileExportOrchestrator, list_maps, parse_map_entry,
                          tile_coords, tile_index)
from map_exporter.dbc_reader import MAP_LAYOUT, read_table
from map_exporter.exceptions import MapExportError

log = logging.getLogger('export_map')

_MAP_TABLE = 'DBFilesClient/Map.dbc'


# ===================================================================
# Helpers
# ===================================================================

def _open_archive(args):
    listfile = Listfile.load(args.listfile) if args.listfile else None
    if args.wow_root:
        return MPQChain(args.wow_root, locale=args.locale, listfile=listfile), listfile
    if args.data:
        return DirectoryArchive(args.data, listfile=listfile), listfile
    raise SystemExit("Either --data or --wow-root is required")


def _parse_tile(text):
    """Parse an ``x_y`` tile coordinate into a flat tile index."""
    try:
        x, y = (int(part) for part in text.split('_'))
    except ValueError:
        raise argparse.ArgumentTypeError(
            "Invalid tile {!r}, expected X_Y (e.g. 32_48)".format(text))
    if not (0 <= x < 64 and 0 <= y < 64):
        raise argparse.ArgumentTypeError(
            "Tile {!r} out of range 0..63".format(text))
    return tile_index(x, y)


def _load_config(args):
    config = ExportConfig.from_file(args.config) if args.config else ExportConfig()
    return config.updated(
        export_directory=args.output,
        export_format=args.format,
        export_heightmap=args.heightmap,
        include_game_objects=args.game_objects or None,
        cull_faces=args.cull or None,
        export_quality=args.quality,
    )


# ===================================================================
# Commands
# ===================================================================

def cmd_list_maps(archive, listfile, args):
    table = read_table(archive, _MAP_TABLE, MAP_LAYOUT)
    for entry in list_maps(table, archive.exists):
        parsed = parse_map_entry(entry)
        print("  {:>5}  {:30s} {}".format(parsed['id'], parsed['dir'],
                                          parsed['name']))
    return 0


def cmd_info(archive, listfile, args):
    session = MapSessionController(archive, listfile)
    session.select_map(args.map_id, args.map_dir)

    if session.wdt is None:
        print("{}: no WDT, all tiles assumed present".format(args.map_dir))
        return 0

    active = session.wdt.active_indices
    print("{}: {} tiles, world model: {}".format(
        session.map_dir_display, len(active),
        session.wdt.world_model or ('yes' if session.has_world_model else 'no')))
    for index in active:
        x, y = tile_coords(index)
        print("  {}_{}".format(x, y))
    return 0


def cmd_preview(archive, listfile, args):
    session = MapSessionController(archive, listfile)
    session.select_map(0, args.map_dir)
    pixels = session.load_tile_preview_image(args.x, args.y, args.size)
    if pixels is None:
        print("No minimap tile {}_{} for {}".format(args.x, args.y, args.map_dir))
        return 1
    Image.fromarray(pixels, 'RGBA').save(args.output)
    print("{}_{} -> {}".format(args.x, args.y, args.output))
    return 0


def cmd_export(archive, listfile, args):
    config = _load_config(args)

    object_index = GameObjectIndex.from_archive(archive)
    session = MapSessionController(archive, listfile, object_index)
    session.select_map(args.map_id, args.map_dir)

    if args.all:
        if session.wdt is None:
            print("Cannot use --all: {} has no readable WDT".format(args.map_dir))
            return 1
        session.select_tiles(session.wdt.active_indices)
    else:
        session.select_tiles(args.tiles or [])

    mesh_cache = MeshCache()
    exporter = AdtTileExporter(archive, mesh_cache, config.export_format,
                               config.cull_faces)
    orchestrator = TileExportOrchestrator(exporter, object_index, mesh_cache)

    job = TileExportJob.from_config(session.map_id, session.map_dir,
                                    session.selection, config)

    token = CancellationToken()
    signal.signal(signal.SIGINT, lambda *_: token.cancel())
    progress = ExportProgress(len(job.tile_indices), 'tile', token)
    export_paths = ExportPathLog(
        os.path.join(config.export_directory, 'last_export.txt'))

    try:
        report = orchestrator.run(job, progress, export_paths)
    except MapExportError as e:
        print("Export failed: {}".format(e))
        return 1

    for result in report.tiles:
        status = "OK  " if result.success else "FAIL"
        print("  {}  {}_{}  {}".format(status, result.tile_x, result.tile_y,
                                       result.output['path'] if result.success
                                       else result.message))
    for result in report.heightmap_failures:
        print("  FAIL  {}_{}  heightmap: {}".format(
            result.tile_x, result.tile_y, result.message))

    print("\n{} exported, {} failed, {} heightmaps{}".format(
        len(report.succeeded), len(report.failed),
        len(report.heightmaps_written),
        " (cancelled)" if report.cancelled else ""))
    return 0 if not report.failed and not report.heightmap_failures else 1


# ===================================================================
# CLI
# ===================================================================

def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Export WoW map tiles to meshes and R16 heightmaps')
    parser.add_argument('--data', help='Extracted client data directory')
    parser.add_argument('--wow-root', help='WoW installation (reads MPQs)')
    parser.add_argument('--locale', default='enUS', help='MPQ locale')
    parser.add_argument('--listfile', help='Listfile (<id>;<path> per line)')
    parser.add_argument('-v', '--verbose', action='store_true')
    subparsers = parser.add_subparsers(dest='command')

    subparsers.add_parser('list-maps', help='List maps with a WDT')

    p_info = subparsers.add_parser('info', help='Show the tiles of a map')
    p_info.add_argument('map_dir')
    p_info.add_argument('--map-id', type=int, default=0)

    p_prev = subparsers.add_parser('preview', help='Save a minimap tile as PNG')
    p_prev.add_argument('map_dir')
    p_prev.add_argument('x', type=int)
    p_prev.add_argument('y', type=int)
    p_prev.add_argument('--size', type=int, default=256)
    p_prev.add_argument('-o', '--output', default='minimap.png')

    p_exp = subparsers.add_parser('export', help='Export map tiles')
    p_exp.add_argument('map_id', type=int)
    p_exp.add_argument('map_dir')
    p_exp.add_argument('--tiles', nargs='+', type=_parse_tile,
                       help='Tiles to export as X_Y')
    p_exp.add_argument('--all', action='store_true',
                       help='Export every tile listed in the WDT')
    p_exp.add_argument('--config', help='JSON export settings')
    p_exp.add_argument('-o', '--output', help='Export directory')
    p_exp.add_argument('--format', choices=['OBJ', 'GLTF', 'obj', 'gltf'])
    p_exp.add_argument('--quality', type=int)
    p_exp.add_argument('--heightmap', dest='heightmap', action='store_true',
                       default=None)
    p_exp.add_argument('--no-heightmap', dest='heightmap', action='store_false')
    p_exp.add_argument('--game-objects', action='store_true')
    p_exp.add_argument('--cull', action='store_true',
                       help='Cull back-facing duplicate triangles')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(levelname)s %(name)s: %(message)s')

    commands = {
        'list-maps': cmd_list_maps,
        'info': cmd_info,
        'preview': cmd_preview,
        'export': cmd_export,
    }
    if args.command not in commands:
        parser.print_help()
        return 1

    archive, listfile = _open_archive(args)
    try:
        return commands[args.command](archive, listfile, args)
    finally:
        if isinstance(archive, MPQChain):
            archive.close()


if __name__ == '__main__':
    sys.exit(main())
