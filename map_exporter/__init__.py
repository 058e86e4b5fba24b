"""
Map Exporter - terrain tile, heightmap and world model export for WoW maps.

Exports ADT terrain tiles of a map to OBJ or glTF meshes and raw 16-bit
(R16) heightmaps that share one vertical scale across a batch, with
placed game objects attached per tile.

Typical use:

    archive = DirectoryArchive(data_dir)
    index = GameObjectIndex.from_archive(archive)
    session = MapSessionController(archive, object_index=index)
    session.select_map(0, 'Azeroth')

    cache = MeshCache()
    orchestrator = TileExportOrchestrator(
        AdtTileExporter(archive, cache), index, cache)
    job = TileExportJob(0, session.map_dir, [tile_index(32, 48)], 'exports')
    report = orchestrator.run(job, ExportProgress(1, 'tile'))
"""

from .adt_exporter import AdtTileExporter, MeshCache, build_terrain_mesh
from .archive import DirectoryArchive, Listfile, MPQChain
from .config import ExportConfig
from .constants import tile_coords, tile_index
from .exceptions import (AssetNotFoundError, ExportInputError, MapExportError,
                         WorldModelError)
from .export_log import ExportPathLog
from .face_culler import cull_back_faces, cull_back_faces_with_stats
from .game_objects import GameObjectIndex, GameObjectRecord
from .heightmap import HeightGrid, HeightmapBuilder, HeightmapWriter, HeightRange
from .map_session import MapSessionController, list_maps, parse_map_entry
from .progress import CancellationToken, ExportProgress
from .tile_export import (TileExportJob, TileExportOrchestrator,
                          TileExportReport, TileResult)
from .wdt_loader import WDTData, WorldModelPlacement, load_wdt

__version__ = '0.1.0'
