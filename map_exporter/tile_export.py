"""
Two-pass batch export of map tiles.

Pass 1 exports every selected tile through the per-tile exporter, keeping
the HeightmapWriter of each successful tile and merging the tiles' local
height ranges into one global range.

Pass 2 writes every kept heightmap normalised against the global range, so
all R16 files of a batch share one vertical scale, then records the range
in heightmap_metadata.json.

A failing tile is recorded and skipped; it never aborts the batch.
Cancellation is polled at the top of every iteration of both passes.
"""

import logging
import os
import traceback

from .constants import MAP_OFFSET, TILE_SIZE, tile_coords
from .exceptions import ExportInputError
from .heightmap import HeightmapWriter, HeightRange
from .json_io import save_json

log = logging.getLogger(__name__)


HEIGHTMAP_METADATA_FILE = 'heightmap_metadata.json'


class TileExportJob(object):
    """The tiles of one map selected for export, plus export switches."""

    def __init__(self, map_id, map_dir, tile_indices, export_dir, quality=0,
                 include_game_objects=False, export_heightmap=True,
                 overwrite=True):
        self.map_id = map_id
        self.map_dir = map_dir
        self.tile_indices = list(tile_indices)
        self.export_dir = export_dir
        self.quality = quality
        self.include_game_objects = include_game_objects
        self.export_heightmap = export_heightmap
        self.overwrite = overwrite

    @classmethod
    def from_config(cls, map_id, map_dir, tile_indices, config):
        """Build a job for *map_dir* under config.export_directory."""
        export_dir = os.path.join(config.export_directory, 'maps', map_dir)
        return cls(map_id, map_dir, tile_indices, export_dir,
                   quality=config.export_quality,
                   include_game_objects=config.include_game_objects,
                   export_heightmap=config.export_heightmap,
                   overwrite=config.overwrite)


class TileResult(object):
    """Outcome of one tile."""

    def __init__(self, tile_index, success, output=None, message=None,
                 detail=None):
        self.tile_index = tile_index
        self.success = success
        self.output = output
        self.message = message
        self.detail = detail

    @property
    def tile_x(self):
        return tile_coords(self.tile_index)[0]

    @property
    def tile_y(self):
        return tile_coords(self.tile_index)[1]

    def __repr__(self):
        status = "OK" if self.success else "FAIL"
        return "TileResult({}, {}, {!r})".format(
            self.tile_index, status, self.output or self.message)


class TileExportReport(object):
    """Everything a finished (or cancelled) export job produced."""

    def __init__(self):
        self.tiles = []                 # TileResult, pass 1 order
        self.heightmap_failures = []    # TileResult, pass 2 failures
        self.heightmaps_written = []    # R16 paths, pass 2 order
        self.height_range = HeightRange()
        self.manifest_path = None
        self.cancelled = False

    @property
    def succeeded(self):
        return [t for t in self.tiles if t.success]

    @property
    def failed(self):
        return [t for t in self.tiles if not t.success]


def tile_bounds(tile_index):
    """
    World-space (start_x, start_y, end_x, end_y) of a tile.

    World X runs along the second ADT file number (tile_y) and world Y along
    the first (tile_x), matching the MCNK positions stored in the tile.
    """
    tile_x, tile_y = tile_coords(tile_index)
    start_x = MAP_OFFSET - (tile_y * TILE_SIZE) - TILE_SIZE
    start_y = MAP_OFFSET - (tile_x * TILE_SIZE) - TILE_SIZE
    return start_x, start_y, start_x + TILE_SIZE, start_y + TILE_SIZE


def tile_contains(bounds, position):
    """Strict containment: positions on a tile edge belong to neither tile."""
    start_x, start_y, end_x, end_y = bounds
    pos_x, pos_y = position[0], position[1]
    return start_x < pos_x < end_x and start_y < pos_y < end_y


class TileExportOrchestrator(object):
    """
    Runs TileExportJobs against a per-tile exporter.
    """

    def __init__(self, tile_exporter, object_index=None, mesh_cache=None):
        """
        Args:
            tile_exporter: Object with export_tile(map_id, map_dir,
                tile_index, output_dir, quality, game_objects, progress,
                heightmap_writer) returning {'type', 'path'}.
            object_index: GameObjectIndex used when a job includes game
                objects.
            mesh_cache: Cache cleared once at the end of every job.
        """
        self.tile_exporter = tile_exporter
        self.object_index = object_index
        self.mesh_cache = mesh_cache

    def run(self, job, progress, export_paths=None):
        """
        Export the tiles of *job*.

        Args:
            job: TileExportJob.
            progress: ExportProgress (progress sink and cancellation).
            export_paths: Optional ExportPathLog; receives one line per
                successfully exported tile and is closed afterwards.

        Returns:
            TileExportReport

        Raises:
            ExportInputError: If the job selects no tiles.
        """
        if not job.tile_indices:
            raise ExportInputError(
                "No tiles selected; select at least one map tile to export.")

        report = TileExportReport()
        progress.start()
        mark_path = os.path.join(job.export_dir, job.map_dir)

        try:
            writers = self._export_tiles(job, progress, report, mark_path)

            if writers:
                self._write_heightmaps(job, progress, report, writers,
                                       mark_path)

            if export_paths is not None:
                for result in report.succeeded:
                    export_paths.write_entry(result.output['type'],
                                             result.output['path'])
        finally:
            if export_paths is not None:
                export_paths.close()
            if self.mesh_cache is not None:
                self.mesh_cache.clear()
            report.cancelled = progress.is_cancelled()
            progress.finish()

        return report

    # ------------------------------------------------------------------
    # Pass 1
    # ------------------------------------------------------------------

    def _collect_game_objects(self, job, tile_index):
        if not job.include_game_objects or self.object_index is None:
            return None
        bounds = tile_bounds(tile_index)
        return self.object_index.collect(
            job.map_id, lambda obj: tile_contains(bounds, obj.position))

    def _export_tiles(self, job, progress, report, mark_path):
        writers = []
        global_range = HeightRange()
        total = len(job.tile_indices)

        for i, tile_index in enumerate(job.tile_indices):
            if progress.is_cancelled():
                log.info("Export cancelled before tile %d/%d", i + 1, total)
                break

            tile_x, tile_y = tile_coords(tile_index)
            progress.set_current_task_name(
                "Pass 1: Tile {}_{} ({}/{})".format(tile_x, tile_y, i + 1, total))
            progress.set_current_task_value(i)

            try:
                game_objects = self._collect_game_objects(job, tile_index)
                writer = HeightmapWriter() if job.export_heightmap else None

                out = self.tile_exporter.export_tile(
                    job.map_id, job.map_dir, tile_index, job.export_dir,
                    job.quality, game_objects, progress, writer)

                report.tiles.append(TileResult(tile_index, True, output=out))

                if writer is not None:
                    writers.append((tile_index, writer))
                    global_range = global_range.merge(writer.local_range)

                progress.mark(mark_path, True)
            except Exception as e:
                report.tiles.append(TileResult(
                    tile_index, False, message=str(e),
                    detail=traceback.format_exc()))
                progress.mark(mark_path, False, str(e), traceback.format_exc())

        report.height_range = global_range
        return writers

    # ------------------------------------------------------------------
    # Pass 2
    # ------------------------------------------------------------------

    def _write_heightmaps(self, job, progress, report, writers, mark_path):
        total = len(writers)
        attempted = 0

        for i, (tile_index, writer) in enumerate(writers):
            if progress.is_cancelled():
                log.info("Export cancelled before heightmap %d/%d", i + 1, total)
                break

            progress.set_current_task_name(
                "Pass 2: Writing R16 heightmap {}/{}".format(i + 1, total))
            progress.set_current_task_value(len(job.tile_indices) + i)
            attempted += 1

            try:
                if writer.write(report.height_range, overwrite=job.overwrite):
                    report.heightmaps_written.append(writer.out)
            except Exception as e:
                report.heightmap_failures.append(TileResult(
                    tile_index, False, message=str(e),
                    detail=traceback.format_exc()))
                progress.mark(mark_path, False, str(e), traceback.format_exc())

        if attempted == 0:
            return

        metadata_path = os.path.join(job.export_dir, HEIGHTMAP_METADATA_FILE)
        metadata = {
            'export': {
                'tile_count': len(report.heightmaps_written),
            },
            'height_range': report.height_range.to_dict(),
        }

        try:
            save_json(metadata_path, metadata)
            report.manifest_path = metadata_path
            log.info("Wrote heightmap metadata: %s (range %r)",
                     metadata_path, report.height_range)
        except Exception as e:
            progress.mark('heightmap metadata', False, str(e),
                          traceback.format_exc())
