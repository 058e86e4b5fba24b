"""
Map browsing session: selected map, tile mask, minimap previews, game
objects and the map-wide world model.

Browsing must keep working with incomplete client data, so a missing or
broken WDT falls back to "every tile present, no world model" and a missing
minimap tile yields None instead of an error.
"""

import logging
import os
import re
import traceback
from io import BytesIO

import numpy as np
from PIL import Image, UnidentifiedImageError

from .exceptions import AssetNotFoundError, WorldModelError
from .wdt_loader import load_wdt

log = logging.getLogger(__name__)


_MAP_ENTRY_RE = re.compile(r'\[(\d+)\]\x19([^\x19]+)\x19\(([^)]+)\)')


def wdt_path(map_dir):
    return "world/maps/{0}/{0}.wdt".format(map_dir.lower())


def minimap_path(map_dir, x, y):
    return "world/minimaps/{}/map{:02d}_{:02d}.blp".format(map_dir.lower(), x, y)


# ---------------------------------------------------------------------------
# Map list entries
# ---------------------------------------------------------------------------

def format_map_entry(expansion_id, map_id, name, directory):
    """Format a map list entry: ``<expansion>\\x19[<id>]\\x19<name>\\x19(<dir>)``."""
    return "{:d}\x19[{:d}]\x19{}\x19({})".format(
        expansion_id, map_id, name, directory)


def parse_map_entry(entry):
    """
    Parse a map list entry produced by format_map_entry().

    Returns:
        dict: {'id': int, 'name': str, 'dir': str}

    Raises:
        ValueError: If *entry* is not a map entry.
    """
    match = _MAP_ENTRY_RE.search(entry)
    if not match:
        raise ValueError("Unexpected map entry: {!r}".format(entry))
    return {'id': int(match.group(1)), 'name': match.group(2),
            'dir': match.group(3)}


def list_maps(map_table, file_exists):
    """
    List the maps of a Map table that have a WDT in the client data.

    Args:
        map_table: DBCTable with MAP_LAYOUT rows.
        file_exists: Callable(path) -> bool.

    Returns:
        list of map entries (see format_map_entry()), in table order.
    """
    maps = []
    for map_id, row in map_table.get_all_rows().items():
        directory = row['Directory']
        if directory and file_exists(wdt_path(directory)):
            maps.append(format_map_entry(row['ExpansionID'], map_id,
                                         row['MapName_lang'], directory))
    log.info("Found %d maps with a WDT", len(maps))
    return maps


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class MapSessionController(object):
    """
    Holds the state of the map currently being browsed.
    """

    def __init__(self, archive, listfile=None, object_index=None):
        """
        Args:
            archive: Archive reader (read_by_name(), read_by_id(), exists()).
            listfile: Optional Listfile for world model name/ID resolution.
            object_index: Shared GameObjectIndex.
        """
        self.archive = archive
        self.listfile = listfile
        self.object_index = object_index
        self._reset()

    def _reset(self):
        self.map_id = None
        self.map_dir = None              # lower-case, for paths
        self.map_dir_display = None      # original case
        self.wdt = None
        self.tile_mask = None            # None = all tiles present
        self.has_world_model = False
        self.selection = []

    # ------------------------------------------------------------------
    # Map selection
    # ------------------------------------------------------------------

    def select_map(self, map_id, map_dir):
        """
        Select a map for browsing and export.

        Loads the map's WDT for its tile mask.  If the WDT cannot be read
        or parsed, every tile is treated as present and no world model is
        offered.
        """
        self._reset()
        self.map_id = map_id
        self.map_dir = map_dir.lower()
        self.map_dir_display = map_dir

        path = wdt_path(self.map_dir)
        log.info("Loading map preview for %s (%d)", self.map_dir, map_id)

        try:
            self.wdt = load_wdt(self.archive.read_by_name(path))
        except (AssetNotFoundError, ValueError) as e:
            log.warning("Cannot load %s, defaulting to all tiles enabled: %s",
                        path, e)
            return

        self.tile_mask = self.wdt.tiles
        self.has_world_model = self.wdt.world_model_placement is not None

    def is_tile_available(self, tile_index):
        if self.tile_mask is None:
            return True
        return bool(self.tile_mask[tile_index] & 1)

    def select_tiles(self, tile_indices):
        """Replace the tile selection, keeping only available tiles."""
        self.selection = [i for i in tile_indices if self.is_tile_available(i)]
        return self.selection

    # ------------------------------------------------------------------
    # Minimap previews
    # ------------------------------------------------------------------

    def load_tile_preview_image(self, x, y, size):
        """
        Load a minimap tile scaled to *size* x *size* pixels.

        Returns:
            numpy.ndarray: (size, size, 4) uint8 RGBA pixels (alpha forced
                opaque), or None if no map is selected or the tile image
                does not exist or cannot be decoded.
        """
        if not self.map_dir:
            return None

        path = minimap_path(self.map_dir, x, y)
        try:
            data = self.archive.read_by_name(path)
            img = Image.open(BytesIO(data))
            img = img.convert('RGB').convert('RGBA')
        except AssetNotFoundError:
            return None
        except (UnidentifiedImageError, OSError, ValueError) as e:
            log.debug("Cannot decode minimap tile %s: %s", path, e)
            return None

        if img.size != (size, size):
            img = img.resize((size, size), Image.NEAREST)

        return np.asarray(img, dtype=np.uint8)

    # ------------------------------------------------------------------
    # Game objects
    # ------------------------------------------------------------------

    def collect_game_objects(self, map_id, predicate):
        """Return the indexed game objects of *map_id* matching *predicate*."""
        if self.object_index is None:
            return []
        return self.object_index.collect(map_id, predicate)

    # ------------------------------------------------------------------
    # World model
    # ------------------------------------------------------------------

    def _resolve_world_model(self):
        """Return (file_name, file_id) of the selected map's world model."""
        wdt = self.wdt
        if wdt is None or wdt.world_model_placement is None:
            raise WorldModelError("Map does not contain a world model.")

        placement = wdt.world_model_placement

        if wdt.world_model:
            file_name = wdt.world_model
            file_id = (self.listfile.get_by_filename(file_name)
                       if self.listfile is not None else None)
            if not file_id and not self.archive.exists(file_name):
                raise WorldModelError(
                    "Invalid world model path: {}".format(file_name))
            return file_name, file_id

        if placement.id == 0:
            raise WorldModelError("Map does not define a valid world model.")

        file_id = placement.id
        file_name = None
        if self.listfile is not None:
            file_name = self.listfile.get_by_id(file_id)
        return file_name or "unknown_{}.wmo".format(file_id), file_id

    def export_world_model(self, wmo_exporter, progress, export_dir):
        """
        Export the map-wide world model of the selected map.

        Args:
            wmo_exporter: Object with export(data, file_id, export_path,
                doodad_set_mask, progress) and optionally clear_cache().
            progress: ExportProgress for the single item.
            export_dir: Export root directory.

        Returns:
            str: Path of the exported model, or None on failure or
                cancellation.
        """
        progress.start()
        try:
            file_name, file_id = self._resolve_world_model()
            placement = self.wdt.world_model_placement

            base = os.path.splitext(file_name.replace('\\', '/'))[0]
            export_path = os.path.join(export_dir, *base.split('/')) + '.obj'

            if file_id and self.listfile is not None:
                data = self.archive.read_by_id(file_id)
            else:
                data = self.archive.read_by_name(file_name)

            wmo_exporter.export(data, file_id, export_path,
                                {placement.doodad_set_index: True}, progress)

            if progress.is_cancelled():
                return None

            progress.mark(file_name, True)
            return export_path
        except Exception as e:
            progress.mark('world model', False, str(e), traceback.format_exc())
            return None
        finally:
            clear_cache = getattr(wmo_exporter, 'clear_cache', None)
            if clear_cache is not None:
                clear_cache()
            progress.finish()
