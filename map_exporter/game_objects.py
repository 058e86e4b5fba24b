"""
Index of world-placed game objects, grouped by owning map.

The index joins the GameObjects table (placements) with
GameObjectDisplayInfo (display model per DisplayID).  It is built lazily on
first use and then kept for the lifetime of the index object; sessions and
export jobs share one instance.

GameObjects.dbc is not part of the stock client data.  It has to be added to
the extracted data directory or a patch MPQ; when it is missing or corrupt the
index stays empty and tiles are exported without objects.
"""

import logging

from .dbc_reader import (GAMEOBJECTS_LAYOUT, GAMEOBJECT_DISPLAY_INFO_LAYOUT,
                         read_table)
from .exceptions import AssetNotFoundError

log = logging.getLogger(__name__)


GAMEOBJECTS_TABLE = 'DBFilesClient/GameObjects.dbc'
GAMEOBJECT_DISPLAY_INFO_TABLE = 'DBFilesClient/GameObjectDisplayInfo.dbc'


class GameObjectRecord(object):
    """A placed game object with its display model resolved."""

    def __init__(self, id, owner_id, display_id, position, rotation=None,
                 scale=1.0, name='', model_path=None):
        self.id = id
        self.owner_id = owner_id
        self.display_id = display_id
        self.position = position
        self.rotation = rotation or (0.0, 0.0, 0.0, 1.0)
        self.scale = scale
        self.name = name
        self.model_path = model_path

    def __repr__(self):
        return "GameObjectRecord(id={}, map={}, model={!r})".format(
            self.id, self.owner_id, self.model_path)


class GameObjectIndex(object):
    """
    Lazily built owner-map -> game objects index.
    """

    def __init__(self, table_loader):
        """
        Args:
            table_loader: Callable returning (objects_table, display_table),
                both DBCTable-like objects exposing get_all_rows() and
                get_row().  Called at most once per build.
        """
        self._table_loader = table_loader
        self._index = None

    @classmethod
    def from_archive(cls, archive):
        """Index backed by the DBC tables of an archive reader."""
        def load():
            return (read_table(archive, GAMEOBJECTS_TABLE, GAMEOBJECTS_LAYOUT),
                    read_table(archive, GAMEOBJECT_DISPLAY_INFO_TABLE,
                               GAMEOBJECT_DISPLAY_INFO_LAYOUT))
        return cls(load)

    @property
    def is_built(self):
        return self._index is not None

    def build_if_absent(self):
        """Build the index unless it already exists."""
        if self._index is not None:
            return

        try:
            objects_table, display_table = self._table_loader()
        except (AssetNotFoundError, ValueError) as e:
            # Cached empty so later tiles do not retry the load
            log.warning("Game object tables unavailable, exporting without "
                        "game objects: %s", e)
            self._index = {}
            return

        index = {}
        unresolved = 0
        for row in objects_table.get_all_rows().values():
            display = display_table.get_row(row['DisplayID'])
            model_path = display.get('ModelName') if display else None
            if not model_path:
                unresolved += 1
                continue

            record = GameObjectRecord(
                id=row['ID'],
                owner_id=row['OwnerID'],
                display_id=row['DisplayID'],
                position=tuple(row['Pos']),
                rotation=tuple(row['Rot']),
                scale=row['Scale'] or 1.0,
                name=row.get('Name', ''),
                model_path=model_path,
            )
            index.setdefault(record.owner_id, []).append(record)

        self._index = index
        log.info("Indexed game objects for %d maps (%d unresolved displays)",
                 len(index), unresolved)

    def clear(self):
        self._index = None

    def collect(self, map_id, predicate):
        """
        Return the game objects of *map_id* accepted by *predicate*.

        Args:
            map_id: Owning map ID.
            predicate: Callable taking a GameObjectRecord.

        Returns:
            list of GameObjectRecord, in table order.
        """
        self.build_if_absent()
        return [obj for obj in self._index.get(map_id, ()) if predicate(obj)]
