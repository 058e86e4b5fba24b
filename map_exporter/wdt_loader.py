"""
WDT (World Data Table) reader for map tile masks and world models.

A WDT lists which of the 64x64 ADT tiles of a map exist and, for maps made
of a single large WMO (instances, some cities), where that world model is
placed.

WDT chunk order:
  1. MVER  - Version chunk (version 18)
  2. MPHD  - Map header flags
  3. MAIN  - 64x64 tile presence grid, stored row-major by y
  4. MWMO  - World model filename (empty for terrain maps)
  5. MODF  - World model placement (only when MWMO is non-empty)

All chunk magics are reversed in the binary file (e.g. 'REVM' for MVER).
"""

import logging
import struct
from io import BytesIO

from .constants import MAP_SIZE, MAP_SIZE_SQ, tile_index

log = logging.getLogger(__name__)


# Chunk magic strings (reversed per WoW convention)
_MAGIC_MVER = b'REVM'
_MAGIC_MPHD = b'DHPM'
_MAGIC_MAIN = b'NIAM'
_MAGIC_MWMO = b'OMWM'
_MAGIC_MODF = b'FDOM'

_MVER_DATA_SIZE = 4
_MPHD_DATA_SIZE = 32
_MAIN_ENTRY_SIZE = 8                      # uint32 flags + uint32 asyncId
_MAIN_DATA_SIZE = MAP_SIZE_SQ * _MAIN_ENTRY_SIZE
_MODF_ENTRY_SIZE = 64

_WDT_VERSION = 18

# MAIN entry flag indicating an ADT tile exists at this coordinate
_TILE_EXISTS_FLAG = 1

# nameId, uniqueId, position[3], rotation[3], extents[6],
# flags, doodadSet, nameSet, scale
_MODF_STRUCT = struct.Struct('<II3f3f6fHHHH')


class WorldModelPlacement(object):
    """Placement of a map-wide WMO, from the WDT MODF chunk."""

    def __init__(self, id, unique_id, position, rotation, extents_min,
                 extents_max, flags, doodad_set_index, name_set, scale):
        self.id = id
        self.unique_id = unique_id
        self.position = position
        self.rotation = rotation
        self.extents_min = extents_min
        self.extents_max = extents_max
        self.flags = flags
        self.doodad_set_index = doodad_set_index
        self.name_set = name_set
        self.scale = scale

    @classmethod
    def unpack(cls, data):
        values = _MODF_STRUCT.unpack(data[:_MODF_ENTRY_SIZE])
        return cls(
            id=values[0],
            unique_id=values[1],
            position=tuple(values[2:5]),
            rotation=tuple(values[5:8]),
            extents_min=tuple(values[8:11]),
            extents_max=tuple(values[11:14]),
            flags=values[14],
            doodad_set_index=values[15],
            name_set=values[16],
            scale=values[17],
        )

    def pack(self):
        return _MODF_STRUCT.pack(
            self.id, self.unique_id,
            *(tuple(self.position) + tuple(self.rotation)
              + tuple(self.extents_min) + tuple(self.extents_max)
              + (self.flags, self.doodad_set_index, self.name_set,
                 self.scale)))


class WDTData(object):
    """Parsed WDT contents."""

    def __init__(self, tiles, mphd_flags=0, version=_WDT_VERSION,
                 world_model=None, world_model_placement=None):
        """
        Args:
            tiles: List of 4096 MAIN flag values indexed by
                tile_x * 64 + tile_y.
            mphd_flags: MPHD flags value.
            version: File version.
            world_model: MWMO filename, or None.
            world_model_placement: WorldModelPlacement, or None.
        """
        self.tiles = tiles
        self.mphd_flags = mphd_flags
        self.version = version
        self.world_model = world_model
        self.world_model_placement = world_model_placement

    def has_tile(self, index):
        return bool(self.tiles[index] & _TILE_EXISTS_FLAG)

    @property
    def active_indices(self):
        return [i for i, flags in enumerate(self.tiles)
                if flags & _TILE_EXISTS_FLAG]


def load_wdt(data):
    """
    Parse WDT bytes.

    Args:
        data: Raw WDT file contents.

    Returns:
        WDTData

    Raises:
        ValueError: If the data cannot be parsed or has an invalid version.
    """
    buf = BytesIO(data)
    version = None
    mphd_flags = 0
    tiles = None
    world_model = None
    placement = None

    while buf.tell() < len(data):
        magic_bytes = buf.read(4)
        if len(magic_bytes) < 4:
            break
        size_bytes = buf.read(4)
        if len(size_bytes) < 4:
            break

        chunk_size = struct.unpack('<I', size_bytes)[0]
        chunk_data_start = buf.tell()

        if magic_bytes == _MAGIC_MVER:
            if chunk_size < _MVER_DATA_SIZE:
                raise ValueError(
                    "MVER chunk too small: {} bytes".format(chunk_size))
            version = struct.unpack('<I', buf.read(4))[0]
            if version != _WDT_VERSION:
                raise ValueError(
                    "Unsupported WDT version: {}. Expected {}.".format(
                        version, _WDT_VERSION))

        elif magic_bytes == _MAGIC_MPHD:
            if chunk_size < 4:
                raise ValueError(
                    "MPHD chunk too small: {} bytes".format(chunk_size))
            mphd_flags = struct.unpack('<I', buf.read(4))[0]
            log.debug("MPHD flags: 0x%X", mphd_flags)

        elif magic_bytes == _MAGIC_MAIN:
            if chunk_size < _MAIN_DATA_SIZE:
                raise ValueError(
                    "MAIN chunk too small: {} bytes, expected {}".format(
                        chunk_size, _MAIN_DATA_SIZE))

            tiles = [0] * MAP_SIZE_SQ
            for y in range(MAP_SIZE):
                for x in range(MAP_SIZE):
                    entry_data = buf.read(_MAIN_ENTRY_SIZE)
                    if len(entry_data) < _MAIN_ENTRY_SIZE:
                        raise ValueError(
                            "Unexpected end of MAIN chunk at tile ({}, {})".format(
                                x, y))
                    flags, _async_id = struct.unpack('<II', entry_data)
                    tiles[tile_index(x, y)] = flags

        elif magic_bytes == _MAGIC_MWMO:
            raw = buf.read(chunk_size)
            name = raw.split(b'\x00', 1)[0].decode('utf-8', errors='replace')
            world_model = name or None

        elif magic_bytes == _MAGIC_MODF:
            if chunk_size >= _MODF_ENTRY_SIZE:
                placement = WorldModelPlacement.unpack(
                    buf.read(_MODF_ENTRY_SIZE))

        buf.seek(chunk_data_start + chunk_size)

    if version is None:
        raise ValueError("No MVER chunk found in WDT data")
    if tiles is None:
        raise ValueError("No MAIN chunk found in WDT data")

    wdt = WDTData(tiles, mphd_flags, version, world_model, placement)
    log.debug("WDT: %d active tiles, world model %s",
              len(wdt.active_indices), world_model)
    return wdt


# ---------------------------------------------------------------------------
# Writer (fixtures, round-tripping)
# ---------------------------------------------------------------------------

def _write_chunk(buf, magic, data):
    buf.write(magic)
    buf.write(struct.pack('<I', len(data)))
    buf.write(data)


def create_wdt(active_coords, mphd_flags=0, world_model=None,
               world_model_placement=None):
    """
    Generate WDT bytes.

    Args:
        active_coords: list of (x, y) tuples where 0 <= x, y < 64.
        mphd_flags: MPHD flags value.
        world_model: Optional WMO filename for the MWMO chunk.
        world_model_placement: Optional WorldModelPlacement for MODF.

    Returns:
        bytes: Complete WDT file content.

    Raises:
        ValueError: If any coordinate is outside the valid 0..63 range.
    """
    for x, y in active_coords:
        if not (0 <= x < MAP_SIZE and 0 <= y < MAP_SIZE):
            raise ValueError(
                "Tile coordinate ({}, {}) out of range. "
                "Valid range is 0..63 for both x and y.".format(x, y)
            )

    active_set = set(active_coords)
    buf = BytesIO()

    _write_chunk(buf, _MAGIC_MVER, struct.pack('<I', _WDT_VERSION))
    _write_chunk(buf, _MAGIC_MPHD,
                 struct.pack('<I', mphd_flags) + b'\x00' * (_MPHD_DATA_SIZE - 4))

    main = BytesIO()
    for y in range(MAP_SIZE):
        for x in range(MAP_SIZE):
            flags = _TILE_EXISTS_FLAG if (x, y) in active_set else 0
            main.write(struct.pack('<II', flags, 0))
    _write_chunk(buf, _MAGIC_MAIN, main.getvalue())

    mwmo = world_model.encode('utf-8') + b'\x00' if world_model else b''
    _write_chunk(buf, _MAGIC_MWMO, mwmo)

    if world_model_placement is not None:
        _write_chunk(buf, _MAGIC_MODF, world_model_placement.pack())

    return buf.getvalue()
