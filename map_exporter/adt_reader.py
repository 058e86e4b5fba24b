"""
Terrain reader for ADT (Aderan Terrain) tiles, WotLK 3.3.5a layout.

Only the data needed for terrain mesh and heightmap export is decoded:
the MCNK header (flags, indices, holes, position) plus the MCVT heights and
MCNR normals of each of the 256 chunks.

MCNK sub-chunks are located through the offsets stored in the MCNK header
(relative to the start of the MCNK chunk) rather than by walking them,
because MCNR is followed by 13 padding bytes that its size field does not
cover.
"""

import logging
import struct
from io import BytesIO

from .constants import CHUNKS_PER_SIDE, CHUNKS_PER_TILE, VERTS_PER_CHUNK

log = logging.getLogger(__name__)


_MAGIC_MVER = b'REVM'
_MAGIC_MCNK = b'KNCM'
_MAGIC_MCVT = b'TVCM'
_MAGIC_MCNR = b'RNCM'

_ADT_VERSION = 18
_CHUNK_HEADER_SIZE = 8            # 4-byte magic + 4-byte uint32 size
_MCNK_HEADER_SIZE = 128
_MCVT_DATA_SIZE = VERTS_PER_CHUNK * 4
_MCNR_DATA_SIZE = VERTS_PER_CHUNK * 3
_MCNR_PADDING = 13

# flags, indexX, indexY, nLayers, nDoodadRefs, ofsHeight, ofsNormal,
# ofsLayer, ofsRefs, ofsAlpha, sizeAlpha, ofsShadow, sizeShadow, areaId,
# nMapObjRefs, holes, pad, lowQualityTexMap, predTex, noEffectDoodad,
# ofsSndEmitters, nSndEmitters, ofsLiquid, sizeLiquid, position[3],
# ofsMCCV, ofsMCLV, unused
_MCNK_HEADER = struct.Struct('<15IHH16s6I3f3I')

_MCNK_FLAG_HIGH_RES_HOLES = 0x10000


def _parse_mcnk(data, chunk_start):
    """Decode one MCNK; *chunk_start* points at its magic."""
    header_start = chunk_start + _CHUNK_HEADER_SIZE
    values = _MCNK_HEADER.unpack_from(data, header_start)

    flags, index_x, index_y = values[0], values[1], values[2]
    ofs_height, ofs_normal = values[5], values[6]
    area_id = values[13]
    holes_low_res = values[15]
    position = tuple(values[24:27])

    chunk = {
        'flags': flags,
        'index_x': index_x,
        'index_y': index_y,
        'area_id': area_id,
        'holes_low_res': holes_low_res,
        'position': position,
        'vertices': None,
        'normals': None,
    }

    if ofs_height:
        sub = chunk_start + ofs_height
        if data[sub:sub + 4] == _MAGIC_MCVT:
            chunk['vertices'] = list(struct.unpack_from(
                '<{}f'.format(VERTS_PER_CHUNK), data, sub + _CHUNK_HEADER_SIZE))

    if ofs_normal:
        sub = chunk_start + ofs_normal
        if data[sub:sub + 4] == _MAGIC_MCNR:
            raw = struct.unpack_from('<{}b'.format(VERTS_PER_CHUNK * 3), data,
                                     sub + _CHUNK_HEADER_SIZE)
            chunk['normals'] = [raw[i:i + 3] for i in range(0, len(raw), 3)]

    return chunk


def read_adt_terrain(data):
    """
    Parse the terrain chunks of an ADT tile.

    Args:
        data: Raw ADT file contents.

    Returns:
        list: 256 chunk dicts in file (row-major) order with keys
            'flags', 'index_x', 'index_y', 'area_id', 'holes_low_res',
            'position' (x, y, z), 'vertices' (145 floats or None) and
            'normals' (145 int8 triples or None).

    Raises:
        ValueError: If the data has no MCNK chunks or a bad version.
    """
    chunks = []
    pos = 0
    data_len = len(data)

    while pos + _CHUNK_HEADER_SIZE <= data_len:
        magic = data[pos:pos + 4]
        size = struct.unpack_from('<I', data, pos + 4)[0]

        if magic == _MAGIC_MVER:
            version = struct.unpack_from('<I', data, pos + _CHUNK_HEADER_SIZE)[0]
            if version != _ADT_VERSION:
                raise ValueError(
                    "Unsupported ADT version: {}. Expected {}.".format(
                        version, _ADT_VERSION))

        elif magic == _MAGIC_MCNK:
            if size < _MCNK_HEADER_SIZE:
                raise ValueError(
                    "MCNK chunk too small: {} bytes".format(size))
            chunks.append(_parse_mcnk(data, pos))

        pos += _CHUNK_HEADER_SIZE + size

    if not chunks:
        raise ValueError("No MCNK chunks found in ADT data")

    if len(chunks) != CHUNKS_PER_TILE:
        log.warning("ADT has %d MCNK chunks, expected %d",
                    len(chunks), CHUNKS_PER_TILE)

    log.debug("Read %d terrain chunks", len(chunks))
    return chunks


def chunk_has_hole(chunk, cell_x, cell_y):
    """
    Return True if the 8x8 cell (cell_x, cell_y) of *chunk* is a hole.

    Low-res holes cover 2x2 cells per bit in a 4x4 mask.  High-res hole
    masks are not present in 3.3.5a tiles and are treated as no hole.
    """
    if chunk.get('flags', 0) & _MCNK_FLAG_HIGH_RES_HOLES:
        return False
    bit = 1 << ((cell_x // 2) + (cell_y // 2) * 4)
    return bool(chunk.get('holes_low_res', 0) & bit)


# ---------------------------------------------------------------------------
# Writer (fixtures, round-tripping)
# ---------------------------------------------------------------------------

def create_adt_terrain(chunks):
    """
    Build minimal terrain-only ADT bytes (MVER + 256 MCNK with MCVT/MCNR).

    Args:
        chunks: 256 chunk dicts as returned by read_adt_terrain(); missing
            'vertices' are written as zeros, missing 'normals' as +Z.

    Returns:
        bytes
    """
    buf = BytesIO()
    buf.write(_MAGIC_MVER)
    buf.write(struct.pack('<II', 4, _ADT_VERSION))

    for idx, chunk in enumerate(chunks):
        vertices = chunk.get('vertices') or [0.0] * VERTS_PER_CHUNK
        normals = chunk.get('normals') or [(0, 0, 127)] * VERTS_PER_CHUNK
        position = chunk.get('position', (0.0, 0.0, 0.0))

        ofs_height = _CHUNK_HEADER_SIZE + _MCNK_HEADER_SIZE
        ofs_normal = ofs_height + _CHUNK_HEADER_SIZE + _MCVT_DATA_SIZE

        header = _MCNK_HEADER.pack(
            chunk.get('flags', 0),
            chunk.get('index_x', idx % CHUNKS_PER_SIDE),
            chunk.get('index_y', idx // CHUNKS_PER_SIDE),
            0, 0, ofs_height, ofs_normal, 0, 0, 0, 0, 0, 0,
            chunk.get('area_id', 0), 0,
            chunk.get('holes_low_res', 0), 0, b'\x00' * 16,
            0, 0, 0, 0, 0, 0,
            position[0], position[1], position[2],
            0, 0, 0)

        mcvt = struct.pack('<{}f'.format(VERTS_PER_CHUNK), *vertices)
        flat_normals = [c for n in normals for c in n]
        mcnr = struct.pack('<{}b'.format(VERTS_PER_CHUNK * 3), *flat_normals)

        body = (header
                + _MAGIC_MCVT + struct.pack('<I', _MCVT_DATA_SIZE) + mcvt
                + _MAGIC_MCNR + struct.pack('<I', _MCNR_DATA_SIZE) + mcnr
                + b'\x00' * _MCNR_PADDING)

        buf.write(_MAGIC_MCNK)
        buf.write(struct.pack('<I', len(body)))
        buf.write(body)

    return buf.getvalue()
