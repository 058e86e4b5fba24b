"""
World-space constants shared by the map exporter.

All distances are in yards.  A map is a 64x64 grid of ADT tiles, each tile
is a 16x16 grid of MCNK chunks, and each chunk carries a 9x9 outer plus
8x8 inner height grid (145 samples).
"""

# Map grid
MAP_SIZE = 64
MAP_SIZE_SQ = MAP_SIZE * MAP_SIZE         # 4096 tiles

# Tile / chunk dimensions
TILE_SIZE = (51200.0 / 3.0) / 32.0        # ~533.33 yards per ADT tile
MAP_OFFSET = 17066                        # World origin to map corner
CHUNK_SIZE = TILE_SIZE / 16.0             # ~33.33 yards per MCNK
UNIT_SIZE = CHUNK_SIZE / 8.0              # Distance between outer vertices
UNIT_SIZE_HALF = UNIT_SIZE / 2.0

CHUNKS_PER_SIDE = 16
CHUNKS_PER_TILE = CHUNKS_PER_SIDE * CHUNKS_PER_SIDE    # 256

# MCVT interleaved rows: 17 rows alternating 9 (outer) and 8 (inner) samples
VERTS_PER_CHUNK_SIDE = 17
VERTS_PER_CHUNK = 145


def tile_coords(tile_index):
    """Split a flat tile index into (tile_x, tile_y)."""
    return tile_index // MAP_SIZE, tile_index % MAP_SIZE


def tile_index(tile_x, tile_y):
    """Join (tile_x, tile_y) into a flat tile index."""
    return tile_x * MAP_SIZE + tile_y
