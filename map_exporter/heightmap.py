"""
Tile heightmap reconstruction and R16 export.

An ADT tile stores its terrain as 256 MCNK chunks, each holding 145 height
samples in 17 interleaved rows: even rows carry 9 outer vertices, odd rows
carry 8 inner vertices offset by half a unit.  HeightmapBuilder lays these
samples onto a dense 257x257 grid that matches the vertex layout of the
exported terrain mesh, then fills the cells the samples do not cover by
interpolating from their neighbours.

HeightmapWriter serializes a grid as R16: side*side unsigned 16-bit
little-endian integers, row-major, no header.  Heights are normalised
against a caller-supplied HeightRange so that every tile of a batch export
can share one vertical scale.
"""

import logging
import math
import os

import numpy as np

from .constants import CHUNKS_PER_SIDE, VERTS_PER_CHUNK_SIDE

log = logging.getLogger(__name__)


_R16_MAX = 65535


# ---------------------------------------------------------------------------
# Height range
# ---------------------------------------------------------------------------

class HeightRange(object):
    """
    Immutable (min_height, max_height) pair.

    The empty range is (+inf, -inf) so that merging it with anything yields
    the other operand unchanged.
    """

    def __init__(self, min_height=math.inf, max_height=-math.inf):
        self._min = float(min_height)
        self._max = float(max_height)

    @property
    def min_height(self):
        return self._min

    @property
    def max_height(self):
        return self._max

    @property
    def is_empty(self):
        return self._min > self._max

    @property
    def span(self):
        if self.is_empty:
            return 0.0
        return self._max - self._min

    def include(self, value):
        """Return a new range extended to cover *value*."""
        return HeightRange(min(self._min, value), max(self._max, value))

    def merge(self, other):
        """Return the union of this range and *other*."""
        return HeightRange(min(self._min, other.min_height),
                           max(self._max, other.max_height))

    def to_dict(self):
        """Manifest representation; an empty range serializes as nulls."""
        if self.is_empty:
            return {'min_height': None, 'max_height': None, 'range': None}
        return {
            'min_height': self._min,
            'max_height': self._max,
            'range': self._max - self._min,
        }

    def __eq__(self, other):
        if not isinstance(other, HeightRange):
            return NotImplemented
        return self._min == other.min_height and self._max == other.max_height

    def __ne__(self, other):
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __repr__(self):
        return "HeightRange({}, {})".format(self._min, self._max)


class HeightGrid(object):
    """Dense square height grid produced by HeightmapBuilder."""

    def __init__(self, heights, is_set, height_range):
        """
        Args:
            heights: Flat float64 array, row-major, side*side entries.
            is_set: Flat bool array of the same length.
            height_range: HeightRange of the samples placed from chunk data
                (interpolated cells are not included).
        """
        self.heights = heights
        self.is_set = is_set
        self.height_range = height_range

    @property
    def side(self):
        return math.isqrt(len(self.heights))

    @property
    def unset_count(self):
        return int(np.count_nonzero(~self.is_set))

    def get(self, x, y):
        return float(self.heights[y * self.side + x])

    def as_2d(self):
        """Return the heights as a (side, side) array view, indexed [y, x]."""
        side = self.side
        return self.heights.reshape((side, side))


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

def _chunk_value(chunk, key):
    if isinstance(chunk, dict):
        return chunk.get(key)
    return getattr(chunk, key, None)


class HeightmapBuilder(object):
    """
    Reconstructs a dense tile heightmap from per-chunk MCVT samples.
    """

    def __init__(self, chunks_per_side=CHUNKS_PER_SIDE,
                 verts_per_chunk=VERTS_PER_CHUNK_SIDE):
        self.chunks_per_side = chunks_per_side
        self.verts_per_chunk = verts_per_chunk

    @property
    def size(self):
        """Grid side length (257 for a standard tile)."""
        return self.chunks_per_side * (self.verts_per_chunk - 1) + 1

    def build(self, chunks):
        """
        Build the height grid for one tile.

        Args:
            chunks: Flat row-major list of chunk records
                (index = chunk_row * 16 + chunk_col).  Each record is a dict
                (or object) with 'vertices' (interleaved height samples) and
                an optional 'position' whose z component is added to every
                sample.  Missing entries are skipped.

        Returns:
            HeightGrid
        """
        size = self.size
        step = self.verts_per_chunk - 1
        heights = np.zeros(size * size, dtype=np.float64)
        is_set = np.zeros(size * size, dtype=bool)
        min_height = math.inf
        max_height = -math.inf

        chunks = chunks or []
        for chunk_row in range(self.chunks_per_side):
            for chunk_col in range(self.chunks_per_side):
                chunk_index = chunk_row * self.chunks_per_side + chunk_col
                if chunk_index >= len(chunks):
                    continue
                chunk = chunks[chunk_index]
                if chunk is None:
                    continue

                samples = _chunk_value(chunk, 'vertices')
                if samples is None:
                    continue
                position = _chunk_value(chunk, 'position')
                z_offset = float(position[2]) if position is not None else 0.0

                sample_count = len(samples)
                idx = 0
                for row in range(self.verts_per_chunk):
                    is_short = row % 2 == 1
                    col_count = (self.verts_per_chunk // 2 if is_short
                                 else self.verts_per_chunk // 2 + 1)

                    for col in range(col_count):
                        if idx >= sample_count:
                            break

                        local_x = col * 2 + 1 if is_short else col * 2
                        global_x = chunk_col * step + local_x
                        global_y = chunk_row * step + row

                        if (global_x < size and global_y < size
                                and local_x < self.verts_per_chunk):
                            cell = global_y * size + global_x
                            if not is_set[cell]:
                                value = float(samples[idx]) + z_offset
                                heights[cell] = value
                                is_set[cell] = True
                                if value < min_height:
                                    min_height = value
                                if value > max_height:
                                    max_height = value

                        idx += 1

        self._fill_unset(heights, is_set, size)

        grid = HeightGrid(heights, is_set,
                          HeightRange(min_height, max_height))
        log.debug("Built %dx%d heightmap, %d cells unset, range %r",
                  size, size, grid.unset_count, grid.height_range)
        return grid

    @staticmethod
    def _fill_unset(heights, is_set, size):
        """
        Fill unset cells from their set neighbours, in row-major order.

        Even columns average the cells above and below; odd columns average
        the cells left and right.  A filled cell counts as set for the cells
        visited after it.  Cells with no set neighbour stay at 0.0.
        """
        for cell in np.flatnonzero(~is_set):
            y, x = divmod(int(cell), size)
            if x % 2 == 0:
                neighbours = ((x, y - 1), (x, y + 1))
            else:
                neighbours = ((x - 1, y), (x + 1, y))

            total = 0.0
            count = 0
            for nx, ny in neighbours:
                if 0 <= nx < size and 0 <= ny < size:
                    n_cell = ny * size + nx
                    if is_set[n_cell]:
                        total += heights[n_cell]
                        count += 1

            if count > 0:
                heights[cell] = total / count
                is_set[cell] = True


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------

class HeightmapWriter(object):
    """
    Writes a tile height grid as a raw 16-bit (R16) heightmap.

    The writer keeps the local height range of its own grid.  Batch exports
    merge the local ranges of every tile and pass the result to write() so
    all heightmaps share one scale.
    """

    def __init__(self, out=None):
        """
        Args:
            out: Destination .r16 path.  May be assigned later by the tile
                exporter once the output layout is known.
        """
        self.out = out
        self.grid = None

    def set_height_data_from_chunks(self, chunks, builder=None):
        """Build and store the grid for a tile's chunk list."""
        builder = builder or HeightmapBuilder()
        self.grid = builder.build(chunks)
        return self.grid

    @property
    def local_range(self):
        if self.grid is None:
            return HeightRange()
        return self.grid.height_range

    @property
    def min_height(self):
        return self.local_range.min_height

    @property
    def max_height(self):
        return self.local_range.max_height

    def encode(self, height_range=None):
        """
        Normalise the grid against *height_range* and pack it as R16 bytes.

        Args:
            height_range: HeightRange to normalise against.  Defaults to the
                grid's own local range.

        Returns:
            bytes: side*side little-endian uint16 values.

        Raises:
            ValueError: If no grid is set, or a height falls outside the
                supplied range.
        """
        if self.grid is None:
            raise ValueError("No height data set for {}".format(self.out))

        height_range = height_range or self.local_range
        heights = self.grid.heights

        side = math.isqrt(len(heights))
        assert side * side == len(heights), "height grid is not square"

        span = height_range.span
        if span <= 0.0:
            return np.zeros(len(heights), dtype='<u2').tobytes()

        normalised = (heights - height_range.min_height) / span
        values = np.floor(normalised * _R16_MAX + 0.5)

        if values.min() < 0 or values.max() > _R16_MAX:
            raise ValueError(
                "Heights in {} fall outside range [{}, {}]".format(
                    self.out, height_range.min_height,
                    height_range.max_height))

        return values.astype('<u2').tobytes()

    def write(self, height_range=None, overwrite=True):
        """
        Write the R16 heightmap to self.out.

        Args:
            height_range: HeightRange to normalise against (see encode()).
            overwrite: When False, an existing file is left untouched.

        Returns:
            bool: True if the file was written.
        """
        if not overwrite and os.path.exists(self.out):
            log.debug("Skipping existing heightmap: %s", self.out)
            return False

        data = self.encode(height_range)

        parent = os.path.dirname(self.out)
        if parent:
            os.makedirs(parent, exist_ok=True)

        with open(self.out, 'wb') as f:
            f.write(data)

        log.debug("Wrote R16 heightmap: %s (%d bytes)", self.out, len(data))
        return True
