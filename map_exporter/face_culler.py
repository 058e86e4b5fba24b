"""
Back-face culling for exported triangle meshes.

Single-sided materials are often authored as two triangles sharing the same
three vertices with opposite winding, one for each side of the surface.
Exporters that do not understand the material flags end up with z-fighting
duplicates.  cull_back_faces() collapses every such front/back pair to one
triangle and drops zero-area triangles.

Vertices are a flat [x, y, z, x, y, z, ...] sequence; triangle indices are
a flat sequence read three at a time.  Anything that cannot be read as a
valid triangle is counted as malformed and left in the output.
"""

import logging
import math

log = logging.getLogger(__name__)


# Normals shorter than this come from collinear vertices.
_DEGENERATE_LENGTH = 1e-6

# Dot product below which two triangles on the same vertex set are treated
# as the front and back face of one surface.
_OPPOSITE_DOT = -0.8


class CullStats(object):
    """Counters collected by cull_back_faces_with_stats()."""

    def __init__(self):
        self.input_triangles = 0
        self.output_triangles = 0
        self.malformed = 0
        self.degenerate = 0
        self.back_faces = 0

    def __repr__(self):
        return ("CullStats(in={}, out={}, malformed={}, degenerate={}, "
                "back_faces={})".format(
                    self.input_triangles, self.output_triangles,
                    self.malformed, self.degenerate, self.back_faces))


def _facing_score(normal):
    """Prefer +Z, then +Y, then +X facing triangles."""
    return normal[2] * 4 + normal[1] * 2 + normal[0]


def cull_back_faces_with_stats(triangle_indices, vertices):
    """
    Cull back-facing duplicate triangles and report what was removed.

    Args:
        triangle_indices: Flat sequence of vertex indices, three per triangle.
        vertices: Flat sequence of vertex coordinates, three per vertex.

    Returns:
        tuple: (list of culled indices, CullStats)
    """
    stats = CullStats()

    if triangle_indices is None:
        return [], stats
    if vertices is None or len(triangle_indices) == 0:
        return list(triangle_indices), stats

    culled = []
    candidates = {}     # sorted index triple -> (indices, unit normal)
    vertex_len = len(vertices)
    usable = len(triangle_indices) - len(triangle_indices) % 3

    for i in range(0, usable, 3):
        i0 = triangle_indices[i]
        i1 = triangle_indices[i + 1]
        i2 = triangle_indices[i + 2]
        stats.input_triangles += 1

        # Out-of-range references are passed through untouched
        if (min(i0, i1, i2) < 0 or i0 * 3 + 2 >= vertex_len
                or i1 * 3 + 2 >= vertex_len or i2 * 3 + 2 >= vertex_len):
            culled.extend((i0, i1, i2))
            stats.malformed += 1
            continue

        key = tuple(sorted((i0, i1, i2)))

        v0x, v0y, v0z = vertices[i0 * 3], vertices[i0 * 3 + 1], vertices[i0 * 3 + 2]
        e1x = vertices[i1 * 3] - v0x
        e1y = vertices[i1 * 3 + 1] - v0y
        e1z = vertices[i1 * 3 + 2] - v0z
        e2x = vertices[i2 * 3] - v0x
        e2y = vertices[i2 * 3 + 1] - v0y
        e2z = vertices[i2 * 3 + 2] - v0z

        nx = e1y * e2z - e1z * e2y
        ny = e1z * e2x - e1x * e2z
        nz = e1x * e2y - e1y * e2x

        length = math.sqrt(nx * nx + ny * ny + nz * nz)
        if length < _DEGENERATE_LENGTH:
            stats.degenerate += 1
            continue

        normal = (nx / length, ny / length, nz / length)

        existing = candidates.get(key)
        if existing is None:
            candidates[key] = ((i0, i1, i2), normal)
            continue

        existing_normal = existing[1]
        dot = (normal[0] * existing_normal[0] + normal[1] * existing_normal[1]
               + normal[2] * existing_normal[2])

        if dot < _OPPOSITE_DOT:
            stats.back_faces += 1
            if _facing_score(normal) > _facing_score(existing_normal):
                candidates[key] = ((i0, i1, i2), normal)
        else:
            # Same vertex set but not a front/back pair: keep both
            culled.extend((i0, i1, i2))

    # Trailing indices that do not form a whole triangle
    if usable < len(triangle_indices):
        culled.extend(triangle_indices[usable:])
        stats.malformed += 1

    for indices, _normal in candidates.values():
        culled.extend(indices)

    stats.output_triangles = len(culled) // 3
    return culled, stats


def cull_back_faces(triangle_indices, vertices):
    """
    Cull back-facing triangles so only one face per surface remains.

    Triangles emitted directly during the scan keep their relative order;
    resolved front/back candidates are appended afterwards in the order
    their vertex sets were first seen.  Triangles referencing negative or
    out-of-range vertices are emitted unchanged, and a trailing partial
    triple is copied as-is right before the candidates.

    Args:
        triangle_indices: Flat sequence of vertex indices, three per triangle.
        vertices: Flat sequence of vertex coordinates, three per vertex.

    Returns:
        list: Filtered triangle indices.
    """
    culled, stats = cull_back_faces_with_stats(triangle_indices, vertices)
    if stats.back_faces or stats.degenerate:
        log.debug("Face culling: %r", stats)
    return culled
