"""
Per-tile terrain exporter.

AdtTileExporter turns one ADT tile into a terrain mesh (OBJ or glTF
binary), an optional game object placement CSV, and feeds the tile's
chunks to a HeightmapWriter when heightmap export is enabled.

Terrain mesh layout follows the MCVT vertex order: each chunk contributes
145 vertices (9 outer + 8 inner per row pair) and four triangles around
every inner vertex that is not inside a hole.
"""

import csv
import logging
import os

from .adt_reader import chunk_has_hole, read_adt_terrain
from .constants import (TILE_SIZE, UNIT_SIZE, UNIT_SIZE_HALF,
                        VERTS_PER_CHUNK, VERTS_PER_CHUNK_SIDE, tile_coords)
from .face_culler import cull_back_faces
from .mesh_writers import GLBWriter, OBJWriter, TerrainMesh

log = logging.getLogger(__name__)


_OUTER_STRIDE = 9
_INNER_STRIDE = 8
_ROW_PAIR = _OUTER_STRIDE + _INNER_STRIDE   # 17


class MeshCache(object):
    """
    Parsed-tile cache shared by the tile exporter for one process.

    Export jobs clear it once when they finish.
    """

    def __init__(self):
        self._entries = {}

    def get(self, key):
        return self._entries.get(key)

    def put(self, key, value):
        self._entries[key] = value

    def clear(self):
        if self._entries:
            log.debug("Clearing mesh cache (%d entries)", len(self._entries))
        self._entries = {}

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key):
        return key in self._entries


def adt_path(map_dir, tile_x, tile_y):
    """Archive path of a tile's root ADT."""
    return "world/maps/{0}/{0}_{1:d}_{2:d}.adt".format(map_dir, tile_x, tile_y)


def build_terrain_mesh(chunks, cull_faces=False):
    """
    Build the tile terrain mesh from parsed MCNK chunks.

    Vertices are Y-up: x runs along the chunk columns, y is height, z runs
    along the chunk rows.  Chunks without height data are skipped.

    Args:
        chunks: Chunk dicts from read_adt_terrain().
        cull_faces: Run back-face culling on each chunk's triangles.

    Returns:
        TerrainMesh
    """
    mesh = TerrainMesh()

    first = next((c for c in chunks if c and c.get('vertices')), None)
    if first is None:
        return mesh
    origin_x = first['position'][1]
    origin_z = first['position'][0]

    for chunk_index, chunk in enumerate(chunks):
        if not chunk or not chunk.get('vertices'):
            continue

        base = mesh.vertex_count
        chunk_x, chunk_y, chunk_z = chunk['position']
        heights = chunk['vertices']
        normals = chunk.get('normals')

        idx = 0
        for row in range(VERTS_PER_CHUNK_SIDE):
            is_short = row % 2 == 1
            col_count = _INNER_STRIDE if is_short else _OUTER_STRIDE

            for col in range(col_count):
                vx = chunk_y - col * UNIT_SIZE
                vy = heights[idx] + chunk_z
                vz = chunk_x - row * UNIT_SIZE_HALF
                if is_short:
                    vx -= UNIT_SIZE_HALF

                mesh.vertices.extend((vx, vy, vz))

                if normals:
                    n = normals[idx]
                    mesh.normals.extend((n[0] / 127.0, n[1] / 127.0, n[2] / 127.0))
                else:
                    mesh.normals.extend((0.0, 1.0, 0.0))

                mesh.uvs.extend(((origin_x - vx) / TILE_SIZE,
                                 (origin_z - vz) / TILE_SIZE))
                idx += 1

        indices = []
        cell_x = 0
        cell_y = 0
        j = _OUTER_STRIDE
        while j < VERTS_PER_CHUNK:
            if cell_x >= _INNER_STRIDE:
                cell_x = 0
                cell_y += 1

            if not chunk_has_hole(chunk, cell_x, cell_y):
                centre = base + j
                indices.extend((centre, centre - 9, centre + 8))
                indices.extend((centre, centre - 8, centre - 9))
                indices.extend((centre, centre + 9, centre - 8))
                indices.extend((centre, centre + 8, centre + 9))

            if (j + 1) % _ROW_PAIR == 0:
                j += _OUTER_STRIDE
            j += 1
            cell_x += 1

        if cull_faces:
            indices = cull_back_faces(indices, mesh.vertices)

        mesh.groups.append(("chunk_{}".format(chunk_index), indices))

    return mesh


def write_game_objects_csv(filepath, game_objects):
    """Write game object placements as a semicolon separated CSV."""
    parent = os.path.dirname(filepath)
    if parent:
        os.makedirs(parent, exist_ok=True)

    with open(filepath, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f, delimiter=';')
        writer.writerow(['ModelFile', 'PositionX', 'PositionY', 'PositionZ',
                         'RotationX', 'RotationY', 'RotationZ', 'RotationW',
                         'ScaleFactor', 'ModelId', 'Type'])
        for obj in game_objects:
            writer.writerow([obj.model_path] + list(obj.position)
                            + list(obj.rotation)
                            + [obj.scale, obj.id, 'gobj'])


class AdtTileExporter(object):
    """
    Exports a single ADT tile from an archive reader.

    Implements the per-tile exporter interface used by
    TileExportOrchestrator.
    """

    def __init__(self, archive, mesh_cache=None, export_format='OBJ',
                 cull_faces=False):
        """
        Args:
            archive: Archive reader (read_by_name()).
            mesh_cache: MeshCache for parsed tiles; a private one is created
                when omitted.
            export_format: 'OBJ' or 'GLTF'.
            cull_faces: Run back-face culling on the terrain mesh.
        """
        self.archive = archive
        self.mesh_cache = mesh_cache if mesh_cache is not None else MeshCache()
        self.export_format = export_format.upper()
        self.cull_faces = cull_faces

    def load_chunks(self, map_dir, tile_x, tile_y):
        """Read and parse a tile's terrain chunks, through the cache."""
        path = adt_path(map_dir, tile_x, tile_y)
        chunks = self.mesh_cache.get(path)
        if chunks is None:
            chunks = read_adt_terrain(self.archive.read_by_name(path))
            self.mesh_cache.put(path, chunks)
        return chunks

    def export_tile(self, map_id, map_dir, tile_index, output_dir, quality,
                    game_objects=None, progress=None, heightmap_writer=None):
        """
        Export one tile.

        Args:
            map_id: Map ID (for logging and file headers).
            map_dir: Lower-case map directory name.
            tile_index: Flat tile index (tile_x * 64 + tile_y).
            output_dir: Directory to write into.
            quality: Export quality setting, recorded in the file header.
            game_objects: Optional iterable of GameObjectRecord in the tile.
            progress: Optional ExportProgress for sub-step reporting.
            heightmap_writer: Optional HeightmapWriter to populate.

        Returns:
            dict: {'type': export type tag, 'path': mesh file path}

        Raises:
            AssetNotFoundError: If the ADT is missing.
            ValueError: If the ADT cannot be parsed.
        """
        tile_x, tile_y = tile_coords(tile_index)
        prefix = "adt_{}_{}".format(tile_x, tile_y)

        chunks = self.load_chunks(map_dir, tile_x, tile_y)

        if progress is not None:
            progress.set_current_task_name(
                "Tile {}_{}: building terrain mesh".format(tile_x, tile_y))

        mesh = build_terrain_mesh(chunks, self.cull_faces)

        if self.export_format == 'GLTF':
            mesh_path = os.path.join(output_dir, prefix + '.glb')
            GLBWriter(mesh_path).write(mesh, extras={
                'map_id': map_id, 'tile': [tile_x, tile_y], 'quality': quality})
            export_type = 'ADT_GLB'
        else:
            mesh_path = os.path.join(output_dir, prefix + '.obj')
            OBJWriter(mesh_path).write(mesh, header=[
                "map {} ({}) tile {}_{}".format(map_dir, map_id, tile_x, tile_y),
                "quality {}".format(quality),
            ])
            export_type = 'ADT_OBJ'

        if game_objects:
            csv_path = os.path.join(output_dir, prefix + '_GameObjects.csv')
            write_game_objects_csv(csv_path, game_objects)

        if heightmap_writer is not None:
            heightmap_writer.out = os.path.join(output_dir, prefix + '.r16')
            heightmap_writer.set_height_data_from_chunks(chunks)

        log.info("Exported tile %d_%d of %s: %d vertices, %d triangles",
                 tile_x, tile_y, map_dir, mesh.vertex_count,
                 mesh.triangle_count)
        return {'type': export_type, 'path': mesh_path}
