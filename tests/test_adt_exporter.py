"""
Tests for ADT terrain parsing, terrain mesh building and the per-tile
exporter (OBJ, glTF, game object CSV, heightmap hand-off).
"""

import csv
import os
import shutil
import sys
import tempfile
import traceback

import pygltflib

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from map_exporter.adt_exporter import (AdtTileExporter, MeshCache, adt_path,
                                       build_terrain_mesh)
from map_exporter.adt_reader import (chunk_has_hole, create_adt_terrain,
                                     read_adt_terrain)
from map_exporter.constants import tile_index
from map_exporter.exceptions import AssetNotFoundError
from map_exporter.game_objects import GameObjectRecord
from map_exporter.heightmap import HeightmapWriter, HeightRange
from map_exporter.json_io import load_json
from map_exporter.progress import ExportProgress
from map_exporter.tile_export import TileExportJob, TileExportOrchestrator

from map_fixtures import CountingArchive, DataDir, linear_height, tile_chunks


_VERTS_PER_TILE = 256 * 145
_TRIS_PER_TILE = 256 * 64 * 4


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_PASSED = 0
_FAILED = 0
_ERRORS = []


def _test(name, fn):
    """Run a test function, track pass/fail."""
    global _PASSED, _FAILED
    try:
        fn()
        _PASSED += 1
        print("  PASS  {}".format(name))
    except Exception as e:
        _FAILED += 1
        _ERRORS.append((name, e))
        print("  FAIL  {} -- {}".format(name, e))
        traceback.print_exc()


def _count_prefix(path, prefix):
    with open(path, 'r', encoding='utf-8') as f:
        return sum(1 for line in f if line.startswith(prefix))


# ---------------------------------------------------------------------------
# ADT reader
# ---------------------------------------------------------------------------

def test_adt_round_trip():
    chunks = tile_chunks(linear_height, 32, 48, base_z=10.0)
    chunks[3]['holes_low_res'] = 0x1
    chunks[4]['area_id'] = 12

    parsed = read_adt_terrain(create_adt_terrain(chunks))

    assert len(parsed) == 256
    assert parsed[17]['index_x'] == 1 and parsed[17]['index_y'] == 1
    assert parsed[3]['holes_low_res'] == 0x1
    assert parsed[4]['area_id'] == 12
    for original, chunk in zip(chunks, parsed):
        assert chunk['vertices'] == original['vertices']
        for a, b in zip(chunk['position'], original['position']):
            assert abs(a - b) < 1e-2
    assert parsed[0]['normals'][0] == (0, 0, 127)


def test_adt_without_chunks_rejected():
    try:
        read_adt_terrain(b'REVM' + b'\x04\x00\x00\x00' + b'\x12\x00\x00\x00')
    except ValueError:
        return
    raise AssertionError("Expected ValueError for ADT without MCNK")


def test_chunk_has_hole():
    chunk = {'holes_low_res': 0x1 | 0x20}
    assert chunk_has_hole(chunk, 0, 0)
    assert chunk_has_hole(chunk, 1, 1)
    assert not chunk_has_hole(chunk, 2, 0)
    assert chunk_has_hole(chunk, 2, 2)
    assert chunk_has_hole(chunk, 3, 3)
    assert not chunk_has_hole({}, 0, 0)


# ---------------------------------------------------------------------------
# Terrain mesh
# ---------------------------------------------------------------------------

def test_build_terrain_mesh():
    chunks = tile_chunks(linear_height, base_z=10.0)
    mesh = build_terrain_mesh(chunks)

    assert mesh.vertex_count == _VERTS_PER_TILE
    assert mesh.triangle_count == _TRIS_PER_TILE
    assert len(mesh.groups) == 256
    assert mesh.groups[0][0] == 'chunk_0'
    assert len(mesh.normals) == len(mesh.vertices)
    assert len(mesh.uvs) == _VERTS_PER_TILE * 2

    # Height of the first vertex is sample + chunk z
    assert mesh.vertices[1] == -10.0

    highest = max(i for _name, indices in mesh.groups for i in indices)
    assert highest < mesh.vertex_count


def test_holes_remove_triangles():
    chunks = tile_chunks(linear_height)
    chunks[0]['holes_low_res'] = 0x1
    mesh = build_terrain_mesh(chunks)
    # One hole bit covers 2x2 cells, four triangles each
    assert mesh.triangle_count == _TRIS_PER_TILE - 16


def test_culling_keeps_terrain():
    mesh = build_terrain_mesh(tile_chunks(linear_height), cull_faces=True)
    assert mesh.triangle_count == _TRIS_PER_TILE


def test_empty_chunks_give_empty_mesh():
    mesh = build_terrain_mesh([{'vertices': None, 'position': (0, 0, 0)}])
    assert mesh.vertex_count == 0
    assert mesh.triangle_count == 0


# ---------------------------------------------------------------------------
# Tile exporter
# ---------------------------------------------------------------------------

def test_export_tile_obj():
    data = DataDir()
    out_dir = tempfile.mkdtemp()
    try:
        data.add_adt('testmap', 32, 48, tile_chunks(linear_height, 32, 48))
        archive = CountingArchive(data.archive())
        cache = MeshCache()
        exporter = AdtTileExporter(archive, cache)
        writer = HeightmapWriter()

        out = exporter.export_tile(1, 'testmap', tile_index(32, 48), out_dir,
                                   0, heightmap_writer=writer)

        obj_path = os.path.join(out_dir, 'adt_32_48.obj')
        assert out == {'type': 'ADT_OBJ', 'path': obj_path}, "Got {}".format(out)
        with open(obj_path, 'r', encoding='utf-8') as f:
            assert f.readline().strip() == '# map testmap (1) tile 32_48'
        assert _count_prefix(obj_path, 'v ') == _VERTS_PER_TILE
        assert _count_prefix(obj_path, 'f ') == _TRIS_PER_TILE
        assert _count_prefix(obj_path, 'g ') == 256

        assert writer.out == os.path.join(out_dir, 'adt_32_48.r16')
        assert writer.grid.unset_count == 0
        assert writer.local_range == HeightRange(-10.0, 182.0)
        assert not os.path.exists(writer.out), "Writer output is deferred"

        assert adt_path('testmap', 32, 48) in cache
        exporter.export_tile(1, 'testmap', tile_index(32, 48), out_dir, 0)
        assert len(archive.reads) == 1, "Second export must hit the cache"
    finally:
        data.cleanup()
        shutil.rmtree(out_dir, ignore_errors=True)


def test_export_tile_gltf():
    data = DataDir()
    out_dir = tempfile.mkdtemp()
    try:
        data.add_adt('testmap', 10, 20, tile_chunks(linear_height, 10, 20))
        exporter = AdtTileExporter(data.archive(), export_format='gltf')

        out = exporter.export_tile(1, 'testmap', tile_index(10, 20), out_dir, 3)

        assert out['type'] == 'ADT_GLB'
        assert out['path'] == os.path.join(out_dir, 'adt_10_20.glb')
        with open(out['path'], 'rb') as f:
            assert f.read(4) == b'glTF'

        gltf = pygltflib.GLTF2().load(out['path'])
        assert len(gltf.meshes[0].primitives) == 256
        position = gltf.meshes[0].primitives[0].attributes.POSITION
        assert gltf.accessors[position].count == _VERTS_PER_TILE
        assert gltf.nodes[0].extras['tile'] == [10, 20]
    finally:
        data.cleanup()
        shutil.rmtree(out_dir, ignore_errors=True)


def test_export_tile_game_objects_csv():
    data = DataDir()
    out_dir = tempfile.mkdtemp()
    try:
        data.add_adt('testmap', 32, 48, tile_chunks(linear_height, 32, 48))
        exporter = AdtTileExporter(data.archive())
        crate = GameObjectRecord(7, 1, 10, (1.0, 2.0, 3.0),
                                 (0.0, 0.0, 0.0, 1.0), 1.5, 'Crate',
                                 'World/Generic/Crate.m2')

        exporter.export_tile(1, 'testmap', tile_index(32, 48), out_dir, 0,
                             game_objects=[crate])

        csv_path = os.path.join(out_dir, 'adt_32_48_GameObjects.csv')
        with open(csv_path, 'r', newline='', encoding='utf-8') as f:
            rows = list(csv.reader(f, delimiter=';'))
        assert rows[0][0] == 'ModelFile'
        assert len(rows) == 2
        assert rows[1][0] == 'World/Generic/Crate.m2'
        assert rows[1][1:4] == ['1.0', '2.0', '3.0']
        assert rows[1][-2:] == ['7', 'gobj']
    finally:
        data.cleanup()
        shutil.rmtree(out_dir, ignore_errors=True)


def test_export_missing_tile_raises():
    data = DataDir()
    try:
        exporter = AdtTileExporter(data.archive())
        try:
            exporter.export_tile(1, 'testmap', tile_index(1, 1), data.root, 0)
        except AssetNotFoundError as e:
            assert e.name == adt_path('testmap', 1, 1)
            return
        raise AssertionError("Expected AssetNotFoundError")
    finally:
        data.cleanup()


def test_orchestrated_export():
    """Two selected tiles, one missing from the archive."""
    data = DataDir()
    try:
        data.add_adt('testmap', 32, 48, tile_chunks(linear_height, 32, 48))
        cache = MeshCache()
        orchestrator = TileExportOrchestrator(
            AdtTileExporter(data.archive(), cache), mesh_cache=cache)

        export_dir = os.path.join(data.root, 'exports', 'maps', 'testmap')
        job = TileExportJob(1, 'testmap',
                            [tile_index(32, 48), tile_index(32, 49)],
                            export_dir)
        report = orchestrator.run(job, ExportProgress(2, 'tile'))

        assert [t.success for t in report.tiles] == [True, False]
        assert 'Asset not found' in report.failed[0].message
        assert report.heightmaps_written == [
            os.path.join(export_dir, 'adt_32_48.r16')]
        assert os.path.getsize(report.heightmaps_written[0]) == 257 * 257 * 2

        manifest = load_json(report.manifest_path)
        assert manifest['export']['tile_count'] == 1
        assert manifest['height_range']['range'] == 192.0
        assert len(cache) == 0
    finally:
        data.cleanup()


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main():
    print("=" * 70)
    print("ADT exporter tests")
    print("=" * 70)

    print("\n--- ADT reader ---")
    _test("round trip", test_adt_round_trip)
    _test("no MCNK", test_adt_without_chunks_rejected)
    _test("chunk holes", test_chunk_has_hole)

    print("\n--- Terrain mesh ---")
    _test("build terrain mesh", test_build_terrain_mesh)
    _test("holes remove triangles", test_holes_remove_triangles)
    _test("culling keeps terrain", test_culling_keeps_terrain)
    _test("empty chunks", test_empty_chunks_give_empty_mesh)

    print("\n--- Tile exporter ---")
    _test("export OBJ", test_export_tile_obj)
    _test("export glTF", test_export_tile_gltf)
    _test("game object CSV", test_export_tile_game_objects_csv)
    _test("missing tile", test_export_missing_tile_raises)
    _test("orchestrated export", test_orchestrated_export)

    print("\n{} passed, {} failed".format(_PASSED, _FAILED))
    return 1 if _FAILED else 0


if __name__ == '__main__':
    sys.exit(main())
