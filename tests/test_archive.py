"""
Tests for the asset readers: listfile, extracted data directories, DBC
tables and WDT parsing.
"""

import os
import shutil
import struct
import sys
import tempfile
import traceback

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from map_exporter.archive import Listfile, MPQChain, normalize_path
from map_exporter.constants import tile_coords, tile_index
from map_exporter.dbc_reader import (GAMEOBJECT_DISPLAY_INFO_LAYOUT,
                                     MAP_LAYOUT, DBCTable, layout_field_count)
from map_exporter.exceptions import AssetNotFoundError
from map_exporter.wdt_loader import WorldModelPlacement, create_wdt, load_wdt

from map_fixtures import DataDir


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


# ---------------------------------------------------------------------------
# Tile indices
# ---------------------------------------------------------------------------

def test_tile_index_convention():
    assert tile_index(32, 48) == 32 * 64 + 48
    assert tile_coords(32 * 64 + 48) == (32, 48)
    assert tile_coords(0) == (0, 0)
    assert tile_coords(4095) == (63, 63)


# ---------------------------------------------------------------------------
# Listfile / DirectoryArchive
# ---------------------------------------------------------------------------

def test_listfile_load():
    tmp = tempfile.mkdtemp()
    try:
        path = os.path.join(tmp, 'listfile.csv')
        with open(path, 'w', encoding='utf-8') as f:
            f.write("1;World\\Maps\\Azeroth\\Azeroth.wdt\n")
            f.write("not a line\n")
            f.write("\n")
            f.write("2;world/wmo/test.wmo\n")

        listfile = Listfile.load(path)
        assert len(listfile) == 2
        assert listfile.get_by_id(1) == 'world/maps/azeroth/azeroth.wdt'
        assert listfile.get_by_filename('WORLD/WMO/Test.wmo') == 2
        assert listfile.get_by_filename('missing.wmo') is None
        assert 'World\\WMO\\test.wmo' in listfile
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def test_directory_archive():
    data = DataDir()
    try:
        data.add('World/Maps/Azeroth/Azeroth.wdt', b'wdt')
        archive = data.archive(Listfile([(7, 'world/maps/azeroth/azeroth.wdt')]))

        assert archive.read_by_name('world\\maps\\azeroth\\azeroth.wdt') == b'wdt'
        assert archive.read_by_id(7) == b'wdt'
        assert archive.exists('WORLD/MAPS/AZEROTH/AZEROTH.WDT')
        assert not archive.exists('world/maps/kalimdor/kalimdor.wdt')

        for read, key in ((archive.read_by_name, 'nope.adt'),
                          (archive.read_by_id, 8)):
            try:
                read(key)
            except AssetNotFoundError:
                continue
            raise AssertionError("Expected AssetNotFoundError for {}".format(key))
    finally:
        data.cleanup()


def test_normalize_path():
    assert normalize_path('World\\Maps\\X.adt') == 'world/maps/x.adt'


def test_mpq_chain_skips_unreadable_archives():
    tmp = tempfile.mkdtemp()
    try:
        os.makedirs(os.path.join(tmp, 'Data', 'enUS'))
        with open(os.path.join(tmp, 'Data', 'patch.MPQ'), 'wb') as f:
            f.write(b'not an archive')

        with MPQChain(tmp) as chain:
            assert chain.read_file('World/Maps/Azeroth/Azeroth.wdt') is None
            assert not chain.exists('World/Maps/Azeroth/Azeroth.wdt')
            try:
                chain.read_by_name('World/Maps/Azeroth/Azeroth.wdt')
            except AssetNotFoundError:
                pass
            else:
                raise AssertionError("Expected AssetNotFoundError")
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


# ---------------------------------------------------------------------------
# DBC
# ---------------------------------------------------------------------------

def test_layout_field_counts():
    assert layout_field_count(MAP_LAYOUT) == 66
    assert layout_field_count(GAMEOBJECT_DISPLAY_INFO_LAYOUT) == 19


def test_dbc_round_trip():
    table = DBCTable(GAMEOBJECT_DISPLAY_INFO_LAYOUT)
    table.add_row(ID=5, ModelName='World/Crate.m2', Sound=[1, 2],
                  GeoBoxMin=(-1.0, -2.0, -3.0), GeoBoxMax=(1.0, 2.0, 3.0))
    table.add_row(ID=6)
    data = table.to_bytes()

    magic, count, fields, size, strings = struct.unpack_from('<4s4I', data)
    assert magic == b'WDBC'
    assert (count, fields, size) == (2, 19, 76)

    parsed = DBCTable.from_bytes(data, GAMEOBJECT_DISPLAY_INFO_LAYOUT)
    row = parsed.get_row(5)
    assert row['ModelName'] == 'World/Crate.m2'
    assert row['Sound'] == (1, 2, 0, 0, 0, 0, 0, 0, 0, 0)
    assert row['GeoBoxMin'] == (-1.0, -2.0, -3.0)
    assert parsed.get_row(6)['ModelName'] == ''
    assert parsed.get_row(99) is None


def test_dbc_rejects_bad_data():
    for data in (b'WDB', b'XXXX' + b'\x00' * 16,
                 b'WDBC' + struct.pack('<4I', 0, 2, 8, 1) + b'\x00'):
        try:
            DBCTable.from_bytes(data, GAMEOBJECT_DISPLAY_INFO_LAYOUT, 'x.dbc')
        except ValueError:
            continue
        raise AssertionError("Expected ValueError for {!r}".format(data))


# ---------------------------------------------------------------------------
# WDT
# ---------------------------------------------------------------------------

def test_wdt_round_trip():
    placement = WorldModelPlacement(
        id=0, unique_id=9, position=(1.0, 2.0, 3.0), rotation=(0.0, 90.0, 0.0),
        extents_min=(-5.0, -5.0, -5.0), extents_max=(5.0, 5.0, 5.0),
        flags=0, doodad_set_index=3, name_set=0, scale=1024)
    wdt = load_wdt(create_wdt([(1, 2), (63, 0)], mphd_flags=0x1,
                              world_model='World/wmo/Test.wmo',
                              world_model_placement=placement))

    assert wdt.version == 18
    assert wdt.mphd_flags == 0x1
    assert wdt.active_indices == [tile_index(1, 2), tile_index(63, 0)]
    assert wdt.has_tile(tile_index(1, 2))
    assert not wdt.has_tile(tile_index(2, 1))
    assert wdt.world_model == 'World/wmo/Test.wmo'
    assert wdt.world_model_placement.doodad_set_index == 3
    assert wdt.world_model_placement.unique_id == 9
    assert wdt.world_model_placement.position == (1.0, 2.0, 3.0)


def test_wdt_without_world_model():
    wdt = load_wdt(create_wdt([(0, 0)]))
    assert wdt.world_model is None
    assert wdt.world_model_placement is None


def test_wdt_rejects_bad_data():
    bad_version = b'REVM' + struct.pack('<II', 4, 17)
    no_main = b'REVM' + struct.pack('<II', 4, 18)
    for data in (b'', bad_version, no_main):
        try:
            load_wdt(data)
        except ValueError:
            continue
        raise AssertionError("Expected ValueError for {!r}".format(data))

    try:
        create_wdt([(64, 0)])
    except ValueError:
        return
    raise AssertionError("Expected ValueError for tile (64, 0)")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main():
    print("=" * 70)
    print("Archive, DBC and WDT tests")
    print("=" * 70)

    _test("tile index convention", test_tile_index_convention)
    _test("listfile load", test_listfile_load)
    _test("directory archive", test_directory_archive)
    _test("normalize path", test_normalize_path)
    _test("MPQ chain skips unreadable archives",
          test_mpq_chain_skips_unreadable_archives)
    _test("layout field counts", test_layout_field_counts)
    _test("DBC round trip", test_dbc_round_trip)
    _test("DBC bad data", test_dbc_rejects_bad_data)
    _test("WDT round trip", test_wdt_round_trip)
    _test("WDT without world model", test_wdt_without_world_model)
    _test("WDT bad data", test_wdt_rejects_bad_data)

    print("\n{} passed, {} failed".format(_PASSED, _FAILED))
    return 1 if _FAILED else 0


if __name__ == '__main__':
    sys.exit(main())
