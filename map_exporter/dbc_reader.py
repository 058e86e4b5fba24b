"""
Read-only access to WDBC client database tables.

DBC binary layout:
  Header: 4-byte magic ('WDBC') + 4 uint32 (record_count, field_count,
          record_size, string_block_size) = 20 bytes total.
  Records: record_count * record_size bytes of fixed-size rows.
  String block: string_block_size bytes; offset 0 is always the null byte.
  Strings within records are stored as uint32 offsets into the string block.

Rows are decoded into dicts through a layout: a sequence of
(name, type, count) tuples covering the record from field 0.  Types are
'I' (uint32), 'i' (int32), 'f' (float), 's' (string offset) and 'l'
(WotLK locstring: 17 uint32, only the enUS slot is decoded).
"""

import logging
import struct

log = logging.getLogger(__name__)


_HEADER_SIZE = 20  # 4 (magic) + 4*4 (counts)
_LOC_SLOTS = 17    # 8 locale string offsets + 8 unused + 1 flags/mask


# ---------------------------------------------------------------------------
# Table layouts
# ---------------------------------------------------------------------------

# Map.dbc (3.3.0.10958 - 3.3.5.12340), 66 fields
MAP_LAYOUT = (
    ('ID', 'I', 1),
    ('Directory', 's', 1),
    ('InstanceType', 'I', 1),
    ('Flags', 'I', 1),
    ('PVP', 'I', 1),
    ('MapName_lang', 'l', 1),
    ('AreaTableID', 'I', 1),
    ('MapDescription0_lang', 'l', 1),
    ('MapDescription1_lang', 'l', 1),
    ('LoadingScreenID', 'I', 1),
    ('MinimapIconScale', 'f', 1),
    ('CorpseMapID', 'I', 1),
    ('Corpse', 'f', 2),
    ('TimeOfDayOverride', 'i', 1),
    ('ExpansionID', 'I', 1),
    ('RaidOffset', 'I', 1),
    ('MaxPlayers', 'I', 1),
)

# GameObjects table: one row per world-placed game object, 12 fields
GAMEOBJECTS_LAYOUT = (
    ('ID', 'I', 1),
    ('OwnerID', 'I', 1),
    ('DisplayID', 'I', 1),
    ('Pos', 'f', 3),
    ('Rot', 'f', 4),
    ('Scale', 'f', 1),
    ('Name', 's', 1),
)

# GameObjectDisplayInfo.dbc (3.3.5.12340), 19 fields
GAMEOBJECT_DISPLAY_INFO_LAYOUT = (
    ('ID', 'I', 1),
    ('ModelName', 's', 1),
    ('Sound', 'I', 10),
    ('GeoBoxMin', 'f', 3),
    ('GeoBoxMax', 'f', 3),
    ('ObjectEffectPackageID', 'I', 1),
)


def layout_field_count(layout):
    """Number of 4-byte fields covered by *layout*."""
    total = 0
    for _name, kind, count in layout:
        total += (_LOC_SLOTS if kind == 'l' else 1) * count
    return total


# ---------------------------------------------------------------------------
# Table
# ---------------------------------------------------------------------------

class DBCTable(object):
    """
    Parsed WDBC table with dict rows keyed by the first field (ID).
    """

    def __init__(self, layout, records=None, string_block=None, name=None):
        self.layout = layout
        self.name = name
        self.field_count = layout_field_count(layout)
        self.record_size = self.field_count * 4
        self.records = records if records is not None else []
        self.string_block = (bytearray(string_block) if string_block is not None
                             else bytearray(b'\x00'))
        self._string_cache = {}
        self._rows = None

    @classmethod
    def from_bytes(cls, data, layout, name=None):
        """
        Parse WDBC bytes.

        Raises:
            ValueError: On a bad header or a record size that does not match
                the layout.
        """
        if len(data) < _HEADER_SIZE:
            raise ValueError("Data too small to be a valid DBC: {}".format(name))

        magic = data[0:4]
        if magic != b'WDBC':
            raise ValueError(
                "Bad magic in {}: expected b'WDBC', got {!r}".format(name, magic))

        record_count, field_count, record_size, string_block_size = \
            struct.unpack_from('<4I', data, 4)

        expected = layout_field_count(layout)
        if field_count < expected or record_size < expected * 4:
            raise ValueError(
                "{}: {} fields / {} bytes per record, layout needs {}".format(
                    name, field_count, record_size, expected))

        records = []
        for i in range(record_count):
            offset = _HEADER_SIZE + i * record_size
            records.append(bytes(data[offset:offset + record_size]))

        string_start = _HEADER_SIZE + record_count * record_size
        string_block = data[string_start:string_start + string_block_size]

        table = cls(layout, records, string_block, name)
        log.debug("Read %s: %d records", name, record_count)
        return table

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    @property
    def record_count(self):
        return len(self.records)

    def get_string(self, offset):
        """Return the null-terminated string at *offset* in the string block."""
        if offset <= 0 or offset >= len(self.string_block):
            return ''
        end = self.string_block.find(b'\x00', offset)
        if end == -1:
            end = len(self.string_block)
        return self.string_block[offset:end].decode('utf-8', errors='replace')

    def _decode_record(self, rec):
        row = {}
        field = 0
        for name, kind, count in self.layout:
            values = []
            for _ in range(count):
                offset = field * 4
                if kind == 'f':
                    values.append(struct.unpack_from('<f', rec, offset)[0])
                    field += 1
                elif kind == 'i':
                    values.append(struct.unpack_from('<i', rec, offset)[0])
                    field += 1
                elif kind == 's':
                    values.append(self.get_string(
                        struct.unpack_from('<I', rec, offset)[0]))
                    field += 1
                elif kind == 'l':
                    values.append(self.get_string(
                        struct.unpack_from('<I', rec, offset)[0]))
                    field += _LOC_SLOTS
                else:
                    values.append(struct.unpack_from('<I', rec, offset)[0])
                    field += 1
            row[name] = values[0] if count == 1 else tuple(values)
        return row

    def get_all_rows(self):
        """Return a dict of ID -> row dict, decoded once."""
        if self._rows is None:
            rows = {}
            for rec in self.records:
                row = self._decode_record(rec)
                rows[row[self.layout[0][0]]] = row
            self._rows = rows
        return self._rows

    def get_row(self, row_id):
        """Return the row dict for *row_id*, or None."""
        return self.get_all_rows().get(row_id)

    # ------------------------------------------------------------------
    # Writing (fixtures and patched tables)
    # ------------------------------------------------------------------

    def add_string(self, s):
        """Add a string to the string block and return its offset."""
        if not s:
            return 0
        if s in self._string_cache:
            return self._string_cache[s]

        offset = len(self.string_block)
        self.string_block.extend(s.encode('utf-8') + b'\x00')
        self._string_cache[s] = offset
        return offset

    def add_row(self, **values):
        """
        Append a record built from keyword values; missing fields are zero.
        """
        parts = []
        for name, kind, count in self.layout:
            value = values.get(name)
            if count == 1:
                items = [value]
            else:
                items = list(value) if value is not None else []
            for item in items + [None] * (count - len(items)):
                if kind == 'f':
                    parts.append(struct.pack('<f', item or 0.0))
                elif kind == 'i':
                    parts.append(struct.pack('<i', item or 0))
                elif kind == 's':
                    parts.append(struct.pack('<I', self.add_string(item)))
                elif kind == 'l':
                    slots = [0] * _LOC_SLOTS
                    slots[0] = self.add_string(item)
                    slots[16] = 0xFFFFFFFF
                    parts.append(struct.pack('<{}I'.format(_LOC_SLOTS), *slots))
                else:
                    parts.append(struct.pack('<I', item or 0))

        self.records.append(b''.join(parts))
        self._rows = None

    def to_bytes(self):
        """Serialize the table as WDBC bytes."""
        header = b'WDBC' + struct.pack('<4I', len(self.records),
                                       self.field_count, self.record_size,
                                       len(self.string_block))
        return header + b''.join(self.records) + bytes(self.string_block)


def read_table(archive, name, layout):
    """Read and parse a DBC table from an archive reader."""
    return DBCTable.from_bytes(archive.read_by_name(name), layout, name=name)
