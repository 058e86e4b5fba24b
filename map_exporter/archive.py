"""
Game asset sources: MPQ archive chains, extracted data directories and the
listfile that maps numeric file IDs to names.

Every reader exposes the same two calls:

    read_by_name(path)   -> bytes
    read_by_id(file_id)  -> bytes

Both raise AssetNotFoundError when the file is absent.  Paths are matched
case-insensitively and accept either slash style.
"""

import logging
import os
import struct

import mpyq

from .exceptions import AssetNotFoundError

log = logging.getLogger(__name__)


def normalize_path(name):
    """Lower-case a game path and convert it to forward slashes."""
    return name.replace('\\', '/').lower()


# ---------------------------------------------------------------------------
# Listfile
# ---------------------------------------------------------------------------

class Listfile(object):
    """
    Bidirectional file name <-> file ID lookup.

    The on-disk format is one ``<id>;<path>`` entry per line.
    """

    def __init__(self, entries=None):
        self._by_id = {}
        self._by_name = {}
        if entries:
            for file_id, name in entries:
                self.add(file_id, name)

    @classmethod
    def load(cls, filepath):
        """Load a listfile from *filepath*, skipping malformed lines."""
        listfile = cls()
        skipped = 0
        with open(filepath, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                file_id, sep, name = line.partition(';')
                if not sep or not file_id.isdigit():
                    skipped += 1
                    continue
                listfile.add(int(file_id), name)

        log.info("Loaded listfile %s: %d entries (%d skipped)",
                 filepath, len(listfile), skipped)
        return listfile

    def add(self, file_id, name):
        name = normalize_path(name)
        self._by_id[file_id] = name
        self._by_name[name] = file_id

    def get_by_filename(self, name):
        """Return the file ID for *name*, or None."""
        return self._by_name.get(normalize_path(name))

    def get_by_id(self, file_id):
        """Return the file name for *file_id*, or None."""
        return self._by_id.get(file_id)

    def __len__(self):
        return len(self._by_id)

    def __contains__(self, name):
        return normalize_path(name) in self._by_name


# ---------------------------------------------------------------------------
# Readers
# ---------------------------------------------------------------------------

class _ArchiveReader(object):
    """Shared read_by_id() for readers that only know names."""

    listfile = None

    def read_file(self, name):
        raise NotImplementedError

    def read_by_name(self, name):
        data = self.read_file(name)
        if data is None:
            raise AssetNotFoundError(name)
        return data

    def read_by_id(self, file_id):
        name = self.listfile.get_by_id(file_id) if self.listfile else None
        if name is None:
            raise AssetNotFoundError("file ID {}".format(file_id))
        return self.read_by_name(name)

    def exists(self, name):
        return self.read_file(name) is not None


class DirectoryArchive(_ArchiveReader):
    """Reads assets from an extracted client data directory."""

    def __init__(self, root, listfile=None):
        """
        Args:
            root: Directory containing extracted game files
                (World/Maps/..., DBFilesClient/...).
            listfile: Optional Listfile for read_by_id().
        """
        self.root = root
        self.listfile = listfile
        self._index = None

    def _build_index(self):
        index = {}
        for dirpath, _dirnames, filenames in os.walk(self.root):
            for filename in filenames:
                full = os.path.join(dirpath, filename)
                rel = os.path.relpath(full, self.root)
                index[normalize_path(rel)] = full
        log.debug("Indexed %d files under %s", len(index), self.root)
        return index

    def read_file(self, name):
        if self._index is None:
            self._index = self._build_index()

        path = self._index.get(normalize_path(name))
        if path is None:
            return None
        with open(path, 'rb') as f:
            return f.read()

    def exists(self, name):
        if self._index is None:
            self._index = self._build_index()
        return normalize_path(name) in self._index


# Client archive names under Data/, highest priority first.  A patch archive
# overrides the same path in every archive listed after it.
_MPQ_LOAD_ORDER = [
    "{locale}/patch-{locale}-3.MPQ",
    "{locale}/patch-{locale}-2.MPQ",
    "{locale}/patch-{locale}.MPQ",
    "{locale}/locale-{locale}.MPQ",
    "patch-3.MPQ",
    "patch-2.MPQ",
    "patch.MPQ",
    "lichking.MPQ",
    "expansion.MPQ",
    "common-2.MPQ",
    "common.MPQ",
]


def _open_mpq_archives(data_dir, locale):
    """Open every client archive present in *data_dir*, newest patch first."""
    archives = []
    paths = [os.path.join(data_dir, name.format(locale=locale))
             for name in _MPQ_LOAD_ORDER]
    for path in paths:
        if not os.path.isfile(path):
            continue
        try:
            archives.append(mpyq.MPQArchive(path, listfile=False))
        except (OSError, ValueError, struct.error) as e:
            log.warning("Skipping unreadable archive %s: %s", path, e)
        else:
            log.debug("Loaded archive %s", path)
    return archives


class MPQChain(_ArchiveReader):
    """
    Asset reader over the MPQ archives of a client install.

    Args:
        wow_root: Client directory containing Data/.
        locale: Locale folder whose locale and patch archives are loaded.
        listfile: Optional Listfile for read_by_id().

    Patch archives shadow the base archives, so a path is answered by the
    newest archive that holds it.  MPQ name hashing ignores case.
    """

    def __init__(self, wow_root, locale='enUS', listfile=None):
        self.listfile = listfile
        data_dir = os.path.join(wow_root, "Data")
        self._archives = _open_mpq_archives(data_dir, locale)
        log.info("Loaded %d client archives (%s) from %s",
                 len(self._archives), locale, data_dir)

    def read_file(self, name):
        # MPQ internal names use backslashes
        mpq_name = name.replace('/', '\\')
        for archive in self._archives:
            data = archive.read_file(mpq_name)
            if data is not None:
                return data
        return None

    def close(self):
        while self._archives:
            self._archives.pop().file.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
