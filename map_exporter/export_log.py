"""
Session export-path log.

Each finished export appends ``<type>:<path>`` lines to a plain text file
so external tooling can pick up what was written by the last export.
"""

import logging
import os

log = logging.getLogger(__name__)


class ExportPathLog(object):
    """Line-oriented log of exported files, truncated when opened."""

    def __init__(self, filepath):
        self.filepath = filepath
        self._file = None

    def open(self):
        parent = os.path.dirname(self.filepath)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self._file = open(self.filepath, 'w', encoding='utf-8')
        return self

    @property
    def closed(self):
        return self._file is None

    def write_entry(self, export_type, path):
        self.write_line("{}:{}".format(export_type, path))

    def write_line(self, line):
        if self._file is None:
            self.open()
        self._file.write(line + '\n')

    def close(self):
        if self._file is not None:
            self._file.close()
            self._file = None
            log.debug("Closed export path log: %s", self.filepath)

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()
