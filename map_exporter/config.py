"""
Export settings.

ExportConfig holds the user-facing switches of a map export.  Settings can
be loaded from a JSON file whose keys match the attribute names; command
line flags are applied on top by the CLI.
"""

import logging

from .json_io import load_json, save_json

log = logging.getLogger(__name__)


EXPORT_FORMATS = ('OBJ', 'GLTF')

_DEFAULTS = {
    'export_quality': 0,
    'include_game_objects': False,
    'export_heightmap': True,
    'export_format': 'OBJ',
    'cull_faces': False,
    'overwrite': True,
    'export_directory': 'exports',
}


class ExportConfig(object):
    """Map export settings with defaults."""

    def __init__(self, **kwargs):
        unknown = set(kwargs) - set(_DEFAULTS)
        if unknown:
            raise ValueError(
                "Unknown export setting(s): {}".format(", ".join(sorted(unknown))))

        for key, default in _DEFAULTS.items():
            setattr(self, key, kwargs.get(key, default))

        self.export_format = str(self.export_format).upper()
        if self.export_format not in EXPORT_FORMATS:
            raise ValueError(
                "Unsupported export format: {}. Expected one of {}".format(
                    self.export_format, ", ".join(EXPORT_FORMATS)))

        if int(self.export_quality) < 0:
            raise ValueError(
                "export_quality must be >= 0, got {}".format(self.export_quality))
        self.export_quality = int(self.export_quality)

    @classmethod
    def from_file(cls, filepath):
        """Load settings from a JSON file."""
        data = load_json(filepath)
        if not isinstance(data, dict):
            raise ValueError("Config file {} must contain an object".format(filepath))
        log.debug("Loaded export config from %s", filepath)
        return cls(**data)

    def updated(self, **overrides):
        """Return a copy with the non-None *overrides* applied."""
        values = self.to_dict()
        values.update((k, v) for k, v in overrides.items() if v is not None)
        return ExportConfig(**values)

    def to_dict(self):
        return dict((key, getattr(self, key)) for key in _DEFAULTS)

    def save(self, filepath):
        save_json(filepath, self.to_dict())

    def __repr__(self):
        return "ExportConfig({})".format(", ".join(
            "{}={!r}".format(k, v) for k, v in sorted(self.to_dict().items())))
