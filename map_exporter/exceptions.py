"""Exception hierarchy for the map exporter."""


class MapExportError(Exception):
    """Base class for all map exporter errors."""


class AssetNotFoundError(MapExportError):
    """A requested file is not present in any archive."""

    def __init__(self, name):
        super(AssetNotFoundError, self).__init__(
            "Asset not found: {}".format(name))
        self.name = name


class ExportInputError(MapExportError):
    """The export request itself is invalid (nothing selected, bad target)."""


class WorldModelError(MapExportError):
    """The selected map has no usable world model."""
