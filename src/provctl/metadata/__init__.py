"""Installation metadata: persisted layout and manifest version identity."""
from __future__ import annotations

from .persistence import (
    METADATA_DIR,
    generate,
    read_channels,
    read_manifest,
    read_version_record,
    write_channels_configuration,
    write_manifest,
    write_version_record,
)
from .version_record import ManifestVersionRecord
from .version_resolver import ManifestVersionResolver

__all__ = [
    "METADATA_DIR",
    "ManifestVersionRecord",
    "ManifestVersionResolver",
    "generate",
    "read_channels",
    "read_manifest",
    "read_version_record",
    "write_channels_configuration",
    "write_manifest",
    "write_version_record",
]
