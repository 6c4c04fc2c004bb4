"""Helpers for the installation metadata directory.

The metadata directory (``<install>/.installation``) makes a provisioned
server self-describing: it stores the installed manifest, the subscribed
channels, the manifest version record and a snapshot of the provisioning
definition. File names are fixed because other tooling reads them.

Individual writes replace the whole file atomically and require the metadata
directory to exist; :func:`generate` is the one-time bootstrap that creates
it.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Sequence
from itertools import zip_longest
from pathlib import Path

from ..channels import Channel, ChannelError, channels_from_yaml, channels_to_yaml
from ..errors import (
    InstallationNotFoundError,
    InvalidTargetPathError,
    MetadataAlreadyInitializedError,
    MetadataIOError,
)
from ..manifest import Manifest, ManifestError, manifest_from_yaml, manifest_to_yaml
from .version_record import (
    ManifestVersionRecord,
    VersionRecordError,
    version_record_from_yaml,
    version_record_to_yaml,
)

METADATA_DIR = ".installation"
MANIFEST_FILE_NAME = "manifest.yaml"
INSTALLER_CHANNELS_FILE_NAME = "installer-channels.yaml"
CURRENT_VERSION_FILE = "manifest_version.yaml"
README_FILE_NAME = "README.txt"
PROVISIONING_RECORD_XML = "provisioning_record.xml"

PROVISIONED_STATE_DIR = ".galleon"
PROVISIONING_XML = "provisioning.xml"

WARNING_MESSAGE = (
    "WARNING: The files in .installation directory should be only edited by the "
    "provisioning tool."
)


def metadata_dir(server_dir: Path) -> Path:
    """Return the metadata directory of *server_dir*."""
    return server_dir / METADATA_DIR


def manifest_path(server_dir: Path) -> Path:
    """Return the installed manifest path of *server_dir*."""
    return metadata_dir(server_dir) / MANIFEST_FILE_NAME


def configuration_path(server_dir: Path) -> Path:
    """Return the channel configuration path of *server_dir*."""
    return metadata_dir(server_dir) / INSTALLER_CHANNELS_FILE_NAME


def version_record_path(server_dir: Path) -> Path:
    """Return the manifest version record path of *server_dir*."""
    return metadata_dir(server_dir) / CURRENT_VERSION_FILE


def generate(
    server_dir: Path,
    channels: Sequence[Channel],
    manifest: Manifest,
    version_record: ManifestVersionRecord | None = None,
) -> None:
    """Bootstrap the metadata directory of a freshly provisioned server.

    Raises :class:`InvalidTargetPathError` when ``.installation`` exists but
    is not a directory, and :class:`MetadataAlreadyInitializedError` when the
    manifest or channel file is already present.
    """
    target_dir = metadata_dir(server_dir)
    manifest_file = manifest_path(server_dir)
    channels_file = configuration_path(server_dir)

    if target_dir.exists() and not target_dir.is_dir():
        raise InvalidTargetPathError(f"The target path {target_dir} is not a directory.")
    if manifest_file.exists() or channels_file.exists():
        raise MetadataAlreadyInitializedError(
            f"Metadata files are already present at {target_dir}"
        )

    try:
        target_dir.mkdir(exist_ok=True)
    except OSError as exc:
        raise MetadataIOError(f"Unable to create {target_dir}: {exc}") from exc

    write_manifest(manifest_file, manifest)
    write_channels_configuration(channels_file, channels)
    if version_record is not None:
        write_version_record(version_record_path(server_dir), version_record)

    record_provisioning_definition(server_dir)

    readme = target_dir / README_FILE_NAME
    if not readme.exists():
        write_warning_readme(readme)


def assign_channel_names(channels: Sequence[Channel]) -> list[Channel]:
    """Name every unnamed channel ``channel-<n>`` with the smallest free *n*."""
    taken = {channel.name for channel in channels if channel.name}
    counter = 0
    named: list[Channel] = []
    for channel in channels:
        if channel.name:
            named.append(channel)
            continue
        candidate = f"channel-{counter}"
        while candidate in taken:
            counter += 1
            candidate = f"channel-{counter}"
        counter += 1
        taken.add(candidate)
        named.append(channel.with_name(candidate))
    return named


def write_channels_configuration(path: Path, channels: Sequence[Channel]) -> None:
    """Record *channels* (with generated names where missing) at *path*."""
    _require_parent(path)
    _write_text(path, channels_to_yaml(assign_channel_names(channels)))


def write_manifest(path: Path, manifest: Manifest) -> None:
    """Record *manifest* at *path*, replacing any previous content."""
    _require_parent(path)
    _write_text(path, manifest_to_yaml(manifest))


def write_version_record(path: Path, version_record: ManifestVersionRecord) -> None:
    """Record *version_record* at *path*, replacing any previous content."""
    _require_parent(path)
    _write_text(path, version_record_to_yaml(version_record))


def write_warning_readme(path: Path) -> None:
    """Write the fixed "do not edit" notice."""
    _require_parent(path)
    _write_text(path, WARNING_MESSAGE)


def read_manifest(server_dir: Path) -> Manifest:
    """Load the installed manifest of *server_dir*."""
    path = manifest_path(server_dir)
    text = _read_text(path)
    try:
        return manifest_from_yaml(text)
    except ManifestError as exc:
        raise MetadataIOError(f"Invalid manifest {path}: {exc}") from exc


def read_channels(server_dir: Path) -> list[Channel]:
    """Load the subscribed channels of *server_dir*."""
    path = configuration_path(server_dir)
    text = _read_text(path)
    try:
        return channels_from_yaml(text)
    except ChannelError as exc:
        raise MetadataIOError(f"Invalid channel configuration {path}: {exc}") from exc


def read_version_record(server_dir: Path) -> ManifestVersionRecord | None:
    """Load the manifest version record, or None when none was recorded."""
    path = version_record_path(server_dir)
    if not path.exists():
        return None
    try:
        return version_record_from_yaml(_read_text(path))
    except VersionRecordError as exc:
        raise MetadataIOError(f"Invalid version record {path}: {exc}") from exc


def record_provisioning_definition(server_dir: Path) -> bool:
    """Snapshot the provisioning definition into the metadata directory.

    Returns True when the snapshot was (re)written. Nothing happens when the
    source is missing or the snapshot already has the same lines.
    """
    source = server_dir / PROVISIONED_STATE_DIR / PROVISIONING_XML
    snapshot = metadata_dir(server_dir) / PROVISIONING_RECORD_XML

    if not source.exists():
        return False
    try:
        if snapshot.exists() and is_file_content_equal(source, snapshot):
            return False
        content = source.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise MetadataIOError(f"Unable to read provisioning definition {source}: {exc}") from exc

    normalized = content.replace("\r\n", "\n").replace("\r", "\n")
    _require_parent(snapshot)
    _write_text(snapshot, normalized, ensure_newline=False)
    return True


def is_file_content_equal(first: Path, second: Path) -> bool:
    """Compare two text files line by line, ignoring line-ending style."""
    try:
        with first.open(encoding="utf-8") as left, second.open(encoding="utf-8") as right:
            for line_left, line_right in zip_longest(left, right):
                if line_left is None or line_right is None:
                    return False
                if line_left.rstrip("\n") != line_right.rstrip("\n"):
                    return False
    except (OSError, UnicodeDecodeError) as exc:
        raise MetadataIOError(f"Unable to compare {first} with {second}: {exc}") from exc
    return True


def require_installation(server_dir: Path) -> None:
    """Raise :class:`InstallationNotFoundError` unless metadata is present."""
    if not manifest_path(server_dir).is_file() or not configuration_path(server_dir).is_file():
        raise InstallationNotFoundError(
            f"{server_dir} does not contain installation metadata ({METADATA_DIR})."
        )


def _require_parent(path: Path) -> None:
    if not path.parent.is_dir():
        raise InvalidTargetPathError(f"The target path {path.parent} does not exist.")


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise InstallationNotFoundError(f"Metadata file {path} does not exist.") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise MetadataIOError(f"Unable to read {path}: {exc}") from exc


def _write_text(path: Path, text: str, *, ensure_newline: bool = True) -> None:
    """Atomically replace *path* with *text*."""
    if ensure_newline and not text.endswith("\n"):
        text += "\n"
    try:
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    except OSError as exc:
        raise MetadataIOError(f"Unable to write {path}: {exc}") from exc
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8", newline="\n") as handle:
            handle.write(text)
        os.replace(tmp_path, path)
        os.chmod(path, 0o644)
    except OSError as exc:
        raise MetadataIOError(f"Unable to write {path}: {exc}") from exc
    finally:
        tmp_path.unlink(missing_ok=True)


__all__ = [
    "CURRENT_VERSION_FILE",
    "INSTALLER_CHANNELS_FILE_NAME",
    "MANIFEST_FILE_NAME",
    "METADATA_DIR",
    "PROVISIONED_STATE_DIR",
    "PROVISIONING_RECORD_XML",
    "PROVISIONING_XML",
    "README_FILE_NAME",
    "WARNING_MESSAGE",
    "assign_channel_names",
    "configuration_path",
    "generate",
    "is_file_content_equal",
    "manifest_path",
    "metadata_dir",
    "read_channels",
    "read_manifest",
    "read_version_record",
    "record_provisioning_definition",
    "require_installation",
    "version_record_path",
    "write_channels_configuration",
    "write_manifest",
    "write_version_record",
    "write_warning_readme",
]
