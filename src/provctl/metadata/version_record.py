"""Audit record of the exact manifest content each channel resolved to."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import ClassVar

import yaml

from ..model import version_from_yaml

VERSION_RECORD_SCHEMA_VERSION = "1.0.0"


class VersionRecordError(ValueError):
    """Raised when a persisted version record is malformed."""


@dataclass(frozen=True, slots=True)
class MavenManifestVersion:
    """Manifest published as a Maven artifact."""

    kind: ClassVar[str] = "maven"

    channel: str | None
    group_id: str
    artifact_id: str
    version: str
    description: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "type": self.kind,
            "channel": self.channel,
            "groupId": self.group_id,
            "artifactId": self.artifact_id,
            "version": self.version,
            "description": self.description,
        }

    def summary(self) -> str:
        """Return a one-line human description."""
        label = f"{self.group_id}:{self.artifact_id}:{self.version or '<unknown>'}"
        return f"{label} ({self.description})" if self.description else label


@dataclass(frozen=True, slots=True)
class UrlManifestVersion:
    """Manifest addressed by URL and identified by its content hash."""

    kind: ClassVar[str] = "url"

    channel: str | None
    url: str
    hash: str
    description: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "type": self.kind,
            "channel": self.channel,
            "url": self.url,
            "hash": self.hash,
            "description": self.description,
        }

    def summary(self) -> str:
        """Return a one-line human description."""
        label = f"{self.url} [{self.hash[:12] or '<unknown>'}]"
        return f"{label} ({self.description})" if self.description else label


@dataclass(frozen=True, slots=True)
class OpenManifestVersion:
    """Channel without a manifest: repositories plus the no-stream strategy name."""

    kind: ClassVar[str] = "open"

    channel: str | None
    repositories: tuple[str, ...]
    strategy: str

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "type": self.kind,
            "channel": self.channel,
            "repositories": list(self.repositories),
            "strategy": self.strategy,
        }

    def summary(self) -> str:
        """Return a one-line human description."""
        return f"[{', '.join(self.repositories)}] strategy={self.strategy}"


ManifestVersionEntry = MavenManifestVersion | UrlManifestVersion | OpenManifestVersion


@dataclass
class ManifestVersionRecord:
    """One entry per configured channel, in channel order."""

    entries: list[ManifestVersionEntry] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list, compare=False)

    def add(self, entry: ManifestVersionEntry) -> None:
        """Append the entry for the next channel."""
        self.entries.append(entry)

    def for_channel(self, channel: str) -> ManifestVersionEntry | None:
        """Return the entry recorded for *channel*, if any."""
        for entry in self.entries:
            if entry.channel == channel:
                return entry
        return None

    def summary(self) -> list[str]:
        """Return human-readable lines, one per channel."""
        return [f"{entry.channel or '<unnamed>'}: {entry.summary()}" for entry in self.entries]

    def to_dict(self) -> dict[str, object]:
        """Return the persisted mapping representation."""
        return {
            "schemaVersion": VERSION_RECORD_SCHEMA_VERSION,
            "manifests": [entry.to_dict() for entry in self.entries],
        }

    @classmethod
    def from_dict(cls, data: object) -> ManifestVersionRecord:
        """Build a record from its persisted mapping representation."""
        if not isinstance(data, Mapping):
            raise VersionRecordError("Version record must contain a mapping.")
        raw_entries = data.get("manifests") or []
        if not isinstance(raw_entries, list):
            raise VersionRecordError("Version record 'manifests' must be a list.")
        return cls([_entry_from_dict(entry, index) for index, entry in enumerate(raw_entries)])


def _entry_from_dict(data: object, index: int) -> ManifestVersionEntry:
    if not isinstance(data, Mapping):
        raise VersionRecordError(f"manifests[{index}] must be a mapping.")
    kind = data.get("type")
    channel_raw = data.get("channel")
    channel = str(channel_raw) if channel_raw is not None else None
    description_raw = data.get("description")
    description = str(description_raw) if description_raw is not None else None
    if kind == MavenManifestVersion.kind:
        try:
            version = version_from_yaml(data.get("version"), f"manifests[{index}]")
        except ValueError as exc:
            raise VersionRecordError(str(exc)) from exc
        return MavenManifestVersion(
            channel=channel,
            group_id=str(data.get("groupId") or ""),
            artifact_id=str(data.get("artifactId") or ""),
            version=version or "",
            description=description,
        )
    if kind == UrlManifestVersion.kind:
        return UrlManifestVersion(
            channel=channel,
            url=str(data.get("url") or ""),
            hash=str(data.get("hash") or ""),
            description=description,
        )
    if kind == OpenManifestVersion.kind:
        repositories = data.get("repositories") or []
        if not isinstance(repositories, list):
            raise VersionRecordError(f"manifests[{index}].repositories must be a list.")
        return OpenManifestVersion(
            channel=channel,
            repositories=tuple(str(repo) for repo in repositories),
            strategy=str(data.get("strategy") or ""),
        )
    raise VersionRecordError(f"manifests[{index}] has unknown type {kind!r}.")


def version_record_to_yaml(record: ManifestVersionRecord) -> str:
    """Serialise *record* to YAML text."""
    return yaml.safe_dump(record.to_dict(), sort_keys=False)


def version_record_from_yaml(text: str) -> ManifestVersionRecord:
    """Parse YAML text into a :class:`ManifestVersionRecord`."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise VersionRecordError(f"Failed to parse version record: {exc}") from exc
    return ManifestVersionRecord.from_dict(data or {})


__all__ = [
    "ManifestVersionEntry",
    "ManifestVersionRecord",
    "MavenManifestVersion",
    "OpenManifestVersion",
    "UrlManifestVersion",
    "VERSION_RECORD_SCHEMA_VERSION",
    "VersionRecordError",
    "version_record_from_yaml",
    "version_record_to_yaml",
]
