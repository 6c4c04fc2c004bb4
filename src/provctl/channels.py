"""Channel definitions: named, ordered artifact sources."""
from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace

import yaml

from .model import version_from_yaml

CHANNEL_SCHEMA_VERSION = "2.0.0"
DEFAULT_NO_STREAM_STRATEGY = "none"


class ChannelError(ValueError):
    """Raised when channel definitions are malformed."""


@dataclass(frozen=True, slots=True)
class Repository:
    """A remote (or ``file://``) Maven repository."""

    id: str
    url: str

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"id": self.id, "url": self.url}

    @classmethod
    def from_dict(cls, data: object, *, context: str = "repository") -> Repository:
        """Build a repository from ``{id, url}``."""
        if not isinstance(data, Mapping):
            raise ChannelError(f"{context} must be a mapping.")
        repo_id = str(data.get("id") or "").strip()
        url = str(data.get("url") or "").strip()
        if not repo_id or not url:
            raise ChannelError(f"{context} requires both 'id' and 'url'.")
        return cls(repo_id, url)


@dataclass(frozen=True, slots=True)
class ManifestCoordinate:
    """Where a channel's manifest is published: Maven GA[V] or a URL."""

    group_id: str | None = None
    artifact_id: str | None = None
    version: str | None = None
    url: str | None = None

    def __post_init__(self) -> None:
        """Require exactly one addressing mode."""
        maven = bool(self.group_id and self.artifact_id)
        if maven == bool(self.url):
            raise ChannelError(
                "Manifest coordinate needs either groupId/artifactId or url (not both)."
            )

    @property
    def is_url(self) -> bool:
        """Return True for URL-addressed manifests."""
        return self.url is not None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        if self.url is not None:
            return {"url": self.url}
        maven: dict[str, object] = {"groupId": self.group_id, "artifactId": self.artifact_id}
        if self.version:
            maven["version"] = self.version
        return {"maven": maven}

    @classmethod
    def from_dict(cls, data: object) -> ManifestCoordinate:
        """Build a coordinate from ``{maven: {...}}`` or ``{url: ...}``."""
        if not isinstance(data, Mapping):
            raise ChannelError("Channel 'manifest' must be a mapping.")
        if data.get("url"):
            return cls(url=str(data["url"]).strip())
        maven = data.get("maven")
        if not isinstance(maven, Mapping):
            raise ChannelError("Channel 'manifest' requires a 'maven' or 'url' entry.")
        try:
            version = version_from_yaml(maven.get("version"), "Channel manifest")
        except ValueError as exc:
            raise ChannelError(str(exc)) from exc
        return cls(
            group_id=str(maven.get("groupId") or "").strip() or None,
            artifact_id=str(maven.get("artifactId") or "").strip() or None,
            version=version,
        )

    def __str__(self) -> str:
        if self.url is not None:
            return self.url
        return f"{self.group_id}:{self.artifact_id}:{self.version or ''}"


@dataclass(frozen=True, slots=True)
class Channel:
    """A named resolution source with its repositories and manifest reference."""

    name: str | None = None
    repositories: tuple[Repository, ...] = field(default_factory=tuple)
    manifest: ManifestCoordinate | None = None
    no_stream_strategy: str = DEFAULT_NO_STREAM_STRATEGY
    description: str | None = None

    def with_name(self, name: str) -> Channel:
        """Return a copy carrying *name*."""
        return replace(self, name=name)

    @property
    def repository_ids(self) -> list[str]:
        """Return repository identifiers in declaration order."""
        return [repository.id for repository in self.repositories]

    def to_dict(self) -> dict[str, object]:
        """Return the persisted mapping representation."""
        payload: dict[str, object] = {"schemaVersion": CHANNEL_SCHEMA_VERSION}
        if self.name:
            payload["name"] = self.name
        if self.description:
            payload["description"] = self.description
        payload["repositories"] = [repository.to_dict() for repository in self.repositories]
        if self.manifest is not None:
            payload["manifest"] = self.manifest.to_dict()
        payload["resolve-if-no-stream"] = self.no_stream_strategy
        return payload

    @classmethod
    def from_dict(cls, data: object, *, context: str = "channel") -> Channel:
        """Build a channel from its persisted mapping representation."""
        if not isinstance(data, Mapping):
            raise ChannelError(f"{context} must be a mapping.")
        raw_repositories = data.get("repositories") or []
        if not isinstance(raw_repositories, list):
            raise ChannelError(f"{context}.repositories must be a list.")
        repositories = tuple(
            Repository.from_dict(entry, context=f"{context}.repositories[{index}]")
            for index, entry in enumerate(raw_repositories)
        )
        manifest_raw = data.get("manifest")
        manifest = ManifestCoordinate.from_dict(manifest_raw) if manifest_raw else None
        name = data.get("name")
        description = data.get("description")
        strategy = data.get("resolve-if-no-stream") or DEFAULT_NO_STREAM_STRATEGY
        return cls(
            name=str(name).strip() if name else None,
            repositories=repositories,
            manifest=manifest,
            no_stream_strategy=str(strategy),
            description=str(description) if description else None,
        )


def channels_to_yaml(channels: Sequence[Channel]) -> str:
    """Serialise channels as a multi-document YAML stream."""
    return yaml.safe_dump_all(
        [channel.to_dict() for channel in channels],
        sort_keys=False,
        explicit_start=True,
    )


def channels_from_yaml(text: str) -> list[Channel]:
    """Parse a (multi-document) YAML stream of channel definitions."""
    try:
        documents = [doc for doc in yaml.safe_load_all(text) if doc is not None]
    except yaml.YAMLError as exc:
        raise ChannelError(f"Failed to parse channel definitions: {exc}") from exc
    channels: list[Channel] = []
    for index, document in enumerate(documents):
        entries: Iterable[object] = document if isinstance(document, list) else [document]
        for entry in entries:
            channels.append(Channel.from_dict(entry, context=f"channels[{index}]"))
    return channels


__all__ = [
    "CHANNEL_SCHEMA_VERSION",
    "Channel",
    "ChannelError",
    "DEFAULT_NO_STREAM_STRATEGY",
    "ManifestCoordinate",
    "Repository",
    "channels_from_yaml",
    "channels_to_yaml",
]
