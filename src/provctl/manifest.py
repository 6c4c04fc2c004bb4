"""The installed component manifest of a provisioned server."""
from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping

import yaml

from .model import Artifact, Identity

MANIFEST_SCHEMA_VERSION = "1.0.0"


class ManifestError(ValueError):
    """Raised when manifest content is malformed or inconsistent."""


class Manifest:
    """Insertion-ordered set of installed artifacts, unique by identity."""

    def __init__(
        self,
        artifacts: Iterable[Artifact] = (),
        *,
        name: str | None = None,
        description: str | None = None,
    ) -> None:
        """Create a manifest; duplicate identities are rejected."""
        self.name = name
        self.description = description
        self._entries: dict[Identity, Artifact] = {}
        for artifact in artifacts:
            self.add(artifact)

    def __iter__(self) -> Iterator[Artifact]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identity: object) -> bool:
        return identity in self._entries

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Manifest):
            return NotImplemented
        return (
            self.name == other.name
            and self.description == other.description
            and list(self._entries.items()) == list(other._entries.items())
        )

    def __repr__(self) -> str:
        return f"Manifest(name={self.name!r}, artifacts={len(self)})"

    @property
    def artifacts(self) -> tuple[Artifact, ...]:
        """Return installed artifacts in insertion order."""
        return tuple(self._entries.values())

    def identities(self) -> list[Identity]:
        """Return installed identities in insertion order."""
        return list(self._entries)

    def find(self, identity: Identity) -> Artifact | None:
        """Return the installed artifact for *identity*, if any."""
        return self._entries.get(identity)

    def add(self, artifact: Artifact) -> None:
        """Register a new component; its identity must not be installed yet."""
        if not artifact.version:
            raise ManifestError(f"Manifest entry {artifact.identity} has no version.")
        if artifact.identity in self._entries:
            raise ManifestError(f"Component {artifact.identity} is already installed.")
        self._entries[artifact.identity] = artifact

    def replace(self, old: Artifact, new: Artifact) -> None:
        """Swap the installed *old* artifact for *new* keeping its position."""
        if old.identity != new.identity:
            raise ManifestError(f"Cannot replace {old.identity} with {new.identity}.")
        current = self._entries.get(old.identity)
        if current is None:
            raise ManifestError(f"Component {old.identity} is not installed.")
        if current.version != old.version:
            raise ManifestError(
                f"Component {old.identity} is installed at {current.version}, "
                f"not {old.version}."
            )
        self._entries[old.identity] = new.with_version(new.version or "")

    def register_updates(self, artifacts: Iterable[Artifact]) -> None:
        """Record versions installed by another mechanism (e.g. feature packs)."""
        for artifact in artifacts:
            if not artifact.version:
                continue
            self._entries[artifact.identity] = artifact.with_version(artifact.version)

    def copy(self) -> Manifest:
        """Return an independent working copy."""
        return Manifest(self._entries.values(), name=self.name, description=self.description)

    def to_dict(self) -> dict[str, object]:
        """Return the persisted mapping representation."""
        payload: dict[str, object] = {"schemaVersion": MANIFEST_SCHEMA_VERSION}
        if self.name:
            payload["name"] = self.name
        if self.description:
            payload["description"] = self.description
        payload["streams"] = [artifact.to_dict() for artifact in self]
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Manifest:
        """Build a manifest from its persisted mapping representation."""
        if not isinstance(data, Mapping):
            raise ManifestError("Manifest must contain a mapping at the top level.")
        streams = data.get("streams") or []
        if not isinstance(streams, list):
            raise ManifestError("Manifest 'streams' must be a list.")
        try:
            artifacts = [
                Artifact.from_dict(entry, context=f"streams[{index}]")
                for index, entry in enumerate(streams)
            ]
        except ValueError as exc:
            raise ManifestError(str(exc)) from exc
        name = data.get("name")
        description = data.get("description")
        return cls(
            artifacts,
            name=str(name) if name is not None else None,
            description=str(description) if description is not None else None,
        )


def manifest_to_yaml(manifest: Manifest) -> str:
    """Serialise *manifest* to YAML text."""
    return yaml.safe_dump(manifest.to_dict(), sort_keys=False)


def manifest_from_yaml(text: str) -> Manifest:
    """Parse YAML text into a :class:`Manifest`."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ManifestError(f"Failed to parse manifest: {exc}") from exc
    return Manifest.from_dict(data or {})


__all__ = [
    "MANIFEST_SCHEMA_VERSION",
    "Manifest",
    "ManifestError",
    "manifest_from_yaml",
    "manifest_to_yaml",
]
