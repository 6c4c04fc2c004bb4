"""Immutable component identities, coordinates and update actions."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path

from .errors import IdentityMismatchError
from .versions import compare_versions


def version_from_yaml(value: object, context: str) -> str | None:
    """Return a YAML ``version`` value as text, rejecting unquoted numbers.

    PyYAML reads ``2.10`` as the float 2.1, so numeric values are refused
    instead of being silently rewritten.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{context} version {value!r} is not a string; quote it in the YAML.")
    return value.strip() or None


@dataclass(frozen=True, slots=True, order=True)
class Identity:
    """Version-independent key of a component (``group:artifact``)."""

    group_id: str
    artifact_id: str

    @classmethod
    def parse(cls, coordinate: str) -> Identity:
        """Parse ``group:artifact`` into an :class:`Identity`."""
        parts = [part.strip() for part in coordinate.split(":")]
        if len(parts) != 2 or not all(parts):
            raise ValueError(
                f"Invalid coordinate {coordinate!r}; expected 'group:artifact'."
            )
        return cls(parts[0], parts[1])

    def __str__(self) -> str:
        return f"{self.group_id}:{self.artifact_id}"


@dataclass(frozen=True, slots=True)
class Gav:
    """Group, artifact and version of a component."""

    group_id: str
    artifact_id: str
    version: str | None

    @property
    def identity(self) -> Identity:
        """Return the version-independent identity."""
        return Identity(self.group_id, self.artifact_id)

    def compare_version(self, other: Gav) -> int:
        """Compare versions of two coordinates of the same component."""
        if self.identity != other.identity:
            raise IdentityMismatchError(
                f"Cannot compare versions of {self.identity} and {other.identity}."
            )
        if not self.version or not other.version:
            raise ValueError(f"Cannot compare unversioned coordinates of {self.identity}.")
        return compare_versions(self.version, other.version)

    def __str__(self) -> str:
        return f"{self.group_id}:{self.artifact_id}:{self.version or ''}"


@dataclass(frozen=True, slots=True)
class Artifact(Gav):
    """A resolvable file: coordinate plus classifier, extension and local path."""

    classifier: str = ""
    extension: str = "jar"
    path: Path | None = field(default=None, compare=False)

    @classmethod
    def parse(cls, coordinate: str) -> Artifact:
        """Parse ``group:artifact[:extension[:classifier]]:version``."""
        parts = [part.strip() for part in coordinate.split(":")]
        if len(parts) == 3:
            group_id, artifact_id, version = parts
            extension, classifier = "jar", ""
        elif len(parts) == 4:
            group_id, artifact_id, extension, version = parts
            classifier = ""
        elif len(parts) == 5:
            group_id, artifact_id, extension, classifier, version = parts
        else:
            raise ValueError(
                f"Invalid coordinate {coordinate!r}; expected 'group:artifact:version'."
            )
        if not (group_id and artifact_id and version):
            raise ValueError(f"Invalid coordinate {coordinate!r}.")
        return cls(group_id, artifact_id, version, classifier, extension or "jar")

    @property
    def file_name(self) -> str:
        """Return the Maven repository file name of this artifact."""
        suffix = f"-{self.classifier}" if self.classifier else ""
        return f"{self.artifact_id}-{self.version}{suffix}.{self.extension}"

    def with_version(self, version: str) -> Artifact:
        """Return a copy pointing at *version* (unresolved)."""
        return replace(self, version=version, path=None)

    def with_path(self, path: Path) -> Artifact:
        """Return a resolved copy located at *path*."""
        return replace(self, path=path)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable mapping (path omitted)."""
        payload: dict[str, object] = {
            "groupId": self.group_id,
            "artifactId": self.artifact_id,
            "version": self.version,
        }
        if self.classifier:
            payload["classifier"] = self.classifier
        if self.extension != "jar":
            payload["extension"] = self.extension
        return payload

    @classmethod
    def from_dict(cls, data: object, *, context: str = "artifact") -> Artifact:
        """Build an artifact from a mapping using Maven key names."""
        if not isinstance(data, dict):
            raise ValueError(f"{context} entry must be a mapping.")
        group_id = str(data.get("groupId") or "").strip()
        artifact_id = str(data.get("artifactId") or "").strip()
        version = version_from_yaml(data.get("version"), context)
        if not group_id or not artifact_id:
            raise ValueError(f"{context} entry requires 'groupId' and 'artifactId'.")
        return cls(
            group_id,
            artifact_id,
            version or None,
            str(data.get("classifier") or ""),
            str(data.get("extension") or "jar"),
        )

    def __str__(self) -> str:
        classifier = f":{self.classifier}" if self.classifier else ""
        return (
            f"{self.group_id}:{self.artifact_id}:{self.extension}{classifier}:"
            f"{self.version or ''}"
        )


@dataclass(frozen=True, slots=True)
class ArtifactDependencies:
    """Dependency descriptor published alongside a resolved version."""

    artifact: Gav
    dependencies: tuple[Artifact, ...] = ()


@dataclass(frozen=True, slots=True)
class UpdateAction:
    """One atomic version change of a single component."""

    old_version: Artifact
    new_version: Artifact

    def __post_init__(self) -> None:
        """Enforce identical identity and a strictly newer version."""
        if self.new_version.compare_version(self.old_version) <= 0:
            raise ValueError(
                f"Update of {self.identity} must move to a newer version "
                f"({self.old_version.version} -> {self.new_version.version})."
            )

    @property
    def identity(self) -> Identity:
        """Return the identity shared by both versions."""
        return self.old_version.identity

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-friendly description of the action."""
        return {
            "groupId": self.old_version.group_id,
            "artifactId": self.old_version.artifact_id,
            "oldVersion": self.old_version.version,
            "newVersion": self.new_version.version,
        }

    def __str__(self) -> str:
        return (
            f"Update [{self.old_version.group_id}, {self.old_version.artifact_id}]: "
            f"{self.old_version.version} ==> {self.new_version.version}"
        )


__all__ = [
    "Artifact",
    "ArtifactDependencies",
    "Gav",
    "Identity",
    "UpdateAction",
]
