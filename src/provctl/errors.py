"""Exception hierarchy shared by the resolution engine and metadata helpers."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .model import Identity


class ProvctlError(RuntimeError):
    """Base class for all provctl failures."""


class ArtifactNotFoundError(ProvctlError):
    """Raised when a component is missing from the manifest or every repository."""


class UnresolvedConstraintError(ProvctlError):
    """Raised when no channel offers a version meeting a required floor."""

    def __init__(
        self,
        identity: Identity,
        required_version: str,
        available_version: str | None = None,
    ) -> None:
        """Record the identity and the version floor that could not be met."""
        self.identity = identity
        self.required_version = required_version
        self.available_version = available_version
        message = f"Unable to find [{identity}] in version >= {required_version}"
        if available_version:
            message += f" (best available: {available_version})"
        super().__init__(message)


class IdentityMismatchError(ValueError):
    """Raised when versions of two different components are compared."""


class InvalidTargetPathError(ProvctlError):
    """Raised when a metadata target path is missing or of the wrong kind."""


class MetadataAlreadyInitializedError(ProvctlError):
    """Raised when metadata generation would overwrite existing files."""


class MetadataIOError(ProvctlError):
    """Raised when metadata files cannot be read or written."""


class RemoteResolutionError(ProvctlError):
    """Raised when a repository cannot be queried (network or I/O failure)."""


class InstallationNotFoundError(ProvctlError):
    """Raised when a directory does not contain provctl metadata."""


class ArtifactInstallError(ProvctlError):
    """Raised when the installation layer cannot swap an artifact."""


__all__ = [
    "ArtifactInstallError",
    "ArtifactNotFoundError",
    "IdentityMismatchError",
    "InstallationNotFoundError",
    "InvalidTargetPathError",
    "MetadataAlreadyInitializedError",
    "MetadataIOError",
    "ProvctlError",
    "RemoteResolutionError",
    "UnresolvedConstraintError",
]
