"""Resolve the exact manifest content every configured channel points at."""
from __future__ import annotations

import hashlib
import logging
from collections.abc import Mapping, Sequence

import yaml

from ..channels import Channel, ManifestCoordinate
from ..errors import ProvctlError
from ..model import Artifact
from ..repository.resolver import RepositoryResolver
from ..versions import latest_version
from .version_record import (
    ManifestVersionEntry,
    ManifestVersionRecord,
    MavenManifestVersion,
    OpenManifestVersion,
    UrlManifestVersion,
)

logger = logging.getLogger(__name__)

MANIFEST_CLASSIFIER = "manifest"
MANIFEST_EXTENSION = "yaml"


def content_hash(content: bytes) -> str:
    """Return the SHA-1 hex digest identifying manifest *content*."""
    return hashlib.sha1(content).hexdigest()


def manifest_name(content: bytes | str | None) -> str | None:
    """Return the ``name`` declared by manifest YAML, if any."""
    if content is None:
        return None
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError:
        logger.warning("Unable to parse manifest content to extract its name")
        return None
    if isinstance(data, Mapping) and data.get("name") is not None:
        return str(data["name"])
    return None


class ManifestVersionResolver:
    """Build a :class:`ManifestVersionRecord` from channel definitions."""

    def __init__(self, resolver: RepositoryResolver) -> None:
        self._resolver = resolver

    def get_current_versions(self, channels: Sequence[Channel]) -> ManifestVersionRecord:
        """Return one record entry per channel, in channel order.

        A channel that cannot be resolved is recorded as a placeholder and a
        warning is collected; the remaining channels are still processed.
        """
        record = ManifestVersionRecord()
        for channel in channels:
            try:
                entry = self._resolve_channel(channel, record)
            except ProvctlError as exc:
                label = channel.name or "<unnamed>"
                message = f"Unable to resolve manifest of channel {label}: {exc}"
                logger.warning(message)
                record.warnings.append(message)
                entry = _placeholder(channel)
            record.add(entry)
        return record

    def _resolve_channel(
        self,
        channel: Channel,
        record: ManifestVersionRecord,
    ) -> ManifestVersionEntry:
        coordinate = channel.manifest
        if coordinate is None:
            return OpenManifestVersion(
                channel=channel.name,
                repositories=tuple(channel.repository_ids),
                strategy=channel.no_stream_strategy,
            )
        if coordinate.is_url:
            return self._resolve_url(channel, coordinate)
        return self._resolve_maven(channel, coordinate, record)

    def _resolve_url(self, channel: Channel, coordinate: ManifestCoordinate) -> UrlManifestVersion:
        url = str(coordinate.url)
        content = self._resolver.fetch_url(url)
        return UrlManifestVersion(
            channel=channel.name,
            url=url,
            hash=content_hash(content),
            description=manifest_name(content),
        )

    def _resolve_maven(
        self,
        channel: Channel,
        coordinate: ManifestCoordinate,
        record: ManifestVersionRecord,
    ) -> MavenManifestVersion:
        group_id = str(coordinate.group_id)
        artifact_id = str(coordinate.artifact_id)
        version = coordinate.version
        if not version:
            version = latest_version(
                self._resolver.channel_versions(channel, group_id, artifact_id)
            )
            if version is None:
                message = (
                    f"Unable to determine version of manifest {group_id}:{artifact_id} "
                    f"in channel {channel.name or '<unnamed>'}"
                )
                logger.warning(message)
                record.warnings.append(message)
                return MavenManifestVersion(
                    channel=channel.name,
                    group_id=group_id,
                    artifact_id=artifact_id,
                    version="",
                    description=None,
                )

        manifest_artifact = Artifact(
            group_id, artifact_id, version, MANIFEST_CLASSIFIER, MANIFEST_EXTENSION
        )
        content = self._resolver.fetch_channel_artifact(channel, manifest_artifact)
        if content is None:
            message = (
                f"Manifest {manifest_artifact} is not published in channel "
                f"{channel.name or '<unnamed>'}"
            )
            logger.warning(message)
            record.warnings.append(message)
        return MavenManifestVersion(
            channel=channel.name,
            group_id=group_id,
            artifact_id=artifact_id,
            version=version,
            description=manifest_name(content),
        )


def _placeholder(channel: Channel) -> ManifestVersionEntry:
    coordinate = channel.manifest
    if coordinate is None:
        return OpenManifestVersion(
            channel=channel.name,
            repositories=tuple(channel.repository_ids),
            strategy=channel.no_stream_strategy,
        )
    if coordinate.is_url:
        return UrlManifestVersion(channel=channel.name, url=str(coordinate.url), hash="")
    return MavenManifestVersion(
        channel=channel.name,
        group_id=str(coordinate.group_id),
        artifact_id=str(coordinate.artifact_id),
        version=coordinate.version or "",
    )


__all__ = ["ManifestVersionResolver", "content_hash", "manifest_name"]
