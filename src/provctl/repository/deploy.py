"""Publish artifacts into a local Maven-layout repository.

Used to stage new component versions (and their dependency descriptors) for
update testing without a remote repository manager.
"""
from __future__ import annotations

import logging
import shutil
import xml.etree.ElementTree as ET
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from ..errors import MetadataIOError
from ..model import Artifact, ArtifactDependencies, Gav
from ..versions import latest_version
from .descriptor import descriptor_to_yaml
from .maven import (
    artifact_relative_path,
    descriptor_artifact,
    metadata_relative_path,
    parse_metadata_versions,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DeployResult:
    """Paths written by a deployment."""

    artifact: Path
    descriptor: Path
    metadata: Path


def deploy_artifact(
    repository_root: Path,
    artifact: Artifact,
    source: Path,
    dependencies: Sequence[Artifact] = (),
) -> DeployResult:
    """Copy *source* into the repository as *artifact* and publish its descriptor."""
    if not artifact.version:
        raise ValueError(f"Cannot deploy unversioned artifact {artifact.identity}.")
    if not source.is_file():
        raise MetadataIOError(f"Source file {source} does not exist.")

    target = repository_root / artifact_relative_path(artifact)
    descriptor_path = repository_root / artifact_relative_path(descriptor_artifact(artifact))
    metadata_path = repository_root / metadata_relative_path(
        artifact.group_id, artifact.artifact_id
    )
    descriptor = ArtifactDependencies(
        Gav(artifact.group_id, artifact.artifact_id, artifact.version),
        tuple(dependencies),
    )
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        descriptor_path.write_text(descriptor_to_yaml(descriptor), encoding="utf-8")
        _add_metadata_version(metadata_path, artifact)
    except OSError as exc:
        raise MetadataIOError(f"Failed to deploy {artifact} to {repository_root}: {exc}") from exc

    logger.info("Deployed %s to %s", artifact, repository_root)
    return DeployResult(artifact=target, descriptor=descriptor_path, metadata=metadata_path)


def _add_metadata_version(metadata_path: Path, artifact: Artifact) -> None:
    versions: list[str] = []
    if metadata_path.exists():
        versions = parse_metadata_versions(metadata_path.read_bytes())
    if artifact.version not in versions:
        versions.append(str(artifact.version))

    root = ET.Element("metadata")
    ET.SubElement(root, "groupId").text = artifact.group_id
    ET.SubElement(root, "artifactId").text = artifact.artifact_id
    versioning = ET.SubElement(root, "versioning")
    newest = latest_version(versions)
    ET.SubElement(versioning, "latest").text = newest
    ET.SubElement(versioning, "release").text = newest
    versions_elem = ET.SubElement(versioning, "versions")
    for version in versions:
        ET.SubElement(versions_elem, "version").text = version
    ET.SubElement(versioning, "lastUpdated").text = datetime.now(tz=UTC).strftime("%Y%m%d%H%M%S")

    ET.indent(root)
    metadata_path.parent.mkdir(parents=True, exist_ok=True)
    ET.ElementTree(root).write(metadata_path, encoding="utf-8", xml_declaration=True)


__all__ = ["DeployResult", "deploy_artifact"]
