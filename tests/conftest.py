"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import pytest

from provctl.channels import Channel, Repository
from provctl.manifest import Manifest
from provctl.metadata import persistence
from provctl.model import Artifact
from provctl.repository import deploy_artifact
from provctl.repository.maven import group_path


@dataclass
class LocalRepository:
    """A ``file://`` Maven-layout repository populated by tests."""

    root: Path
    repo_id: str = "local"

    @property
    def url(self) -> str:
        return self.root.as_uri()

    @property
    def repository(self) -> Repository:
        return Repository(self.repo_id, self.url)

    def channel(self, name: str | None = "test-channel") -> Channel:
        return Channel(name=name, repositories=(self.repository,))

    def publish(
        self,
        coordinate: str,
        *dependencies: str,
        content: bytes | None = None,
    ) -> Artifact:
        """Deploy ``group:artifact:version`` with its dependency descriptor."""
        artifact = Artifact.parse(coordinate)
        staging = self.root.parent / ".staging"
        staging.mkdir(parents=True, exist_ok=True)
        source = staging / artifact.file_name
        source.write_bytes(content if content is not None else coordinate.encode("utf-8"))
        deploy_artifact(
            self.root,
            artifact,
            source,
            [Artifact.parse(dependency) for dependency in dependencies],
        )
        return artifact


@pytest.fixture()
def maven_repo(tmp_path: Path) -> LocalRepository:
    """Return an empty local repository."""
    root = tmp_path / "repo"
    root.mkdir()
    return LocalRepository(root)


def create_installation(
    root: Path,
    artifacts: Sequence[str],
    channels: Sequence[Channel],
) -> Path:
    """Lay out a server with module jars and generated metadata."""
    root.mkdir(parents=True, exist_ok=True)
    manifest = Manifest([Artifact.parse(coordinate) for coordinate in artifacts])
    for artifact in manifest:
        module_dir = (
            root / "modules" / group_path(artifact.group_id) / artifact.artifact_id / "main"
        )
        module_dir.mkdir(parents=True, exist_ok=True)
        (module_dir / artifact.file_name).write_text(str(artifact), encoding="utf-8")
        (module_dir / "module.xml").write_text(
            '<module xmlns="urn:jboss:module:1.9" name="'
            f'{artifact.group_id}.{artifact.artifact_id}">\n'
            "    <resources>\n"
            f'        <resource-root path="{artifact.file_name}"/>\n'
            "    </resources>\n"
            "</module>\n",
            encoding="utf-8",
        )
    persistence.generate(root, channels, manifest)
    return root


@pytest.fixture()
def make_installation(tmp_path: Path):
    """Return a factory creating installations under ``tmp_path``."""

    def factory(
        artifacts: Sequence[str],
        channels: Sequence[Channel],
        name: str = "server",
    ) -> Path:
        return create_installation(tmp_path / name, artifacts, channels)

    return factory
