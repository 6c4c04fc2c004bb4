"""Client for a single Maven 2 layout repository (``http(s)://`` or ``file://``)."""
from __future__ import annotations

import logging
import os
import shutil
import tempfile
import xml.etree.ElementTree as ET
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

import requests

from ..channels import Repository
from ..errors import RemoteResolutionError
from ..model import Artifact, Gav

logger = logging.getLogger(__name__)

METADATA_FILE_NAME = "maven-metadata.xml"
DESCRIPTOR_SUFFIX = "dependencies"
DESCRIPTOR_EXTENSION = "yaml"


def group_path(group_id: str) -> str:
    """Return the repository directory for *group_id*."""
    return group_id.replace(".", "/")


def metadata_relative_path(group_id: str, artifact_id: str) -> str:
    """Return the path of ``maven-metadata.xml`` for a component."""
    return f"{group_path(group_id)}/{artifact_id}/{METADATA_FILE_NAME}"


def artifact_relative_path(artifact: Artifact) -> str:
    """Return the repository path of *artifact*."""
    if not artifact.version:
        raise ValueError(f"Cannot locate unversioned artifact {artifact.identity}.")
    return (
        f"{group_path(artifact.group_id)}/{artifact.artifact_id}/{artifact.version}/"
        f"{artifact.file_name}"
    )


def descriptor_artifact(gav: Gav) -> Artifact:
    """Return the artifact under which *gav*'s dependency descriptor is published."""
    return Artifact(
        gav.group_id,
        gav.artifact_id,
        gav.version,
        DESCRIPTOR_SUFFIX,
        DESCRIPTOR_EXTENSION,
    )


def parse_metadata_versions(content: bytes | str) -> list[str]:
    """Return ``versioning/versions/version`` values from ``maven-metadata.xml``."""
    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise RemoteResolutionError(f"Malformed {METADATA_FILE_NAME}: {exc}") from exc
    versions: list[str] = []
    versioning = root.find("versioning")
    if versioning is not None:
        versions_elem = versioning.find("versions")
        if versions_elem is not None:
            for version_elem in versions_elem.findall("version"):
                if version_elem.text and version_elem.text.strip():
                    versions.append(version_elem.text.strip())
    return versions


def local_directory(url: str) -> Path | None:
    """Return the filesystem directory for ``file://`` or bare path URLs."""
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(url2pathname(parsed.path))
    if not parsed.scheme:
        return Path(url).expanduser()
    return None


class MavenRepository:
    """Read-only access to one repository of a channel or the fallback set."""

    def __init__(
        self,
        repository: Repository,
        *,
        session: requests.Session,
        timeout: float = 30.0,
    ) -> None:
        """Bind the repository definition to a shared HTTP session."""
        self.repository = repository
        self.session = session
        self.timeout = timeout
        self._local_root = local_directory(repository.url)

    @property
    def id(self) -> str:
        """Return the repository identifier."""
        return self.repository.id

    def __repr__(self) -> str:
        return f"MavenRepository(id={self.id!r}, url={self.repository.url!r})"

    def list_versions(self, group_id: str, artifact_id: str) -> list[str]:
        """Return all published versions of a component (empty when unknown)."""
        content = self.fetch(metadata_relative_path(group_id, artifact_id))
        if content is None:
            return []
        return parse_metadata_versions(content)

    def fetch(self, relative_path: str) -> bytes | None:
        """Return the bytes at *relative_path*, or None when absent."""
        if self._local_root is not None:
            target = self._local_root / relative_path
            if not target.is_file():
                return None
            try:
                return target.read_bytes()
            except OSError as exc:
                raise RemoteResolutionError(
                    f"Unable to read {target} from repository '{self.id}': {exc}"
                ) from exc

        url = f"{self.repository.url.rstrip('/')}/{relative_path}"
        logger.debug("GET %s", url)
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise RemoteResolutionError(
                f"Request to repository '{self.id}' failed for {url}: {exc}"
            ) from exc
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise RemoteResolutionError(
                f"Repository '{self.id}' returned HTTP {response.status_code} for {url}"
            )
        return response.content

    def download(self, artifact: Artifact, destination: Path) -> Path | None:
        """Copy *artifact* to *destination*; return None when not published."""
        relative = artifact_relative_path(artifact)
        if self._local_root is not None:
            source = self._local_root / relative
            if not source.is_file():
                return None
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, destination)
            return destination

        content = self.fetch(relative)
        if content is None:
            return None
        destination.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(
            dir=str(destination.parent),
            prefix=f".{destination.name}.",
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "wb") as handle:
                handle.write(content)
            os.replace(tmp_path, destination)
        finally:
            tmp_path.unlink(missing_ok=True)
        return destination


__all__ = [
    "DESCRIPTOR_EXTENSION",
    "DESCRIPTOR_SUFFIX",
    "METADATA_FILE_NAME",
    "MavenRepository",
    "artifact_relative_path",
    "descriptor_artifact",
    "group_path",
    "local_directory",
    "metadata_relative_path",
    "parse_metadata_versions",
]
