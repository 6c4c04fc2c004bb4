"""Channel-aware artifact resolution with a fallback repository set.

Channels are searched first; only when none of them offers a candidate are
the fallback repositories consulted. A resolver owns one HTTP session and is
meant to be used as a context manager for the duration of a resolution
session::

    with RepositoryResolver(channels, cache_dir=cache) as resolver:
        latest = resolver.find_latest_version_of(artifact)
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from types import TracebackType
from urllib.parse import urlparse

import requests

from ..channels import Channel, Repository
from ..errors import ArtifactNotFoundError, RemoteResolutionError
from ..model import Artifact, ArtifactDependencies, Gav, Identity
from ..versions import VersionRange, latest_version
from .descriptor import DescriptorError, descriptor_from_yaml
from .maven import (
    MavenRepository,
    artifact_relative_path,
    descriptor_artifact,
    local_directory,
)

logger = logging.getLogger(__name__)


class RepositoryResolver:
    """Resolve versions, descriptors and files across channels."""

    def __init__(
        self,
        channels: Sequence[Channel],
        *,
        cache_dir: Path,
        fallback_repositories: Sequence[Repository] = (),
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        """Prepare repository clients for every channel and the fallback set."""
        self.channels = list(channels)
        self.cache_dir = cache_dir.expanduser()
        self.timeout = timeout
        self._owns_session = session is None
        self._session = session if session is not None else requests.Session()
        self._channel_repositories: list[tuple[Channel, list[MavenRepository]]] = [
            (channel, [self._client(repository) for repository in channel.repositories])
            for channel in self.channels
        ]
        self._fallback = [self._client(repository) for repository in fallback_repositories]
        self._descriptors: dict[Gav, ArtifactDependencies | None] = {}
        self._resolved: set[Artifact] = set()
        self._closed = False

    def _client(self, repository: Repository) -> MavenRepository:
        return MavenRepository(repository, session=self._session, timeout=self.timeout)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    def __enter__(self) -> RepositoryResolver:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Release the HTTP session (idempotent)."""
        if self._closed:
            return
        self._closed = True
        if self._owns_session:
            self._session.close()

    @property
    def resolved_artifacts(self) -> frozenset[Artifact]:
        """Return jar artifacts materialised through :meth:`resolve_latest`."""
        return frozenset(self._resolved)

    # ------------------------------------------------------------------
    # Version lookup
    # ------------------------------------------------------------------
    def find_latest_version_of(
        self,
        artifact: Artifact,
        version_range: str | None = None,
    ) -> Artifact:
        """Return the highest available version of *artifact*.

        Without *version_range* the search covers ``[current,)``. When no
        channel offers a candidate, an explicitly versioned artifact keeps its
        version; otherwise the fallback repositories are searched.
        """
        search_range = self._search_range(artifact, version_range)
        latest = self.find_latest_in_channels(artifact, search_range)
        if latest is not None:
            logger.debug("LATEST: found %s for range %s", latest, search_range)
            return latest

        logger.info("Artifact %s not found in channels, falling back", artifact.identity)
        if version_range is None and artifact.version:
            logger.debug("Re-using artifact version %s", artifact.version)
            return artifact.with_version(artifact.version)

        latest = self.find_latest_fallback(artifact, search_range)
        if latest is None:
            raise ArtifactNotFoundError(
                f"Artifact [{artifact.identity}] not found in any channel or fallback "
                f"repository for range {search_range}"
            )
        return latest

    def find_latest_in_channels(
        self,
        artifact: Artifact,
        search_range: VersionRange,
    ) -> Artifact | None:
        """Return the best channel candidate inside *search_range*, if any."""
        repositories = [repo for _, repos in self._channel_repositories for repo in repos]
        return self._latest_from(repositories, artifact, search_range)

    def find_latest_fallback(
        self,
        artifact: Artifact,
        search_range: VersionRange,
    ) -> Artifact | None:
        """Return the best fallback candidate inside *search_range*, if any."""
        return self._latest_from(self._fallback, artifact, search_range)

    def channel_versions(self, channel: Channel, group_id: str, artifact_id: str) -> list[str]:
        """Return every version of a component published in *channel*'s repositories."""
        return self._collect_versions(
            self._repositories_for(channel),
            Identity(group_id, artifact_id),
        )

    def _repositories_for(self, channel: Channel) -> list[MavenRepository]:
        for known, repositories in self._channel_repositories:
            if known is channel:
                return repositories
        return [self._client(repository) for repository in channel.repositories]

    def _latest_from(
        self,
        repositories: Iterable[MavenRepository],
        artifact: Artifact,
        search_range: VersionRange,
    ) -> Artifact | None:
        candidates = search_range.filter(self._collect_versions(repositories, artifact.identity))
        best = latest_version(candidates)
        return artifact.with_version(best) if best is not None else None

    @staticmethod
    def _collect_versions(
        repositories: Iterable[MavenRepository],
        identity: Identity,
    ) -> list[str]:
        versions: list[str] = []
        seen: set[str] = set()
        for repository in repositories:
            for version in repository.list_versions(identity.group_id, identity.artifact_id):
                if version not in seen:
                    seen.add(version)
                    versions.append(version)
        return versions

    @staticmethod
    def _search_range(artifact: Artifact, version_range: str | None) -> VersionRange:
        if version_range is None:
            if not artifact.version:
                raise ArtifactNotFoundError(
                    f"Can't compute range, version is not set for {artifact.identity}"
                )
            return VersionRange.from_floor(artifact.version)
        if artifact.version:
            logger.warning(
                "Version is set for %s although a range is provided %s. Using provided range.",
                artifact,
                version_range,
            )
        return VersionRange.parse(version_range)

    # ------------------------------------------------------------------
    # Descriptors and files
    # ------------------------------------------------------------------
    def resolve_descriptor(self, gav: Gav) -> ArtifactDependencies | None:
        """Return the dependency descriptor published for *gav*, if any."""
        key = Gav(gav.group_id, gav.artifact_id, gav.version)
        if key in self._descriptors:
            return self._descriptors[key]

        relative = artifact_relative_path(descriptor_artifact(key))
        descriptor: ArtifactDependencies | None = None
        for repository in self._all_repositories():
            content = repository.fetch(relative)
            if content is None:
                continue
            try:
                descriptor = descriptor_from_yaml(content, expected=key)
            except DescriptorError as exc:
                raise RemoteResolutionError(
                    f"Invalid dependency descriptor for {key} in repository "
                    f"'{repository.id}': {exc}"
                ) from exc
            break
        self._descriptors[key] = descriptor
        return descriptor

    def resolve(self, artifact: Artifact) -> Path:
        """Materialise *artifact* in the local cache and return its path."""
        target = self.cache_dir / artifact_relative_path(artifact)
        if target.is_file():
            return target
        for repository in self._all_repositories():
            downloaded = repository.download(artifact, target)
            if downloaded is not None:
                logger.info("RESOLVED: %s from '%s'", artifact, repository.id)
                return downloaded
        raise ArtifactNotFoundError(
            f"Artifact [{artifact}] is not available in any channel or fallback repository"
        )

    def resolve_latest(self, artifact: Artifact, version_range: str | None = None) -> Artifact:
        """Find the latest version of *artifact* and return it resolved locally."""
        latest = self.find_latest_version_of(artifact, version_range)
        resolved = latest.with_path(self.resolve(latest))
        if resolved.extension == "jar":
            self._resolved.add(resolved)
        return resolved

    def fetch_channel_artifact(self, channel: Channel, artifact: Artifact) -> bytes | None:
        """Return the content of *artifact* from *channel*'s repositories."""
        relative = artifact_relative_path(artifact)
        for repository in self._repositories_for(channel):
            content = repository.fetch(relative)
            if content is not None:
                return content
        return None

    def fetch_url(self, url: str) -> bytes:
        """Return the content addressed by *url* (``http(s)://`` or ``file://``)."""
        local = local_directory(url)
        if local is not None:
            try:
                return local.read_bytes()
            except OSError as exc:
                raise RemoteResolutionError(f"Unable to read {url}: {exc}") from exc
        if urlparse(url).scheme not in ("http", "https"):
            raise RemoteResolutionError(f"Unsupported URL scheme: {url}")
        try:
            response = self._session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise RemoteResolutionError(f"Request to {url} failed: {exc}") from exc
        if response.status_code != 200:
            raise RemoteResolutionError(f"HTTP {response.status_code} fetching {url}")
        return response.content

    def _all_repositories(self) -> list[MavenRepository]:
        repositories = [repo for _, repos in self._channel_repositories for repo in repos]
        repositories.extend(self._fallback)
        return repositories


__all__ = ["RepositoryResolver"]
