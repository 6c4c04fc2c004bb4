"""Repository resolver tests against local Maven-layout repositories."""
from __future__ import annotations

import logging
from pathlib import Path

import pytest
import requests

from provctl.channels import Channel, Repository
from provctl.errors import ArtifactNotFoundError, RemoteResolutionError
from provctl.model import Artifact, Gav
from provctl.repository import RepositoryResolver
from provctl.repository.descriptor import DescriptorError, descriptor_from_yaml
from provctl.repository.maven import MavenRepository, parse_metadata_versions


def _resolver(tmp_path: Path, channels: list[Channel], **kwargs: object) -> RepositoryResolver:
    return RepositoryResolver(
        channels, cache_dir=tmp_path / "cache", **kwargs  # type: ignore[arg-type]
    )


def test_find_latest_version_across_channels(tmp_path: Path, maven_repo) -> None:
    """The highest version at or above the installed one wins."""
    maven_repo.publish("org.example:core:1.0")
    maven_repo.publish("org.example:core:1.10")
    maven_repo.publish("org.example:core:1.9")

    with _resolver(tmp_path, [maven_repo.channel()]) as resolver:
        latest = resolver.find_latest_version_of(Artifact.parse("org.example:core:1.0"))

    assert latest.version == "1.10"


def test_explicit_range_takes_precedence_with_notice(
    tmp_path: Path,
    maven_repo,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """An explicit range wins over the artifact version and logs a notice."""
    for version in ("1.0", "1.5", "2.0"):
        maven_repo.publish(f"org.example:core:{version}")

    with caplog.at_level(logging.WARNING, logger="provctl.repository.resolver"):
        with _resolver(tmp_path, [maven_repo.channel()]) as resolver:
            latest = resolver.find_latest_version_of(
                Artifact.parse("org.example:core:1.0"), "[1.0,2.0)"
            )

    assert latest.version == "1.5"
    assert "Using provided range" in caplog.text


def test_missing_version_and_range_cannot_compute_range(tmp_path: Path, maven_repo) -> None:
    """Without version or range the search floor is unknown."""
    artifact = Artifact("org.example", "core", None)

    with _resolver(tmp_path, [maven_repo.channel()]) as resolver:
        with pytest.raises(ArtifactNotFoundError, match="Can't compute range"):
            resolver.find_latest_version_of(artifact)


def test_fallback_reuses_explicit_version(tmp_path: Path, maven_repo) -> None:
    """A versioned artifact missing from every channel keeps its version."""
    with _resolver(tmp_path, [maven_repo.channel()]) as resolver:
        latest = resolver.find_latest_version_of(Artifact.parse("org.example:gone:3.1"))

    assert latest.version == "3.1"


def test_fallback_repositories_searched_for_ranges(tmp_path: Path, maven_repo) -> None:
    """With a caller range the fallback repositories are searched."""
    fallback_root = tmp_path / "fallback"
    fallback_root.mkdir()
    fallback = type(maven_repo)(fallback_root, repo_id="fallback")
    fallback.publish("org.example:extra:1.2")
    fallback.publish("org.example:extra:1.4")

    with _resolver(
        tmp_path,
        [maven_repo.channel()],
        fallback_repositories=[fallback.repository],
    ) as resolver:
        latest = resolver.find_latest_version_of(
            Artifact.parse("org.example:extra:1.0"), "[1.0,1.3]"
        )
        with pytest.raises(ArtifactNotFoundError, match="org.example:extra"):
            resolver.find_latest_version_of(Artifact.parse("org.example:extra:1.0"), "[5,)")

    assert latest.version == "1.2"


def test_resolve_descriptor_reads_dependencies(tmp_path: Path, maven_repo) -> None:
    """Descriptors list the floors required by a published version."""
    maven_repo.publish("org.example:a:2.0", "org.example:b:2.0", "org.example:c:1.1")

    with _resolver(tmp_path, [maven_repo.channel()]) as resolver:
        descriptor = resolver.resolve_descriptor(Gav("org.example", "a", "2.0"))
        missing = resolver.resolve_descriptor(Gav("org.example", "a", "9.9"))

    assert descriptor is not None
    assert [str(dep.identity) for dep in descriptor.dependencies] == [
        "org.example:b",
        "org.example:c",
    ]
    assert descriptor.dependencies[0].version == "2.0"
    assert missing is None


def test_invalid_descriptor_is_a_remote_failure(tmp_path: Path, maven_repo) -> None:
    """Corrupt descriptors surface as resolution failures."""
    maven_repo.publish("org.example:a:2.0")
    descriptor = maven_repo.root / "org/example/a/2.0/a-2.0-dependencies.yaml"
    descriptor.write_text("dependencies: {broken", encoding="utf-8")

    with _resolver(tmp_path, [maven_repo.channel()]) as resolver:
        with pytest.raises(RemoteResolutionError):
            resolver.resolve_descriptor(Gav("org.example", "a", "2.0"))


def test_resolve_latest_materialises_into_cache(tmp_path: Path, maven_repo) -> None:
    """Resolved artifacts land in the cache and are remembered."""
    maven_repo.publish("org.example:core:1.1", content=b"new jar")

    with _resolver(tmp_path, [maven_repo.channel()]) as resolver:
        resolved = resolver.resolve_latest(Artifact.parse("org.example:core:1.0"))
        remembered = resolver.resolved_artifacts

    assert resolved.path == tmp_path / "cache" / "org/example/core/1.1/core-1.1.jar"
    assert resolved.path.read_bytes() == b"new jar"
    assert remembered == frozenset({resolved})


def test_resolve_missing_artifact_raises(tmp_path: Path, maven_repo) -> None:
    """Artifacts published nowhere cannot be resolved."""
    with _resolver(tmp_path, [maven_repo.channel()]) as resolver:
        with pytest.raises(ArtifactNotFoundError):
            resolver.resolve(Artifact.parse("org.example:core:1.0"))


def test_fetch_url_reads_local_files(tmp_path: Path) -> None:
    """``file://`` URLs are read directly."""
    target = tmp_path / "manifest.yaml"
    target.write_text("name: demo\n", encoding="utf-8")

    with _resolver(tmp_path, []) as resolver:
        assert resolver.fetch_url(target.as_uri()) == b"name: demo\n"
        with pytest.raises(RemoteResolutionError):
            resolver.fetch_url((tmp_path / "missing.yaml").as_uri())
        with pytest.raises(RemoteResolutionError):
            resolver.fetch_url("ftp://example.test/manifest.yaml")


class _FakeResponse:
    def __init__(self, status_code: int, content: bytes = b"") -> None:
        self.status_code = status_code
        self.content = content


class _FakeSession:
    def __init__(self, responses: dict[str, object]) -> None:
        self.responses = responses
        self.closed = False

    def get(self, url: str, timeout: float) -> _FakeResponse:
        outcome = self.responses.get(url, _FakeResponse(404))
        if isinstance(outcome, Exception):
            raise outcome
        assert isinstance(outcome, _FakeResponse)
        return outcome

    def close(self) -> None:
        self.closed = True


def test_http_repository_lists_versions_and_treats_404_as_absent() -> None:
    """HTTP repositories parse metadata; a 404 means not published."""
    metadata = (
        b"<metadata><versioning><versions>"
        b"<version>1.0</version><version>1.1</version>"
        b"</versions></versioning></metadata>"
    )
    url = "https://repo.test/maven2/org/example/core/maven-metadata.xml"
    session = _FakeSession({url: _FakeResponse(200, metadata)})
    repository = MavenRepository(
        Repository("remote", "https://repo.test/maven2/"),
        session=session,  # type: ignore[arg-type]
    )

    assert repository.list_versions("org.example", "core") == ["1.0", "1.1"]
    assert repository.list_versions("org.example", "other") == []


def test_http_failures_are_wrapped_with_cause() -> None:
    """Transport errors keep the original exception as ``__cause__``."""
    failure = requests.ConnectionError("unreachable")
    session = _FakeSession(
        {
            "https://repo.test/org/example/core/maven-metadata.xml": failure,
            "https://repo.test/org/example/other/maven-metadata.xml": _FakeResponse(500),
        }
    )
    repository = MavenRepository(
        Repository("remote", "https://repo.test"),
        session=session,  # type: ignore[arg-type]
    )

    with pytest.raises(RemoteResolutionError) as excinfo:
        repository.list_versions("org.example", "core")
    assert excinfo.value.__cause__ is failure
    with pytest.raises(RemoteResolutionError, match="HTTP 500"):
        repository.list_versions("org.example", "other")


def test_resolver_closes_only_owned_sessions(tmp_path: Path) -> None:
    """A caller-supplied session is left open on exit."""
    session = _FakeSession({})

    with _resolver(tmp_path, [], session=session):
        pass

    assert session.closed is False


def test_malformed_metadata_raises() -> None:
    """Broken ``maven-metadata.xml`` is reported, not ignored."""
    with pytest.raises(RemoteResolutionError):
        parse_metadata_versions(b"<metadata>")


def test_descriptor_versions_are_not_reinterpreted_as_numbers(tmp_path: Path, maven_repo) -> None:
    """A floor of ``2.10`` stays ``2.10``; an unquoted one is refused."""
    text = (
        "artifact: {groupId: org.example, artifactId: a, version: '2.0'}\n"
        "dependencies:\n"
        "  - groupId: org.example\n"
        "    artifactId: b\n"
        "    version: {version}\n"
    )
    quoted = descriptor_from_yaml(text.replace("{version}", "'2.10'"))
    assert quoted.dependencies[0].version == "2.10"
    with pytest.raises(DescriptorError, match="quote"):
        descriptor_from_yaml(text.replace("{version}", "2.10"))

    maven_repo.publish("org.example:a:2.0")
    published = maven_repo.root / "org/example/a/2.0/a-2.0-dependencies.yaml"
    published.write_text(text.replace("{version}", "2.10"), encoding="utf-8")
    with _resolver(tmp_path, [maven_repo.channel()]) as resolver:
        with pytest.raises(RemoteResolutionError):
            resolver.resolve_descriptor(Gav("org.example", "a", "2.0"))
