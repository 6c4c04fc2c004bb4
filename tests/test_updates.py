"""Update resolution engine and session tests."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path

import pytest

from provctl.errors import ArtifactInstallError, ArtifactNotFoundError, UnresolvedConstraintError
from provctl.installation import LocalInstallation
from provctl.manifest import Manifest
from provctl.metadata import persistence
from provctl.model import Artifact, ArtifactDependencies, Gav, Identity, UpdateAction
from provctl.updates import (
    ConstraintStatus,
    FeaturePackPlan,
    FeaturePackUpdate,
    UpdateFinder,
    UpdatePlan,
    UpdateSession,
    describe_plan,
    exclude_feature_pack_updates,
    find_anchor,
)
from provctl.versions import VersionRange, latest_version


class FakeSource:
    """In-memory repository: available versions plus descriptors per GAV."""

    def __init__(
        self,
        versions: Mapping[str, Sequence[str]],
        descriptors: Mapping[str, Sequence[str]] | None = None,
        files_dir: Path | None = None,
    ) -> None:
        self.versions = versions
        self.descriptors = descriptors or {}
        self.files_dir = files_dir
        self.lookups: list[str] = []

    def find_latest_version_of(
        self,
        artifact: Artifact,
        version_range: str | None = None,
    ) -> Artifact:
        self.lookups.append(str(artifact.identity))
        candidates = VersionRange.from_floor(str(artifact.version)).filter(
            self.versions.get(str(artifact.identity), [])
        )
        best = latest_version(candidates)
        return artifact.with_version(best or str(artifact.version))

    def resolve_descriptor(self, gav: Gav) -> ArtifactDependencies | None:
        key = f"{gav.group_id}:{gav.artifact_id}:{gav.version}"
        if key not in self.descriptors:
            return None
        return ArtifactDependencies(
            gav, tuple(Artifact.parse(entry) for entry in self.descriptors[key])
        )

    def resolve(self, artifact: Artifact) -> Path:
        assert self.files_dir is not None
        path = self.files_dir / artifact.file_name
        path.write_text(str(artifact), encoding="utf-8")
        return path


def _manifest(*coordinates: str) -> Manifest:
    return Manifest([Artifact.parse(coordinate) for coordinate in coordinates])


def _summary(actions: Sequence[UpdateAction]) -> list[str]:
    return [
        f"{action.identity.artifact_id}:{action.old_version.version}->{action.new_version.version}"
        for action in actions
    ]


A = Identity("org.example", "a")
B = Identity("org.example", "b")


def test_no_updates_when_latest_equals_installed() -> None:
    """Running the scan twice without applying yields the same empty plan."""
    source = FakeSource({"org.example:a": ["1.0"], "org.example:b": ["1.5"]})
    finder = UpdateFinder(_manifest("org.example:a:1.0", "org.example:b:1.5"), source)

    assert finder.find_all_updates() == []
    assert finder.find_all_updates() == []


def test_dependency_floor_pulls_in_required_update() -> None:
    """A@1.0 requiring B>=2.0 updates B from 1.5 to the best available 2.1."""
    source = FakeSource(
        {"org.example:a": ["1.0", "1.1"], "org.example:b": ["1.5", "2.0", "2.1"]},
        {"org.example:a:1.1": ["org.example:b:2.0"]},
    )
    finder = UpdateFinder(_manifest("org.example:a:1.0", "org.example:b:1.5"), source)

    actions = finder.find_updates([A])

    assert _summary(actions) == ["a:1.0->1.1", "b:1.5->2.1"]


def test_unresolved_floor_names_identity_and_version() -> None:
    """When no channel offers the floor the error names component and floor."""
    source = FakeSource(
        {"org.example:a": ["1.0", "1.1"], "org.example:b": ["1.5", "1.9"]},
        {"org.example:a:1.1": ["org.example:b:2.0"]},
    )
    finder = UpdateFinder(_manifest("org.example:a:1.0", "org.example:b:1.5"), source)

    with pytest.raises(UnresolvedConstraintError) as excinfo:
        finder.find_updates([A])

    assert excinfo.value.identity == B
    assert excinfo.value.required_version == "2.0"
    assert excinfo.value.available_version == "1.9"
    assert "org.example:b" in str(excinfo.value)
    assert ">= 2.0" in str(excinfo.value)


def test_missing_root_and_missing_dependency_raise_not_found() -> None:
    """Components absent from the manifest cannot be updated or required."""
    source = FakeSource(
        {"org.example:a": ["1.0", "2.0"]},
        {"org.example:a:2.0": ["org.example:ghost:1.0"]},
    )
    finder = UpdateFinder(_manifest("org.example:a:1.0"), source)

    with pytest.raises(ArtifactNotFoundError, match="org.example:missing"):
        finder.find_updates([Identity("org.example", "missing")])
    with pytest.raises(ArtifactNotFoundError, match="org.example:ghost"):
        finder.find_updates([A])


def test_cyclic_descriptors_terminate_with_one_action_per_identity() -> None:
    """A requires B and B requires A: resolution stops after both updates."""
    source = FakeSource(
        {"org.example:a": ["1.0", "2.0"], "org.example:b": ["1.0", "2.0"]},
        {
            "org.example:a:2.0": ["org.example:b:2.0"],
            "org.example:b:2.0": ["org.example:a:2.0"],
        },
    )
    finder = UpdateFinder(_manifest("org.example:a:1.0", "org.example:b:1.0"), source)

    actions = finder.find_updates([A])

    assert _summary(actions) == ["a:1.0->2.0", "b:1.0->2.0"]


def test_planned_version_below_later_floor_fails() -> None:
    """A constraint against an already chosen version is verified, not re-resolved."""
    source = FakeSource(
        {"org.example:a": ["1.0", "2.0"], "org.example:b": ["1.0", "2.0"]},
        {
            "org.example:a:2.0": ["org.example:b:2.0"],
            "org.example:b:2.0": ["org.example:a:3.0"],
        },
    )
    finder = UpdateFinder(_manifest("org.example:a:1.0", "org.example:b:1.0"), source)

    with pytest.raises(UnresolvedConstraintError) as excinfo:
        finder.find_updates([A])

    assert excinfo.value.identity == A
    assert excinfo.value.available_version == "2.0"


def test_transitive_expansion_walks_each_new_descriptor() -> None:
    """Requirements of a dependency's new version are discovered (depth three)."""
    source = FakeSource(
        {
            "org.example:a": ["1.0", "2.0"],
            "org.example:b": ["1.0", "2.0"],
            "org.example:c": ["1.0", "3.0"],
        },
        {
            "org.example:a:2.0": ["org.example:b:2.0"],
            "org.example:b:2.0": ["org.example:c:3.0"],
        },
    )
    finder = UpdateFinder(
        _manifest("org.example:a:1.0", "org.example:b:1.0", "org.example:c:1.0"), source
    )

    assert _summary(finder.find_updates([A])) == ["a:1.0->2.0", "b:1.0->2.0", "c:1.0->3.0"]


def test_full_scan_orders_roots_before_discovered_dependencies() -> None:
    """Roots come first in manifest order, dependencies follow in discovery order."""
    source = FakeSource(
        {
            "org.example:a": ["1.0", "2.0"],
            "org.example:b": ["1.0", "1.1"],
            "org.example:c": ["1.0", "1.2"],
        },
        {"org.example:b:1.1": ["org.example:a:2.0"]},
    )
    finder = UpdateFinder(
        _manifest("org.example:a:1.0", "org.example:b:1.0", "org.example:c:1.0"), source
    )

    assert _summary(finder.find_all_updates()) == ["a:1.0->2.0", "b:1.0->1.1", "c:1.0->1.2"]


def test_check_constraint_classifies_outcomes() -> None:
    """Constraint checks report satisfied, needs-update and failed without raising."""
    source = FakeSource({"org.example:b": ["1.5", "2.1"]})
    finder = UpdateFinder(_manifest("org.example:b:1.5"), source)

    satisfied = finder.check_constraint(Artifact.parse("org.example:b:1.0"))
    needs_update = finder.check_constraint(Artifact.parse("org.example:b:2.0"))
    failed = finder.check_constraint(Artifact.parse("org.example:b:3.0"))
    missing = finder.check_constraint(Artifact.parse("org.example:nope:1.0"))

    assert satisfied.status is ConstraintStatus.ALREADY_SATISFIED
    assert needs_update.status is ConstraintStatus.NEEDS_UPDATE
    assert needs_update.candidate is not None and needs_update.candidate.version == "2.1"
    assert failed.status is ConstraintStatus.FAILED
    assert isinstance(failed.error, UnresolvedConstraintError)
    assert missing.status is ConstraintStatus.FAILED
    assert isinstance(missing.error, ArtifactNotFoundError)
    assert missing.reason is not None and "org.example:nope" in missing.reason
    assert satisfied.action is None and failed.action is None and missing.action is None
    assert needs_update.action == UpdateAction(
        Artifact.parse("org.example:b:1.5"), Artifact.parse("org.example:b:2.1")
    )


def test_exclude_feature_pack_updates_by_identity() -> None:
    """Actions already covered by feature-pack application are dropped."""
    actions = [
        UpdateAction(Artifact.parse("org.example:a:1.0"), Artifact.parse("org.example:a:2.0")),
        UpdateAction(Artifact.parse("org.example:b:1.0"), Artifact.parse("org.example:b:2.0")),
    ]

    remaining = exclude_feature_pack_updates(actions, {Artifact.parse("org.example:a:1.5")})

    assert [action.identity for action in remaining] == [B]


def test_find_anchor_returns_none_when_absent() -> None:
    """The anchor lookup has an explicit absent case."""
    artifacts = [Artifact.parse("org.example:a:2.0")]

    assert find_anchor(artifacts, A) == artifacts[0]
    assert find_anchor(artifacts, B) is None
    assert find_anchor(artifacts, None) is None


def test_describe_plan_lists_feature_packs_then_artifacts() -> None:
    """Plan previews group feature-pack and artifact updates."""
    plan = UpdatePlan(
        actions=(
            UpdateAction(Artifact.parse("org.example:a:1.0"), Artifact.parse("org.example:a:2.0")),
        ),
        feature_packs=FeaturePackPlan((FeaturePackUpdate("wildfly", "26.0", "26.1"),)),
    )

    assert list(describe_plan(plan)) == [
        "Feature pack updates:",
        "wildfly   26.0  ==>  26.1",
        "Artifact updates found:",
        "Update [org.example, a]: 1.0 ==> 2.0",
    ]


class RecordingInstaller:
    def __init__(self, fail_on: str | None = None) -> None:
        self.fail_on = fail_on
        self.calls: list[tuple[str, str]] = []

    def update_artifact(self, old: Artifact, new: Artifact, path: Path) -> None:
        if new.artifact_id == self.fail_on:
            raise ArtifactInstallError(f"cannot replace {old}")
        assert new.path == path
        self.calls.append((str(old.version), str(new.version)))


class StubProvisioner:
    def __init__(self, plan: FeaturePackPlan, updated: set[Artifact]) -> None:
        self.plan = plan
        self.updated = updated
        self.applied: list[FeaturePackPlan] = []

    def find_updates(self) -> FeaturePackPlan:
        return self.plan

    def apply(self, plan: FeaturePackPlan) -> set[Artifact]:
        self.applied.append(plan)
        return self.updated


def _installation(tmp_path: Path, *coordinates: str) -> LocalInstallation:
    root = tmp_path / "server"
    root.mkdir()
    persistence.generate(root, [], _manifest(*coordinates))
    return LocalInstallation.load(root)


def test_session_applies_actions_then_writes_manifest(tmp_path: Path) -> None:
    """Each action goes to the installer once before the manifest is persisted."""
    installation = _installation(tmp_path, "org.example:a:1.0", "org.example:b:1.5")
    source = FakeSource(
        {"org.example:a": ["1.1"], "org.example:b": ["2.1"]},
        {"org.example:a:1.1": ["org.example:b:2.0"]},
        files_dir=tmp_path,
    )
    installer = RecordingInstaller()
    session = UpdateSession(installation, source, installer, anchor=B)

    result = session.apply(session.plan(A))

    assert installer.calls == [("1.0", "1.1"), ("1.5", "2.1")]
    assert result.anchor is not None and result.anchor.version == "2.1"
    persisted = persistence.read_manifest(installation.root)
    assert [item.version for item in persisted] == ["1.1", "2.1"]
    assert installation.manifest == persisted


def test_partial_failure_leaves_manifest_untouched(tmp_path: Path) -> None:
    """A failing action aborts the batch before the manifest is written."""
    installation = _installation(tmp_path, "org.example:a:1.0", "org.example:b:1.5")
    manifest_file = persistence.manifest_path(installation.root)
    before = manifest_file.read_bytes()
    source = FakeSource(
        {"org.example:a": ["1.1"], "org.example:b": ["2.1"]},
        {"org.example:a:1.1": ["org.example:b:2.0"]},
        files_dir=tmp_path,
    )
    session = UpdateSession(installation, source, RecordingInstaller(fail_on="b"))

    with pytest.raises(ArtifactInstallError):
        session.apply(session.plan(A))

    assert manifest_file.read_bytes() == before
    assert installation.manifest.find(A).version == "1.0"


def test_session_skips_artifacts_updated_by_feature_packs(tmp_path: Path) -> None:
    """Feature-pack updated components are registered, not installed again."""
    installation = _installation(tmp_path, "org.example:a:1.0", "org.example:b:1.0")
    source = FakeSource(
        {"org.example:a": ["2.0"], "org.example:b": ["2.0"]},
        files_dir=tmp_path,
    )
    fp_plan = FeaturePackPlan((FeaturePackUpdate("server", "1", "2"),))
    provisioner = StubProvisioner(fp_plan, {Artifact.parse("org.example:a:2.0")})
    installer = RecordingInstaller()
    session = UpdateSession(installation, source, installer, provisioner)

    plan = session.plan()
    result = session.apply(plan)

    assert plan.feature_packs == fp_plan
    assert provisioner.applied == [fp_plan]
    assert installer.calls == [("1.0", "2.0")]
    assert [action.identity for action in result.applied] == [B]
    assert [item.version for item in result.manifest] == ["2.0", "2.0"]
    assert result.changed is True
