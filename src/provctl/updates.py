"""Update resolution: find the consistent set of component upgrades and apply it.

:class:`UpdateFinder` walks dependency descriptors of every newly chosen
version with an explicit worklist, so cyclic descriptors terminate and each
component receives at most one :class:`~provctl.model.UpdateAction`.
:class:`UpdateSession` combines that plan with feature-pack updates and hands
the actions to the installation layer; the manifest is only written once every
action succeeded.
"""
from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

from .errors import ArtifactNotFoundError, ProvctlError, UnresolvedConstraintError
from .installation import LocalInstallation
from .manifest import Manifest
from .model import Artifact, ArtifactDependencies, Gav, Identity, UpdateAction

logger = logging.getLogger(__name__)


class ArtifactSource(Protocol):
    """Version and descriptor lookups the engine needs from a repository."""

    def find_latest_version_of(
        self,
        artifact: Artifact,
        version_range: str | None = None,
    ) -> Artifact:
        """Return the highest available version of *artifact*."""

    def resolve_descriptor(self, gav: Gav) -> ArtifactDependencies | None:
        """Return the dependency descriptor of *gav*, if published."""


class ArtifactResolver(ArtifactSource, Protocol):
    """Artifact source that can also materialise files locally."""

    def resolve(self, artifact: Artifact) -> Path:
        """Return a local path holding *artifact*."""


class ArtifactInstaller(Protocol):
    """Installation layer that swaps one installed artifact for another."""

    def update_artifact(self, old: Artifact, new: Artifact, path: Path) -> None:
        """Replace the files of *old* with *path* (the content of *new*)."""


class ConstraintStatus(Enum):
    """Outcome of checking one required version floor."""

    ALREADY_SATISFIED = "already-satisfied"
    NEEDS_UPDATE = "needs-update"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ConstraintCheck:
    """Classification of a dependency constraint against the installation."""

    status: ConstraintStatus
    constraint: Artifact
    installed: Artifact | None = None
    candidate: Artifact | None = None
    error: ProvctlError | None = None

    @property
    def reason(self) -> str | None:
        """Return the failure message, if the check failed."""
        return str(self.error) if self.error is not None else None

    @property
    def action(self) -> UpdateAction | None:
        """Return the update this check calls for, if any."""
        if self.installed is None or self.candidate is None:
            return None
        return UpdateAction(self.installed, self.candidate)

    @classmethod
    def satisfied(cls, constraint: Artifact, installed: Artifact) -> ConstraintCheck:
        return cls(ConstraintStatus.ALREADY_SATISFIED, constraint, installed)

    @classmethod
    def needs_update(
        cls,
        constraint: Artifact,
        installed: Artifact,
        candidate: Artifact,
    ) -> ConstraintCheck:
        return cls(ConstraintStatus.NEEDS_UPDATE, constraint, installed, candidate)

    @classmethod
    def failed(
        cls,
        constraint: Artifact,
        error: ProvctlError,
        installed: Artifact | None = None,
    ) -> ConstraintCheck:
        return cls(ConstraintStatus.FAILED, constraint, installed, error=error)


class UpdateFinder:
    """Compute update actions for installed components."""

    def __init__(self, manifest: Manifest, source: ArtifactSource) -> None:
        self._manifest = manifest
        self._source = source

    def find_all_updates(self) -> list[UpdateAction]:
        """Return updates for the whole installation."""
        return self.find_updates(self._manifest.identities())

    def find_updates(self, roots: Iterable[Identity]) -> list[UpdateAction]:
        """Return update actions for *roots* and every constraint they introduce.

        Actions are ordered roots first, then in dependency discovery order.
        Raises :class:`ArtifactNotFoundError` when a root or a required
        component is not installed, and :class:`UnresolvedConstraintError`
        when no repository offers a required version floor.
        """
        actions: dict[Identity, UpdateAction] = {}
        pending: deque[Identity] = deque()
        floors: dict[Identity, Artifact] = {}

        for root in roots:
            installed = self._manifest.find(root)
            if installed is None:
                raise ArtifactNotFoundError(f"Artifact [{root}] not found")
            if root in actions:
                continue
            latest = self._source.find_latest_version_of(installed)
            if latest.compare_version(installed) <= 0:
                logger.debug("No update for %s (latest %s)", root, latest.version)
                continue
            actions[root] = UpdateAction(installed, latest)
            self._collect_requirements(latest, floors, pending)

        while pending:
            identity = pending.popleft()
            constraint = floors.pop(identity)
            check = self.check_constraint(constraint, actions)
            if check.error is not None:
                raise check.error
            action = check.action
            if action is None:
                continue
            actions[identity] = action
            self._collect_requirements(action.new_version, floors, pending)

        return list(actions.values())

    def check_constraint(
        self,
        constraint: Artifact,
        planned: Mapping[Identity, UpdateAction] | None = None,
    ) -> ConstraintCheck:
        """Classify *constraint* (a required minimum version).

        A component already present in *planned* is checked against its chosen
        version instead of being resolved again.
        """
        identity = constraint.identity
        installed = self._manifest.find(identity)
        if installed is None:
            return ConstraintCheck.failed(
                constraint,
                ArtifactNotFoundError(f"Required artifact [{identity}] not found"),
            )

        chosen = (planned or {}).get(identity)
        if chosen is not None:
            if chosen.new_version.compare_version(constraint) >= 0:
                return ConstraintCheck.satisfied(constraint, chosen.new_version)
            return ConstraintCheck.failed(
                constraint,
                UnresolvedConstraintError(
                    identity, str(constraint.version), chosen.new_version.version
                ),
                installed,
            )

        if installed.compare_version(constraint) >= 0:
            return ConstraintCheck.satisfied(constraint, installed)

        latest = self._source.find_latest_version_of(installed)
        if latest.compare_version(constraint) < 0:
            return ConstraintCheck.failed(
                constraint,
                UnresolvedConstraintError(identity, str(constraint.version), latest.version),
                installed,
            )
        return ConstraintCheck.needs_update(constraint, installed, latest)

    def _collect_requirements(
        self,
        gav: Gav,
        floors: dict[Identity, Artifact],
        pending: deque[Identity],
    ) -> None:
        descriptor = self._source.resolve_descriptor(gav)
        if descriptor is None:
            return
        for required in descriptor.dependencies:
            identity = required.identity
            existing = floors.get(identity)
            if existing is None:
                floors[identity] = required
                pending.append(identity)
            elif required.compare_version(existing) > 0:
                floors[identity] = required


# ----------------------------------------------------------------------
# Feature-pack interop
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class FeaturePackUpdate:
    """One feature pack moving between builds."""

    producer: str
    installed_build: str
    new_build: str

    def __str__(self) -> str:
        return f"{self.producer}   {self.installed_build}  ==>  {self.new_build}"


@dataclass(frozen=True, slots=True)
class FeaturePackPlan:
    """Feature-pack level updates reported by the provisioning engine."""

    updates: tuple[FeaturePackUpdate, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.updates


class FeaturePackProvisioner(Protocol):
    """External engine that provisions feature packs into the installation."""

    def find_updates(self) -> FeaturePackPlan:
        """Return the available feature-pack updates."""

    def apply(self, plan: FeaturePackPlan) -> set[Artifact]:
        """Apply *plan* and return installed artifacts it updated."""


class NoFeaturePackProvisioner:
    """Provisioner for installations without feature-pack support."""

    def find_updates(self) -> FeaturePackPlan:
        return FeaturePackPlan()

    def apply(self, plan: FeaturePackPlan) -> set[Artifact]:
        return set()


def exclude_feature_pack_updates(
    actions: Iterable[UpdateAction],
    updated: Iterable[Artifact],
) -> list[UpdateAction]:
    """Drop actions for components already updated by feature-pack application."""
    covered = {artifact.identity for artifact in updated}
    return [action for action in actions if action.identity not in covered]


def find_anchor(artifacts: Iterable[Artifact], anchor: Identity | None) -> Artifact | None:
    """Return the anchor component among *artifacts*, or None when absent."""
    if anchor is None:
        return None
    for artifact in artifacts:
        if artifact.identity == anchor:
            return artifact
    return None


# ----------------------------------------------------------------------
# Session
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class UpdatePlan:
    """Artifact and feature-pack updates proposed for an installation."""

    actions: tuple[UpdateAction, ...] = ()
    feature_packs: FeaturePackPlan = field(default_factory=FeaturePackPlan)

    @property
    def is_empty(self) -> bool:
        return not self.actions and self.feature_packs.is_empty

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-friendly description of the plan."""
        return {
            "feature_packs": [
                {
                    "producer": update.producer,
                    "installed": update.installed_build,
                    "new": update.new_build,
                }
                for update in self.feature_packs.updates
            ],
            "artifacts": [action.to_dict() for action in self.actions],
        }


@dataclass(frozen=True, slots=True)
class UpdateResult:
    """Outcome of :meth:`UpdateSession.apply`."""

    applied: tuple[UpdateAction, ...]
    feature_pack_artifacts: tuple[Artifact, ...]
    manifest: Manifest
    anchor: Artifact | None = None

    @property
    def changed(self) -> bool:
        return bool(self.applied or self.feature_pack_artifacts)


class UpdateSession:
    """Plan and apply updates for one installation."""

    def __init__(
        self,
        installation: LocalInstallation,
        resolver: ArtifactResolver,
        installer: ArtifactInstaller,
        provisioner: FeaturePackProvisioner | None = None,
        *,
        anchor: Identity | None = None,
    ) -> None:
        self.installation = installation
        self.resolver = resolver
        self.installer = installer
        self.provisioner = provisioner if provisioner is not None else NoFeaturePackProvisioner()
        self.anchor = anchor

    def plan(self, identity: Identity | None = None) -> UpdatePlan:
        """Return the updates available for *identity* (or the whole installation)."""
        finder = UpdateFinder(self.installation.manifest, self.resolver)
        if identity is None:
            actions = finder.find_all_updates()
            feature_packs = self.provisioner.find_updates()
        else:
            actions = finder.find_updates([identity])
            feature_packs = FeaturePackPlan()
        return UpdatePlan(tuple(actions), feature_packs)

    def apply(self, plan: UpdatePlan) -> UpdateResult:
        """Apply *plan*; the manifest is persisted only after every action succeeded."""
        working = self.installation.manifest.copy()

        updated: set[Artifact] = set()
        if not plan.feature_packs.is_empty:
            updated = self.provisioner.apply(plan.feature_packs)
            working.register_updates(updated)
            logger.info("Feature-pack application updated %d artifacts", len(updated))

        remaining = exclude_feature_pack_updates(plan.actions, updated)
        for action in remaining:
            path = self.resolver.resolve(action.new_version)
            self.installer.update_artifact(
                action.old_version, action.new_version.with_path(path), path
            )
            working.replace(action.old_version, action.new_version)
            logger.info("Applied %s", action)

        self.installation.write_manifest(working)

        anchor = find_anchor(
            [*updated, *(action.new_version for action in remaining)], self.anchor
        )
        return UpdateResult(
            applied=tuple(remaining),
            feature_pack_artifacts=tuple(sorted(updated, key=lambda item: item.identity)),
            manifest=working,
            anchor=anchor,
        )


def describe_plan(plan: UpdatePlan) -> Sequence[str]:
    """Return the human-readable preview lines of *plan*."""
    lines: list[str] = []
    if not plan.feature_packs.is_empty:
        lines.append("Feature pack updates:")
        lines.extend(str(update) for update in plan.feature_packs.updates)
    if plan.actions:
        lines.append("Artifact updates found:")
        lines.extend(str(action) for action in plan.actions)
    return lines


__all__ = [
    "ArtifactInstaller",
    "ArtifactResolver",
    "ArtifactSource",
    "ConstraintCheck",
    "ConstraintStatus",
    "FeaturePackPlan",
    "FeaturePackProvisioner",
    "FeaturePackUpdate",
    "NoFeaturePackProvisioner",
    "UpdateFinder",
    "UpdatePlan",
    "UpdateResult",
    "UpdateSession",
    "describe_plan",
    "exclude_feature_pack_updates",
    "find_anchor",
]
