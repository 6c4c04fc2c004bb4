"""Serialisation of artifact dependency descriptors."""
from __future__ import annotations

from collections.abc import Mapping

import yaml

from ..model import Artifact, ArtifactDependencies, Gav


class DescriptorError(ValueError):
    """Raised when a dependency descriptor cannot be parsed."""


def descriptor_to_yaml(descriptor: ArtifactDependencies) -> str:
    """Serialise *descriptor* to YAML text."""
    payload = {
        "artifact": {
            "groupId": descriptor.artifact.group_id,
            "artifactId": descriptor.artifact.artifact_id,
            "version": descriptor.artifact.version,
        },
        "dependencies": [dependency.to_dict() for dependency in descriptor.dependencies],
    }
    return yaml.safe_dump(payload, sort_keys=False)


def descriptor_from_yaml(
    text: str | bytes,
    *,
    expected: Gav | None = None,
) -> ArtifactDependencies:
    """Parse descriptor YAML; *expected* overrides a missing ``artifact`` block."""
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise DescriptorError(f"Failed to parse dependency descriptor: {exc}") from exc
    if not isinstance(data, Mapping):
        raise DescriptorError("Dependency descriptor must contain a mapping.")

    owner: Gav | None = expected
    raw_owner = data.get("artifact")
    if raw_owner is not None:
        try:
            parsed = Artifact.from_dict(raw_owner, context="descriptor artifact")
        except ValueError as exc:
            raise DescriptorError(str(exc)) from exc
        owner = Gav(parsed.group_id, parsed.artifact_id, parsed.version)
    if owner is None:
        raise DescriptorError("Dependency descriptor does not name its artifact.")

    raw_dependencies = data.get("dependencies") or []
    if not isinstance(raw_dependencies, list):
        raise DescriptorError("Descriptor 'dependencies' must be a list.")
    dependencies: list[Artifact] = []
    for index, entry in enumerate(raw_dependencies):
        try:
            dependency = Artifact.from_dict(entry, context=f"dependencies[{index}]")
        except ValueError as exc:
            raise DescriptorError(str(exc)) from exc
        if not dependency.version:
            raise DescriptorError(
                f"Dependency {dependency.identity} of {owner} declares no version."
            )
        dependencies.append(dependency)
    return ArtifactDependencies(owner, tuple(dependencies))


__all__ = ["DescriptorError", "descriptor_from_yaml", "descriptor_to_yaml"]
