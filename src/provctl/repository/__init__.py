"""Repository access: Maven-layout clients and the channel resolver."""
from __future__ import annotations

from .deploy import DeployResult, deploy_artifact
from .descriptor import DescriptorError, descriptor_from_yaml, descriptor_to_yaml
from .maven import MavenRepository
from .resolver import RepositoryResolver

__all__ = [
    "DeployResult",
    "DescriptorError",
    "MavenRepository",
    "RepositoryResolver",
    "deploy_artifact",
    "descriptor_from_yaml",
    "descriptor_to_yaml",
]
