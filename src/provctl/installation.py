"""Local installation access and module artifact replacement."""
from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from .channels import Channel
from .errors import ArtifactInstallError
from .manifest import Manifest
from .metadata import persistence
from .model import Artifact

logger = logging.getLogger(__name__)

MODULES_DIR = "modules"
MODULE_DESCRIPTOR = "module.xml"


@dataclass
class LocalInstallation:
    """A provisioned server directory and its recorded metadata."""

    root: Path
    manifest: Manifest
    channels: list[Channel] = field(default_factory=list)

    @classmethod
    def load(cls, root: Path) -> LocalInstallation:
        """Read the manifest and channels recorded under *root*."""
        root = root.expanduser()
        persistence.require_installation(root)
        return cls(
            root=root,
            manifest=persistence.read_manifest(root),
            channels=persistence.read_channels(root),
        )

    @property
    def metadata_dir(self) -> Path:
        return persistence.metadata_dir(self.root)

    @property
    def modules_dir(self) -> Path:
        return self.root / MODULES_DIR

    def write_manifest(self, manifest: Manifest) -> None:
        """Persist *manifest* and make it the current one."""
        persistence.write_manifest(persistence.manifest_path(self.root), manifest)
        self.manifest = manifest


class ModuleArtifactInstaller:
    """Swap artifact files inside ``<install>/modules`` module directories."""

    def __init__(self, installation_root: Path) -> None:
        self.modules_dir = installation_root / MODULES_DIR

    def find(self, artifact: Artifact) -> list[Path]:
        """Return every installed copy of *artifact* under the modules tree."""
        if not self.modules_dir.is_dir():
            return []
        return sorted(self.modules_dir.rglob(artifact.file_name))

    def update_artifact(self, old: Artifact, new: Artifact, path: Path) -> None:
        """Replace installed copies of *old* with the file at *path*."""
        installed = self.find(old)
        if not installed:
            raise ArtifactInstallError(f"Artifact {old} is not installed in {self.modules_dir}")
        for old_file in installed:
            module_dir = old_file.parent
            new_file = module_dir / new.file_name
            try:
                shutil.copyfile(path, new_file)
                self._rewrite_module_descriptor(module_dir, old.file_name, new.file_name)
                if new_file != old_file:
                    old_file.unlink()
            except OSError as exc:
                raise ArtifactInstallError(
                    f"Failed to replace {old_file} with {new.file_name}: {exc}"
                ) from exc
            logger.info("Replaced %s with %s", old_file, new_file)

    @staticmethod
    def _rewrite_module_descriptor(module_dir: Path, old_name: str, new_name: str) -> None:
        descriptor = module_dir / MODULE_DESCRIPTOR
        if not descriptor.is_file():
            return
        content = descriptor.read_text(encoding="utf-8")
        pattern = re.compile(r'(path\s*=\s*["\'])' + re.escape(old_name) + r'(["\'])')
        updated, count = pattern.subn(lambda match: f"{match[1]}{new_name}{match[2]}", content)
        if count:
            descriptor.write_text(updated, encoding="utf-8")


__all__ = ["LocalInstallation", "ModuleArtifactInstaller"]
