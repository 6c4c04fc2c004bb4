"""Typer-powered command line interface for ``provctl``.

Commands operate on a provisioned server directory whose ``.installation``
metadata records the installed manifest and subscribed channels. Every
invocation is recorded by the structured logger; mutating commands hold the
installation lock for their whole duration.
"""
from __future__ import annotations

import textwrap
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape

from . import __version__
from .channels import Channel, ChannelError, channels_from_yaml
from .config import AppConfig, ConfigError, load_config
from .errors import (
    ArtifactInstallError,
    ArtifactNotFoundError,
    InstallationNotFoundError,
    InvalidTargetPathError,
    MetadataAlreadyInitializedError,
    MetadataIOError,
    ProvctlError,
    RemoteResolutionError,
    UnresolvedConstraintError,
)
from .exit_codes import ExitCode
from .installation import LocalInstallation, ModuleArtifactInstaller
from .locking import LockManager, LockTimeoutError
from .logging import OperationScope, StructuredLogger
from .manifest import ManifestError, manifest_from_yaml
from .metadata import persistence
from .metadata.version_record import ManifestVersionRecord
from .metadata.version_resolver import ManifestVersionResolver
from .model import Artifact, Identity
from .repository import RepositoryResolver, deploy_artifact
from .repository.maven import artifact_relative_path
from .updates import UpdateSession, describe_plan

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to provctl's YAML config file.",
)

INSTALLATION_ARGUMENT = typer.Argument(
    ...,
    help="Path to the provisioned server installation.",
    file_okay=False,
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Provisioned server update and metadata tool.

        Finds component updates published in the installation's channels,
        applies them together with their required dependencies and keeps the
        installation metadata self-describing.
        """
    ).strip(),
)
metadata_app = typer.Typer(help="Generate and refresh installation metadata.")
repo_app = typer.Typer(help="Maintain local Maven-layout repositories.")

app.add_typer(metadata_app, name="metadata")
app.add_typer(repo_app, name="repo")

_VALIDATION_ERRORS: tuple[type[Exception], ...] = (
    ConfigError,
    InvalidTargetPathError,
    MetadataAlreadyInitializedError,
    ValueError,
)
_ENVIRONMENT_ERRORS: tuple[type[Exception], ...] = (
    ArtifactInstallError,
    InstallationNotFoundError,
    LockTimeoutError,
    MetadataIOError,
)
_RESOLUTION_ERRORS: tuple[type[Exception], ...] = (
    ArtifactNotFoundError,
    RemoteResolutionError,
    UnresolvedConstraintError,
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    locks: LockManager
    logger: StructuredLogger

    def resolver(self, channels: Sequence[Channel]) -> RepositoryResolver:
        """Return a repository resolver for *channels* using configured settings."""
        return RepositoryResolver(
            channels,
            cache_dir=self.config.cache_dir,
            fallback_repositories=self.config.fallback_repositories,
            timeout=self.config.network.timeout,
        )


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    lock_timeout_override: float | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if lock_timeout_override is not None:
        overrides["lock_timeout"] = lock_timeout_override

    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc
    runtime = RuntimeContext(
        config=config,
        locks=LockManager(config.lock_timeout),
        logger=StructuredLogger(config.logs_dir),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the provctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    lock_timeout: float | None = typer.Option(
        None,
        "--lock-timeout",
        help="Override lock acquisition timeout in seconds.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file, lock_timeout)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"provctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file, lock_timeout)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _exit_code_for(exc: Exception) -> int:
    """Map a failure to the CLI exit code contract."""
    if isinstance(exc, _RESOLUTION_ERRORS):
        return int(ExitCode.RESOLUTION)
    if isinstance(exc, _ENVIRONMENT_ERRORS):
        return int(ExitCode.ENVIRONMENT)
    if isinstance(exc, _VALIDATION_ERRORS):
        return int(ExitCode.VALIDATION)
    return int(ExitCode.RESOLUTION)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = 2,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _dry_run_complete(
    op: OperationScope,
    summary: str,
    *,
    context: Mapping[str, object] | None = None,
) -> None:
    """Standardise dry-run completion messaging."""
    console.print(f"[yellow]Dry run[/yellow]: {summary}")
    op.success("Dry run complete.", changed=0, context=dict(context or {}))


@contextmanager
def _failures_as_errors(op: OperationScope) -> Iterator[None]:
    """Convert provctl failures raised in the block into command errors."""
    try:
        yield
    except (ProvctlError, ValueError) as exc:
        _command_error(op, str(exc), rc=_exit_code_for(exc))


def _load_installation(op: OperationScope, installation_dir: Path) -> LocalInstallation:
    with _failures_as_errors(op):
        installation = LocalInstallation.load(installation_dir)
    op.add_step("installation.load", detail=str(installation.root))
    return installation


def _parse_identity(op: OperationScope, coordinate: str | None) -> Identity | None:
    if coordinate is None:
        return None
    try:
        return Identity.parse(coordinate)
    except ValueError as exc:
        _command_error(op, str(exc), rc=int(ExitCode.VALIDATION))


def _record_versions(
    resolver: RepositoryResolver,
    channels: Sequence[Channel],
) -> ManifestVersionRecord:
    record = ManifestVersionResolver(resolver).get_current_versions(channels)
    for warning in record.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
    return record


@app.command("update")
def update_command(
    ctx: typer.Context,
    installation_dir: Path = INSTALLATION_ARGUMENT,
    coordinate: str | None = typer.Argument(
        None,
        metavar="[GROUP:ARTIFACT]",
        help="Update only this component (and what it requires).",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Apply without confirmation."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without applying it."),
) -> None:
    """Find and apply updates for an installation."""
    runtime = _get_runtime(ctx)
    args = {
        "installation": str(installation_dir),
        "coordinate": coordinate,
        "yes": yes,
        "dry_run": dry_run,
    }
    with runtime.logger.operation(
        "update",
        args=args,
        target={"kind": "installation", "path": str(installation_dir)},
    ) as op:
        identity = _parse_identity(op, coordinate)
        installation = _load_installation(op, installation_dir)

        with _failures_as_errors(op):
            with runtime.locks.installation_lock(installation.root) as lock:
                op.set_lock_wait_ms(lock.wait_ms)
                with runtime.resolver(installation.channels) as resolver:
                    session = UpdateSession(
                        installation,
                        resolver,
                        ModuleArtifactInstaller(installation.root),
                        anchor=runtime.config.anchor_component,
                    )
                    plan = session.plan(identity)
                    op.add_step("updates.plan", detail=len(plan.actions))

                    if plan.is_empty:
                        console.print("No updates to execute")
                        op.success("No updates to execute.", changed=0)
                        return

                    for line in describe_plan(plan):
                        console.print(escape(line))

                    if dry_run:
                        _dry_run_complete(
                            op,
                            f"{len(plan.actions)} artifact update(s) not applied.",
                            context=plan.to_dict(),
                        )
                        return

                    if not yes:
                        confirmed = typer.confirm("Continue with update", default=False)
                        if not confirmed:
                            console.print("[yellow]Update cancelled[/yellow]")
                            op.warning(
                                "Update cancelled by operator.",
                                warnings=["user-cancelled"],
                            )
                            return

                    console.print("Applying updates")
                    result = session.apply(plan)

        for action in result.applied:
            op.add_step("artifact.update", detail=str(action))
        if result.anchor is not None:
            console.print(
                f"[yellow]Note:[/yellow] {result.anchor.identity} was updated to "
                f"{result.anchor.version}; restart it to pick up the new version."
            )
        console.print("Done")
        op.success(
            "Updates applied.",
            changed=len(result.applied) + len(result.feature_pack_artifacts),
            context={
                "applied": [action.to_dict() for action in result.applied],
                "feature_pack_artifacts": [str(item) for item in result.feature_pack_artifacts],
                "anchor": str(result.anchor) if result.anchor else None,
            },
        )


@app.command("check-updates")
def check_updates_command(
    ctx: typer.Context,
    installation_dir: Path = INSTALLATION_ARGUMENT,
    json_output: bool = typer.Option(False, "--json", help="Emit the plan as JSON."),
) -> None:
    """List available updates without applying them."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "check-updates",
        args={"installation": str(installation_dir), "json": json_output},
        target={"kind": "installation", "path": str(installation_dir)},
    ) as op:
        installation = _load_installation(op, installation_dir)
        with _failures_as_errors(op):
            with runtime.resolver(installation.channels) as resolver:
                session = UpdateSession(
                    installation,
                    resolver,
                    ModuleArtifactInstaller(installation.root),
                    anchor=runtime.config.anchor_component,
                )
                plan = session.plan()

        if json_output:
            console.print_json(data=plan.to_dict())
        elif plan.is_empty:
            console.print("No updates to execute")
        else:
            for line in describe_plan(plan):
                console.print(escape(line))
        op.success(
            f"Found {len(plan.actions)} artifact update(s).",
            changed=0,
            context=plan.to_dict(),
        )


@metadata_app.command("generate")
def metadata_generate(
    ctx: typer.Context,
    installation_dir: Path = INSTALLATION_ARGUMENT,
    channels_file: Path = typer.Option(
        ...,
        "--channels",
        dir_okay=False,
        help="YAML file with the channel definitions.",
    ),
    manifest_file: Path = typer.Option(
        ...,
        "--manifest",
        dir_okay=False,
        help="YAML file with the installed component manifest.",
    ),
    record_versions: bool = typer.Option(
        False,
        "--record-versions",
        help="Also record the manifest versions currently published by each channel.",
    ),
) -> None:
    """Initialise the metadata directory of a provisioned server."""
    runtime = _get_runtime(ctx)
    args = {
        "installation": str(installation_dir),
        "channels": str(channels_file),
        "manifest": str(manifest_file),
        "record_versions": record_versions,
    }
    with runtime.logger.operation(
        "metadata generate",
        args=args,
        target={"kind": "installation", "path": str(installation_dir)},
    ) as op:
        if not installation_dir.is_dir():
            _command_error(
                op,
                f"Installation directory {installation_dir} does not exist.",
                rc=int(ExitCode.VALIDATION),
            )
        try:
            channels = channels_from_yaml(channels_file.read_text(encoding="utf-8"))
            manifest = manifest_from_yaml(manifest_file.read_text(encoding="utf-8"))
        except OSError as exc:
            _command_error(op, f"Unable to read input: {exc}", rc=int(ExitCode.ENVIRONMENT))
        except (ChannelError, ManifestError) as exc:
            _command_error(op, str(exc), rc=int(ExitCode.VALIDATION))

        channels = persistence.assign_channel_names(channels)
        warnings: list[str] = []
        with _failures_as_errors(op):
            version_record = None
            if record_versions:
                with runtime.resolver(channels) as resolver:
                    version_record = _record_versions(resolver, channels)
                warnings.extend(version_record.warnings)
            persistence.generate(installation_dir, channels, manifest, version_record)

        op.add_step("metadata.generate", detail=str(persistence.metadata_dir(installation_dir)))
        console.print(
            f"Metadata recorded in {persistence.metadata_dir(installation_dir)} "
            f"({len(manifest)} artifacts, {len(channels)} channels)."
        )
        context = {"channels": [channel.name for channel in channels]}
        if warnings:
            op.warning(
                "Metadata generated with warnings.",
                warnings=warnings,
                changed=1,
                context=context,
            )
        else:
            op.success("Metadata generated.", changed=1, context=context)


@metadata_app.command("record-versions")
def metadata_record_versions(
    ctx: typer.Context,
    installation_dir: Path = INSTALLATION_ARGUMENT,
) -> None:
    """Record the manifest version each subscribed channel currently resolves to."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "metadata record-versions",
        args={"installation": str(installation_dir)},
        target={"kind": "installation", "path": str(installation_dir)},
    ) as op:
        installation = _load_installation(op, installation_dir)
        with _failures_as_errors(op):
            with runtime.locks.installation_lock(installation.root) as lock:
                op.set_lock_wait_ms(lock.wait_ms)
                with runtime.resolver(installation.channels) as resolver:
                    record = _record_versions(resolver, installation.channels)
                persistence.write_version_record(
                    persistence.version_record_path(installation.root), record
                )

        for line in record.summary():
            console.print(escape(line))
        if record.warnings:
            op.warning(
                "Manifest versions recorded with warnings.",
                warnings=record.warnings,
                changed=1,
                context=record.to_dict(),
            )
        else:
            op.success("Manifest versions recorded.", changed=1, context=record.to_dict())


@repo_app.command("deploy")
def repo_deploy(
    ctx: typer.Context,
    installation_dir: Path = INSTALLATION_ARGUMENT,
    artifact_id: str = typer.Argument(..., help="Artifact id of an installed component."),
    version: str = typer.Argument(..., help="Version to publish."),
    repository_dir: Path = typer.Argument(
        ...,
        file_okay=False,
        help="Root of the local Maven-layout repository.",
    ),
    dependencies: list[str] | None = typer.Argument(
        None,
        metavar="[GROUP:ARTIFACT:VERSION]...",
        help="Dependencies to declare in the published descriptor.",
    ),
) -> None:
    """Publish an installed artifact under a new version into a local repository."""
    runtime = _get_runtime(ctx)
    args = {
        "installation": str(installation_dir),
        "artifact_id": artifact_id,
        "version": version,
        "repository": str(repository_dir),
        "dependencies": list(dependencies or []),
    }
    with runtime.logger.operation(
        "repo deploy",
        args=args,
        target={"kind": "repository", "path": str(repository_dir)},
    ) as op:
        installation = _load_installation(op, installation_dir)
        installed = next(
            (item for item in installation.manifest if item.artifact_id == artifact_id),
            None,
        )
        if installed is None:
            _command_error(
                op,
                f"Artifact {artifact_id} not found in the installation manifest.",
                rc=int(ExitCode.RESOLUTION),
            )

        try:
            declared = [Artifact.parse(entry) for entry in dependencies or []]
        except ValueError as exc:
            _command_error(op, str(exc), rc=int(ExitCode.VALIDATION))

        source = _deploy_source(installation, installed, repository_dir)
        if source is None:
            _command_error(
                op,
                f"No file found for {installed} in {repository_dir} or the installation.",
                rc=int(ExitCode.ENVIRONMENT),
            )

        with _failures_as_errors(op):
            result = deploy_artifact(
                repository_dir, installed.with_version(version), source, declared
            )

        console.print(f"Mocked {source} {installed.version} as {version}.")
        op.success(
            "Artifact deployed.",
            changed=1,
            context={
                "artifact": result.artifact,
                "descriptor": result.descriptor,
                "metadata": result.metadata,
            },
        )


def _deploy_source(
    installation: LocalInstallation,
    installed: Artifact,
    repository_dir: Path,
) -> Path | None:
    """Return the file to publish: the repository copy, else the installed one."""
    in_repository = repository_dir / artifact_relative_path(installed)
    if in_repository.is_file():
        return in_repository
    copies = ModuleArtifactInstaller(installation.root).find(installed)
    return copies[0] if copies else None


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
