from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import typer

from relkit.cli.context import build_context
from relkit.core.errors import ErrorCode
from relkit.output.console import ConsoleProtocol, Style
from relkit.release.errors import PRE_MUTATION_KINDS
from relkit.release.model import BumpType, ReleaseResult
from relkit.release.pipeline import ReleasePipeline

_USER_KINDS = frozenset({"cancelled", "no_changes"})


def exit_code_for(result: ReleaseResult) -> ErrorCode:
    if result.success:
        return ErrorCode.OK
    if result.needs_manual_intervention or result.error_kind == "rollback_verification":
        return ErrorCode.MANUAL_INTERVENTION
    if result.error_kind in PRE_MUTATION_KINDS:
        if result.error_kind in _USER_KINDS:
            return ErrorCode.USER_ERROR
        return ErrorCode.ENV_ERROR
    return ErrorCode.RELEASE_FAILED


def _bump_from_flags(*, patch: bool, minor: bool, major: bool) -> BumpType | None:
    chosen: list[BumpType] = []
    if patch:
        chosen.append("patch")
    if minor:
        chosen.append("minor")
    if major:
        chosen.append("major")
    if len(chosen) > 1:
        typer.echo("error: choose at most one of --patch, --minor, --major", err=True)
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))
    return chosen[0] if chosen else None


def release(
    patch: bool = typer.Option(False, "--patch", help="Force a patch release."),
    minor: bool = typer.Option(False, "--minor", help="Force a minor release."),
    major: bool = typer.Option(False, "--major", help="Force a major release."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview changes without writing."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
    config: Path | None = typer.Option(None, "--config", help="Path to relkit.toml."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output."),
) -> None:
    """Cut a release: bump, changelog, commit, tag, push, publish."""
    bump = _bump_from_flags(patch=patch, minor=minor, major=major)
    ctx = build_context(config_path=config, verbose=verbose)

    cfg = ctx.config
    if dry_run:
        cfg = replace(cfg, dry_run=True)
    if yes:
        cfg = replace(cfg, skip_confirmation=True)

    pipeline = ReleasePipeline(
        ctx.root,
        cfg,
        console=ctx.console,
        confirm=lambda question: typer.confirm(question, default=False),
    )
    result = pipeline.release(bump)
    _print_summary(ctx.console, result)

    code = exit_code_for(result)
    if not code.is_success:
        raise typer.Exit(code=int(code))


def _print_summary(console: ConsoleProtocol, result: ReleaseResult) -> None:
    console.newline()
    if result.success:
        label = "Dry run complete" if result.dry_run else "Release complete"
        console.header(label)
        if result.version:
            console.print(f"version: {result.previous_version} -> {result.version}")
        for path in result.updated_files:
            console.print(f"  {path}", Style.DIM)
        if result.github_release_url:
            console.print(f"release: {result.github_release_url}")
        return

    console.header("Release failed")
    console.print(f"stage: {result.state}", Style.DIM)
    if result.error:
        console.error(result.error)
    if result.failed_check:
        console.print(f"failed check: {result.failed_check}", Style.DIM)
    if result.rollback is not None:
        style = Style.SUCCESS if result.rollback.success else Style.CRITICAL
        console.print(f"rollback: {result.rollback.status}", style)
        for failure in result.rollback.failed:
            console.print(
                f"  {failure.operation.description} ({failure.stage}): {failure.error}",
                Style.ERROR,
            )
    if result.restore is not None and not result.restore.success:
        for f in result.restore.failed:
            console.print(f"  not restored: {f.path}: {f.error}", Style.ERROR)
    if result.needs_manual_intervention:
        console.critical("manual intervention required")
