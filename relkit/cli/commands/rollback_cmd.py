from __future__ import annotations

from pathlib import Path

import typer

from relkit.cli.context import build_context
from relkit.core.errors import ErrorCode
from relkit.core.result import Err
from relkit.git.repository import Repository
from relkit.output.console import Style
from relkit.release.errors import PRE_MUTATION_KINDS
from relkit.release.revert import ReleaseReverter


def rollback(
    version: str | None = typer.Argument(None, help="Version to roll back (default: HEAD)."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
    config: Path | None = typer.Option(None, "--config", help="Path to relkit.toml."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output."),
) -> None:
    """Undo a release: delete its tag and reset the release commit."""
    ctx = build_context(config_path=config, verbose=verbose)
    reverter = ReleaseReverter(Repository(ctx.root), ctx.config, ctx.console)

    target = reverter.target(version)
    if isinstance(target, Err):
        ctx.console.error(str(target.error))
        if target.error.kind in PRE_MUTATION_KINDS:
            raise typer.Exit(code=int(ErrorCode.ENV_ERROR))
        raise typer.Exit(code=int(ErrorCode.RELEASE_FAILED))

    plan = target.value
    ctx.console.header(f"Rolling back {plan.tag}")
    if plan.reset_to is None:
        ctx.console.print("HEAD is not the release commit; only the tag is removed", Style.DIM)

    skip = yes or ctx.config.skip_confirmation
    if not skip and not typer.confirm("This will undo release changes. Continue?", default=False):
        ctx.console.warning("rollback cancelled")
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    result = reverter.revert(plan)
    if isinstance(result, Err):
        error = result.error
        ctx.console.error(str(error))
        if error.kind == "rollback_verification":
            ctx.console.critical("manual intervention required")
            raise typer.Exit(code=int(ErrorCode.MANUAL_INTERVENTION))
        raise typer.Exit(code=int(ErrorCode.RELEASE_FAILED))

    report = result.value
    if not report.changed:
        ctx.console.warning(f"nothing to roll back for {plan.tag}")
        return
    for action in report.actions:
        ctx.console.print(f"  {action}", Style.SUCCESS)
    if plan.reset_to is not None:
        ctx.console.print("release changes are left staged", Style.DIM)
    ctx.console.success("rollback complete")
