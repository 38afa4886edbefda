from __future__ import annotations

from pathlib import Path

import typer

from relkit.cli.context import build_context
from relkit.core.errors import ErrorCode
from relkit.output.console import Style
from relkit.release.preflight import PreflightValidator


def check(
    config: Path | None = typer.Option(None, "--config", help="Path to relkit.toml."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output."),
) -> None:
    """Run the preflight checks without releasing."""
    ctx = build_context(config_path=config, verbose=verbose)
    validator = PreflightValidator(ctx.root, ctx.config.preflight, ctx.console)

    results = validator.run_all()
    if not results:
        ctx.console.warning("no preflight checks configured")
        return

    ctx.console.header("Preflight")
    failed = 0
    for check_cfg, result in results:
        if result.success:
            ctx.console.print(f"{check_cfg.name}: ok", Style.SUCCESS)
            continue
        failed += 1
        ctx.console.print(f"{check_cfg.name}: failed", Style.ERROR)
        if result.suggestion:
            ctx.console.print(f"hint: {result.suggestion}", Style.DIM)

    if failed:
        raise typer.Exit(code=int(ErrorCode.ENV_ERROR))
