from __future__ import annotations

import typer

from relkit import __version__
from relkit.cli.commands.check import check
from relkit.cli.commands.release_cmd import release
from relkit.cli.commands.rollback_cmd import rollback

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command()(release)
app.command()(check)
app.command()(rollback)


@app.callback(invoke_without_command=True)
def _main(  # pyright: ignore[reportUnusedFunction]
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
) -> None:
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=0)


def main() -> None:
    app()
