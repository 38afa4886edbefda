from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import typer

from relkit.core.config import ReleaseConfig, load_config, load_config_or_default
from relkit.core.errors import ErrorCode
from relkit.core.result import Err
from relkit.output.console import ConsoleProtocol, RichConsole


@dataclass(frozen=True, slots=True)
class CLIContext:
    root: Path
    config: ReleaseConfig
    console: ConsoleProtocol


def build_context(*, config_path: Path | None = None, verbose: bool = False) -> CLIContext:
    """Resolve the repository root and load its configuration.

    With `config_path`, the root is the directory holding that file;
    otherwise it is the current directory.
    """
    if config_path is not None:
        try:
            path = config_path.expanduser().resolve()
        except OSError as e:
            typer.echo(f"error: invalid --config: {e}", err=True)
            raise typer.Exit(code=int(ErrorCode.USER_ERROR))
        if not path.is_file():
            typer.echo(f"error: config file not found: {path}", err=True)
            raise typer.Exit(code=int(ErrorCode.USER_ERROR))
        root = path.parent
        loaded = load_config(path)
    else:
        root = Path.cwd()
        loaded = load_config_or_default(root)

    if isinstance(loaded, Err):
        where = f" ({loaded.error.path})" if loaded.error.path else ""
        typer.echo(f"error: {loaded.error.message}{where}", err=True)
        raise typer.Exit(code=int(ErrorCode.ENV_ERROR))

    return CLIContext(root=root, config=loaded.value, console=RichConsole(verbose=verbose))
