"""Typed release configuration.

Configuration lives in `relkit.toml` at the repository root, or under
`[tool.relkit]` in `pyproject.toml`. It is parsed into frozen dataclasses;
missing keys fall back to defaults, wrong types are reported as ConfigError.

Example relkit.toml:

    version_file = "src/mypkg/__init__.py"
    tag_prefix = "v"

    [[update_files]]
    path = "pyproject.toml"
    patterns = ['^version = "(?P<version>[^"]+)"']

    [publish]
    enabled = true
    registry = "pypi"
    package = "mypkg"
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from .result import Err, Ok, Result
from .structured import (
    StrDict,
    as_str_dict,
    get_bool,
    get_float,
    get_int,
    get_list,
    get_str,
    get_str_list,
    get_table,
)

__all__ = [
    "AIFixConfig",
    "AutoFixConfig",
    "ConfigError",
    "DocsConfig",
    "FileTarget",
    "GitHubConfig",
    "MonitoringConfig",
    "PreflightCheckConfig",
    "PreflightConfig",
    "PublishConfig",
    "ReleaseConfig",
    "VersionFileConfig",
    "CONFIG_FILENAME",
    "find_config_file",
    "load_config",
    "load_config_or_default",
]

CONFIG_FILENAME = "relkit.toml"

DEFAULT_VERSION_PATTERN = r'^__version__\s*=\s*["\'](?P<version>[^"\']+)["\']'
PYPROJECT_VERSION_PATTERN = r'^version\s*=\s*["\'](?P<version>[^"\']+)["\']'
DEFAULT_WORKFLOW_FILE = ".github/workflows/publish.yml"

Registry = Literal["pypi", "jsr"]
AIProvider = Literal["claude-code", "custom"]

# update_fn receives the current file content and the template data mapping
UpdateFn = Callable[[str, Mapping[str, Any]], str]


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class VersionFileConfig:
    """Where the canonical version lives and how to rewrite it.

    `pattern` must capture the version (named group `version`, else the last
    group). With `template` set, the whole file is re-rendered from it instead
    of patched in place.
    """

    path: str = "pyproject.toml"
    pattern: str = PYPROJECT_VERSION_PATTERN
    template: str | None = None


@dataclass(frozen=True, slots=True)
class FileTarget:
    """An extra file whose version string is updated on release."""

    path: str
    patterns: tuple[str, ...] = ()
    update_fn: UpdateFn | None = None


@dataclass(frozen=True, slots=True)
class GitHubConfig:
    create_release: bool = True
    repository: str | None = None  # owner/name; resolved via gh when None


@dataclass(frozen=True, slots=True)
class DocsConfig:
    enabled: bool = False
    output_dir: str = "docs"
    command: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PreflightCheckConfig:
    name: str
    command: tuple[str, ...]
    fixable: bool = False
    fix_command: tuple[str, ...] = ()
    description: str | None = None


def _default_checks() -> tuple[PreflightCheckConfig, ...]:
    return (
        PreflightCheckConfig(
            name="Format Check",
            command=("ruff", "format", "--check"),
            fixable=True,
            fix_command=("ruff", "format"),
        ),
        PreflightCheckConfig(
            name="Lint Check",
            command=("ruff", "check"),
            fixable=True,
            fix_command=("ruff", "check", "--fix"),
        ),
        PreflightCheckConfig(name="Type Check", command=("mypy", ".")),
    )


@dataclass(frozen=True, slots=True)
class PreflightConfig:
    enabled: bool = True
    run_tests: bool = True
    test_command: tuple[str, ...] = ("pytest", "-q")
    checks: tuple[PreflightCheckConfig, ...] = field(default_factory=_default_checks)
    custom: tuple[PreflightCheckConfig, ...] = ()


@dataclass(frozen=True, slots=True)
class AIFixConfig:
    enabled: bool = False
    provider: AIProvider = "claude-code"
    command: str = "claude"
    flags: tuple[str, ...] = ("-p",)
    max_attempts: int = 3
    timeout: float = 300.0


@dataclass(frozen=True, slots=True)
class AutoFixConfig:
    basic: bool = True
    ai: AIFixConfig = field(default_factory=AIFixConfig)


@dataclass(frozen=True, slots=True)
class PublishConfig:
    enabled: bool = False
    registry: Registry = "pypi"
    package: str | None = None
    max_attempts: int = 30
    poll_interval: float = 10.0
    timeout: float = 600.0
    grace_period: float = 30.0
    wait_for_ci: bool = True


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    workflow_file: str = DEFAULT_WORKFLOW_FILE
    poll_interval: float = 15.0
    timeout: float = 1800.0


@dataclass(frozen=True, slots=True)
class ReleaseConfig:
    """Complete release configuration."""

    version_file: VersionFileConfig = field(default_factory=VersionFileConfig)
    changelog: str = "CHANGELOG.md"
    update_files: tuple[FileTarget, ...] = ()
    tag_prefix: str = "v"
    remote: str = "origin"
    dry_run: bool = False
    skip_confirmation: bool = False
    format_command: tuple[str, ...] = ()
    github: GitHubConfig = field(default_factory=GitHubConfig)
    docs: DocsConfig = field(default_factory=DocsConfig)
    preflight: PreflightConfig = field(default_factory=PreflightConfig)
    auto_fix: AutoFixConfig = field(default_factory=AutoFixConfig)
    publish: PublishConfig = field(default_factory=PublishConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    audit_log: str | None = ".relkit/audit.jsonl"

    def mutated_paths(self) -> list[str]:
        """Every path a release may write, in a stable order."""
        paths = [self.version_file.path, self.changelog]
        for target in self.update_files:
            if target.path not in paths:
                paths.append(target.path)
        if self.docs.enabled:
            paths.append(self.docs.output_dir)
        return paths

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Result[ReleaseConfig, ConfigError]:
        """Create a ReleaseConfig from parsed TOML."""
        version_file = _parse_version_file(data)
        if isinstance(version_file, Err):
            return version_file

        targets = _parse_update_files(data)
        if isinstance(targets, Err):
            return targets

        preflight = _parse_preflight(get_table(data, "preflight") or {})
        if isinstance(preflight, Err):
            return preflight

        publish = _parse_publish(get_table(data, "publish") or {})
        if isinstance(publish, Err):
            return publish

        github: StrDict = get_table(data, "github") or {}
        docs: StrDict = get_table(data, "docs") or {}
        monitoring: StrDict = get_table(data, "monitoring") or {}
        auto_fix: StrDict = get_table(data, "auto_fix") or {}
        ai: StrDict = get_table(auto_fix, "ai") or {}

        provider = get_str(ai, "provider") or "claude-code"
        if provider not in ("claude-code", "custom"):
            return Err(ConfigError(f"unknown auto_fix.ai.provider: {provider}"))

        defaults = cls()
        return Ok(
            cls(
                version_file=version_file.value,
                changelog=get_str(data, "changelog") or defaults.changelog,
                update_files=targets.value,
                tag_prefix=_str_or(data, "tag_prefix", defaults.tag_prefix),
                remote=get_str(data, "remote") or defaults.remote,
                dry_run=_bool_or(data, "dry_run", False),
                skip_confirmation=_bool_or(data, "skip_confirmation", False),
                format_command=tuple(get_str_list(data, "format_command") or ()),
                github=GitHubConfig(
                    create_release=_bool_or(github, "create_release", True),
                    repository=get_str(github, "repository"),
                ),
                docs=DocsConfig(
                    enabled=_bool_or(docs, "enabled", False),
                    output_dir=get_str(docs, "output_dir") or "docs",
                    command=tuple(get_str_list(docs, "command") or ()),
                ),
                preflight=preflight.value,
                auto_fix=AutoFixConfig(
                    basic=_bool_or(auto_fix, "basic", True),
                    ai=AIFixConfig(
                        enabled=_bool_or(ai, "enabled", False),
                        provider="custom" if provider == "custom" else "claude-code",
                        command=get_str(ai, "command") or "claude",
                        flags=tuple(get_str_list(ai, "flags") or ("-p",)),
                        max_attempts=get_int(ai, "max_attempts") or 3,
                        timeout=get_float(ai, "timeout") or 300.0,
                    ),
                ),
                publish=publish.value,
                monitoring=MonitoringConfig(
                    workflow_file=get_str(monitoring, "workflow_file") or DEFAULT_WORKFLOW_FILE,
                    poll_interval=get_float(monitoring, "poll_interval") or 15.0,
                    timeout=get_float(monitoring, "timeout") or 1800.0,
                ),
                audit_log=get_str(data, "audit_log") or defaults.audit_log,
            )
        )


def _bool_or(table: Mapping[str, object], key: str, default: bool) -> bool:
    value = get_bool(table, key)
    return default if value is None else value


def _str_or(table: Mapping[str, object], key: str, default: str) -> str:
    # Unlike get_str, an explicit empty string is a valid value (e.g. no tag prefix).
    value = table.get(key)
    return value if isinstance(value, str) else default


def _parse_version_file(data: Mapping[str, object]) -> Result[VersionFileConfig, ConfigError]:
    raw = data.get("version_file")
    if raw is None:
        return Ok(VersionFileConfig())
    if isinstance(raw, str):
        if raw.endswith(".py"):
            return Ok(VersionFileConfig(path=raw, pattern=DEFAULT_VERSION_PATTERN))
        return Ok(VersionFileConfig(path=raw))

    table = as_str_dict(raw)
    if table is None:
        return Err(ConfigError("version_file must be a path or a table"))
    path = get_str(table, "path")
    if path is None:
        return Err(ConfigError("version_file.path is required"))

    default_pattern = DEFAULT_VERSION_PATTERN if path.endswith(".py") else PYPROJECT_VERSION_PATTERN
    return Ok(
        VersionFileConfig(
            path=path,
            pattern=get_str(table, "pattern") or default_pattern,
            template=get_str(table, "template"),
        )
    )


def _parse_update_files(data: Mapping[str, object]) -> Result[tuple[FileTarget, ...], ConfigError]:
    raw = get_list(data, "update_files")
    if raw is None:
        return Ok(())

    targets: list[FileTarget] = []
    for i, item in enumerate(raw):
        table = as_str_dict(item)
        if table is None:
            return Err(ConfigError(f"update_files[{i}] must be a table"))
        path = get_str(table, "path")
        if path is None:
            return Err(ConfigError(f"update_files[{i}].path is required"))
        patterns = get_str_list(table, "patterns")
        if not patterns:
            return Err(
                ConfigError(f"update_files[{i}] ({path}) needs at least one pattern")
            )
        targets.append(FileTarget(path=path, patterns=tuple(patterns)))
    return Ok(tuple(targets))


def _parse_check(raw: object, where: str) -> Result[PreflightCheckConfig, ConfigError]:
    table = as_str_dict(raw)
    if table is None:
        return Err(ConfigError(f"{where} must be a table"))
    name = get_str(table, "name")
    command = get_str_list(table, "command")
    if name is None or not command:
        return Err(ConfigError(f"{where} needs a name and a command"))
    fix_command = tuple(get_str_list(table, "fix_command") or ())
    fixable = _bool_or(table, "fixable", bool(fix_command))
    if fixable and not fix_command:
        return Err(ConfigError(f"{where} ({name}) is fixable but has no fix_command"))
    return Ok(
        PreflightCheckConfig(
            name=name,
            command=tuple(command),
            fixable=fixable,
            fix_command=fix_command,
            description=get_str(table, "description"),
        )
    )


def _parse_preflight(table: Mapping[str, object]) -> Result[PreflightConfig, ConfigError]:
    defaults = PreflightConfig()

    checks = defaults.checks
    raw_checks = get_list(table, "checks")
    if raw_checks is not None:
        parsed: list[PreflightCheckConfig] = []
        for i, item in enumerate(raw_checks):
            check = _parse_check(item, f"preflight.checks[{i}]")
            if isinstance(check, Err):
                return check
            parsed.append(check.value)
        checks = tuple(parsed)

    custom: list[PreflightCheckConfig] = []
    for i, item in enumerate(get_list(table, "custom") or []):
        check = _parse_check(item, f"preflight.custom[{i}]")
        if isinstance(check, Err):
            return check
        custom.append(check.value)

    return Ok(
        PreflightConfig(
            enabled=_bool_or(table, "enabled", True),
            run_tests=_bool_or(table, "run_tests", True),
            test_command=tuple(get_str_list(table, "test_command") or defaults.test_command),
            checks=checks,
            custom=tuple(custom),
        )
    )


def _parse_publish(table: Mapping[str, object]) -> Result[PublishConfig, ConfigError]:
    registry = get_str(table, "registry") or "pypi"
    if registry not in ("pypi", "jsr"):
        return Err(ConfigError(f"unknown publish.registry: {registry}"))

    enabled = _bool_or(table, "enabled", False)
    package = get_str(table, "package")
    if enabled and package is None:
        return Err(ConfigError("publish.package is required when publish.enabled = true"))

    max_attempts = get_int(table, "max_attempts")
    if max_attempts is not None and max_attempts < 1:
        return Err(ConfigError("publish.max_attempts must be >= 1"))

    defaults = PublishConfig()
    grace = get_float(table, "grace_period")
    return Ok(
        PublishConfig(
            enabled=enabled,
            registry="jsr" if registry == "jsr" else "pypi",
            package=package,
            max_attempts=max_attempts or defaults.max_attempts,
            poll_interval=get_float(table, "poll_interval") or defaults.poll_interval,
            timeout=get_float(table, "timeout") or defaults.timeout,
            grace_period=defaults.grace_period if grace is None else grace,
            wait_for_ci=_bool_or(table, "wait_for_ci", True),
        )
    )


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    """Parse a TOML file, handling read and syntax errors."""
    import tomllib

    try:
        content = path.read_bytes()
        data = as_str_dict(tomllib.loads(content.decode("utf-8")))
        if data is None:
            return Err(ConfigError("Config root must be a TOML table", path=path))
        return Ok(data)
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))


def find_config_file(root: Path) -> Path | None:
    """Return relkit.toml, else a pyproject.toml with [tool.relkit], else None."""
    candidate = root / CONFIG_FILENAME
    if candidate.is_file():
        return candidate
    pyproject = root / "pyproject.toml"
    if pyproject.is_file():
        parsed = _parse_toml(pyproject)
        if isinstance(parsed, Ok):
            tool = get_table(parsed.value, "tool") or {}
            if get_table(tool, "relkit") is not None:
                return pyproject
    return None


def load_config(path: Path) -> Result[ReleaseConfig, ConfigError]:
    """Load configuration from relkit.toml or pyproject.toml.

    Args:
        path: Config file path

    Returns:
        Ok(ReleaseConfig) on success, Err(ConfigError) on failure
    """
    parsed = _parse_toml(path)
    if isinstance(parsed, Err):
        return parsed

    data = parsed.value
    if path.name == "pyproject.toml":
        tool = get_table(data, "tool") or {}
        data = get_table(tool, "relkit") or {}

    result = ReleaseConfig.from_dict(data)
    if isinstance(result, Err):
        return Err(ConfigError(result.error.message, path=path))
    return result


def load_config_or_default(root: Path) -> Result[ReleaseConfig, ConfigError]:
    """Load config for a repository root; defaults when no config file exists."""
    path = find_config_file(root)
    if path is None:
        return Ok(ReleaseConfig())
    return load_config(path)
