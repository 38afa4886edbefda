"""Tests for relkit.core.config module."""

from __future__ import annotations

from pathlib import Path

import pytest

from relkit.core.config import (
    DEFAULT_VERSION_PATTERN,
    PYPROJECT_VERSION_PATTERN,
    DocsConfig,
    FileTarget,
    ReleaseConfig,
    VersionFileConfig,
    find_config_file,
    load_config,
    load_config_or_default,
)
from relkit.core.result import Err, Ok


class TestDefaults:
    def test_release_config_defaults(self) -> None:
        config = ReleaseConfig()
        assert config.version_file.path == "pyproject.toml"
        assert config.changelog == "CHANGELOG.md"
        assert config.tag_prefix == "v"
        assert config.remote == "origin"
        assert config.github.create_release is True
        assert config.publish.enabled is False
        assert config.auto_fix.ai.max_attempts == 3

    def test_default_checks_are_format_lint_type(self) -> None:
        names = [c.name for c in ReleaseConfig().preflight.checks]
        assert names == ["Format Check", "Lint Check", "Type Check"]

    def test_frozen(self) -> None:
        config = ReleaseConfig()
        with pytest.raises(AttributeError):
            config.tag_prefix = "release-"  # type: ignore[misc]


class TestMutatedPaths:
    def test_version_file_changelog_and_targets(self) -> None:
        config = ReleaseConfig(
            version_file=VersionFileConfig(path="src/pkg/__init__.py"),
            update_files=(
                FileTarget(path="README.md", patterns=(r"pkg==(?P<version>\S+)",)),
                FileTarget(path="src/pkg/__init__.py", patterns=(r"x(?P<version>y)",)),
            ),
        )
        assert config.mutated_paths() == ["src/pkg/__init__.py", "CHANGELOG.md", "README.md"]

    def test_docs_directory_included_when_enabled(self) -> None:
        config = ReleaseConfig(docs=DocsConfig(enabled=True, output_dir="site"))
        assert config.mutated_paths()[-1] == "site"


class TestLoadConfig:
    def test_load_relkit_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "relkit.toml"
        path.write_text(
            """
version_file = "src/pkg/__init__.py"
tag_prefix = ""
format_command = ["ruff", "format"]

[[update_files]]
path = "README.md"
patterns = ['pkg==(?P<version>[0-9.]+)']

[publish]
enabled = true
package = "pkg"
max_attempts = 5

[auto_fix.ai]
enabled = true
max_attempts = 2
""",
            encoding="utf-8",
        )

        result = load_config(path)

        assert isinstance(result, Ok)
        config = result.value
        assert config.version_file.path == "src/pkg/__init__.py"
        assert config.version_file.pattern == DEFAULT_VERSION_PATTERN
        assert config.tag_prefix == ""
        assert config.format_command == ("ruff", "format")
        assert config.update_files[0].path == "README.md"
        assert config.publish.package == "pkg"
        assert config.publish.max_attempts == 5
        assert config.auto_fix.ai.enabled is True
        assert config.auto_fix.ai.max_attempts == 2

    def test_load_from_pyproject_tool_table(self, tmp_path: Path) -> None:
        path = tmp_path / "pyproject.toml"
        path.write_text(
            '[project]\nname = "pkg"\nversion = "1.0.0"\n\n[tool.relkit]\nremote = "upstream"\n',
            encoding="utf-8",
        )

        assert find_config_file(tmp_path) == path
        result = load_config_or_default(tmp_path)

        assert isinstance(result, Ok)
        assert result.value.remote == "upstream"
        assert result.value.version_file.pattern == PYPROJECT_VERSION_PATTERN

    def test_defaults_without_config_file(self, tmp_path: Path) -> None:
        assert find_config_file(tmp_path) is None
        assert load_config_or_default(tmp_path) == Ok(ReleaseConfig())

    def test_invalid_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "relkit.toml"
        path.write_text("version_file = [unclosed", encoding="utf-8")

        result = load_config(path)

        assert isinstance(result, Err)
        assert "Invalid TOML" in result.error.message
        assert result.error.path == path

    def test_publish_requires_package(self, tmp_path: Path) -> None:
        path = tmp_path / "relkit.toml"
        path.write_text("[publish]\nenabled = true\n", encoding="utf-8")

        result = load_config(path)

        assert isinstance(result, Err)
        assert "publish.package" in result.error.message

    def test_unknown_registry(self, tmp_path: Path) -> None:
        path = tmp_path / "relkit.toml"
        path.write_text('[publish]\nregistry = "npm"\n', encoding="utf-8")

        result = load_config(path)

        assert isinstance(result, Err)
        assert "npm" in result.error.message

    def test_fixable_check_needs_fix_command(self, tmp_path: Path) -> None:
        path = tmp_path / "relkit.toml"
        path.write_text(
            '[[preflight.checks]]\nname = "Lint"\ncommand = ["ruff", "check"]\nfixable = true\n',
            encoding="utf-8",
        )

        result = load_config(path)

        assert isinstance(result, Err)
        assert "fix_command" in result.error.message

    def test_update_file_needs_pattern(self, tmp_path: Path) -> None:
        path = tmp_path / "relkit.toml"
        path.write_text('[[update_files]]\npath = "README.md"\n', encoding="utf-8")

        result = load_config(path)

        assert isinstance(result, Err)
        assert "README.md" in result.error.message
