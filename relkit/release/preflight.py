from __future__ import annotations

from pathlib import Path

from relkit.core.config import PreflightCheckConfig, PreflightConfig
from relkit.core.result import Err
from relkit.output.console import ConsoleProtocol, Style
from relkit.platform.process import run as run_process
from relkit.release.model import PreflightResult
from relkit.release.timeouts import CHECK_TIMEOUT_SECONDS

TEST_CHECK_NAME = "Tests"

_MAX_ERROR_CHARS = 4000


class PreflightValidator:
    """Runs the configured checks in order: checks, tests, then custom checks."""

    def __init__(self, root: Path, config: PreflightConfig, console: ConsoleProtocol) -> None:
        self.root = root
        self.config = config
        self.console = console

    def checks(self) -> list[PreflightCheckConfig]:
        if not self.config.enabled:
            return []
        out = list(self.config.checks)
        if self.config.run_tests and self.config.test_command:
            out.append(PreflightCheckConfig(name=TEST_CHECK_NAME, command=self.config.test_command))
        out.extend(self.config.custom)
        return out

    def find_check(self, name: str) -> PreflightCheckConfig | None:
        return next((c for c in self.checks() if c.name == name), None)

    def run_check(self, check: PreflightCheckConfig) -> PreflightResult:
        command = " ".join(check.command)
        self.console.print(f"  {check.name}: {command}", Style.DIM)
        result = run_process(list(check.command), cwd=self.root, timeout=CHECK_TIMEOUT_SECONDS)
        if not isinstance(result, Err):
            return PreflightResult(success=True, command=command)

        error = result.error
        output = error.output or str(error)
        if error.returncode == -1 and "timed out" not in error.stderr:
            suggestion = f"install {check.command[0]} or adjust the preflight configuration"
        elif check.fixable:
            suggestion = f"run: {' '.join(check.fix_command)}"
        else:
            suggestion = check.description
        return PreflightResult(
            success=False,
            failed_check=check.name,
            fixable=check.fixable and bool(check.fix_command),
            command=command,
            error=output[-_MAX_ERROR_CHARS:],
            suggestion=suggestion,
        )

    def validate(self) -> PreflightResult:
        """Run checks until the first failure."""
        for check in self.checks():
            result = self.run_check(check)
            if not result.success:
                return result
        return PreflightResult(success=True)

    def run_all(self) -> list[tuple[PreflightCheckConfig, PreflightResult]]:
        """Run every check regardless of failures (for `relkit check`)."""
        return [(check, self.run_check(check)) for check in self.checks()]
