"""Automatic remediation of preflight and CI failures.

Deterministic fixes come first: the `fix_command` of the matching preflight
check (formatter, linter autofix). Whatever remains is handed to an AI
assistant CLI when one is enabled and installed.
"""

from __future__ import annotations

import shutil
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from relkit.core.config import AutoFixConfig, PreflightCheckConfig
from relkit.core.result import Err
from relkit.output.console import ConsoleProtocol, Style
from relkit.platform.process import run as run_process
from relkit.release.logparse import ErrorType, ParsedError
from relkit.release.timeouts import CHECK_TIMEOUT_SECONDS

# Error types a check's fix command can address, keyed by a word in the check name.
_TYPE_KEYWORDS: dict[ErrorType, tuple[str, ...]] = {
    "format": ("format", "fmt"),
    "lint": ("lint", "ruff check"),
}

_MAX_PROMPT_ERRORS = 30


@dataclass(frozen=True, slots=True)
class FixResult:
    success: bool
    fixed: int = 0
    failed: int = 0
    changes: tuple[str, ...] = ()
    error: str | None = None


def _merge(a: FixResult, b: FixResult) -> FixResult:
    failed = a.failed + b.failed
    return FixResult(
        success=failed == 0,
        fixed=a.fixed + b.fixed,
        failed=failed,
        changes=a.changes + b.changes,
        error=b.error or a.error,
    )


def build_prompt(errors: Iterable[ParsedError]) -> str:
    items = list(errors)
    lines = [
        "Fix the following errors reported by CI in this repository.",
        "Only change what is needed to make these errors go away; do not commit.",
        "",
    ]
    for e in items[:_MAX_PROMPT_ERRORS]:
        where = f"{e.file}:{e.line}" if e.file and e.line else e.file or "-"
        rule = f" [{e.rule}]" if e.rule else ""
        lines.append(f"- {e.type}{rule} at {where}: {e.message}")
        if e.suggestion:
            lines.append(f"  hint: {e.suggestion}")
    if len(items) > _MAX_PROMPT_ERRORS:
        lines.append(f"- ... and {len(items) - _MAX_PROMPT_ERRORS} more")
    return "\n".join(lines)


class AutoFixEngine:
    def __init__(
        self,
        root: Path,
        config: AutoFixConfig,
        checks: tuple[PreflightCheckConfig, ...],
        console: ConsoleProtocol,
    ) -> None:
        self.root = root
        self.config = config
        self.checks = checks
        self.console = console

    def ai_available(self) -> bool:
        return self.config.ai.enabled and shutil.which(self.config.ai.command) is not None

    def fix_check(self, check: PreflightCheckConfig, output: str) -> FixResult:
        """Remediate one failed preflight check."""
        if self.config.basic and check.fixable and check.fix_command:
            return self._run_fix(list(check.fix_command), check.name)
        if self.ai_available():
            error = ParsedError(type="unknown", message=f"{check.name} failed:\n{output.strip()}")
            return self._ai_fix([error])
        return FixResult(success=False, failed=1, error=f"no fix available for {check.name}")

    def fix_errors(self, errors: Iterable[ParsedError]) -> FixResult:
        """Remediate parsed CI errors, grouped by type."""
        groups: dict[ErrorType, list[ParsedError]] = {}
        for e in errors:
            groups.setdefault(e.type, []).append(e)
        if not groups:
            return FixResult(success=False, error="no errors to fix")

        total = FixResult(success=True)
        for error_type, items in groups.items():
            self.console.print(f"fixing {len(items)} {error_type} error(s)", Style.DIM)
            result = self._basic_fix(error_type, items) if self.config.basic else None
            if result is None or not result.success:
                remaining = items if result is None or result.fixed == 0 else [
                    e for e in items if not e.fixable
                ]
                if self.ai_available():
                    ai = self._ai_fix(remaining)
                    result = ai if result is None else FixResult(
                        success=ai.success,
                        fixed=result.fixed + ai.fixed,
                        failed=ai.failed,
                        changes=result.changes + ai.changes,
                        error=ai.error,
                    )
                elif result is None:
                    result = FixResult(success=False, failed=len(items))
            total = _merge(total, result)
        return total

    def _basic_fix(self, error_type: ErrorType, items: list[ParsedError]) -> FixResult | None:
        keywords = _TYPE_KEYWORDS.get(error_type)
        if keywords is None:
            return None
        checks = [
            c
            for c in self.checks
            if c.fixable and c.fix_command and any(k in c.name.lower() for k in keywords)
        ]
        if not checks:
            return None

        out = FixResult(success=True)
        for check in checks:
            out = _merge(out, self._run_fix(list(check.fix_command), check.name))
        if not out.success:
            return FixResult(success=False, failed=len(items), changes=out.changes, error=out.error)

        # Lint rules without an autofix survive the fix command.
        leftover = [e for e in items if error_type == "lint" and not e.fixable]
        return FixResult(
            success=not leftover,
            fixed=len(items) - len(leftover),
            failed=len(leftover),
            changes=out.changes,
        )

    def _run_fix(self, cmd: list[str], label: str) -> FixResult:
        self.console.print(" ".join(cmd), Style.DIM)
        result = run_process(cmd, cwd=self.root, timeout=CHECK_TIMEOUT_SECONDS)
        if isinstance(result, Err):
            error = f"{label} failed: {result.error.output}"
            return FixResult(success=False, failed=1, error=error)
        return FixResult(success=True, fixed=1, changes=(label,))

    def _ai_fix(self, errors: list[ParsedError]) -> FixResult:
        ai = self.config.ai
        self.console.info(f"asking {ai.command} to fix {len(errors)} error(s)")
        cmd = [ai.command, *ai.flags, build_prompt(errors)]
        result = run_process(cmd, cwd=self.root, timeout=ai.timeout)
        if isinstance(result, Err):
            return FixResult(
                success=False,
                failed=len(errors),
                error=f"{ai.command} failed: {result.error.output or result.error}",
            )
        return FixResult(success=True, fixed=len(errors), changes=(f"{ai.command} fixes",))
