"""Extract actionable errors from CI logs.

Understands the output of the usual Python CI steps (ruff, mypy, pytest,
bandit, build backends, twine/PyPI and JSR uploads). Lines from
`gh run view --log-failed` carry a `job<TAB>step<TAB>timestamp` prefix,
which is stripped first.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import Literal

ErrorType = Literal[
    "lint",
    "format",
    "type-check",
    "security-scan",
    "test-failure",
    "version-conflict",
    "build-error",
    "unknown",
]

_TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?Z\s?")
_RUFF_RE = re.compile(
    r"^(?P<file>[^\s:]+):(?P<line>\d+):(?P<col>\d+): "
    r"(?P<rule>[A-Z]+\d+) (?P<fix>\[\*\] )?(?P<msg>.+)$"
)
_MYPY_RE = re.compile(
    r"^(?P<file>[^\s:]+\.pyi?):(?P<line>\d+): error: "
    r"(?P<msg>.+?)(?:\s+\[(?P<code>[a-z-]+)\])?$"
)
_FORMAT_RE = re.compile(
    r"^Would reformat: (?P<file>.+)$|(?P<count>\d+) files? would be reformatted"
)
_PYTEST_RE = re.compile(r"^FAILED (?P<test>\S+)(?: - (?P<msg>.+))?$")
_BANDIT_RE = re.compile(r"^>> Issue: \[(?P<rule>B\d+):[^\]]*\] (?P<msg>.+)$")
_SEVERITY_RE = re.compile(r"Severity: (?P<sev>Low|Medium|High)")
_CONFLICT_MARKERS = (
    "file already exists",
    "version already exists",
    "already published",
    "cannot overwrite",
)
_BUILD_MARKERS = (
    "error: subprocess-exited-with-error",
    "failed building wheel",
    "backend subprocess exited",
)

# mypy codes a careful edit usually resolves without design changes
_FIXABLE_TYPE_CODES = frozenset({"unused-ignore", "name-defined", "attr-defined", "import"})


@dataclass(frozen=True, slots=True)
class ParsedError:
    type: ErrorType
    message: str
    file: str | None = None
    line: int | None = None
    rule: str | None = None
    fixable: bool = False
    suggestion: str | None = None


@dataclass(frozen=True, slots=True)
class LogParseResult:
    errors: tuple[ParsedError, ...]
    summary: str

    @property
    def has_fixable_errors(self) -> bool:
        return any(e.fixable for e in self.errors)

    def of_type(self, error_type: ErrorType) -> list[ParsedError]:
        return [e for e in self.errors if e.type == error_type]


def clean_line(raw: str) -> str:
    line = raw.split("\t")[-1] if raw.count("\t") >= 2 else raw
    return _TIMESTAMP_RE.sub("", line).rstrip()


def _parse_line(line: str, following: list[str]) -> ParsedError | None:
    if m := _RUFF_RE.match(line):
        return ParsedError(
            type="lint",
            message=m.group("msg"),
            file=m.group("file"),
            line=int(m.group("line")),
            rule=m.group("rule"),
            fixable=m.group("fix") is not None,
            suggestion=f"ruff check --fix ({m.group('rule')})",
        )
    if m := _MYPY_RE.match(line):
        code = m.group("code")
        return ParsedError(
            type="type-check",
            message=m.group("msg"),
            file=m.group("file"),
            line=int(m.group("line")),
            rule=code,
            fixable=code in _FIXABLE_TYPE_CODES,
            suggestion="add the missing annotation or import" if code else None,
        )
    if m := _FORMAT_RE.search(line):
        return ParsedError(
            type="format",
            message=line,
            file=m.group("file"),
            fixable=True,
            suggestion="Run 'ruff format' to fix formatting issues",
        )
    if m := _PYTEST_RE.match(line):
        return ParsedError(
            type="test-failure",
            message=f"Test failed: {m.group('test')}",
            file=m.group("test").split("::")[0],
            suggestion=m.group("msg") or "Review the failing assertions",
        )
    if m := _BANDIT_RE.match(line):
        severity = next(
            (s.group("sev") for s in map(_SEVERITY_RE.search, following) if s is not None),
            "High",
        )
        return ParsedError(
            type="security-scan",
            message=m.group("msg"),
            rule=m.group("rule"),
            fixable=severity != "High",
            suggestion=f"Fix or annotate with '# nosec {m.group('rule')}'",
        )

    lowered = line.lower()
    if any(marker in lowered for marker in _CONFLICT_MARKERS):
        return ParsedError(
            type="version-conflict",
            message=line,
            fixable=True,
            suggestion="Bump to the next patch version and release again",
        )
    if any(marker in lowered for marker in _BUILD_MARKERS):
        return ParsedError(type="build-error", message=line)
    return None


def _summarize(errors: list[ParsedError]) -> str:
    if not errors:
        return "No errors found in logs"
    counts = Counter(e.type for e in errors)
    parts = [f"{n} {t.replace('-', ' ')} error{'s' if n > 1 else ''}" for t, n in counts.items()]
    summary = f"Found {len(errors)} errors: {', '.join(parts)}"
    fixable = sum(1 for e in errors if e.fixable)
    if fixable:
        summary += f" ({fixable} auto-fixable)"
    return summary


def parse_log(log: str) -> LogParseResult:
    lines = [clean_line(raw) for raw in log.splitlines()]
    errors: list[ParsedError] = []
    for i, line in enumerate(lines):
        if not line:
            continue
        parsed = _parse_line(line, lines[i + 1 : i + 4])
        if parsed is not None:
            errors.append(parsed)

    if not errors and any("error" in line.lower() for line in lines):
        errors.append(
            ParsedError(
                type="unknown",
                message="CI failed with errors the parser does not recognize",
            )
        )
    return LogParseResult(errors=tuple(errors), summary=_summarize(errors))
