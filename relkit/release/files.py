"""Version-bearing file mutations.

FileMutator computes the new content of every file a release touches
(version file, changelog, configured update targets) without writing, so
the same plan serves dry-run previews and the real write. Version patterns
are regular expressions applied in MULTILINE mode; the captured version
(named group `version`, else the last group) is the only text replaced.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Any

from relkit.core.config import FileTarget, ReleaseConfig, VersionFileConfig
from relkit.core.result import Err, Ok, Result
from relkit.platform.files import atomic_write_text, resolve_inside
from relkit.release.errors import ReleaseError
from relkit.release.notes import ReleaseNotes, update_changelog

# The broad JSON pattern that rewrites every "version" key, dependencies included.
_BROAD_JSON_VERSION = '"version":\\s*"([^"]+)"'


def is_dangerous_pattern(pattern: str, path: str) -> bool:
    """True for patterns broad enough to rewrite unrelated lines."""
    if pattern == _BROAD_JSON_VERSION:
        return True
    if path.endswith(".json") and '"version"' in pattern:
        if "^" not in pattern and "$" not in pattern:
            return True
    return ".*" in pattern or ".+" in pattern


def _compile(pattern: str, where: str) -> Result[re.Pattern[str], ReleaseError]:
    try:
        compiled = re.compile(pattern, re.MULTILINE)
    except re.error as e:
        return Err(ReleaseError(kind="validation", message=f"invalid pattern for {where}: {e}"))
    if compiled.groups == 0:
        return Err(
            ReleaseError(
                kind="validation",
                message=f"pattern for {where} does not capture the version",
                hint="add a (?P<version>...) group",
            )
        )
    return Ok(compiled)


def validate_targets(config: ReleaseConfig) -> Result[None, ReleaseError]:
    """Reject update patterns that are malformed or dangerously broad."""
    for target in config.update_files:
        for pattern in target.patterns:
            if is_dangerous_pattern(pattern, target.path):
                return Err(
                    ReleaseError(
                        kind="validation",
                        message=f"dangerously broad pattern for {target.path}: {pattern}",
                        hint="anchor the pattern with ^ and avoid .* / .+",
                    )
                )
            compiled = _compile(pattern, target.path)
            if isinstance(compiled, Err):
                return compiled
    if config.version_file.template is None:
        compiled = _compile(config.version_file.pattern, config.version_file.path)
        if isinstance(compiled, Err):
            return compiled
    return Ok(None)


def _version_group(compiled: re.Pattern[str]) -> int | str:
    return "version" if "version" in compiled.groupindex else compiled.groups


def extract_version(content: str, pattern: str) -> str | None:
    compiled = re.compile(pattern, re.MULTILINE)
    m = compiled.search(content)
    if m is None:
        return None
    return m.group(_version_group(compiled))


def replace_version(
    content: str,
    pattern: str,
    version: str,
    *,
    where: str,
) -> Result[str, ReleaseError]:
    compiled = _compile(pattern, where)
    if isinstance(compiled, Err):
        return compiled
    group = _version_group(compiled.value)

    def _sub(m: re.Match[str]) -> str:
        start, end = m.span(group)
        if start < 0:
            return m.group(0)
        offset = m.start()
        whole = m.group(0)
        return whole[: start - offset] + version + whole[end - offset :]

    updated, count = compiled.value.subn(_sub, content)
    if count == 0:
        return Err(
            ReleaseError(
                kind="mutation",
                message=f"version pattern matched nothing in {where}",
                hint=pattern,
            )
        )
    return Ok(updated)


def render_template(
    template: str, data: Mapping[str, Any], *, where: str
) -> Result[str, ReleaseError]:
    try:
        return Ok(Template(template).substitute(data))
    except KeyError as e:
        return Err(ReleaseError(kind="validation", message=f"unknown template key {e} in {where}"))
    except ValueError as e:
        return Err(ReleaseError(kind="validation", message=f"invalid template for {where}: {e}"))


@dataclass(frozen=True, slots=True)
class PlannedChange:
    path: str
    before: str | None
    after: str

    @property
    def changed(self) -> bool:
        return self.before != self.after


class FileMutator:
    """Plans and applies the file changes of one release."""

    def __init__(self, root: Path, config: ReleaseConfig) -> None:
        self.root = root
        self.config = config

    def _resolve(self, rel: str) -> Result[Path, ReleaseError]:
        path = resolve_inside(self.root, rel)
        if path is None:
            return Err(ReleaseError(kind="validation", message=f"path escapes repository: {rel}"))
        return Ok(path)

    def _read(self, rel: str) -> Result[str | None, ReleaseError]:
        path = self._resolve(rel)
        if isinstance(path, Err):
            return path
        try:
            return Ok(path.value.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return Ok(None)
        except (OSError, UnicodeDecodeError) as e:
            return Err(ReleaseError(kind="mutation", message=f"cannot read {rel}: {e}"))

    def current_version(self) -> Result[str, ReleaseError]:
        vf = self.config.version_file
        content = self._read(vf.path)
        if isinstance(content, Err):
            return content
        if content.value is None:
            message = f"version file not found: {vf.path}"
            return Err(ReleaseError(kind="precondition", message=message))
        version = extract_version(content.value, vf.pattern)
        if version is None:
            return Err(
                ReleaseError(
                    kind="precondition",
                    message=f"could not find version in {vf.path}",
                    hint=vf.pattern,
                )
            )
        return Ok(version)

    def plan(
        self,
        version: str,
        notes: ReleaseNotes,
        data: Mapping[str, Any],
    ) -> Result[list[PlannedChange], ReleaseError]:
        """Compute new content for every mutated file, in write order."""
        planned: dict[str, PlannedChange] = {}

        def _current(rel: str) -> Result[str | None, ReleaseError]:
            if rel in planned:
                return Ok(planned[rel].after)
            return self._read(rel)

        def _record(rel: str, before: str | None, after: str) -> None:
            original = planned[rel].before if rel in planned else before
            planned[rel] = PlannedChange(path=rel, before=original, after=after)

        vf = self.config.version_file
        content = _current(vf.path)
        if isinstance(content, Err):
            return content
        updated = self._update_version_file(vf, content.value, version, data)
        if isinstance(updated, Err):
            return updated
        _record(vf.path, content.value, updated.value)

        changelog = _current(self.config.changelog)
        if isinstance(changelog, Err):
            return changelog
        _record(self.config.changelog, changelog.value, update_changelog(changelog.value, notes))

        for target in self.config.update_files:
            content = _current(target.path)
            if isinstance(content, Err):
                return content
            if content.value is None:
                return Err(
                    ReleaseError(kind="mutation", message=f"update target not found: {target.path}")
                )
            updated = self._update_target(target, content.value, version, data)
            if isinstance(updated, Err):
                return updated
            _record(target.path, content.value, updated.value)

        return Ok(list(planned.values()))

    def _update_version_file(
        self,
        vf: VersionFileConfig,
        content: str | None,
        version: str,
        data: Mapping[str, Any],
    ) -> Result[str, ReleaseError]:
        if vf.template is not None:
            return render_template(vf.template, data, where=vf.path)
        if content is None:
            return Err(ReleaseError(kind="mutation", message=f"version file not found: {vf.path}"))
        return replace_version(content, vf.pattern, version, where=vf.path)

    def _update_target(
        self,
        target: FileTarget,
        content: str,
        version: str,
        data: Mapping[str, Any],
    ) -> Result[str, ReleaseError]:
        if target.update_fn is not None:
            try:
                return Ok(target.update_fn(content, data))
            except Exception as e:  # noqa: BLE001
                return Err(
                    ReleaseError(
                        kind="mutation", message=f"update_fn failed for {target.path}: {e}"
                    )
                )
        for pattern in target.patterns:
            updated = replace_version(content, pattern, version, where=target.path)
            if isinstance(updated, Err):
                return updated
            content = updated.value
        return Ok(content)

    def apply(self, changes: list[PlannedChange]) -> Result[list[str], ReleaseError]:
        """Write planned content; returns the paths actually written."""
        written: list[str] = []
        for change in changes:
            if not change.changed:
                continue
            path = self._resolve(change.path)
            if isinstance(path, Err):
                return path
            try:
                atomic_write_text(path.value, change.after)
            except OSError as e:
                message = f"cannot write {change.path}: {e}"
                return Err(ReleaseError(kind="mutation", message=message))
            written.append(change.path)
        return Ok(written)
