from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date as date_cls
from typing import Literal

from relkit.release.commits import ConventionalCommit

Section = Literal["added", "changed", "deprecated", "removed", "fixed", "security"]

SECTION_ORDER: tuple[tuple[Section, str], ...] = (
    ("added", "Added"),
    ("changed", "Changed"),
    ("deprecated", "Deprecated"),
    ("removed", "Removed"),
    ("fixed", "Fixed"),
    ("security", "Security"),
)

COMMIT_TYPE_SECTIONS: dict[str, Section] = {
    "feat": "added",
    "fix": "fixed",
    "security": "security",
}

CHANGELOG_HEADER = """# Changelog

All notable changes to this project will be documented in this file.

The format is based on [Keep a Changelog](https://keepachangelog.com/en/1.0.0/),
and this project adheres to [Semantic Versioning](https://semver.org/spec/v2.0.0.html).

"""


def _empty_sections() -> dict[Section, list[str]]:
    return {name: [] for name, _ in SECTION_ORDER}


@dataclass(frozen=True, slots=True)
class ReleaseNotes:
    version: str
    date: str
    sections: dict[Section, list[str]] = field(default_factory=_empty_sections)
    breaking: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not any(self.sections.values())

    def counts(self) -> dict[str, int]:
        return {name: len(items) for name, items in self.sections.items() if items}


def build_release_notes(
    version: str,
    commits: Iterable[ConventionalCommit],
    *,
    today: date_cls | None = None,
) -> ReleaseNotes:
    sections = _empty_sections()
    breaking: list[str] = []
    for c in commits:
        entry = c.description
        if c.scope:
            entry = f"**{c.scope}**: {entry}"
        entry = f"{entry} ({c.short_sha})"
        if c.breaking:
            entry = f"BREAKING: {entry}"
            breaking.append(c.breaking_note or c.description)
        sections[COMMIT_TYPE_SECTIONS.get(c.type, "changed")].append(entry)

    day = (today or date_cls.today()).isoformat()
    return ReleaseNotes(version=version, date=day, sections=sections, breaking=tuple(breaking))


def render_changelog_entry(notes: ReleaseNotes) -> str:
    lines = [f"## [{notes.version}] - {notes.date}", ""]
    for name, title in SECTION_ORDER:
        items = notes.sections[name]
        if not items:
            continue
        lines.append(f"### {title}")
        lines.extend(f"- {item}" for item in items)
        lines.append("")
    return "\n".join(lines) + "\n"


def update_changelog(existing: str | None, notes: ReleaseNotes) -> str:
    """Insert the new entry above the most recent release section."""
    content = existing if existing is not None and existing.strip() else CHANGELOG_HEADER
    entry = render_changelog_entry(notes)

    idx = content.find("\n## ")
    if idx == -1:
        if not content.endswith("\n\n"):
            content = content.rstrip("\n") + "\n\n"
        return content + entry
    return content[: idx + 1] + entry + content[idx + 1 :]


def render_release_body(notes: ReleaseNotes) -> str:
    """GitHub release body: categorized notes without the version heading."""
    lines: list[str] = []
    if notes.breaking:
        lines.append("## Breaking Changes")
        lines.extend(f"- {item}" for item in notes.breaking)
        lines.append("")
    for name, title in SECTION_ORDER:
        items = notes.sections[name]
        if not items:
            continue
        lines.append(f"## {title}")
        lines.extend(f"- {item}" for item in items)
        lines.append("")
    if not lines:
        lines.append(f"Release {notes.version}")
    return "\n".join(lines).rstrip() + "\n"
