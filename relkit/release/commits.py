"""Conventional commit parsing and version bump selection."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from relkit.git.repository import Commit
from relkit.release.model import BumpType

_HEADER_RE = re.compile(
    r"^(?P<type>[a-zA-Z]+)(?:\((?P<scope>[^)]+)\))?(?P<bang>!)?:\s*(?P<description>.+)$"
)
_BREAKING_FOOTER_RE = re.compile(r"^BREAKING[ -]CHANGE:\s*(?P<text>.+)$", re.MULTILINE)

KNOWN_TYPES = frozenset(
    {
        "feat",
        "fix",
        "docs",
        "style",
        "refactor",
        "perf",
        "test",
        "build",
        "ci",
        "chore",
        "revert",
        "security",
    }
)

MAX_DESCRIPTION_LENGTH = 100


@dataclass(frozen=True, slots=True)
class ConventionalCommit:
    sha: str
    type: str
    description: str
    date: str
    scope: str | None = None
    body: str | None = None
    breaking: bool = False
    breaking_note: str | None = None

    @property
    def short_sha(self) -> str:
        return self.sha[:7]


def parse_commit(commit: Commit) -> ConventionalCommit:
    """Parse a commit message; non-conventional subjects become `chore`."""
    subject, _, rest = commit.message.partition("\n")
    subject = subject.strip()
    body = rest.strip() or None
    date = commit.date.split("T")[0].split(" ")[0]

    footer = _BREAKING_FOOTER_RE.search(body) if body else None
    breaking_note = footer.group("text").strip() if footer else None

    m = _HEADER_RE.match(subject)
    if m is None or m.group("type").lower() not in KNOWN_TYPES:
        return ConventionalCommit(
            sha=commit.sha,
            type="chore",
            description=subject[:MAX_DESCRIPTION_LENGTH],
            date=date,
            body=body,
            breaking=breaking_note is not None or "BREAKING CHANGE" in subject,
            breaking_note=breaking_note,
        )

    return ConventionalCommit(
        sha=commit.sha,
        type=m.group("type").lower(),
        description=m.group("description").strip()[:MAX_DESCRIPTION_LENGTH],
        date=date,
        scope=m.group("scope"),
        body=body,
        breaking=m.group("bang") is not None or breaking_note is not None,
        breaking_note=breaking_note,
    )


def parse_commits(commits: Iterable[Commit]) -> list[ConventionalCommit]:
    return [parse_commit(c) for c in commits]


def determine_bump(commits: Iterable[ConventionalCommit]) -> BumpType:
    """breaking -> major, else feat -> minor, else patch."""
    items = list(commits)
    if any(c.breaking for c in items):
        return "major"
    if any(c.type == "feat" for c in items):
        return "minor"
    return "patch"
