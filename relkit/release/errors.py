from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ReleaseErrorKind = Literal[
    "precondition",
    "validation",
    "mutation",
    "preflight",
    "git",
    "github",
    "publish_verification",
    "ci",
    "rollback_verification",
    "no_changes",
    "cancelled",
]

# Kinds raised before any file is touched; these never trigger rollback.
PRE_MUTATION_KINDS: frozenset[str] = frozenset(
    {"precondition", "validation", "no_changes", "cancelled"}
)


@dataclass(frozen=True, slots=True)
class ReleaseError:
    kind: ReleaseErrorKind
    message: str
    hint: str | None = None

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} ({self.hint})"
        return self.message
