from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

from relkit.release.backup import RestoreReport
from relkit.release.ledger import RollbackReport

BumpType = Literal["major", "minor", "patch"]


class ReleaseState(Enum):
    """Pipeline stage, reported to the state listener on every transition."""

    INIT = "init"
    CHECKS = "checks"
    VERSION = "version"
    CHANGELOG = "changelog"
    GIT = "git"
    GITHUB = "github"
    CI_CD = "ci_cd"
    JSR = "jsr"
    COMPLETE = "complete"
    ERROR = "error"
    FIXING = "fixing"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class PreflightResult:
    """Outcome of one preflight run.

    On failure, `failed_check` names the first failing check and `command`
    is the command that failed; `fixable` tells whether a fix command exists.
    """

    success: bool
    failed_check: str | None = None
    fixable: bool = False
    command: str | None = None
    error: str | None = None
    suggestion: str | None = None


@dataclass(frozen=True, slots=True)
class ReleaseResult:
    success: bool
    state: ReleaseState
    version: str | None = None
    previous_version: str | None = None
    commit_count: int | None = None
    updated_files: tuple[str, ...] = ()
    github_release_url: str | None = None
    error: str | None = None
    error_kind: str | None = None
    failed_check: str | None = None
    rollback: RollbackReport | None = None
    restore: RestoreReport | None = None
    attempts: int | None = None
    dry_run: bool = False

    @property
    def needs_manual_intervention(self) -> bool:
        if self.rollback is not None and not self.rollback.success:
            return True
        return self.restore is not None and not self.restore.success
