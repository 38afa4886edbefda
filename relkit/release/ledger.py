"""Operation ledger with verified, reverse-order rollback.

Every side effect of a release (commit, tag, push, GitHub release, registry
publish) is tracked here before it runs. On failure, `perform_rollback`
walks the completed operations newest-first, undoes each one, then
re-queries git or GitHub to confirm the undo took effect. An operation is
marked rolled back only after that check passes; anything else is reported
as needing manual intervention.

Usage:
    ledger = OperationLedger(git=repo, host=github, console=console)

    op = ledger.track_operation(GitCommit(previous_commit=head), "Release commit")
    ledger.mark_in_progress(op)
    match repo.commit(message):
        case Ok(sha):
            ledger.mark_completed(op, commit_hash=sha)
        case Err(e):
            ledger.mark_failed(op, e.message)

    report = ledger.perform_rollback()
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from itertools import count
from typing import Literal, Protocol

from relkit.core.result import Err, Ok, Result
from relkit.output.console import ConsoleProtocol

__all__ = [
    "FileBackup",
    "FileUpdate",
    "GitCommit",
    "GitPush",
    "GitTag",
    "GithubRelease",
    "JsrPublish",
    "Operation",
    "OperationLedger",
    "OperationState",
    "OperationType",
    "Payload",
    "RollbackFailure",
    "RollbackReport",
]


class OperationType(Enum):
    FILE_BACKUP = "file_backup"
    FILE_UPDATE = "file_update"
    GIT_COMMIT = "git_commit"
    GIT_TAG = "git_tag"
    GIT_PUSH = "git_push"
    GITHUB_RELEASE = "github_release"
    JSR_PUBLISH = "jsr_publish"

    def __str__(self) -> str:
        return self.value


class OperationState(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

    def __str__(self) -> str:
        return self.value


# Payload variants: each carries exactly what its rollback needs.


@dataclass(frozen=True, slots=True)
class FileBackup:
    path: str
    backup_id: str


@dataclass(frozen=True, slots=True)
class FileUpdate:
    path: str
    backup_id: str


@dataclass(frozen=True, slots=True)
class GitCommit:
    previous_commit: str
    commit_hash: str | None = None


@dataclass(frozen=True, slots=True)
class GitTag:
    tag_name: str
    remote: str | None = None


@dataclass(frozen=True, slots=True)
class GitPush:
    remote: str
    branch: str
    previous_commit: str | None
    pushed_commit: str | None = None


@dataclass(frozen=True, slots=True)
class GithubRelease:
    tag_name: str
    release_id: int | None = None
    url: str | None = None


@dataclass(frozen=True, slots=True)
class JsrPublish:
    package_name: str
    version: str
    package_url: str | None = None


type Payload = FileBackup | FileUpdate | GitCommit | GitTag | GitPush | GithubRelease | JsrPublish

_PAYLOAD_TYPES: dict[type, OperationType] = {
    FileBackup: OperationType.FILE_BACKUP,
    FileUpdate: OperationType.FILE_UPDATE,
    GitCommit: OperationType.GIT_COMMIT,
    GitTag: OperationType.GIT_TAG,
    GitPush: OperationType.GIT_PUSH,
    GithubRelease: OperationType.GITHUB_RELEASE,
    JsrPublish: OperationType.JSR_PUBLISH,
}

# A custom rollback returns Err(message) when the undo could not be performed.
RollbackFn = Callable[[], Result[None, str]]


@dataclass(slots=True)
class Operation:
    id: str
    payload: Payload
    description: str
    created_at: datetime
    state: OperationState = OperationState.PENDING
    rollback_fn: RollbackFn | None = None
    error: str | None = None

    @property
    def type(self) -> OperationType:
        return _PAYLOAD_TYPES[type(self.payload)]


# Collaborator protocols; Repository and GitHubClient satisfy them.


class GitBackend(Protocol):
    def head_sha(self) -> Result[str, object]: ...

    def local_tag_exists(self, tag: str) -> Result[bool, object]: ...

    def remote_tag_exists(self, remote: str, tag: str) -> Result[bool, object]: ...

    def remote_branch_sha(self, remote: str, branch: str) -> Result[str | None, object]: ...

    def delete_local_tag(self, tag: str) -> Result[None, object]: ...

    def delete_remote_tag(self, remote: str, tag: str) -> Result[None, object]: ...

    def force_push_with_lease(
        self,
        remote: str,
        branch: str,
        sha: str,
        expected: str | None = None,
    ) -> Result[None, object]: ...

    def reset_soft(self, sha: str) -> Result[None, object]: ...


class ReleaseHost(Protocol):
    def delete_release(self, *, release_id: int | None, tag: str) -> Result[None, object]:
        """Delete a release by id, else by tag; absent releases are Ok."""
        ...

    def release_exists(self, *, release_id: int | None, tag: str) -> Result[bool, object]: ...


RollbackStage = Literal["action", "verification"]
RollbackStatus = Literal["complete", "partial", "failed"]


@dataclass(frozen=True, slots=True)
class RollbackFailure:
    operation: Operation
    error: str
    stage: RollbackStage


def _no_ops() -> tuple[Operation, ...]:
    return ()


def _no_failures() -> tuple[RollbackFailure, ...]:
    return ()


@dataclass(frozen=True, slots=True)
class RollbackReport:
    """Outcome of a rollback.

    status:
        complete: every completed operation was undone and verified
        partial: some operations verified, others need manual repair
        failed: nothing could be verified
    """

    status: RollbackStatus
    rolled_back: tuple[Operation, ...] = field(default_factory=_no_ops)
    failed: tuple[RollbackFailure, ...] = field(default_factory=_no_failures)

    @property
    def success(self) -> bool:
        return not self.failed

    @property
    def error(self) -> str | None:
        if not self.failed:
            return None
        return f"{len(self.failed)} operation(s) failed to roll back; manual intervention required"


@dataclass(frozen=True, slots=True)
class LedgerSummary:
    total: int
    by_type: dict[str, int]
    by_state: dict[str, int]


class _Unverified(Exception):
    pass


class OperationLedger:
    """Append-only record of a release's side effects."""

    def __init__(
        self,
        *,
        git: GitBackend,
        host: ReleaseHost | None = None,
        console: ConsoleProtocol | None = None,
    ) -> None:
        self._git = git
        self._host = host
        self._console = console
        self._ops: dict[str, Operation] = {}
        self._order: list[str] = []
        self._ids = count(1)

    def track_operation(
        self,
        payload: Payload,
        description: str,
        rollback_fn: RollbackFn | None = None,
    ) -> str:
        op_id = f"op-{next(self._ids)}"
        self._ops[op_id] = Operation(
            id=op_id,
            payload=payload,
            description=description,
            created_at=datetime.now(UTC),
            rollback_fn=rollback_fn,
        )
        self._order.append(op_id)
        return op_id

    def get(self, op_id: str) -> Operation:
        return self._ops[op_id]

    def mark_in_progress(self, op_id: str) -> None:
        self._transition(op_id, OperationState.IN_PROGRESS)

    def mark_completed(self, op_id: str, **updates: object) -> None:
        """Mark done, merging fields only known after the action ran."""
        op = self._transition(op_id, OperationState.COMPLETED)
        if updates:
            op.payload = replace(op.payload, **updates)  # type: ignore[arg-type]

    def mark_failed(self, op_id: str, error: str) -> None:
        op = self._transition(op_id, OperationState.FAILED)
        op.error = error

    def _transition(self, op_id: str, state: OperationState) -> Operation:
        op = self._ops[op_id]
        if op.state in (OperationState.COMPLETED, OperationState.ROLLED_BACK):
            raise ValueError(f"{op_id} is already {op.state}")
        op.state = state
        return op

    def operations(self) -> list[Operation]:
        """All operations in the order they were tracked."""
        return [self._ops[i] for i in self._order]

    def operations_by_type(self, op_type: OperationType) -> list[Operation]:
        return [op for op in self.operations() if op.type == op_type]

    def operations_by_state(self, state: OperationState) -> list[Operation]:
        return [op for op in self.operations() if op.state == state]

    def summary(self) -> LedgerSummary:
        ops = self.operations()
        return LedgerSummary(
            total=len(ops),
            by_type=dict(Counter(str(op.type) for op in ops)),
            by_state=dict(Counter(str(op.state) for op in ops)),
        )

    def perform_rollback(self) -> RollbackReport:
        """Undo completed operations newest-first, verifying each.

        A failure on one operation is recorded and the walk continues.
        """
        pending = [op for op in reversed(self.operations()) if op.state == OperationState.COMPLETED]
        rolled_back: list[Operation] = []
        failed: list[RollbackFailure] = []

        for op in pending:
            self._debug(f"rolling back: {op.description}")

            action = self._run_action(op)
            if isinstance(action, Err):
                failed.append(RollbackFailure(op, action.error, "action"))
                self._error(f"rollback failed: {op.description}: {action.error}")
                continue

            verified = self._verify(op)
            if isinstance(verified, Err):
                failed.append(RollbackFailure(op, verified.error, "verification"))
                self._error(f"rollback not verified: {op.description}: {verified.error}")
                continue

            op.state = OperationState.ROLLED_BACK
            rolled_back.append(op)
            self._debug(f"rolled back: {op.description}")

        if not failed:
            status: RollbackStatus = "complete"
        elif rolled_back:
            status = "partial"
        else:
            status = "failed"
        return RollbackReport(status=status, rolled_back=tuple(rolled_back), failed=tuple(failed))

    def _run_action(self, op: Operation) -> Result[None, str]:
        if op.rollback_fn is not None:
            try:
                return op.rollback_fn()
            except Exception as e:  # noqa: BLE001
                return Err(f"custom rollback raised: {e}")

        match op.payload:
            case GitTag(tag_name=tag, remote=remote):
                return self._undo_tag(tag, remote)
            case GitPush(remote=remote, branch=branch, previous_commit=prev, pushed_commit=pushed):
                return self._undo_push(remote, branch, prev, pushed)
            case GitCommit(previous_commit=prev):
                return self._undo_commit(prev)
            case GithubRelease(tag_name=tag, release_id=release_id):
                if self._host is None:
                    return Err("no release host configured")
                return _as_str_err(self._host.delete_release(release_id=release_id, tag=tag))
            case JsrPublish(package_name=name, version=version):
                return Err(f"{name}@{version} is published and cannot be withdrawn")
            case FileBackup() | FileUpdate():
                # File content is restored by BackupManager after the ledger walk.
                return Ok(None)
            case _:
                raise AssertionError(f"unexpected payload: {op.payload!r}")

    def _undo_tag(self, tag: str, remote: str | None) -> Result[None, str]:
        if remote is not None:
            on_remote = self._git.remote_tag_exists(remote, tag)
            if isinstance(on_remote, Ok) and on_remote.value:
                deleted = _as_str_err(self._git.delete_remote_tag(remote, tag))
                if isinstance(deleted, Err):
                    return deleted
        return _as_str_err(self._git.delete_local_tag(tag))

    def _undo_push(
        self,
        remote: str,
        branch: str,
        previous: str | None,
        pushed: str | None,
    ) -> Result[None, str]:
        if previous is None:
            return Err(f"no previous commit recorded for {remote}/{branch}")
        current = self._git.remote_branch_sha(remote, branch)
        if isinstance(current, Ok) and current.value == previous:
            return Ok(None)
        return _as_str_err(self._git.force_push_with_lease(remote, branch, previous, pushed))

    def _undo_commit(self, previous: str) -> Result[None, str]:
        head = self._git.head_sha()
        if isinstance(head, Ok) and head.value == previous:
            return Ok(None)
        return _as_str_err(self._git.reset_soft(previous))

    def _verify(self, op: Operation) -> Result[None, str]:
        """Re-query the affected system; Ok only if the undo is observable."""
        try:
            match op.payload:
                case GitTag(tag_name=tag, remote=remote):
                    if _query(self._git.local_tag_exists(tag)):
                        raise _Unverified(f"local tag {tag} still exists")
                    if remote is not None and _query(self._git.remote_tag_exists(remote, tag)):
                        raise _Unverified(f"tag {tag} still exists on {remote}")
                case GitPush(remote=remote, branch=branch, previous_commit=prev):
                    sha = _query(self._git.remote_branch_sha(remote, branch))
                    if sha != prev:
                        raise _Unverified(f"{remote}/{branch} is at {sha}, expected {prev}")
                case GitCommit(previous_commit=prev):
                    head = _query(self._git.head_sha())
                    if head != prev:
                        raise _Unverified(f"HEAD is at {head}, expected {prev}")
                case GithubRelease(tag_name=tag, release_id=release_id):
                    if self._host is None:
                        raise _Unverified("no release host configured")
                    if _query(self._host.release_exists(release_id=release_id, tag=tag)):
                        raise _Unverified(f"release {tag} still exists")
                case _:
                    pass
        except _Unverified as e:
            return Err(str(e))
        return Ok(None)

    def _debug(self, message: str) -> None:
        if self._console is not None:
            self._console.debug(message)

    def _error(self, message: str) -> None:
        if self._console is not None:
            self._console.error(message)


def _query[T](result: Result[T, object]) -> T:
    if isinstance(result, Err):
        raise _Unverified(f"verification query failed: {_describe(result.error)}")
    return result.value


def _as_str_err(result: Result[None, object]) -> Result[None, str]:
    if isinstance(result, Err):
        return Err(_describe(result.error))
    return Ok(None)


def _describe(error: object) -> str:
    message = getattr(error, "message", None)
    return message if isinstance(message, str) else str(error)
