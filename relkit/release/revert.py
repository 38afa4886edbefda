"""Undo a release after the fact.

Used by `relkit rollback` when a release finished (or was interrupted)
outside the pipeline's own rollback. Removes the release tag locally and
on the remote, and soft-resets HEAD when it is the release commit for the
version being reverted. Published packages and GitHub releases are left
alone.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

from relkit.core.config import ReleaseConfig
from relkit.core.result import Err, Ok, Result
from relkit.git.repository import GitError
from relkit.output.console import ConsoleProtocol
from relkit.release.errors import ReleaseError

__all__ = [
    "ReleaseReverter",
    "RevertReport",
    "RevertTarget",
    "release_commit_message",
    "released_version",
]

_RELEASE_SUBJECT = re.compile(r"^chore\(release\): bump version to (?P<version>\S+)$")


def release_commit_message(version: str) -> str:
    return f"chore(release): bump version to {version}"


def released_version(subject: str) -> str | None:
    """Version named by a release commit subject, or None for other commits."""
    m = _RELEASE_SUBJECT.match(subject.strip())
    return m.group("version") if m else None


class RevertRepo(Protocol):
    def exists(self) -> bool: ...

    def head_sha(self) -> Result[str, GitError]: ...

    def head_subject(self) -> Result[str, GitError]: ...

    def parent_sha(self) -> Result[str, GitError]: ...

    def local_tag_exists(self, tag: str) -> Result[bool, GitError]: ...

    def remote_tag_exists(self, remote: str, tag: str) -> Result[bool, GitError]: ...

    def delete_local_tag(self, tag: str) -> Result[None, GitError]: ...

    def delete_remote_tag(self, remote: str, tag: str) -> Result[None, GitError]: ...

    def reset_soft(self, sha: str) -> Result[None, GitError]: ...


@dataclass(frozen=True, slots=True)
class RevertTarget:
    version: str
    tag: str
    reset_to: str | None = None


@dataclass(frozen=True, slots=True)
class RevertReport:
    target: RevertTarget
    actions: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.actions)


def _git(result: Result[object, GitError], message: str) -> ReleaseError | None:
    if isinstance(result, Err):
        return ReleaseError(kind="git", message=message, hint=result.error.message)
    return None


class ReleaseReverter:
    def __init__(self, repo: RevertRepo, config: ReleaseConfig, console: ConsoleProtocol) -> None:
        self.repo = repo
        self.config = config
        self.console = console

    def target(self, version: str | None = None) -> Result[RevertTarget, ReleaseError]:
        """Decide what to revert; with no version, HEAD must be a release commit."""
        if not self.repo.exists():
            return Err(ReleaseError(kind="precondition", message="not a git repository"))

        subject = self.repo.head_subject()
        if isinstance(subject, Err):
            return Err(
                ReleaseError(kind="git", message="cannot read HEAD", hint=subject.error.message)
            )
        head_version = released_version(subject.value)
        version = version or head_version
        if version is None:
            return Err(
                ReleaseError(
                    kind="precondition",
                    message="HEAD is not a release commit",
                    hint="pass the version to roll back",
                )
            )

        reset_to = None
        if head_version == version:
            parent = self.repo.parent_sha()
            if isinstance(parent, Err):
                return Err(
                    ReleaseError(
                        kind="git", message="cannot resolve HEAD~1", hint=parent.error.message
                    )
                )
            reset_to = parent.value
        return Ok(RevertTarget(version, f"{self.config.tag_prefix}{version}", reset_to))

    def revert(self, target: RevertTarget) -> Result[RevertReport, ReleaseError]:
        """Delete the tag (remote first) and undo the release commit, then verify."""
        remote = self.config.remote
        actions: list[str] = []

        on_remote = self.repo.remote_tag_exists(remote, target.tag)
        if isinstance(on_remote, Err):
            # Offline or no remote: the local part can still be undone.
            self.console.warning(f"cannot query {remote}: {on_remote.error.message}")
        elif on_remote.value:
            error = _git(
                self.repo.delete_remote_tag(remote, target.tag),
                f"cannot delete tag {target.tag} on {remote}",
            )
            if error is not None:
                return Err(error)
            actions.append(f"deleted tag {target.tag} on {remote}")

        local = self.repo.local_tag_exists(target.tag)
        if isinstance(local, Ok) and local.value:
            error = _git(self.repo.delete_local_tag(target.tag), f"cannot delete tag {target.tag}")
            if error is not None:
                return Err(error)
            actions.append(f"deleted local tag {target.tag}")

        if target.reset_to is not None:
            error = _git(self.repo.reset_soft(target.reset_to), "git reset failed")
            if error is not None:
                return Err(error)
            actions.append(f"reset release commit (HEAD is now {target.reset_to[:8]})")

        unverified = self._verify(target, checked_remote=isinstance(on_remote, Ok))
        if unverified is not None:
            return Err(
                ReleaseError(kind="rollback_verification", message=unverified, hint=target.tag)
            )
        return Ok(RevertReport(target=target, actions=tuple(actions)))

    def _verify(self, target: RevertTarget, *, checked_remote: bool) -> str | None:
        local = self.repo.local_tag_exists(target.tag)
        if isinstance(local, Err) or local.value:
            return f"local tag {target.tag} still exists"
        if checked_remote:
            remote = self.repo.remote_tag_exists(self.config.remote, target.tag)
            if isinstance(remote, Err) or remote.value:
                return f"tag {target.tag} still exists on {self.config.remote}"
        if target.reset_to is not None:
            head = self.repo.head_sha()
            if isinstance(head, Err) or head.value != target.reset_to:
                return f"HEAD was not reset to {target.reset_to[:8]}"
        return None
