"""Git repository abstraction.

Repository wraps the git CLI for the operations a release performs and the
queries rollback uses to verify its own work. Every fallible method returns a
Result; boolean probes return False when git cannot answer.

Usage:
    repo = Repository(Path("/path/to/repo"))

    match repo.head_sha():
        case Ok(sha):
            print(f"HEAD at {sha[:8]}")
        case Err(e):
            print(f"Error: {e.message}")
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from relkit.core.result import Err, Ok, Result
from relkit.platform.process import ProcessError
from relkit.platform.process import run as run_process

_GIT_TIMEOUT_SECONDS = 30.0
_GIT_NETWORK_TIMEOUT_SECONDS = 3 * 60.0
_NETWORK_COMMANDS = frozenset({"fetch", "pull", "push", "ls-remote"})

# Separator unlikely to appear in a commit subject.
_LOG_SEPARATOR = "|||"

__all__ = [
    "Commit",
    "GitError",
    "Repository",
]


@dataclass(frozen=True, slots=True)
class GitError:
    """Error from a git operation.

    Attributes:
        command: The git command that failed
        message: Error message
        returncode: Process return code
    """

    command: str
    message: str
    returncode: int = 1


@dataclass(frozen=True, slots=True)
class Commit:
    """A commit as listed by `git log`."""

    sha: str
    date: str
    message: str

    @property
    def short_sha(self) -> str:
        return self.sha[:8]


class Repository:
    """Git repository abstraction.

    Attributes:
        path: Path to the repository root
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        """Check if this is a valid git repository."""
        return (self.path / ".git").exists()

    def is_clean(self) -> bool:
        """Check if working tree is clean (no changes).

        Returns False if status cannot be determined.
        """
        result = self._run(["status", "--porcelain"])
        match result:
            case Ok(stdout):
                return stdout.strip() == ""
            case Err(_):
                return False

    def dirty_paths(self) -> list[str]:
        """Paths reported by `git status --porcelain -z` (empty on error).

        A rename or copy yields both the new and the original path.
        """
        result = self._run(["status", "--porcelain", "-z"])
        if isinstance(result, Err):
            return []
        paths: list[str] = []
        entries = iter(result.value.split("\0"))
        for entry in entries:
            if len(entry) < 4:
                continue
            paths.append(entry[3:])
            if entry[0] in "RC":
                # -z puts the source path in the next field
                source = next(entries, "")
                if source:
                    paths.append(source)
        return paths

    def user_identity(self) -> tuple[str, str] | None:
        """Return (user.name, user.email), or None if either is unset."""
        name = self._run(["config", "user.name"])
        email = self._run(["config", "user.email"])
        if isinstance(name, Err) or isinstance(email, Err):
            return None
        if not name.value.strip() or not email.value.strip():
            return None
        return (name.value.strip(), email.value.strip())

    def current_branch(self) -> str | None:
        """Get current branch name.

        Returns None if detached HEAD or error.
        """
        result = self._run(["rev-parse", "--abbrev-ref", "HEAD"])
        match result:
            case Ok(stdout):
                branch = stdout.strip()
                return None if branch == "HEAD" else branch
            case Err(_):
                return None

    def head_sha(self) -> Result[str, GitError]:
        result = self._run(["rev-parse", "HEAD"])
        match result:
            case Err(e):
                return Err(_git_error("rev-parse HEAD", e, "cannot resolve HEAD"))
            case Ok(stdout):
                return Ok(stdout.strip())

    def head_subject(self) -> Result[str, GitError]:
        """First line of the HEAD commit message."""
        result = self._run(["log", "-1", "--format=%s"])
        if isinstance(result, Err):
            return Err(_git_error("log -1", result.error, "cannot read HEAD commit"))
        return Ok(result.value.strip())

    def parent_sha(self) -> Result[str, GitError]:
        result = self._run(["rev-parse", "HEAD~1"])
        if isinstance(result, Err):
            return Err(_git_error("rev-parse HEAD~1", result.error, "HEAD has no parent"))
        return Ok(result.value.strip())

    def latest_tag(self, prefix: str) -> str | None:
        """Most recent tag matching `prefix*`, by version order."""
        result = self._run(["tag", "-l", f"{prefix}*", "--sort=-version:refname"])
        if isinstance(result, Err):
            return None
        for line in result.value.splitlines():
            if line.strip():
                return line.strip()
        return None

    def commits_since(self, tag: str | None) -> Result[list[Commit], GitError]:
        """Non-merge commits after `tag` (or all commits), newest first.

        Each entry carries the full message so footers are available.
        """
        fmt = f"--pretty=format:%H{_LOG_SEPARATOR}%cI{_LOG_SEPARATOR}%B%x00"
        args = ["log", fmt, "--no-merges"]
        if tag is not None:
            args.insert(1, f"{tag}..HEAD")
        result = self._run(args)
        if isinstance(result, Err):
            # A fresh repository has no HEAD yet: nothing to release.
            if "does not have any commits" in result.error.stderr:
                return Ok([])
            return Err(_git_error("log", result.error, "cannot list commits"))

        commits: list[Commit] = []
        for record in result.value.split("\x00"):
            record = record.strip("\n")
            if not record:
                continue
            parts = record.split(_LOG_SEPARATOR, 2)
            if len(parts) != 3:
                continue
            sha, date, message = parts
            commits.append(Commit(sha=sha.strip(), date=date.strip(), message=message.strip()))
        return Ok(commits)

    def add(self, paths: list[str]) -> Result[None, GitError]:
        if not paths:
            return Ok(None)
        result = self._run(["add", "--all", "--", *paths])
        if isinstance(result, Err):
            return Err(_git_error("add", result.error, "git add failed"))
        return Ok(None)

    def commit(self, message: str) -> Result[str, GitError]:
        """Commit staged changes; returns the new HEAD sha."""
        result = self._run(["commit", "-m", message])
        if isinstance(result, Err):
            return Err(_git_error("commit", result.error, "git commit failed"))
        return self.head_sha()

    def create_annotated_tag(self, tag: str, message: str) -> Result[None, GitError]:
        result = self._run(["tag", "-a", tag, "-m", message])
        if isinstance(result, Err):
            return Err(_git_error(f"tag -a {tag}", result.error, "git tag failed"))
        return Ok(None)

    def move_tag(self, tag: str, message: str) -> Result[None, GitError]:
        """Re-point an annotated tag at HEAD."""
        result = self._run(["tag", "-f", "-a", tag, "-m", message])
        if isinstance(result, Err):
            return Err(_git_error(f"tag -f {tag}", result.error, "git tag failed"))
        return Ok(None)

    def unstage(self, paths: list[str]) -> Result[None, GitError]:
        """Reset the index for `paths` to HEAD, leaving the working tree alone."""
        if not paths:
            return Ok(None)
        result = self._run(["reset", "-q", "HEAD", "--", *paths])
        if isinstance(result, Err):
            return Err(_git_error("reset -- paths", result.error, "git reset failed"))
        return Ok(None)

    def push_head(self, remote: str, branch: str) -> Result[None, GitError]:
        result = self._run(["push", remote, f"HEAD:refs/heads/{branch}"])
        if isinstance(result, Err):
            return Err(_git_error(f"push {remote}", result.error, "git push failed"))
        return Ok(None)

    def push_tag(self, remote: str, tag: str, *, force: bool = False) -> Result[None, GitError]:
        args = ["push", "--force", remote] if force else ["push", remote]
        result = self._run([*args, f"refs/tags/{tag}"])
        if isinstance(result, Err):
            return Err(_git_error(f"push {remote} {tag}", result.error, "git push tag failed"))
        return Ok(None)

    # Queries used to verify rollback

    def local_tag_exists(self, tag: str) -> Result[bool, GitError]:
        result = self._run(["tag", "-l", tag])
        if isinstance(result, Err):
            return Err(_git_error("tag -l", result.error, "cannot list local tags"))
        return Ok(tag in (line.strip() for line in result.value.splitlines()))

    def remote_tag_exists(self, remote: str, tag: str) -> Result[bool, GitError]:
        result = self._run(["ls-remote", "--tags", remote, f"refs/tags/{tag}"])
        if isinstance(result, Err):
            return Err(_git_error(f"ls-remote {remote}", result.error, "cannot list remote tags"))
        return Ok(bool(result.value.strip()))

    def remote_branch_sha(self, remote: str, branch: str) -> Result[str | None, GitError]:
        """Sha of `branch` on `remote`, or None when the branch does not exist."""
        result = self._run(["ls-remote", remote, f"refs/heads/{branch}"])
        if isinstance(result, Err):
            error = _git_error(f"ls-remote {remote}", result.error, "cannot query remote branch")
            return Err(error)
        for line in result.value.splitlines():
            parts = line.split()
            if len(parts) == 2 and parts[1] == f"refs/heads/{branch}":
                return Ok(parts[0])
        return Ok(None)

    # Compensating actions

    def delete_local_tag(self, tag: str) -> Result[None, GitError]:
        result = self._run(["tag", "-d", tag])
        if isinstance(result, Err):
            if "not found" in result.error.stderr:
                return Ok(None)
            return Err(_git_error(f"tag -d {tag}", result.error, "cannot delete local tag"))
        return Ok(None)

    def delete_remote_tag(self, remote: str, tag: str) -> Result[None, GitError]:
        result = self._run(["push", remote, f":refs/tags/{tag}"])
        if isinstance(result, Err):
            if "remote ref does not exist" in result.error.stderr:
                return Ok(None)
            error = _git_error(f"push {remote} :{tag}", result.error, "cannot delete remote tag")
            return Err(error)
        return Ok(None)

    def force_push_with_lease(
        self,
        remote: str,
        branch: str,
        sha: str,
        expected: str | None = None,
    ) -> Result[None, GitError]:
        """Move `remote/branch` to `sha`, refusing if it moved past `expected`."""
        lease = "--force-with-lease"
        if expected is not None:
            lease = f"--force-with-lease=refs/heads/{branch}:{expected}"
        result = self._run(["push", lease, remote, f"{sha}:refs/heads/{branch}"])
        if isinstance(result, Err):
            return Err(_git_error(f"push {lease} {remote}", result.error, "force push failed"))
        return Ok(None)

    def reset_soft(self, sha: str) -> Result[None, GitError]:
        result = self._run(["reset", "--soft", sha])
        if isinstance(result, Err):
            return Err(_git_error(f"reset --soft {sha[:8]}", result.error, "git reset failed"))
        return Ok(None)

    def _run(self, args: list[str]) -> Result[str, ProcessError]:
        """Run a git command in this repository."""
        command = args[0] if args else ""
        timeout = (
            _GIT_NETWORK_TIMEOUT_SECONDS if command in _NETWORK_COMMANDS else _GIT_TIMEOUT_SECONDS
        )
        return run_process(["git", "-C", str(self.path), *args], cwd=self.path, timeout=timeout)


def _git_error(command: str, error: ProcessError, fallback: str) -> GitError:
    return GitError(
        command=command,
        message=error.stderr.strip() or error.stdout.strip() or fallback,
        returncode=error.returncode,
    )
