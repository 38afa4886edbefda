"""Tests for git/repository.py."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from relkit.core.result import Err, Ok, Result
from relkit.git import repository as repo_mod
from relkit.git.repository import Repository
from relkit.platform.process import ProcessError

type Responder = Callable[[list[str]], Result[str, ProcessError]]


def _err(*, stderr: str, returncode: int = 1) -> Err[ProcessError]:
    return Err(ProcessError(command=("git",), returncode=returncode, stdout="", stderr=stderr))


class _FakeGit:
    """Records git invocations (without the `git -C <path>` prefix)."""

    def __init__(self, respond: Responder) -> None:
        self.respond = respond
        self.calls: list[list[str]] = []
        self.timeouts: list[float | None] = []

    def __call__(
        self, cmd: list[str], *, cwd: Path, timeout: float | None = None
    ) -> Result[str, ProcessError]:
        del cwd
        assert cmd[:2] == ["git", "-C"]
        args = cmd[3:]
        self.calls.append(args)
        self.timeouts.append(timeout)
        return self.respond(args)


def _install(monkeypatch: pytest.MonkeyPatch, respond: Responder) -> _FakeGit:
    fake = _FakeGit(respond)
    monkeypatch.setattr(repo_mod, "run_process", fake)
    return fake


# =============================================================================
# Queries
# =============================================================================


class TestQueries:
    def test_exists(self, tmp_path: Path) -> None:
        assert Repository(tmp_path).exists() is False
        (tmp_path / ".git").mkdir()
        assert Repository(tmp_path).exists() is True

    def test_dirty_paths(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        _install(monkeypatch, lambda args: Ok(" M CHANGELOG.md\0?? .relkit/\0"))

        repo = Repository(tmp_path)

        assert repo.dirty_paths() == ["CHANGELOG.md", ".relkit/"]
        assert repo.is_clean() is False

    def test_dirty_paths_rename(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        fake = _install(monkeypatch, lambda args: Ok("R  docs/new.md\0docs/old.md\0 M a b.py\0"))

        paths = Repository(tmp_path).dirty_paths()

        assert paths == ["docs/new.md", "docs/old.md", "a b.py"]
        assert fake.calls[0][-3:] == ["status", "--porcelain", "-z"]

    def test_head_subject_and_parent(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        def respond(args: list[str]) -> Result[str, ProcessError]:
            if args[0] == "log":
                return Ok("chore(release): bump version to 1.0.1\n")
            return Ok("a" * 40 + "\n")

        fake = _install(monkeypatch, respond)
        repo = Repository(tmp_path)

        assert repo.head_subject() == Ok("chore(release): bump version to 1.0.1")
        assert repo.parent_sha() == Ok("a" * 40)
        assert fake.calls[1] == ["rev-parse", "HEAD~1"]

    def test_root_commit_has_no_parent(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        _install(monkeypatch, lambda args: _err(stderr="unknown revision HEAD~1"))

        parent = Repository(tmp_path).parent_sha()

        assert isinstance(parent, Err)
        assert parent.error.message == "unknown revision HEAD~1"

    def test_clean_tree(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        _install(monkeypatch, lambda args: Ok(""))
        assert Repository(tmp_path).is_clean() is True

    def test_user_identity_missing_email(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        def respond(args: list[str]) -> Result[str, ProcessError]:
            if args == ["config", "user.name"]:
                return Ok("Ada\n")
            return _err(stderr="")

        _install(monkeypatch, respond)
        assert Repository(tmp_path).user_identity() is None

    def test_detached_head_has_no_branch(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        _install(monkeypatch, lambda args: Ok("HEAD\n"))
        assert Repository(tmp_path).current_branch() is None

    def test_latest_tag_uses_version_sort(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        fake = _install(monkeypatch, lambda args: Ok("v1.10.0\nv1.9.0\n"))

        assert Repository(tmp_path).latest_tag("v") == "v1.10.0"
        assert fake.calls == [["tag", "-l", "v*", "--sort=-version:refname"]]

    def test_commits_since_parses_records(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        log = (
            "aaa111|||2026-01-02T10:00:00+00:00|||feat: add thing\n\nBREAKING CHANGE: gone\x00\n"
            "bbb222|||2026-01-01T09:00:00+00:00|||fix: repair\x00"
        )
        fake = _install(monkeypatch, lambda args: Ok(log))

        result = Repository(tmp_path).commits_since("v1.0.0")

        assert isinstance(result, Ok)
        assert [c.sha for c in result.value] == ["aaa111", "bbb222"]
        assert result.value[0].message == "feat: add thing\n\nBREAKING CHANGE: gone"
        assert fake.calls[0][1] == "v1.0.0..HEAD"

    def test_commits_since_empty_repository(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        stderr = "fatal: your current branch 'main' does not have any commits yet"
        _install(monkeypatch, lambda args: _err(stderr=stderr, returncode=128))

        assert Repository(tmp_path).commits_since(None) == Ok([])

    def test_remote_branch_sha(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        _install(monkeypatch, lambda args: Ok("abc123\trefs/heads/main\n"))

        assert Repository(tmp_path).remote_branch_sha("origin", "main") == Ok("abc123")

    def test_remote_branch_missing(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        _install(monkeypatch, lambda args: Ok(""))

        assert Repository(tmp_path).remote_branch_sha("origin", "main") == Ok(None)

    def test_network_commands_get_longer_timeout(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        fake = _install(monkeypatch, lambda args: Ok(""))
        repo = Repository(tmp_path)

        repo.remote_tag_exists("origin", "v1.0.0")
        repo.local_tag_exists("v1.0.0")

        assert fake.timeouts[0] is not None and fake.timeouts[1] is not None
        assert fake.timeouts[0] > fake.timeouts[1]


# =============================================================================
# Actions and compensating actions
# =============================================================================


class TestActions:
    def test_commit_returns_new_head(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        def respond(args: list[str]) -> Result[str, ProcessError]:
            if args[0] == "rev-parse":
                return Ok("def456\n")
            return Ok("")

        fake = _install(monkeypatch, respond)

        assert Repository(tmp_path).commit("chore(release): bump version to 1.0.1") == Ok("def456")
        assert fake.calls[0] == ["commit", "-m", "chore(release): bump version to 1.0.1"]

    def test_push_tag_force(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        fake = _install(monkeypatch, lambda args: Ok(""))

        Repository(tmp_path).push_tag("origin", "v1.0.1", force=True)

        assert fake.calls == [["push", "--force", "origin", "refs/tags/v1.0.1"]]

    def test_force_push_with_lease_expected(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        fake = _install(monkeypatch, lambda args: Ok(""))

        Repository(tmp_path).force_push_with_lease("origin", "main", "old", expected="new")

        assert fake.calls == [
            ["push", "--force-with-lease=refs/heads/main:new", "origin", "old:refs/heads/main"]
        ]

    def test_delete_missing_local_tag_is_ok(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        _install(monkeypatch, lambda args: _err(stderr="error: tag 'v9' not found."))

        assert Repository(tmp_path).delete_local_tag("v9") == Ok(None)

    def test_delete_missing_remote_tag_is_ok(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        stderr = "error: unable to delete 'v9': remote ref does not exist"
        _install(monkeypatch, lambda args: _err(stderr=stderr))

        assert Repository(tmp_path).delete_remote_tag("origin", "v9") == Ok(None)

    def test_delete_remote_tag_other_failure(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        _install(monkeypatch, lambda args: _err(stderr="fatal: could not read from remote"))

        result = Repository(tmp_path).delete_remote_tag("origin", "v9")

        assert isinstance(result, Err)
        assert "could not read" in result.error.message

    def test_unstage_without_paths_runs_nothing(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        fake = _install(monkeypatch, lambda args: Ok(""))

        assert Repository(tmp_path).unstage([]) == Ok(None)
        assert fake.calls == []
