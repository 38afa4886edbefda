"""End-to-end tests for the release pipeline.

Git, GitHub and CI are replaced by in-memory fakes; file writes, backups
and restores run against a real temporary directory.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

import pytest

from relkit.core.config import (
    GitHubConfig,
    PreflightCheckConfig,
    PreflightConfig,
    PublishConfig,
    ReleaseConfig,
)
from relkit.core.result import Err, Ok, Result
from relkit.git.repository import Commit, GitError
from relkit.output.audit import AuditLog
from relkit.output.console import MockConsole
from relkit.platform.http import MockHttpClient
from relkit.platform.process import ProcessError
from relkit.release import autofix as autofix_mod
from relkit.release import preflight as preflight_mod
from relkit.release import publish as publish_mod
from relkit.release.backup import FileRestore, RestoreReport
from relkit.release.ci import WorkflowRun
from relkit.release.errors import ReleaseError
from relkit.release.github import ReleaseInfo
from relkit.release.model import ReleaseState
from relkit.release.pipeline import ReleasePipeline

_PYPROJECT = '[project]\nname = "pkg"\nversion = "1.0.0"\n'
_FIX_COMMIT = Commit(
    sha="f" * 40, date="2026-10-17T10:00:00+00:00", message="fix: handle empty input"
)


class FakeRepo:
    """Git over the real working tree: each commit snapshots every file."""

    def __init__(self, root: Path, log: list[Commit]) -> None:
        self.root = root
        self.log = log
        self.head = "c0"
        self.snapshots: dict[str, dict[str, bytes]] = {"c0": self._scan()}
        self.messages: dict[str, str] = {}
        self.local_tags: dict[str, str] = {}
        self.remote_tags: dict[str, str] = {}
        self.remote_branch: str | None = "c0"
        self.calls: list[str] = []
        self.fail: set[str] = set()

    def _scan(self) -> dict[str, bytes]:
        return {
            p.relative_to(self.root).as_posix(): p.read_bytes()
            for p in sorted(self.root.rglob("*"))
            if p.is_file()
        }

    def _mutate(self, name: str) -> Result[None, GitError]:
        self.calls.append(name)
        if name in self.fail:
            return Err(GitError(command=name, message=f"{name} rejected"))
        return Ok(None)

    # Queries

    def exists(self) -> bool:
        return True

    def dirty_paths(self) -> list[str]:
        committed = self.snapshots[self.head]
        current = self._scan()
        changed = committed.keys() | current.keys()
        return sorted(p for p in changed if committed.get(p) != current.get(p))

    def user_identity(self) -> tuple[str, str] | None:
        return ("Ada", "ada@example.com")

    def current_branch(self) -> str | None:
        return "main"

    def latest_tag(self, prefix: str) -> str | None:
        return f"{prefix}1.0.0"

    def commits_since(self, tag: str | None) -> Result[list[Commit], GitError]:
        return Ok(self.log)

    def head_sha(self) -> Result[str, object]:
        return Ok(self.head)

    def local_tag_exists(self, tag: str) -> Result[bool, object]:
        return Ok(tag in self.local_tags)

    def remote_tag_exists(self, remote: str, tag: str) -> Result[bool, object]:
        return Ok(tag in self.remote_tags)

    def remote_branch_sha(self, remote: str, branch: str) -> Result[str | None, object]:
        return Ok(self.remote_branch)

    # Mutations

    def add(self, paths: list[str]) -> Result[None, GitError]:
        return self._mutate("add")

    def commit(self, message: str) -> Result[str, GitError]:
        done = self._mutate("commit")
        if isinstance(done, Err):
            return done
        sha = f"c{len(self.snapshots)}"
        self.snapshots[sha] = self._scan()
        self.messages[sha] = message
        self.head = sha
        return Ok(sha)

    def create_annotated_tag(self, tag: str, message: str) -> Result[None, GitError]:
        done = self._mutate("tag")
        if isinstance(done, Ok):
            self.local_tags[tag] = self.head
        return done

    def move_tag(self, tag: str, message: str) -> Result[None, GitError]:
        done = self._mutate("move_tag")
        if isinstance(done, Ok):
            self.local_tags[tag] = self.head
        return done

    def unstage(self, paths: list[str]) -> Result[None, GitError]:
        return self._mutate("unstage")

    def push_head(self, remote: str, branch: str) -> Result[None, GitError]:
        done = self._mutate("push")
        if isinstance(done, Ok):
            self.remote_branch = self.head
        return done

    def push_tag(self, remote: str, tag: str, *, force: bool = False) -> Result[None, GitError]:
        done = self._mutate("push_tag --force" if force else "push_tag")
        if isinstance(done, Ok):
            self.remote_tags[tag] = self.local_tags[tag]
        return done

    def delete_local_tag(self, tag: str) -> Result[None, object]:
        self.calls.append("delete_local_tag")
        self.local_tags.pop(tag, None)
        return Ok(None)

    def delete_remote_tag(self, remote: str, tag: str) -> Result[None, object]:
        self.calls.append("delete_remote_tag")
        self.remote_tags.pop(tag, None)
        return Ok(None)

    def force_push_with_lease(
        self,
        remote: str,
        branch: str,
        sha: str,
        expected: str | None = None,
    ) -> Result[None, object]:
        self.calls.append(f"force_push {sha}")
        self.remote_branch = sha
        return Ok(None)

    def reset_soft(self, sha: str) -> Result[None, object]:
        self.calls.append(f"reset_soft {sha}")
        self.head = sha
        return Ok(None)


class FakeGitHub:
    def __init__(self, *, fail_create: bool = False) -> None:
        self.fail_create = fail_create
        self.releases: dict[str, ReleaseInfo] = {}
        self.created: list[tuple[str, str, str]] = []

    def ensure_available(self) -> Result[None, ReleaseError]:
        return Ok(None)

    def create_release(
        self, *, tag: str, title: str, notes: str
    ) -> Result[ReleaseInfo, ReleaseError]:
        self.created.append((tag, title, notes))
        if self.fail_create:
            message = f"failed to create GitHub release {tag}"
            return Err(ReleaseError(kind="github", message=message))
        url = f"https://github.com/o/r/releases/{tag}"
        info = ReleaseInfo(id=len(self.created), tag=tag, url=url)
        self.releases[tag] = info
        return Ok(info)

    def delete_release(self, *, release_id: int | None, tag: str) -> Result[None, object]:
        self.releases.pop(tag, None)
        return Ok(None)

    def release_exists(self, *, release_id: int | None, tag: str) -> Result[bool, object]:
        return Ok(tag in self.releases)


class FakeCI:
    """Completes runs with the queued conclusions, in order."""

    def __init__(self, *conclusions: str, logs: str = "") -> None:
        self.conclusions = list(conclusions)
        self.logs = logs
        self.shas: list[str] = []

    def wait_for_run(self, sha: str) -> Result[WorkflowRun, ReleaseError]:
        self.shas.append(sha)
        return Ok(WorkflowRun(len(self.shas), "queued", None, "https://ci/run", sha))

    def wait_for_completion(self, run: WorkflowRun) -> Result[WorkflowRun, ReleaseError]:
        return Ok(replace(run, status="completed", conclusion=self.conclusions.pop(0)))

    def failed_logs(self, run_id: int) -> Result[str, ReleaseError]:
        return Ok(self.logs)


class _Commands:
    """Stands in for run_process; `effects` maps a command to a side effect."""

    def __init__(self, failing: list[tuple[str, ...]] | None = None) -> None:
        self.failing = list(failing or [])
        self.calls: list[tuple[str, ...]] = []
        self.effects: dict[tuple[str, ...], Path] = {}

    def __call__(
        self, cmd: list[str], *, cwd: Path, timeout: float | None = None
    ) -> Result[str, ProcessError]:
        del cwd, timeout
        key = tuple(cmd)
        self.calls.append(key)
        if key in self.effects:
            self.effects[key].write_text("fixed = True\n", encoding="utf-8")
        if key in self.failing:
            self.failing.remove(key)
            return Err(ProcessError(key, 1, "", "Would reformat: src/pkg/a.py"))
        return Ok("")


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    (tmp_path / "pyproject.toml").write_text(_PYPROJECT, encoding="utf-8")
    return tmp_path


def _config(**overrides: object) -> ReleaseConfig:
    base = ReleaseConfig(
        skip_confirmation=True,
        audit_log=None,
        github=GitHubConfig(create_release=False),
        preflight=PreflightConfig(enabled=False),
    )
    return replace(base, **overrides)  # type: ignore[arg-type]


def _pipeline(
    root: Path,
    config: ReleaseConfig,
    *,
    repo: FakeRepo,
    github: FakeGitHub | None = None,
    ci: FakeCI | None = None,
    http: MockHttpClient | None = None,
    states: list[ReleaseState] | None = None,
    confirm: Callable[[str], bool] | None = None,
) -> ReleasePipeline:
    return ReleasePipeline(
        root,
        config,
        console=MockConsole(),
        repo=repo,
        github=github,
        ci=ci or FakeCI(),
        http=http or MockHttpClient(),
        audit=AuditLog(release_id="rel-test"),
        confirm=confirm,
        on_state=states.append if states is not None else None,
    )


# =============================================================================
# Read-only outcomes
# =============================================================================


class TestDryRun:
    def test_previews_without_side_effects(self, workspace: Path) -> None:
        repo = FakeRepo(workspace, [_FIX_COMMIT])
        github = FakeGitHub()
        pipeline = _pipeline(workspace, _config(dry_run=True), repo=repo, github=github)

        result = pipeline.release()

        assert result.success
        assert result.dry_run
        assert result.version == "1.0.1"
        assert result.previous_version == "1.0.0"
        assert result.updated_files == ("pyproject.toml", "CHANGELOG.md")
        assert repo.calls == []
        assert github.created == []
        assert (workspace / "pyproject.toml").read_text(encoding="utf-8") == _PYPROJECT
        assert not (workspace / "CHANGELOG.md").exists()
        console = pipeline.console
        assert isinstance(console, MockConsole)
        assert console.find('+version = "1.0.1"')
        assert console.find("would create GitHub release 'Release 1.0.1'")

    def test_explicit_bump(self, workspace: Path) -> None:
        repo = FakeRepo(workspace, [_FIX_COMMIT])

        result = _pipeline(workspace, _config(dry_run=True), repo=repo).release("major")

        assert result.version == "2.0.0"


class TestPreconditions:
    def test_no_commits(self, workspace: Path) -> None:
        pipeline = _pipeline(workspace, _config(), repo=FakeRepo(workspace, []))

        result = pipeline.release()

        assert not result.success
        assert result.error_kind == "no_changes"
        assert result.state is ReleaseState.VERSION
        assert pipeline.audit.find("release_failed")[0].data["kind"] == "no_changes"

    def test_no_commits_with_explicit_bump(self, workspace: Path) -> None:
        repo = FakeRepo(workspace, [])

        result = _pipeline(workspace, _config(dry_run=True), repo=repo).release("patch")

        assert result.success
        assert result.version == "1.0.1"

    def test_dirty_tree(self, workspace: Path) -> None:
        repo = FakeRepo(workspace, [_FIX_COMMIT])
        (workspace / "scratch.txt").write_text("wip", encoding="utf-8")

        result = _pipeline(workspace, _config(), repo=repo).release()

        assert not result.success
        assert result.error_kind == "precondition"
        assert result.state is ReleaseState.CHECKS
        assert repo.calls == []

    def test_non_semver_version(self, workspace: Path) -> None:
        (workspace / "pyproject.toml").write_text(
            '[project]\nversion = "2024.1"\n', encoding="utf-8"
        )
        repo = FakeRepo(workspace, [_FIX_COMMIT])

        result = _pipeline(workspace, _config(), repo=repo).release()

        assert result.error_kind == "precondition"
        assert result.error is not None
        assert "2024.1" in result.error

    def test_existing_tag(self, workspace: Path) -> None:
        repo = FakeRepo(workspace, [_FIX_COMMIT])
        repo.local_tags["v1.0.1"] = "c0"

        result = _pipeline(workspace, _config(), repo=repo).release()

        assert result.error_kind == "precondition"
        assert result.error == "tag v1.0.1 already exists"

    def test_declined_confirmation(self, workspace: Path) -> None:
        repo = FakeRepo(workspace, [_FIX_COMMIT])
        questions: list[str] = []

        def decline(question: str) -> bool:
            questions.append(question)
            return False

        pipeline = _pipeline(
            workspace, _config(skip_confirmation=False), repo=repo, confirm=decline
        )
        result = pipeline.release()

        assert result.error_kind == "cancelled"
        assert questions == ["Release v1.0.1 (1.0.0 -> 1.0.1)?"]
        assert pipeline.backups.active_backups() == []
        assert repo.dirty_paths() == []

    def test_audit_file_is_not_written_before_backup(self, workspace: Path) -> None:
        repo = FakeRepo(workspace, [])
        config = _config(audit_log=".relkit/audit.jsonl")

        result = _pipeline(workspace, config, repo=repo).release()

        assert result.error_kind == "no_changes"
        assert not (workspace / ".relkit").exists()
        assert repo.dirty_paths() == []


# =============================================================================
# Full releases
# =============================================================================


class TestRelease:
    def test_success(self, workspace: Path) -> None:
        repo = FakeRepo(workspace, [_FIX_COMMIT])
        github = FakeGitHub()
        states: list[ReleaseState] = []
        pipeline = _pipeline(workspace, _config(), repo=repo, github=github, states=states)

        result = pipeline.release()

        assert result.success
        assert result.state is ReleaseState.COMPLETE
        assert result.github_release_url == "https://github.com/o/r/releases/v1.0.1"
        assert result.updated_files == ("pyproject.toml", "CHANGELOG.md")
        assert repo.messages[repo.head] == "chore(release): bump version to 1.0.1"
        assert repo.remote_branch == repo.head
        assert repo.remote_tags == {"v1.0.1": repo.head}
        assert github.created[0][1] == "Release 1.0.1"
        assert "handle empty input" in github.created[0][2]
        assert states == [
            ReleaseState.INIT,
            ReleaseState.CHECKS,
            ReleaseState.VERSION,
            ReleaseState.CHANGELOG,
            ReleaseState.CHECKS,
            ReleaseState.GIT,
            ReleaseState.GITHUB,
            ReleaseState.COMPLETE,
        ]
        assert pipeline.audit.names() == [
            "release_started",
            "files_updated",
            "git_operations_completed",
            "release_completed",
        ]
        assert pipeline.backups.active_backups() == []

    def test_fixable_preflight_failure_is_fixed_once(
        self, monkeypatch: pytest.MonkeyPatch, workspace: Path
    ) -> None:
        check = ("ruff", "format", "--check")
        commands = _Commands(failing=[check])
        monkeypatch.setattr(preflight_mod, "run_process", commands)
        monkeypatch.setattr(autofix_mod, "run_process", commands)
        preflight = PreflightConfig(
            checks=(
                PreflightCheckConfig(
                    name="Format Check",
                    command=check,
                    fixable=True,
                    fix_command=("ruff", "format"),
                ),
            ),
            run_tests=False,
        )
        repo = FakeRepo(workspace, [_FIX_COMMIT])
        states: list[ReleaseState] = []

        result = _pipeline(
            workspace, _config(preflight=preflight), repo=repo, states=states
        ).release()

        assert result.success
        assert commands.calls == [check, ("ruff", "format"), check]
        assert states.count(ReleaseState.FIXING) == 1

    def test_audit_file_holds_whole_run(self, workspace: Path) -> None:
        repo = FakeRepo(workspace, [_FIX_COMMIT])
        config = _config(audit_log=".relkit/audit.jsonl")

        result = _pipeline(workspace, config, repo=repo).release()

        assert result.success
        lines = (workspace / ".relkit" / "audit.jsonl").read_text(encoding="utf-8")
        events = [json.loads(line)["event"] for line in lines.splitlines()]
        assert events[0] == "release_started"
        assert events[-1] == "release_completed"
        assert repo.dirty_paths() == [".relkit/audit.jsonl"]

    def test_failing_fix_command_still_revalidates(
        self, monkeypatch: pytest.MonkeyPatch, workspace: Path
    ) -> None:
        check = ("ruff", "check")
        fix = ("ruff", "check", "--fix", "--exit-non-zero-on-fix")
        commands = _Commands(failing=[check, fix])
        monkeypatch.setattr(preflight_mod, "run_process", commands)
        monkeypatch.setattr(autofix_mod, "run_process", commands)
        preflight = PreflightConfig(
            checks=(
                PreflightCheckConfig(
                    name="Lint Check", command=check, fixable=True, fix_command=fix
                ),
            ),
            run_tests=False,
        )
        repo = FakeRepo(workspace, [_FIX_COMMIT])

        result = _pipeline(workspace, _config(preflight=preflight), repo=repo).release()

        assert result.success
        assert commands.calls == [check, fix, check]

    def test_preflight_still_failing_after_fix(
        self, monkeypatch: pytest.MonkeyPatch, workspace: Path
    ) -> None:
        check = ("ruff", "format", "--check")
        commands = _Commands(failing=[check, check])
        monkeypatch.setattr(preflight_mod, "run_process", commands)
        monkeypatch.setattr(autofix_mod, "run_process", commands)
        preflight = PreflightConfig(
            checks=(
                PreflightCheckConfig(
                    name="Format Check",
                    command=check,
                    fixable=True,
                    fix_command=("ruff", "format"),
                ),
            ),
            run_tests=False,
        )
        repo = FakeRepo(workspace, [_FIX_COMMIT])
        states: list[ReleaseState] = []

        result = _pipeline(
            workspace, _config(preflight=preflight), repo=repo, states=states
        ).release()

        assert not result.success
        assert result.error_kind == "preflight"
        assert result.failed_check == "Format Check"
        assert commands.calls.count(("ruff", "format")) == 1
        assert commands.calls.count(check) == 2
        assert states.count(ReleaseState.FIXING) == 1
        assert "tag" not in repo.calls
        assert (workspace / "pyproject.toml").read_text(encoding="utf-8") == _PYPROJECT
        assert not (workspace / "CHANGELOG.md").exists()

    def test_unfixable_preflight_failure_restores_files(
        self, monkeypatch: pytest.MonkeyPatch, workspace: Path
    ) -> None:
        commands = _Commands(failing=[("mypy", ".")])
        monkeypatch.setattr(preflight_mod, "run_process", commands)
        preflight = PreflightConfig(
            checks=(PreflightCheckConfig(name="Type Check", command=("mypy", ".")),),
            run_tests=False,
        )
        repo = FakeRepo(workspace, [_FIX_COMMIT])

        result = _pipeline(workspace, _config(preflight=preflight), repo=repo).release()

        assert not result.success
        assert result.error_kind == "preflight"
        assert result.failed_check == "Type Check"
        assert result.state is ReleaseState.CHECKS
        assert repo.calls == []
        assert (workspace / "pyproject.toml").read_text(encoding="utf-8") == _PYPROJECT
        assert not (workspace / "CHANGELOG.md").exists()

    def test_github_failure_rolls_back_everything(self, workspace: Path) -> None:
        repo = FakeRepo(workspace, [_FIX_COMMIT])
        github = FakeGitHub(fail_create=True)
        pipeline = _pipeline(workspace, _config(), repo=repo, github=github)

        result = pipeline.release()

        assert not result.success
        assert result.state is ReleaseState.GITHUB
        assert result.error_kind == "github"
        assert result.rollback is not None
        assert result.rollback.status == "complete"
        assert not result.needs_manual_intervention
        assert repo.head == "c0"
        assert repo.remote_branch == "c0"
        assert repo.local_tags == {}
        assert repo.remote_tags == {}
        assert repo.dirty_paths() == []
        assert (workspace / "pyproject.toml").read_text(encoding="utf-8") == _PYPROJECT
        assert not (workspace / "CHANGELOG.md").exists()
        assert pipeline.backups.active_backups() == []
        assert "rollback_completed" in pipeline.audit.names()
        assert pipeline.audit.names()[-1] == "release_failed"

    def test_rejected_push_rolls_back_commit_and_tag(self, workspace: Path) -> None:
        repo = FakeRepo(workspace, [_FIX_COMMIT])
        repo.fail.add("push")

        result = _pipeline(workspace, _config(), repo=repo).release()

        assert result.error_kind == "git"
        assert result.state is ReleaseState.GIT
        assert result.rollback is not None
        assert [op.description for op in result.rollback.rolled_back] == [
            "Tag v1.0.1",
            "Commit release 1.0.1",
            "Update CHANGELOG.md",
            "Update pyproject.toml",
            "Back up CHANGELOG.md",
            "Back up pyproject.toml",
        ]
        assert "delete_remote_tag" not in repo.calls
        assert repo.head == "c0"

    def test_restore_failure_needs_manual_intervention(
        self, monkeypatch: pytest.MonkeyPatch, workspace: Path
    ) -> None:
        repo = FakeRepo(workspace, [_FIX_COMMIT])
        pipeline = _pipeline(workspace, _config(), repo=repo, github=FakeGitHub(fail_create=True))

        def broken_restore(backup_id: str) -> RestoreReport:
            failed = FileRestore("pyproject.toml", "restored", False, "disk full")
            return RestoreReport(backup_id=backup_id, success=False, files=(failed,))

        monkeypatch.setattr(pipeline.backups, "restore_backup", broken_restore)

        result = pipeline.release()

        assert result.needs_manual_intervention
        assert pipeline.audit.find("backup_restore_failed")[0].severity == "critical"
        assert len(pipeline.backups.active_backups()) == 1
        console = pipeline.console
        assert isinstance(console, MockConsole)
        assert console.has_critical()

    def test_unverified_rollback_is_reported(
        self, monkeypatch: pytest.MonkeyPatch, workspace: Path
    ) -> None:
        repo = FakeRepo(workspace, [_FIX_COMMIT])
        monkeypatch.setattr(repo, "reset_soft", lambda sha: Ok(None))
        pipeline = _pipeline(workspace, _config(), repo=repo, github=FakeGitHub(fail_create=True))

        result = pipeline.release()

        assert result.error_kind == "rollback_verification"
        assert result.error == "failed to create GitHub release v1.0.1"
        assert result.needs_manual_intervention
        assert result.rollback is not None
        assert result.rollback.status == "partial"
        assert [f.stage for f in result.rollback.failed] == ["verification"]
        assert pipeline.audit.find("release_failed")[0].data["kind"] == "github"
        assert len(pipeline.backups.active_backups()) == 1


# =============================================================================
# CI and publication
# =============================================================================


class TestPublication:
    def test_ci_failure_is_fixed_and_publication_verified(
        self, monkeypatch: pytest.MonkeyPatch, workspace: Path
    ) -> None:
        commands = _Commands()
        commands.effects[("ruff", "format")] = workspace / "fixed.py"
        monkeypatch.setattr(preflight_mod, "run_process", commands)
        monkeypatch.setattr(autofix_mod, "run_process", commands)
        http = MockHttpClient()
        http.set_json("https://pypi.org/pypi/pkg/1.0.1/json", {"info": {}})
        config = _config(
            preflight=PreflightConfig(run_tests=False),
            publish=PublishConfig(enabled=True, package="pkg", grace_period=0.0),
        )
        repo = FakeRepo(workspace, [_FIX_COMMIT])
        ci = FakeCI("failure", "success", logs="Would reformat: fixed.py\n")

        result = _pipeline(workspace, config, repo=repo, ci=ci, http=http).release()

        assert result.success
        assert result.attempts == 1
        assert repo.messages[repo.head] == "fix: resolve CI failures for v1.0.1"
        assert ci.shas == ["c1", "c2"]
        assert repo.local_tags["v1.0.1"] == "c2"
        assert repo.remote_tags["v1.0.1"] == "c2"
        assert "push_tag --force" in repo.calls

    def test_ci_failure_without_fix(self, workspace: Path) -> None:
        config = _config(
            publish=PublishConfig(enabled=True, package="pkg", grace_period=0.0),
        )
        repo = FakeRepo(workspace, [_FIX_COMMIT])
        ci = FakeCI("failure", logs="Error: Process completed with exit code 1.\n")

        result = _pipeline(workspace, config, repo=repo, ci=ci).release()

        assert result.error_kind == "ci"
        assert result.error is not None
        assert "auto-fix failed" in result.error
        assert repo.head == "c0"
        assert repo.remote_branch == "c0"

    def test_ci_fix_rounds_are_bounded(
        self, monkeypatch: pytest.MonkeyPatch, workspace: Path
    ) -> None:
        commands = _Commands()
        commands.effects[("ruff", "format")] = workspace / "fixed.py"
        monkeypatch.setattr(preflight_mod, "run_process", commands)
        monkeypatch.setattr(autofix_mod, "run_process", commands)
        base = _config()
        config = _config(
            preflight=PreflightConfig(run_tests=False),
            publish=PublishConfig(enabled=True, package="pkg", grace_period=0.0),
            auto_fix=replace(base.auto_fix, ai=replace(base.auto_fix.ai, max_attempts=1)),
        )
        repo = FakeRepo(workspace, [_FIX_COMMIT])
        ci = FakeCI("failure", "failure", logs="Would reformat: fixed.py\n")

        result = _pipeline(workspace, config, repo=repo, ci=ci).release()

        assert not result.success
        assert result.error_kind == "ci"
        assert result.error is not None
        assert "after 1 fix attempt(s)" in result.error
        assert ci.shas == ["c1", "c2"]
        assert commands.calls.count(("ruff", "format")) == 1
        assert result.rollback is not None
        assert result.rollback.status == "complete"
        assert repo.head == "c0"
        assert repo.remote_branch == "c0"
        assert repo.remote_tags == {}
        assert repo.local_tags == {}

    def test_publication_timeout_rolls_back(
        self, monkeypatch: pytest.MonkeyPatch, workspace: Path
    ) -> None:
        monkeypatch.setattr(publish_mod, "sleep", lambda seconds: None)
        config = _config(
            publish=PublishConfig(
                enabled=True, package="pkg", grace_period=0.0, max_attempts=3, wait_for_ci=False
            ),
        )
        repo = FakeRepo(workspace, [_FIX_COMMIT])

        result = _pipeline(workspace, config, repo=repo).release()

        assert result.error_kind == "publish_verification"
        assert result.state is ReleaseState.JSR
        assert result.attempts == 3
        assert result.error is not None
        assert "pkg@1.0.1" in result.error
        assert "max attempts reached" in result.error
        assert repo.remote_tags == {}
