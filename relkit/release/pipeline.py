"""Release orchestration.

ReleasePipeline owns the all-or-nothing contract of a release. Steps before
the backup only read state, so their failures are reported as-is. Once the
backup exists, every side effect is tracked in an OperationLedger and any
failure triggers a verified LIFO rollback followed by a file restore.

Usage:
    pipeline = ReleasePipeline(root, config, console=RichConsole(), confirm=typer.confirm)
    result = pipeline.release("minor")
    if not result.success:
        print(result.error)
"""

from __future__ import annotations

import difflib
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from relkit.core.config import ReleaseConfig
from relkit.core.result import Err, Ok, Result
from relkit.git.repository import Commit, GitError, Repository
from relkit.output.audit import AuditLog
from relkit.output.console import ConsoleProtocol, Style
from relkit.platform.http import HttpClient, RealHttpClient
from relkit.platform.process import run as run_process
from relkit.release.autofix import AutoFixEngine
from relkit.release.backup import Backup, BackupManager
from relkit.release.ci import CIMonitor, WorkflowRun
from relkit.release.commits import ConventionalCommit, determine_bump, parse_commits
from relkit.release.errors import ReleaseError, ReleaseErrorKind
from relkit.release.files import FileMutator, PlannedChange, validate_targets
from relkit.release.github import GitHubClient, ReleaseInfo
from relkit.release.ledger import (
    FileBackup,
    FileUpdate,
    GitBackend,
    GitCommit,
    GitPush,
    GitTag,
    GithubRelease,
    JsrPublish,
    OperationLedger,
    Payload,
    ReleaseHost,
)
from relkit.release.logparse import parse_log
from relkit.release.model import BumpType, ReleaseResult, ReleaseState
from relkit.release.notes import (
    ReleaseNotes,
    build_release_notes,
    render_changelog_entry,
    render_release_body,
)
from relkit.release.preflight import PreflightValidator
from relkit.release.publish import PublishVerifier
from relkit.release.revert import release_commit_message
from relkit.release.semver import parse_version
from relkit.release.timeouts import CHECK_TIMEOUT_SECONDS

__all__ = [
    "CIWatcher",
    "GitRepo",
    "ReleasePipeline",
    "ReleasePlan",
    "ReleaseService",
]

Confirm = Callable[[str], bool]
StateListener = Callable[[ReleaseState], None]


class GitRepo(GitBackend, Protocol):
    """Everything the pipeline asks of git; Repository implements it."""

    def exists(self) -> bool: ...

    def dirty_paths(self) -> list[str]: ...

    def user_identity(self) -> tuple[str, str] | None: ...

    def current_branch(self) -> str | None: ...

    def latest_tag(self, prefix: str) -> str | None: ...

    def commits_since(self, tag: str | None) -> Result[list[Commit], GitError]: ...

    def add(self, paths: list[str]) -> Result[None, GitError]: ...

    def commit(self, message: str) -> Result[str, GitError]: ...

    def create_annotated_tag(self, tag: str, message: str) -> Result[None, GitError]: ...

    def move_tag(self, tag: str, message: str) -> Result[None, GitError]: ...

    def unstage(self, paths: list[str]) -> Result[None, GitError]: ...

    def push_head(self, remote: str, branch: str) -> Result[None, GitError]: ...

    def push_tag(self, remote: str, tag: str, *, force: bool = False) -> Result[None, GitError]: ...


class ReleaseService(ReleaseHost, Protocol):
    def ensure_available(self) -> Result[None, ReleaseError]: ...

    def create_release(
        self, *, tag: str, title: str, notes: str
    ) -> Result[ReleaseInfo, ReleaseError]: ...


class CIWatcher(Protocol):
    def wait_for_run(self, sha: str) -> Result[WorkflowRun, ReleaseError]: ...

    def wait_for_completion(self, run: WorkflowRun) -> Result[WorkflowRun, ReleaseError]: ...

    def failed_logs(self, run_id: int) -> Result[str, ReleaseError]: ...


@dataclass(frozen=True, slots=True)
class ReleasePlan:
    """Everything decided before the first write."""

    previous_version: str
    version: str
    tag: str
    branch: str
    head: str
    commits: tuple[ConventionalCommit, ...]
    notes: ReleaseNotes
    changes: tuple[PlannedChange, ...]

    @property
    def updated_files(self) -> tuple[str, ...]:
        return tuple(c.path for c in self.changes if c.changed)


def _no_paths() -> list[str]:
    return []


@dataclass(slots=True)
class _Run:
    plan: ReleasePlan
    backup: Backup
    written: list[str] = field(default_factory=_no_paths)
    staged: list[str] = field(default_factory=_no_paths)
    commit_sha: str | None = None
    failed_check: str | None = None
    release_url: str | None = None
    attempts: int | None = None


def _git_failure[T](result: Result[T, GitError], message: str) -> Result[T, ReleaseError]:
    if isinstance(result, Err):
        return Err(ReleaseError(kind="git", message=message, hint=result.error.message))
    return Ok(result.value)


class ReleasePipeline:
    """Runs one release end to end and always returns a ReleaseResult."""

    def __init__(
        self,
        root: Path,
        config: ReleaseConfig,
        *,
        console: ConsoleProtocol,
        repo: GitRepo | None = None,
        github: ReleaseService | None = None,
        ci: CIWatcher | None = None,
        http: HttpClient | None = None,
        audit: AuditLog | None = None,
        confirm: Confirm | None = None,
        on_state: StateListener | None = None,
    ) -> None:
        self.root = root
        self.config = config
        self.console = console
        self.repo: GitRepo = repo if repo is not None else Repository(root)
        if github is None and config.github.create_release:
            github = GitHubClient(root, config.github.repository)
        self.github = github
        self.ci: CIWatcher = ci if ci is not None else CIMonitor(root, config.monitoring, console)
        self.audit = audit if audit is not None else self._default_audit()
        self.confirm = confirm
        self.on_state = on_state

        self.mutator = FileMutator(root, config)
        self.backups = BackupManager(root)
        self.ledger = OperationLedger(git=self.repo, host=self.github, console=console)
        self.preflight = PreflightValidator(root, config.preflight, console)
        self.autofix = AutoFixEngine(
            root, config.auto_fix, tuple(self.preflight.checks()), console
        )
        self.verifier = PublishVerifier(
            http if http is not None else RealHttpClient(), config.publish, console
        )
        self.state = ReleaseState.INIT

    def _default_audit(self) -> AuditLog:
        # The file sink is attached once the backup exists; earlier aborts touch no files.
        return AuditLog(release_id=f"rel-{uuid4().hex[:12]}")

    def _attach_audit_sink(self) -> None:
        if self.audit.path is None and self.config.audit_log:
            self.audit.attach(self.root / self.config.audit_log)

    def _enter(self, state: ReleaseState) -> None:
        self.state = state
        if state not in (ReleaseState.ERROR, ReleaseState.COMPLETE):
            self.console.print(f"[{state}]", Style.DIM)
        if self.on_state is not None:
            self.on_state(state)

    # Entry point

    def release(self, bump_type: BumpType | None = None) -> ReleaseResult:
        self._enter(ReleaseState.INIT)
        self.audit.emit("release_started", bump_type=bump_type, dry_run=self.config.dry_run)

        try:
            prepared = self._prepare(bump_type)
        except Exception as e:  # noqa: BLE001
            prepared = Err(ReleaseError(kind="precondition", message=f"unexpected error: {e}"))
        if isinstance(prepared, Err):
            return self._abort(prepared.error)
        plan = prepared.value

        if self.config.dry_run:
            return self._preview(plan)

        if not self.config.skip_confirmation and not self._confirmed(plan):
            return self._abort(ReleaseError(kind="cancelled", message="release cancelled"), plan)

        created = self.backups.create_backup(self._backup_paths())
        if isinstance(created, Err):
            error = created.error
            return self._abort(
                ReleaseError(kind="validation", message=error.message, hint=error.path), plan
            )
        backup = created.value
        if not backup.is_complete:
            self.backups.cleanup_backup(backup.id)
            unreadable = ", ".join(e.path for e in backup.errors)
            return self._abort(
                ReleaseError(
                    kind="mutation",
                    message="cannot back up files before release",
                    hint=unreadable,
                ),
                plan,
            )
        self._attach_audit_sink()

        run = _Run(plan=plan, backup=backup)
        try:
            outcome = self._execute(run)
        except Exception as e:  # noqa: BLE001
            outcome = Err(ReleaseError(kind="mutation", message=f"unexpected error: {e}"))
        if isinstance(outcome, Err):
            return self._rollback(run, outcome.error)
        return self._complete(run)

    def _confirmed(self, plan: ReleasePlan) -> bool:
        if self.confirm is None:
            self.console.warning("no confirmation available; pass --yes to release")
            return False
        question = f"Release {plan.tag} ({plan.previous_version} -> {plan.version})?"
        try:
            return self.confirm(question)
        except Exception:  # noqa: BLE001
            return False

    # Steps 1-4: read-only

    def _prepare(self, bump_type: BumpType | None) -> Result[ReleasePlan, ReleaseError]:
        self._enter(ReleaseState.CHECKS)
        branch = self._check_preconditions()
        if isinstance(branch, Err):
            return branch

        self._enter(ReleaseState.VERSION)
        current = self.mutator.current_version()
        if isinstance(current, Err):
            return current
        semver = parse_version(current.value)
        if semver is None:
            return Err(
                ReleaseError(
                    kind="precondition",
                    message=f"current version is not semantic: {current.value}",
                    hint=self.config.version_file.path,
                )
            )

        last_tag = self.repo.latest_tag(self.config.tag_prefix)
        raw = _git_failure(self.repo.commits_since(last_tag), "cannot list commits")
        if isinstance(raw, Err):
            return raw
        commits = parse_commits(raw.value)
        if not commits and bump_type is None:
            since = last_tag or "the first commit"
            return Err(
                ReleaseError(
                    kind="no_changes",
                    message=f"no commits since {since}",
                    hint="pass --patch, --minor or --major to release anyway",
                )
            )

        bump = bump_type or determine_bump(commits)
        version = str(semver.bump(bump))
        tag = f"{self.config.tag_prefix}{version}"
        exists = self.repo.local_tag_exists(tag)
        if isinstance(exists, Ok) and exists.value:
            return Err(ReleaseError(kind="precondition", message=f"tag {tag} already exists"))
        head = _git_failure(self.repo.head_sha(), "cannot resolve HEAD")
        if isinstance(head, Err):
            return head

        self._enter(ReleaseState.CHANGELOG)
        notes = build_release_notes(version, commits)
        data = self._template_data(
            version=version,
            previous=current.value,
            tag=tag,
            branch=branch.value,
            head=head.value,
            notes=notes,
            commit_count=len(commits),
        )
        changes = self.mutator.plan(version, notes, data)
        if isinstance(changes, Err):
            return changes

        self.console.info(f"{current.value} -> {version} ({bump}, {len(commits)} commit(s))")
        return Ok(
            ReleasePlan(
                previous_version=current.value,
                version=version,
                tag=tag,
                branch=branch.value,
                head=head.value,
                commits=tuple(commits),
                notes=notes,
                changes=tuple(changes.value),
            )
        )

    def _check_preconditions(self) -> Result[str, ReleaseError]:
        """Returns the current branch."""
        if not self.repo.exists():
            return Err(
                ReleaseError(kind="precondition", message=f"not a git repository: {self.root}")
            )

        dirty = self._changed_paths()
        if dirty:
            shown = ", ".join(dirty[:5]) + (" ..." if len(dirty) > 5 else "")
            return Err(
                ReleaseError(
                    kind="precondition",
                    message="working tree has uncommitted changes",
                    hint=shown,
                )
            )

        if self.repo.user_identity() is None:
            return Err(
                ReleaseError(
                    kind="precondition",
                    message="git committer identity is not configured",
                    hint="git config user.name ... && git config user.email ...",
                )
            )

        branch = self.repo.current_branch()
        if branch is None:
            return Err(
                ReleaseError(
                    kind="precondition",
                    message="HEAD is detached",
                    hint="check out the release branch",
                )
            )

        validated = validate_targets(self.config)
        if isinstance(validated, Err):
            return validated

        if self.github is not None and not self.config.dry_run:
            available = self.github.ensure_available()
            if isinstance(available, Err):
                return available

        return Ok(branch)

    def _template_data(
        self,
        *,
        version: str,
        previous: str,
        tag: str,
        branch: str,
        head: str,
        notes: ReleaseNotes,
        commit_count: int,
    ) -> Mapping[str, Any]:
        return {
            "version": version,
            "previous_version": previous,
            "tag": tag,
            "date": notes.date,
            "build_date": datetime.now(UTC).isoformat(timespec="seconds"),
            "git_commit": head,
            "branch": branch,
            "commit_count": commit_count,
            "changelog": render_changelog_entry(notes),
        }

    def _preview(self, plan: ReleasePlan) -> ReleaseResult:
        self.console.header(f"Dry run: {plan.tag}")
        for change in plan.changes:
            if not change.changed:
                continue
            self.console.print(f"would update {change.path}", Style.BOLD)
            diff = difflib.unified_diff(
                (change.before or "").splitlines(),
                change.after.splitlines(),
                fromfile=f"a/{change.path}",
                tofile=f"b/{change.path}",
                lineterm="",
            )
            for line in diff:
                self.console.print(line, Style.DIM)

        remote = self.config.remote
        self.console.print(f"would commit, tag {plan.tag} and push to {remote}/{plan.branch}")
        if self.github is not None:
            self.console.print(f"would create GitHub release 'Release {plan.version}'")
        if self.config.publish.enabled:
            self.console.print(f"would verify {self.verifier.coordinate(plan.version)}")

        self._enter(ReleaseState.COMPLETE)
        self.audit.emit("release_completed", version=plan.version, dry_run=True)
        return ReleaseResult(
            success=True,
            state=ReleaseState.COMPLETE,
            version=plan.version,
            previous_version=plan.previous_version,
            commit_count=len(plan.commits),
            updated_files=plan.updated_files,
            dry_run=True,
        )

    # Steps 6-9: tracked side effects

    def _backup_paths(self) -> list[str]:
        return self.config.mutated_paths()

    def _execute(self, run: _Run) -> Result[None, ReleaseError]:
        for path in run.backup.paths:
            op = self.ledger.track_operation(
                FileBackup(path=path, backup_id=run.backup.id), f"Back up {path}"
            )
            self.ledger.mark_completed(op)

        written = self._write_files(run)
        if isinstance(written, Err):
            return written

        if self.config.docs.enabled and self.config.docs.command:
            docs = self._run_command(self.config.docs.command, "documentation build")
            if isinstance(docs, Err):
                return docs
        if self.config.format_command:
            formatted = self._run_command(self.config.format_command, "formatting")
            if isinstance(formatted, Err):
                return formatted

        self._enter(ReleaseState.CHECKS)
        checked = self._run_preflight(run)
        if isinstance(checked, Err):
            return checked

        self._enter(ReleaseState.GIT)
        pushed = self._commit_tag_push(run)
        if isinstance(pushed, Err):
            return pushed

        if self.github is not None:
            self._enter(ReleaseState.GITHUB)
            created = self._create_github_release(run, self.github)
            if isinstance(created, Err):
                return created

        if self.config.publish.enabled:
            return self._verify_publication(run)
        return Ok(None)

    def _tracked[T](
        self,
        payload: Payload,
        description: str,
        action: Callable[[], Result[T, ReleaseError]],
        updates: Callable[[T], dict[str, object]] | None = None,
    ) -> Result[T, ReleaseError]:
        op = self.ledger.track_operation(payload, description)
        self.ledger.mark_in_progress(op)
        result = action()
        if isinstance(result, Err):
            self.ledger.mark_failed(op, result.error.message)
            return result
        self.ledger.mark_completed(op, **(updates(result.value) if updates else {}))
        return result

    def _write_files(self, run: _Run) -> Result[None, ReleaseError]:
        plan = run.plan
        ops = {
            path: self.ledger.track_operation(
                FileUpdate(path=path, backup_id=run.backup.id), f"Update {path}"
            )
            for path in plan.updated_files
        }
        for op in ops.values():
            self.ledger.mark_in_progress(op)

        applied = self.mutator.apply(list(plan.changes))
        if isinstance(applied, Err):
            for op in ops.values():
                self.ledger.mark_failed(op, applied.error.message)
            return applied

        for path in applied.value:
            self.ledger.mark_completed(ops[path])
        run.written = applied.value
        self.audit.emit("files_updated", version=plan.version, files=applied.value)
        for path in applied.value:
            self.console.print(f"  updated {path}", Style.DIM)
        return Ok(None)

    def _run_command(self, cmd: tuple[str, ...], label: str) -> Result[None, ReleaseError]:
        self.console.print(" ".join(cmd), Style.DIM)
        result = run_process(list(cmd), cwd=self.root, timeout=CHECK_TIMEOUT_SECONDS)
        if isinstance(result, Err):
            return Err(
                ReleaseError(
                    kind="mutation",
                    message=f"{label} failed",
                    hint=result.error.output or str(result.error),
                )
            )
        return Ok(None)

    def _run_preflight(self, run: _Run) -> Result[None, ReleaseError]:
        result = self.preflight.validate()
        if result.success:
            return Ok(None)

        run.failed_check = result.failed_check
        failure = ReleaseError(
            kind="preflight",
            message=f"preflight check failed: {result.failed_check}",
            hint=result.suggestion,
        )
        check = self.preflight.find_check(result.failed_check or "")
        if not result.fixable or check is None:
            return Err(failure)

        self._enter(ReleaseState.FIXING)
        self.console.info(f"attempting to fix {check.name}")
        fixed = self.autofix.fix_check(check, result.error or "")
        if not fixed.success:
            # Some fixers exit non-zero after changing files; the re-validation decides.
            self.console.warning(f"fix for {check.name} reported failure: {fixed.error}")

        self._enter(ReleaseState.CHECKS)
        again = self.preflight.validate()
        if not again.success:
            run.failed_check = again.failed_check
            return Err(
                ReleaseError(
                    kind="preflight",
                    message=f"preflight check failed after fix: {again.failed_check}",
                    hint=again.suggestion if fixed.success else fixed.error,
                )
            )
        run.failed_check = None
        self.console.success(f"{check.name} fixed")
        return Ok(None)

    def _commit(self, run: _Run, message: str) -> Result[str, ReleaseError]:
        paths = self._changed_paths()
        if not paths:
            return Err(ReleaseError(kind="git", message="nothing to commit"))
        run.staged.extend(p for p in paths if p not in run.staged)
        added = _git_failure(self.repo.add(paths), "git add failed")
        if isinstance(added, Err):
            return added
        return _git_failure(self.repo.commit(message), "git commit failed")

    def _push_branch(self, run: _Run, sha: str) -> Result[None, ReleaseError]:
        remote, branch = self.config.remote, run.plan.branch
        previous = _git_failure(
            self.repo.remote_branch_sha(remote, branch), f"cannot query {remote}/{branch}"
        )
        if isinstance(previous, Err):
            return previous
        return self._tracked(
            GitPush(remote=remote, branch=branch, previous_commit=previous.value),
            f"Push {branch} to {remote}",
            lambda: _git_failure(self.repo.push_head(remote, branch), "git push failed"),
            lambda _: {"pushed_commit": sha},
        )

    def _commit_tag_push(self, run: _Run) -> Result[None, ReleaseError]:
        plan = run.plan
        remote = self.config.remote

        sha = self._tracked(
            GitCommit(previous_commit=plan.head),
            f"Commit release {plan.version}",
            lambda: self._commit(run, release_commit_message(plan.version)),
            lambda sha: {"commit_hash": sha},
        )
        if isinstance(sha, Err):
            return sha
        run.commit_sha = sha.value

        tagged = self._tracked(
            GitTag(tag_name=plan.tag, remote=remote),
            f"Tag {plan.tag}",
            lambda: _git_failure(
                self.repo.create_annotated_tag(plan.tag, f"Release {plan.version}"),
                "git tag failed",
            ),
        )
        if isinstance(tagged, Err):
            return tagged

        pushed = self._push_branch(run, sha.value)
        if isinstance(pushed, Err):
            return pushed
        pushed_tag = _git_failure(self.repo.push_tag(remote, plan.tag), "git push tag failed")
        if isinstance(pushed_tag, Err):
            return pushed_tag

        self.audit.emit(
            "git_operations_completed",
            commit=sha.value,
            tag=plan.tag,
            remote=remote,
            branch=plan.branch,
        )
        self.console.success(f"pushed {plan.tag} to {remote}")
        return Ok(None)

    def _create_github_release(
        self, run: _Run, github: ReleaseService
    ) -> Result[None, ReleaseError]:
        plan = run.plan
        info = self._tracked(
            GithubRelease(tag_name=plan.tag),
            f"GitHub release {plan.tag}",
            lambda: github.create_release(
                tag=plan.tag,
                title=f"Release {plan.version}",
                notes=render_release_body(plan.notes),
            ),
            lambda info: {"release_id": info.id, "url": info.url},
        )
        if isinstance(info, Err):
            return info
        run.release_url = info.value.url
        self.console.success(f"GitHub release: {info.value.url}")
        return Ok(None)

    def _verify_publication(self, run: _Run) -> Result[None, ReleaseError]:
        plan = run.plan
        max_rounds = max(1, self.config.auto_fix.ai.max_attempts)
        sha = run.commit_sha or plan.head
        rounds = 0

        while self.config.publish.wait_for_ci:
            self._enter(ReleaseState.CI_CD)
            found = self.ci.wait_for_run(sha)
            if isinstance(found, Err):
                return found
            done = self.ci.wait_for_completion(found.value)
            if isinstance(done, Err):
                return done
            workflow = done.value
            if workflow.succeeded:
                break

            failure = f"CI run {workflow.id} concluded {workflow.conclusion or 'unknown'}"
            if rounds >= max_rounds:
                return Err(
                    ReleaseError(
                        kind="ci",
                        message=f"{failure} after {rounds} fix attempt(s)",
                        hint=workflow.url,
                    )
                )
            rounds += 1
            self._enter(ReleaseState.FIXING)
            fixed = self._fix_ci(run, workflow, rounds)
            if isinstance(fixed, Err):
                return Err(
                    ReleaseError(
                        kind="ci",
                        message=f"{failure}; auto-fix failed: {fixed.error.message}",
                        hint=workflow.url,
                    )
                )
            sha = fixed.value

        self._enter(ReleaseState.JSR)
        outcome = self.verifier.verify(plan.version)
        run.attempts = outcome.attempts
        if not outcome.success:
            return Err(
                ReleaseError(
                    kind="publish_verification",
                    message=outcome.error or f"{outcome.coordinate} not available",
                    hint=outcome.url,
                )
            )
        if self.config.publish.registry == "jsr":
            op = self.ledger.track_operation(
                JsrPublish(
                    package_name=self.verifier.package,
                    version=plan.version,
                    package_url=outcome.url,
                ),
                f"Publish {outcome.coordinate}",
            )
            self.ledger.mark_completed(op)
        return Ok(None)

    def _fix_ci(self, run: _Run, workflow: WorkflowRun, attempt: int) -> Result[str, ReleaseError]:
        """Fix, commit and re-push; returns the sha CI should run on next."""
        plan = run.plan
        logs = self.ci.failed_logs(workflow.id)
        if isinstance(logs, Err):
            return logs
        parsed = parse_log(logs.value)
        self.console.info(parsed.summary)

        fixed = self.autofix.fix_errors(parsed.errors)
        if not fixed.success:
            return Err(
                ReleaseError(kind="ci", message=fixed.error or "errors remain after auto-fix")
            )

        head = _git_failure(self.repo.head_sha(), "cannot resolve HEAD")
        if isinstance(head, Err):
            return head
        sha = self._tracked(
            GitCommit(previous_commit=head.value),
            f"Commit CI fixes (attempt {attempt})",
            lambda: self._commit(run, f"fix: resolve CI failures for {plan.tag}"),
            lambda sha: {"commit_hash": sha},
        )
        if isinstance(sha, Err):
            return sha

        # The tag operation already covers deleting the tag locally and remotely.
        moved = _git_failure(
            self.repo.move_tag(plan.tag, f"Release {plan.version}"), "git tag -f failed"
        )
        if isinstance(moved, Err):
            return moved
        pushed = self._push_branch(run, sha.value)
        if isinstance(pushed, Err):
            return pushed
        pushed_tag = _git_failure(
            self.repo.push_tag(self.config.remote, plan.tag, force=True), "git push tag failed"
        )
        if isinstance(pushed_tag, Err):
            return pushed_tag
        run.commit_sha = sha.value
        return Ok(sha.value)

    # Step 10: outcome

    def _complete(self, run: _Run) -> ReleaseResult:
        plan = run.plan
        self.backups.cleanup_backup(run.backup.id)
        self._enter(ReleaseState.COMPLETE)
        self.audit.emit(
            "release_completed",
            version=plan.version,
            tag=plan.tag,
            commit=run.commit_sha,
            url=run.release_url,
        )
        self.console.success(f"released {plan.tag}")
        return ReleaseResult(
            success=True,
            state=ReleaseState.COMPLETE,
            version=plan.version,
            previous_version=plan.previous_version,
            commit_count=len(plan.commits),
            updated_files=tuple(run.written),
            github_release_url=run.release_url,
            attempts=run.attempts,
        )

    def _abort(self, error: ReleaseError, plan: ReleasePlan | None = None) -> ReleaseResult:
        """Failure before any mutation: nothing to roll back."""
        failed_at = self.state
        self._enter(ReleaseState.ERROR)
        self.console.error(error.message)
        if error.hint:
            self.console.print(f"  hint: {error.hint}", Style.DIM)
        self.audit.emit(
            "release_failed",
            severity="error",
            kind=error.kind,
            error=error.message,
            stage=str(failed_at),
        )
        return ReleaseResult(
            success=False,
            state=failed_at,
            version=plan.version if plan else None,
            previous_version=plan.previous_version if plan else None,
            commit_count=len(plan.commits) if plan else None,
            error=str(error),
            error_kind=error.kind,
            dry_run=self.config.dry_run,
        )

    def _rollback(self, run: _Run, error: ReleaseError) -> ReleaseResult:
        plan = run.plan
        failed_at = self.state
        self._enter(ReleaseState.ERROR)
        self.console.error(error.message)
        if error.hint:
            self.console.print(f"  hint: {error.hint}", Style.DIM)
        self.console.warning("rolling back release")

        report = self.ledger.perform_rollback()
        if report.success:
            self.audit.emit("rollback_completed", operations=len(report.rolled_back))
        else:
            self.audit.emit(
                "rollback_failed",
                severity="critical",
                status=report.status,
                failures=[
                    {"operation": f.operation.description, "stage": f.stage, "error": f.error}
                    for f in report.failed
                ],
            )
            self.console.critical(report.error or "rollback failed")

        if run.staged:
            unstaged = self.repo.unstage(run.staged)
            if isinstance(unstaged, Err):
                self.console.warning(f"could not reset the index: {unstaged.error.message}")

        restore = self.backups.restore_backup(run.backup.id)
        if restore.success:
            if report.success:
                self.backups.cleanup_backup(run.backup.id)
        else:
            self.audit.emit(
                "backup_restore_failed",
                severity="critical",
                backup_id=run.backup.id,
                files=[f.path for f in restore.failed],
            )
            self.console.critical(
                f"could not restore {len(restore.failed)} file(s) from backup {run.backup.id}"
            )

        leftovers = [p for p in run.staged if not _covered_by(p, run.backup)]
        if leftovers:
            self.console.warning(f"changed by formatting or fixes, left in place: {leftovers}")

        self.audit.emit(
            "release_failed",
            severity="error",
            kind=error.kind,
            error=error.message,
            stage=str(failed_at),
            rollback=report.status,
            restored=restore.success,
        )
        # `error` keeps the original cause.
        kind: ReleaseErrorKind = error.kind if not report.failed else "rollback_verification"
        return ReleaseResult(
            success=False,
            state=failed_at,
            version=plan.version,
            previous_version=plan.previous_version,
            commit_count=len(plan.commits),
            updated_files=tuple(run.written),
            github_release_url=run.release_url,
            error=str(error),
            error_kind=kind,
            failed_check=run.failed_check,
            rollback=report,
            restore=restore,
            attempts=run.attempts,
        )

    # Helpers

    def _changed_paths(self) -> list[str]:
        """Dirty paths, ignoring the audit log."""
        audit = self.config.audit_log
        paths: list[str] = []
        for path in self.repo.dirty_paths():
            path = path.strip().strip('"')
            if audit and (path == audit or audit.startswith(path.rstrip("/") + "/")):
                continue
            paths.append(path)
        return paths


def _covered_by(path: str, backup: Backup) -> bool:
    """True when restoring `backup` puts `path` back."""
    path = path.rstrip("/")
    if path in backup.paths:
        return True
    return any(path.startswith(d.rstrip("/") + "/") for d in backup.directories)
