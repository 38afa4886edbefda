from __future__ import annotations

import json
import shutil
from dataclasses import dataclass
from pathlib import Path
from time import sleep

from relkit.core.result import Err, Ok, Result
from relkit.core.structured import as_str_dict, get_int, get_str
from relkit.platform.process import ProcessError
from relkit.platform.process import run as run_process
from relkit.release.errors import ReleaseError, ReleaseErrorKind
from relkit.release.timeouts import (
    GH_READ_RETRY_ATTEMPTS,
    GH_READ_RETRY_DELAY_SECONDS,
    GH_TIMEOUT_SECONDS,
)

# `gh api` fills these from the current repository's remote.
_CURRENT_REPO = "{owner}/{repo}"


def _is_transient_gh_error(error: ProcessError) -> bool:
    text = f"{error.stderr}\n{error.stdout}".lower()
    markers = (
        "timed out",
        "timeout",
        "connection reset",
        "connection refused",
        "temporarily unavailable",
        "service unavailable",
        "bad gateway",
        "gateway timeout",
        "tls handshake timeout",
        "network is unreachable",
        "http 429",
        "http 500",
        "http 502",
        "http 503",
        "http 504",
    )
    if error.returncode == -1 and "timed out" in text:
        return True
    return any(marker in text for marker in markers)


def _is_not_found(error: ProcessError) -> bool:
    text = f"{error.stderr}\n{error.stdout}".lower()
    return "not found" in text or "http 404" in text


def run_gh_read(
    *,
    root: Path,
    cmd: list[str],
    kind: ReleaseErrorKind,
    message: str,
    hint: str | None = None,
    timeout: float = GH_TIMEOUT_SECONDS,
    retry_attempts: int = GH_READ_RETRY_ATTEMPTS,
) -> Result[str, ProcessError | ReleaseError]:
    """Run an idempotent gh command, retrying transient failures.

    A non-transient failure is returned as the raw ProcessError so callers
    can tell "not found" apart from other errors.
    """
    attempts = max(1, retry_attempts)
    for attempt in range(attempts):
        result = run_process(cmd, cwd=root, timeout=timeout)
        if isinstance(result, Ok):
            return result

        error = result.error
        if attempt < attempts - 1 and _is_transient_gh_error(error):
            sleep(GH_READ_RETRY_DELAY_SECONDS * (attempt + 1))
            continue
        if _is_transient_gh_error(error):
            return Err(ReleaseError(kind=kind, message=message, hint=error.stderr.strip() or hint))
        return Err(error)

    return Err(ReleaseError(kind=kind, message=message, hint=hint))


@dataclass(frozen=True, slots=True)
class ReleaseInfo:
    id: int
    tag: str
    url: str


def _parse_release(payload: str) -> ReleaseInfo | None:
    try:
        obj: object = json.loads(payload)
    except json.JSONDecodeError:
        return None
    data = as_str_dict(obj)
    if data is None:
        return None
    release_id = get_int(data, "id")
    tag = get_str(data, "tag_name")
    url = get_str(data, "html_url")
    if release_id is None or tag is None or url is None:
        return None
    return ReleaseInfo(id=release_id, tag=tag, url=url)


class GitHubClient:
    """GitHub releases through the gh CLI.

    `repository` is "owner/name"; None lets gh resolve it from the remote.
    """

    def __init__(self, root: Path, repository: str | None = None) -> None:
        self.root = root
        self.repository = repository

    @property
    def _repo(self) -> str:
        return self.repository or _CURRENT_REPO

    def ensure_available(self) -> Result[None, ReleaseError]:
        if shutil.which("gh") is None:
            return Err(
                ReleaseError(
                    kind="precondition",
                    message="gh: missing",
                    hint="Install GitHub CLI: https://cli.github.com/",
                )
            )
        result = run_process(["gh", "auth", "status"], cwd=self.root, timeout=GH_TIMEOUT_SECONDS)
        if isinstance(result, Err):
            return Err(
                ReleaseError(
                    kind="precondition",
                    message="gh auth required",
                    hint="Run: gh auth login",
                )
            )
        return Ok(None)

    def get_release(
        self,
        *,
        release_id: int | None,
        tag: str,
    ) -> Result[ReleaseInfo | None, ReleaseError]:
        """Look a release up by id (else tag); Ok(None) when it does not exist."""
        endpoint = (
            f"repos/{self._repo}/releases/{release_id}"
            if release_id is not None
            else f"repos/{self._repo}/releases/tags/{tag}"
        )
        result = run_gh_read(
            root=self.root,
            cmd=["gh", "api", endpoint],
            kind="github",
            message=f"failed to query release {tag}",
            hint=endpoint,
        )
        match result:
            case Ok(payload):
                info = _parse_release(payload)
                if info is None:
                    return Err(
                        ReleaseError(
                            kind="github", message="unexpected release payload", hint=endpoint
                        )
                    )
                return Ok(info)
            case Err(ReleaseError() as e):
                return Err(e)
            case Err(ProcessError() as e):
                if _is_not_found(e):
                    return Ok(None)
                return Err(
                    ReleaseError(
                        kind="github",
                        message=f"failed to query release {tag}",
                        hint=e.stderr.strip() or endpoint,
                    )
                )
            case _:
                raise AssertionError("unreachable")

    def release_exists(self, *, release_id: int | None, tag: str) -> Result[bool, ReleaseError]:
        found = self.get_release(release_id=release_id, tag=tag)
        if isinstance(found, Err):
            return found
        return Ok(found.value is not None)

    def create_release(
        self, *, tag: str, title: str, notes: str
    ) -> Result[ReleaseInfo, ReleaseError]:
        """Publish a non-draft release for an already pushed tag."""
        cmd = [
            "gh",
            "release",
            "create",
            tag,
            "--title",
            title,
            "--notes-file",
            "-",
            "--draft=false",
        ]
        if self.repository is not None:
            cmd.extend(["--repo", self.repository])

        # Not idempotent: never retried.
        created = run_process(cmd, cwd=self.root, timeout=GH_TIMEOUT_SECONDS, input_text=notes)
        if isinstance(created, Err):
            e = created.error
            return Err(
                ReleaseError(
                    kind="github",
                    message=f"failed to create GitHub release {tag}",
                    hint=e.stderr.strip() or None,
                )
            )

        found = self.get_release(release_id=None, tag=tag)
        if isinstance(found, Err):
            return found
        if found.value is None:
            message = f"release {tag} not visible after creation"
            return Err(ReleaseError(kind="github", message=message))
        return Ok(found.value)

    def delete_release(self, *, release_id: int | None, tag: str) -> Result[None, ReleaseError]:
        """Delete by id, falling back to delete by tag. Absent releases are Ok."""
        if release_id is not None:
            endpoint = f"repos/{self._repo}/releases/{release_id}"
            by_id = run_process(
                ["gh", "api", endpoint, "-X", "DELETE"], cwd=self.root, timeout=GH_TIMEOUT_SECONDS
            )
            if isinstance(by_id, Ok) or _is_not_found(by_id.error):
                return Ok(None)

        cmd = ["gh", "release", "delete", tag, "--yes"]
        if self.repository is not None:
            cmd.extend(["--repo", self.repository])
        by_tag = run_process(cmd, cwd=self.root, timeout=GH_TIMEOUT_SECONDS)
        if isinstance(by_tag, Ok) or _is_not_found(by_tag.error):
            return Ok(None)
        return Err(
            ReleaseError(
                kind="github",
                message=f"failed to delete GitHub release {tag}",
                hint=by_tag.error.stderr.strip() or None,
            )
        )
