from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from time import monotonic, sleep

from relkit.core.config import MonitoringConfig
from relkit.core.result import Err, Ok, Result
from relkit.core.structured import as_obj_list, as_str_dict, get_int, get_str
from relkit.output.console import ConsoleProtocol, Style
from relkit.platform.process import run as run_process
from relkit.release.errors import ReleaseError
from relkit.release.timeouts import (
    CI_RUN_LOOKUP_ATTEMPTS,
    CI_RUN_LOOKUP_DELAY_SECONDS,
    GH_TIMEOUT_SECONDS,
)

_RUN_FIELDS = "databaseId,status,conclusion,url,headSha"


@dataclass(frozen=True, slots=True)
class WorkflowRun:
    id: int
    status: str
    conclusion: str | None
    url: str
    head_sha: str

    @property
    def is_complete(self) -> bool:
        return self.status == "completed"

    @property
    def succeeded(self) -> bool:
        return self.is_complete and self.conclusion == "success"


def _parse_run(obj: object) -> WorkflowRun | None:
    d = as_str_dict(obj)
    if d is None:
        return None
    run_id = get_int(d, "databaseId")
    status = get_str(d, "status")
    url = get_str(d, "url")
    sha = get_str(d, "headSha")
    if run_id is None or status is None or url is None or sha is None:
        return None
    conclusion = get_str(d, "conclusion") or None
    return WorkflowRun(id=run_id, status=status, conclusion=conclusion, url=url, head_sha=sha)


class CIMonitor:
    """Follows the workflow run triggered by a pushed commit."""

    def __init__(self, root: Path, config: MonitoringConfig, console: ConsoleProtocol) -> None:
        self.root = root
        self.config = config
        self.console = console

    @property
    def workflow(self) -> str:
        return Path(self.config.workflow_file).name

    def find_run(self, sha: str) -> Result[WorkflowRun | None, ReleaseError]:
        cmd = [
            "gh",
            "run",
            "list",
            "--workflow",
            self.workflow,
            "--commit",
            sha,
            "--limit",
            "1",
            "--json",
            _RUN_FIELDS,
        ]
        result = run_process(cmd, cwd=self.root, timeout=GH_TIMEOUT_SECONDS)
        if isinstance(result, Err):
            e = result.error
            return Err(
                ReleaseError(
                    kind="ci",
                    message=f"failed to query workflow runs for {sha[:8]}",
                    hint=e.stderr.strip() or None,
                )
            )

        try:
            obj: object = json.loads(result.value)
        except json.JSONDecodeError as e:
            return Err(ReleaseError(kind="ci", message=f"invalid JSON from gh run list: {e}"))

        raw = as_obj_list(obj)
        if raw is None:
            return Err(ReleaseError(kind="ci", message="unexpected gh run list payload"))
        for item in raw:
            run = _parse_run(item)
            if run is not None:
                return Ok(run)
        return Ok(None)

    def wait_for_run(self, sha: str) -> Result[WorkflowRun, ReleaseError]:
        """Wait for the push of `sha` to show up as a workflow run."""
        for attempt in range(CI_RUN_LOOKUP_ATTEMPTS):
            found = self.find_run(sha)
            if isinstance(found, Err):
                return found
            if found.value is not None:
                self.console.print(f"workflow run: {found.value.url}", Style.DIM)
                return Ok(found.value)
            if attempt < CI_RUN_LOOKUP_ATTEMPTS - 1:
                sleep(CI_RUN_LOOKUP_DELAY_SECONDS)

        return Err(
            ReleaseError(
                kind="ci",
                message=f"no {self.workflow} run found for {sha[:8]}",
                hint="check that the workflow triggers on push",
            )
        )

    def get_run(self, run_id: int) -> Result[WorkflowRun, ReleaseError]:
        cmd = ["gh", "run", "view", str(run_id), "--json", _RUN_FIELDS]
        result = run_process(cmd, cwd=self.root, timeout=GH_TIMEOUT_SECONDS)
        if isinstance(result, Err):
            e = result.error
            return Err(
                ReleaseError(
                    kind="ci",
                    message=f"failed to query workflow run {run_id}",
                    hint=e.stderr.strip() or None,
                )
            )
        try:
            obj: object = json.loads(result.value)
        except json.JSONDecodeError as e:
            return Err(ReleaseError(kind="ci", message=f"invalid JSON from gh run view: {e}"))
        run = _parse_run(obj)
        if run is None:
            return Err(ReleaseError(kind="ci", message=f"unexpected payload for run {run_id}"))
        return Ok(run)

    def wait_for_completion(self, run: WorkflowRun) -> Result[WorkflowRun, ReleaseError]:
        """Poll until the run completes or the wall-clock timeout passes."""
        deadline = monotonic() + self.config.timeout
        current = run
        while not current.is_complete:
            remaining = deadline - monotonic()
            if remaining <= 0:
                return Err(
                    ReleaseError(
                        kind="ci",
                        message=(
                            f"workflow run {run.id} did not finish "
                            f"in {self.config.timeout:.0f}s"
                        ),
                        hint=run.url,
                    )
                )
            sleep(min(self.config.poll_interval, remaining))
            if monotonic() >= deadline:
                continue
            refreshed = self.get_run(run.id)
            if isinstance(refreshed, Err):
                return refreshed
            current = refreshed.value
            self.console.print(f"  {current.status} ({current.conclusion or '-'})", Style.DIM)
        return Ok(current)

    def failed_logs(self, run_id: int) -> Result[str, ReleaseError]:
        cmd = ["gh", "run", "view", str(run_id), "--log-failed"]
        result = run_process(cmd, cwd=self.root, timeout=GH_TIMEOUT_SECONDS)
        if isinstance(result, Err):
            e = result.error
            return Err(
                ReleaseError(
                    kind="ci",
                    message=f"failed to fetch logs for run {run_id}",
                    hint=e.stderr.strip() or None,
                )
            )
        return Ok(result.value)
