"""Registry publication checks.

After the release is pushed, CI publishes the package; PublishVerifier polls
the registry until the new version is visible. Polling uses a fixed delay
between attempts plus a wall-clock deadline. Whichever limit is hit first
ends the wait, and both are ordinary failures reported with the attempt
count.
"""

from __future__ import annotations

from dataclasses import dataclass
from time import monotonic, sleep
from typing import Literal
from urllib.parse import quote

from relkit.core.config import PublishConfig
from relkit.core.result import Err, Ok, Result
from relkit.output.console import ConsoleProtocol, Style
from relkit.platform.http import HttpClient, HttpError

ExhaustionReason = Literal["timeout", "max attempts reached"]


@dataclass(frozen=True, slots=True)
class PublishOutcome:
    success: bool
    attempts: int
    coordinate: str
    url: str
    error: str | None = None
    reason: ExhaustionReason | None = None


def _split_jsr(package: str) -> tuple[str, str] | None:
    # "@scope/name"
    if not package.startswith("@") or "/" not in package:
        return None
    scope, name = package[1:].split("/", 1)
    if not scope or not name:
        return None
    return scope, name


class PublishVerifier:
    def __init__(self, http: HttpClient, config: PublishConfig, console: ConsoleProtocol) -> None:
        self.http = http
        self.config = config
        self.console = console

    @property
    def package(self) -> str:
        return self.config.package or ""

    def coordinate(self, version: str) -> str:
        return f"{self.package}@{version}"

    def package_url(self, version: str) -> str:
        if self.config.registry == "jsr":
            return f"https://jsr.io/{self.package}@{version}"
        return f"https://pypi.org/project/{self.package}/{version}/"

    def api_url(self, version: str) -> str | None:
        if self.config.registry == "jsr":
            parts = _split_jsr(self.package)
            if parts is None:
                return None
            scope, name = parts
            return f"https://jsr.io/api/scopes/{scope}/packages/{name}/versions/{quote(version)}"
        return f"https://pypi.org/pypi/{quote(self.package)}/{quote(version)}/json"

    def probe(self, version: str) -> Result[bool, HttpError]:
        """One registry lookup: Ok(True) once the version is visible."""
        url = self.api_url(version)
        if url is None:
            message = "JSR packages look like @scope/name"
            return Err(HttpError(url=self.package, status=0, message=message))
        result = self.http.get_json(url)
        if isinstance(result, Err):
            if result.error.is_not_found:
                return Ok(False)
            return result
        return Ok(True)

    def verify(self, version: str) -> PublishOutcome:
        coordinate = self.coordinate(version)
        url = self.package_url(version)
        cfg = self.config
        deadline = monotonic() + cfg.timeout

        if cfg.grace_period > 0:
            wait = f"waiting {cfg.grace_period:.0f}s before polling {cfg.registry}"
            self.console.print(wait, Style.DIM)
            sleep(min(cfg.grace_period, cfg.timeout))

        attempts = 0
        reason: ExhaustionReason = "max attempts reached"
        while attempts < cfg.max_attempts:
            if monotonic() >= deadline:
                reason = "timeout"
                break
            attempts += 1
            found = self.probe(version)
            match found:
                case Ok(True):
                    self.console.success(f"{coordinate} is available: {url}")
                    return PublishOutcome(
                        success=True, attempts=attempts, coordinate=coordinate, url=url
                    )
                case Ok(_):
                    progress = f"  attempt {attempts}/{cfg.max_attempts}: not yet"
                    self.console.print(progress, Style.DIM)
                case Err(e):
                    self.console.warning(f"attempt {attempts}/{cfg.max_attempts}: {e}")

            if attempts >= cfg.max_attempts:
                break
            remaining = deadline - monotonic()
            if remaining <= 0:
                reason = "timeout"
                break
            sleep(min(cfg.poll_interval, remaining))

        return PublishOutcome(
            success=False,
            attempts=attempts,
            coordinate=coordinate,
            url=url,
            error=(
                f"{coordinate} not available on {cfg.registry} "
                f"after {attempts} attempt(s): {reason}"
            ),
            reason=reason,
        )
