"""Structured audit events for external log aggregation.

Each pipeline run emits a fixed vocabulary of events (release_started,
files_updated, git_operations_completed, release_completed/release_failed,
rollback_completed/rollback_failed, backup_restore_failed). Events are kept
in memory and, when a path is configured, appended to a JSON-lines file.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

__all__ = ["AuditEvent", "AuditEventName", "AuditLog", "Severity"]

AuditEventName = Literal[
    "release_started",
    "files_updated",
    "git_operations_completed",
    "release_completed",
    "release_failed",
    "rollback_completed",
    "rollback_failed",
    "backup_restore_failed",
]

Severity = Literal["info", "error", "critical"]


@dataclass(frozen=True, slots=True)
class AuditEvent:
    name: AuditEventName
    release_id: str
    severity: Severity
    timestamp: str
    data: dict[str, object]

    def to_json(self) -> str:
        return json.dumps(
            {
                "event": self.name,
                "release_id": self.release_id,
                "severity": self.severity,
                "timestamp": self.timestamp,
                **self.data,
            },
            sort_keys=True,
            default=str,
        )


def _empty_events() -> list[AuditEvent]:
    return []


@dataclass
class AuditLog:
    """Append-only audit stream for one release run.

    Attributes:
        release_id: Identifier stamped on every event.
        path: Optional JSON-lines sink; None keeps events in memory only.
    """

    release_id: str
    path: Path | None = None
    events: list[AuditEvent] = field(default_factory=_empty_events)
    sink_error: str | None = None

    def emit(
        self,
        name: AuditEventName,
        *,
        severity: Severity = "info",
        **data: object,
    ) -> AuditEvent:
        event = AuditEvent(
            name=name,
            release_id=self.release_id,
            severity=severity,
            timestamp=datetime.now(UTC).isoformat(),
            data=dict(data),
        )
        self.events.append(event)
        self._write(event)
        return event

    def attach(self, path: Path) -> None:
        """Start writing to `path`, first flushing the events emitted so far."""
        self.path = path
        for event in self.events:
            self._write(event)

    def _write(self, event: AuditEvent) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(event.to_json() + "\n")
        except OSError as e:
            # The in-memory stream stays authoritative; the caller can inspect sink_error.
            self.sink_error = str(e)

    def names(self) -> list[str]:
        return [e.name for e in self.events]

    def find(self, name: AuditEventName) -> list[AuditEvent]:
        return [e for e in self.events if e.name == name]
