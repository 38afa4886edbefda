"""Console output and the audit event stream."""

from .audit import AuditEvent, AuditLog
from .console import ConsoleProtocol, MockConsole, RichConsole, Style

__all__ = [
    "AuditEvent",
    "AuditLog",
    "ConsoleProtocol",
    "MockConsole",
    "RichConsole",
    "Style",
]
