"""Exit codes for the relkit CLI.

The numeric values are process exit codes and must stay stable:
- 0: Release completed (or dry run finished)
- 1: User error (bad arguments, cancelled confirmation)
- 2: Environment error (not a repository, missing tools, bad config)
- 3: Release failed and was fully rolled back
- 4: Release failed and rollback or restore needs manual intervention
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    RELEASE_FAILED = 3
    MANUAL_INTERVENTION = 4

    def __str__(self) -> str:
        """Return human-readable name."""
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK
