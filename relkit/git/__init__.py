"""Git access for the release pipeline."""

from .repository import Commit, GitError, Repository

__all__ = ["Commit", "GitError", "Repository"]
