"""Common types used across the codebase."""

from typing import Any, Callable, Dict, NewType, Optional, Protocol

# Create NewTypes for git object identifiers
CommitSHA = NewType('CommitSHA', str)
TreeSHA = NewType('TreeSHA', str)
GroupID = NewType('GroupID', str)


class GitInterface(Protocol):
    """Protocol for what the stack engine expects from git."""

    def run_cmd(self, command: str, output: Optional[str] = None,
                env: Optional[Dict[str, str]] = None) -> str:
        """Run git command."""
        ...

    def must_git(self, command: str, output: Optional[str] = None,
                 env: Optional[Dict[str, str]] = None) -> str:
        """Run git command, failing on error."""
        ...


class LLMClient(Protocol):
    """Protocol for the one completion call arbitration needs."""

    def complete(self, system: str, user: str) -> str:
        """Return the raw text of the model's reply."""
        ...


EventCallback = Callable[[Dict[str, Any]], None]
