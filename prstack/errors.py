"""Exceptions raised by the stack pipeline."""

from typing import Any, List, Optional


class StackError(Exception):
    """Base class for every failure of a stacking run."""


class ParseError(StackError):
    """The arbitration response could not be parsed."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class PartitionError(StackError):
    """Ownership could not be resolved."""


class CycleError(StackError):
    """The group dependency graph has a cycle."""

    def __init__(self, group_cycle: List[str], edge_cycle: Optional[List[Any]] = None):
        self.group_cycle = group_cycle
        self.edge_cycle = edge_cycle or []
        super().__init__(f"Dependency cycle between groups: {' -> '.join(group_cycle)}")


class PlanStaleError(StackError):
    """The repository no longer matches the commits a plan was computed from."""


class GitOperationError(StackError):
    """A git command failed while materializing the stack."""

    def __init__(self, message: str, command: Optional[str] = None):
        super().__init__(message)
        self.command = command
        # Whatever the executor built before failing
        self.partial_result: Optional[Any] = None


class VerificationError(StackError):
    """The executed stack does not reproduce the original change."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class ScopeVerificationError(VerificationError):
    """A group commit's tree differs from the expected tree."""


class CompletenessVerificationError(VerificationError):
    """The final stack tree differs from the head tree."""


class PublishPartialFailure(StackError):
    """A branch push or PR creation failed for one stack item."""

    def __init__(self, group_id: str, stage: str, message: str):
        super().__init__(f"{stage} failed for {group_id}: {message}")
        self.group_id = group_id
        self.stage = stage


class CleanupPartialFailure(StackError):
    """Closing a PR or deleting a branch failed for one stack item."""


class RunLimitExceeded(StackError):
    """Too many stack runs are in progress."""


class RunCanceled(StackError):
    """The run was canceled."""


class RunNotFound(StackError):
    """No run record exists for the given id."""
