"""Check that an executed stack reproduces the original change exactly."""

import logging
from typing import Dict, List, Mapping, Optional, Set

from ..errors import GitOperationError
from ..git import diff_trees, tree_of
from ..typing import GitInterface
from .models import ExecResult, Plan, StructuredWarning, VerifyResult

logger = logging.getLogger(__name__)


def verify_stack(git_cmd: GitInterface, plan: Plan, exec_result: ExecResult,
                 ownership: Optional[Mapping[str, str]] = None) -> VerifyResult:
    """Compare the executed stack against the plan and the head commit.

    Each group commit must have the predicted tree, and the last commit must
    have head's tree. Any mismatch makes the result unverified.
    """
    errors: List[str] = []
    warnings: List[str] = []
    structured: List[StructuredWarning] = []

    def scope(title: str, message: str, is_error: bool = True, details: Optional[List[str]] = None) -> None:
        (errors if is_error else warnings).append(message)
        structured.append(StructuredWarning(
            category="verification.scope", severity="warn", title=title, message=message, details=details))

    def completeness(title: str, message: str, is_error: bool = True, details: Optional[List[str]] = None) -> None:
        (errors if is_error else warnings).append(message)
        structured.append(StructuredWarning(
            category="verification.completeness", severity="warn", title=title, message=message, details=details))

    commits = exec_result.group_commits
    if len(commits) != len(plan.groups):
        scope("Commit count mismatch",
              f"Expected {len(plan.groups)} group commits, found {len(commits)}")

    names = {g.id: g.name for g in plan.groups}
    touched: Set[str] = set()
    parent = plan.base_sha
    for group, commit in zip(plan.groups, commits):
        label = f'"{group.name}" ({group.id})'
        if commit.group_id != group.id:
            scope(f"Group order mismatch at {group.order + 1}",
                  f"Position {group.order + 1} should hold {label} but holds {commit.group_id}")

        expected = plan.expected_trees.get(group.id)
        if expected is None:
            scope(f"No expected tree for {group.name}", f"Plan has no expected tree for group {label}")
        elif commit.tree_sha != expected:
            scope(f"Tree mismatch in {group.name}",
                  f"Group {label} produced tree {commit.tree_sha[:12]}, expected {expected[:12]}")

        try:
            actual = tree_of(git_cmd, commit.commit_sha)
        except GitOperationError:
            scope(f"Missing commit for {group.name}", f"Commit {commit.commit_sha[:12]} of group {label} does not exist")
            parent = commit.commit_sha
            continue
        if actual != commit.tree_sha:
            scope(f"Recorded tree is wrong for {group.name}",
                  f"Commit {commit.commit_sha[:12]} of group {label} has tree {actual[:12]}, "
                  f"recorded {commit.tree_sha[:12]}")

        try:
            changed = {c.path for c in diff_trees(git_cmd, parent, commit.commit_sha, renames=False)}
        except GitOperationError as e:
            scope(f"Cannot diff {group.name}", f"Diff of group {label} failed: {e}")
            changed = set()
        touched |= changed
        if ownership is not None:
            foreign = sorted(p for p in changed if ownership.get(p) != group.id)
            if foreign:
                owners: Dict[str, str] = {p: names.get(ownership.get(p, ""), "unowned") for p in foreign}
                scope(f"{group.name} touches files of other groups",
                      f"Group {label} changes {len(foreign)} file(s) owned elsewhere",
                      is_error=False, details=[f"{p} ({owners[p]})" for p in foreign])
        parent = commit.commit_sha

    head_tree = tree_of(git_cmd, plan.head_sha)
    if exec_result.final_tree_sha != head_tree:
        completeness("Stack does not match head",
                     f"Final stack tree {exec_result.final_tree_sha[:12]} differs from head tree {head_tree[:12]}")

    original = {c.path for c in diff_trees(git_cmd, plan.base_sha, plan.head_sha, renames=False)}
    missing = sorted(original - touched)
    extra = sorted(touched - original)
    if missing:
        completeness("Files missing from stack", f"{len(missing)} changed file(s) are not in any group commit",
                     is_error=False, details=missing)
    if extra:
        completeness("Unexpected files in stack", f"{len(extra)} file(s) changed by the stack are not in the PR",
                     is_error=False, details=extra)

    verified = not errors
    logger.info(f"Verification {'passed' if verified else 'failed'}: {len(errors)} errors, {len(warnings)} warnings")
    return VerifyResult(verified=verified, errors=errors, warnings=warnings, structured_warnings=structured)
