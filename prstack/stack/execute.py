"""Materialize a plan as a chain of commits and branches."""

import logging
import uuid
from typing import Callable, Dict, List, Optional, Tuple

from ..config.models import PrstackConfig
from ..errors import GitOperationError
from ..git import (
    TempIndex, commit_tree, delete_ref, diff_trees, ref_exists, tree_of, update_ref,
)
from ..typing import GitInterface
from ..util import slugify
from .models import ExecResult, GroupCommit, Plan, PlannedGroup
from .plan import check_pinned

logger = logging.getLogger(__name__)

GROUP_TRAILER = "Stack-Group"

# (current, total, branch name)
ProgressCallback = Callable[[int, int, str], None]


def branch_name_for(prefix: str, pr_number: int, group: PlannedGroup) -> str:
    return f"{prefix}/pr-{pr_number}/{group.order + 1}-{slugify(group.name)}"


def source_branch_for(prefix: str, pr_number: int) -> str:
    return f"{prefix}/pr-{pr_number}/source"


def commit_message_for(group: PlannedGroup) -> str:
    subject = f"{group.type}({slugify(group.name)}): {group.description or group.name}".splitlines()[0]
    parts = [subject]
    if group.pr_title and group.pr_title != subject:
        parts.append(group.pr_title)
    parts.append(f"{GROUP_TRAILER}: {group.id}")
    return "\n\n".join(parts)


class StackExecutor:
    """Builds one commit per planned group, each on top of the previous one.

    All writes go through a private index and new refs; the caller's
    worktree, index and HEAD are never touched.
    """

    def __init__(self, config: PrstackConfig, git_cmd: GitInterface):
        self.config = config
        self.git_cmd = git_cmd

    def _author_env(self, head_sha: str, author: Optional[Tuple[str, str]]) -> Dict[str, str]:
        if author is None and self.config.user.author_name and self.config.user.author_email:
            author = (self.config.user.author_name, self.config.user.author_email)
        if author is None:
            out = self.git_cmd.must_git(f"log -1 --format=%an%n%ae {head_sha}")
            lines = out.splitlines()
            author = (lines[0], lines[1] if len(lines) > 1 else "")
        name, email = author
        return {
            "GIT_AUTHOR_NAME": name,
            "GIT_AUTHOR_EMAIL": email,
            "GIT_COMMITTER_NAME": name,
            "GIT_COMMITTER_EMAIL": email,
        }

    def execute(self, plan: Plan, pr_number: int, author: Optional[Tuple[str, str]] = None,
                source_ref: Optional[str] = None, run_id: Optional[str] = None,
                on_progress: Optional[ProgressCallback] = None) -> ExecResult:
        """Create the stack branches for plan.

        Raises PlanStaleError if the plan's commits moved and GitOperationError if
        any git write fails. Branches created before a failure are left in place.
        """
        check_pinned(self.git_cmd, plan.base_sha, plan.head_sha, source_ref)
        prefix = self.config.repo.branch_prefix
        result = ExecResult(
            run_id=run_id or f"prstack-{uuid.uuid4().hex[:12]}",
            source_copy_branch=source_branch_for(prefix, pr_number),
        )

        try:
            self._build(plan, pr_number, author, result, on_progress)
        except GitOperationError as e:
            e.partial_result = result
            raise
        return result

    def _build(self, plan: Plan, pr_number: int, author: Optional[Tuple[str, str]],
               result: ExecResult, on_progress: Optional[ProgressCallback]) -> None:
        prefix = self.config.repo.branch_prefix
        update_ref(self.git_cmd, f"refs/heads/{result.source_copy_branch}", plan.head_sha)
        env = self._author_env(plan.head_sha, author)

        # Per-path changes, independent of the planner's tree prediction
        changes = diff_trees(self.git_cmd, plan.base_sha, plan.head_sha, renames=False)
        by_path = {c.path: c for c in changes}

        parent = plan.base_sha
        with TempIndex(self.git_cmd) as index:
            index.read_tree(plan.base_sha)
            for group in plan.groups:
                removals: List[str] = []
                additions: List[Tuple[str, str, str]] = []
                for path in group.files:
                    change = by_path.get(path)
                    if change is None:
                        raise GitOperationError(f"{path} of group {group.id} is not part of the diff")
                    if change.status == "D":
                        removals.append(path)
                    else:
                        additions.append((change.new_mode, change.new_sha, path))
                if removals:
                    index.remove_paths(removals)
                if additions:
                    index.add_entries(additions)

                tree_sha = index.write_tree()
                commit_sha = commit_tree(self.git_cmd, tree_sha, parent, commit_message_for(group), env=env)
                branch = branch_name_for(prefix, pr_number, group)
                update_ref(self.git_cmd, f"refs/heads/{branch}", commit_sha)
                logger.info(f"Stack [{group.order + 1}/{len(plan.groups)}] {branch} -> {commit_sha[:12]}")

                result.group_commits.append(GroupCommit(
                    group_id=group.id,
                    commit_sha=commit_sha,
                    tree_sha=tree_sha,
                    branch_name=branch,
                    pr_title=group.pr_title,
                ))
                parent = commit_sha
                if on_progress:
                    on_progress(group.order + 1, len(plan.groups), branch)

        if result.group_commits:
            result.final_tree_sha = result.group_commits[-1].tree_sha
        else:
            result.final_tree_sha = tree_of(self.git_cmd, plan.base_sha)
        result.verified = result.final_tree_sha == tree_of(self.git_cmd, plan.head_sha)
        if not result.verified:
            logger.warning(f"Stack tree {result.final_tree_sha[:12]} differs from head tree")

    def remove_branches(self, exec_result: ExecResult) -> List[str]:
        """Delete the local stack branches of a run. Returns the refs removed."""
        removed = []
        branches = [c.branch_name for c in exec_result.group_commits] + [exec_result.source_copy_branch]
        for branch in branches:
            ref = f"refs/heads/{branch}"
            if ref_exists(self.git_cmd, ref):
                delete_ref(self.git_cmd, ref)
                removed.append(ref)
        return removed
