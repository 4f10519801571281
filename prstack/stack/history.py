"""Per-commit changes between base and head, oldest first."""

import logging
import shlex
from dataclasses import dataclass, field
from typing import List

from ..git import diff_trees
from ..typing import GitInterface

logger = logging.getLogger(__name__)


@dataclass
class CommitDelta:
    sha: str
    parent_sha: str
    subject: str
    paths: List[str] = field(default_factory=list)


def commit_list(git_cmd: GitInterface, base_sha: str, head_sha: str) -> List[str]:
    """First-parent commits in base..head, oldest first."""
    out = git_cmd.must_git(
        f"rev-list --first-parent --reverse {shlex.quote(base_sha)}..{shlex.quote(head_sha)}")
    return [line.strip() for line in out.splitlines() if line.strip()]


def extract_commit_deltas(git_cmd: GitInterface, base_sha: str, head_sha: str) -> List[CommitDelta]:
    """Paths each commit changed relative to its first parent.

    Merge commits are diffed against the previous first-parent commit, so the
    deltas always compose to base..head.
    """
    deltas: List[CommitDelta] = []
    parent = base_sha
    for sha in commit_list(git_cmd, base_sha, head_sha):
        subject = git_cmd.must_git(f"show -s --format=%s {shlex.quote(sha)}").strip()
        paths: List[str] = []
        for change in diff_trees(git_cmd, parent, sha):
            paths.extend(change.paths)
        deltas.append(CommitDelta(sha=sha, parent_sha=parent, subject=subject,
                                  paths=list(dict.fromkeys(paths))))
        parent = sha
    logger.debug(f"Extracted {len(deltas)} commit deltas for {base_sha[:8]}..{head_sha[:8]}")
    return deltas
