"""Push stack branches and open them as a chain of draft pull requests."""

import concurrent.futures
import logging
import re
from concurrent.futures import Future
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from ..config.models import PrstackConfig
from ..errors import (
    CleanupPartialFailure, GitOperationError, PublishPartialFailure, StackError, VerificationError,
)
from ..git import delete_remote_branch, list_tree, push_branch, show_file
from ..github import GitHubClient
from ..typing import GitInterface
from .models import (
    CleanupItem, CleanupMode, CleanupResult, ExecResult, Plan, PlannedGroup, PreviewItem,
    PRMeta, PublishedBranch, PublishedPR, PublishFailure, PublishPreview, PublishResult,
    VerifyResult,
)

logger = logging.getLogger(__name__)

PR_TEMPLATE_PATHS = [
    ".github/PULL_REQUEST_TEMPLATE.md",
    ".github/pull_request_template.md",
    ".github/PULL_REQUEST_TEMPLATE",
    "PULL_REQUEST_TEMPLATE.md",
    "PULL_REQUEST_TEMPLATE",
    "docs/PULL_REQUEST_TEMPLATE.md",
    "docs/pull_request_template.md",
]
TITLE_POSITION_RE = re.compile(r'^\[\d+/\d+\]\s*')


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def find_pr_template(git_cmd: GitInterface, ref: str) -> Tuple[Optional[str], Optional[str]]:
    """Return (path, contents) of the repository's PR template at ref."""
    entries = list_tree(git_cmd, ref)
    for path in PR_TEMPLATE_PATHS:
        entry = entries.get(path)
        if entry is not None and entry.type == "blob":
            return path, show_file(git_cmd, ref, path)
    return None, None


def stack_title(group: PlannedGroup, index: int, total: int) -> str:
    """Title of the PR at a 0-based stack position."""
    return f"[{index + 1}/{total}] {group.pr_title or group.name}"


def render_body(plan: Plan, index: int, pr_meta: PRMeta, template: Optional[str],
                prs: Optional[List[PublishedPR]] = None) -> str:
    """Markdown body for one stacked PR.

    Without prs only the stack position is shown; with them a navigation table is included.
    """
    group = plan.groups[index]
    total = len(plan.groups)
    names = {g.id: g.name for g in plan.groups}
    source = f"#{pr_meta.number} {pr_meta.title}".strip()

    lines = [
        f"> **Stack {index + 1}/{total}** of a stacked PR chain split from {source}.",
        "",
    ]
    if prs:
        lines += [
            "### Stack",
            "",
            "| | Order | PR | Title |",
            "|---|---|---|---|",
        ]
        for i, pr in enumerate(prs):
            marker = "->" if pr.group_id == group.id else ""
            lines.append(f"| {marker} | {i + 1}/{total} | [#{pr.number}]({pr.url}) | "
                         f"{TITLE_POSITION_RE.sub('', pr.title)} |")
        lines.append("")

    lines += [f"## {group.name}", ""]
    if group.description:
        lines += [group.description, ""]
    deps = [names.get(d, d) for d in group.deps]
    lines.append(f"**Depends on:** {', '.join(deps) if deps else 'nothing (base of the stack)'}")
    stats = group.stats
    lines.append(f"**Changes:** {len(group.files)} files, +{stats.additions} -{stats.deletions}")
    lines += ["", "<details><summary>Files</summary>", ""]
    lines += [f"- `{path}`" for path in group.files]
    lines += ["", "</details>", ""]

    origin = f"[#{pr_meta.number}]({pr_meta.url})" if pr_meta.url else f"#{pr_meta.number}"
    lines.append(f"*From PR {origin}: {pr_meta.title}*")
    if template:
        lines += ["", "---", "", template.strip()]
    return "\n".join(lines)


class StackPublisher:
    """Publishes an executed stack and rolls it back."""

    def __init__(self, config: PrstackConfig, git_cmd: GitInterface, github: Optional[GitHubClient]):
        self.config = config
        self.git_cmd = git_cmd
        self.github = github

    def _base_branches(self, plan: Plan, exec_result: ExecResult, pr_meta: PRMeta) -> List[str]:
        commits = exec_result.group_commits
        return [pr_meta.base_branch] + [c.branch_name for c in commits[:len(plan.groups) - 1]]

    def preview(self, plan: Plan, exec_result: ExecResult, pr_meta: PRMeta) -> PublishPreview:
        """Render every PR's title and body without touching the remote."""
        template_path, template = find_pr_template(self.git_cmd, plan.head_sha)
        bases = self._base_branches(plan, exec_result, pr_meta)
        names = {g.id: g.name for g in plan.groups}
        total = len(plan.groups)
        items = []
        for i, (group, commit) in enumerate(zip(plan.groups, exec_result.group_commits)):
            items.append(PreviewItem(
                group_id=group.id,
                order=i + 1,
                total=total,
                title=stack_title(group, i, total),
                body=render_body(plan, i, pr_meta, template),
                base_branch=bases[i],
                head_branch=commit.branch_name,
                dependency_names=[names.get(d, d) for d in group.deps],
            ))
        return PublishPreview(template_path=template_path, items=items, generated_at=now_iso())

    def _push_all(self, branches: List[Tuple[str, str]]) -> List[PublishedBranch]:
        remote = self.config.repo.github_remote
        results: Dict[str, PublishedBranch] = {}
        workers = max(1, self.config.tool.concurrency)
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures: Dict[Future[None], Tuple[str, str]] = {
                executor.submit(push_branch, self.git_cmd, remote, name): (group_id, name)
                for group_id, name in branches
            }
            for future in concurrent.futures.as_completed(futures):
                group_id, name = futures[future]
                try:
                    future.result()
                    results[name] = PublishedBranch(name=name, pushed=True, group_id=group_id)
                except GitOperationError as e:
                    logger.error(f"Push failed for {name}: {e}")
                    results[name] = PublishedBranch(name=name, pushed=False, error=str(e), group_id=group_id)
        return [results[name] for _, name in branches]

    def publish(self, plan: Plan, exec_result: ExecResult, verify_result: Optional[VerifyResult],
                pr_meta: PRMeta, force: bool = False) -> PublishResult:
        """Push every branch and open one draft PR per group, each based on the previous branch.

        Failures are recorded per branch and per PR; one failure does not stop the rest.
        """
        if not force and (verify_result is None or not verify_result.verified):
            errors = verify_result.errors if verify_result else ["stack was not verified"]
            raise VerificationError("Refusing to publish an unverified stack", errors)
        if self.github is None:
            raise PublishPartialFailure("*", "create", "No GitHub client configured")

        commits = exec_result.group_commits
        result = PublishResult()
        result.branches = self._push_all([(c.group_id, c.branch_name) for c in commits])
        pushed = {b.name for b in result.branches if b.pushed}
        for b in result.branches:
            if not b.pushed:
                result.failures.append(PublishFailure(
                    group_id=b.group_id or b.name, stage="push", message=b.error or "push failed"))

        _, template = find_pr_template(self.git_cmd, plan.head_sha)
        bases = self._base_branches(plan, exec_result, pr_meta)
        total = len(plan.groups)
        for i, (group, commit) in enumerate(zip(plan.groups, commits)):
            title = stack_title(group, i, total)
            try:
                if commit.branch_name not in pushed:
                    raise PublishPartialFailure(group.id, "create", f"branch {commit.branch_name} was not pushed")
                if i > 0 and bases[i] not in pushed:
                    raise PublishPartialFailure(group.id, "create", f"base branch {bases[i]} was not pushed")
                if self.config.tool.pretend:
                    logger.info(f"> github create {commit.branch_name} -> {bases[i]} : {title} (pretend)")
                    continue
                pr = self.github.create_pull_request(
                    title=title,
                    body=render_body(plan, i, pr_meta, template),
                    head=commit.branch_name,
                    base=bases[i],
                    draft=True,
                )
                result.prs.append(PublishedPR(
                    group_id=group.id,
                    number=pr.number,
                    url=pr.html_url,
                    title=title,
                    base_branch=bases[i],
                    head_branch=commit.branch_name,
                ))
            except StackError as e:
                logger.error(f"PR creation failed for {group.id}: {e}")
                result.failures.append(PublishFailure(group_id=group.id, stage="create", message=str(e)))

        index_of = {g.id: i for i, g in enumerate(plan.groups)}
        for pr in result.prs:
            try:
                body = render_body(plan, index_of[pr.group_id], pr_meta, template, result.prs)
                self.github.update_pull_request_body(pr.number, body)
            except StackError as e:
                logger.error(f"Body update failed for #{pr.number}: {e}")
                result.failures.append(PublishFailure(group_id=pr.group_id, stage="update", message=str(e)))

        result.published_at = now_iso()
        logger.info(f"Published {len(result.prs)}/{total} PRs with {len(result.failures)} failures")
        return result

    def cleanup(self, publish_result: PublishResult, mode: CleanupMode) -> CleanupResult:
        """Close published PRs and, in delete mode, delete their remote branches.

        A branch is only deleted once its PR is confirmed closed, or if it never had one.
        """
        remote = self.config.repo.github_remote
        pushed = {b.name for b in publish_result.branches if b.pushed}
        pr_by_branch = {pr.head_branch: pr for pr in publish_result.prs}

        heads: List[Tuple[str, str]] = [(pr.group_id, pr.head_branch) for pr in publish_result.prs]
        heads += [(b.group_id or b.name, b.name) for b in publish_result.branches
                  if b.pushed and b.name not in pr_by_branch]

        result = CleanupResult(mode=mode, completed_at="")
        for group_id, branch in heads:
            pr = pr_by_branch.get(branch)
            item = CleanupItem(group_id=group_id, number=pr.number if pr else None, head_branch=branch)
            messages: List[str] = []

            if pr is not None:
                try:
                    item.closed = self._close(pr.number)
                    if not item.closed:
                        messages.append(f"#{pr.number} is not reported closed")
                except StackError as e:
                    failure = CleanupPartialFailure(f"closing #{pr.number} failed: {e}")
                    logger.warning(f"{failure}")
                    messages.append(str(failure))

            if mode == "delete" and branch in pushed:
                if pr is None or item.closed:
                    try:
                        delete_remote_branch(self.git_cmd, remote, branch)
                        item.branch_deleted = True
                    except GitOperationError as e:
                        failure = CleanupPartialFailure(f"deleting {branch} failed: {e}")
                        logger.warning(f"{failure}")
                        messages.append(str(failure))
                else:
                    messages.append(f"{branch} kept because its PR is still open")

            item.message = "; ".join(messages) or None
            result.items.append(item)

        result.completed_at = now_iso()
        return result

    def _close(self, number: int) -> bool:
        if self.github is None:
            raise CleanupPartialFailure("No GitHub client configured")
        return self.github.close_pull_request(number)
