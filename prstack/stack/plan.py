"""Turn a feasible group order into a concrete stack plan."""

import logging
from typing import Dict, List, Mapping, Optional, Sequence, Set

from ..errors import CycleError, GitOperationError, PlanStaleError
from ..git import (
    FileChange, diff_trees, list_tree, numstat, object_format, resolve_commit, tree_of,
)
from ..typing import GitInterface
from .models import (
    FeasibilityResult, Group, GroupStats, Plan, PlannedGroup, StructuredWarning,
)
from .trees import apply_paths, tree_hash

logger = logging.getLogger(__name__)

# Statuses whose old side must exist in the base tree
OLD_SIDE_STATUSES = {"M", "D", "T", "R"}


def check_pinned(git_cmd: GitInterface, base_sha: str, head_sha: str,
                 source_ref: Optional[str] = None) -> None:
    """Raise PlanStaleError unless both commits exist and source_ref still points at head."""
    for label, sha in (("base", base_sha), ("head", head_sha)):
        try:
            resolved = resolve_commit(git_cmd, sha)
        except GitOperationError as e:
            raise PlanStaleError(f"{label} commit {sha} no longer resolves") from e
        if not resolved.startswith(sha):
            raise PlanStaleError(f"{label} commit {sha} resolves to {resolved}")
    if source_ref:
        try:
            current = resolve_commit(git_cmd, source_ref)
        except GitOperationError as e:
            raise PlanStaleError(f"{source_ref} no longer exists") from e
        if not current.startswith(head_sha):
            raise PlanStaleError(f"{source_ref} moved from {head_sha[:12]} to {current[:12]}; re-plan required")


def group_stats(changes: Sequence[FileChange], owned: Set[str],
                line_counts: Mapping[str, tuple]) -> GroupStats:
    """Stats for the part of the original diff touching owned paths."""
    stats = GroupStats()
    for change in changes:
        if change.path not in owned:
            continue
        adds, dels = line_counts.get(change.new_path, (0, 0))
        stats.additions += adds
        stats.deletions += dels
        if change.status == "A" or change.status == "C":
            stats.files_added += 1
        elif change.status == "D":
            stats.files_deleted += 1
        else:
            stats.files_modified += 1
    return stats


class StackPlanner:
    """Plans a stack pinned to a base and head commit."""

    def __init__(self, git_cmd: GitInterface):
        self.git_cmd = git_cmd

    def plan(self, base_sha: str, head_sha: str, feasibility: FeasibilityResult,
             ownership: Mapping[str, str], groups: Sequence[Group],
             shared_foundation: Optional[str] = None, source_ref: Optional[str] = None) -> Plan:
        if not feasibility.feasible:
            cycle = feasibility.cycle
            raise CycleError(cycle.group_cycle if cycle else [], cycle.edge_cycle if cycle else [])

        check_pinned(self.git_cmd, base_sha, head_sha, source_ref)
        base_sha = resolve_commit(self.git_cmd, base_sha)
        head_sha = resolve_commit(self.git_cmd, head_sha)

        base_entries = list_tree(self.git_cmd, base_sha)
        head_entries = list_tree(self.git_cmd, head_sha)
        changes = diff_trees(self.git_cmd, base_sha, head_sha)
        line_counts = numstat(self.git_cmd, base_sha, head_sha)
        algo = object_format(self.git_cmd)

        changed: Set[str] = set()
        for change in changes:
            changed.update(change.paths)
            if change.status in OLD_SIDE_STATUSES:
                entry = base_entries.get(change.old_path)
                if entry is None or entry.sha != change.old_sha:
                    raise PlanStaleError(f"{change.old_path} cannot be resolved against base {base_sha[:12]}")
        unowned = sorted(p for p in changed if p not in ownership)
        if unowned:
            raise PlanStaleError(f"Changed files have no owning group: {', '.join(unowned[:10])}")

        warnings: List[StructuredWarning] = []
        extra = sorted(p for p in ownership if p not in changed)
        if extra:
            warnings.append(StructuredWarning(
                category="system", severity="info", title="Unchanged files ignored",
                message=f"{len(extra)} owned file(s) do not differ between base and head", details=extra))

        by_id = {g.id: g for g in groups}
        owned_by: Dict[str, Set[str]] = {}
        for path, gid in ownership.items():
            if path in changed:
                owned_by.setdefault(gid, set()).add(path)

        order = []
        for gid in feasibility.ordered_group_ids:
            if gid not in by_id:
                raise PlanStaleError(f"Unknown group {gid} in feasibility order")
            if not owned_by.get(gid):
                warnings.append(StructuredWarning(
                    category="grouping", severity="info", title="Empty group left out",
                    message=f'Group "{by_id[gid].name}" owns no changed files and is not part of the stack'))
                continue
            order.append(gid)
        missing = sorted(set(owned_by) - set(order))
        if missing:
            raise PlanStaleError(f"Groups missing from feasibility order: {', '.join(missing)}")

        if shared_foundation and shared_foundation in order and order[0] != shared_foundation:
            incoming = [e for e in feasibility.edges if e.to == shared_foundation and e.from_ in order]
            if incoming:
                warnings.append(StructuredWarning(
                    category="grouping", severity="warn", title="Shared foundation not pinned",
                    message=f'"{shared_foundation}" depends on {", ".join(sorted({e.from_ for e in incoming}))}; '
                            f"keeping its dependency order"))
            else:
                order.remove(shared_foundation)
                order.insert(0, shared_foundation)

        position = {gid: i for i, gid in enumerate(order)}
        planned: List[PlannedGroup] = []
        expected: Dict[str, str] = {}
        current = base_entries
        for i, gid in enumerate(order):
            group = by_id[gid]
            owned = owned_by[gid]
            deps = sorted({e.from_ for e in feasibility.edges if e.to == gid and e.from_ in position},
                          key=lambda d: position[d])
            current = apply_paths(current, head_entries, owned)
            expected[gid] = tree_hash(current, algo)
            data = group.model_dump()
            data.update(files=sorted(owned), deps=deps, order=i,
                        stats=group_stats(changes, owned, line_counts))
            planned.append(PlannedGroup.model_validate(data))
            logger.info(f"Plan [{i + 1}/{len(order)}] {group.name}: {len(owned)} files, tree {expected[gid][:12]}")

        if order and expected[order[-1]] != tree_of(self.git_cmd, head_sha):
            logger.warning("Predicted final tree differs from head tree")

        return Plan(
            base_sha=base_sha,
            head_sha=head_sha,
            groups=planned,
            expected_trees=expected,
            shared_foundation=shared_foundation if shared_foundation in position else None,
            structured_warnings=warnings,
        )
