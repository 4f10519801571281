"""Resolve which group owns each changed file."""

import json
import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import ParseError, PartitionError
from ..llm.parser import extract_json_object
from ..typing import LLMClient
from .models import (
    AmbiguousPath, Classification, FileSummary, Group, PartitionResult,
    PromptContext, Reattribution, StructuredWarning, WarningCategory,
)

logger = logging.getLogger(__name__)

REPRESENTATIVE_FILES = 8

PARTITION_SYSTEM_PROMPT = """You are a senior engineer helping organize a pull request into a reviewable stack.

Your task: assign each ambiguous or unassigned file to EXACTLY ONE of the listed groups.

Rules:
1. Assign every listed file to exactly one group. No file may be skipped.
2. Only use group names from the list. Never invent a new group.
3. Use file path structure, file summaries and commit messages to judge relevance.
4. A file that touches shared utilities (schema types, constants, index re-exports) belongs to the group that introduces or primarily uses those utilities.
5. When in doubt, pick the group whose files are most similar (same directory prefix, same feature area).

Set "shared_foundation" to the name of an existing group only if it holds infrastructure every other group builds on. Otherwise use null.

Response format (JSON only):
{
  "assignments": [
    { "path": "file.ts", "group": "exact group name", "reason": "one sentence" }
  ],
  "shared_foundation": null
}"""


def classify_paths(groups: Sequence[Group], changed_files: Sequence[str]) -> Classification:
    """Count the groups claiming each changed path.

    Candidate group names keep the order the groups were declared in.
    """
    claims: Dict[str, List[str]] = {}
    for group in groups:
        for path in group.files:
            names = claims.setdefault(path, [])
            if group.name not in names:
                names.append(group.name)

    result = Classification()
    for path in changed_files:
        names = claims.get(path, [])
        if not names:
            result.unassigned.append(path)
        elif len(names) == 1:
            result.exclusive[path] = names[0]
        else:
            result.ambiguous.append(AmbiguousPath(path=path, groups=names))
    return result


def build_partition_prompt(classification: Classification, groups: Sequence[Group],
                           file_summaries: Optional[Sequence[FileSummary]] = None,
                           context: Optional[PromptContext] = None) -> Tuple[str, str]:
    """Build the (system, user) prompt pair for arbitration."""
    summary_by_path = {s.path: s.summary for s in (file_summaries or []) if s.summary}

    def file_line(path: str, extra: str = "") -> str:
        summary = summary_by_path.get(path)
        note = f" - {summary}" if summary else ""
        return f"- {path}{note}{extra}"

    group_lines = []
    for g in groups:
        line = f'- "{g.name}" ({g.type}): {g.description}'
        if g.files:
            shown = ", ".join(g.files[:REPRESENTATIVE_FILES])
            more = f" (+{len(g.files) - REPRESENTATIVE_FILES} more)" if len(g.files) > REPRESENTATIVE_FILES else ""
            line += f"\n    Representative files: {shown}{more}"
        group_lines.append(line)
    sections = ["Groups:\n" + "\n".join(group_lines)]

    if classification.ambiguous:
        lines = [file_line(a.path, f" -> candidate groups: {', '.join(a.groups)}")
                 for a in classification.ambiguous]
        sections.append("Ambiguous files (listed in several groups, pick the best one):\n" + "\n".join(lines))
    if classification.unassigned:
        lines = [file_line(p) for p in classification.unassigned]
        sections.append("Unassigned files (assign to the most relevant group):\n" + "\n".join(lines))

    if context and context.commit_messages:
        sections.append("Commit history:\n" + "\n".join(f"- {m}" for m in context.commit_messages))
    if context and context.discussion:
        sections.append(f"Discussion:\n{context.discussion}")

    sections.append("Assign every listed file to exactly one group.")
    return PARTITION_SYSTEM_PROMPT, "\n\n".join(sections)


def _normalize(name: str) -> str:
    return re.sub(r'["\'`]', "", name).strip().lower()


def _group_lookup(groups: Sequence[Group]) -> Dict[str, Group]:
    lookup: Dict[str, Group] = {}
    for g in groups:
        lookup.setdefault(_normalize(g.id), g)
        lookup.setdefault(_normalize(g.name), g)
    return lookup


def parse_partition_response(raw: str, classification: Classification,
                             groups: Sequence[Group]) -> PartitionResult:
    """Turn an arbitration reply into a total ownership map.

    Raises ParseError if the reply is not a JSON object with an assignments list.
    """
    data = extract_json_object(raw)
    assignments = data.get("assignments")
    if not isinstance(assignments, list):
        raise ParseError("Expected 'assignments' array in partition response", raw=raw)

    lookup = _group_lookup(groups)
    by_name = {g.name: g for g in groups}
    ambiguous = {a.path: a for a in classification.ambiguous}
    unassigned = set(classification.unassigned)

    result = PartitionResult(arbitrated=True)
    result.ownership = {path: by_name[name].id for path, name in classification.exclusive.items()}

    def warn(category: WarningCategory, title: str, message: str, details: Optional[List[str]] = None) -> None:
        result.warnings.append(message)
        result.structured_warnings.append(StructuredWarning(
            category=category, severity="warn", title=title, message=message, details=details))

    for item in assignments:
        if not isinstance(item, dict):
            warn("system", "Invalid assignment", f"Ignoring assignment entry {json.dumps(item)}")
            continue
        path = str(item.get("path") or "")
        group_name = str(item.get("group") or "")
        reason = str(item.get("reason") or "")
        if path not in ambiguous and path not in unassigned:
            warn("system", "Unexpected assignment",
                 f'"{path}" was not awaiting arbitration; assignment to "{group_name}" ignored')
            continue
        if path in result.ownership:
            logger.debug(f"Duplicate assignment for {path} ignored")
            continue

        group = lookup.get(_normalize(group_name))
        if group is None:
            entry = ambiguous.get(path)
            if entry:
                group = by_name[entry.groups[0]]
                warn("assignment", "Unknown group",
                     f'"{path}" was assigned to unknown group "{group_name}"; using candidate "{group.name}"')
                reason = f"fallback: unknown group {group_name}"
            else:
                warn("assignment", "Unknown group",
                     f'"{path}" was assigned to unknown group "{group_name}"')
                continue

        result.ownership[path] = group.id
        if path in ambiguous:
            result.reattributed.append(Reattribution(
                path=path,
                from_groups=[by_name[n].id for n in ambiguous[path].groups],
                to_group=group.id,
                reason=reason,
            ))

    missed_ambiguous = [a for a in classification.ambiguous if a.path not in result.ownership]
    for a in missed_ambiguous:
        first = by_name[a.groups[0]]
        result.ownership[a.path] = first.id
        result.reattributed.append(Reattribution(
            path=a.path,
            from_groups=[by_name[n].id for n in a.groups],
            to_group=first.id,
            reason="not resolved by arbitration; first candidate group",
        ))
    if missed_ambiguous:
        paths = [a.path for a in missed_ambiguous]
        warn("assignment", f"{len(paths)} ambiguous file(s) assigned to their first candidate",
             "Arbitration did not resolve these files; each was placed in its first candidate group", paths)

    missed_unassigned = [p for p in classification.unassigned if p not in result.ownership]
    if missed_unassigned:
        fallback = groups[-1]
        for path in missed_unassigned:
            result.ownership[path] = fallback.id
        warn("assignment", f'{len(missed_unassigned)} file(s) auto-assigned to "{fallback.name}"',
             "Arbitration did not assign these files; they were placed in the last group", missed_unassigned)

    sf = data.get("shared_foundation")
    if isinstance(sf, dict):
        sf = sf.get("name")
    if sf:
        group = lookup.get(_normalize(str(sf)))
        if group is None:
            warn("grouping", "Unknown shared foundation", f'Shared foundation "{sf}" is not a known group; ignored')
        else:
            result.shared_foundation = group.id

    return result


def partition(llm: LLMClient, groups: Sequence[Group], changed_files: Sequence[str],
              file_summaries: Optional[Sequence[FileSummary]] = None,
              context: Optional[PromptContext] = None) -> PartitionResult:
    """Assign every changed file to exactly one group.

    Issues at most one arbitration call, and none when every file is claimed by exactly one group.
    """
    changed = list(dict.fromkeys(changed_files))
    if not groups:
        if changed:
            raise PartitionError("No groups to assign changed files to")
        return PartitionResult()

    ids = [g.id for g in groups]
    names = [g.name for g in groups]
    if len(set(ids)) != len(ids) or len(set(names)) != len(names):
        raise PartitionError("Group ids and names must be unique")

    classification = classify_paths(groups, changed)
    logger.info(f"Partition: {len(classification.exclusive)} exclusive, "
                f"{len(classification.ambiguous)} ambiguous, {len(classification.unassigned)} unassigned")

    if not classification.ambiguous and not classification.unassigned:
        by_name = {g.name: g for g in groups}
        return PartitionResult(
            ownership={path: by_name[name].id for path, name in classification.exclusive.items()})

    system, user = build_partition_prompt(classification, groups, file_summaries, context)
    response = llm.complete(system, user)
    return parse_partition_response(response, classification, groups)
