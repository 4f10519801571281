"""Conventional-commit style PR titles for planned groups."""

import logging
from typing import Dict, List, Sequence, Tuple

from ..errors import ParseError, StackError
from ..llm.parser import extract_json
from ..typing import LLMClient
from .models import Group, StructuredWarning

logger = logging.getLogger(__name__)

TITLE_TYPES = ("feat", "fix", "refactor", "chore", "docs", "test", "perf")
TYPE_ALIASES = {"feature": "feat", "bugfix": "fix", "documentation": "docs", "tests": "test"}
MAX_PROMPT_FILES = 10

SYSTEM_PROMPT = f"""You write pull request titles for a stack of PRs split out of one larger PR.

Rules:
- Format is "type: description" with no scope in parentheses
- type is one of {", ".join(TITLE_TYPES)}
- description is 3 to 6 words in the imperative mood, all lowercase
- No two titles in the set may be the same

Reply with a JSON array only:
[{{"group_id": "...", "title": "..."}}]"""


def fallback_title(group: Group) -> str:
    kind = TYPE_ALIASES.get(group.type.lower(), group.type.lower()) or "chore"
    description = (group.description or group.name).strip()
    if description:
        description = description[0].lower() + description[1:]
    return f"{kind}: {description}"


def build_title_prompt(groups: Sequence[Group], pr_title: str = "") -> str:
    lines = [f"Original PR title: {pr_title or '(none)'}", "", "Groups:"]
    for g in groups:
        lines.append(f"- group_id: {g.id}")
        lines.append(f"  name: {g.name}")
        lines.append(f"  type: {g.type}")
        if g.description:
            lines.append(f"  description: {g.description}")
        shown = g.files[:MAX_PROMPT_FILES]
        files = ", ".join(shown)
        if len(g.files) > len(shown):
            files += f", ... +{len(g.files) - len(shown)} more"
        lines.append(f"  files: {files}")
    return "\n".join(lines)


def parse_title_response(raw: str, groups: Sequence[Group]) -> Dict[str, str]:
    """Map group id to title. Unknown ids, blanks and repeats are dropped."""
    data = extract_json(raw)
    if isinstance(data, dict) and isinstance(data.get("titles"), list):
        data = data["titles"]
    if not isinstance(data, list):
        raise ParseError(f"Expected a JSON array of titles, got {type(data).__name__}", raw=raw)

    known = {g.id for g in groups}
    titles: Dict[str, str] = {}
    seen = set()
    for item in data:
        if not isinstance(item, dict):
            continue
        gid = item.get("group_id")
        title = item.get("title")
        if gid not in known or gid in titles or not isinstance(title, str):
            continue
        title = title.strip()
        if not title or title.lower() in seen:
            continue
        seen.add(title.lower())
        titles[gid] = title
    return titles


def generate_pr_titles(llm: LLMClient, groups: Sequence[Group],
                       pr_title: str = "") -> Tuple[Dict[str, str], List[StructuredWarning]]:
    """Titles for every group that does not already carry one.

    A failed model call or unusable reply is not fatal: the affected groups get
    a title built from their type and description and a warning is returned.
    """
    pending = [g for g in groups if not g.pr_title]
    titles: Dict[str, str] = {g.id: g.pr_title for g in groups if g.pr_title}
    warnings: List[StructuredWarning] = []
    if not pending:
        return titles, warnings

    generated: Dict[str, str] = {}
    try:
        generated = parse_title_response(llm.complete(SYSTEM_PROMPT, build_title_prompt(pending, pr_title)), pending)
    except StackError as e:
        logger.warning(f"PR title generation failed, using group descriptions: {e}")
        warnings.append(StructuredWarning(
            category="system",
            title="PR titles not generated",
            message=str(e),
        ))

    missing = []
    for g in pending:
        if g.id in generated:
            titles[g.id] = generated[g.id]
        else:
            titles[g.id] = fallback_title(g)
            missing.append(g.id)
    if missing and not warnings:
        warnings.append(StructuredWarning(
            category="system",
            severity="info",
            title="Fallback PR titles",
            message=f"No generated title for {len(missing)} group(s)",
            details=missing,
        ))
    return titles, warnings
