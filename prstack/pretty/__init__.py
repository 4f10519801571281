"""Pretty formatting utilities for CLI output."""

import json
import shutil
import sys
from typing import IO, Any, Dict, List, Optional

from ..runs.models import RunRecord
from ..stack.models import CleanupResult, PublishPreview, PublishResult, StructuredWarning


def get_term_width() -> int:
    """Get terminal width, default to 80 if can't detect."""
    try:
        return shutil.get_terminal_size().columns
    except (OSError, ValueError):
        return 80


def header(text: str, use_emoji: bool = True) -> str:
    """Create a boxed header with optional emoji."""
    width = max(get_term_width(), len(text) + 8)

    h_line = "─" * (width - 2)
    v_line = "│"
    emoji = "📚 " if use_emoji else ""

    result = [
        f"┌{h_line}┐",
        f"{v_line} {emoji}{text}{' ' * (width - len(text) - len(emoji) - 3)}{v_line}",
        f"└{h_line}┘"
    ]

    return "\n".join(result)


def pretty_json(data: object, prefix: str = "") -> str:
    """Format JSON data with optional prefix."""
    raw = json.dumps(data, indent=2)
    if prefix:
        lines = raw.split("\n")
        return "\n".join(f"{prefix}{line}" for line in lines)
    return raw


def print_json(data: object, prefix: str = "", file: Optional[IO[str]] = None) -> None:
    """Print JSON data to file (default stdout)."""
    if file is None:
        file = sys.stdout
    print(pretty_json(data, prefix), file=file)


def print_header(text: str, use_emoji: bool = True, file: Optional[IO[str]] = None) -> None:
    """Print a header to file (default stdout)."""
    if file is None:
        file = sys.stdout
    print(header(text, use_emoji), file=file)


STATUS_ICONS = {
    "running": "⏳",
    "done": "✅",
    "error": "❌",
    "canceled": "⛔",
}


def format_warnings(warnings: List[StructuredWarning]) -> List[str]:
    lines = []
    for w in warnings:
        lines.append(f"  [{w.severity}] {w.category}: {w.title}")
        for detail in w.details or []:
            lines.append(f"      {detail}")
    return lines


def format_run(record: RunRecord) -> str:
    """Human readable summary of a run record."""
    icon = STATUS_ICONS.get(record.status, "?")
    lines = [f"{icon} {record.run_id}  status={record.status}  phase={record.phase}"]
    if record.error:
        lines.append(f"  error: {record.error}")

    if record.feasibility and record.feasibility.cycle:
        lines.append(f"  cycle: {' -> '.join(record.feasibility.cycle.group_cycle)}")
        for edge in record.feasibility.cycle.edge_cycle:
            lines.append(f"    {edge.describe()}")

    if record.plan:
        commits: Dict[str, Any] = {}
        if record.exec_result:
            commits = {c.group_id: c for c in record.exec_result.group_commits}
        lines.append("")
        for group in record.plan.groups:
            commit = commits.get(group.id)
            where = f"{commit.branch_name} {commit.commit_sha[:8]}" if commit else "(not built)"
            deps = f" after {', '.join(group.deps)}" if group.deps else ""
            lines.append(f"  {group.order + 1}. {group.name} [{len(group.files)} files, "
                         f"+{group.stats.additions} -{group.stats.deletions}]{deps}")
            lines.append(f"     {where}")

    if record.verify_result:
        state = "verified" if record.verify_result.verified else "NOT verified"
        lines.append("")
        lines.append(f"  stack {state}")
        for error in record.verify_result.errors:
            lines.append(f"    ! {error}")

    warnings: List[StructuredWarning] = []
    if record.partition:
        warnings += record.partition.structured_warnings
    if record.feasibility:
        warnings += record.feasibility.structured_warnings
    if record.plan:
        warnings += record.plan.structured_warnings
    if record.verify_result:
        warnings += record.verify_result.structured_warnings
    if warnings:
        lines.append("")
        lines.append("  warnings:")
        lines += format_warnings(warnings)

    if record.publish_result:
        lines.append("")
        lines += format_publish(record.publish_result).splitlines()
    return "\n".join(lines)


def format_publish(result: PublishResult) -> str:
    lines = []
    for pr in result.prs:
        lines.append(f"  #{pr.number} {pr.title}  ({pr.head_branch} -> {pr.base_branch})")
        lines.append(f"     {pr.url}")
    for failure in result.failures:
        lines.append(f"  ! {failure.stage} failed for {failure.group_id}: {failure.message}")
    if result.cleanup_result:
        lines += format_cleanup(result.cleanup_result).splitlines()
    return "\n".join(lines)


def format_cleanup(result: CleanupResult) -> str:
    lines = [f"  cleanup ({result.mode}) at {result.completed_at}"]
    for item in result.items:
        number = f"#{item.number}" if item.number else "no PR"
        lines.append(f"    {number} {item.head_branch}: closed={item.closed} deleted={item.branch_deleted}"
                     + (f"  {item.message}" if item.message else ""))
    return "\n".join(lines)


def format_preview(preview: PublishPreview) -> str:
    lines = []
    if preview.template_path:
        lines.append(f"Using PR template {preview.template_path}")
    for item in preview.items:
        lines.append("")
        lines.append(f"=== {item.title}  ({item.head_branch} -> {item.base_branch})")
        lines.append(item.body)
    return "\n".join(lines)


def print_run(record: RunRecord, file: Optional[IO[str]] = None) -> None:
    if file is None:
        file = sys.stdout
    print_header(f"Stack run {record.run_id}", file=file)
    print(format_run(record), file=file)
