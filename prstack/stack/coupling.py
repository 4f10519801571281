"""Deterministic co-location rules applied after arbitration."""

import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .models import ForcedMerge, PartitionResult, StructuredWarning

logger = logging.getLogger(__name__)

# Files in the same set and directory must land in the same group
MANIFEST_SETS = [
    {"package.json", "package-lock.json", "npm-shrinkwrap.json", "yarn.lock",
     "pnpm-lock.yaml", "bun.lockb", "bun.lock"},
    {"pyproject.toml", "poetry.lock", "uv.lock", "pdm.lock"},
    {"Pipfile", "Pipfile.lock"},
    {"go.mod", "go.sum"},
    {"Cargo.toml", "Cargo.lock"},
    {"Gemfile", "Gemfile.lock"},
]
TSCONFIG_RE = re.compile(r'^tsconfig(\..+)?\.json$')
TEST_DIRS = {"tests", "test", "__tests__"}
JS_TEST_RE = re.compile(r'^(?P<stem>.+)\.(test|spec)\.(?P<ext>[cm]?[jt]sx?)$')


@dataclass
class CouplingResult:
    ownership: Dict[str, str]
    forced_merges: List[ForcedMerge] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    structured_warnings: List[StructuredWarning] = field(default_factory=list)


def source_candidates(path: str) -> List[str]:
    """Paths of the source file a test file most likely covers."""
    directory, base = posixpath.split(path)
    names: List[str] = []
    m = JS_TEST_RE.match(base)
    if m:
        names.append(f"{m.group('stem')}.{m.group('ext')}")
    elif base.endswith(".py") and base.startswith("test_"):
        names.append(base[len("test_"):])
    elif base.endswith("_test.py"):
        names.append(base[:-len("_test.py")] + ".py")
    elif base.endswith("_test.go"):
        names.append(base[:-len("_test.go")] + ".go")
    if not names:
        return []

    dirs = [directory]
    if posixpath.basename(directory) in TEST_DIRS:
        dirs.append(posixpath.dirname(directory))
    return [posixpath.join(d, n) for d in dirs for n in names]


def _coupling_sets(changed_files: Sequence[str]) -> List[Tuple[str, List[str]]]:
    """Group changed files into (rule, members) sets keyed by directory."""
    sets: Dict[Tuple[str, str, int], List[str]] = {}
    for path in changed_files:
        directory, base = posixpath.split(path)
        for idx, names in enumerate(MANIFEST_SETS):
            if base in names:
                sets.setdefault(("manifest", directory, idx), []).append(path)
        if TSCONFIG_RE.match(base):
            sets.setdefault(("tsconfig", directory, 0), []).append(path)
    return [(key[0], members) for key, members in sets.items() if len(members) > 1]


def apply_coupling_rules(ownership: Dict[str, str], changed_files: Sequence[str],
                         group_order: Sequence[str],
                         renames: Optional[Sequence[Tuple[str, str]]] = None) -> CouplingResult:
    """Move files that must stay together into one group.

    Manifest/lockfile and tsconfig sets go to the earliest group any member
    is in. A test follows its source file. A rename's old path follows its new path.
    """
    result = CouplingResult(ownership=dict(ownership))
    rank = {gid: idx for idx, gid in enumerate(group_order)}
    changed = set(changed_files)

    def move(path: str, target: str, rule: str, why: str) -> None:
        current = result.ownership.get(path)
        if current == target:
            return
        result.ownership[path] = target
        if current is None:
            return
        result.forced_merges.append(ForcedMerge(path=path, from_group=current, to_group=target, rule=rule))
        message = f'"{path}" moved from "{current}" to "{target}": {why}'
        result.warnings.append(message)
        result.structured_warnings.append(StructuredWarning(
            category="coupling", severity="info",
            title=f'File moved to "{target}" by {rule} rule', message=message, details=[path]))
        logger.info(f"Coupling ({rule}): {path} {current} -> {target}")

    for rule, members in _coupling_sets(changed_files):
        groups = {result.ownership[p] for p in members if p in result.ownership}
        if len(groups) <= 1:
            continue
        target = min(groups, key=lambda g: (rank.get(g, len(rank)), g))
        for path in members:
            move(path, target, rule, f"{', '.join(members)} must stay together")

    for path in changed_files:
        for source in source_candidates(path):
            if source in changed and source in result.ownership:
                move(path, result.ownership[source], "test-pair", f"tests stay with {source}")
                break

    for old_path, new_path in renames or []:
        if new_path in result.ownership and old_path in changed:
            move(old_path, result.ownership[new_path], "rename", f"renamed to {new_path}")

    return result


def merge_coupling(result: PartitionResult, coupling: CouplingResult) -> PartitionResult:
    """Fold a coupling pass into a partition result.

    Reattributions are rewritten to the file's final owner so shared-file
    evidence never points away from where the file ended up.
    """
    merged = result.model_copy(deep=True)
    merged.ownership = dict(coupling.ownership)
    merged.forced_merges = list(coupling.forced_merges)
    merged.warnings += coupling.warnings
    merged.structured_warnings += coupling.structured_warnings
    for r in merged.reattributed:
        owner = merged.ownership.get(r.path)
        if owner is not None and owner != r.to_group:
            r.reason = f"{r.reason}; moved to {owner} by coupling rules" if r.reason else "moved by coupling rules"
            r.to_group = owner
    return merged
