"""Group dependency graph and stack ordering."""

import heapq
import logging
from collections import Counter, deque
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .history import CommitDelta
from .models import (
    CycleInfo, DependencyEdge, EdgeEvidence, FeasibilityResult, ForcedMerge,
    Group, Reattribution, StructuredWarning,
)

logger = logging.getLogger(__name__)

EDGE_SHARED_FILE = "shared-file"
EDGE_FORCED_MERGE = "forced-merge"
EDGE_DECLARED = "declared"
EDGE_IMPORT = "import"
EDGE_PATH_ORDER = "path-order"

# Ordering hints: dropped when they contradict other edges instead of failing the run
SOFT_EDGE_KINDS = {EDGE_SHARED_FILE, EDGE_PATH_ORDER}


def is_soft(e: DependencyEdge) -> bool:
    return e.kind in SOFT_EDGE_KINDS


def commit_owner(delta: CommitDelta, ownership: Mapping[str, str], rank: Mapping[str, int]) -> Optional[str]:
    """The group owning most of a commit's paths; ties go to the earlier group."""
    counts = Counter(ownership[p] for p in delta.paths if p in ownership)
    if not counts:
        return None
    return min(counts, key=lambda g: (-counts[g], rank.get(g, len(rank)), g))


def build_dependency_edges(groups: Sequence[Group], ownership: Mapping[str, str],
                           reattributed: Iterable[Reattribution] = (),
                           forced_merges: Iterable[ForcedMerge] = (),
                           file_imports: Optional[Mapping[str, Iterable[str]]] = None,
                           kinds: Optional[Iterable[str]] = None,
                           commit_deltas: Optional[Sequence[CommitDelta]] = None) -> List[DependencyEdge]:
    """Derive ordering edges from coupling evidence.

    An edge (from, to) means `from` must be applied before `to`. Self edges are
    dropped and only one edge per (from, to) pair is kept: the first one, unless
    a later edge of a hard kind replaces a soft one.
    """
    enabled = set(kinds) if kinds is not None else None
    known = {g.id for g in groups}
    resolve = {g.name: g.id for g in groups}
    resolve.update({g.id: g.id for g in groups})
    edges: List[DependencyEdge] = []
    seen: Dict[Tuple[str, str], int] = {}

    def add(src: str, dst: str, kind: str, evidence: Optional[EdgeEvidence] = None) -> None:
        if enabled is not None and kind not in enabled:
            return
        if src == dst or src not in known or dst not in known:
            return
        edge = DependencyEdge(from_=src, to=dst, kind=kind, evidence=evidence)
        idx = seen.get((src, dst))
        if idx is None:
            seen[(src, dst)] = len(edges)
            edges.append(edge)
        elif is_soft(edges[idx]) and not is_soft(edge):
            edges[idx] = edge

    merged_paths = {fm.path for fm in forced_merges}
    for r in reattributed:
        if r.path in merged_paths:
            continue
        # The other candidates used the file, so its final owner goes first
        owner = ownership.get(r.path, r.to_group)
        for other in r.from_groups:
            add(owner, other, EDGE_SHARED_FILE, EdgeEvidence(path=r.path))

    for fm in forced_merges:
        add(fm.to_group, fm.from_group, EDGE_FORCED_MERGE, EdgeEvidence(path=fm.path))

    for g in groups:
        for dep in g.depends_on:
            if dep in resolve:
                add(resolve[dep], g.id, EDGE_DECLARED)

    for importer, targets in sorted((file_imports or {}).items()):
        importer_group = ownership.get(importer)
        if importer_group is None:
            continue
        for target in sorted(targets):
            target_group = ownership.get(target)
            if target_group is not None:
                add(target_group, importer_group, EDGE_IMPORT, EdgeEvidence(path=importer))

    if commit_deltas:
        rank = {g.id: idx for idx, g in enumerate(groups)}
        # Per path, the groups of the commits that edited it, oldest first
        sequences: Dict[str, List[Tuple[str, str]]] = {}
        for delta in commit_deltas:
            owner = commit_owner(delta, ownership, rank)
            if owner is None:
                continue
            for path in delta.paths:
                if path in ownership:
                    seq = sequences.setdefault(path, [])
                    if not seq or seq[-1][0] != owner:
                        seq.append((owner, delta.sha))
        for path in sorted(sequences):
            seq = sequences[path]
            for (prev, prev_sha), (nxt, nxt_sha) in zip(seq, seq[1:]):
                add(prev, nxt, EDGE_PATH_ORDER,
                    EdgeEvidence(path=path, from_commit=prev_sha, to_commit=nxt_sha))

    return edges


def _adjacency(nodes: Iterable[str], edges: Sequence[DependencyEdge]) -> Dict[str, List[str]]:
    adj: Dict[str, List[str]] = {n: [] for n in nodes}
    for e in edges:
        if e.from_ in adj and e.to in adj and e.to not in adj[e.from_]:
            adj[e.from_].append(e.to)
    for n in adj:
        adj[n].sort()
    return adj


def _first_cycle(nodes: List[str], adj: Dict[str, List[str]]) -> List[str]:
    """Depth-first search for the first cycle; returns its nodes in order."""
    state: Dict[str, int] = {}  # 1 = on stack, 2 = done
    for root in nodes:
        if root in state:
            continue
        path: List[str] = [root]
        iters = [iter(adj[root])]
        state[root] = 1
        while iters:
            nxt = next(iters[-1], None)
            if nxt is None:
                state[path.pop()] = 2
                iters.pop()
                continue
            if state.get(nxt) == 1:
                return path[path.index(nxt):]
            if nxt not in state:
                state[nxt] = 1
                path.append(nxt)
                iters.append(iter(adj[nxt]))
    return []


def _shortest_cycle_through(start: str, adj: Dict[str, List[str]]) -> Optional[List[str]]:
    parent: Dict[str, str] = {}
    queue = deque([start])
    visited = {start}
    while queue:
        node = queue.popleft()
        for nxt in adj[node]:
            if nxt == start:
                cycle = [node]
                while cycle[-1] != start:
                    cycle.append(parent[cycle[-1]])
                return list(reversed(cycle))
            if nxt not in visited:
                visited.add(nxt)
                parent[nxt] = node
                queue.append(nxt)
    return None


def find_minimal_cycle(nodes: Iterable[str], edges: Sequence[DependencyEdge]) -> Optional[CycleInfo]:
    """Find a cycle and shrink it to the shortest cycle through any of its groups."""
    ordered = sorted(set(nodes))
    adj = _adjacency(ordered, edges)
    found = _first_cycle(ordered, adj)
    if not found:
        return None

    best = found
    for node in sorted(found):
        candidate = _shortest_cycle_through(node, adj)
        if candidate and len(candidate) < len(best):
            best = candidate
    # Rotate so the smallest id leads
    pivot = best.index(min(best))
    best = best[pivot:] + best[:pivot]

    edge_map = {(e.from_, e.to): e for e in reversed(edges)}
    closed = best + [best[0]]
    edge_cycle = [edge_map[(a, b)] for a, b in zip(closed, closed[1:])]
    return CycleInfo(group_cycle=closed, edge_cycle=edge_cycle)


def _reaches(adj: Dict[str, List[str]], src: str, dst: str) -> bool:
    stack = [src]
    visited = {src}
    while stack:
        node = stack.pop()
        if node == dst:
            return True
        for nxt in adj[node]:
            if nxt not in visited:
                visited.add(nxt)
                stack.append(nxt)
    return False


def _accept_soft_edges(nodes: Sequence[str], edges: Sequence[DependencyEdge]
                       ) -> Tuple[List[DependencyEdge], List[DependencyEdge]]:
    """Keep every hard edge and each soft edge that closes no cycle, in input order."""
    hard = [e for e in edges if not is_soft(e)]
    adj = _adjacency(nodes, hard)
    accepted = list(hard)
    dropped: List[DependencyEdge] = []
    for e in edges:
        if not is_soft(e):
            continue
        if _reaches(adj, e.to, e.from_):
            dropped.append(e)
            continue
        accepted.append(e)
        if e.to not in adj[e.from_]:
            adj[e.from_].append(e.to)
    # Preserve the caller's edge order
    kept = {id(e) for e in accepted}
    return [e for e in edges if id(e) in kept], dropped


def check_feasibility(group_ids: Iterable[str], edges: Sequence[DependencyEdge]) -> FeasibilityResult:
    """Order groups so every edge points forward, or report a cycle.

    Only hard edges (forced-merge, declared, import) can make groups
    unstackable. Soft hints (shared-file, path-order) that would close a
    cycle are dropped with a coupling warning. Among ready groups the
    lexicographically smallest id goes first.
    """
    nodes = list(dict.fromkeys(group_ids))
    node_set = set(nodes)
    usable, dropped = _accept_soft_edges(
        nodes, [e for e in edges if e.from_ in node_set and e.to in node_set])
    warnings = [StructuredWarning(
        category="coupling", severity="info", title="Ordering hint ignored",
        message=f"{e.describe()} contradicts stronger ordering edges and was ignored",
    ) for e in dropped]
    for e in dropped:
        logger.info(f"Ignoring ordering hint {e.describe()}")
    adj = _adjacency(nodes, usable)

    in_degree = {n: 0 for n in nodes}
    for src, targets in adj.items():
        for dst in targets:
            in_degree[dst] += 1

    ready = [n for n, d in in_degree.items() if d == 0]
    heapq.heapify(ready)
    ordered: List[str] = []
    while ready:
        node = heapq.heappop(ready)
        ordered.append(node)
        for nxt in adj[node]:
            in_degree[nxt] -= 1
            if in_degree[nxt] == 0:
                heapq.heappush(ready, nxt)

    if len(ordered) == len(nodes):
        return FeasibilityResult(feasible=True, ordered_group_ids=ordered, edges=usable,
                                 dropped_edges=dropped, structured_warnings=warnings)

    done = set(ordered)
    remaining = [n for n in nodes if n not in done]
    cycle = find_minimal_cycle(remaining, usable)
    logger.warning(f"Groups cannot be stacked: cycle {' -> '.join(cycle.group_cycle) if cycle else remaining}")
    return FeasibilityResult(feasible=False, cycle=cycle, edges=usable,
                             dropped_edges=dropped, structured_warnings=warnings)
