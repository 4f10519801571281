"""Compute git tree hashes in-process, without touching the object database."""

import hashlib
from typing import Any, Dict, Iterable

from ..git import TreeEntry

DIR_MODE = "40000"

# name -> (mode, sha) for blobs, name -> subtree for directories
_Node = Dict[str, Any]


def hash_object(obj_type: str, data: bytes, algo: str = "sha1") -> str:
    """Hash data the way `git hash-object -t obj_type` does."""
    h = hashlib.new(algo)
    h.update(f"{obj_type} {len(data)}\0".encode())
    h.update(data)
    return h.hexdigest()


def _build(entries: Dict[str, TreeEntry]) -> _Node:
    root: _Node = {}
    for path, entry in entries.items():
        parts = path.split("/")
        node = root
        for part in parts[:-1]:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise ValueError(f"Path {path} collides with file {part}")
            node = child
        node[parts[-1]] = (entry.mode, entry.sha)
    return root


def _hash_node(node: _Node, algo: str) -> str:
    items = []
    for name, value in node.items():
        raw_name = name.encode()
        if isinstance(value, dict):
            sha = _hash_node(value, algo)
            items.append((raw_name + b"/", DIR_MODE, raw_name, sha))
        else:
            mode, sha = value
            items.append((raw_name, mode.lstrip("0") or "0", raw_name, sha))
    # git orders directories as if their name ended in '/'
    items.sort(key=lambda item: item[0])
    data = b"".join(
        mode.encode() + b" " + raw_name + b"\0" + bytes.fromhex(sha)
        for _, mode, raw_name, sha in items
    )
    return hash_object("tree", data, algo)


def tree_hash(entries: Dict[str, TreeEntry], algo: str = "sha1") -> str:
    """Hash of the root tree holding exactly these blobs."""
    return _hash_node(_build(entries), algo)


def apply_paths(current: Dict[str, TreeEntry], target: Dict[str, TreeEntry],
                paths: Iterable[str]) -> Dict[str, TreeEntry]:
    """Bring each path in current to its state in target.

    Paths absent from target are removed. Added paths replace any file that
    sits where one of their parent directories goes, and any files under a
    directory they replace, matching `git update-index --replace`.
    """
    result = dict(current)
    paths = sorted(set(paths))
    for path in paths:
        if path not in target:
            result.pop(path, None)
    for path in paths:
        entry = target.get(path)
        if entry is None:
            continue
        parts = path.split("/")
        for i in range(1, len(parts)):
            result.pop("/".join(parts[:i]), None)
        prefix = path + "/"
        for existing in [p for p in result if p.startswith(prefix)]:
            del result[existing]
        result[path] = entry
    return result
