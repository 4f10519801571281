"""Git interfaces and implementation."""

import os
import re
import shlex
import shutil
import tempfile
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
import git
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from ..config.models import PrstackConfig
from ..errors import GitOperationError
from ..typing import GitInterface

# Get module logger
logger = logging.getLogger(__name__)

RAW_DIFF_RE = re.compile(r'^:(\d+) (\d+) ([0-9a-f]+) ([0-9a-f]+) ([AMDRCTUX])(\d*)$')

# Flags batched per update-index invocation
UPDATE_INDEX_BATCH = 200


@dataclass
class TreeEntry:
    """One blob (or gitlink) in a recursive tree listing."""
    mode: str
    type: str
    sha: str


@dataclass
class FileChange:
    """One record of `git diff-tree --raw`."""
    status: str
    old_mode: str
    new_mode: str
    old_sha: str
    new_sha: str
    old_path: str
    new_path: str
    score: Optional[int] = None

    @property
    def path(self) -> str:
        """Path this change is keyed on (the old path for deletions)."""
        return self.old_path if self.status == 'D' else self.new_path

    @property
    def paths(self) -> List[str]:
        if self.old_path != self.new_path:
            return [self.old_path, self.new_path]
        return [self.new_path]


def parse_raw_diff(output: str) -> List[FileChange]:
    """Parse NUL-separated output of `git diff-tree -r --raw -z`."""
    changes: List[FileChange] = []
    fields = output.split('\0')
    i = 0
    while i < len(fields):
        header = fields[i].strip()
        i += 1
        if not header:
            continue
        m = RAW_DIFF_RE.match(header)
        if not m:
            raise GitOperationError(f"Unexpected diff-tree output: {header!r}")
        old_mode, new_mode, old_sha, new_sha, status, score = m.groups()
        if status in ('R', 'C'):
            old_path, new_path = fields[i], fields[i + 1]
            i += 2
        else:
            old_path = new_path = fields[i]
            i += 1
        changes.append(FileChange(
            status=status,
            old_mode=old_mode,
            new_mode=new_mode,
            old_sha=old_sha,
            new_sha=new_sha,
            old_path=old_path,
            new_path=new_path,
            score=int(score) if score else None,
        ))
    return changes


def parse_numstat(output: str) -> Dict[str, Tuple[int, int]]:
    """Parse NUL-separated output of `git diff --numstat -z`.

    Returns additions/deletions keyed by the new path. Binary files count as 0/0.
    """
    stats: Dict[str, Tuple[int, int]] = {}
    fields = output.split('\0')
    i = 0
    while i < len(fields):
        record = fields[i]
        i += 1
        if not record.strip():
            continue
        parts = record.split('\t')
        if len(parts) < 3:
            raise GitOperationError(f"Unexpected numstat output: {record!r}")
        adds = int(parts[0]) if parts[0].isdigit() else 0
        dels = int(parts[1]) if parts[1].isdigit() else 0
        if parts[2] == '':
            # Rename: old and new path follow as separate fields
            path = fields[i + 1]
            i += 2
        else:
            path = parts[2]
        stats[path] = (adds, dels)
    return stats


def parse_ls_tree(output: str) -> Dict[str, TreeEntry]:
    """Parse NUL-separated output of `git ls-tree -r -z`."""
    entries: Dict[str, TreeEntry] = {}
    for record in output.split('\0'):
        if not record.strip():
            continue
        meta, _, path = record.partition('\t')
        mode, obj_type, sha = meta.split()
        entries[path] = TreeEntry(mode=mode, type=obj_type, sha=sha)
    return entries


def resolve_commit(git_cmd: GitInterface, ref: str) -> str:
    """Resolve ref to a full commit sha."""
    return git_cmd.must_git(f"rev-parse --verify {shlex.quote(ref + '^{commit}')}").strip()


def tree_of(git_cmd: GitInterface, ref: str) -> str:
    """Get the tree sha of a commit."""
    return git_cmd.must_git(f"rev-parse --verify {shlex.quote(ref + '^{tree}')}").strip()


def object_format(git_cmd: GitInterface) -> str:
    """Get the repository hash algorithm, sha1 or sha256."""
    try:
        fmt = git_cmd.must_git("rev-parse --show-object-format").strip()
    except GitOperationError:
        return "sha1"
    return fmt or "sha1"


def list_tree(git_cmd: GitInterface, ref: str) -> Dict[str, TreeEntry]:
    """Recursively list every blob at ref, keyed by path."""
    return parse_ls_tree(git_cmd.must_git(f"ls-tree -r -z --full-tree {shlex.quote(ref)}"))


def diff_trees(git_cmd: GitInterface, base: str, head: str, renames: bool = True) -> List[FileChange]:
    """Raw recursive diff between two commits."""
    rename_flag = "-M" if renames else "--no-renames"
    out = git_cmd.must_git(
        f"diff-tree -r --raw -z {rename_flag} --no-commit-id {shlex.quote(base)} {shlex.quote(head)}")
    return parse_raw_diff(out)


def numstat(git_cmd: GitInterface, base: str, head: str) -> Dict[str, Tuple[int, int]]:
    """Line counts per changed path between two commits."""
    out = git_cmd.must_git(f"diff --numstat -z -M {shlex.quote(base)} {shlex.quote(head)}")
    return parse_numstat(out)


def show_file(git_cmd: GitInterface, ref: str, path: str) -> Optional[str]:
    """Get file contents at ref, or None if it does not exist there."""
    try:
        return git_cmd.must_git(f"show {shlex.quote(f'{ref}:{path}')}")
    except GitOperationError:
        return None


def commit_tree(git_cmd: GitInterface, tree: str, parent: str, message: str,
                env: Optional[Dict[str, str]] = None) -> str:
    """Create a commit object for tree on top of parent."""
    cmd = f"commit-tree {shlex.quote(tree)} -p {shlex.quote(parent)} -m {shlex.quote(message)}"
    return git_cmd.must_git(cmd, env=env).strip()


def update_ref(git_cmd: GitInterface, ref: str, sha: str) -> None:
    git_cmd.must_git(f"update-ref {shlex.quote(ref)} {shlex.quote(sha)}")


def delete_ref(git_cmd: GitInterface, ref: str) -> None:
    git_cmd.must_git(f"update-ref -d {shlex.quote(ref)}")


def ref_exists(git_cmd: GitInterface, ref: str) -> bool:
    try:
        git_cmd.must_git(f"rev-parse --verify --quiet {shlex.quote(ref)}")
        return True
    except GitOperationError:
        return False


def push_branch(git_cmd: GitInterface, remote: str, branch: str) -> None:
    """Force-push a local branch to the same name on remote."""
    refspec = f"refs/heads/{branch}:refs/heads/{branch}"
    git_cmd.must_git(f"push --force {shlex.quote(remote)} {shlex.quote(refspec)}")


def delete_remote_branch(git_cmd: GitInterface, remote: str, branch: str) -> None:
    git_cmd.must_git(f"push {shlex.quote(remote)} --delete {shlex.quote(branch)}")


class TempIndex:
    """A private index file, so stack commits never touch the caller's index."""

    def __init__(self, git_cmd: GitInterface):
        self.git_cmd = git_cmd
        self._dir: Optional[str] = None
        self.env: Dict[str, str] = {}

    def __enter__(self) -> 'TempIndex':
        self._dir = tempfile.mkdtemp(prefix="prstack-index-")
        self.env = {"GIT_INDEX_FILE": os.path.join(self._dir, "index")}
        return self

    def __exit__(self, *exc: object) -> None:
        if self._dir:
            shutil.rmtree(self._dir, ignore_errors=True)
        self._dir = None

    def read_tree(self, treeish: str) -> None:
        self.git_cmd.must_git(f"read-tree {shlex.quote(treeish)}", env=self.env)

    def add_entries(self, entries: Sequence[Tuple[str, str, str]]) -> None:
        """Stage (mode, sha, path) entries, replacing file/directory conflicts."""
        for start in range(0, len(entries), UPDATE_INDEX_BATCH):
            batch = entries[start:start + UPDATE_INDEX_BATCH]
            args = " ".join(
                f"--cacheinfo {shlex.quote(f'{mode},{sha},{path}')}" for mode, sha, path in batch)
            self.git_cmd.must_git(f"update-index --add --replace {args}", env=self.env)

    def remove_paths(self, paths: Sequence[str]) -> None:
        for start in range(0, len(paths), UPDATE_INDEX_BATCH):
            batch = paths[start:start + UPDATE_INDEX_BATCH]
            args = " ".join(shlex.quote(p) for p in batch)
            self.git_cmd.must_git(f"update-index --force-remove -- {args}", env=self.env)

    def write_tree(self) -> str:
        return self.git_cmd.must_git("write-tree", env=self.env).strip()


class RealGit:
    """Real Git implementation."""
    def __init__(self, config: PrstackConfig, repo_path: Optional[str] = None):
        """Initialize with config and the repository to operate on."""
        self.config: PrstackConfig = config
        self.repo_path = repo_path or os.getcwd()

    def run_cmd(self, command: str, output: Optional[str] = None,
                env: Optional[Dict[str, str]] = None) -> str:
        """Run git command."""
        cmd_str = command.strip()

        if self.config.tool.pretend and cmd_str.startswith('push'):
            # Pretend mode - just log
            logger.info(f"> git {cmd_str} (pretend)")
            return ""

        if self.config.user.log_git_commands:
            logger.info(f"> git {cmd_str}")
        else:
            logger.debug(f"> git {cmd_str}")
        try:
            repo = git.Repo(self.repo_path, search_parent_directories=True)
            git_cmd = repo.git
            cmd_parts = shlex.split(cmd_str)
            git_command = cmd_parts[0]
            git_args = cmd_parts[1:]
            method = getattr(git_cmd, git_command.replace('-', '_'))
            kwargs = {'env': env} if env else {}
            result = method(*git_args, **kwargs)
            return result if isinstance(result, str) else str(result)
        except GitCommandError as e:
            raise GitOperationError(f"Git command failed: {str(e)}", command=cmd_str) from e
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise GitOperationError(f"Not in a git repository: {self.repo_path}", command=cmd_str) from e

    def must_git(self, command: str, output: Optional[str] = None,
                 env: Optional[Dict[str, str]] = None) -> str:
        """Run git command, failing on error."""
        return self.run_cmd(command, output, env=env)
