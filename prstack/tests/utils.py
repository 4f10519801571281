"""Shared utilities for prstack tests."""
import logging
import os
import subprocess
from typing import Dict, Optional, Tuple

from prstack.config import Config, default_config
from prstack.git import RealGit

logger = logging.getLogger(__name__)


def run_cmd(cmd: str, cwd: Optional[str] = None, check: bool = True) -> str:
    """Run shell command and return output.

    Args:
        cmd: Command to run
        cwd: Working directory
        check: Whether to check return code

    Returns:
        str: Command output
    """
    logger.debug(f"Running command: {cmd}")
    result = subprocess.run(
        cmd, shell=True, check=check, cwd=cwd,
        capture_output=True, text=True
    )
    logger.debug(f"Command output: {result.stdout.strip()}")
    if result.stderr:
        logger.debug(f"Command stderr: {result.stderr.strip()}")
    return result.stdout.strip()


def init_repo(path: str, branch: str = "main") -> str:
    """Create an empty repository with a committer identity."""
    os.makedirs(path, exist_ok=True)
    run_cmd(f"git init -q -b {branch} .", cwd=path)
    run_cmd("git config user.name 'Test User'", cwd=path)
    run_cmd("git config user.email 'test@example.com'", cwd=path)
    run_cmd("git config commit.gpgsign false", cwd=path)
    return path


def write_files(repo: str, files: Dict[str, Optional[str]]) -> None:
    """Write files relative to repo; None deletes the file."""
    for rel, content in files.items():
        full = os.path.join(repo, rel)
        if content is None:
            if os.path.exists(full):
                os.remove(full)
            parent = os.path.dirname(full)
            while os.path.abspath(parent) != os.path.abspath(repo) and not os.listdir(parent):
                os.rmdir(parent)
                parent = os.path.dirname(parent)
            continue
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "w") as f:
            f.write(content)


def commit_files(repo: str, files: Dict[str, Optional[str]], message: str) -> str:
    """Write files, commit everything and return the new commit sha."""
    write_files(repo, files)
    run_cmd("git add -A", cwd=repo)
    run_cmd(f"git commit -q --allow-empty -m '{message}'", cwd=repo)
    return run_cmd("git rev-parse HEAD", cwd=repo)


def make_git(repo: str, config: Optional[Config] = None) -> RealGit:
    return RealGit(config or default_config(), repo_path=repo)


FEATURE_GROUPS = [
    {"name": "Core", "type": "feat", "description": "Core helpers",
     "files": ["src/core.py", "src/shared.py", "config", "config/settings.yaml"]},
    {"name": "API", "type": "feat", "description": "Expose helper through the API",
     "files": ["src/api.py"], "pr_title": "Expose helper"},
    {"name": "Docs", "type": "docs", "description": "Document the helper",
     "files": ["README.md", "docs/old.md", "docs/new.md"]},
]

GUIDE = "# Guide\n\n" + "".join(f"Step {i}: do the thing.\n" for i in range(20))


def build_feature_repo(path: str) -> Tuple[str, str, str]:
    """Repository whose `feature` branch touches three groups.

    Covers a modification, an addition, a rename and a file replaced by a
    directory. Returns (repo, base_sha, head_sha); `main` stays checked out.
    """
    repo = init_repo(path)
    base = commit_files(repo, {
        "src/core.py": "def core():\n    return 1\n",
        "src/api.py": "from src.core import core\n\n\ndef api():\n    return core()\n",
        "docs/old.md": GUIDE,
        "README.md": "readme\n",
        "config": "legacy-setting=1\n",
    }, "base")
    run_cmd("git checkout -q -b feature", cwd=repo)
    head = commit_files(repo, {
        "src/core.py": "def core():\n    return 1\n\n\ndef helper():\n    return 2\n",
        "src/shared.py": "from src.core import helper\n\nVALUE = helper()\n",
        "src/api.py": "from src.core import core\nfrom src.shared import VALUE\n\n\n"
                      "def api():\n    return core() + VALUE\n",
        "docs/old.md": None,
        "docs/new.md": GUIDE,
        "README.md": "readme\nnow with a helper\n",
        "config": None,
        "config/settings.yaml": "settings:\n  helper: true\n",
    }, "feature")
    run_cmd("git checkout -q main", cwd=repo)
    return repo, base, head


def feature_ownership() -> Dict[str, str]:
    return {path: g["name"] for g in FEATURE_GROUPS for path in g["files"]}
