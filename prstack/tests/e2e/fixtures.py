"""Fixtures and fakes for end-to-end stack tests."""

import json
import logging
import os
from dataclasses import dataclass
from typing import List, Tuple

import pytest

from prstack.config import Config, default_config
from prstack.github import GitHubClient
from prstack.git import RealGit
from prstack.tests.e2e.fake_pygithub import FakeGithub, FakeRepository
from prstack.tests.utils import build_feature_repo, make_git, run_cmd

logger = logging.getLogger(__name__)


class FakeLLM:
    """Assigns every file it is asked about to one group."""

    def __init__(self, group: str = "Core") -> None:
        self.group = group
        self.calls: List[Tuple[str, str]] = []

    def complete(self, system: str, user: str) -> str:
        self.calls.append((system, user))
        paths = [line[2:].split(" ")[0] for line in user.splitlines()
                 if line.startswith("- ") and "candidate groups" in line]
        return json.dumps({
            "assignments": [{"path": p, "group": self.group, "reason": "test"} for p in paths],
            "shared_foundation": None,
        })


@dataclass
class StackEnv:
    repo: str
    remote: str
    base: str
    head: str
    config: Config
    git_cmd: RealGit
    fake_github: FakeGithub
    github: GitHubClient

    @property
    def fake_repo(self) -> FakeRepository:
        return self.fake_github.get_repo("acme/widgets")

    def remote_branches(self) -> List[str]:
        out = run_cmd("git for-each-ref --format='%(refname:short)' refs/heads", cwd=self.remote)
        return sorted(line for line in out.splitlines() if line)


@pytest.fixture
def stack_env(tmp_path) -> StackEnv:
    """Feature repository with a bare `origin` and a fake GitHub behind it."""
    repo, base, head = build_feature_repo(str(tmp_path / "teststack"))
    remote = str(tmp_path / "remote.git")
    run_cmd(f"git init -q --bare {remote}")
    run_cmd(f"git remote add origin {remote}", cwd=repo)
    run_cmd("git push -q origin main", cwd=repo)

    config = default_config()
    config.repo.github_repo_owner = "acme"
    config.repo.github_repo_name = "widgets"
    config.tool.state_dir = os.path.join(str(tmp_path), "state")
    fake = FakeGithub(remote_path=tmp_path / "remote.git")
    return StackEnv(
        repo=repo,
        remote=remote,
        base=base,
        head=head,
        config=config,
        git_cmd=make_git(repo, config),
        fake_github=fake,
        github=GitHubClient(config, fake),
    )
