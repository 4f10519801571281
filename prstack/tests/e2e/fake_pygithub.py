"""Fake PyGithub implementation for testing."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Set

from github import GithubException

from prstack.util import ensure

logger = logging.getLogger(__name__)


@dataclass
class FakeRef:
    """Fake implementation of the Ref class from PyGithub."""
    ref: str


@dataclass
class FakePullRequestData:
    """Database record for a pull request."""
    number: int
    title: str
    body: str
    state: str
    draft: bool
    base_ref: str
    head_ref: str
    html_url: str


@dataclass
class FakePullRequest:
    """API response object for a pull request."""
    data_record: FakePullRequestData
    maybe_repo: Any = field(default=None, repr=False)

    @property
    def _repo(self) -> 'FakeRepository':
        return ensure(self.maybe_repo)

    @property
    def number(self) -> int:
        return self.data_record.number

    @property
    def title(self) -> str:
        return self.data_record.title

    @property
    def body(self) -> str:
        return self.data_record.body

    @property
    def state(self) -> str:
        return self.data_record.state

    @property
    def draft(self) -> bool:
        return self.data_record.draft

    @property
    def html_url(self) -> str:
        return self.data_record.html_url

    @property
    def base(self) -> FakeRef:
        return FakeRef(self.data_record.base_ref)

    @property
    def head(self) -> FakeRef:
        return FakeRef(self.data_record.head_ref)

    def edit(self, title: Optional[str] = None, body: Optional[str] = None, state: Optional[str] = None,
             base: Optional[str] = None) -> None:
        repo = self._repo
        if state == "closed" and self.number in repo.fail_close:
            raise GithubException(500, {"message": "close failed"}, None)
        if body is not None and self.number in repo.fail_update:
            raise GithubException(500, {"message": "update failed"}, None)
        if title is not None:
            self.data_record.title = title
        if body is not None:
            self.data_record.body = body
        if state is not None and self.number not in repo.ignore_close:
            self.data_record.state = state
        if base is not None:
            self.data_record.base_ref = base


@dataclass
class FakeRepository:
    """Fake implementation of the Repository class from PyGithub."""
    full_name: str
    remote_path: Optional[Path] = None
    next_pr_number: int = 1
    pulls: Dict[int, FakePullRequest] = field(default_factory=dict)
    # Failure injection
    fail_create_heads: Set[str] = field(default_factory=set)
    fail_update: Set[int] = field(default_factory=set)
    fail_close: Set[int] = field(default_factory=set)
    ignore_close: Set[int] = field(default_factory=set)

    def get_pull(self, number: int) -> FakePullRequest:
        if number not in self.pulls:
            raise GithubException(404, {"message": "Not Found"}, None)
        return self.pulls[number]

    def _ref_exists(self, branch: str) -> bool:
        if self.remote_path is None:
            return True
        result = subprocess.run(["git", "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"],
                                cwd=str(self.remote_path), capture_output=True, text=True)
        return result.returncode == 0

    def create_pull(self, title: str, body: str, base: str, head: str,
                    maintainer_can_modify: bool = True, draft: bool = False) -> FakePullRequest:
        """Create a new pull request."""
        if head in self.fail_create_heads:
            raise GithubException(502, {"message": "Bad Gateway"}, None)
        for pr in self.pulls.values():
            if pr.head.ref == head and pr.state == "open":
                raise GithubException(422, {
                    "message": "Validation Failed",
                    "errors": [{"resource": "PullRequest", "code": "custom",
                                "message": f"A pull request already exists for {head}."}],
                }, None)
        for branch in (head, base):
            if not self._ref_exists(branch):
                raise GithubException(422, {"message": f"Reference {branch} does not exist"}, None)

        number = self.next_pr_number
        self.next_pr_number += 1
        pr = FakePullRequest(FakePullRequestData(
            number=number,
            title=title,
            body=body,
            state="open",
            draft=draft,
            base_ref=base,
            head_ref=head,
            html_url=f"https://github.com/{self.full_name}/pull/{number}",
        ), maybe_repo=self)
        self.pulls[number] = pr
        logger.debug(f"Created PR #{number} in repo {self.full_name}")
        return pr


class FakeGithub:
    """Fake implementation of the Github class from PyGithub."""

    def __init__(self, remote_path: Optional[Path] = None) -> None:
        self.remote_path = remote_path
        self.repositories: Dict[str, FakeRepository] = {}

    def get_repo(self, full_name_or_id: str) -> FakeRepository:
        """Get repository by full name, creating it on first use."""
        if full_name_or_id not in self.repositories:
            self.repositories[full_name_or_id] = FakeRepository(
                full_name=full_name_or_id, remote_path=self.remote_path)
        return self.repositories[full_name_or_id]
