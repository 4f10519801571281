"""Wrap PyGithub objects so they satisfy the protocols in this package."""

from typing import Any, Dict, Optional

from github import Github
from github.GithubObject import NotSet
from github.PullRequest import PullRequest as PyGithubPullRequest
from github.Repository import Repository

from . import GitHubPullRequestProtocol, GitHubRefProtocol, GitHubRepoProtocol, PyGithubProtocol


class PyGithubPullRequestAdapter(GitHubPullRequestProtocol):
    def __init__(self, pr: PyGithubPullRequest) -> None:
        self._pr = pr

    @property
    def number(self) -> int:
        return self._pr.number

    @property
    def title(self) -> str:
        return self._pr.title

    @property
    def body(self) -> str:
        # PyGithub returns None for an empty body
        return self._pr.body or ""

    @property
    def state(self) -> str:
        return self._pr.state

    @property
    def html_url(self) -> str:
        return self._pr.html_url

    @property
    def base(self) -> GitHubRefProtocol:
        return self._pr.base

    @property
    def head(self) -> GitHubRefProtocol:
        return self._pr.head

    def edit(self, title: Optional[str] = None, body: Optional[str] = None,
             state: Optional[str] = None, base: Optional[str] = None) -> None:
        """Forward only the fields that were given; PyGithub wants NotSet for the rest."""
        fields: Dict[str, Any] = {"title": title, "body": body, "state": state, "base": base}
        self._pr.edit(**{k: NotSet if v is None else v for k, v in fields.items()})


class PyGithubRepoAdapter(GitHubRepoProtocol):
    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def get_pull(self, number: int) -> GitHubPullRequestProtocol:
        return PyGithubPullRequestAdapter(self._repo.get_pull(number))

    def create_pull(self, title: str, body: str, base: str, head: str,
                    maintainer_can_modify: bool = True, draft: bool = False) -> GitHubPullRequestProtocol:
        pr = self._repo.create_pull(base=base, head=head, title=title, body=body,
                                    maintainer_can_modify=maintainer_can_modify, draft=draft)
        return PyGithubPullRequestAdapter(pr)


class PyGithubAdapter(PyGithubProtocol):
    """Entry point: wraps an authenticated `github.Github`."""

    def __init__(self, github: Github) -> None:
        self._github = github

    def get_repo(self, full_name_or_id: str) -> GitHubRepoProtocol:
        return PyGithubRepoAdapter(self._github.get_repo(full_name_or_id))
