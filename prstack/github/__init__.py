"""GitHub access for publishing stacks.

Only the handful of pull request calls the publisher needs are modelled. Real
PyGithub objects are wrapped by `adapters`; tests pass fakes that satisfy the
same protocols.
"""

import os
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, TypeVar, runtime_checkable

import yaml
from github import GithubException

from ..config.models import PrstackConfig
from ..errors import StackError

logger = logging.getLogger(__name__)

T = TypeVar('T')


@runtime_checkable
class GitHubRefProtocol(Protocol):
    @property
    def ref(self) -> str: ...


@runtime_checkable
class GitHubPullRequestProtocol(Protocol):
    """A pull request as returned by the repository (real or fake)."""
    @property
    def number(self) -> int: ...

    @property
    def title(self) -> str: ...

    @property
    def body(self) -> str: ...

    @property
    def state(self) -> str: ...

    @property
    def html_url(self) -> str: ...

    @property
    def base(self) -> GitHubRefProtocol: ...

    @property
    def head(self) -> GitHubRefProtocol: ...

    def edit(self, title: Optional[str] = None, body: Optional[str] = None, state: Optional[str] = None,
             base: Optional[str] = None) -> None: ...


@runtime_checkable
class GitHubRepoProtocol(Protocol):
    def get_pull(self, number: int) -> GitHubPullRequestProtocol: ...

    def create_pull(self, title: str, body: str, base: str, head: str,
                    maintainer_can_modify: bool = True, draft: bool = False) -> GitHubPullRequestProtocol: ...


@runtime_checkable
class PyGithubProtocol(Protocol):
    def get_repo(self, full_name_or_id: str) -> GitHubRepoProtocol: ...


class GitHubError(StackError):
    """A GitHub API call failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def find_github_token() -> Optional[str]:
    """Token from GITHUB_TOKEN/GH_TOKEN, else from the gh CLI hosts file."""
    token = os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN")
    if token:
        return token

    hosts_path = Path.home() / ".config" / "gh" / "hosts.yml"
    if not hosts_path.exists():
        return None
    try:
        with open(hosts_path, "r") as f:
            hosts = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error reading gh CLI config: {e}")
        return None
    host: Dict[str, Any] = hosts.get("github.com") or {}
    token = host.get("oauth_token")
    return token if isinstance(token, str) else None


def _describe(e: GithubException) -> str:
    data = e.data if isinstance(e.data, dict) else {}
    message = str(data.get("message") or e)
    details = [str(err.get("message")) for err in data.get("errors") or [] if isinstance(err, dict) and err.get("message")]
    if details:
        message = f"{message}: {'; '.join(details)}"
    return f"{message} (HTTP {e.status})"


class GitHubClient:
    """Pull request operations on the configured repository.

    PyGithub errors surface as GitHubError so callers can record them per item.
    """
    def __init__(self, config: PrstackConfig, github_client: PyGithubProtocol):
        self.config = config
        self.client = github_client
        self._repo: Optional[GitHubRepoProtocol] = None

    @property
    def repo(self) -> GitHubRepoProtocol:
        if self._repo is None:
            owner = self.config.repo.github_repo_owner
            name = self.config.repo.github_repo_name
            if not owner or not name:
                raise GitHubError("GitHub repo owner/name not configured; check the git remote or .prstack.yaml")
            self._repo = self._call(f"get repo {owner}/{name}", lambda: self.client.get_repo(f"{owner}/{name}"))
        return self._repo

    def _call(self, what: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except GithubException as e:
            raise GitHubError(f"github {what} failed: {_describe(e)}", status=e.status) from e

    def create_pull_request(self, title: str, body: str, head: str, base: str,
                            draft: bool = True) -> GitHubPullRequestProtocol:
        logger.info(f"> github create {head} -> {base} : {title}")
        repo = self.repo
        return self._call(f"create {head}", lambda: repo.create_pull(
            title=title, body=body, base=base, head=head, draft=draft))

    def update_pull_request_body(self, number: int, body: str) -> None:
        logger.info(f"> github update #{number}")
        pr = self._get_pull(number)
        self._call(f"update #{number}", lambda: pr.edit(body=body))

    def get_pull_request_state(self, number: int) -> str:
        return self._get_pull(number).state

    def close_pull_request(self, number: int) -> bool:
        """Close a pull request. Returns True once GitHub reports it closed."""
        logger.info(f"> github close #{number}")
        pr = self._get_pull(number)
        if pr.state != "closed":
            self._call(f"close #{number}", lambda: pr.edit(state="closed"))
        return self.get_pull_request_state(number) == "closed"

    def _get_pull(self, number: int) -> GitHubPullRequestProtocol:
        repo = self.repo
        return self._call(f"get #{number}", lambda: repo.get_pull(number))
