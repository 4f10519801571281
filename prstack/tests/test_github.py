"""Tests for the GitHub client wrapper."""

from unittest.mock import patch

import pytest

from prstack.config import default_config
from prstack.github import GitHubClient, GitHubError, find_github_token
from prstack.tests.e2e.fake_pygithub import FakeGithub


def make_client() -> GitHubClient:
    config = default_config()
    config.repo.github_repo_owner = "acme"
    config.repo.github_repo_name = "widgets"
    return GitHubClient(config, FakeGithub())


class TestGitHubClient:
    def test_creates_draft_and_closes(self) -> None:
        client = make_client()
        pr = client.create_pull_request("Title", "Body", head="topic", base="main")
        assert pr.draft
        assert client.repo.pulls[pr.number].base.ref == "main"
        assert client.close_pull_request(pr.number)
        assert client.get_pull_request_state(pr.number) == "closed"

    def test_api_errors_become_github_errors(self) -> None:
        client = make_client()
        client.create_pull_request("Title", "Body", head="topic", base="main")
        with pytest.raises(GitHubError) as exc_info:
            client.create_pull_request("Again", "Body", head="topic", base="main")
        assert exc_info.value.status == 422
        assert "A pull request already exists for topic." in str(exc_info.value)

        with pytest.raises(GitHubError) as exc_info:
            client.update_pull_request_body(99, "x")
        assert exc_info.value.status == 404

    def test_missing_repo_config(self) -> None:
        client = GitHubClient(default_config(), FakeGithub())
        with pytest.raises(GitHubError):
            client.get_pull_request_state(1)


def test_token_from_environment(tmp_path) -> None:
    with patch.dict("os.environ", {"GITHUB_TOKEN": "abc"}, clear=True):
        assert find_github_token() == "abc"
    hosts = tmp_path / ".config" / "gh"
    hosts.mkdir(parents=True)
    (hosts / "hosts.yml").write_text("github.com:\n  oauth_token: from-gh\n")
    with patch.dict("os.environ", {}, clear=True), patch("pathlib.Path.home", return_value=tmp_path):
        assert find_github_token() == "from-gh"
