"""Tests for the PyGithub wrapper."""

from unittest.mock import MagicMock, patch

import pytest
from github import GithubException

from coverage_improver.core.errors import CommandError, NotFoundError
from coverage_improver.core.github_client import GitHubApiClient


@pytest.fixture
def gh_repo():
    repo = MagicMock()
    repo.owner.login = "acme"
    repo.name = "widgets"
    repo.full_name = "acme/widgets"
    repo.default_branch = "develop"
    repo.private = False
    repo.html_url = "https://github.com/acme/widgets"
    return repo


@pytest.fixture
def client(gh_repo):
    with patch("coverage_improver.core.github_client.Github") as mock_github:
        mock_github.return_value.get_repo.return_value = gh_repo
        yield GitHubApiClient(token="ghp_test")


def _branch(name: str) -> MagicMock:
    branch = MagicMock()
    branch.name = name
    return branch


class TestGitHubApiClient:
    def test_get_repo_info__maps_repository_fields(self, client):
        info = client.get_repo_info("acme", "widgets")

        assert info.full_name == "acme/widgets"
        assert info.default_branch == "develop"
        assert info.url == "https://github.com/acme/widgets"

    def test_get_repo_info__raises_not_found_for_404(self, client):
        client._github.get_repo.side_effect = GithubException(404, {"message": "Not Found"}, None)

        with pytest.raises(NotFoundError, match="acme/missing"):
            client.get_repo_info("acme", "missing")

    def test_list_branches__flags_default_branch(self, client, gh_repo):
        gh_repo.get_branches.return_value = [_branch("main"), _branch("develop")]

        branches = client.list_branches("acme", "widgets")

        assert [(b.name, b.is_default) for b in branches] == [("main", False), ("develop", True)]

    def test_branch_exists__false_for_404(self, client, gh_repo):
        gh_repo.get_branch.side_effect = GithubException(404, {"message": "Branch not found"}, None)

        assert client.branch_exists("acme", "widgets", "nope") is False

    def test_create_pull_request__returns_pull_request_info(self, client, gh_repo):
        pull = MagicMock(number=42, html_url="https://github.com/acme/widgets/pull/42", title="Add tests")
        gh_repo.create_pull.return_value = pull

        info = client.create_pull_request("acme", "widgets", "Add tests", "body", "coverage/x", "main")

        gh_repo.create_pull.assert_called_once_with(title="Add tests", body="body", head="coverage/x", base="main")
        assert info.number == 42
        assert info.url == "https://github.com/acme/widgets/pull/42"

    def test_create_pull_request__wraps_rejection(self, client, gh_repo):
        gh_repo.create_pull.side_effect = GithubException(422, {"message": "Validation Failed"}, None)

        with pytest.raises(CommandError, match="exit code 422"):
            client.create_pull_request("acme", "widgets", "Add tests", "body", "coverage/x", "main")
