"""GitHub REST API access through PyGithub."""

import logging

from github import Github, GithubException

from coverage_improver.core.errors import CommandError, NotFoundError
from coverage_improver.core.models import BranchInfo, PullRequestInfo, RepositoryInfo
from coverage_improver.core.settings import settings

logger = logging.getLogger(__name__)


class GitHubApiClient:
    """Thin wrapper over the PyGithub calls the improvement pipeline needs."""

    def __init__(self, token: str | None = None):
        token = settings.github_token if token is None else token
        self._github = Github(token) if token else Github()

    def _get_repo(self, owner: str, repo: str):
        try:
            return self._github.get_repo(f"{owner}/{repo}")
        except GithubException as e:
            if e.status == 404:
                raise NotFoundError(f"Repository not found: {owner}/{repo}") from e
            raise

    def get_repo_info(self, owner: str, repo: str) -> RepositoryInfo:
        gh_repo = self._get_repo(owner, repo)
        return RepositoryInfo(
            owner=gh_repo.owner.login,
            name=gh_repo.name,
            full_name=gh_repo.full_name,
            default_branch=gh_repo.default_branch,
            private=gh_repo.private,
            url=gh_repo.html_url,
        )

    def list_branches(self, owner: str, repo: str) -> list[BranchInfo]:
        gh_repo = self._get_repo(owner, repo)
        default_branch = gh_repo.default_branch
        return [
            BranchInfo(name=branch.name, is_default=branch.name == default_branch)
            for branch in gh_repo.get_branches()
        ]

    def branch_exists(self, owner: str, repo: str, branch: str) -> bool:
        gh_repo = self._get_repo(owner, repo)
        try:
            gh_repo.get_branch(branch)
            return True
        except GithubException as e:
            if e.status == 404:
                return False
            raise

    def create_pull_request(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> PullRequestInfo:
        """Open a pull request from ``head`` into ``base``.

        Raises:
            CommandError: If GitHub rejects the pull request
        """
        gh_repo = self._get_repo(owner, repo)
        try:
            pull_request = gh_repo.create_pull(title=title, body=body, head=head, base=base)
        except GithubException as e:
            raise CommandError(["github", "create_pull", head], e.status, str(e.data)) from e

        logger.info(f"Created pull request #{pull_request.number}: {pull_request.html_url}")
        return PullRequestInfo(number=pull_request.number, url=pull_request.html_url, title=pull_request.title)
