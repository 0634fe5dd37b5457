"""Tracked GitHub repository aggregate."""

import re
from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from coverage_improver.core.errors import InvalidValueError

GITHUB_URL_PATTERN = re.compile(r"github\.com[/:](.+?)/(.+?)(?:\.git)?/?$")


def parse_github_url(url: str) -> tuple[str, str]:
    """Split a GitHub HTTPS or SSH URL into ``(owner, name)``."""
    if not url or not url.strip():
        raise InvalidValueError("Repository URL cannot be empty")

    url = url.strip()
    if "github.com" not in url:
        raise InvalidValueError(f"Only GitHub repositories are supported: {url}")

    match = GITHUB_URL_PATTERN.search(url)
    if not match or "/" in match.group(1) or "/" in match.group(2):
        raise InvalidValueError(f"Invalid GitHub repository URL: {url}")
    return match.group(1), match.group(2)


class GitHubRepo(BaseModel):
    """A GitHub repository whose coverage is tracked."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    url: str
    owner: str
    name: str
    branch: str = "main"
    default_branch: str = "main"
    last_analyzed_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def from_url(cls, url: str, branch: str = "main") -> "GitHubRepo":
        owner, name = parse_github_url(url)
        return cls(
            url=f"https://github.com/{owner}/{name}",
            owner=owner,
            name=name,
            branch=branch,
            default_branch=branch,
        )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def clone_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.name}.git"

    def mark_as_analyzed(self) -> None:
        self.last_analyzed_at = datetime.now()
