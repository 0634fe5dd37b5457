"""Git operations on per-job working copies: clone, branch, diff, commit and push."""

import logging
import re
import shutil
import subprocess
import time
from pathlib import Path
from uuid import uuid4

from coverage_improver.core.errors import CommandError
from coverage_improver.core.settings import settings

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "improve-coverage"


class GitService:
    """Runs git against clones that live under the configured temp directory."""

    def __init__(
        self,
        token: str | None = None,
        temp_dir: Path | None = None,
        timeout_seconds: int | None = None,
    ):
        self.token = settings.github_token if token is None else token
        self.temp_dir = temp_dir or settings.resolved_temp_dir
        self.timeout_seconds = timeout_seconds or settings.command_timeout_seconds

    def _run(self, args: list[str], cwd: Path | None = None, check: bool = True) -> subprocess.CompletedProcess:
        command = ["git", *args]
        try:
            result = subprocess.run(
                command,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandError(self._mask(command), -1, f"git timed out after {self.timeout_seconds}s") from e

        if check and result.returncode != 0:
            raise CommandError(self._mask(command), result.returncode, self._mask_text(result.stderr))
        return result

    def _mask_text(self, text: str) -> str:
        if self.token:
            return text.replace(self.token, "***")
        return text

    def _mask(self, command: list[str]) -> list[str]:
        return [self._mask_text(part) for part in command]

    def authenticated_url(self, repo_url: str) -> str:
        if self.token and repo_url.startswith("https://github.com"):
            return repo_url.replace("https://github.com", f"https://{self.token}@github.com", 1)
        return repo_url

    def clone(self, repo_url: str, target_dir: Path, branch: str | None = None) -> None:
        """Clone ``repo_url`` into ``target_dir``, limited to ``branch`` when given.

        Raises:
            CommandError: If git clone fails
        """
        target_dir.parent.mkdir(parents=True, exist_ok=True)
        args = ["clone"]
        if branch:
            args += ["--branch", branch, "--single-branch"]
        args += [self.authenticated_url(repo_url), str(target_dir)]

        logger.info(f"Cloning {repo_url} ({branch or 'default branch'}) into {target_dir}")
        self._run(args)

    def create_branch(self, work_dir: Path, branch_name: str) -> None:
        self._run(["checkout", "-b", branch_name], cwd=work_dir)

    def get_changed_files(self, work_dir: Path) -> list[str]:
        """Union of unstaged, staged and untracked paths relative to the repository root."""
        outputs = [
            self._run(["diff", "--name-only", "HEAD"], cwd=work_dir).stdout,
            self._run(["diff", "--name-only", "--cached"], cwd=work_dir).stdout,
            self._run(["ls-files", "--others", "--exclude-standard"], cwd=work_dir).stdout,
        ]

        changed: dict[str, None] = {}
        for output in outputs:
            for line in output.splitlines():
                if line.strip():
                    changed[line.strip()] = None
        return list(changed)

    def restore_files(self, work_dir: Path, files: list[str]) -> None:
        """Revert tracked files to HEAD and delete untracked ones."""
        for file in files:
            result = self._run(["checkout", "--", file], cwd=work_dir, check=False)
            if result.returncode != 0:
                (work_dir / file).unlink(missing_ok=True)
                logger.debug(f"Removed untracked file {file}")
            else:
                logger.debug(f"Restored {file} to HEAD")

    def commit_and_push(self, work_dir: Path, branch: str, message: str, files: list[str]) -> None:
        """Commit exactly ``files`` and push ``branch`` to origin.

        Raises:
            CommandError: If staging, committing or pushing fails
        """
        self._run(["config", "user.email", settings.git_author_email], cwd=work_dir)
        self._run(["config", "user.name", settings.git_author_name], cwd=work_dir)
        self._run(["add", "--", *files], cwd=work_dir)
        self._run(["commit", "-m", message], cwd=work_dir)
        self._run(["push", "--set-upstream", "origin", branch], cwd=work_dir)
        logger.info(f"Pushed {len(files)} files to {branch}")

    def cleanup_work_dir(self, work_dir: Path) -> None:
        if work_dir.exists():
            shutil.rmtree(work_dir, ignore_errors=True)

    def generate_branch_name(self, label: str) -> str:
        """Unique branch name from a file path or batch label plus a millisecond timestamp."""
        base = label.rsplit("/", 1)[-1]
        if base.endswith(".ts"):
            base = base[: -len(".ts")]
        base = re.sub(r"[^A-Za-z0-9._-]+", "-", base).strip("-.") or "file"
        return f"{BRANCH_PREFIX}/{base}-{int(time.time() * 1000)}-{uuid4().hex[:6]}"

    def get_temp_dir(self, job_id: str) -> Path:
        return self.temp_dir / f"job-{job_id}"
