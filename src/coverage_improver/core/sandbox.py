"""Isolated execution of untrusted repository code in a resource-capped Docker container."""

import json
import logging
import shutil
import subprocess
import tarfile
import tempfile
from pathlib import Path

from coverage_improver.core.errors import SandboxError
from coverage_improver.core.models import SandboxResult, SourceFile
from coverage_improver.core.settings import settings

logger = logging.getLogger(__name__)

SANDBOX_WORKSPACE = "/workspace/repo"


class DockerSandbox:
    """Runs the sandbox image's ``analyze`` and ``test`` entrypoints.

    Each run gets a fresh container started with ``--rm`` and the configured
    memory, CPU and wall-clock ceilings. Results come back through a bind
    mounted ``/output`` directory.
    """

    def __init__(
        self,
        image: str | None = None,
        timeout_seconds: int | None = None,
        memory: str | None = None,
        cpus: float | None = None,
    ):
        self.image = image or settings.sandbox_image
        self.timeout_seconds = timeout_seconds or settings.sandbox_timeout_seconds
        self.memory = memory or settings.sandbox_memory
        self.cpus = cpus or settings.sandbox_cpus

    def is_available(self) -> bool:
        try:
            result = subprocess.run(
                ["docker", "image", "inspect", self.image],
                capture_output=True,
                text=True,
                timeout=10,
            )
            return result.returncode == 0
        except (subprocess.TimeoutExpired, subprocess.SubprocessError, OSError):
            return False

    def _docker_run(self, mounts: list[str], action: str, repo_url: str, branch: str) -> str:
        args = ["docker", "run", "--rm", f"--memory={self.memory}", f"--cpus={self.cpus}"]
        for mount in mounts:
            args += ["-v", mount]
        args += [self.image, action, repo_url, branch]

        logger.info(f"Starting sandbox {action} for {repo_url} ({branch})")
        try:
            result = subprocess.run(args, capture_output=True, text=True, timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired as e:
            raise SandboxError(f"Sandbox {action} timed out after {self.timeout_seconds}s") from e
        except OSError as e:
            raise SandboxError(f"Could not start sandbox: {e}") from e

        logs = result.stdout + result.stderr
        if result.returncode != 0:
            logger.warning(f"Sandbox {action} exited with code {result.returncode}")
        return logs

    def run_analysis(self, repo_url: str, branch: str, work_dir: Path) -> SandboxResult:
        """Clone, install and test inside the sandbox, collecting coverage and sources.

        Sources are extracted to ``work_dir / "sources"`` so that the caller can
        scan them; the caller owns ``work_dir`` and removes it.
        """
        output_dir = work_dir / "output"
        output_dir.mkdir(parents=True, exist_ok=True)

        try:
            logs = self._docker_run([f"{output_dir}:/output:rw"], "analyze", repo_url, branch)
        except SandboxError as e:
            return SandboxResult(success=False, error=str(e))

        coverage_json = self._read_coverage_json(output_dir)
        sources_dir = self._extract_sources(output_dir, work_dir / "sources")
        source_files = self._read_source_files(sources_dir) if sources_dir else None

        success = coverage_json is not None or bool(source_files)
        return SandboxResult(
            success=success,
            coverage_json=coverage_json,
            source_files=source_files,
            sources_dir=sources_dir,
            logs=logs,
            error=None if success else "Sandbox produced neither coverage nor sources",
        )

    def run_tests(self, repo_url: str, branch: str, test_files: list[SourceFile]) -> SandboxResult:
        """Run the repository's tests with ``test_files`` overlaid onto the clone."""
        input_dir = Path(tempfile.mkdtemp(prefix="coverage_improver_input_"))
        output_dir = Path(tempfile.mkdtemp(prefix="coverage_improver_output_"))

        try:
            for test_file in test_files:
                target = input_dir / test_file.path
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(test_file.content, encoding="utf-8")

            try:
                logs = self._docker_run(
                    [f"{input_dir}:/input:ro", f"{output_dir}:/output:rw"], "test", repo_url, branch
                )
            except SandboxError as e:
                return SandboxResult(success=False, error=str(e))

            result_file = output_dir / "result.txt"
            tests_passed = result_file.exists() and "TESTS_PASSED=true" in result_file.read_text(encoding="utf-8")
            return SandboxResult(
                success=True,
                tests_passed=tests_passed,
                coverage_json=self._read_coverage_json(output_dir),
                logs=logs,
            )
        finally:
            shutil.rmtree(input_dir, ignore_errors=True)
            shutil.rmtree(output_dir, ignore_errors=True)

    def _read_coverage_json(self, output_dir: Path) -> dict | None:
        coverage_path = output_dir / "coverage" / "coverage-final.json"
        if not coverage_path.exists():
            return None
        try:
            return json.loads(coverage_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable sandbox coverage report: {e}")
            return None

    def _extract_sources(self, output_dir: Path, target_dir: Path) -> Path | None:
        tar_path = output_dir / "sources.tar"
        if not tar_path.exists():
            return None
        target_dir.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(tar_path, mode="r") as tar:
                members = [m for m in tar.getmembers() if m.isfile() and m.name.endswith(".ts")]
                tar.extractall(path=target_dir, members=members, filter="data")
        except tarfile.TarError as e:
            logger.warning(f"Could not extract sandbox sources: {e}")
            return None
        return target_dir

    def _read_source_files(self, sources_dir: Path) -> list[SourceFile]:
        return [
            SourceFile(path=path.relative_to(sources_dir).as_posix(), content=path.read_text(encoding="utf-8"))
            for path in sorted(sources_dir.rglob("*.ts"))
            if path.is_file()
        ]
