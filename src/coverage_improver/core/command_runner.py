"""Package manager detection and test execution for cloned TypeScript projects."""

import json
import logging
import os
import subprocess
from enum import Enum
from pathlib import Path

from coverage_improver.core.errors import CommandError
from coverage_improver.core.models import CommandResult
from coverage_improver.core.settings import settings

logger = logging.getLogger(__name__)

COVERAGE_FLAGS = [
    "--coverage",
    "--collectCoverage=true",
    "--coverageDirectory=./coverage",
    "--coverageReporters=text",
    "--coverageReporters=json",
    "--coverageReporters=lcov",
    "--passWithNoTests",
    "--no-cache",
    "--forceExit",
]


class PackageManager(str, Enum):
    NPM = "npm"
    YARN = "yarn"
    PNPM = "pnpm"


class TestFramework(str, Enum):
    __test__ = False

    VITEST = "vitest"
    JEST = "jest"


class CommandRunner:
    """Runs install and test commands inside a project directory."""

    def __init__(self, timeout_seconds: int | None = None):
        self.timeout_seconds = timeout_seconds or settings.command_timeout_seconds

    def detect_package_manager(self, work_dir: Path) -> PackageManager:
        if (work_dir / "pnpm-lock.yaml").exists():
            return PackageManager.PNPM
        if (work_dir / "yarn.lock").exists():
            return PackageManager.YARN
        return PackageManager.NPM

    def install_dependencies(self, work_dir: Path, package_manager: PackageManager | None = None) -> CommandResult:
        """Install dependencies including dev dependencies, skipping lifecycle scripts."""
        pm = package_manager or self.detect_package_manager(work_dir)

        if pm == PackageManager.PNPM:
            args = ["pnpm", "install", "--ignore-scripts", "--dev"]
        elif pm == PackageManager.YARN:
            args = ["yarn", "install", "--ignore-scripts", "--production=false"]
        else:
            args = ["npm", "install", "--ignore-scripts", "--include=dev"]

        return self.execute(args, work_dir)

    def run_tests_with_coverage(
        self,
        work_dir: Path,
        package_manager: PackageManager | None = None,
        has_test_script: bool = True,
    ) -> CommandResult:
        """Run the project's tests with coverage written to ``work_dir/coverage``.

        Without a test script the detected framework is invoked through npx;
        with no framework at all an empty result is returned.
        """
        pm = package_manager or self.detect_package_manager(work_dir)

        if not has_test_script:
            framework = self.detect_test_framework(work_dir)
            logger.debug(f"Detected test framework: {framework}")
            if framework == TestFramework.VITEST:
                return self.execute(["npx", "vitest", "run", *COVERAGE_FLAGS], work_dir)
            if framework == TestFramework.JEST:
                return self.execute(["npx", "jest", *COVERAGE_FLAGS], work_dir)
            return CommandResult(stdout="", stderr="No test framework configured", exit_code=0)

        if pm == PackageManager.YARN:
            return self.execute(["yarn", "test", *COVERAGE_FLAGS], work_dir)
        return self.execute([pm.value, "test", "--", *COVERAGE_FLAGS], work_dir)

    def detect_test_framework(self, work_dir: Path) -> TestFramework | None:
        package_json = work_dir / "package.json"
        if not package_json.exists():
            return None

        try:
            manifest = json.loads(package_json.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return None

        dependencies = {**(manifest.get("dependencies") or {}), **(manifest.get("devDependencies") or {})}
        if "vitest" in dependencies:
            return TestFramework.VITEST
        if "jest" in dependencies or "@jest/core" in dependencies:
            return TestFramework.JEST

        if any((work_dir / name).exists() for name in ("vitest.config.ts", "vitest.config.js")):
            return TestFramework.VITEST
        if any((work_dir / name).exists() for name in ("jest.config.ts", "jest.config.js")):
            return TestFramework.JEST
        return None

    def execute(self, args: list[str], work_dir: Path, timeout_seconds: int | None = None) -> CommandResult:
        """Run ``args`` in ``work_dir`` non-interactively and capture its output.

        Raises:
            CommandError: If the command cannot be started or exceeds its timeout
        """
        timeout = timeout_seconds or self.timeout_seconds
        env = {**os.environ, "CI": "true", "FORCE_COLOR": "0"}
        logger.debug(f"Running {' '.join(args)} in {work_dir}")

        try:
            result = subprocess.run(
                args,
                cwd=work_dir,
                env=env,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandError(args, -1, f"Command timed out after {timeout}s") from e
        except OSError as e:
            raise CommandError(args, -1, str(e)) from e

        return CommandResult(stdout=result.stdout, stderr=result.stderr, exit_code=result.returncode)
