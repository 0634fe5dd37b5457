"""Exception hierarchy for coverage-improver."""

from pathlib import Path


class CoverageImproverError(Exception):
    """Base class for all coverage-improver errors."""


class InvalidValueError(CoverageImproverError):
    """Raised when a value object or identifier fails validation."""


class JobStateError(CoverageImproverError):
    """Raised when an entity is mutated in a state that does not allow it."""


class InvalidStatusTransitionError(JobStateError):
    """Raised when a job or coverage file is moved along an illegal status edge."""

    def __init__(self, current: str, target: str):
        self.current = str(current)
        self.target = str(target)
        super().__init__(f"Invalid status transition from {self.current} to {self.target}")


class CoverageFileNotFoundError(CoverageImproverError):
    """Raised when neither an Istanbul JSON nor an LCOV report exists."""

    def __init__(self, directory: Path):
        self.directory = directory
        super().__init__(f"No coverage file found in {directory}")


class ScopeViolationError(CoverageImproverError):
    """Raised when generated changes touch files other than tests."""

    def __init__(self, files: list[str]):
        self.files = files
        super().__init__(f"Invalid files modified (only test files allowed): {', '.join(files)}")


class TestGenerationError(CoverageImproverError):
    """Raised when the AI provider did not produce usable test files."""

    __test__ = False


class CommandError(CoverageImproverError):
    """Raised when a required external command exits unsuccessfully."""

    def __init__(self, command: list[str], exit_code: int, stderr: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
        super().__init__(f"Command '{' '.join(command[:3])}' failed with exit code {exit_code}: {detail}")


class SandboxError(CoverageImproverError):
    """Raised when the isolated execution environment fails or times out."""


class AIProviderError(CoverageImproverError):
    """Raised when an AI provider is unknown or cannot be invoked."""


class NotFoundError(CoverageImproverError):
    """Raised when a referenced repository, file or job does not exist."""


class ConflictError(CoverageImproverError):
    """Raised when a request conflicts with work already queued or running."""


class JobCancelledError(CoverageImproverError):
    """Raised inside a running job once it has been cancelled externally."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} was cancelled")
