"""Results exchanged with external collaborators: processes, sandbox, AI and hosting API."""

from pathlib import Path

from pydantic import BaseModel, Field


class CommandResult(BaseModel):
    """Captured output of a finished subprocess."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class ProjectDirectory(BaseModel):
    """Directory holding the package.json that drives install and test."""

    path: Path
    has_test_script: bool


class SourceFile(BaseModel):
    path: str
    content: str


class SandboxResult(BaseModel):
    """Outcome of a sandboxed analysis or test run."""

    success: bool
    tests_passed: bool = False
    coverage_json: dict | None = None
    source_files: list[SourceFile] | None = None
    sources_dir: Path | None = Field(default=None, description="Directory where source files were extracted")
    logs: str = ""
    error: str | None = None


class TargetFile(BaseModel):
    """One source file the AI provider should write tests for."""

    file_path: str
    file_content: str
    uncovered_lines: list[int] = Field(default_factory=list)


class TestGenerationRequest(BaseModel):
    """Everything an AI provider needs to extend the test suite."""

    __test__ = False

    files: list[TargetFile]
    project_dir: Path
    existing_test_path: str | None = None


class TestGenerationResult(BaseModel):
    """Transcript of an agentic generation call, plus any file it reported writing."""

    __test__ = False

    transcript: str = ""
    test_file_path: str | None = None
    test_content: str | None = None


class BranchInfo(BaseModel):
    name: str
    is_default: bool = False


class RepositoryInfo(BaseModel):
    owner: str
    name: str
    full_name: str
    default_branch: str
    private: bool = False
    url: str


class PullRequestInfo(BaseModel):
    number: int
    url: str
    title: str
