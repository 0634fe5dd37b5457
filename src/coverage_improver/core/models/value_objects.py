"""Immutable, self-validating primitives shared by the entities."""

import math
import re

from pydantic import BaseModel, ConfigDict, field_validator

from coverage_improver.core.errors import InvalidValueError

SOURCE_EXTENSION = ".ts"
TEST_SUFFIXES = (".test.ts", ".spec.ts")

PR_URL_PATTERN = re.compile(r"^https://github\.com/([\w.-]+)/([\w.-]+)/pull/(\d+)$")


class CoveragePercentage(BaseModel):
    """A coverage percentage in [0, 100], rounded to two decimals."""

    model_config = ConfigDict(frozen=True)

    value: float

    @field_validator("value", mode="before")
    @classmethod
    def validate_value(cls, v: float) -> float:
        if isinstance(v, bool) or not isinstance(v, int | float):
            raise InvalidValueError(f"Coverage percentage must be a number, got {v!r}")
        if not math.isfinite(v) or v < 0 or v > 100:
            raise InvalidValueError(f"Coverage percentage must be between 0 and 100, got {v}")
        return round(float(v), 2)

    @classmethod
    def create(cls, value: float) -> "CoveragePercentage":
        return cls(value=value)

    def is_below(self, threshold: float) -> bool:
        return self.value < threshold

    def is_above(self, threshold: float) -> bool:
        return self.value > threshold

    def __str__(self) -> str:
        return f"{self.value}%"


class FilePath(BaseModel):
    """Repository-relative path of a TypeScript source file that is not itself a test."""

    model_config = ConfigDict(frozen=True)

    value: str

    @field_validator("value", mode="before")
    @classmethod
    def validate_value(cls, v: str) -> str:
        if not isinstance(v, str) or not v.strip():
            raise InvalidValueError("File path cannot be empty")

        normalized = v.strip().replace("\\", "/")
        if not normalized.endswith(SOURCE_EXTENSION):
            raise InvalidValueError(f"Only TypeScript files are supported: {normalized}")
        if normalized.endswith(TEST_SUFFIXES):
            raise InvalidValueError(f"Cannot improve coverage for test files: {normalized}")
        return normalized

    @classmethod
    def create(cls, value: str) -> "FilePath":
        return cls(value=value)

    @property
    def file_name(self) -> str:
        return self.value.rsplit("/", 1)[-1]

    @property
    def directory(self) -> str:
        if "/" not in self.value:
            return ""
        return self.value.rsplit("/", 1)[0]

    @property
    def test_file_path(self) -> str:
        """Conventional sibling test file, e.g. ``src/a.ts`` -> ``src/a.test.ts``."""
        return self.value[: -len(SOURCE_EXTENSION)] + ".test.ts"

    def __str__(self) -> str:
        return self.value


class GitHubPrUrl(BaseModel):
    """URL of a pull request on github.com."""

    model_config = ConfigDict(frozen=True)

    value: str

    @field_validator("value", mode="before")
    @classmethod
    def validate_value(cls, v: str) -> str:
        if not isinstance(v, str) or not PR_URL_PATTERN.match(v.strip()):
            raise InvalidValueError(f"Invalid GitHub pull request URL: {v}")
        return v.strip()

    @classmethod
    def create(cls, value: str) -> "GitHubPrUrl":
        return cls(value=value)

    @property
    def pr_number(self) -> int:
        match = PR_URL_PATTERN.match(self.value)
        assert match is not None
        return int(match.group(3))

    @property
    def repository_path(self) -> str:
        """``owner/name`` of the repository the pull request belongs to."""
        match = PR_URL_PATTERN.match(self.value)
        assert match is not None
        return f"{match.group(1)}/{match.group(2)}"

    def __str__(self) -> str:
        return self.value
