"""Rules deciding which working-copy changes an improvement job may commit."""

import re

from coverage_improver.core.reconciliation import IGNORED_DIRECTORIES

TEST_FILE_SUFFIXES = (".test.ts", ".spec.ts", ".test.js", ".spec.js")
SOURCE_CODE_SUFFIXES = (".ts", ".tsx", ".mts", ".cts", ".js", ".jsx", ".mjs", ".cjs")

_GROUPING_PATTERN = re.compile(r"\b(describe|it|test)\s*\(")
_ASSERTION_PATTERN = re.compile(r"\bexpect\s*\(")


def is_test_file(path: str) -> bool:
    return path.endswith(TEST_FILE_SUFFIXES)


def is_valid_test_content(content: str) -> bool:
    """Test content needs a describe/it/test block and at least one expect()."""
    return bool(_GROUPING_PATTERN.search(content)) and bool(_ASSERTION_PATTERN.search(content))


def is_pipeline_byproduct(path: str) -> bool:
    """Files that install and test runs are expected to touch.

    Lockfiles, manifests, coverage output and anything under build or
    dependency directories qualify. Source code outside those directories
    never does: a change there is a scope violation.
    """
    if any(part in IGNORED_DIRECTORIES for part in path.split("/")[:-1]):
        return True
    if is_test_file(path):
        return False
    return not path.endswith(SOURCE_CODE_SUFFIXES)
