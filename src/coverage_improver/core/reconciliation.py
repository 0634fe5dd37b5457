"""Merge a parsed coverage report with a scan of the source tree.

Coverage tools only report files that tests actually imported. Files that
were never loaded, or that hold no executable statements, are missing from
the report; reconciliation adds them back as 0% entries so they surface as
needing improvement.
"""

import logging
import os
from pathlib import Path

from coverage_improver.core.coverage_parser import is_reportable_source, sort_worst_first
from coverage_improver.core.models import CoverageReport, FileCoverage

logger = logging.getLogger(__name__)

IGNORED_DIRECTORIES = frozenset(
    {"node_modules", ".git", "dist", "build", "coverage", ".next", ".nuxt", "__mocks__"}
)


def find_source_files(root: Path) -> list[str]:
    """Return every TypeScript source file under ``root`` as a sorted, ``/``-separated relative path."""
    found: list[str] = []

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_DIRECTORIES)
        for filename in filenames:
            if is_reportable_source(filename):
                relative = Path(dirpath, filename).relative_to(root)
                found.append(relative.as_posix())

    return sorted(found)


def synthetic_uncovered_entry(path: str) -> FileCoverage:
    return FileCoverage(path=path, lines_covered=0, lines_total=1, percentage=0.0, uncovered_lines=[1])


def reconcile(report: CoverageReport, source_root: Path) -> CoverageReport:
    """Union ``report`` with the files found under ``source_root``.

    Aggregate coverage is recomputed over the union and is 0 when the union
    has no lines at all. The returned files are sorted worst-first.
    """
    files = list(report.files)
    reported_paths = {f.path for f in files}

    missing = [path for path in find_source_files(source_root) if path not in reported_paths]
    if missing:
        logger.info(f"Adding {len(missing)} source files absent from the coverage report")
    files.extend(synthetic_uncovered_entry(path) for path in missing)

    total_covered = sum(f.lines_covered for f in files)
    total_lines = sum(f.lines_total for f in files)
    total_coverage = round(total_covered / total_lines * 100, 2) if total_lines > 0 else 0.0

    return CoverageReport(files=sort_worst_first(files), total_coverage=total_coverage)


def count_below_threshold(report: CoverageReport, threshold: float) -> int:
    return sum(1 for f in report.files if f.percentage < threshold)
