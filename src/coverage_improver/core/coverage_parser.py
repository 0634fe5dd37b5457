"""Parsing of Istanbul JSON and LCOV coverage reports for TypeScript projects."""

import json
import logging
from pathlib import Path

from coverage_improver.core.errors import CoverageFileNotFoundError
from coverage_improver.core.models import CoverageReport, FileCoverage

logger = logging.getLogger(__name__)

ISTANBUL_FILE = "coverage-final.json"
LCOV_FILE = "lcov.info"
SOURCE_ROOT_MARKERS = ("/src/", "/lib/", "/app/")
NON_SOURCE_SUFFIXES = (".spec.ts", ".test.ts", ".d.ts")


def percentage(covered: int, total: int) -> float:
    """Covered share of ``total`` in percent, 100 when there is nothing to cover."""
    if total == 0:
        return 100.0
    return round(covered / total * 100, 2)


def is_reportable_source(path: str) -> bool:
    return path.endswith(".ts") and not path.endswith(NON_SOURCE_SUFFIXES)


def sort_worst_first(files: list[FileCoverage]) -> list[FileCoverage]:
    return sorted(files, key=lambda f: f.percentage)


class CoverageParser:
    """Converts on-disk coverage reports into a normalized CoverageReport.

    Coverage tools emit absolute paths rooted wherever the tests ran, so
    every reported path is normalized against the configured project root,
    or failing that against the rightmost conventional source directory.
    """

    def __init__(self, project_root: Path | str | None = None):
        self.project_root: str | None = None
        if project_root is not None:
            self.set_project_root(project_root)

    def set_project_root(self, project_root: Path | str) -> None:
        self.project_root = str(project_root).replace("\\", "/").rstrip("/")

    def parse(self, directory: Path) -> CoverageReport:
        """Parse the report found in ``directory``, preferring Istanbul JSON over LCOV.

        Raises:
            CoverageFileNotFoundError: If neither report file exists
        """
        istanbul_path = directory / ISTANBUL_FILE
        if istanbul_path.exists():
            logger.debug(f"Parsing Istanbul coverage at {istanbul_path}")
            return self.parse_istanbul_json(istanbul_path)

        lcov_path = directory / LCOV_FILE
        if lcov_path.exists():
            logger.debug(f"Parsing LCOV coverage at {lcov_path}")
            return self.parse_lcov(lcov_path)

        raise CoverageFileNotFoundError(directory)

    def parse_istanbul_json(self, json_path: Path) -> CoverageReport:
        data = json.loads(json_path.read_text(encoding="utf-8"))
        return self.parse_istanbul_data(data)

    def parse_istanbul_data(self, data: dict) -> CoverageReport:
        """Build a report from an already-loaded Istanbul ``coverage-final.json`` mapping."""
        files: list[FileCoverage] = []

        for raw_path, file_data in data.items():
            if not is_reportable_source(raw_path):
                continue

            statement_map = file_data.get("statementMap") or {}
            hits = file_data.get("s") or {}

            covered = 0
            uncovered: set[int] = set()
            for statement_id, location in statement_map.items():
                if hits.get(statement_id, 0) > 0:
                    covered += 1
                else:
                    uncovered.add(location["start"]["line"])

            total = len(statement_map)
            files.append(
                FileCoverage(
                    path=self.normalize_path(raw_path),
                    lines_covered=covered,
                    lines_total=total,
                    percentage=percentage(covered, total),
                    uncovered_lines=sorted(uncovered),
                )
            )

        return self._build_report(files)

    def parse_lcov(self, lcov_path: Path) -> CoverageReport:
        files: list[FileCoverage] = []
        current_path: str | None = None
        line_hits: list[tuple[int, int]] = []

        for raw_line in lcov_path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if line.startswith("SF:"):
                current_path = line[3:]
                line_hits = []
            elif line.startswith("DA:") and current_path is not None:
                parts = line[3:].split(",")
                try:
                    line_hits.append((int(parts[0]), int(parts[1])))
                except (IndexError, ValueError):
                    logger.debug(f"Skipping malformed LCOV record: {line}")
            elif line == "end_of_record" and current_path is not None:
                if is_reportable_source(current_path):
                    files.append(self._lcov_file(current_path, line_hits))
                current_path = None
                line_hits = []

        return self._build_report(files)

    def _lcov_file(self, raw_path: str, line_hits: list[tuple[int, int]]) -> FileCoverage:
        covered = sum(1 for _, count in line_hits if count > 0)
        total = len(line_hits)
        return FileCoverage(
            path=self.normalize_path(raw_path),
            lines_covered=covered,
            lines_total=total,
            percentage=percentage(covered, total),
            uncovered_lines=[number for number, count in line_hits if count == 0],
        )

    def normalize_path(self, raw_path: str) -> str:
        path = raw_path.replace("\\", "/")

        if self.project_root and path.startswith(self.project_root + "/"):
            return path[len(self.project_root) + 1 :]

        marker_index = max(path.rfind(marker) for marker in SOURCE_ROOT_MARKERS)
        if marker_index >= 0:
            return path[marker_index + 1 :]

        return path

    def _build_report(self, files: list[FileCoverage]) -> CoverageReport:
        total_covered = sum(f.lines_covered for f in files)
        total_lines = sum(f.lines_total for f in files)
        return CoverageReport(
            files=sort_worst_first(files),
            total_coverage=percentage(total_covered, total_lines),
        )
