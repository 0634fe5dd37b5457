"""Tests for project directory detection and existing test lookup."""

import json

from coverage_improver.core.project_layout import (
    candidate_test_paths,
    find_existing_test_file,
    find_project_directory,
    project_has_test_script,
)


def _manifest(directory, scripts=None):
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "package.json").write_text(json.dumps({"name": directory.name, "scripts": scripts or {}}))


class TestFindProjectDirectory:
    """Test monorepo-aware project detection."""

    def test_find_project_directory__prefers_root_with_test_script(self, tmp_path):
        _manifest(tmp_path, {"test": "jest"})
        _manifest(tmp_path / "frontend", {"test": "vitest"})

        project = find_project_directory(tmp_path)

        assert project.path == tmp_path
        assert project.has_test_script

    def test_find_project_directory__picks_subdirectory_with_test_script(self, tmp_path):
        _manifest(tmp_path)
        _manifest(tmp_path / "ui")
        _manifest(tmp_path / "frontend", {"test": "vitest"})

        project = find_project_directory(tmp_path)

        assert project.path == tmp_path / "frontend"
        assert project.has_test_script

    def test_find_project_directory__falls_back_to_first_subdirectory_manifest(self, tmp_path):
        _manifest(tmp_path)
        _manifest(tmp_path / "apps" / "web")

        project = find_project_directory(tmp_path)

        assert project.path == tmp_path / "apps" / "web"
        assert not project.has_test_script

    def test_find_project_directory__uses_root_manifest_last(self, tmp_path):
        _manifest(tmp_path)

        project = find_project_directory(tmp_path)

        assert project.path == tmp_path
        assert not project.has_test_script

    def test_find_project_directory__none_without_manifest(self, tmp_path):
        assert find_project_directory(tmp_path) is None

    def test_project_has_test_script__ignores_unreadable_manifest(self, tmp_path):
        (tmp_path / "package.json").write_text("{not json")
        assert not project_has_test_script(tmp_path)


class TestExistingTestLookup:
    def test_candidate_test_paths__lists_conventional_locations(self):
        assert candidate_test_paths("src/lib/format.ts") == [
            "src/lib/format.spec.ts",
            "src/lib/format.test.ts",
            "test/lib/format.spec.ts",
            "__tests__/lib/format.test.ts",
        ]

    def test_find_existing_test_file__returns_first_match(self, tmp_path):
        (tmp_path / "__tests__" / "lib").mkdir(parents=True)
        (tmp_path / "__tests__" / "lib" / "format.test.ts").write_text("")

        assert find_existing_test_file(tmp_path, "src/lib/format.ts") == "__tests__/lib/format.test.ts"
        assert find_existing_test_file(tmp_path, "src/other.ts") is None
