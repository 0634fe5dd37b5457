"""Locating the package.json project and existing test files inside a clone."""

import json
import logging
from pathlib import Path

from coverage_improver.core.models import ProjectDirectory

logger = logging.getLogger(__name__)

MONOREPO_CANDIDATES = (
    "ui",
    "frontend",
    "web",
    "client",
    "app",
    "backend",
    "server",
    "api",
    "src",
    "packages/app",
    "packages/web",
    "apps/web",
    "apps/frontend",
)


def _read_manifest(directory: Path) -> dict | None:
    package_json = directory / "package.json"
    if not package_json.exists():
        return None
    try:
        return json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        logger.warning(f"Unreadable package.json in {directory}")
        return {}


def _has_test_script(manifest: dict | None) -> bool:
    if not manifest:
        return False
    scripts = manifest.get("scripts") or {}
    return bool(scripts.get("test"))


def project_has_test_script(directory: Path) -> bool:
    return _has_test_script(_read_manifest(directory))


def find_project_directory(clone_path: Path) -> ProjectDirectory | None:
    """Pick the directory whose package.json drives install and test.

    Preference order: the root with a test script, the first conventional
    monorepo sub-directory with a test script, the first such sub-directory
    with any package.json, then the root with any package.json.
    """
    root_manifest = _read_manifest(clone_path)
    if _has_test_script(root_manifest):
        return ProjectDirectory(path=clone_path, has_test_script=True)

    manifests = {name: _read_manifest(clone_path / name) for name in MONOREPO_CANDIDATES}

    for name, manifest in manifests.items():
        if _has_test_script(manifest):
            return ProjectDirectory(path=clone_path / name, has_test_script=True)

    for name, manifest in manifests.items():
        if manifest is not None:
            return ProjectDirectory(path=clone_path / name, has_test_script=False)

    if root_manifest is not None:
        return ProjectDirectory(path=clone_path, has_test_script=False)

    return None


def candidate_test_paths(source_path: str) -> list[str]:
    """Conventional locations of a test for ``source_path``, most likely first."""
    base = source_path[: -len(".ts")]
    candidates = [f"{base}.spec.ts", f"{base}.test.ts"]

    rooted = f"/{base}"
    if "/src/" in rooted:
        candidates.append(rooted.replace("/src/", "/test/", 1)[1:] + ".spec.ts")
        candidates.append(rooted.replace("/src/", "/__tests__/", 1)[1:] + ".test.ts")
    return candidates


def find_existing_test_file(project_dir: Path, source_path: str) -> str | None:
    """Return the project-relative path of an existing test for ``source_path``, if any."""
    for candidate in candidate_test_paths(source_path):
        if (project_dir / candidate).exists():
            return candidate
    return None
