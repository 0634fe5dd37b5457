"""Tests for DockerSandbox with the docker CLI mocked out."""

import io
import json
import subprocess
import tarfile
from pathlib import Path
from unittest.mock import patch

from conftest import make_istanbul_entry

from coverage_improver.core.models import SourceFile
from coverage_improver.core.sandbox import DockerSandbox


def _mounted_dir(args: list[str], container_path: str) -> Path:
    for index, arg in enumerate(args):
        if arg == "-v" and args[index + 1].split(":")[1] == container_path:
            return Path(args[index + 1].split(":")[0])
    raise AssertionError(f"{container_path} is not mounted")


def _write_sources_tar(output_dir: Path, files: dict[str, str]) -> None:
    with tarfile.open(output_dir / "sources.tar", mode="w") as tar:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))


class TestDockerSandbox:
    def test_run_analysis__collects_coverage_and_typescript_sources(self, tmp_path):
        coverage = {"/workspace/repo/src/a.ts": make_istanbul_entry([1], [1])}

        def fake_docker(args, **kwargs):
            output_dir = _mounted_dir(args, "/output")
            (output_dir / "coverage").mkdir()
            (output_dir / "coverage" / "coverage-final.json").write_text(json.dumps(coverage))
            _write_sources_tar(output_dir, {"src/a.ts": "export const a = 1;", "README.md": "# readme"})
            return subprocess.CompletedProcess(args, 0, stdout="ok", stderr="")

        sandbox = DockerSandbox(image="sandbox:test", timeout_seconds=60, memory="1g", cpus=1.0)
        with patch("coverage_improver.core.sandbox.subprocess.run", side_effect=fake_docker) as mock_run:
            result = sandbox.run_analysis("https://github.com/acme/widgets", "main", tmp_path)

        args = mock_run.call_args.args[0]
        assert args[:5] == ["docker", "run", "--rm", "--memory=1g", "--cpus=1.0"]
        assert args[-4:] == ["sandbox:test", "analyze", "https://github.com/acme/widgets", "main"]
        assert mock_run.call_args.kwargs["timeout"] == 60
        assert result.success
        assert result.coverage_json == coverage
        assert result.sources_dir == tmp_path / "sources"
        assert result.source_files == [SourceFile(path="src/a.ts", content="export const a = 1;")]
        assert not (tmp_path / "sources" / "README.md").exists()

    def test_run_analysis__reports_timeout_as_failure(self, tmp_path):
        with patch("coverage_improver.core.sandbox.subprocess.run") as mock_run:
            mock_run.side_effect = subprocess.TimeoutExpired(cmd="docker", timeout=60)
            result = DockerSandbox(timeout_seconds=60).run_analysis("https://github.com/acme/widgets", "main", tmp_path)

        assert not result.success
        assert result.error == "Sandbox analyze timed out after 60s"

    def test_run_analysis__fails_without_any_output(self, tmp_path):
        with patch("coverage_improver.core.sandbox.subprocess.run") as mock_run:
            mock_run.return_value = subprocess.CompletedProcess([], 1, stdout="", stderr="npm ERR!")
            result = DockerSandbox().run_analysis("https://github.com/acme/widgets", "main", tmp_path)

        assert not result.success
        assert result.error == "Sandbox produced neither coverage nor sources"

    def test_run_tests__overlays_test_files_and_reads_result(self):
        seen: dict[str, str] = {}

        def fake_docker(args, **kwargs):
            input_dir = _mounted_dir(args, "/input")
            seen["content"] = (input_dir / "src" / "a.test.ts").read_text()
            output_dir = _mounted_dir(args, "/output")
            (output_dir / "result.txt").write_text("TESTS_PASSED=true\n")
            return subprocess.CompletedProcess(args, 0, stdout="", stderr="")

        with patch("coverage_improver.core.sandbox.subprocess.run", side_effect=fake_docker):
            result = DockerSandbox().run_tests(
                "https://github.com/acme/widgets", "main", [SourceFile(path="src/a.test.ts", content="it('x')")]
            )

        assert seen["content"] == "it('x')"
        assert result.success
        assert result.tests_passed
        assert result.coverage_json is None
