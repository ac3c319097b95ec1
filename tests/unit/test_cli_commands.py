"""Unit tests for the CLI: command registration, output and exit codes.

The build command is exercised against the fake tool server by swapping the
pipeline factory the command module uses; nothing touches the network.
"""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from artipack.cli.app import app
from artipack.cli.commands import build as build_module
from artipack.core.pipeline import BuildPipeline

runner = CliRunner()


def _json_from(stdout: str) -> dict:
    lines = stdout.splitlines()
    start = lines.index("{")
    return json.loads("\n".join(lines[start:]))


@pytest.fixture
def offline_pipeline(monkeypatch, tool_cache, fetcher):
    """Route the build command through the fake server and temp cache."""

    def _factory(run_settings):
        return BuildPipeline(run_settings, cache=tool_cache, fetcher=fetcher)

    monkeypatch.setattr(build_module, "BuildPipeline", _factory)


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("build", "resolve", "verify", "cache"):
            assert command in result.output

    @pytest.mark.parametrize("command", ["build", "resolve", "verify", "cache"])
    def test_command_help(self, command):
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0


# ---------------------------------------------------------------------------
# Test: resolve
# ---------------------------------------------------------------------------


class TestResolveCommand:
    def test_lists_deduplicated_tools(self, definitions_dir, write_definition, make_tool):
        t1, _ = make_tool("T1")
        t2, _ = make_tool("T2")
        write_definition("A", [t1])
        write_definition("B", [t1, t2])

        result = runner.invoke(app, ["resolve", "A", "B", "-d", str(definitions_dir)])

        assert result.exit_code == 0
        assert "T1" in result.output
        assert "T2" in result.output

    def test_unknown_artifact(self, definitions_dir, write_definition):
        write_definition("A")
        result = runner.invoke(app, ["resolve", "C", "-d", str(definitions_dir)])
        assert result.exit_code == 1
        assert "UnknownArtifactError" in result.output

    def test_no_tools(self, definitions_dir, write_definition):
        write_definition("A")
        result = runner.invoke(app, ["resolve", "A", "-d", str(definitions_dir)])
        assert result.exit_code == 0
        assert "No tools required" in result.output


# ---------------------------------------------------------------------------
# Test: build
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("offline_pipeline")
class TestBuildCommand:
    def test_success_exit_code_and_json(self, tmp_dir, definitions_dir, write_definition, publish):
        write_definition("A", [publish("T1")])
        out = tmp_dir / "pkg"

        result = runner.invoke(
            app, ["build", "A", "-o", str(out), "-d", str(definitions_dir), "--json"]
        )

        assert result.exit_code == 0
        payload = _json_from(result.stdout)
        assert payload["status"] == "success"
        assert payload["manifest"]["artifacts"][0]["name"] == "A"
        assert (out / "tools" / "T1").is_file()

    def test_rich_summary(self, tmp_dir, definitions_dir, write_definition, publish):
        write_definition("A", [publish("T1")])
        result = runner.invoke(
            app, ["build", "A", "-o", str(tmp_dir / "pkg"), "-d", str(definitions_dir)]
        )
        assert result.exit_code == 0
        assert "Package built!" in result.output

    def test_partial_exit_code(
        self, tmp_dir, definitions_dir, write_definition, publish, make_tool, tool_server
    ):
        broken, _ = make_tool("T2")
        tool_server.serve(broken["url"], 404)
        write_definition("A", [publish("T1")])
        write_definition("B", [broken])

        result = runner.invoke(
            app,
            [
                "build", "A", "B", "-o", str(tmp_dir / "pkg"),
                "-d", str(definitions_dir), "--mode", "best-effort", "--json",
            ],
        )

        assert result.exit_code == 3
        payload = _json_from(result.stdout)
        assert payload["status"] == "partial"
        assert [e["identifier"] for e in payload["errors"]] == ["T2"]
        assert payload["manifest"]["omitted_artifacts"] == ["B"]

    def test_unknown_artifact_fails_without_output(self, tmp_dir, definitions_dir, write_definition):
        write_definition("A")
        out = tmp_dir / "pkg"

        result = runner.invoke(
            app, ["build", "A", "C", "-o", str(out), "-d", str(definitions_dir), "--json"]
        )

        assert result.exit_code == 1
        payload = _json_from(result.stdout)
        assert payload["errors"][0]["error_type"] == "UnknownArtifactError"
        assert payload["errors"][0]["identifier"] == "C"
        assert not out.exists()

    def test_fail_fast_download_failure(
        self, tmp_dir, definitions_dir, write_definition, make_tool, tool_server
    ):
        broken, _ = make_tool("T1")
        tool_server.serve(broken["url"], 404)
        write_definition("A", [broken])

        result = runner.invoke(
            app, ["build", "A", "-o", str(tmp_dir / "pkg"), "-d", str(definitions_dir)]
        )

        assert result.exit_code == 1
        assert "Build failed" in result.output


# ---------------------------------------------------------------------------
# Test: verify and cache
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("offline_pipeline")
class TestVerifyAndCacheCommands:
    @pytest.fixture
    def package_dir(self, tmp_dir, definitions_dir, write_definition, publish):
        write_definition("A", [publish("T1")])
        out = tmp_dir / "pkg"
        result = runner.invoke(
            app, ["build", "A", "-o", str(out), "-d", str(definitions_dir), "--json"]
        )
        assert result.exit_code == 0
        return out

    def test_verify_intact(self, package_dir):
        result = runner.invoke(app, ["verify", str(package_dir)])
        assert result.exit_code == 0
        assert "intact" in result.output

    def test_verify_tampered(self, package_dir):
        (package_dir / "tools" / "T1").write_bytes(b"tampered")
        result = runner.invoke(app, ["verify", str(package_dir)])
        assert result.exit_code == 1
        assert "'T1'" in result.output

    def test_cache_lists_entries(self, package_dir, tool_cache):
        result = runner.invoke(app, ["cache", "--cache-dir", str(tool_cache.root)])
        assert result.exit_code == 0
        assert "T1" in result.output
        assert "verified" in result.output

    def test_cache_flags_corruption(self, package_dir, tool_cache):
        entry = tool_cache.lookup("T1")
        entry.path.write_bytes(b"corrupted")
        result = runner.invoke(app, ["cache", "--cache-dir", str(tool_cache.root)])
        assert result.exit_code == 1
        assert "FAILED" in result.output

    def test_cache_empty(self, tmp_dir):
        result = runner.invoke(app, ["cache", "--cache-dir", str(tmp_dir / "empty")])
        assert result.exit_code == 0
        assert "empty" in result.output
