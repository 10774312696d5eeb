"""Tests for the conductor command line."""

from __future__ import annotations

import sys

from typer.testing import CliRunner

from conductor.cli import app

runner = CliRunner()


class TestExec:
    def test_exit_code_propagates(self) -> None:
        result = runner.invoke(app, ["exec", "--shell", "sh", "echo hi; exit 4"])
        assert result.exit_code == 4
        assert "hi" in result.stdout

    def test_missing_cwd(self) -> None:
        result = runner.invoke(app, ["exec", "--cwd", "/nonexistent/dir", "true"])
        assert result.exit_code == 1


class TestRun:
    def test_batch_result_printed(self) -> None:
        script = "import json; print(json.dumps({'result': 'ok from batch'}))"
        result = runner.invoke(
            app, ["run", "--prompt", "go", sys.executable, "--", "-c", script]
        )
        assert result.exit_code == 0
        assert "ok from batch" in result.stdout

    def test_needs_command(self) -> None:
        result = runner.invoke(app, ["run"])
        assert result.exit_code == 1
