from __future__ import annotations

import json
import sys
import textwrap
from pathlib import Path
from typing import Any, List

import pytest
import yaml
from typer.testing import CliRunner

from autopilot import cli
from autopilot.automation import IssueAutomation
from autopilot.cli import app
from autopilot.config import PipelineSettings
from autopilot.schema import Issue
from autopilot.tools.workspace import InMemoryWorkingTree
from conftest import MemoryStore, RecordingBackend, ScriptedClient, StaticIssues, file_block, reply


def _write_config(repo_root: Path, command: List[str] | None = None) -> Path:
    config_path = repo_root / "autopilot.yaml"
    config_path.write_text(
        textwrap.dedent(
            f"""
            project:
              name: Calculator
              repo_root: .
              remote: ""
            pipeline:
              max_attempts: 2
            validation:
              command: {json.dumps(command or [])}
            """
        ).strip()
        + "\n",
        encoding="utf-8",
    )
    return config_path


def test_init_writes_template_and_refuses_to_overwrite(tmp_path: Path) -> None:
    config_path = tmp_path / "autopilot.yaml"
    runner = CliRunner()

    result = runner.invoke(app, ["init", "--config", str(config_path)], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert "Wrote configuration" in result.output

    data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    assert data["project"]["name"] == tmp_path.name
    assert data["pipeline"]["max_attempts"] == 3

    again = runner.invoke(app, ["init", "--config", str(config_path)], catch_exceptions=False)
    assert again.exit_code == 1
    assert "--force" in again.output

    forced = runner.invoke(app, ["init", "--config", str(config_path), "--force"], catch_exceptions=False)
    assert forced.exit_code == 0, forced.output


def test_validate_reports_pass_and_fail(tmp_path: Path) -> None:
    runner = CliRunner()

    passing = _write_config(tmp_path, [sys.executable, "-c", "print('fine')"])
    result = runner.invoke(app, ["validate", "--config", str(passing)], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert "Validation: passed" in result.output

    failing = _write_config(
        tmp_path, [sys.executable, "-c", "import sys; print('src/app.py:3: error: boom'); sys.exit(1)"]
    )
    result = runner.invoke(app, ["validate", "--config", str(failing)], catch_exceptions=False)
    assert result.exit_code == 1
    assert "error: src/app.py:3 - boom" in result.output


def test_validate_without_command_is_unavailable(tmp_path: Path) -> None:
    result = CliRunner().invoke(app, ["validate", "--config", str(_write_config(tmp_path))], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert "Validation: unavailable" in result.output


def test_missing_config_is_a_usage_error(tmp_path: Path) -> None:
    result = CliRunner().invoke(app, ["validate", "--config", str(tmp_path / "nope.yaml")])
    assert result.exit_code == 2


def test_invalid_config_exits_with_message(tmp_path: Path) -> None:
    config_path = tmp_path / "autopilot.yaml"
    config_path.write_text("pipeline:\n  mode: cloud\n", encoding="utf-8")

    result = CliRunner().invoke(app, ["validate", "--config", str(config_path)], catch_exceptions=False)

    assert result.exit_code == 1
    assert "pipeline.mode" in result.output


def test_run_requires_an_api_key(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    config_path = _write_config(tmp_path)

    result = CliRunner().invoke(app, ["run", "ENG-42", "--config", str(config_path)], catch_exceptions=False)

    assert result.exit_code == 1
    assert "No API key given. Set ANTHROPIC_API_KEY." in result.output


def test_run_prints_outcome_and_pull_request(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, sample_issue: Issue
) -> None:
    client = ScriptedClient([reply(file_block("src/app/calculator.py", "def subtract(a, b):\n    return a - b\n"))])
    store = MemoryStore(files={"src/app/calculator.py": "def add(a, b):\n    return a + b\n"})

    def fake_build(settings: PipelineSettings, *, client: Any) -> IssueAutomation:
        return IssueAutomation(
            settings,
            issues=StaticIssues(issues={"ENG-42": sample_issue}),
            store=store,
            backend=RecordingBackend(),
            client=client,
            tree_factory=lambda ref: InMemoryWorkingTree(store, ref=ref),
        )

    monkeypatch.setattr(cli, "ClaudeClient", lambda **kwargs: client)
    monkeypatch.setattr(cli, "build_automation", fake_build)

    result = CliRunner().invoke(app, ["run", "ENG-42", "--config", str(_write_config(tmp_path))], catch_exceptions=False)

    assert result.exit_code == 0, result.output
    assert "Branch: eng-42-add-subtraction" in result.output
    assert "Outcome: accepted after 1 attempt(s)" in result.output
    assert "Verified: no" in result.output
    assert "Pull request: https://example.test/pr/1" in result.output


def test_event_ignores_other_state_changes(tmp_path: Path) -> None:
    payload = tmp_path / "payload.json"
    payload.write_text(
        json.dumps({"type": "Issue", "action": "update", "data": {"id": "1", "state": {"name": "Done"}}}),
        encoding="utf-8",
    )

    result = CliRunner().invoke(app, ["event", str(payload), "--config", str(_write_config(tmp_path))])

    assert result.exit_code == 0, result.output
    assert "Event ignored." in result.output


def test_feedback_without_trigger_is_ignored(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        app,
        [
            "feedback",
            "7",
            "--comment",
            "looks good",
            "--author",
            "reviewer",
            "--require-trigger",
            "--config",
            str(_write_config(tmp_path)),
        ],
        catch_exceptions=False,
    )

    assert result.exit_code == 0, result.output
    assert "Comment ignored" in result.output
