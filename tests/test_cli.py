"""Summary: CLI workflow tests.

Importance: Ensures the local command-line flow captures, files, and reviews thoughts.
Alternatives: Test only the API surface.
"""

from __future__ import annotations

import json
import shutil
from pathlib import Path

import pytest

from capturepilot.cli import build_parser, run_cli

DEFAULTS = Path(__file__).resolve().parents[1] / "config" / "defaults.json"


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Summary: Run the CLI from a temp directory with its own config and database."""

    (tmp_path / "config").mkdir()
    shutil.copy(DEFAULTS, tmp_path / "config" / "defaults.json")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CAPTUREPILOT_DB_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setenv("CAPTUREPILOT_AI_PROVIDER", "mock")
    monkeypatch.delenv("CAPTUREPILOT_CLASSIFIER_URL", raising=False)
    return tmp_path


def test_parser_requires_command() -> None:
    """Summary: Verify a command is mandatory."""

    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_capture_and_process(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Summary: Verify a captured thought is filed by the process command.

    Importance: Confirms the CLI drives the full pipeline end to end.
    Alternatives: Only exercise services directly.
    """

    run_cli(["capture", "Buy milk"])
    assert "Captured " in capsys.readouterr().out

    run_cli(["process"])
    assert "auto -> success" in capsys.readouterr().out

    run_cli(["list-projects"])
    assert "Errands" in capsys.readouterr().out
    run_cli(["list-tasks"])
    assert "[next] Buy milk" in capsys.readouterr().out
    run_cli(["activity"])
    assert 'ai-processed: Filed "Buy milk" to Errands' in capsys.readouterr().out

    run_cli(["process"])
    assert "No pending captures." in capsys.readouterr().out


def test_review_and_accept(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Summary: Verify low-confidence captures can be reviewed and accepted."""

    run_cli(["capture", "Think about stuff", "--process"])
    output = capsys.readouterr().out
    capture_id = output.split()[1].rstrip(".")
    assert "review -> needs-review" in output

    run_cli(["review"])
    assert "-> General (60%)" in capsys.readouterr().out

    run_cli(["accept", capture_id])
    effect = json.loads(capsys.readouterr().out)
    assert effect["projectName"] == "General"

    run_cli(["list-captures", "--status", "success"])
    assert capture_id in capsys.readouterr().out


def test_create_project_from_review(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Summary: Verify reviewers can file into a project created on the spot."""

    run_cli(["capture", "Think about stuff", "--process"])
    capture_id = capsys.readouterr().out.split()[1].rstrip(".")

    run_cli(["create-project", capture_id, "Reflection"])
    effect = json.loads(capsys.readouterr().out)
    assert effect["projectName"] == "Reflection"

    run_cli(["list-projects"])
    assert "Reflection: Created from review" in capsys.readouterr().out


def test_chat_answers_from_stored_tasks(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Summary: Verify the chat command answers from the filed tasks."""

    run_cli(["capture", "Buy milk"])
    run_cli(["process"])
    capsys.readouterr()

    run_cli(["chat", "What is on my list?"])
    out = capsys.readouterr().out
    assert "1 tasks across 1 projects" in out
    assert "Buy milk" in out
