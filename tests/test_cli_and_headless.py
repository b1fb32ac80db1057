"""Tests for the console entry points: headless runs and the argparse main."""

import asyncio
import json
import logging
import sys

import pytest
from rich.prompt import Confirm

from potato.adapters.replay import ReplayTransport
from potato.engine.config import EngineConfig
from potato.engine.controller import TurnController
from potato.headless import print_notice, run_headless
from potato.shared.models.message import MessageRole


@pytest.fixture
def isolated_home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    for key in ("POTATO_MODE", "POTATO_VAULT", "POTATO_PROJECT_DIR"):
        monkeypatch.delenv(key, raising=False)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield tmp_path
    for handler in list(root.handlers):
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def _write_replay(path, responses):
    path.write_text(json.dumps(responses))
    return str(path)


class TestRunHeadless:
    def test_approval_prompt_drives_turn(self, monkeypatch):
        monkeypatch.setattr(Confirm, "ask", lambda *args, **kwargs: True)
        controller = TurnController(
            EngineConfig(vault_root="/vault"),
            ReplayTransport([
                [{"type": "tool", "phase": "approval", "tool_id": "t1", "tool_name": "Write",
                  "input": {"file_path": "/vault/a.md", "content": "x"}}],
                [{"type": "text", "text": "Written."}, {"type": "done"}],
            ]),
            event_callback=print_notice,
            agents=[],
        )
        code = asyncio.run(run_headless(controller, "write a.md"))
        assert code == 0
        assert controller.session.messages[-1].content == "Written."

    def test_abort_exit_code(self):
        controller = TurnController(
            EngineConfig(vault_root="/vault"),
            ReplayTransport([[{"type": "failure", "error": "dropped"}]]),
            event_callback=print_notice,
            agents=[],
        )
        assert asyncio.run(run_headless(controller, "hi")) == 1
        assert controller.session.messages[-1].role == MessageRole.ERROR


class TestMain:
    def test_list_without_history(self, isolated_home, monkeypatch, capsys):
        from potato.app import main

        monkeypatch.setattr(sys, "argv", ["potato", "--list"])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 0
        assert "No saved chats." in capsys.readouterr().out
        assert (isolated_home / ".potato" / "logs" / "potato.log").exists()

    def test_headless_replay_saves_history(self, isolated_home, monkeypatch):
        from potato.app import main
        from potato.shared.services.history import HistoryStore

        replay = _write_replay(isolated_home / "replay.json", [
            [{"type": "session", "session_id": "s1"},
             {"type": "text", "text": "Three notes mention pricing."},
             {"type": "done"}],
        ])
        monkeypatch.setattr(sys, "argv", [
            "potato", "--headless", "find pricing notes", "--replay", replay,
            "--vault", str(isolated_home),
        ])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 0

        rows = HistoryStore(isolated_home / ".potato" / "history.json").list()
        assert [r.title for r in rows] == ["find pricing notes"]

    def test_resume_unknown_id_fails(self, isolated_home, monkeypatch):
        from potato.app import main

        monkeypatch.setattr(sys, "argv", ["potato", "--resume", "chat-missing", "--headless", "hi"])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1
