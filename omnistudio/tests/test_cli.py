"""
Tests for the command-line tool.
"""

import json

from omnistudio import cli
from omnistudio.history import ChatHistoryManager
from omnistudio.models import Chat


class TestCli:

    def test_history_json(self, capsys):
        ChatHistoryManager().add_chat("image", Chat(title="Sunset", server_id="s1"))

        assert cli.main(["history", "image", "--json"]) == 0

        out = json.loads(capsys.readouterr().out)
        assert [c["serverId"] for c in out] == ["s1"]

    def test_history_empty(self, capsys):
        assert cli.main(["history", "video"]) == 0
        assert "No video chats cached." in capsys.readouterr().out

    def test_sync(self, studio, monkeypatch, capsys):
        studio.add_server_chat("t1", "Hello", "text", 1_700_000_000.0)
        monkeypatch.setattr(cli, "_client", lambda args: studio.client(args.token))

        assert cli.main(["--token", "jwt", "sync", "--json"]) == 0

        out = json.loads(capsys.readouterr().out)
        assert out["tools"]["chat"]["added"] == ["t1"]
        assert ChatHistoryManager().find_by_server_id("chat", "t1") is not None

    def test_generate_prints_url(self, studio, monkeypatch, capsys):
        monkeypatch.setattr(cli, "_client", lambda args: studio.client(args.token))

        code = cli.main(["generate", "video", "waves", "--options", '{"duration": 5}'])

        assert code == 0
        assert capsys.readouterr().out.strip() == "http://cdn.test/out.mp4"
        assert json.loads(studio.calls("POST", "/api/videos/generate")[0].content)["duration"] == 5

    def test_job_error_exits_nonzero(self, studio, monkeypatch, capsys):
        studio.job_script = [{"status": "failed", "error": {"message": "GPU busy"}}]
        monkeypatch.setattr(cli, "_client", lambda args: studio.client(args.token))

        assert cli.main(["generate", "video", "waves"]) == 1
        assert "ERROR: GPU busy" in capsys.readouterr().err

    def test_dedupe(self, capsys):
        history = ChatHistoryManager()
        history.save_history("chat", [
            Chat(server_id="s1", title="a", timestamp=200.0),
            Chat(server_id="s1", title="a", timestamp=100.0),
        ])

        assert cli.main(["dedupe"]) == 0

        assert len(history.get_history("chat")) == 1
        assert "chat         1 removed, 1 kept" in capsys.readouterr().out
