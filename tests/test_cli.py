from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

import taskboard.cli as cli
from fakes import FakeTable, client_error


runner = CliRunner()


def test_version_flag():
    result = runner.invoke(cli.app, ["--version"])
    assert result.exit_code == 0
    assert result.stdout.strip() == "taskboard 1.0.0"


def test_seed_board_writes_item_with_extra_attributes(monkeypatch):
    boards = FakeTable()
    monkeypatch.setattr(cli.api, "_boards_table", lambda: boards)

    result = runner.invoke(
        cli.app,
        ["boards", "seed", "b1", "--name", "Main", "--attr-json", '{"color":"blue","id":"ignored"}'],
    )

    assert result.exit_code == 0
    parsed = json.loads(result.stdout)
    assert parsed["kind"] == "taskboard.board.seeded.v1"
    assert boards.items["b1"] == {"id": "b1", "name": "Main", "color": "blue"}


def test_seed_board_rejects_bad_attr_json(monkeypatch, capsys):
    boards = FakeTable()
    monkeypatch.setattr(cli.api, "_boards_table", lambda: boards)

    assert cli.main(["boards", "seed", "b1", "--attr-json", "[1]"]) == 2
    assert boards.calls == []
    assert "error: --attr-json must decode to an object" in capsys.readouterr().err


def test_seed_board_store_failure_exits_1(monkeypatch, capsys):
    boards = FakeTable()
    boards.failures["put_item"] = client_error("PutItem", "AccessDeniedException")
    monkeypatch.setattr(cli.api, "_boards_table", lambda: boards)

    assert cli.main(["boards", "seed", "b1"]) == 1
    assert "failed to write board" in capsys.readouterr().err


def test_main_reports_click_usage_errors_on_stderr(capsys):
    assert cli.main(["boards", "seed"]) == 2

    err = capsys.readouterr().err
    assert err.startswith("error: ")
    assert "BOARD_ID" in err


def test_list_boards_prints_every_board(monkeypatch):
    boards = FakeTable([{"id": "b1"}, {"id": "b2", "name": "Side"}], page_size=1)
    monkeypatch.setattr(cli.api, "_boards_table", lambda: boards)

    result = runner.invoke(cli.app, ["boards", "list"])

    assert result.exit_code == 0
    parsed = json.loads(result.stdout)
    assert parsed["total"] == 2
    assert [b["id"] for b in parsed["boards"]] == ["b1", "b2"]


def test_serve_uses_port_from_environment(monkeypatch):
    captured: dict = {}

    class FakeServer:
        def serve_forever(self):
            captured["served"] = True

        def server_close(self):
            captured["closed"] = True

    def fake_make_server(host, port):
        captured["host"] = host
        captured["port"] = port
        return FakeServer()

    monkeypatch.setenv("PORT", "8123")
    monkeypatch.setattr(cli, "make_server", fake_make_server)

    result = runner.invoke(cli.app, ["serve"])

    assert result.exit_code == 0
    assert captured == {"host": "127.0.0.1", "port": 8123, "served": True, "closed": True}


def test_serve_explicit_port_wins(monkeypatch):
    captured: dict = {}

    class FakeServer:
        def serve_forever(self):
            raise KeyboardInterrupt

        def server_close(self):
            captured["closed"] = True

    monkeypatch.setenv("PORT", "8123")
    monkeypatch.setattr(cli, "make_server", lambda host, port: captured.update(port=port) or FakeServer())

    assert cli.main(["serve", "--port", "9000", "--host", "0.0.0.0"]) == 0
    assert captured == {"port": 9000, "closed": True}


@pytest.mark.parametrize("raw", ["abc", "80x"])
def test_serve_rejects_invalid_port_env(monkeypatch, raw):
    monkeypatch.setenv("PORT", raw)
    monkeypatch.setattr(cli, "make_server", lambda host, port: pytest.fail("should not start"))

    assert cli.main(["serve"]) == 2
