from __future__ import annotations

import json
import os
import sys
from typing import Any

import click
import typer
from botocore.exceptions import BotoCoreError
from botocore.exceptions import ClientError
from rich.console import Console

from taskboard import __version__
from taskboard import api
from taskboard.local_server import make_server


class TaskboardCliError(Exception):
    pass


class UsageError(TaskboardCliError):
    pass


class OpError(TaskboardCliError):
    pass


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000

_ERROR_CONSOLE = Console(stderr=True)


def _rich_error(msg: str) -> None:
    _ERROR_CONSOLE.print(f"[bold red]error:[/bold red] {msg}")


app = typer.Typer(
    name="taskboard",
    help="Run and operate the TaskBoard API.",
    no_args_is_help=True,
    add_completion=False,
)
boards_app = typer.Typer(help="Board table helpers (boards are read-only over HTTP)", no_args_is_help=True)
app.add_typer(boards_app, name="boards")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"taskboard {__version__}")
        raise typer.Exit(code=0)


@app.callback()
def app_callback(
    version: bool = typer.Option(False, "--version", callback=_version_callback, is_eager=True),
) -> None:
    del version


def _default_port() -> int:
    raw = (os.environ.get("PORT") or "").strip()
    if not raw:
        return DEFAULT_PORT
    try:
        return int(raw)
    except ValueError as e:
        raise UsageError(f"invalid PORT: {raw!r}") from e


def _print_json(obj: Any) -> None:
    sys.stdout.write(json.dumps(obj, separators=(",", ":"), sort_keys=True, default=api._json_default) + "\n")


def _load_attrs(raw: str) -> dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        val = json.loads(raw)
    except Exception as e:
        raise UsageError(f"invalid --attr-json: {e}") from e
    if not isinstance(val, dict):
        raise UsageError("--attr-json must decode to an object")
    return val


@app.command("serve", help="Serve the API over HTTP on this machine.")
def serve(
    host: str = typer.Option(DEFAULT_HOST, "--host", help="Interface to bind"),
    port: int = typer.Option(0, "--port", help="Port to listen on (default: $PORT or 3000)"),
) -> None:
    listen_port = port or _default_port()
    server = make_server(host, listen_port)
    base = f"http://{host}:{listen_port}"
    typer.echo(f"TaskBoard API running on port {listen_port}", err=True)
    typer.echo(f"Health check: {base}/health", err=True)
    typer.echo(f"Dashboard: {base}/dashboard", err=True)
    typer.echo(f"Tasks: {base}/tasks", err=True)
    typer.echo(f"Tables: tasks={api.TASKS_TABLE_NAME} boards={api.BOARDS_TABLE_NAME} region={api.AWS_REGION}", err=True)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()


@boards_app.command("seed", help="Write a board item directly to the boards table.")
def seed_board(
    board_id: str = typer.Argument(..., help="Board id"),
    name: str = typer.Option("", "--name", help="Optional board name"),
    attr_json: str = typer.Option("", "--attr-json", help="Extra board attributes as a JSON object"),
) -> None:
    board_id = board_id.strip()
    if not board_id:
        raise UsageError("board id must not be empty")
    item: dict[str, Any] = _load_attrs(attr_json)
    if name.strip():
        item["name"] = name.strip()
    item["id"] = board_id
    try:
        api._boards_table().put_item(Item=item)
    except (ClientError, BotoCoreError) as e:
        raise OpError(f"failed to write board {board_id!r} to {api.BOARDS_TABLE_NAME}: {e}") from e
    _print_json({"kind": "taskboard.board.seeded.v1", "board": item})


@boards_app.command("list", help="Print every board in the boards table.")
def list_boards() -> None:
    try:
        boards = api._scan_all(api._boards_table())
    except (ClientError, BotoCoreError) as e:
        raise OpError(f"failed to scan {api.BOARDS_TABLE_NAME}: {e}") from e
    _print_json({"kind": "taskboard.boards.v1", "boards": boards, "total": len(boards)})


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    try:
        result = app(args=argv, prog_name="taskboard", standalone_mode=False)
        if result is None:
            return 0
        return int(result)
    except typer.Exit as e:
        return int(e.exit_code)
    except click.ClickException as e:
        _rich_error(e.format_message())
        return int(e.exit_code)
    except UsageError as e:
        _rich_error(str(e))
        return 2
    except OpError as e:
        _rich_error(str(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
