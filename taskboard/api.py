from __future__ import annotations

import base64
import json
import os
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterator
from urllib.parse import unquote

import boto3
from boto3.dynamodb.conditions import Attr
from boto3.dynamodb.types import Binary
from botocore.exceptions import BotoCoreError
from botocore.exceptions import ClientError

from taskboard import __version__
from taskboard.ids import new_task_id


TASKS_TABLE_NAME = os.environ.get("TASKS_TABLE", "taskboard-tasks")
BOARDS_TABLE_NAME = os.environ.get("BOARDS_TABLE", "taskboard-boards")
AWS_REGION = os.environ.get("AWS_REGION", "us-east-1")
LOG_EVENTS = os.environ.get("TASKBOARD_LOG_EVENTS", "1").strip().lower() not in {"0", "false", "no"}

STATUS_TODO = "todo"
STATUS_IN_PROGRESS = "in-progress"
STATUS_DONE = "done"
STATUSES = (STATUS_TODO, STATUS_IN_PROGRESS, STATUS_DONE)
VALID_STATUSES = set(STATUSES)
INVALID_STATUS_MESSAGE = "Invalid status. Must be: todo, in-progress, or done"

RECENT_TASKS_LIMIT = 5

_ddb_resource: Any | None = None


class TaskboardApiError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(TaskboardApiError):
    status_code = 400


class NotFoundError(TaskboardApiError):
    status_code = 404


class StoreError(TaskboardApiError):
    status_code = 500


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


@dataclass(frozen=True)
class TaskPatch:
    """Fields of a task update.

    A field left as ``UNSET`` stays unchanged. Title and status are UNSET when
    absent, null or empty; description is UNSET only when absent, so ``""``
    (or null) clears it.
    """

    title: Any = UNSET
    description: Any = UNSET
    status: Any = UNSET

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> TaskPatch:
        title = body.get("title", UNSET)
        description = body.get("description", UNSET)
        status = body.get("status", UNSET)

        if title is None or title == "":
            title = UNSET
        if status is None or status == "":
            status = UNSET

        if title is not UNSET:
            if not isinstance(title, str):
                raise ValidationError("Title must be a string")
            title = title.strip() or UNSET
        if description is not UNSET:
            if description is None:
                description = ""
            if not isinstance(description, str):
                raise ValidationError("Description must be a string")
        if status is not UNSET:
            _require_status(status)

        return cls(title=title, description=description, status=status)

    def fields(self) -> dict[str, str]:
        out: dict[str, str] = {}
        for name in ("title", "description", "status"):
            value = getattr(self, name)
            if value is not UNSET:
                out[name] = value
        return out


def _ddb() -> Any:
    global _ddb_resource
    if _ddb_resource is None:
        _ddb_resource = boto3.resource("dynamodb", region_name=AWS_REGION)
    return _ddb_resource


def _tasks_table() -> Any:
    return _ddb().Table(TASKS_TABLE_NAME)


def _boards_table() -> Any:
    return _ddb().Table(BOARDS_TABLE_NAME)


def _now_iso() -> str:
    # Fixed-format UTC timestamp for lexicographic ordering.
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, Binary):
        value = value.value
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (set, frozenset)):
        return sorted(_json_default(v) if isinstance(v, (Binary, bytes, bytearray, Decimal)) else v for v in value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _headers() -> dict[str, str]:
    return {
        "content-type": "application/json",
        "cache-control": "no-store",
        "access-control-allow-origin": "*",
        "access-control-allow-headers": "Content-Type,Authorization",
        "access-control-allow-methods": "GET,POST,PUT,DELETE,OPTIONS",
    }


def _response(status_code: int, body: dict[str, Any]) -> dict[str, Any]:
    return {
        "statusCode": int(status_code),
        "headers": _headers(),
        "body": json.dumps(body, default=_json_default),
    }


def _error(status_code: int, message: str) -> dict[str, Any]:
    return _response(status_code, {"success": False, "error": message})


def _preflight() -> dict[str, Any]:
    return {"statusCode": 204, "headers": _headers(), "body": ""}


def _request_id(event: dict[str, Any]) -> str:
    rc = event.get("requestContext") or {}
    if isinstance(rc, dict):
        rid = str(rc.get("requestId") or "").strip()
        if rid:
            return rid
    return uuid.uuid4().hex


def _parse_body(event: dict[str, Any]) -> dict[str, Any]:
    raw = event.get("body")
    if raw is None:
        return {}
    if not isinstance(raw, str):
        raise ValidationError("Request body must be a JSON object")
    if bool(event.get("isBase64Encoded")):
        try:
            raw = base64.b64decode(raw.encode("utf-8")).decode("utf-8")
        except Exception as e:
            raise ValidationError("Request body base64 decode failed") from e
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except Exception as e:
        raise ValidationError("Request body must be valid JSON") from e
    if not isinstance(parsed, dict):
        raise ValidationError("Request body must be a JSON object")
    return parsed


def _path(event: dict[str, Any]) -> str:
    return str(event.get("path") or "").strip() or "/"


def _query_param(event: dict[str, Any], key: str) -> str:
    qs = event.get("queryStringParameters") or {}
    if not isinstance(qs, dict):
        return ""
    val = qs.get(key)
    return str(val).strip() if val is not None else ""


def _require_status(status: Any) -> str:
    if not isinstance(status, str) or status not in VALID_STATUSES:
        raise ValidationError(INVALID_STATUS_MESSAGE)
    return status


def _required_text(body: dict[str, Any], key: str, label: str) -> str:
    value = body.get(key)
    if value is None or value == "":
        raise ValidationError(f"{label} is required")
    if not isinstance(value, str):
        raise ValidationError(f"{label} must be a string")
    value = value.strip()
    if not value:
        raise ValidationError(f"{label} is required")
    return value


@contextmanager
def _store_errors(message: str) -> Iterator[None]:
    try:
        yield
    except (ClientError, BotoCoreError) as e:
        raise StoreError(message) from e


def _scan_all(table: Any, filter_expression: Any = None) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    start_key: dict[str, Any] | None = None
    while True:
        kwargs: dict[str, Any] = {}
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression
        if start_key:
            kwargs["ExclusiveStartKey"] = start_key
        page = table.scan(**kwargs)
        out.extend(item for item in page.get("Items", []) or [] if isinstance(item, dict))
        start_key = page.get("LastEvaluatedKey")
        if not start_key:
            return out


def _get_item(table: Any, item_id: str) -> dict[str, Any] | None:
    resp = table.get_item(Key={"id": item_id})
    item = resp.get("Item") if isinstance(resp, dict) else None
    return item or None


def _group_by_status(tasks: list[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
    groups: dict[str, list[dict[str, Any]]] = {status: [] for status in STATUSES}
    for task in tasks:
        status = task.get("status")
        if status in groups:
            groups[status].append(task)
    return groups


def _updated_at_key(task: dict[str, Any]) -> tuple[int, datetime]:
    # Unparseable or missing timestamps sort after every real one.
    raw = str(task.get("updatedAt") or "").strip()
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return 0, datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return 1, parsed


def _completion_rate(done: int, total: int) -> int:
    if total <= 0:
        return 0
    # Integer half-up rounding of 100 * done / total.
    return (200 * done + total) // (2 * total)


def _list_tasks(event: dict[str, Any]) -> dict[str, Any]:
    board_id = _query_param(event, "boardId")
    filter_expression = Attr("boardId").eq(board_id) if board_id else None
    with _store_errors("Error fetching tasks"):
        tasks = _scan_all(_tasks_table(), filter_expression)

    return _response(
        200,
        {
            "success": True,
            "tasks": tasks,
            "tasksByStatus": _group_by_status(tasks),
            "total": len(tasks),
            "boardId": board_id or None,
        },
    )


def _get_task(task_id: str) -> dict[str, Any]:
    with _store_errors("Error fetching task"):
        task = _get_item(_tasks_table(), task_id)
    if not task:
        raise NotFoundError("Task not found")
    return _response(200, {"success": True, "task": task})


def _create_task(event: dict[str, Any]) -> dict[str, Any]:
    body = _parse_body(event)
    title = _required_text(body, "title", "Title")
    board_id = _required_text(body, "boardId", "Board ID")

    description = body.get("description")
    if description is None:
        description = ""
    if not isinstance(description, str):
        raise ValidationError("Description must be a string")

    with _store_errors("Error creating task"):
        board = _get_item(_boards_table(), board_id)
    if not board:
        raise NotFoundError("Board not found")

    status = body.get("status")
    status = STATUS_TODO if status is None or status == "" else _require_status(status)

    now = _now_iso()
    task = {
        "id": new_task_id(),
        "boardId": board_id,
        "title": title,
        "description": description,
        "status": status,
        "createdAt": now,
        "updatedAt": now,
    }
    # Unconditional put: a colliding generated id overwrites the existing task.
    with _store_errors("Error creating task"):
        _tasks_table().put_item(Item=task)

    return _response(201, {"success": True, "task": task})


def _update_task(event: dict[str, Any], task_id: str) -> dict[str, Any]:
    patch = TaskPatch.from_body(_parse_body(event))

    with _store_errors("Error updating task"):
        existing = _get_item(_tasks_table(), task_id)
    if not existing:
        raise NotFoundError("Task not found")

    expr_names = {"#updatedAt": "updatedAt"}
    expr_values: dict[str, Any] = {":updatedAt": _now_iso()}
    assignments = ["#updatedAt = :updatedAt"]
    for name, value in patch.fields().items():
        expr_names[f"#{name}"] = name
        expr_values[f":{name}"] = value
        assignments.append(f"#{name} = :{name}")

    try:
        out = _tasks_table().update_item(
            Key={"id": task_id},
            UpdateExpression="SET " + ", ".join(assignments),
            # Deleted after the existence check: do not upsert a fragment.
            ConditionExpression=Attr("id").exists(),
            ExpressionAttributeNames=expr_names,
            ExpressionAttributeValues=expr_values,
            ReturnValues="ALL_NEW",
        )
    except ClientError as e:
        code = str(e.response.get("Error", {}).get("Code") or "")
        if code == "ConditionalCheckFailedException":
            raise NotFoundError("Task not found") from e
        raise StoreError("Error updating task") from e
    except BotoCoreError as e:
        raise StoreError("Error updating task") from e

    return _response(200, {"success": True, "task": out.get("Attributes") or {}})


def _delete_task(task_id: str) -> dict[str, Any]:
    with _store_errors("Error deleting task"):
        existing = _get_item(_tasks_table(), task_id)
    if not existing:
        raise NotFoundError("Task not found")

    with _store_errors("Error deleting task"):
        _tasks_table().delete_item(Key={"id": task_id})

    return _response(200, {"success": True, "message": "Task deleted successfully"})


def _dashboard() -> dict[str, Any]:
    with _store_errors("Error fetching dashboard stats"):
        tasks = _scan_all(_tasks_table())

    groups = _group_by_status(tasks)
    total = len(tasks)
    done = len(groups[STATUS_DONE])
    recent = sorted(tasks, key=_updated_at_key, reverse=True)

    return _response(
        200,
        {
            "success": True,
            "stats": {
                "total": total,
                "todo": len(groups[STATUS_TODO]),
                "inProgress": len(groups[STATUS_IN_PROGRESS]),
                "done": done,
                "completionRate": _completion_rate(done, total),
            },
            "recentTasks": recent[:RECENT_TASKS_LIMIT],
        },
    )


def _list_boards() -> dict[str, Any]:
    with _store_errors("Error fetching boards"):
        boards = _scan_all(_boards_table())
    return _response(200, {"success": True, "boards": boards, "total": len(boards)})


def _health() -> dict[str, Any]:
    return _response(
        200,
        {
            "success": True,
            "message": "TaskBoard API is running!",
            "timestamp": _now_iso(),
            "version": __version__,
        },
    )


def _route(event: dict[str, Any], method: str, segments: list[str]) -> dict[str, Any]:
    if method == "OPTIONS":
        return _preflight()

    if method == "GET" and segments == ["health"]:
        return _health()

    # /tasks
    if segments == ["tasks"]:
        if method == "GET":
            return _list_tasks(event)
        if method == "POST":
            return _create_task(event)

    # /tasks/{id}
    if len(segments) == 2 and segments[0] == "tasks":
        task_id = segments[1]
        if method == "GET":
            return _get_task(task_id)
        if method == "PUT":
            return _update_task(event, task_id)
        if method == "DELETE":
            return _delete_task(task_id)

    if method == "GET" and segments == ["dashboard"]:
        return _dashboard()

    if method == "GET" and segments == ["boards"]:
        return _list_boards()

    raise NotFoundError("Endpoint not found")


def _log(wide_event: dict[str, Any]) -> None:
    if LOG_EVENTS:
        print(json.dumps(wide_event, separators=(",", ":"), sort_keys=True, default=str))


def handler(event: dict[str, Any], _context: Any) -> dict[str, Any]:
    start = time.time()
    request_id = _request_id(event)
    method = str(event.get("httpMethod") or "").upper()
    path = _path(event)
    segments = [unquote(s) for s in path.split("/") if s]

    wide_event: dict[str, Any] = {
        "event": "taskboard_api_request",
        "ts": _now_iso(),
        "request_id": request_id,
        "method": method,
        "path": path,
    }
    try:
        resp = _route(event, method, segments)
        wide_event["outcome"] = "success"
    except TaskboardApiError as e:
        resp = _error(e.status_code, e.message)
        wide_event["outcome"] = "error" if e.status_code >= 500 else "rejected"
        cause = e.__cause__
        if cause is not None:
            wide_event["error"] = {"type": type(cause).__name__, "message": str(cause)}
    except Exception as exc:
        resp = _error(500, "Internal server error")
        wide_event["outcome"] = "error"
        wide_event["error"] = {"type": type(exc).__name__, "message": str(exc)}

    wide_event["status_code"] = resp["statusCode"]
    wide_event["duration_ms"] = int((time.time() - start) * 1000)
    _log(wide_event)
    return resp
