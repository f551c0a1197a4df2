"""Local HTTP server that feeds requests through the Lambda handler."""

from __future__ import annotations

import base64
import json
import uuid
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable
from urllib.parse import parse_qsl, urlsplit

from taskboard import api

# Maximum accepted request body size (1 MiB).
MAX_REQUEST_BODY_BYTES = 1_048_576

LambdaHandler = Callable[[dict[str, Any], Any], dict[str, Any]]


def build_event(method: str, target: str, body: bytes | None) -> dict[str, Any]:
    """Translate a raw request line + body into an API Gateway proxy event.

    Bodies that are not valid UTF-8 are passed base64-encoded, the way API
    Gateway forwards binary payloads.
    """
    parts = urlsplit(target)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    text = None
    is_base64 = False
    if body:
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            text = base64.b64encode(body).decode("ascii")
            is_base64 = True
    return {
        "httpMethod": method.upper(),
        "path": parts.path or "/",
        "queryStringParameters": query or None,
        "body": text,
        "isBase64Encoded": is_base64,
        "requestContext": {"requestId": uuid.uuid4().hex},
    }


def _make_handler_class(lambda_handler: LambdaHandler) -> type:
    class TaskboardRequestHandler(BaseHTTPRequestHandler):
        server_version = "TaskboardLocal/1.0"

        def _dispatch(self) -> None:
            try:
                length = int(self.headers.get("Content-Length") or 0)
            except ValueError:
                length = -1
            if length < 0:
                self._reject(400, "Invalid Content-Length header")
                return
            if length > MAX_REQUEST_BODY_BYTES:
                self._reject(413, "Request body too large")
                return
            body = self.rfile.read(length) if length > 0 else None
            event = build_event(self.command, self.path, body)
            resp = lambda_handler(event, None)
            payload = str(resp.get("body") or "").encode("utf-8")
            self._write(int(resp.get("statusCode") or 500), resp.get("headers") or {}, payload)

        def _reject(self, status: int, message: str) -> None:
            # The unread body makes the connection unusable for another request.
            self.close_connection = True
            payload = json.dumps({"success": False, "error": message}).encode("utf-8")
            self._write(status, {"content-type": "application/json"}, payload)

        def _write(self, status: int, headers: dict[str, str], payload: bytes) -> None:
            self.send_response(status)
            for key, value in headers.items():
                self.send_header(key, value)
            self.send_header("content-length", str(len(payload)))
            self.end_headers()
            if payload and self.command != "HEAD":
                self.wfile.write(payload)

        do_GET = _dispatch
        do_POST = _dispatch
        do_PUT = _dispatch
        do_DELETE = _dispatch
        do_PATCH = _dispatch
        do_OPTIONS = _dispatch

        def log_message(self, format: str, *args: Any) -> None:
            # api.handler logs each request.
            pass

    return TaskboardRequestHandler


def make_server(host: str, port: int, lambda_handler: LambdaHandler | None = None) -> ThreadingHTTPServer:
    return ThreadingHTTPServer((host, port), _make_handler_class(lambda_handler or api.handler))
