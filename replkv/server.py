"""HTTP front end for a replica: read, write and delete keys, and report status."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Optional
from urllib.parse import unquote, urlsplit

from replkv.command import Command, Op
from replkv.node import Node, NotLeaderError

__all__ = ["Server"]

MAX_BODY_BYTES = 1 << 14
PROPOSE_TIMEOUT = 5.0
READ_HEADER_TIMEOUT = 10.0

_ROUTES = {"kv": ("DELETE", "GET", "HEAD", "PUT"), "status": ("GET", "HEAD")}

_log = logging.getLogger(__name__)

Response = tuple[int, dict[str, str], bytes]


class _BadBody(ValueError):
    """The request body is not an acceptable JSON document."""


def _json(status: int, payload: dict[str, Any]) -> Response:
    text = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return status, {"Content-Type": "application/json"}, (text + "\n").encode("utf-8")


def _text(status: int, message: str, extra: Optional[dict[str, str]] = None) -> Response:
    headers = {"Content-Type": "text/plain; charset=utf-8", "X-Content-Type-Options": "nosniff"}
    headers.update(extra or {})
    return status, headers, (message + "\n").encode("utf-8")


def _parse_put_body(body: bytes) -> str:
    """Read the first JSON value of a PUT body and return its "value" field."""
    text = body.decode("utf-8", errors="replace").lstrip(" \t\r\n")
    if not text:
        raise _BadBody("EOF")
    try:
        obj, _ = json.JSONDecoder().raw_decode(text)
    except json.JSONDecodeError as exc:
        raise _BadBody(str(exc)) from None
    if obj is None:
        return ""
    if not isinstance(obj, dict):
        raise _BadBody(f"cannot unmarshal {type(obj).__name__} into an object")
    value = ""
    for name, item in obj.items():
        if name.lower() != "value":
            raise _BadBody(f'unknown field "{name}"')
        if item is not None and not isinstance(item, str):
            raise _BadBody(f'cannot unmarshal {type(item).__name__} into field "value" of type string')
        value = item or value
    return value


def _propose_error(exc: Exception) -> Response:
    causes = (exc, exc.__cause__)
    if any(isinstance(c, NotLeaderError) for c in causes):
        return _json(503, {"Error": "not leader"})
    if any(isinstance(c, TimeoutError) for c in causes):
        return _json(504, {"Error": "apply timeout"})
    return _json(500, {"Error": f"propose: {exc}"})


class _Handler(BaseHTTPRequestHandler):
    app: "Server"
    protocol_version = "HTTP/1.1"
    timeout = READ_HEADER_TIMEOUT

    def _serve(self) -> None:
        try:
            length = max(0, int(self.headers.get("Content-Length") or 0))
        except ValueError:
            length = 0
        to_read = min(length, MAX_BODY_BYTES + 1)
        body = self.rfile.read(to_read) if to_read else b""
        if length > to_read:
            self.close_connection = True
        status, headers, payload = self.app.dispatch(self.command, self.path, body)
        self.send_response(status)
        for name, value in headers.items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(payload)

    do_GET = do_HEAD = do_PUT = do_DELETE = do_POST = do_PATCH = do_OPTIONS = _serve

    def log_message(self, format: str, *args: Any) -> None:
        _log.debug("%s " + format, self.address_string(), *args)


class Server:
    """Serves a node's key-value API over HTTP at ``addr`` ("host:port")."""

    def __init__(self, node: Node, addr: str) -> None:
        self._node = node
        self._addr = addr
        self._lock = threading.Lock()
        self._closed = False
        self._httpd: Optional[ThreadingHTTPServer] = None

    def dispatch(self, method: str, path: str, body: bytes = b"") -> Response:
        """Handle one request; return its status code, headers and body bytes."""
        segments = urlsplit(path).path.split("/")
        if len(segments) == 3 and segments[:2] == ["", "kv"] and segments[2]:
            route, key = "kv", unquote(segments[2])
        elif segments == ["", "status"]:
            route, key = "status", ""
        else:
            return _text(404, "404 page not found")

        method = method.upper()
        if method not in _ROUTES[route]:
            return _text(405, "Method Not Allowed", {"Allow": ", ".join(_ROUTES[route])})
        if route == "status":
            return _json(200, {
                "node_id": self._node.id(),
                "is_leader": self._node.is_leader(),
                "store_len": self._node.store_len(),
            })
        if method in ("GET", "HEAD"):
            value = self._node.get(key)
            if value == "":
                return _json(404, {"Error": "key not found"})
            return _json(200, {"value": value})
        if method == "PUT":
            return self._handle_put(key, body)
        return self._handle_delete(key)

    def start(self) -> None:
        """Listen and serve until ``shutdown``; raise OSError if binding fails."""
        host, sep, port = self._addr.rpartition(":")
        if not sep or not (port or "0").isdigit():
            raise ValueError(f"address {self._addr!r}: bad port")
        handler = type("_BoundHandler", (_Handler,), {"app": self})
        with self._lock:
            if self._closed:
                return
            httpd = ThreadingHTTPServer((host.strip("[]"), int(port or 0)), handler)
            httpd.daemon_threads = True
            self._httpd = httpd
        try:
            httpd.serve_forever()
        finally:
            httpd.server_close()

    def shutdown(self) -> None:
        """Stop serving. A later ``start`` returns at once."""
        with self._lock:
            self._closed = True
            httpd = self._httpd
        if httpd is not None:
            httpd.shutdown()

    def _handle_put(self, key: str, body: bytes) -> Response:
        if len(body) > MAX_BODY_BYTES:
            return _json(413, {"Error": "Request Body too large"})
        try:
            value = _parse_put_body(body)
        except _BadBody as exc:
            return _json(400, {"Error": f"Invalid JSON: {exc}"})
        if value == "":
            return _json(400, {"Error": "value must be non-empty"})
        cmd = Command(request_id=str(uuid.uuid4()), op=Op.SET, key=key, value=value)
        try:
            result = self._node.propose(cmd, timeout=PROPOSE_TIMEOUT)
        except Exception as exc:
            return _propose_error(exc)
        created = result.old_value == ""
        return _json(201 if created else 200, {"Created": created})

    def _handle_delete(self, key: str) -> Response:
        cmd = Command(request_id=str(uuid.uuid4()), op=Op.DELETE, key=key)
        try:
            result = self._node.propose(cmd, timeout=PROPOSE_TIMEOUT)
        except Exception as exc:
            return _propose_error(exc)
        if result.old_value == "":
            return _json(404, {"Error": "Key not found"})
        return _json(200, {"Deleted": True})