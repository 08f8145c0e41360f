"""Threaded HTTP runtime serving discovered mocks and the admin API."""

from __future__ import annotations

import json
import re
import socketserver
import threading
from dataclasses import dataclass
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qsl, unquote, urlsplit

import structlog

from .dispatcher import MockDispatcher
from .models import MockRequest, MockRoute, RenderedResponse, ServerSettings

LOGGER = structlog.get_logger("mock_api_server")

ADMIN_MOCKS_PATH = "/api/mocks"
ADMIN_SERVER_PATH = "/api/server"


class ThreadedHTTPServer(socketserver.ThreadingMixIn, HTTPServer):
    daemon_threads = True


class BadRequestBody(ValueError):
    """Request body does not parse as its declared content type."""


@dataclass
class CompiledRoute:
    route: MockRoute
    pattern: re.Pattern[str]
    param_names: list[str]

    def match(self, method: str, path: str) -> dict[str, str] | None:
        if method != self.route.method:
            return None
        matched = self.pattern.match(path)
        if matched is None:
            return None
        return {name: unquote(value) for name, value in zip(self.param_names, matched.groups())}


def compile_route(route: MockRoute) -> CompiledRoute:
    """Compile an Express-style path (``/mock/users/:id``) into a regex.

    Parameters match one non-empty segment, a trailing slash is optional and
    matching is case-sensitive.
    """

    names: list[str] = []
    parts: list[str] = []
    for segment in route.url_path.strip("/").split("/"):
        if segment.startswith(":"):
            names.append(segment[1:])
            parts.append("([^/]+)")
        else:
            parts.append(re.escape(segment))
    pattern = re.compile("^/" + "/".join(parts) + "/?$")
    return CompiledRoute(route=route, pattern=pattern, param_names=names)


class RouteTable:
    """Ordered mock routes; the first registered match wins."""

    def __init__(self, routes: list[MockRoute]) -> None:
        self._routes = [compile_route(route) for route in routes]

    def __len__(self) -> int:
        return len(self._routes)

    def match(self, method: str, path: str) -> tuple[MockRoute, dict[str, str]] | None:
        for compiled in self._routes:
            params = compiled.match(method, path)
            if params is not None:
                return compiled.route, params
        return None


_BRACKET_KEY = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])+)$")
_BRACKET_PART = re.compile(r"\[([^\[\]]*)\]")


def parse_query(raw_query: str) -> dict[str, Any]:
    """Parse a query string, expanding ``a[b]=1`` and ``a[]=1`` into nested values.

    Repeated keys collect into a list, as do ``name[]`` keys.
    """

    result: dict[str, Any] = {}
    for key, value in parse_qsl(raw_query, keep_blank_values=True):
        matched = _BRACKET_KEY.match(key)
        if matched is None:
            _assign(result, [key], value)
        else:
            _assign(result, [matched.group(1), *_BRACKET_PART.findall(matched.group(2))], value)
    return result


def _assign(target: dict[str, Any], path: list[str], value: str) -> None:
    head, rest = path[0], path[1:]
    if not rest or rest == [""]:
        if head not in target:
            target[head] = [value] if rest else value
        elif isinstance(target[head], list):
            target[head].append(value)
        else:
            target[head] = [target[head], value]
        return
    child = target.get(head)
    if not isinstance(child, dict):
        child = {}
        target[head] = child
    _assign(child, rest, value)


def parse_body(content_type: str, raw_body: bytes) -> Any:
    """Decode the request body the way the mock rules expect to see it."""

    media_type = content_type.split(";", 1)[0].strip().lower()
    if not raw_body:
        return {}
    if media_type == "application/json" or media_type.endswith("+json"):
        try:
            return json.loads(raw_body.decode("utf-8"))
        except ValueError as exc:
            raise BadRequestBody(f"Request body is not valid JSON: {exc}") from exc
    if media_type == "application/x-www-form-urlencoded":
        return parse_query(raw_body.decode("utf-8", errors="replace"))
    if media_type.startswith("text/"):
        return raw_body.decode("utf-8", errors="replace")
    return {}


class MockServerRunner:
    """Runs the HTTP listener for one dispatcher."""

    def __init__(self, dispatcher: MockDispatcher, settings: ServerSettings | None = None) -> None:
        self._dispatcher = dispatcher
        self._settings = settings or ServerSettings()
        self._routes = RouteTable(dispatcher.routes)
        self._httpd: ThreadedHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()
        self._logger = LOGGER.bind(host=self._settings.http.host, port=self._settings.http.port)

    @property
    def server_address(self) -> tuple[str, int]:
        if not self._httpd:
            raise RuntimeError("Server is not running")
        host, port = self._httpd.server_address[:2]
        return str(host), int(port)

    def start(self) -> None:
        handler_factory = self._build_handler_factory()
        self._logger.info("server_starting", route_count=len(self._routes))
        httpd = ThreadedHTTPServer((self._settings.http.host, self._settings.http.port), handler_factory)
        self._httpd = httpd
        self._thread = threading.Thread(target=httpd.serve_forever, daemon=True)
        self._thread.start()
        self._ready.set()
        self._logger = LOGGER.bind(host=httpd.server_address[0], port=httpd.server_address[1])
        self._logger.info("server_started")

    def stop(self) -> None:
        if not self._httpd:
            return
        self._logger.info("server_stopping")
        try:
            self._httpd.shutdown()
            self._httpd.server_close()
        finally:
            if self._thread:
                self._thread.join(timeout=2)
            self._httpd = None
            self._ready.clear()
        self._logger.info("server_stopped")

    def wait_until_ready(self, timeout: float = 1.0) -> bool:
        return self._ready.wait(timeout=timeout)

    def serve_forever(self) -> None:
        """Block the calling thread until interrupted."""

        self.start()
        try:
            while self._thread and self._thread.is_alive():
                self._thread.join(timeout=0.5)
        finally:
            self.stop()

    def __enter__(self) -> "MockServerRunner":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - context helper
        self.stop()

    def _build_handler_factory(self) -> type[BaseHTTPRequestHandler]:
        dispatcher = self._dispatcher
        routes = self._routes
        settings = self._settings
        handler_logger = LOGGER

        class Handler(BaseHTTPRequestHandler):
            def log_message(self, format: str, *args: Any) -> None:  # pragma: no cover - avoid stdout
                handler_logger.debug(
                    "http_trace",
                    client_ip=self.client_address[0],
                    message=format % args,
                )

            def do_GET(self) -> None:  # noqa: N802 (BaseHTTPRequestHandler requirement)
                self._handle()

            def do_POST(self) -> None:  # noqa: N802
                self._handle()

            def do_PUT(self) -> None:  # noqa: N802
                self._handle()

            def do_DELETE(self) -> None:  # noqa: N802
                self._handle()

            def do_PATCH(self) -> None:  # noqa: N802
                self._handle()

            def do_HEAD(self) -> None:  # noqa: N802
                self._handle(head_only=True)

            def _handle(self, *, head_only: bool = False) -> None:
                split = urlsplit(self.path)
                path = split.path
                raw_body = self.rfile.read(int(self.headers.get("Content-Length", 0) or 0))
                method = "GET" if head_only else self.command

                if path == ADMIN_MOCKS_PATH and method == "GET":
                    self._list_mocks(head_only=head_only)
                    return
                if path.startswith(ADMIN_MOCKS_PATH + "/") and method == "PATCH":
                    self._update_mock(unquote(path[len(ADMIN_MOCKS_PATH) + 1:]), raw_body)
                    return
                if path == ADMIN_SERVER_PATH and method == "GET":
                    self._send_json(HTTPStatus.OK, settings.as_serializable(), head_only=head_only)
                    return

                matched = routes.match(method, path)
                if matched is None:
                    handler_logger.info("request_unmatched", method=self.command, path=path)
                    self._send(RenderedResponse(status=HTTPStatus.NOT_FOUND), head_only=head_only)
                    return

                route, params = matched
                try:
                    body = parse_body(self.headers.get("Content-Type", ""), raw_body)
                except BadRequestBody:
                    handler_logger.warning("request_body_invalid", method=self.command, path=path)
                    self._send(RenderedResponse(status=HTTPStatus.BAD_REQUEST), head_only=head_only)
                    return

                request = MockRequest(
                    method=route.method,
                    path=path,
                    params=params,
                    query=parse_query(split.query),
                    headers={key: value for key, value in self.headers.items()},
                    body=body,
                    raw_body=raw_body,
                )
                response = dispatcher.dispatch(route, request)
                self._send(response, head_only=head_only)
                handler_logger.info(
                    "request_served",
                    method=self.command,
                    path=path,
                    route_id=route.id,
                    status=response.status,
                )

            def _list_mocks(self, *, head_only: bool) -> None:
                try:
                    payload = [
                        {"mock": route.as_serializable(), "parsers": rule_set.as_serializable()}
                        for route, rule_set in dispatcher.list_with_rule_sets()
                    ]
                except Exception:
                    handler_logger.exception("mocks_list_failed")
                    self._send(RenderedResponse(status=HTTPStatus.INTERNAL_SERVER_ERROR), head_only=head_only)
                    return
                self._send_json(HTTPStatus.OK, payload, head_only=head_only)

            def _update_mock(self, route_id: str, raw_body: bytes) -> None:
                try:
                    payload = json.loads(raw_body.decode("utf-8") or "{}")
                    if not isinstance(payload, dict):
                        raise ValueError("Update payload must be a JSON object")
                    dispatcher.set_active_rule(route_id, str(payload.get("parser") or ""))
                except Exception:
                    handler_logger.exception("mock_update_failed", route_id=route_id)
                    self._send(RenderedResponse(status=HTTPStatus.INTERNAL_SERVER_ERROR))
                    return
                self._send(RenderedResponse(status=HTTPStatus.NO_CONTENT))

            def _send_json(self, status: HTTPStatus, payload: Any, *, head_only: bool = False) -> None:
                body = json.dumps(payload).encode("utf-8")
                response = RenderedResponse(
                    status=status,
                    headers={"Content-Type": "application/json; charset=utf-8"},
                    body=body,
                )
                self._send(response, head_only=head_only)

            def _send(self, response: RenderedResponse, *, head_only: bool = False) -> None:
                self.send_response(int(response.status))
                for key, value in response.headers.items():
                    if key.lower() == "content-length":
                        continue
                    self.send_header(key, value)
                if int(response.status) != HTTPStatus.NO_CONTENT:
                    self.send_header("Content-Length", str(len(response.body)))
                self.end_headers()
                if not head_only and response.body:
                    self.wfile.write(response.body)

        return Handler


def describe_routes(routes: list[MockRoute]) -> list[str]:
    lines = ["    routes:"]
    if routes:
        lines.extend(f"      - {route.method} {route.url_path}" for route in routes)
    else:
        lines.append("      (no routes configured)")
    return lines
