"""Discovery of mock routes from a directory tree."""

from __future__ import annotations

import base64
import hashlib
import os
from pathlib import Path

import structlog

from .constants import (
    METHOD_DIRECTORY_MARKER,
    MOCK_URL_PREFIX,
    PATH_PARAMETER_MARKER,
    SUPPORTED_METHODS,
)
from .models import MockRoute

LOGGER = structlog.get_logger("mock_api_server")


def generate_route_id(url_path: str, method: str) -> str:
    """Stable id of a route: base64 encoded SHA-1 of ``url_path@method``."""

    digest = hashlib.sha1(f"{url_path}@{method}".encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def is_method_directory(name: str) -> bool:
    return name.startswith(METHOD_DIRECTORY_MARKER)


def build_url_path(root: Path, parent: Path) -> str:
    """Map the directory holding a method directory to an Express-style path.

    ``<root>/users/$id`` becomes ``/mock/users/:id``.
    """

    relative = os.path.relpath(parent, root).replace("\\", "/")
    segments = [] if relative == "." else relative.split("/")
    converted = [
        ":" + segment[len(PATH_PARAMETER_MARKER):] if segment.startswith(PATH_PARAMETER_MARKER) else segment
        for segment in segments
    ]
    return MOCK_URL_PREFIX + "".join(f"/{segment}" for segment in converted)


class MockRegistry:
    """Walks the mock directory and keeps the discovered routes."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._routes: list[MockRoute] = []
        self._logger = LOGGER.bind(mock_dir=str(self.root))

    @property
    def routes(self) -> list[MockRoute]:
        return list(self._routes)

    def find(self, route_id: str) -> MockRoute | None:
        for route in self._routes:
            if route.id == route_id:
                return route
        return None

    def discover(self, root: Path | None = None) -> list[MockRoute]:
        """Rebuild the route table; errors leave it empty instead of raising."""

        if root is not None:
            self.root = Path(root)
            self._logger = LOGGER.bind(mock_dir=str(self.root))
        self._logger.info("routes_loading")
        if not self.root.is_dir():
            self._logger.warning("mock_directory_missing")
            self._routes = []
            return []
        try:
            routes = self._walk(self.root)
        except Exception:
            self._logger.exception("routes_load_failed")
            routes = []
        self._routes = routes
        self._logger.info("routes_loaded", route_count=len(routes))
        return list(routes)

    def _walk(self, directory: Path) -> list[MockRoute]:
        routes: list[MockRoute] = []
        for child in sorted(directory.iterdir(), key=lambda entry: entry.name):
            if not child.is_dir():
                continue
            if is_method_directory(child.name):
                route = self._create_route(directory, child)
                if route is not None:
                    routes.append(route)
            else:
                routes.extend(self._walk(child))
        return routes

    def _create_route(self, parent: Path, method_directory: Path) -> MockRoute | None:
        url_path = build_url_path(self.root, parent)
        method = method_directory.name[len(METHOD_DIRECTORY_MARKER):].upper()
        if method not in SUPPORTED_METHODS:
            self._logger.warning("route_unsupported_method", url_path=url_path, method=method)
            return None
        route = MockRoute(
            id=generate_route_id(url_path, method),
            directory_path=str(method_directory),
            url_path=url_path,
            method=method,
        )
        self._logger.info("route_registered", url_path=url_path, method=method, route_id=route.id)
        return route
