"""Per-request orchestration of route lookup, rule evaluation and rendering."""

from __future__ import annotations

from pathlib import Path

import structlog

from .errors import MockNotFoundError
from .evaluator import RuleEvaluator
from .models import MockRequest, MockRoute, RenderedResponse, RuleFileSet
from .registry import MockRegistry
from .resolver import ParserFileResolver
from .response import render_response
from .settings import UserSettingsStore

LOGGER = structlog.get_logger("mock_api_server")


class MockDispatcher:
    """Serves discovered routes and manages their active parser files."""

    def __init__(
        self,
        registry: MockRegistry,
        user_settings: UserSettingsStore,
        resolver: ParserFileResolver | None = None,
        evaluator: RuleEvaluator | None = None,
    ) -> None:
        self._registry = registry
        self._user_settings = user_settings
        self._resolver = resolver or ParserFileResolver()
        self._evaluator = evaluator or RuleEvaluator()

    @property
    def routes(self) -> list[MockRoute]:
        return self._registry.routes

    def get_route(self, route_id: str) -> MockRoute:
        route = self._registry.find(route_id)
        if route is None:
            raise MockNotFoundError(f"Could not find mock definition [id={route_id}]")
        return route

    def get_rule_set(self, route_id: str) -> RuleFileSet:
        return self._rule_set_for(self.get_route(route_id))

    def list_with_rule_sets(self) -> list[tuple[MockRoute, RuleFileSet]]:
        return [(route, self._rule_set_for(route)) for route in self.routes]

    def set_active_rule(self, route_id: str, file_name: str) -> None:
        """Persist ``file_name`` as the user selected parser file of a route."""

        route = self.get_route(route_id)
        parser_path = Path(route.directory_path) / file_name
        if not file_name or not parser_path.is_file():
            raise MockNotFoundError(f"Could not find specified parser file [file={parser_path}]")

        setting = self._user_settings.get_mock_setting(route.url_path, route.method)
        setting.parser = file_name
        self._user_settings.save_mock_setting(route.url_path, route.method, setting)
        LOGGER.info(
            "parser_updated",
            route_id=route.id,
            url_path=route.url_path,
            method=route.method,
            parser=file_name,
        )

    def dispatch(self, route: MockRoute, request: MockRequest) -> RenderedResponse:
        """Build the response of one request; failures become an empty 500."""

        logger = LOGGER.bind(route_id=route.id, url_path=route.url_path, method=route.method)
        try:
            rule_set = self._rule_set_for(route)
            directory = Path(route.directory_path)
            spec = self._evaluator.evaluate(directory / rule_set.current, request)
            response = render_response(directory, spec)
        except Exception:
            logger.exception("mock_dispatch_failed", path=request.path)
            return RenderedResponse(status=500)
        logger.debug("mock_dispatched", parser=rule_set.current, status=response.status)
        return response

    def _rule_set_for(self, route: MockRoute) -> RuleFileSet:
        setting = self._user_settings.get_mock_setting(route.url_path, route.method)
        return self._resolver.resolve(Path(route.directory_path), setting.parser)
