"""Rule evaluation: turn a parser file plus a request into a ResponseSpec."""

from __future__ import annotations

import asyncio
import importlib.util
import inspect
import itertools
import sys
import threading
from pathlib import Path
from typing import Any, Callable, Mapping

import structlog
import yaml
from pydantic import ValidationError

from .constants import DECLARATIVE_EXTENSIONS, SCRIPT_EXTENSIONS
from .errors import NoMatchError, RuleFileError, UnsupportedFormatError
from .models import MockRequest, ResponseSpec, RuleCondition, RuleEntry

LOGGER = structlog.get_logger("mock_api_server")

ScriptRule = Callable[[MockRequest], Any]

SCRIPT_ENTRYPOINTS = ("parse", "default")

_MODULE_SEQUENCE = itertools.count()


def loose_equals(actual: Any, expected: Any) -> bool:
    """Compare a transport value with a rule value by string representation.

    Path parameters always arrive as strings while rules may spell them as
    numbers or booleans. Scalars are compared by their text form: booleans as
    ``true``/``false``, integral floats as integers. ``None`` only equals
    ``None``; mappings and lists fall back to ``==``.
    """

    if actual is None or expected is None:
        return actual is None and expected is None
    if isinstance(actual, (dict, list)) or isinstance(expected, (dict, list)):
        return actual == expected
    return _scalar_text(actual) == _scalar_text(expected)


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def is_match(
    actual: Any,
    expected: Mapping[str, Any],
    equals: Callable[[Any, Any], bool] | None = None,
) -> bool:
    """Partial deep comparison of ``actual`` against ``expected``.

    Every key of ``expected`` must exist in ``actual`` with a matching value.
    Nested mappings are matched partially as well, and an expected list
    matches when each of its items matches some item of the actual list.
    """

    if not expected:
        return True
    if not isinstance(actual, Mapping):
        return False
    for key, expected_value in expected.items():
        if key not in actual:
            return False
        if not _value_matches(actual[key], expected_value, equals):
            return False
    return True


def _value_matches(actual: Any, expected: Any, equals: Callable[[Any, Any], bool] | None) -> bool:
    if isinstance(expected, Mapping):
        return is_match(actual, expected, equals)
    if isinstance(expected, list):
        if not isinstance(actual, list):
            return False
        return all(any(_value_matches(item, wanted, equals) for item in actual) for wanted in expected)
    if equals is not None:
        return equals(actual, expected)
    # True == 1 in Python; rule values are compared strictly.
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    return actual == expected


def condition_matches(request: MockRequest, condition: RuleCondition | None) -> bool:
    """All present groups of the ``if`` block must match the request."""

    if condition is None:
        return True
    return (
        is_match(request.params, condition.params or {}, equals=loose_equals)
        and is_match(request.query, condition.query or {})
        and is_match(request.body, condition.body or {})
    )


class ScriptRegistry:
    """Callable table for script parser files.

    Callables registered for a path win. Unregistered ``.py`` files are
    imported and their ``parse`` (or ``default``) function is used.
    """

    def __init__(self) -> None:
        self._rules: dict[Path, ScriptRule] = {}
        self._lock = threading.Lock()

    def register(self, path: Path | str, rule: ScriptRule) -> None:
        with self._lock:
            self._rules[Path(path).resolve()] = rule

    def unregister(self, path: Path | str) -> None:
        with self._lock:
            self._rules.pop(Path(path).resolve(), None)

    def get(self, path: Path) -> ScriptRule:
        with self._lock:
            rule = self._rules.get(path.resolve())
        if rule is not None:
            return rule
        if path.suffix.lower() == ".py":
            return _load_python_rule(path)
        raise UnsupportedFormatError(f"No script rule registered for parser file [path={path}]")


def _load_python_rule(path: Path) -> ScriptRule:
    # Loaded on every call so edits to the file apply to the next request.
    module_name = f"mock_rule_{next(_MODULE_SEQUENCE)}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise RuleFileError(f"Could not load script parser file [path={path}]")
    module = importlib.util.module_from_spec(spec)
    # dataclasses and typing resolve the defining module through sys.modules
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    finally:
        sys.modules.pop(module_name, None)
    for name in SCRIPT_ENTRYPOINTS:
        rule = getattr(module, name, None)
        if callable(rule):
            return rule
    raise RuleFileError(f"Script parser file exports no parse() function [path={path}]")


class RuleEvaluator:
    """Evaluates declarative (YAML) and script parser files."""

    def __init__(self, scripts: ScriptRegistry | None = None) -> None:
        self.scripts = scripts or ScriptRegistry()

    def evaluate(self, parser_file: Path, request: MockRequest) -> ResponseSpec:
        suffix = parser_file.suffix.lower()
        if suffix in SCRIPT_EXTENSIONS:
            return self._evaluate_script(parser_file, request)
        if suffix in DECLARATIVE_EXTENSIONS:
            return self._evaluate_yaml(parser_file, request)
        raise UnsupportedFormatError(f"Parser file is unsupported format [path={parser_file}]")

    def _evaluate_script(self, parser_file: Path, request: MockRequest) -> ResponseSpec:
        rule = self.scripts.get(parser_file)
        result = rule(request)
        if inspect.isawaitable(result):
            result = asyncio.run(_await(result))
        return _to_response_spec(result, parser_file)

    def _evaluate_yaml(self, parser_file: Path, request: MockRequest) -> ResponseSpec:
        try:
            document = yaml.safe_load(parser_file.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise RuleFileError(f"Parser file is not valid YAML [path={parser_file}]: {exc}") from exc

        if document is None:
            return ResponseSpec()
        if isinstance(document, dict):
            return _to_response_spec(document, parser_file)
        if not isinstance(document, list):
            raise RuleFileError(f"Parser file must hold a mapping or a list [path={parser_file}]")

        for index, raw_entry in enumerate(document):
            entry = _to_rule_entry(raw_entry, parser_file, index)
            if condition_matches(request, entry.condition):
                LOGGER.debug("rule_matched", parser_file=str(parser_file), entry=index)
                return entry.then if entry.then is not None else ResponseSpec()
        raise NoMatchError(f"Not match parser pattern [path={parser_file}]")


async def _await(awaitable: Any) -> Any:
    return await awaitable


def _to_rule_entry(raw_entry: Any, parser_file: Path, index: int) -> RuleEntry:
    if not isinstance(raw_entry, dict):
        raise RuleFileError(f"Rule entry #{index} must be a mapping [path={parser_file}]")
    try:
        return RuleEntry.model_validate(raw_entry)
    except ValidationError as exc:
        raise RuleFileError(f"Rule entry #{index} is invalid [path={parser_file}]: {exc}") from exc


def _to_response_spec(result: Any, parser_file: Path) -> ResponseSpec:
    if isinstance(result, ResponseSpec):
        return result
    if result is None:
        return ResponseSpec()
    if not isinstance(result, Mapping):
        raise RuleFileError(f"Parser result must be a mapping [path={parser_file}]")
    try:
        return ResponseSpec.model_validate(dict(result))
    except ValidationError as exc:
        raise RuleFileError(f"Parser result is invalid [path={parser_file}]: {exc}") from exc
