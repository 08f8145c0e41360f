from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from mock_api_server.errors import NoMatchError, RuleFileError, UnsupportedFormatError
from mock_api_server.evaluator import RuleEvaluator, ScriptRegistry, is_match, loose_equals
from mock_api_server.models import MockRequest, ResponseSpec


def _write(directory: Path, name: str, content: str) -> Path:
    target = directory / name
    target.write_text(textwrap.dedent(content), encoding="utf-8")
    return target


def _request(**kwargs) -> MockRequest:
    return MockRequest(method="GET", path="/mock/test", **kwargs)


@pytest.mark.parametrize(
    ("actual", "expected", "result"),
    [
        ("1", 1, True),
        ("1", 1.0, True),
        ("1.5", 1.5, True),
        ("true", True, True),
        ("false", False, True),
        ("abc", "abc", True),
        ("2", 1, False),
        ("True", True, False),
        (None, None, True),
        ("", None, False),
    ],
)
def test_loose_equals(actual, expected, result) -> None:
    assert loose_equals(actual, expected) is result


def test_is_match_is_partial_and_deep() -> None:
    actual = {"user": {"name": "alice", "age": 30}, "tags": ["a", "b"], "extra": 1}

    assert is_match(actual, {"user": {"name": "alice"}})
    assert is_match(actual, {"tags": ["b"]})
    assert is_match(actual, {})
    assert not is_match(actual, {"user": {"name": "bob"}})
    assert not is_match(actual, {"missing": None})
    assert not is_match("text body", {"key": "value"})


def test_is_match_compares_booleans_strictly() -> None:
    assert not is_match({"flag": 1}, {"flag": True})
    assert is_match({"flag": True}, {"flag": True})


def test_single_mapping_is_response_without_conditions(tmp_path: Path) -> None:
    parser = _write(
        tmp_path,
        "parser-default.yml",
        """
        status: 201
        headers:
          Content-Type: application/json
        body: data.json
        """,
    )

    spec = RuleEvaluator().evaluate(parser, _request())

    assert spec.status == 201
    assert spec.headers == {"Content-Type": "application/json"}
    assert spec.body == "data.json"


def test_query_condition_selects_entry(tmp_path: Path) -> None:
    parser = _write(
        tmp_path,
        "parser-default.yml",
        """
        - if:
            query:
              k: v
          then:
            status: 202
        """,
    )
    evaluator = RuleEvaluator()

    assert evaluator.evaluate(parser, _request(query={"k": "v"})).status == 202
    with pytest.raises(NoMatchError):
        evaluator.evaluate(parser, _request(query={"k": "other"}))


def test_params_condition_uses_loose_equality(tmp_path: Path) -> None:
    parser = _write(
        tmp_path,
        "parser-default.yml",
        """
        - if:
            params:
              id: 1
          then:
            rawBody: first
        - then:
            rawBody: other
        """,
    )
    evaluator = RuleEvaluator()

    assert evaluator.evaluate(parser, _request(params={"id": "1"})).raw_body == "first"
    assert evaluator.evaluate(parser, _request(params={"id": "2"})).raw_body == "other"


def test_conditions_are_combined_with_and(tmp_path: Path) -> None:
    parser = _write(
        tmp_path,
        "parser-default.yml",
        """
        - if:
            params: {key1: value1}
            query: {key2: value2}
            body: {key3: value3}
          then:
            rawBody: match!!
        - then:
            status: 500
            rawBody: test body
        """,
    )
    evaluator = RuleEvaluator()
    matching = _request(params={"key1": "value1"}, query={"key2": "value2"}, body={"key3": "value3"})
    partial = _request(params={"key1": "value1"}, query={"key2": "value2"}, body={})

    assert evaluator.evaluate(parser, matching).raw_body == "match!!"
    fallback = evaluator.evaluate(parser, partial)
    assert fallback.status == 500
    assert fallback.raw_body == "test body"


def test_every_key_of_a_group_must_match(tmp_path: Path) -> None:
    parser = _write(
        tmp_path,
        "parser-default.yml",
        """
        - if:
            query: {key1: value1, key2: value2}
          then:
            rawBody: match!!
        """,
    )

    with pytest.raises(NoMatchError):
        RuleEvaluator().evaluate(parser, _request(query={"key1": "value1"}))


def test_first_matching_entry_wins(tmp_path: Path) -> None:
    parser = _write(
        tmp_path,
        "parser-default.yml",
        """
        - if:
            query: {page: "2"}
          then:
            rawBody: second page
        - if: {}
          then:
            rawBody: any
        - then:
            rawBody: never
        """,
    )
    evaluator = RuleEvaluator()

    assert evaluator.evaluate(parser, _request(query={"page": "2"})).raw_body == "second page"
    assert evaluator.evaluate(parser, _request()).raw_body == "any"


def test_entry_without_then_is_empty_response(tmp_path: Path) -> None:
    parser = _write(tmp_path, "parser-default.yml", "- if: {}\n")

    spec = RuleEvaluator().evaluate(parser, _request())

    assert spec.model_fields_set == set()
    assert spec.explicit_fields() == {}


def test_only_explicit_fields_are_carried_over(tmp_path: Path) -> None:
    parser = _write(tmp_path, "parser-default.yml", "- then:\n    rawBody: hello\n")

    spec = RuleEvaluator().evaluate(parser, _request())

    assert spec.explicit_fields() == {"rawBody": "hello"}


def test_empty_yaml_is_empty_response(tmp_path: Path) -> None:
    parser = _write(tmp_path, "parser-default.yml", "")

    assert RuleEvaluator().evaluate(parser, _request()) == ResponseSpec()


def test_scalar_yaml_is_rejected(tmp_path: Path) -> None:
    parser = _write(tmp_path, "parser-default.yml", "just text\n")

    with pytest.raises(RuleFileError):
        RuleEvaluator().evaluate(parser, _request())


def test_non_mapping_entry_is_rejected(tmp_path: Path) -> None:
    parser = _write(tmp_path, "parser-default.yml", "- not an entry\n")

    with pytest.raises(RuleFileError):
        RuleEvaluator().evaluate(parser, _request())


def test_unsupported_extension_is_rejected(tmp_path: Path) -> None:
    parser = _write(tmp_path, "parser-default.txt", "status: 200\n")

    with pytest.raises(UnsupportedFormatError):
        RuleEvaluator().evaluate(parser, _request())


def test_extension_check_ignores_case(tmp_path: Path) -> None:
    parser = _write(tmp_path, "parser-default.YML", "status: 204\n")

    assert RuleEvaluator().evaluate(parser, _request()).status == 204


def test_python_script_rule_reads_request(tmp_path: Path) -> None:
    parser = _write(
        tmp_path,
        "parser-echo.py",
        """
        def parse(request):
            return {
                "status": 200,
                "headers": {"content-type": "application/text"},
                "rawBody": request.body,
            }
        """,
    )

    spec = RuleEvaluator().evaluate(parser, _request(body="this is request body"))

    assert spec.status == 200
    assert spec.headers == {"content-type": "application/text"}
    assert spec.raw_body == "this is request body"


def test_python_script_without_parse_function_is_rejected(tmp_path: Path) -> None:
    parser = _write(tmp_path, "parser-empty.py", "VALUE = 1\n")

    with pytest.raises(RuleFileError):
        RuleEvaluator().evaluate(parser, _request())


def test_python_script_errors_propagate(tmp_path: Path) -> None:
    parser = _write(
        tmp_path,
        "parser-broken.py",
        """
        def parse(request):
            raise RuntimeError("boom")
        """,
    )

    with pytest.raises(RuntimeError, match="boom"):
        RuleEvaluator().evaluate(parser, _request())


def test_registered_script_rule_serves_js_file(tmp_path: Path) -> None:
    parser = _write(tmp_path, "parser-simple.js", "export default () => ({});\n")
    scripts = ScriptRegistry()
    scripts.register(parser, lambda request: ResponseSpec(status=203, rawBody="test message"))

    spec = RuleEvaluator(scripts).evaluate(parser, _request())

    assert spec.status == 203
    assert spec.raw_body == "test message"


def test_unregistered_js_file_is_unsupported(tmp_path: Path) -> None:
    parser = _write(tmp_path, "parser-simple.js", "export default () => ({});\n")

    with pytest.raises(UnsupportedFormatError):
        RuleEvaluator().evaluate(parser, _request())


def test_async_script_rule_is_awaited(tmp_path: Path) -> None:
    parser = tmp_path / "parser-async.js"
    scripts = ScriptRegistry()

    async def rule(request: MockRequest) -> dict:
        return {"status": 202}

    scripts.register(parser, rule)

    assert RuleEvaluator(scripts).evaluate(parser, _request()).status == 202


def test_python_script_may_define_dataclasses(tmp_path: Path) -> None:
    parser = _write(
        tmp_path,
        "parser-dc.py",
        """
        from __future__ import annotations

        from dataclasses import asdict, dataclass


        @dataclass
        class Reply:
            status: int
            rawBody: str


        def parse(request):
            return asdict(Reply(status=201, rawBody=request.path))
        """,
    )

    spec = RuleEvaluator().evaluate(parser, _request())

    assert spec.status == 201
    assert spec.raw_body == "/mock/test"


def test_python_script_reads_json_payload(tmp_path: Path) -> None:
    parser = _write(
        tmp_path,
        "parser-json.py",
        """
        def parse(request):
            payload = request.json or {}
            return {"status": 200, "rawBody": payload.get("name", "anonymous")}
        """,
    )
    evaluator = RuleEvaluator()

    assert evaluator.evaluate(parser, _request(raw_body=b'{"name": "x"}')).raw_body == "x"
    assert evaluator.evaluate(parser, _request(raw_body=b"not json")).raw_body == "anonymous"
    assert evaluator.evaluate(parser, _request()).raw_body == "anonymous"


def test_unregistered_script_rule_is_no_longer_served(tmp_path: Path) -> None:
    parser = _write(tmp_path, "parser-simple.js", "export default () => ({});\n")
    scripts = ScriptRegistry()
    scripts.register(parser, lambda request: {"status": 200})
    evaluator = RuleEvaluator(scripts)
    assert evaluator.evaluate(parser, _request()).status == 200

    scripts.unregister(parser)

    with pytest.raises(UnsupportedFormatError):
        evaluator.evaluate(parser, _request())
