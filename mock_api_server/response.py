"""Render a ResponseSpec into bytes that can be written to the client."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .errors import BodyFileNotFoundError
from .models import RenderedResponse, ResponseSpec

FILE_BODY_CONTENT_TYPE = "application/octet-stream"
TEXT_BODY_CONTENT_TYPE = "text/html; charset=utf-8"
JSON_BODY_CONTENT_TYPE = "application/json; charset=utf-8"


def render_response(directory: Path, spec: ResponseSpec) -> RenderedResponse:
    """Resolve the body first, then apply status and headers.

    ``body`` names a file relative to the route directory and is sent
    verbatim; otherwise ``rawBody`` (or an empty string) is sent.
    """

    if spec.body is not None:
        payload = _read_body_file(directory, spec.body)
        content_type = FILE_BODY_CONTENT_TYPE
    else:
        payload, content_type = _encode_raw_body(spec.raw_body)

    headers = {"Content-Type": content_type}
    for key, value in (spec.headers or {}).items():
        _set_header(headers, str(key), _header_value(value))

    return RenderedResponse(status=spec.status or 200, headers=headers, body=payload)


def _read_body_file(directory: Path, name: str) -> bytes:
    body_path = directory / name
    try:
        return body_path.read_bytes()
    except OSError as exc:
        raise BodyFileNotFoundError(f"Could not read response body file [file={body_path}]") from exc


def _encode_raw_body(raw_body: Any) -> tuple[bytes, str]:
    if raw_body is None or raw_body == "":
        return b"", TEXT_BODY_CONTENT_TYPE
    if isinstance(raw_body, bytes):
        return raw_body, FILE_BODY_CONTENT_TYPE
    if isinstance(raw_body, (dict, list)):
        return json.dumps(raw_body).encode("utf-8"), JSON_BODY_CONTENT_TYPE
    return str(raw_body).encode("utf-8"), TEXT_BODY_CONTENT_TYPE


def _header_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _set_header(headers: dict[str, str], name: str, value: str) -> None:
    for existing in list(headers):
        if existing.lower() == name.lower():
            del headers[existing]
    headers[name] = value
