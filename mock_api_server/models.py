"""Pydantic models and request/response containers used by the mock runtime."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .constants import DEFAULT_PARSER_FILE


class MockRoute(BaseModel):
    """One mocked endpoint discovered from a method directory."""

    model_config = ConfigDict(frozen=True)

    id: str
    directory_path: str
    url_path: str
    method: str

    def as_serializable(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "directoryPath": self.directory_path,
            "urlPath": self.url_path,
            "method": self.method,
        }


class RuleFileSet(BaseModel):
    """Parser files of a route and the one currently in effect.

    ``current`` and ``user`` are the same unless the user selected file is
    missing, in which case ``current`` holds the highest priority candidate.
    """

    current: str
    user: str
    all: list[str] = Field(default_factory=list)

    def as_serializable(self) -> dict[str, Any]:
        return {"current": self.current, "user": self.user, "parsers": list(self.all)}


class RuleCondition(BaseModel):
    """The ``if`` block of a declarative rule entry."""

    params: Optional[dict[str, Any]] = None
    query: Optional[dict[str, Any]] = None
    body: Optional[dict[str, Any]] = None


class ResponseSpec(BaseModel):
    """Response descriptor produced by a rule.

    Only fields set by the rule are tracked in ``model_fields_set``; defaults
    are applied when the response is rendered.
    """

    model_config = ConfigDict(populate_by_name=True)

    status: Optional[int] = None
    headers: Optional[dict[str, Any]] = None
    body: Optional[str] = None
    raw_body: Any = Field(default=None, alias="rawBody")

    def explicit_fields(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, by_alias=True)


class RuleEntry(BaseModel):
    """One ``{if, then}`` pair of a declarative parser file."""

    model_config = ConfigDict(populate_by_name=True)

    condition: Optional[RuleCondition] = Field(default=None, alias="if")
    then: Optional[ResponseSpec] = None


class UserMockSetting(BaseModel):
    """Per-route user preference."""

    model_config = ConfigDict(extra="allow")

    parser: str = DEFAULT_PARSER_FILE


class UserSettings(BaseModel):
    model_config = ConfigDict(extra="allow")

    api: dict[str, UserMockSetting] = Field(default_factory=dict)


class HttpSettings(BaseModel):
    host: str = "localhost"
    port: int = 3000


class ServerSettings(BaseModel):
    """Listener configuration read from ``server.yml``."""

    http: HttpSettings = Field(default_factory=HttpSettings)

    def as_serializable(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass
class MockRequest:
    method: str
    path: str
    params: dict[str, str] = field(default_factory=dict)
    query: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = field(default_factory=dict)
    raw_body: bytes = b""

    @property
    def json(self) -> Any:
        if not self.raw_body:
            return None
        try:
            return json.loads(self.raw_body.decode("utf-8"))
        except ValueError:
            return None


@dataclass
class RenderedResponse:
    """Status, headers and bytes ready to be written to the transport."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
