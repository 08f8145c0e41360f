"""Exception hierarchy for mock resolution and evaluation."""

from __future__ import annotations


class MockServerError(Exception):
    """Base class for every failure raised by the mock engine."""


class MockNotFoundError(MockServerError):
    """Unknown route id or a file the caller referenced does not exist."""


class RuleFileNotFoundError(MockNotFoundError):
    """A route directory holds no candidate parser files."""


class BodyFileNotFoundError(MockNotFoundError):
    """A response body file referenced by a rule could not be read."""


class UnsupportedFormatError(MockServerError):
    """The parser file extension is not a recognised rule format."""


class NoMatchError(MockServerError):
    """No declarative rule condition matched the request."""


class RuleFileError(MockServerError):
    """A parser file was readable but its content is not a valid rule."""
