"""Filesystem and URL conventions shared by the mock runtime."""

from __future__ import annotations

from pathlib import Path

MOCK_URL_PREFIX = "/mock"
METHOD_DIRECTORY_MARKER = "@"
PATH_PARAMETER_MARKER = "$"

PARSER_FILE_PREFIX = "parser-"
SCRIPT_EXTENSIONS = frozenset({".js", ".py"})
DECLARATIVE_EXTENSIONS = frozenset({".yml"})
PARSER_FILE_EXTENSIONS = SCRIPT_EXTENSIONS | DECLARATIVE_EXTENSIONS

DEFAULT_PARSER_FILE = f"{PARSER_FILE_PREFIX}default.yml"

# Fallback order when the user selected parser file is missing; anything else
# falls back to the lexicographically smallest candidate.
PARSER_FILE_PRIORITY = (
    f"{PARSER_FILE_PREFIX}default.js",
    f"{PARSER_FILE_PREFIX}default.py",
    f"{PARSER_FILE_PREFIX}default.yml",
)

SUPPORTED_METHODS = ("GET", "PUT", "POST", "PATCH", "DELETE")

DEFAULT_MOCK_DIR = Path("mock")
DEFAULT_USER_SETTINGS_PATH = Path("user.yml")
DEFAULT_SERVER_SETTINGS_PATH = Path("server.yml")
