"""Selection of the parser file that governs a route."""

from __future__ import annotations

from pathlib import Path

from .constants import PARSER_FILE_EXTENSIONS, PARSER_FILE_PREFIX, PARSER_FILE_PRIORITY
from .errors import RuleFileNotFoundError
from .models import RuleFileSet


class ParserFileResolver:
    """Pick the active parser file of a route directory.

    The user selected file wins when it exists on disk. Otherwise the
    priority is:

    1. parser-default.js
    2. parser-default.py
    3. parser-default.yml
    4. the lexicographically smallest remaining candidate
       (parser-a.js, parser-a.yml, parser-b.js, ...)
    """

    def __init__(self, priority: tuple[str, ...] = PARSER_FILE_PRIORITY) -> None:
        self._priority = priority

    def resolve(self, directory: Path, requested: str) -> RuleFileSet:
        candidates = self.list_candidates(directory)
        if not candidates:
            raise RuleFileNotFoundError(f"Parser file was not found [directory={directory}]")

        if requested and (directory / requested).is_file():
            current = requested
        else:
            current = self.highest_priority(candidates)
        return RuleFileSet(current=current, user=requested, all=candidates)

    @staticmethod
    def list_candidates(directory: Path) -> list[str]:
        if not directory.is_dir():
            return []
        return sorted(
            entry.name
            for entry in directory.iterdir()
            if entry.is_file() and is_parser_file_name(entry.name)
        )

    def highest_priority(self, candidates: list[str]) -> str:
        for name in self._priority:
            if name in candidates:
                return name
        return min(candidates)


def is_parser_file_name(name: str) -> bool:
    return name.startswith(PARSER_FILE_PREFIX) and Path(name).suffix.lower() in PARSER_FILE_EXTENSIONS
