"""Ignore filter deciding which paths the watcher never reports."""

import os
import re
from collections.abc import Iterable

from sitepush.schemas.settings import IgnorePattern, IgnorePatternType


class IgnoreFilter:
    """Matches paths against directory- and filename-scoped regexes.

    A path is ignored if any pattern matches its corresponding portion.
    An empty pattern list never ignores anything.
    """

    def __init__(self, patterns: Iterable[IgnorePattern] = ()) -> None:
        self._patterns = [
            (p.pattern_type, re.compile(p.regex)) for p in patterns
        ]

    def __len__(self) -> int:
        return len(self._patterns)

    def should_ignore(self, path: str) -> bool:
        if not path:
            raise ValueError("Path can not be empty")

        if not self._patterns:
            return False

        directory, filename = os.path.split(path)

        for pattern_type, regex in self._patterns:
            if pattern_type == IgnorePatternType.DIRECTORY:
                if directory and regex.search(directory):
                    return True
            elif regex.search(filename):
                return True

        return False
