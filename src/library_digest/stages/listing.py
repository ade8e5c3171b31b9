"""Listing stage -- enumerate remote entries and decide which are admitted."""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator

from loguru import logger

from ..models import DEFAULT_EXCLUDE_PATTERNS, RemoteEntry
from ..remote import RemoteSource

log = logger.bind(stage="listing")


class PathFilter:
    """Ordered exclusion rules matched against an entry's file name.

    admit() is pure: it only reads the entry and the rules compiled at
    construction time. Directories are never admitted (they are walked by
    the listing, not fetched).

    The report identifier is a path segment present on every remote path.
    It carries no meaning, but it is not a reason to exclude anything and
    display paths keep it; prompts are told to ignore it instead.
    """

    def __init__(
        self,
        patterns: Iterable[str] = DEFAULT_EXCLUDE_PATTERNS,
        report_identifier: str = "",
    ) -> None:
        self.patterns = tuple(patterns)
        self.report_identifier = report_identifier
        self._rules = tuple(re.compile(p) for p in self.patterns)

    def excluded_by(self, entry: RemoteEntry) -> str | None:
        """Return the first rule that excludes entry, or None if admitted."""
        if entry.is_directory:
            return "<directory>"
        name = entry.name
        for pattern, rule in zip(self.patterns, self._rules):
            if rule.search(name):
                return pattern
        return None

    def admit(self, entry: RemoteEntry) -> bool:
        return self.excluded_by(entry) is None


def list_remote(
    source: RemoteSource,
    root: str,
    recursive: bool = True,
) -> Iterator[RemoteEntry]:
    """Stream entries from source, logging each one.

    Errors from the source propagate after whatever was already yielded;
    nothing is buffered here.
    """
    log.info(f"Listing {root!r} (recursive={recursive})")
    count = 0
    for entry in source.list(root, recursive=recursive):
        count += 1
        log.debug(
            f"Listed {entry.path} dir={entry.is_directory} "
            f"size={entry.size} modified={entry.modified_at}"
        )
        yield entry
    log.info(f"Listing of {root!r} finished: {count} entries")
