"""Fetch stage -- bring an admitted remote file onto local disk.

Conflict policy is append-or-skip: a local file already at the target path
satisfies the fetch and is not downloaded again. Downloads land in a .part
sibling first and are renamed into place only when complete, so any file
found at the target path is whole.
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger

from ..concurrency import check_disk_space
from ..errors import DiskSpaceError, TransportError
from ..models import DEFAULT_IMAGE_EXTENSIONS, FetchedItem, RemoteEntry
from ..remote import RemoteSource
from ..sanitize import local_path_for
from .route import classify

log = logger.bind(stage="fetch")


class Fetcher:
    def __init__(
        self,
        source: RemoteSource,
        local_dir: Path,
        preserve_timestamp: bool = True,
        image_extensions: Iterable[str] = DEFAULT_IMAGE_EXTENSIONS,
    ) -> None:
        self.source = source
        self.local_dir = local_dir
        self.preserve_timestamp = preserve_timestamp
        self.image_extensions = frozenset(image_extensions)
        self.downloads = 0

    def local_path_for(self, remote_path: str) -> Path:
        return local_path_for(remote_path, self.local_dir)

    def fetch(self, entry: RemoteEntry) -> FetchedItem:
        """Return a FetchedItem for entry, downloading only if not present.

        Raises TransportError or DiskSpaceError; the caller decides whether
        the batch goes on. Local filesystem failures (a sanitized name that
        collides with a directory, a failed rename) surface as
        TransportError for this entry only.
        """
        try:
            target = self.local_path_for(entry.path)
        except ValueError as e:
            raise TransportError(f"No local path for {entry.path}: {e}", path=entry.path) from e

        try:
            present = target.is_file() and not self._is_stale(entry, target)
        except OSError as e:
            raise TransportError(f"Cannot inspect {target}: {e}", path=entry.path) from e

        if present:
            log.info(f"Already present locally, not downloading: {target}")
        else:
            self._download(entry, target)

        modified_at = entry.modified_at or datetime.now(timezone.utc)
        return FetchedItem(
            remote_path=entry.path,
            local_path=target,
            modified_at=modified_at,
            content_class=classify(entry.path, self.image_extensions),
            size=entry.size,
        )

    def _is_stale(self, entry: RemoteEntry, target: Path) -> bool:
        """A preserved-timestamp local copy older than the remote one was replaced upstream."""
        if not self.preserve_timestamp or entry.modified_at is None:
            return False
        return target.stat().st_mtime < int(entry.modified_at.timestamp())

    def _download(self, entry: RemoteEntry, target: Path) -> None:
        partial = target.with_name(target.name + ".part")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if entry.size and not check_disk_space(entry.size, target.parent):
                raise DiskSpaceError(f"Not enough space in {target.parent} for {entry.path}")

            log.info(f"Downloading {entry.path} -> {target}")
            with open(partial, "wb") as out:
                written = self.source.download(entry.path, out)

            os.replace(partial, target)
            if self.preserve_timestamp and entry.modified_at is not None:
                ts = entry.modified_at.timestamp()
                os.utime(target, (ts, ts))
        except TransportError:
            self._discard(partial)
            raise
        except OSError as e:
            self._discard(partial)
            raise TransportError(
                f"Storing {entry.path} at {target} failed: {e}", path=entry.path
            ) from e
        self.downloads += 1
        log.debug(f"Downloaded {written:,} bytes for {entry.path}")

    def _discard(self, partial: Path) -> None:
        try:
            partial.unlink(missing_ok=True)
        except OSError as e:
            log.debug(f"Could not remove {partial}: {e}")
