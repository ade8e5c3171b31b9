"""FTP remote source built on ftplib.

Listing prefers MLSD (machine-readable type/modify/size facts) and falls
back to NLST plus per-file MDTM/SIZE on servers that don't speak it.
Directory listings are fully read before entries are yielded, so callers
may download between yields on the same control connection.
"""

from __future__ import annotations

import ftplib
from collections import deque
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import BinaryIO

from loguru import logger

from ..errors import TransportError
from ..models import RemoteEntry

log = logger.bind(stage="ftp")


def parse_ftp_timestamp(value: str | None) -> datetime | None:
    """Parse an MLSD/MDTM timestamp (YYYYMMDDHHMMSS[.sss], always UTC)."""
    if not value:
        return None
    value = value.strip()
    whole, _, frac = value.partition(".")
    try:
        ts = datetime.strptime(whole, "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        log.debug(f"Unparseable FTP timestamp: {value!r}")
        return None
    if frac.isdigit():
        ts = ts.replace(microsecond=int(frac[:6].ljust(6, "0")))
    return ts


def _join(directory: str, name: str) -> str:
    return str(PurePosixPath(directory) / name)


class FtpSource:
    """Remote listing + download over one FTP control connection.

    Use as a context manager; the connection is opened on enter and
    closed on exit. All ftplib errors surface as TransportError.
    """

    def __init__(
        self,
        host: str,
        port: int = 21,
        username: str = "anonymous",
        password: str = "",
        passive: bool = True,
        timeout: float = 60.0,
        preserve_timestamp: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.passive = passive
        self.timeout = timeout
        self.preserve_timestamp = preserve_timestamp
        self._ftp: ftplib.FTP | None = None
        self._mlsd_supported = True

    def __enter__(self) -> FtpSource:
        self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def connect(self) -> None:
        log.info(f"Connecting to ftp://{self.host}:{self.port} as {self.username}")
        ftp = ftplib.FTP()
        try:
            ftp.connect(self.host, self.port, timeout=self.timeout)
            ftp.login(self.username, self.password)
            ftp.set_pasv(self.passive)
        except ftplib.all_errors as e:
            ftp.close()
            raise TransportError(f"FTP connect to {self.host}:{self.port} failed: {e}") from e
        self._ftp = ftp

    def close(self) -> None:
        if self._ftp is None:
            return
        try:
            self._ftp.quit()
        except ftplib.all_errors:
            self._ftp.close()
        self._ftp = None
        log.debug("FTP connection closed")

    @property
    def ftp(self) -> ftplib.FTP:
        if self._ftp is None:
            raise TransportError("FTP source is not connected")
        return self._ftp

    def list(self, path: str, recursive: bool = True) -> Iterator[RemoteEntry]:
        """Yield entries under path, breadth first.

        Directories are yielded too (is_directory=True) and descended into
        when recursive. An error ends the iteration with TransportError;
        entries yielded before it stay valid.
        """
        pending = deque([path])
        while pending:
            directory = pending.popleft()
            try:
                entries = self._list_directory(directory)
            except ftplib.all_errors as e:
                raise TransportError(f"Listing {directory} failed: {e}", path=directory) from e
            for entry in entries:
                if entry.is_directory and recursive:
                    pending.append(entry.path)
                yield entry

    def download(self, remote_path: str, out: BinaryIO) -> int:
        """Stream a remote file into out. Returns the number of bytes written."""
        written = 0

        def _write(chunk: bytes) -> None:
            nonlocal written
            out.write(chunk)
            written += len(chunk)

        try:
            self.ftp.retrbinary(f"RETR {remote_path}", _write)
        except ftplib.all_errors as e:
            raise TransportError(f"Download of {remote_path} failed: {e}", path=remote_path) from e
        return written

    def _list_directory(self, directory: str) -> list[RemoteEntry]:
        if self._mlsd_supported:
            try:
                return self._list_mlsd(directory)
            except ftplib.error_perm as e:
                if str(e)[:3] not in ("500", "502"):
                    raise
                log.info("Server does not support MLSD, falling back to NLST")
                self._mlsd_supported = False
        return self._list_nlst(directory)

    def _list_mlsd(self, directory: str) -> list[RemoteEntry]:
        entries = []
        for name, facts in self.ftp.mlsd(directory, facts=["type", "modify", "size"]):
            kind = facts.get("type", "file").lower()
            if kind in ("cdir", "pdir") or name in (".", ".."):
                continue
            size = facts.get("size")
            entries.append(
                RemoteEntry(
                    path=_join(directory, name),
                    is_directory=kind == "dir",
                    modified_at=(
                        parse_ftp_timestamp(facts.get("modify"))
                        if self.preserve_timestamp
                        else None
                    ),
                    size=int(size) if size and size.isdigit() else None,
                )
            )
        return entries

    def _list_nlst(self, directory: str) -> list[RemoteEntry]:
        entries = []
        for raw in self.ftp.nlst(directory):
            name = PurePosixPath(raw).name
            if name in (".", ".."):
                continue
            path = _join(directory, name)
            entries.append(self._stat_entry(path))
        return entries

    def _stat_entry(self, path: str) -> RemoteEntry:
        """Build an entry for path using SIZE/MDTM; SIZE failing means directory."""
        ftp = self.ftp
        try:
            ftp.voidcmd("TYPE I")
            size = ftp.size(path)
        except ftplib.error_perm:
            return RemoteEntry(path=path, is_directory=True)
        modified_at = None
        if self.preserve_timestamp:
            try:
                resp = ftp.sendcmd(f"MDTM {path}")
                modified_at = parse_ftp_timestamp(resp.split(None, 1)[-1])
            except ftplib.error_perm as e:
                log.debug(f"MDTM not available for {path}: {e}")
        return RemoteEntry(path=path, modified_at=modified_at, size=size)
