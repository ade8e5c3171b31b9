"""Remote file sources.

A source is a context manager exposing:
    list(path, recursive) -> Iterator[RemoteEntry]
    download(remote_path, out) -> int  (bytes written to the binary file out)
"""

from typing import BinaryIO, Iterator, Protocol

from ..models import RemoteEntry


class RemoteSource(Protocol):
    def __enter__(self) -> "RemoteSource": ...

    def __exit__(self, *exc_info) -> None: ...

    def list(self, path: str, recursive: bool = True) -> Iterator[RemoteEntry]: ...

    def download(self, remote_path: str, out: BinaryIO) -> int: ...
